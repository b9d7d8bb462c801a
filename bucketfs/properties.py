from __future__ import annotations

import mimetypes
from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Any

# Property name -> S3 request parameter.
_REQUEST_FIELDS: dict[str, str] = {
    "acl": "ACL",
    "cache_control": "CacheControl",
    "content_type": "ContentType",
    "content_encoding": "ContentEncoding",
}


@dataclass(frozen=True)
class UploadedFileProperties:
    """Properties applied to objects written through the filesystem.

    ``None`` leaves the field to the store default (or, for ``content_type``,
    to a guess made from the file extension).
    """

    acl: str | None = None
    cache_control: str | None = None
    content_type: str | None = None
    content_encoding: str | None = None

    def __post_init__(self) -> None:
        for name in _REQUEST_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise TypeError(f"UploadedFileProperties.{name} must be a str")

    def _set_fields(self) -> Iterator[tuple[str, str]]:
        for name, param in _REQUEST_FIELDS.items():
            value = getattr(self, name)
            if value is not None:
                yield param, value

    def apply_to_put_request(self, request: MutableMapping[str, Any]) -> None:
        """Copy the set properties onto ``put_object`` keyword arguments."""
        for param, value in self._set_fields():
            request[param] = value

    def apply_to_upload_args(self, extra_args: MutableMapping[str, Any]) -> None:
        """Copy the set properties onto ``upload_fileobj`` ``ExtraArgs``."""
        for param, value in self._set_fields():
            extra_args[param] = value

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> "UploadedFileProperties":
        if not isinstance(value, Mapping):
            raise TypeError("file_properties must be a mapping")
        unknown = set(value) - set(_REQUEST_FIELDS)
        if unknown:
            raise TypeError(f"unknown file properties: {', '.join(sorted(unknown))}")
        return cls(**dict(value))

    def merge(self, override: "UploadedFileProperties | None") -> "UploadedFileProperties":
        if override is None:
            return self
        merged = {
            name: getattr(override, name)
            if getattr(override, name) is not None
            else getattr(self, name)
            for name in _REQUEST_FIELDS
        }
        return UploadedFileProperties(**merged)


def ensure_file_properties(
    value: UploadedFileProperties | Mapping[str, Any] | None,
) -> UploadedFileProperties | None:
    if value is None:
        return None
    if not isinstance(value, UploadedFileProperties):
        if isinstance(value, Mapping):
            return UploadedFileProperties.from_mapping(value)
        raise TypeError("file_properties must be UploadedFileProperties or a mapping")
    return value


def pop_file_properties(
    kwargs: dict[str, Any],
    *,
    defaults: UploadedFileProperties | None = None,
) -> UploadedFileProperties | None:
    override = ensure_file_properties(kwargs.pop("file_properties", None))
    if defaults is None:
        return override
    return defaults.merge(override)


def guess_content_type(path: str) -> str | None:
    content_type, _encoding = mimetypes.guess_type(path, strict=False)
    return content_type
