from __future__ import annotations

import errno
import os

from botocore.exceptions import ClientError

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def http_status(err: ClientError) -> int | None:
    return err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def is_not_found(err: Exception) -> bool:
    """Whether a client error means the key does not exist."""
    if not isinstance(err, ClientError):
        return False
    return error_code(err) in _NOT_FOUND_CODES or http_status(err) == 404


class NotSupportedError(OSError):
    """The object store has no sound mapping for this operation."""

    def __init__(self, op: str, path: str | None = None) -> None:
        super().__init__(
            errno.ENOTSUP, f"{op}: operation not supported by the object store", path
        )
        self.op = op


class PathNotFoundError(FileNotFoundError):
    """Neither an object nor a prefix exists at the path."""

    def __init__(self, op: str, path: str) -> None:
        super().__init__(errno.ENOENT, f"{op}: {os.strerror(errno.ENOENT)}", path)
        self.op = op


class StoreOperationError(OSError):
    """A store request failed while serving a filesystem operation."""

    def __init__(self, op: str, path: str, err: Exception) -> None:
        status = http_status(err) if isinstance(err, ClientError) else None
        if status == 404:
            code = errno.ENOENT
        elif status == 403:
            code = errno.EACCES
        else:
            code = errno.EIO
        super().__init__(code, f"{op}: {err}", path)
        self.op = op
        self.err = err
