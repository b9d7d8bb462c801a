from __future__ import annotations

import errno
import logging
import os
import posixpath
from collections.abc import Mapping
from glob import has_magic
from stat import S_IROTH, S_IWOTH
from typing import Any

import boto3
from botocore.exceptions import ClientError, WaiterError
from fsspec.implementations.local import trailing_sep
from fsspec.spec import AbstractFileSystem
from fsspec.utils import stringify_path

from .errors import NotSupportedError, PathNotFoundError, StoreOperationError, is_not_found
from .file import BucketDirectory, BucketFile
from .info import FileInfo
from .path import dir_prefix, normalize_path, path_to_key, split_url
from .properties import (
    UploadedFileProperties,
    ensure_file_properties,
    guess_content_type,
    pop_file_properties,
)

logger = logging.getLogger("bucketfs")

# Same defaults as boto3's own object_exists waiter.
DEFAULT_WAITER_CONFIG: dict[str, int] = {"Delay": 5, "MaxAttempts": 20}

_MODE_FLAGS: dict[str, int] = {
    "rb": os.O_RDONLY,
    "wb": os.O_WRONLY | os.O_CREAT | os.O_TRUNC,
    "xb": os.O_WRONLY | os.O_CREAT | os.O_EXCL,
    "ab": os.O_WRONLY | os.O_CREAT | os.O_APPEND,
}

_PROPERTY_QUERY_KEYS = ("acl", "cache_control", "content_type", "content_encoding")


def acl_for_mode(mode: int) -> str:
    """Map the "other" permission bits of ``mode`` onto a canned ACL."""
    other_read = mode & S_IROTH != 0
    other_write = mode & S_IWOTH != 0
    if other_read and other_write:
        return "public-read-write"
    if other_read:
        return "public-read"
    return "private"


def _base_name(path: str) -> str:
    stripped = path.rstrip("/")
    if not stripped:
        return path
    return posixpath.basename(stripped)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class BucketFileSystem(AbstractFileSystem):
    """POSIX-like filesystem over a flat S3 bucket.

    Directories are not stored entities: they are key prefixes, made visible
    when empty by zero-byte marker objects whose key ends in ``/``. Operations
    the store cannot express (append, read-write handles, ownership, times)
    raise :class:`~bucketfs.errors.NotSupportedError`.

    The filesystem keeps no per-call state, so one instance can be shared
    across threads as long as the boto3 client can.
    """

    protocol = "bucketfs"
    root_marker = ""

    def __init__(
        self,
        bucket: str | None = None,
        *,
        client: Any = None,
        session: Any = None,
        client_kwargs: Mapping[str, Any] | None = None,
        file_properties: UploadedFileProperties | Mapping[str, Any] | None = None,
        raw_mode: bool = False,
        waiter_config: Mapping[str, int] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize BucketFileSystem.

        Parameters
        ----------
        bucket : str
            Name of the bucket every path is resolved in
        client : boto3 S3 client (optional)
            Shared client; the filesystem never closes it
        session : boto3.session.Session (optional)
            Used to build a client when none is given
        client_kwargs : dict (optional)
            Passed to ``session.client("s3", ...)``, eg ``endpoint_url``
        file_properties : UploadedFileProperties or mapping (optional)
            Defaults applied to every object this filesystem writes
        raw_mode : bool
            Use paths verbatim as keys, without normalization
        waiter_config : dict (optional)
            ``Delay``/``MaxAttempts`` for the readiness wait in :meth:`create`
        """
        super().__init__(**kwargs)
        if not bucket:
            raise ValueError("bucket is required")

        if client is None:
            if session is None:
                session = boto3.session.Session()
            client = session.client("s3", **dict(client_kwargs or {}))

        self.bucket = bucket
        self.session = session
        self.client = client
        self.file_properties = ensure_file_properties(file_properties)
        self.raw_mode = _as_bool(raw_mode)
        self.waiter_config = {**DEFAULT_WAITER_CONFIG, **dict(waiter_config or {})}

    @classmethod
    def _strip_protocol(cls, path: Any) -> Any:
        if isinstance(path, (list, tuple)):
            return type(path)(cls._strip_protocol(p) for p in path)
        path = stringify_path(path)
        if not isinstance(path, str):
            return path

        scheme, _bucket, key, _query = split_url(path)
        if scheme is None:
            return path
        protocols = (cls.protocol,) if isinstance(cls.protocol, str) else cls.protocol
        if scheme not in protocols:
            return path
        return key

    @classmethod
    def _get_kwargs_from_urls(cls, path: str) -> dict[str, Any]:
        scheme, bucket, _key, query = split_url(path)
        if scheme is not None and scheme != cls.protocol:
            return {}

        kwargs: dict[str, Any] = {}
        if bucket:
            kwargs["bucket"] = bucket
        if "raw_mode" in query:
            kwargs["raw_mode"] = _as_bool(query["raw_mode"])
        properties = {k: query[k] for k in _PROPERTY_QUERY_KEYS if query.get(k)}
        if properties:
            kwargs["file_properties"] = properties
        return kwargs

    def _sanitize(self, path: str) -> str:
        path = self._strip_protocol(path)
        if self.raw_mode:
            return path
        return normalize_path(path)

    def object_key(self, path: str) -> str:
        """Object key for an already sanitized path."""
        if self.raw_mode:
            return path
        return path_to_key(path)

    def _force_remove(self, op: str, path: str, key: str) -> None:
        """Delete ``key``; deleting a missing key is not an error."""
        logger.debug(f"Deleting {key} from bucket {self.bucket}")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as err:
            raise StoreOperationError(op, path, err) from err

    # Metadata
    #
    def stat(self, path: str) -> FileInfo:
        """Describe the file or directory at ``path``.

        A point lookup is tried first; when it misses, a one-key prefix
        listing decides whether ``path`` is a directory. A ``/``-terminated
        path that hits an existing key is answered as a directory, since such
        keys are directory markers.
        """
        name = self._sanitize(path)
        key = self.object_key(name)
        logger.debug(f"Getting info for: {name}")

        if not key:
            return self._stat_directory(name)

        try:
            out = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as err:
            if is_not_found(err):
                return self._stat_directory(name)
            raise StoreOperationError("stat", name, err) from err

        if name.endswith("/"):
            return FileInfo.directory(_base_name(name))
        return FileInfo(
            name=_base_name(name),
            is_dir=False,
            size=out["ContentLength"],
            mod_time=out["LastModified"],
        )

    def _stat_directory(self, name: str) -> FileInfo:
        key = self.object_key(name)
        try:
            out = self.client.list_objects_v2(
                Bucket=self.bucket,
                Prefix=dir_prefix(key),
                MaxKeys=1,
            )
        except ClientError as err:
            raise StoreOperationError("stat", name, err) from err

        # The bucket root always exists.
        if out.get("KeyCount", 0) == 0 and dir_prefix(key):
            raise PathNotFoundError("stat", name)
        return FileInfo.directory(_base_name(name))

    def info(self, path, **kwargs):
        name = self._sanitize(path)
        return self.stat(name).to_dict(self.object_key(name))

    def modified(self, path):
        return self.stat(path).mod_time

    def ls(self, path, detail=True, **kwargs):
        name = self._sanitize(path)
        with BucketDirectory(self, name) as directory:
            entries = directory.readdir(0)

        if entries:
            out = [entry.to_dict(directory.prefix + entry.name) for entry in entries]
        else:
            # Empty directories and plain files both list nothing.
            info = self.stat(name)
            out = [] if info.is_dir else [info.to_dict(self.object_key(name))]

        if not detail:
            return [item["name"] for item in out]
        return out

    # Creation
    #
    def create(self, path: str) -> BucketFile:
        """Create an empty object at ``path`` and return a write handle on it.

        Returns only once the store reports the object exists, so an
        immediate :meth:`stat` sees it even on an eventually consistent store.
        """
        name = self._sanitize(path)
        key = self.object_key(name)

        # An explicit empty put is cheaper than write, close and reopen.
        request: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": b""}
        if self.file_properties is not None:
            self.file_properties.apply_to_put_request(request)
        if "ContentType" not in request:
            content_type = guess_content_type(name)
            if content_type:
                request["ContentType"] = content_type

        logger.debug(f"Creating {key} in bucket {self.bucket}")
        try:
            self.client.put_object(**request)
        except ClientError as err:
            raise StoreOperationError("create", name, err) from err

        file = self.open_file(name, os.O_WRONLY)
        try:
            self.client.get_waiter("object_exists").wait(
                Bucket=self.bucket,
                Key=key,
                WaiterConfig=dict(self.waiter_config),
            )
        except WaiterError as err:
            file.discard()
            raise StoreOperationError("create", name, err) from err
        return file

    def mkdir(self, path, create_parents=True, perm=0o777, **kwargs):
        """Create a directory by writing its zero-byte marker object"""
        name = self._sanitize(path)
        marker = name.rstrip("/") + "/"
        if not dir_prefix(self.object_key(marker)):
            # The bucket root needs no marker.
            return

        logger.debug(f"Creating directory marker for: {marker}")
        file = self.open_file(marker, os.O_CREAT, perm)
        file.close()

    def mkdir_all(self, path, perm=0o777):
        """Same as :meth:`mkdir`: keys need no existing parents."""
        self.mkdir(path, perm=perm)

    def makedirs(self, path, exist_ok=False):
        self.mkdir_all(path)

    # Opening
    #
    def open_file(self, path: str, flag: int = os.O_RDONLY, perm: int = 0o777, **kwargs):
        """Open ``path`` with ``os.O_*`` flags; ``perm`` is ignored.

        Returns a :class:`BucketFile`, or a :class:`BucketDirectory` when a
        read-only open resolves to a directory.
        """
        name = self._sanitize(path)

        # Interleaved reads and writes make no sense on an immutable object.
        if flag & os.O_RDWR:
            raise NotSupportedError("open", name)

        # Appending would mean rewriting the whole object from a copy of the
        # previous content on every open.
        if flag & os.O_APPEND:
            raise NotSupportedError("open", name)

        if flag & os.O_CREAT:
            flag |= os.O_WRONLY

        file_properties = pop_file_properties(kwargs, defaults=self.file_properties)
        if flag & os.O_WRONLY:
            # Uploads cannot be staged and committed later, so no transactions.
            if not kwargs.get("autocommit", True):
                raise NotSupportedError("open", name)
            mode = "xb" if flag & os.O_EXCL else "wb"
            return BucketFile(self, name, mode, file_properties=file_properties, **kwargs)

        info = self.stat(name)
        if info.is_dir:
            return BucketDirectory(self, name)
        return BucketFile(
            self,
            name,
            "rb",
            size=info.size,
            details=info.to_dict(self.object_key(name)),
            **kwargs,
        )

    def _open(
        self,
        path,
        mode="rb",
        block_size=None,
        autocommit=True,
        cache_options=None,
        **kwargs: Any,
    ):
        """Open a file for reading or writing"""
        if "+" in mode:
            flag = os.O_RDWR
        else:
            try:
                flag = _MODE_FLAGS[mode]
            except KeyError:
                raise ValueError(f"Unsupported file mode: {mode!r}") from None

        file = self.open_file(
            path,
            flag,
            block_size=block_size,
            autocommit=autocommit,
            cache_options=cache_options,
            **kwargs,
        )
        # fsspec callers expect a byte stream; directories only come back
        # from open_file.
        if isinstance(file, BucketDirectory):
            file.close()
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), file.path)
        return file

    # Removal
    #
    def remove(self, path: str) -> None:
        """Delete the object at ``path``; missing paths raise FileNotFoundError.

        For a directory this deletes its marker only.
        """
        name = self._sanitize(path)
        info = self.stat(name)
        key = self.object_key(name)
        if info.is_dir:
            key = dir_prefix(key)
        if key:
            self._force_remove("remove", name, key)

    def remove_all(self, path: str) -> None:
        """Delete ``path`` and everything below it, depth first.

        A plain file is deleted on its own. The walk stops at the first
        failure and whatever was already deleted stays deleted.
        """
        name = self._sanitize(path)
        key = self.object_key(name)
        if key and not key.endswith("/") and self._is_object(name, key):
            self._force_remove("remove_all", name, key)
            return

        logger.debug(f"Removing tree: {name}")
        self._remove_tree(name, dir_prefix(key))

    def _is_object(self, name: str, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as err:
            if is_not_found(err):
                return False
            raise StoreOperationError("remove_all", name, err) from err
        return True

    def _remove_tree(self, name: str, prefix: str) -> None:
        with BucketDirectory(self, name, prefix=prefix) as directory:
            entries = directory.readdir(0)

        for entry in entries:
            child = prefix + entry.name
            if entry.is_dir:
                self._remove_tree(child, child + "/")
            else:
                self._force_remove("remove_all", child, child)
        for nested in directory.unnamed_prefixes:
            self._remove_tree(nested, nested)

        # Finally the marker standing for the directory itself.
        if prefix:
            self._force_remove("remove_all", name, prefix)

    def rm_file(self, path):
        self.remove(path)

    def rmdir(self, path):
        name = self._sanitize(path)
        if not self.stat(name).is_dir:
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), name)
        with BucketDirectory(self, name) as directory:
            if directory.readdir(1) or directory.unnamed_prefixes:
                raise OSError(errno.ENOTEMPTY, os.strerror(errno.ENOTEMPTY), name)
        if directory.prefix:
            self._force_remove("rmdir", name, directory.prefix)

    def rm(self, path, recursive=False, maxdepth=None):
        if isinstance(path, str) and not has_magic(path) and maxdepth is None:
            if recursive and self.isdir(path):
                self.remove_all(path)
            else:
                self.remove(path)
            return None
        return super().rm(path, recursive=recursive, maxdepth=maxdepth)

    # Copy and rename
    #
    def cp_file(self, path1, path2, **kwargs):
        source = self._sanitize(path1)
        target = self._sanitize(path2)
        self._copy_object("copy", source, target)

    def _copy_object(self, op: str, source: str, target: str) -> None:
        src_key = self.object_key(source)
        dst_key = self.object_key(target)
        logger.debug(f"Copying {src_key} to {dst_key} in bucket {self.bucket}")
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": src_key},
                Key=dst_key,
            )
        except ClientError as err:
            raise StoreOperationError(op, source, err) from err

    def rename(self, old: str, new: str) -> None:
        """Move ``old`` to ``new`` by copying, then deleting the original.

        This is not atomic: both keys exist between the two requests, and a
        failure after the copy leaves a duplicate rather than a move.
        """
        source = self._sanitize(old)
        target = self._sanitize(new)
        if self.object_key(source) == self.object_key(target):
            return

        self._copy_object("rename", source, target)
        self._force_remove("rename", source, self.object_key(source))

    def mv(self, path1, path2, recursive: bool = False, maxdepth: int | None = None, **kwargs):
        if (
            isinstance(path1, str)
            and isinstance(path2, str)
            and not recursive
            and maxdepth is None
            and not has_magic(path1)
        ):
            src = self._strip_protocol(path1)
            dst = self._strip_protocol(path2)
            if trailing_sep(dst) or self.isdir(dst):
                base = src.rstrip("/").split("/")[-1]
                dst = dst.rstrip("/") + "/" + base
            self.rename(src, dst)
            return None
        return super().mv(path1, path2, recursive=recursive, maxdepth=maxdepth, **kwargs)

    # Permissions, ownership and times
    #
    def chmod(self, path: str, mode: int) -> None:
        """Approximate ``mode`` with a canned ACL.

        Only the "other" read and write bits count; owner and group bits have
        no counterpart in the store.
        """
        name = self._sanitize(path)
        acl = acl_for_mode(mode)
        logger.debug(f"Setting ACL {acl} on: {name}")
        try:
            self.client.put_object_acl(
                Bucket=self.bucket,
                Key=self.object_key(name),
                ACL=acl,
            )
        except ClientError as err:
            raise StoreOperationError("chmod", name, err) from err

    def chown(self, path: str, uid: int, gid: int) -> None:
        raise NotSupportedError("chown", self._sanitize(path))

    def chtimes(self, path: str, atime, mtime) -> None:
        # Possible through object metadata, but nothing else would read it.
        raise NotSupportedError("chtimes", self._sanitize(path))
