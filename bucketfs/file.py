from __future__ import annotations

import io
import logging

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import ClientError
from fsspec.spec import AbstractBufferedFile

from .errors import StoreOperationError, error_code
from .info import FileInfo
from .path import dir_prefix
from .properties import UploadedFileProperties, guess_content_type

logger = logging.getLogger("bucketfs")


class BucketFile(AbstractBufferedFile):
    """Buffered file over a single bucket object.

    Reads are independent ranged GETs. Writes are kept in memory and sent in
    one upload when the file is closed, so nothing is visible before close.
    Writes always commit on close; ``autocommit=False`` is refused by
    :meth:`BucketFileSystem.open_file`.
    """

    file_properties: UploadedFileProperties | None

    def __init__(
        self,
        fs,
        path,
        mode="rb",
        block_size="default",
        autocommit=True,
        cache_type="readahead",
        cache_options=None,
        size=None,
        file_properties=None,
        details=None,
        **kwargs,
    ):
        self.key = fs.object_key(path)
        self.file_properties = file_properties
        super().__init__(
            fs,
            path,
            mode=mode,
            block_size=block_size,
            autocommit=autocommit,
            cache_type=cache_type,
            cache_options=cache_options,
            size=size,
            **kwargs,
        )
        if details is not None:
            self.details = details

    def _fetch_range(self, start: int, end: int):
        """Download data between start and end"""
        if start >= end:
            return b""

        try:
            response = self.fs.client.get_object(
                Bucket=self.fs.bucket,
                Key=self.key,
                Range=f"bytes={start}-{end - 1}",
            )
        except ClientError as err:
            if error_code(err) == "InvalidRange":
                return b""
            raise StoreOperationError("read", self.path, err) from err

        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def _initiate_upload(self) -> None:
        if self.mode == "xb" and self.fs.exists(self.path):
            raise FileExistsError(self.path)

    def _upload_chunk(self, final: bool = False):
        """Upload the whole buffer once the file is being closed"""
        if not final:
            # Keep buffering; the object is written in one piece.
            return False

        extra_args: dict[str, str] = {}
        if self.file_properties is not None:
            self.file_properties.apply_to_upload_args(extra_args)
        if "ContentType" not in extra_args:
            content_type = guess_content_type(self.path)
            if content_type:
                extra_args["ContentType"] = content_type

        self.buffer.seek(0)
        logger.debug(f"Uploading {self.key} to bucket {self.fs.bucket}")
        try:
            self.fs.client.upload_fileobj(
                self.buffer, self.fs.bucket, self.key, ExtraArgs=extra_args
            )
        except (ClientError, S3UploadFailedError) as err:
            raise StoreOperationError("write", self.path, err) from err
        self.buffer.seek(0, 2)
        return True

    def discard(self):
        """Drop buffered data without uploading it"""
        if self.mode == "rb" or self.closed:
            return
        self.buffer = io.BytesIO()
        self.forced = True
        self.closed = True


class BucketDirectory:
    """Handle on a synthesized directory.

    Supports enumeration only: children are read from a delimited prefix
    listing, page by page, and handed out in the order the store returns them.
    """

    def __init__(self, fs, path: str, prefix: str | None = None) -> None:
        self.fs = fs
        self.path = path
        if prefix is None:
            prefix = dir_prefix(fs.object_key(path))
        self.prefix = prefix
        # Keys under an empty segment, like "dir//x", have no child name.
        self.unnamed_prefixes: list[str] = []
        self.closed = False
        self._pending: list[FileInfo] = []
        self._token: str | None = None
        self._exhausted = False

    @property
    def name(self) -> str:
        return self.path

    def __repr__(self) -> str:
        return f"<BucketDirectory {self.fs.bucket}/{self.prefix}>"

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self) -> None:
        self.closed = True

    def stat(self) -> FileInfo:
        return self.fs.stat(self.path)

    def _fetch_page(self) -> None:
        request = {"Bucket": self.fs.bucket, "Prefix": self.prefix, "Delimiter": "/"}
        if self._token is not None:
            request["ContinuationToken"] = self._token

        logger.debug(f"Listing {self.prefix!r} in bucket {self.fs.bucket}")
        try:
            out = self.fs.client.list_objects_v2(**request)
        except ClientError as err:
            raise StoreOperationError("readdir", self.path, err) from err

        for common in out.get("CommonPrefixes", []):
            name = common["Prefix"][len(self.prefix) :].rstrip("/")
            if name:
                self._pending.append(FileInfo.directory(name))
            else:
                self.unnamed_prefixes.append(common["Prefix"])
        for obj in out.get("Contents", []):
            name = obj["Key"][len(self.prefix) :]
            # The directory marker itself.
            if not name:
                continue
            self._pending.append(
                FileInfo(
                    name=name,
                    is_dir=False,
                    size=obj["Size"],
                    mod_time=obj["LastModified"],
                )
            )

        if out.get("IsTruncated"):
            self._token = out["NextContinuationToken"]
        else:
            self._exhausted = True

    def readdir(self, count: int = 0) -> list[FileInfo]:
        """Return the next ``count`` children, or all remaining if ``count <= 0``.

        An empty list means the listing is exhausted.
        """
        if self.closed:
            raise ValueError("I/O operation on closed directory")

        while not self._exhausted and (count <= 0 or len(self._pending) < count):
            self._fetch_page()

        if count <= 0:
            entries, self._pending = self._pending, []
        else:
            entries, self._pending = self._pending[:count], self._pending[count:]
        return entries

    def readdirnames(self, count: int = 0) -> list[str]:
        return [entry.name for entry in self.readdir(count)]
