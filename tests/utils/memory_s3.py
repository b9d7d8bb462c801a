"""In-memory stand-in for a boto3 S3 client.

Only the calls bucketfs makes are implemented. Errors are real botocore
exceptions shaped like the ones S3 returns, and every call is recorded so
tests can assert on the exact requests sent.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from botocore.exceptions import ClientError, WaiterError
from botocore.response import StreamingBody

_OPERATION_NAMES = {
    "head_object": "HeadObject",
    "get_object": "GetObject",
    "put_object": "PutObject",
    "upload_fileobj": "PutObject",
    "list_objects_v2": "ListObjectsV2",
    "copy_object": "CopyObject",
    "delete_object": "DeleteObject",
    "put_object_acl": "PutObjectAcl",
}


def client_error(operation: str, code: str, status: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        _OPERATION_NAMES.get(operation, operation),
    )


@dataclass
class StoredObject:
    body: bytes
    last_modified: datetime
    acl: str = "private"
    cache_control: str | None = None
    content_type: str | None = None
    content_encoding: str | None = None


class MemoryWaiter:
    """Polls ``head_object`` like boto3's ``object_exists`` waiter, without sleeping."""

    def __init__(self, client: "MemoryS3Client") -> None:
        self.client = client

    def wait(self, Bucket: str, Key: str, WaiterConfig: dict | None = None) -> None:
        attempts = (WaiterConfig or {}).get("MaxAttempts", 20)
        last_response: dict[str, Any] = {}
        for _ in range(attempts):
            try:
                self.client.head_object(Bucket=Bucket, Key=Key)
                return
            except ClientError as err:
                if err.response["Error"]["Code"] != "404":
                    raise
                last_response = err.response
        raise WaiterError(
            name="ObjectExists",
            reason="Max attempts exceeded",
            last_response=last_response,
        )


class MemoryS3Client:
    """Single-bucket S3 client kept in a dict.

    ``visibility_delay`` makes every newly written object invisible until it
    has been looked up with ``head_object`` that many times, which is enough
    to reproduce the read-after-write gap of an eventually consistent store.
    ``page_size`` caps how many entries one listing page returns.
    """

    def __init__(self, bucket: str = "test", visibility_delay: int = 0, page_size: int = 1000) -> None:
        self.bucket = bucket
        self.visibility_delay = visibility_delay
        self.page_size = page_size
        self.objects: dict[str, StoredObject] = {}
        self.pending: dict[str, list] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._failures: dict[str, tuple[ClientError, int]] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # Test helpers
    #
    def fail(self, operation: str, code: str = "InternalError", status: int = 500, after: int = 0) -> None:
        """Make ``operation`` raise once it has succeeded ``after`` more times."""
        self._failures[operation] = (client_error(operation, code, status), after)

    def operations(self) -> list[str]:
        return [name for name, _kwargs in self.calls]

    def keys(self) -> list[str]:
        return sorted(self.objects)

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        if operation in self._failures:
            error, remaining = self._failures[operation]
            if remaining <= 0:
                raise error
            self._failures[operation] = (error, remaining - 1)

    def _check_bucket(self, operation: str, bucket: str) -> None:
        if bucket != self.bucket:
            raise client_error(operation, "NoSuchBucket", 404)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _store(self, key: str, obj: StoredObject) -> None:
        if self.visibility_delay > 0:
            self.pending[key] = [self.visibility_delay, obj]
        else:
            self.objects[key] = obj

    def _lookup(self, operation: str, key: str) -> StoredObject:
        try:
            return self.objects[key]
        except KeyError:
            code = "404" if operation == "head_object" else "NoSuchKey"
            raise client_error(operation, code, 404) from None

    # S3 API
    #
    def put_object(self, Bucket: str, Key: str, Body: Any = b"", **kwargs: Any) -> dict:
        self._record("put_object", dict(Bucket=Bucket, Key=Key, **kwargs))
        self._check_bucket("put_object", Bucket)
        if hasattr(Body, "read"):
            Body = Body.read()
        self._store(
            Key,
            StoredObject(
                body=bytes(Body),
                last_modified=self._tick(),
                acl=kwargs.get("ACL", "private"),
                cache_control=kwargs.get("CacheControl"),
                content_type=kwargs.get("ContentType"),
                content_encoding=kwargs.get("ContentEncoding"),
            ),
        )
        return {"ETag": '"etag"'}

    def upload_fileobj(self, Fileobj: Any, Bucket: str, Key: str, ExtraArgs: dict | None = None) -> None:
        extra = dict(ExtraArgs or {})
        self._record("upload_fileobj", dict(Bucket=Bucket, Key=Key, ExtraArgs=extra))
        self._check_bucket("upload_fileobj", Bucket)
        self._store(
            Key,
            StoredObject(
                body=Fileobj.read(),
                last_modified=self._tick(),
                acl=extra.get("ACL", "private"),
                cache_control=extra.get("CacheControl"),
                content_type=extra.get("ContentType"),
                content_encoding=extra.get("ContentEncoding"),
            ),
        )

    def head_object(self, Bucket: str, Key: str) -> dict:
        self._record("head_object", dict(Bucket=Bucket, Key=Key))
        self._check_bucket("head_object", Bucket)
        if Key in self.pending:
            self.pending[Key][0] -= 1
            if self.pending[Key][0] <= 0:
                self.objects[Key] = self.pending.pop(Key)[1]
        obj = self._lookup("head_object", Key)
        return {
            "ContentLength": len(obj.body),
            "LastModified": obj.last_modified,
            "ContentType": obj.content_type or "binary/octet-stream",
        }

    def get_object(self, Bucket: str, Key: str, Range: str | None = None) -> dict:
        self._record("get_object", dict(Bucket=Bucket, Key=Key, Range=Range))
        self._check_bucket("get_object", Bucket)
        data = self._lookup("get_object", Key).body
        if Range is not None:
            start, _, end = Range.removeprefix("bytes=").partition("-")
            first = int(start)
            if first >= len(data):
                raise client_error("get_object", "InvalidRange", 416)
            data = data[first : int(end) + 1 if end else None]
        return {
            "Body": StreamingBody(io.BytesIO(data), len(data)),
            "ContentLength": len(data),
        }

    def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        Delimiter: str | None = None,
        MaxKeys: int = 1000,
        ContinuationToken: str | None = None,
    ) -> dict:
        self._record(
            "list_objects_v2",
            dict(
                Bucket=Bucket,
                Prefix=Prefix,
                Delimiter=Delimiter,
                MaxKeys=MaxKeys,
                ContinuationToken=ContinuationToken,
            ),
        )
        self._check_bucket("list_objects_v2", Bucket)

        entries: list[tuple[str, bool]] = []
        seen_prefixes: set[str] = set()
        for key in sorted(self.objects):
            if not key.startswith(Prefix):
                continue
            rest = key[len(Prefix) :]
            if Delimiter and Delimiter in rest:
                common = Prefix + rest[: rest.index(Delimiter) + len(Delimiter)]
                if common not in seen_prefixes:
                    seen_prefixes.add(common)
                    entries.append((common, True))
            else:
                entries.append((key, False))

        if ContinuationToken is not None:
            entries = [entry for entry in entries if entry[0] > ContinuationToken]

        limit = min(MaxKeys, self.page_size)
        page, rest_entries = entries[:limit], entries[limit:]

        out: dict[str, Any] = {
            "KeyCount": len(page),
            "IsTruncated": bool(rest_entries),
            "Prefix": Prefix,
            "MaxKeys": MaxKeys,
        }
        contents = [
            {
                "Key": key,
                "Size": len(self.objects[key].body),
                "LastModified": self.objects[key].last_modified,
            }
            for key, is_prefix in page
            if not is_prefix
        ]
        prefixes = [{"Prefix": key} for key, is_prefix in page if is_prefix]
        if contents:
            out["Contents"] = contents
        if prefixes:
            out["CommonPrefixes"] = prefixes
        if rest_entries:
            out["NextContinuationToken"] = page[-1][0]
        return out

    def copy_object(self, Bucket: str, CopySource: Any, Key: str) -> dict:
        self._record("copy_object", dict(Bucket=Bucket, CopySource=CopySource, Key=Key))
        self._check_bucket("copy_object", Bucket)
        if isinstance(CopySource, str):
            source_bucket, _, source_key = CopySource.lstrip("/").partition("/")
        else:
            source_bucket, source_key = CopySource["Bucket"], CopySource["Key"]
        self._check_bucket("copy_object", source_bucket)
        source = self._lookup("copy_object", source_key)
        self._store(
            Key,
            StoredObject(
                body=source.body,
                last_modified=self._tick(),
                acl=source.acl,
                cache_control=source.cache_control,
                content_type=source.content_type,
                content_encoding=source.content_encoding,
            ),
        )
        return {"CopyObjectResult": {"ETag": '"etag"'}}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        self._record("delete_object", dict(Bucket=Bucket, Key=Key))
        self._check_bucket("delete_object", Bucket)
        self.objects.pop(Key, None)
        self.pending.pop(Key, None)
        return {}

    def put_object_acl(self, Bucket: str, Key: str, ACL: str) -> dict:
        self._record("put_object_acl", dict(Bucket=Bucket, Key=Key, ACL=ACL))
        self._check_bucket("put_object_acl", Bucket)
        self._lookup("put_object_acl", Key).acl = ACL
        return {}

    def get_waiter(self, name: str) -> MemoryWaiter:
        if name != "object_exists":
            raise ValueError(f"Waiter does not exist: {name}")
        return MemoryWaiter(self)
