from .errors import NotSupportedError, PathNotFoundError, StoreOperationError
from .file import BucketDirectory, BucketFile
from .fs import BucketFileSystem
from .info import FileInfo
from .path import normalize_path
from .properties import UploadedFileProperties
from .registry import register_bucketfs_protocol

__all__ = [
    "BucketDirectory",
    "BucketFile",
    "BucketFileSystem",
    "FileInfo",
    "NotSupportedError",
    "PathNotFoundError",
    "StoreOperationError",
    "UploadedFileProperties",
    "normalize_path",
    "register_bucketfs_protocol",
]
