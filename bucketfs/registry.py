from __future__ import annotations

from .fs import BucketFileSystem

DEFAULT_PROTOCOL = "bucketfs"

_ALIAS_FILESYSTEMS: dict[str, type[BucketFileSystem]] = {}


def _filesystem_for(protocol: str) -> type[BucketFileSystem]:
    if protocol == DEFAULT_PROTOCOL:
        return BucketFileSystem
    if protocol not in _ALIAS_FILESYSTEMS:
        safe = "".join([c if c.isalnum() else "_" for c in protocol])
        _ALIAS_FILESYSTEMS[protocol] = type(
            f"BucketFileSystem_{safe}",
            (BucketFileSystem,),
            {"protocol": protocol},
        )
    return _ALIAS_FILESYSTEMS[protocol]


def register_bucketfs_protocol(protocol: str = DEFAULT_PROTOCOL) -> str:
    """Make ``protocol://bucket/key`` URLs resolve to a BucketFileSystem.

    Protocols other than the default get their own subclass so that URL
    parsing strips the right scheme.
    """
    from fsspec.registry import register_implementation

    register_implementation(protocol, _filesystem_for(protocol), clobber=True)
    return protocol
