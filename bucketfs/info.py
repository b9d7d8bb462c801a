from __future__ import annotations

import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Modification time reported for synthesized directories.
EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class FileInfo:
    """Result of a stat on the bucket: a file or a synthesized directory."""

    name: str
    is_dir: bool = False
    size: int = 0
    mod_time: datetime = field(default=EPOCH)

    @classmethod
    def directory(cls, name: str) -> "FileInfo":
        return cls(name=name, is_dir=True, size=0, mod_time=EPOCH)

    @property
    def mode(self) -> int:
        if self.is_dir:
            return stat.S_IFDIR | 0o755
        return stat.S_IFREG | 0o664

    def to_dict(self, path: str) -> dict[str, Any]:
        """fsspec ``info`` shape, named after the full ``path``."""
        return {
            "name": path,
            "size": self.size,
            "type": "directory" if self.is_dir else "file",
            "mtime": self.mod_time,
        }
