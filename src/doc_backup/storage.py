from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List


class ArchiveNotFound(Exception):
    """Raised when an archive name is unknown or may not be served."""


@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    size: int
    modified_at: datetime


@dataclass
class ArchiveDirectory:
    """Read-only view of the directory dumps are written to."""

    base_path: Path

    def list_archives(self) -> List[ArchiveEntry]:
        if not self.base_path.is_dir():
            return []
        entries = []
        for child in sorted(self.base_path.iterdir()):
            if child.name.startswith(".") or not child.is_file():
                continue
            stat = child.stat()
            entries.append(
                ArchiveEntry(
                    name=child.name,
                    size=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return entries

    def resolve(self, filename: str) -> Path:
        if not filename or filename.startswith(".") or "/" in filename or "\\" in filename:
            raise ArchiveNotFound(filename)
        path = self.base_path / filename
        if not path.is_file():
            raise ArchiveNotFound(filename)
        return path
