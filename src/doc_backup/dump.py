from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Protocol

from .config import DatabaseConfig, DumpConfig

LOG = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class DumpError(Exception):
    """Raised when the database dump could not be produced."""


@dataclass(frozen=True)
class DumpArtifact:
    path: Path
    location: str
    filename: str
    created_at: datetime


class DumpProvider(Protocol):
    def produce_dump(self) -> DumpArtifact:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime, pattern: str) -> str:
    """strftime with an extra ``%L`` directive for zero-padded milliseconds."""
    millis = f"{moment.microsecond // 1000:03d}"
    # Escaped percent signs must not be mistaken for a %L directive.
    parts = pattern.split("%%")
    return "%".join(moment.strftime(part.replace("%L", millis)) for part in parts)


def archive_filename(database_name: str, moment: datetime, date_format: str, extension: str) -> str:
    return f"{database_name}_dump_{format_timestamp(moment, date_format)}.{extension}"


class RethinkDumpProvider:
    """Produces archives by running ``rethinkdb dump`` inside the archive directory."""

    def __init__(
        self,
        config: DumpConfig,
        database: DatabaseConfig,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config
        self._database = database
        self._clock = clock or utcnow

    def produce_dump(self) -> DumpArtifact:
        created_at = self._clock()
        filename = archive_filename(
            self._database.name,
            created_at,
            self._config.date_format,
            self._config.extension,
        )
        directory = self._config.directory
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DumpError(f"Cannot create archive directory {directory}: {exc}") from exc

        cmd = self._build_command(filename)
        LOG.info("Dumping database %s to %s", self._database.name, directory / filename)
        try:
            completed = subprocess.run(
                cmd,
                cwd=directory,
                check=True,
                capture_output=True,
                timeout=self._config.timeout,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", "ignore").strip()
            raise DumpError(f"rethinkdb dump exited with status {exc.returncode}: {stderr}") from exc
        except subprocess.TimeoutExpired as exc:
            raise DumpError(f"rethinkdb dump timed out after {exc.timeout}s") from exc
        except OSError as exc:
            raise DumpError(f"Failed to run {self._config.executable}: {exc}") from exc

        stdout = (completed.stdout or b"").decode("utf-8", "ignore").strip()
        if stdout:
            LOG.info("dump: %s", stdout)

        artifact = DumpArtifact(
            path=directory / filename,
            location=f"/{self._config.public_path}{filename}",
            filename=filename,
            created_at=created_at,
        )
        LOG.info("Successful dump to: %s", artifact.location)
        return artifact

    def _build_command(self, filename: str) -> List[str]:
        return [
            self._config.executable,
            "dump",
            "--connect",
            f"{self._database.host}:{self._database.port}",
            "--export",
            self._database.name,
            "--file",
            filename,
        ]
