"""Pytest configuration and fixtures."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from doc_backup.config import AppConfig, DatabaseConfig, DumpConfig, SyncConfig
from doc_backup.dump import DumpArtifact, DumpError
from doc_backup.sync import SyncError, SyncJob

FIXED_NOW = datetime(2024, 3, 5, 14, 7, 9, 42_000, tzinfo=timezone.utc)


class FakeDumpProvider:
    """Dump provider that records calls and optionally fails."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    def produce_dump(self):
        self.calls += 1
        if self.fail:
            raise DumpError("rethinkdb dump exited with status 1: boom")
        filename = f"factoid_dump_{self.calls}.tar.gz"
        return DumpArtifact(
            path=Path("/tmp") / filename,
            location=f"/archives/{filename}",
            filename=filename,
            created_at=FIXED_NOW,
        )


class FakeSyncProvider:
    """Sync provider that records submissions and optionally fails."""

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def submit_sync(self, source, destination):
        self.calls.append((source, destination))
        if self.fail:
            raise SyncError("Internal Server Error (500)", status_code=500)
        return SyncJob(job_id=len(self.calls), submitted_at=FIXED_NOW, response={"jobid": len(self.calls)})


class ManualTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False

    def start(self):
        self.started = True

    def fire(self):
        self.function()


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer


@pytest.fixture
def dump_provider():
    return FakeDumpProvider()


@pytest.fixture
def sync_provider():
    return FakeSyncProvider()


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def archive_dir(tmp_path):
    directory = tmp_path / "archives"
    directory.mkdir()
    return directory


@pytest.fixture
def app_config(archive_dir):
    return AppConfig(
        database=DatabaseConfig(host="db.internal", port=28015, name="factoid"),
        dump=DumpConfig(directory=archive_dir),
        sync=SyncConfig(host="rclone", port=5572, destination="remote:backups"),
    )
