"""Event-triggered document store backups."""

from __future__ import annotations

from .config import AppConfig, load_config  # noqa: F401
from .pipeline import BackupPipeline, PipelineResult  # noqa: F401
from .scheduler import DebounceScheduler, ScheduleState  # noqa: F401
