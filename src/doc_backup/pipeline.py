from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .dump import DumpArtifact, DumpError, DumpProvider
from .sync import SyncError, SyncJob, SyncProvider

LOG = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_DUMP_FAILED = "dump_failed"
STATUS_SYNC_FAILED = "sync_failed"


@dataclass
class PipelineResult:
    status: str
    started_at: datetime
    completed_at: datetime
    artifact: Optional[DumpArtifact] = None
    sync_job: Optional[SyncJob] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "location": self.artifact.location if self.artifact else None,
            "job_id": self.sync_job.job_id if self.sync_job else None,
            "errors": self.errors,
        }


class BackupPipeline:
    """Runs one dump-then-replicate cycle.

    A failed dump ends the cycle before anything is replicated. A failed sync
    is reported in the result only: the archive stays on disk and the next
    cycle replicates it along with everything else. ``run`` never raises.
    """

    def __init__(
        self,
        dump_provider: DumpProvider,
        sync_provider: SyncProvider,
        source: str,
        destination: str,
    ) -> None:
        self._dump = dump_provider
        self._sync = sync_provider
        self._source = source
        self._destination = destination

    def run(self) -> PipelineResult:
        started_at = _utcnow()

        try:
            artifact = self._dump.produce_dump()
        except DumpError as exc:
            return self._dump_failed(started_at, str(exc))
        except Exception as exc:  # noqa: BLE001
            return self._dump_failed(started_at, f"Unexpected dump failure: {exc}")

        try:
            job = self._sync.submit_sync(self._source, self._destination)
        except SyncError as exc:
            return self._sync_failed(started_at, artifact, str(exc), status_code=exc.status_code)
        except Exception as exc:  # noqa: BLE001
            return self._sync_failed(started_at, artifact, f"Unexpected sync failure: {exc}")

        return PipelineResult(
            status=STATUS_SUCCESS,
            started_at=started_at,
            completed_at=_utcnow(),
            artifact=artifact,
            sync_job=job,
        )

    def _dump_failed(self, started_at: datetime, message: str) -> PipelineResult:
        LOG.error(
            "dump error: %s",
            message,
            extra={"error_type": "DumpError", "fatal": True},
        )
        return PipelineResult(
            status=STATUS_DUMP_FAILED,
            started_at=started_at,
            completed_at=_utcnow(),
            errors=[message],
        )

    def _sync_failed(
        self,
        started_at: datetime,
        artifact: DumpArtifact,
        message: str,
        status_code: Optional[int] = None,
    ) -> PipelineResult:
        LOG.error(
            "Problem with Sync: %s",
            message,
            extra={
                "error_type": "SyncError",
                "fatal": False,
                "status_code": status_code,
                "artifact": artifact.location,
            },
        )
        return PipelineResult(
            status=STATUS_SYNC_FAILED,
            started_at=started_at,
            completed_at=_utcnow(),
            artifact=artifact,
            errors=[message],
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
