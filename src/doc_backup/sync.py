from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import requests
from requests.auth import HTTPBasicAuth

from .config import SyncConfig

LOG = logging.getLogger(__name__)

# rclone runs the job in the background and answers with its jobid.
SYNC_DEFAULTS: Dict[str, Any] = {"_async": True}


class SyncError(Exception):
    """Raised when the replication job could not be submitted."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SyncJob:
    job_id: Optional[Any]
    submitted_at: datetime
    response: Dict[str, Any] = field(default_factory=dict)


class SyncProvider(Protocol):
    """Submits a replication job. Completion is owned by the remote service."""

    def submit_sync(self, source: str, destination: str) -> SyncJob:
        ...


class RcloneSyncProvider:
    """Submits copy/sync jobs through the rclone remote-control API."""

    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )
        if config.login:
            self._session.auth = HTTPBasicAuth(config.login, config.resolved_password() or "")
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def url(self) -> str:
        return f"http://{self._config.host}:{self._config.port}/{self._config.command}"

    def build_body(self, source: str, destination: str) -> Dict[str, Any]:
        body: Dict[str, Any] = dict(SYNC_DEFAULTS)
        body.update(self._config.options)
        body["srcFs"] = source
        body["dstFs"] = destination
        return body

    def submit_sync(self, source: str, destination: str) -> SyncJob:
        body = self.build_body(source, destination)
        LOG.info("Attempting %s from %s to %s", self._config.command, source, destination)

        try:
            response = self._session.post(self.url, json=body, timeout=self._config.timeout)
        except requests.RequestException as exc:
            raise SyncError(f"Sync request to {self.url} failed: {exc}") from exc

        if not response.ok:
            self._log.error("rclone request failed: %s %s", response.status_code, response.text)
            raise SyncError(
                f"{response.reason} ({response.status_code})",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise SyncError("rclone answered with a non-JSON body", status_code=response.status_code) from exc
        if not isinstance(payload, dict):
            raise SyncError("rclone answered with an unexpected JSON body", status_code=response.status_code)

        job = SyncJob(
            job_id=payload.get("jobid"),
            submitted_at=datetime.now(timezone.utc),
            response=payload,
        )
        LOG.info("Sync request sent (jobid=%s)", job.job_id)
        return job
