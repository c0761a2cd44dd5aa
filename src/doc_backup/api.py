"""HTTP front end: manual backup trigger and archive file serving."""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse

from .config import AppConfig
from .scheduler import DebounceScheduler
from .storage import ArchiveDirectory, ArchiveNotFound
from .triggers import ChangeFeedTrigger

LOG = logging.getLogger(__name__)


def create_app(
    config: AppConfig,
    scheduler: DebounceScheduler,
    archives: Optional[ArchiveDirectory] = None,
    trigger: Optional[ChangeFeedTrigger] = None,
) -> FastAPI:
    """Create the FastAPI application around an existing scheduler.

    When ``trigger`` is given, /health answers 503 once its change feed has
    failed, since backups then only happen on manual or periodic requests.
    """
    archives = archives or ArchiveDirectory(config.dump.directory)
    prefix = config.dump.public_path
    api_key = config.server.api_key

    app = FastAPI(
        title="doc-backup",
        description="Event-triggered database backups",
        version="0.1.0",
    )

    def _request_backup(supplied_key: Optional[str]):
        if api_key and supplied_key != api_key:
            return PlainTextResponse("Unauthorized", status_code=401)
        try:
            scheduled = scheduler.request_backup(0)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse({"scheduled": scheduled}, status_code=202)

    @app.get("/health")
    async def health_check():
        """Health check with the current schedule phase and change feed status."""
        state = scheduler.state
        feed_error = trigger.error if trigger is not None else None
        body = {
            "status": "degraded" if feed_error else "healthy",
            "schedule": {
                "phase": state.phase.value,
                "fire_at": state.fire_at.isoformat() if state.fire_at else None,
            },
        }
        if feed_error:
            body["change_feed"] = str(feed_error)
            return JSONResponse(body, status_code=503)
        return body

    @app.get("/backup", status_code=202)
    def trigger_backup(apiKey: Optional[str] = Query(default=None)):  # noqa: N803
        """Request an immediate backup. Answers once the request is scheduled."""
        return _request_backup(apiKey)

    @app.get(f"/{prefix}dump", status_code=202, include_in_schema=False)
    def trigger_dump(apiKey: Optional[str] = Query(default=None)):  # noqa: N803
        return _request_backup(apiKey)

    @app.get(f"/{prefix}")
    def list_archives():
        return {
            "path": f"/{prefix}",
            "archives": [
                {
                    "name": entry.name,
                    "size": entry.size,
                    "modified_at": entry.modified_at.isoformat(),
                    "href": f"/{prefix}{entry.name}",
                }
                for entry in archives.list_archives()
            ],
        }

    @app.get(f"/{prefix}{{filename}}")
    def get_archive(filename: str):
        try:
            path = archives.resolve(filename)
        except ArchiveNotFound as exc:
            raise HTTPException(status_code=404, detail="Not Found") from exc
        LOG.info("Sent: %s", filename)
        return FileResponse(
            path,
            filename=filename,
            headers={"x-timestamp": str(int(time.time() * 1000)), "x-sent": "true"},
        )

    return app
