from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from .config import ScheduleConfig
from .triggers import BackupRequester

LOG = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 60


class CronTrigger:
    """Requests an immediate backup at every tick of a cron expression."""

    def __init__(
        self,
        scheduler: BackupRequester,
        config: ScheduleConfig,
        clock: Optional[Callable[[ZoneInfo], datetime]] = None,
    ) -> None:
        self._scheduler = scheduler
        self._config = config
        self._timezone = ZoneInfo(config.timezone)
        self._clock = clock or datetime.now

    def next_run(self, reference: datetime) -> datetime:
        return croniter(self._config.cron, reference).get_next(datetime)

    def run(self, stop_event: threading.Event) -> None:
        now = self._clock(self._timezone)
        next_run = now if self._config.run_on_startup else self.next_run(now)
        LOG.info("Next periodic backup at %s", next_run.isoformat())

        while not stop_event.is_set():
            now = self._clock(self._timezone)
            if now >= next_run:
                self._scheduler.request_backup(0)
                next_run = self.next_run(now)
                LOG.info("Next periodic backup at %s", next_run.isoformat())
                continue

            sleep_for = max((next_run - now).total_seconds(), 0)
            stop_event.wait(min(sleep_for, MAX_WAIT_SECONDS))

        LOG.info("Periodic trigger stopped")

    def start(self, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(target=self.run, args=(stop_event,), name="cron-trigger", daemon=True)
        thread.start()
        return thread
