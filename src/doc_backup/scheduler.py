from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

LOG = logging.getLogger(__name__)

Delay = Union[int, float, timedelta]


class SchedulingViolation(AssertionError):
    """The single-flight invariant was broken. Always a programming error."""


class SchedulePhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


@dataclass(frozen=True)
class ScheduleState:
    pending: bool = False
    fire_at: Optional[datetime] = None
    running: bool = False

    @property
    def phase(self) -> SchedulePhase:
        if self.running:
            return SchedulePhase.RUNNING
        if self.pending:
            return SchedulePhase.SCHEDULED
        return SchedulePhase.IDLE


class Pipeline(Protocol):
    def run(self) -> Any:
        ...


class Timer(Protocol):
    daemon: bool

    def start(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class DebounceScheduler:
    """Coalesces backup requests into at most one scheduled-or-running pipeline run.

    The first request of a burst arms a one-shot timer. Every request that
    arrives while that run is pending or in progress is dropped; it neither
    extends nor re-arms the timer. Once the run finishes, however it ends,
    the scheduler returns to idle and the next request starts a new burst.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        clock: Optional[Callable[[], datetime]] = None,
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self._pipeline = pipeline
        self._clock = clock or _utcnow
        self._timer_factory = timer_factory or threading.Timer
        self._lock = threading.Lock()
        self._state = ScheduleState()
        self._timer: Optional[Timer] = None
        self._idle = threading.Event()
        self._idle.set()
        self.last_result: Any = None
        self.run_count = 0

    @property
    def state(self) -> ScheduleState:
        with self._lock:
            return self._state

    def request_backup(self, delay: Delay = 0) -> bool:
        """Schedule a run ``delay`` from now unless one is already pending.

        Returns True when this request armed the timer, False when it was
        absorbed by the run already scheduled.
        """
        seconds = _to_seconds(delay)
        now = self._clock()
        LOG.info("A dump request has been received")

        with self._lock:
            if self._state.pending:
                fire_at = self._state.fire_at
                LOG.info(
                    "A dump has already been scheduled for %s (%s)",
                    fire_at.isoformat() if fire_at else "now",
                    describe_distance(now, fire_at or now),
                )
                return False
            if self._timer is not None:
                raise SchedulingViolation("A timer is armed while the schedule is idle")

            fire_at = now + timedelta(seconds=seconds)
            timer = self._timer_factory(seconds, self._fire)
            timer.daemon = True
            self._state = ScheduleState(pending=True, fire_at=fire_at)
            self._timer = timer
            self._idle.clear()
            try:
                timer.start()
            except Exception:
                self._reset()
                raise

        LOG.info(
            "A dump was scheduled for %s (%s)",
            fire_at.isoformat(),
            describe_distance(now, fire_at),
        )
        return True

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self._idle.wait(timeout)

    def _fire(self) -> None:
        with self._lock:
            if not self._state.pending or self._state.running:
                raise SchedulingViolation(f"Timer fired in phase {self._state.phase.value}")
            self._state = replace(self._state, running=True)

        LOG.info("Starting scheduled backup")
        try:
            result = self._pipeline.run()
            self.last_result = result
            LOG.info("Backup run finished with status %s", getattr(result, "status", "unknown"))
        except Exception:  # noqa: BLE001
            LOG.exception("Backup pipeline raised; resetting schedule")
        finally:
            with self._lock:
                self.run_count += 1
                self._reset()

    def _reset(self) -> None:
        self._state = ScheduleState()
        self._timer = None
        self._idle.set()


def _to_seconds(delay: Delay) -> float:
    seconds = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
    if seconds < 0:
        raise ValueError(f"Backup delay must not be negative (got {seconds}s)")
    return seconds


def describe_distance(start: datetime, end: datetime) -> str:
    seconds = abs((end - start).total_seconds())
    if seconds < 45:
        return "less than a minute"
    minutes = round(seconds / 60)
    if minutes < 60:
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    hours = round(minutes / 60)
    if hours < 24:
        return "about 1 hour" if hours == 1 else f"about {hours} hours"
    days = round(hours / 24)
    return "1 day" if days == 1 else f"{days} days"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
