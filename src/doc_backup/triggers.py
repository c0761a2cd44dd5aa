from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, Protocol

from rethinkdb import RethinkDB
from rethinkdb.errors import ReqlError

from .config import DatabaseConfig
from .scheduler import Delay

LOG = logging.getLogger(__name__)

CHANGE_ADD = "add"
CHANGE_UPDATE = "change"
CHANGE_REMOVE = "remove"


class TriggerAdapterError(Exception):
    """Raised when the change-feed subscription cannot be established or is lost."""


@dataclass(frozen=True)
class ChangeEvent:
    change_type: str
    old_document: Optional[Mapping[str, Any]] = None
    new_document: Optional[Mapping[str, Any]] = None

    @classmethod
    def from_change(cls, change: Mapping[str, Any]) -> "ChangeEvent":
        old_val = change.get("old_val")
        new_val = change.get("new_val")
        change_type = change.get("type")
        if not change_type:
            if old_val is None:
                change_type = CHANGE_ADD
            elif new_val is None:
                change_type = CHANGE_REMOVE
            else:
                change_type = CHANGE_UPDATE
        return cls(change_type=change_type, old_document=old_val, new_document=new_val)


def is_backup_trigger(
    event: ChangeEvent,
    *,
    sentinel: str = "demo",
    public_status: str = "public",
) -> bool:
    """Decide whether a document change warrants a backup.

    Demo documents never count. New documents always count, and so does any
    change that leaves a document public, whether it just became public or
    was public already.
    """
    new_doc = event.new_document or {}
    if new_doc.get("id") == sentinel or new_doc.get("secret") == sentinel:
        return False
    if event.change_type == CHANGE_ADD:
        return True
    return new_doc.get("status") == public_status


Predicate = Callable[[ChangeEvent], bool]


class BackupRequester(Protocol):
    def request_backup(self, delay: Delay = 0) -> bool:
        ...


class ChangeFeedTrigger:
    """Turns qualifying change events into backup requests."""

    def __init__(
        self,
        feed: Iterable[ChangeEvent],
        scheduler: BackupRequester,
        delay: Delay,
        predicate: Predicate = is_backup_trigger,
    ) -> None:
        self._feed = feed
        self._scheduler = scheduler
        self._delay = delay
        self._predicate = predicate
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[TriggerAdapterError] = None

    def handle(self, event: ChangeEvent) -> bool:
        if not self._predicate(event):
            LOG.debug("Ignoring %s event", event.change_type)
            return False
        self._scheduler.request_backup(self._delay)
        return True

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        try:
            for event in self._feed:
                if stop_event is not None and stop_event.is_set():
                    break
                self.handle(event)
        except TriggerAdapterError:
            if stop_event is not None and stop_event.is_set():
                return
            raise
        except Exception as exc:
            if stop_event is not None and stop_event.is_set():
                return
            raise TriggerAdapterError(f"Change feed failed: {exc}") from exc
        LOG.info("Change feed ended")

    def start(self, stop_event: Optional[threading.Event] = None) -> threading.Thread:
        def _target() -> None:
            try:
                self.run(stop_event)
            except TriggerAdapterError as exc:
                self.error = exc
                LOG.error("Change feed listener stopped: %s", exc)

        self._thread = threading.Thread(target=_target, name="change-feed", daemon=True)
        self._thread.start()
        return self._thread


class RethinkChangeFeed:
    """Live ``changes()`` subscription on one RethinkDB table."""

    def __init__(self, database: DatabaseConfig, table: str = "document", driver: Optional[RethinkDB] = None) -> None:
        self._database = database
        self._table = table
        self._r = driver or RethinkDB()
        self._conn: Any = None
        self._cursor: Any = None

    def connect(self) -> "RethinkChangeFeed":
        target = f"{self._database.host}:{self._database.port}/{self._database.name}.{self._table}"
        try:
            self._conn = self._r.connect(host=self._database.host, port=self._database.port)
            self._cursor = (
                self._r.db(self._database.name)
                .table(self._table)
                .changes(include_types=True)
                .run(self._conn)
            )
        except (ReqlError, OSError) as exc:
            raise TriggerAdapterError(f"Cannot subscribe to changes on {target}: {exc}") from exc
        LOG.info("Listening for changes on %s", target)
        return self

    def __iter__(self) -> Iterator[ChangeEvent]:
        if self._cursor is None:
            self.connect()
        try:
            for change in self._cursor:
                yield ChangeEvent.from_change(change)
        except (ReqlError, OSError) as exc:
            raise TriggerAdapterError(f"Change feed on table {self._table} was interrupted: {exc}") from exc

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close(noreply_wait=False)
        except ReqlError as exc:
            LOG.warning("Error while closing RethinkDB connection: %s", exc)
        finally:
            self._conn = None
            self._cursor = None
