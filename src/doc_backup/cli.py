from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from .api import create_app
from .config import AppConfig, ConfigurationError, load_config
from .cron import CronTrigger
from .dump import RethinkDumpProvider
from .logger import configure_logging
from .pipeline import BackupPipeline
from .scheduler import DebounceScheduler
from .storage import ArchiveDirectory
from .sync import RcloneSyncProvider
from .triggers import ChangeFeedTrigger, RethinkChangeFeed, TriggerAdapterError, is_backup_trigger

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/doc-backup/doc-backup.yaml"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Event-triggered RethinkDB backups.")
    parser.add_argument(
        "command",
        nargs="?",
        choices=("serve", "run-once"),
        default="serve",
        help="serve: listen for changes and HTTP triggers (default). run-once: back up now and exit.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("DOC_BACKUP_CONFIG"),
        help="Path to configuration YAML file. Environment variables override its values.",
    )
    parser.add_argument(
        "--list-archives",
        action="store_true",
        help="List archives in the dump directory and exit.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (defaults to the configured level).",
    )
    return parser.parse_args(argv)


def load_configuration(path: Optional[str]) -> AppConfig:
    if path:
        config_path: Optional[Path] = Path(path).expanduser()
    else:
        # Without --config the default file is optional; env-only setups skip it.
        default = Path(DEFAULT_CONFIG_PATH)
        config_path = default if default.exists() else None
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc


def build_pipeline(config: AppConfig) -> BackupPipeline:
    return BackupPipeline(
        dump_provider=RethinkDumpProvider(config.dump, config.database),
        sync_provider=RcloneSyncProvider(config.sync),
        source=config.sync_source,
        destination=config.sync.destination,
    )


def list_archives(config: AppConfig) -> None:
    for entry in ArchiveDirectory(config.dump.directory).list_archives():
        print(entry.name)


def run_once(config: AppConfig) -> int:
    result = build_pipeline(config).run()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def serve(config: AppConfig) -> int:
    stop_event = threading.Event()
    scheduler = DebounceScheduler(build_pipeline(config))

    feed = RethinkChangeFeed(config.database, table=config.trigger.table)
    try:
        feed.connect()
    except TriggerAdapterError as exc:
        LOG.error("Cannot start change feed listener: %s", exc)
        return 2

    predicate = functools.partial(
        is_backup_trigger,
        sentinel=config.trigger.sentinel,
        public_status=config.trigger.public_status,
    )
    trigger = ChangeFeedTrigger(feed, scheduler, config.trigger.delay_seconds, predicate)
    trigger.start(stop_event)

    if config.schedule:
        CronTrigger(scheduler, config.schedule).start(stop_event)

    app = create_app(config, scheduler, trigger=trigger)
    LOG.info("Listening at %s:%s", config.server.host, config.server.port)
    try:
        uvicorn.run(app, host=config.server.host, port=config.server.port, log_config=None)
    finally:
        stop_event.set()
        feed.close()
        if not scheduler.wait_until_idle(timeout=0):
            LOG.warning("Stopping with a backup still %s", scheduler.state.phase.value)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config = load_configuration(args.config)
    configure_logging(args.log_level or config.log_level)

    if args.list_archives:
        list_archives(config)
        return 0

    if args.command == "run-once":
        return run_once(config)
    return serve(config)


if __name__ == "__main__":
    sys.exit(main())
