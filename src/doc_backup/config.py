from __future__ import annotations

import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from croniter import CroniterBadCronError, croniter
from pydantic import BaseModel, Field, ValidationError, field_validator

SECONDS_PER_HOUR = 60 * 60

# date-fns tokens accepted in DUMP_DATE_FORMAT by existing deployments.
DATE_FNS_TOKENS = {
    "yyyy": "%Y",
    "MM": "%m",
    "dd": "%d",
    "HH": "%H",
    "mm": "%M",
    "ss": "%S",
    "SSS": "%L",
}
DATE_FNS_PATTERN = re.compile("|".join(sorted(DATE_FNS_TOKENS, key=len, reverse=True)))


class ConfigurationError(Exception):
    """Raised when the doc-backup configuration is invalid."""


class SecretRef(BaseModel):
    """Reference to a secret stored in an environment variable or file."""

    env: Optional[str] = Field(default=None, description="Environment variable name.")
    file: Optional[Path] = Field(default=None, description="Path to a file containing the secret.")

    def resolve(self) -> Optional[str]:
        if self.env:
            value = os.getenv(self.env)
            if value:
                return value
        if self.file:
            file_path = Path(self.file)
            if file_path.exists():
                return file_path.read_text(encoding="utf-8").strip()
        return None


# --- Database ----------------------------------------------------------------


class DatabaseConfig(BaseModel):
    host: str = "localhost"
    port: int = 28015
    name: str = "factoid"


# --- Dump --------------------------------------------------------------------


class DumpConfig(BaseModel):
    directory: Path = Path("archives")
    public_path: str = Field(default="archives/", description="URL prefix archives are served under.")
    date_format: str = Field(default="%Y-%m-%d_%H-%M-%S-%L", description="strftime pattern; %L is milliseconds.")
    extension: str = "tar.gz"
    executable: str = "rethinkdb"
    timeout: Optional[float] = Field(default=None, description="Seconds before the dump tool is killed.")

    @field_validator("directory")
    @classmethod
    def _expand_directory(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("public_path")
    @classmethod
    def _normalise_public_path(cls, value: str) -> str:
        value = value.strip("/")
        if not value:
            raise ValueError("public_path must not be empty")
        return f"{value}/"

    @field_validator("date_format")
    @classmethod
    def _translate_date_fns_format(cls, value: str) -> str:
        if "%" not in value:
            value = DATE_FNS_PATTERN.sub(lambda match: DATE_FNS_TOKENS[match.group(0)], value)
        if "%" not in value:
            raise ValueError(f"date_format '{value}' contains no date directive")
        return value

    @field_validator("extension")
    @classmethod
    def _strip_extension_dot(cls, value: str) -> str:
        return value.lstrip(".")


# --- Sync --------------------------------------------------------------------


class SyncConfig(BaseModel):
    host: str = "localhost"
    port: int = 5572
    command: str = Field(default="sync/copy", description="rclone remote-control route.")
    source: Optional[str] = Field(default=None, description="Defaults to the dump directory.")
    destination: str
    login: Optional[str] = None
    password: Optional[str] = Field(default=None, description="Explicit password (discouraged).")
    password_ref: Optional[SecretRef] = None
    options: Dict[str, Any] = Field(default_factory=dict, description="Extra fields passed to rclone.")
    timeout: Optional[float] = None

    @field_validator("command")
    @classmethod
    def _strip_command(cls, value: str) -> str:
        value = value.strip("/")
        if not value:
            raise ValueError("sync command must not be empty")
        return value

    @field_validator("destination")
    @classmethod
    def _require_destination(cls, value: str) -> str:
        if not value:
            raise ValueError("sync destination must be configured")
        return value

    def resolved_password(self) -> Optional[str]:
        if self.password:
            return self.password
        if self.password_ref:
            return self.password_ref.resolve()
        return None


# --- Triggers ----------------------------------------------------------------


class TriggerConfig(BaseModel):
    delay_hours: float = 0.05
    table: str = "document"
    sentinel: str = Field(default="demo", description="Id/secret of documents that never trigger.")
    public_status: str = "public"

    @field_validator("delay_hours")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delay_hours must not be negative")
        return value

    @property
    def delay_seconds(self) -> float:
        return self.delay_hours * SECONDS_PER_HOUR


class ScheduleConfig(BaseModel):
    cron: str
    timezone: str = "UTC"
    run_on_startup: bool = False

    @field_validator("cron")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        try:
            croniter(value, datetime.now(timezone.utc))
        except (CroniterBadCronError, ValueError) as exc:  # pragma: no cover - library errors
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:  # pragma: no cover - library errors
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value


# --- HTTP server -------------------------------------------------------------


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    api_key: Optional[str] = Field(default=None, description="Required as ?apiKey= on /backup when set.")

    @field_validator("api_key")
    @classmethod
    def _blank_key_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


class AppConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    dump: DumpConfig = DumpConfig()
    sync: SyncConfig
    trigger: TriggerConfig = TriggerConfig()
    schedule: Optional[ScheduleConfig] = None
    server: ServerConfig = ServerConfig()
    log_level: str = "INFO"

    @property
    def sync_source(self) -> str:
        return self.sync.source or str(self.dump.directory.resolve())


# Environment variables used by existing deployments, mapped onto the
# nested configuration keys they override.
ENV_OVERRIDES: Dict[str, Tuple[str, ...]] = {
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_NAME": ("database", "name"),
    "DUMP_DIRECTORY": ("dump", "directory"),
    "DUMP_PATH": ("dump", "public_path"),
    "DUMP_DATE_FORMAT": ("dump", "date_format"),
    "DUMP_DELAY_HOURS": ("trigger", "delay_hours"),
    "SYNC_HOST": ("sync", "host"),
    "SYNC_PORT": ("sync", "port"),
    "SYNC_COMMAND": ("sync", "command"),
    "SYNC_SRC": ("sync", "source"),
    "SYNC_DST": ("sync", "destination"),
    "SYNC_LOGIN": ("sync", "login"),
    "SYNC_PASSWORD": ("sync", "password"),
    "API_KEY": ("server", "api_key"),
    "PORT": ("server", "port"),
    "LOG_LEVEL": ("log_level",),
}


def apply_env_overrides(raw: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = dict(raw)
    for env_name, keys in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value is None:
            continue
        target = merged
        for key in keys[:-1]:
            section = target.get(key) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"Configuration section '{key}' must be a mapping")
            target[key] = dict(section)
            target = target[key]
        target[keys[-1]] = value

    # SYNC_MODE predates SYNC_COMMAND and names only the sync/* operation.
    mode = environ.get("SYNC_MODE")
    if mode and "SYNC_COMMAND" not in environ:
        sync_section = dict(merged.get("sync") or {})
        sync_section["command"] = f"sync/{mode}"
        merged["sync"] = sync_section
    return merged


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    raw: Dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        with path.open("r", encoding="utf-8") as fh:
            try:
                raw = yaml.safe_load(fh) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Configuration root in {path} must be a mapping")

    raw = apply_env_overrides(raw, os.environ if environ is None else environ)

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc
