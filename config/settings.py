"""
Configuration loader for the notification scheduler.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class StoreConfig:
    backend: str = "memory"                 # "memory" | "file" | "s3"
    file_dir: str = "./data"                # root directory for file backend
    bucket: str = ""                        # s3 bucket holding the slots
    prefix: str = "notifications/slots"
    region: str = ""
    endpoint_url: str = ""                  # MinIO / LocalStack
    connect_timeout: float = 5.0
    read_timeout: float = 10.0
    max_attempts: int = 3                   # botocore retry budget per call

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BusConfig:
    backend: str = "memory"                 # "memory" | "redis" | "sns"
    redis_url: str = "redis://localhost:6379"
    region: str = ""
    processor_topic: str = "notifications:processor"   # stream name or SNS topic ARN
    inbound_topic: str = "notifications:schedule"
    consume_inbound: bool = False           # run the inbound consumer inside the API
    consumer_group: str = "scheduler-workers"
    concurrency: int = 5
    max_attempts: int = 3                   # deliveries before dead-lettering

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Settings:
    app_name: str = "NotificationScheduler"
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"                # "json" | "console"
    diagnostics_timezone: str = "America/New_York"
    store: StoreConfig = field(default_factory=StoreConfig)
    bus: BusConfig = field(default_factory=BusConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _section(cls, data: dict[str, Any]):
    """Build a config dataclass from a dict, ignoring unknown keys."""
    known = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "NOTIFICATION_SCHEDULER_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.log_level = raw.get("log_level", settings.log_level)
        settings.log_format = raw.get("log_format", settings.log_format)
        settings.diagnostics_timezone = raw.get("diagnostics_timezone", settings.diagnostics_timezone)

        if "store" in raw:
            settings.store = _section(StoreConfig, raw["store"])

        if "bus" in raw:
            settings.bus = _section(BusConfig, raw["bus"])

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
