"""Runtime configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from .batching import BATCH_THRESHOLD
from .capture_queue import OverflowPolicy
from .errors import ConfigError

_ENV_FIELDS = {
    "PORT": "port",
    "DB_NAME": "db_name",
    "DEVICE_NAME": "device_name",
    "PACKET_FILTER": "filter_expression",
    "MIRROR_FILE": "mirror_path",
    "BATCH_THRESHOLD": "batch_threshold",
    "QUEUE_SIZE": "queue_size",
    "QUEUE_OVERFLOW": "overflow",
    "SCHEMA_PATH": "schema_path",
}

_INT_FIELDS = {"port", "batch_threshold", "queue_size"}


@dataclass(frozen=True)
class AppConfig:
    port: int = 8080
    db_name: str = "tattletale.db"
    device_name: str = ""
    filter_expression: str = ""
    mirror_path: str = ""
    batch_threshold: int = BATCH_THRESHOLD
    queue_size: int = 0
    overflow: OverflowPolicy = OverflowPolicy.BLOCK
    schema_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 < self.port <= 0xFFFF:
            raise ConfigError(f"port must be between 1 and 65535, got {self.port}")
        if self.batch_threshold < 0:
            raise ConfigError("batch threshold must be >= 0")
        if self.queue_size < 0:
            raise ConfigError("queue size must be >= 0")
        if not self.db_name:
            raise ConfigError("database name must not be empty")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        values = {
            field: env[key]
            for key, field in _ENV_FIELDS.items()
            if env.get(key, "") != ""
        }
        return cls().with_overrides(**values)

    def with_overrides(self, **overrides: Any) -> "AppConfig":
        """Return a copy with every non-None override applied and coerced."""
        values = {}
        for field, value in overrides.items():
            if value is None:
                continue
            values[field] = _coerce(field, value)
        return replace(self, **values)


def _coerce(field: str, value: Any) -> Any:
    if field in _INT_FIELDS:
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{field} must be an integer, got {value!r}") from exc
    if field == "overflow":
        try:
            return OverflowPolicy(str(value).lower())
        except ValueError as exc:
            choices = ", ".join(policy.value for policy in OverflowPolicy)
            raise ConfigError(f"overflow must be one of {choices}, got {value!r}") from exc
    return value


__all__ = ["AppConfig"]
