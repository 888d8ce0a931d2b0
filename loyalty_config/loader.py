"""
Configuration Loader (``loyalty_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen ``loyalty_config.schema``
dataclasses.  The single public entry point for runtime config is
``loyalty_config.get_settings()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Values must have the type of the schema default (``bool`` is not
  accepted where an ``int`` is expected, and vice versa).
* Counts, sizes and durations must be positive.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from loyalty_config.schema import (
    ApprovalSettings,
    CardSettings,
    DatabaseSettings,
    EngineSettings,
    LoggingSettings,
    NotificationSettings,
    ReconciliationSettings,
    TransactionSettings,
)

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")
DATABASE_URL_ENV = "LOYALTY_DATABASE_URL"

_SECTIONS: dict[str, type] = {
    "approval": ApprovalSettings,
    "cards": CardSettings,
    "reconciliation": ReconciliationSettings,
    "notifications": NotificationSettings,
    "transactions": TransactionSettings,
    "database": DatabaseSettings,
    "logging": LoggingSettings,
}

# Integer settings that may legitimately be zero.
_NON_NEGATIVE = frozenset({
    "transactions.retry_backoff_ms",
    "transactions.statement_timeout_ms",
    "transactions.lock_timeout_ms",
    "database.max_overflow",
})

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _check_value(section: str, key: str, value: Any, default: Any) -> Any:
    name = f"{section}.{key}"
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be a boolean, got {value!r}")
        return value
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer, got {value!r}")
        floor = 0 if name in _NON_NEGATIVE else 1
        if value < floor:
            raise ValueError(f"{name} must be >= {floor}, got {value}")
        return value
    if isinstance(default, str):
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{name} must be a non-empty string, got {value!r}")
        return value
    return value


def _parse_section(section: str, cls: type, raw: Any, base: Any) -> Any:
    if raw is None:
        return base
    if not isinstance(raw, Mapping):
        raise ValueError(f"{section} must be a mapping, got {type(raw).__name__}")

    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown key(s) in {section}: {', '.join(unknown)}")

    values = {
        key: _check_value(section, key, value, getattr(base, key))
        for key, value in raw.items()
    }
    return dataclasses.replace(base, **values)


def parse_settings(raw: Mapping[str, Any], base: EngineSettings | None = None) -> EngineSettings:
    """Overlay ``raw`` onto ``base`` (schema defaults when None)."""
    base = base or EngineSettings()
    unknown = sorted(set(raw) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")

    sections = {
        name: _parse_section(name, cls, raw.get(name), getattr(base, name))
        for name, cls in _SECTIONS.items()
    }
    settings = EngineSettings(**sections)

    if settings.logging.level.upper() not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")
    return settings


def get_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Build the active settings.

    Order: ``defaults.yaml``, then the optional override file at ``path``,
    then ``LOYALTY_DATABASE_URL`` from the environment.
    """
    env = os.environ if env is None else env

    settings = parse_settings(load_yaml_file(DEFAULTS_PATH))
    if path is not None:
        settings = parse_settings(load_yaml_file(Path(path)), base=settings)

    url = env.get(DATABASE_URL_ENV)
    if url:
        settings = dataclasses.replace(
            settings,
            database=dataclasses.replace(settings.database, url=url),
        )
    return settings
