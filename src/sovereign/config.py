"""Sovereign filter configuration loading and validation.

Reads sovereign.toml from a config directory, parses the ``[sovereign]``
section, and returns a validated FilterConfig dataclass.  A missing
``[sovereign]`` section yields the defaults (filter disabled).
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from croniter import croniter

CONFIG_FILENAME = "sovereign.toml"

# Daily at 09:00.
DEFAULT_BATCH_SCHEDULE = "0 9 * * *"
DEFAULT_NUDGE_AFTER_SILENT_HOURS = 72

# Environment fallbacks for the database connection, in lookup order.
DATABASE_URL_ENV_VARS: tuple[str, ...] = ("SOVEREIGN_DATABASE_URL", "DATABASE_URL")

# Matches ${VAR_NAME}; names are alphanumeric plus underscore.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when filter configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [sovereign.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class FilterConfig:
    """Runtime configuration for the sovereign filter.

    ``batch_schedule`` is a cron expression for batch delivery of known-human
    messages.  It is validated here but never executed by the filter; the
    delivery scheduler lives outside this package.

    ``database_url`` overrides the connection string; when unset the
    ``SOVEREIGN_DATABASE_URL`` / ``DATABASE_URL`` environment is used.
    """

    enabled: bool = False
    batch_schedule: str = DEFAULT_BATCH_SCHEDULE
    nudge_after_silent_hours: int = DEFAULT_NUDGE_AFTER_SILENT_HOURS
    database_url: str | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)


DEFAULT_FILTER_CONFIG = FilterConfig()


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _parse_logging(section: dict[str, Any]) -> LoggingConfig:
    """Parse the optional [sovereign.logging] sub-section."""
    level = str(section.get("level", "INFO")).upper()
    fmt = str(section.get("format", "text")).lower()
    if fmt not in ("text", "json"):
        raise ConfigError(f"Invalid sovereign.logging.format: {fmt!r}. Expected 'text' or 'json'.")
    return LoggingConfig(level=level, format=fmt, log_root=section.get("log_root"))


def parse_filter_config(raw: dict[str, Any] | None) -> FilterConfig:
    """Parse and validate a ``[sovereign]`` table.

    Parameters
    ----------
    raw:
        The parsed ``[sovereign]`` table, or ``None`` for defaults.

    Raises
    ------
    ConfigError
        If any value has the wrong type or fails validation.
    """
    if raw is None:
        return FilterConfig()
    if not isinstance(raw, dict):
        raise ConfigError("[sovereign] must be a TOML table")

    enabled = raw.get("enabled", False)
    if not isinstance(enabled, bool):
        raise ConfigError(f"sovereign.enabled must be a boolean, got {enabled!r}")

    batch_schedule = raw.get("batch_schedule", DEFAULT_BATCH_SCHEDULE)
    if not isinstance(batch_schedule, str) or not croniter.is_valid(batch_schedule):
        raise ConfigError(
            f"Invalid sovereign.batch_schedule: {batch_schedule!r}. Expected a cron expression."
        )

    raw_hours = raw.get("nudge_after_silent_hours", DEFAULT_NUDGE_AFTER_SILENT_HOURS)
    if isinstance(raw_hours, bool) or not isinstance(raw_hours, int) or raw_hours <= 0:
        raise ConfigError(
            f"Invalid sovereign.nudge_after_silent_hours: {raw_hours!r}. "
            "Must be a positive integer."
        )

    database_url = raw.get("database_url")
    if database_url is not None:
        if not isinstance(database_url, str):
            raise ConfigError("sovereign.database_url must be a string when set")
        database_url = database_url.strip() or None

    logging_section = raw.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("[sovereign.logging] must be a TOML table")

    return FilterConfig(
        enabled=enabled,
        batch_schedule=batch_schedule,
        nudge_after_silent_hours=raw_hours,
        database_url=database_url,
        logging=_parse_logging(logging_section),
    )


def load_config(config_dir: Path) -> FilterConfig:
    """Load and validate ``sovereign.toml`` from *config_dir*.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or fails validation.
    """
    toml_path = Path(config_dir) / CONFIG_FILENAME

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    data = resolve_env_vars(data)
    return parse_filter_config(data.get("sovereign"))


def resolve_database_url(config: FilterConfig | None = None) -> str:
    """Return the connection string: config override, then environment.

    Raises
    ------
    ConfigError
        If neither the config nor the environment provides one.
    """
    if config is not None and config.database_url:
        return config.database_url
    for var_name in DATABASE_URL_ENV_VARS:
        value = os.environ.get(var_name)
        if value:
            return value
    raise ConfigError(
        "SOVEREIGN_DATABASE_URL is required for the sovereign filter storage backend"
    )
