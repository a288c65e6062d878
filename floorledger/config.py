"""Project settings.

Precedence (highest first):

1) ``FLOORLEDGER_*`` environment variables. A ``.env`` found by walking
   upward from the CWD is loaded into the environment first.
2) ``[tool.floorledger]`` in ``pyproject.toml`` in the CWD.
3) Built-in defaults.

Example ``pyproject.toml``::

    [tool.floorledger]
    db = "factory.db"
    timezone = "Asia/Dhaka"
    low_stock_threshold = 10
    match_mode = "strict"
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv

from .groups import DEFAULT_LOW_STOCK_THRESHOLD
from .models import MATCH_MODES, MatchMode

log = logging.getLogger(__name__)

ENV_PREFIX = "FLOORLEDGER_"
DEFAULT_DB = "floorledger.db"
DEFAULT_TIMEZONE = "Asia/Dhaka"

_KEYS = ("db", "timezone", "low_stock_threshold", "match_mode")


class ConfigError(ValueError):
    """Raised when a setting has an invalid value."""


@dataclass(frozen=True)
class Settings:
    db: Path = Path(DEFAULT_DB)
    timezone: str = DEFAULT_TIMEZONE
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    match_mode: MatchMode = "strict"

    def today(self, now: datetime | None = None) -> date:
        return factory_today(self.timezone, now)


def load_dotenv_file() -> Path | None:
    """Load ``.env`` by walking upward from the CWD; returns its path if found."""
    found = find_dotenv(usecwd=True)
    if not found:
        return None
    load_dotenv(found)
    return Path(found)


def read_pyproject_settings(pyproject_path: Path) -> dict[str, Any]:
    """Return the ``[tool.floorledger]`` table, or {} when absent."""
    if not pyproject_path.exists():
        return {}
    try:
        data = tomllib.loads(pyproject_path.read_text())
    except OSError as e:
        raise ConfigError(f"Failed to read {pyproject_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {pyproject_path}: {e}") from e
    section = data.get("tool", {}).get("floorledger", {})
    if not isinstance(section, dict):
        raise ConfigError("[tool.floorledger] must be a table.")
    unknown = set(section) - set(_KEYS)
    if unknown:
        log.warning("Ignoring unknown [tool.floorledger] keys: %s", ", ".join(sorted(unknown)))
    return {k: v for k, v in section.items() if k in _KEYS}


def _env_settings(environ: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in _KEYS:
        value = environ.get(ENV_PREFIX + key.upper())
        if value is not None and value != "":
            out[key] = value
    return out


def _build(raw: Mapping[str, Any]) -> Settings:
    kwargs: dict[str, Any] = {}
    if "db" in raw:
        kwargs["db"] = Path(str(raw["db"])).expanduser()
    if "timezone" in raw:
        tz = str(raw["timezone"])
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown timezone: {tz!r}") from e
        kwargs["timezone"] = tz
    if "low_stock_threshold" in raw:
        try:
            kwargs["low_stock_threshold"] = int(raw["low_stock_threshold"])
        except (TypeError, ValueError) as e:
            raise ConfigError(
                f"low_stock_threshold must be an integer, got {raw['low_stock_threshold']!r}"
            ) from e
    if "match_mode" in raw:
        mode = str(raw["match_mode"])
        if mode not in MATCH_MODES:
            raise ConfigError(f"match_mode must be 'strict' or 'loose', got {mode!r}")
        kwargs["match_mode"] = mode
    return Settings(**kwargs)


def load_settings(
    cwd: Path | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Resolve settings from pyproject.toml and the environment."""
    cwd = cwd or Path.cwd()
    if environ is None:
        environ = os.environ
    raw = read_pyproject_settings(cwd / "pyproject.toml")
    raw.update(_env_settings(environ))
    return _build(raw)


def factory_today(tz: str, now: datetime | None = None) -> date:
    """Calendar date in the factory's timezone."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz)).date()
