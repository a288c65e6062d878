from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from floorledger.config import (
    ConfigError,
    Settings,
    factory_today,
    load_settings,
    read_pyproject_settings,
)


def _pyproject(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "pyproject.toml"
    path.write_text(body)
    return path


class TestLoadSettings:
    """Tests for settings precedence: env over pyproject over defaults."""

    def test_defaults(self, tmp_path):
        settings = load_settings(tmp_path, environ={})
        assert settings == Settings()
        assert settings.timezone == "Asia/Dhaka"
        assert settings.match_mode == "strict"

    def test_pyproject_table(self, tmp_path):
        _pyproject(
            tmp_path,
            '[tool.floorledger]\ndb = "plant.db"\nlow_stock_threshold = 25\nmatch_mode = "loose"\n',
        )
        settings = load_settings(tmp_path, environ={})
        assert settings.db == Path("plant.db")
        assert settings.low_stock_threshold == 25
        assert settings.match_mode == "loose"

    def test_env_overrides_pyproject(self, tmp_path):
        _pyproject(tmp_path, '[tool.floorledger]\nmatch_mode = "loose"\n')
        settings = load_settings(
            tmp_path,
            environ={"FLOORLEDGER_MATCH_MODE": "strict", "FLOORLEDGER_LOW_STOCK_THRESHOLD": "5"},
        )
        assert settings.match_mode == "strict"
        assert settings.low_stock_threshold == 5

    def test_empty_env_value_ignored(self, tmp_path):
        settings = load_settings(tmp_path, environ={"FLOORLEDGER_TIMEZONE": ""})
        assert settings.timezone == "Asia/Dhaka"

    def test_unknown_keys_ignored(self, tmp_path):
        path = _pyproject(tmp_path, '[tool.floorledger]\ncolour = "blue"\ndb = "x.db"\n')
        assert read_pyproject_settings(path) == {"db": "x.db"}

    def test_no_table(self, tmp_path):
        path = _pyproject(tmp_path, '[project]\nname = "other"\n')
        assert read_pyproject_settings(path) == {}

    @pytest.mark.parametrize(
        "env",
        [
            {"FLOORLEDGER_TIMEZONE": "Mars/Olympus"},
            {"FLOORLEDGER_MATCH_MODE": "fuzzy"},
            {"FLOORLEDGER_LOW_STOCK_THRESHOLD": "lots"},
        ],
    )
    def test_invalid_values(self, tmp_path, env):
        with pytest.raises(ConfigError):
            load_settings(tmp_path, environ=env)

    def test_invalid_toml(self, tmp_path):
        _pyproject(tmp_path, "[tool.floorledger\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_settings(tmp_path, environ={})


class TestFactoryToday:
    def test_date_rolls_over_in_factory_timezone(self):
        now = datetime(2024, 1, 5, 19, 0, tzinfo=timezone.utc)
        assert factory_today("Asia/Dhaka", now) == date(2024, 1, 6)
        assert factory_today("UTC", now) == date(2024, 1, 5)

    def test_naive_now_is_utc(self):
        assert factory_today("Asia/Dhaka", datetime(2024, 1, 5, 17, 59)) == date(2024, 1, 5)

    def test_settings_today(self):
        now = datetime(2024, 1, 5, 18, 30, tzinfo=timezone.utc)
        assert Settings().today(now) == date(2024, 1, 6)
