"""Tests for environment-driven configuration."""

import pytest

from podtracker.config import Config


class TestConfigDefaults:
    def test_defaults(self):
        config = Config()

        assert config.DATABASE_URL == "sqlite:///./podtracker.db"
        assert config.FEED_CONNECT_TIMEOUT == 15
        assert config.FEED_READ_TIMEOUT == 15
        assert config.FEED_MAX_REDIRECTS == 5
        assert config.REFRESH_INTERVAL_MINUTES == 60
        assert config.DECAY_WINDOW_DAYS == 7
        assert config.STRICT_TRANSITIONS is False

    def test_millisecond_properties(self):
        config = Config()

        assert config.refresh_interval_ms == 60 * 60 * 1000
        assert config.decay_window_ms == 7 * 24 * 60 * 60 * 1000


class TestConfigOverrides:
    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///other.db")
        monkeypatch.setenv("REFRESH_INTERVAL_MINUTES", "30")
        monkeypatch.setenv("DECAY_WINDOW_DAYS", "3")

        config = Config()

        assert config.DATABASE_URL == "sqlite:///other.db"
        assert config.refresh_interval_ms == 30 * 60 * 1000
        assert config.decay_window_ms == 3 * 24 * 60 * 60 * 1000

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("YES", True), ("no", False)])
    def test_bool_parsing(self, monkeypatch, raw, expected):
        monkeypatch.setenv("STRICT_TRANSITIONS", raw)
        assert Config().STRICT_TRANSITIONS is expected

    def test_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("FEED_MAX_REDIRECTS", "many")

        with pytest.raises(ValueError, match="not a valid integer"):
            Config()

    def test_below_minimum(self, monkeypatch):
        monkeypatch.setenv("REFRESH_MAX_WORKERS", "0")

        with pytest.raises(ValueError, match="must be >= 1"):
            Config()

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FEED_USER_AGENT", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("FEED_USER_AGENT=FromFile/1.0\n")

        config = Config(env_file=str(env_file))

        assert config.FEED_USER_AGENT == "FromFile/1.0"
