"""Tests for settings loading and log redaction."""

import pytest

from finnotify.config import (
    RealtimeConfig,
    SchedulerConfig,
    Settings,
    WebhooksConfig,
    default_config_dir,
    default_data_dir,
    load_settings,
)
from finnotify.utils.logging import REDACTED, redact_secrets


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    monkeypatch.setenv("FINNOTIFY_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("FINNOTIFY_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("FINNOTIFY_CONFIG", raising=False)


class TestDefaults:
    def test_webhooks(self):
        cfg = WebhooksConfig()
        assert cfg.timeout == 10.0
        assert cfg.failure_threshold == 10
        assert cfg.match_strategy == "query"

    def test_scheduler(self):
        cfg = SchedulerConfig()
        assert cfg.daily_cron == "1 0 * * *"
        assert cfg.monthly_cron == "10 0 1 * *"
        assert cfg.run_daily_on_start is True

    def test_realtime_has_no_default_secrets(self):
        cfg = RealtimeConfig()
        assert cfg.token_secret == ""
        assert cfg.admin_token == ""

    def test_db_path_under_data_dir(self, tmp_path):
        settings = Settings()
        assert settings.get_db_path() == tmp_path / "data" / "finnotify.db"

    def test_explicit_db_path(self, tmp_path):
        settings = Settings(database={"path": str(tmp_path / "x.db")})
        assert settings.get_db_path() == tmp_path / "x.db"

    def test_invalid_strategy_rejected(self):
        with pytest.raises(ValueError):
            WebhooksConfig(match_strategy="fuzzy")


class TestLoadSettings:
    def test_yaml_overlay(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "webhooks:\n"
            "  failure_threshold: 3\n"
            "realtime:\n"
            "  port: 9000\n"
            "log_level: DEBUG\n"
        )
        settings = load_settings(path)
        assert settings.webhooks.failure_threshold == 3
        assert settings.webhooks.timeout == 10.0
        assert settings.realtime.port == 9000
        assert settings.log_level == "DEBUG"

    def test_overrides_win(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("realtime:\n  port: 9000\n  bind: 0.0.0.0\n")
        settings = load_settings(path, realtime={"port": 9100})
        assert settings.realtime.port == 9100
        assert settings.realtime.bind == "0.0.0.0"

    def test_default_location(self, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("webhooks:\n  match_strategy: memory\n")
        assert load_settings().webhooks.match_strategy == "memory"

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.webhooks.failure_threshold == 10

    def test_env_nested(self, monkeypatch):
        monkeypatch.setenv("FINNOTIFY_WEBHOOKS__TIMEOUT", "3.5")
        assert load_settings().webhooks.timeout == 3.5


class TestDirectories:
    def test_override_env(self, tmp_path):
        assert default_config_dir() == tmp_path / "config"
        assert default_data_dir() == tmp_path / "data"

    def test_xdg_fallback(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FINNOTIFY_DATA_DIR")
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
        assert default_data_dir() == tmp_path / "xdg" / "finnotify"

    def test_empty_xdg_uses_home(self, tmp_path, monkeypatch):
        monkeypatch.delenv("FINNOTIFY_CONFIG_DIR")
        monkeypatch.setenv("XDG_CONFIG_HOME", "")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_config_dir() == tmp_path / ".config" / "finnotify"


class TestLogRedaction:
    def redact(self, **fields):
        return redact_secrets(None, "info", {"event": "x", **fields})

    def test_secret_keys(self):
        event = self.redact(secret="abc", admin_token="t", Authorization="Bearer x")
        assert event["secret"] == REDACTED
        assert event["admin_token"] == REDACTED
        assert event["Authorization"] == REDACTED

    def test_token_in_socket_url(self):
        event = self.redact(path="/ws?token=eyJhbGciOi.eyJzdWIi.sig&x=1")
        assert event["path"] == f"/ws?token={REDACTED}&x=1"

    def test_bearer_and_inline_values(self):
        event = self.redact(
            header="Bearer eyJhbGciOi.eyJzdWIi.sig",
            error="bad signature=deadbeef",
        )
        assert "eyJ" not in event["header"]
        assert "deadbeef" not in event["error"]

    def test_other_values_untouched(self):
        event = self.redact(url="https://hooks.example/a", subscription_id=3)
        assert event["url"] == "https://hooks.example/a"
        assert event["subscription_id"] == 3
