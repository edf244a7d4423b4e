# tests/test_config.py
import json

import pytest

from modules.listing_watch.lib.config import ConfigError, Settings, parse_users
from service import config_schema


@pytest.fixture
def write_config(tmp_path):
    def _write(content, name="config.yml"):
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return str(path)

    return _write


# ---------------------------------------------------------------------
# config_schema: file loading + structural validation
# ---------------------------------------------------------------------
def test_load_yaml_config_normalizes_present_keys(write_config):
    path = write_config(
        """
timezone: Europe/Berlin
interval_seconds: "120"
headless: "false"
notify: [log]
users:
  - id: tg_1
    name: Anna
    providers:
      immowelt: https://www.immowelt.de/classified-search?locations=AD08DE6345
"""
    )
    cfg = config_schema.load_config(path)
    config_schema.validate(cfg)
    assert cfg["timezone"] == "Europe/Berlin"
    assert cfg["interval_seconds"] == 120
    assert cfg["headless"] is False
    assert "max_results_per_provider" not in cfg


def test_load_json_config_via_config_path_env(write_config, monkeypatch):
    path = write_config(json.dumps({"sqlite_path": "/tmp/x.db"}), name="config.json")
    monkeypatch.setenv("CONFIG_PATH", path)
    cfg = config_schema.load_config()
    assert cfg["sqlite_path"] == "/tmp/x.db"


def test_load_without_path_gives_defaults(monkeypatch):
    monkeypatch.setenv("TZ", "Europe/Berlin")
    assert config_schema.load_config() == {"timezone": "Europe/Berlin"}


def test_email_to_env_is_resolved_and_hidden(write_config, monkeypatch):
    monkeypatch.setenv("WATCH_RECIPIENTS", "a@example.com, b@example.com")
    cfg = config_schema.load_config(write_config("email_to_env: WATCH_RECIPIENTS\nnotify: [email]\n"))
    assert cfg["email_to"] == ["a@example.com", "b@example.com"]
    assert "email_to_env" not in cfg


@pytest.mark.parametrize(
    "content,message",
    [
        ("[1, 2]", "mapping"),
        ("interval_seconds: 0", ">= 1"),
        ("headless: maybe", "boolean"),
        ("polling: 5", "Unknown top-level key"),
    ],
)
def test_invalid_files_raise_config_error(write_config, content, message):
    with pytest.raises(config_schema.ConfigError, match=message):
        config_schema.validate(config_schema.load_config(write_config(content)))


def test_missing_file_and_bad_json(write_config, tmp_path):
    with pytest.raises(config_schema.ConfigError, match="not found"):
        config_schema.load_config(str(tmp_path / "missing.yml"))
    with pytest.raises(config_schema.ConfigError, match="Invalid JSON"):
        config_schema.load_config(write_config("{nope", name="config.json"))


@pytest.mark.parametrize(
    "cfg",
    [
        {"notify": ["sms"]},
        {"notify": "log"},
        {"sqlite_path": "  "},
        {"users": [{"name": "no id"}]},
        {"users": [{"id": "a"}, {"id": "a"}]},
        {"users": [{"id": "a", "providers": ["https://x"]}]},
        {"users": [{"id": "a", "providers": {"immowelt": 5}}]},
    ],
)
def test_validate_rejects_bad_structures(cfg):
    with pytest.raises(config_schema.ConfigError):
        config_schema.validate(cfg)


# ---------------------------------------------------------------------
# Settings: kwargs + env fallback
# ---------------------------------------------------------------------
def test_settings_defaults():
    s = Settings.from_env_and_kwargs({})
    assert s.interval_seconds == 60
    assert s.max_results_per_provider == 10
    assert s.max_overlapping_cycles == 10
    assert s.headless is True
    assert s.alert_on_scraping_errors is True
    assert s.notify == ("log",)
    assert s.sqlite_path is None
    assert s.users == []


def test_settings_env_fallbacks(monkeypatch):
    monkeypatch.setenv("INTERVAL_MS", "90000")
    monkeypatch.setenv("MAX_RESULTS_PER_PROVIDER", "5")
    monkeypatch.setenv("SQLITE_PATH", "/data/watch.db")
    monkeypatch.setenv("BROWSER_HEADLESS", "false")
    monkeypatch.setenv("ALERT_ON_SCRAPING_ERRORS", "false")
    monkeypatch.setenv("USERS", json.dumps([{"id": "tg_1", "name": "Anna", "providers": {"immonet": "https://x"}}]))

    s = Settings.from_env_and_kwargs({})
    assert s.interval_seconds == 90
    assert s.max_results_per_provider == 5
    assert s.sqlite_path == "/data/watch.db"
    assert s.headless is False
    assert s.alert_on_scraping_errors is False
    assert s.users[0].providers == {"immonet": "https://x"}


def test_kwargs_win_over_env(monkeypatch):
    monkeypatch.setenv("INTERVAL_MS", "90000")
    monkeypatch.setenv("SQLITE_PATH", "/data/env.db")
    s = Settings.from_env_and_kwargs({"interval_seconds": 30, "sqlite_path": "/data/cfg.db"})
    assert s.interval_seconds == 30
    assert s.sqlite_path == "/data/cfg.db"


def test_only_literal_false_disables_scraping_alerts(monkeypatch):
    monkeypatch.setenv("ALERT_ON_SCRAPING_ERRORS", "0")
    assert Settings.from_env_and_kwargs({}).alert_on_scraping_errors is True


def test_unrecognized_headless_value_keeps_browser_hidden(monkeypatch):
    monkeypatch.setenv("BROWSER_HEADLESS", "sometimes")
    assert Settings.from_env_and_kwargs({}).headless is True


def test_secrets_are_env_only_and_not_in_repr(monkeypatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:secret")
    s = Settings.from_env_and_kwargs({"notify": ["telegram"]})
    assert s.telegram_bot_token == "123:secret"
    assert "123:secret" not in repr(s)


@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"notify": ["telegram"]}, "TELEGRAM_BOT_TOKEN"),
        ({"notify": ["email"]}, "email_to"),
        ({"notify": ["fax"]}, "Unknown notify channel"),
        ({"max_results_per_provider": 0}, "max_results_per_provider"),
        ({"users": [{"id": "a"}, {"id": "a"}]}, "Duplicate"),
    ],
)
def test_settings_validation(kwargs, message):
    with pytest.raises(ConfigError, match=message):
        Settings.from_env_and_kwargs(kwargs)


def test_email_to_from_env_string(monkeypatch):
    monkeypatch.setenv("EMAIL_TO", "a@example.com, b@example.com")
    s = Settings.from_env_and_kwargs({"notify": ["email"]})
    assert s.email_to == ["a@example.com", "b@example.com"]


def test_bad_users_env_is_a_config_error(monkeypatch):
    monkeypatch.setenv("USERS", "[not json")
    with pytest.raises(ConfigError, match="USERS"):
        Settings.from_env_and_kwargs({})


def test_parse_users_defaults_name_to_id():
    (u,) = parse_users([{"id": "tg_9", "providers": {"sparkasse": None}}])
    assert u.name == "tg_9"
    assert u.providers == {"sparkasse": ""}
