from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import User
from .utils import parse_bool

NOTIFY_CHANNELS = ("telegram", "email", "log")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for the listing watcher.

    Values come from the config file (passed in as kwargs) and fall back to
    the environment, then to the defaults below.
    """

    # Cycle
    interval_seconds: int = 60
    max_results_per_provider: int = 10
    max_overlapping_cycles: int = 10
    executor_workers: int = 8
    timezone: str = "UTC"

    # Storage; None keeps checkpoints in memory only
    sqlite_path: str | None = None

    # Telegram
    telegram_bot_token: str | None = field(default=None, repr=False)
    admin_telegram_bot_token: str | None = field(default=None, repr=False)
    admin_user_id: str | None = None
    alert_on_scraping_errors: bool = True

    # Browser
    headless: bool = True

    # Delivery
    notify: tuple[str, ...] = ("log",)
    email_to: list[str] = field(default_factory=list)

    # Users from config/env; stored users take precedence at runtime
    users: list[User] = field(default_factory=list)

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None = None) -> Settings:
        """
        Build Settings from kwargs with env fallback and validation.

            interval_seconds: int          (env INTERVAL_MS, milliseconds)
            max_results_per_provider: int  (env MAX_RESULTS_PER_PROVIDER)
            sqlite_path: str               (env SQLITE_PATH)
            alert_on_scraping_errors: bool (env ALERT_ON_SCRAPING_ERRORS; only "false" disables)
            headless: bool                 (env BROWSER_HEADLESS)
            notify: list[str]              subset of telegram/email/log
            email_to: list[str] | str      (env EMAIL_TO, comma separated)
            users: list[{id, name, providers}]  (env USERS, JSON)

        Secrets are env-only: TELEGRAM_BOT_TOKEN, ADMIN_TELEGRAM_BOT_TOKEN, ADMIN_USER_ID.
        """
        kw = dict(kwargs or {})
        env = os.environ

        interval = kw.get("interval_seconds")
        if interval is None and env.get("INTERVAL_MS"):
            interval = _int(env["INTERVAL_MS"], "INTERVAL_MS") / 1000
        max_results = kw.get("max_results_per_provider", env.get("MAX_RESULTS_PER_PROVIDER"))

        alert_raw = kw.get("alert_on_scraping_errors", env.get("ALERT_ON_SCRAPING_ERRORS"))
        headless_raw = kw.get("headless", env.get("BROWSER_HEADLESS"))

        users_raw = kw.get("users")
        if users_raw is None and env.get("USERS"):
            try:
                users_raw = json.loads(env["USERS"])
            except json.JSONDecodeError as e:
                raise ConfigError(f"Failed to parse USERS environment variable: {e}") from e

        email_to = kw.get("email_to", env.get("EMAIL_TO"))
        if isinstance(email_to, str):
            email_to = [e.strip() for e in email_to.split(",")]

        sqlite_path = str(kw.get("sqlite_path", env.get("SQLITE_PATH")) or "").strip() or None

        settings = cls(
            interval_seconds=int(float(interval)) if interval is not None else 60,
            max_results_per_provider=_int(max_results, "max_results_per_provider") if max_results is not None else 10,
            max_overlapping_cycles=_int(kw.get("max_overlapping_cycles", 10), "max_overlapping_cycles"),
            executor_workers=_int(kw.get("executor_workers", 8), "executor_workers"),
            timezone=str(kw.get("timezone") or "UTC"),
            sqlite_path=sqlite_path,
            telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
            admin_telegram_bot_token=env.get("ADMIN_TELEGRAM_BOT_TOKEN") or None,
            admin_user_id=env.get("ADMIN_USER_ID") or None,
            alert_on_scraping_errors=_not_false(alert_raw),
            headless=parse_bool(headless_raw, default=True),
            notify=tuple(str(n).strip().lower() for n in (kw.get("notify") or ("log",))),
            email_to=[str(e) for e in (email_to or []) if str(e).strip()],
            users=parse_users(users_raw),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def parse_users(value: Any) -> list[User]:
    """
    Parse a list of user objects.
    Accepts: [{"id": "...", "name": "...", "providers": {"immowelt": "https://..."}}, ...]
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of user objects.")
    out: list[User] = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"users[{i}] must be an object.")
        uid = str(item.get("id") or "").strip()
        if not uid:
            raise ConfigError(f"users[{i}] requires 'id'.")
        providers = item.get("providers") or {}
        if not isinstance(providers, dict):
            raise ConfigError(f"users[{i}].providers must be an object of key -> URL.")
        out.append(
            User(
                id=uid,
                name=str(item.get("name") or uid),
                providers={str(k): str(v or "") for k, v in providers.items()},
            )
        )
    return out


def _int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be an integer, got {value!r}.") from e


def _not_false(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() != "false"


def _validate_settings(s: Settings) -> None:
    if s.interval_seconds <= 0:
        raise ConfigError("'interval_seconds' must be >= 1.")
    if s.max_results_per_provider <= 0:
        raise ConfigError("'max_results_per_provider' must be >= 1.")
    if s.max_overlapping_cycles <= 0:
        raise ConfigError("'max_overlapping_cycles' must be >= 1.")
    if s.executor_workers <= 0:
        raise ConfigError("'executor_workers' must be >= 1.")
    unknown = [n for n in s.notify if n not in NOTIFY_CHANNELS]
    if unknown:
        raise ConfigError(f"Unknown notify channel(s): {unknown}; expected any of {list(NOTIFY_CHANNELS)}.")
    if "telegram" in s.notify and not s.telegram_bot_token:
        raise ConfigError("notify includes 'telegram' but TELEGRAM_BOT_TOKEN is not set.")
    if "email" in s.notify and not s.email_to:
        raise ConfigError("notify includes 'email' but no 'email_to' recipients are configured.")
    seen: set[str] = set()
    for u in s.users:
        if u.id in seen:
            raise ConfigError(f"Duplicate user id {u.id!r}.")
        seen.add(u.id)
