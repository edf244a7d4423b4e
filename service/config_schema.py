# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


@dataclass
class _LoadResult:
    cfg: dict[str, Any]
    source: str


_INT_FIELDS = ("interval_seconds", "max_results_per_provider", "max_overlapping_cycles", "executor_workers")
_BOOL_FIELDS = ("alert_on_scraping_errors", "headless")
_NOTIFY_CHANNELS = ("telegram", "email", "log")
_KNOWN_KEYS = {
    "timezone",
    "sqlite_path",
    "email_to",
    "email_to_env",
    "users",
    "notify",
    *_INT_FIELDS,
    *_BOOL_FIELDS,
}


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the watcher configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Defaults only (users then come from the database or USERS env)

    Only keys present in the file are normalized. Missing values are left
    out so Settings can still fill them from env (INTERVAL_MS, USERS, ...).
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _read_any(resolved_path).cfg
    return _normalize_top_level(cfg)


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    unknown = sorted(set(cfg) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"Unknown top-level key(s): {unknown}")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    for n in _INT_FIELDS:
        if n in cfg:
            _to_int(cfg[n], field=n)
    for b in _BOOL_FIELDS:
        if b in cfg:
            _to_bool(cfg[b], field=b)

    sqlite_path = cfg.get("sqlite_path")
    if sqlite_path is not None and (not isinstance(sqlite_path, str) or not sqlite_path.strip()):
        raise ConfigError("'sqlite_path' must be a non-empty string if provided.")

    notify = cfg.get("notify", [])
    if not isinstance(notify, list):
        raise ConfigError("'notify' must be a list.")
    for i, ch in enumerate(notify):
        if ch not in _NOTIFY_CHANNELS:
            raise ConfigError(f"notify[{i}] must be one of {list(_NOTIFY_CHANNELS)} (got {ch!r}).")

    # "email" without email_to is checked by Settings, which can still read EMAIL_TO
    if "email_to" in cfg:
        _as_str_list(cfg["email_to"], field="email_to")

    _validate_users(cfg.get("users", []))


def _validate_users(users: Any) -> None:
    if not isinstance(users, list):
        raise ConfigError("'users' must be a list.")
    seen: set[str] = set()
    for idx, user in enumerate(users):
        if not isinstance(user, dict):
            raise ConfigError(f"User at index {idx} must be an object/dict.")
        uid = user.get("id")
        if not isinstance(uid, str) or not uid.strip():
            raise ConfigError(f"User {idx}: 'id' is required and must be a non-empty string.")
        if uid in seen:
            raise ConfigError(f"Duplicate user id '{uid}'.")
        seen.add(uid)
        if "name" in user and not isinstance(user["name"], str):
            raise ConfigError(f"User '{uid}': 'name' must be a string if provided.")
        providers = user.get("providers", {})
        if not isinstance(providers, dict):
            raise ConfigError(f"User '{uid}': 'providers' must be an object of provider key -> search URL.")
        for key, url in providers.items():
            if not isinstance(key, str) or not key.strip():
                raise ConfigError(f"User '{uid}': provider keys must be non-empty strings.")
            if url is not None and not isinstance(url, str):
                raise ConfigError(f"User '{uid}': providers.{key} must be a URL string.")


def _normalize_top_level(cfg: dict[str, Any]) -> dict[str, Any]:
    out = dict(cfg)

    tz = out.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        out["timezone"] = os.environ.get("TZ", "UTC")

    # Resolve email_to_env -> email_to and hide the variable name
    env_key = out.pop("email_to_env", None)
    if isinstance(env_key, str) and env_key.strip():
        value = os.getenv(env_key.strip(), "")
        out["email_to"] = [e.strip() for e in value.split(",") if e.strip()]
    if "email_to" in out:
        out["email_to"] = _as_str_list(out["email_to"], field="email_to")

    for n in _INT_FIELDS:
        if n in out:
            out[n] = _to_int(out[n], field=n)
    for b in _BOOL_FIELDS:
        if b in out:
            out[b] = _to_bool(out[b], field=b)
    return out


def _as_str_list(value: Any, *, field: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    if isinstance(value, list):
        out: list[str] = []
        for i, item in enumerate(value):
            if not isinstance(item, str) or not item.strip():
                raise ConfigError(f"{field}[{i}] must be a non-empty string.")
            out.append(item.strip())
        return out
    raise ConfigError(f"'{field}' must be a string or list of strings.")


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"'{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field}' must be an integer.")
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err
    if iv < 1:
        raise ConfigError(f"'{field}' must be >= 1 (got {iv}).")
    return iv


def _read_any(path: str) -> _LoadResult:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML must be a mapping/object.")
        return _LoadResult(cfg=data, source=path)

    # JSON for .json and unknown extensions
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}. Use .json or .yml/.yaml.") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level JSON must be an object.")
    return _LoadResult(cfg=data, source=path)
