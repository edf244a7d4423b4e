# service/logging_utils.py
"""
Structured JSONL logs (activity + error), one file per prefix and day.

Settings are read from the environment on every call so tests and the CLI
can point LOG_DIR somewhere else after import:

  LOG_DIR                 base directory (default /app/local/logs)
  ACTIVITY_LOG_PREFIX     default "activity"
  ERROR_LOG_PREFIX        default "error"
  ACTIVITY_LOG_MAX_BYTES  size rotation threshold; <= 0 disables
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

REDACTED = "***REDACTED***"

# Case-insensitive substrings of key names whose values are never written.
_DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "smtp_",
    "authorization",
    "cookie",
})

_HOSTNAME = socket.gethostname()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one activity record. Never mutates `record`.
    Raises OSError when the log directory is unusable.
    """
    _write_jsonl(_path_for_today(_activity_prefix()), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one error record, parallel to the activity log."""
    _write_jsonl(_path_for_today(_error_prefix()), record)


def get_activity_log_path() -> str:
    return _path_for_today(_activity_prefix())


def get_error_log_path() -> str:
    return _path_for_today(_error_prefix())


def redact(record: dict[str, Any], keys: Iterable[str] | None = None) -> dict[str, Any]:
    """Deep copy of `record` with secret-looking keys and bearer tokens scrubbed."""
    return _redact_deep(record, tuple(keys or _DEFAULT_REDACT_KEYS))


# ---- Env ---------------------------------------------------------------------


def _log_dir() -> str:
    return os.getenv("LOG_DIR", "/app/local/logs")


def _activity_prefix() -> str:
    return os.getenv("ACTIVITY_LOG_PREFIX", "activity")


def _error_prefix() -> str:
    return os.getenv("ERROR_LOG_PREFIX", "error")


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


# ---- Internals ---------------------------------------------------------------


def _path_for_today(prefix: str) -> str:
    return os.path.join(_log_dir(), f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def _rotate_if_needed(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    stamp = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{stamp}")


def _scrub_bearer(value: str) -> str:
    if "bearer " not in value.lower():
        return value
    scheme, _, _rest = value.partition(" ")
    return f"{scheme} {REDACTED}"


def _redact_deep(value: Any, patterns: tuple[str, ...]) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and any(p in k.lower() for p in patterns) else _redact_deep(v, patterns)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_deep(v, patterns) for v in value)
    if isinstance(value, str):
        return _scrub_bearer(value)
    return value


def _encode(record: dict[str, Any]) -> bytes:
    payload = dict(_redact_deep(record, tuple(_DEFAULT_REDACT_KEYS)))
    payload["_meta"] = {"host": _HOSTNAME, "pid": os.getpid()}
    # default=str keeps odd values (datetimes, exceptions) from breaking a log line
    return (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")


def _append(path: str, data: bytes) -> None:
    # O_APPEND makes the single write atomic on POSIX.
    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    data = _encode(record)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    _rotate_if_needed(path)
    try:
        _append(path, data)
    except OSError:
        # One retry for transient failures (directory removed under us, etc.).
        os.makedirs(os.path.dirname(path), exist_ok=True)
        _append(path, data)
