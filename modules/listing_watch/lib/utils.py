from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Any

_TRUE = frozenset({"1", "true", "yes", "on", "y", "t"})
_FALSE = frozenset({"0", "false", "no", "off", "n", "f"})


def esc(s: object | None) -> str:
    """HTML-escape for Telegram messages and email tables (quotes included)."""
    return "" if s is None else html.escape(str(s), quote=True)


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Env/kwargs flag -> bool. None, "" and unrecognized strings give `default`,
    so a typo in BROWSER_HEADLESS cannot silently open a visible browser.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    s = str(value or "").strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return default


def now_iso() -> str:
    """UTC timestamp, millisecond precision, 'Z' suffix (e.g. 2025-01-01T00:00:00.000Z)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def shorten(text: str | None, limit: int = 60) -> str:
    """Trim long URLs for log lines."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."
