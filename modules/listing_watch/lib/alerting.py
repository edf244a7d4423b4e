"""
Admin alerting port.

AdminAlerts is constructed once by the composition root and handed to the
iteration tracker, the watch service and the user directory. It always
records a structured JSONL event; when a transport is configured (the admin
Telegram bot) it also pushes a short human-readable message.
"""

from __future__ import annotations

import logging
import traceback
from typing import Protocol

from . import logging_bridge
from .http_client import HttpClient
from .models import ErrorDetails

LOG = logging.getLogger(__name__)

MAX_MESSAGE_CHARS = 4000
STACK_LINES = 5

TELEGRAM_API = "https://api.telegram.org"


class Transport(Protocol):
    def send(self, text: str) -> None: ...


class TelegramTransport:
    """Send plain-text messages to one chat through the Telegram Bot API."""

    def __init__(self, token: str, chat_id: str | int, http: HttpClient | None = None, *, parse_mode: str | None = None):
        self._token = token
        self.chat_id = chat_id
        self.parse_mode = parse_mode
        self._http = http or HttpClient(timeout=15.0)

    def send(self, text: str) -> None:
        payload: dict[str, object] = {"chat_id": self.chat_id, "text": text, "disable_web_page_preview": True}
        if self.parse_mode:
            payload["parse_mode"] = self.parse_mode
        self._http.post_json(f"{TELEGRAM_API}/bot{self._token}/sendMessage", payload)


def format_error(details: ErrorDetails) -> str:
    header = "🚨 Error"
    if details.source:
        header += f" in {details.source}"
    if details.provider:
        header += f" [{details.provider}]"
    lines = [header, "", f"Type: {details.type}", f"Message: {details.message}"]
    if details.stack:
        trimmed = "\n".join(details.stack.splitlines()[:STACK_LINES])
        lines.append(f"\nStack:\n{trimmed}")
    return "\n".join(lines)[:MAX_MESSAGE_CHARS]


class AdminAlerts:
    def __init__(self, transport: Transport | None = None) -> None:
        self.transport = transport

    # ---- errors ----

    def notify_error(self, details: ErrorDetails) -> None:
        self._send(format_error(details))

    def scraping_error(self, provider: str, error: BaseException | str, user_id: str | None = None, url: str | None = None) -> None:
        """Record a single provider failure (file only; aggregation decides about alerts)."""
        logging_bridge.error({
            "event": "SCRAPING_ERROR",
            "provider": provider,
            "error": str(error),
            "user_id": user_id,
            "url": url,
        })

    def critical_error(self, source: str, error: BaseException | str, context: dict | None = None) -> None:
        message = str(error)
        logging_bridge.error({
            "event": "CRITICAL_ERROR",
            "source": source,
            "error": message,
            "context": context or {},
        })
        stack = None
        if isinstance(error, BaseException):
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.notify_error(
            ErrorDetails(
                type=type(error).__name__ if isinstance(error, BaseException) else "Error",
                message=message,
                source=source,
                stack=stack,
            )
        )

    # ---- lifecycle ----

    def user_registered(self, user_id: str, username: str | None, first_name: str) -> None:
        logging_bridge.activity({"event": "USER_REGISTERED", "user_id": user_id, "username": username, "first_name": first_name})
        name = f"@{username}" if username else first_name
        self._send(f"👤 New user: {name}")

    def search_added(self, user_id: str, user_name: str, provider: str, url: str) -> None:
        logging_bridge.activity({"event": "SEARCH_ADDED", "user_id": user_id, "user_name": user_name, "provider": provider, "url": url})
        self._send(f"➕ {user_name} added {provider} search")

    def search_updated(self, user_id: str, user_name: str, provider: str, url: str) -> None:
        logging_bridge.activity({"event": "SEARCH_UPDATED", "user_id": user_id, "user_name": user_name, "provider": provider, "url": url})
        self._send(f"✏️ {user_name} updated {provider} search")

    def search_removed(self, user_id: str, user_name: str, provider: str, url: str | None = None) -> None:
        logging_bridge.activity({"event": "SEARCH_REMOVED", "user_id": user_id, "user_name": user_name, "provider": provider, "url": url})
        self._send(f"➖ {user_name} removed {provider} search")

    # ---- transport ----

    def _send(self, text: str) -> None:
        if self.transport is None:
            LOG.debug("Admin alert (no transport): %s", text.splitlines()[0] if text else "")
            return
        try:
            self.transport.send(text)
        except Exception as e:
            # Alert delivery must never take the watcher down.
            LOG.error("Failed to send admin notification: %s", e)
