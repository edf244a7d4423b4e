"""
Notification sinks: where a user's new listings go after a pass.

A sink failure is logged by the caller (WatchService) and never aborts the
cycle; sinks themselves may raise.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from . import render
from .http_client import HttpClient
from .models import Listing, User

LOG = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
_TELEGRAM_USER_RE = re.compile(r"^tg_(-?\d+)$")


class NotificationSink(ABC):
    name: str = "sink"

    @abstractmethod
    def deliver(self, user: User, listings: Sequence[Listing]) -> None:
        raise NotImplementedError


def telegram_chat_id(user_id: str) -> int | None:
    """`tg_123456` -> 123456; any other id scheme -> None."""
    m = _TELEGRAM_USER_RE.match(user_id or "")
    return int(m.group(1)) if m else None


class TelegramNotifier(NotificationSink):
    """One HTML message per new listing, sent to users registered through Telegram."""

    name = "telegram"

    def __init__(self, token: str, http: HttpClient | None = None) -> None:
        self._token = token
        self._http = http or HttpClient(timeout=15.0)

    def deliver(self, user: User, listings: Sequence[Listing]) -> None:
        chat_id = telegram_chat_id(user.id)
        if chat_id is None:
            LOG.debug("User %s is not a Telegram user; skipping Telegram delivery.", user.id)
            return
        for listing in listings:
            self._http.post_json(
                f"{TELEGRAM_API}/bot{self._token}/sendMessage",
                {
                    "chat_id": chat_id,
                    "text": render.telegram_message(listing),
                    "parse_mode": "HTML",
                    "disable_web_page_preview": False,
                },
            )


class EmailNotifier(NotificationSink):
    name = "email"

    def __init__(self, to: Sequence[str], send_html: Callable[..., str] | None = None) -> None:
        self.to = [t for t in to if t]
        if send_html is None:
            from service.emailer import send_html
        self._send_html = send_html

    def deliver(self, user: User, listings: Sequence[Listing]) -> None:
        if not listings or not self.to:
            return
        by_source = render.group_by_source(listings)
        if len(by_source) == 1:
            subject = f"Listing Watch: {len(listings)} new at {next(iter(by_source))}"
        else:
            subject = f"Listing Watch: {len(listings)} new listings ({len(by_source)} providers)"
        html = render.wrap_document(
            render.build_tables(by_source),
            heading=f"New listings for {user.name}",
            intro=f"{len(listings)} new listing(s) since the last check.",
        )
        message_id = self._send_html(subject=subject, html=html, to=self.to)
        LOG.info("Emailed %d listing(s) for %s (%s)", len(listings), user.id, message_id)


class LogNotifier(NotificationSink):
    """Console output through the logging module."""

    name = "log"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOG

    def deliver(self, user: User, listings: Sequence[Listing]) -> None:
        if not listings:
            self.logger.info("No new listings for %s", user.id)
            return
        for listing in listings:
            self.logger.info("New listing for %s\n%s", user.id, render.format_listing(listing, is_new=True))
