from __future__ import annotations

from typing import Any

from .lib.alerting import AdminAlerts, TelegramTransport
from .lib.browser import BrowserService
from .lib.config import Settings
from .lib.health import IterationTracker
from .lib.http_client import HttpClient
from .lib.logging_bridge import activity as log_activity
from .lib.models import UserScrapeResult
from .lib.notify import EmailNotifier, LogNotifier, NotificationSink, TelegramNotifier
from .lib.orchestrator import ScrapingOrchestrator
from .lib.repository import InMemoryListingRepository, ListingRepository, SqliteListingRepository
from .lib.watch import WatchService


def build_repository(settings: Settings) -> ListingRepository:
    if settings.sqlite_path:
        return SqliteListingRepository(settings.sqlite_path)
    return InMemoryListingRepository()


def build_alerts(settings: Settings, http: HttpClient) -> AdminAlerts:
    transport = None
    if settings.admin_telegram_bot_token and settings.admin_user_id:
        transport = TelegramTransport(settings.admin_telegram_bot_token, settings.admin_user_id, http)
    return AdminAlerts(transport)


def build_sinks(settings: Settings, http: HttpClient) -> list[NotificationSink]:
    sinks: list[NotificationSink] = []
    for channel in settings.notify:
        if channel == "telegram" and settings.telegram_bot_token:
            sinks.append(TelegramNotifier(settings.telegram_bot_token, http))
        elif channel == "email":
            sinks.append(EmailNotifier(settings.email_to))
        elif channel == "log":
            sinks.append(LogNotifier())
    return sinks


def build_service(settings: Settings) -> WatchService:
    """Composition root: wire every collaborator of the watcher from Settings."""
    http = HttpClient()
    browser = BrowserService(headless=settings.headless)
    repository = build_repository(settings)
    alerts = build_alerts(settings, http)
    tracker = IterationTracker(alerts, alerts_enabled=settings.alert_on_scraping_errors)
    orchestrator = ScrapingOrchestrator(
        repository,
        tracker,
        max_results=settings.max_results_per_provider,
        max_workers=settings.executor_workers,
    )
    return WatchService(
        repository=repository,
        orchestrator=orchestrator,
        tracker=tracker,
        alerts=alerts,
        sinks=build_sinks(settings, http),
        fallback_users=settings.users,
        browser=browser,
        http=http,
    )


def run(**kwargs: Any) -> list[UserScrapeResult]:
    """
    Entry point for a single 'listing_watch' cycle.

    Accepts the same keys as the config file (interval_seconds,
    max_results_per_provider, sqlite_path, headless, notify, email_to,
    users, ...). Builds a fresh service, runs one cycle and closes it.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "listing_watch.main",
        "op": "start",
        "users": [u.id for u in settings.users],
        "sqlite": bool(settings.sqlite_path),
        "notify": list(settings.notify),
    })

    service = build_service(settings)
    try:
        return service.run_cycle()
    finally:
        service.close()
