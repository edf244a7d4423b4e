"""
One polling cycle across all users.

WatchService is the long-lived object the scheduler ticks: it owns the
shared browser / HTTP client, caches provider instances across cycles (so
their error counters persist), and hands each user's new listings to the
configured notification sinks.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from . import logging_bridge, render
from .errors import InfrastructureError
from .health import IterationTracker
from .models import User, UserScrapeResult
from .notify import NotificationSink
from .orchestrator import ScrapingOrchestrator
from .providers import create_providers_for_config
from .providers.base import ListingProvider
from .repository import ListingRepository

LOG = logging.getLogger(__name__)

ProviderFactory = Callable[[Mapping[str, str]], list[ListingProvider]]


class WatchService:
    def __init__(
        self,
        *,
        repository: ListingRepository,
        orchestrator: ScrapingOrchestrator,
        tracker: IterationTracker,
        alerts: Any,
        sinks: Sequence[NotificationSink] = (),
        fallback_users: Sequence[User] = (),
        browser: Any = None,
        http: Any = None,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self.repository = repository
        self.orchestrator = orchestrator
        self.tracker = tracker
        self.alerts = alerts
        self.sinks = list(sinks)
        self.fallback_users = list(fallback_users)
        self.browser = browser
        self.http = http
        self._provider_factory = provider_factory or self._default_factory
        self._providers: dict[tuple[str, str, str], ListingProvider | None] = {}
        self.cycles = 0

    # ---- users & providers ----

    def load_users(self) -> list[User]:
        """Stored users with at least one search; configured users when none are stored."""
        get_all = getattr(self.repository, "get_all_users", None)
        stored = [u for u in get_all() if u.providers] if get_all else []
        if stored:
            return stored
        if self.fallback_users:
            LOG.debug("No stored users; using %d configured user(s).", len(self.fallback_users))
        return list(self.fallback_users)

    def providers_for(self, user: User) -> list[ListingProvider]:
        out: list[ListingProvider] = []
        for key, url in user.providers.items():
            cache_key = (user.id, key.strip().lower(), (url or "").strip())
            if cache_key not in self._providers:
                created = self._provider_factory({key: url})
                self._providers[cache_key] = created[0] if created else None
            provider = self._providers[cache_key]
            if provider is not None:
                out.append(provider)
        return out

    def _default_factory(self, config: Mapping[str, str]) -> list[ListingProvider]:
        location_cache = self.repository if hasattr(self.repository, "get_cached_location") else None
        return create_providers_for_config(
            config, browser=self.browser, http=self.http, location_cache=location_cache
        )

    # ---- cycle ----

    def run_cycle(self) -> list[UserScrapeResult]:
        started = time.monotonic()
        self.cycles += 1
        self.tracker.start_iteration()
        results: list[UserScrapeResult] = []

        try:
            for user in self.load_users():
                result = self.orchestrator.scrape_for_user(user, self.providers_for(user))
                results.append(result)
                LOG.info(
                    "User %s: %d listing(s), %d new. %s",
                    user.id,
                    len(result.all_listings),
                    len(result.new_listings),
                    render.format_provider_health(result.provider_statuses),
                )
                self._deliver(result)
        except InfrastructureError as e:
            LOG.error("Cycle %d aborted: %s", self.cycles, e)
            self.alerts.critical_error("ScrapingService", e, {"cycle": self.cycles})
            raise

        self.tracker.end_iteration()
        logging_bridge.activity({
            "component": "listing_watch.watch",
            "op": "cycle",
            "cycle": self.cycles,
            "users": len(results),
            "new_total": sum(len(r.new_listings) for r in results),
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return results

    def _deliver(self, result: UserScrapeResult) -> None:
        if not result.new_listings:
            return
        for sink in self.sinks:
            try:
                sink.deliver(result.user, result.new_listings)
            except Exception as e:
                LOG.error("Failed to deliver %d listing(s) via %s for %s: %s",
                          len(result.new_listings), sink.name, result.user.id, e)
                logging_bridge.error({
                    "component": "listing_watch.watch",
                    "op": "deliver",
                    "sink": sink.name,
                    "user_id": result.user.id,
                    "error": repr(e),
                })

    # ---- lifecycle ----

    def close(self) -> None:
        """Release the HTTP client and, last, the browser."""
        if self.http is not None:
            self.http.close()
        if self.browser is not None:
            self.browser.close()
