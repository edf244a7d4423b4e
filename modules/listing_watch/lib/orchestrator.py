"""
Per-user scraping pass: fan out over the user's providers, dedup each
provider's results against its checkpoint, and collect health.

Features:
  - Parallel execution, one task per enabled provider
  - Checkpoint read/compare/write per (user, provider)
  - Provider failures reported to the IterationTracker
  - RepositoryError is fatal and propagates once every task has settled
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from . import logging_bridge
from .checkpoints import compute_new, update_checkpoint
from .errors import InfrastructureError
from .models import Listing, ProviderStatus, User, UserScrapeResult
from .providers.base import ListingProvider

if TYPE_CHECKING:
    from .health import IterationTracker
    from .repository import ListingRepository

LOG = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
DEFAULT_MAX_WORKERS = 8


@dataclass
class _ProviderOutcome:
    listings: list[Listing] = field(default_factory=list)
    new: list[Listing] = field(default_factory=list)
    status: ProviderStatus | None = None
    duration_us: int = 0


class ScrapingOrchestrator:
    def __init__(
        self,
        repository: ListingRepository,
        tracker: IterationTracker,
        max_results: int = DEFAULT_MAX_RESULTS,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.repository = repository
        self.tracker = tracker
        self.max_results = max_results
        self.max_workers = max(1, max_workers)

    # =============================================================================
    # MAIN PASS
    # =============================================================================
    def scrape_for_user(self, user: User, providers: Sequence[ListingProvider]) -> UserScrapeResult:
        start_ns = time.perf_counter_ns()
        enabled = [p for p in providers if p.is_enabled()]
        result = UserScrapeResult(user=user)
        if not enabled:
            LOG.info("User %s has no enabled providers; nothing to do.", user.id)
            return result

        outcomes: dict[int, _ProviderOutcome] = {}
        fatal: InfrastructureError | None = None

        with ThreadPoolExecutor(max_workers=min(len(enabled), self.max_workers)) as pool:
            futures = {pool.submit(self._run_provider, user, p): i for i, p in enumerate(enabled)}
            for fut in as_completed(futures):
                idx = futures[fut]
                try:
                    outcomes[idx] = fut.result()
                except InfrastructureError as e:
                    # Keep draining so every other provider settles first.
                    fatal = fatal or e
                    LOG.error("Repository failure while processing %s for %s: %s", enabled[idx].name, user.id, e)
                except Exception as e:
                    # Provider broke its never-raise contract; count it like a failed scrape.
                    provider = enabled[idx]
                    LOG.exception("Provider %s raised for %s", provider.name, user.id)
                    self.tracker.record_error(provider.name, user.id, e)
                    outcomes[idx] = _ProviderOutcome(
                        status=ProviderStatus.build(provider.name, 0, max(1, provider.consecutive_errors)),
                    )

        if fatal is not None:
            raise fatal

        # ---------------------------------------------------------------------
        # ASSEMBLE IN CONFIGURATION ORDER
        # ---------------------------------------------------------------------
        for idx, provider in enumerate(enabled):
            outcome = outcomes[idx]
            result.all_listings.extend(outcome.listings)
            result.new_listings.extend(outcome.new)
            result.by_provider[provider.name] = outcome.listings
            if outcome.status is not None:
                result.provider_statuses.append(outcome.status)
                if not outcome.status.healthy:
                    LOG.warning(
                        "Provider %s unhealthy for %s (count=%d, consecutive_errors=%d)",
                        provider.name,
                        user.id,
                        outcome.status.last_scrape_count,
                        outcome.status.consecutive_errors,
                    )

        logging_bridge.activity({
            "component": "listing_watch.orchestrator",
            "op": "user_summary",
            "user_id": user.id,
            "found_by_provider": {p.name: len(outcomes[i].listings) for i, p in enumerate(enabled)},
            "new_by_provider": {p.name: len(outcomes[i].new) for i, p in enumerate(enabled)},
            "durations_us": {p.name: outcomes[i].duration_us for i, p in enumerate(enabled)},
            "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
        })
        return result

    # =============================================================================
    # ONE PROVIDER
    # =============================================================================
    def _run_provider(self, user: User, provider: ListingProvider) -> _ProviderOutcome:
        t0 = time.perf_counter_ns()
        listings = provider.scrape(self.max_results)

        if provider.consecutive_errors > 0:
            last = provider.last_error
            self.tracker.record_error(provider.name, user.id, last.error if last else None)

        stored = self.repository.get_checkpoints(user.id, provider.name)
        new = compute_new(listings, stored)
        update_checkpoint(self.repository, user.id, provider.name, listings)

        return _ProviderOutcome(
            listings=listings,
            new=new,
            status=ProviderStatus.build(provider.name, len(listings), provider.consecutive_errors),
            duration_us=int((time.perf_counter_ns() - t0) // 1000),
        )
