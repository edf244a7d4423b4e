"""
Provider health and iteration-level failure aggregation.

Per provider:   HEALTHY -> DEGRADED (>=1 failure) -> UNHEALTHY (>= UNHEALTHY_THRESHOLD)
                and back to HEALTHY on the next successful scrape.

Per cycle:      IterationTracker collects provider errors (provider -> distinct
                user keys). After ITERATION_ALERT_THRESHOLD failing cycles in a
                row it sends exactly one aggregate alert for the streak.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import TYPE_CHECKING

from .models import ErrorDetails

if TYPE_CHECKING:
    from .alerting import AdminAlerts

LOG = logging.getLogger(__name__)

UNHEALTHY_THRESHOLD = 3
ITERATION_ALERT_THRESHOLD = 4


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


def health_state(consecutive_errors: int, threshold: int = UNHEALTHY_THRESHOLD) -> HealthState:
    if consecutive_errors <= 0:
        return HealthState.HEALTHY
    if consecutive_errors >= threshold:
        return HealthState.UNHEALTHY
    return HealthState.DEGRADED


class IterationTracker:
    """
    Cross-provider, cross-user failure aggregation for one polling loop.

    `record_error` is called from provider worker threads, so the error map
    is guarded by a lock. start/end are called by the cycle driver.
    """

    def __init__(
        self,
        alerts: AdminAlerts | None = None,
        *,
        threshold: int = ITERATION_ALERT_THRESHOLD,
        alerts_enabled: bool = True,
    ) -> None:
        self.alerts = alerts
        self.threshold = threshold
        self.alerts_enabled = alerts_enabled
        self._lock = threading.Lock()
        self._errors: dict[str, set[str]] = {}
        self.consecutive_failed_iterations = 0
        self.notified_for_current_streak = False

    def start_iteration(self) -> None:
        with self._lock:
            self._errors = {}

    def record_error(self, provider: str, user_key: str | None, error: BaseException | str | None = None) -> None:
        key = user_key or "unknown"
        with self._lock:
            self._errors.setdefault(provider, set()).add(key)
        if self.alerts is not None and error is not None:
            self.alerts.scraping_error(provider, error, user_id=key)

    def errors_snapshot(self) -> dict[str, set[str]]:
        with self._lock:
            return {p: set(users) for p, users in self._errors.items()}

    def end_iteration(self) -> ErrorDetails | None:
        """Close the cycle. Returns the aggregate alert if one was sent now."""
        errors = self.errors_snapshot()
        if not errors:
            if self.consecutive_failed_iterations:
                LOG.info("Clean iteration after %d failing one(s); streak reset.", self.consecutive_failed_iterations)
            self.consecutive_failed_iterations = 0
            self.notified_for_current_streak = False
            return None

        self.consecutive_failed_iterations += 1
        LOG.warning(
            "Iteration finished with errors (%d in a row): %s",
            self.consecutive_failed_iterations,
            {p: len(u) for p, u in errors.items()},
        )
        if (
            self.consecutive_failed_iterations < self.threshold
            or self.notified_for_current_streak
            or not self.alerts_enabled
        ):
            return None

        self.notified_for_current_streak = True
        details = build_iteration_alert(self.consecutive_failed_iterations, errors)
        if self.alerts is not None:
            self.alerts.notify_error(details)
        return details


def build_iteration_alert(streak: int, errors: dict[str, set[str]]) -> ErrorDetails:
    provider_summary = ", ".join(f"{p}: {len(users)}" for p, users in errors.items())
    total_users = len(set().union(*errors.values())) if errors else 0
    return ErrorDetails(
        type="ScrapingError",
        message=(
            f"{streak} consecutive iterations with errors.\n"
            f"{total_users} users affected in last iteration.\n"
            f"By provider: {provider_summary}"
        ),
        provider="Multiple",
        source="Scraper",
    )
