from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .. import logging_bridge
from ..errors import Cause, DataShapeError, InfrastructureError, category_name, classify_cause
from ..health import UNHEALTHY_THRESHOLD
from ..models import Listing, RawListing
from ..normalize import is_valid_listing, normalize_listing
from ..utils import shorten

LOG = logging.getLogger(__name__)


class ListingProvider(ABC):
    """
    Interface every provider variant implements.

    Contract:
      - scrape(max_results) NEVER raises; failures surface as [] plus an
        incremented `consecutive_errors`.
      - is_enabled() is True iff a non-empty search URL is configured.
      - `key` is the configuration key ("immowelt"), `name` the display name
        used as Listing.source and checkpoint key ("Immowelt").
    """

    key: str = ""
    name: str = ""
    kind: str = ""  # "dom" | "api" | "feed" | "embedded"
    url: str = ""

    @abstractmethod
    def scrape(self, max_results: int) -> list[Listing]:
        raise NotImplementedError

    def is_enabled(self) -> bool:
        return bool(self.url)

    @property
    @abstractmethod
    def consecutive_errors(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def last_error(self) -> ProviderError | None:
        raise NotImplementedError


@dataclass(frozen=True)
class ProviderError:
    provider: str
    error: BaseException
    cause: Cause
    timestamp: datetime


class ScrapeRunner:
    """
    Shared scrape pipeline, held by composition inside each provider.

    Steps: fetch raw records -> filter invalid -> truncate -> normalize (+ fixups).
    Owns the provider's consecutive-error counter.
    """

    def __init__(self, name: str, url: str) -> None:
        self.name = name
        self.url = url
        self.consecutive_errors = 0
        self.last_error: ProviderError | None = None

    def run(
        self,
        fetch: Callable[[], Sequence[RawListing]],
        max_results: int,
        *,
        fixup: Callable[[RawListing], RawListing] | None = None,
        empty_is_error: bool = True,
    ) -> list[Listing]:
        start = time.monotonic()
        try:
            raw = list(fetch())
            if not raw:
                if empty_is_error:
                    raise DataShapeError("No listings found - possible blocking or selector change")
                LOG.warning("[%s] No listings returned - possible blocking or API change", self.name)

            valid = [r for r in raw if is_valid_listing(r)]
            if len(valid) < len(raw) * 0.5:
                LOG.warning(
                    "[%s] Many invalid listings filtered out (raw=%d valid=%d)",
                    self.name,
                    len(raw),
                    len(valid),
                )

            listings = [normalize_listing(fixup(dict(r)) if fixup else r, self.name) for r in valid[:max_results]]
        except InfrastructureError:
            # storage failures are not provider failures
            raise
        except Exception as e:
            self.record_failure(e, duration_ms=int((time.monotonic() - start) * 1000))
            return []

        self.record_success()
        LOG.debug("[%s] scraped %d listing(s)", self.name, len(listings))
        return listings

    # ---- error state ----

    def record_success(self) -> None:
        if self.consecutive_errors > 0:
            LOG.info("[%s] Provider recovered after %d consecutive errors", self.name, self.consecutive_errors)
        self.consecutive_errors = 0
        self.last_error = None

    def record_failure(self, error: BaseException, *, duration_ms: int | None = None) -> None:
        self.consecutive_errors += 1
        cause = classify_cause(error)
        self.last_error = ProviderError(
            provider=self.name,
            error=error,
            cause=cause,
            timestamp=datetime.now(timezone.utc),
        )

        LOG.error(
            "[%s] Scraping failed (attempt #%d): %s | possible cause: %s",
            self.name,
            self.consecutive_errors,
            error,
            cause.description,
        )
        logging_bridge.error({
            "component": "listing_watch.provider",
            "op": "scrape",
            "provider": self.name,
            "category": category_name(error),
            "cause": cause.code,
            "error": repr(error),
            "consecutive_errors": self.consecutive_errors,
            "url": shorten(self.url),
            "duration_ms": duration_ms,
        })

        if self.consecutive_errors >= UNHEALTHY_THRESHOLD:
            LOG.warning(
                "ALERT: %s has failed %d times in a row. Possible blocking or site changes! (%s)",
                self.name,
                self.consecutive_errors,
                cause.description,
            )


class RunnerBackedProvider(ListingProvider):
    """
    Thin mixin exposing a ScrapeRunner's counters through the interface.
    Variants still implement `scrape` themselves; each one uses only the
    collaborator matching its strategy (browser, http, location cache).
    """

    _runner: ScrapeRunner

    def __init__(self, url: str, *, browser: Any = None, http: Any = None, location_cache: Any = None) -> None:
        self.url = (url or "").strip()
        self.browser = browser
        self.http = http
        self.location_cache = location_cache
        self._runner = ScrapeRunner(self.name, self.url)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.key} url={shorten(self.url)!r}>"

    @property
    def consecutive_errors(self) -> int:
        return self._runner.consecutive_errors

    @property
    def last_error(self) -> ProviderError | None:
        return self._runner.last_error
