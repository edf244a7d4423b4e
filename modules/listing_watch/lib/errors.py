"""
Error taxonomy for listing scrapes.

Providers never let ScrapeError (or anything else) escape `scrape()`; they
classify it, count it, and return an empty list. InfrastructureError is the
one category that must propagate: a broken repository means checkpoint state
can no longer be trusted.
"""

from __future__ import annotations

from enum import Enum


class ScrapeError(Exception):
    """Base class for failures inside a single provider scrape."""


class TransientNetworkError(ScrapeError):
    """Timeouts, navigation failures, generic network faults. Retried on the next tick only."""


class AccessDenied(ScrapeError):
    """HTTP 403/429, CAPTCHA pages, explicit blocking."""


class DataShapeError(ScrapeError):
    """Zero results, or the expected selector / embedded state is missing."""


class InfrastructureError(Exception):
    """Fatal: must propagate out of the core."""


class RepositoryError(InfrastructureError):
    """The listing repository could not be read or written."""


class Cause(Enum):
    TIMEOUT = ("timeout", "Request timeout - site may be slow or blocking", TransientNetworkError)
    FORBIDDEN = ("forbidden", "HTTP 403 Forbidden - likely IP blocked or bot detection", AccessDenied)
    RATE_LIMITED = ("rate_limited", "HTTP 429 Too Many Requests - rate limited", AccessDenied)
    CAPTCHA = ("captcha", "CAPTCHA detected - bot protection triggered", AccessDenied)
    SELECTOR = ("selector", "Selector not found - site structure may have changed", DataShapeError)
    NAVIGATION = ("navigation", "Navigation failed - network issue or site down", TransientNetworkError)
    ACCESS_DENIED = ("access_denied", "Access denied - likely blocked by the website", AccessDenied)
    UNKNOWN = ("unknown", "Unknown error - check logs for details", ScrapeError)

    def __init__(self, code: str, description: str, category: type[Exception]) -> None:
        self.code = code
        self.description = description
        self.category = category


# Checked in order; first hit wins.
_VOCABULARY: tuple[tuple[tuple[str, ...], Cause], ...] = (
    (("timeout",), Cause.TIMEOUT),
    (("403", "forbidden"), Cause.FORBIDDEN),
    (("429", "too many"), Cause.RATE_LIMITED),
    (("captcha",), Cause.CAPTCHA),
    (("selector", "element"), Cause.SELECTOR),
    (("navigation", "net::"), Cause.NAVIGATION),
    (("blocked", "denied"), Cause.ACCESS_DENIED),
)


def classify_cause(error: BaseException | str) -> Cause:
    """Guess the probable cause of a scrape failure from its message."""
    message = str(error).lower()
    for needles, cause in _VOCABULARY:
        if any(n in message for n in needles):
            return cause
    if isinstance(error, DataShapeError):
        return Cause.SELECTOR
    return Cause.UNKNOWN


def category_name(error: BaseException) -> str:
    """Taxonomy bucket for log records: explicit subclass first, else by message."""
    if isinstance(error, (TransientNetworkError, AccessDenied, DataShapeError, InfrastructureError)):
        return type(error).__name__
    return classify_cause(error).category.__name__
