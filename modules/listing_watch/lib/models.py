from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# Loosely-typed field bag produced by extraction before normalization.
# Known keys: id, title, price, size, address, link, description, image
RawListing = dict[str, Optional[str]]

RAW_FIELDS = ("id", "title", "price", "size", "address", "link", "description", "image")


@dataclass(frozen=True, slots=True)
class FieldSpec:
    """Parsed field expression: CSS selector plus optional attribute ("*" = container)."""

    selector: str
    attribute: str | None = None


@dataclass(frozen=True)
class Listing:
    """
    Canonical listing as handed to checkpoints and notification sinks.
    `hash` is derived from stable fields only (id, price) so cosmetic text
    changes on the site do not produce a "new" listing.
    """

    id: str
    title: str
    price: str | None
    size: str | None
    address: str | None
    link: str
    description: str | None
    image: str | None
    hash: str
    source: str  # provider display name, e.g. "Immowelt"


@dataclass(frozen=True)
class User:
    id: str  # e.g. "tg_123456" for Telegram users
    name: str
    providers: dict[str, str] = field(default_factory=dict)  # provider key -> search URL


@dataclass(frozen=True)
class ProviderStatus:
    name: str
    enabled: bool
    last_scrape_count: int
    consecutive_errors: int
    healthy: bool

    @classmethod
    def build(cls, name: str, last_scrape_count: int, consecutive_errors: int, enabled: bool = True) -> ProviderStatus:
        # A provider that succeeds with zero listings is treated as a possible silent block.
        return cls(
            name=name,
            enabled=enabled,
            last_scrape_count=last_scrape_count,
            consecutive_errors=consecutive_errors,
            healthy=consecutive_errors == 0 and last_scrape_count > 0,
        )


@dataclass
class UserScrapeResult:
    """Outcome of one user's pass: every listing, the new subset, and per-provider health."""

    user: User
    all_listings: list[Listing] = field(default_factory=list)
    new_listings: list[Listing] = field(default_factory=list)
    by_provider: dict[str, list[Listing]] = field(default_factory=dict)
    provider_statuses: list[ProviderStatus] = field(default_factory=list)


@dataclass(frozen=True)
class ErrorDetails:
    type: str
    message: str
    provider: str | None = None
    source: str | None = None
    stack: str | None = None
