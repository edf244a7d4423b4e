"""
Normalization helpers shared by every provider variant.

All of these are plain functions over RawListing / URL strings so providers
compose them instead of inheriting them.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from decimal import Decimal
from urllib.parse import parse_qsl, unquote, urlencode, urljoin, urlsplit, urlunsplit

from .hashing import build_hash
from .models import Listing, RawListing

_ADDRESS_TAIL_RE = re.compile(r"\(.*\),.*$")

# Query parameters that identify a browsing session rather than a search.
SESSION_PARAMS = ("enteredFrom", "sessionid", "sid", "utm_")


# ---- Records -----------------------------------------------------------------


def is_valid_listing(raw: RawListing) -> bool:
    """A record needs a usable link plus a title or a price."""
    link = raw.get("link")
    return bool(link and "undefined" not in link and (raw.get("title") or raw.get("price")))


def clean_title(title: str | None) -> str:
    # Portals prefix fresh ads with a "NEU" badge; only the first one is removed.
    return (title or "").replace("NEU", "", 1).strip() or "N/A"


def clean_address(address: str | None) -> str:
    return _ADDRESS_TAIL_RE.sub("", address or "", count=1).strip() or "N/A"


def normalize_listing(raw: RawListing, source: str) -> Listing:
    """Turn a raw field bag into a canonical Listing owned by `source`."""
    listing_hash = build_hash(raw.get("id"), raw.get("price"))
    return Listing(
        id=raw.get("id") or listing_hash,
        title=clean_title(raw.get("title")),
        price=raw.get("price") or None,
        size=raw.get("size") or None,
        address=clean_address(raw.get("address")),
        link=raw.get("link") or "",
        description=raw.get("description") or None,
        image=raw.get("image") or None,
        hash=listing_hash,
        source=source,
    )


def absolute_link(link: str | None, base_url: str) -> str | None:
    """Resolve a relative link against the provider's site root; absolute links pass through."""
    if not link:
        return link
    if link.startswith(("http://", "https://")):
        return link
    if link.startswith("//"):
        return "https:" + link
    return urljoin(base_url.rstrip("/") + "/", link.lstrip("/"))


def url_decode(value: str | None) -> str | None:
    if not value:
        return value
    return unquote(value)


# ---- Search URLs -----------------------------------------------------------------


def append_query_fragment(url: str, fragment: str) -> str:
    """Append a literal `k=v[&k2=v2]` fragment unless the URL already contains it."""
    if fragment in url:
        return url
    return url + ("&" if "?" in url else "?") + fragment


def set_query_param(url: str, key: str, value: str) -> str:
    """Force `key=value` in the query string, replacing any existing value."""
    parts = urlsplit(url)
    pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    pairs.append((key, value))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


def strip_query_params(url: str, names: Iterable[str] = SESSION_PARAMS) -> str:
    """
    Drop session/user-specific parameters. A name ending in "_" is treated
    as a prefix (e.g. "utm_" removes utm_source, utm_medium, ...).
    """
    names = tuple(names)
    lowered = tuple(n.lower() for n in names)

    def _drop(key: str) -> bool:
        k = key.lower()
        return any(k.startswith(n) if n.endswith("_") else k == n for n in lowered)

    parts = urlsplit(url)
    pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _drop(k)]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), parts.fragment))


def drop_fragment(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


# ---- Display formatting -----------------------------------------------------------


def format_price_de(amount: int | float | str | None, *, on_request: str = "Preis auf Anfrage") -> str:
    """
    German-style price: 450000 -> "450.000 €", 1234.5 -> "1.234,5 €".
    Zero, negative or missing amounts render as `on_request`.
    """
    if amount in (None, ""):
        return on_request
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        return on_request
    if value <= 0:
        return on_request
    if value == value.to_integral_value():
        text = f"{int(value):,}".replace(",", ".")
    else:
        whole, _, frac = f"{value:,.3f}".partition(".")
        frac = frac.rstrip("0")
        text = whole.replace(",", ".") + ("," + frac if frac else "")
    return f"{text} €"


def join_non_empty(parts: Iterable[object | None], sep: str = ", ") -> str:
    return sep.join(str(p) for p in parts if p not in (None, "", 0))
