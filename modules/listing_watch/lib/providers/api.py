# modules/listing_watch/lib/providers/api.py
"""
Providers that talk to a portal's JSON API directly (no HTML involved).

PlanetHome: GraphQL. A location id from the search URL is first resolved to
coordinates + geometry through the geo service (cached per location), then
used in the property search. A location-flavoured error invalidates the
cache and retries once with fresh geo data.

ImmoScout: the public search URL is translated into a request against the
mobile app's search endpoint.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import parse_qs, parse_qsl, urlsplit

from ..errors import DataShapeError
from ..models import Listing, RawListing
from ..normalize import format_price_de, join_non_empty, strip_query_params
from .base import RunnerBackedProvider
from .registry import register

LOG = logging.getLogger(__name__)


class LocationCache(Protocol):
    def get_cached_location(self, location_id: str, provider: str) -> dict[str, Any] | None: ...

    def set_cached_location(
        self, location_id: str, provider: str, latitude: float, longitude: float, geometry: dict[str, Any]
    ) -> None: ...

    def invalidate_cached_location(self, location_id: str, provider: str) -> None: ...


class MemoryLocationCache:
    """Process-local stand-in used when no SQLite repository is configured."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[tuple[str, str], dict[str, Any]] = {}

    def get_cached_location(self, location_id: str, provider: str) -> dict[str, Any] | None:
        with self._lock:
            hit = self._data.get((location_id, provider))
            return dict(hit) if hit else None

    def set_cached_location(
        self, location_id: str, provider: str, latitude: float, longitude: float, geometry: dict[str, Any]
    ) -> None:
        with self._lock:
            self._data[(location_id, provider)] = {"latitude": latitude, "longitude": longitude, "geometry": geometry}

    def invalidate_cached_location(self, location_id: str, provider: str) -> None:
        with self._lock:
            self._data.pop((location_id, provider), None)


# ---- PlanetHome -------------------------------------------------------------------

PLANETHOME_SEARCH_URL = "https://api.planethome.com/property-search-index-service/graphql"
PLANETHOME_GEO_URL = "https://api.planethome.com/geo-service/graphql"
PLANETHOME_PAGE_LIMIT = 50

PROPERTY_SEARCH_QUERY = """
query searchPublicPropertySales($propertySearchInput: PropertySearchInput!, $paging: Pagination!) {
  searchPublicPropertySales(propertySearchInput: $propertySearchInput, paging: $paging) {
    totalCount
    items {
      id
      title
      description
      price { totalPurchasePrice purchasePricePerSqm }
      property {
        propertyType
        propertySubType
        construction { constructionYear }
        premises { roomNumbers { numberOfRooms } }
        area { livingArea }
        address { zipcode city street }
        mainImagePublicUrl
      }
    }
  }
}"""

GEO_DETAILS_QUERY = """
query details($id: String!, $range: Int) {
  details(id: $id, range: $range) {
    isBoundary
    latitude
    longitude
    originalGeometry { type coordinates }
    extendedGeometry { type coordinates }
  }
}"""

_LOCATION_ERROR_WORDS = ("location", "geometry", "coordinates", "invalid", "not found")


@dataclass(frozen=True)
class PlanetHomeSearch:
    location_ids: list[str]
    location_names: list[str] = field(default_factory=list)
    property_type: str = "FLAT"
    radius: int = 0
    price_from: int | None = None
    price_to: int | None = None


def _int_or_none(values: list[str] | None) -> int | None:
    if not values or not values[0].strip():
        return None
    return int(values[0])


def parse_planethome_url(url: str) -> PlanetHomeSearch:
    qs = parse_qs(urlsplit(url).query)
    location_ids = qs.get("locationId") or []
    if not location_ids:
        raise DataShapeError(f"Missing locationId in PlanetHome search URL: {url}")
    return PlanetHomeSearch(
        location_ids=location_ids,
        location_names=qs.get("location") or [],
        property_type=(qs.get("propertyType") or ["FLAT"])[0] or "FLAT",
        radius=_int_or_none(qs.get("radius")) or 0,
        price_from=_int_or_none(qs.get("priceFrom")),
        price_to=_int_or_none(qs.get("priceTo")),
    )


def is_location_error(error: BaseException) -> bool:
    message = str(error).lower()
    return any(w in message for w in _LOCATION_ERROR_WORDS)


def _is_coordinate(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _graphql_data(reply: Any, op: str) -> dict[str, Any]:
    if not isinstance(reply, dict):
        raise DataShapeError(f"{op}: unexpected GraphQL reply {type(reply).__name__}")
    errors = reply.get("errors") or []
    if errors:
        first = errors[0].get("message") if isinstance(errors[0], dict) else errors[0]
        raise DataShapeError(f"GraphQL error: {first}")
    return reply.get("data") or {}


def planethome_result_to_raw(result: dict[str, Any]) -> RawListing:
    price = (result.get("price") or {}).get("totalPurchasePrice")
    prop = result.get("property") or {}
    living = (prop.get("area") or {}).get("livingArea")
    rooms = ((prop.get("premises") or {}).get("roomNumbers") or {}).get("numberOfRooms")
    addr = prop.get("address") or {}
    full_id = str(result.get("id") or "")
    # "ph-dephmaklerimport728215" -> "728215"
    m = re.search(r"\d+$", full_id)
    numeric_id = m.group(0) if m else full_id
    return {
        "id": full_id or None,
        "title": result.get("title") or "Immobilie",
        "price": format_price_de(price),
        "size": join_non_empty([f"{living} m²" if living else None, f"{rooms} Zimmer" if rooms else None]) or None,
        "link": f"https://planethome.de/objekt-detailseite?id={numeric_id}",
        "address": join_non_empty([addr.get("street"), addr.get("zipcode"), addr.get("city")]) or "Keine Adresse",
        "description": result.get("description") or None,
        "image": prop.get("mainImagePublicUrl") or None,
    }


@register
class PlanetHomeProvider(RunnerBackedProvider):
    key = "planethome"
    name = "PlanetHome"
    kind = "api"

    def __init__(self, url: str, **deps: Any) -> None:
        super().__init__(url, **deps)
        if self.location_cache is None:
            self.location_cache = MemoryLocationCache()

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(lambda: self._fetch(max_results), max_results, empty_is_error=False)

    def _fetch(self, max_results: int) -> list[RawListing]:
        search = parse_planethome_url(self.url)
        locations = self._locations(search)
        if not locations:
            raise DataShapeError("Failed to get location data for search")
        try:
            return self._search(search, locations, max_results)
        except Exception as e:
            if not is_location_error(e):
                raise
            LOG.warning("[%s] Possible stale location data (%s); invalidating cache and retrying", self.name, e)
            for location_id in search.location_ids:
                self.location_cache.invalidate_cached_location(location_id, self.key)
            locations = self._locations(search)
            if not locations:
                raise DataShapeError("Failed to refresh location data") from e
            return self._search(search, locations, max_results)

    # ---- geo ----

    def _locations(self, search: PlanetHomeSearch) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for location_id in search.location_ids:
            data = self._location(location_id)
            if data:
                out.append(data)
        return out

    def _location(self, location_id: str) -> dict[str, Any] | None:
        cached = self.location_cache.get_cached_location(location_id, self.key)
        if cached:
            LOG.debug("[%s] Using cached location data for %s", self.name, location_id)
            return cached

        LOG.info("[%s] Fetching location data for %s from geo service", self.name, location_id)
        try:
            data = self._fetch_location(location_id)
        except Exception as e:
            # One unresolved location must not sink the others.
            LOG.error("[%s] Failed to fetch location data for %s: %s", self.name, location_id, e)
            return None
        self.location_cache.set_cached_location(
            location_id, self.key, data["latitude"], data["longitude"], data["geometry"]
        )
        return data

    def _fetch_location(self, location_id: str) -> dict[str, Any]:
        reply = self.http.post_json(
            PLANETHOME_GEO_URL,
            {"operationName": "details", "query": GEO_DETAILS_QUERY, "variables": {"id": location_id, "range": 0}},
            headers={"Origin": "https://planethome.de", "Referer": "https://planethome.de/"},
        )
        details = _graphql_data(reply, "details").get("details")
        if not details:
            raise DataShapeError(f"Location not found for ID: {location_id}")
        geometry = details.get("originalGeometry") or details.get("extendedGeometry")
        if not geometry:
            raise DataShapeError(f"No geometry found for location ID: {location_id}")
        latitude, longitude = details.get("latitude"), details.get("longitude")
        if not _is_coordinate(latitude) or not _is_coordinate(longitude):
            raise DataShapeError(f"Missing coordinates for location ID: {location_id}")
        return {"latitude": float(latitude), "longitude": float(longitude), "geometry": geometry}

    # ---- search ----

    def _search(self, search: PlanetHomeSearch, locations: list[dict[str, Any]], max_results: int) -> list[RawListing]:
        search_input: dict[str, Any] = {
            "portal": "ph-de",
            "propertyType": search.property_type,
            "locations": [
                {
                    "latitude": loc["latitude"],
                    "longitude": loc["longitude"],
                    "radius": search.radius,
                    "geometry": loc["geometry"],
                }
                for loc in locations
            ],
        }
        if search.price_from is not None:
            search_input["priceFrom"] = search.price_from
        if search.price_to is not None:
            search_input["priceTo"] = search.price_to

        reply = self.http.post_json(
            PLANETHOME_SEARCH_URL,
            {
                "operationName": "searchPublicPropertySales",
                "query": PROPERTY_SEARCH_QUERY,
                "variables": {
                    "propertySearchInput": search_input,
                    "paging": {"offset": 0, "limit": min(max_results, PLANETHOME_PAGE_LIMIT)},
                },
            },
        )
        items = (_graphql_data(reply, "searchPublicPropertySales").get("searchPublicPropertySales") or {}).get("items") or []
        return [planethome_result_to_raw(r) for r in items if isinstance(r, dict)]


# ---- ImmoScout --------------------------------------------------------------------

IMMOSCOUT_API_URL = "https://api.mobile.immobilienscout24.de/search/list"
IMMOSCOUT_EXPOSE_URL = "https://www.immobilienscout24.de/expose/{id}"
IMMOSCOUT_USER_AGENT = "ImmoScout_27.12_26.2_._"

REAL_ESTATE_TYPES = {
    "wohnung-mieten": "apartmentrent",
    "wohnung-kaufen": "apartmentbuy",
    "haus-mieten": "houserent",
    "haus-kaufen": "housebuy",
}


def immoscout_api_params(web_url: str) -> list[tuple[str, str]]:
    """
    Translate a web search URL into mobile-API query parameters.

        /Suche/de/bayern/muenchen/wohnung-mieten?price=-1500
        -> searchType=region, geocodes=/de/bayern/muenchen,
           realestatetype=apartmentrent, price=-1500, sorting=-firstactivation
    """
    parts = urlsplit(strip_query_params(web_url))
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 3 or segments[0].lower() != "suche":
        raise DataShapeError(f"Unsupported ImmoScout search URL: {web_url}")
    type_slug = segments[-1].lower()
    real_estate_type = REAL_ESTATE_TYPES.get(type_slug)
    if real_estate_type is None:
        raise DataShapeError(f"Unsupported ImmoScout search type {type_slug!r}")

    params: list[tuple[str, str]] = [
        ("searchType", "region"),
        ("geocodes", "/" + "/".join(segments[1:-1])),
        ("realestatetype", real_estate_type),
    ]
    for k, v in parse_qsl(parts.query, keep_blank_values=True):
        if k in ("sorting", "searchType", "geocodes", "realestatetype"):
            continue
        params.append((k, v))
    params.append(("sorting", "-firstactivation"))
    return params


def immoscout_item_to_raw(item: dict[str, Any]) -> RawListing:
    attributes = item.get("attributes") or []

    def attr(i: int) -> str | None:
        if i < len(attributes) and isinstance(attributes[i], dict):
            return attributes[i].get("value") or None
        return None

    item_id = str(item.get("id") or "")
    return {
        "id": item_id or None,
        "title": item.get("title"),
        "price": attr(0),
        "size": attr(1),
        "link": IMMOSCOUT_EXPOSE_URL.format(id=item_id) if item_id else None,
        "address": (item.get("address") or {}).get("line"),
        "image": (item.get("titlePicture") or {}).get("preview"),
    }


@register
class ImmoScoutProvider(RunnerBackedProvider):
    key = "immoscout"
    name = "ImmoScout"
    kind = "api"

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results, empty_is_error=False)

    def _fetch(self) -> list[RawListing]:
        reply = self.http.post_json(
            IMMOSCOUT_API_URL,
            {"supportedResultListTypes": [], "userData": {}},
            params=immoscout_api_params(self.url),
            headers={"User-Agent": IMMOSCOUT_USER_AGENT, "Accept": "application/json"},
        )
        entries = (reply or {}).get("resultListItems") or []
        return [
            immoscout_item_to_raw(e.get("item") or {})
            for e in entries
            if isinstance(e, dict) and e.get("type") == "EXPOSE_RESULT"
        ]
