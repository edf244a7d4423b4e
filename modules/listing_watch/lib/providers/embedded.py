# modules/listing_watch/lib/providers/embedded.py
"""
Providers whose result list ships as JSON state embedded in the search page
(Next.js `__NEXT_DATA__`, Nuxt `window.__NUXT__`) instead of as markup.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib

from ..errors import DataShapeError
from ..models import Listing, RawListing
from ..normalize import drop_fragment, format_price_de, join_non_empty, set_query_param
from .base import RunnerBackedProvider
from .registry import register

LOG = logging.getLogger(__name__)

ON_REQUEST = "Preis auf Anfrage"
NO_ADDRESS = "Keine Adresse"


# ---- Sparkasse (Next.js, plain HTTP) ----------------------------------------------


def extract_next_data(html: str) -> dict[str, Any] | None:
    """Return the parsed `<script id="__NEXT_DATA__">` payload, or None if absent/unparseable."""
    soup = BeautifulSoup(html or "", "html5lib")
    tag = soup.select_one("script#__NEXT_DATA__")
    if tag is None:
        return None
    try:
        data = json.loads(tag.string or tag.get_text() or "")
    except ValueError:
        LOG.debug("Failed to parse __NEXT_DATA__ JSON")
        return None
    return data if isinstance(data, dict) else None


def _fact(estate: dict[str, Any], category: str) -> str | None:
    for fact in estate.get("mainFacts") or []:
        if isinstance(fact, dict) and fact.get("category") == category:
            value = fact.get("value")
            return str(value) if value not in (None, "") else None
    return None


def sparkasse_estate_to_raw(estate: dict[str, Any]) -> RawListing:
    rooms = _fact(estate, "ROOMS")
    images = estate.get("images") or []
    estate_id = str(estate.get("id") or "")
    return {
        "id": estate_id,
        "title": estate.get("title"),
        "price": estate.get("price") or ON_REQUEST,
        "size": join_non_empty([_fact(estate, "AREA"), f"{rooms} Zimmer" if rooms else None]) or None,
        "link": f"https://immobilien.sparkasse.de/expose/{estate_id}.html",
        "address": estate.get("subtitle") or NO_ADDRESS,
        "image": images[0] if images else None,
    }


@register
class SparkasseProvider(RunnerBackedProvider):
    key = "sparkasse"
    name = "Sparkasse"
    kind = "embedded"

    def search_url(self) -> str:
        # "#map" switches the page to map mode, which ships no estate list.
        return set_query_param(drop_fragment(self.url), "sortBy", "date_desc")

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results, empty_is_error=False)

    def _fetch(self) -> list[RawListing]:
        html = self.http.get_text(
            self.search_url(),
            headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"},
        )
        data = extract_next_data(html)
        estates = (((data or {}).get("props") or {}).get("pageProps") or {}).get("firstPageEstates")
        if estates is None:
            raise DataShapeError("No listings found in page data - possible format change")
        return [sparkasse_estate_to_raw(e) for e in estates if isinstance(e, dict)]


# ---- Deutsche Bank (Nuxt, rendered in the browser) --------------------------------

NUXT_ESTATE_LIST_JS = """(() => {
  const nuxt = window.__NUXT__;
  if (nuxt && nuxt.state && nuxt.state.estateList && nuxt.state.estateList.list) {
    return nuxt.state.estateList.list;
  }
  return [];
})()"""


def deutschebank_estate_to_raw(estate: dict[str, Any]) -> RawListing:
    if estate.get("purchasePriceOnRequest"):
        price = ON_REQUEST
    else:
        price = estate.get("formattedPriceString") or format_price_de(estate.get("purchasePrice"))

    living = estate.get("livingSpace")
    size = estate.get("leadingSpaceString") or (f"{living} m²" if living else None)
    rooms = estate.get("roomNumber")

    return {
        "id": str(estate.get("id") or "") or None,
        "title": estate.get("title"),
        "price": price,
        "size": join_non_empty([size, f"{rooms} Zimmer" if rooms else None]) or None,
        "link": estate.get("exposeUrl"),
        "address": join_non_empty([estate.get("zip"), estate.get("town")], " ") or NO_ADDRESS,
        "image": (estate.get("titleImage") or {}).get("url"),
    }


@register
class DeutscheBankProvider(RunnerBackedProvider):
    key = "deutschebank"
    name = "Deutsche Bank"
    kind = "embedded"

    wait_selector = 'div[class*="estate"]'

    def search_url(self) -> str:
        # sort=3 is "newest first"
        return set_query_param(self.url, "sort", "3")

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results)

    def _fetch(self) -> list[RawListing]:
        if self.browser is None:
            raise RuntimeError(f"{self.name} needs a browser session")
        estates = self.browser.evaluate(self.search_url(), NUXT_ESTATE_LIST_JS, self.wait_selector) or []
        return [deutschebank_estate_to_raw(e) for e in estates if isinstance(e, dict)]
