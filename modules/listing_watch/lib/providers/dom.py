# modules/listing_watch/lib/providers/dom.py
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import ClassVar

from ..extraction import parse_field_map
from ..models import FieldSpec, Listing, RawListing
from ..normalize import absolute_link, append_query_fragment, url_decode
from .base import RunnerBackedProvider
from .registry import register


class DomProvider(RunnerBackedProvider):
    """
    Rendered-page provider: the shared browser loads the search URL and a
    selector map turns each result card into a RawListing.

    Subclasses declare:
      container      CSS selector matching one element per listing
      field_map      field name -> "selector[@attr]" expression
      wait_selector  soft precondition awaited before extraction
      sort_param     literal query fragment forcing newest-first order
      base_url       site root used to absolutize relative links
    """

    kind = "dom"

    container: ClassVar[str] = ""
    field_map: ClassVar[Mapping[str, str]] = {}
    wait_selector: ClassVar[str | None] = None
    sort_param: ClassVar[str | None] = None
    base_url: ClassVar[str | None] = None

    # Parsed once per class, reused on every scrape.
    field_specs: ClassVar[dict[str, FieldSpec]] = {}

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        cls.field_specs = parse_field_map(cls.field_map)

    def search_url(self) -> str:
        if self.sort_param:
            return append_query_fragment(self.url, self.sort_param)
        return self.url

    def fixup(self, raw: RawListing) -> RawListing:
        if self.base_url:
            raw["link"] = absolute_link(raw.get("link"), self.base_url)
        return raw

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results, fixup=self.fixup)

    def _fetch(self) -> list[RawListing]:
        if self.browser is None:
            raise RuntimeError(f"{self.name} needs a browser session")
        return self.browser.scrape(self.search_url(), self.container, self.field_specs, self.wait_selector)


# Immowelt and Immonet share the same card markup.
_CARD_PRICE = 'div[data-testid="cardmfe-price-testid"]'
_CARD_KEYFACTS = 'div[data-testid="cardmfe-keyfacts-testid"]'
_CARD_ADDRESS = 'div[data-testid="cardmfe-description-box-address"]'
_SERP_GRID = 'div[data-testid="serp-gridcontainer-testid"]'


@register
class ImmoweltProvider(DomProvider):
    key = "immowelt"
    name = "Immowelt"
    # Skip the "enlarged search area" block that follows the real results.
    container = (
        'div[data-testid="serp-core-scrollablelistview-testid"]'
        ':not(div[data-testid="serp-enlargementlist-testid"] div[data-testid="serp-card-testid"]) '
        'div[data-testid="serp-core-classified-card-testid"]'
    )
    field_map = {
        "id": "a@href",
        "price": _CARD_PRICE,
        "size": _CARD_KEYFACTS,
        "title": 'div[data-testid="cardmfe-description-box-text-test-id"] > div:nth-of-type(2)',
        "link": "a@href",
        "address": _CARD_ADDRESS,
        "image": 'div[data-testid="cardmfe-picture-box-opacity-layer-test-id"] img@src',
    }
    wait_selector = _SERP_GRID
    sort_param = "order=DateDesc"
    base_url = "https://www.immowelt.de"


@register
class ImmonetProvider(DomProvider):
    key = "immonet"
    name = "Immonet"
    container = 'div[data-testid="serp-core-classified-card-testid"]'
    field_map = {
        "id": "button@title",
        "title": "button@title",
        "price": _CARD_PRICE,
        "size": _CARD_KEYFACTS,
        "address": _CARD_ADDRESS,
        "image": 'div[data-testid="cardmfe-picture-box-test-id"] img@src',
        "link": "button@data-base",
    }
    wait_selector = _SERP_GRID
    sort_param = "sortby=19"

    def fixup(self, raw: RawListing) -> RawListing:
        # data-base carries a percent-encoded absolute URL
        raw["link"] = url_decode(raw.get("link"))
        return raw


@register
class KleinanzeigenProvider(DomProvider):
    key = "kleinanzeigen"
    name = "Kleinanzeigen"
    container = "#srchrslt-adtable .ad-listitem"
    field_map = {
        "id": ".aditem@data-adid",
        "price": ".aditem-main--middle--price-shipping--price",
        "size": ".aditem-main .text-module-end",
        "title": ".aditem-main .text-module-begin a",
        "link": ".aditem-main .text-module-begin a@href",
        "description": ".aditem-main .aditem-main--middle--description",
        "address": ".aditem-main--top--left",
    }
    wait_selector = "body"
    base_url = "https://www.kleinanzeigen.de"

    _CATEGORY_RE = re.compile(r"(/c\d+)")

    def search_url(self) -> str:
        if "sortierung:neu" in self.url:
            return self.url
        # Sorting is a path segment placed before the category code (c203, c196, ...).
        return self._CATEGORY_RE.sub(r"/sortierung:neu\1", self.url, count=1)


@register
class WgGesuchtProvider(DomProvider):
    key = "wggesucht"
    name = "WgGesucht"
    container = ".wgg_card.offer_list_item"
    field_map = {
        "id": "*@data-id",
        "title": ".truncate_title a",
        "link": ".truncate_title a@href",
        "price": ".middle .col-xs-3 b",
        "size": ".middle .col-xs-3.text-right b",
        "address": ".col-xs-11 span",
        "image": ".card_image img.img-responsive@src",
    }
    wait_selector = ".wgg_card"
    sort_param = "sort_column=0&sort_order=0"
    base_url = "https://www.wg-gesucht.de"

    def fixup(self, raw: RawListing) -> RawListing:
        raw = super().fixup(raw)
        if raw.get("image"):
            raw["image"] = raw["image"].replace(".small.", ".large.")
        return raw
