# modules/listing_watch/lib/providers/feed.py
from __future__ import annotations

import html
import re
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

from ..models import Listing, RawListing
from ..normalize import format_price_de, join_non_empty, set_query_param
from .base import RunnerBackedProvider
from .registry import register

_ENTRY_RE = re.compile(r"<entry\b[^>]*>(.*?)</entry>", re.S)
_LINK_RE = re.compile(r"""<link[^>]*href=["']([^"']+)["'][^>]*/?>""")
_THUMB_RE = re.compile(r"""<media:thumbnail[^>]*url=["']([^"']+)["'][^>]*/?>""")

ATOM_ACCEPT = "application/atom+xml, application/xml, text/xml"


@dataclass
class AtomEntry:
    id: str
    title: str
    link: str = ""
    summary: str = ""
    price: int = 0
    rooms: str = ""
    area: str = ""
    postal_code: str = ""
    locality: str = ""
    image: str | None = None


def _tag_text(xml: str, tag: str) -> str:
    m = re.search(rf"<{re.escape(tag)}[^>]*>([^<]*)</{re.escape(tag)}>", xml)
    return html.unescape(m.group(1).strip()) if m else ""


def _to_int(text: str) -> int:
    m = re.match(r"\s*(-?\d+)", text or "")
    return int(m.group(1)) if m else 0


def parse_atom_feed(xml: str) -> list[AtomEntry]:
    """
    Pull listing entries out of the portal's Atom feed. Entries lacking
    an id or a title are skipped.
    """
    entries: list[AtomEntry] = []
    for block in _ENTRY_RE.findall(xml or ""):
        link = _LINK_RE.search(block)
        thumb = _THUMB_RE.search(block)
        entry = AtomEntry(
            id=_tag_text(block, "id"),
            title=_tag_text(block, "title"),
            link=html.unescape(link.group(1)) if link else "",
            summary=_tag_text(block, "summary"),
            price=_to_int(_tag_text(block, "cm:price")),
            rooms=_tag_text(block, "cm:rooms"),
            area=_tag_text(block, "cm:area"),
            postal_code=_tag_text(block, "cm:postalCode"),
            locality=_tag_text(block, "cm:locality"),
            image=html.unescape(thumb.group(1)) if thumb else None,
        )
        if entry.id and entry.title:
            entries.append(entry)
    return entries


def entry_to_raw(entry: AtomEntry) -> RawListing:
    return {
        "id": entry.id,
        "title": entry.title,
        "price": format_price_de(entry.price),
        "size": f"{entry.area.replace(',', '.')} m²" if entry.area else None,
        "link": entry.link or entry.id,
        "address": join_non_empty([entry.postal_code, entry.locality], " "),
        "description": entry.summary or None,
        "image": entry.image,
    }


@register
class SueddeutscheProvider(RunnerBackedProvider):
    """Süddeutsche Zeitung Immobilienmarkt, read through its Atom search feed."""

    key = "sueddeutsche"
    name = "Süddeutsche"
    kind = "feed"

    def search_url(self) -> str:
        parts = urlsplit(self.url)
        path = "/suche.atom" if "/suche" in parts.path else parts.path
        url = urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))
        return set_query_param(url, "s", "most_recently_updated_first")

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results)

    def _fetch(self) -> list[RawListing]:
        xml = self.http.get_text(self.search_url(), headers={"Accept": ATOM_ACCEPT})
        return [entry_to_raw(e) for e in parse_atom_feed(xml)]
