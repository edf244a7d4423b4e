"""
Selector-driven extraction of raw listings from rendered HTML.

Field expressions use a tiny grammar:

    selector['@'attribute]['|' alternate]

    "a@href"                      -> href of the first <a> in the container
    ".price"                      -> text of the first .price element
    "*@data-id"                   -> data-id attribute of the container itself
    ".title a|h2"                 -> only ".title a" is honored

Expressions are parsed once into FieldSpec objects (see parse_field_map) and
evaluated per container with BeautifulSoup + soupsieve CSS selectors.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from bs4 import BeautifulSoup  # pip install beautifulsoup4 html5lib
from bs4.element import Tag

from .models import FieldSpec, RawListing

LOG = logging.getLogger(__name__)

CONTAINER_SELF = "*"


# ---- Parsing ------------------------------------------------------------------


def parse_expression(expr: str) -> FieldSpec:
    """Parse one field expression into a FieldSpec (first alternate only)."""
    primary = (expr or "").split("|", 1)[0].strip()
    attribute: str | None = None
    if "@" in primary:
        primary, attribute = primary.split("@", 1)
        primary = primary.strip()
        attribute = attribute.strip() or None
    return FieldSpec(selector=primary or CONTAINER_SELF, attribute=attribute)


def parse_field_map(fields: Mapping[str, str | FieldSpec]) -> dict[str, FieldSpec]:
    """Accept raw expressions or already-parsed specs; return a fresh name -> FieldSpec dict."""
    out: dict[str, FieldSpec] = {}
    for name, expr in fields.items():
        out[name] = expr if isinstance(expr, FieldSpec) else parse_expression(expr)
    return out


# ---- Evaluation ---------------------------------------------------------------


def extract_from_html(
    html: str,
    container_selector: str,
    fields: Mapping[str, str | FieldSpec],
) -> list[RawListing]:
    """
    Return one RawListing per element matching `container_selector`, in document order.

    A broken container selector raises (the whole extraction is meaningless);
    a broken or throwing field only nulls that field.
    """
    specs = parse_field_map(fields)
    soup = BeautifulSoup(html or "", "html5lib")
    containers = soup.select(container_selector)
    return [extract_container(card, specs) for card in containers]


def extract_container(card: Tag, specs: Mapping[str, FieldSpec]) -> RawListing:
    result: RawListing = {}
    for name, field_spec in specs.items():
        try:
            result[name] = _extract_field(card, field_spec)
        except Exception as e:  # per-field isolation
            LOG.debug("Field %r (%r) failed: %s", name, field_spec.selector, e)
            result[name] = None
    return result


def _extract_field(card: Tag, field_spec: FieldSpec) -> str | None:
    el = card if field_spec.selector == CONTAINER_SELF else card.select_one(field_spec.selector)
    if el is None:
        return None
    if field_spec.attribute:
        value = el.get(field_spec.attribute)
        if value is None:
            return None
        # bs4 returns multi-valued attributes (class, rel) as lists
        if isinstance(value, list):
            return " ".join(value)
        return str(value)
    text = el.get_text().replace("\n", " ").strip()
    return text or None
