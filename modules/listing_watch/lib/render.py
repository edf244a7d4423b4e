from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from . import utils
from .models import Listing, ProviderStatus, UserScrapeResult

SEPARATOR = "-" * 60


# ---- Console ------------------------------------------------------------------


def format_header(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    return f"{'=' * 60}\nListing check at {stamp}\n{'=' * 60}"


def format_listing(listing: Listing, *, is_new: bool = False) -> str:
    head = ("[NEW] " if is_new else "") + f"[{listing.source}]"
    lines = [
        SEPARATOR,
        head,
        f"Title:   {listing.title}",
        f"Price:   {listing.price or 'N/A'}",
        f"Size:    {listing.size or 'N/A'}",
        f"Address: {listing.address or 'N/A'}",
        f"Link:    {listing.link}",
    ]
    return "\n".join(lines)


def format_provider_health(statuses: Sequence[ProviderStatus]) -> str:
    if not statuses:
        return "Providers: (none enabled)"
    parts = []
    for s in statuses:
        mark = "OK" if s.healthy else ("FAIL" if s.consecutive_errors else "EMPTY")
        suffix = f" x{s.consecutive_errors}" if s.consecutive_errors else ""
        parts.append(f"{s.name}: {s.last_scrape_count} ({mark}{suffix})")
    return "Providers: " + ", ".join(parts)


def format_user_summary(result: UserScrapeResult) -> str:
    """Console block for one user: counts, provider health and each new listing."""
    lines = [
        f"User {result.user.name} ({result.user.id}): "
        f"{len(result.all_listings)} listing(s), {len(result.new_listings)} new",
        format_provider_health(result.provider_statuses),
    ]
    lines.extend(format_listing(listing, is_new=True) for listing in result.new_listings)
    return "\n".join(lines)


# ---- Telegram -----------------------------------------------------------------


def telegram_message(listing: Listing) -> str:
    """HTML-mode Telegram message for one new listing."""
    lines = [
        f"🏠 <b>New listing from {utils.esc(listing.source)}</b>",
        "",
        f"<b>{utils.esc(listing.title)}</b>",
    ]
    if listing.price:
        lines.append(f"💰 {utils.esc(listing.price)}")
    if listing.size:
        lines.append(f"📐 {utils.esc(listing.size)}")
    if listing.address and listing.address != "N/A":
        lines.append(f"📍 {utils.esc(listing.address)}")
    lines.append("")
    lines.append(f'<a href="{utils.esc(listing.link)}">View listing</a>')
    return "\n".join(lines)


# ---- Email --------------------------------------------------------------------


def build_tables(by_source: dict[str, list[Listing]]) -> str:
    """
    One section per provider:
      <h3>{source}</h3>
      <table> Title | Price | Size | Address | Link </table>
    """
    sections: list[str] = []
    for source, items in by_source.items():
        if not items:
            continue
        rows: list[str] = []
        for li in items:
            link_html = f'<a href="{utils.esc(li.link)}">open</a>'
            rows.append(
                "<tr>"
                f"<td>{utils.esc(li.title)}</td>"
                f"<td>{utils.esc(li.price or '')}</td>"
                f"<td>{utils.esc(li.size or '')}</td>"
                f"<td>{utils.esc(li.address or '')}</td>"
                f"<td>{link_html}</td>"
                "</tr>"
            )
        table_html = (
            "<table border='1' cellspacing='0' cellpadding='6'>"
            "<tr><th>Title</th><th>Price</th><th>Size</th><th>Address</th><th>Link</th></tr>"
            + "".join(rows)
            + "</table>"
        )
        sections.append(f"<h3>{utils.esc(source)}</h3>\n{table_html}")
    return "\n".join(sections)


def wrap_document(content_html: str, *, heading: str | None = None, intro: str | None = None) -> str:
    parts: list[str] = ["<div>"]
    if heading:
        parts.append(f"<h2>{utils.esc(heading)}</h2>")
    if intro:
        parts.append(f"<p>{utils.esc(intro)}</p>")
    parts.append(content_html)
    parts.append("</div>")
    return "\n".join(parts)


def group_by_source(listings: Sequence[Listing]) -> dict[str, list[Listing]]:
    out: dict[str, list[Listing]] = {}
    for li in listings:
        out.setdefault(li.source, []).append(li)
    return out
