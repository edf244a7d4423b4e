# tests/conftest.py
from __future__ import annotations

import json
import os
from collections.abc import Callable, Sequence
from typing import Any

import pytest
from freezegun import freeze_time

from modules.listing_watch.lib.alerting import AdminAlerts
from modules.listing_watch.lib.extraction import extract_from_html
from modules.listing_watch.lib.hashing import build_hash
from modules.listing_watch.lib.health import IterationTracker
from modules.listing_watch.lib.models import Listing, RawListing, User
from modules.listing_watch.lib.providers.base import RunnerBackedProvider
from modules.listing_watch.lib.repository import InMemoryListingRepository, SqliteListingRepository

_SETTINGS_ENV = (
    "CONFIG_PATH",
    "INTERVAL_MS",
    "MAX_RESULTS_PER_PROVIDER",
    "SQLITE_PATH",
    "USERS",
    "EMAIL_TO",
    "BROWSER_HEADLESS",
    "ALERT_ON_SCRAPING_ERRORS",
    "TELEGRAM_BOT_TOKEN",
    "ADMIN_TELEGRAM_BOT_TOKEN",
    "ADMIN_USER_ID",
    "ACTIVITY_LOG_MAX_BYTES",
)


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real portals, real browser).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or launch a real browser (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("LOG_DIR", str(log_dir))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def log_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------
@pytest.fixture
def make_listing() -> Callable[..., Listing]:
    def _make(listing_id: str, price: str | None = "1.000 €", source: str = "Stub", **overrides: Any) -> Listing:
        fields: dict[str, Any] = {
            "id": listing_id,
            "title": f"Listing {listing_id}",
            "price": price,
            "size": "50 m²",
            "address": "80331 München",
            "link": f"https://example.com/expose/{listing_id}",
            "description": None,
            "image": None,
            "hash": build_hash(listing_id, price),
            "source": source,
        }
        fields.update(overrides)
        return Listing(**fields)

    return _make


def raw(listing_id: str, price: str | None = "1.000 €", **overrides: Any) -> RawListing:
    """RawListing with every field a valid record needs."""
    out: RawListing = {
        "id": listing_id,
        "title": f"Listing {listing_id}",
        "price": price,
        "link": f"https://example.com/expose/{listing_id}",
        "address": "80331 München",
    }
    out.update(overrides)
    return out


@pytest.fixture
def make_raw() -> Callable[..., RawListing]:
    return raw


class StubProvider(RunnerBackedProvider):
    """
    Provider replaying scripted fetch outcomes through the real ScrapeRunner.
    Each script entry is a list of RawListing or an exception to raise.
    Not registered with the provider registry.
    """

    key = "stub"
    name = "Stub"
    kind = "stub"

    def __init__(self, url: str = "https://example.com/search", script: Sequence[Any] = (), **deps: Any) -> None:
        super().__init__(url, **deps)
        self.script = list(script)
        self.calls = 0

    def scrape(self, max_results: int) -> list[Listing]:
        if not self.is_enabled():
            return []
        return self._runner.run(self._fetch, max_results)

    def _fetch(self) -> list[RawListing]:
        step = self.script[min(self.calls, len(self.script) - 1)] if self.script else []
        self.calls += 1
        if isinstance(step, BaseException):
            raise step
        return list(step)


def make_stub_provider(name: str = "Stub", key: str | None = None) -> type[StubProvider]:
    """A StubProvider subclass with its own display name (checkpoints are keyed by name)."""
    return type(f"Stub{name.replace(' ', '')}", (StubProvider,), {"name": name, "key": key or name.lower()})


@pytest.fixture
def stub_provider_cls():
    return make_stub_provider


# ---------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------
class FakeBrowser:
    """Stands in for BrowserService: serves canned HTML / evaluate results per URL substring."""

    def __init__(self, pages: dict[str, str] | None = None, evaluations: dict[str, Any] | None = None) -> None:
        self.pages = pages or {}
        self.evaluations = evaluations or {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.closed = False

    def _lookup(self, table: dict[str, Any], url: str) -> Any:
        for needle, value in table.items():
            if needle in url:
                if isinstance(value, BaseException):
                    raise value
                return value
        raise RuntimeError(f"navigation failed: no canned page for {url}")

    def scrape(self, url, container_selector, fields, wait_selector=None):
        self.calls.append(("scrape", url, wait_selector))
        return extract_from_html(self._lookup(self.pages, url), container_selector, fields)

    def evaluate(self, url, script, wait_selector=None):
        self.calls.append(("evaluate", url, wait_selector))
        return self._lookup(self.evaluations, url)

    def close(self):
        self.closed = True


class FakeHttp:
    """Stands in for HttpClient: canned replies per URL substring, every call recorded."""

    def __init__(self, replies: dict[str, Any] | None = None) -> None:
        self.replies = replies or {}
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def _reply(self, url: str) -> Any:
        for needle, value in self.replies.items():
            if needle in url:
                if callable(value):
                    value = value(self.calls[-1])
                if isinstance(value, BaseException):
                    raise value
                return value
        raise RuntimeError(f"HTTP 404: Not Found for {url}")

    def get_text(self, url, *, params=None, headers=None, timeout=None, encoding=None):
        self.calls.append({"method": "GET", "url": url, "params": params, "headers": headers})
        return self._reply(url)

    def get_json(self, url, *, params=None, headers=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "params": params, "headers": headers})
        return self._reply(url)

    def post_json(self, url, payload, *, params=None, headers=None, timeout=None):
        self.calls.append({"method": "POST", "url": url, "payload": payload, "params": params, "headers": headers})
        return self._reply(url)

    def close(self):
        self.closed = True


class RecordingTransport:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    def send(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("telegram down")
        self.sent.append(text)


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def fake_http():
    return FakeHttp()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def alerts(transport):
    return AdminAlerts(transport)


@pytest.fixture
def tracker(alerts):
    return IterationTracker(alerts)


@pytest.fixture
def memory_repo():
    return InMemoryListingRepository()


@pytest.fixture
def sqlite_repo(tmp_path):
    return SqliteListingRepository(str(tmp_path / "db" / "listings.db"))


@pytest.fixture
def user():
    return User(id="tg_1001", name="Anna", providers={"stub": "https://example.com/search"})


@pytest.fixture
def read_log(log_dir):
    """Parsed JSONL records of today's activity or error log ("activity" | "error")."""

    def _read(kind: str) -> list[dict[str, Any]]:
        prefix = {"activity": "activity-test", "error": "error-test"}[kind]
        records: list[dict[str, Any]] = []
        for path in sorted(log_dir.glob(f"{prefix}-*.jsonl")):
            records.extend(json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line)
        return records

    return _read
