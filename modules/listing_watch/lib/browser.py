"""
Shared headless-browser session for DOM and embedded-state providers.

Playwright's sync API is bound to the thread that started it, while providers
scrape concurrently from a thread pool. All browser work is therefore funneled
through one dedicated worker thread: the browser is shared by every provider
and user, and each scrape gets its own context + page that is closed in a
`finally` block whether the scrape succeeded or not.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from playwright.sync_api import Browser, Page, Playwright, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .extraction import extract_from_html
from .http_client import BROWSER_USER_AGENT
from .models import FieldSpec, RawListing

LOG = logging.getLogger(__name__)

T = TypeVar("T")

NAVIGATION_TIMEOUT_MS = 30_000
WAIT_SELECTOR_TIMEOUT_MS = 10_000

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class BrowserService:
    def __init__(self, *, headless: bool = True, user_agent: str = BROWSER_USER_AGENT) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="browser")
        self._lock = threading.Lock()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._closed = False

    # ---- Public API --------------------------------------------------------------

    def initialize(self) -> None:
        """Launch the shared browser (idempotent)."""
        self._submit(self._ensure_browser)

    def scrape(
        self,
        url: str,
        container_selector: str,
        fields: Mapping[str, str | FieldSpec],
        wait_selector: str | None = None,
    ) -> list[RawListing]:
        """Render `url` and extract one RawListing per container element."""
        html = self._submit(lambda: self._with_page(url, wait_selector, lambda page: page.content()))
        return extract_from_html(html, container_selector, fields)

    def evaluate(self, url: str, script: str, wait_selector: str | None = None) -> Any:
        """Render `url` and return the JSON-serializable result of a JS expression."""
        return self._submit(lambda: self._with_page(url, wait_selector, lambda page: page.evaluate(script)))

    def close(self) -> None:
        """
        Close the browser after already-queued scrapes have run, then stop
        the worker thread. Safe to call more than once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._executor.submit(self._shutdown_browser).result()
        finally:
            self._executor.shutdown(wait=True)

    # ---- Worker-thread helpers ---------------------------------------------------

    def _submit(self, fn: Callable[[], T]) -> T:
        with self._lock:
            if self._closed:
                raise RuntimeError("BrowserService is closed")
            future = self._executor.submit(fn)
        return future.result()

    def _ensure_browser(self) -> Browser:
        if self._browser is None:
            LOG.info("Launching headless Chromium (headless=%s)", self.headless)
            if self._playwright is None:
                self._playwright = sync_playwright().start()
            try:
                self._browser = self._playwright.chromium.launch(headless=self.headless, args=_LAUNCH_ARGS)
            except Exception:
                # no driver without a browser
                self._stop_playwright()
                raise
        return self._browser

    def _with_page(self, url: str, wait_selector: str | None, action: Callable[[Page], T]) -> T:
        browser = self._ensure_browser()
        context = browser.new_context(user_agent=self.user_agent)
        try:
            page = context.new_page()
            page.goto(url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            if wait_selector:
                try:
                    page.wait_for_selector(wait_selector, timeout=WAIT_SELECTOR_TIMEOUT_MS)
                except PlaywrightTimeoutError:
                    # Soft precondition: extract whatever rendered.
                    LOG.debug("wait_for_selector(%r) timed out on %s", wait_selector, url)
            return action(page)
        finally:
            try:
                context.close()
            except Exception:
                LOG.debug("context.close() swallow", exc_info=True)

    def _shutdown_browser(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except Exception:
                LOG.debug("browser.close() swallow", exc_info=True)
            self._browser = None
        self._stop_playwright()
        LOG.info("Browser session closed.")

    def _stop_playwright(self) -> None:
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception:
                LOG.debug("playwright.stop() swallow", exc_info=True)
            self._playwright = None
