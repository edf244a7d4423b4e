# listing_watch/http_client.py
from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

LOG = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class HttpClient:
    """Shared HTTP client for feed, embedded-state and API providers."""

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = BROWSER_USER_AGENT,
        accept_language: str = "de-DE,de;q=0.9,en;q=0.8",
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept-Language": accept_language})

        # POST is retried too: the GraphQL search endpoints are read-only queries.
        retry = Retry(
            total=3,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=frozenset(["GET", "POST", "HEAD"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    # ---- convenience ----
    def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        encoding: str | None = None,
    ) -> str:
        """GET and return decoded text with gentle encoding hints."""
        resp = self.session.get(url, params=params, headers=headers, timeout=timeout or self.timeout)
        _raise_for_status(resp)
        if encoding:
            resp.encoding = encoding
        elif not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        resp = self.session.get(url, params=params, headers=headers, timeout=timeout or self.timeout)
        _raise_for_status(resp)
        return _decode_json(resp, url)

    def post_json(
        self,
        url: str,
        payload: Any,
        *,
        params: Mapping[str, Any] | Sequence[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """POST a JSON body and parse the JSON reply."""
        resp = self.session.post(url, json=payload, params=params, headers=headers, timeout=timeout or self.timeout)
        _raise_for_status(resp)
        return _decode_json(resp, url)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)


def _raise_for_status(resp: requests.Response) -> None:
    """Like raise_for_status, but always puts "HTTP <code>" first so the cause classifier can read it."""
    if resp.status_code >= 400:
        raise requests.HTTPError(f"HTTP {resp.status_code}: {resp.reason} for {resp.url}", response=resp)


def _decode_json(resp: requests.Response, url: str) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        # Last-ditch try in case server sent text/plain but body is JSON.
        try:
            return json.loads(resp.text)
        except ValueError:
            preview = resp.text[:200].replace("\n", " ")
            raise ValueError(f"JSON decode failed for {url!r}; body starts: {preview!r}") from e
