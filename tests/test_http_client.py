# tests/test_http_client.py
import pytest
import requests

from modules.listing_watch.lib.errors import Cause, classify_cause
from modules.listing_watch.lib.http_client import HttpClient


def _response(status: int, body: str, url: str = "https://portal.example/api", reason: str = "") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    resp.url = url
    resp.encoding = "utf-8"
    resp._content = body.encode("utf-8")
    return resp


@pytest.fixture
def client():
    c = HttpClient(timeout=5)
    yield c
    c.close()


def test_session_carries_browser_headers(client):
    assert "Mozilla/5.0" in client.session.headers["User-Agent"]
    assert client.session.headers["Accept-Language"].startswith("de-DE")
    retry = client.session.get_adapter("https://x.de").max_retries
    assert retry.total == 3
    assert 429 in retry.status_forcelist


def test_get_json_and_post_json(client, monkeypatch):
    seen = {}

    def fake_get(url, **kwargs):
        seen["get"] = kwargs
        return _response(200, '{"items": [1, 2]}')

    def fake_post(url, **kwargs):
        seen["post"] = kwargs
        return _response(200, '{"ok": true}')

    monkeypatch.setattr(client.session, "get", fake_get)
    monkeypatch.setattr(client.session, "post", fake_post)

    assert client.get_json("https://portal.example/api", params={"q": "x"}) == {"items": [1, 2]}
    assert client.post_json("https://portal.example/graphql", {"query": "{}"}) == {"ok": True}
    assert seen["get"]["timeout"] == 5.0
    assert seen["post"]["json"] == {"query": "{}"}


def test_get_text_honors_encoding_hint(client, monkeypatch):
    monkeypatch.setattr(client.session, "get", lambda url, **kw: _response(200, "<feed>München</feed>"))
    assert client.get_text("https://portal.example/suche.atom", encoding="utf-8") == "<feed>München</feed>"


def test_http_errors_name_the_status_code(client, monkeypatch):
    monkeypatch.setattr(client.session, "get", lambda url, **kw: _response(403, "no", url=url, reason="Forbidden"))
    with pytest.raises(requests.HTTPError) as exc_info:
        client.get_text("https://portal.example/s")
    assert str(exc_info.value).startswith("HTTP 403: Forbidden")
    assert classify_cause(exc_info.value) is Cause.FORBIDDEN


def test_non_json_body_reports_a_preview(client, monkeypatch):
    monkeypatch.setattr(client.session, "get", lambda url, **kw: _response(200, "<html>challenge</html>"))
    with pytest.raises(ValueError, match="JSON decode failed"):
        client.get_json("https://portal.example/api")
