"""
Property-based tests for the HTML page source.

Checks that parsed pages carry the title, visible body text and a DOM
snapshot with URLs resolved against the page, and that fetch failures
surface as PageSourceError.
"""

import asyncio

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from page_risk import page_source
from page_risk.exceptions import PageSourceError
from page_risk.page_source import build_dom_snapshot, fetch_page, page_from_html


LOGIN_HTML = """
<html>
  <head>
    <title> Account Login </title>
    <script>var tracking = "headscript";</script>
    <style>.hidden { display: none }</style>
  </head>
  <body>
    <h1>Sign in</h1>
    <form action="/submit" method="POST">
      <input type="text" name="user">
      <input type="password" name="pwd" placeholder="Password">
      <input name="otp">
    </form>
    <a href="https://bit.ly/x">deal</a>
    <a href="/about">About <b>us</b></a>
    <a name="anchor-without-href">skip</a>
    <script>document.write("bodyscript")</script>
    <script src="/static/app.js"></script>
    <noscript>enable javascript</noscript>
  </body>
</html>
"""

BASE_URL = "https://login.example.com/account/"


def install_transport(monkeypatch, handler) -> None:
    """Route every AsyncClient created by the page source through ``handler``."""
    real_client = httpx.AsyncClient

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(page_source.httpx, "AsyncClient", client_factory)


class TestPageFromHtmlProperty:
    """Parsed pages expose what the scorer reads."""

    def test_title_and_visible_text(self) -> None:
        page = page_from_html(BASE_URL, LOGIN_HTML)

        assert page.url == BASE_URL
        assert page.title == "Account Login"
        assert page.body_text == "Sign in deal About us skip"
        assert "bodyscript" not in page.body_text
        assert "enable javascript" not in page.body_text

    def test_forms_resolved_against_page(self) -> None:
        dom = page_from_html(BASE_URL, LOGIN_HTML).dom

        assert len(dom.forms) == 1
        assert dom.forms[0].action == "https://login.example.com/submit"
        assert dom.forms[0].method == "post"
        assert dom.forms[0].has_password is True

    def test_inputs_default_to_text(self) -> None:
        dom = page_from_html(BASE_URL, LOGIN_HTML).dom

        assert [(i.type, i.name) for i in dom.inputs] == [
            ("text", "user"),
            ("password", "pwd"),
            ("text", "otp"),
        ]
        assert dom.inputs[1].placeholder == "Password"

    def test_links_and_scripts(self) -> None:
        dom = page_from_html(BASE_URL, LOGIN_HTML).dom

        assert [(link.href, link.text) for link in dom.links] == [
            ("https://bit.ly/x", "deal"),
            ("https://login.example.com/about", "About us"),
        ]
        assert [s.src for s in dom.scripts] == ["", "", "https://login.example.com/static/app.js"]
        assert 'document.write("bodyscript")' in dom.scripts[1].inline

    def test_without_base_url_links_stay_relative(self) -> None:
        dom = build_dom_snapshot(LOGIN_HTML)

        assert dom.forms[0].action == "/submit"
        assert dom.links[1].href == "/about"

    def test_malformed_base_keeps_urls_unresolved(self) -> None:
        html = "<form action='/post'></form><a href='x'>x</a><script src='app.js'></script>"
        page = page_from_html("http://[::1", html)

        assert [(link.href, link.text) for link in page.dom.links] == [("x", "x")]
        assert page.dom.forms[0].action == "/post"
        assert page.dom.scripts[0].src == "app.js"

    def test_empty_document(self) -> None:
        page = page_from_html(None, "")

        assert page.title == ""
        assert page.body_text == ""
        assert page.dom.forms == ()
        assert page.dom.links == ()

    @given(text=st.text(alphabet="abcdefghijklmnopqrstuvwxyz ", min_size=1, max_size=60))
    @settings(max_examples=50)
    def test_body_text_stripped(self, text: str) -> None:
        page = page_from_html("https://example.com", f"<html><body><p>{text}</p></body></html>")

        assert page.body_text == text.strip()


class TestFetchPageProperty:
    """Fetching parses the final response or raises PageSourceError."""

    def test_fetch_parses_response(self, monkeypatch) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["User-Agent"] == page_source.DEFAULT_USER_AGENT
            return httpx.Response(200, html="<html><head><title>Shop</title></head><body>Deals</body></html>")

        install_transport(monkeypatch, handler)
        page = asyncio.run(fetch_page("https://shop.example.com/"))

        assert page.url == "https://shop.example.com/"
        assert page.title == "Shop"
        assert page.body_text == "Deals"

    def test_http_error_status(self, monkeypatch) -> None:
        install_transport(monkeypatch, lambda request: httpx.Response(404, text="missing"))

        with pytest.raises(PageSourceError) as exc_info:
            asyncio.run(fetch_page("https://shop.example.com/gone"))

        assert exc_info.value.code == "http_status"
        assert exc_info.value.details["status_code"] == 404

    def test_transport_failure(self, monkeypatch) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        install_transport(monkeypatch, handler)

        with pytest.raises(PageSourceError) as exc_info:
            asyncio.run(fetch_page("https://offline.example.com/"))

        assert exc_info.value.code == "fetch_failed"
        assert exc_info.value.details["error_type"] == "ConnectError"
