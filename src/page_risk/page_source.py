"""
Page source collaborator.

Builds ``PageData`` from HTML so pages can be scored outside a browser:
either from markup already at hand or by fetching a URL over HTTP.
"""

from typing import Optional, Union
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from .exceptions import PageSourceError
from .models import DomSnapshot, FormInfo, InputInfo, LinkInfo, PageData, ScriptInfo


DEFAULT_USER_AGENT = "page-risk-engine/0.1"


def _attr(tag, name: str) -> str:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def _resolve(base_url: Optional[str], href: str) -> str:
    if not href or not base_url:
        return href
    try:
        return urljoin(base_url, href)
    except ValueError:
        # Malformed base such as an unclosed IPv6 host
        return href


def build_dom_snapshot(html: Union[str, BeautifulSoup], base_url: Optional[str] = None) -> DomSnapshot:
    """Collect forms, inputs, links and scripts from HTML markup or a parsed tree."""
    soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "html.parser")
    forms = tuple(
        FormInfo(
            action=_resolve(base_url, _attr(form, "action")),
            method=(_attr(form, "method") or "get").lower(),
            has_password=form.find("input", attrs={"type": "password"}) is not None,
        )
        for form in soup.find_all("form")
    )
    inputs = tuple(
        InputInfo(
            type=(_attr(field, "type") or "text").lower(),
            name=_attr(field, "name"),
            placeholder=_attr(field, "placeholder"),
        )
        for field in soup.find_all("input")
    )
    links = tuple(
        LinkInfo(href=_resolve(base_url, _attr(a, "href")), text=a.get_text(" ", strip=True))
        for a in soup.find_all("a", href=True)
    )
    scripts = tuple(
        ScriptInfo(src=_resolve(base_url, _attr(s, "src")), inline=s.string or "")
        for s in soup.find_all("script")
    )
    return DomSnapshot(forms=forms, inputs=inputs, links=links, scripts=scripts)


def page_from_html(url: Optional[str], html: str) -> PageData:
    """Parse HTML into page data with a DOM snapshot."""
    soup = BeautifulSoup(html or "", "html.parser")
    dom = build_dom_snapshot(soup, url)

    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    body_text = body.get_text(" ", strip=True)

    return PageData(url=url, title=title, body_text=body_text, dom=dom)


async def fetch_page(url: str, timeout: float = 10.0, user_agent: str = DEFAULT_USER_AGENT) -> PageData:
    """
    Fetch a page and parse it.

    Raises:
        PageSourceError: On network errors or a non-success status
    """
    try:
        async with httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise PageSourceError(
            code="http_status",
            message=f"Fetching {url} returned HTTP {e.response.status_code}",
            details={"url": url, "status_code": e.response.status_code},
        )
    except httpx.HTTPError as e:
        raise PageSourceError(
            code="fetch_failed",
            message=f"Failed to fetch {url}: {e}",
            details={"url": url, "error_type": type(e).__name__},
        )

    # Score the final URL after redirects
    return page_from_html(str(response.url), response.text)
