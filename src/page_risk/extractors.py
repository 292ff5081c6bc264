"""
Signal extraction.

Pure functions turning raw page data into structured signals. Nothing here
performs I/O or raises on malformed input: a URL that cannot be parsed yields
a ``domain`` signal whose value is None, and absent text degrades to "".
"""

import re
import unicodedata
from typing import Optional
from urllib.parse import urlsplit

import idna

from .enums import SignalKind
from .models import DomSnapshot, PageData, Signal


# Characters that can never appear in a hostname
FORBIDDEN_HOST_CHARS = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\;"\'<>,?/`~]'
)


def normalize_text(text: str) -> str:
    """NFKC-normalize and lowercase; returns the input unchanged on failure."""
    try:
        return unicodedata.normalize("NFKC", text).lower()
    except (TypeError, ValueError):
        return text


def decode_host(host: str) -> str:
    """Decode punycode labels to Unicode, falling back to the ASCII form."""
    if "xn--" not in host:
        return host
    try:
        return idna.decode(host)
    except (idna.IDNAError, UnicodeError, ValueError):
        return host


def extract_host(url: Optional[str]) -> Optional[str]:
    """
    Extract the lowercased hostname of an absolute URL.

    Returns:
        The hostname (punycode decoded), or None for relative or malformed URLs
    """
    if not url or not isinstance(url, str):
        return None
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    if not host or FORBIDDEN_HOST_CHARS.search(host):
        return None
    return decode_host(host.lower().rstrip("."))


def extract_scheme(url: Optional[str]) -> str:
    if not url or not isinstance(url, str):
        return ""
    try:
        return urlsplit(url.strip()).scheme.lower()
    except ValueError:
        return ""


def extract_signals(page: PageData) -> tuple[Signal, ...]:
    """
    Turn page data into signals.

    Always produces ``url``, ``domain``, ``title`` and ``text`` signals; DOM
    and request signals only when the page carries them.
    """
    url = page.url if isinstance(page.url, str) else ""
    scheme = extract_scheme(url)

    signals = [
        Signal.create(SignalKind.URL, url, page_scheme=scheme),
        Signal.create(SignalKind.DOMAIN, extract_host(url), page_scheme=scheme),
        Signal.create(SignalKind.TITLE, page.title or ""),
        Signal.create(SignalKind.TEXT, page.body_text or ""),
    ]

    if page.dom is not None:
        signals.extend(_dom_signals(page.dom, url, scheme))

    for request in page.requests:
        signals.append(
            Signal.create(
                SignalKind.REQUEST,
                request.url,
                method=request.method.upper(),
                host=extract_host(request.url),
                page_scheme=scheme,
            )
        )

    return tuple(signals)


def _dom_signals(dom: DomSnapshot, page_url: str, scheme: str) -> list[Signal]:
    signals = []

    for form in dom.forms:
        # An empty action submits to the page itself
        action = form.action or page_url
        signals.append(
            Signal.create(
                SignalKind.FORM,
                action,
                method=(form.method or "get").lower(),
                has_password="true" if form.has_password else "false",
                page_scheme=scheme,
            )
        )

    for field in dom.inputs:
        signals.append(
            Signal.create(
                SignalKind.INPUT,
                f"{field.type}:{field.name}:{field.placeholder}",
                page_scheme=scheme,
            )
        )

    for link in dom.links:
        signals.append(
            Signal.create(
                SignalKind.LINK,
                link.href,
                host=extract_host(link.href),
                text=link.text,
            )
        )

    for script in dom.scripts:
        signals.append(
            Signal.create(SignalKind.SCRIPT, script.inline or script.src, src=script.src)
        )

    return signals
