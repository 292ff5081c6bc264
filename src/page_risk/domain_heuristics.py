"""
Domain heuristics.

Auxiliary detectors run on the page's hostname: URL shortener match,
suspicious host patterns, and typosquatting against a list of well-known brand
domains using Levenshtein edit distance.
"""

import re
from typing import Optional

from .config import HeuristicsConfig
from .enums import Category, Severity
from .extractors import normalize_text
from .models import Finding


IPV4_PATTERN = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def levenshtein(a: str, b: str) -> int:
    """Edit distance over code points (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cur[j] = min(
                prev[j] + 1,
                cur[j - 1] + 1,
                prev[j - 1] + (ca != cb),
            )
        prev = cur
    return prev[-1]


def strip_www(domain: str) -> str:
    return domain[4:] if domain.startswith("www.") else domain


class DomainHeuristics:
    """Shortener, suspicious-pattern and typosquatting checks."""

    def __init__(self, config: Optional[HeuristicsConfig] = None) -> None:
        self._config = config or HeuristicsConfig()
        self._shorteners = tuple(normalize_text(s) for s in self._config.shorteners)
        self._tlds = frozenset(normalize_text(t).lstrip(".") for t in self._config.disallowed_tlds)
        self._brands = tuple(normalize_text(b) for b in self._config.brands)
        self._digit_run = re.compile(r"\d{%d,}" % self._config.min_digit_run)

    def check_shortener(self, domain: Optional[str], timestamp: str = "") -> Optional[Finding]:
        if not domain:
            return None
        domain = normalize_text(domain)
        for shortener in self._shorteners:
            if shortener in domain:
                return Finding(
                    rule_id="heuristic.shortener",
                    category=Category.DOMAIN_RISK,
                    severity=Severity.HIGH,
                    weight=self._config.shortener_weight,
                    description=f"URL shortener detected: {shortener}",
                    matched_value=shortener,
                    timestamp=timestamp,
                )
        return None

    def check_suspicious_pattern(self, domain: Optional[str], timestamp: str = "") -> Optional[Finding]:
        if not domain:
            return None
        domain = normalize_text(domain)
        reason = self._suspicious_reason(domain)
        if reason is None:
            return None
        return Finding(
            rule_id="heuristic.suspicious_domain",
            category=Category.DOMAIN_RISK,
            severity=Severity.MEDIUM,
            weight=self._config.suspicious_weight,
            description=f"Suspicious domain pattern: {reason}",
            matched_value=domain,
            timestamp=timestamp,
        )

    def _suspicious_reason(self, domain: str) -> Optional[str]:
        if IPV4_PATTERN.match(domain):
            return "IP address host"
        if self._digit_run.search(domain):
            return "long numeric run"
        if len(domain.split("-")) >= self._config.min_hyphen_segments:
            return "multiple hyphens"
        tld = domain.rsplit(".", 1)[-1] if "." in domain else ""
        if tld in self._tlds:
            return f"disallowed TLD .{tld}"
        return None

    def check_typosquatting(self, domain: Optional[str], timestamp: str = "") -> Optional[Finding]:
        """Report the first brand, in list order, within the distance threshold."""
        if not domain:
            return None
        candidate = strip_www(normalize_text(domain))
        for brand in self._brands:
            brand_name = strip_www(brand)
            if candidate == brand_name:
                continue
            distance = levenshtein(candidate, brand_name)
            if distance <= self._config.typosquat_threshold:
                return Finding(
                    rule_id="heuristic.typosquat",
                    category=Category.TYPOSQUAT,
                    severity=Severity.HIGH,
                    weight=self._config.typosquat_weight,
                    description=f"Possible typosquatting of {brand} (distance {distance})",
                    matched_value=brand,
                    timestamp=timestamp,
                )
        return None

    def evaluate(self, domain: Optional[str], timestamp: str = "") -> list[Finding]:
        checks = (self.check_shortener, self.check_suspicious_pattern, self.check_typosquatting)
        return [f for f in (check(domain, timestamp) for check in checks) if f is not None]
