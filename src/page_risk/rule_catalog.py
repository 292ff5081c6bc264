"""
Rule catalog.

An ordered, immutable collection of detection rules grouped by category. Rules
are plain data: a pattern type, its patterns, the signal kinds they apply to,
a weight and a severity. Matching a signal against the catalog yields at most
one finding per category, from the first rule of that category that matches.

Catalogs are never edited in place. ``CatalogProvider`` loads a replacement
from a file or URL and swaps the reference, so a scoring call that already
holds a catalog keeps using it.
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import httpx

from .audit_logger import AuditLogger
from .enums import Category, LogLevel, PatternType, Severity, SignalKind
from .exceptions import CatalogError
from .extractors import normalize_text
from .models import Finding, Signal


MAX_MATCHED_VALUE_LENGTH = 120


@dataclass(frozen=True)
class RuleEntry:
    """A single detection rule."""

    id: str
    category: Category
    pattern_type: PatternType
    patterns: tuple[str, ...]
    weight: int
    severity: Severity
    kinds: frozenset[SignalKind]
    description: str = ""
    requires: tuple[tuple[str, str], ...] = ()
    _compiled: tuple[re.Pattern, ...] = field(default=(), init=False, repr=False, compare=False)
    _normalized: tuple[str, ...] = field(default=(), init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.weight, int) or isinstance(self.weight, bool) or not 0 <= self.weight <= 100:
            raise CatalogError(
                code="invalid_weight",
                message=f"Rule {self.id!r} has weight outside 0..100: {self.weight!r}",
                details={"rule_id": self.id},
            )
        if not self.patterns:
            raise CatalogError(
                code="empty_patterns",
                message=f"Rule {self.id!r} has no patterns",
                details={"rule_id": self.id},
            )

        if self.pattern_type is PatternType.REGEX:
            compiled = []
            for pattern in self.patterns:
                try:
                    compiled.append(re.compile(pattern, re.IGNORECASE))
                except re.error as e:
                    raise CatalogError(
                        code="invalid_regex",
                        message=f"Rule {self.id!r} has an invalid regex {pattern!r}: {e}",
                        details={"rule_id": self.id, "pattern": pattern},
                    )
            object.__setattr__(self, "_compiled", tuple(compiled))
        else:
            object.__setattr__(
                self, "_normalized", tuple(normalize_text(p) for p in self.patterns)
            )

    def applies_to(self, signal: Signal) -> bool:
        if signal.kind not in self.kinds:
            return False
        return all(signal.ctx(key) == value for key, value in self.requires)

    def match(self, signal: Signal) -> Optional[str]:
        """
        Test the rule against a signal.

        Returns:
            The matched value, or None if the rule does not trigger
        """
        if not self.applies_to(signal):
            return None

        if self.pattern_type is PatternType.DOMAIN_SET:
            # Links and requests are matched on the host of their URL
            host = signal.ctx("host") if signal.kind in (SignalKind.LINK, SignalKind.REQUEST) else signal.value
            if not host:
                return None
            host = normalize_text(host)
            for domain in self._normalized:
                if domain in host:
                    return domain
            return None

        if not signal.value:
            return None
        text = normalize_text(signal.value)

        if self.pattern_type is PatternType.KEYWORD:
            matched = [kw for kw in self._normalized if kw in text]
            return ", ".join(matched) if matched else None

        for regex in self._compiled:
            found = regex.search(text)
            if found:
                return found.group(0)[:MAX_MATCHED_VALUE_LENGTH]
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category.value,
            "patternType": self.pattern_type.value,
            "patterns": list(self.patterns),
            "weight": self.weight,
            "severity": self.severity.value,
            "kinds": sorted(kind.value for kind in self.kinds),
            "description": self.description,
            "requires": dict(self.requires),
        }


class RuleCatalog:
    """Ordered, immutable collection of rules."""

    def __init__(self, rules: list[RuleEntry], version: str = "1") -> None:
        seen = set()
        for rule in rules:
            if rule.id in seen:
                raise CatalogError(
                    code="duplicate_rule",
                    message=f"Duplicate rule id {rule.id!r}",
                    details={"rule_id": rule.id},
                )
            seen.add(rule.id)
        self._rules = tuple(rules)
        self._version = version

    @property
    def version(self) -> str:
        return self._version

    @property
    def rules(self) -> tuple[RuleEntry, ...]:
        return self._rules

    @property
    def categories(self) -> tuple[Category, ...]:
        """Categories in order of first appearance."""
        return tuple(dict.fromkeys(rule.category for rule in self._rules))

    def rules_for(self, category: Category) -> tuple[RuleEntry, ...]:
        return tuple(rule for rule in self._rules if rule.category is category)

    def get(self, rule_id: str) -> Optional[RuleEntry]:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def match_all(self, signal: Signal, timestamp: str = "") -> list[Finding]:
        """
        Evaluate every rule against one signal.

        Rules are tried in catalog order; once a rule of a category matches,
        the remaining rules of that category are skipped for this signal.
        """
        findings = []
        matched_categories = set()
        for rule in self._rules:
            if rule.category in matched_categories:
                continue
            matched = rule.match(signal)
            if matched is None:
                continue
            matched_categories.add(rule.category)
            findings.append(
                Finding(
                    rule_id=rule.id,
                    category=rule.category,
                    severity=rule.severity,
                    weight=rule.weight,
                    description=rule.description,
                    matched_value=matched,
                    timestamp=timestamp,
                )
            )
        return findings

    def to_dict(self) -> dict:
        return {"version": self._version, "rules": [rule.to_dict() for rule in self._rules]}

    def __len__(self) -> int:
        return len(self._rules)


def rule_from_dict(data: Any) -> RuleEntry:
    """
    Build a rule from its JSON form.

    Raises:
        CatalogError: If a field is missing or invalid
    """
    if not isinstance(data, dict):
        raise CatalogError(code="invalid_rule", message="Rule is not an object", details={})
    rule_id = str(data.get("id", ""))
    try:
        patterns = data["patterns"]
        if isinstance(patterns, str) or not isinstance(patterns, list):
            raise TypeError("patterns must be a list")
        requires = data.get("requires") or {}
        if not isinstance(requires, dict):
            raise TypeError("requires must be an object")
        return RuleEntry(
            id=rule_id,
            category=Category(data["category"]),
            pattern_type=PatternType(data.get("patternType", "keyword")),
            patterns=tuple(str(p) for p in patterns),
            weight=data["weight"],
            severity=Severity(data["severity"]),
            kinds=frozenset(SignalKind(kind) for kind in data["kinds"]),
            description=str(data.get("description", "")),
            requires=tuple(sorted((str(k), str(v)) for k, v in requires.items())),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CatalogError(
            code="invalid_rule",
            message=f"Invalid rule {rule_id!r}: {e}",
            details={"rule_id": rule_id},
        )


def catalog_from_dict(data: Any) -> RuleCatalog:
    """Build a catalog from ``{"version": ..., "rules": [...]}``."""
    if not isinstance(data, dict) or not isinstance(data.get("rules"), list):
        raise CatalogError(
            code="invalid_catalog",
            message="Catalog must be an object with a 'rules' list",
            details={},
        )
    return RuleCatalog(
        [rule_from_dict(item) for item in data["rules"]],
        version=str(data.get("version", "1")),
    )


def load_catalog(path: Path) -> RuleCatalog:
    """
    Load a catalog from a JSON file.

    Raises:
        CatalogError: If the file cannot be read, parsed, or validated
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(
            code="load_error",
            message=f"Failed to load catalog: {e}",
            details={"path": str(path)},
        )
    return catalog_from_dict(data)


PHISHING_KEYWORDS = (
    "urgent", "click here", "verify now", "suspended", "act now",
    "winner", "congratulations", "claim", "prize", "lottery",
    "bitcoin", "cryptocurrency", "investment", "roi", "profit",
    "guaranteed", "risk-free", "double your money", "easy money",
    "make money fast", "work from home", "free money", "get rich quick",
)

GAMBLING_KEYWORDS = (
    "casino", "poker", "rummy", "betting", "slots", "jackpot", "gamble",
    "wager", "bet", "odds", "blackjack", "roulette", "dice", "lottery",
    "scratch card", "bingo", "sports betting", "horse racing",
)

PHISHING_PATTERNS = (
    r"urgent.*action.*required",
    r"verify.*account.*immediately",
    r"suspended.*account",
    r"click.*here.*now",
    r"limited.*time.*offer",
)

CREDENTIAL_PATTERNS = (
    r"password\s*[:=]\s*[^\s]+",
    r"username\s*[:=]\s*[^\s]+",
    r"api[_-]?key\s*[:=]\s*[^\s]+",
    r"secret\s*[:=]\s*[^\s]+",
    r"token\s*[:=]\s*[^\s]+",
)

SENSITIVE_ENDPOINT_PATTERNS = (
    r"password", r"login", r"auth", r"token", r"api[_-]?key", r"secret",
)

MALWARE_SIGNATURES = (
    "eval(unescape(",
    "document.write(unescape(",
    "javascript:void(0)",
    'onclick="javascript:',
)

KNOWN_MALICIOUS_DOMAINS = (
    "example-phishing.com",
    "fake-bank.net",
    "suspicious-site.org",
)

SENSITIVE_FIELD_NAMES = (
    "password", "ssn", "social", "credit", "card", "cvv",
    "bank", "account", "routing", "pin", "security",
)

LINK_SHORTENERS = (
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
    "short.link", "rebrand.ly", "cutt.ly", "tiny.cc", "is.gd",
)


def default_catalog() -> RuleCatalog:
    """The built-in catalog."""
    K = SignalKind
    return RuleCatalog(
        [
            RuleEntry(
                id="phishing.patterns",
                category=Category.PHISHING,
                pattern_type=PatternType.REGEX,
                patterns=PHISHING_PATTERNS,
                weight=25,
                severity=Severity.HIGH,
                kinds=frozenset({K.TITLE, K.TEXT}),
                description="Phishing phrase pattern detected",
            ),
            RuleEntry(
                id="phishing.keywords",
                category=Category.PHISHING,
                pattern_type=PatternType.KEYWORD,
                patterns=PHISHING_KEYWORDS,
                weight=25,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.TITLE, K.TEXT}),
                description="Phishing keywords detected",
            ),
            RuleEntry(
                id="gambling.domain",
                category=Category.GAMBLING,
                pattern_type=PatternType.KEYWORD,
                patterns=GAMBLING_KEYWORDS,
                weight=50,
                severity=Severity.HIGH,
                kinds=frozenset({K.DOMAIN, K.TITLE}),
                description="Gambling site detected",
            ),
            RuleEntry(
                id="gambling.text",
                category=Category.GAMBLING,
                pattern_type=PatternType.KEYWORD,
                patterns=GAMBLING_KEYWORDS,
                weight=20,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.TEXT}),
                description="Gambling content detected",
            ),
            RuleEntry(
                id="insecure.http_url",
                category=Category.INSECURE,
                pattern_type=PatternType.REGEX,
                patterns=(r"^http://(?!localhost\b|127\.0\.0\.1\b)",),
                weight=20,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.URL}),
                description="Insecure HTTP connection",
            ),
            RuleEntry(
                id="insecure.form_action",
                category=Category.INSECURE,
                pattern_type=PatternType.REGEX,
                patterns=(r"^http://",),
                weight=25,
                severity=Severity.HIGH,
                kinds=frozenset({K.FORM}),
                description="Form submits data over HTTP",
            ),
            RuleEntry(
                id="insecure.password_input",
                category=Category.INSECURE,
                pattern_type=PatternType.REGEX,
                patterns=(r"^password:",),
                weight=20,
                severity=Severity.HIGH,
                kinds=frozenset({K.INPUT}),
                requires=(("page_scheme", "http"),),
                description="Password field on an HTTP page",
            ),
            RuleEntry(
                id="malware.signatures",
                category=Category.MALWARE,
                pattern_type=PatternType.KEYWORD,
                patterns=MALWARE_SIGNATURES,
                weight=60,
                severity=Severity.CRITICAL,
                kinds=frozenset({K.SCRIPT}),
                description="Known malicious script signature",
            ),
            RuleEntry(
                id="malware.known_domains",
                category=Category.MALWARE,
                pattern_type=PatternType.DOMAIN_SET,
                patterns=KNOWN_MALICIOUS_DOMAINS,
                weight=50,
                severity=Severity.HIGH,
                kinds=frozenset({K.DOMAIN, K.LINK, K.REQUEST}),
                description="Known malicious domain",
            ),
            RuleEntry(
                id="data_collection.sensitive_fields",
                category=Category.DATA_COLLECTION,
                pattern_type=PatternType.KEYWORD,
                patterns=SENSITIVE_FIELD_NAMES,
                weight=10,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.INPUT}),
                description="Sensitive data field",
            ),
            RuleEntry(
                id="sensitive_data.credentials",
                category=Category.SENSITIVE_DATA,
                pattern_type=PatternType.REGEX,
                patterns=CREDENTIAL_PATTERNS,
                weight=30,
                severity=Severity.HIGH,
                kinds=frozenset({K.TEXT, K.SCRIPT}),
                description="Credentials exposed in page content",
            ),
            RuleEntry(
                id="sensitive_data.endpoints",
                category=Category.SENSITIVE_DATA,
                pattern_type=PatternType.REGEX,
                patterns=SENSITIVE_ENDPOINT_PATTERNS,
                weight=15,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.REQUEST}),
                description="Request to a sensitive endpoint",
            ),
            RuleEntry(
                id="domain_risk.shortener_links",
                category=Category.DOMAIN_RISK,
                pattern_type=PatternType.DOMAIN_SET,
                patterns=LINK_SHORTENERS,
                weight=10,
                severity=Severity.MEDIUM,
                kinds=frozenset({K.LINK}),
                description="Link through a URL shortener",
            ),
        ],
        version="2024.1",
    )


class CatalogProvider:
    """
    Holds the current catalog and reloads it on demand.

    ``source`` is a file path or an http(s) URL. A failed refresh is logged
    and leaves the current catalog in place.
    """

    COMPONENT = "CatalogProvider"

    def __init__(
        self,
        initial: Optional[RuleCatalog] = None,
        source: Optional[str] = None,
        timeout: float = 10.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._catalog = initial or default_catalog()
        self._source = source
        self._timeout = timeout
        self._logger = logger

    @property
    def current(self) -> RuleCatalog:
        return self._catalog

    @property
    def source(self) -> Optional[str]:
        return self._source

    async def refresh(self) -> bool:
        """
        Reload the catalog from its source.

        Returns:
            True if a new catalog was installed
        """
        if not self._source:
            return False
        try:
            if self._source.startswith(("http://", "https://")):
                catalog = await self._fetch(self._source)
            else:
                catalog = await asyncio.to_thread(load_catalog, Path(self._source))
        except CatalogError as e:
            self._log_error("Catalog refresh failed, keeping current catalog", e)
            return False

        previous = self._catalog.version
        self._catalog = catalog
        self._log(
            LogLevel.INFO,
            "Catalog refreshed",
            {"source": self._source, "previous_version": previous, "version": catalog.version, "rules": len(catalog)},
        )
        return True

    async def _fetch(self, url: str) -> RuleCatalog:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogError(
                code="fetch_error",
                message=f"Failed to fetch catalog: {e}",
                details={"url": url},
            )
        return catalog_from_dict(data)

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Exception) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error, additional_data={"source": self._source})
