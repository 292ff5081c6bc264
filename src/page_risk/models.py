"""
Data models for the page risk engine.

Page input, extracted signals, findings, score results and ledger entries.
Everything produced by the engine is a frozen value object; callers can keep
references without being affected by later ledger eviction.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .enums import Category, LedgerKind, RiskLevel, Severity, SignalKind
from .exceptions import InvalidInputError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a trailing Z, e.g. 2024-01-31T12:00:00.000Z."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class FormInfo:
    """A form element as seen in a DOM snapshot."""

    action: str = ""
    method: str = "get"
    has_password: bool = False


@dataclass(frozen=True)
class InputInfo:
    """An input element as seen in a DOM snapshot."""

    type: str = ""
    name: str = ""
    placeholder: str = ""


@dataclass(frozen=True)
class LinkInfo:
    """An anchor element as seen in a DOM snapshot."""

    href: str
    text: str = ""


@dataclass(frozen=True)
class ScriptInfo:
    """A script element: external src and/or inline source."""

    src: str = ""
    inline: str = ""


@dataclass(frozen=True)
class NetworkRequest:
    """A network request issued by the page (fetch/XHR)."""

    url: str
    method: str = "GET"


@dataclass(frozen=True)
class DomSnapshot:
    """Structural view of a page's DOM."""

    forms: tuple[FormInfo, ...] = ()
    inputs: tuple[InputInfo, ...] = ()
    links: tuple[LinkInfo, ...] = ()
    scripts: tuple[ScriptInfo, ...] = ()


@dataclass(frozen=True)
class PageData:
    """Raw page data supplied by a page source."""

    url: Optional[str]
    title: Optional[str] = None
    body_text: Optional[str] = None
    dom: Optional[DomSnapshot] = None
    requests: tuple[NetworkRequest, ...] = ()


@dataclass(frozen=True)
class Signal:
    """One observation extracted from a page."""

    kind: SignalKind
    value: Optional[str]
    context: tuple[tuple[str, str], ...] = ()

    @classmethod
    def create(cls, kind: SignalKind, value: Optional[str], **context: Any) -> "Signal":
        """Build a signal, dropping empty context values."""
        pairs = tuple(
            sorted((key, str(val)) for key, val in context.items() if val not in (None, ""))
        )
        return cls(kind=kind, value=value, context=pairs)

    def ctx(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a context value."""
        for name, val in self.context:
            if name == key:
                return val
        return default


@dataclass(frozen=True)
class Finding:
    """Result of one rule triggering on one signal."""

    rule_id: str
    category: Category
    severity: Severity
    weight: int
    description: str
    matched_value: str
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "ruleId": self.rule_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "weight": self.weight,
            "description": self.description,
            "matchedValue": self.matched_value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Finding":
        """
        Rebuild a finding from its persisted form.

        Raises:
            InvalidInputError: If a field is missing or has the wrong type
        """
        try:
            weight = data["weight"]
            if not isinstance(weight, int) or isinstance(weight, bool):
                raise TypeError("weight must be an integer")
            return cls(
                rule_id=str(data["ruleId"]),
                category=Category(data["category"]),
                severity=Severity(data["severity"]),
                weight=weight,
                description=str(data.get("description", "")),
                matched_value=str(data.get("matchedValue", "")),
                timestamp=str(data.get("timestamp", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(
                code="invalid_finding",
                message=f"Invalid persisted finding: {e}",
                details={"record": data if isinstance(data, dict) else repr(data)},
            )


@dataclass(frozen=True)
class ScoreResult:
    """Bounded score plus ordered findings."""

    score: int
    findings: tuple[Finding, ...] = ()
    notify_worthy: bool = False

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "findings": [finding.to_dict() for finding in self.findings],
            "notifyWorthy": self.notify_worthy,
        }


EMPTY_RESULT = ScoreResult(score=0, findings=())


@dataclass(frozen=True)
class TextAnalysis:
    """Weighted term analysis of a block of free text."""

    risk_level: RiskLevel
    risk_score: int
    terms: tuple[str, ...]
    summary: str

    def to_dict(self) -> dict:
        return {
            "riskLevel": self.risk_level.value,
            "riskScore": self.risk_score,
            "threats": list(self.terms),
            "analysis": self.summary,
        }


@dataclass(frozen=True)
class LedgerEntry:
    """
    A persisted ledger record.

    Threat and analysis entries usually carry findings and a score; evidence
    entries usually carry an evidence text excerpt and a category instead.
    """

    kind: LedgerKind
    entry_type: str
    subject_url: str = ""
    description: str = ""
    score: Optional[int] = None
    findings: tuple[Finding, ...] = ()
    evidence_text: Optional[str] = None
    category: Optional[str] = None
    details: tuple[tuple[str, str], ...] = ()
    id: int = 0
    created_at: str = ""

    def with_identity(self, entry_id: int, created_at: str) -> "LedgerEntry":
        """Return a copy carrying the ledger-assigned id and timestamp."""
        return replace(self, id=entry_id, created_at=self.created_at or created_at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.entry_type,
            "url": self.subject_url,
            "description": self.description,
            "score": self.score,
            "category": self.category,
            "findings": [finding.to_dict() for finding in self.findings],
            "data": self.evidence_text,
            "details": dict(self.details),
            "timestamp": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any, kind: LedgerKind) -> "LedgerEntry":
        """
        Rebuild and validate a persisted entry.

        Raises:
            InvalidInputError: If the record does not match the entry schema
        """
        if not isinstance(data, dict):
            raise InvalidInputError(
                code="invalid_entry",
                message="Ledger record is not an object",
                details={"record": repr(data)},
            )
        try:
            entry_id = data["id"]
            if not isinstance(entry_id, int) or isinstance(entry_id, bool):
                raise TypeError("id must be an integer")
            score = data.get("score")
            if score is not None and (not isinstance(score, int) or isinstance(score, bool)):
                raise TypeError("score must be an integer or null")
            details = data.get("details") or {}
            if not isinstance(details, dict):
                raise TypeError("details must be an object")
            evidence_text = data.get("data")
            if evidence_text is not None and not isinstance(evidence_text, str):
                raise TypeError("data must be a string or null")
            category = data.get("category")
            return cls(
                kind=kind,
                entry_type=str(data.get("type", "")),
                subject_url=str(data.get("url") or ""),
                description=str(data.get("description") or ""),
                score=score,
                findings=tuple(
                    Finding.from_dict(item) for item in data.get("findings") or []
                ),
                evidence_text=evidence_text,
                category=str(category) if category is not None else None,
                details=tuple(sorted((str(k), str(v)) for k, v in details.items())),
                id=entry_id,
                created_at=str(data.get("timestamp") or ""),
            )
        except (KeyError, TypeError) as e:
            raise InvalidInputError(
                code="invalid_entry",
                message=f"Invalid ledger record: {e}",
                details={"kind": kind.value},
            )


@dataclass
class LedgerResult:
    """Outcome of a ledger mutation; errors are returned, not raised."""

    ok: bool
    entry_id: Optional[int] = None
    evicted: int = 0
    error: Optional[Exception] = None


@dataclass
class ScanRecord:
    """Most recent scan of a URL, kept in the engine's scan cache."""

    url: str
    result: ScoreResult
    scanned_at: float
    page: Optional[PageData] = None
    notified: bool = False
    errors: list[str] = field(default_factory=list)
