"""
Enumeration types for the page risk engine.

These enums provide type-safe constants for signal kinds, rule categories,
severities, ledger kinds and command discriminants.
"""

from enum import Enum


class SignalKind(Enum):
    """Kind of observation extracted from a page."""

    URL = "url"
    DOMAIN = "domain"
    TITLE = "title"
    TEXT = "text"
    FORM = "form"
    INPUT = "input"
    LINK = "link"
    SCRIPT = "script"
    REQUEST = "request"


class Category(Enum):
    """Rule and finding category."""

    PHISHING = "phishing"
    GAMBLING = "gambling"
    INSECURE = "insecure"
    MALWARE = "malware"
    DATA_COLLECTION = "data_collection"
    SENSITIVE_DATA = "sensitive_data"
    TYPOSQUAT = "typosquat"
    DOMAIN_RISK = "domain_risk"


class Severity(Enum):
    """Finding severity, ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering findings."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class PatternType(Enum):
    """How a rule's patterns are matched against a signal."""

    KEYWORD = "keyword"
    REGEX = "regex"
    DOMAIN_SET = "domain_set"


class LedgerKind(Enum):
    """Ledger stores; the value is the persistence key."""

    THREAT_HISTORY = "threatHistory"
    EVIDENCE = "evidenceList"
    ANALYSIS_HISTORY = "analysisHistory"


class RiskLevel(Enum):
    """Coarse risk level of a free-text analysis."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class CommandType(Enum):
    """Discriminant of engine commands; values are the message actions."""

    ANALYZE_PAGE = "analyzePage"
    SCAN_HTML = "scanHtml"
    REPORT_THREAT = "threatDetected"
    REPORT_SENSITIVE_DATA = "sensitiveDataDetected"
    ANALYZE_TEXT = "analyzeText"
    ADD_EVIDENCE = "addEvidence"
    GET_EVIDENCE = "getEvidence"
    EXPORT_EVIDENCE = "exportEvidence"
    GET_THREAT_HISTORY = "getThreatHistory"
    CLEAR_THREAT_HISTORY = "clearThreatHistory"
    GET_ANALYSIS_HISTORY = "getAnalysisHistory"
    GET_THREAT_STATUS = "getThreatStatus"
    UPDATE_SETTINGS = "updateSettings"
    GET_SETTINGS = "getSettings"
    EMERGENCY_STOP = "emergencyStop"
