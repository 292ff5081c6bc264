"""
Page Risk Engine - explainable risk scoring for web pages.

This package scores pages against a versioned rule catalog and domain
heuristics, records threats, analyses and evidence in capacity-bounded
ledgers, and exports evidence reports.
"""

__version__ = "0.1.0"
__author__ = "Page Risk Engine Team"

from page_risk.exceptions import (
    PageRiskError,
    InvalidInputError,
    StoreUnavailableError,
    TamperingError,
    CapacityInvariantViolation,
    CatalogError,
    PageSourceError,
    CommandError,
    NotificationError,
)
from page_risk.enums import (
    SignalKind,
    Category,
    Severity,
    PatternType,
    LedgerKind,
    RiskLevel,
    LogLevel,
    CommandType,
)
from page_risk.config import (
    Settings,
    LedgerConfig,
    HeuristicsConfig,
    CatalogConfig,
    SchedulerConfig,
    TelegramConfig,
    DiscordConfig,
    WebhookConfig,
    NotificationConfig,
    PersistenceConfig,
    LoggingConfig,
    SystemConfig,
)
from page_risk.models import (
    FormInfo,
    InputInfo,
    LinkInfo,
    ScriptInfo,
    NetworkRequest,
    DomSnapshot,
    PageData,
    Signal,
    Finding,
    ScoreResult,
    TextAnalysis,
    LedgerEntry,
    LedgerResult,
    ScanRecord,
)
from page_risk.audit_logger import (
    AuditLogger,
    LogEntry,
)
from page_risk.store import (
    KeyValueStore,
    InMemoryStore,
    JsonFileStore,
)
from page_risk.extractors import (
    extract_host,
    extract_signals,
)
from page_risk.rule_catalog import (
    RuleEntry,
    RuleCatalog,
    CatalogProvider,
    default_catalog,
    load_catalog,
)
from page_risk.domain_heuristics import (
    DomainHeuristics,
    levenshtein,
)
from page_risk.scorer import RiskScorer
from page_risk.text_analysis import analyze_text
from page_risk.ledger import Ledger
from page_risk.settings_store import SettingsManager
from page_risk.notifications import (
    NotificationPayload,
    NotificationResult,
    NotificationChannel,
    TelegramChannel,
    DiscordChannel,
    WebhookChannel,
    NotificationRouter,
)
from page_risk.scheduler import (
    Scheduler,
    ScheduledJob,
)
from page_risk.page_source import (
    build_dom_snapshot,
    page_from_html,
    fetch_page,
)
from page_risk.export import build_report
from page_risk.commands import (
    CommandDispatcher,
    CommandResult,
    command_from_message,
)
from page_risk.engine import RiskEngine
from page_risk.cli import (
    main as cli_main,
    create_parser,
    create_default_config,
    load_config_from_file,
    save_config_to_file,
)

__all__ = [
    # Exceptions
    "PageRiskError",
    "InvalidInputError",
    "StoreUnavailableError",
    "TamperingError",
    "CapacityInvariantViolation",
    "CatalogError",
    "PageSourceError",
    "CommandError",
    "NotificationError",
    # Enums
    "SignalKind",
    "Category",
    "Severity",
    "PatternType",
    "LedgerKind",
    "RiskLevel",
    "LogLevel",
    "CommandType",
    # Configuration
    "Settings",
    "LedgerConfig",
    "HeuristicsConfig",
    "CatalogConfig",
    "SchedulerConfig",
    "TelegramConfig",
    "DiscordConfig",
    "WebhookConfig",
    "NotificationConfig",
    "PersistenceConfig",
    "LoggingConfig",
    "SystemConfig",
    # Models
    "FormInfo",
    "InputInfo",
    "LinkInfo",
    "ScriptInfo",
    "NetworkRequest",
    "DomSnapshot",
    "PageData",
    "Signal",
    "Finding",
    "ScoreResult",
    "TextAnalysis",
    "LedgerEntry",
    "LedgerResult",
    "ScanRecord",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Storage
    "KeyValueStore",
    "InMemoryStore",
    "JsonFileStore",
    # Signals
    "extract_host",
    "extract_signals",
    # Rule Catalog
    "RuleEntry",
    "RuleCatalog",
    "CatalogProvider",
    "default_catalog",
    "load_catalog",
    # Scoring
    "DomainHeuristics",
    "levenshtein",
    "RiskScorer",
    "analyze_text",
    # Ledgers and settings
    "Ledger",
    "SettingsManager",
    # Notifications
    "NotificationPayload",
    "NotificationResult",
    "NotificationChannel",
    "TelegramChannel",
    "DiscordChannel",
    "WebhookChannel",
    "NotificationRouter",
    # Scheduler
    "Scheduler",
    "ScheduledJob",
    # Page source
    "build_dom_snapshot",
    "page_from_html",
    "fetch_page",
    # Export
    "build_report",
    # Commands
    "CommandDispatcher",
    "CommandResult",
    "command_from_message",
    # Engine
    "RiskEngine",
    # CLI
    "cli_main",
    "create_parser",
    "create_default_config",
    "load_config_from_file",
    "save_config_to_file",
]
