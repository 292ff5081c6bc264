"""
Configuration dataclasses for the page risk engine.

This module defines all configuration structures used throughout the system,
including the user-facing settings, ledger capacities, domain heuristics,
catalog refresh, scheduling, notifications, persistence, and logging.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class Settings:
    """
    Process-wide user settings.

    Persisted under the ``settings`` key with camelCase field names. A field
    whose persisted value has the wrong type falls back to its default.
    """

    real_time_scanning: bool = True
    notifications_enabled: bool = True
    privacy_mode: bool = False
    notify_threshold: int = 70
    auto_evidence: bool = True

    _KEYS = {
        "real_time_scanning": "realTimeScanning",
        "notifications_enabled": "notificationsEnabled",
        "privacy_mode": "privacyMode",
        "notify_threshold": "notifyThreshold",
        "auto_evidence": "autoEvidence",
    }

    def to_dict(self) -> dict:
        return {key: getattr(self, name) for name, key in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "Settings":
        """Build settings from a persisted mapping, field by field."""
        if not isinstance(data, dict):
            return cls()
        defaults = cls()
        values = {}
        for f in fields(cls):
            key = cls._KEYS[f.name]
            default = getattr(defaults, f.name)
            values[f.name] = _coerce(data.get(key, default), default)
        return cls(**values)

    def merged(self, partial: Any) -> "Settings":
        """Return a copy with the valid fields of ``partial`` applied."""
        if not isinstance(partial, dict):
            return self
        changes = {}
        for name, key in self._KEYS.items():
            if key in partial:
                current = getattr(self, name)
                value = _coerce(partial[key], None, like=current)
                if value is not None:
                    changes[name] = value
        return replace(self, **changes)


def _coerce(value: Any, default: Any, like: Any = None) -> Any:
    """Return ``value`` when it has the type of the reference, else ``default``."""
    reference = like if like is not None else default
    if isinstance(reference, bool):
        return value if isinstance(value, bool) else default
    if isinstance(reference, int):
        if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100:
            return value
        return default
    return default


@dataclass
class LedgerConfig:
    """Ledger capacities, store timeouts and aggregate weights."""

    threat_capacity: Optional[int] = 100
    analysis_capacity: Optional[int] = 50
    evidence_capacity: Optional[int] = None
    export_limit: int = 1000
    read_timeout_seconds: float = 5.0
    write_timeout_seconds: float = 5.0
    strict_invariants: bool = False
    # Contribution of an entry without its own score, keyed by entry type or category
    entry_weights: dict[str, int] = field(
        default_factory=lambda: {
            "phishing": 25,
            "gambling": 30,
            "insecure_form": 20,
            "sensitive_request": 15,
            "sensitive_data": 30,
            "malware": 50,
            "manual": 10,
        }
    )
    default_entry_weight: int = 10


@dataclass
class HeuristicsConfig:
    """Domain heuristic lists and weights."""

    shorteners: list[str] = field(
        default_factory=lambda: [
            "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
            "short.link", "rebrand.ly", "cutt.ly", "tiny.cc", "is.gd",
        ]
    )
    disallowed_tlds: list[str] = field(default_factory=lambda: ["tk", "ml", "ga", "cf"])
    brands: list[str] = field(
        default_factory=lambda: [
            "google.com", "facebook.com", "amazon.com", "microsoft.com",
            "apple.com", "twitter.com", "linkedin.com", "youtube.com",
        ]
    )
    shortener_weight: int = 30
    suspicious_weight: int = 20
    typosquat_weight: int = 40
    typosquat_threshold: int = 2
    min_digit_run: int = 5
    min_hyphen_segments: int = 3


@dataclass
class CatalogConfig:
    """Where the rule catalog is loaded from; None means the built-in catalog."""

    source: Optional[str] = None
    fetch_timeout_seconds: float = 10.0


@dataclass
class SchedulerConfig:
    """Intervals of the background jobs, in seconds."""

    rescan_interval_seconds: float = 300.0
    trim_interval_seconds: float = 600.0
    catalog_refresh_interval_seconds: float = 3600.0
    cache_cleanup_interval_seconds: float = 3600.0
    scan_cache_max_age_seconds: float = 86400.0


@dataclass
class TelegramConfig:
    """Telegram notification channel configuration."""

    bot_token: str
    chat_id: str


@dataclass
class DiscordConfig:
    """Discord notification channel configuration."""

    webhook_url: str


@dataclass
class WebhookConfig:
    """Generic webhook notification channel configuration."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class NotificationConfig:
    """Notification channels and delivery retry configuration."""

    telegram: Optional[TelegramConfig] = None
    discord: Optional[DiscordConfig] = None
    webhook: Optional[WebhookConfig] = None
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    timeout_seconds: float = 30.0


@dataclass
class PersistenceConfig:
    """Persistence and state storage configuration."""

    state_file_path: Optional[Path] = None
    hmac_secret: str = ""


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "json"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    heuristics: HeuristicsConfig = field(default_factory=HeuristicsConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
