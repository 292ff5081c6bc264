"""
Command-line interface for the page risk engine.

Thin glue over the engine's commands:
- scan: score a URL (fetched, or from a local HTML file)
- text: analyze a piece of text
- evidence: list or add evidence
- history: show or clear threat history, show analysis history
- export: write the evidence report
- settings: show or change persisted settings
- config: configuration management
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

from . import __version__
from .audit_logger import AuditLogger
from .commands import (
    AddEvidence,
    AnalyzeText,
    ClearThreatHistory,
    ExportEvidence,
    GetAnalysisHistory,
    GetEvidence,
    GetSettings,
    GetThreatHistory,
    ScanHtml,
    UpdateSettings,
)
from .config import (
    CatalogConfig,
    DiscordConfig,
    HeuristicsConfig,
    LedgerConfig,
    LoggingConfig,
    NotificationConfig,
    PersistenceConfig,
    SchedulerConfig,
    SystemConfig,
    TelegramConfig,
    WebhookConfig,
)
from .engine import RiskEngine
from .notifications import NotificationRouter
from .store import InMemoryStore, JsonFileStore, KeyValueStore


DEFAULT_HOME = Path.home() / ".page_risk"
DEFAULT_HMAC_SECRET = "default-secret-change-me"


def create_default_config(
    state_file: Optional[Path] = None,
    hmac_secret: str = DEFAULT_HMAC_SECRET,
) -> SystemConfig:
    """Default configuration persisting to ``~/.page_risk/state.json``."""
    return SystemConfig(
        persistence=PersistenceConfig(
            state_file_path=state_file or DEFAULT_HOME / "state.json",
            hmac_secret=hmac_secret,
        ),
        logging=LoggingConfig(level="warn", output_format="text"),
    )


def _section(data: dict, key: str) -> dict:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Returns:
        SystemConfig, or None if the file is missing or invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise TypeError("configuration must be a JSON object")

        ledger_data = _section(data, "ledger")
        defaults = LedgerConfig()
        ledger = LedgerConfig(
            threat_capacity=ledger_data.get("threat_capacity", defaults.threat_capacity),
            analysis_capacity=ledger_data.get("analysis_capacity", defaults.analysis_capacity),
            evidence_capacity=ledger_data.get("evidence_capacity", defaults.evidence_capacity),
            export_limit=ledger_data.get("export_limit", defaults.export_limit),
            read_timeout_seconds=ledger_data.get("read_timeout_seconds", defaults.read_timeout_seconds),
            write_timeout_seconds=ledger_data.get("write_timeout_seconds", defaults.write_timeout_seconds),
            strict_invariants=ledger_data.get("strict_invariants", defaults.strict_invariants),
            entry_weights={**defaults.entry_weights, **_section(ledger_data, "entry_weights")},
        )

        heuristics_data = _section(data, "heuristics")
        heuristics = HeuristicsConfig(**{
            key: value for key, value in heuristics_data.items()
            if key in HeuristicsConfig.__dataclass_fields__
        })

        catalog_data = _section(data, "catalog")
        catalog = CatalogConfig(
            source=catalog_data.get("source"),
            fetch_timeout_seconds=catalog_data.get("fetch_timeout_seconds", 10.0),
        )

        scheduler = SchedulerConfig(**{
            key: value for key, value in _section(data, "scheduler").items()
            if key in SchedulerConfig.__dataclass_fields__
        })

        notifications_data = _section(data, "notifications")
        notifications = NotificationConfig(
            max_retries=notifications_data.get("max_retries", 3),
            base_delay_seconds=notifications_data.get("base_delay_seconds", 1.0),
            max_delay_seconds=notifications_data.get("max_delay_seconds", 30.0),
        )
        telegram_data = _section(notifications_data, "telegram")
        if telegram_data.get("enabled") and telegram_data.get("bot_token") and telegram_data.get("chat_id"):
            notifications.telegram = TelegramConfig(
                bot_token=telegram_data["bot_token"],
                chat_id=telegram_data["chat_id"],
            )
        discord_data = _section(notifications_data, "discord")
        if discord_data.get("enabled") and discord_data.get("webhook_url"):
            notifications.discord = DiscordConfig(webhook_url=discord_data["webhook_url"])
        webhook_data = _section(notifications_data, "webhook")
        if webhook_data.get("enabled") and webhook_data.get("url"):
            notifications.webhook = WebhookConfig(
                url=webhook_data["url"],
                headers=webhook_data.get("headers", {}),
            )

        persistence_data = _section(data, "persistence")
        state_file_path = persistence_data.get("state_file_path")
        persistence = PersistenceConfig(
            state_file_path=Path(state_file_path) if state_file_path else DEFAULT_HOME / "state.json",
            hmac_secret=persistence_data.get("hmac_secret", DEFAULT_HMAC_SECRET),
        )

        logging_data = _section(data, "logging")
        logging_config = LoggingConfig(
            level=logging_data.get("level", "warn"),
            audit_mode=logging_data.get("audit_mode", False),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )

        return SystemConfig(
            ledger=ledger,
            heuristics=heuristics,
            catalog=catalog,
            scheduler=scheduler,
            notifications=notifications,
            persistence=persistence,
            logging=logging_config,
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """Save configuration to a JSON file; False on failure."""
    notifications = config.notifications
    data = {
        "ledger": {
            "threat_capacity": config.ledger.threat_capacity,
            "analysis_capacity": config.ledger.analysis_capacity,
            "evidence_capacity": config.ledger.evidence_capacity,
            "export_limit": config.ledger.export_limit,
            "read_timeout_seconds": config.ledger.read_timeout_seconds,
            "write_timeout_seconds": config.ledger.write_timeout_seconds,
            "strict_invariants": config.ledger.strict_invariants,
            "entry_weights": dict(config.ledger.entry_weights),
        },
        "heuristics": {
            "shorteners": list(config.heuristics.shorteners),
            "disallowed_tlds": list(config.heuristics.disallowed_tlds),
            "brands": list(config.heuristics.brands),
            "shortener_weight": config.heuristics.shortener_weight,
            "suspicious_weight": config.heuristics.suspicious_weight,
            "typosquat_weight": config.heuristics.typosquat_weight,
            "typosquat_threshold": config.heuristics.typosquat_threshold,
        },
        "catalog": {
            "source": config.catalog.source,
            "fetch_timeout_seconds": config.catalog.fetch_timeout_seconds,
        },
        "scheduler": {
            "rescan_interval_seconds": config.scheduler.rescan_interval_seconds,
            "trim_interval_seconds": config.scheduler.trim_interval_seconds,
            "catalog_refresh_interval_seconds": config.scheduler.catalog_refresh_interval_seconds,
            "cache_cleanup_interval_seconds": config.scheduler.cache_cleanup_interval_seconds,
            "scan_cache_max_age_seconds": config.scheduler.scan_cache_max_age_seconds,
        },
        "notifications": {
            "max_retries": notifications.max_retries,
            "base_delay_seconds": notifications.base_delay_seconds,
            "max_delay_seconds": notifications.max_delay_seconds,
            "telegram": {
                "enabled": notifications.telegram is not None,
                "bot_token": notifications.telegram.bot_token if notifications.telegram else "",
                "chat_id": notifications.telegram.chat_id if notifications.telegram else "",
            },
            "discord": {
                "enabled": notifications.discord is not None,
                "webhook_url": notifications.discord.webhook_url if notifications.discord else "",
            },
            "webhook": {
                "enabled": notifications.webhook is not None,
                "url": notifications.webhook.url if notifications.webhook else "",
                "headers": dict(notifications.webhook.headers) if notifications.webhook else {},
            },
        },
        "persistence": {
            "state_file_path": str(config.persistence.state_file_path or ""),
            "hmac_secret": config.persistence.hmac_secret,
        },
        "logging": {
            "level": config.logging.level,
            "audit_mode": config.logging.audit_mode,
            "audit_signing_key": config.logging.audit_signing_key,
            "output_format": config.logging.output_format,
        },
    }

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def create_logger(config: SystemConfig) -> AuditLogger:
    logger = AuditLogger.from_level_name(
        config.logging.level,
        output_format=config.logging.output_format,
        output_stream=sys.stderr,
    )
    if config.logging.audit_mode and config.logging.audit_signing_key:
        logger.enable_audit_mode(config.logging.audit_signing_key)
    return logger


def create_store(config: SystemConfig) -> KeyValueStore:
    persistence = config.persistence
    if persistence.state_file_path and persistence.hmac_secret:
        return JsonFileStore(persistence.state_file_path, persistence.hmac_secret)
    return InMemoryStore()


def create_notification_router(
    config: SystemConfig,
    logger: Optional[AuditLogger] = None,
) -> Optional[NotificationRouter]:
    """Router for the configured channels, None when no channel is configured."""
    n = config.notifications
    if not any([n.telegram, n.discord, n.webhook]):
        return None
    return NotificationRouter.from_config(n, logger)


async def execute(config: SystemConfig, command: Any) -> int:
    """Run one command against an engine built from ``config`` and print the result."""
    logger = create_logger(config)
    engine = RiskEngine(
        config=config,
        store=create_store(config),
        notification_router=create_notification_router(config, logger),
        logger=logger,
    )
    async with engine:
        result = await engine.handle(command)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.ok else 1


def _resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    if getattr(args, "config", None):
        config = load_config_from_file(Path(args.config))
        if config is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
        return config
    return create_default_config()


def cmd_scan(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    html = None
    if args.html:
        try:
            html = Path(args.html).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            print(f"Error reading {args.html}: {e}", file=sys.stderr)
            return 1
    return asyncio.run(execute(config, ScanHtml(url=args.url, html=html)))


def cmd_text(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    text = args.text if args.text is not None else sys.stdin.read()
    return asyncio.run(execute(config, AnalyzeText(text=text, url=args.url or "")))


def cmd_evidence(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    if args.action == "add":
        if not args.url:
            print("Error: --url is required to add evidence", file=sys.stderr)
            return 1
        command = AddEvidence(
            url=args.url,
            evidence_type=args.type,
            data=args.data or "",
            category=args.category,
            description=args.description or "",
        )
    else:
        command = GetEvidence()
    return asyncio.run(execute(config, command))


def cmd_history(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    if args.clear:
        command = ClearThreatHistory()
    elif args.analysis:
        command = GetAnalysisHistory()
    else:
        command = GetThreatHistory()
    return asyncio.run(execute(config, command))


def cmd_export(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    return asyncio.run(execute(config, ExportEvidence(directory=args.output_dir)))


def _parse_setting(assignment: str) -> tuple[str, Any]:
    """Parse ``key=value`` where value is JSON (true, false, 70) or a bare string."""
    key, sep, raw = assignment.partition("=")
    if not sep or not key:
        raise ValueError(f"Expected key=value, got {assignment!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def cmd_settings(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    if config is None:
        return 1
    if args.action == "set":
        try:
            partial = dict(_parse_setting(item) for item in args.values)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        command = UpdateSettings(settings=partial)
    else:
        command = GetSettings()
    return asyncio.run(execute(config, command))


def cmd_config(args: argparse.Namespace) -> int:
    config_path = Path(args.path) if args.path else DEFAULT_HOME / "config.json"

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1
        print(f"Configuration from: {config_path}")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Catalog source: {config.catalog.source or 'built-in'}")
        print(f"  Threat history capacity: {config.ledger.threat_capacity}")
        print(f"  Analysis history capacity: {config.ledger.analysis_capacity}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return 0

    if args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1
        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    if args.action == "validate":
        if load_config_from_file(config_path) is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1
        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="page-risk",
        description="Explainable risk scoring for web pages",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    config_option = argparse.ArgumentParser(add_help=False)
    config_option.add_argument("--config", "-c", help="Path to configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    scan_parser = subparsers.add_parser("scan", parents=[config_option], help="Score a web page")
    scan_parser.add_argument("url", help="URL of the page")
    scan_parser.add_argument("--html", help="Score this local HTML file instead of fetching the URL")
    scan_parser.set_defaults(func=cmd_scan)

    text_parser = subparsers.add_parser("text", parents=[config_option], help="Analyze text for risk terms")
    text_parser.add_argument("text", nargs="?", help="Text to analyze (default: read stdin)")
    text_parser.add_argument("--url", help="Page the text came from")
    text_parser.set_defaults(func=cmd_text)

    evidence_parser = subparsers.add_parser("evidence", parents=[config_option], help="List or add evidence")
    evidence_parser.add_argument("action", choices=["list", "add"], nargs="?", default="list")
    evidence_parser.add_argument("--url", help="Page the evidence belongs to")
    evidence_parser.add_argument("--type", default="manual", help="Evidence type (default: manual)")
    evidence_parser.add_argument("--data", help="Evidence text")
    evidence_parser.add_argument("--category", help="Evidence category")
    evidence_parser.add_argument("--description", help="Evidence description")
    evidence_parser.set_defaults(func=cmd_evidence)

    history_parser = subparsers.add_parser("history", parents=[config_option], help="Show threat history")
    history_group = history_parser.add_mutually_exclusive_group()
    history_group.add_argument("--clear", action="store_true", help="Clear the threat history")
    history_group.add_argument("--analysis", action="store_true", help="Show the analysis history instead")
    history_parser.set_defaults(func=cmd_history)

    export_parser = subparsers.add_parser("export", parents=[config_option], help="Export the evidence report")
    export_parser.add_argument("--output-dir", "-o", help="Directory to write the report file to")
    export_parser.set_defaults(func=cmd_export)

    settings_parser = subparsers.add_parser("settings", parents=[config_option], help="Show or change settings")
    settings_parser.add_argument("action", choices=["show", "set"], nargs="?", default="show")
    settings_parser.add_argument("values", nargs="*", help="key=value pairs, e.g. realTimeScanning=false")
    settings_parser.set_defaults(func=cmd_settings)

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_parser.add_argument("action", choices=["show", "init", "validate"], help="Configuration action")
    config_parser.add_argument("--path", "-p", help="Path to configuration file")
    config_parser.add_argument("--force", "-f", action="store_true", help="Force overwrite existing configuration")
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
