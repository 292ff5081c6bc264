"""
Risk engine.

The orchestration layer wiring every component together:
- signal extraction and risk scoring against the current rule catalog
- threat history, analysis history and evidence ledgers
- persisted settings
- notifications for notify-worthy results and high-priority threats
- the command dispatch table
- background jobs (rescan, ledger trim, catalog refresh, cache cleanup)
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .audit_logger import AuditLogger
from .commands import (
    AddEvidence,
    AnalyzePage,
    AnalyzeText,
    CommandDispatcher,
    CommandResult,
    ExportEvidence,
    GetThreatStatus,
    ReportSensitiveData,
    ReportThreat,
    ScanHtml,
    UpdateSettings,
)
from .config import Settings, SystemConfig
from .domain_heuristics import DomainHeuristics
from .enums import CommandType, LedgerKind, LogLevel, RiskLevel
from .exceptions import PageRiskError
from .export import build_report, write_report
from .extractors import extract_host
from .ledger import Ledger
from .models import (
    EMPTY_RESULT,
    LedgerEntry,
    LedgerResult,
    PageData,
    ScanRecord,
    ScoreResult,
    TextAnalysis,
    utc_now,
)
from .notifications import NotificationPayload, NotificationRouter
from .page_source import fetch_page, page_from_html
from .rule_catalog import CatalogProvider
from .scheduler import Scheduler
from .scorer import RiskScorer
from .settings_store import SettingsManager
from .store import InMemoryStore, KeyValueStore
from .text_analysis import analyze_text


EVIDENCE_EXCERPT_LENGTH = 200


class RiskEngine:
    """
    Main entry point of the page risk engine.

    Use as an async context manager, or call ``start()`` before the first
    command so persisted settings are loaded.
    """

    COMPONENT = "RiskEngine"

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        store: Optional[KeyValueStore] = None,
        notification_router: Optional[NotificationRouter] = None,
        catalog_provider: Optional[CatalogProvider] = None,
        logger: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
        page_fetcher: Callable[[str, float], Awaitable[PageData]] = fetch_page,
    ) -> None:
        self._config = config or SystemConfig()
        self._logger = logger
        self._clock = clock
        self._page_fetcher = page_fetcher
        self._store = store if store is not None else InMemoryStore()

        self._catalogs = catalog_provider or CatalogProvider(
            source=self._config.catalog.source,
            timeout=self._config.catalog.fetch_timeout_seconds,
            logger=logger,
        )
        self._settings = SettingsManager(
            self._store, logger=logger, timeout=self._config.ledger.read_timeout_seconds
        )
        self._scorer = RiskScorer(
            catalog=self._catalogs.current,
            heuristics=DomainHeuristics(self._config.heuristics),
            settings=self._settings.current,
            clock=clock,
            logger=logger,
        )
        self._ledger = Ledger(self._store, self._config.ledger, logger=logger, clock=clock)
        self._router = notification_router
        self._scan_cache: dict[str, ScanRecord] = {}
        self._scheduler: Optional[Scheduler] = None
        self._dispatcher = self._build_dispatcher()

    async def __aenter__(self) -> "RiskEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()

    async def start(self) -> Settings:
        """Load persisted settings."""
        settings = await self._settings.load()
        self._scorer.settings = settings
        self._log_info("Engine started", {"settings": settings.to_dict(), "catalog": self._catalogs.current.version})
        return settings

    @property
    def settings(self) -> Settings:
        return self._settings.current

    @property
    def ledger(self) -> Ledger:
        return self._ledger

    @property
    def scorer(self) -> RiskScorer:
        return self._scorer

    @property
    def catalog_provider(self) -> CatalogProvider:
        return self._catalogs

    @property
    def config(self) -> SystemConfig:
        return self._config

    # -- scoring ---------------------------------------------------------

    async def analyze_page(self, page: PageData) -> ScoreResult:
        """
        Score a page, record it and notify when the result is notify-worthy.

        Persistence or notification failures are logged and recorded on the
        scan cache entry; the score is returned regardless.
        """
        if not self.settings.real_time_scanning:
            return EMPTY_RESULT

        result = self._scorer.score_page(page, self._catalogs.current)
        url = page.url or ""
        record = ScanRecord(url=url, result=result, scanned_at=self._clock().timestamp(), page=page)
        previous = self._scan_cache.get(url)
        self._scan_cache[url] = record

        if result.findings:
            appended = await self._ledger.append(
                LedgerKind.THREAT_HISTORY,
                LedgerEntry(
                    kind=LedgerKind.THREAT_HISTORY,
                    entry_type="page_analysis",
                    subject_url=self._subject(url),
                    description=f"{len(result.findings)} risk indicators found",
                    score=result.score,
                    findings=result.findings,
                ),
            )
            if not appended.ok:
                record.errors.append(str(appended.error))

        self._log_info(
            "Page analyzed",
            {"url": self._subject(url), "score": result.score, "findings": len(result.findings)},
        )

        # Repeated scans of an already-notified page at the same score stay quiet
        already_notified = (
            previous is not None and previous.notified and previous.result.score == result.score
        )
        if self._router and not already_notified and NotificationRouter.should_notify_score(result, self.settings):
            record.notified = await self._notify(NotificationPayload.from_score(self._subject(url), result))
        elif already_notified:
            record.notified = True

        return result

    async def scan_html(self, url: str, html: Optional[str] = None) -> ScoreResult:
        """Score an HTML document, fetching it when no markup is given."""
        if html is None:
            page = await self._page_fetcher(url, self._config.catalog.fetch_timeout_seconds)
        else:
            page = page_from_html(url, html)
        return await self.analyze_page(page)

    async def analyze_text(self, text: str, url: str = "") -> TextAnalysis:
        """
        Weighted term analysis of free text.

        Every analysis goes to the analysis history; high-risk ones are also
        recorded as evidence when automatic evidence is enabled.

        Raises:
            StoreUnavailableError: If recording the analysis fails
        """
        analysis = analyze_text(text, self._catalogs.current)
        subject = self._subject(url)

        _ledger_data(
            await self._ledger.append(
                LedgerKind.ANALYSIS_HISTORY,
                LedgerEntry(
                    kind=LedgerKind.ANALYSIS_HISTORY,
                    entry_type="text_analysis",
                    subject_url=subject,
                    description=analysis.summary,
                    score=analysis.risk_score,
                    category=analysis.risk_level.value,
                    details=(("terms", ", ".join(analysis.terms)),),
                ),
            )
        )

        if analysis.risk_level is RiskLevel.HIGH and self.settings.auto_evidence:
            _ledger_data(
                await self._ledger.append(
                    LedgerKind.EVIDENCE,
                    LedgerEntry(
                        kind=LedgerKind.EVIDENCE,
                        entry_type="text_analysis",
                        subject_url=subject,
                        description=f"High-risk text analysis: {analysis.summary}",
                        score=analysis.risk_score,
                        evidence_text=self._excerpt(text),
                        category="high_risk_text",
                    ),
                )
            )
        return analysis

    # -- reports from page front ends ----------------------------------------

    async def report_threat(
        self,
        url: str,
        threat_type: str,
        description: str = "",
        details: tuple[tuple[str, str], ...] = (),
    ) -> LedgerResult:
        result = await self._ledger.append(
            LedgerKind.THREAT_HISTORY,
            LedgerEntry(
                kind=LedgerKind.THREAT_HISTORY,
                entry_type=threat_type,
                subject_url=self._subject(url),
                description=description,
                category=threat_type,
                details=details,
            ),
        )
        if self._router and NotificationRouter.should_notify_threat(threat_type, self.settings):
            await self._notify(NotificationPayload.from_threat(self._subject(url), threat_type, description))
        return result

    async def report_sensitive_data(self, url: str, data_type: str, excerpt: str = "") -> LedgerResult:
        result = await self._ledger.append(
            LedgerKind.EVIDENCE,
            LedgerEntry(
                kind=LedgerKind.EVIDENCE,
                entry_type="sensitive_data",
                subject_url=self._subject(url),
                description=f"Sensitive data detected: {data_type}",
                evidence_text=self._excerpt(excerpt),
                category=data_type,
            ),
        )
        if self._router and NotificationRouter.should_notify_threat("sensitive_data", self.settings):
            await self._notify(
                NotificationPayload.from_threat(self._subject(url), "sensitive_data", f"Sensitive data detected: {data_type}")
            )
        return result

    async def add_evidence(
        self,
        url: str,
        evidence_type: str = "manual",
        data: str = "",
        category: Optional[str] = None,
        description: str = "",
        score: Optional[int] = None,
    ) -> LedgerResult:
        return await self._ledger.append(
            LedgerKind.EVIDENCE,
            LedgerEntry(
                kind=LedgerKind.EVIDENCE,
                entry_type=evidence_type,
                subject_url=self._subject(url),
                description=description,
                score=score,
                evidence_text=data,
                category=category,
            ),
        )

    # -- ledger views ------------------------------------------------------

    async def get_evidence(self) -> tuple[LedgerEntry, ...]:
        return await self._ledger.list(LedgerKind.EVIDENCE)

    async def get_threat_history(self) -> tuple[LedgerEntry, ...]:
        return await self._ledger.list(LedgerKind.THREAT_HISTORY)

    async def get_analysis_history(self) -> tuple[LedgerEntry, ...]:
        return await self._ledger.list(LedgerKind.ANALYSIS_HISTORY)

    async def clear_threat_history(self) -> LedgerResult:
        return await self._ledger.clear(LedgerKind.THREAT_HISTORY)

    async def export_evidence(self, directory: Optional[Path] = None) -> dict:
        """
        Build the evidence report, optionally writing it to ``directory``.

        Evidence is bounded to the configured export limit, most recent kept.
        """
        generated = self._clock()
        evidence = await self._ledger.recent(LedgerKind.EVIDENCE, self._config.ledger.export_limit)
        threats = await self._ledger.list(LedgerKind.THREAT_HISTORY)
        risk_score = await self._ledger.overall_risk_score()
        report = build_report(evidence, threats, risk_score, generated)

        if directory is not None:
            path = await asyncio.to_thread(write_report, report, Path(directory), generated)
            self._log_info("Evidence exported", {"path": str(path), "evidence": len(evidence)})
        return report

    def get_threat_status(self, url: str) -> Optional[ScanRecord]:
        """Most recent scan of a URL from the in-memory scan cache."""
        return self._scan_cache.get(url)

    # -- settings ----------------------------------------------------------

    async def update_settings(self, partial: dict) -> Settings:
        settings = await self._settings.update(partial)
        self._scorer.settings = settings
        return settings

    async def emergency_stop(self) -> Settings:
        """Disable scanning and notifications and stop background rescans."""
        settings = await self.update_settings({"realTimeScanning": False, "notificationsEnabled": False})
        if self._scheduler is not None:
            self._scheduler.disable_job("rescan")
        if self._logger:
            self._logger.log(LogLevel.WARN, self.COMPONENT, "Emergency stop activated")
        return settings

    # -- background jobs -----------------------------------------------------

    async def rescan_cached_pages(self) -> int:
        """Re-score every cached page that kept its page data."""
        if not self.settings.real_time_scanning:
            return 0
        pages = [record.page for record in list(self._scan_cache.values()) if record.page is not None]
        for page in pages:
            await self.analyze_page(page)
        return len(pages)

    def cleanup_scan_cache(self, max_age_seconds: Optional[float] = None) -> int:
        """Drop cache entries older than ``max_age_seconds``; returns the number removed."""
        max_age = max_age_seconds if max_age_seconds is not None else self._config.scheduler.scan_cache_max_age_seconds
        cutoff = self._clock().timestamp() - max_age
        stale = [url for url, record in self._scan_cache.items() if record.scanned_at < cutoff]
        for url in stale:
            del self._scan_cache[url]
        return len(stale)

    async def refresh_catalog(self) -> bool:
        return await self._catalogs.refresh()

    def build_scheduler(self) -> Scheduler:
        """Scheduler with the engine's periodic jobs registered."""
        cfg = self._config.scheduler
        scheduler = Scheduler(logger=self._logger)
        scheduler.schedule("rescan", cfg.rescan_interval_seconds, self.rescan_cached_pages)
        scheduler.schedule("ledger_trim", cfg.trim_interval_seconds, self._ledger.trim)
        scheduler.schedule("catalog_refresh", cfg.catalog_refresh_interval_seconds, self.refresh_catalog)

        async def cleanup() -> int:
            return self.cleanup_scan_cache()

        scheduler.schedule("cache_cleanup", cfg.cache_cleanup_interval_seconds, cleanup)
        self._scheduler = scheduler
        return scheduler

    async def run_background(self, stop_event: Optional[asyncio.Event] = None) -> None:
        scheduler = self._scheduler or self.build_scheduler()
        await scheduler.run(stop_event)

    # -- commands ------------------------------------------------------------

    async def handle(self, command) -> CommandResult:
        return await self._dispatcher.dispatch(command)

    async def handle_message(self, message: dict) -> CommandResult:
        return await self._dispatcher.dispatch_message(message)

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    def _build_dispatcher(self) -> CommandDispatcher:
        dispatcher = CommandDispatcher(self._logger)
        table = {
            CommandType.ANALYZE_PAGE: self._on_analyze_page,
            CommandType.SCAN_HTML: self._on_scan_html,
            CommandType.REPORT_THREAT: self._on_report_threat,
            CommandType.REPORT_SENSITIVE_DATA: self._on_report_sensitive_data,
            CommandType.ANALYZE_TEXT: self._on_analyze_text,
            CommandType.ADD_EVIDENCE: self._on_add_evidence,
            CommandType.GET_EVIDENCE: self._on_get_evidence,
            CommandType.EXPORT_EVIDENCE: self._on_export_evidence,
            CommandType.GET_THREAT_HISTORY: self._on_get_threat_history,
            CommandType.CLEAR_THREAT_HISTORY: self._on_clear_threat_history,
            CommandType.GET_ANALYSIS_HISTORY: self._on_get_analysis_history,
            CommandType.GET_THREAT_STATUS: self._on_get_threat_status,
            CommandType.UPDATE_SETTINGS: self._on_update_settings,
            CommandType.GET_SETTINGS: self._on_get_settings,
            CommandType.EMERGENCY_STOP: self._on_emergency_stop,
        }
        for command_type, handler in table.items():
            dispatcher.register(command_type, handler)
        return dispatcher

    async def _on_analyze_page(self, cmd: AnalyzePage) -> dict:
        page = PageData(url=cmd.url, title=cmd.title, body_text=cmd.body_text, dom=cmd.dom, requests=cmd.requests)
        return (await self.analyze_page(page)).to_dict()

    async def _on_scan_html(self, cmd: ScanHtml) -> dict:
        return (await self.scan_html(cmd.url, cmd.html)).to_dict()

    async def _on_report_threat(self, cmd: ReportThreat) -> dict:
        return _ledger_data(await self.report_threat(cmd.url, cmd.threat_type, cmd.description, cmd.details))

    async def _on_report_sensitive_data(self, cmd: ReportSensitiveData) -> dict:
        return _ledger_data(await self.report_sensitive_data(cmd.url, cmd.data_type, cmd.excerpt))

    async def _on_analyze_text(self, cmd: AnalyzeText) -> dict:
        return (await self.analyze_text(cmd.text, cmd.url)).to_dict()

    async def _on_add_evidence(self, cmd: AddEvidence) -> dict:
        return _ledger_data(
            await self.add_evidence(cmd.url, cmd.evidence_type, cmd.data, cmd.category, cmd.description, cmd.score)
        )

    async def _on_get_evidence(self, cmd) -> list:
        return [entry.to_dict() for entry in await self.get_evidence()]

    async def _on_export_evidence(self, cmd: ExportEvidence) -> dict:
        return await self.export_evidence(Path(cmd.directory) if cmd.directory else None)

    async def _on_get_threat_history(self, cmd) -> list:
        return [entry.to_dict() for entry in await self.get_threat_history()]

    async def _on_clear_threat_history(self, cmd) -> dict:
        return _ledger_data(await self.clear_threat_history())

    async def _on_get_analysis_history(self, cmd) -> list:
        return [entry.to_dict() for entry in await self.get_analysis_history()]

    async def _on_get_threat_status(self, cmd: GetThreatStatus) -> dict:
        record = self.get_threat_status(cmd.url)
        if record is None:
            return {"url": cmd.url, "status": "unknown"}
        return {
            "url": record.url,
            "status": "scanned",
            "score": record.result.score,
            "findings": [f.to_dict() for f in record.result.findings],
            "notified": record.notified,
            "scannedAt": record.scanned_at,
        }

    async def _on_update_settings(self, cmd: UpdateSettings) -> dict:
        return (await self.update_settings(cmd.settings)).to_dict()

    async def _on_get_settings(self, cmd) -> dict:
        return self.settings.to_dict()

    async def _on_emergency_stop(self, cmd) -> dict:
        return (await self.emergency_stop()).to_dict()

    # -- helpers ---------------------------------------------------------------

    def _subject(self, url: str) -> str:
        """URL as stored in ledgers; privacy mode keeps only the host."""
        if self.settings.privacy_mode:
            return extract_host(url) or ""
        return url

    @staticmethod
    def _excerpt(text: str) -> str:
        return (text or "")[:EVIDENCE_EXCERPT_LENGTH]

    async def _notify(self, payload: NotificationPayload) -> bool:
        if self._router is None:
            return False
        results = await self._router.notify(payload)
        return any(r.success for r in results)

    def _log_info(self, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)


def _ledger_data(result: LedgerResult) -> dict:
    """Handler data for a ledger mutation; a failed mutation raises its error."""
    if not result.ok:
        if isinstance(result.error, PageRiskError):
            raise result.error
        raise RuntimeError(str(result.error))
    return {"id": result.entry_id, "evicted": result.evicted}
