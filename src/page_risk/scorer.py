"""
Risk scorer.

Applies the rule catalog and the domain heuristics to a page's signals and
produces a bounded score with ordered findings:

1. every signal is matched against the catalog
2. the domain signal additionally goes through the domain heuristics
3. findings with the same rule id and matched value collapse to the first
4. weights are summed and the total clamped to 0..100
5. findings are stably sorted by descending severity

Given the same signals, catalog and clock the result is identical.
"""

from datetime import datetime
from typing import Callable, Iterable, Optional

from .audit_logger import AuditLogger
from .config import Settings
from .domain_heuristics import DomainHeuristics
from .enums import LogLevel, SignalKind
from .extractors import extract_signals
from .models import EMPTY_RESULT, Finding, PageData, ScoreResult, Signal, isoformat_z, utc_now
from .rule_catalog import RuleCatalog, default_catalog


MAX_SCORE = 100


def clamp_score(value: int) -> int:
    return max(0, min(MAX_SCORE, value))


class RiskScorer:
    """Stateless scorer over an injected catalog, heuristics, settings and clock."""

    COMPONENT = "RiskScorer"

    def __init__(
        self,
        catalog: Optional[RuleCatalog] = None,
        heuristics: Optional[DomainHeuristics] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._catalog = catalog or default_catalog()
        self._heuristics = heuristics or DomainHeuristics()
        self._settings = settings or Settings()
        self._clock = clock
        self._logger = logger

    @property
    def settings(self) -> Settings:
        return self._settings

    @settings.setter
    def settings(self, value: Settings) -> None:
        self._settings = value

    @property
    def catalog(self) -> RuleCatalog:
        return self._catalog

    def score(self, signals: Iterable[Signal], catalog: Optional[RuleCatalog] = None) -> ScoreResult:
        """
        Score a set of signals.

        Args:
            signals: Signals extracted from one page
            catalog: Catalog to use for this call instead of the configured one

        Returns:
            ScoreResult; ``{0, []}`` when scanning is disabled or there are no signals
        """
        if not self._settings.real_time_scanning:
            return EMPTY_RESULT

        signals = tuple(signals)
        if not signals:
            return EMPTY_RESULT

        catalog = catalog or self._catalog
        timestamp = isoformat_z(self._clock())

        findings: list[Finding] = []
        for signal in signals:
            findings.extend(self._evaluate_signal(signal, catalog, timestamp))

        findings = _dedupe(findings)
        total = clamp_score(sum(f.weight for f in findings))
        ordered = sorted(findings, key=lambda f: -f.severity.rank)

        return ScoreResult(
            score=total,
            findings=tuple(ordered),
            notify_worthy=total > self._settings.notify_threshold,
        )

    def score_page(self, page: PageData, catalog: Optional[RuleCatalog] = None) -> ScoreResult:
        """Extract signals from a page and score them."""
        if not self._settings.real_time_scanning:
            return EMPTY_RESULT
        return self.score(extract_signals(page), catalog)

    def _evaluate_signal(self, signal: Signal, catalog: RuleCatalog, timestamp: str) -> list[Finding]:
        # One bad signal contributes nothing; the rest of the page is still scored
        try:
            findings = catalog.match_all(signal, timestamp)
            if signal.kind is SignalKind.DOMAIN:
                findings.extend(self._heuristics.evaluate(signal.value, timestamp))
            return findings
        except Exception as e:
            if self._logger:
                self._logger.log(
                    LogLevel.WARN,
                    self.COMPONENT,
                    "Signal evaluation failed, ignoring signal",
                    {"kind": signal.kind.value, "error_type": type(e).__name__, "error_message": str(e)},
                )
            return []


def _dedupe(findings: list[Finding]) -> list[Finding]:
    seen = set()
    unique = []
    for finding in findings:
        key = (finding.rule_id, finding.matched_value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(finding)
    return unique
