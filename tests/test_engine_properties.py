"""
Property-based tests for the risk engine.

Exercises the engine end to end over an in-memory store with a fixed clock:
page analysis and threat history, privacy mode, notifications, text
analysis with automatic evidence, export, emergency stop and the scan cache.
"""

import asyncio
import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from page_risk.config import LedgerConfig, SystemConfig
from page_risk.engine import RiskEngine
from page_risk.enums import LedgerKind, RiskLevel
from page_risk.exceptions import StoreUnavailableError
from page_risk.models import PageData
from page_risk.notifications import NotificationPayload, NotificationRouter
from page_risk.store import InMemoryStore


FIXED_NOW = datetime(2024, 1, 31, 12, 0, 0, tzinfo=timezone.utc)

RISKY_PAGE = PageData(url="http://bit.ly/abc", title="You are a WINNER, claim your prize!", body_text="")
BENIGN_PAGE = PageData(url="https://example.com", title="Normal page", body_text="Welcome")


class MutableClock:
    """Clock that tests can move forward."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class RecordingChannel:
    """Channel that records every payload it is asked to send."""

    def __init__(self) -> None:
        self.payloads: list[NotificationPayload] = []

    async def send(self, payload: NotificationPayload) -> bool:
        self.payloads.append(payload)
        return True

    def get_name(self) -> str:
        return "recording"


class BrokenChannel:
    """Channel whose send raises."""

    def __init__(self) -> None:
        self.call_count = 0

    async def send(self, payload: NotificationPayload) -> bool:
        self.call_count += 1
        raise RuntimeError("boom")

    def get_name(self) -> str:
        return "broken"


class ReadOnlyStore(InMemoryStore):
    """Store that accepts reads but rejects writes."""

    async def set(self, items: dict[str, Any]) -> None:
        raise OSError("read-only storage")


async def no_sleep(seconds: float) -> None:
    return None


def make_engine(store=None, channel=None, clock=None, fetcher=None, config=None) -> RiskEngine:
    router = None
    if channel is not None:
        router = NotificationRouter(sleep=no_sleep)
        router.register_channel(channel)
    kwargs = {}
    if fetcher is not None:
        kwargs["page_fetcher"] = fetcher
    return RiskEngine(
        config=config,
        store=store if store is not None else InMemoryStore(),
        notification_router=router,
        clock=clock or MutableClock(),
        **kwargs,
    )


class TestPageAnalysisProperty:
    """Pages with findings are recorded in the threat history."""

    def test_risky_page_recorded(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                result = await engine.analyze_page(RISKY_PAGE)
                return result, await engine.get_threat_history()

        result, history = asyncio.run(scenario())

        assert result.score == 75
        (entry,) = history
        assert entry.entry_type == "page_analysis"
        assert entry.subject_url == "http://bit.ly/abc"
        assert entry.score == 75
        assert entry.findings == result.findings
        assert entry.to_dict()["timestamp"] == "2024-01-31T12:00:00.000Z"

    def test_benign_page_not_recorded(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                result = await engine.analyze_page(BENIGN_PAGE)
                return result, await engine.get_threat_history()

        result, history = asyncio.run(scenario())
        assert result.score == 0
        assert history == ()

    def test_privacy_mode_stores_host_only(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                await engine.update_settings({"privacyMode": True})
                await engine.analyze_page(RISKY_PAGE)
                await engine.add_evidence("https://shop.example.com/checkout?card=1", data="card form")
                return await engine.get_threat_history(), await engine.get_evidence()

        history, evidence = asyncio.run(scenario())
        assert history[0].subject_url == "bit.ly"
        assert evidence[0].subject_url == "shop.example.com"

    def test_store_failure_still_returns_score(self) -> None:
        engine = make_engine(store=ReadOnlyStore())

        async def scenario():
            result = await engine.analyze_page(RISKY_PAGE)
            return result, engine.get_threat_status(RISKY_PAGE.url)

        result, record = asyncio.run(scenario())
        assert result.score == 75
        assert record.errors

    def test_settings_loaded_from_store(self) -> None:
        store = InMemoryStore({"settings": {"realTimeScanning": False}})
        engine = make_engine(store=store)

        async def scenario():
            async with engine:
                return await engine.analyze_page(RISKY_PAGE)

        result = asyncio.run(scenario())
        assert result.score == 0
        assert result.findings == ()


class TestNotificationFlowProperty:
    """Notify-worthy results alert once; high-priority reports always alert."""

    def test_notify_worthy_page_alerts_once(self) -> None:
        channel = RecordingChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                await engine.analyze_page(RISKY_PAGE)
                await engine.analyze_page(RISKY_PAGE)
                await engine.analyze_page(BENIGN_PAGE)

        asyncio.run(scenario())
        assert len(channel.payloads) == 1
        assert channel.payloads[0].score == 75
        assert engine.get_threat_status(RISKY_PAGE.url).notified is True

    def test_disabled_notifications_stay_quiet(self) -> None:
        channel = RecordingChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                await engine.update_settings({"notificationsEnabled": False})
                await engine.analyze_page(RISKY_PAGE)
                await engine.report_threat("http://shop.example.com", "insecure_form", "Form posts over HTTP")

        asyncio.run(scenario())
        assert channel.payloads == []

    def test_broken_channel_does_not_break_scoring(self) -> None:
        channel = BrokenChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                result = await engine.analyze_page(RISKY_PAGE)
                return result, await engine.get_threat_history()

        result, history = asyncio.run(scenario())

        assert result.score == 75
        assert len(history) == 1
        assert channel.call_count == 4
        assert engine.get_threat_status(RISKY_PAGE.url).notified is False

    @given(threat_type=st.sampled_from(["insecure_form", "sensitive_request", "phishing", "gambling"]))
    @settings(max_examples=10)
    def test_threat_reports(self, threat_type: str) -> None:
        channel = RecordingChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                result = await engine.report_threat("http://shop.example.com", threat_type, "reported")
                return result, await engine.get_threat_history()

        result, history = asyncio.run(scenario())
        assert result.ok
        assert history[0].entry_type == threat_type
        expected_alerts = 1 if threat_type in ("insecure_form", "sensitive_request") else 0
        assert len(channel.payloads) == expected_alerts

    def test_sensitive_data_becomes_evidence(self) -> None:
        channel = RecordingChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                await engine.report_sensitive_data("https://a.example", "credit_card", "4111 " * 100)
                return await engine.get_evidence()

        (entry,) = asyncio.run(scenario())
        assert entry.entry_type == "sensitive_data"
        assert entry.category == "credit_card"
        assert len(entry.evidence_text) == 200
        assert len(channel.payloads) == 1


class TestTextAnalysisFlowProperty:
    """Every analysis is recorded; high-risk text becomes evidence."""

    HIGH_RISK_TEXT = "URGENT: claim your prize now! Send money to our bank account. Casino bet bonus."

    def test_high_risk_text_added_as_evidence(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                analysis = await engine.analyze_text(self.HIGH_RISK_TEXT, "https://a.example")
                return analysis, await engine.get_analysis_history(), await engine.get_evidence()

        analysis, history, evidence = asyncio.run(scenario())
        assert analysis.risk_level is RiskLevel.HIGH
        assert len(history) == 1
        assert history[0].category == "high"
        assert len(evidence) == 1
        assert evidence[0].evidence_text == self.HIGH_RISK_TEXT

    def test_auto_evidence_disabled(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                await engine.update_settings({"autoEvidence": False})
                await engine.analyze_text(self.HIGH_RISK_TEXT)
                return await engine.get_evidence()

        assert asyncio.run(scenario()) == ()

    def test_low_risk_text_only_in_history(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                analysis = await engine.analyze_text("The weather is nice today.")
                return analysis, await engine.get_analysis_history(), await engine.get_evidence()

        analysis, history, evidence = asyncio.run(scenario())
        assert analysis.risk_level is RiskLevel.LOW
        assert analysis.risk_score == 0
        assert len(history) == 1
        assert evidence == ()

    def test_store_failure_raises(self) -> None:
        engine = make_engine(store=ReadOnlyStore())

        with pytest.raises(StoreUnavailableError) as exc_info:
            asyncio.run(engine.analyze_text("Play poker at the casino"))

        assert exc_info.value.code == "write_failed"

    def test_store_failure_is_failed_command(self) -> None:
        engine = make_engine(store=ReadOnlyStore())

        result = asyncio.run(engine.handle_message({"action": "analyzeText", "text": self.HIGH_RISK_TEXT}))

        assert result.ok is False
        assert result.to_dict()["success"] is False
        assert result.error.code == "write_failed"


class TestExportProperty:
    """The exported report keeps its exact shape."""

    def test_report_shape_and_file(self) -> None:
        engine = make_engine()

        with tempfile.TemporaryDirectory() as tmpdir:
            async def scenario():
                async with engine:
                    await engine.analyze_page(RISKY_PAGE)
                    await engine.add_evidence("https://a.example", data="screenshot text")
                    return await engine.export_evidence(Path(tmpdir))

            report = asyncio.run(scenario())
            files = list(Path(tmpdir).glob("risk_report_*.json"))
            assert len(files) == 1
            on_disk = files[0].read_text(encoding="utf-8")

        assert list(report) == ["generated", "evidence", "threats", "summary"]
        assert report["generated"] == "2024-01-31T12:00:00.000Z"
        assert report["summary"] == {"totalEvidence": 1, "totalThreats": 1, "riskScore": 85}
        assert json.loads(on_disk) == report
        assert on_disk.startswith('{\n  "generated"')
        assert files[0].name == f"risk_report_{int(FIXED_NOW.timestamp() * 1000)}.json"

    def test_export_bounded_by_limit(self) -> None:
        config = SystemConfig(ledger=LedgerConfig(export_limit=3))
        engine = make_engine(config=config)

        async def scenario():
            async with engine:
                for i in range(5):
                    await engine.add_evidence("https://a.example", data=f"item {i}")
                return await engine.export_evidence()

        report = asyncio.run(scenario())
        assert [e["data"] for e in report["evidence"]] == ["item 2", "item 3", "item 4"]
        assert report["summary"]["totalEvidence"] == 3


class TestEmergencyStopProperty:
    """Emergency stop disables scanning, notifications and rescans."""

    def test_emergency_stop(self) -> None:
        channel = RecordingChannel()
        engine = make_engine(channel=channel)

        async def scenario():
            async with engine:
                scheduler = engine.build_scheduler()
                settings_after = await engine.emergency_stop()
                result = await engine.analyze_page(RISKY_PAGE)
                return settings_after, result, scheduler

        settings_after, result, scheduler = asyncio.run(scenario())
        assert settings_after.real_time_scanning is False
        assert settings_after.notifications_enabled is False
        assert result.score == 0
        assert channel.payloads == []
        assert scheduler.get_job("rescan").enabled is False


class TestBackgroundJobsProperty:
    """Rescan, cache cleanup and the scheduler wiring."""

    def test_scheduler_jobs_registered(self) -> None:
        names = sorted(job.name for job in make_engine().build_scheduler().list_jobs())
        assert names == ["cache_cleanup", "catalog_refresh", "ledger_trim", "rescan"]

    def test_rescan_cached_pages(self) -> None:
        engine = make_engine()

        async def scenario():
            async with engine:
                await engine.analyze_page(RISKY_PAGE)
                await engine.analyze_page(BENIGN_PAGE)
                return await engine.rescan_cached_pages(), await engine.get_threat_history()

        rescanned, history = asyncio.run(scenario())
        assert rescanned == 2
        assert len(history) == 2

    def test_cleanup_scan_cache(self) -> None:
        clock = MutableClock()
        engine = make_engine(clock=clock)

        async def scenario():
            await engine.analyze_page(RISKY_PAGE)
            clock.now = FIXED_NOW + timedelta(hours=2)
            await engine.analyze_page(BENIGN_PAGE)
            clock.now = FIXED_NOW + timedelta(hours=3)
            return engine.cleanup_scan_cache(max_age_seconds=7200)

        removed = asyncio.run(scenario())
        assert removed == 1
        assert engine.get_threat_status(RISKY_PAGE.url) is None
        assert engine.get_threat_status(BENIGN_PAGE.url) is not None


class TestScanHtmlProperty:
    """HTML is scored from markup, or fetched when none is given."""

    def test_scan_markup(self) -> None:
        html = """
        <html><head><title>Login</title></head>
        <body>
          <form action="http://collect.example/submit" method="post">
            <input type="password" name="pwd">
          </form>
        </body></html>
        """
        engine = make_engine()
        result = asyncio.run(engine.scan_html("http://shop.example.com/login", html))
        rule_ids = {f.rule_id for f in result.findings}

        assert "insecure.form_action" in rule_ids
        assert "insecure.password_input" in rule_ids

    def test_scan_fetches_when_no_markup(self) -> None:
        requested = []

        async def fetcher(url: str, timeout: float) -> PageData:
            requested.append(url)
            return RISKY_PAGE

        engine = make_engine(fetcher=fetcher)
        result = asyncio.run(engine.scan_html("http://bit.ly/abc"))

        assert requested == ["http://bit.ly/abc"]
        assert result.score == 75
