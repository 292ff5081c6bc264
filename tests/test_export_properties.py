"""
Property-based tests for the evidence report.

The report keeps its fixed key order, summary counts, two-space JSON
serialization and epoch-millisecond file naming.
"""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from page_risk.enums import LedgerKind
from page_risk.export import build_report, report_filename, serialize_report, write_report
from page_risk.models import LedgerEntry


FIXED_NOW = datetime(2024, 1, 31, 12, 0, 0, tzinfo=timezone.utc)


def evidence(entry_id: int, url: str, text: str) -> LedgerEntry:
    return LedgerEntry(
        kind=LedgerKind.EVIDENCE,
        entry_type="manual",
        subject_url=url,
        evidence_text=text,
        category="phishing",
        id=entry_id,
        created_at="2024-01-31T11:00:00.000Z",
    )


def threat(entry_id: int, url: str, score: int) -> LedgerEntry:
    return LedgerEntry(
        kind=LedgerKind.THREAT_HISTORY,
        entry_type="page_analysis",
        subject_url=url,
        description="Risk score",
        score=score,
        id=entry_id,
        created_at="2024-01-31T11:30:00.000Z",
    )


class TestReportProperty:
    """The report keeps its key order, counts and file name."""

    @given(
        evidence_count=st.integers(min_value=0, max_value=5),
        threat_count=st.integers(min_value=0, max_value=5),
        risk_score=st.integers(min_value=0, max_value=100),
    )
    @settings(max_examples=50)
    def test_summary_counts(self, evidence_count: int, threat_count: int, risk_score: int) -> None:
        report = build_report(
            [evidence(i, f"https://e{i}.example", "note") for i in range(evidence_count)],
            [threat(i, f"https://t{i}.example", 50) for i in range(threat_count)],
            risk_score,
            FIXED_NOW,
        )

        assert list(report) == ["generated", "evidence", "threats", "summary"]
        assert report["summary"] == {
            "totalEvidence": evidence_count,
            "totalThreats": threat_count,
            "riskScore": risk_score,
        }

    def test_generated_timestamp_and_entries(self) -> None:
        report = build_report([evidence(1, "https://a.example", "card form")], [], 10, FIXED_NOW)

        assert report["generated"] == "2024-01-31T12:00:00.000Z"
        assert report["evidence"][0]["url"] == "https://a.example"
        assert report["evidence"][0]["data"] == "card form"

    def test_serialized_with_two_space_indent(self) -> None:
        text = serialize_report(build_report([], [threat(1, "https://a.example", 75)], 75, FIXED_NOW))

        assert text.startswith('{\n  "generated": "2024-01-31T12:00:00.000Z",\n  "evidence": []')
        assert json.loads(text)["threats"][0]["score"] == 75

    def test_filename_uses_epoch_milliseconds(self) -> None:
        assert report_filename(FIXED_NOW) == "risk_report_1706702400000.json"

    def test_write_report(self) -> None:
        report = build_report([evidence(1, "https://a.example", "café")], [], 10, FIXED_NOW)

        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_report(report, Path(tmpdir) / "reports", FIXED_NOW)

            assert path.name == "risk_report_1706702400000.json"
            content = path.read_text(encoding="utf-8")
            assert "café" in content
            assert json.loads(content) == report
