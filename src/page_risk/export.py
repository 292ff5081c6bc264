"""
Evidence report export.

The report format is consumed by existing tools and must keep its exact shape:

    {
      "generated": "2024-01-31T12:00:00.000Z",
      "evidence": [...],
      "threats": [...],
      "summary": {"totalEvidence": n, "totalThreats": n, "riskScore": n}
    }

serialized with two-space indentation.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .models import LedgerEntry, isoformat_z


def build_report(
    evidence: Iterable[LedgerEntry],
    threats: Iterable[LedgerEntry],
    risk_score: int,
    generated: datetime,
) -> dict:
    evidence_items = [entry.to_dict() for entry in evidence]
    threat_items = [entry.to_dict() for entry in threats]
    return {
        "generated": isoformat_z(generated),
        "evidence": evidence_items,
        "threats": threat_items,
        "summary": {
            "totalEvidence": len(evidence_items),
            "totalThreats": len(threat_items),
            "riskScore": risk_score,
        },
    }


def serialize_report(report: dict) -> str:
    return json.dumps(report, indent=2, ensure_ascii=False)


def report_filename(generated: datetime) -> str:
    return f"risk_report_{int(generated.timestamp() * 1000)}.json"


def write_report(report: dict, directory: Path, generated: datetime) -> Path:
    """Write the report under its suggested filename and return the path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / report_filename(generated)
    path.write_text(serialize_report(report), encoding="utf-8")
    return path
