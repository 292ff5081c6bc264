"""
Property-based tests for the rule catalog.

Covers rule validation, JSON loading, matching semantics per pattern type and
catalog refresh through the provider.
"""

import asyncio
import json
import tempfile
from io import StringIO
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from page_risk.audit_logger import AuditLogger
from page_risk.enums import Category, LogLevel, PatternType, Severity, SignalKind
from page_risk.exceptions import CatalogError
from page_risk.models import Signal
from page_risk.rule_catalog import (
    MAX_MATCHED_VALUE_LENGTH,
    CatalogProvider,
    RuleCatalog,
    RuleEntry,
    catalog_from_dict,
    default_catalog,
    load_catalog,
    rule_from_dict,
)


def make_rule(**overrides) -> RuleEntry:
    values = dict(
        id="test.rule",
        category=Category.PHISHING,
        pattern_type=PatternType.KEYWORD,
        patterns=("free money",),
        weight=10,
        severity=Severity.MEDIUM,
        kinds=frozenset({SignalKind.TEXT}),
    )
    values.update(overrides)
    return RuleEntry(**values)


def rule_json(**overrides) -> dict:
    data = {
        "id": "custom.casino",
        "category": "gambling",
        "patternType": "keyword",
        "patterns": ["casino"],
        "weight": 35,
        "severity": "high",
        "kinds": ["title", "text"],
        "description": "Custom gambling rule",
    }
    data.update(overrides)
    return data


class TestRuleValidationProperty:
    """Invalid rules are rejected when the catalog is built."""

    @given(weight=st.one_of(st.integers(max_value=-1), st.integers(min_value=101)))
    @settings(max_examples=50)
    def test_weight_out_of_range_rejected(self, weight: int) -> None:
        with pytest.raises(CatalogError) as exc_info:
            make_rule(weight=weight)
        assert exc_info.value.code == "invalid_weight"

    @given(weight=st.integers(min_value=0, max_value=100))
    @settings(max_examples=50)
    def test_weight_in_range_accepted(self, weight: int) -> None:
        assert make_rule(weight=weight).weight == weight

    def test_invalid_regex_rejected(self) -> None:
        with pytest.raises(CatalogError) as exc_info:
            make_rule(pattern_type=PatternType.REGEX, patterns=("(unclosed",))
        assert exc_info.value.code == "invalid_regex"

    def test_empty_patterns_rejected(self) -> None:
        with pytest.raises(CatalogError):
            make_rule(patterns=())

    def test_duplicate_rule_id_rejected(self) -> None:
        with pytest.raises(CatalogError) as exc_info:
            RuleCatalog([make_rule(), make_rule()])
        assert exc_info.value.code == "duplicate_rule"


class TestMatchingProperty:
    """Each pattern type reports what it matched."""

    def test_keyword_reports_every_hit_in_catalog_order(self) -> None:
        rule = make_rule(patterns=("winner", "claim", "prize"))
        matched = rule.match(Signal.create(SignalKind.TEXT, "Claim the PRIZE, winner!"))
        assert matched == "winner, claim, prize"

    def test_kind_filter(self) -> None:
        rule = make_rule()
        assert rule.match(Signal.create(SignalKind.TITLE, "free money")) is None
        assert rule.match(Signal.create(SignalKind.TEXT, "free money")) == "free money"

    def test_requires_context(self) -> None:
        rule = make_rule(
            pattern_type=PatternType.REGEX,
            patterns=(r"^password:",),
            kinds=frozenset({SignalKind.INPUT}),
            requires=(("page_scheme", "http"),),
        )
        assert rule.match(Signal.create(SignalKind.INPUT, "password:pwd:", page_scheme="http")) == "password:"
        assert rule.match(Signal.create(SignalKind.INPUT, "password:pwd:", page_scheme="https")) is None
        assert rule.match(Signal.create(SignalKind.INPUT, "password:pwd:")) is None

    def test_domain_set_uses_link_host(self) -> None:
        rule = make_rule(
            pattern_type=PatternType.DOMAIN_SET,
            patterns=("fake-bank.net",),
            kinds=frozenset({SignalKind.LINK, SignalKind.DOMAIN}),
        )
        link = Signal.create(SignalKind.LINK, "https://login.fake-bank.net/x", host="login.fake-bank.net")
        assert rule.match(link) == "fake-bank.net"
        assert rule.match(Signal.create(SignalKind.DOMAIN, "fake-bank.net")) == "fake-bank.net"
        # A link without a resolvable host never matches
        assert rule.match(Signal.create(SignalKind.LINK, "/relative/fake-bank.net")) is None

    @given(filler=st.integers(min_value=200, max_value=400))
    @settings(max_examples=20)
    def test_regex_match_truncated(self, filler: int) -> None:
        rule = make_rule(pattern_type=PatternType.REGEX, patterns=(r"token=\S+",))
        matched = rule.match(Signal.create(SignalKind.TEXT, "token=" + "a" * filler))
        assert matched is not None
        assert len(matched) == MAX_MATCHED_VALUE_LENGTH

    def test_first_rule_of_category_wins(self) -> None:
        catalog = RuleCatalog([
            make_rule(id="first", patterns=("money",), weight=5),
            make_rule(id="second", patterns=("free",), weight=50),
            make_rule(id="other", category=Category.GAMBLING, patterns=("free",), weight=1),
        ])
        findings = catalog.match_all(Signal.create(SignalKind.TEXT, "free money"))
        assert [f.rule_id for f in findings] == ["first", "other"]

    @given(text=st.text(max_size=60))
    @settings(max_examples=100)
    def test_empty_or_arbitrary_text_never_raises(self, text: str) -> None:
        findings = default_catalog().match_all(Signal.create(SignalKind.TEXT, text))
        assert all(0 <= f.weight <= 100 for f in findings)


class TestCatalogLoadingProperty:
    """Catalogs load from JSON and reject malformed documents."""

    def test_round_trip_through_dict(self) -> None:
        catalog = default_catalog()
        restored = catalog_from_dict(catalog.to_dict())

        assert restored.version == catalog.version
        assert [r.id for r in restored.rules] == [r.id for r in catalog.rules]
        assert restored.categories == catalog.categories

    def test_missing_field_rejected(self) -> None:
        data = rule_json()
        del data["severity"]
        with pytest.raises(CatalogError) as exc_info:
            rule_from_dict(data)
        assert exc_info.value.code == "invalid_rule"

    @given(bad=st.sampled_from([
        {"category": "unknown"},
        {"severity": "extreme"},
        {"kinds": ["nowhere"]},
        {"patterns": "casino"},
        {"patternType": "glob"},
        {"requires": ["page_scheme"]},
    ]))
    @settings(max_examples=20)
    def test_invalid_values_rejected(self, bad: dict) -> None:
        with pytest.raises(CatalogError):
            rule_from_dict(rule_json(**bad))

    def test_catalog_without_rules_list_rejected(self) -> None:
        with pytest.raises(CatalogError):
            catalog_from_dict({"version": "1"})
        with pytest.raises(CatalogError):
            catalog_from_dict(["not", "an", "object"])

    def test_load_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "catalog.json"
            path.write_text(json.dumps({"version": "7", "rules": [rule_json()]}), encoding="utf-8")
            catalog = load_catalog(path)

        assert catalog.version == "7"
        assert len(catalog) == 1
        assert catalog.get("custom.casino").weight == 35

    def test_load_missing_file_raises(self) -> None:
        with pytest.raises(CatalogError) as exc_info:
            load_catalog(Path("/nonexistent/catalog.json"))
        assert exc_info.value.code == "load_error"


class TestCatalogProviderProperty:
    """Refreshing swaps the catalog; a failed refresh keeps the current one."""

    def test_refresh_from_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "catalog.json"
            path.write_text(json.dumps({"version": "2025.1", "rules": [rule_json()]}), encoding="utf-8")
            provider = CatalogProvider(source=str(path))
            old = provider.current

            assert asyncio.run(provider.refresh()) is True

        assert provider.current.version == "2025.1"
        # Holders of the previous catalog are unaffected
        assert old.version == "2024.1"
        assert len(old) == len(default_catalog())

    def test_failed_refresh_keeps_current(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "catalog.json"
            path.write_text("{not json", encoding="utf-8")
            stream = StringIO()
            logger = AuditLogger(output_stream=stream)
            provider = CatalogProvider(source=str(path), logger=logger)

            assert asyncio.run(provider.refresh()) is False

        assert provider.current.version == "2024.1"
        errors = [e for e in logger.entries if e.level is LogLevel.ERROR]
        assert errors
        assert errors[0].data["error_code"] == "load_error"

    def test_refresh_without_source_is_noop(self) -> None:
        provider = CatalogProvider()
        assert asyncio.run(provider.refresh()) is False
        assert provider.current.version == "2024.1"
