"""
Weighted term analysis of free text.

Counts phishing and gambling keywords from the catalog plus fixed urgency and
financial vocabularies, each term adding its weight once.
"""

from typing import Optional

from .enums import Category, PatternType, RiskLevel
from .extractors import normalize_text
from .models import TextAnalysis
from .rule_catalog import RuleCatalog, default_catalog


URGENCY_WORDS = ("urgent", "immediate", "now", "quickly", "asap", "deadline")
FINANCIAL_WORDS = ("money", "payment", "card", "bank", "account", "credit")

PHISHING_TERM_WEIGHT = 15
GAMBLING_TERM_WEIGHT = 20
URGENCY_TERM_WEIGHT = 10
FINANCIAL_TERM_WEIGHT = 8

HIGH_RISK_ABOVE = 50
MEDIUM_RISK_ABOVE = 25

SUMMARIES = {
    RiskLevel.HIGH: "HIGH RISK: Multiple threat indicators detected. Contains {matches} suspicious terms.",
    RiskLevel.MEDIUM: "MEDIUM RISK: Some concerning patterns found. Monitor closely.",
    RiskLevel.LOW: "LOW RISK: No significant threats detected. Content appears safe.",
}


def catalog_keywords(catalog: RuleCatalog, category: Category) -> tuple[str, ...]:
    """Keyword patterns of a category, de-duplicated in catalog order."""
    keywords = []
    for rule in catalog.rules_for(category):
        if rule.pattern_type is PatternType.KEYWORD:
            keywords.extend(normalize_text(p) for p in rule.patterns)
    return tuple(dict.fromkeys(keywords))


def analyze_text(text: Optional[str], catalog: Optional[RuleCatalog] = None) -> TextAnalysis:
    """
    Score free text by the vocabulary it contains.

    A word listed in two groups adds both weights and counts twice towards
    the suspicious terms of a high-risk summary, but appears once in
    ``terms``.
    """
    catalog = catalog or default_catalog()
    content = normalize_text(text or "")

    groups = (
        (catalog_keywords(catalog, Category.PHISHING), PHISHING_TERM_WEIGHT),
        (catalog_keywords(catalog, Category.GAMBLING), GAMBLING_TERM_WEIGHT),
        (URGENCY_WORDS, URGENCY_TERM_WEIGHT),
        (FINANCIAL_WORDS, FINANCIAL_TERM_WEIGHT),
    )

    score = 0
    matched = []
    for words, weight in groups:
        found = [word for word in words if word in content]
        score += weight * len(found)
        matched.extend(found)

    score = min(score, 100)
    if score > HIGH_RISK_ABOVE:
        level = RiskLevel.HIGH
    elif score > MEDIUM_RISK_ABOVE:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW

    return TextAnalysis(
        risk_level=level,
        risk_score=score,
        terms=tuple(dict.fromkeys(matched)),
        summary=SUMMARIES[level].format(matches=len(matched)),
    )
