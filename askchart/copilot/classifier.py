"""
Classifier -- converts a free-text analytics prompt into a DetectedIntent.

Deterministic, rule-based and local.  A prompt nothing here recognises
yields ``None`` and the caller hands it to the reasoning fallback.

Evaluation order is a contract, kept in ``BREAKDOWN_RULES``:
  aggregate_verb -> metric_by_pair -> breakdown_of -> grouped_by
  -> product_by_dimension -> by_a_and_b
The first rule whose predicate matches *and* whose extractor accepts the
match wins.  With no breakdown, two or more literal product terms make a
category comparison.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from askchart.catalog.field_resolver import (
    is_dimension_alias,
    is_metric_keyword,
    resolve_dimension,
    resolve_metric,
)
from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.models import (
    AggregationKind,
    CategoryComparison,
    DetectedIntent,
    TwoDimensionBreakdown,
)
from askchart.core.logging import get_logger
from askchart.core.utils import dedupe

logger = get_logger(__name__)

# ── Aggregation keywords (first match wins) ──────────────

_AGGREGATION_KEYWORDS: tuple[tuple[AggregationKind, re.Pattern], ...] = (
    (AggregationKind.SUM, re.compile(r"\b(?:totals?|sum)\b")),
    (AggregationKind.COUNT, re.compile(r"\b(?:counts?|how\s+many|number\s+of)\b")),
    (AggregationKind.MIN, re.compile(r"\b(?:min|minimum|lowest)\b")),
    (AggregationKind.MAX, re.compile(r"\b(?:max|maximum|highest)\b")),
)

# Later entries override earlier ones when several appear.
_METRIC_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("weight",), "weight"),
    (("miles", "mileage"), "miles"),
    (("count", "how many"), "load_id"),
)


def detect_aggregation(prompt: str) -> AggregationKind:
    """total/sum -> count -> min -> max, else avg."""
    lower = prompt.lower()
    for kind, pattern in _AGGREGATION_KEYWORDS:
        if pattern.search(lower):
            return kind
    return AggregationKind.AVG


def _infer_metric(lower: str, catalog: FieldCatalog) -> str:
    metric = catalog.default_metric
    for keywords, field_id in _METRIC_HINTS:
        if any(kw in lower for kw in keywords):
            metric = field_id
    return metric


def has_metric_keyword(prompt: str, catalog: FieldCatalog | None = None) -> bool:
    if catalog is None:
        catalog = load_field_catalog()
    lower = prompt.lower()
    return any(kw in lower for kw in catalog.prompt_metric_keywords)


# ── Literal term extraction ──────────────────────────────

def extract_product_terms(prompt: str, catalog: FieldCatalog | None = None) -> list[str]:
    """Canonical product labels mentioned in *prompt*, in first-seen order.

    Vocabulary entries are checked most specific first, so "drawer system"
    is never reported as a bare "drawer".
    """
    if catalog is None:
        catalog = load_field_catalog()
    lower = prompt.lower()

    matched: set[str] = set()
    found: list[tuple[int, str]] = []
    for product in catalog.products:
        if any(label in matched for label in product.shadowed_by):
            continue
        pos = product.find(lower)
        if pos >= 0:
            matched.add(product.label)
            found.append((pos, product.label))

    found.sort(key=lambda item: item[0])
    return dedupe(label for _, label in found)


# ── Breakdown rule cascade ───────────────────────────────

@dataclass(frozen=True)
class ClassifierContext:
    """Everything a rule may look at for one prompt."""
    lower: str
    terms: list[str]
    aggregation: AggregationKind
    catalog: FieldCatalog


Predicate = Callable[[ClassifierContext], "re.Match | None"]
Extractor = Callable[["re.Match", ClassifierContext], "TwoDimensionBreakdown | None"]


@dataclass(frozen=True)
class BreakdownRule:
    name: str
    predicate: Predicate
    extractor: Extractor


def _pattern(regex: str) -> Predicate:
    compiled = re.compile(regex, re.IGNORECASE)
    return lambda ctx: compiled.search(ctx.lower)


def _breakdown(
    ctx: ClassifierContext, primary_token: str, secondary_token: str, metric: str,
) -> TwoDimensionBreakdown | None:
    primary = resolve_dimension(primary_token, catalog=ctx.catalog)
    secondary = resolve_dimension(secondary_token, catalog=ctx.catalog)
    if primary is None or secondary is None:
        logger.debug("Breakdown rejected: %r/%r did not both resolve", primary_token, secondary_token)
        return None
    return TwoDimensionBreakdown(
        primary_group_by=primary,
        secondary_group_by=secondary,
        metric=metric,
        aggregation=ctx.aggregation,
        category_terms=list(ctx.terms),
    )


def _extract_template(match: re.Match, ctx: ClassifierContext) -> TwoDimensionBreakdown | None:
    """``(metric, primary, secondary)`` captures from one of the templates."""
    metric_token, primary_token, secondary_token = match.group(1, 2, 3)
    recognised = any(
        is_dimension_alias(tok, ctx.catalog) or is_metric_keyword(tok, ctx.catalog)
        for tok in (primary_token, secondary_token)
    )
    if not recognised:
        return None
    metric = resolve_metric(metric_token, catalog=ctx.catalog)
    return _breakdown(ctx, primary_token, secondary_token, metric)


def _product_dimension_predicate(ctx: ClassifierContext) -> re.Match | None:
    if len(ctx.terms) < 2 or not has_metric_keyword(ctx.lower, ctx.catalog):
        return None
    dims = "|".join(re.escape(d) for d in ctx.catalog.breakdown_dimensions)
    patterns = (
        rf"\b(?:by|per|split\s*(?:up|out)?\s*by|broken?\s*(?:down|out)\s*by|grouped\s*by|also\s*by"
        rf"|and\s*(?:by|per)|as\s*well\s*(?:as|by)?)\s+({dims})",
        rf"\b({dims})\s*(?:as\s*well|too|also)\b",
        rf"\bfor\s*each\s+({dims})",
    )
    for regex in patterns:
        m = re.search(regex, ctx.lower)
        if m:
            return m
    return None


def _extract_product_dimension(match: re.Match, ctx: ClassifierContext) -> TwoDimensionBreakdown | None:
    secondary = resolve_dimension(match.group(1), catalog=ctx.catalog)
    if secondary is None:
        return None
    return TwoDimensionBreakdown(
        primary_group_by=ctx.catalog.default_dimension,
        secondary_group_by=secondary,
        metric=_infer_metric(ctx.lower, ctx.catalog),
        aggregation=ctx.aggregation,
        category_terms=list(ctx.terms),
    )


def _extract_conjunction(match: re.Match, ctx: ClassifierContext) -> TwoDimensionBreakdown | None:
    first, second = match.group(1, 2)
    if not (is_dimension_alias(first, ctx.catalog) or is_dimension_alias(second, ctx.catalog)):
        return None
    return _breakdown(ctx, first, second, _infer_metric(ctx.lower, ctx.catalog))


BREAKDOWN_RULES: tuple[BreakdownRule, ...] = (
    BreakdownRule(
        "aggregate_verb",
        _pattern(
            r"(?:average|avg|total|sum|count|show|get)\s+(\w+)\s+(?:by|per|for)\s+(\w+)"
            r"\s+(?:by|and|per|grouped by|for each|&)\s+(\w+)"
        ),
        _extract_template,
    ),
    BreakdownRule(
        "metric_by_pair",
        _pattern(r"(\w+)\s+(?:per|by|for)\s+(\w+)\s+(?:by|and|per|grouped by|&)\s+(\w+)"),
        _extract_template,
    ),
    BreakdownRule(
        "breakdown_of",
        _pattern(r"breakdown\s+of\s+(\w+)\s+by\s+(\w+)\s+(?:and|&|by)\s+(\w+)"),
        _extract_template,
    ),
    BreakdownRule(
        "grouped_by",
        _pattern(r"(\w+)\s+by\s+(\w+)\s+grouped\s+by\s+(\w+)"),
        _extract_template,
    ),
    BreakdownRule("product_by_dimension", _product_dimension_predicate, _extract_product_dimension),
    BreakdownRule("by_a_and_b", _pattern(r"\bby\s+(\w+)\s+(?:and|&)\s+(\w+)"), _extract_conjunction),
)


def match_breakdown(ctx: ClassifierContext) -> tuple[str, TwoDimensionBreakdown] | None:
    """Run the cascade; return ``(rule_name, intent)`` for the first accepted rule."""
    for rule in BREAKDOWN_RULES:
        match = rule.predicate(ctx)
        if match is None:
            continue
        intent = rule.extractor(match, ctx)
        if intent is not None:
            return rule.name, intent
        logger.debug("Rule %s matched %r but was rejected", rule.name, match.group(0))
    return None


# ── Public API ───────────────────────────────────────────

def classify(prompt: str, catalog: FieldCatalog | None = None) -> DetectedIntent | None:
    """Classify *prompt*; ``None`` means "hand this to the reasoning fallback"."""
    if catalog is None:
        catalog = load_field_catalog()
    lower = (prompt or "").lower().strip()
    if not lower:
        return None

    ctx = ClassifierContext(
        lower=lower,
        terms=extract_product_terms(lower, catalog),
        aggregation=detect_aggregation(lower),
        catalog=catalog,
    )

    hit = match_breakdown(ctx)
    if hit is not None:
        rule_name, intent = hit
        logger.info("Classifier[%s] -> %s", rule_name, intent.model_dump_json())
        return intent

    if len(ctx.terms) >= 2:
        intent = CategoryComparison(terms=ctx.terms, aggregation=ctx.aggregation)
        logger.info("Classifier[category_comparison] -> %s", intent.model_dump_json())
        return intent

    logger.info("Classifier found no intent for prompt=%r", prompt[:80])
    return None
