"""
Result assembly.

Packages merged data and the metadata that produced it (axes,
aggregation, filters, search terms) plus a human-readable description
into a ``ChartResult`` the dashboard can render.

Chart types:
  - bar          (category comparison, 1-D fallback data)
  - grouped_bar  (two-dimension breakdown)
  - line / pie / kpi / table / area (as chosen by the reasoning service)
"""
from __future__ import annotations

from typing import Any

from askchart.catalog.field_resolver import map_to_column
from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.models import (
    AggregationKind,
    CategoryComparison,
    ChartResult,
    DateRange,
    DetectedIntent,
    MergedDataPoint,
    QueryScope,
    ResolvedConfig,
    TwoDimensionBreakdown,
    TwoDimensionResult,
)
from askchart.copilot.trace_parser import ReasoningTraceParser, TextTraceParser
from askchart.core.logging import get_logger
from askchart.core.utils import format_field_name, round_value

logger = get_logger(__name__)

# ── Chart types ─────────────────────────────────────────

CHART_BAR = "bar"
CHART_GROUPED_BAR = "grouped_bar"
CHART_LINE = "line"
CHART_PIE = "pie"
CHART_KPI = "kpi"
CHART_TABLE = "table"
CHART_AREA = "area"

_AI_CHART_TYPES: dict[str, str] = {
    "bar": CHART_BAR,
    "line": CHART_LINE,
    "pie": CHART_PIE,
    "stat": CHART_KPI,
    "table": CHART_TABLE,
    "area": CHART_AREA,
}

_AGGREGATION_WORDS: dict[AggregationKind, str] = {
    AggregationKind.AVG: "Average",
    AggregationKind.SUM: "Total",
    AggregationKind.COUNT: "Count of",
    AggregationKind.MIN: "Minimum",
    AggregationKind.MAX: "Maximum",
}


# ── Mapping helpers ─────────────────────────────────────

def map_ai_chart_type(ai_type: str | None) -> str:
    return _AI_CHART_TYPES.get((ai_type or "").lower(), CHART_BAR)


def map_ai_aggregation(ai_aggregation: str | None) -> AggregationKind:
    normalized = (ai_aggregation or "").lower()
    if "avg" in normalized or "average" in normalized:
        return AggregationKind.AVG
    if "sum" in normalized or "total" in normalized:
        return AggregationKind.SUM
    if "count" in normalized:
        return AggregationKind.COUNT
    if "min" in normalized:
        return AggregationKind.MIN
    if "max" in normalized:
        return AggregationKind.MAX
    return AggregationKind.AVG


def filter_admin_data(
    data: list[dict[str, Any]],
    catalog: FieldCatalog | None = None,
) -> list[dict[str, Any]]:
    """Drop rows whose label names an admin-only concept (cost, margin, ...)."""
    if catalog is None:
        catalog = load_field_catalog()
    terms = catalog.security.admin_terms
    return [
        row for row in data
        if not any(term in str(row.get("label", "")).lower() for term in terms)
    ]


def generate_description(config: ResolvedConfig, category_count: int) -> str:
    """``Shows avg retail for products matching: Drawer, Tool Box (2 categories)``."""
    aggregation = (config.aggregation or "Average").lower()
    metric = format_field_name(config.y_axis or "cost").lower()
    parts = [f"Shows {aggregation} {metric}"]
    if config.search_terms:
        parts.append(f"for products matching: {', '.join(config.search_terms)}")
    parts.append(f"({category_count} {'category' if category_count == 1 else 'categories'})")
    return " ".join(parts)


def empty_result_message(
    terms: list[str],
    date_range: DateRange | None,
    what: str = "product data",
) -> str:
    """Actionable message for a request that found no rows."""
    range_text = f" in the selected date range ({date_range.describe()})" if date_range else ""
    subject = f' for "{", ".join(terms)}"' if terms else ""
    return (
        f"No {what} found{subject}{range_text}. "
        "Try expanding the date range or check if this customer has shipments with these products."
        if terms else
        f"No {what} found{range_text}. Try widening the date range."
    )


# ── Local intents ───────────────────────────────────────

def _assemble_comparison(
    intent: CategoryComparison,
    points: list[MergedDataPoint],
    metric: str,
    catalog: FieldCatalog,
) -> ChartResult:
    word = _AGGREGATION_WORDS[intent.aggregation]
    config = ResolvedConfig(
        title=f"{word} {format_field_name(metric)} by Product Category",
        x_axis="Product Category",
        y_axis=metric,
        aggregation=intent.aggregation.value.upper(),
        filters=[f"{catalog.text_search_field} ILIKE '%{t}%'" for t in intent.terms],
        search_terms=list(intent.terms),
        grouping_logic=f"Grouped by products matching: {', '.join(intent.terms)}",
    )
    return ChartResult(
        chart_type=CHART_BAR,
        config=config,
        description=generate_description(config, len(points)),
        data=points,
    )


def _assemble_breakdown(
    intent: TwoDimensionBreakdown,
    result: TwoDimensionResult,
    catalog: FieldCatalog,
) -> ChartResult:
    config = ResolvedConfig(
        title=f"{intent.metric} by {intent.primary_group_by} and {intent.secondary_group_by}",
        x_axis=intent.primary_group_by,
        y_axis=intent.metric,
        aggregation=intent.aggregation.value.upper(),
        search_terms=list(intent.category_terms),
        grouping_logic=f"Grouped by {intent.primary_group_by}, split by {intent.secondary_group_by}",
    )
    if intent.category_terms:
        config.filters = [f"{catalog.text_search_field} ILIKE '%{t}%'" for t in intent.category_terms]
    description = (
        f"Shows {intent.aggregation.value} {intent.metric} broken down by "
        f"{intent.primary_group_by} and {intent.secondary_group_by}"
    )
    return ChartResult(
        chart_type=CHART_GROUPED_BAR,
        config=config,
        description=description,
        grouped=result.grouped,
        secondary_groups=result.secondary_groups,
        raw=result.raw,
    )


# ── Fallback ────────────────────────────────────────────

def assemble_fallback(
    visualization: dict[str, Any],
    reasoning: list[dict[str, Any]],
    prompt: str,
    scope: QueryScope,
    parser: ReasoningTraceParser | None = None,
    catalog: FieldCatalog | None = None,
) -> ChartResult:
    """Build a result from the reasoning service's first visualization."""
    if catalog is None:
        catalog = load_field_catalog()
    parser = parser or TextTraceParser(catalog)

    rows = [r for r in ((visualization.get("data") or {}).get("data") or []) if isinstance(r, dict)]
    if not scope.is_admin:
        rows = filter_admin_data(rows, catalog)

    config = parser.parse(reasoning, visualization, prompt)
    columns = catalog.columns_for_scope(scope.is_admin)
    x_axis = map_to_column(config.x_axis, columns, catalog) or config.x_axis
    y_axis = map_to_column(config.y_axis, columns, catalog) or config.y_axis
    aggregation = map_ai_aggregation(config.aggregation)
    config = config.model_copy(update={
        "x_axis": x_axis,
        "y_axis": y_axis,
        "aggregation": config.aggregation or aggregation.value.upper(),
    })

    points: list[MergedDataPoint] = []
    for row in rows:
        try:
            points.append(MergedDataPoint(label=str(row.get("label", "")), value=round_value(row.get("value") or 0)))
        except (TypeError, ValueError, OverflowError):
            logger.debug("Skipping unreadable fallback row %r", row)

    return ChartResult(
        source="fallback",
        chart_type=map_ai_chart_type(visualization.get("type")),
        config=config,
        description=generate_description(config, len(points)),
        data=points,
        reasoning=reasoning,
    )


# ── Public API ──────────────────────────────────────────

def assemble(
    intent: DetectedIntent | None,
    merged: Any,
    raw_trace: list[dict[str, Any]] | None = None,
    *,
    scope: QueryScope | None = None,
    metric: str | None = None,
    prompt: str = "",
    visualization: dict[str, Any] | None = None,
    parser: ReasoningTraceParser | None = None,
    catalog: FieldCatalog | None = None,
) -> ChartResult:
    """Package *merged* data for the chart consumer.

    Parameters
    ----------
    intent : DetectedIntent | None
        The locally classified intent, or ``None`` for the fallback path.
    merged
        ``list[MergedDataPoint]`` for a comparison, ``TwoDimensionResult``
        for a breakdown; ignored on the fallback path.
    raw_trace : list[dict], optional
        Reasoning steps from the fallback service, mined for metadata.
    """
    if catalog is None:
        catalog = load_field_catalog()
    scope = scope or QueryScope()

    if isinstance(intent, CategoryComparison):
        result = _assemble_comparison(intent, list(merged or []), metric or catalog.default_metric, catalog)
    elif isinstance(intent, TwoDimensionBreakdown):
        result = _assemble_breakdown(intent, merged or TwoDimensionResult(), catalog)
    else:
        result = assemble_fallback(visualization or {}, raw_trace or [], prompt, scope, parser, catalog)

    if raw_trace and intent is not None:
        result.reasoning = list(raw_trace)
    logger.info("Assembled %s chart: %s", result.chart_type, result.config.title)
    return result
