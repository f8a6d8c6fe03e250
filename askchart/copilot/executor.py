"""
Query executor -- turns a classified intent into aggregate round trips.

Strategies:
  category comparison     one request per literal term, each scoped by a
                          case-insensitive substring filter on the text
                          field plus the date range
  breakdown, no terms     a single request with the composite group-by
                          ``"primary,secondary"``
  breakdown over terms    one composite request per term, merged
                          client-side into ``(term, secondary)`` cells

Per-term requests are independent and run concurrently under a bounded
semaphore.  A failed term is logged and skipped; the remaining terms
still contribute.  Merging starts only after every batch has arrived.
"""
from __future__ import annotations

import asyncio

from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.merger import AggregationMerger, build_grouped_rows, pair_key
from askchart.copilot.models import (
    AggregateRequest,
    AggregationKind,
    DateRange,
    MergedDataPoint,
    PartialAggregateRow,
    QueryFilter,
    QueryScope,
    TwoDimensionBreakdown,
    TwoDimensionResult,
)
from askchart.core.config import Settings, get_settings
from askchart.core.errors import StoreQueryError
from askchart.core.logging import get_logger
from askchart.store.base import AggregateStore

logger = get_logger(__name__)


class QueryExecutor:
    """Runs aggregate round trips against one store for one request."""

    def __init__(
        self,
        store: AggregateStore,
        settings: Settings | None = None,
        catalog: FieldCatalog | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.catalog = catalog or load_field_catalog()

    # ── Request building ────────────────────────────────

    def date_filters(self, date_range: DateRange | None) -> list[QueryFilter]:
        if date_range is None:
            return []
        field = self.catalog.date_field
        return [
            QueryFilter(field=field, operator="gte", value=date_range.start.isoformat(), dynamic=True),
            QueryFilter(field=field, operator="lte", value=date_range.end.isoformat(), dynamic=True),
        ]

    def term_filter(self, term: str) -> QueryFilter:
        return QueryFilter(field=self.catalog.text_search_field, operator="ilike", value=term)

    def table_for(self, primary_group_by: str, has_terms: bool) -> str:
        if primary_group_by == self.catalog.text_search_field or has_terms:
            return self.catalog.table_for("item")
        return self.catalog.table_for("shipment")

    # ── Round trips ─────────────────────────────────────

    async def _fetch_terms(
        self,
        requests: dict[str, AggregateRequest],
        scope: QueryScope,
    ) -> dict[str, list[PartialAggregateRow]]:
        """Issue one request per term; failed terms are absent from the result."""
        semaphore = asyncio.Semaphore(max(1, self.settings.query_max_concurrency))

        async def _one(term: str, request: AggregateRequest) -> list[PartialAggregateRow] | None:
            async with semaphore:
                try:
                    rows = await self.store.aggregate(request, scope)
                except StoreQueryError as exc:
                    logger.warning("Query for term %r failed -- skipping: %s", term, exc)
                    return None
            logger.info("Term %r returned %d rows", term, len(rows))
            return rows

        terms = list(requests)
        results = await asyncio.gather(*(_one(t, requests[t]) for t in terms))
        return {term: rows for term, rows in zip(terms, results) if rows is not None}

    async def run_category_comparison(
        self,
        terms: list[str],
        metric: str,
        aggregation: AggregationKind,
        scope: QueryScope,
        date_range: DateRange | None = None,
    ) -> list[MergedDataPoint]:
        """One bar per term, in term order; terms with no rows are omitted."""
        aggregation = AggregationKind(aggregation)
        logger.info("Category comparison terms=%s metric=%s agg=%s", terms, metric, aggregation.value)

        requests = {
            term: AggregateRequest(
                table=self.catalog.table_for("item"),
                group_by=[self.catalog.text_search_field],
                metric=metric,
                aggregation=aggregation,
                filters=[self.term_filter(term), *self.date_filters(date_range)],
                limit=self.settings.category_limit,
            )
            for term in terms
        }
        batches = await self._fetch_terms(requests, scope)

        merger = AggregationMerger(aggregation)
        for term in terms:
            rows = batches.get(term)
            if rows:
                merger.add_batch(rows, key=lambda row, t=term: t)
        merged = merger.result()

        points = [MergedDataPoint(label=t, value=merged[t]) for t in terms if t in merged]
        logger.info("Category comparison -> %d of %d terms with data", len(points), len(terms))
        return points

    async def run_two_dimension(
        self,
        intent: TwoDimensionBreakdown,
        scope: QueryScope,
        date_range: DateRange | None = None,
        category_filters: list[str] | None = None,
    ) -> TwoDimensionResult:
        """Metric split by two fields, as grouped chart rows."""
        terms = list(category_filters or [])
        table = self.table_for(intent.primary_group_by, bool(terms))
        logger.info(
            "Breakdown %s by %s and %s (agg=%s, table=%s, terms=%s)",
            intent.metric, intent.primary_group_by, intent.secondary_group_by,
            intent.aggregation.value, table, terms,
        )

        if terms and intent.primary_group_by == self.catalog.text_search_field:
            return await self._run_term_breakdown(intent, table, terms, scope, date_range)
        if terms:
            logger.info("Terms %s cannot scope a %s breakdown -- single request", terms, intent.primary_group_by)

        request = AggregateRequest(
            table=table,
            group_by=[intent.primary_group_by, intent.secondary_group_by],
            metric=intent.metric,
            aggregation=intent.aggregation,
            filters=self.date_filters(date_range),
            limit=self.settings.breakdown_limit,
        )
        raw = [r for r in await self.store.aggregate(request, scope) if r.primary_group]

        merger = AggregationMerger(intent.aggregation, key=pair_key)
        merger.add_batch(raw)
        grouped, secondary_groups = build_grouped_rows(merger.result())
        logger.info("Breakdown -> %d primary x %d secondary groups", len(grouped), len(secondary_groups))
        return TwoDimensionResult(raw=raw, grouped=grouped, secondary_groups=secondary_groups)

    async def _run_term_breakdown(
        self,
        intent: TwoDimensionBreakdown,
        table: str,
        terms: list[str],
        scope: QueryScope,
        date_range: DateRange | None,
    ) -> TwoDimensionResult:
        requests = {
            term: AggregateRequest(
                table=table,
                group_by=[self.catalog.text_search_field, intent.secondary_group_by],
                metric=intent.metric,
                aggregation=intent.aggregation,
                filters=[*self.date_filters(date_range), self.term_filter(term)],
                limit=self.settings.category_limit,
            )
            for term in terms
        }
        batches = await self._fetch_terms(requests, scope)

        # Rows are re-keyed by term: every description matching a term
        # collapses into that term's cells.
        merger = AggregationMerger(intent.aggregation)
        raw: list[PartialAggregateRow] = []
        for term in terms:
            rows = batches.get(term)
            if not rows:
                continue
            relabelled = [
                PartialAggregateRow(
                    primary_group=term,
                    secondary_group=row.secondary_group or "Unknown",
                    value=row.value,
                    count=row.count,
                )
                for row in rows
            ]
            merger.add_batch(relabelled, key=pair_key)
            raw.extend(relabelled)

        grouped, secondary_groups = build_grouped_rows(merger.result())
        logger.info("Term breakdown -> %d terms x %d secondary groups", len(grouped), len(secondary_groups))
        return TwoDimensionResult(raw=raw, grouped=grouped, secondary_groups=secondary_groups)
