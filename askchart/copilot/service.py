"""
Chart pipeline -- orchestrates classify -> execute -> merge -> assemble.

One ``ChartPipeline.ask`` call is one full run for one prompt:

  1. Classify the prompt locally (no I/O).
  2. Known intent: fan out aggregate round trips, merge, assemble.
  3. No intent: hand the prompt to the reasoning fallback exactly once
     and assemble from its visualization and trace.

Nothing here is fatal: store and fallback failures come back as a
``ChartResult`` with ``status="error"`` and a user-facing message, and
an empty dataset comes back as ``status="empty"``.

``PromptSession`` sits on top for interactive use.  Every submit bumps a
generation number and cancels the previous in-flight run; a run that
finishes after being replaced returns ``status="superseded"``.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx

from askchart.catalog.field_resolver import scoped_metric
from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.assembler import assemble, empty_result_message
from askchart.copilot.classifier import classify
from askchart.copilot.executor import QueryExecutor
from askchart.copilot.models import (
    CategoryComparison,
    ChartResult,
    DateRange,
    DetectedIntent,
    QueryScope,
    TwoDimensionBreakdown,
)
from askchart.copilot.reasoning_client import (
    FallbackRequest,
    FallbackResponse,
    build_fallback_prompt,
    call_reasoning,
)
from askchart.copilot.trace_parser import ReasoningTraceParser, TextTraceParser
from askchart.core.config import Settings, get_settings
from askchart.core.errors import FallbackServiceError, StoreQueryError, SupersededError
from askchart.core.logging import get_logger
from askchart.core.utils import timer
from askchart.store.base import AggregateStore
from askchart.store.factory import get_store

logger = get_logger(__name__)

# Product comparisons report carrier cost to admins; customers see retail.
_COMPARISON_METRIC = "cost"

ReasoningCall = Callable[[FallbackRequest, "str | None", "httpx.AsyncClient | None"], Awaitable[FallbackResponse]]


class ChartPipeline:
    def __init__(
        self,
        store: AggregateStore | None = None,
        settings: Settings | None = None,
        catalog: FieldCatalog | None = None,
        trace_parser: ReasoningTraceParser | None = None,
        reasoning: ReasoningCall = call_reasoning,
        reasoning_provider: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self.catalog = catalog or load_field_catalog()
        self.store = store if store is not None else get_store(self.settings)
        self.trace_parser = trace_parser or TextTraceParser(self.catalog)
        self._reasoning = reasoning
        self._reasoning_provider = reasoning_provider
        self._http_client = http_client

    def classify(self, prompt: str) -> DetectedIntent | None:
        return classify(prompt, self.catalog)

    async def ask(
        self,
        prompt: str,
        scope: QueryScope | None = None,
        date_range: DateRange | None = None,
        user_id: str | None = None,
    ) -> ChartResult:
        """End-to-end: prompt -> chart-ready result.

        Parameters
        ----------
        prompt : str
            Free-text request from the dashboard.
        scope : QueryScope | None
            Customer scope; ``None`` or a falsy ``customer_id`` is admin.
        date_range : DateRange | None
            Inclusive pickup-date window applied to every round trip.
        user_id : str | None
            Forwarded to the reasoning service only.
        """
        scope = scope or QueryScope()
        logger.info(
            "ChartPipeline.ask | prompt=%s | customer=%s | range=%s",
            prompt[:80], scope.customer_id, date_range.describe() if date_range else "-",
        )
        with timer() as t:
            intent = self.classify(prompt)
            if intent is None:
                result = await self._run_fallback(prompt, scope, user_id)
            else:
                result = await self._run_local(intent, scope, date_range)
        result.intent = intent
        result.latency_ms = t["elapsed_ms"]
        logger.info("ChartPipeline.ask -> status=%s source=%s in %dms", result.status, result.source, result.latency_ms)
        return result

    # ── Local path ──────────────────────────────────────

    async def _run_local(
        self,
        intent: DetectedIntent,
        scope: QueryScope,
        date_range: DateRange | None,
    ) -> ChartResult:
        executor = QueryExecutor(self.store, self.settings, self.catalog)

        if isinstance(intent, CategoryComparison):
            metric = scoped_metric(_COMPARISON_METRIC, scope.is_admin, self.catalog)
            points = await executor.run_category_comparison(
                intent.terms, metric, intent.aggregation, scope, date_range,
            )
            result = assemble(intent, points, scope=scope, metric=metric, catalog=self.catalog)
            if not points:
                result.status = "empty"
                result.message = empty_result_message(intent.terms, date_range)
            return result

        assert isinstance(intent, TwoDimensionBreakdown)
        intent = intent.model_copy(update={
            "metric": scoped_metric(intent.metric, scope.is_admin, self.catalog),
        })
        try:
            merged = await executor.run_two_dimension(intent, scope, date_range, intent.category_terms)
        except StoreQueryError as exc:
            logger.warning("Breakdown query failed: %s", exc)
            return ChartResult(status="error", message=str(exc))

        result = assemble(intent, merged, scope=scope, catalog=self.catalog)
        if not merged.grouped:
            result.status = "empty"
            result.message = empty_result_message(
                intent.category_terms, date_range,
                what=f"{intent.metric} data by {intent.primary_group_by} and {intent.secondary_group_by}",
            )
        return result

    # ── Fallback path ───────────────────────────────────

    async def _run_fallback(self, prompt: str, scope: QueryScope, user_id: str | None) -> ChartResult:
        request = FallbackRequest(
            question=build_fallback_prompt(prompt, scope.is_admin),
            scope_id=str(scope.customer_id or 0),
            user_id=user_id,
        )
        try:
            response = await self._reasoning(request, self._reasoning_provider, self._http_client)
        except FallbackServiceError as exc:
            logger.warning("Reasoning fallback failed (%s): %s", exc.kind, exc.detail)
            return ChartResult(status="error", source="fallback", message=exc.user_message)

        if not response.success or not response.visualizations:
            return ChartResult(
                status="error",
                source="fallback",
                message=response.error or "AI could not generate visualization",
                reasoning=response.reasoning,
            )

        result = assemble(
            None, None, response.reasoning,
            scope=scope,
            prompt=prompt,
            visualization=response.visualizations[0].model_dump(),
            parser=self.trace_parser,
            catalog=self.catalog,
        )
        if not result.data:
            result.status = "empty"
            result.message = "No data found for this request. Try rephrasing or widening the date range."
        return result


class PromptSession:
    """Serialises prompts from one dashboard; only the newest run wins."""

    def __init__(self, pipeline: ChartPipeline):
        self.pipeline = pipeline
        self._generation = 0
        self._task: asyncio.Task | None = None

    @property
    def generation(self) -> int:
        return self._generation

    async def submit(
        self,
        prompt: str,
        scope: QueryScope | None = None,
        date_range: DateRange | None = None,
    ) -> ChartResult:
        self._generation += 1
        generation = self._generation

        if self._task is not None and not self._task.done():
            logger.info("Cancelling run %d -- superseded by %d", generation - 1, generation)
            self._task.cancel()

        task = asyncio.create_task(self.pipeline.ask(prompt, scope, date_range))
        self._task = task
        try:
            result = await task
        except asyncio.CancelledError:
            if generation == self._generation:
                raise
            return self._superseded(generation)

        if generation != self._generation:
            return self._superseded(generation)
        return result

    @staticmethod
    def _superseded(generation: int) -> ChartResult:
        exc = SupersededError(generation)
        logger.info("%s -- discarding its result", exc)
        return ChartResult(status="superseded", message=str(exc))
