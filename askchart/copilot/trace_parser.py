"""
Reasoning-trace adapter.

The reasoning service returns a visualization plus a free-text trace of
the steps it took.  It does not report the aggregation or the filters it
applied, so they are recovered here from fragments embedded in the
trace (``ILIKE '%...%'``, ``avg(``, ``group_by``).

This is a best-effort scan.  It never raises; a trace it cannot read
yields an empty config.  Callers depend only on ``ReasoningTraceParser``
so the text scan can be swapped out once the service returns structured
metadata.
"""
from __future__ import annotations

import json
import re
from typing import Any, Protocol

from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.classifier import extract_product_terms
from askchart.copilot.models import ResolvedConfig
from askchart.core.logging import get_logger

logger = get_logger(__name__)

_QUOTED_RE = re.compile(r'"([^"]+)"')
_ILIKE_RE = re.compile(r"ILIKE\s+'%([^%']+)%'", re.IGNORECASE)
_GROUP_BY_RE = re.compile(r"""["']?group_?by["']?\s*[:=]\s*["']?([a-z_][a-z0-9_,\s]*)""", re.IGNORECASE)


class ReasoningTraceParser(Protocol):
    def parse(
        self,
        reasoning: list[dict[str, Any]],
        visualization: dict[str, Any],
        prompt: str,
    ) -> ResolvedConfig:
        ...


def _step_text(step: Any) -> str:
    if isinstance(step, str):
        return step
    if not isinstance(step, dict):
        return ""
    parts: list[str] = []
    for key in ("content", "text"):
        value = step.get(key)
        if isinstance(value, str):
            parts.append(value)
        elif value is not None:
            parts.append(json.dumps(value, default=str))
    if step.get("input") is not None:
        parts.append(json.dumps(step["input"], default=str))
    return "\n".join(parts)


class TextTraceParser:
    """Recovers config metadata by scanning trace text."""

    def __init__(self, catalog: FieldCatalog | None = None):
        self._catalog = catalog

    @property
    def catalog(self) -> FieldCatalog:
        if self._catalog is None:
            self._catalog = load_field_catalog()
        return self._catalog

    def parse(
        self,
        reasoning: list[dict[str, Any]],
        visualization: dict[str, Any],
        prompt: str,
    ) -> ResolvedConfig:
        try:
            return self._parse(reasoning or [], visualization or {}, prompt or "")
        except Exception:
            logger.warning("Reasoning trace could not be parsed -- continuing without it", exc_info=True)
            viz_config = (visualization or {}).get("config") or {}
            return ResolvedConfig(
                title=str((visualization or {}).get("title") or ""),
                x_axis=str(viz_config.get("groupBy") or ""),
                y_axis=str(viz_config.get("metric") or ""),
            )

    def _parse(self, reasoning: list[Any], visualization: dict[str, Any], prompt: str) -> ResolvedConfig:
        viz_config = visualization.get("config") or {}
        config = ResolvedConfig(
            title=str(visualization.get("title") or ""),
            x_axis=str(viz_config.get("groupBy") or ""),
            y_axis=str(viz_config.get("metric") or ""),
        )

        terms: list[str] = [t for t in _QUOTED_RE.findall(prompt)]
        for term in extract_product_terms(prompt, self.catalog):
            if term not in terms:
                terms.append(term)

        for step in reasoning:
            text = _step_text(step)
            if not text:
                continue
            lower = text.lower()

            if "avg(" in lower or "average" in lower:
                config.aggregation = "AVG"
            elif "sum(" in lower:
                config.aggregation = "SUM"
            elif "count(" in lower:
                config.aggregation = "COUNT"

            for term in _ILIKE_RE.findall(text):
                term = term.strip()
                if not term:
                    continue
                if term not in terms:
                    terms.append(term)
                clause = f"{self.catalog.text_search_field} ILIKE '%{term}%'"
                if clause not in config.filters:
                    config.filters.append(clause)

            if not config.x_axis:
                m = _GROUP_BY_RE.search(text)
                if m:
                    config.x_axis = m.group(1).split(",")[0].strip()

        config.search_terms = terms
        if terms:
            config.grouping_logic = f"Grouped by products matching: {', '.join(terms)}"
        return config
