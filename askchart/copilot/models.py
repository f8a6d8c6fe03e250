"""
Structured intermediate representations between a free-text prompt and a
chart-ready dataset.

Everything here is created per request and discarded once the dataset
is produced.
"""
from __future__ import annotations

import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, model_validator


class AggregationKind(str, Enum):
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"


# ── Detected intents ─────────────────────────────────────

class CategoryComparison(BaseModel):
    """Several literal product terms compared as independent bars."""

    kind: Literal["category_comparison"] = "category_comparison"
    terms: list[str] = Field(..., min_length=1, description="Canonical product labels, first-seen order")
    aggregation: AggregationKind = AggregationKind.AVG


class TwoDimensionBreakdown(BaseModel):
    """One metric split by two grouping fields at once."""

    kind: Literal["two_dimension"] = "two_dimension"
    primary_group_by: str = Field(..., description="Store field id of the outer grouping")
    secondary_group_by: str = Field(..., description="Store field id of the inner grouping")
    metric: str
    aggregation: AggregationKind = AggregationKind.AVG
    category_terms: list[str] = Field(
        default_factory=list,
        description="Literal product terms that scope the breakdown, if any",
    )


DetectedIntent = Union[CategoryComparison, TwoDimensionBreakdown]


# ── Request side ─────────────────────────────────────────

FilterOperator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "like", "ilike", "in"]


class QueryFilter(BaseModel):
    field: str
    operator: FilterOperator = "eq"
    value: Any
    dynamic: bool = False

    def to_rpc(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


class DateRange(BaseModel):
    start: datetime.date
    end: datetime.date

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date range start must not be after end")
        return self

    def describe(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


class QueryScope(BaseModel):
    """Whose rows a request may see."""

    customer_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return not self.customer_id


class AggregateRequest(BaseModel):
    table: str
    group_by: list[str] = Field(..., min_length=1, max_length=2)
    metric: str
    aggregation: AggregationKind
    filters: list[QueryFilter] = Field(default_factory=list)
    limit: int = Field(100, gt=0)

    @property
    def group_by_param(self) -> str:
        """Single field id, or the composite ``"primary,secondary"`` key."""
        return ",".join(self.group_by)

    @property
    def is_composite(self) -> bool:
        return len(self.group_by) == 2


# ── Result side ──────────────────────────────────────────

class PartialAggregateRow(BaseModel):
    """One store-side pre-aggregated row from a single round trip."""

    primary_group: str | None = None
    secondary_group: str | None = None
    label: str | None = None
    value: float | None = None
    count: int = 1

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("count"):
                data["count"] = 1
            for key in ("primary_group", "secondary_group", "label"):
                if data.get(key) is not None:
                    data[key] = str(data[key])
        return data


class MergedDataPoint(BaseModel):
    label: str
    value: float


MergedGroupedRow = dict[str, Any]


class TwoDimensionResult(BaseModel):
    raw: list[PartialAggregateRow] = Field(default_factory=list)
    grouped: list[MergedGroupedRow] = Field(default_factory=list)
    secondary_groups: list[str] = Field(default_factory=list)


class ResolvedConfig(BaseModel):
    title: str = ""
    x_axis: str = ""
    y_axis: str = ""
    aggregation: str = ""
    filters: list[str] = Field(default_factory=list)
    search_terms: list[str] = Field(default_factory=list)
    grouping_logic: str = ""


ResultStatus = Literal["ok", "empty", "error", "superseded"]
ResultSource = Literal["local", "fallback"]


class ChartResult(BaseModel):
    """Chart-consumer payload: either 1-D data points or grouped rows."""

    status: ResultStatus = "ok"
    source: ResultSource = "local"
    intent: DetectedIntent | None = None
    chart_type: str = "bar"
    config: ResolvedConfig = Field(default_factory=ResolvedConfig)
    description: str = ""
    data: list[MergedDataPoint] = Field(default_factory=list)
    grouped: list[MergedGroupedRow] = Field(default_factory=list)
    secondary_groups: list[str] = Field(default_factory=list)
    raw: list[PartialAggregateRow] = Field(default_factory=list)
    message: str = ""
    reasoning: list[dict[str, Any]] = Field(default_factory=list)
    latency_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == "ok"

    @property
    def is_grouped(self) -> bool:
        return bool(self.grouped)
