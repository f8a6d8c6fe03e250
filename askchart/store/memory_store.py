"""
In-process aggregate store.

Evaluates an ``AggregateRequest`` over plain record dicts with the same
filter / group / order / limit behaviour as the store RPC.  Backs the
``memory`` store backend used for demos and tests.
"""
from __future__ import annotations

from typing import Any, Iterable

from askchart.copilot.models import AggregateRequest, AggregationKind, PartialAggregateRow, QueryFilter, QueryScope
from askchart.core.errors import StoreQueryError
from askchart.core.logging import get_logger
from askchart.store.base import scoped_filters

logger = get_logger(__name__)


def _comparable(left: Any, right: Any) -> tuple[Any, Any]:
    try:
        return float(left), float(right)
    except (TypeError, ValueError):
        return str(left), str(right)


def _matches(record: dict[str, Any], flt: QueryFilter) -> bool:
    actual = record.get(flt.field)
    if actual is None:
        return False
    op = flt.operator
    if op in ("like", "ilike"):
        return str(flt.value).lower() in str(actual).lower()
    if op == "in":
        values = flt.value if isinstance(flt.value, (list, tuple, set)) else [flt.value]
        return str(actual) in {str(v) for v in values}
    left, right = _comparable(actual, flt.value)
    if op == "eq":
        return left == right
    if op == "neq":
        return left != right
    if op == "gt":
        return left > right
    if op == "gte":
        return left >= right
    if op == "lt":
        return left < right
    if op == "lte":
        return left <= right
    return left == right


def _reduce(values: list[float], rows: int, kind: AggregationKind) -> float | None:
    if kind is AggregationKind.COUNT:
        return float(rows)
    if not values:
        return None
    if kind is AggregationKind.SUM:
        return sum(values)
    if kind is AggregationKind.MIN:
        return min(values)
    if kind is AggregationKind.MAX:
        return max(values)
    return sum(values) / len(values)


class InMemoryAggregateStore:
    """Aggregates ``{table_name: [record, ...]}`` in process."""

    def __init__(self, tables: dict[str, Iterable[dict[str, Any]]] | None = None):
        self._tables: dict[str, list[dict[str, Any]]] = {
            name: list(rows) for name, rows in (tables or {}).items()
        }
        self.requests: list[AggregateRequest] = []

    def add_table(self, name: str, rows: Iterable[dict[str, Any]]) -> None:
        self._tables[name] = list(rows)

    async def aggregate(self, request: AggregateRequest, scope: QueryScope) -> list[PartialAggregateRow]:
        self.requests.append(request)
        if request.table not in self._tables:
            raise StoreQueryError(request.table, "unknown table")

        filters = scoped_filters(request.filters, scope)
        records = [
            r for r in self._tables[request.table]
            if (scope.is_admin or r.get("customer_id") == scope.customer_id)
            and all(_matches(r, f) for f in filters)
        ]

        groups: dict[tuple[str, ...], list[dict[str, Any]]] = {}
        for record in records:
            key = tuple(str(record.get(field)) if record.get(field) is not None else "" for field in request.group_by)
            groups.setdefault(key, []).append(record)

        rows: list[PartialAggregateRow] = []
        for key, members in groups.items():
            values = [float(m[request.metric]) for m in members if m.get(request.metric) is not None]
            value = _reduce(values, len(members), request.aggregation)
            if request.is_composite:
                rows.append(PartialAggregateRow(
                    primary_group=key[0] or None,
                    secondary_group=key[1] or None,
                    value=value,
                    count=len(members),
                ))
            else:
                rows.append(PartialAggregateRow(label=key[0] or None, value=value, count=len(members)))

        rows.sort(key=lambda r: (r.value is not None, r.value or 0.0), reverse=True)
        logger.debug("Memory store %s group_by=%s -> %d rows", request.table, request.group_by_param, len(rows))
        return rows[: request.limit]
