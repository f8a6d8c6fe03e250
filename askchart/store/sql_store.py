"""
Direct-SQL aggregate store.

Compiles an ``AggregateRequest`` into one parameterised query:

  SELECT <group> AS label | <g1> AS primary_group, <g2> AS secondary_group,
         <AGG>(<metric>) AS value, COUNT(*) AS count
  FROM <table> WHERE <scope> AND <filters>
  GROUP BY ... ORDER BY value DESC LIMIT :limit

Identifiers are checked against the field catalog and quoted; every
value is a bound parameter.  Execution:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Enforces a per-query statement_timeout
  3. Converts Decimal/date/datetime to JSON-safe Python types
"""
from __future__ import annotations

import asyncio
import decimal
import datetime
import re
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.models import AggregateRequest, AggregationKind, PartialAggregateRow, QueryScope
from askchart.core.errors import StoreQueryError
from askchart.core.logging import get_logger
from askchart.store.base import parse_payload, scoped_filters
from askchart.store.connection import readonly_connection

logger = get_logger(__name__)

_QUERY_TIMEOUT_MS = 10_000  # 10 seconds max per query

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

_AGG_SQL: dict[AggregationKind, str] = {
    AggregationKind.SUM: "SUM",
    AggregationKind.AVG: "AVG",
    AggregationKind.COUNT: "COUNT",
    AggregationKind.MIN: "MIN",
    AggregationKind.MAX: "MAX",
}

_COMPARISONS: dict[str, str] = {
    "eq": "=", "neq": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<=",
}


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def _ident(name: str, allowed: set[str], table: str) -> str:
    if not _IDENT_RE.match(name) or name not in allowed:
        raise StoreQueryError(table, f"field '{name}' is not in the catalog")
    return f'"{name}"'


def compile_aggregate(
    request: AggregateRequest,
    scope: QueryScope,
    catalog: FieldCatalog | None = None,
) -> tuple[str, dict[str, Any]]:
    """Return ``(sql, params)`` for *request*."""
    if catalog is None:
        catalog = load_field_catalog()

    if request.table not in set(catalog.tables.values()):
        raise StoreQueryError(request.table, "table is not in the catalog")
    allowed = set(catalog.column_ids())
    table = _ident(request.table, {request.table}, request.table)

    groups = [_ident(g, allowed, request.table) for g in request.group_by]
    if request.is_composite:
        select_groups = f"{groups[0]} AS primary_group, {groups[1]} AS secondary_group"
    else:
        select_groups = f"{groups[0]} AS label"
    metric = _ident(request.metric, allowed, request.table)
    agg = _AGG_SQL[request.aggregation]

    where: list[str] = []
    params: dict[str, Any] = {"limit": request.limit}
    if not scope.is_admin:
        where.append('"customer_id" = :customer_id')
        params["customer_id"] = scope.customer_id

    for i, flt in enumerate(scoped_filters(request.filters, scope, catalog)):
        col = _ident(flt.field, allowed, request.table)
        name = f"f{i}"
        if flt.operator in ("like", "ilike"):
            where.append(f"{col} ILIKE :{name}")
            params[name] = f"%{flt.value}%"
        elif flt.operator == "in":
            where.append(f"{col}::text = ANY(:{name})")
            values = flt.value if isinstance(flt.value, (list, tuple)) else [flt.value]
            params[name] = [str(v) for v in values]
        else:
            where.append(f"{col} {_COMPARISONS[flt.operator]} :{name}")
            params[name] = flt.value

    sql = f"SELECT {select_groups}, {agg}({metric}) AS value, COUNT(*) AS count FROM {table}"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += f" GROUP BY {', '.join(groups)} ORDER BY value DESC NULLS LAST LIMIT :limit"
    return sql, params


def execute_readonly(
    sql: str,
    params: dict | None = None,
    timeout_ms: int = _QUERY_TIMEOUT_MS,
    engine: Engine | None = None,
) -> list[dict[str, Any]]:
    """Execute a read-only SQL query and return rows as serialisable dicts."""
    logger.info("Executing SQL (%d chars)", len(sql))

    with readonly_connection(engine) as conn:
        conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))

        result = conn.execute(text(sql), params or {})
        columns = list(result.keys())
        rows = [
            {col: _serialise_value(val) for col, val in zip(columns, row)}
            for row in result.fetchall()
        ]

    logger.info("Returned %d rows", len(rows))
    return rows


class SqlAggregateStore:
    """Aggregate store that queries Postgres directly through SQLAlchemy."""

    def __init__(self, engine: Engine | None = None, timeout_ms: int = _QUERY_TIMEOUT_MS):
        self._engine = engine
        self._timeout_ms = timeout_ms

    async def aggregate(self, request: AggregateRequest, scope: QueryScope) -> list[PartialAggregateRow]:
        sql, params = compile_aggregate(request, scope)
        try:
            raw = await asyncio.to_thread(
                execute_readonly, sql, params, self._timeout_ms, self._engine,
            )
        except SQLAlchemyError as exc:
            raise StoreQueryError(request.table, f"SQL execution failed: {exc}") from exc
        return parse_payload({"data": raw}, request.table)
