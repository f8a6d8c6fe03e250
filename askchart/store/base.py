"""
Aggregate store contract and the helpers every backend shares.

A store answers one ``AggregateRequest`` with pre-aggregated rows
``{label | primary_group/secondary_group, value, count}``.  Stores are
read-only; none of them mutates data.
"""
from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from askchart.catalog.loader import FieldCatalog, load_field_catalog
from askchart.copilot.models import AggregateRequest, PartialAggregateRow, QueryFilter, QueryScope
from askchart.core.errors import StoreQueryError
from askchart.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class AggregateStore(Protocol):
    async def aggregate(self, request: AggregateRequest, scope: QueryScope) -> list[PartialAggregateRow]:
        """Run one aggregation round trip."""
        ...


def scoped_filters(
    filters: list[QueryFilter],
    scope: QueryScope,
    catalog: FieldCatalog | None = None,
) -> list[QueryFilter]:
    """Drop filters on restricted fields for customer scopes."""
    if scope.is_admin:
        return list(filters)
    if catalog is None:
        catalog = load_field_catalog()
    restricted = catalog.security.restricted_filter_fields
    kept = [f for f in filters if f.field.lower() not in restricted]
    if len(kept) != len(filters):
        logger.info("Skipped %d restricted filter(s) for customer scope", len(filters) - len(kept))
    return kept


def parse_payload(payload: Any, table: str) -> list[PartialAggregateRow]:
    """Turn a ``{data: [...]}`` / ``{error}`` response into rows.

    The payload may arrive as a JSON string.  Raises ``StoreQueryError``
    on an error payload or on rows that do not parse.
    """
    # The RPC may return its JSON result wrapped in a JSON string.
    for _ in range(2):
        if not isinstance(payload, (str, bytes)):
            break
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise StoreQueryError(table, f"invalid JSON payload: {exc}") from exc

    if payload is None:
        return []
    if isinstance(payload, list):
        raw_rows = payload
    elif isinstance(payload, dict):
        if payload.get("error"):
            raise StoreQueryError(table, str(payload["error"]))
        raw_rows = payload.get("data") or []
    else:
        raise StoreQueryError(table, f"unexpected payload type {type(payload).__name__}")

    try:
        return [PartialAggregateRow.model_validate(r) for r in raw_rows]
    except ValidationError as exc:
        raise StoreQueryError(table, f"malformed rows: {exc.error_count()} error(s)") from exc
