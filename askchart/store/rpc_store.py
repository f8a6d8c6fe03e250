"""
Supabase RPC aggregate store.

Calls the ``mcp_aggregate`` Postgres function through PostgREST:

  POST {supabase_url}/rest/v1/rpc/mcp_aggregate
  {p_table_name, p_customer_id, p_is_admin, p_group_by, p_metric,
   p_aggregation, p_filters, p_limit}

and parses ``{data: [...]}`` / ``{error}`` responses.
"""
from __future__ import annotations

from typing import Any

import httpx

from askchart.copilot.models import AggregateRequest, PartialAggregateRow, QueryScope
from askchart.core.config import Settings, get_settings
from askchart.core.errors import StoreQueryError
from askchart.core.logging import get_logger
from askchart.store.base import parse_payload, scoped_filters

logger = get_logger(__name__)


def build_rpc_params(request: AggregateRequest, scope: QueryScope) -> dict[str, Any]:
    """Body for the aggregate RPC."""
    return {
        "p_table_name": request.table,
        "p_customer_id": scope.customer_id or 0,
        "p_is_admin": scope.is_admin,
        "p_group_by": request.group_by_param,
        "p_metric": request.metric,
        "p_aggregation": request.aggregation.value,
        "p_filters": [f.to_rpc() for f in scoped_filters(request.filters, scope)],
        "p_limit": request.limit,
    }


class SupabaseRpcStore:
    """Aggregate store backed by the Supabase ``mcp_aggregate`` RPC."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        access_token: str | None = None,
    ):
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self._access_token = access_token

    def _headers(self) -> dict[str, str]:
        key = self._settings.supabase_key
        token = self._access_token or key
        return {
            "apikey": key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.http_timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def aggregate(self, request: AggregateRequest, scope: QueryScope) -> list[PartialAggregateRow]:
        if not self._settings.supabase_url:
            raise StoreQueryError(
                request.table,
                "supabase_url is not set.  Set SUPABASE_URL in your .env file or environment.",
            )

        params = build_rpc_params(request, scope)
        logger.info(
            "RPC %s table=%s group_by=%s metric=%s agg=%s filters=%d",
            self._settings.aggregate_rpc, request.table, request.group_by_param,
            request.metric, request.aggregation.value, len(params["p_filters"]),
        )

        try:
            response = await self._get_client().post(
                self._settings.rpc_url, json=params, headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise StoreQueryError(request.table, f"transport error: {exc}") from exc

        if response.status_code >= 400:
            raise StoreQueryError(request.table, f"HTTP {response.status_code}: {response.text[:200]}")

        rows = parse_payload(response.text, request.table)
        logger.info("RPC returned %d rows", len(rows))
        return rows
