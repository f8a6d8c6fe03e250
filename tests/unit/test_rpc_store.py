"""
Unit tests -- Supabase RPC store over an httpx MockTransport.
"""
import json

import httpx
import pytest

from askchart.copilot.models import AggregateRequest, AggregationKind, QueryFilter, QueryScope
from askchart.core.config import Settings
from askchart.core.errors import StoreQueryError
from askchart.store.rpc_store import SupabaseRpcStore, build_rpc_params

SETTINGS = Settings(supabase_url="https://demo.supabase.co", supabase_key="anon-key")


def _request():
    return AggregateRequest(
        table="shipment_item",
        group_by=["description", "origin_state"],
        metric="retail",
        aggregation=AggregationKind.AVG,
        filters=[
            QueryFilter(field="description", operator="ilike", value="drawer"),
            QueryFilter(field="cost", operator="gt", value=5),
        ],
        limit=50,
    )


def _store(handler, token=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseRpcStore(SETTINGS, client=client, access_token=token)



def test_rpc_params_for_customer():
    params = build_rpc_params(_request(), QueryScope(customer_id=42))
    assert params["p_table_name"] == "shipment_item"
    assert params["p_customer_id"] == 42
    assert params["p_is_admin"] is False
    assert params["p_group_by"] == "description,origin_state"
    assert params["p_aggregation"] == "avg"
    assert params["p_limit"] == 50
    assert params["p_filters"] == [{"field": "description", "operator": "ilike", "value": "drawer"}]


def test_rpc_params_for_admin():
    params = build_rpc_params(_request(), QueryScope())
    assert params["p_customer_id"] == 0
    assert params["p_is_admin"] is True
    assert len(params["p_filters"]) == 2



async def test_posts_to_rpc_endpoint():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={
            "success": True,
            "data": [{"primary_group": "Drawer Unit", "secondary_group": "TX", "value": 150.0, "count": 2}],
        })

    rows = await _store(handler, token="user-jwt").aggregate(_request(), QueryScope(customer_id=7))

    assert seen["url"] == "https://demo.supabase.co/rest/v1/rpc/mcp_aggregate"
    assert seen["auth"] == "Bearer user-jwt"
    assert seen["apikey"] == "anon-key"
    assert seen["body"]["p_customer_id"] == 7
    assert rows[0].primary_group == "Drawer Unit"
    assert rows[0].count == 2


async def test_json_string_payload():
    def handler(request):
        return httpx.Response(200, json=json.dumps({"data": [{"label": "A", "value": 3}]}))

    rows = await _store(handler).aggregate(_request(), QueryScope())
    assert rows[0].label == "A"
    assert rows[0].count == 1


async def test_error_payload_raises():
    def handler(request):
        return httpx.Response(200, json={"success": False, "error": "Invalid table"})

    with pytest.raises(StoreQueryError, match="Invalid table"):
        await _store(handler).aggregate(_request(), QueryScope())


async def test_http_error_raises():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(StoreQueryError, match="HTTP 500"):
        await _store(handler).aggregate(_request(), QueryScope())


async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(StoreQueryError, match="transport error"):
        await _store(handler).aggregate(_request(), QueryScope())


async def test_missing_url_raises():
    store = SupabaseRpcStore(Settings(supabase_url=""))
    with pytest.raises(StoreQueryError, match="supabase_url"):
        await store.aggregate(_request(), QueryScope())
