"""
Unit tests -- in-process aggregate store and shared payload parsing.
"""
import pytest

from askchart.copilot.models import AggregateRequest, AggregationKind, QueryFilter, QueryScope
from askchart.core.errors import StoreQueryError
from askchart.store.base import parse_payload, scoped_filters
from askchart.store.demo_data import generate_demo_tables
from askchart.store.memory_store import InMemoryAggregateStore

ADMIN = QueryScope()


def _request(**overrides):
    base = dict(
        table="shipment_item",
        group_by=["description"],
        metric="cost",
        aggregation=AggregationKind.AVG,
    )
    base.update(overrides)
    return AggregateRequest(**base)



async def test_ilike_filter_and_grouping(memory_store):
    rows = await memory_store.aggregate(
        _request(filters=[QueryFilter(field="description", operator="ilike", value="drawer")]),
        ADMIN,
    )
    by_label = {r.label: (r.value, r.count) for r in rows}
    assert by_label == {"Drawer Unit": (150.0, 2), "Drawer System 48in": (60.0, 1)}


async def test_rows_sorted_by_value_and_limited(memory_store):
    rows = await memory_store.aggregate(_request(limit=2), ADMIN)
    assert [r.label for r in rows] == ["CargoGlide 1000", "Drawer Unit"]


async def test_customer_scope_only_sees_own_rows(memory_store):
    rows = await memory_store.aggregate(_request(metric="retail"), QueryScope(customer_id=8))
    assert [r.label for r in rows] == ["CargoGlide 1000"]


async def test_composite_group_by(memory_store):
    rows = await memory_store.aggregate(
        _request(table="shipment", group_by=["carrier_name", "origin_state"], metric="retail"),
        ADMIN,
    )
    cells = {(r.primary_group, r.secondary_group): r.value for r in rows}
    assert cells == {("Saia", "TX"): 120.0, ("Saia", "CA"): 250.0, ("Estes", "TX"): 240.0}


async def test_count_counts_rows(memory_store):
    rows = await memory_store.aggregate(
        _request(table="shipment", group_by=["carrier_name"], metric="load_id", aggregation=AggregationKind.COUNT),
        ADMIN,
    )
    assert {r.label: r.value for r in rows} == {"Saia": 3.0, "Estes": 2.0}


async def test_date_range_filters(memory_store):
    rows = await memory_store.aggregate(
        _request(filters=[
            QueryFilter(field="pickup_date", operator="gte", value="2025-02-01"),
            QueryFilter(field="pickup_date", operator="lte", value="2025-03-15"),
        ]),
        ADMIN,
    )
    assert {r.label for r in rows} == {"Drawer Unit", "CargoGlide 1000"}


async def test_in_filter(memory_store):
    rows = await memory_store.aggregate(
        _request(group_by=["origin_state"], filters=[QueryFilter(field="origin_state", operator="in", value=["CA"])]),
        ADMIN,
    )
    assert [r.label for r in rows] == ["CA"]


async def test_unknown_table_raises(memory_store):
    with pytest.raises(StoreQueryError, match="unknown table"):
        await memory_store.aggregate(_request(table="nope"), ADMIN)


async def test_requests_are_recorded(memory_store):
    await memory_store.aggregate(_request(), ADMIN)
    assert len(memory_store.requests) == 1



def test_restricted_filters_dropped_for_customers():
    filters = [
        QueryFilter(field="cost", operator="gt", value=10),
        QueryFilter(field="description", operator="ilike", value="drawer"),
    ]
    assert [f.field for f in scoped_filters(filters, QueryScope(customer_id=7))] == ["description"]
    assert len(scoped_filters(filters, ADMIN)) == 2


def test_parse_payload_json_string():
    rows = parse_payload('{"data": [{"label": "A", "value": 1.5, "count": 2}]}', "t")
    assert rows[0].label == "A"
    assert rows[0].count == 2


def test_parse_payload_error():
    with pytest.raises(StoreQueryError, match="boom"):
        parse_payload({"success": False, "error": "boom"}, "t")


def test_parse_payload_invalid_json():
    with pytest.raises(StoreQueryError, match="invalid JSON"):
        parse_payload("{not json", "t")


def test_parse_payload_none():
    assert parse_payload(None, "t") == []



def test_demo_data_is_deterministic():
    first = generate_demo_tables()
    second = generate_demo_tables()
    assert first["shipment"][:5] == second["shipment"][:5]
    assert len(first["shipment_item"]) >= len(first["shipment"])


async def test_all_null_metric_group_reports_null_last():
    store = InMemoryAggregateStore({"shipment_item": [
        {"description": "Liner", "cost": None},
        {"description": "Drawer", "cost": 40},
    ]})
    rows = await store.aggregate(_request(), ADMIN)
    assert [(r.label, r.value) for r in rows] == [("Drawer", 40.0), ("Liner", None)]


def test_filter_dynamic_flag_stays_off_the_wire():
    flt = QueryFilter(field="pickup_date", operator="gte", value="2025-01-01", dynamic=True)
    assert flt.dynamic is True
    assert QueryFilter(field="description", value="x").dynamic is False
    assert flt.to_rpc() == {"field": "pickup_date", "operator": "gte", "value": "2025-01-01"}
