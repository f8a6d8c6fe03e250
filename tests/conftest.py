"""
Shared fixtures -- a small, hand-checkable shipment dataset.

  load  cust  description          cost  retail  carrier  origin  pickup
  1     7     Drawer Unit          100   150     Saia     TX      2025-01-10
  2     7     Drawer Unit          200   250     Saia     CA      2025-02-10
  3     8     CargoGlide 1000      300   400     Estes    TX      2025-03-10
  4     7     Tool Box XL           50    80     Estes    TX      2025-06-10
  5     7     Drawer System 48in    60    90     Saia     TX      2025-03-20
"""
import pytest

from askchart.store.memory_store import InMemoryAggregateStore

_ROWS = [
    (1, 7, "Drawer Unit", 100, 150, "Saia", "TX", "LTL", "2025-01-10"),
    (2, 7, "Drawer Unit", 200, 250, "Saia", "CA", "FTL", "2025-02-10"),
    (3, 8, "CargoGlide 1000", 300, 400, "Estes", "TX", "LTL", "2025-03-10"),
    (4, 7, "Tool Box XL", 50, 80, "Estes", "TX", "LTL", "2025-06-10"),
    (5, 7, "Drawer System 48in", 60, 90, "Saia", "TX", "FTL", "2025-03-20"),
]


def _record(row):
    load_id, customer_id, description, cost, retail, carrier, origin, mode, pickup = row
    return {
        "load_id": load_id,
        "customer_id": customer_id,
        "description": description,
        "cost": cost,
        "retail": retail,
        "carrier_name": carrier,
        "origin_state": origin,
        "mode_name": mode,
        "pickup_date": pickup,
    }


@pytest.fixture
def item_records():
    return [_record(r) for r in _ROWS]


@pytest.fixture
def shipment_records(item_records):
    return [{k: v for k, v in r.items() if k != "description"} for r in item_records]


@pytest.fixture
def memory_store(item_records, shipment_records):
    return InMemoryAggregateStore({"shipment_item": item_records, "shipment": shipment_records})
