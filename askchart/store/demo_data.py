"""
Demo shipment data for the ``memory`` store backend.

Generates:
  - ~300 shipments across 3 customers
  - 1-3 line items per shipment, described with the product vocabulary
    ("Drawer System", "CargoGlide", "Tool Box", ...)

Deterministic: Faker and ``random`` are seeded, so every run yields the
same rows.
"""
from __future__ import annotations

import random
from datetime import date, timedelta
from typing import Any

from faker import Faker

# ── Tunables ─────────────────────────────────────────────
NUM_SHIPMENTS = 300
MAX_ITEMS_PER_SHIPMENT = 3
CUSTOMER_IDS = [101, 102, 103]

STATES = ["TX", "CA", "IL", "GA", "OH", "PA", "NY", "FL"]
CARRIERS = ["Swift Freight", "Old Dominion", "Estes Express", "XPO Logistics", "Saia"]
MODES = ["LTL", "FTL", "Partial", "Intermodal"]
MODE_WEIGHTS = [0.55, 0.25, 0.12, 0.08]
PRODUCTS = [
    "Drawer System 36in", "Drawer System 48in", "Steel Drawer", "Drawer Insert",
    "CargoGlide 1000", "CargoGlide 1500 HD", "Tool Box Standard", "Tool Box XL",
    "Bed Slide", "Ladder Rack",
]

DATE_START = date(2025, 1, 1)
DATE_RANGE_DAYS = 364


def generate_demo_tables(seed: int = 42) -> dict[str, list[dict[str, Any]]]:
    """Return ``{"shipment": [...], "shipment_item": [...]}`` record lists."""
    rng = random.Random(seed)
    fake = Faker()
    fake.seed_instance(seed)

    shipments: list[dict[str, Any]] = []
    items: list[dict[str, Any]] = []
    for load_id in range(1, NUM_SHIPMENTS + 1):
        miles = rng.randint(80, 2400)
        retail = round(miles * rng.uniform(1.8, 3.2), 2)
        cost = round(retail * rng.uniform(0.70, 0.88), 2)
        shipment = {
            "load_id": load_id,
            "customer_id": rng.choice(CUSTOMER_IDS),
            "reference_number": fake.bothify("REF-#####"),
            "pickup_date": (DATE_START + timedelta(days=rng.randint(0, DATE_RANGE_DAYS))).isoformat(),
            "origin_city": fake.city(),
            "origin_state": rng.choice(STATES),
            "dest_city": fake.city(),
            "dest_state": rng.choice(STATES),
            "carrier_name": rng.choice(CARRIERS),
            "mode_name": rng.choices(MODES, weights=MODE_WEIGHTS)[0],
            "miles": miles,
            "weight": rng.randint(150, 18_000),
            "retail": retail,
            "cost": cost,
            "margin": round(retail - cost, 2),
        }
        shipments.append(shipment)

        for _ in range(rng.randint(1, MAX_ITEMS_PER_SHIPMENT)):
            items.append({**shipment, "description": rng.choice(PRODUCTS)})

    return {"shipment": shipments, "shipment_item": items}
