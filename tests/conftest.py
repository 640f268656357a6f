"""
Shared pytest fixtures for the report tests.
"""
import json
from datetime import datetime, timezone

import pytest

from cache import OrderSnapshot
from normalize import normalize_orders, enrich_teams


FIXED_NOW = datetime(2024, 3, 15, 10, 0)

PAGES = [
    {"PageName": "Page-A", "Team": "Team 1"},
    {"PageName": "Page-B", "Team": "Team 2"},
    {"PageName": "Page-C", "Team": "Team 1"},
]

USERS = [
    {"UserName": "alice", "Team": "Team 1"},
    {"UserName": "bob", "Team": "Team 2, Team 3"},
]


def build_raw(order_id, timestamp, page="Page-A", team="Team 1", grand_total=100.0,
              product_cost=40.0, internal_cost=5.0, user="alice", **fields):
    raw = {
        "Order ID": order_id,
        "Timestamp": timestamp,
        "User": user,
        "Page": page,
        "Team": team,
        "Customer Name": "Sok",
        "Location": "Phnom Penh",
        "Grand Total": grand_total,
        "Subtotal": grand_total,
        "Shipping Fee (Customer)": 2.0,
        "Total Product Cost ($)": product_cost,
        "Internal Cost": internal_cost,
        "Internal Shipping Method": "Driver",
        "Internal Shipping Details": "Dara",
        "Payment Status": "Paid",
        "Payment Info": "ABA",
        "Fulfillment Store": "Main",
        "Products (JSON)": json.dumps(
            [{"name": "Widget", "quantity": 1, "finalPrice": grand_total, "total": grand_total, "cost": product_cost}]
        ),
    }
    raw.update(fields)
    return raw


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def make_raw():
    """Factory for raw backend order rows."""
    return build_raw


@pytest.fixture
def raw_orders():
    return [
        build_raw("o1", "2024-03-02 10:00:00", grand_total=100.0, product_cost=40.0),
        build_raw("o2", "2024-03-20 12:30:00", grand_total=50.0, product_cost=20.0),
        build_raw("o3", "2024-04-05 09:00:00", grand_total=80.0, product_cost=30.0),
        build_raw("o4", "2024-03-10 15:00:00", page="Page-B", team="", user="bob",
                  grand_total=200.0, product_cost=100.0, internal_cost=10.0),
        build_raw("o5", "2024-02-01 08:00:00", page="Page-D", team="Team 3", grand_total=30.0, product_cost=10.0),
        build_raw("o6", "not-a-date", grand_total=999.0),
        build_raw("Opening Balance", "2024-01-01 00:00:00", grand_total=5000.0),
        None,
    ]


@pytest.fixture
def orders(raw_orders):
    return enrich_teams(normalize_orders(raw_orders), USERS)


@pytest.fixture
def snapshot(raw_orders):
    return OrderSnapshot.build(
        raw_orders,
        {"pages": PAGES, "users": USERS},
        fetched_at=datetime(2024, 3, 15, 3, 0, tzinfo=timezone.utc),
    )
