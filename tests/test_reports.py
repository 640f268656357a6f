import random

import pytest

from conftest import PAGES
from daterange import ALL_TIME, resolve_window
from normalize import normalize_orders
from reports import MONTHS, aggregate, build_page_report, build_shipping_report, build_team_report


def _summary(report):
    return {
        key: (round(bucket.revenue, 6), round(bucket.profit, 6), bucket.order_count, bucket.secondary_key)
        for key, bucket in report.buckets.items()
    }


def test_revenue_reconciles_with_orders_in_window(orders, clock):
    window = resolve_window("this_month", clock=clock)
    report = build_page_report(orders, window, PAGES)
    in_window = [order for order in orders if window.contains(order.timestamp)]
    assert sum(bucket.revenue for bucket in report.bucket_list) == pytest.approx(sum(o.revenue for o in in_window))
    assert report.totals.revenue == pytest.approx(350.0)
    assert report.totals.order_count == 3


def test_monthly_slots_partition_bucket_totals(orders):
    report = build_page_report(orders, ALL_TIME, PAGES)
    for bucket in report.bucket_list + [report.totals]:
        assert sum(slot.revenue for slot in bucket.monthly) == pytest.approx(bucket.revenue)
        assert sum(slot.profit for slot in bucket.monthly) == pytest.approx(bucket.profit)
    page_a = report.buckets["Page-A"]
    assert page_a.monthly[2].revenue == pytest.approx(150.0)
    assert page_a.monthly[3].revenue == pytest.approx(80.0)
    assert page_a.to_dict()["rev_Mar"] == pytest.approx(150.0)
    assert page_a.to_dict()["prof_Apr"] == pytest.approx(45.0)
    assert len(page_a.monthly) == len(MONTHS)


def test_aggregation_ignores_input_order(orders):
    shuffled = list(orders)
    random.Random(7).shuffle(shuffled)
    original = build_page_report(orders, ALL_TIME, PAGES)
    permuted = build_page_report(shuffled, ALL_TIME, PAGES)
    assert _summary(original) == _summary(permuted)
    assert list(original.buckets) == list(permuted.buckets)


def test_seeded_pages_come_first_and_keep_their_team(orders):
    report = build_page_report(orders, ALL_TIME, PAGES)
    assert list(report.buckets) == ["Page-A", "Page-B", "Page-C", "Page-D"]
    page_c = report.buckets["Page-C"]
    assert page_c.revenue == 0
    assert page_c.secondary_key == "Team 1"
    assert report.buckets["Page-D"].secondary_key == "Team 3"


def test_hide_inactive_drops_empty_buckets(orders):
    report = build_page_report(orders, ALL_TIME, PAGES, hide_inactive=True)
    assert "Page-C" not in report.buckets


def test_undated_orders_reported_only_for_unbounded_window(orders, clock):
    everything = build_page_report(orders, ALL_TIME, PAGES)
    assert everything.undated_orders == 1
    assert everything.undated_revenue == pytest.approx(999.0)
    assert everything.totals.revenue == pytest.approx(460.0)

    this_year = build_page_report(orders, resolve_window("this_year", clock=clock), PAGES)
    assert this_year.undated_orders == 0
    assert this_year.totals.revenue == pytest.approx(460.0)


def test_malformed_line_items_do_not_abort_aggregation(make_raw):
    orders = normalize_orders(
        [
            make_raw("o1", "2024-03-02 10:00:00", grand_total=100.0),
            make_raw("o2", "2024-03-03 10:00:00", grand_total=70.0, **{"Products (JSON)": "[{broken"}),
        ]
    )
    report = aggregate(orders)
    assert report.buckets["Page-A"].revenue == pytest.approx(170.0)
    assert report.buckets["Page-A"].order_count == 2


def test_non_list_snapshot_is_rejected():
    with pytest.raises(TypeError):
        aggregate("not a list")


def test_team_report_carries_members(orders):
    report = build_team_report(orders, ALL_TIME, ["Team 1", "Team 2", "Team 9"])
    assert list(report.buckets)[:3] == ["Team 1", "Team 2", "Team 9"]
    assert report.buckets["Team 1"].revenue == pytest.approx(230.0)
    assert report.buckets["Team 1"].members == ("alice",)
    assert report.buckets["Team 2"].members == ("bob",)
    assert report.buckets["Team 9"].order_count == 0
    assert report.buckets["Team 3"].revenue == pytest.approx(30.0)


def test_shipping_report(make_raw):
    orders = normalize_orders(
        [
            make_raw("o1", "2024-03-02 10:00:00", internal_cost=5.0),
            make_raw("o2", "2024-03-03 10:00:00", internal_cost=7.0),
            make_raw(
                "o3",
                "2024-03-04 10:00:00",
                internal_cost=10.0,
                **{"Internal Shipping Method": "Courier", "Internal Shipping Details": "N/A"},
            ),
            make_raw("o4", "bad timestamp", internal_cost=50.0),
        ]
    )
    shipping = build_shipping_report(orders)
    assert shipping.total_orders == 3
    assert shipping.total_internal_cost == pytest.approx(22.0)
    assert shipping.total_customer_fee == pytest.approx(6.0)
    assert shipping.net_shipping == pytest.approx(-16.0)
    assert [(line.name, line.cost, line.orders) for line in shipping.methods] == [("Driver", 12.0, 2), ("Courier", 10.0, 1)]
    assert [line.name for line in shipping.drivers] == ["Dara"]


def test_shipping_report_respects_window(orders):
    march = build_shipping_report(orders, resolve_window("custom", "2024-03-01", "2024-03-31"))
    assert march.total_orders == 3
