from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Sequence

import pandas as pd

from daterange import ALL_TIME, DateWindow
from normalize import UNASSIGNED_TEAM, NormalizedOrder, page_key, team_key


MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

KeyFunc = Callable[[NormalizedOrder], str]

_FRAME_COLUMNS = ["key", "secondary", "user", "revenue", "profit", "month"]


@dataclass(frozen=True)
class MonthSlot:
    revenue: float = 0.0
    profit: float = 0.0


EMPTY_MONTHS = tuple(MonthSlot() for _ in MONTHS)


@dataclass(frozen=True)
class Bucket:
    key: str
    secondary_key: str
    revenue: float = 0.0
    profit: float = 0.0
    order_count: int = 0
    monthly: tuple[MonthSlot, ...] = EMPTY_MONTHS
    members: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        row = {
            "key": self.key,
            "secondary_key": self.secondary_key,
            "revenue": self.revenue,
            "profit": self.profit,
            "order_count": self.order_count,
            "members": list(self.members),
        }
        for month, slot in zip(MONTHS, self.monthly):
            row[f"rev_{month}"] = slot.revenue
            row[f"prof_{month}"] = slot.profit
        return row


@dataclass(frozen=True)
class PivotReport:
    buckets: Dict[str, Bucket]
    totals: Bucket
    window: DateWindow = ALL_TIME
    # Orders with no usable timestamp; only reported for unbounded windows.
    undated_orders: int = 0
    undated_revenue: float = 0.0

    @property
    def bucket_list(self) -> List[Bucket]:
        return list(self.buckets.values())


@dataclass(frozen=True)
class ShippingLine:
    name: str
    cost: float
    orders: int


@dataclass(frozen=True)
class ShippingReport:
    total_internal_cost: float
    total_customer_fee: float
    net_shipping: float
    total_orders: int
    methods: List[ShippingLine] = field(default_factory=list)
    drivers: List[ShippingLine] = field(default_factory=list)


def _check_snapshot(orders: Sequence[NormalizedOrder]) -> None:
    if not isinstance(orders, (list, tuple)):
        raise TypeError(f"orders snapshot must be a list, got {type(orders).__name__}")


def select_window(orders: Sequence[NormalizedOrder], window: DateWindow) -> List[NormalizedOrder]:
    """Orders whose timestamp lies in ``window``; undated orders never qualify."""
    _check_snapshot(orders)
    return [order for order in orders if window.contains(order.timestamp)]


def _orders_frame(orders: Iterable[NormalizedOrder], group_key: KeyFunc, secondary_key: KeyFunc) -> pd.DataFrame:
    rows = [
        {
            "key": group_key(order),
            "secondary": secondary_key(order),
            "user": order.user,
            "revenue": order.revenue,
            "profit": order.profit,
            "month": order.timestamp.month - 1,
        }
        for order in orders
    ]
    return pd.DataFrame(rows, columns=_FRAME_COLUMNS)


def _dominant(values: pd.Series) -> str:
    counts = values.value_counts()
    top = counts[counts == counts.max()].index
    return sorted(str(value) for value in top)[0]


def _monthly_slots(frame: pd.DataFrame) -> tuple[MonthSlot, ...]:
    by_month = frame.groupby("month").agg(revenue=("revenue", "sum"), profit=("profit", "sum"))
    by_month = by_month.reindex(range(len(MONTHS)), fill_value=0.0)
    return tuple(MonthSlot(float(row["revenue"]), float(row["profit"])) for _, row in by_month.iterrows())


def _bucket(key: str, secondary: str, frame: pd.DataFrame) -> Bucket:
    users = sorted({user for user in frame["user"] if user})
    return Bucket(
        key=key,
        secondary_key=secondary,
        revenue=float(frame["revenue"].sum()),
        profit=float(frame["profit"].sum()),
        order_count=int(len(frame)),
        monthly=_monthly_slots(frame),
        members=tuple(users),
    )


def aggregate(
    orders: Sequence[NormalizedOrder],
    window: DateWindow = ALL_TIME,
    group_key: KeyFunc = page_key,
    secondary_key: KeyFunc = team_key,
    seeds: Sequence[tuple[str, str]] = (),
    hide_inactive: bool = False,
    totals_key: str = "Total",
) -> PivotReport:
    """
    Fold orders into one bucket per group key.

    ``seeds`` lists known (key, secondary key) pairs that appear even with no
    orders; a seeded entity keeps its configured secondary key. Unseeded keys
    follow the seeds in alphabetical order so the result does not depend on
    the order of the input.
    """
    _check_snapshot(orders)
    in_window = select_window(orders, window)
    frame = _orders_frame(in_window, group_key, secondary_key)

    undated = [order for order in orders if order.timestamp is None]
    undated_orders = 0 if window.is_bounded else len(undated)
    undated_revenue = 0.0 if window.is_bounded else float(sum(order.revenue for order in undated))

    seeded: Dict[str, str] = {}
    for key, secondary in seeds:
        seeded.setdefault(key, secondary or UNASSIGNED_TEAM)

    groups = {key: group for key, group in frame.groupby("key", sort=True)} if not frame.empty else {}

    buckets: Dict[str, Bucket] = {}
    for key, secondary in seeded.items():
        group = groups.get(key)
        if group is None:
            buckets[key] = Bucket(key=key, secondary_key=secondary)
        else:
            buckets[key] = _bucket(key, secondary, group)
    for key, group in groups.items():
        if key in buckets:
            continue
        buckets[key] = _bucket(key, _dominant(group["secondary"]), group)

    if hide_inactive:
        buckets = {key: bucket for key, bucket in buckets.items() if bucket.revenue != 0}

    totals = _bucket(totals_key, "", frame) if not frame.empty else Bucket(key=totals_key, secondary_key="")
    return PivotReport(
        buckets=buckets,
        totals=totals,
        window=window,
        undated_orders=undated_orders,
        undated_revenue=undated_revenue,
    )


def page_seeds(pages: Iterable[Dict[str, Any]]) -> List[tuple[str, str]]:
    seeds = []
    for page in pages:
        name = str(page.get("PageName") or "").strip()
        if name:
            seeds.append((name, str(page.get("Team") or "").strip() or UNASSIGNED_TEAM))
    return seeds


def build_page_report(
    orders: Sequence[NormalizedOrder],
    window: DateWindow = ALL_TIME,
    pages: Iterable[Dict[str, Any]] = (),
    hide_inactive: bool = False,
) -> PivotReport:
    return aggregate(
        orders,
        window,
        group_key=page_key,
        secondary_key=team_key,
        seeds=page_seeds(pages),
        hide_inactive=hide_inactive,
    )


def build_team_report(
    orders: Sequence[NormalizedOrder],
    window: DateWindow = ALL_TIME,
    teams: Iterable[str] = (),
    hide_inactive: bool = False,
) -> PivotReport:
    seeds = [(team, team) for team in teams if team]
    return aggregate(
        orders,
        window,
        group_key=team_key,
        secondary_key=team_key,
        seeds=seeds,
        hide_inactive=hide_inactive,
    )


def _shipping_lines(frame: pd.DataFrame, column: str) -> List[ShippingLine]:
    if frame.empty:
        return []
    grouped = (
        frame.groupby(column)
        .agg(cost=("internal_cost", "sum"), orders=("internal_cost", "count"))
        .reset_index()
        .sort_values(["cost", column], ascending=[False, True], kind="mergesort")
    )
    return [
        ShippingLine(name=str(row[column]), cost=float(row["cost"]), orders=int(row["orders"]))
        for _, row in grouped.iterrows()
    ]


def build_shipping_report(orders: Sequence[NormalizedOrder], window: DateWindow = ALL_TIME) -> ShippingReport:
    in_window = select_window(orders, window)
    frame = pd.DataFrame(
        [
            {
                "method": order.internal_shipping_method or "Other",
                "driver": order.internal_shipping_details or "N/A",
                "internal_cost": order.internal_cost,
                "customer_fee": order.shipping_fee,
            }
            for order in in_window
        ],
        columns=["method", "driver", "internal_cost", "customer_fee"],
    )
    total_internal_cost = float(frame["internal_cost"].sum()) if not frame.empty else 0.0
    total_customer_fee = float(frame["customer_fee"].sum()) if not frame.empty else 0.0
    drivers = frame[frame["driver"] != "N/A"]
    return ShippingReport(
        total_internal_cost=total_internal_cost,
        total_customer_fee=total_customer_fee,
        net_shipping=total_customer_fee - total_internal_cost,
        total_orders=len(frame),
        methods=_shipping_lines(frame, "method"),
        drivers=_shipping_lines(drivers, "driver"),
    )
