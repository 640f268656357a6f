"""
Drill-down from a pivot cell back to the orders behind it.

A click on a summary cell becomes a ``DrillDownFilter``: the active report
filters carried through, the clicked dimension overriding its own filter, and,
for month cells, a month constraint whose window is narrowed to that calendar
month when the report window lies within one year. Applying the filter
to the full order snapshot with plain per-field checks yields the exact orders
the cell was built from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Dict, List, Mapping, Sequence

from daterange import ALL_TIME, DateWindow, month_bounds
from normalize import NormalizedOrder, enrich_teams, normalize_orders, page_key, safe_float, team_key


logger = logging.getLogger(__name__)

# Request-argument names accepted for each filter field.
_FILTER_ALIASES = {
    "team": ("team",),
    "page": ("page",),
    "user": ("user",),
    "payment_status": ("paymentStatus", "payment_status"),
    "shipping": ("shipping", "shippingService", "shippingFilter"),
    "driver": ("driver", "driverFilter"),
    "bank": ("bank",),
    "product": ("product",),
    "fulfillment_store": ("fulfillmentStore", "fulfillment_store"),
    "store": ("store",),
    "location": ("location",),
    "internal_cost": ("internalCost", "internal_cost"),
}


@dataclass(frozen=True)
class FilterState:
    """Top-level report filters; an empty value means no constraint."""

    team: str = ""
    page: str = ""
    user: str = ""
    payment_status: str = ""
    shipping: str = ""
    driver: str = ""
    bank: str = ""
    product: str = ""
    fulfillment_store: str = ""
    store: str = ""
    location: str = ""
    internal_cost: str = ""

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "FilterState":
        kwargs = {}
        for name, aliases in _FILTER_ALIASES.items():
            for alias in aliases:
                value = values.get(alias)
                if value not in (None, ""):
                    kwargs[name] = str(value).strip()
                    break
        return cls(**kwargs)

    def active(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}


@dataclass(frozen=True)
class ClickContext:
    dimension: str
    key: str
    secondary_key: str | None = None
    month_index: int | None = None


@dataclass(frozen=True)
class DrillDownFilter:
    date_window: DateWindow = ALL_TIME
    filters: FilterState = field(default_factory=FilterState)
    bucket_key: str | None = None
    secondary_key: str | None = None
    month_index: int | None = None

    def describe(self) -> Dict[str, Any]:
        return {
            "start": self.date_window.start.isoformat() if self.date_window.start else None,
            "end": self.date_window.end.isoformat() if self.date_window.end else None,
            "filters": self.filters.active(),
            "bucket_key": self.bucket_key,
            "secondary_key": self.secondary_key,
            "month_index": self.month_index,
        }


_MATCHERS: Dict[str, Callable[[NormalizedOrder, str], bool]] = {
    "team": lambda order, value: team_key(order) == value,
    "page": lambda order, value: page_key(order) == value,
    "user": lambda order, value: order.user.strip().lower() == value.strip().lower(),
    "payment_status": lambda order, value: order.payment_status == value,
    "shipping": lambda order, value: order.internal_shipping_method == value,
    "driver": lambda order, value: order.internal_shipping_details == value,
    "bank": lambda order, value: order.payment_info == value,
    "product": lambda order, value: any(item.name == value for item in order.line_items),
    "fulfillment_store": lambda order, value: order.fulfillment_store == value,
    "store": lambda order, value: order.fulfillment_store == value,
    "location": lambda order, value: order.location == value,
    "internal_cost": lambda order, value: order.internal_cost == safe_float(value),
}


def _override(filters: FilterState, dimension: str | None, value: str | None) -> FilterState:
    if not dimension or value is None:
        return filters
    if dimension not in _MATCHERS:
        logger.info("Ignoring drill-down on unknown dimension %r", dimension)
        return filters
    return replace(filters, **{dimension: value})


def _month_window(month_index: int, parent: DateWindow) -> DateWindow:
    # Monthly slots sum the month over every year the window covers.
    if parent.start is None or parent.end is None or parent.start.year != parent.end.year:
        return parent
    clipped = month_bounds(parent.start.year, month_index).intersect(parent)
    # A month outside the parent window keeps the parent; the month check in
    # apply_filter then matches nothing.
    return clipped or parent


def translate_click(
    click: ClickContext,
    filters: FilterState = FilterState(),
    window: DateWindow = ALL_TIME,
) -> DrillDownFilter:
    """
    Build the filter for a clicked cell.

    Buckets are grouped on ``click.dimension`` alone. The secondary key only
    labels the row (a page's team), so it is recorded but never narrows the
    orders.
    """
    narrowed = _override(filters, click.dimension, click.key)

    month_index = click.month_index
    if month_index is not None and not 0 <= month_index <= 11:
        logger.info("Ignoring out-of-range month index %s", month_index)
        month_index = None

    date_window = window
    if month_index is not None:
        date_window = _month_window(month_index, window)

    return DrillDownFilter(
        date_window=date_window,
        filters=narrowed,
        bucket_key=click.key,
        secondary_key=click.secondary_key,
        month_index=month_index,
    )


def matches(order: NormalizedOrder, drill: DrillDownFilter) -> bool:
    # Undated orders never match, as they never reach a pivot bucket.
    if not drill.date_window.contains(order.timestamp):
        return False
    if drill.month_index is not None and order.timestamp.month - 1 != drill.month_index:
        return False
    for name, value in drill.filters.active().items():
        if not _MATCHERS[name](order, value):
            return False
    return True


def apply_filter(drill: DrillDownFilter, orders: Sequence[NormalizedOrder]) -> List[NormalizedOrder]:
    if not isinstance(orders, (list, tuple)):
        raise TypeError(f"orders snapshot must be a list, got {type(orders).__name__}")
    subset = [order for order in orders if matches(order, drill)]
    if not subset and drill.bucket_key is not None:
        logger.info("Drill-down into %r matched no orders in the current snapshot", drill.bucket_key)
    return subset


def refilter(
    drill: DrillDownFilter,
    raw_orders: Sequence[Dict[str, Any]],
    users: Sequence[Dict[str, Any]] = (),
) -> List[NormalizedOrder]:
    """Normalize a raw snapshot and narrow it to ``drill``."""
    return apply_filter(drill, enrich_teams(normalize_orders(raw_orders), users))
