"""
Order record normalization.

Raw orders arrive from the backend as loosely-typed dicts whose keys carry
spaces ("Grand Total", "Products (JSON)"). This module is the only place that
reads those keys; everything downstream works on ``NormalizedOrder``.
"""

from __future__ import annotations

import json
import logging
import re
import warnings
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence
from zoneinfo import ZoneInfo

import pandas as pd

from daterange import REPORT_TZ


logger = logging.getLogger(__name__)

UNKNOWN_PAGE = "Unknown"
UNASSIGNED_TEAM = "Unassigned"
OPENING_BALANCE_ID = "Opening Balance"

_LOCAL_TIMESTAMP = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})\s(\d{1,2}):(\d{2})(?::(\d{2}))?$")


@dataclass(frozen=True)
class LineItem:
    name: str
    quantity: float
    unit_price: float
    line_total: float
    unit_cost: float
    original_price: float = 0.0


@dataclass(frozen=True)
class NormalizedOrder:
    order_id: str
    timestamp_text: str
    # None marks an unparseable timestamp.
    timestamp: datetime | None
    user: str
    page: str
    team: str
    customer_name: str
    customer_phone: str
    location: str
    address_details: str
    note: str
    shipping_fee: float
    subtotal: float
    grand_total: float
    line_items: tuple[LineItem, ...]
    internal_shipping_method: str
    internal_shipping_details: str
    internal_cost: float
    payment_status: str
    payment_info: str
    discount: float
    total_product_cost: float
    fulfillment_store: str
    fulfillment_status: str
    is_verified: bool

    @property
    def has_valid_timestamp(self) -> bool:
        return self.timestamp is not None

    @property
    def revenue(self) -> float:
        return self.grand_total

    @property
    def cost(self) -> float:
        return self.total_product_cost + self.internal_cost

    @property
    def profit(self) -> float:
        return self.revenue - self.cost


def safe_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if value != value else float(value)
    cleaned = str(value).replace("$", "").replace(",", "").strip()
    if cleaned == "":
        return 0.0
    try:
        result = float(cleaned)
    except ValueError:
        return 0.0
    return 0.0 if result != result else result


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _truthy(value: Any) -> bool:
    if value is True:
        return True
    return str(value).strip().upper() in ("TRUE", "1")


def _to_local(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(tz).replace(tzinfo=None)
    return value


def parse_timestamp(text: Any, tz: ZoneInfo = REPORT_TZ) -> datetime | None:
    """Parse a backend timestamp into a naive local datetime, or None."""
    if not text:
        return None
    value = str(text).strip()

    match = _LOCAL_TIMESTAMP.match(value)
    if match:
        year, month, day, hour, minute, second = match.groups()
        try:
            return datetime(int(year), int(month), int(day), int(hour), int(minute), int(second or 0))
        except ValueError:
            pass

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(value, errors="coerce")
        except (TypeError, ValueError, OverflowError):
            parsed = pd.NaT
    if not pd.isna(parsed):
        return _to_local(parsed.to_pydatetime(), tz)

    if " " in value:
        try:
            return _to_local(datetime.fromisoformat(value.replace(" ", "T", 1).replace("Z", "+00:00")), tz)
        except ValueError:
            pass
    return None


def parse_line_items(blob: Any, order_id: str = "") -> tuple[LineItem, ...]:
    if not blob:
        return ()
    if isinstance(blob, str):
        try:
            rows = json.loads(blob)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Order %s has malformed line-item JSON; treating as no items", order_id)
            return ()
    else:
        rows = blob
    if isinstance(rows, dict):
        rows = [rows]
    if not isinstance(rows, list):
        logger.warning("Order %s line items are not a list; treating as no items", order_id)
        return ()

    items = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        quantity = safe_float(row.get("quantity"))
        unit_price = safe_float(row.get("finalPrice"))
        line_total = row.get("total")
        items.append(
            LineItem(
                name=_text(row.get("name")),
                quantity=quantity,
                unit_price=unit_price,
                line_total=safe_float(line_total) if line_total is not None else quantity * unit_price,
                unit_cost=safe_float(row.get("cost")),
                original_price=safe_float(row.get("originalPrice")),
            )
        )
    return tuple(items)


def normalize_order(raw: Dict[str, Any], tz: ZoneInfo = REPORT_TZ) -> NormalizedOrder:
    order_id = _text(raw.get("Order ID"))
    timestamp_text = _text(raw.get("Timestamp"))
    timestamp = parse_timestamp(timestamp_text, tz)
    if timestamp is None and timestamp_text:
        logger.debug("Order %s has unparseable timestamp %r", order_id, timestamp_text)

    return NormalizedOrder(
        order_id=order_id,
        timestamp_text=timestamp_text,
        timestamp=timestamp,
        user=_text(raw.get("User")),
        page=_text(raw.get("Page")),
        team=_text(raw.get("Team")),
        customer_name=_text(raw.get("Customer Name")),
        customer_phone=_text(raw.get("Customer Phone")),
        location=_text(raw.get("Location")),
        address_details=_text(raw.get("Address Details")),
        note=_text(raw.get("Note")),
        shipping_fee=safe_float(raw.get("Shipping Fee (Customer)")),
        subtotal=safe_float(raw.get("Subtotal")),
        grand_total=safe_float(raw.get("Grand Total")),
        line_items=parse_line_items(raw.get("Products (JSON)"), order_id),
        internal_shipping_method=_text(raw.get("Internal Shipping Method")),
        internal_shipping_details=_text(raw.get("Internal Shipping Details")),
        internal_cost=safe_float(raw.get("Internal Cost")),
        payment_status=_text(raw.get("Payment Status")),
        payment_info=_text(raw.get("Payment Info")),
        discount=safe_float(raw.get("Discount ($)")),
        total_product_cost=safe_float(raw.get("Total Product Cost ($)")),
        fulfillment_store=_text(raw.get("Fulfillment Store")),
        fulfillment_status=_text(raw.get("FulfillmentStatus")) or "Pending",
        is_verified=_truthy(raw.get("IsVerified")),
    )


def normalize_orders(raw_orders: Sequence[Dict[str, Any]], tz: ZoneInfo = REPORT_TZ) -> List[NormalizedOrder]:
    if not isinstance(raw_orders, (list, tuple)):
        raise TypeError(f"orders snapshot must be a list, got {type(raw_orders).__name__}")
    normalized = []
    for raw in raw_orders:
        if not isinstance(raw, dict):
            continue
        if _text(raw.get("Order ID")) == OPENING_BALANCE_ID:
            continue
        normalized.append(normalize_order(raw, tz))
    return normalized


def enrich_teams(orders: Iterable[NormalizedOrder], users: Iterable[Dict[str, Any]] = ()) -> List[NormalizedOrder]:
    """Fill missing teams from the user's first listed team, else ``Unassigned``."""
    team_by_user: Dict[str, str] = {}
    for user in users:
        name = _text(user.get("UserName"))
        teams = _text(user.get("Team"))
        if name and teams:
            team_by_user[name] = teams.split(",")[0].strip()

    enriched = []
    for order in orders:
        if order.team:
            enriched.append(order)
            continue
        team = team_by_user.get(order.user) or UNASSIGNED_TEAM
        enriched.append(replace(order, team=team))
    return enriched


def page_key(order: NormalizedOrder) -> str:
    return order.page or UNKNOWN_PAGE


def team_key(order: NormalizedOrder) -> str:
    return order.team or UNASSIGNED_TEAM
