from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List

from cache import OrderSnapshot
from daterange import Clock, DateWindow, report_now, resolve_window
from drilldown import ClickContext, DrillDownFilter, FilterState, apply_filter, translate_click
from normalize import NormalizedOrder
from pivot import MergeSpan, SortSpec, plan
from reports import Bucket, PivotReport, build_page_report, build_team_report


PIVOT = "pivot"
DRILL_DOWN = "drill_down"

DEFAULT_SORTS = {
    "pages": SortSpec("secondaryKey", "asc"),
    "teams": SortSpec("revenue", "desc"),
}


@dataclass(frozen=True)
class ReportParams:
    report: str = "pages"
    preset: str = "this_month"
    custom_start: str = ""
    custom_end: str = ""
    filters: FilterState = field(default_factory=FilterState)
    sort: SortSpec | None = None
    hide_inactive: bool = False

    @property
    def sort_spec(self) -> SortSpec:
        return self.sort or DEFAULT_SORTS.get(self.report, SortSpec())


@dataclass(frozen=True)
class PivotView:
    report: PivotReport
    rows: List[Bucket]
    spans: List[MergeSpan]
    window: DateWindow


@dataclass(frozen=True)
class DrillDownView:
    drill: DrillDownFilter
    orders: List[NormalizedOrder]
    report: PivotReport


def build_pivot(snapshot: OrderSnapshot, params: ReportParams, clock: Clock = report_now) -> PivotView:
    window = resolve_window(params.preset, params.custom_start, params.custom_end, clock)
    base = apply_filter(DrillDownFilter(date_window=window, filters=params.filters), list(snapshot.orders))
    if params.report == "teams":
        report = build_team_report(base, window, snapshot.teams, params.hide_inactive)
    else:
        report = build_page_report(base, window, snapshot.pages, params.hide_inactive)
    # Undated orders are filtered out above; count them against the full snapshot.
    if not window.is_bounded:
        undated = [order for order in snapshot.orders if order.timestamp is None]
        report = replace(
            report,
            undated_orders=len(undated),
            undated_revenue=float(sum(order.revenue for order in undated)),
        )
    rows, spans = plan(report.bucket_list, params.sort_spec)
    return PivotView(report=report, rows=rows, spans=spans, window=window)


def build_drill_down(
    snapshot: OrderSnapshot,
    params: ReportParams,
    click: ClickContext,
    clock: Clock = report_now,
) -> DrillDownView:
    window = resolve_window(params.preset, params.custom_start, params.custom_end, clock)
    drill = translate_click(click, params.filters, window)
    orders = apply_filter(drill, list(snapshot.orders))
    if params.report == "teams":
        report = build_team_report(orders, drill.date_window)
    else:
        report = build_page_report(orders, drill.date_window)
    return DrillDownView(drill=drill, orders=orders, report=report)


class ReportSession:
    """Moves between the pivot view and one drill-down view."""

    def __init__(self, snapshot: OrderSnapshot, params: ReportParams | None = None, clock: Clock = report_now) -> None:
        self.snapshot = snapshot
        self.params = params or ReportParams()
        self.clock = clock
        self.state = PIVOT
        self.detail: DrillDownView | None = None
        self._click: ClickContext | None = None

    def pivot(self) -> PivotView:
        return build_pivot(self.snapshot, self.params, self.clock)

    def toggle_sort(self, key: str) -> PivotView:
        self.params = replace(self.params, sort=self.params.sort_spec.toggled(key))
        return self.pivot()

    def drill_down(self, click: ClickContext) -> DrillDownView:
        self.detail = build_drill_down(self.snapshot, self.params, click, self.clock)
        self._click = click
        self.state = DRILL_DOWN
        return self.detail

    def back(self) -> PivotView:
        self.state = PIVOT
        self.detail = None
        self._click = None
        return self.pivot()

    def replace_snapshot(self, snapshot: OrderSnapshot) -> None:
        self.snapshot = snapshot
        if self._click is not None:
            self.detail = build_drill_down(self.snapshot, self.params, self._click, self.clock)
