from __future__ import annotations

import logging
logging.basicConfig(level=logging.INFO)


import locale
import os
from dataclasses import asdict
from datetime import datetime, timezone
from threading import Thread
import traceback
from typing import Any, Mapping

from dotenv import load_dotenv
from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask, request, send_file, jsonify

from cache import SnapshotStore, init_db, set_cache_status, get_cache_status
from daterange import report_now, resolve_window
from drilldown import ClickContext, FilterState
from exporters import export_pivot_excel, export_pivot_pdf
from normalize import NormalizedOrder
from orderapi import OrderApiClient, OrderApiError
from pivot import SORT_KEYS, SortSpec
from reports import PivotReport, build_shipping_report
from session import PivotView, ReportParams, build_drill_down, build_pivot

load_dotenv()

logger = logging.getLogger(__name__)

try:
    locale.setlocale(locale.LC_COLLATE, "")
except locale.Error:
    logger.warning("Collation locale from the environment is unavailable; text columns sort by code point")

APP_ROOT = os.path.dirname(os.path.abspath(__file__))
DB_PATH = os.environ.get("CACHE_DB_PATH") or os.path.join(APP_ROOT, "data", "app.db")

app = Flask(__name__)
app.secret_key = os.environ.get("FLASK_SECRET_KEY", "change-this")

clock = report_now
_store: SnapshotStore | None = None

REPORT_LABELS = {
    "pages": ("Page", "Team", "Sales Report by Page"),
    "teams": ("Team", None, "Sales Report by Team"),
}


def get_store() -> SnapshotStore:
    global _store
    if _store is None:
        init_db(DB_PATH)
        _store = SnapshotStore(OrderApiClient.from_env(), db_path=DB_PATH)
    return _store


def _flag(value: Any) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_params(values: Mapping[str, Any], report: str, filters: Mapping[str, Any] | None = None) -> ReportParams:
    sort = None
    sort_key = values.get("sort")
    if sort_key in SORT_KEYS:
        direction = values.get("direction", "desc")
        sort = SortSpec(sort_key, "asc" if direction == "asc" else "desc")
    return ReportParams(
        report=report,
        preset=str(values.get("range") or values.get("preset") or "this_month"),
        custom_start=str(values.get("start") or ""),
        custom_end=str(values.get("end") or ""),
        filters=FilterState.from_mapping(filters if filters is not None else values),
        sort=sort,
        hide_inactive=_flag(values.get("hideInactive")),
    )


def _report_json(report: PivotReport, rows=None) -> dict:
    rows = report.bucket_list if rows is None else rows
    return {
        "window": report.window.describe(),
        "rows": [bucket.to_dict() for bucket in rows],
        "totals": report.totals.to_dict(),
        "undated_orders": report.undated_orders,
        "undated_revenue": report.undated_revenue,
    }


def _view_json(view: PivotView) -> dict:
    payload = _report_json(view.report, view.rows)
    payload["spans"] = [asdict(span) for span in view.spans]
    return payload


def _order_json(order: NormalizedOrder) -> dict:
    row = asdict(order)
    row["timestamp"] = order.timestamp.isoformat() if order.timestamp else None
    row["revenue"] = order.revenue
    row["profit"] = order.profit
    return row


def _format_timestamp(value: str | None) -> str:
    if not value:
        return "—"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    except ValueError:
        return value


def _build_cache_status() -> dict:
    status = get_cache_status(DB_PATH)
    in_progress = status.get("refresh_in_progress") == "1"
    last_error = status.get("refresh_error") or ""
    finished_at = _format_timestamp(status.get("refresh_finished_at"))
    if in_progress:
        result = "Running"
    elif last_error:
        result = "Failed"
    elif finished_at != "—":
        result = "Success"
    else:
        result = "—"
    return {
        "in_progress": in_progress,
        "started_at": _format_timestamp(status.get("refresh_started_at")),
        "finished_at": finished_at,
        "last_error": last_error,
        "result": result,
        "orders_count": status.get("orders_count") or "0",
        "snapshot_fetched_at": _format_timestamp(status.get("snapshot_fetched_at")),
    }


def _bad_request(message: str):
    return jsonify({"status": "error", "message": message}), 400


@app.errorhandler(OrderApiError)
def order_api_failed(exc: OrderApiError):
    logger.error("Order backend request failed: %s", exc)
    return jsonify({"status": "error", "message": str(exc)}), 502


@app.route("/api/reports/<report>", methods=["GET"])
def report_view(report: str):
    if report == "shipping":
        window = resolve_window(request.args.get("range", "this_month"), request.args.get("start"), request.args.get("end"), clock)
        shipping = build_shipping_report(list(get_store().get().orders), window)
        return jsonify({"window": window.describe(), **asdict(shipping)})
    if report not in REPORT_LABELS:
        return jsonify({"status": "error", "message": f"Unknown report {report}"}), 404
    view = build_pivot(get_store().get(), _parse_params(request.args, report), clock)
    return jsonify(_view_json(view))


@app.route("/api/drilldown", methods=["POST"])
def drill_down():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _bad_request("body must be a JSON object")
    report = body.get("report", "pages")
    click_data = body.get("click") or {}
    filters = body.get("filters") or {}
    if not isinstance(click_data, dict) or not isinstance(filters, dict):
        return _bad_request("click and filters must be objects")
    if report not in REPORT_LABELS or not click_data.get("dimension") or click_data.get("key") is None:
        return _bad_request("click needs a dimension and a key")

    month_index = click_data.get("monthIndex")
    try:
        month_index = int(month_index) if month_index is not None else None
    except (TypeError, ValueError):
        return _bad_request(f"monthIndex must be an integer, got {month_index!r}")
    secondary_key = click_data.get("secondaryKey")
    click = ClickContext(
        dimension=str(click_data["dimension"]),
        key=str(click_data["key"]),
        secondary_key=str(secondary_key) if secondary_key is not None else None,
        month_index=month_index,
    )
    params = _parse_params(body, report, filters)
    detail = build_drill_down(get_store().get(), params, click, clock)
    return jsonify(
        {
            "filter": detail.drill.describe(),
            "orders": [_order_json(order) for order in detail.orders],
            "report": _report_json(detail.report),
        }
    )


@app.route("/export/<report>/<fmt>", methods=["GET"])
def export_report(report: str, fmt: str):
    if report not in REPORT_LABELS or fmt not in ("excel", "pdf"):
        return ("Unsupported export", 400)
    key_label, secondary_label, title = REPORT_LABELS[report]
    view = build_pivot(get_store().get(), _parse_params(request.args, report), clock)
    stamp = clock().strftime("%Y-%m-%d")
    if fmt == "excel":
        buffer = export_pivot_excel(view, key_label=key_label, secondary_label=secondary_label)
        return send_file(
            buffer,
            as_attachment=True,
            download_name=f"sales_by_{report}_{stamp}.xlsx",
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
    buffer = export_pivot_pdf(view, title=title, key_label=key_label, secondary_label=secondary_label)
    return send_file(buffer, as_attachment=True, download_name=f"sales_by_{report}_{stamp}.pdf", mimetype="application/pdf")


def _run_refresh() -> None:
    if get_cache_status(DB_PATH).get("refresh_in_progress") == "1":
        return
    set_cache_status(
        DB_PATH,
        refresh_in_progress="1",
        refresh_started_at=datetime.now(timezone.utc).isoformat(),
        refresh_error="",
    )
    try:
        snapshot = get_store().refresh()
        set_cache_status(
            DB_PATH,
            refresh_finished_at=datetime.now(timezone.utc).isoformat(),
            refresh_in_progress="0",
            orders_count=str(len(snapshot.orders)),
        )
    except Exception as exc:
        logger.exception("Order refresh failed")
        set_cache_status(
            DB_PATH,
            refresh_finished_at=datetime.now(timezone.utc).isoformat(),
            refresh_in_progress="0",
            refresh_error=f"{exc}\n{traceback.format_exc()}",
        )


@app.route("/refresh/orders", methods=["POST"])
def refresh_orders():
    Thread(target=_run_refresh, daemon=True).start()
    return jsonify({"status": "started"}), 202


@app.route("/cache-status", methods=["GET"])
def cache_status():
    return jsonify(_build_cache_status())


def _schedule_cache_refresh():
    minutes = max(int(os.environ.get("REFRESH_INTERVAL_MINUTES", "5")), 1)
    scheduler = BackgroundScheduler()
    scheduler.add_job(_run_refresh, "interval", minutes=minutes)
    scheduler.start()


def _bootstrap():
    init_db(DB_PATH)
    _schedule_cache_refresh()


if __name__ == "__main__":
    _bootstrap()
    app.run(host="0.0.0.0", port=8000, debug=True)
