from openpyxl import load_workbook
import pandas as pd

from exporters import chart_top_buckets, export_pivot_excel, export_pivot_pdf
from session import ReportParams, build_pivot


def test_excel_export_has_pivot_sheets_with_merged_teams(snapshot, clock):
    view = build_pivot(snapshot, ReportParams(report="pages", preset="this_year"), clock)
    buffer = export_pivot_excel(view)

    revenue = pd.read_excel(buffer, sheet_name="Revenue")
    assert list(revenue.columns[:4]) == ["Team", "Page", "Total", "Jan"]
    assert revenue["Page"].tolist() == ["Page-A", "Page-C", "Page-B", "Page-D", "Total"]
    assert revenue["Total"].iloc[-1] == 460.0

    buffer.seek(0)
    workbook = load_workbook(buffer)
    assert [str(cells) for cells in workbook["Revenue"].merged_cells.ranges] == ["A2:A3"]
    assert set(workbook.sheetnames) == {"Revenue", "Profit", "Summary"}


def test_excel_export_without_secondary_column(snapshot, clock):
    view = build_pivot(snapshot, ReportParams(report="teams", preset="this_year"), clock)
    buffer = export_pivot_excel(view, key_label="Team", secondary_label=None)
    profit = pd.read_excel(buffer, sheet_name="Profit")
    assert profit.columns[0] == "Team"


def test_pdf_export(snapshot, clock):
    view = build_pivot(snapshot, ReportParams(report="pages", preset="this_year"), clock)
    assert export_pivot_pdf(view).getvalue().startswith(b"%PDF")


def test_chart_is_base64_png(snapshot, clock):
    view = build_pivot(snapshot, ReportParams(report="pages", preset="this_year"), clock)
    assert chart_top_buckets(view.rows, "Top Pages").startswith("iVBOR")
