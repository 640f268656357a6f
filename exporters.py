from __future__ import annotations

import base64
import os
from io import BytesIO

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, LongTable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from reports import MONTHS, Bucket
from session import PivotView


BRAND_TEAL = colors.HexColor("#0f8da0")
BRAND_DARK = colors.HexColor("#0b6c7c")
BRAND_MUTED = colors.HexColor("#5e6c74")
LIGHT_ROW = colors.HexColor("#f4f8f9")
TOTAL_ROW = colors.HexColor("#dbe5e8")


def _money0(value: float) -> str:
    return f"${value:,.0f}"


def _money2(value: float) -> str:
    return f"${value:,.2f}"


def _logo_path() -> str:
    return os.path.join(os.path.dirname(__file__), "static", "Logo.png")


def _make_styles():
    styles = getSampleStyleSheet()
    styles["Title"].fontSize = 18
    styles["Title"].leading = 22
    styles["Title"].textColor = BRAND_DARK
    styles.add(
        ParagraphStyle(
            "Subtitle",
            parent=styles["BodyText"],
            fontSize=10,
            leading=12,
            textColor=BRAND_MUTED,
        )
    )
    styles.add(
        ParagraphStyle(
            "Section",
            parent=styles["Heading2"],
            fontSize=12,
            leading=14,
            textColor=BRAND_DARK,
        )
    )
    return styles


def _header_story(title: str, subtitle: str | None, styles) -> list:
    story = []
    logo = _logo_path()
    if os.path.exists(logo):
        story.append(Image(logo, width=0.9 * inch, height=0.9 * inch))
    story.append(Paragraph(title, styles["Title"]))
    if subtitle:
        story.append(Paragraph(subtitle, styles["Subtitle"]))
    story.append(Spacer(1, 0.15 * inch))
    return story


def _fig_to_base64(fig) -> str:
    buffer = BytesIO()
    fig.savefig(buffer, format="png", dpi=160, bbox_inches="tight")
    plt.close(fig)
    buffer.seek(0)
    return base64.b64encode(buffer.read()).decode("utf-8")


def chart_top_buckets(rows: list[Bucket], title: str, limit: int = 5) -> str:
    top = sorted(rows, key=lambda bucket: bucket.revenue, reverse=True)[:limit]
    fig, ax = plt.subplots(figsize=(6, 3))
    ax.barh([bucket.key for bucket in top], [bucket.revenue for bucket in top], color="#5c8ef2")
    ax.set_title(title)
    ax.invert_yaxis()
    ax.spines[["top", "right"]].set_visible(False)
    return _fig_to_base64(fig)


def _pivot_frame(view: PivotView, measure: str, key_label: str, secondary_label: str | None) -> pd.DataFrame:
    records = []
    for bucket in view.rows + [view.report.totals]:
        record = {}
        if secondary_label:
            record[secondary_label] = bucket.secondary_key
        record[key_label] = bucket.key
        record["Total"] = getattr(bucket, measure)
        for month, slot in zip(MONTHS, bucket.monthly):
            record[month] = getattr(slot, measure)
        records.append(record)
    return pd.DataFrame(records)


def export_pivot_excel(view: PivotView, key_label: str = "Page", secondary_label: str | None = "Team") -> BytesIO:
    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for measure, sheet_name in (("revenue", "Revenue"), ("profit", "Profit")):
            frame = _pivot_frame(view, measure, key_label, secondary_label)
            frame.to_excel(writer, sheet_name=sheet_name, index=False)
            if not secondary_label:
                continue
            sheet = writer.sheets[sheet_name]
            # Header is row 1; data starts on row 2.
            for index, span in enumerate(view.spans):
                if span.is_first_of_run and span.run_length > 1:
                    sheet.merge_cells(
                        start_row=index + 2,
                        start_column=1,
                        end_row=index + 1 + span.run_length,
                        end_column=1,
                    )
        summary = pd.DataFrame(
            [
                ("Window", view.window.describe()),
                ("Revenue", view.report.totals.revenue),
                ("Profit", view.report.totals.profit),
                ("Orders", view.report.totals.order_count),
                ("Rows", len(view.rows)),
                ("Undated orders", view.report.undated_orders),
            ],
            columns=["Metric", "Value"],
        )
        summary.to_excel(writer, sheet_name="Summary", index=False)
    output.seek(0)
    return output


def _pivot_table(view: PivotView, measure: str, key_label: str, secondary_label: str | None) -> LongTable:
    header = ([secondary_label] if secondary_label else []) + [key_label, "Total", *MONTHS]
    data = [header]
    for bucket in view.rows + [view.report.totals]:
        row = [bucket.secondary_key] if secondary_label else []
        row += [bucket.key, _money0(getattr(bucket, measure))]
        row += [_money0(getattr(slot, measure)) if getattr(slot, measure) else "-" for slot in bucket.monthly]
        data.append(row)

    table = LongTable(data, repeatRows=1)
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_TEAL),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("TEXTCOLOR", (0, 1), (-1, -1), colors.black),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
        ("FONTSIZE", (0, 0), (-1, -1), 6),
        ("ROWBACKGROUNDS", (0, 1), (-1, -2), [colors.white, LIGHT_ROW]),
        ("BACKGROUND", (0, -1), (-1, -1), TOTAL_ROW),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]
    if secondary_label:
        for index, span in enumerate(view.spans):
            if span.is_first_of_run and span.run_length > 1:
                style.append(("SPAN", (0, index + 1), (0, index + span.run_length)))
                style.append(("BACKGROUND", (0, index + 1), (0, index + span.run_length), colors.white))
    table.setStyle(TableStyle(style))
    return table


def _chart_image(img_data: str) -> Image:
    image = Image(BytesIO(base64.b64decode(img_data)))
    max_width = 6.0 * inch
    max_height = 2.6 * inch
    img_w, img_h = image.imageWidth, image.imageHeight
    if img_w and img_h:
        scale = min(max_width / img_w, max_height / img_h)
        image.drawWidth = img_w * scale
        image.drawHeight = img_h * scale
    return image


def export_pivot_pdf(
    view: PivotView,
    title: str = "Sales Report by Page",
    key_label: str = "Page",
    secondary_label: str | None = "Team",
) -> BytesIO:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(letter), leftMargin=0.4 * inch, rightMargin=0.4 * inch)
    styles = _make_styles()
    totals = view.report.totals

    story = _header_story(title, view.window.describe(), styles)
    kpis = Table(
        [["Revenue", "Profit", "Orders"], [_money2(totals.revenue), _money2(totals.profit), f"{totals.order_count:,}"]],
        hAlign="LEFT",
    )
    kpis.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), BRAND_DARK),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ]
        )
    )
    story.extend([kpis, Spacer(1, 0.2 * inch)])

    if view.rows and totals.revenue:
        chart = chart_top_buckets(view.rows, f"Top {key_label}s by Revenue")
        story.extend([_chart_image(chart), Spacer(1, 0.2 * inch)])

    for measure, heading in (("revenue", "Revenue"), ("profit", "Profit")):
        story.append(Paragraph(f"{heading} by {key_label}", styles["Section"]))
        story.append(_pivot_table(view, measure, key_label, secondary_label))
        story.append(Spacer(1, 0.2 * inch))

    doc.build(story)
    buffer.seek(0)
    return buffer
