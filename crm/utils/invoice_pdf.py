# crm/utils/invoice_pdf.py

from __future__ import annotations

import io
from datetime import datetime, date

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib import colors
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

from crm.config import company_context


def _fmt_date(d):
    if not d:
        return "-"
    if isinstance(d, (datetime, date)):
        return d.strftime("%Y-%m-%d")
    return str(d)


def _money(v, currency="Rs"):
    if v is None:
        return "-"
    try:
        return f"{currency} {float(v):,.2f}"
    except (TypeError, ValueError):
        return f"{currency} {v}"


def _safe_enum_value(v):
    return getattr(v, "value", v)


def invoice_filename(invoice) -> str:
    return f"invoice-{invoice.invoice_number or invoice.id}.pdf"


def render_invoice_pdf(invoice, currency: str = "Rs") -> bytes:
    """
    Render an Invoice PDF (NO DB writes).
    Returns PDF bytes.
    """
    company = company_context()

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4

    DARK = colors.HexColor("#111827")
    GRAY = colors.HexColor("#6b7280")
    ACCENT = colors.HexColor("#1e3a8a")
    RULE = colors.HexColor("#e5e7eb")

    # --- Header bar ---
    c.setFillColor(ACCENT)
    c.rect(0, height - 28 * mm, width, 28 * mm, stroke=0, fill=1)

    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 22)
    c.drawString(18 * mm, height - 18 * mm, "INVOICE")

    c.setFont("Helvetica-Bold", 11)
    c.drawRightString(width - 18 * mm, height - 12 * mm, f"Invoice #: {invoice.invoice_number}")
    c.setFont("Helvetica", 9)
    c.drawRightString(width - 18 * mm, height - 18 * mm, f"Date: {_fmt_date(invoice.issue_date)}")
    c.drawRightString(width - 18 * mm, height - 23 * mm, f"Due Date: {_fmt_date(invoice.due_date)}")

    y = height - 38 * mm

    # --- Company (left) / Status (right) ---
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 13)
    c.drawString(18 * mm, y, company["COMPANY_NAME"])
    c.setFont("Helvetica", 9)
    c.setFillColor(GRAY)
    line_y = y - 5 * mm
    for line in company["COMPANY_ADDRESS_LINES"] + [company["COMPANY_EMAIL"]]:
        c.drawString(18 * mm, line_y, line)
        line_y -= 4.5 * mm

    c.setFillColor(DARK)
    c.setFont("Helvetica", 9)
    c.drawRightString(width - 18 * mm, y, f"Status: {_safe_enum_value(invoice.status)}")

    y = line_y - 8 * mm

    # --- Bill To card ---
    client = invoice.client
    c.setFont("Helvetica-Bold", 11)
    c.setFillColor(DARK)
    c.drawString(18 * mm, y, "Bill To:")
    y -= 6 * mm

    c.setStrokeColor(RULE)
    c.setFillColor(colors.white)
    c.roundRect(18 * mm, y - 24 * mm, (width / 2 - 22 * mm), 26 * mm, 6, stroke=1, fill=1)

    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 10)
    c.drawString(22 * mm, y - 4 * mm, getattr(client, "name", "-") or "-")
    c.setFont("Helvetica", 9)
    line_y = y - 10 * mm
    for value in (getattr(client, "company", ""), getattr(client, "email", ""), getattr(client, "phone", "")):
        if value:
            c.drawString(22 * mm, line_y, str(value)[:60])
            line_y -= 5 * mm

    y -= 34 * mm

    # --- Expense table ---
    data = [["Description", "Category", "Amount", "Date"]]
    for expense in invoice.expenses:
        data.append([
            (expense.description or "-")[:70],
            _safe_enum_value(expense.category),
            _money(expense.amount, currency),
            _fmt_date(expense.date),
        ])

    if len(data) == 1:
        data.append(["(No expenses found)", "-", "-", "-"])

    table = Table(
        data,
        colWidths=[86 * mm, 30 * mm, 32 * mm, 26 * mm],
        hAlign="LEFT",
    )
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("TEXTCOLOR", (0, 0), (-1, 0), DARK),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (2, 1), (2, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -1), 0.5, RULE),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("PADDING", (0, 0), (-1, -1), 6),
    ]))

    tw, th = table.wrapOn(c, width - 36 * mm, height)
    table.drawOn(c, 18 * mm, y - th)

    y = y - th - 10 * mm

    # --- Total ---
    c.setStrokeColor(RULE)
    c.line(18 * mm, y + 4 * mm, width - 18 * mm, y + 4 * mm)
    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(width - 18 * mm, y - 4 * mm, f"Total: {_money(invoice.total_amount, currency)}")

    y -= 16 * mm

    # --- Notes ---
    if invoice.notes:
        c.setFont("Helvetica-Bold", 10)
        c.setFillColor(DARK)
        c.drawString(18 * mm, y, "Notes:")
        c.setFont("Helvetica", 9)
        c.setFillColor(GRAY)
        c.drawString(18 * mm, y - 6 * mm, invoice.notes[:120])
        y -= 14 * mm

    c.setFont("Helvetica-Oblique", 9)
    c.setFillColor(GRAY)
    c.drawString(18 * mm, y - 4 * mm, company["INVOICE_FOOTER"])

    # --- Footer ---
    c.setFillColor(RULE)
    c.rect(0, 0, width, 12 * mm, stroke=0, fill=1)

    c.setFillColor(colors.HexColor("#374151"))
    c.setFont("Helvetica", 8)
    c.drawString(18 * mm, 4 * mm, f"{company['COMPANY_NAME']} • {company['COMPANY_EMAIL']}")
    c.setFillColor(GRAY)
    c.drawRightString(width - 18 * mm, 4 * mm, f"Generated: {_fmt_date(date.today())}")

    c.showPage()
    c.save()

    pdf = buf.getvalue()
    buf.close()
    return pdf
