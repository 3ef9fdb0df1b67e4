# FILE: clinic_billing/services/pdf_receipt.py
from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any, Iterable, Mapping, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

_TITLES = {
    "checkup": "Checkup Invoice",
    "procedure": "Procedure Invoice",
    "lab": "Lab Invoice",
    "prescription": "Prescription Invoice",
    "generic": "Invoice",
}


def _fmt_date(raw: Any) -> str:
    if not raw:
        return ""
    if isinstance(raw, datetime):
        return raw.strftime("%d-%m-%Y")
    try:
        return datetime.fromisoformat(str(raw)).strftime("%d-%m-%Y")
    except ValueError:
        return str(raw)


def _new_canvas() -> tuple[canvas.Canvas, BytesIO]:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    return c, buf


def _draw_header(c: canvas.Canvas, clinic_name: str, main_title: str,
                 sub_title: str = "") -> float:
    w, h = A4
    x = 18 * mm
    y = h - 20 * mm

    c.setFont("Helvetica-Bold", 14)
    c.drawString(x, y, clinic_name or "")

    y -= 7 * mm
    c.setFont("Helvetica-Bold", 12)
    c.drawString(x, y, main_title)

    if sub_title:
        y -= 5 * mm
        c.setFont("Helvetica", 10)
        c.drawString(x, y, sub_title)

    y -= 4 * mm
    c.setStrokeColor(colors.grey)
    c.setLineWidth(0.6)
    c.line(x, y, w - x, y)
    y -= 6 * mm
    return y


def _table(
    c: canvas.Canvas,
    y: float,
    clinic_name: str,
    headers: Sequence[str],
    rows: Iterable[Sequence[str]],
    col_widths_mm: Sequence[float],
) -> float:
    x0 = 18 * mm
    col_points = [w * mm for w in col_widths_mm]
    total_width = sum(col_points)

    def _head(y: float) -> float:
        c.setFont("Helvetica-Bold", 9)
        for i, htxt in enumerate(headers):
            c.drawString(x0 + sum(col_points[:i]), y, htxt)
        y -= 4 * mm
        c.setLineWidth(0.4)
        c.line(x0, y, x0 + total_width, y)
        return y - 5 * mm

    y = _head(y)
    c.setFont("Helvetica", 9)
    for row in rows:
        if y < 40 * mm:
            c.showPage()
            y = _draw_header(c, clinic_name, "Continued")
            y = _head(y - 4 * mm)
            c.setFont("Helvetica", 9)
        for i, cell in enumerate(row):
            c.drawString(x0 + sum(col_points[:i]), y, (cell or "")[:60])
        y -= 4 * mm
    return y


def build_receipt_pdf(receipt: Mapping[str, Any]) -> bytes:
    """Render a projected receipt (see billing_receipt.project_receipt)."""
    clinic = receipt.get("clinic") or {}
    inv = receipt.get("invoice") or {}
    patient = receipt.get("patient") or {}
    fin = receipt.get("financial") or {}

    clinic_name = clinic.get("name") or ""
    c, buf = _new_canvas()
    y = _draw_header(
        c,
        clinic_name,
        _TITLES.get(inv.get("invoiceType"), "Invoice"),
        f"Invoice # {inv.get('invoiceNumber') or ''}",
    )

    x = 18 * mm
    c.setFont("Helvetica", 9)
    c.drawString(x, y, f"Patient : {patient.get('name') or ''}")
    y -= 4 * mm
    if patient.get("phone"):
        c.drawString(x, y, f"Phone   : {patient['phone']}")
        y -= 4 * mm
    c.drawString(x, y, f"Date    : {_fmt_date(inv.get('createdAt'))}")
    y -= 4 * mm
    c.drawString(x, y, f"Due     : {_fmt_date(inv.get('dueDate'))}")
    y -= 4 * mm
    status = str(inv.get("status") or "").upper()
    c.drawString(x, y, f"Status  : {status}")
    y -= 8 * mm

    headers = ["S.No", "Description", "Qty", "Unit Price", "Amount"]
    col_widths = [12, 95, 15, 25, 25]
    rows = [[
        str(it.get("sno", "")),
        str(it.get("description") or ""),
        str(it.get("quantity", "")),
        str(it.get("unitPrice", "")),
        str(it.get("lineTotal", "")),
    ] for it in (receipt.get("items") or [])]
    y = _table(c, y, clinic_name, headers, rows, col_widths)

    y -= 6 * mm
    right = A4[0] - 18 * mm
    for label, key in (
        ("Subtotal", "subtotal"),
        ("Tax", "tax"),
        ("Discount", "discount"),
        ("Total", "total"),
        ("Paid", "paidAmount"),
        ("Balance", "balance"),
    ):
        c.setFont("Helvetica-Bold" if key in ("total", "balance") else
                  "Helvetica", 9)
        c.drawRightString(right - 30 * mm, y, f"{label}:")
        c.drawRightString(right, y, str(fin.get(key, "")))
        y -= 5 * mm

    if inv.get("notes"):
        y -= 4 * mm
        c.setFont("Helvetica-Oblique", 9)
        c.drawString(x, y, f"Notes: {str(inv['notes'])[:150]}")

    c.showPage()
    c.save()
    buf.seek(0)
    return buf.getvalue()
