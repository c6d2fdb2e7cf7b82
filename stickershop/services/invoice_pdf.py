from __future__ import annotations

import os
from typing import Any, Dict, List

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from stickershop.config import settings
from stickershop.constants import OPTION_TYPES


def _cents(v: int) -> str:
    return f"{int(v) / 100:.2f}"


def _options_line(options: Dict[str, Any]) -> str:
    shown = [f"{k}: {options[k]}" for k in OPTION_TYPES if options.get(k)]
    return ", ".join(shown)


def generate_invoice_pdf(order: Dict[str, Any], items: List[Dict[str, Any]]) -> str:
    os.makedirs(settings.export_dir, exist_ok=True)

    filename = f"invoice_{order['id']}.pdf"
    path = os.path.join(settings.export_dir, filename)

    c = canvas.Canvas(path, pagesize=A4)
    w, h = A4

    y = h - 50
    c.setFont("Helvetica-Bold", 14)
    c.drawString(40, y, f"INVOICE - ORDER #{order['id']}")
    y -= 20

    c.setFont("Helvetica", 11)
    c.drawString(40, y, f"Date: {order['created_at']}")
    y -= 16
    c.drawString(40, y, f"Status: {order['status']}")
    y -= 16
    c.drawString(40, y, f"Currency: {settings.currency}")
    y -= 16
    for line in str(order["shipping_address"]).splitlines():
        c.drawString(40, y, line[:80])
        y -= 14
    y -= 10

    # header
    c.setFont("Helvetica-Bold", 10)
    c.drawString(40, y, "Item")
    c.drawString(310, y, "Qty")
    c.drawString(360, y, "Unit")
    c.drawString(440, y, "Total")
    y -= 10
    c.line(40, y, 550, y)
    y -= 16

    c.setFont("Helvetica", 10)
    for it in items:
        title = (it.get("product") or {}).get("title") or f"Product #{it['product_id']}"
        c.drawString(40, y, title[:45])
        c.drawRightString(340, y, str(it["quantity"]))
        c.drawRightString(420, y, _cents(it["price"]))
        c.drawRightString(550, y, _cents(it["line_total"]))
        y -= 12
        opts = _options_line(it.get("options") or {})
        if opts:
            c.setFont("Helvetica", 8)
            c.drawString(50, y, opts[:90])
            c.setFont("Helvetica", 10)
            y -= 12
        y -= 2
        if y < 120:
            c.showPage()
            y = h - 50
            c.setFont("Helvetica", 10)

    y -= 10
    c.line(40, y, 550, y)
    y -= 16
    c.drawRightString(550, y, f"Subtotal: {_cents(order['subtotal'])}")
    y -= 14
    c.drawRightString(550, y, f"Shipping: {_cents(order['shipping'])}")
    y -= 14
    c.drawRightString(550, y, f"Tax: {_cents(order['tax'])}")
    y -= 18
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(550, y, f"TOTAL: {_cents(order['total'])} {settings.currency}")

    c.save()
    return path
