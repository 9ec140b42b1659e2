"""Printable invoice documents.

HTML is rendered with a sandboxed Jinja2 environment and converted to PDF
with *xhtml2pdf*.  Three physical layouts share one template and differ in
page size and CSS:

  a4       full page
  receipt  80 mm thermal roll
  half     A5, half of an A4 sheet
"""

from __future__ import annotations

import io
import logging

from jinja2.sandbox import SandboxedEnvironment
from xhtml2pdf import pisa

from services.errors import ShopError
from services.i18n import Msg
from services.invoice import split_tax
from utils import money_str

logger = logging.getLogger(__name__)

LAYOUTS = ("a4", "receipt", "half")

_BASE_CSS = """
body { font-family: Helvetica, Arial, sans-serif; color: #222222; }
h1 { margin: 0 0 4px 0; }
table { width: 100%; border-collapse: collapse; }
th { text-align: left; border-bottom: 1px solid #444444; padding: 3px; }
td { padding: 3px; vertical-align: top; }
.num { text-align: right; }
.muted { color: #666666; }
.totals td { padding: 2px 3px; }
.grand td { font-weight: bold; border-top: 1px solid #444444; }
.footer { margin-top: 10px; text-align: center; }
"""

_LAYOUT_CSS = {
    "a4": """
@page { size: a4 portrait; margin: 15mm; }
body { font-size: 10pt; }
h1 { font-size: 16pt; }
""",
    "receipt": """
@page { size: 80mm 297mm; margin: 4mm; }
body { font-size: 7pt; }
h1 { font-size: 10pt; text-align: center; }
.header { text-align: center; }
""",
    "half": """
@page { size: a5 portrait; margin: 10mm; }
body { font-size: 8pt; }
h1 { font-size: 12pt; }
""",
}

_INVOICE_HTML = """\
<div class="header">
  <h1>{{ shop.shop_name or 'Invoice' }}</h1>
  {% if shop.address %}<div class="muted">{{ shop.address }}{% if shop.state %}, {{ shop.state }}{% endif %}</div>{% endif %}
  {% if shop.phone %}<div class="muted">Ph: {{ shop.phone }}</div>{% endif %}
  {% if show_gst and shop.gstin %}<div>GSTIN: {{ shop.gstin }}</div>{% endif %}
</div>
<p>
  <strong>{{ 'Tax Invoice' if show_gst else 'Invoice' }} {{ invoice.invoice_number }}</strong><br>
  Date: {{ invoice.created_at.strftime('%d-%m-%Y %H:%M') if invoice.created_at else '' }}<br>
  {% if invoice.customer_name %}Customer: {{ invoice.customer_name }}{% if invoice.customer_phone %} ({{ invoice.customer_phone }}){% endif %}<br>{% endif %}
  Payment: {{ invoice.payment_mode|upper }}
</p>
<table>
  <thead>
    <tr>
      <th>Item</th>
      {% if show_gst and layout != 'receipt' %}<th class="col-hsn">HSN</th>{% endif %}
      <th class="num">Qty</th>
      <th class="num">Rate</th>
      {% if layout != 'receipt' %}<th class="num col-rate">GST</th>{% endif %}
      <th class="num">Amount</th>
    </tr>
  </thead>
  <tbody>
    {% for item in items %}
    <tr>
      <td>{{ item.name }}</td>
      {% if show_gst and layout != 'receipt' %}<td class="col-hsn">{{ item.hsn_code or '' }}</td>{% endif %}
      <td class="num">{{ item.quantity }}</td>
      <td class="num">{{ item.unit_price }}</td>
      {% if layout != 'receipt' %}<td class="num col-rate">{{ item.tax_rate }}%</td>{% endif %}
      <td class="num">{{ item.line_total }}</td>
    </tr>
    {% endfor %}
  </tbody>
</table>
<table class="totals">
  <tr><td>Subtotal</td><td class="num">{{ currency }} {{ totals.subtotal }}</td></tr>
  {% if totals.discount != '0.00' %}<tr><td>Discount</td><td class="num">- {{ currency }} {{ totals.discount }}</td></tr>{% endif %}
  <tr><td class="muted">CGST (incl.)</td><td class="num muted">{{ currency }} {{ totals.cgst }}</td></tr>
  <tr><td class="muted">SGST (incl.)</td><td class="num muted">{{ currency }} {{ totals.sgst }}</td></tr>
  <tr class="grand"><td>Total</td><td class="num">{{ currency }} {{ totals.total }}</td></tr>
  <tr><td>Paid</td><td class="num">{{ currency }} {{ totals.amount_paid }}</td></tr>
  {% if totals.due_amount != '0.00' %}<tr><td><strong>Due</strong></td><td class="num"><strong>{{ currency }} {{ totals.due_amount }}</strong></td></tr>{% endif %}
</table>
<div class="footer muted">Thank you for shopping with us!</div>
"""


class PdfRenderError(ShopError):
    status_code = 500
    default_msg = Msg.SERVER_ERROR


def _render_html(html_template: str, css: str, context: dict) -> str:
    """Render the Jinja2 HTML template wrapped in a full HTML document."""
    env = SandboxedEnvironment(autoescape=True)
    body = env.from_string(html_template).render(**context)
    return (
        "<!DOCTYPE html>\n<html><head><meta charset=\"utf-8\">"
        f"<style>{css}</style></head><body>{body}</body></html>"
    )


def render_invoice_html(invoice, shop, layout: str = "a4", show_gst: bool = False) -> str:
    """Return the full HTML document for *invoice* in *layout*."""
    if layout not in LAYOUTS:
        raise ValueError(f"Unknown layout: {layout}")
    cgst, sgst = split_tax(invoice.tax_amount or 0)
    totals = {
        "subtotal": money_str(invoice.subtotal),
        "discount": money_str(invoice.discount),
        "cgst": str(cgst),
        "sgst": str(sgst),
        "total": money_str(invoice.total),
        "amount_paid": money_str(invoice.amount_paid),
        "due_amount": money_str(invoice.due_amount),
    }
    context = {
        "invoice": invoice,
        "items": invoice.items or [],
        "shop": shop,
        "totals": totals,
        "layout": layout,
        "show_gst": show_gst,
        # The built-in PDF fonts carry no rupee glyph
        "currency": "Rs.",
    }
    return _render_html(_INVOICE_HTML, _BASE_CSS + _LAYOUT_CSS[layout], context)


def _html_to_pdf(full_html: str) -> bytes:
    buffer = io.BytesIO()
    status = pisa.CreatePDF(full_html, dest=buffer, encoding="utf-8")
    if status.err:
        logger.error("xhtml2pdf reported %s error(s)", status.err)
        raise PdfRenderError(detail="PDF conversion failed")
    return buffer.getvalue()


def generate_invoice_pdf(invoice, shop, layout: str = "a4", show_gst: bool = False) -> bytes:
    """Render *invoice* to PDF bytes."""
    return _html_to_pdf(render_invoice_html(invoice, shop, layout, show_gst))
