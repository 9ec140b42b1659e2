"""Invoice business logic: totals and the single invoice transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    VALID_DISCOUNT_TYPES,
    VALID_PAYMENT_MODES,
    Customer,
    InventoryItem,
    Invoice,
    InvoiceItem,
)
from services.audit import log_action
from services.errors import ShopError, ValidationError
from services.i18n import Msg
from services.numbering import generate_number
from services.shop import get_shop_settings
from services.subscription import consume_usage, require_limit
from utils import money, money_str, safe_decimal, safe_int, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = Decimal("18")
_HUNDRED = Decimal("100")


class InvoiceError(ShopError):
    """The invoice transaction failed and was rolled back."""

    status_code = 500
    default_msg = Msg.INVOICE_FAILED


@dataclass
class InvoiceLine:
    name: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal = DEFAULT_TAX_RATE
    product_id: Optional[int] = None
    hsn_code: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    @property
    def taxable_value(self) -> Decimal:
        """Price net of tax; the line total already contains the tax."""
        return self.line_total / (1 + self.tax_rate / _HUNDRED)

    @property
    def tax(self) -> Decimal:
        return money(self.line_total - self.taxable_value)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "tax_rate": str(self.tax_rate),
            "line_total": money_str(self.line_total),
            "hsn_code": self.hsn_code,
        }


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    discount: Decimal
    after_discount: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    total: Decimal
    amount_paid: Decimal
    due_amount: Decimal
    status: str
    lines: list[InvoiceLine] = field(default_factory=list)


def split_tax(tax_amount) -> tuple[Decimal, Decimal]:
    """Split intra-state GST into CGST and SGST halves that sum exactly."""
    tax_amount = money(tax_amount)
    cgst = money(tax_amount / 2)
    return cgst, tax_amount - cgst


def parse_lines(raw_items: Iterable[dict]) -> list[InvoiceLine]:
    """Validate raw line dicts.  Raises ``ValidationError`` on bad input."""
    lines: list[InvoiceLine] = []
    for index, raw in enumerate(raw_items or [], start=1):
        if not isinstance(raw, dict):
            raise ValidationError(detail=f"item {index} must be an object")
        try:
            quantity = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError(detail=f"item {index}: quantity must be a whole number")
        if quantity < 1:
            raise ValidationError(detail=f"item {index}: quantity must be at least 1")

        price_raw = raw.get("unit_price", raw.get("price"))
        unit_price = safe_decimal(price_raw, default="-1") if price_raw is not None else None
        if unit_price is not None and unit_price < 0:
            raise ValidationError(detail=f"item {index}: invalid price")

        rate_raw = raw.get("tax_rate", raw.get("gst_rate"))
        tax_rate = DEFAULT_TAX_RATE if rate_raw in (None, "") else safe_decimal(rate_raw, "-1")
        if tax_rate < 0 or tax_rate > _HUNDRED:
            raise ValidationError(detail=f"item {index}: tax rate must be between 0 and 100")

        product_id = raw.get("product_id")
        if product_id in ("", None):
            product_id = None
        else:
            try:
                product_id = int(product_id)
            except (TypeError, ValueError):
                raise ValidationError(detail=f"item {index}: invalid product_id")
        name = (raw.get("name") or "").strip()
        if not name and product_id is None:
            raise ValidationError(detail=f"item {index}: name is required")
        if unit_price is None and product_id is None:
            raise ValidationError(detail=f"item {index}: unit_price is required")

        lines.append(
            InvoiceLine(
                name=name,
                quantity=quantity,
                # Filled from the product when omitted
                unit_price=unit_price if unit_price is not None else Decimal("-1"),
                tax_rate=tax_rate,
                product_id=product_id,
                hsn_code=raw.get("hsn_code") or None,
            )
        )
    if not lines:
        raise ValidationError(Msg.ITEMS_REQUIRED)
    return lines


def compute_totals(
    lines: list[InvoiceLine],
    discount_type: str = "percent",
    discount_value=0,
    payment_mode: str = "cash",
    amount_paid=None,
) -> InvoiceTotals:
    """Compute invoice totals with tax included in the line prices.

    The discount is capped at the subtotal so the total never goes negative.
    In ``due`` mode nothing is paid and the full total is due.
    """
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise ValidationError(detail=f"discount_type must be one of {sorted(VALID_DISCOUNT_TYPES)}")
    if payment_mode not in VALID_PAYMENT_MODES:
        raise ValidationError(detail=f"payment_mode must be one of {sorted(VALID_PAYMENT_MODES)}")
    value = safe_decimal(discount_value)
    if value < 0:
        raise ValidationError(detail="discount cannot be negative")

    subtotal = money(sum((line.line_total for line in lines), Decimal("0")))
    if discount_type == "percent":
        discount = money(subtotal * value / _HUNDRED)
    else:
        discount = money(value)
    if discount > subtotal:
        logger.warning("Discount %s exceeds subtotal %s; capping", discount, subtotal)
        discount = subtotal
    after_discount = subtotal - discount

    tax_amount = money(sum((line.tax for line in lines), Decimal("0")))
    cgst, sgst = split_tax(tax_amount)
    total = after_discount

    if payment_mode == "due":
        paid = Decimal("0.00")
        due = total
    else:
        paid = total if amount_paid in (None, "") else money(safe_decimal(amount_paid, "-1"))
        if paid < 0:
            raise ValidationError(detail="amount_paid cannot be negative")
        due = max(Decimal("0.00"), total - paid)

    return InvoiceTotals(
        subtotal=subtotal,
        discount=discount,
        after_discount=after_discount,
        tax_amount=tax_amount,
        cgst=cgst,
        sgst=sgst,
        total=total,
        amount_paid=paid,
        due_amount=due,
        status="partial" if due > 0 else "completed",
        lines=lines,
    )


def _resolve_products(user_id: int, lines: list[InvoiceLine]) -> dict[int, InventoryItem]:
    products: dict[int, InventoryItem] = {}
    for line in lines:
        if line.product_id is None:
            continue
        product = db.session.get(InventoryItem, line.product_id)
        if product is None or product.user_id != user_id:
            raise ValidationError(Msg.PRODUCT_NOT_FOUND, name=line.name or line.product_id)
        products[product.id] = product
        if not line.name:
            line.name = product.name
        if line.unit_price < 0:
            line.unit_price = money(product.price or 0)
        if not line.hsn_code:
            line.hsn_code = product.hsn_code
    return products


def find_customer_by_name(user_id: int, name: str) -> Optional[Customer]:
    return (
        Customer.query.filter_by(user_id=user_id)
        .filter(func.lower(Customer.name) == name.strip().lower())
        .order_by(Customer.id)
        .first()
    )


def _apply_customer(
    user_id: int,
    totals: InvoiceTotals,
    customer_id: Optional[int],
    customer_name: str,
    customer_phone: str,
    match_by_name: bool,
) -> Optional[Customer]:
    customer = None
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None or customer.user_id != user_id:
            raise ValidationError(Msg.CUSTOMER_REQUIRED)
    elif customer_name and match_by_name:
        customer = find_customer_by_name(user_id, customer_name)

    if customer is not None:
        customer.total_purchases = Customer.total_purchases + totals.total
        customer.total_dues = Customer.total_dues + totals.due_amount
        return customer

    if not customer_name:
        return None
    customer = Customer(
        user_id=user_id,
        name=customer_name,
        phone=customer_phone or None,
        total_purchases=totals.total,
        total_dues=totals.due_amount,
    )
    db.session.add(customer)
    return customer


def create_invoice(
    user_id: int,
    items: Iterable[dict],
    *,
    customer_id: Optional[int] = None,
    customer_name: str = "",
    customer_phone: str = "",
    discount_type: str = "percent",
    discount_value=0,
    payment_mode: str = "cash",
    amount_paid=None,
    source: str = "ui",
    match_customer_by_name: bool = False,
) -> Invoice:
    """Create an invoice and apply every side effect in one transaction.

    Validates and checks the demo bill allowance before any write.  Then
    upserts the customer, inserts the invoice with its normalized lines,
    decrements stock (never below zero) and consumes one bill from the
    demo allowance.  On any failure the whole transaction is rolled back.

    Raises:
        ValidationError: bad input; nothing was written.
        DemoLimitReached: demo bill allowance used up; nothing was written.
        InvoiceError: a database failure; everything was rolled back.
    """
    customer_name = (customer_name or "").strip()
    customer_phone = (customer_phone or "").strip()
    customer_id = None if customer_id in (None, "") else safe_int(customer_id, default=-1)
    lines = parse_lines(items)
    products = _resolve_products(user_id, lines)
    totals = compute_totals(lines, discount_type, discount_value, payment_mode, amount_paid)
    require_limit(user_id, "bills")

    prefix = get_shop_settings(user_id).invoice_prefix
    try:
        customer = _apply_customer(
            user_id, totals, customer_id, customer_name, customer_phone,
            match_customer_by_name,
        )
        number = generate_number(
            user_id,
            "invoice",
            prefix,
            seed=lambda: Invoice.query.filter_by(user_id=user_id).count(),
        )
        invoice = Invoice(
            user_id=user_id,
            invoice_number=number,
            customer=customer,
            customer_name=customer.name if customer else (customer_name or None),
            customer_phone=(customer.phone if customer else None) or customer_phone or None,
            items=[line.to_dict() for line in lines],
            subtotal=totals.subtotal,
            discount=totals.discount,
            discount_type=discount_type,
            discount_value=money(safe_decimal(discount_value)),
            tax_amount=totals.tax_amount,
            total=totals.total,
            payment_mode=payment_mode,
            amount_paid=totals.amount_paid,
            due_amount=totals.due_amount,
            status=totals.status,
            source=source,
        )
        db.session.add(invoice)

        now = utc_now()
        sold: dict[int, int] = {}
        for line in lines:
            product = products.get(line.product_id)
            invoice.lines.append(
                InvoiceItem(
                    user_id=user_id,
                    product_id=line.product_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=money(line.unit_price),
                    tax_rate=line.tax_rate,
                    line_total=line.line_total,
                    cost_price=money(product.cost_price or 0) if product else Decimal("0"),
                )
            )
            if product is not None:
                sold[product.id] = sold.get(product.id, 0) + line.quantity

        # One floored decrement per product, however many lines name it
        for product_id, quantity in sold.items():
            product = products[product_id]
            product.quantity = case(
                (InventoryItem.quantity > quantity, InventoryItem.quantity - quantity),
                else_=0,
            )
            product.sales_count = InventoryItem.sales_count + quantity
            product.last_sold_at = now

        consume_usage(user_id, "bills")
        db.session.flush()
        log_action(
            "create", "invoice", invoice.id,
            f"{number} total={totals.total} due={totals.due_amount} source={source}",
            user_id=user_id,
        )
        db.session.commit()
    except ShopError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Invoice transaction failed for user %s", user_id)
        raise InvoiceError(detail=str(exc.__class__.__name__)) from exc

    logger.info("Created invoice %s for user %s (%s)", number, user_id, source)
    return invoice


def invoice_to_dict(invoice: Invoice) -> dict:
    cgst, sgst = split_tax(invoice.tax_amount or 0)
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "customer_id": invoice.customer_id,
        "customer_name": invoice.customer_name,
        "customer_phone": invoice.customer_phone,
        "items": invoice.items or [],
        "subtotal": money_str(invoice.subtotal),
        "discount": money_str(invoice.discount),
        "discount_type": invoice.discount_type,
        "discount_value": money_str(invoice.discount_value),
        "tax_amount": money_str(invoice.tax_amount),
        "cgst": str(cgst),
        "sgst": str(sgst),
        "total": money_str(invoice.total),
        "payment_mode": invoice.payment_mode,
        "amount_paid": money_str(invoice.amount_paid),
        "due_amount": money_str(invoice.due_amount),
        "status": invoice.status,
        "source": invoice.source,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
