# Overview: Sale settlement; turns a cart plus payments into a committed Sale and its SALE ledger entries.

"""
Checkout is one transaction:

1. Validate the cart shape (quantities, prices, discounts, payments).
2. Lock every touched variant row (ascending id) and re-read on-hand.
3. Reject the whole cart if any variant is short.
4. Compute totals; reject a negative total or an underpaid sale.
5. Insert Sale, SaleItems, one SALE ledger entry per line, Payments.

Nothing is written before step 5, and step 5 commits as a unit. The
client-side cart is advisory; this is the only stock check that counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app

from ..errors import (
    EmptyCartError,
    InsufficientPaymentError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Payment, Sale, SaleItem, StockLedgerType
from ..validation import (
    coerce_int,
    optional_non_negative_int,
    require_non_negative_int,
    require_positive_int,
    require_text,
)
from ..time_utils import to_utc_z
from .concurrency import begin_write_transaction, run_atomic
from .ledger_service import append_entry, compute_on_hand, lock_variants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    variant_id: int
    quantity: int
    unit_price_cents: int | None
    discount_cents: int


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount_cents: int


def _get(item, *keys):
    for key in keys:
        if key in item:
            return item[key]
    return None


def _parse_lines(lines) -> list[CartLine]:
    if not lines:
        raise EmptyCartError("Cannot complete a sale with no items")
    if not isinstance(lines, (list, tuple)):
        raise ValidationError("items must be a list")

    parsed = []
    for index, item in enumerate(lines):
        if isinstance(item, CartLine):
            parsed.append(item)
            continue
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        variant_id = _get(item, "variant_id", "variantId")
        if variant_id is None:
            raise ValidationError("variant_id is required", details={"index": index})
        parsed.append(
            CartLine(
                variant_id=coerce_int(variant_id, "variant_id"),
                quantity=require_positive_int(_get(item, "quantity"), "quantity"),
                unit_price_cents=optional_non_negative_int(
                    _get(item, "unit_price_cents", "unitPriceCents"), "unit_price_cents"
                ),
                discount_cents=require_non_negative_int(
                    _get(item, "discount_cents", "discountCents"), "discount_cents", default=0
                ),
            )
        )
    return parsed


def _parse_payments(payments) -> list[PaymentInput]:
    if payments is None:
        payments = []
    if not isinstance(payments, (list, tuple)):
        raise ValidationError("payments must be a list")

    parsed = []
    for index, payment in enumerate(payments):
        if isinstance(payment, PaymentInput):
            parsed.append(payment)
            continue
        if not isinstance(payment, dict):
            raise ValidationError("Each payment must be an object", details={"index": index})
        parsed.append(
            PaymentInput(
                method=require_text(_get(payment, "method"), "method", max_length=64).lower(),
                amount_cents=require_non_negative_int(
                    _get(payment, "amount_cents", "amountCents"), "amount_cents"
                ),
            )
        )
    return parsed


def complete_sale(
    *,
    lines,
    payments,
    sale_discount_cents=0,
    tax_cents=0,
    actor_id: int | None = None,
) -> Sale:
    """
    Settle a cart atomically and return the persisted Sale.

    Raises EmptyCartError, ValidationError, NotFoundError,
    InsufficientStockError, InsufficientPaymentError or
    ConcurrencyConflictError; nothing is written when any of them is raised.
    """
    cart = _parse_lines(lines)
    tenders = _parse_payments(payments)
    sale_discount = require_non_negative_int(sale_discount_cents, "sale_discount_cents", default=0)
    tax = require_non_negative_int(tax_cents, "tax_cents", default=0)

    def _op():
        begin_write_transaction()
        variants = lock_variants(line.variant_id for line in cart)

        # Aggregate repeated variants so the check covers the whole cart
        requested: dict[int, int] = {}
        for line in cart:
            requested[line.variant_id] = requested.get(line.variant_id, 0) + line.quantity

        shortfalls = []
        for variant_id in sorted(requested):
            on_hand = compute_on_hand(variant_id)
            if requested[variant_id] > on_hand:
                shortfalls.append({
                    "variant_id": variant_id,
                    "sku": variants[variant_id].sku,
                    "requested_quantity": requested[variant_id],
                    "on_hand": on_hand,
                })
        if shortfalls:
            raise InsufficientStockError(
                "Insufficient stock to complete sale",
                details={"items": shortfalls},
            )

        priced = []
        subtotal = 0
        line_discounts = 0
        for line in cart:
            unit_price = line.unit_price_cents
            if unit_price is None:
                unit_price = variants[line.variant_id].price_cents
            if unit_price is None:
                raise ValidationError(
                    "Variant does not have a price set",
                    details={"variant_id": line.variant_id},
                )
            line_subtotal = unit_price * line.quantity
            effective_discount = min(line.discount_cents, line_subtotal)
            subtotal += line_subtotal
            line_discounts += effective_discount
            priced.append((line, unit_price, effective_discount))

        discount_total = line_discounts + sale_discount
        total = subtotal - discount_total + tax
        if total < 0:
            raise ValidationError(
                "Sale total cannot be negative",
                details={"subtotal_cents": subtotal, "discount_total_cents": discount_total, "tax_cents": tax},
            )

        total_paid = sum(payment.amount_cents for payment in tenders)
        if total_paid < total:
            raise InsufficientPaymentError(
                "Payments do not cover the sale total",
                details={"total_cents": total, "total_paid_cents": total_paid, "short_cents": total - total_paid},
            )

        sale = Sale(
            recorded_by_user_id=actor_id,
            subtotal_cents=subtotal,
            sale_discount_cents=sale_discount,
            discount_total_cents=discount_total,
            tax_total_cents=tax,
            total_cents=total,
            total_paid_cents=total_paid,
            change_due_cents=total_paid - total,
        )
        db.session.add(sale)
        db.session.flush()

        for position, (line, unit_price, effective_discount) in enumerate(priced, start=1):
            entry = append_entry(
                variant_id=line.variant_id,
                quantity_change=-line.quantity,
                type=StockLedgerType.SALE,
                reference=f"sale:{sale.id}",
                actor_id=actor_id,
            )
            db.session.add(
                SaleItem(
                    sale_id=sale.id,
                    variant_id=line.variant_id,
                    position=position,
                    quantity=line.quantity,
                    unit_price_cents=unit_price,
                    discount_cents=effective_discount,
                    ledger_entry_id=entry.id,
                )
            )

        for position, tender in enumerate(tenders, start=1):
            db.session.add(
                Payment(
                    sale_id=sale.id,
                    position=position,
                    method=tender.method,
                    amount_cents=tender.amount_cents,
                )
            )

        db.session.flush()
        return sale

    sale = run_atomic(_op, operation="complete_sale")
    logger.info(
        "Sale completed: id=%s lines=%s total_cents=%s change_due_cents=%s",
        sale.id, len(cart), sale.total_cents, sale.change_due_cents,
    )
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale


def build_receipt(sale_id: int) -> dict:
    """Printable receipt payload: store block, lines, payments and totals."""
    sale = get_sale(sale_id)
    config = current_app.config

    items = []
    for item in sale.items:
        variant = item.variant
        product = variant.product if variant else None
        items.append({
            "variant_id": item.variant_id,
            "sku": variant.sku if variant else "UNKNOWN",
            "product_name": product.name if product else "Unknown Product",
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "discount_cents": item.discount_cents,
            "line_total_cents": item.line_total_cents,
        })

    return {
        "sale": {
            "id": sale.id,
            "created_at": to_utc_z(sale.created_at),
            "recorded_by": sale.recorded_by.to_summary() if sale.recorded_by else None,
        },
        "store": {
            "name": config.get("STORE_NAME"),
            "address": config.get("STORE_ADDRESS"),
            "phone": config.get("STORE_PHONE"),
        },
        "items": items,
        "payments": [payment.to_dict() for payment in sale.payments],
        "totals": {
            "subtotal_cents": sale.subtotal_cents,
            "sale_discount_cents": sale.sale_discount_cents,
            "discount_total_cents": sale.discount_total_cents,
            "tax_total_cents": sale.tax_total_cents,
            "total_cents": sale.total_cents,
            "payment_total_cents": sale.total_paid_cents,
            "change_due_cents": sale.change_due_cents,
        },
    }
