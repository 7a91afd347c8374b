# Overview: Suppliers, purchase orders and goods receiving against the stock ledger.

"""
Purchase Order Invariants

- 0 <= item.quantity_received <= item.quantity_ordered (also a DB check).
- status is derived from item progress:
    DRAFT              nothing received
    PARTIALLY_RECEIVED some but not all received
    RECEIVED           every item fully received (terminal, received_at set)
  CANCELLED is terminal and only reached through cancel_purchase_order.
- Each GoodsReceiptItem produces exactly one RECEIPT ledger entry and one
  increment of its PurchaseOrderItem, in the same transaction.
"""

from __future__ import annotations

import logging

from ..errors import (
    ConflictError,
    EmptyReceiptError,
    NotFoundError,
    OrderClosedError,
    OverReceiptError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    GoodsReceipt,
    GoodsReceiptItem,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    StockLedgerType,
    Supplier,
    Variant,
)
from ..time_utils import utcnow
from ..validation import (
    ModelValidationPolicy,
    coerce_enum,
    coerce_int,
    enforce_maximum,
    optional_non_negative_int,
    optional_text,
    require_positive_int,
    validate_payload,
)
from .concurrency import begin_write_transaction, lock_for_update, run_atomic
from .ledger_service import append_entry, lock_variants

logger = logging.getLogger(__name__)

RECEIPT_REASON = "purchase"

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "contact_name", "email", "phone", "address"}),
    required_on_create=frozenset({"name"}),
)


# ---------------------------------------------------------------------------
# Suppliers
# ---------------------------------------------------------------------------

def _ensure_unique_supplier_name(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Supplier.id).filter(db.func.lower(Supplier.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Supplier.id != exclude_id)
    if query.first():
        raise ConflictError("Supplier name already exists", details={"name": name})


def create_supplier(**fields) -> Supplier:
    patch = validate_payload(model=Supplier, payload=fields, policy=SUPPLIER_POLICY, partial=False)

    def _op():
        _ensure_unique_supplier_name(patch["name"])
        supplier = Supplier(**patch)
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_atomic(_op, operation="create_supplier")


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).order_by(Supplier.name.asc()).all()


def get_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError("Supplier not found", details={"supplier_id": supplier_id})
    return supplier


def update_supplier(supplier_id: int, **fields) -> Supplier:
    patch = validate_payload(model=Supplier, payload=fields, policy=SUPPLIER_POLICY, partial=True)

    def _op():
        supplier = get_supplier(supplier_id)
        if "name" in patch:
            _ensure_unique_supplier_name(patch["name"], exclude_id=supplier.id)
        for key, value in patch.items():
            setattr(supplier, key, value)
        db.session.flush()
        return supplier

    return run_atomic(_op, operation="update_supplier")


def delete_supplier(supplier_id: int) -> None:
    """Suppliers referenced by purchase orders are kept for history."""

    def _op():
        supplier = get_supplier(supplier_id)
        order_count = (
            db.session.query(db.func.count(PurchaseOrder.id))
            .filter(PurchaseOrder.supplier_id == supplier.id)
            .scalar()
        )
        if order_count:
            raise ConflictError(
                "Supplier has purchase orders and cannot be deleted",
                details={"supplier_id": supplier.id, "purchase_orders": int(order_count)},
            )
        db.session.delete(supplier)

    run_atomic(_op, operation="delete_supplier")


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------

def _get(item: dict, *keys):
    for key in keys:
        if key in item:
            return item[key]
    return None


def create_purchase_order(
    *,
    supplier_id: int,
    items,
    notes: str | None = None,
    actor_id: int | None = None,
) -> PurchaseOrder:
    """Create a DRAFT purchase order with at least one item."""
    if supplier_id is None:
        raise ValidationError("supplier_id is required", details={"field": "supplier_id"})
    supplier_id = coerce_int(supplier_id, "supplier_id")
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError("Purchase order requires at least one item")

    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object", details={"index": index})
        variant_id = _get(item, "variant_id", "variantId")
        if variant_id is None:
            raise ValidationError("variant_id is required", details={"index": index})
        parsed.append((
            coerce_int(variant_id, "variant_id"),
            require_positive_int(_get(item, "quantity_ordered", "quantityOrdered", "quantity"), "quantity_ordered"),
            optional_non_negative_int(_get(item, "cost_cents", "costCents"), "cost_cents"),
        ))

    def _op():
        get_supplier(supplier_id)

        variant_ids = sorted({variant_id for variant_id, _, _ in parsed})
        known = {
            row.id
            for row in db.session.query(Variant.id).filter(Variant.id.in_(variant_ids)).all()
        }
        unknown = [variant_id for variant_id in variant_ids if variant_id not in known]
        if unknown:
            raise ValidationError("Unknown variant on purchase order", details={"variant_ids": unknown})

        order = PurchaseOrder(
            supplier_id=supplier_id,
            created_by_user_id=actor_id,
            status=PurchaseOrderStatus.DRAFT,
            notes=optional_text(notes),
            ordered_at=utcnow(),
        )
        db.session.add(order)
        db.session.flush()

        for position, (variant_id, quantity, cost) in enumerate(parsed, start=1):
            db.session.add(
                PurchaseOrderItem(
                    purchase_order_id=order.id,
                    variant_id=variant_id,
                    position=position,
                    quantity_ordered=quantity,
                    quantity_received=0,
                    cost_cents=cost,
                )
            )
        db.session.flush()
        return order

    order = run_atomic(_op, operation="create_purchase_order")
    logger.info("Purchase order created: id=%s supplier=%s items=%s", order.id, supplier_id, len(parsed))
    return order


def list_purchase_orders(*, supplier_id: int | None = None, status=None) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == coerce_int(supplier_id, "supplier_id"))
    if status not in (None, ""):
        query = query.filter(PurchaseOrder.status == coerce_enum(PurchaseOrderStatus, status, "status"))
    return query.order_by(PurchaseOrder.ordered_at.desc(), PurchaseOrder.id.desc()).all()


def get_purchase_order(po_id: int) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, po_id)
    if not order:
        raise NotFoundError("Purchase order not found", details={"purchase_order_id": po_id})
    return order


def _lock_order(po_id: int) -> PurchaseOrder:
    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.id == po_id).populate_existing()
    order = lock_for_update(query).first()
    if not order:
        raise NotFoundError("Purchase order not found", details={"purchase_order_id": po_id})
    return order


def _ensure_open(order: PurchaseOrder, action: str) -> None:
    if order.status.is_terminal:
        raise OrderClosedError(
            f"Cannot {action} a purchase order that is {order.status.value}",
            details={"purchase_order_id": order.id, "status": order.status.value},
        )


def derive_status(items) -> PurchaseOrderStatus:
    """Receiving progress -> status. Never yields CANCELLED."""
    items = list(items)
    if items and all(item.quantity_received >= item.quantity_ordered for item in items):
        return PurchaseOrderStatus.RECEIVED
    if any(item.quantity_received > 0 for item in items):
        return PurchaseOrderStatus.PARTIALLY_RECEIVED
    return PurchaseOrderStatus.DRAFT


def cancel_purchase_order(po_id: int, *, actor_id: int | None = None) -> PurchaseOrder:
    def _op():
        begin_write_transaction()
        order = _lock_order(po_id)
        _ensure_open(order, "cancel")
        order.status = PurchaseOrderStatus.CANCELLED
        order.cancelled_at = utcnow()
        db.session.flush()
        return order

    order = run_atomic(_op, operation="cancel_purchase_order")
    logger.info("Purchase order cancelled: id=%s by=%s", order.id, actor_id)
    return order


def _parse_receipt_entries(entries) -> list[tuple[int, int, int | None]]:
    if not entries or not isinstance(entries, (list, tuple)):
        raise EmptyReceiptError("Receipt must include at least one item")

    parsed = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError("Each receipt entry must be an object", details={"index": index})
        item_id = _get(entry, "item_id", "itemId")
        if item_id is None:
            raise ValidationError("item_id is required", details={"index": index})
        raw_quantity = _get(entry, "quantity_received", "quantityReceived", "quantity")
        if raw_quantity is None:
            raise ValidationError("quantity_received is required", details={"index": index})
        quantity = enforce_maximum(coerce_int(raw_quantity, "quantity_received"), "quantity_received")
        if quantity <= 0:
            continue
        parsed.append((
            coerce_int(item_id, "item_id"),
            quantity,
            optional_non_negative_int(_get(entry, "cost_cents", "costCents"), "cost_cents"),
        ))

    if not parsed:
        raise EmptyReceiptError("Receipt must include at least one positive quantity")
    return parsed


def receive_purchase_order(po_id: int, *, entries, actor_id: int | None = None) -> PurchaseOrder:
    """
    Record one goods receipt against an open purchase order.

    Entries with a non-positive quantity are skipped; if none remain the
    receipt is rejected. Returns the refreshed order.
    """

    def _op():
        begin_write_transaction()
        order = _lock_order(po_id)
        _ensure_open(order, "receive")

        parsed = _parse_receipt_entries(entries)

        items_query = (
            db.session.query(PurchaseOrderItem)
            .filter(PurchaseOrderItem.purchase_order_id == order.id)
            .order_by(PurchaseOrderItem.id)
            .populate_existing()
        )
        items_by_id = {item.id: item for item in lock_for_update(items_query).all()}

        incoming: dict[int, int] = {}
        for item_id, quantity, _ in parsed:
            if item_id not in items_by_id:
                raise ValidationError(
                    "Item does not belong to this purchase order",
                    details={"purchase_order_id": order.id, "item_id": item_id},
                )
            incoming[item_id] = incoming.get(item_id, 0) + quantity

        over = []
        for item_id in sorted(incoming):
            item = items_by_id[item_id]
            if item.quantity_received + incoming[item_id] > item.quantity_ordered:
                over.append({
                    "item_id": item_id,
                    "variant_id": item.variant_id,
                    "quantity_ordered": item.quantity_ordered,
                    "quantity_received": item.quantity_received,
                    "outstanding_quantity": item.outstanding_quantity,
                    "incoming_quantity": incoming[item_id],
                })
        if over:
            raise OverReceiptError("Received quantity exceeds ordered quantity", details={"items": over})

        variants = lock_variants(items_by_id[item_id].variant_id for item_id in incoming)

        receipt = GoodsReceipt(purchase_order_id=order.id, received_by_user_id=actor_id)
        db.session.add(receipt)
        db.session.flush()

        for position, (item_id, quantity, cost) in enumerate(parsed, start=1):
            item = items_by_id[item_id]
            resolved_cost = cost if cost is not None else item.cost_cents

            entry = append_entry(
                variant_id=item.variant_id,
                quantity_change=quantity,
                type=StockLedgerType.RECEIPT,
                reason=RECEIPT_REASON,
                reference=f"receipt:{receipt.id}",
                actor_id=actor_id,
            )
            db.session.add(
                GoodsReceiptItem(
                    goods_receipt_id=receipt.id,
                    purchase_order_item_id=item.id,
                    position=position,
                    quantity_received=quantity,
                    cost_cents=resolved_cost,
                    ledger_entry_id=entry.id,
                )
            )

            item.quantity_received += quantity
            if cost is not None:
                item.cost_cents = cost
                variants[item.variant_id].cost_cents = cost

        status = derive_status(items_by_id.values())
        order.status = status
        if status == PurchaseOrderStatus.RECEIVED:
            order.received_at = utcnow()

        db.session.flush()
        return order, receipt.id

    order, receipt_id = run_atomic(_op, operation="receive_purchase_order")
    logger.info(
        "Goods receipt recorded: po=%s receipt=%s status=%s",
        order.id, receipt_id, order.status.value,
    )
    return order
