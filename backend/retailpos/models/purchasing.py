from __future__ import annotations

import enum

from sqlalchemy import event

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PARTIALLY_RECEIVED = "PARTIALLY_RECEIVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (PurchaseOrderStatus.RECEIVED, PurchaseOrderStatus.CANCELLED)


class Supplier(db.Model):
    """Vendor that purchase orders are placed with."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    contact_name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_name": self.contact_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order header.

    STATE MACHINE:
    DRAFT -> PARTIALLY_RECEIVED -> RECEIVED
    DRAFT/PARTIALLY_RECEIVED -> CANCELLED
    RECEIVED and CANCELLED are terminal.

    version_id guards against a stale in-memory copy being flushed over a
    concurrent receipt; receive/cancel additionally lock the row.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(
        db.Enum(PurchaseOrderStatus, name="purchase_order_status", native_enum=False, validate_strings=True),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
        index=True,
    )
    notes = db.Column(db.Text, nullable=True)

    ordered_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        order_by="PurchaseOrderItem.position",
        lazy=True,
        cascade="all, delete-orphan",
    )
    receipts = db.relationship(
        "GoodsReceipt",
        backref="purchase_order",
        order_by="GoodsReceipt.id",
        lazy=True,
    )

    @property
    def is_fully_received(self) -> bool:
        return bool(self.items) and all(item.outstanding_quantity == 0 for item in self.items)

    def to_dict(self, include_receipts: bool = False) -> dict:
        data = {
            "id": self.id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "created_by_user_id": self.created_by_user_id,
            "status": self.status.value,
            "notes": self.notes,
            "ordered_at": to_utc_z(self.ordered_at),
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "items": [item.to_dict() for item in self.items],
        }
        if include_receipts:
            data["receipts"] = [receipt.to_dict() for receipt in self.receipts]
        return data


class PurchaseOrderItem(db.Model):
    """One ordered variant on a purchase order."""
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity_ordered > 0", name="ck_po_items_ordered_pos"),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_ordered",
            name="ck_po_items_received_range",
        ),
        db.CheckConstraint("cost_cents IS NULL OR cost_cents >= 0", name="ck_po_items_cost_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    quantity_ordered = db.Column(db.Integer, nullable=False)
    # Cumulative across all goods receipts
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=True)

    variant = db.relationship("Variant")

    @property
    def outstanding_quantity(self) -> int:
        return self.quantity_ordered - (self.quantity_received or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "variant_id": self.variant_id,
            "variant": self.variant.to_summary() if self.variant else None,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "outstanding_quantity": self.outstanding_quantity,
            "cost_cents": self.cost_cents,
        }


class GoodsReceipt(db.Model):
    """
    One receiving event against a purchase order.

    Immutable once created, like the ledger rows it produced.
    """
    __tablename__ = "goods_receipts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    received_by = db.relationship("User", foreign_keys=[received_by_user_id])
    items = db.relationship(
        "GoodsReceiptItem",
        backref="receipt",
        order_by="GoodsReceiptItem.position",
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "received_by_user_id": self.received_by_user_id,
            "received_at": to_utc_z(self.received_at),
            "items": [item.to_dict() for item in self.items],
        }


class GoodsReceiptItem(db.Model):
    __tablename__ = "goods_receipt_items"
    __table_args__ = (
        db.CheckConstraint("quantity_received > 0", name="ck_receipt_items_qty_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goods_receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)
    purchase_order_item_id = db.Column(
        db.Integer, db.ForeignKey("purchase_order_items.id"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False)

    quantity_received = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    purchase_order_item = db.relationship("PurchaseOrderItem")
    ledger_entry = db.relationship("StockLedgerEntry")

    def to_dict(self) -> dict:
        po_item = self.purchase_order_item
        return {
            "id": self.id,
            "purchase_order_item_id": self.purchase_order_item_id,
            "variant_id": po_item.variant_id if po_item else None,
            "quantity_received": self.quantity_received,
            "cost_cents": self.cost_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }


def _reject_receipt_change(mapper, connection, target):
    raise ImmutableRecordError(
        "Goods receipts are immutable once recorded",
        details={"table": mapper.local_table.name, "id": target.id},
    )


for _model in (GoodsReceipt, GoodsReceiptItem):
    event.listen(_model, "before_update", _reject_receipt_change)
    event.listen(_model, "before_delete", _reject_receipt_change)
