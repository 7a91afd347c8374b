from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    A completed checkout.

    A Sale row only exists together with its SALE ledger entries and
    payments; all are written in the same transaction by
    sales_service.complete_sale. There is no draft state.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_cents >= 0", name="ck_sales_total_nonneg"),
        db.CheckConstraint("total_paid_cents >= total_cents", name="ck_sales_paid_covers_total"),
        db.Index("ix_sales_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    sale_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Sum of payments and the change handed back (total_paid - total)
    total_paid_cents = db.Column(db.Integer, nullable=False)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    recorded_by = db.relationship("User", foreign_keys=[recorded_by_user_id])
    items = db.relationship(
        "SaleItem",
        backref="sale",
        order_by="SaleItem.position",
        lazy=True,
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "Payment",
        backref="sale",
        order_by="Payment.position",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recorded_by_user_id": self.recorded_by_user_id,
            "subtotal_cents": self.subtotal_cents,
            "sale_discount_cents": self.sale_discount_cents,
            "discount_total_cents": self.discount_total_cents,
            "tax_total_cents": self.tax_total_cents,
            "total_cents": self.total_cents,
            "total_paid_cents": self.total_paid_cents,
            "change_due_cents": self.change_due_cents,
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
            "payments": [payment.to_dict() for payment in self.payments],
        }


class SaleItem(db.Model):
    """Individual line on a sale, in cart order."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_qty_pos"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sale_items_discount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # Effective line discount (already capped at the line subtotal)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    # SALE entry written for this line
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("stock_ledger_entries.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("Variant")
    ledger_entry = db.relationship("StockLedgerEntry")

    @property
    def line_subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def line_total_cents(self) -> int:
        return self.line_subtotal_cents - self.discount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "variant_id": self.variant_id,
            "sku": self.variant.sku if self.variant else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_subtotal_cents": self.line_subtotal_cents,
            "line_total_cents": self.line_total_cents,
            "ledger_entry_id": self.ledger_entry_id,
        }


class Payment(db.Model):
    """
    One tender applied to a sale (split payments are several rows).
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents >= 0", name="ck_payments_amount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Free-form tender label (cash, card, gift card, ...)
    method = db.Column(db.String(64), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "method": self.method,
            "amount_cents": self.amount_cents,
        }
