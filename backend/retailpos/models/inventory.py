from __future__ import annotations

import enum

from sqlalchemy import event

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StockLedgerType(str, enum.Enum):
    """Why a ledger entry changed the on-hand quantity."""

    INITIAL_COUNT = "INITIAL_COUNT"
    ADJUSTMENT = "ADJUSTMENT"
    RECEIPT = "RECEIPT"
    SALE = "SALE"


class StockLedgerEntry(db.Model):
    """
    Append-only stock ledger.

    - One row per quantity-changing event for a variant.
    - quantity_change is signed (positive = increase) and never zero.
    - Rows are never updated or deleted; corrections are new compensating rows.
    - On-hand for a variant is SUM(quantity_change) over its rows.
    - Ordering within a variant is (created_at, id), i.e. commit order.
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.CheckConstraint("quantity_change <> 0", name="ck_stock_ledger_nonzero"),
        db.Index("ix_stock_ledger_variant_created", "variant_id", "created_at", "id"),
        db.Index("ix_stock_ledger_variant_type", "variant_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    type = db.Column(
        db.Enum(StockLedgerType, name="stock_ledger_type", native_enum=False, validate_strings=True),
        nullable=False,
    )

    reason = db.Column(db.String(255), nullable=True, index=True)
    reference = db.Column(db.String(255), nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    variant = db.relationship("Variant", backref=db.backref("ledger_entries", lazy="dynamic"))
    recorded_by = db.relationship("User", foreign_keys=[recorded_by_user_id])

    def __repr__(self) -> str:
        return (
            f"<StockLedgerEntry id={self.id} variant_id={self.variant_id} "
            f"type={self.type.value if self.type else None} change={self.quantity_change}>"
        )

    def to_dict(self) -> dict:
        recorded_by = self.recorded_by
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "quantity_change": self.quantity_change,
            "type": self.type.value,
            "reason": self.reason,
            "reference": self.reference,
            "recorded_at": to_utc_z(self.created_at),
            "recorded_by": recorded_by.to_summary() if recorded_by else None,
        }


@event.listens_for(StockLedgerEntry, "before_update")
def _reject_ledger_update(mapper, connection, target):
    raise ImmutableRecordError(
        "Stock ledger entries are append-only",
        details={"entry_id": target.id},
    )


@event.listens_for(StockLedgerEntry, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ImmutableRecordError(
        "Stock ledger entries cannot be deleted; record a compensating entry",
        details={"entry_id": target.id},
    )
