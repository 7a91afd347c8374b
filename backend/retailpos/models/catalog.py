from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Brand(db.Model):
    __tablename__ = "brands"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Brand id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    Product master data. Sellable units are its Variants.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_brand_name", "brand_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(1000), nullable=True)
    category = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    brand = db.relationship("Brand", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} brand_id={self.brand_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "brand_id": self.brand_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Variant(db.Model):
    """
    A single purchasable SKU (size/color) of a Product.

    QUANTITY DESIGN DECISION:
    There is deliberately no quantity column. On-hand is SUM(quantity_change)
    over the variant's stock_ledger_entries, computed by ledger_service.
    Only descriptive and pricing fields are ever updated on this row.

    LOCKING:
    The variant row doubles as the lock target for stock writes: sales,
    adjustments and receipts take SELECT ... FOR UPDATE on it before reading
    on-hand, so writers to the same variant serialize and writers to
    different variants do not contend.
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.CheckConstraint("price_cents IS NULL OR price_cents >= 0", name="ck_variants_price_nonneg"),
        db.CheckConstraint("cost_cents IS NULL OR cost_cents >= 0", name="ck_variants_cost_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(255), nullable=True, unique=True)
    size = db.Column(db.String(100), nullable=True)
    color = db.Column(db.String(100), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=True)
    cost_cents = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def __repr__(self) -> str:
        return f"<Variant id={self.id} sku={self.sku!r} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "barcode": self.barcode,
            "size": self.size,
            "color": self.color,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        """Compact shape embedded in purchase order and receipt payloads."""
        product = self.product
        return {
            "id": self.id,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "product_id": self.product_id,
            "product_name": product.name if product else None,
            "brand_name": product.brand.name if product and product.brand else None,
        }
