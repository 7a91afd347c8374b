# backend/retailpos/services/catalog_service.py
"""
Catalog Service

Brands, products and variants. Variants carry pricing and descriptive data
only: any attempt to write a quantity through the catalog is rejected, since
stock moves exclusively through the ledger.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from ..models import Brand, Product, Variant
from ..validation import ModelValidationPolicy, coerce_int, optional_text, validate_payload
from .concurrency import run_atomic
from .ledger_service import compute_on_hand, compute_on_hand_bulk

QUANTITY_FIELDS = frozenset({"quantity", "on_hand", "onHand", "stock", "quantity_on_hand"})

BRAND_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "description"}),
    required_on_create=frozenset({"name"}),
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"brand_id", "name", "description", "category"}),
    required_on_create=frozenset({"brand_id", "name"}),
)

VARIANT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"product_id", "sku", "barcode", "size", "color", "price_cents", "cost_cents"}),
    required_on_create=frozenset({"product_id", "sku"}),
    forbidden_fields=QUANTITY_FIELDS,
)

VARIANT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"sku", "barcode", "size", "color", "price_cents", "cost_cents"}),
    forbidden_fields=QUANTITY_FIELDS,
)


def _ensure_unique(model, column, value, label: str, *, exclude_id: int | None = None) -> None:
    if value is None:
        return
    query = db.session.query(model.id).filter(column == value)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise ConflictError(f"{label} already exists", details={label.lower(): value})


def create_brand(**fields) -> Brand:
    patch = validate_payload(model=Brand, payload=fields, policy=BRAND_POLICY, partial=False)

    def _op():
        _ensure_unique(Brand, Brand.name, patch["name"], "Brand name")
        brand = Brand(**patch)
        db.session.add(brand)
        db.session.flush()
        return brand

    return run_atomic(_op, operation="create_brand")


def list_brands() -> list[Brand]:
    return db.session.query(Brand).order_by(Brand.name.asc()).all()


def create_product(**fields) -> Product:
    patch = validate_payload(model=Product, payload=fields, policy=PRODUCT_POLICY, partial=False)

    def _op():
        if not db.session.get(Brand, patch["brand_id"]):
            raise NotFoundError("Brand not found", details={"brand_id": patch["brand_id"]})
        product = Product(**patch)
        db.session.add(product)
        db.session.flush()
        return product

    return run_atomic(_op, operation="create_product")


def list_products(*, brand_id: int | None = None) -> list[Product]:
    query = db.session.query(Product)
    if brand_id is not None:
        query = query.filter(Product.brand_id == brand_id)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def create_variant(**fields) -> Variant:
    patch = validate_payload(model=Variant, payload=fields, policy=VARIANT_POLICY, partial=False)
    if "barcode" in patch:
        patch["barcode"] = optional_text(patch["barcode"])

    def _op():
        if not db.session.get(Product, patch["product_id"]):
            raise NotFoundError("Product not found", details={"product_id": patch["product_id"]})
        _ensure_unique(Variant, Variant.sku, patch["sku"], "SKU")
        _ensure_unique(Variant, Variant.barcode, patch.get("barcode"), "Barcode")
        variant = Variant(**patch)
        db.session.add(variant)
        db.session.flush()
        return variant

    return run_atomic(_op, operation="create_variant")


def update_variant(variant_id: int, **fields) -> Variant:
    """Patch descriptive/pricing fields. Quantity-like fields raise ValidationError."""
    patch = validate_payload(model=Variant, payload=fields, policy=VARIANT_UPDATE_POLICY, partial=True)
    if "barcode" in patch:
        patch["barcode"] = optional_text(patch["barcode"])

    def _op():
        variant = get_variant(variant_id)
        if "sku" in patch:
            _ensure_unique(Variant, Variant.sku, patch["sku"], "SKU", exclude_id=variant.id)
        if "barcode" in patch:
            _ensure_unique(Variant, Variant.barcode, patch["barcode"], "Barcode", exclude_id=variant.id)
        for key, value in patch.items():
            setattr(variant, key, value)
        db.session.flush()
        return variant

    return run_atomic(_op, operation="update_variant")


def get_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if not variant:
        raise NotFoundError("Variant not found", details={"variant_id": variant_id})
    return variant


def variant_with_stock(variant: Variant) -> dict:
    data = variant.to_dict()
    data.update(variant.to_summary())
    data["on_hand"] = compute_on_hand(variant.id)
    return data


def lookup_variant(code: str) -> Variant:
    """Scanner lookup: barcode first, then SKU."""
    value = optional_text(code)
    if not value:
        raise NotFoundError("Variant not found", details={"code": code})
    variant = db.session.query(Variant).filter(Variant.barcode == value).first()
    if variant is None:
        variant = db.session.query(Variant).filter(Variant.sku == value).first()
    if variant is None:
        raise NotFoundError("Variant not found", details={"code": value})
    return variant


def list_inventory(
    *,
    page: int = 1,
    page_size: int = 25,
    search: str | None = None,
    brand_id: int | None = None,
) -> dict:
    """
    Paginated catalog listing with derived on-hand per variant.

    Ordered by brand name, product name, SKU.
    """
    page = max(coerce_int(page, "page"), 1)
    page_size = min(max(coerce_int(page_size, "page_size"), 1), 100)

    query = (
        db.session.query(Variant, Product, Brand)
        .join(Product, Product.id == Variant.product_id)
        .join(Brand, Brand.id == Product.brand_id)
    )
    if brand_id is not None:
        query = query.filter(Brand.id == coerce_int(brand_id, "brand_id"))
    term = optional_text(search)
    if term:
        like = f"%{term}%"
        query = query.filter(
            or_(
                Variant.sku.ilike(like),
                Variant.barcode.ilike(like),
                Product.name.ilike(like),
                Brand.name.ilike(like),
            )
        )

    total = query.count()
    rows = (
        query.order_by(Brand.name.asc(), Product.name.asc(), Variant.sku.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    on_hand = compute_on_hand_bulk(variant.id for variant, _, _ in rows)

    data = [
        {
            "variant_id": variant.id,
            "product_id": product.id,
            "brand_id": brand.id,
            "sku": variant.sku,
            "barcode": variant.barcode,
            "brand_name": brand.name,
            "product_name": product.name,
            "category": product.category,
            "size": variant.size,
            "color": variant.color,
            "price_cents": variant.price_cents,
            "on_hand": on_hand.get(variant.id, 0),
        }
        for variant, product, brand in rows
    ]

    return {
        "data": data,
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "page_count": (total + page_size - 1) // page_size if total else 0,
        },
    }
