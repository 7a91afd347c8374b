# Overview: Service-layer operations for reporting; read-only views over the stock ledger.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Brand, Product, Variant
from ..validation import MAX_QUANTITY, require_non_negative_int, require_positive_int
from .ledger_service import compute_on_hand_bulk

MAX_REPORT_ROWS = 1000


def low_stock_variants(*, threshold=None, limit=None) -> dict:
    """
    Variants whose derived on-hand is at or below the threshold.

    Ordered by on-hand ascending, then SKU. threshold defaults to
    LOW_STOCK_THRESHOLD; variants with no ledger entries read as 0 and are
    included.
    """
    if threshold is None or threshold == "":
        threshold = int(current_app.config.get("LOW_STOCK_THRESHOLD", 5))
    else:
        threshold = require_non_negative_int(threshold, "threshold", maximum=MAX_QUANTITY)
    if limit is not None and limit != "":
        limit = require_positive_int(limit, "limit", maximum=MAX_REPORT_ROWS)
    else:
        limit = None

    rows = (
        db.session.query(Variant, Product, Brand)
        .join(Product, Product.id == Variant.product_id)
        .join(Brand, Brand.id == Product.brand_id)
        .all()
    )
    on_hand = compute_on_hand_bulk(variant.id for variant, _, _ in rows)

    low = [
        (on_hand.get(variant.id, 0), variant, product, brand)
        for variant, product, brand in rows
        if on_hand.get(variant.id, 0) <= threshold
    ]
    low.sort(key=lambda item: (item[0], item[1].sku))
    if limit is not None:
        low = low[:limit]

    results = [
        {
            "variant_id": variant.id,
            "product_id": product.id,
            "brand_id": brand.id,
            "sku": variant.sku,
            "product_name": product.name,
            "brand_name": brand.name,
            "size": variant.size,
            "color": variant.color,
            "on_hand": quantity,
            "threshold": threshold,
        }
        for quantity, variant, product, brand in low
    ]
    return {"threshold": threshold, "results": results, "count": len(results)}
