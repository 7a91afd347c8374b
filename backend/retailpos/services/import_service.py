# Overview: Service-layer operations for inventory import; CSV preview and apply.

"""
Inventory Import

A CSV of brand / product / SKU rows is parsed, analysed against the catalog
and the stock ledger, then either previewed (read-only) or applied in one
transaction.

- Brands and products are matched case-insensitively and created when missing.
- SKUs are matched case-insensitively; existing variants pick up size, color,
  barcode and price from the file.
- The on_hand column seeds the variant's INITIAL_COUNT when it has none yet.
  A variant that was already counted keeps its ledger as is; a different
  on_hand in the file is reported as a warning, never written.
- Any row with an error blocks apply and nothing is written. A repeated SKU
  with identical values is a warning and only its first row is applied.
"""

from __future__ import annotations

import csv
import io
import logging
import re
import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import func

from ..errors import ImportBlockedError, ValidationError
from ..extensions import db
from ..models import Brand, Product, StockLedgerType, Variant
from ..validation import MAX_PRICE_CENTS, MAX_QUANTITY
from .concurrency import begin_write_transaction, run_atomic
from .ledger_service import (
    append_entry,
    compute_on_hand_bulk,
    lock_variants,
    variants_with_initial_count,
)

logger = logging.getLogger(__name__)

IMPORT_REASON = "inventory import"

# Row actions
CREATE_BRAND = "CREATE_BRAND"
CREATE_PRODUCT = "CREATE_PRODUCT"
CREATE_VARIANT = "CREATE_VARIANT"
UPDATE_VARIANT = "UPDATE_VARIANT"
INITIAL_COUNT = "INITIAL_COUNT"
SKIP = "SKIP"

# Issue types
DUPLICATE_IN_FILE = "DUPLICATE_IN_FILE"
CONFLICTING_RECORD = "CONFLICTING_RECORD"
INVALID_FIELD = "INVALID_FIELD"
STOCK_UNCHANGED = "STOCK_UNCHANGED"

ERROR = "error"
WARNING = "warning"

HEADER_ALIASES = {
    "brand": "brand_name",
    "brandname": "brand_name",
    "manufacturer": "brand_name",
    "product": "product_name",
    "productname": "product_name",
    "model": "product_name",
    "style": "product_name",
    "sku": "sku",
    "skucode": "sku",
    "code": "sku",
    "size": "size",
    "color": "color",
    "colour": "color",
    "category": "category",
    "price": "price",
    "retailprice": "price",
    "pricecents": "price_cents",
    "onhand": "on_hand",
    "quantity": "on_hand",
    "qty": "on_hand",
    "stock": "on_hand",
    "barcode": "barcode",
    "upc": "barcode",
    "ean": "barcode",
    "gtin": "barcode",
}

REQUIRED_COLUMNS = ("brand_name", "product_name", "sku")

# Text fields and the columns whose length limits they inherit
TEXT_COLUMNS = {
    "brand_name": Brand.__table__.c.name,
    "product_name": Product.__table__.c.name,
    "sku": Variant.__table__.c.sku,
    "size": Variant.__table__.c.size,
    "color": Variant.__table__.c.color,
    "category": Product.__table__.c.category,
    "barcode": Variant.__table__.c.barcode,
}

REQUIRED_LABELS = {"brand_name": "Brand name", "product_name": "Product name", "sku": "SKU"}

_DIGITS = re.compile(r"[0-9]+")


@dataclass
class ImportIssue:
    type: str
    severity: str
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type, "severity": self.severity, "message": self.message}


@dataclass
class ImportRow:
    index: int
    brand_name: str = ""
    product_name: str = ""
    sku: str = ""
    size: str | None = None
    color: str | None = None
    category: str | None = None
    barcode: str | None = None
    price_cents: int | None = None
    on_hand: int | None = None
    issues: list[ImportIssue] = field(default_factory=list)

    def invalid(self, message: str) -> None:
        self.issues.append(ImportIssue(INVALID_FIELD, ERROR, message))

    def signature(self) -> tuple:
        return (
            self.brand_name.lower(),
            self.product_name.lower(),
            (self.size or "").lower(),
            (self.color or "").lower(),
            self.barcode,
            self.price_cents,
            self.on_hand,
        )

    def to_dict(self) -> dict:
        return {
            "brand_name": self.brand_name,
            "product_name": self.product_name,
            "sku": self.sku,
            "size": self.size,
            "color": self.color,
            "category": self.category,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "on_hand": self.on_hand,
        }


@dataclass
class RowPlan:
    row: ImportRow
    actions: list[str] = field(default_factory=list)
    issues: list[ImportIssue] = field(default_factory=list)
    brand: Brand | None = None
    product: Product | None = None
    variant: Variant | None = None
    count_quantity: int = 0

    @property
    def blocking(self) -> bool:
        return any(issue.severity == ERROR for issue in self.issues)

    def add(self, action: str) -> None:
        if action not in self.actions:
            self.actions.append(action)

    def conflict(self, issue_type: str, message: str) -> None:
        self.issues.append(ImportIssue(issue_type, ERROR, message))

    def to_dict(self) -> dict:
        return {
            "index": self.row.index,
            "row": self.row.to_dict(),
            "actions": list(self.actions),
            "issues": [issue.to_dict() for issue in self.issues],
            "blocking": self.blocking,
        }


@dataclass
class ImportPreview:
    rows: list[RowPlan]
    summary: dict

    def to_dict(self) -> dict:
        return {"rows": [plan.to_dict() for plan in self.rows], "summary": self.summary}


@dataclass
class ImportResult:
    reference: str
    summary: dict

    def to_dict(self) -> dict:
        return {"reference": self.reference, "status": "COMPLETED", "summary": self.summary}


# =============================================================================
# PARSING
# =============================================================================


def _normalise_header(header) -> str:
    return re.sub(r"[^a-z0-9]", "", str(header or "").lower())


def _text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_count(raw, row: ImportRow, field_name: str, maximum: int) -> int | None:
    text = _text(raw)
    if text is None:
        return None
    if not _DIGITS.fullmatch(text):
        row.invalid(f"{field_name} must be a whole number >= 0 (got {text!r})")
        return None
    number = int(text)
    if number > maximum:
        row.invalid(f"{field_name} cannot exceed {maximum}")
        return None
    return number


def _parse_price(raw, row: ImportRow) -> int | None:
    """Decimal price such as '$1,299.50' to cents."""
    text = _text(raw)
    if text is None:
        return None
    cleaned = text.replace("$", "").replace(",", "")
    try:
        cents = int(round(float(cleaned) * 100))
    except (ValueError, OverflowError):
        row.invalid(f"price must be a number (got {text!r})")
        return None
    if cents < 0:
        row.invalid("price must be >= 0")
        return None
    if cents > MAX_PRICE_CENTS:
        row.invalid(f"price cannot exceed {MAX_PRICE_CENTS} cents")
        return None
    return cents


def _build_row(index: int, values: dict) -> ImportRow:
    row = ImportRow(index=index)
    for key, column in TEXT_COLUMNS.items():
        value = _text(values.get(key))
        if value and len(value) > column.type.length:
            row.invalid(f"{key} exceeds max length {column.type.length}")
        if key in REQUIRED_LABELS:
            if not value:
                row.invalid(f"{REQUIRED_LABELS[key]} is required")
            value = value or ""
        setattr(row, key, value)

    if _text(values.get("price_cents")) is not None:
        row.price_cents = _parse_count(values["price_cents"], row, "price_cents", MAX_PRICE_CENTS)
    else:
        row.price_cents = _parse_price(values.get("price"), row)
    row.on_hand = _parse_count(values.get("on_hand"), row, "on_hand", MAX_QUANTITY)
    return row


def parse_csv(content) -> list[ImportRow]:
    """
    Read an import file into rows.

    Headers are matched through HEADER_ALIASES (case and punctuation
    insensitive). Field problems are kept on the row as issues; only an
    unreadable file or missing required columns raise ValidationError.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV file must be UTF-8 encoded") from None
    if not isinstance(content, str) or not content.strip():
        raise ValidationError("Uploaded CSV file is empty")

    max_rows = int(current_app.config.get("IMPORT_MAX_ROWS", 5000))
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    rows: list[ImportRow] = []
    try:
        columns: dict[str, str] = {}
        for header in reader.fieldnames or []:
            key = HEADER_ALIASES.get(_normalise_header(header))
            if key and key not in columns.values():
                columns[header] = key
        missing = [key for key in REQUIRED_COLUMNS if key not in columns.values()]
        if missing:
            raise ValidationError(
                "CSV is missing required columns",
                details={"missing_columns": missing, "headers": list(reader.fieldnames or [])},
            )

        for record in reader:
            values = {key: record.get(header) for header, key in columns.items()}
            if not any(_text(value) for value in values.values()):
                continue
            if len(rows) >= max_rows:
                raise ValidationError(
                    f"CSV cannot contain more than {max_rows} rows",
                    details={"max_rows": max_rows},
                )
            rows.append(_build_row(len(rows) + 1, values))
    except csv.Error as exc:
        raise ValidationError(
            "CSV contents could not be parsed",
            details={"line": reader.line_num},
        ) from exc
    return rows


# =============================================================================
# ANALYSIS
# =============================================================================


@dataclass
class _CatalogState:
    brands: dict[str, Brand]
    products: dict[tuple[int, str], Product]
    variants: dict[str, Variant]
    barcodes: dict[str, Variant]
    on_hand: dict[int, int]
    counted: set[int]


def _variants_by_sku(rows: list[ImportRow]) -> dict[str, Variant]:
    keys = {row.sku.lower() for row in rows if row.sku}
    if not keys:
        return {}
    found: dict[str, Variant] = {}
    query = db.session.query(Variant).filter(func.lower(Variant.sku).in_(keys)).order_by(Variant.id)
    for variant in query:
        found.setdefault(variant.sku.lower(), variant)
    return found


def _load_state(rows: list[ImportRow]) -> _CatalogState:
    brands: dict[str, Brand] = {}
    brand_keys = {row.brand_name.lower() for row in rows if row.brand_name}
    if brand_keys:
        query = db.session.query(Brand).filter(func.lower(Brand.name).in_(brand_keys)).order_by(Brand.id)
        for brand in query:
            brands.setdefault(brand.name.lower(), brand)

    products: dict[tuple[int, str], Product] = {}
    product_keys = {row.product_name.lower() for row in rows if row.product_name}
    if brands and product_keys:
        query = (
            db.session.query(Product)
            .filter(
                Product.brand_id.in_([brand.id for brand in brands.values()]),
                func.lower(Product.name).in_(product_keys),
            )
            .order_by(Product.id)
        )
        for product in query:
            products.setdefault((product.brand_id, product.name.lower()), product)

    variants = _variants_by_sku(rows)

    barcodes: dict[str, Variant] = {}
    barcode_keys = {row.barcode for row in rows if row.barcode}
    if barcode_keys:
        barcodes = {
            variant.barcode: variant
            for variant in db.session.query(Variant).filter(Variant.barcode.in_(barcode_keys))
        }

    variant_ids = [variant.id for variant in variants.values()]
    return _CatalogState(
        brands=brands,
        products=products,
        variants=variants,
        barcodes=barcodes,
        on_hand=compute_on_hand_bulk(variant_ids),
        counted=variants_with_initial_count(variant_ids),
    )


def _variant_changes(variant: Variant, row: ImportRow) -> dict:
    changes = {}
    for key in ("size", "color", "barcode"):
        value = getattr(row, key)
        if value and value != getattr(variant, key):
            changes[key] = value
    if row.price_cents is not None and row.price_cents != variant.price_cents:
        changes["price_cents"] = row.price_cents
    return changes


def _plan_stock(plan: RowPlan, current: int, counted: bool) -> bool:
    row = plan.row
    if row.on_hand is None or row.on_hand == current:
        return False
    if counted:
        message = (
            f"SKU {row.sku} already has an initial count; on-hand stays {current} "
            f"(file says {row.on_hand}). Use adjustments or receipts instead."
        )
    elif row.on_hand < current:
        message = (
            f"SKU {row.sku} already has {current} on hand; an initial count cannot "
            f"lower it to {row.on_hand}."
        )
    else:
        plan.count_quantity = row.on_hand - current
        plan.add(INITIAL_COUNT)
        return True
    plan.issues.append(ImportIssue(STOCK_UNCHANGED, WARNING, message))
    return False


def _analyse(rows: list[ImportRow]) -> ImportPreview:
    state = _load_state(rows)

    new_brands: set[str] = set()
    new_products: set[tuple[str, str]] = set()
    new_variants: set[str] = set()
    first_by_sku: dict[str, ImportRow] = {}
    indexes_by_sku: dict[str, list[int]] = {}
    sku_by_barcode: dict[str, str] = {}
    updated_variants = price_changes = initial_counts = 0
    plans: list[RowPlan] = []

    for row in rows:
        plan = RowPlan(row=row, issues=list(row.issues))
        plans.append(plan)
        if not (row.brand_name and row.product_name and row.sku):
            continue

        sku_key = row.sku.lower()
        indexes = indexes_by_sku.setdefault(sku_key, [])
        indexes.append(row.index)
        first = first_by_sku.setdefault(sku_key, row)
        if first is not row:
            rows_text = ", ".join(str(index) for index in indexes)
            if first.signature() == row.signature():
                severity, message = WARNING, f"Duplicate SKU {row.sku} in rows {rows_text}"
            else:
                severity, message = ERROR, f"Duplicate SKU {row.sku} has conflicting values in rows {rows_text}"
            plan.issues.append(ImportIssue(DUPLICATE_IN_FILE, severity, message))
            plan.add(SKIP)
            continue

        brand_key = row.brand_name.lower()
        plan.brand = state.brands.get(brand_key)
        if plan.brand is None:
            plan.add(CREATE_BRAND)
            new_brands.add(brand_key)

        product_key = row.product_name.lower()
        plan.product = state.products.get((plan.brand.id, product_key)) if plan.brand else None
        if plan.product is None:
            plan.add(CREATE_PRODUCT)
            new_products.add((brand_key, product_key))

        if row.barcode:
            owner = sku_by_barcode.setdefault(row.barcode, sku_key)
            if owner != sku_key:
                plan.conflict(DUPLICATE_IN_FILE, f"Barcode {row.barcode} is used by more than one SKU in the file")
            holder = state.barcodes.get(row.barcode)
            if holder is not None and holder.sku.lower() != sku_key:
                plan.conflict(CONFLICTING_RECORD, f"Barcode {row.barcode} already belongs to SKU {holder.sku}")

        variant = state.variants.get(sku_key)
        plan.variant = variant
        if variant is None:
            plan.add(CREATE_VARIANT)
            new_variants.add(sku_key)
            current, counted = 0, False
        else:
            if plan.product is None or variant.product_id != plan.product.id:
                plan.conflict(
                    CONFLICTING_RECORD,
                    f"SKU {variant.sku} already belongs to "
                    f"{variant.product.brand.name} / {variant.product.name}",
                )
            changes = _variant_changes(variant, row)
            if changes:
                plan.add(UPDATE_VARIANT)
                updated_variants += 1
                if "price_cents" in changes:
                    price_changes += 1
            current, counted = state.on_hand.get(variant.id, 0), variant.id in state.counted

        if _plan_stock(plan, current, counted):
            initial_counts += 1

    summary = {
        "total_rows": len(rows),
        "create": {
            "brands": len(new_brands),
            "products": len(new_products),
            "variants": len(new_variants),
        },
        "update": {
            "variants": updated_variants,
            "price_changes": price_changes,
            "initial_counts": initial_counts,
        },
        "duplicates": [
            {"sku": first_by_sku[key].sku, "rows": indexes}
            for key, indexes in indexes_by_sku.items()
            if len(indexes) > 1
        ],
        "blocking_issue_count": sum(1 for plan in plans if plan.blocking),
        "warning_count": sum(
            1 for plan in plans for issue in plan.issues if issue.severity == WARNING
        ),
    }
    return ImportPreview(rows=plans, summary=summary)


# =============================================================================
# PREVIEW / APPLY
# =============================================================================


def preview_import(content) -> ImportPreview:
    """Parse and analyse without writing anything."""
    return _analyse(parse_csv(content))


def apply_import(content, *, actor_id: int | None = None) -> ImportResult:
    """
    Apply an import file in one transaction.

    Raises ImportBlockedError (details["preview"]) when any row has an error.
    Initial counts are written under the same variant locks and the same
    one-count-per-variant rule as record_initial_count.
    """
    rows = parse_csv(content)
    if not rows:
        raise ValidationError("CSV does not contain any rows")
    reference = f"import-{uuid.uuid4().hex[:12]}"

    def _op():
        begin_write_transaction()
        lock_variants(variant.id for variant in _variants_by_sku(rows).values())

        preview = _analyse(rows)
        if preview.summary["blocking_issue_count"]:
            raise ImportBlockedError(
                "Import contains blocking issues; resolve them before applying",
                details={"preview": preview.to_dict()},
            )

        brands: dict[str, Brand] = {}
        products: dict[tuple[str, str], Product] = {}
        for plan in preview.rows:
            if SKIP in plan.actions:
                continue
            row = plan.row
            brand_key = row.brand_name.lower()
            product_key = (brand_key, row.product_name.lower())

            brand = plan.brand or brands.get(brand_key)
            if brand is None:
                brand = Brand(name=row.brand_name)
                db.session.add(brand)
                db.session.flush()
                brands[brand_key] = brand

            product = plan.product or products.get(product_key)
            if product is None:
                product = Product(brand_id=brand.id, name=row.product_name, category=row.category)
                db.session.add(product)
                db.session.flush()
                products[product_key] = product

            variant = plan.variant
            if variant is None:
                variant = Variant(
                    product_id=product.id,
                    sku=row.sku,
                    size=row.size,
                    color=row.color,
                    barcode=row.barcode,
                    price_cents=row.price_cents,
                )
                db.session.add(variant)
                db.session.flush()
            else:
                for key, value in _variant_changes(variant, row).items():
                    setattr(variant, key, value)

            if plan.count_quantity:
                append_entry(
                    variant_id=variant.id,
                    quantity_change=plan.count_quantity,
                    type=StockLedgerType.INITIAL_COUNT,
                    reason=IMPORT_REASON,
                    reference=reference,
                    actor_id=actor_id,
                )

        db.session.flush()
        return preview.summary

    summary = run_atomic(_op, operation="apply_import")
    logger.info(
        "Inventory import applied: reference=%s rows=%s created=%s initial_counts=%s by=%s",
        reference, summary["total_rows"], summary["create"], summary["update"]["initial_counts"], actor_id,
    )
    return ImportResult(reference=reference, summary=summary)
