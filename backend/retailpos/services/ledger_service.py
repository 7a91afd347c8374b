# Overview: Stock ledger engine; the single source of truth for on-hand quantities.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import and_, func, or_

from ..errors import (
    InitialCountExistsError,
    InsufficientStockError,
    InvalidTypeError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import StockLedgerEntry, StockLedgerType, Variant
from ..time_utils import parse_iso_datetime, to_utc_z
from ..validation import (
    coerce_datetime,
    coerce_enum,
    coerce_int,
    enforce_maximum,
    optional_text,
    require_positive_int,
)
from .concurrency import begin_write_transaction, lock_for_update, run_atomic

"""
Stock Ledger Invariants (authoritative)

- On-hand for a variant = SUM(quantity_change) over its ledger rows. There
  is no stored quantity anywhere else.
- Rows are append-only: no UPDATE, no DELETE (enforced by mapper events).
- quantity_change is never zero.
- Any decrement is checked against on-hand read under the variant's row
  lock, in the same transaction that inserts the decrement.
- A negative computed on-hand is a data integrity alarm: logged, never clamped.
"""

logger = logging.getLogger(__name__)

ADJUSTMENT_REASON_CODES = ("damaged", "lost")


@dataclass
class LedgerPage:
    variant_id: int
    on_hand: int
    entries: list[StockLedgerEntry]
    next_cursor: str | None = None
    available_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "variant_id": self.variant_id,
            "on_hand": self.on_hand,
            "entries": [entry.to_dict() for entry in self.entries],
            "next_cursor": self.next_cursor,
            "available_types": [t.value for t in StockLedgerType],
            "available_reasons": self.available_reasons,
        }


def _report_negative(variant_id: int, on_hand: int) -> None:
    logger.error(
        "Stock ledger integrity alarm: variant %s has negative on-hand %s",
        variant_id,
        on_hand,
    )


def require_variant(variant_id: int) -> Variant:
    variant = db.session.get(Variant, variant_id)
    if not variant:
        raise NotFoundError("Variant not found", details={"variant_id": variant_id})
    return variant


def lock_variants(variant_ids) -> dict[int, Variant]:
    """
    Lock variant rows FOR UPDATE in ascending id order.

    Fixed ordering keeps two multi-variant writers from deadlocking on each
    other. populate_existing() refreshes any stale instance already in the
    session identity map.
    """
    ids = sorted(set(variant_ids))
    if not ids:
        return {}

    query = (
        db.session.query(Variant)
        .filter(Variant.id.in_(ids))
        .order_by(Variant.id)
        .populate_existing()
    )
    rows = lock_for_update(query).all()
    found = {variant.id: variant for variant in rows}

    missing = [variant_id for variant_id in ids if variant_id not in found]
    if missing:
        raise NotFoundError(
            "Variant not found",
            details={"variant_id": missing[0]} if len(missing) == 1 else {"variant_ids": missing},
        )
    return found


def compute_on_hand(variant_id: int) -> int:
    """
    Sum every ledger entry for the variant.

    Pending entries in the current session are flushed first (autoflush),
    so a caller inside a write transaction sees its own inserts.
    """
    total = (
        db.session.query(func.coalesce(func.sum(StockLedgerEntry.quantity_change), 0))
        .filter(StockLedgerEntry.variant_id == variant_id)
        .scalar()
    )
    on_hand = int(total or 0)
    if on_hand < 0:
        _report_negative(variant_id, on_hand)
    return on_hand


def compute_on_hand_bulk(variant_ids) -> dict[int, int]:
    """On-hand for many variants in one aggregate query. Missing ledgers read as 0."""
    ids = list(set(variant_ids))
    if not ids:
        return {}

    rows = (
        db.session.query(
            StockLedgerEntry.variant_id,
            func.coalesce(func.sum(StockLedgerEntry.quantity_change), 0),
        )
        .filter(StockLedgerEntry.variant_id.in_(ids))
        .group_by(StockLedgerEntry.variant_id)
        .all()
    )
    totals = {variant_id: 0 for variant_id in ids}
    for variant_id, total in rows:
        totals[variant_id] = int(total)
        if totals[variant_id] < 0:
            _report_negative(variant_id, totals[variant_id])
    return totals


def variants_with_initial_count(variant_ids) -> set[int]:
    """The subset of variant_ids that already carry an INITIAL_COUNT entry."""
    ids = list(set(variant_ids))
    if not ids:
        return set()
    rows = (
        db.session.query(StockLedgerEntry.variant_id)
        .filter(
            StockLedgerEntry.variant_id.in_(ids),
            StockLedgerEntry.type == StockLedgerType.INITIAL_COUNT,
        )
        .distinct()
        .all()
    )
    return {variant_id for (variant_id,) in rows}


def append_entry(
    *,
    variant_id: int,
    quantity_change: int,
    type,
    reason: str | None = None,
    reference: str | None = None,
    actor_id: int | None = None,
) -> StockLedgerEntry:
    """
    Insert one immutable ledger row inside the caller's transaction.

    Does not commit and does not check stock; callers that decrement must
    hold the variant lock and check on-hand first.
    """
    ledger_type = coerce_enum(StockLedgerType, type, "type", error_cls=InvalidTypeError)
    change = enforce_maximum(coerce_int(quantity_change, "quantity_change"), "quantity_change")
    if change == 0:
        raise ValidationError(
            "quantity_change cannot be zero",
            details={"variant_id": variant_id},
        )

    entry = StockLedgerEntry(
        variant_id=variant_id,
        quantity_change=change,
        type=ledger_type,
        reason=optional_text(reason),
        reference=optional_text(reference),
        recorded_by_user_id=actor_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def encode_cursor(entry: StockLedgerEntry) -> str:
    return f"{to_utc_z(entry.created_at)}|{entry.id}"


def decode_cursor(cursor: str) -> tuple[datetime, int]:
    try:
        stamp, _, raw_id = cursor.rpartition("|")
        created_at = parse_iso_datetime(stamp)
        entry_id = int(raw_id)
    except (AttributeError, ValueError):
        raise ValidationError("Invalid cursor", details={"cursor": cursor}) from None
    if created_at is None:
        raise ValidationError("Invalid cursor", details={"cursor": cursor})
    return created_at, entry_id


def _resolve_limit(limit) -> int:
    default_size = int(current_app.config.get("LEDGER_PAGE_SIZE", 50))
    max_size = int(current_app.config.get("LEDGER_MAX_PAGE_SIZE", 200))
    if limit is None or limit == "":
        return default_size
    size = require_positive_int(limit, "limit")
    return min(size, max_size)


def list_entries(
    variant_id: int,
    *,
    type=None,
    reason: str | None = None,
    date_from=None,
    date_to=None,
    limit=None,
    cursor: str | None = None,
) -> LedgerPage:
    """
    Newest-first page of ledger entries for a variant.

    Ordering is (created_at DESC, id DESC). Pages are keyset-paginated on
    that pair, so entries appended between page fetches never shift or
    duplicate rows on later pages. date_from/date_to are inclusive.
    """
    require_variant(variant_id)

    page_size = _resolve_limit(limit)
    start = coerce_datetime(date_from, "from")
    end = coerce_datetime(date_to, "to")
    if start and end and start > end:
        raise ValidationError("from must be before to", details={"from": to_utc_z(start), "to": to_utc_z(end)})

    query = db.session.query(StockLedgerEntry).filter(StockLedgerEntry.variant_id == variant_id)

    if type not in (None, ""):
        ledger_type = coerce_enum(StockLedgerType, type, "type", error_cls=InvalidTypeError)
        query = query.filter(StockLedgerEntry.type == ledger_type)
    reason_filter = optional_text(reason)
    if reason_filter:
        query = query.filter(StockLedgerEntry.reason == reason_filter)
    if start:
        query = query.filter(StockLedgerEntry.created_at >= start)
    if end:
        query = query.filter(StockLedgerEntry.created_at <= end)
    if cursor:
        cursor_at, cursor_id = decode_cursor(cursor)
        query = query.filter(
            or_(
                StockLedgerEntry.created_at < cursor_at,
                and_(StockLedgerEntry.created_at == cursor_at, StockLedgerEntry.id < cursor_id),
            )
        )

    rows = (
        query.order_by(StockLedgerEntry.created_at.desc(), StockLedgerEntry.id.desc())
        .limit(page_size + 1)
        .all()
    )
    has_more = len(rows) > page_size
    entries = rows[:page_size]

    reasons = [
        value
        for (value,) in db.session.query(StockLedgerEntry.reason)
        .filter(StockLedgerEntry.variant_id == variant_id, StockLedgerEntry.reason.isnot(None))
        .distinct()
        .order_by(StockLedgerEntry.reason)
        .all()
    ]

    return LedgerPage(
        variant_id=variant_id,
        on_hand=compute_on_hand(variant_id),
        entries=entries,
        next_cursor=encode_cursor(entries[-1]) if has_more and entries else None,
        available_reasons=reasons,
    )


def record_adjustment(
    *,
    variant_id: int,
    reason_code: str,
    quantity,
    note: str | None = None,
    actor_id: int | None = None,
) -> tuple[StockLedgerEntry, int]:
    """
    Remove stock for a damaged/lost reason.

    Returns (entry, on_hand_after). The on-hand check and the insert run
    under the variant's row lock in one transaction.
    """
    variant_id = coerce_int(variant_id, "variant_id")
    code = (reason_code or "").strip().lower() if isinstance(reason_code, str) else None
    if code not in ADJUSTMENT_REASON_CODES:
        raise ValidationError(
            f"reason_code must be one of: {', '.join(ADJUSTMENT_REASON_CODES)}",
            details={"field": "reason_code", "allowed": list(ADJUSTMENT_REASON_CODES)},
        )
    qty = require_positive_int(quantity, "quantity")

    def _op():
        begin_write_transaction()
        lock_variants([variant_id])

        on_hand = compute_on_hand(variant_id)
        if on_hand - qty < 0:
            raise InsufficientStockError(
                "Adjustment would make on-hand negative",
                details={
                    "items": [{"variant_id": variant_id, "requested_quantity": qty, "on_hand": on_hand}],
                },
            )

        entry = append_entry(
            variant_id=variant_id,
            quantity_change=-qty,
            type=StockLedgerType.ADJUSTMENT,
            reason=code,
            reference=note,
            actor_id=actor_id,
        )
        return entry, on_hand - qty

    entry, on_hand = run_atomic(_op, operation="record_adjustment")
    logger.info(
        "Adjustment recorded: variant=%s reason=%s change=%s on_hand=%s",
        variant_id, entry.reason, entry.quantity_change, on_hand,
    )
    return entry, on_hand


def record_initial_count(
    *,
    variant_id: int,
    quantity,
    reason: str | None = None,
    reference: str | None = None,
    actor_id: int | None = None,
) -> tuple[StockLedgerEntry, int]:
    """
    Seed a variant's stock with its first physical count.

    A variant gets at most one INITIAL_COUNT entry; later corrections are
    adjustments or receipts.
    """
    variant_id = coerce_int(variant_id, "variant_id")
    qty = require_positive_int(quantity, "quantity")

    def _op():
        begin_write_transaction()
        lock_variants([variant_id])

        existing = (
            db.session.query(StockLedgerEntry.id)
            .filter(
                StockLedgerEntry.variant_id == variant_id,
                StockLedgerEntry.type == StockLedgerType.INITIAL_COUNT,
            )
            .first()
        )
        if existing:
            raise InitialCountExistsError(
                "Initial stock has already been recorded for this variant",
                details={"variant_id": variant_id, "entry_id": existing[0]},
            )

        entry = append_entry(
            variant_id=variant_id,
            quantity_change=qty,
            type=StockLedgerType.INITIAL_COUNT,
            reason=reason,
            reference=reference,
            actor_id=actor_id,
        )
        return entry, compute_on_hand(variant_id)

    entry, on_hand = run_atomic(_op, operation="record_initial_count")
    logger.info("Initial count recorded: variant=%s quantity=%s on_hand=%s", variant_id, qty, on_hand)
    return entry, on_hand


def find_integrity_violations() -> list[tuple[int, int]]:
    """Every variant whose computed on-hand is negative, as (variant_id, on_hand)."""
    total = func.sum(StockLedgerEntry.quantity_change)
    rows = (
        db.session.query(StockLedgerEntry.variant_id, total)
        .group_by(StockLedgerEntry.variant_id)
        .having(total < 0)
        .order_by(StockLedgerEntry.variant_id)
        .all()
    )
    violations = [(variant_id, int(on_hand)) for variant_id, on_hand in rows]
    for variant_id, on_hand in violations:
        _report_negative(variant_id, on_hand)
    return violations
