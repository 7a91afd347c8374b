"""
Stock ledger engine tests.

Verifies:
- On-hand is the sum of ledger entries, never clamped
- Entries are append-only (ORM update/delete raise)
- Adjustments and initial counts validate and lock correctly
- Ledger listing is newest-first and keyset pagination is lossless
"""

import logging
from datetime import timedelta

import pytest

from retailpos.errors import (
    ImmutableRecordError,
    InitialCountExistsError,
    InsufficientStockError,
    InvalidTypeError,
    NotFoundError,
    ValidationError,
)
from retailpos.models import StockLedgerEntry, StockLedgerType
from retailpos.services import ledger_service
from retailpos.time_utils import utcnow
from retailpos.validation import MAX_QUANTITY


def _entries_for(db_session, variant_id):
    return (
        db_session.query(StockLedgerEntry)
        .filter_by(variant_id=variant_id)
        .order_by(StockLedgerEntry.id)
        .all()
    )


# =============================================================================
# ON-HAND
# =============================================================================


class TestComputeOnHand:

    def test_sum_of_entries(self, db_session, variant):
        assert ledger_service.compute_on_hand(variant.id) == 10

        ledger_service.append_entry(variant_id=variant.id, quantity_change=5, type=StockLedgerType.RECEIPT)
        ledger_service.append_entry(variant_id=variant.id, quantity_change=-3, type="sale")
        db_session.commit()

        assert ledger_service.compute_on_hand(variant.id) == 12

    def test_variant_without_entries_is_zero(self, db_session, empty_variant):
        assert ledger_service.compute_on_hand(empty_variant.id) == 0

    def test_negative_sum_is_reported_not_clamped(self, db_session, empty_variant, caplog):
        # Written around the service to simulate a writer that skipped the check
        db_session.add(StockLedgerEntry(
            variant_id=empty_variant.id, quantity_change=-2, type=StockLedgerType.ADJUSTMENT,
        ))
        db_session.commit()

        with caplog.at_level(logging.ERROR, logger="retailpos.services.ledger_service"):
            assert ledger_service.compute_on_hand(empty_variant.id) == -2

        assert "integrity alarm" in caplog.text
        assert ledger_service.find_integrity_violations() == [(empty_variant.id, -2)]

    def test_bulk_matches_single(self, db_session, variant, other_variant, empty_variant):
        totals = ledger_service.compute_on_hand_bulk([variant.id, other_variant.id, empty_variant.id])
        assert totals == {variant.id: 10, other_variant.id: 4, empty_variant.id: 0}


# =============================================================================
# APPEND / IMMUTABILITY
# =============================================================================


class TestAppendEntry:

    def test_zero_change_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            ledger_service.append_entry(variant_id=variant.id, quantity_change=0, type=StockLedgerType.RECEIPT)

    def test_non_integer_change_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            ledger_service.append_entry(variant_id=variant.id, quantity_change=1.5, type=StockLedgerType.RECEIPT)

    def test_unknown_type_rejected(self, db_session, variant):
        with pytest.raises(InvalidTypeError):
            ledger_service.append_entry(variant_id=variant.id, quantity_change=1, type="TRANSFER")

    @pytest.mark.parametrize("change", [MAX_QUANTITY + 1, -(MAX_QUANTITY + 1), 2**63])
    def test_oversized_change_rejected(self, db_session, variant, change):
        with pytest.raises(ValidationError) as exc:
            ledger_service.append_entry(variant_id=variant.id, quantity_change=change, type=StockLedgerType.RECEIPT)
        assert exc.value.details["field"] == "quantity_change"

    def test_entry_cannot_be_updated(self, db_session, variant):
        entry = _entries_for(db_session, variant.id)[0]
        entry.quantity_change = 99
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        assert ledger_service.compute_on_hand(variant.id) == 10

    def test_entry_cannot_be_deleted(self, db_session, variant):
        entry = _entries_for(db_session, variant.id)[0]
        db_session.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db_session.flush()
        db_session.rollback()

        assert len(_entries_for(db_session, variant.id)) == 1


# =============================================================================
# ADJUSTMENTS
# =============================================================================


class TestRecordAdjustment:

    def test_damaged_adjustment(self, db_session, variant, owner):
        # on-hand 7 first, then damaged x2 -> 5
        ledger_service.append_entry(variant_id=variant.id, quantity_change=-3, type=StockLedgerType.SALE)
        db_session.commit()

        entry, on_hand = ledger_service.record_adjustment(
            variant_id=variant.id, reason_code="damaged", quantity=2, note="water leak", actor_id=owner.id,
        )

        assert on_hand == 5
        assert ledger_service.compute_on_hand(variant.id) == 5
        assert entry.type == StockLedgerType.ADJUSTMENT
        assert entry.quantity_change == -2
        assert entry.reason == "damaged"
        assert entry.reference == "water leak"
        assert entry.recorded_by_user_id == owner.id

    def test_reason_code_is_case_insensitive(self, db_session, variant):
        entry, _ = ledger_service.record_adjustment(variant_id=variant.id, reason_code=" LOST ", quantity=1)
        assert entry.reason == "lost"

    def test_adjustment_to_exactly_zero(self, db_session, variant):
        _, on_hand = ledger_service.record_adjustment(variant_id=variant.id, reason_code="lost", quantity=10)
        assert on_hand == 0

    def test_adjustment_below_zero_rejected(self, db_session, variant):
        with pytest.raises(InsufficientStockError) as exc:
            ledger_service.record_adjustment(variant_id=variant.id, reason_code="lost", quantity=11)

        assert exc.value.details["items"][0] == {
            "variant_id": variant.id, "requested_quantity": 11, "on_hand": 10,
        }
        assert len(_entries_for(db_session, variant.id)) == 1
        assert ledger_service.compute_on_hand(variant.id) == 10

    @pytest.mark.parametrize("reason_code", ["stolen", "", None, "correction"])
    def test_unknown_reason_rejected(self, db_session, variant, reason_code):
        with pytest.raises(ValidationError):
            ledger_service.record_adjustment(variant_id=variant.id, reason_code=reason_code, quantity=1)

    @pytest.mark.parametrize("quantity", [0, -1, "2.5", True, None])
    def test_non_positive_quantity_rejected(self, db_session, variant, quantity):
        with pytest.raises(ValidationError):
            ledger_service.record_adjustment(variant_id=variant.id, reason_code="damaged", quantity=quantity)

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.record_adjustment(variant_id=9999, reason_code="damaged", quantity=1)

    def test_accepts_digit_string_variant_id(self, db_session, variant):
        entry, on_hand = ledger_service.record_adjustment(variant_id=str(variant.id), reason_code="lost", quantity=1)
        assert entry.variant_id == variant.id
        assert on_hand == 9

    def test_out_of_range_variant_id(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.record_adjustment(variant_id=2**63, reason_code="lost", quantity=1)


# =============================================================================
# INITIAL COUNT
# =============================================================================


class TestRecordInitialCount:

    def test_seeds_stock(self, db_session, empty_variant):
        entry, on_hand = ledger_service.record_initial_count(
            variant_id=empty_variant.id, quantity=25, reference="count-sheet-7",
        )

        assert on_hand == 25
        assert entry.type == StockLedgerType.INITIAL_COUNT
        assert entry.quantity_change == 25
        assert entry.reference == "count-sheet-7"

    def test_accepts_digit_string_ids(self, db_session, empty_variant):
        _, on_hand = ledger_service.record_initial_count(variant_id=str(empty_variant.id), quantity="3")
        assert on_hand == 3

    def test_second_initial_count_rejected(self, db_session, variant):
        with pytest.raises(InitialCountExistsError):
            ledger_service.record_initial_count(variant_id=variant.id, quantity=5)
        assert ledger_service.compute_on_hand(variant.id) == 10

    @pytest.mark.parametrize("quantity", [0, -4])
    def test_non_positive_quantity_rejected(self, db_session, empty_variant, quantity):
        with pytest.raises(ValidationError):
            ledger_service.record_initial_count(variant_id=empty_variant.id, quantity=quantity)
        assert _entries_for(db_session, empty_variant.id) == []

    @pytest.mark.parametrize("quantity", [2**63, str(2**70), MAX_QUANTITY + 1])
    def test_oversized_quantity_rejected(self, db_session, empty_variant, quantity):
        with pytest.raises(ValidationError) as exc:
            ledger_service.record_initial_count(variant_id=empty_variant.id, quantity=quantity)

        assert exc.value.details["field"] == "quantity"
        assert _entries_for(db_session, empty_variant.id) == []

    def test_largest_quantity_accepted(self, db_session, empty_variant):
        _, on_hand = ledger_service.record_initial_count(variant_id=empty_variant.id, quantity=MAX_QUANTITY)
        assert on_hand == MAX_QUANTITY


# =============================================================================
# LISTING / PAGINATION
# =============================================================================


class TestListEntries:

    @pytest.fixture
    def busy_variant(self, db_session, empty_variant):
        """Seven entries an hour old with distinct, increasing timestamps."""
        base = utcnow() - timedelta(hours=1)
        changes = [
            (10, StockLedgerType.INITIAL_COUNT, "initial"),
            (5, StockLedgerType.RECEIPT, "purchase"),
            (-1, StockLedgerType.SALE, None),
            (-2, StockLedgerType.ADJUSTMENT, "damaged"),
            (-1, StockLedgerType.SALE, None),
            (3, StockLedgerType.RECEIPT, "purchase"),
            (-1, StockLedgerType.ADJUSTMENT, "lost"),
        ]
        for offset, (change, kind, reason) in enumerate(changes):
            db_session.add(StockLedgerEntry(
                variant_id=empty_variant.id,
                quantity_change=change,
                type=kind,
                reason=reason,
                created_at=base + timedelta(minutes=offset),
            ))
        db_session.commit()
        return empty_variant

    def test_newest_first_with_on_hand(self, db_session, busy_variant):
        page = ledger_service.list_entries(busy_variant.id)

        assert page.on_hand == 13
        assert [e.quantity_change for e in page.entries] == [-1, 3, -1, -2, -1, 5, 10]
        assert page.next_cursor is None
        assert page.available_reasons == ["damaged", "initial", "lost", "purchase"]

    def test_cursor_pages_cover_everything_once(self, db_session, busy_variant):
        seen = []
        cursor = None
        while True:
            page = ledger_service.list_entries(busy_variant.id, limit=3, cursor=cursor)
            seen.extend(entry.id for entry in page.entries)
            cursor = page.next_cursor
            if cursor is None:
                break

        all_ids = [e.id for e in _entries_for(db_session, busy_variant.id)]
        assert sorted(seen) == sorted(all_ids)
        assert len(seen) == len(set(seen))

    def test_appends_between_pages_do_not_shift_later_pages(self, db_session, busy_variant):
        first = ledger_service.list_entries(busy_variant.id, limit=4)
        ledger_service.append_entry(variant_id=busy_variant.id, quantity_change=1, type=StockLedgerType.RECEIPT)
        db_session.commit()

        second = ledger_service.list_entries(busy_variant.id, limit=4, cursor=first.next_cursor)

        assert [e.quantity_change for e in second.entries] == [-1, 5, 10]
        assert second.next_cursor is None

    def test_filter_by_type_and_reason(self, db_session, busy_variant):
        sales = ledger_service.list_entries(busy_variant.id, type="sale")
        assert {e.type for e in sales.entries} == {StockLedgerType.SALE}
        assert len(sales.entries) == 2

        damaged = ledger_service.list_entries(busy_variant.id, reason="damaged")
        assert [e.quantity_change for e in damaged.entries] == [-2]

    def test_date_range_is_inclusive(self, db_session, busy_variant):
        entries = _entries_for(db_session, busy_variant.id)
        start, end = entries[2].created_at, entries[4].created_at

        page = ledger_service.list_entries(busy_variant.id, date_from=start, date_to=end)

        assert [e.id for e in page.entries] == [entries[4].id, entries[3].id, entries[2].id]

    def test_limit_capped_by_config(self, app, db_session, busy_variant):
        app.config["LEDGER_MAX_PAGE_SIZE"] = 2
        try:
            page = ledger_service.list_entries(busy_variant.id, limit=50)
        finally:
            app.config["LEDGER_MAX_PAGE_SIZE"] = 200
        assert len(page.entries) == 2
        assert page.next_cursor is not None

    def test_invalid_type_filter(self, db_session, variant):
        with pytest.raises(InvalidTypeError):
            ledger_service.list_entries(variant.id, type="RETURN")

    def test_invalid_cursor(self, db_session, variant):
        with pytest.raises(ValidationError):
            ledger_service.list_entries(variant.id, cursor="not-a-cursor")

    def test_reversed_range_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            ledger_service.list_entries(
                variant.id, date_from="2026-02-01T00:00:00Z", date_to="2026-01-01T00:00:00Z",
            )

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.list_entries(424242)
