"""
Sale settlement tests.

Verifies:
- A settled sale writes one SALE ledger entry per line and its payments
- An insufficient-stock cart writes nothing and names every short variant
- Totals: capped line discounts, sale discount, tax, change due
- Payment and input validation happen before anything is written
"""

import pytest

from conftest import make_variant
from retailpos.errors import (
    EmptyCartError,
    InsufficientPaymentError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from retailpos.models import Payment, Sale, SaleItem, StockLedgerEntry, StockLedgerType
from retailpos.services import ledger_service, sales_service
from retailpos.services.sales_service import CartLine, PaymentInput
from retailpos.validation import MAX_PRICE_CENTS, MAX_QUANTITY


def _sale_entries(db_session):
    return db_session.query(StockLedgerEntry).filter_by(type=StockLedgerType.SALE).all()


def _assert_nothing_written(db_session):
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleItem).count() == 0
    assert db_session.query(Payment).count() == 0
    assert _sale_entries(db_session) == []


class TestCompleteSale:

    def test_simple_sale_decrements_on_hand(self, db_session, variant, employee):
        sale = sales_service.complete_sale(
            lines=[{"variant_id": variant.id, "quantity": 3}],
            payments=[{"method": "cash", "amount_cents": 3000}],
            actor_id=employee.id,
        )

        assert ledger_service.compute_on_hand(variant.id) == 7
        entries = _sale_entries(db_session)
        assert len(entries) == 1
        assert entries[0].quantity_change == -3
        assert entries[0].reference == f"sale:{sale.id}"
        assert entries[0].recorded_by_user_id == employee.id

        assert sale.subtotal_cents == 3000
        assert sale.total_cents == 3000
        assert sale.change_due_cents == 0
        assert sale.recorded_by_user_id == employee.id
        assert [item.ledger_entry_id for item in sale.items] == [entries[0].id]

    def test_totals_with_discounts_tax_and_change(self, db_session, variant, other_variant):
        sale = sales_service.complete_sale(
            lines=[
                {"variant_id": variant.id, "quantity": 2, "discount_cents": 300},
                {"variant_id": other_variant.id, "quantity": 1, "unit_price_cents": 2000},
            ],
            payments=[
                {"method": "Card", "amount_cents": 2500},
                {"method": "cash", "amount_cents": 2000},
            ],
            sale_discount_cents=200,
            tax_cents=150,
        )

        # subtotal 2*1000 + 2000; discounts 300 + 200; +150 tax
        assert sale.subtotal_cents == 4000
        assert sale.discount_total_cents == 500
        assert sale.tax_total_cents == 150
        assert sale.total_cents == 3650
        assert sale.total_paid_cents == 4500
        assert sale.change_due_cents == 850

        assert [item.unit_price_cents for item in sale.items] == [1000, 2000]
        assert [item.line_total_cents for item in sale.items] == [1700, 2000]
        assert [p.method for p in sale.payments] == ["card", "cash"]

    def test_line_discount_capped_at_line_subtotal(self, db_session, variant):
        sale = sales_service.complete_sale(
            lines=[{"variant_id": variant.id, "quantity": 1, "discount_cents": 5000}],
            payments=[],
        )

        assert sale.items[0].discount_cents == 1000
        assert sale.discount_total_cents == 1000
        assert sale.total_cents == 0

    def test_repeated_variant_aggregated_for_stock_check(self, db_session, other_variant):
        # on-hand 4: 3 + 2 across two lines is short even though each line fits
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.complete_sale(
                lines=[
                    {"variant_id": other_variant.id, "quantity": 3},
                    {"variant_id": other_variant.id, "quantity": 2},
                ],
                payments=[{"method": "cash", "amount_cents": 20000}],
            )

        assert exc.value.details["items"] == [{
            "variant_id": other_variant.id,
            "sku": other_variant.sku,
            "requested_quantity": 5,
            "on_hand": 4,
        }]
        _assert_nothing_written(db_session)

    def test_repeated_variant_writes_one_entry_per_line(self, db_session, variant):
        sales_service.complete_sale(
            lines=[{"variant_id": variant.id, "quantity": 1}, {"variant_id": variant.id, "quantity": 2}],
            payments=[{"method": "cash", "amount_cents": 3000}],
        )
        assert sorted(e.quantity_change for e in _sale_entries(db_session)) == [-2, -1]
        assert ledger_service.compute_on_hand(variant.id) == 7

    def test_sell_exactly_on_hand(self, db_session, other_variant):
        sales_service.complete_sale(
            lines=[{"variant_id": other_variant.id, "quantity": 4}],
            payments=[{"method": "cash", "amount_cents": 10000}],
        )
        assert ledger_service.compute_on_hand(other_variant.id) == 0

    def test_accepts_dataclass_and_camel_case_inputs(self, db_session, variant, other_variant):
        sale = sales_service.complete_sale(
            lines=[
                CartLine(variant_id=variant.id, quantity=1, unit_price_cents=None, discount_cents=0),
                {"variantId": other_variant.id, "quantity": 1, "unitPriceCents": 100, "discountCents": 0},
            ],
            payments=[PaymentInput(method="cash", amount_cents=600), {"method": "card", "amountCents": 500}],
        )
        assert sale.total_cents == 1100
        assert sale.total_paid_cents == 1100


class TestCompleteSaleFailures:

    def test_shortfall_names_every_short_variant(self, db_session, variant, other_variant, empty_variant):
        with pytest.raises(InsufficientStockError) as exc:
            sales_service.complete_sale(
                lines=[
                    {"variant_id": variant.id, "quantity": 1},
                    {"variant_id": other_variant.id, "quantity": 5},
                    {"variant_id": empty_variant.id, "quantity": 1},
                ],
                payments=[{"method": "cash", "amount_cents": 100000}],
            )

        short = {item["variant_id"]: item for item in exc.value.details["items"]}
        assert set(short) == {other_variant.id, empty_variant.id}
        assert short[other_variant.id]["on_hand"] == 4
        assert short[empty_variant.id]["requested_quantity"] == 1

        _assert_nothing_written(db_session)
        assert ledger_service.compute_on_hand(variant.id) == 10

    def test_empty_cart(self, db_session):
        with pytest.raises(EmptyCartError):
            sales_service.complete_sale(lines=[], payments=[{"method": "cash", "amount_cents": 100}])

    def test_underpaid_sale_rejected(self, db_session, variant):
        with pytest.raises(InsufficientPaymentError) as exc:
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": 2}],
                payments=[{"method": "cash", "amount_cents": 1500}],
            )

        assert exc.value.details["short_cents"] == 500
        _assert_nothing_written(db_session)
        assert ledger_service.compute_on_hand(variant.id) == 10

    def test_negative_total_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": 1}],
                payments=[],
                sale_discount_cents=1500,
            )
        _assert_nothing_written(db_session)

    def test_unknown_variant(self, db_session, variant):
        with pytest.raises(NotFoundError):
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": 1}, {"variant_id": 98765, "quantity": 1}],
                payments=[{"method": "cash", "amount_cents": 5000}],
            )
        _assert_nothing_written(db_session)

    def test_variant_without_price(self, db_session, product):
        unpriced = make_variant(db_session, product, "TEE-NOPRICE", price_cents=None, on_hand=3)

        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                lines=[{"variant_id": unpriced.id, "quantity": 1}],
                payments=[{"method": "cash", "amount_cents": 5000}],
            )
        _assert_nothing_written(db_session)

    @pytest.mark.parametrize(
        "line",
        [
            {"quantity": 1},
            {"variant_id": 1, "quantity": 0},
            {"variant_id": 1, "quantity": -2},
            {"variant_id": 1, "quantity": 1.5},
            {"variant_id": 1, "quantity": 1, "unit_price_cents": -1},
            {"variant_id": 1, "quantity": 1, "discount_cents": -10},
            {"variant_id": 1, "quantity": 2**63},
            {"variant_id": 2**63, "quantity": 1},
            {"variant_id": 1, "quantity": 1, "discount_cents": MAX_PRICE_CENTS + 1},
        ],
    )
    def test_invalid_lines(self, db_session, line):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(lines=[line], payments=[])

    @pytest.mark.parametrize(
        "payment",
        [
            {"method": "cash", "amount_cents": -1},
            {"method": "  ", "amount_cents": 100},
            {"amount_cents": 100},
            {"method": "cash"},
            {"method": "cash", "amount_cents": 2**63},
        ],
    )
    def test_invalid_payments(self, db_session, variant, payment):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(lines=[{"variant_id": variant.id, "quantity": 1}], payments=[payment])

    def test_negative_tax_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": 1}],
                payments=[{"method": "cash", "amount_cents": 1000}],
                tax_cents=-5,
            )

    def test_oversized_unit_price_rejected(self, db_session, variant):
        with pytest.raises(ValidationError) as exc:
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": 1, "unit_price_cents": 2**63}],
                payments=[{"method": "cash", "amount_cents": 1000}],
            )

        assert exc.value.details["field"] == "unit_price_cents"
        _assert_nothing_written(db_session)
        assert ledger_service.compute_on_hand(variant.id) == 10

    def test_oversized_quantity_rejected(self, db_session, variant):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                lines=[{"variant_id": variant.id, "quantity": MAX_QUANTITY + 1}],
                payments=[{"method": "cash", "amount_cents": 1000}],
            )
        _assert_nothing_written(db_session)


class TestReceipt:

    def test_receipt_payload(self, db_session, variant, employee):
        sale = sales_service.complete_sale(
            lines=[{"variant_id": variant.id, "quantity": 2, "discount_cents": 100}],
            payments=[{"method": "cash", "amount_cents": 2000}],
            tax_cents=50,
            actor_id=employee.id,
        )

        receipt = sales_service.build_receipt(sale.id)

        assert receipt["store"]["name"] == "Test Store"
        assert receipt["sale"]["recorded_by"]["email"] == employee.email
        assert receipt["items"] == [{
            "variant_id": variant.id,
            "sku": "TEE-M-BLK",
            "product_name": "Crew Tee",
            "quantity": 2,
            "unit_price_cents": 1000,
            "discount_cents": 100,
            "line_total_cents": 1900,
        }]
        assert receipt["payments"][0]["method"] == "cash"
        assert receipt["totals"]["total_cents"] == 1950
        assert receipt["totals"]["payment_total_cents"] == 2000
        assert receipt["totals"]["change_due_cents"] == 50

    def test_missing_sale(self, db_session):
        with pytest.raises(NotFoundError):
            sales_service.build_receipt(31337)
