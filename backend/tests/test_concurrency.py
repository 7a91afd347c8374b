import os
import sqlite3
import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import timedelta

from retailpos import create_app
from retailpos.errors import ConcurrencyConflictError, InsufficientStockError
from retailpos.extensions import db
from retailpos.models import (
    Brand,
    Product,
    Sale,
    SessionToken,
    StockLedgerEntry,
    StockLedgerType,
    Supplier,
    UserRole,
    Variant,
)
from retailpos.services import auth_service, ledger_service, purchasing_service, sales_service
from retailpos.time_utils import utcnow


class ConcurrentStockWriterTests(unittest.TestCase):
    """
    Real threads against a file-backed SQLite database.

    An in-memory database shares one connection across threads, which would
    hide lost updates, so each test run gets its own temp file.
    """

    @classmethod
    def setUpClass(cls):
        fd, cls.db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(fd)
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_path}",
            "LOCK_TIMEOUT_MS": 10000,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        cls.ctx.pop()
        os.remove(cls.db_path)

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        brand = Brand(name="Acme")
        db.session.add(brand)
        db.session.flush()
        product = Product(brand_id=brand.id, name="Hoodie")
        db.session.add(product)
        db.session.flush()
        self.variant_a = Variant(product_id=product.id, sku="HOOD-A", price_cents=4000)
        self.variant_b = Variant(product_id=product.id, sku="HOOD-B", price_cents=4500)
        db.session.add_all([self.variant_a, self.variant_b])
        db.session.flush()
        self.variant_a_id = self.variant_a.id
        self.variant_b_id = self.variant_b.id
        db.session.commit()

    def _seed(self, variant_id, quantity):
        ledger_service.record_initial_count(variant_id=variant_id, quantity=quantity)

    def _run_concurrently(self, jobs):
        """Start every job at the same moment; each runs in its own app context and session."""
        barrier = threading.Barrier(len(jobs))

        def worker(job):
            with self.app.app_context():
                barrier.wait()
                try:
                    job()
                    return "ok"
                except InsufficientStockError:
                    return "short"
                except ConcurrencyConflictError:
                    return "conflict"
                finally:
                    db.session.remove()

        with ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            return list(pool.map(worker, jobs))

    def _sell(self, variant_id, quantity=1):
        def job():
            sales_service.complete_sale(
                lines=[{"variant_id": variant_id, "quantity": quantity}],
                payments=[{"method": "cash", "amount_cents": 100000}],
            )
        return job

    def test_concurrent_sales_never_oversell(self):
        self._seed(self.variant_a_id, 3)

        results = self._run_concurrently([self._sell(self.variant_a_id) for _ in range(8)])

        self.assertEqual(results.count("ok"), 3)
        self.assertEqual(results.count("short"), 5)
        self.assertEqual(ledger_service.compute_on_hand(self.variant_a_id), 0)
        self.assertEqual(db.session.query(Sale).count(), 3)
        self.assertEqual(
            db.session.query(StockLedgerEntry).filter_by(type=StockLedgerType.SALE).count(),
            3,
        )

    def test_sales_and_adjustments_keep_on_hand_non_negative(self):
        self._seed(self.variant_a_id, 5)

        def adjust():
            ledger_service.record_adjustment(variant_id=self.variant_a_id, reason_code="damaged", quantity=1)

        jobs = [self._sell(self.variant_a_id, quantity=2) for _ in range(4)] + [adjust for _ in range(4)]
        results = self._run_concurrently(jobs)

        sold = 2 * results[:4].count("ok")
        adjusted = results[4:].count("ok")
        self.assertNotIn("conflict", results)
        self.assertEqual(ledger_service.compute_on_hand(self.variant_a_id), 5 - sold - adjusted)
        self.assertGreaterEqual(ledger_service.compute_on_hand(self.variant_a_id), 0)
        self.assertEqual(ledger_service.find_integrity_violations(), [])

    def test_receipts_and_sales_on_different_variants(self):
        self._seed(self.variant_a_id, 4)
        supplier = Supplier(name="Hoodie Mill")
        db.session.add(supplier)
        db.session.commit()
        order = purchasing_service.create_purchase_order(
            supplier_id=supplier.id,
            items=[{"variant_id": self.variant_b_id, "quantity_ordered": 6}],
        )
        order_id, item_id = order.id, order.items[0].id

        def receive(quantity):
            def job():
                purchasing_service.receive_purchase_order(
                    order_id, entries=[{"item_id": item_id, "quantity_received": quantity}],
                )
            return job

        results = self._run_concurrently(
            [self._sell(self.variant_a_id) for _ in range(4)] + [receive(2) for _ in range(3)]
        )

        self.assertEqual(results, ["ok"] * 7)
        db.session.expire_all()
        self.assertEqual(ledger_service.compute_on_hand(self.variant_a_id), 0)
        self.assertEqual(ledger_service.compute_on_hand(self.variant_b_id), 6)
        order = purchasing_service.get_purchase_order(order_id)
        self.assertEqual(order.status.value, "RECEIVED")
        self.assertEqual(order.items[0].quantity_received, 6)


@contextmanager
def sqlite_write_lock(path):
    """Hold the database write lock from a second connection until the block exits."""
    blocker = sqlite3.connect(path, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        yield blocker
    finally:
        if blocker.in_transaction:
            blocker.execute("ROLLBACK")
        blocker.close()


class LockTimeoutTests(unittest.TestCase):
    """A writer that cannot get the lock within LOCK_TIMEOUT_MS fails with a retryable conflict."""

    PASSWORD = "Password123"

    @classmethod
    def setUpClass(cls):
        fd, cls.db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(fd)
        cls.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_path}",
            "LOCK_TIMEOUT_MS": 200,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()
        cls.bcrypt_rounds = auth_service.BCRYPT_ROUNDS
        auth_service.BCRYPT_ROUNDS = 4

    @classmethod
    def tearDownClass(cls):
        auth_service.BCRYPT_ROUNDS = cls.bcrypt_rounds
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
        cls.ctx.pop()
        os.remove(cls.db_path)

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        brand = Brand(name="Acme")
        db.session.add(brand)
        db.session.flush()
        product = Product(brand_id=brand.id, name="Beanie")
        db.session.add(product)
        db.session.flush()
        variant = Variant(product_id=product.id, sku="BEAN-1", price_cents=1500)
        db.session.add(variant)
        db.session.commit()
        self.variant_id = variant.id
        ledger_service.record_initial_count(variant_id=self.variant_id, quantity=5)

    def _login(self):
        auth_service.create_user(
            email="clerk@store.test", name="Clerk", password=self.PASSWORD, role=UserRole.EMPLOYEE,
        )
        login = self.app.test_client().post(
            "/api/auth/login", json={"email": "clerk@store.test", "password": self.PASSWORD},
        )
        return {"Authorization": f"Bearer {login.json['token']}"}

    def _assert_untouched(self):
        db.session.expire_all()
        self.assertEqual(ledger_service.compute_on_hand(self.variant_id), 5)
        self.assertEqual(db.session.query(Sale).count(), 0)
        self.assertEqual(db.session.query(StockLedgerEntry).count(), 1)

    def test_sale_times_out_without_writing(self):
        with sqlite_write_lock(self.db_path):
            with self.assertRaises(ConcurrencyConflictError) as caught:
                sales_service.complete_sale(
                    lines=[{"variant_id": self.variant_id, "quantity": 2}],
                    payments=[{"method": "cash", "amount_cents": 5000}],
                )

        self.assertTrue(caught.exception.retryable)
        self.assertEqual(caught.exception.details, {"operation": "complete_sale"})
        self._assert_untouched()

    def test_adjustment_times_out_without_writing(self):
        with sqlite_write_lock(self.db_path):
            with self.assertRaises(ConcurrencyConflictError):
                ledger_service.record_adjustment(variant_id=self.variant_id, reason_code="lost", quantity=1)

        self._assert_untouched()

    def test_writes_succeed_once_lock_is_released(self):
        with sqlite_write_lock(self.db_path):
            pass

        _, on_hand = ledger_service.record_adjustment(variant_id=self.variant_id, reason_code="lost", quantity=1)
        self.assertEqual(on_hand, 4)

    def test_sale_route_returns_retryable_conflict(self):
        headers = self._login()
        client = self.app.test_client()

        with sqlite_write_lock(self.db_path):
            resp = client.post(
                "/api/sales",
                json={
                    "items": [{"variant_id": self.variant_id, "quantity": 1}],
                    "payments": [{"method": "cash", "amount_cents": 1500}],
                },
                headers=headers,
            )

        self.assertEqual(resp.status_code, 409)
        self.assertIs(resp.json["retryable"], True)
        self.assertEqual(resp.json["details"]["operation"], "complete_sale")
        db.session.expire_all()
        self.assertEqual(ledger_service.compute_on_hand(self.variant_id), 5)
        self.assertEqual(db.session.query(Sale).count(), 0)

    def test_stale_session_touch_returns_retryable_conflict(self):
        headers = self._login()
        db.session.query(SessionToken).update({"last_used_at": utcnow() - timedelta(minutes=5)})
        db.session.commit()

        with sqlite_write_lock(self.db_path):
            resp = self.app.test_client().get("/api/auth/me", headers=headers)

        self.assertEqual(resp.status_code, 409)
        self.assertIs(resp.json["retryable"], True)
        self.assertEqual(self.app.test_client().get("/api/auth/me", headers=headers).status_code, 200)


if __name__ == "__main__":
    unittest.main()
