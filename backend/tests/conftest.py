"""
Pytest fixtures for retailpos backend tests.

Provides test database setup, catalog fixtures with seeded stock, staff
users and an authenticated test client.
"""

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Brand, Product, StockLedgerEntry, StockLedgerType, Supplier, User, UserRole, Variant
from retailpos.services import auth_service


TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORE_NAME': 'Test Store',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """bcrypt at cost 12 makes every user fixture slow; tests only need a valid hash."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Core DELETE bypasses the ORM immutability events on ledger rows
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def brand(db_session):
    brand = Brand(name="Acme Apparel")
    db_session.add(brand)
    db_session.commit()
    return brand


@pytest.fixture(scope='function')
def product(db_session, brand):
    product = Product(brand_id=brand.id, name="Crew Tee", category="Shirts")
    db_session.add(product)
    db_session.commit()
    return product


def make_variant(db_session, product, sku, *, price_cents=1000, cost_cents=400, barcode=None, on_hand=0):
    """Create a variant and, when on_hand > 0, seed it with an INITIAL_COUNT entry."""
    variant = Variant(
        product_id=product.id,
        sku=sku,
        barcode=barcode,
        size="M",
        color="Black",
        price_cents=price_cents,
        cost_cents=cost_cents,
    )
    db_session.add(variant)
    db_session.flush()
    if on_hand:
        db_session.add(StockLedgerEntry(
            variant_id=variant.id,
            quantity_change=on_hand,
            type=StockLedgerType.INITIAL_COUNT,
            reason="initial",
        ))
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def variant(db_session, product):
    """Variant X: price 1000, on-hand 10 via one INITIAL_COUNT entry."""
    return make_variant(db_session, product, "TEE-M-BLK", barcode="0001112223334", on_hand=10)


@pytest.fixture(scope='function')
def other_variant(db_session, product):
    """Variant Y: price 2500, on-hand 4."""
    return make_variant(db_session, product, "TEE-L-WHT", price_cents=2500, on_hand=4)


@pytest.fixture(scope='function')
def empty_variant(db_session, product):
    """Variant with no ledger entries at all."""
    return make_variant(db_session, product, "TEE-S-RED", price_cents=1500)


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Northwind Textiles", email="orders@northwind.test")
    db_session.add(supplier)
    db_session.commit()
    return supplier


def make_user(db_session, email, role):
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        role=role,
        password_hash=auth_service.hash_password(TEST_PASSWORD),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    return make_user(db_session, "owner@store.test", UserRole.OWNER)


@pytest.fixture(scope='function')
def employee(db_session):
    return make_user(db_session, "clerk@store.test", UserRole.EMPLOYEE)


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(client, owner):
    return auth_headers(get_auth_token(client, owner.email))


@pytest.fixture(scope='function')
def employee_headers(client, employee):
    return auth_headers(get_auth_token(client, employee.email))
