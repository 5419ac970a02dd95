"""
Pytest fixtures for barpos backend tests.

Provides test database setup, operators with auth headers, and catalog
factories for unit products, barrels and fractioned products.
"""

import pytest

from barpos import create_app
from barpos.extensions import db
from barpos.models.catalog import PRODUCT_TYPE_UNIT, PRODUCT_TYPE_FRACTIONED
from barpos.services import barrel_service, products_service
from barpos.services.auth_service import create_user
from barpos.services.cart import parse_cart


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Create an ADMIN operator."""
    return create_user(
        name="Admin",
        email="admin@bar.local",
        password=TEST_PASSWORD,
        role="ADMIN",
        bcrypt_rounds=4,
    )


@pytest.fixture(scope='function')
def cashier_user(db_session):
    """Create a USER (cashier) operator."""
    return create_user(
        name="Cashier",
        email="cashier@bar.local",
        password=TEST_PASSWORD,
        role="USER",
        bcrypt_rounds=4,
    )


def get_auth_token(client, email: str, password: str) -> str:
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
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin@bar.local", TEST_PASSWORD))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, "cashier@bar.local", TEST_PASSWORD))


@pytest.fixture(scope='function')
def make_unit_product(db_session):
    """Factory: UNIT product with an Inventory row."""
    def _make(name="Long Neck", price_cents=1000, quantity=5, min_quantity=0, barcode=None):
        return products_service.create_product(patch={
            "name": name,
            "price_cents": price_cents,
            "product_type": PRODUCT_TYPE_UNIT,
            "barcode": barcode,
            "initial_quantity": quantity,
            "min_quantity": min_quantity,
        })
    return _make


@pytest.fixture(scope='function')
def make_barrel(db_session):
    """Factory: ACTIVE barrel, optionally partially drawn."""
    def _make(name="Pilsen Keg", volume_total_ml=1000, volume_available_ml=None, min_residue_ml=50):
        barrel = barrel_service.create_barrel(
            name=name,
            volume_total_ml=volume_total_ml,
            min_residue_ml=min_residue_ml,
        )
        if volume_available_ml is not None:
            barrel.volume_available_ml = volume_available_ml
            db_session.commit()
        return barrel
    return _make


@pytest.fixture(scope='function')
def make_fractioned_product(db_session):
    """Factory: FRACTIONED product drawing from `barrel`."""
    def _make(barrel, name="Draft Pilsen 300ml", price_cents=800, volume_per_dispense_ml=300):
        return products_service.create_product(patch={
            "name": name,
            "price_cents": price_cents,
            "product_type": PRODUCT_TYPE_FRACTIONED,
            "volume_per_dispense_ml": volume_per_dispense_ml,
            "barrel_id": barrel.id,
        })
    return _make


def _build_cart(*lines, payment_method="CASH", discount=None):
    payload = {
        "items": [
            {"product_id": product_id, "quantity": quantity, "price": price}
            for product_id, quantity, price in lines
        ],
        "payment_method": payment_method,
    }
    if discount is not None:
        payload["discount"] = discount
    return parse_cart(payload)


@pytest.fixture(scope='function')
def make_cart():
    """Factory: parsed Cart from (product_id, quantity, price) tuples."""
    return _build_cart
