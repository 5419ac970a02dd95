"""
Concurrent checkout tests.

Two checkouts that each fit the stock on their own, but not together, race
on a file-backed SQLite database (in-memory databases cannot be shared
across connections). Exactly one must commit; the other must be rejected.
"""

import threading

import pytest

from barpos import create_app
from barpos.extensions import db
from barpos.models import Sale, Ticket, Barrel
from barpos.services import barrel_service, products_service, sales_service
from barpos.services.auth_service import create_user
from barpos.services.cart import parse_cart
from barpos.services.inventory_service import get_quantity_on_hand
from barpos.services.sale_errors import InsufficientStock, InsufficientVolume


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'barpos.sqlite3'}",
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(app, payload, user_id, workers=2):
    """Run the same checkout from `workers` threads at once; return outcomes."""
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def sell():
        with app.app_context():
            cart = parse_cart(payload)
            barrier.wait()
            try:
                sales_service.process_sale(cart, user_id)
                outcome = "committed"
            except (InsufficientStock, InsufficientVolume):
                outcome = "rejected"
            except Exception as e:
                outcome = f"error: {e!r}"
            finally:
                db.session.remove()
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=sell) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return sorted(outcomes)


def test_unit_stock_is_never_oversold(file_app):
    with file_app.app_context():
        user = create_user(name="Till", email="till@bar.local", password="Password123!", bcrypt_rounds=4)
        product = products_service.create_product(patch={
            "name": "Long Neck",
            "price_cents": 1000,
            "initial_quantity": 5,
        })
        user_id, product_id = user.id, product.id

    payload = {
        "items": [{"product_id": product_id, "quantity": 3, "price": "10.00"}],
        "payment_method": "CASH",
    }
    outcomes = _race(file_app, payload, user_id)

    assert outcomes == ["committed", "rejected"]
    with file_app.app_context():
        assert get_quantity_on_hand(product_id) == 2
        assert db.session.query(Sale).count() == 1


def test_barrel_volume_is_never_oversold(file_app):
    with file_app.app_context():
        user = create_user(name="Till", email="till@bar.local", password="Password123!", bcrypt_rounds=4)
        barrel = barrel_service.create_barrel(name="Pilsen Keg", volume_total_ml=1000)
        product = products_service.create_product(patch={
            "name": "Draft 300ml",
            "price_cents": 800,
            "product_type": "FRACTIONED",
            "volume_per_dispense_ml": 300,
            "barrel_id": barrel.id,
        })
        user_id, barrel_id, product_id = user.id, barrel.id, product.id

    payload = {
        "items": [{"product_id": product_id, "quantity": 2, "price": "8.00"}],
        "payment_method": "CARD",
    }
    outcomes = _race(file_app, payload, user_id)

    assert outcomes == ["committed", "rejected"]
    with file_app.app_context():
        assert db.session.get(Barrel, barrel_id).volume_available_ml == 400
        assert db.session.query(Ticket).count() == 2
