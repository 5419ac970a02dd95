"""
Sale transaction engine tests.

Verifies:
- Unit and fractioned checkout scenarios (stock, volume, totals, tickets)
- Rejected sales leave stock, barrels and sale tables untouched
- Stock conservation and ticket count invariants on accepted sales
- Conditional decrements catch stock that vanished after validation
- Database failures roll back and surface as TransactionFailed
"""

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from barpos.extensions import db
from barpos.models import Sale, SaleItem, Ticket, Inventory, Barrel, BarrelMovement
from barpos.services import sales_service, barrel_service, products_service
from barpos.services.auth_service import update_user
from barpos.services.cart import InvalidCart
from barpos.services.inventory_service import get_quantity_on_hand
from barpos.services.sales_service import (
    process_sale,
    redeem_ticket,
    get_sale,
    list_sales,
    Unauthorized,
    ProductNotFound,
    ProductInactive,
    InsufficientStock,
    InsufficientVolume,
    TransactionFailed,
    TicketError,
)


def _snapshot():
    """Everything a sale may touch, as plain values."""
    db.session.expire_all()
    return {
        "inventory": {i.product_id: i.quantity for i in db.session.query(Inventory).all()},
        "barrels": {b.id: (b.volume_available_ml, b.status) for b in db.session.query(Barrel).all()},
        "sales": db.session.query(Sale).count(),
        "sale_items": db.session.query(SaleItem).count(),
        "tickets": db.session.query(Ticket).count(),
        "movements": db.session.query(BarrelMovement).count(),
    }


def _barrel_volume(barrel_id):
    return db.session.get(Barrel, barrel_id, populate_existing=True).volume_available_ml


# =============================================================================
# SCENARIOS
# =============================================================================


class TestCheckoutScenarios:

    def test_unit_sale_lowers_stock(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=5)

        result = process_sale(make_cart((p.id, 3, "10.00")), admin_user.id)

        assert result.sale.total_cents == 3000
        assert result.sale.subtotal_cents == 3000
        assert result.sale.discount_cents == 0
        assert result.sale.payment_method == "CASH"
        assert result.tickets_generated == 0
        assert get_quantity_on_hand(p.id) == 2

        assert len(result.items) == 1
        item = result.items[0]
        assert item.quantity == 3
        assert item.unit_price_cents == 1000
        assert item.subtotal_cents == 3000
        assert item.volume_dispensed_ml is None

    def test_fractioned_sale_draws_barrel_and_issues_tickets(
        self, admin_user, make_barrel, make_fractioned_product, make_cart
    ):
        barrel = make_barrel(volume_total_ml=1000)
        f = make_fractioned_product(barrel, volume_per_dispense_ml=300)

        result = process_sale(make_cart((f.id, 2, "8.00")), admin_user.id)

        assert result.sale.total_cents == 1600
        assert _barrel_volume(barrel.id) == 400
        assert result.tickets_generated == 2

        item = result.items[0]
        assert item.volume_dispensed_ml == 600
        assert [t.sequence for t in result.tickets] == [1, 2]
        assert {t.total_tickets for t in result.tickets} == {2}
        assert [t.qr_code for t in result.tickets] == [
            f"{result.sale.id}-{item.id}-1",
            f"{result.sale.id}-{item.id}-2",
        ]
        assert all(t.status == "PENDING" for t in result.tickets)
        assert all(t.barrel_id == barrel.id for t in result.tickets)

        sale_movements = (
            db.session.query(BarrelMovement)
            .filter_by(barrel_id=barrel.id, type="SALE")
            .all()
        )
        assert len(sale_movements) == 1
        assert sale_movements[0].volume_ml == 600
        assert sale_movements[0].reference == f"Sale {result.sale.id}"
        assert sale_movements[0].user_id == admin_user.id

    def test_insufficient_stock_names_requested_and_available(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(name="Tonic", quantity=4)
        before = _snapshot()

        with pytest.raises(InsufficientStock) as exc:
            process_sale(make_cart((p.id, 10, "5.00")), admin_user.id)

        assert exc.value.details["requested_quantity"] == 10
        assert exc.value.details["available_quantity"] == 4
        assert "Tonic" in str(exc.value)
        assert "requested 10" in str(exc.value)
        assert "available 4" in str(exc.value)
        assert _snapshot() == before


# =============================================================================
# REJECTION LEAVES NO TRACE
# =============================================================================


class TestRejectedSales:

    def test_mixed_cart_rejected_on_last_line_changes_nothing(
        self, admin_user, make_unit_product, make_barrel, make_fractioned_product, make_cart
    ):
        p = make_unit_product(quantity=10)
        barrel = make_barrel(volume_total_ml=1000, volume_available_ml=500)
        f = make_fractioned_product(barrel, volume_per_dispense_ml=300)
        before = _snapshot()

        with pytest.raises(InsufficientVolume) as exc:
            process_sale(make_cart((p.id, 2, "10.00"), (f.id, 2, "8.00")), admin_user.id)

        assert exc.value.details["needed_ml"] == 600
        assert exc.value.details["available_ml"] == 500
        assert exc.value.details["barrel_id"] == barrel.id
        assert _snapshot() == before

    def test_unknown_product(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=3)
        before = _snapshot()

        with pytest.raises(ProductNotFound) as exc:
            process_sale(make_cart((p.id, 1, "10.00"), (999999, 1, "1.00")), admin_user.id)

        assert exc.value.details["product_id"] == 999999
        assert exc.value.details["line"] == 2
        assert _snapshot() == before

    def test_inactive_product(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(name="Old Stout", quantity=3)
        products_service.deactivate_product(product_id=p.id)
        before = _snapshot()

        with pytest.raises(ProductInactive) as exc:
            process_sale(make_cart((p.id, 1, "10.00")), admin_user.id)

        assert "Old Stout" in str(exc.value)
        assert _snapshot() == before

    @pytest.mark.parametrize("action", [barrel_service.set_maintenance, barrel_service.close_barrel])
    def test_barrel_not_active(self, admin_user, make_barrel, make_fractioned_product, make_cart, action):
        barrel = make_barrel(volume_total_ml=1000)
        f = make_fractioned_product(barrel)
        action(barrel.id)
        before = _snapshot()

        with pytest.raises(InsufficientVolume) as exc:
            process_sale(make_cart((f.id, 1, "8.00")), admin_user.id)

        assert exc.value.details["barrel_status"] in ("MAINTENANCE", "CLOSED")
        assert _snapshot() == before

    def test_no_actor(self, make_unit_product, make_cart):
        p = make_unit_product(quantity=3)
        before = _snapshot()

        with pytest.raises(Unauthorized):
            process_sale(make_cart((p.id, 1, "10.00")), None)

        assert _snapshot() == before

    def test_inactive_actor(self, cashier_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=3)
        update_user(cashier_user.id, {"is_active": False})

        with pytest.raises(Unauthorized):
            process_sale(make_cart((p.id, 1, "10.00")), cashier_user.id)

        assert get_quantity_on_hand(p.id) == 3

    def test_discount_above_subtotal_rejected(self, make_unit_product, make_cart):
        p = make_unit_product(quantity=3)

        with pytest.raises(InvalidCart):
            make_cart((p.id, 1, "10.00"), discount="10.01")


# =============================================================================
# AGGREGATION
# =============================================================================


class TestAggregatedValidation:

    def test_repeated_product_checked_on_total_quantity(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=5)

        with pytest.raises(InsufficientStock) as exc:
            process_sale(make_cart((p.id, 3, "10.00"), (p.id, 3, "10.00")), admin_user.id)

        assert exc.value.details["requested_quantity"] == 6
        assert exc.value.details["available_quantity"] == 5
        assert get_quantity_on_hand(p.id) == 5

    def test_repeated_product_stored_as_separate_items(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=6)

        result = process_sale(make_cart((p.id, 3, "10.00"), (p.id, 3, "9.00")), admin_user.id)

        assert [i.quantity for i in result.items] == [3, 3]
        assert result.sale.total_cents == 5700
        assert get_quantity_on_hand(p.id) == 0

    def test_products_sharing_a_barrel_checked_on_total_volume(
        self, admin_user, make_barrel, make_fractioned_product, make_cart
    ):
        barrel = make_barrel(volume_total_ml=1000)
        small = make_fractioned_product(barrel, name="Draft 300", volume_per_dispense_ml=300)
        large = make_fractioned_product(barrel, name="Draft 500", volume_per_dispense_ml=500)

        with pytest.raises(InsufficientVolume) as exc:
            process_sale(make_cart((small.id, 2, "8.00"), (large.id, 1, "12.00")), admin_user.id)

        assert exc.value.details["needed_ml"] == 1100
        assert _barrel_volume(barrel.id) == 1000

        process_sale(make_cart((small.id, 1, "8.00"), (large.id, 1, "12.00")), admin_user.id)
        assert _barrel_volume(barrel.id) == 200


# =============================================================================
# INVARIANTS ON ACCEPTED SALES
# =============================================================================


class TestAcceptedSaleInvariants:

    def test_conservation_and_ticket_count(
        self, admin_user, make_unit_product, make_barrel, make_fractioned_product, make_cart
    ):
        beer = make_unit_product(name="Long Neck", quantity=20)
        water = make_unit_product(name="Water", quantity=8)
        barrel = make_barrel(volume_total_ml=5000)
        pint = make_fractioned_product(barrel, name="Pint", volume_per_dispense_ml=473)
        half = make_fractioned_product(barrel, name="Half", volume_per_dispense_ml=250)

        before = _snapshot()
        result = process_sale(
            make_cart(
                (beer.id, 4, "12.00"),
                (pint.id, 3, "18.50"),
                (water.id, 2, "4.00"),
                (half.id, 5, "9.90"),
            ),
            admin_user.id,
        )
        after = _snapshot()

        assert sum(before["inventory"].values()) - sum(after["inventory"].values()) == 4 + 2
        assert before["barrels"][barrel.id][0] - after["barrels"][barrel.id][0] == 3 * 473 + 5 * 250
        assert result.tickets_generated == 3 + 5
        assert after["tickets"] - before["tickets"] == 8

        for item in result.items:
            tickets = [t for t in result.tickets if t.sale_item_id == item.id]
            if item.volume_dispensed_ml is None:
                assert tickets == []
                continue
            assert sorted(t.sequence for t in tickets) == list(range(1, item.quantity + 1))
            assert {t.total_tickets for t in tickets} == {item.quantity}

    def test_total_is_subtotal_minus_discount(self, admin_user, make_unit_product, make_cart):
        p = make_unit_product(quantity=10)
        q = make_unit_product(name="Peanuts", quantity=10)

        result = process_sale(
            make_cart((p.id, 3, "10.10"), (q.id, 2, "0.35"), discount="5.50", payment_method="pix"),
            admin_user.id,
        )

        sale = result.sale
        assert sale.subtotal_cents == 3 * 1010 + 2 * 35
        assert sale.subtotal_cents == sum(i.subtotal_cents for i in result.items)
        assert sale.total_cents == sale.subtotal_cents - 550
        assert sale.payment_method == "PIX"

    def test_low_volume_never_blocks_or_closes(self, admin_user, make_barrel, make_fractioned_product, make_cart):
        barrel = make_barrel(volume_total_ml=1000, min_residue_ml=900)
        f = make_fractioned_product(barrel, volume_per_dispense_ml=300)

        process_sale(make_cart((f.id, 1, "8.00")), admin_user.id)
        b = db.session.get(Barrel, barrel.id, populate_existing=True)
        assert b.is_low_volume
        assert b.status == "ACTIVE"

        process_sale(make_cart((f.id, 2, "8.00")), admin_user.id)
        b = db.session.get(Barrel, barrel.id, populate_existing=True)
        assert b.volume_available_ml == 100
        assert b.status == "ACTIVE"


# =============================================================================
# WRITE PHASE FAILURES
# =============================================================================


class TestWritePhase:

    def test_stock_taken_after_validation_rolls_back(self, admin_user, make_unit_product, make_cart, monkeypatch):
        p = make_unit_product(quantity=5)
        validate = sales_service._validate_cart

        def validate_then_drain(cart):
            resolved = validate(cart)
            # another checkout takes the stock between validation and write
            db.session.execute(
                update(Inventory)
                .where(Inventory.product_id == p.id)
                .values(quantity=1)
                .execution_options(synchronize_session=False)
            )
            return resolved

        monkeypatch.setattr(sales_service, "_validate_cart", validate_then_drain)

        with pytest.raises(InsufficientStock):
            process_sale(make_cart((p.id, 3, "10.00")), admin_user.id)

        assert get_quantity_on_hand(p.id) == 5
        assert db.session.query(Sale).count() == 0
        assert db.session.query(SaleItem).count() == 0

    def test_database_error_rolls_back_everything(
        self, admin_user, make_unit_product, make_barrel, make_fractioned_product, make_cart, monkeypatch
    ):
        p = make_unit_product(quantity=5)
        barrel = make_barrel(volume_total_ml=1000)
        f = make_fractioned_product(barrel)
        before = _snapshot()

        def broken_movement(**kwargs):
            raise OperationalError("INSERT INTO barrel_movements", {}, Exception("disk I/O error"))

        monkeypatch.setattr(sales_service, "record_movement", broken_movement)

        with pytest.raises(TransactionFailed):
            process_sale(make_cart((p.id, 2, "10.00"), (f.id, 1, "8.00")), admin_user.id)

        assert _snapshot() == before

    def test_unexpected_error_rolls_back_and_releases_lock(
        self, admin_user, make_unit_product, make_barrel, make_fractioned_product, make_cart, monkeypatch
    ):
        p = make_unit_product(quantity=5)
        barrel = make_barrel(volume_total_ml=1000)
        f = make_fractioned_product(barrel)
        before = _snapshot()

        def overflowing_movement(**kwargs):
            raise OverflowError("Python int too large to convert to SQLite INTEGER")

        monkeypatch.setattr(sales_service, "record_movement", overflowing_movement)

        with pytest.raises(TransactionFailed) as exc:
            process_sale(make_cart((p.id, 2, "10.00"), (f.id, 1, "8.00")), admin_user.id)

        assert isinstance(exc.value.__cause__, OverflowError)
        assert not db.session.in_transaction()
        assert _snapshot() == before


# =============================================================================
# READ SIDE AND TICKETS
# =============================================================================


class TestSaleHistoryAndTickets:

    def test_get_and_list_sales(self, admin_user, make_unit_product, make_barrel, make_fractioned_product, make_cart):
        p = make_unit_product(quantity=5)
        barrel = make_barrel(name="IPA Keg")
        f = make_fractioned_product(barrel, name="IPA 300ml")
        first = process_sale(make_cart((p.id, 1, "10.00")), admin_user.id)
        second = process_sale(make_cart((f.id, 2, "8.00"), (p.id, 1, "10.00")), admin_user.id)

        loaded = get_sale(second.sale.id)
        data = loaded.to_dict()
        assert data["tickets_generated"] == 2
        assert data["sale"]["user_name"] == "Admin"
        assert data["sale"]["items"][0]["product"]["name"] == "IPA 300ml"
        assert data["sale"]["items"][0]["product"]["barrel_name"] == "IPA Keg"
        assert [t["sequence"] for t in data["sale"]["tickets"]] == [1, 2]

        listed = list_sales(limit=10)
        assert listed["total"] == 2
        assert {s["id"] for s in listed["items"]} == {first.sale.id, second.sale.id}
        assert get_sale(999999) is None

    def test_redeem_ticket_once(self, admin_user, make_barrel, make_fractioned_product, make_cart):
        barrel = make_barrel()
        f = make_fractioned_product(barrel)
        result = process_sale(make_cart((f.id, 2, "8.00")), admin_user.id)
        qr = result.tickets[0].qr_code

        ticket = redeem_ticket(qr)
        assert ticket.status == "REDEEMED"
        assert ticket.redeemed_at is not None

        with pytest.raises(TicketError) as exc:
            redeem_ticket(qr)
        assert exc.value.details["status"] == "REDEEMED"

        other = db.session.query(Ticket).filter_by(qr_code=result.tickets[1].qr_code).one()
        assert other.status == "PENDING"

    def test_redeem_unknown_ticket(self, db_session):
        with pytest.raises(TicketError) as exc:
            redeem_ticket("0-0-0")
        assert "status" not in exc.value.details
