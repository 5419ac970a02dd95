"""
Checkout payload parsing tests.

Malformed carts are rejected at the boundary with InvalidCart, before the
sale engine touches the database.
"""

import pytest

from barpos.models import Product
from barpos.services.cart import parse_cart, resolve_line, CartLine, UnitLine, FractionedLine
from barpos.services.sale_errors import InvalidCart


def _payload(**overrides):
    payload = {
        "items": [
            {"product_id": 1, "quantity": 2, "price": "8.00"},
            {"product_id": 2, "quantity": 1, "price": 4.5},
        ],
        "payment_method": "CARD",
    }
    payload.update(overrides)
    return payload


class TestParseCart:

    def test_valid_cart(self):
        cart = parse_cart(_payload(discount="1.50"))

        assert [line.product_id for line in cart.lines] == [1, 2]
        assert [line.unit_price_cents for line in cart.lines] == [800, 450]
        assert cart.subtotal_cents == 2050
        assert cart.discount_cents == 150
        assert cart.total_cents == 1900
        assert cart.payment_method == "CARD"

    def test_discount_defaults_to_zero(self):
        cart = parse_cart(_payload())
        assert cart.discount_cents == 0
        assert cart.total_cents == cart.subtotal_cents

    def test_payment_method_is_normalized(self):
        assert parse_cart(_payload(payment_method=" cash ")).payment_method == "CASH"

    def test_discount_equal_to_subtotal_is_allowed(self):
        cart = parse_cart(_payload(discount="20.50"))
        assert cart.total_cents == 0

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            "items",
            {"payment_method": "CASH"},
            {"items": [], "payment_method": "CASH"},
            {"items": "1x beer", "payment_method": "CASH"},
        ],
    )
    def test_rejects_malformed_payload(self, payload):
        with pytest.raises(InvalidCart):
            parse_cart(payload)

    def test_rejects_unknown_top_level_field(self):
        with pytest.raises(InvalidCart, match="Field not allowed: total"):
            parse_cart(_payload(total="0.01"))

    @pytest.mark.parametrize("method", [None, "", "BITCOIN", 3])
    def test_rejects_payment_method(self, method):
        with pytest.raises(InvalidCart, match="payment_method"):
            parse_cart(_payload(payment_method=method))

    @pytest.mark.parametrize(
        "line, message",
        [
            ({"product_id": 3, "quantity": 0, "price": "1.00"}, "quantity must be > 0"),
            ({"product_id": 3, "quantity": -2, "price": "1.00"}, "quantity must be > 0"),
            ({"product_id": 3, "quantity": 1.5, "price": "1.00"}, "quantity"),
            ({"product_id": 3, "quantity": True, "price": "1.00"}, "quantity"),
            ({"product_id": 3, "quantity": "2", "price": "-1.00"}, "price must be >= 0"),
            ({"product_id": 3, "quantity": 1, "price": "1.005"}, "two decimal places"),
            ({"product_id": 3, "quantity": 1, "price": "abc"}, "price must be a number"),
            ({"product_id": "x", "quantity": 1, "price": "1.00"}, "product_id"),
            ({"product_id": 3, "quantity": 1}, "missing required fields: price"),
            ({"product_id": 3, "quantity": 1, "price": "1.00", "name": "Beer"}, "field not allowed: name"),
            ("3x beer", "must be an object"),
            ({"product_id": 3, "quantity": 1001, "price": "1.00"}, "quantity cannot exceed 1000"),
            ({"product_id": 3, "quantity": 1, "price": "99999999999999999.99"}, "price cannot exceed 999999.99"),
            ({"product_id": 0, "quantity": 1, "price": "1.00"}, "product_id must be > 0"),
        ],
    )
    def test_rejects_bad_line_with_its_position(self, line, message):
        payload = _payload()
        payload["items"].append(line)

        with pytest.raises(InvalidCart, match=message) as exc:
            parse_cart(payload)

        assert str(exc.value).startswith("Item 3")
        assert exc.value.details["line"] == 3

    @pytest.mark.parametrize("discount", ["-1.00", "0.001", "free"])
    def test_rejects_bad_discount(self, discount):
        with pytest.raises(InvalidCart):
            parse_cart(_payload(discount=discount))

    def test_rejects_discount_above_subtotal(self):
        with pytest.raises(InvalidCart, match="discount cannot exceed") as exc:
            parse_cart(_payload(discount="20.51"))
        assert exc.value.details == {"discount_cents": 2051, "subtotal_cents": 2050}


class TestResolveLine:

    def test_unit_product(self):
        line = CartLine(index=0, product_id=1, quantity=2, unit_price_cents=500)
        resolved = resolve_line(line, Product(id=1, name="Soda", product_type="UNIT"))

        assert isinstance(resolved, UnitLine)
        assert resolved.line.subtotal_cents == 1000

    def test_fractioned_product(self):
        line = CartLine(index=0, product_id=7, quantity=3, unit_price_cents=800)
        product = Product(id=7, name="Draft", product_type="FRACTIONED", volume_per_dispense_ml=300, barrel_id=4)

        resolved = resolve_line(line, product)

        assert isinstance(resolved, FractionedLine)
        assert resolved.barrel_id == 4
        assert resolved.needed_ml == 900
