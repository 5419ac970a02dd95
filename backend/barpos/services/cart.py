# Overview: Strict parsing of checkout payloads into typed cart lines.

"""
Cart parsing happens at the HTTP boundary, before the sale engine runs.

Payload:
    {
      "items": [{"product_id": 1, "quantity": 2, "price": "8.00"}, ...],
      "payment_method": "CASH",
      "discount": "0.00"
    }

The caller-supplied price is trusted as-is (no server-side repricing).
Once products are loaded, each CartLine is resolved into a UnitLine or a
FractionedLine, which is what the engine validates and writes.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ..models import Product
from ..models.sales import PAYMENT_METHODS
from ..validation import MAX_PRICE_CENTS, ValidationError, cents_to_str, parse_int, to_cents
from .sale_errors import InvalidCart


CART_FIELDS = {"items", "payment_method", "discount"}
LINE_FIELDS = {"product_id", "quantity", "price"}
MAX_LINE_QUANTITY = 1000


@dataclass(frozen=True)
class CartLine:
    index: int
    product_id: int
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class Cart:
    lines: tuple[CartLine, ...]
    payment_method: str
    discount_cents: int

    @property
    def subtotal_cents(self) -> int:
        return sum(line.subtotal_cents for line in self.lines)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents - self.discount_cents


@dataclass(frozen=True)
class UnitLine:
    line: CartLine
    product: Product


@dataclass(frozen=True)
class FractionedLine:
    line: CartLine
    product: Product
    barrel_id: int
    volume_per_dispense_ml: int

    @property
    def needed_ml(self) -> int:
        return self.line.quantity * self.volume_per_dispense_ml


ResolvedLine = Union[UnitLine, FractionedLine]


def _parse_line(index: int, raw: Any) -> CartLine:
    if not isinstance(raw, dict):
        raise InvalidCart(f"Item {index + 1} must be an object", details={"line": index + 1})

    unknown = sorted(set(raw) - LINE_FIELDS)
    if unknown:
        raise InvalidCart(f"Item {index + 1}: field not allowed: {', '.join(unknown)}", details={"line": index + 1})

    missing = sorted(LINE_FIELDS - set(raw))
    if missing:
        raise InvalidCart(
            f"Item {index + 1}: missing required fields: {', '.join(missing)}",
            details={"line": index + 1},
        )

    try:
        product_id = parse_int(raw["product_id"], "product_id")
        quantity = parse_int(raw["quantity"], "quantity")
        unit_price_cents = to_cents(raw["price"], "price")
    except ValidationError as e:
        raise InvalidCart(f"Item {index + 1}: {e}", details={"line": index + 1}) from e

    if product_id <= 0:
        raise InvalidCart(f"Item {index + 1}: product_id must be > 0", details={"line": index + 1})
    if quantity <= 0:
        raise InvalidCart(f"Item {index + 1}: quantity must be > 0", details={"line": index + 1})
    if quantity > MAX_LINE_QUANTITY:
        raise InvalidCart(
            f"Item {index + 1}: quantity cannot exceed {MAX_LINE_QUANTITY}",
            details={"line": index + 1},
        )
    if unit_price_cents < 0:
        raise InvalidCart(f"Item {index + 1}: price must be >= 0", details={"line": index + 1})
    if unit_price_cents > MAX_PRICE_CENTS:
        raise InvalidCart(
            f"Item {index + 1}: price cannot exceed {cents_to_str(MAX_PRICE_CENTS)}",
            details={"line": index + 1},
        )

    return CartLine(
        index=index,
        product_id=product_id,
        quantity=quantity,
        unit_price_cents=unit_price_cents,
    )


def parse_cart(payload: Any) -> Cart:
    """
    Parse and validate a checkout payload.

    Raises InvalidCart for any malformed field. Does not touch the database.
    """
    if not isinstance(payload, dict):
        raise InvalidCart("Invalid JSON payload")

    unknown = sorted(set(payload) - CART_FIELDS)
    if unknown:
        raise InvalidCart(f"Field not allowed: {', '.join(unknown)}")

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise InvalidCart("Cart has no items")

    lines = tuple(_parse_line(i, raw) for i, raw in enumerate(items))

    payment_method = payload.get("payment_method")
    if not isinstance(payment_method, str) or payment_method.strip().upper() not in PAYMENT_METHODS:
        raise InvalidCart(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": payment_method},
        )

    discount = payload.get("discount")
    try:
        discount_cents = 0 if discount in (None, "") else to_cents(discount, "discount")
    except ValidationError as e:
        raise InvalidCart(str(e)) from e
    if discount_cents < 0:
        raise InvalidCart("discount must be >= 0")

    cart = Cart(
        lines=lines,
        payment_method=payment_method.strip().upper(),
        discount_cents=discount_cents,
    )
    if cart.discount_cents > cart.subtotal_cents:
        raise InvalidCart(
            "discount cannot exceed the cart subtotal",
            details={"discount_cents": cart.discount_cents, "subtotal_cents": cart.subtotal_cents},
        )
    return cart


def resolve_line(line: CartLine, product: Product) -> ResolvedLine:
    """Tag a parsed line with the stock representation of its product."""
    if product.is_fractioned:
        return FractionedLine(
            line=line,
            product=product,
            barrel_id=product.barrel_id,
            volume_per_dispense_ml=product.volume_per_dispense_ml,
        )
    return UnitLine(line=line, product=product)
