# Overview: Service-layer operations for unit-count stock; encapsulates business logic and database work.

# backend/barpos/services/inventory_service.py
"""
Inventory Invariants (authoritative)

- Only UNIT products have an Inventory row; FRACTIONED stock is the linked
  barrel's volume (see barrel_service).
- Inventory.quantity >= 0 at all times (CHECK constraint as a backstop).
- The sale path lowers quantity only through decrement_stock(), a single
  conditional UPDATE evaluated by the database; the row is never
  read into Python and written back.
- set_stock() is the explicit adjustment path (counts, restocks).
"""
from __future__ import annotations

import logging

from sqlalchemy import update

from ..extensions import db
from ..models import Inventory, Product
from ..validation import ValidationError
from barpos.time_utils import utcnow


logger = logging.getLogger(__name__)


def list_inventory() -> list[dict]:
    rows = (
        db.session.query(Inventory)
        .join(Product, Inventory.product_id == Product.id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )
    return [row.to_dict() for row in rows]


def list_low_stock() -> list[dict]:
    """Active UNIT products at or below their minimum quantity."""
    rows = (
        db.session.query(Inventory)
        .join(Product, Inventory.product_id == Product.id)
        .filter(Product.is_active.is_(True))
        .filter(Inventory.quantity <= Inventory.min_quantity)
        .order_by(Inventory.quantity.asc(), Product.name.asc())
        .all()
    )
    return [row.to_dict() for row in rows]


def get_inventory(product_id: int) -> Inventory | None:
    return db.session.query(Inventory).filter_by(product_id=product_id).first()


def get_quantity_on_hand(product_id: int) -> int:
    inv = get_inventory(product_id)
    return inv.quantity if inv else 0


def set_stock(product_id: int, patch: dict) -> Inventory:
    """
    Explicit stock adjustment: overwrite quantity and/or thresholds.

    Raises ValueError if the product has no Inventory row (missing or
    FRACTIONED product) and ValidationError on bad thresholds.
    """
    inv = get_inventory(product_id)
    if inv is None:
        raise ValueError("Inventory not found")

    min_q = patch.get("min_quantity", inv.min_quantity)
    max_q = patch.get("max_quantity", inv.max_quantity)
    if max_q is not None and min_q is not None and max_q < min_q:
        raise ValidationError("max_quantity must be >= min_quantity")

    previous = inv.quantity
    for key in ("quantity", "min_quantity", "max_quantity"):
        if key in patch:
            setattr(inv, key, patch[key])
    inv.updated_at = utcnow()

    db.session.commit()

    if inv.quantity != previous:
        logger.info("Stock for product %s set %s -> %s", product_id, previous, inv.quantity)
    return inv


def decrement_stock(product_id: int, quantity: int) -> bool:
    """
    Atomically lower on-hand quantity by `quantity`.

    Executes UPDATE ... SET quantity = quantity - :n WHERE product_id = :id
    AND quantity >= :n. Returns False when no row matched, meaning the stock
    is gone (or never existed); the caller must roll back.

    Does not commit.
    """
    result = db.session.execute(
        update(Inventory)
        .where(Inventory.product_id == product_id)
        .where(Inventory.quantity >= quantity)
        .values(quantity=Inventory.quantity - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
