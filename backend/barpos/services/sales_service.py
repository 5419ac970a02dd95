"""
Sales Service - checkout transaction engine

One call to process_sale() is one database transaction:

1. Reserve the write transaction (BEGIN IMMEDIATE on SQLite, row locks
   elsewhere) and re-read every product, inventory row and barrel.
2. Validate the whole cart before any mutation. Quantities of the same
   product, and volumes drawn from the same barrel, are validated as totals.
3. Insert the Sale and its SaleItems, lower stock with conditional atomic
   UPDATEs, append barrel SALE movements and issue one Ticket per
   fractional unit sold.
4. Commit. Any failure rolls the whole unit back: no Sale, SaleItem, Ticket
   or stock change survives a rejected checkout.

No automatic retries: a failed sale is reported and the caller may resubmit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Sale, SaleItem, Ticket, Product, Inventory, Barrel, User
from ..models.inventory import BARREL_ACTIVE
from ..models.sales import TICKET_PENDING, TICKET_REDEEMED
from barpos.time_utils import utcnow
from .cart import Cart, UnitLine, FractionedLine, ResolvedLine, resolve_line
from .concurrency import begin_write_transaction, lock_for_update
from .inventory_service import decrement_stock
from .barrel_service import decrement_volume, record_movement
from .sale_errors import (  # noqa: F401
    SaleError,
    InvalidCart,
    Unauthorized,
    ProductNotFound,
    ProductInactive,
    InsufficientStock,
    InsufficientVolume,
    TransactionFailed,
    TicketError,
)


logger = logging.getLogger(__name__)


@dataclass
class SaleResult:
    sale: Sale
    items: list[SaleItem] = field(default_factory=list)
    tickets: list[Ticket] = field(default_factory=list)

    @property
    def tickets_generated(self) -> int:
        return len(self.tickets)

    def to_dict(self) -> dict:
        sale = self.sale.to_dict()
        sale["items"] = [item.to_dict() for item in self.items]
        sale["tickets"] = [ticket.to_dict() for ticket in self.tickets]
        return {
            "sale": sale,
            "tickets_generated": self.tickets_generated,
        }


def make_qr_code(sale_id: int, sale_item_id: int, sequence: int) -> str:
    return f"{sale_id}-{sale_item_id}-{sequence}"


def _load_products(product_ids: set[int]) -> dict[int, Product]:
    products = (
        lock_for_update(db.session.query(Product).filter(Product.id.in_(product_ids)))
        .populate_existing()
        .all()
    )
    return {p.id: p for p in products}


def _load_inventory(product_ids: set[int]) -> dict[int, Inventory]:
    if not product_ids:
        return {}
    rows = (
        lock_for_update(db.session.query(Inventory).filter(Inventory.product_id.in_(product_ids)))
        .populate_existing()
        .all()
    )
    return {row.product_id: row for row in rows}


def _load_barrels(barrel_ids: set[int]) -> dict[int, Barrel]:
    if not barrel_ids:
        return {}
    rows = (
        lock_for_update(db.session.query(Barrel).filter(Barrel.id.in_(barrel_ids)))
        .populate_existing()
        .all()
    )
    return {row.id: row for row in rows}


def _insufficient_stock(product: Product, requested: int, available: int) -> InsufficientStock:
    return InsufficientStock(
        f"Insufficient stock for {product.name}: requested {requested}, available {available}",
        details={
            "product_id": product.id,
            "product_name": product.name,
            "requested_quantity": requested,
            "available_quantity": available,
        },
    )


def _insufficient_volume(
    product: Product,
    needed_ml: int,
    available_ml: int,
    barrel: Barrel | None = None,
) -> InsufficientVolume:
    if barrel is None:
        message = f"Product {product.name} is not linked to a barrel"
    elif barrel.status != BARREL_ACTIVE:
        message = f"Barrel {barrel.name} for {product.name} is {barrel.status}"
    else:
        message = (
            f"Insufficient volume in barrel {barrel.name} for {product.name}: "
            f"needed {needed_ml}ml, available {available_ml}ml"
        )
    return InsufficientVolume(
        message,
        details={
            "product_id": product.id,
            "product_name": product.name,
            "barrel_id": barrel.id if barrel else None,
            "barrel_status": barrel.status if barrel else None,
            "needed_ml": needed_ml,
            "available_ml": available_ml,
        },
    )


def _validate_cart(cart: Cart) -> list[ResolvedLine]:
    """
    Check every line against freshly read stock. Raises on the first line
    that cannot be fulfilled; nothing has been written at this point.
    """
    products = _load_products({line.product_id for line in cart.lines})

    resolved: list[ResolvedLine] = []
    for line in cart.lines:
        product = products.get(line.product_id)
        if product is None:
            raise ProductNotFound(
                f"Product {line.product_id} not found",
                details={"product_id": line.product_id, "line": line.index + 1},
            )
        if not product.is_active:
            raise ProductInactive(
                f"Product {product.name} is inactive",
                details={"product_id": product.id, "product_name": product.name, "line": line.index + 1},
            )
        resolved.append(resolve_line(line, product))

    inventory = _load_inventory({r.product.id for r in resolved if isinstance(r, UnitLine)})
    barrels = _load_barrels({r.barrel_id for r in resolved if isinstance(r, FractionedLine) and r.barrel_id})

    requested_units: dict[int, int] = {}
    requested_ml: dict[int, int] = {}
    for r in resolved:
        if isinstance(r, UnitLine):
            requested = requested_units.get(r.product.id, 0) + r.line.quantity
            requested_units[r.product.id] = requested
            inv = inventory.get(r.product.id)
            available = inv.quantity if inv else 0
            if available < requested:
                raise _insufficient_stock(r.product, requested, available)
        else:
            barrel = barrels.get(r.barrel_id)
            if barrel is None or barrel.status != BARREL_ACTIVE:
                raise _insufficient_volume(r.product, r.needed_ml, 0, barrel)
            needed = requested_ml.get(barrel.id, 0) + r.needed_ml
            requested_ml[barrel.id] = needed
            if barrel.volume_available_ml < needed:
                raise _insufficient_volume(r.product, needed, barrel.volume_available_ml, barrel)

    return resolved


def _write_sale(cart: Cart, resolved: list[ResolvedLine], actor_user_id: int) -> SaleResult:
    sale = Sale(
        user_id=actor_user_id,
        subtotal_cents=cart.subtotal_cents,
        discount_cents=cart.discount_cents,
        total_cents=cart.total_cents,
        payment_method=cart.payment_method,
        status="COMPLETED",
    )
    db.session.add(sale)
    db.session.flush()

    result = SaleResult(sale=sale)
    for r in resolved:
        line = r.line
        item = SaleItem(
            sale_id=sale.id,
            product_id=r.product.id,
            quantity=line.quantity,
            unit_price_cents=line.unit_price_cents,
            subtotal_cents=line.subtotal_cents,
            volume_dispensed_ml=r.needed_ml if isinstance(r, FractionedLine) else None,
        )
        db.session.add(item)
        db.session.flush()
        result.items.append(item)

        if isinstance(r, UnitLine):
            if not decrement_stock(r.product.id, line.quantity):
                # Someone else took the stock between validation and write
                raise _insufficient_stock(r.product, line.quantity, _current_quantity(r.product.id))
            continue

        if not decrement_volume(r.barrel_id, r.needed_ml):
            barrel = db.session.get(Barrel, r.barrel_id, populate_existing=True)
            raise _insufficient_volume(r.product, r.needed_ml, barrel.volume_available_ml if barrel else 0, barrel)

        record_movement(
            barrel_id=r.barrel_id,
            movement_type="SALE",
            volume_ml=r.needed_ml,
            reference=f"Sale {sale.id}",
            user_id=actor_user_id,
        )
        for sequence in range(1, line.quantity + 1):
            ticket = Ticket(
                sale_item_id=item.id,
                product_id=r.product.id,
                barrel_id=r.barrel_id,
                sequence=sequence,
                total_tickets=line.quantity,
                status=TICKET_PENDING,
                qr_code=make_qr_code(sale.id, item.id, sequence),
            )
            db.session.add(ticket)
            result.tickets.append(ticket)

    db.session.flush()
    return result


def _current_quantity(product_id: int) -> int:
    value = db.session.query(Inventory.quantity).filter_by(product_id=product_id).scalar()
    return int(value or 0)


def process_sale(cart: Cart, actor_user_id: int | None) -> SaleResult:
    """
    Validate, price and record a checkout atomically.

    Raises:
        Unauthorized: no (active) operator
        ProductNotFound / ProductInactive: bad product on a line
        InsufficientStock / InsufficientVolume: not enough stock, checked
            before writing and again by the conditional decrements
        TransactionFailed: the write phase failed and was rolled back
    """
    if not actor_user_id:
        raise Unauthorized("Authentication required")

    try:
        begin_write_transaction()

        actor = db.session.get(User, actor_user_id)
        if actor is None or not actor.is_active:
            raise Unauthorized("Authentication required", details={"user_id": actor_user_id})

        resolved = _validate_cart(cart)
        result = _write_sale(cart, resolved, actor_user_id)
        db.session.commit()
    except SaleError as e:
        db.session.rollback()
        logger.info("Sale rejected: %s", e)
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Sale transaction failed; rolled back")
        raise TransactionFailed("Sale could not be recorded") from e
    except Exception as e:
        db.session.rollback()
        logger.exception("Unexpected error during sale; rolled back")
        raise TransactionFailed("Sale could not be recorded") from e

    logger.info(
        "Sale %s committed by user %s: %s items, total %s cents, %s tickets",
        result.sale.id, actor_user_id, len(result.items), result.sale.total_cents, result.tickets_generated,
    )
    return result


def get_sale(sale_id: int) -> SaleResult | None:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        return None
    items = db.session.query(SaleItem).filter_by(sale_id=sale_id).order_by(SaleItem.id.asc()).all()
    tickets = (
        db.session.query(Ticket)
        .join(SaleItem, Ticket.sale_item_id == SaleItem.id)
        .filter(SaleItem.sale_id == sale_id)
        .order_by(Ticket.sale_item_id.asc(), Ticket.sequence.asc())
        .all()
    )
    return SaleResult(sale=sale, items=items, tickets=tickets)


def list_sales(limit: int = 50, offset: int = 0) -> dict:
    limit = max(1, min(limit, 200))
    offset = max(offset, 0)
    base_query = db.session.query(Sale).order_by(Sale.created_at.desc(), Sale.id.desc())
    total = base_query.count()
    sales = base_query.offset(offset).limit(limit).all()

    items = []
    for sale in sales:
        data = sale.to_dict()
        data["items"] = [item.to_dict() for item in sale.items]
        items.append(data)
    return {"items": items, "count": len(items), "total": total}


def list_tickets(sale_id: int) -> list[Ticket]:
    result = get_sale(sale_id)
    return result.tickets if result else []


def redeem_ticket(qr_code: str) -> Ticket:
    """
    Mark a PENDING ticket as REDEEMED (one dispense handed out).

    Conditional UPDATE on status: of two concurrent redemptions of the same
    code, exactly one matches a row.
    """
    now = utcnow()
    result = db.session.execute(
        update(Ticket)
        .where(Ticket.qr_code == qr_code)
        .where(Ticket.status == TICKET_PENDING)
        .values(status=TICKET_REDEEMED, redeemed_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        ticket = db.session.query(Ticket).filter_by(qr_code=qr_code).first()
        if ticket is None:
            raise TicketError("Ticket not found", details={"qr_code": qr_code})
        raise TicketError(
            f"Ticket already {ticket.status}",
            details={"qr_code": qr_code, "status": ticket.status},
        )
    db.session.commit()
    return db.session.query(Ticket).filter_by(qr_code=qr_code).one()
