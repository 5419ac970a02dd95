from __future__ import annotations

from ..extensions import db
from barpos.time_utils import to_utc_z


PAYMENT_METHODS = ("CASH", "CARD", "PIX")

TICKET_PENDING = "PENDING"
TICKET_REDEEMED = "REDEEMED"


class Sale(db.Model):
    """
    Checkout record. Written once by the sale engine and never edited.

    total_cents = subtotal_cents - discount_cents, where subtotal_cents is the
    sum of the item subtotals.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_created", "created_at"),
        db.CheckConstraint("discount_cents >= 0", name="ck_sales_discount_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("sales", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    """Individual line of a sale. volume_dispensed_ml is set for FRACTIONED lines only."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    volume_dispensed_ml = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "volume_dispensed_ml": self.volume_dispensed_ml,
            "product": {
                "name": product.name,
                "product_type": product.product_type,
                "unit": product.unit.symbol if product.unit else None,
                "category": product.category.name if product.category else None,
                "volume_per_dispense_ml": product.volume_per_dispense_ml,
                "barrel_name": product.barrel.name if product.barrel else None,
            } if product else None,
        }


class Ticket(db.Model):
    """
    Pickup voucher for one dispense of a FRACTIONED sale line.

    A line with quantity N owns exactly N tickets, sequence 1..N, all with
    total_tickets = N.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("sale_item_id", "sequence", name="uq_tickets_item_sequence"),
        db.CheckConstraint("sequence >= 1 AND sequence <= total_tickets", name="ck_tickets_sequence_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    barrel_id = db.Column(db.Integer, db.ForeignKey("barrels.id"), nullable=False)

    sequence = db.Column(db.Integer, nullable=False)
    total_tickets = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TICKET_PENDING, index=True)
    qr_code = db.Column(db.String(128), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale_item = db.relationship("SaleItem", backref=db.backref("tickets", lazy=True, order_by="Ticket.sequence"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_item_id": self.sale_item_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "volume_ml": self.product.volume_per_dispense_ml if self.product else None,
            "barrel_id": self.barrel_id,
            "sequence": self.sequence,
            "total_tickets": self.total_tickets,
            "status": self.status,
            "qr_code": self.qr_code,
            "created_at": to_utc_z(self.created_at),
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
