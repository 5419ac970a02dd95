from __future__ import annotations

from ..extensions import db
from barpos.time_utils import to_utc_z


BARREL_ACTIVE = "ACTIVE"
BARREL_MAINTENANCE = "MAINTENANCE"
BARREL_CLOSED = "CLOSED"
BARREL_STATUSES = (BARREL_ACTIVE, BARREL_MAINTENANCE, BARREL_CLOSED)

MOVEMENT_TYPES = ("OPEN", "SALE", "ADJUST", "MAINTENANCE", "REACTIVATE", "CLOSE")


class Inventory(db.Model):
    """
    Unit-count stock for a UNIT product (one row per product).

    quantity is only lowered by the sale engine through a conditional UPDATE,
    and set explicitly by the stock adjustment endpoint.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_quantity = db.Column(db.Integer, nullable=False, default=0)
    max_quantity = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory", uselist=False, lazy=True))

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
            "is_low_stock": self.is_low_stock,
            "updated_at": to_utc_z(self.updated_at),
        }


class Barrel(db.Model):
    """
    Bulk container (keg) tracked by remaining milliliters.

    LIFECYCLE: ACTIVE -> MAINTENANCE -> ACTIVE, ACTIVE|MAINTENANCE -> CLOSED.
    CLOSED is terminal. Hitting min_residue_ml only raises is_low_volume;
    it never closes the barrel and never blocks a sale on its own.
    """
    __tablename__ = "barrels"
    __table_args__ = (
        db.CheckConstraint("volume_available_ml >= 0", name="ck_barrels_available_nonneg"),
        db.CheckConstraint("volume_available_ml <= volume_total_ml", name="ck_barrels_available_le_total"),
        db.CheckConstraint("status IN ('ACTIVE', 'MAINTENANCE', 'CLOSED')", name="ck_barrels_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    volume_total_ml = db.Column(db.Integer, nullable=False)
    volume_available_ml = db.Column(db.Integer, nullable=False)
    min_residue_ml = db.Column(db.Integer, nullable=False, default=50)

    status = db.Column(db.String(16), nullable=False, default=BARREL_ACTIVE, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_volume(self) -> bool:
        return self.volume_available_ml <= self.min_residue_ml

    def __repr__(self) -> str:
        return f"<Barrel id={self.id} name={self.name!r} available={self.volume_available_ml}ml status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "volume_total_ml": self.volume_total_ml,
            "volume_available_ml": self.volume_available_ml,
            "min_residue_ml": self.min_residue_ml,
            "status": self.status,
            "is_low_volume": self.is_low_volume,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
        }


class BarrelMovement(db.Model):
    """Append-only history of barrel volume and status changes."""
    __tablename__ = "barrel_movements"
    __table_args__ = (
        db.Index("ix_barrel_movements_barrel_created", "barrel_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    barrel_id = db.Column(db.Integer, db.ForeignKey("barrels.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False)
    volume_ml = db.Column(db.Integer, nullable=False, default=0)
    reference = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    barrel = db.relationship("Barrel", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barrel_id": self.barrel_id,
            "type": self.type,
            "volume_ml": self.volume_ml,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
