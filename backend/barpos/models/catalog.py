from __future__ import annotations

from ..extensions import db
from barpos.time_utils import to_utc_z


PRODUCT_TYPE_UNIT = "UNIT"
PRODUCT_TYPE_FRACTIONED = "FRACTIONED"
PRODUCT_TYPES = (PRODUCT_TYPE_UNIT, PRODUCT_TYPE_FRACTIONED)


class Category(db.Model):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Unit(db.Model):
    """Unit of measure shown next to quantities (e.g. "un", "ml", "dose")."""
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    symbol = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    PRODUCT TYPES:
    - UNIT: counted individually; stock lives in a one-to-one Inventory row.
    - FRACTIONED: dispensed by volume from a Barrel. Has no Inventory row;
      its stock is the linked barrel's volume_available_ml.

    volume_per_dispense_ml and barrel_id are required iff FRACTIONED.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        db.CheckConstraint("product_type IN ('UNIT', 'FRACTIONED')", name="ck_products_type"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)

    barcode = db.Column(db.String(64), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    product_type = db.Column(db.String(16), nullable=False, default=PRODUCT_TYPE_UNIT)
    volume_per_dispense_ml = db.Column(db.Integer, nullable=True)
    barrel_id = db.Column(db.Integer, db.ForeignKey("barrels.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    unit = db.relationship("Unit", backref=db.backref("products", lazy=True))
    barrel = db.relationship("Barrel", backref=db.backref("products", lazy=True))

    @property
    def is_fractioned(self) -> bool:
        return self.product_type == PRODUCT_TYPE_FRACTIONED

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} type={self.product_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "unit_id": self.unit_id,
            "unit": self.unit.symbol if self.unit else None,
            "barcode": self.barcode,
            "is_active": self.is_active,
            "product_type": self.product_type,
            "volume_per_dispense_ml": self.volume_per_dispense_ml,
            "barrel_id": self.barrel_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
