# backend/barpos/services/products_service.py
"""
Products Service

- UNIT products are created together with their Inventory row (same
  transaction).
- FRACTIONED products are bound to an ACTIVE barrel and never get an
  Inventory row.
- product_type is fixed at creation.
- Products are deactivated, never deleted; past SaleItems reference them.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product, Inventory, Barrel, Category, Unit
from ..models.catalog import PRODUCT_TYPE_UNIT, PRODUCT_TYPE_FRACTIONED
from ..models.inventory import BARREL_ACTIVE
from ..validation import ConflictError, ValidationError, parse_int

PRODUCT_MUTABLE_FIELDS = {
    "name", "description", "price_cents", "cost_cents", "category_id", "unit_id",
    "barcode", "is_active", "volume_per_dispense_ml", "barrel_id",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _stock_summary(p: Product) -> dict:
    if p.is_fractioned:
        barrel = p.barrel
        return {
            "barrel_name": barrel.name if barrel else None,
            "barrel_status": barrel.status if barrel else None,
            "volume_available_ml": barrel.volume_available_ml if barrel else 0,
            "dispenses_available": (
                barrel.volume_available_ml // p.volume_per_dispense_ml
                if barrel and p.volume_per_dispense_ml else 0
            ),
            "is_low_volume": barrel.is_low_volume if barrel else True,
        }
    inv = p.inventory
    return {
        "quantity": inv.quantity if inv else 0,
        "min_quantity": inv.min_quantity if inv else 0,
        "max_quantity": inv.max_quantity if inv else None,
        "is_low_stock": inv.is_low_stock if inv else True,
    }


def product_to_dict(p: Product) -> dict:
    data = p.to_dict()
    data["stock"] = _stock_summary(p)
    return data


def list_products(include_inactive: bool = True) -> dict:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    products = query.order_by(Product.name.asc(), Product.id.asc()).all()
    return {
        "items": [product_to_dict(p) for p in products],
        "count": len(products),
    }


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def _check_references(patch: dict) -> None:
    if patch.get("category_id") is not None and db.session.get(Category, patch["category_id"]) is None:
        raise ValidationError("category_id does not exist")
    if patch.get("unit_id") is not None and db.session.get(Unit, patch["unit_id"]) is None:
        raise ValidationError("unit_id does not exist")


def _check_barcode_unique(barcode: str | None, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product.id).filter(Product.barcode == barcode)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("A product with this barcode already exists")


def _require_active_barrel(barrel_id: int) -> Barrel:
    barrel = db.session.get(Barrel, barrel_id)
    if barrel is None:
        raise ValidationError("barrel_id does not exist")
    if barrel.status != BARREL_ACTIVE:
        raise ValidationError(f"Barrel {barrel.name} is {barrel.status}; FRACTIONED products need an ACTIVE barrel")
    return barrel


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    Extra keys understood here (not Product columns): initial_quantity,
    min_quantity, max_quantity for the Inventory row of a UNIT product.

    Raises:
        ConflictError: If barcode already exists
        ValidationError: On type/barrel/reference rule violations
    """
    product_type = patch.get("product_type") or PRODUCT_TYPE_UNIT

    _check_references(patch)
    _check_barcode_unique(patch.get("barcode"))

    stock_fields = {}
    for key in ("initial_quantity", "min_quantity", "max_quantity"):
        if patch.get(key) is not None:
            stock_fields[key] = parse_int(patch[key], key)
            if stock_fields[key] < 0:
                raise ValidationError(f"{key} cannot be negative")

    if product_type == PRODUCT_TYPE_FRACTIONED:
        if stock_fields:
            raise ValidationError("FRACTIONED products have no unit stock; omit initial_quantity/min_quantity/max_quantity")
        if patch.get("volume_per_dispense_ml") is None or patch.get("barrel_id") is None:
            raise ValidationError("FRACTIONED products require volume_per_dispense_ml and barrel_id")
        _require_active_barrel(patch["barrel_id"])
    else:
        if patch.get("barrel_id") is not None or patch.get("volume_per_dispense_ml") is not None:
            raise ValidationError("barrel_id and volume_per_dispense_ml only apply to FRACTIONED products")

    p = Product(product_type=product_type)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.flush()

    if product_type == PRODUCT_TYPE_UNIT:
        db.session.add(Inventory(
            product_id=p.id,
            quantity=stock_fields.get("initial_quantity", 0),
            min_quantity=stock_fields.get("min_quantity", 0),
            max_quantity=stock_fields.get("max_quantity"),
        ))

    db.session.commit()
    return p


def update_product(*, product_id: int, patch: dict) -> Product | None:
    p = db.session.get(Product, product_id)
    if p is None:
        return None

    if "product_type" in patch and patch["product_type"] != p.product_type:
        raise ValidationError("product_type cannot be changed")

    _check_references(patch)
    if "barcode" in patch:
        _check_barcode_unique(patch["barcode"], exclude_id=product_id)

    if p.is_fractioned:
        if "volume_per_dispense_ml" in patch and patch["volume_per_dispense_ml"] is None:
            raise ValidationError("volume_per_dispense_ml is required for FRACTIONED products")
        if "barrel_id" in patch:
            if patch["barrel_id"] is None:
                raise ValidationError("barrel_id is required for FRACTIONED products")
            if patch["barrel_id"] != p.barrel_id:
                _require_active_barrel(patch["barrel_id"])
    elif patch.get("barrel_id") is not None or patch.get("volume_per_dispense_ml") is not None:
        raise ValidationError("barrel_id and volume_per_dispense_ml only apply to FRACTIONED products")

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def deactivate_product(*, product_id: int) -> bool:
    p = db.session.get(Product, product_id)
    if p is None:
        return False
    p.is_active = False
    db.session.commit()
    return True
