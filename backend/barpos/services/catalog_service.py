# Overview: Service-layer operations for categories and units.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Category, Unit, Product
from ..validation import ConflictError, ValidationError


def _with_product_counts(model, fk_column) -> list[dict]:
    rows = (
        db.session.query(model, func.count(Product.id))
        .outerjoin(Product, fk_column == model.id)
        .group_by(model.id)
        .order_by(model.name.asc())
        .all()
    )
    items = []
    for obj, count in rows:
        data = obj.to_dict()
        data["product_count"] = int(count or 0)
        items.append(data)
    return items


def list_categories() -> list[dict]:
    return _with_product_counts(Category, Product.category_id)


def create_category(patch: dict) -> Category:
    name = (patch.get("name") or "").strip()
    if not name:
        raise ValidationError("name cannot be blank")
    if db.session.query(Category).filter(func.lower(Category.name) == name.lower()).first():
        raise ConflictError("A category with this name already exists")

    category = Category(
        name=name,
        description=patch.get("description") or None,
        is_active=patch.get("is_active", True),
    )
    db.session.add(category)
    db.session.commit()
    return category


def update_category(category_id: int, patch: dict) -> Category | None:
    category = db.session.get(Category, category_id)
    if category is None:
        return None

    if "name" in patch:
        name = patch["name"]
        clash = (
            db.session.query(Category)
            .filter(func.lower(Category.name) == name.lower(), Category.id != category_id)
            .first()
        )
        if clash:
            raise ConflictError("A category with this name already exists")

    for k in ("name", "description", "is_active"):
        if k in patch:
            setattr(category, k, patch[k])
    db.session.commit()
    return category


def list_units() -> list[dict]:
    return _with_product_counts(Unit, Product.unit_id)


def create_unit(patch: dict) -> Unit:
    name = (patch.get("name") or "").strip()
    symbol = (patch.get("symbol") or "").strip()
    if not name or not symbol:
        raise ValidationError("name and symbol are required")
    if db.session.query(Unit).filter(func.lower(Unit.name) == name.lower()).first():
        raise ConflictError("A unit with this name already exists")

    unit = Unit(
        name=name,
        symbol=symbol,
        description=patch.get("description") or None,
        is_active=patch.get("is_active", True),
    )
    db.session.add(unit)
    db.session.commit()
    return unit
