# Overview: Service-layer operations for barrels (kegs); volume ledger and lifecycle.

"""
Barrel Lifecycle

    ACTIVE -> MAINTENANCE -> ACTIVE
    ACTIVE | MAINTENANCE -> CLOSED   (terminal)

- Every status change and every volume change appends a BarrelMovement in
  the same DB transaction.
- CLOSE records the residual volume; the barrel is never closed
  automatically when it reaches min_residue_ml.
- Sales draw volume only through decrement_volume(), a conditional atomic
  UPDATE that also requires status = ACTIVE.
"""
from __future__ import annotations

import logging

from sqlalchemy import update

from ..extensions import db
from ..models import Barrel, BarrelMovement
from ..models.inventory import BARREL_ACTIVE, BARREL_MAINTENANCE, BARREL_CLOSED, BARREL_STATUSES, MOVEMENT_TYPES
from ..validation import ValidationError
from .concurrency import begin_write_transaction, lock_for_update
from barpos.time_utils import utcnow


logger = logging.getLogger(__name__)

DEFAULT_MIN_RESIDUE_ML = 50

# status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    BARREL_ACTIVE: {BARREL_MAINTENANCE, BARREL_CLOSED},
    BARREL_MAINTENANCE: {BARREL_ACTIVE, BARREL_CLOSED},
    BARREL_CLOSED: set(),
}


class BarrelError(Exception):
    """Raised for illegal barrel operations."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def record_movement(
    *,
    barrel_id: int,
    movement_type: str,
    volume_ml: int = 0,
    reference: str | None = None,
    user_id: int | None = None,
) -> BarrelMovement:
    """Append a movement row. Does not commit."""
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"Unknown barrel movement type: {movement_type}")
    movement = BarrelMovement(
        barrel_id=barrel_id,
        type=movement_type,
        volume_ml=volume_ml,
        reference=reference,
        user_id=user_id,
    )
    db.session.add(movement)
    return movement


def list_barrels(status: str | None = None) -> list[dict]:
    query = db.session.query(Barrel)
    if status is not None:
        if status not in BARREL_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(BARREL_STATUSES)}")
        query = query.filter(Barrel.status == status)
    barrels = query.order_by(Barrel.opened_at.desc(), Barrel.id.desc()).all()
    return [b.to_dict() for b in barrels]


def get_barrel(barrel_id: int) -> Barrel | None:
    return db.session.get(Barrel, barrel_id)


def list_movements(barrel_id: int) -> list[dict]:
    movements = (
        db.session.query(BarrelMovement)
        .filter_by(barrel_id=barrel_id)
        .order_by(BarrelMovement.created_at.asc(), BarrelMovement.id.asc())
        .all()
    )
    return [m.to_dict() for m in movements]


def create_barrel(
    *,
    name: str,
    volume_total_ml: int,
    min_residue_ml: int | None = None,
    user_id: int | None = None,
) -> Barrel:
    """Open a new, full barrel."""
    if not name or not name.strip():
        raise ValidationError("name cannot be blank")
    if volume_total_ml is None or volume_total_ml <= 0:
        raise ValidationError("volume_total_ml must be > 0")
    if min_residue_ml is None:
        min_residue_ml = DEFAULT_MIN_RESIDUE_ML
    if min_residue_ml < 0 or min_residue_ml > volume_total_ml:
        raise ValidationError("min_residue_ml must be between 0 and volume_total_ml")

    barrel = Barrel(
        name=name.strip(),
        volume_total_ml=volume_total_ml,
        volume_available_ml=volume_total_ml,
        min_residue_ml=min_residue_ml,
        status=BARREL_ACTIVE,
        opened_at=utcnow(),
    )
    db.session.add(barrel)
    db.session.flush()

    record_movement(
        barrel_id=barrel.id,
        movement_type="OPEN",
        volume_ml=volume_total_ml,
        reference=f"Barrel {barrel.name} opened",
        user_id=user_id,
    )
    db.session.commit()
    logger.info("Barrel %s opened with %sml", barrel.id, volume_total_ml)
    return barrel


def _load_for_write(barrel_id: int) -> Barrel:
    """Take the write lock and re-read the barrel; rolls back if it is missing."""
    begin_write_transaction()
    barrel = (
        lock_for_update(db.session.query(Barrel).filter(Barrel.id == barrel_id))
        .populate_existing()
        .one_or_none()
    )
    if barrel is None:
        db.session.rollback()
        raise BarrelError("Barrel not found", details={"barrel_id": barrel_id})
    return barrel


def _transition(barrel_id: int, new_status: str, movement_type: str, user_id: int | None) -> Barrel:
    barrel = _load_for_write(barrel_id)

    previous = barrel.status
    if new_status not in ALLOWED_TRANSITIONS[previous]:
        db.session.rollback()
        raise BarrelError(
            f"Cannot move barrel from {previous} to {new_status}",
            details={"barrel_id": barrel_id, "status": previous, "requested_status": new_status},
        )

    barrel.status = new_status
    if new_status == BARREL_CLOSED:
        barrel.closed_at = utcnow()

    record_movement(
        barrel_id=barrel.id,
        movement_type=movement_type,
        # CLOSE carries the residue left in the barrel
        volume_ml=barrel.volume_available_ml if new_status == BARREL_CLOSED else 0,
        reference=f"{previous} -> {new_status}",
        user_id=user_id,
    )
    db.session.commit()
    logger.info("Barrel %s moved %s -> %s", barrel.id, previous, new_status)
    return barrel


def set_maintenance(barrel_id: int, user_id: int | None = None) -> Barrel:
    return _transition(barrel_id, BARREL_MAINTENANCE, "MAINTENANCE", user_id)


def reactivate(barrel_id: int, user_id: int | None = None) -> Barrel:
    return _transition(barrel_id, BARREL_ACTIVE, "REACTIVATE", user_id)


def close_barrel(barrel_id: int, user_id: int | None = None) -> Barrel:
    return _transition(barrel_id, BARREL_CLOSED, "CLOSE", user_id)


def adjust_volume(
    barrel_id: int,
    volume_available_ml: int,
    reason: str | None = None,
    user_id: int | None = None,
) -> Barrel:
    """
    Correct the remaining volume after a physical measurement.

    The ADJUST movement carries the signed difference (negative when volume
    was lost).
    """
    barrel = _load_for_write(barrel_id)
    total = barrel.volume_total_ml
    if barrel.status == BARREL_CLOSED:
        db.session.rollback()
        raise BarrelError(
            "Cannot adjust a CLOSED barrel",
            details={"barrel_id": barrel_id, "status": BARREL_CLOSED},
        )
    if volume_available_ml < 0 or volume_available_ml > total:
        db.session.rollback()
        raise ValidationError(f"volume_available_ml must be between 0 and {total}")

    delta = volume_available_ml - barrel.volume_available_ml
    barrel.volume_available_ml = volume_available_ml
    barrel.updated_at = utcnow()

    record_movement(
        barrel_id=barrel.id,
        movement_type="ADJUST",
        volume_ml=delta,
        reference=((reason or "").strip() or "Manual adjustment")[:255],
        user_id=user_id,
    )
    db.session.commit()
    logger.info("Barrel %s adjusted by %sml to %sml", barrel.id, delta, volume_available_ml)
    return barrel


def decrement_volume(barrel_id: int, volume_ml: int) -> bool:
    """
    Atomically draw `volume_ml` from an ACTIVE barrel.

    Returns False when no row matched (not enough volume left, or the barrel
    stopped being ACTIVE); the caller must roll back.

    Does not commit.
    """
    result = db.session.execute(
        update(Barrel)
        .where(Barrel.id == barrel_id)
        .where(Barrel.status == BARREL_ACTIVE)
        .where(Barrel.volume_available_ml >= volume_ml)
        .values(volume_available_ml=Barrel.volume_available_ml - volume_ml, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
