"""Availability bookkeeping for mould types.

``MouldType.Available`` is the only value mutated concurrently by in-flight
requests, so every change goes through a single conditional UPDATE against the
store. ``reconcile_mould_type`` recomputes the value from ACTIVE rentals and is
the repair path for drift left behind by partial failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models.rental_models import RENTAL_STATUS_ACTIVE, MouldType, Rental, RentalItem
from services.errors import InsufficientAvailabilityError, NotFoundError, RentalValidationError


LOGGER = logging.getLogger("mould_rental.inventory")


@dataclass(frozen=True)
class ReconcileReport:
    mould_type_id: int
    name: str
    quantity: int
    old_available: int
    new_available: int
    consistency_violation: bool

    @property
    def delta(self) -> int:
        return self.new_available - self.old_available

    def as_dict(self) -> dict:
        return {
            "mouldTypeID": self.mould_type_id,
            "name": self.name,
            "quantity": self.quantity,
            "old": self.old_available,
            "new": self.new_available,
            "delta": self.delta,
            "consistencyViolation": self.consistency_violation,
        }


def _require_quantity(quantity: int) -> int:
    value = int(quantity)
    if value < 1:
        raise RentalValidationError("Quantity must be at least 1.")
    return value


def _load_fresh(db: Session, mould_type_id: int) -> MouldType | None:
    stmt = (
        select(MouldType)
        .where(MouldType.MouldTypeID == mould_type_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalars().first()


def _committed_units_expr():
    return (
        select(func.coalesce(func.sum(RentalItem.Quantity), 0))
        .select_from(RentalItem)
        .join(Rental, Rental.RentalID == RentalItem.RentalID)
        .where(RentalItem.MouldTypeID == MouldType.MouldTypeID)
        .where(Rental.Status == RENTAL_STATUS_ACTIVE)
        .scalar_subquery()
    )


def get_committed_units(db: Session, mould_type_id: int) -> int:
    stmt = (
        select(func.coalesce(func.sum(RentalItem.Quantity), 0))
        .select_from(RentalItem)
        .join(Rental, Rental.RentalID == RentalItem.RentalID)
        .where(RentalItem.MouldTypeID == mould_type_id)
        .where(Rental.Status == RENTAL_STATUS_ACTIVE)
    )
    return int(db.execute(stmt).scalar() or 0)


def reserve_units(db: Session, mould_type_id: int, quantity: int) -> int:
    """Take ``quantity`` units out of the available pool.

    The availability check and the decrement are one statement, so two requests
    racing for the last units cannot both succeed. Returns the new available count.
    """
    quantity = _require_quantity(quantity)
    result = db.execute(
        update(MouldType)
        .where(MouldType.MouldTypeID == mould_type_id)
        .where(MouldType.Available >= quantity)
        .values(Available=MouldType.Available - quantity, UpdatedDate=datetime.now())
        .execution_options(synchronize_session=False)
    )
    mould = _load_fresh(db, mould_type_id)
    if not mould:
        raise NotFoundError("Mould type", mould_type_id)
    if result.rowcount == 0:
        LOGGER.info(
            "Reservation refused mould_type_id=%s requested=%s available=%s",
            mould_type_id,
            quantity,
            mould.Available,
        )
        raise InsufficientAvailabilityError(mould.MouldTypeID, mould.Name, quantity, mould.Available)
    return mould.Available


def release_units(db: Session, mould_type_id: int, quantity: int) -> int:
    """Return ``quantity`` units to the available pool and report the new count.

    The count is not clamped to the owned quantity: overshooting means the ledger
    has drifted, which is logged so ``reconcile_mould_type`` can repair it.
    """
    quantity = _require_quantity(quantity)
    result = db.execute(
        update(MouldType)
        .where(MouldType.MouldTypeID == mould_type_id)
        .values(Available=MouldType.Available + quantity, UpdatedDate=datetime.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Mould type", mould_type_id)
    mould = _load_fresh(db, mould_type_id)
    if mould.Available > mould.Quantity:
        LOGGER.warning(
            "Consistency violation on release mould_type_id=%s available=%s quantity=%s; run reconcile",
            mould_type_id,
            mould.Available,
            mould.Quantity,
        )
    return mould.Available


def reconcile_mould_type(db: Session, mould_type_id: int) -> ReconcileReport:
    mould = _load_fresh(db, mould_type_id)
    if not mould:
        raise NotFoundError("Mould type", mould_type_id)
    old_available = mould.Available

    # One statement, so units reserved or released meanwhile are never double counted.
    db.execute(
        update(MouldType)
        .where(MouldType.MouldTypeID == mould_type_id)
        .values(Available=MouldType.Quantity - _committed_units_expr())
        .execution_options(synchronize_session=False)
    )
    mould = _load_fresh(db, mould_type_id)
    new_available = mould.Available

    violation = old_available < 0 or old_available > mould.Quantity or new_available < 0
    report = ReconcileReport(
        mould_type_id=mould.MouldTypeID,
        name=mould.Name,
        quantity=mould.Quantity,
        old_available=old_available,
        new_available=new_available,
        consistency_violation=violation,
    )
    if violation:
        LOGGER.error(
            "Consistency violation mould_type_id=%s name=%s quantity=%s old=%s new=%s",
            report.mould_type_id,
            report.name,
            report.quantity,
            old_available,
            new_available,
        )
    if report.delta:
        mould.UpdatedDate = datetime.now()
        LOGGER.warning(
            "Availability drift corrected mould_type_id=%s name=%s old=%s new=%s delta=%s",
            report.mould_type_id,
            report.name,
            old_available,
            new_available,
            report.delta,
        )
    return report


def reconcile_all(db: Session) -> list[ReconcileReport]:
    ids = db.execute(select(MouldType.MouldTypeID).order_by(MouldType.Name)).scalars().all()
    return [reconcile_mould_type(db, mould_type_id) for mould_type_id in ids]


def adjust_total_quantity(db: Session, mould_type_id: int, new_quantity: int) -> MouldType:
    """Change the owned quantity, moving ``Available`` by the same amount."""
    new_quantity = int(new_quantity)
    if new_quantity < 0:
        raise RentalValidationError("Quantity cannot be negative.")

    shift = new_quantity - MouldType.Quantity
    result = db.execute(
        update(MouldType)
        .where(MouldType.MouldTypeID == mould_type_id)
        .where(MouldType.Available + shift >= 0)
        .ordered_values(
            (MouldType.Available, MouldType.Available + shift),
            (MouldType.Quantity, new_quantity),
            (MouldType.UpdatedDate, datetime.now()),
        )
        .execution_options(synchronize_session=False)
    )
    mould = _load_fresh(db, mould_type_id)
    if not mould:
        raise NotFoundError("Mould type", mould_type_id)
    if result.rowcount == 0:
        rented = mould.Quantity - mould.Available
        raise RentalValidationError(
            f"Cannot set quantity of '{mould.Name}' to {new_quantity}: {rented} unit(s) are currently rented out."
        )
    return mould
