from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.rental_models import MouldType, RentalItem
from services.errors import NotFoundError, RentalValidationError
from services.inventory_service import adjust_total_quantity, get_committed_units


def _clean_name(raw: str | None) -> str:
    name = (raw or "").strip()
    if not name:
        raise RentalValidationError("Mould type name is required.")
    return name


def _ensure_unique_name(db: Session, name: str, exclude_id: int | None = None) -> None:
    stmt = select(MouldType.MouldTypeID).where(func.lower(MouldType.Name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(MouldType.MouldTypeID != exclude_id)
    if db.execute(stmt).first():
        raise RentalValidationError(f"Mould type '{name}' already exists.")


def list_mould_types(db: Session) -> list[MouldType]:
    return list(db.execute(select(MouldType).order_by(MouldType.Name)).scalars().all())


def get_mould_type(db: Session, mould_type_id: int) -> MouldType:
    mould = db.get(MouldType, mould_type_id)
    if not mould:
        raise NotFoundError("Mould type", mould_type_id)
    return mould


def create_mould_type(db: Session, name: str, quantity: int = 0) -> MouldType:
    name = _clean_name(name)
    if int(quantity) < 0:
        raise RentalValidationError("Quantity cannot be negative.")
    _ensure_unique_name(db, name)

    mould = MouldType(
        Name=name,
        Quantity=int(quantity),
        Available=int(quantity),
        CreatedDate=datetime.now(),
        UpdatedDate=datetime.now(),
    )
    db.add(mould)
    try:
        db.commit()
    except IntegrityError as exc:
        # Another request committed the same name after our check.
        db.rollback()
        raise RentalValidationError(f"Mould type '{name}' already exists.") from exc
    db.refresh(mould)
    return mould


def update_mould_type(db: Session, mould_type_id: int, name: str | None = None, quantity: int | None = None) -> MouldType:
    mould = get_mould_type(db, mould_type_id)
    cleaned = None
    try:
        if name is not None:
            cleaned = _clean_name(name)
            _ensure_unique_name(db, cleaned, exclude_id=mould_type_id)
            mould.Name = cleaned
            mould.UpdatedDate = datetime.now()
            db.flush()
        if quantity is not None:
            mould = adjust_total_quantity(db, mould_type_id, quantity)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise RentalValidationError(f"Mould type '{cleaned}' already exists.") from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(mould)
    return mould


def delete_mould_type(db: Session, mould_type_id: int) -> None:
    mould = get_mould_type(db, mould_type_id)
    in_use = db.execute(
        select(func.count(RentalItem.RentalItemID)).where(RentalItem.MouldTypeID == mould_type_id)
    ).scalar()
    if in_use:
        raise RentalValidationError(f"Mould type '{mould.Name}' is referenced by existing rentals.")
    db.delete(mould)
    try:
        db.commit()
    except IntegrityError as exc:
        # A rental created after the check now references the type.
        db.rollback()
        raise RentalValidationError(f"Mould type '{mould.Name}' is referenced by existing rentals.") from exc


def serialize_mould_type(mould: MouldType, rented: int | None = None) -> dict:
    payload = {
        "mouldTypeID": mould.MouldTypeID,
        "name": mould.Name,
        "quantity": mould.Quantity,
        "available": mould.Available,
        "createdDate": mould.CreatedDate,
        "updatedDate": mould.UpdatedDate,
    }
    if rented is not None:
        payload["rented"] = rented
    return payload


def serialize_mould_type_detail(db: Session, mould: MouldType) -> dict:
    return serialize_mould_type(mould, get_committed_units(db, mould.MouldTypeID))
