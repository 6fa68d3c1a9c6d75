from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from models.rental_models import (
    RENTAL_STATUS_ACTIVE,
    RENTAL_STATUS_RETURNED,
    RENTAL_STATUSES,
    Customer,
    Rental,
    RentalItem,
)
from services.billing_service import (
    DEFAULT_DAILY_RATE,
    DEFAULT_DEPOSIT_AMOUNT,
    calculate_rental_charges,
    get_days_until_overdue,
    is_rental_overdue,
    validate_return_window,
)
from services.customer_service import (
    CustomerDetails,
    find_or_create_customer,
    is_customer_conflict,
    serialize_customer,
)
from services.errors import NotFoundError, RentalValidationError
from services.inventory_service import release_units, reserve_units
from services.receipt_service import issue_with_retry


LOGGER = logging.getLogger("mould_rental.rentals")

OVERDUE_FILTER = "OVERDUE"


def merge_line_items(items: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """Validate requested lines and fold duplicates of one mould type together.

    The result is ordered by mould type id so concurrent creations touching the
    same types always lock rows in the same order.
    """
    merged: dict[int, int] = {}
    for mould_type_id, quantity in items:
        if mould_type_id is None:
            raise RentalValidationError("Each rental item needs a mould type.")
        if quantity is None or int(quantity) < 1:
            raise RentalValidationError(f"Quantity for mould type {mould_type_id} must be at least 1.")
        merged[int(mould_type_id)] = merged.get(int(mould_type_id), 0) + int(quantity)
    if not merged:
        raise RentalValidationError("No rental items supplied.")
    return sorted(merged.items())


def _money(value, default: Decimal, label: str) -> Decimal:
    amount = default if value is None else Decimal(str(value))
    if amount < 0:
        raise RentalValidationError(f"{label} cannot be negative.")
    return amount


def create_rental(
    db: Session,
    items: Iterable[tuple[int, int]],
    pickup_datetime: datetime,
    deposit_amount=None,
    daily_rate=None,
    customer: CustomerDetails | None = None,
    notes: str | None = None,
) -> Rental:
    if pickup_datetime is None:
        raise RentalValidationError("Pickup date/time is required.")
    lines = merge_line_items(items)
    deposit = _money(deposit_amount, DEFAULT_DEPOSIT_AMOUNT, "Deposit amount")
    rate = _money(daily_rate, DEFAULT_DAILY_RATE, "Daily rate")

    def _stage(receipt_number: str) -> Rental:
        # Resolved before any write so a re-run after a concurrent registration
        # of the same ID card picks up the committed customer.
        rental_customer = find_or_create_customer(db, customer)

        # Reservations share the transaction with the insert; a failure on any
        # line rolls back the lines reserved before it.
        for mould_type_id, quantity in lines:
            reserve_units(db, mould_type_id, quantity)

        rental = Rental(
            ReceiptNumber=receipt_number,
            Status=RENTAL_STATUS_ACTIVE,
            PickupDateTime=pickup_datetime,
            DepositAmount=deposit,
            DailyRate=rate,
            Notes=notes,
            CreatedDate=datetime.now(),
            UpdatedDate=datetime.now(),
        )
        rental.Customer = rental_customer
        for mould_type_id, quantity in lines:
            rental.RentalItems.append(RentalItem(MouldTypeID=mould_type_id, Quantity=quantity))
        db.add(rental)
        db.flush()
        return rental

    rental = issue_with_retry(db, _stage, retry_on=is_customer_conflict)
    LOGGER.info(
        "Rental created rental_id=%s receipt=%s lines=%s",
        rental.RentalID,
        rental.ReceiptNumber,
        len(lines),
    )
    return get_rental(db, rental.RentalID)


def get_rental(db: Session, rental_id: int) -> Rental:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.MouldType))
        .options(selectinload(Rental.Customer))
        .where(Rental.RentalID == rental_id)
        .execution_options(populate_existing=True)
    )
    rental = db.execute(stmt).scalars().first()
    if not rental:
        raise NotFoundError("Rental", rental_id)
    return rental


def process_return(db: Session, rental_id: int, returned_at: datetime | None = None) -> Rental:
    rental = get_rental(db, rental_id)
    if rental.Status != RENTAL_STATUS_ACTIVE:
        raise RentalValidationError("Rental is not active.")

    returned_at = returned_at or datetime.now()
    validate_return_window(rental.PickupDateTime, returned_at)
    charges = calculate_rental_charges(
        rental.PickupDateTime,
        returned_at,
        rental.DepositAmount,
        rental.DailyRate,
    )

    try:
        # Guarding on Status makes a second concurrent return a no-op instead of a double release.
        result = db.execute(
            update(Rental)
            .where(Rental.RentalID == rental_id)
            .where(Rental.Status == RENTAL_STATUS_ACTIVE)
            .values(
                Status=RENTAL_STATUS_RETURNED,
                ReturnDateTime=returned_at,
                DaysUsed=charges.days_used,
                TotalCharge=charges.total_charge,
                RefundAmount=charges.refund_amount,
                AdditionalPayment=charges.additional_payment,
                UpdatedDate=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RentalValidationError("Rental is not active.")
        for item in rental.RentalItems:
            release_units(db, item.MouldTypeID, item.Quantity)
        db.commit()
    except Exception:
        db.rollback()
        raise

    LOGGER.info(
        "Rental returned rental_id=%s receipt=%s days=%s total=%s",
        rental_id,
        rental.ReceiptNumber,
        charges.days_used,
        charges.total_charge,
    )
    return get_rental(db, rental_id)


def delete_rental(db: Session, rental_id: int) -> bool:
    """Remove a rental; returns True when its units were put back into stock."""
    rental = get_rental(db, rental_id)
    status = rental.Status
    lines = [(item.MouldTypeID, item.Quantity) for item in rental.RentalItems]

    try:
        db.execute(
            delete(RentalItem)
            .where(RentalItem.RentalID == rental_id)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(
            delete(Rental)
            .where(Rental.RentalID == rental_id)
            .where(Rental.Status == status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise RentalValidationError("Rental changed while it was being deleted. Please retry.")

        released = status == RENTAL_STATUS_ACTIVE
        if released:
            for mould_type_id, quantity in lines:
                release_units(db, mould_type_id, quantity)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.expunge(rental)
    LOGGER.info("Rental deleted rental_id=%s receipt=%s released=%s", rental_id, rental.ReceiptNumber, released)
    return released


def list_rentals(
    db: Session,
    status: str | None = None,
    search: str | None = None,
    now: datetime | None = None,
) -> list[Rental]:
    stmt = (
        select(Rental)
        .options(selectinload(Rental.RentalItems).selectinload(RentalItem.MouldType))
        .options(selectinload(Rental.Customer))
        .order_by(Rental.CreatedDate.desc(), Rental.RentalID.desc())
    )

    status_filter = (status or "").strip().upper()
    if status_filter == OVERDUE_FILTER:
        stmt = stmt.where(Rental.Status == RENTAL_STATUS_ACTIVE)
    elif status_filter in RENTAL_STATUSES:
        stmt = stmt.where(Rental.Status == status_filter)
    elif status_filter:
        raise RentalValidationError(f"Unknown rental status '{status}'.")

    query = (search or "").strip()
    if query:
        pattern = f"%{query}%"
        stmt = stmt.outerjoin(Customer, Customer.CustomerID == Rental.CustomerID).where(
            or_(
                Customer.FullName.ilike(pattern),
                Customer.ContactNumber.like(pattern),
                Rental.ReceiptNumber.ilike(pattern),
            )
        )

    rentals = db.execute(stmt).scalars().all()
    if status_filter == OVERDUE_FILTER:
        current = now or datetime.now()
        rentals = [rental for rental in rentals if is_rental_overdue(rental.PickupDateTime, current)]
    return list(rentals)


def _revenue_since(db: Session, start: datetime) -> Decimal:
    total = db.execute(
        select(func.sum(Rental.TotalCharge))
        .where(Rental.Status == RENTAL_STATUS_RETURNED)
        .where(Rental.ReturnDateTime >= start)
    ).scalar()
    return Decimal(str(total)) if total is not None else Decimal("0")


def rental_stats(db: Session, now: datetime | None = None) -> dict:
    current = now or datetime.now()
    pickups = db.execute(
        select(Rental.PickupDateTime).where(Rental.Status == RENTAL_STATUS_ACTIVE)
    ).scalars().all()
    overdue = sum(1 for pickup in pickups if is_rental_overdue(pickup, current))

    today = datetime.combine(current.date(), time.min)
    # Weeks start on Sunday.
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    month_start = today.replace(day=1)

    return {
        "activeRentals": len(pickups),
        "overdueRentals": overdue,
        "dailyRevenue": _revenue_since(db, today),
        "weeklyRevenue": _revenue_since(db, week_start),
        "monthlyRevenue": _revenue_since(db, month_start),
    }


def serialize_rental(rental: Rental, now: datetime | None = None) -> dict:
    is_active = rental.Status == RENTAL_STATUS_ACTIVE
    current = now or datetime.now()
    return {
        "rentalID": rental.RentalID,
        "receiptNumber": rental.ReceiptNumber,
        "status": rental.Status,
        "pickupDateTime": rental.PickupDateTime,
        "returnDateTime": rental.ReturnDateTime,
        "depositAmount": rental.DepositAmount,
        "dailyRate": rental.DailyRate,
        "daysUsed": rental.DaysUsed,
        "totalCharge": rental.TotalCharge,
        "refundAmount": rental.RefundAmount,
        "additionalPayment": rental.AdditionalPayment,
        "isOverdue": is_active and is_rental_overdue(rental.PickupDateTime, current),
        "daysUntilOverdue": get_days_until_overdue(rental.PickupDateTime, current) if is_active else None,
        "notes": rental.Notes,
        "createdDate": rental.CreatedDate,
        "updatedDate": rental.UpdatedDate,
        "customer": serialize_customer(rental.Customer) if rental.Customer else None,
        "items": [
            {
                "rentalItemID": item.RentalItemID,
                "mouldTypeID": item.MouldTypeID,
                "quantity": item.Quantity,
                "mouldType": {
                    "mouldTypeID": item.MouldType.MouldTypeID,
                    "name": item.MouldType.Name,
                } if item.MouldType else None,
            }
            for item in rental.RentalItems
        ],
    }
