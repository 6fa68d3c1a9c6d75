"""Billing rules for mould rentals.

Rules:
- Pickup before 12:00: the pickup day is charged.
- Pickup at or after 12:00: charging starts the next day.
- Return before 12:00: the return day is not charged.
- Return at or after 12:00: the return day is charged.
- Sundays are never charged.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from services.errors import RentalValidationError


NOON = time(12, 0)
OVERDUE_AFTER_DAYS = 10
DEFAULT_DEPOSIT_AMOUNT = Decimal(os.environ.get("MOULD_RENTAL_DEFAULT_DEPOSIT") or "1000")
DEFAULT_DAILY_RATE = Decimal(os.environ.get("MOULD_RENTAL_DEFAULT_DAILY_RATE") or "100")


@dataclass(frozen=True)
class RentalCharges:
    days_used: int
    total_charge: Decimal
    refund_amount: Decimal
    additional_payment: Decimal

    def as_dict(self) -> dict:
        return {
            "daysUsed": self.days_used,
            "totalCharge": self.total_charge,
            "refundAmount": self.refund_amount,
            "additionalPayment": self.additional_payment,
        }


def _is_sunday(value: date) -> bool:
    return value.weekday() == 6


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def validate_return_window(pickup: datetime, returned: datetime) -> None:
    if returned < pickup:
        raise RentalValidationError("Return date/time cannot be before pickup date/time.")


def calculate_billable_days(pickup: datetime, returned: datetime) -> int:
    pickup_day = pickup.date()
    return_day = returned.date()

    count_pickup_day = pickup.time() < NOON and not _is_sunday(pickup_day)
    count_return_day = returned.time() >= NOON and not _is_sunday(return_day)

    if pickup_day == return_day:
        return 1 if count_pickup_day and count_return_day else 0

    billable_days = 1 if count_pickup_day else 0

    current = pickup_day + timedelta(days=1)
    while current < return_day:
        if not _is_sunday(current):
            billable_days += 1
        current += timedelta(days=1)

    if count_return_day:
        billable_days += 1
    return billable_days


def calculate_rental_charges(
    pickup: datetime,
    returned: datetime,
    deposit_amount=DEFAULT_DEPOSIT_AMOUNT,
    daily_rate=DEFAULT_DAILY_RATE,
) -> RentalCharges:
    deposit = _to_decimal(deposit_amount)
    rate = _to_decimal(daily_rate)

    days_used = calculate_billable_days(pickup, returned)
    total_charge = rate * days_used

    if total_charge <= deposit:
        refund_amount = deposit - total_charge
        additional_payment = Decimal("0")
    else:
        refund_amount = Decimal("0")
        additional_payment = total_charge - deposit

    return RentalCharges(
        days_used=days_used,
        total_charge=total_charge,
        refund_amount=refund_amount,
        additional_payment=additional_payment,
    )


def is_rental_overdue(pickup: datetime, now: datetime | None = None) -> bool:
    current = now or datetime.now()
    return calculate_billable_days(pickup, current) > OVERDUE_AFTER_DAYS


def get_days_until_overdue(pickup: datetime, now: datetime | None = None) -> int:
    current = now or datetime.now()
    return OVERDUE_AFTER_DAYS - calculate_billable_days(pickup, current)
