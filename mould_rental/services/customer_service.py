from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.rental_models import CUSTOMER_ID_CARD_CONSTRAINT, RENTAL_STATUS_ACTIVE, Customer, Rental, RentalItem
from services.errors import NotFoundError, RentalValidationError


@dataclass(frozen=True)
class CustomerDetails:
    full_name: str | None = None
    contact_number: str | None = None
    id_card_number: str | None = None
    id_card_collected: bool = False

    def is_empty(self) -> bool:
        return not any(
            (value or "").strip()
            for value in (self.full_name, self.contact_number, self.id_card_number)
        )


def find_or_create_customer(db: Session, details: CustomerDetails | None) -> Customer | None:
    if details is None or details.is_empty():
        return None

    id_card_number = (details.id_card_number or "").strip() or None
    if id_card_number:
        existing = db.execute(
            select(Customer).where(Customer.IdCardNumber == id_card_number)
        ).scalars().first()
        if existing:
            return existing

    full_name = (details.full_name or "").strip()
    if not full_name:
        raise RentalValidationError("Customer full name is required.")

    customer = Customer(
        FullName=full_name,
        ContactNumber=(details.contact_number or "").strip() or None,
        IdCardNumber=id_card_number,
        IdCardCollected=bool(details.id_card_collected),
        IdCardCollectedDate=datetime.now() if details.id_card_collected else None,
        CreatedDate=datetime.now(),
    )
    db.add(customer)
    return customer


def is_customer_conflict(exc: IntegrityError) -> bool:
    """True when another request registered the same ID card first."""
    message = str(getattr(exc, "orig", None) or exc)
    return CUSTOMER_ID_CARD_CONSTRAINT in message or "IdCardNumber" in message


def get_customer(db: Session, customer_id: int) -> Customer:
    stmt = (
        select(Customer)
        .options(selectinload(Customer.Rentals).selectinload(Rental.RentalItems).selectinload(RentalItem.MouldType))
        .where(Customer.CustomerID == customer_id)
        .execution_options(populate_existing=True)
    )
    customer = db.execute(stmt).scalars().first()
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


def get_customer_history(db: Session, customer_id: int) -> list[Rental]:
    customer = get_customer(db, customer_id)
    return sorted(
        customer.Rentals,
        key=lambda rental: (rental.CreatedDate or datetime.min, rental.RentalID),
        reverse=True,
    )


def delete_customer(db: Session, customer_id: int) -> None:
    customer = get_customer(db, customer_id)
    if any(rental.Status == RENTAL_STATUS_ACTIVE for rental in customer.Rentals):
        raise RentalValidationError(
            "Cannot delete customer with active rentals. Please return all rentals first."
        )
    # Only RETURNED rentals remain, so their units are already back in stock.
    db.delete(customer)
    db.commit()


def serialize_customer(customer: Customer) -> dict:
    return {
        "customerID": customer.CustomerID,
        "fullName": customer.FullName,
        "contactNumber": customer.ContactNumber,
        "idCardNumber": customer.IdCardNumber,
        "idCardCollected": bool(customer.IdCardCollected),
        "idCardCollectedDate": customer.IdCardCollectedDate,
        "createdDate": customer.CreatedDate,
    }
