from __future__ import annotations

import logging
import os
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.rental_models import RECEIPT_NUMBER_CONSTRAINT, Rental
from services.errors import ReceiptRetriesExhaustedError


LOGGER = logging.getLogger("mould_rental.receipts")

RECEIPT_PREFIX = "MRT"
RECEIPT_DIGITS = 6
MAX_RECEIPT_ATTEMPTS = int(os.environ.get("MOULD_RENTAL_RECEIPT_ATTEMPTS") or "10")

T = TypeVar("T")


def parse_receipt_suffix(value: str | None) -> int:
    number = (value or "").strip()
    token = f"{RECEIPT_PREFIX}-"
    if not number.startswith(token):
        return 0
    raw = number[len(token):]
    if not raw.isdigit():
        return 0
    return int(raw)


def format_receipt_number(suffix: int) -> str:
    return f"{RECEIPT_PREFIX}-{suffix:0{RECEIPT_DIGITS}d}"


def get_max_receipt_suffix(db: Session) -> int:
    rows = db.execute(
        select(Rental.ReceiptNumber).where(Rental.ReceiptNumber.like(f"{RECEIPT_PREFIX}-%"))
    ).scalars().all()

    max_suffix = 0
    for number in rows:
        suffix = parse_receipt_suffix(number)
        if suffix > max_suffix:
            max_suffix = suffix
    return max_suffix


def next_receipt_number(db: Session, attempt: int = 0) -> str:
    return format_receipt_number(get_max_receipt_suffix(db) + 1 + attempt)


def is_receipt_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", None) or exc)
    return RECEIPT_NUMBER_CONSTRAINT in message or "ReceiptNumber" in message


def issue_with_retry(
    db: Session,
    create: Callable[[str], T],
    max_attempts: int = MAX_RECEIPT_ATTEMPTS,
    retry_on: Callable[[IntegrityError], bool] | None = None,
) -> T:
    """Run ``create`` with a proposed receipt number and commit it.

    ``create`` receives the candidate number and must stage the whole rental in
    ``db``. A uniqueness conflict on the receipt number rolls the transaction back
    and the creation is re-run with the next free number. Conflicts accepted by
    ``retry_on`` re-run the creation with the same number. Any other failure
    rolls back and propagates.
    """
    attempts = 0
    suffix = get_max_receipt_suffix(db) + 1
    while attempts < max_attempts:
        receipt_number = format_receipt_number(suffix)
        try:
            created = create(receipt_number)
            db.commit()
            return created
        except IntegrityError as exc:
            db.rollback()
            if is_receipt_conflict(exc):
                # The winner's number is visible now; never propose below our last try.
                suffix = max(get_max_receipt_suffix(db), suffix) + 1
            elif retry_on is None or not retry_on(exc):
                raise
            attempts += 1
            LOGGER.warning(
                "Creation conflict receipt=%s attempt=%s/%s: %s",
                receipt_number,
                attempts,
                max_attempts,
                getattr(exc, "orig", None) or exc,
            )
        except Exception:
            db.rollback()
            raise

    LOGGER.error("Receipt number allocation exhausted after %s attempts", max_attempts)
    raise ReceiptRetriesExhaustedError(max_attempts)
