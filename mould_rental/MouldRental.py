import os
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

load_dotenv()

from db.deps import get_rental_db
from models.rental_models import AuditLog
from schemas.moulds import CreateMouldTypeDto, UpdateMouldTypeDto
from schemas.rentals import CreateRentalDto, QuoteRequest, ReturnRequest
from services.billing_service import (
    DEFAULT_DAILY_RATE,
    DEFAULT_DEPOSIT_AMOUNT,
    calculate_rental_charges,
    validate_return_window,
)
from services.customer_service import (
    CustomerDetails,
    delete_customer,
    get_customer,
    get_customer_history,
    serialize_customer,
)
from services.errors import (
    InsufficientAvailabilityError,
    MouldRentalError,
    NotFoundError,
    ReceiptRetriesExhaustedError,
    RentalValidationError,
)
from services.inventory_service import reconcile_all, reconcile_mould_type
from services.mould_service import (
    create_mould_type,
    delete_mould_type,
    get_mould_type,
    list_mould_types,
    serialize_mould_type,
    serialize_mould_type_detail,
    update_mould_type,
)
from services.rental_service import (
    create_rental,
    delete_rental,
    get_rental,
    list_rentals,
    process_return,
    rental_stats,
    serialize_rental,
)

app = FastAPI(title="Mould Rental")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


def log_audit(db: Session, entity_type: str, entity_id: int, action: str, details: str | None = None) -> None:
    db.add(
        AuditLog(
            EntityType=entity_type,
            EntityID=entity_id,
            Action=action,
            Details=details,
            CreatedAt=datetime.now(),
        )
    )


def _to_http_error(exc: MouldRentalError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InsufficientAvailabilityError):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "mouldTypeID": exc.mould_type_id,
                "name": exc.name,
                "requested": exc.requested,
                "available": exc.available,
                "shortfall": exc.shortfall,
            },
        )
    if isinstance(exc, ReceiptRetriesExhaustedError):
        return HTTPException(status_code=503, detail=str(exc), headers={"Retry-After": "1"})
    if isinstance(exc, RentalValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _to_local_naive(value: datetime | None) -> datetime | None:
    # Billing works on the shop's wall clock; stored instants are naive local times.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.get("/api/moulds")
def get_moulds(db: Session = Depends(get_rental_db)):
    return [serialize_mould_type(mould) for mould in list_mould_types(db)]


@app.post("/api/moulds")
def create_mould(payload: CreateMouldTypeDto, db: Session = Depends(get_rental_db)):
    try:
        mould = create_mould_type(db, payload.name, payload.quantity)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "MouldType", mould.MouldTypeID, "CreateMouldType", f"quantity={mould.Quantity}")
    db.commit()
    return serialize_mould_type(mould)


@app.post("/api/moulds/reconcile")
def reconcile_moulds(db: Session = Depends(get_rental_db)):
    try:
        reports = reconcile_all(db)
        for report in reports:
            if report.delta:
                log_audit(db, "MouldType", report.mould_type_id, "Reconcile", f"old={report.old_available} new={report.new_available}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    return [report.as_dict() for report in reports]


@app.get("/api/moulds/{mould_type_id}")
def get_mould(mould_type_id: int, db: Session = Depends(get_rental_db)):
    try:
        mould = get_mould_type(db, mould_type_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    return serialize_mould_type_detail(db, mould)


@app.patch("/api/moulds/{mould_type_id}")
def update_mould(mould_type_id: int, payload: UpdateMouldTypeDto, db: Session = Depends(get_rental_db)):
    try:
        mould = update_mould_type(db, mould_type_id, name=payload.name, quantity=payload.quantity)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "MouldType", mould_type_id, "UpdateMouldType", f"quantity={mould.Quantity} available={mould.Available}")
    db.commit()
    return serialize_mould_type(mould)


@app.delete("/api/moulds/{mould_type_id}")
def delete_mould(mould_type_id: int, db: Session = Depends(get_rental_db)):
    try:
        delete_mould_type(db, mould_type_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "MouldType", mould_type_id, "DeleteMouldType")
    db.commit()
    return {"message": "Deleted"}


@app.post("/api/moulds/{mould_type_id}/reconcile")
def reconcile_mould(mould_type_id: int, db: Session = Depends(get_rental_db)):
    try:
        report = reconcile_mould_type(db, mould_type_id)
        if report.delta:
            log_audit(db, "MouldType", mould_type_id, "Reconcile", f"old={report.old_available} new={report.new_available}")
        db.commit()
    except MouldRentalError as exc:
        db.rollback()
        raise _to_http_error(exc) from exc
    return report.as_dict()


@app.get("/api/rentals")
def get_rentals(
    status: str | None = Query(None),
    search: str | None = Query(None),
    db: Session = Depends(get_rental_db),
):
    now = datetime.now()
    try:
        rentals = list_rentals(db, status=status, search=search, now=now)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    return [serialize_rental(rental, now) for rental in rentals]


@app.post("/api/rentals")
def create_rental_route(payload: CreateRentalDto, db: Session = Depends(get_rental_db)):
    customer = CustomerDetails(
        full_name=payload.fullName,
        contact_number=payload.contactNumber,
        id_card_number=payload.idCardNumber,
        id_card_collected=payload.idCardCollected,
    )
    try:
        rental = create_rental(
            db,
            [(item.mouldTypeID, item.quantity) for item in payload.items],
            _to_local_naive(payload.pickupDateTime),
            deposit_amount=payload.depositAmount,
            daily_rate=payload.dailyRate,
            customer=customer,
            notes=payload.notes,
        )
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "Rental", rental.RentalID, "CreateRental", f"receipt={rental.ReceiptNumber}")
    db.commit()
    return serialize_rental(rental)


@app.post("/api/rentals/quote")
def quote_rental(payload: QuoteRequest):
    pickup = _to_local_naive(payload.pickupDateTime)
    returned = _to_local_naive(payload.returnDateTime)
    try:
        validate_return_window(pickup, returned)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    charges = calculate_rental_charges(
        pickup,
        returned,
        payload.depositAmount if payload.depositAmount is not None else DEFAULT_DEPOSIT_AMOUNT,
        payload.dailyRate if payload.dailyRate is not None else DEFAULT_DAILY_RATE,
    )
    return charges.as_dict()


@app.get("/api/rentals/{rental_id}")
def get_rental_route(rental_id: int, db: Session = Depends(get_rental_db)):
    try:
        rental = get_rental(db, rental_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    return serialize_rental(rental)


@app.post("/api/rentals/{rental_id}/return")
def return_rental(rental_id: int, payload: ReturnRequest, db: Session = Depends(get_rental_db)):
    try:
        rental = process_return(db, rental_id, _to_local_naive(payload.returnDateTime))
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(
        db,
        "Rental",
        rental_id,
        "Return",
        f"days={rental.DaysUsed} total={rental.TotalCharge} refund={rental.RefundAmount} additional={rental.AdditionalPayment}",
    )
    db.commit()
    return serialize_rental(rental)


@app.delete("/api/rentals/{rental_id}")
def delete_rental_route(rental_id: int, db: Session = Depends(get_rental_db)):
    try:
        released = delete_rental(db, rental_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "Rental", rental_id, "DeleteRental", f"released={released}")
    db.commit()
    return {"message": "Deleted", "released": released}


@app.get("/api/customers/{customer_id}")
def get_customer_route(customer_id: int, db: Session = Depends(get_rental_db)):
    try:
        customer = get_customer(db, customer_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    payload = serialize_customer(customer)
    payload["rentals"] = [serialize_rental(rental) for rental in get_customer_history(db, customer_id)]
    return payload


@app.get("/api/customers/{customer_id}/history")
def get_customer_history_route(customer_id: int, db: Session = Depends(get_rental_db)):
    try:
        rentals = get_customer_history(db, customer_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    return [serialize_rental(rental) for rental in rentals]


@app.delete("/api/customers/{customer_id}")
def delete_customer_route(customer_id: int, db: Session = Depends(get_rental_db)):
    try:
        delete_customer(db, customer_id)
    except MouldRentalError as exc:
        raise _to_http_error(exc) from exc
    log_audit(db, "Customer", customer_id, "DeleteCustomer")
    db.commit()
    return {"success": True}


@app.get("/api/stats")
def get_stats(db: Session = Depends(get_rental_db)):
    return rental_stats(db)
