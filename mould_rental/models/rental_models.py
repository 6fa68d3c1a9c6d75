from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


RENTAL_STATUS_ACTIVE = "ACTIVE"
RENTAL_STATUS_RETURNED = "RETURNED"
RENTAL_STATUSES = {RENTAL_STATUS_ACTIVE, RENTAL_STATUS_RETURNED}

RECEIPT_NUMBER_CONSTRAINT = "uq_rental_receipt_number"
CUSTOMER_ID_CARD_CONSTRAINT = "uq_customer_id_card_number"


class MouldType(Base):
    __tablename__ = "MouldTypes"

    MouldTypeID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False, unique=True)
    Quantity = Column(Integer, nullable=False, default=0)
    Available = Column(Integer, nullable=False, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    RentalItems = relationship("RentalItem", back_populates="MouldType")


class Customer(Base):
    __tablename__ = "Customers"
    __table_args__ = (UniqueConstraint("IdCardNumber", name=CUSTOMER_ID_CARD_CONSTRAINT),)

    CustomerID = Column(Integer, primary_key=True)
    FullName = Column(String(255), nullable=False)
    ContactNumber = Column(String(50))
    IdCardNumber = Column(String(100))
    IdCardCollected = Column(Boolean, default=False)
    IdCardCollectedDate = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer", cascade="all, delete-orphan")


class Rental(Base):
    __tablename__ = "Rental"
    __table_args__ = (UniqueConstraint("ReceiptNumber", name=RECEIPT_NUMBER_CONSTRAINT),)

    RentalID = Column(Integer, primary_key=True)
    ReceiptNumber = Column(String(20), nullable=False)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"))
    Status = Column(String(20), nullable=False, default=RENTAL_STATUS_ACTIVE)
    PickupDateTime = Column(DateTime, nullable=False)
    ReturnDateTime = Column(DateTime)
    DepositAmount = Column(Numeric(10, 2), nullable=False)
    DailyRate = Column(Numeric(10, 2), nullable=False)
    DaysUsed = Column(Integer)
    TotalCharge = Column(Numeric(10, 2))
    RefundAmount = Column(Numeric(10, 2))
    AdditionalPayment = Column(Numeric(10, 2))
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Customer = relationship("Customer", back_populates="Rentals")
    RentalItems = relationship("RentalItem", back_populates="Rental", cascade="all, delete-orphan")


class RentalItem(Base):
    __tablename__ = "RentalItems"

    RentalItemID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rental.RentalID"), nullable=False)
    MouldTypeID = Column(Integer, ForeignKey("MouldTypes.MouldTypeID"), nullable=False)
    Quantity = Column(Integer, nullable=False, default=1)

    Rental = relationship("Rental", back_populates="RentalItems")
    MouldType = relationship("MouldType", back_populates="RentalItems")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
