from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateRentalItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mouldTypeID: int
    quantity: int = 1


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pickupDateTime: datetime
    depositAmount: Optional[Decimal] = Field(None, ge=0)
    dailyRate: Optional[Decimal] = Field(None, ge=0)
    fullName: Optional[str] = None
    contactNumber: Optional[str] = None
    idCardNumber: Optional[str] = None
    idCardCollected: bool = False
    notes: Optional[str] = None
    items: List[CreateRentalItemDto] = []


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returnDateTime: Optional[datetime] = None


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pickupDateTime: datetime
    returnDateTime: datetime
    depositAmount: Optional[Decimal] = Field(None, ge=0)
    dailyRate: Optional[Decimal] = Field(None, ge=0)
