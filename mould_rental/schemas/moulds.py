from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateMouldTypeDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    quantity: int = Field(0, ge=0)


class UpdateMouldTypeDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
