from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: int
    vehicleID: int
    startDate: datetime
    expectedEndDate: datetime
    totalAmount: float = Field(ge=0)
    notes: Optional[str] = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returnCondition: str = Field(min_length=1)
    notes: Optional[str] = None
    images: List[str] = []
    checkedBy: Optional[str] = None
    damageCharges: float = Field(0, ge=0)
    actualEndDate: Optional[datetime] = None


class ExtensionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    newEndDate: datetime
    additionalAmount: float = Field(0, ge=0)


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    reason: Optional[str] = None
    cancellationFee: float = Field(0, ge=0)
