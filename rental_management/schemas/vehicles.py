from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

VehicleCondition = Literal["Good", "Fair", "Needs Inspection", "Poor"]


class VehicleUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vehicleNumber: str = Field(min_length=1)
    type: str = Field(min_length=1)
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    year: Optional[int] = None
    dailyRate: Optional[float] = Field(None, ge=0)
    condition: Optional[VehicleCondition] = None
    isActive: Optional[bool] = None


class VehicleUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vehicleNumber: Optional[str] = Field(None, min_length=1)
    type: Optional[str] = Field(None, min_length=1)
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    year: Optional[int] = None
    dailyRate: Optional[float] = Field(None, ge=0)
    condition: Optional[VehicleCondition] = None
    isActive: Optional[bool] = None
