from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$"
BusinessType = Literal["Construction", "Landscaping", "Agriculture", "Mining", "Transportation", "Other"]


class AddressDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipCode: Optional[str] = None
    country: str = "USA"


class ContactPersonDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    title: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class CustomerUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)
    phone: str = Field(min_length=1)
    businessType: BusinessType
    address: Optional[AddressDto] = None
    contactPerson: Optional[ContactPersonDto] = None
    creditLimit: float = Field(0, ge=0)
    notes: Optional[str] = None


class CustomerUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, min_length=1)
    businessType: Optional[BusinessType] = None
    address: Optional[AddressDto] = None
    contactPerson: Optional[ContactPersonDto] = None
    creditLimit: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
