from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProcessPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    paymentMethod: str = Field(min_length=1)
    transactionId: Optional[str] = None
    reference: Optional[str] = None
    paidAmount: Optional[float] = Field(None, gt=0)
    notes: Optional[str] = None


class RefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    refundAmount: float = Field(gt=0)
    reason: Optional[str] = None
    refundMethod: Optional[str] = None


class LateFeeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    lateFeeAmount: float = Field(gt=0)
