# backend/servicebook/schemas/payments.py

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    payment_type: Literal["deposit", "full", "final", "refund"]
    amount: Optional[int] = Field(None, gt=0, description="Defaults to the amount due for the payment type")


class PaymentRead(BaseModel):
    id: int
    booking_id: int
    payment_type: str
    amount: int
    status: str
    gateway: str
    transaction_reference: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
