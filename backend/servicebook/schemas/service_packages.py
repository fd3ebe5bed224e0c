# backend/servicebook/schemas/service_packages.py

from typing import Optional
from pydantic import BaseModel, Field, model_validator


class PackageItemIn(BaseModel):
    service_id: int
    quantity: int = Field(1, ge=1)
    order: int = 0
    is_optional: bool = False


class PackageItemRead(PackageItemIn):
    id: int

    model_config = {"from_attributes": True}


class ServicePackageCreate(BaseModel):
    """Totals are computed server-side from items and the discount."""
    name: str
    description: Optional[str] = None
    items: list[PackageItemIn] = Field(..., min_length=1)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    discount_amount: Optional[int] = Field(None, ge=0)
    requires_deposit: bool = False
    deposit_percentage: Optional[float] = Field(None, gt=0, le=100)
    deposit_amount: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_items_and_deposit(self):
        service_ids = [item.service_id for item in self.items]
        if len(service_ids) != len(set(service_ids)):
            raise ValueError("Each service may appear only once in a package")
        if self.requires_deposit and (self.deposit_percentage is None) == (self.deposit_amount is None):
            raise ValueError("Exactly one of deposit_percentage / deposit_amount is required when requires_deposit")
        return self


class ServicePackageRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    total_price: int
    individual_price_total: int
    discount_amount: int
    discount_percentage: Optional[float] = None
    total_duration_minutes: int
    requires_deposit: bool
    deposit_percentage: Optional[float] = None
    deposit_amount: Optional[int] = None
    is_active: bool
    items: list[PackageItemRead] = []

    model_config = {"from_attributes": True}
