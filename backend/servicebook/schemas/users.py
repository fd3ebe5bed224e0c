# backend/servicebook/schemas/users.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class UserCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None

    model_config = {"from_attributes": True}


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
