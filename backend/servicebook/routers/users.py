# backend/servicebook/routers/users.py
# Minimal client records; authentication lives outside this service

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import NotFoundError
from ..models.tables import Users as DBUsers
from ..schemas.users import (
    UserCreate,
    UserRead,
)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{id}", response_model=UserRead)
def get_user(id: int, db: Session = Depends(get_db)):
    obj = db.get(DBUsers, id)
    if not obj:
        raise NotFoundError(f"User {id} not found", "user_id")
    return obj


@router.post("/", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    data: UserCreate,
    db: Session = Depends(get_db),
):
    obj = DBUsers(**data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
