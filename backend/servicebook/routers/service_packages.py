# backend/servicebook/routers/service_packages.py
# Totals are computed here; clients never send total_price

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import NotFoundError
from ..models.tables import (
    ServicePackageItems as DBPackageItem,
    ServicePackages as DBPackage,
    Services as DBService,
)
from ..schemas.service_packages import ServicePackageCreate, ServicePackageRead
from ..services.pricing import compute_package_totals

router = APIRouter(prefix="/service-packages", tags=["service-packages"])


@router.get("/", response_model=list[ServicePackageRead])
def list_packages(db: Session = Depends(get_db)):
    return (
        db.query(DBPackage)
        .filter(DBPackage.deleted_at.is_(None))
        .all()
    )


@router.get("/{id}", response_model=ServicePackageRead)
def get_package(id: int, db: Session = Depends(get_db)):
    obj = db.get(DBPackage, id)
    if not obj or obj.deleted_at is not None:
        raise NotFoundError(f"Package {id} not found", "service_package_id")
    return obj


@router.post("/", response_model=ServicePackageRead, status_code=status.HTTP_201_CREATED)
def create_package(
    data: ServicePackageCreate,
    db: Session = Depends(get_db),
):
    items = []
    for item in data.items:
        service = db.get(DBService, item.service_id)
        if not service or service.deleted_at is not None:
            raise NotFoundError(f"Service {item.service_id} not found", "items.service_id")
        items.append((service, item.quantity, item.is_optional))

    totals = compute_package_totals(items, data.discount_percentage, data.discount_amount)

    obj = DBPackage(
        name=data.name,
        description=data.description,
        total_price=totals.total_price,
        individual_price_total=totals.individual_price_total,
        discount_amount=totals.discount_amount,
        discount_percentage=data.discount_percentage,
        total_duration_minutes=totals.total_duration_minutes,
        requires_deposit=data.requires_deposit,
        deposit_percentage=data.deposit_percentage,
        deposit_amount=data.deposit_amount,
        is_active=data.is_active,
    )
    db.add(obj)
    db.flush()

    for item in data.items:
        db.add(DBPackageItem(service_package_id=obj.id, **item.model_dump()))

    db.commit()
    db.refresh(obj)
    return obj
