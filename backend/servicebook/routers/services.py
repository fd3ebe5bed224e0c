# backend/servicebook/routers/services.py
# DELETE = soft-delete (deleted_at / is_active); windows and blocks are hard-deleted

from datetime import date

from fastapi import APIRouter, Depends, status
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..errors import NotFoundError
from ..models.tables import (
    BookingCapacitySlots as DBCapacityBlock,
    ServiceAddOns as DBAddOn,
    ServiceAvailabilityWindows as DBWindow,
    ServiceLocations as DBLocation,
    Services as DBService,
)
from ..redis_client import get_redis
from ..schemas.services import (
    AddOnCreate,
    AddOnRead,
    CapacityBlockCreate,
    CapacityBlockRead,
    LocationCreate,
    LocationRead,
    ServiceCreate,
    ServiceRead,
    WindowCreate,
    WindowRead,
)
from ..services.slots import invalidate_service_cache
from ..services.slots.config import utcnow
from ..services.slots.invalidator import get_affected_dates_from_window

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["services"])


def _get_service(db: Session, id: int) -> DBService:
    obj = db.get(DBService, id)
    if not obj or obj.deleted_at is not None:
        raise NotFoundError(f"Service {id} not found", "service_id")
    return obj


def _invalidate(redis: Redis | None, service_id: int, dates: list[date] | None) -> None:
    if redis is None:
        return
    try:
        invalidate_service_cache(redis, service_id, dates)
    except RedisError:
        logger.warning(f"Slots cache invalidation failed for service={service_id}")


# ── Services ─────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ServiceRead])
def list_services(db: Session = Depends(get_db)):
    return (
        db.query(DBService)
        .filter(DBService.deleted_at.is_(None))
        .all()
    )


@router.get("/{id}", response_model=ServiceRead)
def get_service(id: int, db: Session = Depends(get_db)):
    return _get_service(db, id)


@router.post("/", response_model=ServiceRead, status_code=status.HTTP_201_CREATED)
def create_service(
    data: ServiceCreate,
    db: Session = Depends(get_db),
):
    obj = DBService(**data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(
    id: int,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    obj = _get_service(db, id)
    obj.deleted_at = utcnow()
    db.commit()
    _invalidate(redis, id, None)


# ── Locations ────────────────────────────────────────────────────────────


@router.get("/{id}/locations", response_model=list[LocationRead])
def list_locations(id: int, db: Session = Depends(get_db)):
    return (
        db.query(DBLocation)
        .filter(DBLocation.service_id == id, DBLocation.deleted_at.is_(None))
        .all()
    )


@router.post("/{id}/locations", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
def create_location(
    id: int,
    data: LocationCreate,
    db: Session = Depends(get_db),
):
    _get_service(db, id)
    obj = DBLocation(service_id=id, **data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.delete("/{id}/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location(
    id: int,
    location_id: int,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    obj = db.get(DBLocation, location_id)
    if not obj or obj.service_id != id or obj.deleted_at is not None:
        raise NotFoundError(f"Location {location_id} not found", "service_location_id")
    obj.is_active = False
    obj.deleted_at = utcnow()
    db.commit()
    _invalidate(redis, id, None)


# ── Availability windows ─────────────────────────────────────────────────


@router.get("/{id}/windows", response_model=list[WindowRead])
def list_windows(id: int, db: Session = Depends(get_db)):
    return (
        db.query(DBWindow)
        .filter(DBWindow.service_id == id)
        .order_by(DBWindow.id)
        .all()
    )


@router.post("/{id}/windows", response_model=WindowRead, status_code=status.HTTP_201_CREATED)
def create_window(
    id: int,
    data: WindowCreate,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    _get_service(db, id)
    if data.service_location_id is not None:
        location = db.get(DBLocation, data.service_location_id)
        if not location or location.service_id != id:
            raise NotFoundError(
                f"Location {data.service_location_id} does not belong to service {id}",
                "service_location_id",
            )

    obj = DBWindow(service_id=id, **data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)

    _invalidate(redis, id, get_affected_dates_from_window(obj))
    return obj


@router.delete("/{id}/windows/{window_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_window(
    id: int,
    window_id: int,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    obj = db.get(DBWindow, window_id)
    if not obj or obj.service_id != id:
        raise NotFoundError(f"Window {window_id} not found", "availability_window_id")

    dates = get_affected_dates_from_window(obj)
    db.delete(obj)
    db.commit()
    _invalidate(redis, id, dates)


# ── Add-ons ──────────────────────────────────────────────────────────────


@router.get("/{id}/add-ons", response_model=list[AddOnRead])
def list_add_ons(id: int, db: Session = Depends(get_db)):
    return db.query(DBAddOn).filter(DBAddOn.service_id == id).all()


@router.post("/{id}/add-ons", response_model=AddOnRead, status_code=status.HTTP_201_CREATED)
def create_add_on(
    id: int,
    data: AddOnCreate,
    db: Session = Depends(get_db),
):
    _get_service(db, id)
    obj = DBAddOn(service_id=id, **data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


# ── Manual capacity blocks ───────────────────────────────────────────────


@router.post("/{id}/capacity-blocks", response_model=CapacityBlockRead, status_code=status.HTTP_201_CREATED)
def create_capacity_block(
    id: int,
    data: CapacityBlockCreate,
    db: Session = Depends(get_db),
):
    _get_service(db, id)
    obj = DBCapacityBlock(service_id=id, **data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.delete("/{id}/capacity-blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_capacity_block(id: int, block_id: int, db: Session = Depends(get_db)):
    obj = db.get(DBCapacityBlock, block_id)
    if not obj or obj.service_id != id:
        raise NotFoundError(f"Capacity block {block_id} not found", "block_id")
    db.delete(obj)
    db.commit()
