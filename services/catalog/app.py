"""Reference data for equipment: storage locations, categories and types.

Reads are cached briefly; every write drops the cached listings of its kind.
Renaming an entry re-derives the equipment rows that point at it so their
denormalized names (and, for locations, their status) stay current.
"""
from typing import List, Optional, Type, TypeVar

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import or_
from sqlalchemy.orm import Session

from common import inventory
from common.app_factory import create_service_app
from common.cache import catalog_cache, catalog_key, invalidate_catalog
from common.database import Base, get_db
from common.dependencies import get_current_user, require_admin
from common.models import Category, Equipment, EquipmentType, Location, User
from common.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from common.schemas import (
    CategoryCreate,
    CategoryRead,
    CategoryUpdate,
    EquipmentTypeCreate,
    EquipmentTypeRead,
    EquipmentTypeUpdate,
    LocationCreate,
    LocationRead,
    LocationUpdate,
)

app = create_service_app("Catalog Service", "catalog")

ModelT = TypeVar("ModelT", bound=Base)
ReadT = TypeVar("ReadT", bound=BaseModel)


def _get_or_404(db: Session, model: Type[ModelT], item_id: int, label: str) -> ModelT:
    item = db.get(model, item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found")
    return item


def _ensure_name_free(db: Session, model: Type[Base], name: str, label: str, exclude_id: Optional[int] = None) -> None:
    query = db.query(model).filter(model.name == name)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{label} already exists")


def _cached_listing(db: Session, kind: str, model: Type[Base], schema: Type[ReadT]) -> List[ReadT]:
    cache_key = catalog_key(kind, "all")
    cached = catalog_cache.get(cache_key)
    if cached is not None:
        return cached
    items = [schema.model_validate(row) for row in db.query(model).order_by(model.name).all()]
    catalog_cache.set(cache_key, items)
    return items


def _save(db: Session, item: Base) -> None:
    db.add(item)
    db.commit()
    db.refresh(item)


def _apply_update(
    db: Session,
    item: Base,
    changes: dict,
    kind: str,
    label: str,
    reference_field: str,
    current_user: User,
) -> None:
    renamed = "name" in changes and changes["name"] != item.name
    if renamed:
        _ensure_name_free(db, type(item), changes["name"], label, exclude_id=item.id)
    for key, value in changes.items():
        setattr(item, key, value)
    if renamed:
        # Commits the rename together with the re-derived equipment rows.
        inventory.refresh_references(db, reference_field, item.id, current_user.id)
        db.refresh(item)
    else:
        _save(db, item)
    invalidate_catalog(kind)


# Locations


@app.get("/locations", response_model=List[LocationRead])
@limiter.limit(READ_LIMIT)
def list_locations(
    request: Request,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[LocationRead]:
    return _cached_listing(db, "locations", Location, LocationRead)


@app.get("/locations/{location_id}", response_model=LocationRead)
@limiter.limit(READ_LIMIT)
def get_location(
    request: Request,
    location_id: int,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Location:
    return _get_or_404(db, Location, location_id, "Location")


@app.post("/locations", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_location(
    request: Request,
    location_in: LocationCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Location:
    _ensure_name_free(db, Location, location_in.name, "Location")
    location = Location(**location_in.model_dump())
    _save(db, location)
    invalidate_catalog("locations")
    return location


@app.put("/locations/{location_id}", response_model=LocationRead)
@limiter.limit(WRITE_LIMIT)
def update_location(
    request: Request,
    location_id: int,
    location_update: LocationUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Location:
    location = _get_or_404(db, Location, location_id, "Location")
    changes = location_update.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    _apply_update(db, location, changes, "locations", "Location", "location_id", current_user)
    return location


@app.delete("/locations/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
def delete_location(
    request: Request,
    location_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    location = _get_or_404(db, Location, location_id, "Location")
    in_use = or_(Equipment.location_id == location_id, Equipment.installation_location_id == location_id)
    if db.query(Equipment).filter(in_use).count():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete location that is used by equipment. Update equipment locations first.",
        )
    db.delete(location)
    db.commit()
    invalidate_catalog("locations")


# Categories


@app.get("/categories", response_model=List[CategoryRead])
@limiter.limit(READ_LIMIT)
def list_categories(
    request: Request,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[CategoryRead]:
    return _cached_listing(db, "categories", Category, CategoryRead)


@app.get("/categories/{category_id}", response_model=CategoryRead)
@limiter.limit(READ_LIMIT)
def get_category(
    request: Request,
    category_id: int,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Category:
    return _get_or_404(db, Category, category_id, "Category")


@app.post("/categories", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_category(
    request: Request,
    category_in: CategoryCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Category:
    _ensure_name_free(db, Category, category_in.name, "Category")
    category = Category(**category_in.model_dump())
    _save(db, category)
    invalidate_catalog("categories")
    return category


@app.put("/categories/{category_id}", response_model=CategoryRead)
@limiter.limit(WRITE_LIMIT)
def update_category(
    request: Request,
    category_id: int,
    category_update: CategoryUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Category:
    category = _get_or_404(db, Category, category_id, "Category")
    changes = category_update.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    _apply_update(db, category, changes, "categories", "Category", "category_id", current_user)
    return category


@app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
def delete_category(
    request: Request,
    category_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    category = _get_or_404(db, Category, category_id, "Category")
    # Equipment keeps the category name it already carries.
    db.query(Equipment).filter(Equipment.category_id == category_id).update(
        {Equipment.category_id: None}, synchronize_session=False
    )
    db.delete(category)
    db.commit()
    invalidate_catalog("categories")


# Equipment types


@app.get("/equipment-types", response_model=List[EquipmentTypeRead])
@limiter.limit(READ_LIMIT)
def list_equipment_types(
    request: Request,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[EquipmentTypeRead]:
    return _cached_listing(db, "types", EquipmentType, EquipmentTypeRead)


@app.get("/equipment-types/{type_id}", response_model=EquipmentTypeRead)
@limiter.limit(READ_LIMIT)
def get_equipment_type(
    request: Request,
    type_id: int,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> EquipmentType:
    return _get_or_404(db, EquipmentType, type_id, "Equipment type")


@app.post("/equipment-types", response_model=EquipmentTypeRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_equipment_type(
    request: Request,
    type_in: EquipmentTypeCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> EquipmentType:
    _ensure_name_free(db, EquipmentType, type_in.name, "Equipment type")
    equipment_type = EquipmentType(name=type_in.name)
    _save(db, equipment_type)
    invalidate_catalog("types")
    return equipment_type


@app.put("/equipment-types/{type_id}", response_model=EquipmentTypeRead)
@limiter.limit(WRITE_LIMIT)
def update_equipment_type(
    request: Request,
    type_id: int,
    type_update: EquipmentTypeUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> EquipmentType:
    equipment_type = _get_or_404(db, EquipmentType, type_id, "Equipment type")
    _apply_update(
        db, equipment_type, type_update.model_dump(), "types", "Equipment type", "type_id", current_user
    )
    return equipment_type


@app.delete("/equipment-types/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
def delete_equipment_type(
    request: Request,
    type_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    equipment_type = _get_or_404(db, EquipmentType, type_id, "Equipment type")
    if db.query(Equipment).filter(Equipment.type_id == type_id).count():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete equipment type that is used by equipment",
        )
    db.delete(equipment_type)
    db.commit()
    invalidate_catalog("types")
