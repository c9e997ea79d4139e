import math
from typing import Any, Optional

from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from common import inventory
from common.app_factory import create_service_app
from common.config import get_settings
from common.database import get_db
from common.dependencies import get_current_user, get_equipment_or_404, require_editor
from common.models import Category, Equipment, EquipmentStatus, EquipmentType, InstallationType, Location, User
from common.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from common.schemas import (
    BrandModelChange,
    CategoryChange,
    EquipmentAvailability,
    EquipmentCreate,
    EquipmentPage,
    EquipmentRead,
    EquipmentUpdate,
    InstallationResult,
    InstallationReturn,
    InstallationReturnResult,
    InstallationUpdate,
    LocationChange,
    StatusChange,
    TypeChange,
)

settings = get_settings()
app = create_service_app("Equipment Service", "equipment")

SORTABLE_FIELDS = {
    "updated_at": Equipment.updated_at,
    "created_at": Equipment.created_at,
    "brand": Equipment.brand,
    "model": Equipment.model,
    "type": Equipment.type,
    "category": Equipment.category,
    "status": Equipment.status,
    "location": Equipment.location,
    "serial_number": Equipment.serial_number,
    "next_maintenance_date": Equipment.next_maintenance_date,
}
# Required columns that an explicit null in a PUT body must not clear.
REQUIRED_FIELDS = ("brand", "model")
INSTALLATION_TYPES = {member.value for member in InstallationType}


def _ensure_serial_available(db: Session, serial_number: Optional[str], exclude_id: Optional[int] = None) -> None:
    if not serial_number:
        return
    query = db.query(Equipment).filter(Equipment.serial_number == serial_number)
    if exclude_id is not None:
        query = query.filter(Equipment.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Equipment with this serial number already exists"
        )


def _require_type(db: Session, type_id: int, missing_status: int = status.HTTP_400_BAD_REQUEST) -> EquipmentType:
    equipment_type = db.get(EquipmentType, type_id)
    if equipment_type is None:
        raise HTTPException(status_code=missing_status, detail="Invalid equipment type")
    return equipment_type


def _require_category(db: Session, category_id: int, missing_status: int = status.HTTP_400_BAD_REQUEST) -> Category:
    category = db.get(Category, category_id)
    if category is None:
        raise HTTPException(status_code=missing_status, detail="Invalid category")
    return category


@app.get("/equipment", response_model=EquipmentPage)
@limiter.limit(READ_LIMIT)
def list_equipment(
    request: Request,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    type: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    status_filter: Optional[EquipmentStatus] = Query(None, alias="status"),
    location_id: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "updated_at",
    sort_order: str = "desc",
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    limit = limit or settings.equipment_page_size
    query = db.query(Equipment)
    if type:
        query = query.filter(Equipment.type == type)
    if category:
        query = query.filter(Equipment.category == category)
    if brand:
        query = query.filter(Equipment.brand == brand)
    if status_filter:
        query = query.filter(Equipment.status == status_filter.value)
    if location_id is not None:
        query = query.filter(Equipment.location_id == location_id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Equipment.type.ilike(pattern),
                Equipment.category.ilike(pattern),
                Equipment.brand.ilike(pattern),
                Equipment.model.ilike(pattern),
                Equipment.serial_number.ilike(pattern),
                Equipment.location.ilike(pattern),
                Equipment.description.ilike(pattern),
            )
        )

    column = SORTABLE_FIELDS.get(sort_by, Equipment.updated_at)
    ordering = column.asc() if sort_order.lower() == "asc" else column.desc()
    total = query.count()
    rows = query.order_by(ordering, Equipment.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "total": total,
        "total_pages": math.ceil(total / limit),
        "current_page": page,
        "equipment": rows,
    }


@app.get("/equipment/lookup", response_model=EquipmentRead)
@limiter.limit(READ_LIMIT)
def lookup_by_serial(
    request: Request,
    serial_number: str = Query(..., min_length=1),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Equipment:
    equipment = db.query(Equipment).filter(Equipment.serial_number == serial_number).first()
    if not equipment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Equipment not found")
    return equipment


@app.get("/equipment/{equipment_id}", response_model=EquipmentRead)
@limiter.limit(READ_LIMIT)
def get_equipment(
    request: Request,
    _: User = Depends(get_current_user),
    equipment: Equipment = Depends(get_equipment_or_404),
) -> Equipment:
    return equipment


@app.post("/equipment", response_model=EquipmentRead, status_code=status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
def create_equipment(
    request: Request,
    equipment_in: EquipmentCreate,
    current_user: User = Depends(require_editor),
    db: Session = Depends(get_db),
) -> Equipment:
    _require_type(db, equipment_in.type_id)
    if equipment_in.category_id is not None:
        _require_category(db, equipment_in.category_id)
    _ensure_serial_available(db, equipment_in.serial_number)

    fields = equipment_in.model_dump(exclude_unset=True)
    return inventory.create_equipment(db, current_user.id, fields)


@app.put("/equipment/{equipment_id}", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def update_equipment(
    request: Request,
    equipment_update: EquipmentUpdate,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    changes = equipment_update.model_dump(exclude_unset=True)
    for field in REQUIRED_FIELDS:
        if field in changes and changes[field] is None:
            changes.pop(field)

    if changes.get("type_id") is not None:
        _require_type(db, changes["type_id"])
    if changes.get("category_id") is not None:
        _require_category(db, changes["category_id"])
    if changes.get("serial_number") and changes["serial_number"] != equipment.serial_number:
        _ensure_serial_available(db, changes["serial_number"], exclude_id=equipment.id)

    return inventory.update_equipment(db, equipment, current_user.id, changes)


@app.delete("/equipment/{equipment_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(WRITE_LIMIT)
def delete_equipment(
    request: Request,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> None:
    inventory.delete_equipment(db, equipment, current_user.id)


@app.patch("/equipment/{equipment_id}/status", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def change_status(
    request: Request,
    status_change: StatusChange,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    return inventory.change_status(db, equipment, current_user.id, status_change.status.value)


@app.patch("/equipment/{equipment_id}/location", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def change_location(
    request: Request,
    location_change: LocationChange,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    if location_change.location_id is not None:
        if db.get(Location, location_change.location_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")
    elif not location_change.location:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="location_id or location is required")

    return inventory.change_location(
        db,
        equipment,
        current_user.id,
        location_id=location_change.location_id,
        location=location_change.location,
    )


@app.patch("/equipment/{equipment_id}/type", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def change_type(
    request: Request,
    type_change: TypeChange,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    _require_type(db, type_change.type_id, missing_status=status.HTTP_404_NOT_FOUND)
    return inventory.update_equipment(db, equipment, current_user.id, {"type_id": type_change.type_id})


@app.patch("/equipment/{equipment_id}/category", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def change_category(
    request: Request,
    category_change: CategoryChange,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    if category_change.category_id is None:
        changes: dict[str, Any] = {"category_id": None, "category": ""}
    else:
        _require_category(db, category_change.category_id, missing_status=status.HTTP_404_NOT_FOUND)
        changes = {"category_id": category_change.category_id}
    return inventory.update_equipment(db, equipment, current_user.id, changes)


@app.patch("/equipment/{equipment_id}/brand-model", response_model=EquipmentRead)
@limiter.limit(WRITE_LIMIT)
def change_brand_model(
    request: Request,
    brand_model: BrandModelChange,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> Equipment:
    changes = {field: value for field, value in brand_model.model_dump().items() if value}
    return inventory.update_equipment(db, equipment, current_user.id, changes)


@app.put("/equipment/{equipment_id}/installation", response_model=InstallationResult)
@limiter.limit(WRITE_LIMIT)
def update_installation(
    request: Request,
    installation: InstallationUpdate,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if installation.installation_type not in INSTALLATION_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid installation type")
    total = equipment.quantity or 1
    if installation.installation_quantity and installation.installation_quantity > total:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Installation quantity cannot exceed total equipment quantity ({total})",
        )
    if installation.installation_type != InstallationType.PORTABLE.value:
        if installation.installation_location_id is None and not installation.installation_location:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Installation location is required for fixed/semi-permanent equipment",
            )
    if installation.installation_location_id is not None:
        if db.get(Location, installation.installation_location_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Location not found")

    equipment = inventory.set_installation(db, equipment, current_user.id, installation.model_dump())
    return {"message": "Equipment installation details updated successfully", "equipment": equipment}


@app.delete("/equipment/{equipment_id}/installation", response_model=InstallationReturnResult)
@limiter.limit(WRITE_LIMIT)
def return_from_installation(
    request: Request,
    installation_return: Optional[InstallationReturn] = None,
    current_user: User = Depends(require_editor),
    equipment: Equipment = Depends(get_equipment_or_404),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    if equipment.installation_type == InstallationType.PORTABLE.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Equipment is already in portable status")
    installed = equipment.installation_quantity or 0
    quantity = installation_return.quantity if installation_return else None
    if quantity is not None and quantity > installed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot return {quantity} items. Only {installed} items are currently installed.",
        )

    equipment, returned, remaining = inventory.return_from_installation(db, equipment, current_user.id, quantity)
    noun = "item" if returned == 1 else "items"
    if remaining:
        outcome = f"({remaining} items still installed)"
    else:
        outcome = "(equipment now portable)"
    return {
        "message": f"Successfully returned {returned} {noun} from installation {outcome}",
        "equipment": equipment,
        "returned_quantity": returned,
        "remaining_installation_quantity": remaining,
    }


@app.get("/equipment/{equipment_id}/availability", response_model=EquipmentAvailability)
@limiter.limit(READ_LIMIT)
def get_availability(
    request: Request,
    _: User = Depends(get_current_user),
    equipment: Equipment = Depends(get_equipment_or_404),
) -> dict[str, Any]:
    return inventory.availability(equipment)
