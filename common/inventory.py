"""Equipment write workflow: derive, persist, then append the log entry.

Each public function runs inside one unit of work. The equipment row is flushed
first and the log entry second, and both are committed together, so a failed
equipment write never leaves a log row behind and a failed log write surfaces
as a :class:`PersistenceError` instead of passing silently.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit_log import AuditLogRecorder
from .config import get_settings
from .derivation import DerivedState, StateDerivationEngine, StatusRule
from .errors import PersistenceError
from .lookups import build_engine
from .models import Equipment, EquipmentLog, EquipmentStatus, InstallationType, Location

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = (
    "type",
    "type_id",
    "category",
    "category_id",
    "brand",
    "model",
    "serial_number",
    "status",
    "quantity",
    "location",
    "location_id",
    "reference_image_id",
    "description",
    "installation_type",
    "installation_location",
    "installation_location_id",
    "installation_quantity",
)
# Copied straight from the request; everything else goes through derivation.
DESCRIPTIVE_FIELDS = (
    "brand",
    "model",
    "serial_number",
    "description",
    "reference_image_id",
    "maintenance_schedule",
    "last_maintenance_date",
    "next_maintenance_date",
    "installation_date",
    "installation_notes",
)
INSTALLATION_FIELDS = (
    "installation_type",
    "installation_location",
    "installation_location_id",
    "installation_quantity",
)
# Share of the total below which the availability report warns.
LOW_AVAILABILITY_RATIO = 0.2


def snapshot(equipment: Equipment) -> dict[str, Any]:
    return {field: getattr(equipment, field) for field in SNAPSHOT_FIELDS}


@contextmanager
def unit_of_work(db: Session, action: str) -> Iterator[None]:
    try:
        yield
        db.commit()
    except PersistenceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s failed: %s", action, exc)
        raise PersistenceError(f"{action} failed") from exc


def _audit_after(changes: Mapping[str, Any], derived: DerivedState, before: Mapping[str, Any]) -> dict[str, Any]:
    """Build the ``after`` snapshot handed to the recorder for a generic update.

    Holds what the caller sent plus the resolved names of any reference it
    touched. A status flip that only follows from moving the item is left out so
    the entry is logged as the location change it is.
    """
    after = {field: changes[field] for field in ("brand", "model", "serial_number") if field in changes}
    relocated = "location" in changes or "location_id" in changes
    if relocated or derived.status_rule == StatusRule.INSTALLATION:
        after["location"] = derived.location
    if "type" in changes or "type_id" in changes:
        after["type"] = derived.type
    if "category" in changes or "category_id" in changes:
        after["category"] = derived.category
    if "quantity" in changes:
        after["quantity"] = derived.quantity
    if any(field in changes for field in INSTALLATION_FIELDS):
        for field in ("installation_type", "installation_location", "installation_quantity"):
            after[field] = getattr(derived, field)

    moved = "location" in after and (before.get("location") or "") != (derived.location or "")
    location_driven = derived.status_rule in (StatusRule.HOME_LOCATION, StatusRule.LOCATION)
    if "status" in changes or not (moved and location_driven):
        after["status"] = derived.status
    return after


def _apply(equipment: Equipment, changes: Mapping[str, Any], derived: DerivedState) -> None:
    for field in DESCRIPTIVE_FIELDS:
        if field in changes:
            setattr(equipment, field, changes[field])
    for field, value in derived.as_fields().items():
        setattr(equipment, field, value)
    equipment.updated_at = datetime.utcnow()


def create_equipment(db: Session, user_id: Optional[int], fields: Mapping[str, Any]) -> Equipment:
    derived = build_engine(db).derive(None, fields)
    equipment = Equipment(**{field: fields[field] for field in DESCRIPTIVE_FIELDS if field in fields})
    _apply(equipment, {}, derived)

    with unit_of_work(db, "Create equipment"):
        db.add(equipment)
        db.flush()
        AuditLogRecorder(db).record_creation(equipment.id, user_id, snapshot(equipment))
    db.refresh(equipment)
    logger.info("Created equipment %s (status=%s, location=%r)", equipment.id, equipment.status, equipment.location)
    return equipment


def _update(
    db: Session,
    engine: StateDerivationEngine,
    equipment: Equipment,
    user_id: Optional[int],
    changes: Mapping[str, Any],
) -> EquipmentLog:
    before = snapshot(equipment)
    derived = engine.derive(before, changes)
    _apply(equipment, changes, derived)
    db.flush()
    return AuditLogRecorder(db).record_update(equipment.id, user_id, before, _audit_after(changes, derived, before))


def update_equipment(db: Session, equipment: Equipment, user_id: Optional[int], changes: Mapping[str, Any]) -> Equipment:
    with unit_of_work(db, f"Update equipment {equipment.id}"):
        _update(db, build_engine(db), equipment, user_id, changes)
    db.refresh(equipment)
    return equipment


def change_status(db: Session, equipment: Equipment, user_id: Optional[int], status: str) -> Equipment:
    """Apply a requested status; derivation still has the final word."""
    old_status = equipment.status
    derived = build_engine(db).derive(snapshot(equipment), {"status": status})
    with unit_of_work(db, f"Change status of equipment {equipment.id}"):
        _apply(equipment, {}, derived)
        db.flush()
        if derived.status != old_status:
            AuditLogRecorder(db).record_status_change(equipment.id, user_id, old_status, derived.status)
    db.refresh(equipment)
    return equipment


def change_location(
    db: Session,
    equipment: Equipment,
    user_id: Optional[int],
    location_id: Optional[int] = None,
    location: Optional[str] = None,
) -> Equipment:
    """Move equipment to a known location, or to free text when no id is given."""
    if location_id is not None:
        changes: dict[str, Any] = {"location_id": location_id}
    else:
        changes = {"location_id": None, "location": location or ""}

    old_location = equipment.location
    derived = build_engine(db).derive(snapshot(equipment), changes)
    with unit_of_work(db, f"Change location of equipment {equipment.id}"):
        _apply(equipment, {}, derived)
        db.flush()
        if (old_location or "") != (derived.location or ""):
            AuditLogRecorder(db).record_location_change(
                equipment.id, user_id, old_location or None, derived.location or None
            )
    db.refresh(equipment)
    return equipment


def delete_equipment(db: Session, equipment: Equipment, user_id: Optional[int]) -> None:
    equipment_id = equipment.id
    final_state = snapshot(equipment)
    with unit_of_work(db, f"Delete equipment {equipment_id}"):
        equipment.reference_image_id = None
        db.flush()
        if get_settings().cascade_delete_logs:
            removed = (
                db.query(EquipmentLog)
                .filter(EquipmentLog.equipment_id == equipment_id)
                .delete(synchronize_session=False)
            )
            logger.info("Removed %s log entries of equipment %s", removed, equipment_id)
        db.delete(equipment)
        db.flush()
        AuditLogRecorder(db).record_deletion(equipment_id, user_id, final_state)
    logger.info("Deleted equipment %s", equipment_id)


def set_installation(
    db: Session, equipment: Equipment, user_id: Optional[int], installation: Mapping[str, Any]
) -> Equipment:
    """Record how and where an item is installed.

    Empty values are stored as NULL and a missing quantity as 0. A ``fixed``
    installation with installed units moves the item to its installation
    location and marks it in use.
    """
    changes = {
        "installation_type": installation["installation_type"],
        "installation_location_id": installation.get("installation_location_id"),
        "installation_location": installation.get("installation_location") or None,
        "installation_date": installation.get("installation_date") or None,
        "installation_notes": installation.get("installation_notes") or None,
        "installation_quantity": installation.get("installation_quantity") or 0,
    }
    with unit_of_work(db, f"Set installation of equipment {equipment.id}"):
        _update(db, build_engine(db), equipment, user_id, changes)
    db.refresh(equipment)
    logger.info(
        "Equipment %s installation: %s x%s at %r",
        equipment.id,
        equipment.installation_type,
        equipment.installation_quantity,
        equipment.installation_location,
    )
    return equipment


def return_from_installation(
    db: Session, equipment: Equipment, user_id: Optional[int], quantity: Optional[int] = None
) -> tuple[Equipment, int, int]:
    """Take ``quantity`` units (all by default) out of their installation.

    Returning every unit makes the item portable again and sends it back to
    the home location. Returns the item, the returned and the remaining count.
    """
    installed = equipment.installation_quantity or 0
    returned = quantity or installed
    remaining = installed - returned

    if remaining > 0:
        changes: dict[str, Any] = {"installation_quantity": remaining}
    else:
        changes = {
            "installation_type": InstallationType.PORTABLE.value,
            "installation_location_id": None,
            "installation_location": None,
            "installation_date": None,
            "installation_notes": None,
            "installation_quantity": 0,
            "status": EquipmentStatus.AVAILABLE.value,
        }
        changes.update(_home_location(db))

    with unit_of_work(db, f"Return equipment {equipment.id} from installation"):
        _update(db, build_engine(db), equipment, user_id, changes)
    db.refresh(equipment)
    logger.info("Returned %s units of equipment %s from installation, %s remain", returned, equipment.id, remaining)
    return equipment, returned, remaining


def _home_location(db: Session) -> dict[str, Any]:
    home = get_settings().home_location_name
    row = db.query(Location).filter(func.lower(Location.name) == home.lower()).first()
    if row is None:
        return {"location_id": None, "location": home}
    return {"location_id": row.id}


def availability(equipment: Equipment) -> dict[str, Any]:
    """Summarize how many units of an item are free to use."""
    total = equipment.quantity or 0
    installed = equipment.installation_quantity or 0
    available = max(0, total - installed)

    warnings = []
    if total > 0 and available == 0:
        warnings.append({"type": "error", "message": "No units available. All equipment is allocated or reserved."})
    elif total > 0 and available < total * LOW_AVAILABILITY_RATIO:
        warnings.append(
            {"type": "warning", "message": f"Low availability: Only {available} of {total} units available."}
        )

    return {
        "equipment_id": equipment.id,
        "type": equipment.type,
        "brand": equipment.brand,
        "model": equipment.model,
        "total_quantity": total,
        "equipment_status": equipment.status,
        "installation_allocated": installed,
        "installation_type": equipment.installation_type,
        "installation_location": equipment.installation_location,
        "total_unavailable": installed,
        "available_quantity": available,
        "warnings": warnings,
    }


def refresh_references(db: Session, field: str, ref_id: int, user_id: Optional[int]) -> int:
    """Re-derive every row pointing at a renamed location, category or type.

    Keeps the denormalized names in step with the catalog; a location renamed to
    or from the home location also flips the status. Pending changes in the
    session, such as the rename itself, are committed together with the rows
    and their log entries. Returns the number of rows touched.
    """
    fields = [field]
    if field == "location_id":
        fields.append("installation_location_id")
    rows = db.query(Equipment).filter(or_(*(getattr(Equipment, name) == ref_id for name in fields))).all()
    engine = build_engine(db)
    with unit_of_work(db, f"Refresh {field}={ref_id}"):
        for equipment in rows:
            changes = {name: ref_id for name in fields if getattr(equipment, name) == ref_id}
            _update(db, engine, equipment, user_id, changes)
    logger.info("Refreshed %s equipment rows for %s=%s", len(rows), field, ref_id)
    return len(rows)
