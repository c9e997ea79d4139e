"""Append-only equipment log: write helpers and the read-side queries."""
from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager, joinedload

from .config import get_settings
from .errors import PersistenceError
from .models import Equipment, EquipmentLog, LogAction, User

logger = logging.getLogger(__name__)

# Field name -> label used in the ``details`` summary, in reporting order.
AUDITED_FIELDS = (
    ("status", "Status"),
    ("location", "Location"),
    ("brand", "Brand"),
    ("model", "Model"),
    ("serial_number", "Serial number"),
    ("type", "Type"),
    ("category", "Category"),
    ("quantity", "Quantity"),
    ("installation_type", "Installation type"),
    ("installation_location", "Installation location"),
    ("installation_quantity", "Installation quantity"),
)
NO_TRACKED_CHANGES = "Equipment updated; no tracked fields changed"

SORTABLE_COLUMNS = {
    "created_at": EquipmentLog.created_at,
    "action_type": EquipmentLog.action_type,
    "equipment_id": EquipmentLog.equipment_id,
    "user_id": EquipmentLog.user_id,
    "id": EquipmentLog.id,
}


def _differs(old: Any, new: Any) -> bool:
    # NULL and "" are the same empty value for the text columns diffed here.
    return (old if old is not None else "") != (new if new is not None else "")


def _location_label(value: Optional[str]) -> str:
    return value or "none"


def _page(total: int, limit: int, offset: int, logs: list[EquipmentLog]) -> dict[str, Any]:
    return {
        "total": total,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": offset // limit + 1 if limit else 1,
        "logs": logs,
    }


class AuditLogRecorder:
    """Builds ``EquipmentLog`` rows and appends them to the caller's session.

    Rows are only ever inserted; nothing here updates or deletes an existing
    entry. Writes are flushed so failures surface immediately, but committing is
    left to the caller so the log lands in the same transaction as the
    equipment change it describes.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def record_creation(self, equipment_id: int, user_id: Optional[int], snapshot: Mapping[str, Any]) -> EquipmentLog:
        return self._append(
            equipment_id=equipment_id,
            user_id=user_id,
            action_type=LogAction.CREATED.value,
            new_status=snapshot.get("status"),
            new_location=snapshot.get("location"),
            details=f"Equipment created with serial number: {snapshot.get('serial_number')}",
        )

    def record_update(
        self,
        equipment_id: int,
        user_id: Optional[int],
        before: Mapping[str, Any],
        after: Mapping[str, Any],
    ) -> EquipmentLog:
        """Diff ``before`` against ``after`` and append one entry.

        A field absent from ``after`` was not touched by the caller and is never
        reported. A status change outranks a location change for ``action_type``;
        ``details`` lists every changed field either way, and falls back to a
        fixed summary when none of them changed.
        """
        changed = {
            field for field, _ in AUDITED_FIELDS if field in after and _differs(before.get(field), after[field])
        }
        status_changed = "status" in changed
        location_changed = "location" in changed

        clauses = []
        for field, label in AUDITED_FIELDS:
            if field not in changed:
                continue
            old, new = before.get(field), after[field]
            if field in ("location", "installation_location", "category"):
                old, new = _location_label(old), _location_label(new)
            clauses.append(f'{label} changed from "{old}" to "{new}"')

        if status_changed:
            action_type = LogAction.STATUS_CHANGE
        elif location_changed:
            action_type = LogAction.LOCATION_CHANGE
        else:
            action_type = LogAction.UPDATED

        return self._append(
            equipment_id=equipment_id,
            user_id=user_id,
            action_type=action_type.value,
            previous_status=before.get("status") if status_changed else None,
            new_status=after["status"] if status_changed else None,
            previous_location=(before.get("location") or None) if location_changed else None,
            new_location=(after["location"] or None) if location_changed else None,
            details="; ".join(clauses) or NO_TRACKED_CHANGES,
        )

    def record_deletion(self, equipment_id: int, user_id: Optional[int], snapshot: Mapping[str, Any]) -> EquipmentLog:
        return self._append(
            equipment_id=equipment_id,
            user_id=user_id,
            action_type=LogAction.DELETED.value,
            previous_status=snapshot.get("status"),
            previous_location=snapshot.get("location"),
            details=f'Equipment with serial number "{snapshot.get("serial_number")}" was deleted',
        )

    def record_status_change(
        self, equipment_id: int, user_id: Optional[int], old_status: Optional[str], new_status: str
    ) -> EquipmentLog:
        return self._append(
            equipment_id=equipment_id,
            user_id=user_id,
            action_type=LogAction.STATUS_CHANGE.value,
            previous_status=old_status,
            new_status=new_status,
            details=f'Status changed from "{old_status}" to "{new_status}"',
        )

    def record_location_change(
        self, equipment_id: int, user_id: Optional[int], old_location: Optional[str], new_location: Optional[str]
    ) -> EquipmentLog:
        return self._append(
            equipment_id=equipment_id,
            user_id=user_id,
            action_type=LogAction.LOCATION_CHANGE.value,
            previous_location=old_location,
            new_location=new_location,
            details=(
                f'Location changed from "{_location_label(old_location)}" to "{_location_label(new_location)}"'
            ),
        )

    def list_for_equipment(self, equipment_id: int, limit: Optional[int] = None, offset: int = 0) -> dict[str, Any]:
        limit = limit or get_settings().log_page_size
        query = (
            self.db.query(EquipmentLog)
            .options(joinedload(EquipmentLog.user), joinedload(EquipmentLog.equipment))
            .filter(EquipmentLog.equipment_id == equipment_id)
        )
        total = query.order_by(None).count()
        logs = (
            query.order_by(EquipmentLog.created_at.desc(), EquipmentLog.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return _page(total, limit, offset, logs)

    def list_all(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> dict[str, Any]:
        """Filter, search and sort the whole trail, joined with user and equipment summaries.

        Filters on the equipment (``type``, ``status``, ``location_id``) drop log
        rows whose equipment is gone; the other filters do not.
        """
        filters = filters or {}
        limit = limit or get_settings().log_page_size
        query = (
            self.db.query(EquipmentLog)
            .outerjoin(User, EquipmentLog.user_id == User.id)
            .outerjoin(Equipment, EquipmentLog.equipment_id == Equipment.id)
            .options(contains_eager(EquipmentLog.user), contains_eager(EquipmentLog.equipment))
        )

        if filters.get("equipment_id") is not None:
            query = query.filter(EquipmentLog.equipment_id == filters["equipment_id"])
        if filters.get("user_id") is not None:
            query = query.filter(EquipmentLog.user_id == filters["user_id"])
        if filters.get("action_type"):
            query = query.filter(EquipmentLog.action_type == filters["action_type"])
        if filters.get("type"):
            query = query.filter(Equipment.type == filters["type"])
        if filters.get("status"):
            query = query.filter(Equipment.status == filters["status"])
        if filters.get("location_id") is not None:
            query = query.filter(Equipment.location_id == filters["location_id"])
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            query = query.filter(
                or_(
                    EquipmentLog.details.ilike(pattern),
                    EquipmentLog.previous_location.ilike(pattern),
                    EquipmentLog.new_location.ilike(pattern),
                    Equipment.type.ilike(pattern),
                    Equipment.brand.ilike(pattern),
                    Equipment.model.ilike(pattern),
                    Equipment.serial_number.ilike(pattern),
                    User.username.ilike(pattern),
                )
            )

        column = SORTABLE_COLUMNS.get(sort_by, EquipmentLog.created_at)
        if sort_order.lower() == "asc":
            ordering = (column.asc(), EquipmentLog.id.asc())
        else:
            ordering = (column.desc(), EquipmentLog.id.desc())

        total = query.order_by(None).count()
        logs = query.order_by(*ordering).offset(offset).limit(limit).all()
        return _page(total, limit, offset, logs)

    def _append(self, **values: Any) -> EquipmentLog:
        entry = EquipmentLog(**values)
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as exc:
            logger.error("Error writing %s log for equipment %s: %s", values.get("action_type"), values.get("equipment_id"), exc)
            raise PersistenceError(f"Could not write equipment log: {exc}") from exc
        logger.info(
            "Equipment %s: %s by user %s", values.get("equipment_id"), values.get("action_type"), values.get("user_id")
        )
        return entry
