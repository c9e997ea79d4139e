from typing import Any, Optional

from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from common.app_factory import create_service_app
from common.audit_log import AuditLogRecorder
from common.config import get_settings
from common.database import get_db
from common.dependencies import get_current_user, require_admin
from common.models import EquipmentStatus, LogAction, User
from common.rate_limit import READ_LIMIT, limiter
from common.schemas import EquipmentLogPage

settings = get_settings()
app = create_service_app("Equipment Logs Service", "logs")


@app.get("/equipment-logs", response_model=EquipmentLogPage)
@limiter.limit(READ_LIMIT)
def list_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    equipment_id: Optional[int] = None,
    user_id: Optional[int] = None,
    action_type: Optional[LogAction] = None,
    type: Optional[str] = None,
    status: Optional[EquipmentStatus] = None,
    location_id: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    limit = limit or settings.log_page_size
    filters = {
        "equipment_id": equipment_id,
        "user_id": user_id,
        "action_type": action_type.value if action_type else None,
        "type": type,
        "status": status.value if status else None,
        "location_id": location_id,
        "search": search,
    }
    return AuditLogRecorder(db).list_all(
        filters,
        limit=limit,
        offset=(page - 1) * limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@app.get("/equipment-logs/equipment/{equipment_id}", response_model=EquipmentLogPage)
@limiter.limit(READ_LIMIT)
def list_equipment_logs(
    request: Request,
    equipment_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=200),
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    """History of one item, newest first. Still answers after the item is deleted."""
    limit = limit or settings.log_page_size
    return AuditLogRecorder(db).list_for_equipment(equipment_id, limit=limit, offset=(page - 1) * limit)
