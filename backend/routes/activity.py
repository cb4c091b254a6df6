"""
UGC Portal - Routes Activity Log (audit trail, lecture seule)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from config import get_db
from services.activity_logger import get_activity_logs
from services.errors import NotFoundError
from services.permissions import require_capability

router = APIRouter(prefix="/activity-logs", tags=["ActivityLog"])


@router.get("")
async def list_activity(
    actor_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
    current_user: dict = Depends(require_capability("activity.view")),
    db=Depends(get_db),
):
    """Liste les entrées du journal avec filtres"""
    return await get_activity_logs(
        db, current_user["tenant"],
        actor_id=actor_id, entity_type=entity_type, entity_id=entity_id,
        action=action, limit=limit, skip=skip,
    )


@router.get("/actions")
async def list_action_types(
    current_user: dict = Depends(require_capability("activity.view")),
    db=Depends(get_db),
):
    """Liste les types d'actions distincts dans le journal"""
    actions = await db.activity_logs.distinct("action", {"tenant": current_user["tenant"]})
    return {"actions": sorted(actions)}


@router.get("/{log_id}")
async def get_activity_entry(
    log_id: str,
    current_user: dict = Depends(require_capability("activity.view")),
    db=Depends(get_db),
):
    entry = await db.activity_logs.find_one({"id": log_id, "tenant": current_user["tenant"]}, {"_id": 0})
    if not entry:
        raise NotFoundError("Activity entry not found")
    return entry
