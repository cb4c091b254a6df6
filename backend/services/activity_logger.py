"""
Service de journalisation des activités

Append-only: aucune fonction de mise à jour ou de suppression.
Une écriture qui échoue lève AuditLogError, jamais silencieuse.
"""

import logging
from typing import Optional

from pymongo.errors import PyMongoError

from config import new_id, now_iso
from models.workflow import ActivityLog
from services.errors import AuditLogError

logger = logging.getLogger("activity_logger")


async def log_activity(
    db,
    actor: dict,
    action: str,
    entity_type: str,
    entity_id: str,
    tenant: str,
    details: dict = None,
    correlation_id: Optional[str] = None,
) -> dict:
    """
    Enregistre une activité dans le journal

    Actions: created, updated, status_changed, commented, login, create_user,
    update_user, deactivate_user
    """
    entry = ActivityLog(
        id=new_id(),
        tenant=tenant,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor.get("id", "system"),
        actor_email=actor.get("email", "system"),
        action=action,
        details=details or {},
        correlation_id=correlation_id,
        created_at=now_iso(),
    ).model_dump()

    try:
        await db.activity_logs.insert_one(dict(entry))
    except PyMongoError as e:
        logger.error(
            f"[AUDIT_FAILED] {entity_type}/{entity_id} action={action} "
            f"correlation_id={correlation_id}: {e}"
        )
        raise AuditLogError(f"Activity log write failed: {e}")

    return entry


async def get_activity_logs(
    db,
    tenant: str,
    actor_id: str = None,
    entity_type: str = None,
    entity_id: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0,
):
    """
    Récupère les logs d'activité avec filtres optionnels
    """
    query = {"tenant": tenant}

    if actor_id:
        query["actor_id"] = actor_id
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        query["entity_id"] = entity_id
    if action:
        query["action"] = action

    logs = await db.activity_logs.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)

    total = await db.activity_logs.count_documents(query)

    return {"logs": logs, "total": total, "limit": limit, "skip": skip}
