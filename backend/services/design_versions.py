"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  UGC Portal - Design deliverable versions                                    ║
║                                                                              ║
║  Livraison et revue des versions d'une design request.                       ║
║  Le changement d'état passe TOUJOURS par TransitionExecutor:                 ║
║  - livrer  = in_progress -> delivered (producer_only)                        ║
║  - revoir  = delivered -> approved | revision_requested (requester_only,     ║
║              commentaire obligatoire pour revision_requested)                ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - version_number = max + 1, à partir de 1, par design request               ║
║  - Une version n'existe que si sa transition 'delivered' a réussi            ║
║  - Seule la dernière version, non encore revue, peut être revue              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import new_id, now_iso
from models.workflow import DesignVersion, DesignVersionCreate, DesignVersionReview
from services.errors import ConflictError, DependencyError, NotFoundError, ValidationError, WorkflowError
from services.transition_tables import DESIGN_REQUEST
from services.workflow_engine import (
    Actor,
    TransitionExecutor,
    ensure_capability,
    get_entity,
    pydantic_field_errors,
)

logger = logging.getLogger("design_versions")

DELIVERED = "delivered"


def _collection(db):
    return db.design_versions


async def _latest_version(db, tenant: str, request_id: str) -> Optional[dict]:
    try:
        return await _collection(db).find_one(
            {"tenant": tenant, "request_id": request_id},
            {"_id": 0},
            sort=[("version_number", -1)],
        )
    except PyMongoError as e:
        raise DependencyError(f"Store unavailable: {e}")


async def list_versions(db, request_id: str, actor: Actor) -> list:
    entity = await get_entity(db, DESIGN_REQUEST, request_id, actor)
    try:
        return await _collection(db).find(
            {"tenant": actor.tenant, "request_id": entity["id"]}, {"_id": 0}
        ).sort("version_number", 1).to_list(200)
    except PyMongoError as e:
        raise DependencyError(f"Store unavailable: {e}")


async def deliver_version(
    db,
    request_id: str,
    actor: Actor,
    payload: dict,
    clock: Callable[[], str] = now_iso,
    correlation_id: Optional[str] = None,
) -> dict:
    """
    Enregistre une nouvelle version et passe la demande en 'delivered'.

    La transition est validée avant l'insertion de la version; si elle échoue
    ensuite (conflit, état changé entre-temps), la version est retirée.
    """
    try:
        data = DesignVersionCreate.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid payload", field_errors=pydantic_field_errors(e))

    executor = TransitionExecutor(db, DESIGN_REQUEST, clock=clock, correlation_id=correlation_id)
    ensure_capability(actor, DESIGN_REQUEST.access_capability)
    entity = await executor.load(request_id, actor)
    executor.validate(entity, DELIVERED, actor)

    latest = await _latest_version(db, actor.tenant, entity["id"])
    number = (latest["version_number"] if latest else 0) + 1

    version = DesignVersion(
        id=new_id(),
        tenant=actor.tenant,
        request_id=entity["id"],
        version_number=number,
        delivered_by=actor.id,
        delivered_at=clock(),
        **data.model_dump(),
    ).model_dump()

    try:
        await _collection(db).insert_one(dict(version))
    except DuplicateKeyError:
        raise ConflictError(f"Version {number} was delivered concurrently, please retry")
    except PyMongoError as e:
        raise DependencyError(f"Store write failed: {e}")

    note = f"Design version {number} delivered"
    if data.notes:
        note = f"{note}: {data.notes}"

    try:
        result = await executor.transition(
            entity["id"], DELIVERED, actor, comment=note, version_ref=version["id"],
        )
    except WorkflowError:
        try:
            await _collection(db).delete_one({"id": version["id"]})
        except PyMongoError as e:
            logger.error(f"[VERSION_ORPHAN] {version['id']} for {entity['id']}: {e}")
        raise

    logger.info(f"[VERSION] design_request {entity['id']} v{number} delivered by {actor.id}")
    return {**result.to_dict(), "version": version}


async def review_version(
    db,
    request_id: str,
    version_id: str,
    actor: Actor,
    payload: dict,
    clock: Callable[[], str] = now_iso,
    correlation_id: Optional[str] = None,
) -> dict:
    """
    Revue d'une version: approved ou revision_requested (commentaire requis).
    L'état de la demande change d'abord; la fiche version est complétée ensuite.
    """
    try:
        data = DesignVersionReview.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid payload", field_errors=pydantic_field_errors(e))

    ensure_capability(actor, DESIGN_REQUEST.access_capability)
    try:
        version = await _collection(db).find_one(
            {"id": version_id, "request_id": request_id, "tenant": actor.tenant}, {"_id": 0}
        )
    except PyMongoError as e:
        raise DependencyError(f"Store unavailable: {e}")
    if not version:
        raise NotFoundError("Design version not found")

    if version.get("review_status"):
        raise ValidationError(
            f"Version {version['version_number']} was already reviewed",
            field_errors={"review_status": f"Already {version['review_status']}"},
        )
    latest = await _latest_version(db, actor.tenant, request_id)
    if latest and latest["id"] != version["id"]:
        raise ValidationError(
            "Only the latest version can be reviewed",
            field_errors={"version_id": f"Latest is version {latest['version_number']}"},
        )

    executor = TransitionExecutor(db, DESIGN_REQUEST, clock=clock, correlation_id=correlation_id)
    result = await executor.transition(
        request_id, data.review_status, actor, comment=data.review_comment, version_ref=version_id,
    )

    review = {
        "review_status": data.review_status,
        "reviewed_by": actor.id,
        "reviewed_at": result.entity["state_changed_at"],
        "review_comment": (data.review_comment or "").strip() or None,
    }
    try:
        await _collection(db).update_one({"id": version_id}, {"$set": review})
    except PyMongoError as e:
        logger.error(f"[VERSION_REVIEW_FAILED] {version_id}: {e}")
        result.warnings.append(f"State changed but version review write failed: {e}")

    return {**result.to_dict(), "version": {**version, **review}}
