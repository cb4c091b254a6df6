"""
UGC Portal - Routes Design Versions
Livrables versionnés d'une design request (livraison + revue).
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from config import get_db
from routes.auth import get_current_user
from services.design_versions import deliver_version, list_versions, review_version
from services.workflow_engine import Actor

router = APIRouter(prefix="/entities/design_request", tags=["Design Versions"])


def _cid(request: Request):
    return getattr(request.state, "correlation_id", None)


@router.get("/{request_id}/versions")
async def get_versions(
    request_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    versions = await list_versions(db, request_id, Actor.from_user(user))
    return {"versions": versions, "count": len(versions)}


@router.post("/{request_id}/versions", status_code=201)
async def post_version(
    request_id: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Livrer une version (in_progress -> delivered)"""
    return await deliver_version(
        db, request_id, Actor.from_user(user), payload, correlation_id=_cid(request),
    )


@router.patch("/{request_id}/versions/{version_id}/review")
async def patch_version_review(
    request_id: str,
    version_id: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Revue: approved | revision_requested (review_comment requis)"""
    return await review_version(
        db, request_id, version_id, Actor.from_user(user), payload, correlation_id=_cid(request),
    )
