"""
UGC Portal - Routes Workflow
Surface générique /entities/{entity_type} pour tous les workflows
(content_plan, design_request, quotation, ticket, lead).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from config import get_db
from models.workflow import CommentCreate, StatusTransitionIn
from routes.auth import get_current_user
from services.activity_logger import get_activity_logs
from services.comments import list_comments
from services.transition_tables import WORKFLOWS, get_workflow
from services.workflow_engine import (
    Actor,
    TransitionExecutor,
    comment_on_entity,
    create_entity,
    get_entity,
    get_entity_detail,
    list_entities,
    update_entity,
)

router = APIRouter(tags=["Workflows"])


def _cid(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


# ==================== TABLES (lecture seule) ====================

@router.get("/workflows")
async def list_workflows(user: dict = Depends(get_current_user)):
    """Tables de transition, telles que configurées"""
    return {"workflows": [w.to_dict() for w in WORKFLOWS.values()]}


@router.get("/workflows/{entity_type}")
async def get_workflow_table(entity_type: str, user: dict = Depends(get_current_user)):
    return get_workflow(entity_type).to_dict()


# ==================== ENTITIES ====================

@router.get("/entities/{entity_type}")
async def list_items(
    entity_type: str,
    state: Optional[str] = None,
    assigned_to: Optional[str] = None,
    created_by: Optional[str] = None,
    search: Optional[str] = None,
    mine: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Liste paginée avec filtres (état, assigné, créateur, recherche)"""
    return await list_entities(
        db, get_workflow(entity_type), Actor.from_user(user),
        state=state, assigned_to=assigned_to, created_by=created_by,
        search=search, mine=mine, page=page, limit=limit,
    )


@router.post("/entities/{entity_type}", status_code=201)
async def create_item(
    entity_type: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Création dans l'état initial (submit_immediately = création + 1ère transition)"""
    return await create_entity(
        db, get_workflow(entity_type), Actor.from_user(user), payload,
        correlation_id=_cid(request),
    )


@router.get("/entities/{entity_type}/{entity_id}")
async def get_item(
    entity_type: str,
    entity_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    return await get_entity_detail(db, get_workflow(entity_type), entity_id, Actor.from_user(user))


@router.patch("/entities/{entity_type}/{entity_id}")
async def update_item(
    entity_type: str,
    entity_id: str,
    request: Request,
    payload: Dict[str, Any] = Body(...),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Édition des champs métier (les champs d'état sont refusés)"""
    return await update_entity(
        db, get_workflow(entity_type), entity_id, Actor.from_user(user), payload,
        correlation_id=_cid(request),
    )


@router.patch("/entities/{entity_type}/{entity_id}/status")
async def change_status(
    entity_type: str,
    entity_id: str,
    body: StatusTransitionIn,
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    """Transition d'état gardée (table + rôle + commentaire)"""
    executor = TransitionExecutor(db, get_workflow(entity_type), correlation_id=_cid(request))
    result = await executor.transition(
        entity_id,
        body.state,
        Actor.from_user(user),
        comment=body.comment,
        assigned_to=body.assigned_to,
        extra=body.extra,
    )
    return result.to_dict()


@router.get("/entities/{entity_type}/{entity_id}/allowed")
async def allowed_transitions(
    entity_type: str,
    entity_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    workflow = get_workflow(entity_type)
    actor = Actor.from_user(user)
    entity = await get_entity(db, workflow, entity_id, actor)
    return TransitionExecutor(db, workflow).allowed_for(entity, actor)


# ==================== COMMENTS (append / list) ====================

@router.get("/entities/{entity_type}/{entity_id}/comments")
async def get_comments(
    entity_type: str,
    entity_id: str,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    workflow = get_workflow(entity_type)
    actor = Actor.from_user(user)
    entity = await get_entity(db, workflow, entity_id, actor)
    comments = await list_comments(db, actor.tenant, workflow.entity_type, entity["id"])
    return {"comments": comments, "count": len(comments)}


@router.post("/entities/{entity_type}/{entity_id}/comments", status_code=201)
async def post_comment(
    entity_type: str,
    entity_id: str,
    body: CommentCreate,
    request: Request,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    return await comment_on_entity(
        db, get_workflow(entity_type), entity_id, Actor.from_user(user), body.body,
        correlation_id=_cid(request),
    )


# ==================== HISTORIQUE ====================

@router.get("/entities/{entity_type}/{entity_id}/activity")
async def get_item_activity(
    entity_type: str,
    entity_id: str,
    limit: int = Query(100, ge=1, le=500),
    skip: int = Query(0, ge=0),
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
):
    workflow = get_workflow(entity_type)
    actor = Actor.from_user(user)
    entity = await get_entity(db, workflow, entity_id, actor)
    return await get_activity_logs(
        db, actor.tenant, entity_type=workflow.entity_type, entity_id=entity["id"],
        limit=limit, skip=skip,
    )
