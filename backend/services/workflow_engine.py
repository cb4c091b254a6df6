"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  UGC Portal - Workflow Engine                                                ║
║                                                                              ║
║  SEUL CE MODULE écrit les champs d'état d'une entité workflow:               ║
║    state, state_changed_at, state_changed_by, revision_count, version,       ║
║    timestamps d'état, assigned_to                                            ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - Validation (cible, acteur, commentaire, extra) AVANT toute écriture       ║
║  - Écriture compare-and-set sur (state, version); 1 seul retry re-validé     ║
║  - 1 transition réussie = 1 entrée status_changed dans activity_logs         ║
║  - Échec du journal APRÈS écriture = succès dégradé, jamais de rollback      ║
║  - L'acteur est toujours passé en paramètre (jamais de contexte implicite)   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import new_id, now_iso
from models.workflow import PROTECTED_FIELDS, CommentType
from services.activity_logger import log_activity
from services.comments import add_comment
from services.errors import (
    AuditLogError,
    AuthorizationError,
    CommentRequiredError,
    ConflictError,
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from services.permissions import can_perform
from services.sla import ticket_sla_fields, time_metrics
from services.transition_tables import ActorConstraint, TransitionRule, WorkflowDefinition

logger = logging.getLogger("workflow_engine")

MAX_CONFLICT_RETRIES = 1


@dataclass(frozen=True)
class Actor:
    id: str
    role: str
    tenant: str
    email: str = ""

    @classmethod
    def from_user(cls, user: dict) -> "Actor":
        return cls(
            id=user["id"],
            role=user.get("role", ""),
            tenant=user["tenant"],
            email=user.get("email", ""),
        )

    def as_log_user(self) -> dict:
        return {"id": self.id, "email": self.email}


@dataclass
class TransitionResult:
    entity: dict
    from_state: str
    to_state: str
    record: Optional[dict] = None
    comment: Optional[dict] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def audit_logged(self) -> bool:
        return self.record is not None

    def to_dict(self) -> dict:
        return {
            "success": True,
            "item": self.entity,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "record_id": self.record["id"] if self.record else None,
            "comment_id": self.comment["id"] if self.comment else None,
            "audit_logged": self.audit_logged,
            "warnings": self.warnings,
        }


def pydantic_field_errors(exc: PydanticValidationError) -> dict:
    return {
        ".".join(str(p) for p in err["loc"]) or "body": err["msg"]
        for err in exc.errors()
    }


# ════════════════════════════════════════════════════════════════════════════
# ACTOR GATES
# ════════════════════════════════════════════════════════════════════════════

def ensure_capability(actor: Actor, capability: str) -> None:
    if not can_perform(actor.role, capability):
        logger.warning(f"[PERMISSION_DENIED] actor={actor.id} role={actor.role} key={capability}")
        raise AuthorizationError(f"Permission required: {capability}")


def check_actor_constraint(
    workflow: WorkflowDefinition,
    rule: TransitionRule,
    target: str,
    entity: dict,
    actor: Actor,
) -> None:
    """
    Raises AuthorizationError when the actor class may not perform the move.
    The self-review exclusion on requester-only moves is checked first: the
    entity's assignee is always excluded, a producer unless they supervise.
    """
    constraint = rule.constraint_for(target)
    if constraint == ActorConstraint.NONE:
        return

    is_supervisor = can_perform(actor.role, workflow.supervisor_capability)
    is_producer = bool(workflow.producer_capability) and can_perform(actor.role, workflow.producer_capability)
    is_requester = entity.get("created_by") == actor.id
    is_assignee = bool(entity.get("assigned_to")) and entity.get("assigned_to") == actor.id

    if constraint == ActorConstraint.REQUESTER_ONLY:
        if (is_producer and not is_supervisor) or is_assignee:
            raise AuthorizationError(
                "Producers cannot perform requester actions on their own deliverable",
                reason="self_review",
            )
        if not (is_requester or is_supervisor):
            raise AuthorizationError("Only the requester can perform this action", reason="requester_only")

    elif constraint == ActorConstraint.PRODUCER_ONLY:
        if not (is_producer or is_supervisor):
            raise AuthorizationError("Only the producer can perform this action", reason="producer_only")

    elif constraint == ActorConstraint.SUPERVISOR_ONLY:
        if not is_supervisor:
            raise AuthorizationError("Only a supervisor can perform this action", reason="supervisor_only")

    elif constraint == ActorConstraint.PARTICIPANT:
        if not (is_requester or is_assignee or is_producer or is_supervisor):
            raise AuthorizationError("Access denied: cannot transition this item", reason="participant")


def is_visible(workflow: WorkflowDefinition, doc: dict, actor: Actor) -> bool:
    if doc.get("tenant") != actor.tenant:
        return False
    if can_perform(actor.role, workflow.view_all_capability):
        return True
    if actor.id in (doc.get("created_by"), doc.get("assigned_to")):
        return True
    if workflow.producer_capability and can_perform(actor.role, workflow.producer_capability):
        return doc.get("state") != workflow.initial_state
    return False


def visibility_filter(workflow: WorkflowDefinition, actor: Actor) -> dict:
    if can_perform(actor.role, workflow.view_all_capability):
        return {}
    clauses = [{"created_by": actor.id}, {"assigned_to": actor.id}]
    if workflow.producer_capability and can_perform(actor.role, workflow.producer_capability):
        clauses.append({"state": {"$ne": workflow.initial_state}})
    return {"$or": clauses}


# ════════════════════════════════════════════════════════════════════════════
# TRANSITION EXECUTOR
# ════════════════════════════════════════════════════════════════════════════

class TransitionExecutor:
    """Validates and applies state transitions for one workflow type."""

    def __init__(
        self,
        db,
        workflow: WorkflowDefinition,
        clock: Callable[[], str] = now_iso,
        correlation_id: Optional[str] = None,
    ):
        self.db = db
        self.workflow = workflow
        self.clock = clock
        self.correlation_id = correlation_id

    @property
    def collection(self):
        return self.db[self.workflow.collection]

    async def load(self, entity_id: str, actor: Actor) -> dict:
        try:
            doc = await self.collection.find_one({"id": entity_id, "tenant": actor.tenant}, {"_id": 0})
        except PyMongoError as e:
            raise DependencyError(f"Store unavailable: {e}")
        if not doc:
            raise NotFoundError(f"{self.workflow.label} not found")
        return doc

    def validate(
        self,
        entity: dict,
        target: str,
        actor: Actor,
        comment: Optional[str] = None,
        assigned_to: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> TransitionRule:
        """Pure checks, no I/O. Returns the rule that admits the move."""
        current = entity.get("state")
        allowed = self.workflow.allowed_targets(current)
        if target not in allowed:
            raise InvalidTransitionError(current, target, list(allowed))

        rule = self.workflow.rule_for(current)
        check_actor_constraint(self.workflow, rule, target, entity, actor)

        if target in rule.requires_comment and not (comment or "").strip():
            raise CommentRequiredError(target)

        if assigned_to and target not in self.workflow.assignment_targets:
            raise ValidationError(
                f"assigned_to cannot be set when moving to '{target}'",
                field_errors={"assigned_to": "Not accepted for this transition"},
            )

        extra = extra or {}
        accepted = self.workflow.extra_fields.get(target, frozenset())
        unknown = sorted(set(extra) - accepted)
        if unknown:
            raise ValidationError(
                f"Unknown fields for '{target}': {unknown}",
                field_errors={k: "Not accepted for this transition" for k in unknown},
            )
        validator = self.workflow.extra_validators.get(target)
        if validator:
            validator(extra)

        return rule

    def derive_update(
        self,
        entity: dict,
        target: str,
        actor: Actor,
        now: str,
        assigned_to: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> dict:
        workflow = self.workflow
        update = {
            "state": target,
            "state_changed_at": now,
            "state_changed_by": actor.id,
            "updated_at": now,
        }

        ts_field = workflow.state_timestamps.get(target)
        if ts_field:
            update[ts_field] = now

        first_field = workflow.first_timestamps.get(target)
        if first_field and not entity.get(first_field):
            update[first_field] = now

        if target in workflow.revision_states:
            update["revision_count"] = (entity.get("revision_count") or 0) + 1

        if target in workflow.assignment_targets:
            update["assigned_to"] = assigned_to or entity.get("assigned_to") or actor.id

        if extra:
            update.update(extra)

        if workflow.entity_type == "ticket":
            update.update(ticket_sla_fields(entity, target, actor.id, now))

        return update

    async def _compare_and_set(self, entity: dict, update: dict) -> Optional[dict]:
        """
        Conditional write on (id, tenant, state, version).
        Returns the after-image, or None when the document no longer matches.
        The update rewrites state and version, so the matched document is
        taken as the BEFORE image and the after-image is derived from it.
        """
        version = entity.get("version")
        query = {
            "id": entity["id"],
            "tenant": entity["tenant"],
            "state": entity["state"],
            "version": version if version is not None else {"$exists": False},
        }
        try:
            before = await self.collection.find_one_and_update(
                query,
                {"$set": update, "$inc": {"version": 1}},
                projection={"_id": 0},
                return_document=ReturnDocument.BEFORE,
            )
        except PyMongoError as e:
            raise DependencyError(f"Store write failed: {e}")
        if before is None:
            return None
        return {**before, **update, "version": (before.get("version") or 0) + 1}

    async def transition(
        self,
        entity_id: str,
        target: str,
        actor: Actor,
        comment: Optional[str] = None,
        assigned_to: Optional[str] = None,
        extra: Optional[dict] = None,
        version_ref: Optional[str] = None,
    ) -> TransitionResult:
        """
        version_ref: livrable auquel rattacher le commentaire de transition
        """
        ensure_capability(actor, self.workflow.access_capability)
        extra = dict(extra or {})

        attempt = 0
        while True:
            entity = await self.load(entity_id, actor)
            self.validate(entity, target, actor, comment, assigned_to, extra)
            update = self.derive_update(entity, target, actor, self.clock(), assigned_to, extra)

            updated = await self._compare_and_set(entity, update)
            if updated is not None:
                break

            if attempt >= MAX_CONFLICT_RETRIES:
                logger.warning(
                    f"[CONFLICT] {self.workflow.entity_type} {entity_id} -> {target} "
                    f"gave up after {attempt + 1} attempts cid={self.correlation_id}"
                )
                raise ConflictError(f"{self.workflow.label} was modified concurrently, please retry")
            attempt += 1
            logger.info(
                f"[CONFLICT] {self.workflow.entity_type} {entity_id} changed since load, "
                f"re-validating cid={self.correlation_id}"
            )

        logger.info(
            f"[TRANSITION] {self.workflow.entity_type} {entity_id}: "
            f"{entity['state']} -> {target} by {actor.id} cid={self.correlation_id}"
        )
        return await self._record(entity, updated, actor, comment, assigned_to, extra, version_ref)

    async def _record(
        self,
        before: dict,
        after: dict,
        actor: Actor,
        comment: Optional[str],
        assigned_to: Optional[str],
        extra: dict,
        version_ref: Optional[str] = None,
    ) -> TransitionResult:
        result = TransitionResult(entity=after, from_state=before["state"], to_state=after["state"])

        details = {"from": before["state"], "to": after["state"]}
        if comment and comment.strip():
            details["comment"] = comment.strip()
        if after.get("assigned_to") != before.get("assigned_to"):
            details["assigned_to"] = after.get("assigned_to")
        if extra:
            details["extra"] = extra
        if version_ref:
            details["version_ref"] = version_ref

        try:
            result.record = await log_activity(
                self.db,
                actor.as_log_user(),
                "status_changed",
                self.workflow.entity_type,
                after["id"],
                actor.tenant,
                details=details,
                correlation_id=self.correlation_id,
            )
        except AuditLogError as e:
            result.warnings.append(f"State changed but activity log write failed: {e.message}")

        if comment and comment.strip():
            try:
                result.comment = await add_comment(
                    self.db,
                    actor.tenant,
                    self.workflow.entity_type,
                    after["id"],
                    actor.id,
                    comment,
                    self.workflow.comment_type_for(after["state"]),
                    version_ref=version_ref,
                )
            except AuditLogError as e:
                result.warnings.append(f"State changed but comment write failed: {e.message}")

        return result

    def allowed_for(self, entity: dict, actor: Actor) -> dict:
        """Targets from the current state, and which of them the actor may perform."""
        current = entity.get("state")
        rule = self.workflow.rule_for(current)
        targets = sorted(self.workflow.allowed_targets(current))
        permitted = []
        for target in targets:
            try:
                check_actor_constraint(self.workflow, rule, target, entity, actor)
            except AuthorizationError:
                continue
            permitted.append(target)
        return {
            "entity_id": entity["id"],
            "state": current,
            "terminal": not targets,
            "allowed": targets,
            "permitted": permitted,
            "requires_comment": sorted(rule.requires_comment) if rule else [],
        }


# ════════════════════════════════════════════════════════════════════════════
# CREATE / EDIT / READ (chemins non gardés par la machine à états)
# ════════════════════════════════════════════════════════════════════════════

async def create_entity(
    db,
    workflow: WorkflowDefinition,
    actor: Actor,
    payload: dict,
    clock: Callable[[], str] = now_iso,
    correlation_id: Optional[str] = None,
) -> dict:
    """
    Crée une entité dans son état initial.
    submit_immediately: la première transition est validée AVANT l'insertion
    et appliquée dans le même document (une seule écriture).
    """
    ensure_capability(actor, workflow.access_capability)
    ensure_capability(actor, workflow.create_capability)

    try:
        data = workflow.create_model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid payload", field_errors=pydantic_field_errors(e))

    fields = data.model_dump(mode="json")
    submit = fields.pop("submit_immediately", False)

    # L'assigné est exclu des actions demandeur: s'auto-assigner bloquerait le créateur
    if fields.get("assigned_to") == actor.id and workflow.has_requester_only_moves():
        raise ValidationError(
            f"You cannot assign your own {workflow.label.lower()} to yourself",
            field_errors={"assigned_to": "Must be someone other than the creator"},
        )

    now = clock()

    doc = {
        **fields,
        "id": new_id(),
        "tenant": actor.tenant,
        "entity_type": workflow.entity_type,
        "state": workflow.initial_state,
        "state_changed_at": now,
        "state_changed_by": actor.id,
        "revision_count": 0,
        "version": 0,
        "created_by": actor.id,
        "created_at": now,
        "updated_at": now,
    }

    executor = TransitionExecutor(db, workflow, clock=clock, correlation_id=correlation_id)
    if submit:
        if not workflow.submit_target:
            raise ValidationError(
                f"{workflow.label} cannot be submitted on creation",
                field_errors={"submit_immediately": "Not supported for this type"},
            )
        executor.validate(doc, workflow.submit_target, actor)
        doc.update(executor.derive_update(doc, workflow.submit_target, actor, now))

    try:
        await executor.collection.insert_one(dict(doc))
    except PyMongoError as e:
        raise DependencyError(f"Store write failed: {e}")

    logger.info(f"[CREATE] {workflow.entity_type} {doc['id']} state={doc['state']} by {actor.id}")

    warnings = []
    try:
        await log_activity(
            db, actor.as_log_user(), "created", workflow.entity_type, doc["id"], actor.tenant,
            details={"state": workflow.initial_state, "title": doc.get("title")},
            correlation_id=correlation_id,
        )
        if submit:
            await log_activity(
                db, actor.as_log_user(), "status_changed", workflow.entity_type, doc["id"], actor.tenant,
                details={"from": workflow.initial_state, "to": doc["state"]},
                correlation_id=correlation_id,
            )
    except AuditLogError as e:
        warnings.append(f"Created but activity log write failed: {e.message}")

    return {"success": True, "item": doc, "audit_logged": not warnings, "warnings": warnings}


async def update_entity(
    db,
    workflow: WorkflowDefinition,
    entity_id: str,
    actor: Actor,
    payload: dict,
    clock: Callable[[], str] = now_iso,
    correlation_id: Optional[str] = None,
) -> dict:
    """
    Édition des champs métier. Les champs d'état sont refusés ici:
    ils ne changent QUE via TransitionExecutor.transition().
    """
    ensure_capability(actor, workflow.access_capability)

    protected = sorted(set(payload) & PROTECTED_FIELDS)
    if protected:
        raise ValidationError(
            f"Fields {protected} can only change through a status transition",
            field_errors={k: "Read-only outside the status transition" for k in protected},
        )

    try:
        data = workflow.update_model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid payload", field_errors=pydantic_field_errors(e))

    changes = data.model_dump(mode="json", exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    executor = TransitionExecutor(db, workflow, clock=clock, correlation_id=correlation_id)
    entity = await executor.load(entity_id, actor)

    is_supervisor = can_perform(actor.role, workflow.supervisor_capability)
    if not (is_supervisor or actor.id in (entity.get("created_by"), entity.get("assigned_to"))):
        raise AuthorizationError("Only the creator, assignee or a supervisor can edit this item")

    now = clock()
    try:
        updated = await executor.collection.find_one_and_update(
            {"id": entity_id, "tenant": actor.tenant},
            {"$set": {**changes, "updated_at": now}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        raise DependencyError(f"Store write failed: {e}")
    if updated is None:
        raise NotFoundError(f"{workflow.label} not found")

    warnings = []
    try:
        await log_activity(
            db, actor.as_log_user(), "updated", workflow.entity_type, entity_id, actor.tenant,
            details={"fields": sorted(changes)},
            correlation_id=correlation_id,
        )
    except AuditLogError as e:
        warnings.append(f"Updated but activity log write failed: {e.message}")

    return {"success": True, "item": updated, "audit_logged": not warnings, "warnings": warnings}


async def get_entity(db, workflow: WorkflowDefinition, entity_id: str, actor: Actor) -> dict:
    ensure_capability(actor, workflow.access_capability)
    entity = await TransitionExecutor(db, workflow).load(entity_id, actor)
    if not is_visible(workflow, entity, actor):
        raise AuthorizationError(f"You cannot view this {workflow.label.lower()}")
    return entity


async def get_entity_detail(db, workflow: WorkflowDefinition, entity_id: str, actor: Actor) -> dict:
    entity = await get_entity(db, workflow, entity_id, actor)
    return {"item": entity, "time_metrics": time_metrics(workflow.entity_type, entity, now_iso())}


async def list_entities(
    db,
    workflow: WorkflowDefinition,
    actor: Actor,
    state: Optional[str] = None,
    assigned_to: Optional[str] = None,
    created_by: Optional[str] = None,
    search: Optional[str] = None,
    mine: bool = False,
    page: int = 1,
    limit: int = 50,
) -> dict:
    ensure_capability(actor, workflow.access_capability)

    clauses = [{"tenant": actor.tenant}]
    visibility = visibility_filter(workflow, actor)
    if visibility:
        clauses.append(visibility)

    if state and state != "all":
        clauses.append({"state": state})
    if assigned_to:
        clauses.append({"assigned_to": assigned_to})
    if created_by:
        clauses.append({"created_by": created_by})
    if mine:
        clauses.append({"$or": [{"created_by": actor.id}, {"assigned_to": actor.id}]})
    if search:
        pattern = re.escape(search.strip())
        clauses.append({
            "$or": [{f: {"$regex": pattern, "$options": "i"}} for f in workflow.search_fields]
        })

    query = {"$and": clauses} if len(clauses) > 1 else clauses[0]
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    try:
        items = await db[workflow.collection].find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .skip((page - 1) * limit) \
            .limit(limit) \
            .to_list(limit)
        total = await db[workflow.collection].count_documents(query)
    except PyMongoError as e:
        raise DependencyError(f"Store unavailable: {e}")

    return {"items": items, "total": total, "page": page, "limit": limit}


async def comment_on_entity(
    db,
    workflow: WorkflowDefinition,
    entity_id: str,
    actor: Actor,
    body: str,
    correlation_id: Optional[str] = None,
) -> dict:
    entity = await get_entity(db, workflow, entity_id, actor)
    comment = await add_comment(
        db, actor.tenant, workflow.entity_type, entity["id"], actor.id, body, CommentType.COMMENT
    )
    warnings = []
    try:
        await log_activity(
            db, actor.as_log_user(), "commented", workflow.entity_type, entity["id"], actor.tenant,
            details={"comment_id": comment["id"]},
            correlation_id=correlation_id,
        )
    except AuditLogError as e:
        warnings.append(f"Comment saved but activity log write failed: {e.message}")
    return {"success": True, "comment": comment, "warnings": warnings}
