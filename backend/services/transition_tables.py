"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  UGC Portal - Transition Tables                                              ║
║                                                                              ║
║  Un tableau statique par type d'entité:                                      ║
║    état courant -> cibles autorisées + contrainte d'acteur + commentaire     ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - Un état absent du tableau est TERMINAL (aucune transition)                ║
║  - Un état n'est jamais sa propre cible                                      ║
║  - Les tableaux sont des données: exposés tels quels par GET /workflows      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel

from models.workflow import (
    CommentType,
    ContentPlanCreate,
    ContentPlanUpdate,
    DesignRequestCreate,
    DesignRequestUpdate,
    EntityType,
    LeadCreate,
    LeadUpdate,
    QuotationCreate,
    QuotationUpdate,
    TicketCreate,
    TicketUpdate,
)
from services.errors import NotFoundError, ValidationError


class ActorConstraint(str, Enum):
    NONE = "none"
    REQUESTER_ONLY = "requester_only"
    PRODUCER_ONLY = "producer_only"
    SUPERVISOR_ONLY = "supervisor_only"
    PARTICIPANT = "participant"


@dataclass(frozen=True)
class TransitionRule:
    targets: FrozenSet[str]
    actor_constraint: ActorConstraint = ActorConstraint.NONE
    requires_comment: FrozenSet[str] = frozenset()
    # Per-target override of actor_constraint
    target_constraints: Mapping[str, ActorConstraint] = field(default_factory=dict)
    # Targets that move the entity back to an earlier state
    reverse_targets: FrozenSet[str] = frozenset()

    def constraint_for(self, target: str) -> ActorConstraint:
        return self.target_constraints.get(target, self.actor_constraint)


DEFAULT_COMMENT_TYPES: Dict[str, CommentType] = {
    "revision_requested": CommentType.REVISION_FEEDBACK,
    "approved": CommentType.APPROVAL,
    "cancelled": CommentType.SYSTEM,
}


@dataclass(frozen=True)
class WorkflowDefinition:
    entity_type: str
    collection: str
    label: str
    states: Tuple[str, ...]
    initial_state: str
    rules: Mapping[str, TransitionRule]
    create_model: Type[BaseModel]
    update_model: Type[BaseModel]

    access_capability: str
    create_capability: str
    supervisor_capability: str
    view_all_capability: str
    producer_capability: Optional[str] = None

    # Target of submit_immediately on creation
    submit_target: Optional[str] = None
    state_timestamps: Mapping[str, str] = field(default_factory=dict)
    # Timestamps written only on the first entry into the state
    first_timestamps: Mapping[str, str] = field(default_factory=dict)
    revision_states: FrozenSet[str] = frozenset()
    assignment_targets: FrozenSet[str] = frozenset()
    # Allow-listed `extra` keys per target
    extra_fields: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    extra_validators: Mapping[str, Callable[[dict], None]] = field(default_factory=dict)
    comment_types: Mapping[str, CommentType] = field(default_factory=dict)
    search_fields: Tuple[str, ...] = ("title", "description")

    def rule_for(self, state: str) -> Optional[TransitionRule]:
        return self.rules.get(state)

    def allowed_targets(self, state: str) -> FrozenSet[str]:
        rule = self.rules.get(state)
        if not rule:
            return frozenset()
        return rule.targets

    def is_terminal(self, state: str) -> bool:
        return not self.allowed_targets(state)

    def terminal_states(self) -> List[str]:
        return [s for s in self.states if self.is_terminal(s)]

    def has_requester_only_moves(self) -> bool:
        return any(
            rule.constraint_for(target) == ActorConstraint.REQUESTER_ONLY
            for rule in self.rules.values()
            for target in rule.targets
        )

    def comment_type_for(self, target: str) -> CommentType:
        if target in self.comment_types:
            return self.comment_types[target]
        return DEFAULT_COMMENT_TYPES.get(target, CommentType.STATUS_CHANGE)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "label": self.label,
            "states": list(self.states),
            "initial_state": self.initial_state,
            "terminal_states": self.terminal_states(),
            "transitions": {
                state: {
                    "targets": sorted(rule.targets),
                    "actor_constraint": rule.actor_constraint.value,
                    "target_constraints": {t: c.value for t, c in rule.target_constraints.items()},
                    "requires_comment": sorted(rule.requires_comment),
                    "reverse_targets": sorted(rule.reverse_targets),
                }
                for state, rule in self.rules.items()
            },
            "assignment_targets": sorted(self.assignment_targets),
            "extra_fields": {t: sorted(f) for t, f in self.extra_fields.items()},
        }


# ════════════════════════════════════════════════════════════════════════════
# DESIGN REQUESTS (requester -> producer VSDO)
# ════════════════════════════════════════════════════════════════════════════

DESIGN_REQUEST_TRANSITIONS: Dict[str, TransitionRule] = {
    "draft": TransitionRule(
        targets=frozenset({"submitted", "cancelled"}),
        actor_constraint=ActorConstraint.REQUESTER_ONLY,
    ),
    "submitted": TransitionRule(
        targets=frozenset({"accepted", "cancelled"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
    ),
    "accepted": TransitionRule(
        targets=frozenset({"in_progress"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
    ),
    "in_progress": TransitionRule(
        targets=frozenset({"delivered"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
    ),
    "delivered": TransitionRule(
        targets=frozenset({"approved", "revision_requested"}),
        actor_constraint=ActorConstraint.REQUESTER_ONLY,
        requires_comment=frozenset({"revision_requested"}),
    ),
    "revision_requested": TransitionRule(
        targets=frozenset({"in_progress"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
    ),
    # approved, cancelled: TERMINAL
}

DESIGN_REQUEST = WorkflowDefinition(
    entity_type=EntityType.DESIGN_REQUEST.value,
    collection="design_requests",
    label="Design request",
    states=(
        "draft", "submitted", "accepted", "in_progress", "delivered",
        "revision_requested", "approved", "cancelled",
    ),
    initial_state="draft",
    rules=DESIGN_REQUEST_TRANSITIONS,
    create_model=DesignRequestCreate,
    update_model=DesignRequestUpdate,
    access_capability="marketing.access",
    create_capability="design.request",
    supervisor_capability="marketing.supervise",
    view_all_capability="marketing.supervise",
    producer_capability="design.produce",
    submit_target="submitted",
    state_timestamps={
        "submitted": "submitted_at",
        "accepted": "accepted_at",
        "delivered": "delivered_at",
        "approved": "approved_at",
        "cancelled": "cancelled_at",
    },
    first_timestamps={"delivered": "first_delivered_at"},
    revision_states=frozenset({"revision_requested"}),
    assignment_targets=frozenset({"accepted"}),
    search_fields=("title", "description", "design_type"),
)


# ════════════════════════════════════════════════════════════════════════════
# CONTENT PLANS (approbation manager/director)
# ════════════════════════════════════════════════════════════════════════════

CONTENT_PLAN_TRANSITIONS: Dict[str, TransitionRule] = {
    "draft": TransitionRule(targets=frozenset({"in_review"})),
    "in_review": TransitionRule(
        targets=frozenset({"approved", "rejected", "draft"}),
        actor_constraint=ActorConstraint.SUPERVISOR_ONLY,
        requires_comment=frozenset({"rejected"}),
        target_constraints={"draft": ActorConstraint.NONE},
        reverse_targets=frozenset({"draft"}),
    ),
    "approved": TransitionRule(targets=frozenset({"published"})),
    "rejected": TransitionRule(
        targets=frozenset({"draft", "in_review"}),
        reverse_targets=frozenset({"draft", "in_review"}),
    ),
    "published": TransitionRule(
        targets=frozenset({"archived"}),
        actor_constraint=ActorConstraint.SUPERVISOR_ONLY,
    ),
    # archived: TERMINAL
}

CONTENT_PLAN = WorkflowDefinition(
    entity_type=EntityType.CONTENT_PLAN.value,
    collection="content_plans",
    label="Content plan",
    states=("draft", "in_review", "approved", "rejected", "published", "archived"),
    initial_state="draft",
    rules=CONTENT_PLAN_TRANSITIONS,
    create_model=ContentPlanCreate,
    update_model=ContentPlanUpdate,
    access_capability="marketing.access",
    create_capability="marketing.access",
    supervisor_capability="content.approve",
    view_all_capability="marketing.access",
    submit_target="in_review",
    state_timestamps={
        "approved": "approved_at",
        "published": "published_at",
        "archived": "archived_at",
    },
    comment_types={"rejected": CommentType.REJECTION},
    search_fields=("title", "description", "channel"),
)


# ════════════════════════════════════════════════════════════════════════════
# QUOTATIONS CLIENT
# ════════════════════════════════════════════════════════════════════════════

QUOTATION_REJECTION_REASONS = [
    "tarif_tidak_masuk",
    "kompetitor_lebih_murah",
    "budget_customer_tidak_cukup",
    "service_tidak_sesuai",
    "waktu_tidak_sesuai",
    "other",
]

FINANCIAL_REJECTION_REASONS = [
    "tarif_tidak_masuk",
    "kompetitor_lebih_murah",
    "budget_customer_tidak_cukup",
]


def validate_quotation_rejection(extra: dict) -> None:
    reason_type = extra.get("reason_type")
    if not reason_type:
        raise ValidationError(
            "Rejection reason is required",
            field_errors={"reason_type": "Required"},
        )
    if reason_type not in QUOTATION_REJECTION_REASONS:
        raise ValidationError(
            f"Invalid reason type: {reason_type}",
            field_errors={"reason_type": f"Must be one of {QUOTATION_REJECTION_REASONS}"},
        )
    if reason_type == "kompetitor_lebih_murah" and not (
        extra.get("competitor_name") or extra.get("competitor_amount")
    ):
        raise ValidationError(
            "Competitor name or amount is required for this reason",
            field_errors={"competitor_name": "Required when reason_type is kompetitor_lebih_murah"},
        )
    if reason_type == "budget_customer_tidak_cukup" and not extra.get("customer_budget"):
        raise ValidationError(
            "Customer budget is required for this reason",
            field_errors={"customer_budget": "Required when reason_type is budget_customer_tidak_cukup"},
        )


QUOTATION_TRANSITIONS: Dict[str, TransitionRule] = {
    "draft": TransitionRule(
        targets=frozenset({"sent", "rejected"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
        requires_comment=frozenset({"rejected"}),
    ),
    "sent": TransitionRule(
        targets=frozenset({"accepted", "rejected"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
        requires_comment=frozenset({"rejected"}),
    ),
    # accepted, rejected: TERMINAL
}

QUOTATION = WorkflowDefinition(
    entity_type=EntityType.QUOTATION.value,
    collection="quotations",
    label="Customer quotation",
    states=("draft", "sent", "accepted", "rejected"),
    initial_state="draft",
    rules=QUOTATION_TRANSITIONS,
    create_model=QuotationCreate,
    update_model=QuotationUpdate,
    access_capability="ticketing.access",
    create_capability="quotations.manage",
    supervisor_capability="users.manage",
    view_all_capability="tickets.view_all",
    producer_capability="quotations.manage",
    submit_target="sent",
    state_timestamps={
        "sent": "sent_at",
        "accepted": "accepted_at",
        "rejected": "rejected_at",
    },
    extra_fields={
        "rejected": frozenset({
            "reason_type", "competitor_name", "competitor_amount",
            "customer_budget", "currency",
        }),
    },
    extra_validators={"rejected": validate_quotation_rejection},
    comment_types={"rejected": CommentType.REJECTION},
    search_fields=("title", "description", "customer_name"),
)


# ════════════════════════════════════════════════════════════════════════════
# TICKETS (suivi SLA, voir services/sla.py)
# ════════════════════════════════════════════════════════════════════════════

TICKET_CLOSE_OUTCOMES = ["won", "lost"]


def validate_ticket_close(extra: dict) -> None:
    outcome = extra.get("close_outcome")
    if outcome is not None and outcome not in TICKET_CLOSE_OUTCOMES:
        raise ValidationError(
            f"Invalid close_outcome: {outcome}",
            field_errors={"close_outcome": f"Must be one of {TICKET_CLOSE_OUTCOMES}"},
        )


TICKET_TRANSITIONS: Dict[str, TransitionRule] = {
    "open": TransitionRule(
        targets=frozenset({"in_progress", "waiting_customer", "need_adjustment", "closed"}),
        actor_constraint=ActorConstraint.PARTICIPANT,
    ),
    "in_progress": TransitionRule(
        targets=frozenset({"waiting_customer", "need_adjustment", "resolved", "closed"}),
        actor_constraint=ActorConstraint.PARTICIPANT,
    ),
    "waiting_customer": TransitionRule(
        targets=frozenset({"in_progress", "need_adjustment", "resolved", "closed"}),
        actor_constraint=ActorConstraint.PARTICIPANT,
    ),
    "need_adjustment": TransitionRule(
        targets=frozenset({"in_progress", "waiting_customer", "closed"}),
        actor_constraint=ActorConstraint.PARTICIPANT,
    ),
    "resolved": TransitionRule(
        targets=frozenset({"closed", "in_progress"}),
        actor_constraint=ActorConstraint.PARTICIPANT,
        reverse_targets=frozenset({"in_progress"}),
    ),
    # closed: TERMINAL
}

TICKET = WorkflowDefinition(
    entity_type=EntityType.TICKET.value,
    collection="tickets",
    label="Ticket",
    states=("open", "in_progress", "waiting_customer", "need_adjustment", "resolved", "closed"),
    initial_state="open",
    rules=TICKET_TRANSITIONS,
    create_model=TicketCreate,
    update_model=TicketUpdate,
    access_capability="ticketing.access",
    create_capability="ticketing.access",
    supervisor_capability="tickets.view_all",
    view_all_capability="tickets.view_all",
    producer_capability="tickets.transition",
    state_timestamps={"closed": "closed_at"},
    assignment_targets=frozenset({"in_progress"}),
    extra_fields={
        "closed": frozenset({"close_outcome", "close_reason", "competitor_name", "competitor_cost"}),
    },
    extra_validators={"closed": validate_ticket_close},
    search_fields=("title", "description", "customer_name"),
)


# ════════════════════════════════════════════════════════════════════════════
# LEADS (triage marketing -> handover sales)
# ════════════════════════════════════════════════════════════════════════════

LEAD_TRANSITIONS: Dict[str, TransitionRule] = {
    "new": TransitionRule(
        targets=frozenset({"in_review", "qualified", "nurture", "disqualified"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
        requires_comment=frozenset({"disqualified"}),
    ),
    "in_review": TransitionRule(
        targets=frozenset({"qualified", "nurture", "disqualified"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
        requires_comment=frozenset({"disqualified"}),
    ),
    "nurture": TransitionRule(
        targets=frozenset({"in_review", "qualified", "disqualified"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
        requires_comment=frozenset({"disqualified"}),
        reverse_targets=frozenset({"in_review"}),
    ),
    "qualified": TransitionRule(
        targets=frozenset({"handed_over"}),
        actor_constraint=ActorConstraint.PRODUCER_ONLY,
    ),
    # disqualified, handed_over: TERMINAL
}

LEAD = WorkflowDefinition(
    entity_type=EntityType.LEAD.value,
    collection="leads",
    label="Lead",
    states=("new", "in_review", "qualified", "nurture", "disqualified", "handed_over"),
    initial_state="new",
    rules=LEAD_TRANSITIONS,
    create_model=LeadCreate,
    update_model=LeadUpdate,
    access_capability="leads.access",
    create_capability="leads.access",
    supervisor_capability="leads.triage",
    view_all_capability="leads.triage",
    producer_capability="leads.triage",
    submit_target="in_review",
    state_timestamps={
        "qualified": "qualified_at",
        "disqualified": "disqualified_at",
        "handed_over": "handed_over_at",
    },
    assignment_targets=frozenset({"handed_over"}),
    search_fields=("title", "description", "contact_name", "email"),
)


WORKFLOWS: Dict[str, WorkflowDefinition] = {
    w.entity_type: w for w in (DESIGN_REQUEST, CONTENT_PLAN, QUOTATION, TICKET, LEAD)
}


def get_workflow(entity_type: str) -> WorkflowDefinition:
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise NotFoundError(f"Unknown entity type: {entity_type}")
    return workflow
