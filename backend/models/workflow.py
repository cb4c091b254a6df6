"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  UGC Portal - Workflow models                                                ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  1. Chaque opération a son propre modèle d'entrée (create / update /         ║
║     transition). Les champs inconnus sont REJETÉS (extra="forbid").          ║
║  2. Les champs d'état (state, state_changed_*, revision_count, version,      ║
║     timestamps du workflow) ne sont jamais acceptés en création/édition.     ║
║  3. Journal d'activité et commentaires: append-only.                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EntityType(str, Enum):
    CONTENT_PLAN = "content_plan"
    DESIGN_REQUEST = "design_request"
    QUOTATION = "quotation"
    TICKET = "ticket"
    LEAD = "lead"


class CommentType(str, Enum):
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    REVISION_FEEDBACK = "revision_feedback"
    APPROVAL = "approval"
    REJECTION = "rejection"
    SYSTEM = "system"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Written only by the transition executor
PROTECTED_FIELDS = frozenset({
    "id",
    "tenant",
    "entity_type",
    "state",
    "state_changed_at",
    "state_changed_by",
    "revision_count",
    "version",
    "created_by",
    "created_at",
    "assigned_to",
})


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ==================== CREATE ====================

class WorkflowCreate(_StrictModel):
    """Champs communs à toutes les créations"""
    title: str = Field(min_length=1, max_length=300)
    description: str = ""
    assigned_to: Optional[str] = None
    submit_immediately: bool = False


class DesignRequestCreate(WorkflowCreate):
    description: str = Field(min_length=1)
    design_type: str = Field(min_length=1)
    design_subtype: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    deadline: Optional[date] = None
    platform_target: List[str] = []
    output_format: List[str] = ["png"]
    quantity: int = Field(1, ge=1)
    reference_urls: List[str] = []
    campaign_id: Optional[str] = None


class ContentPlanCreate(WorkflowCreate):
    channel: str = ""
    content_type: str = ""
    scheduled_date: Optional[date] = None
    campaign_id: Optional[str] = None


class QuotationCreate(WorkflowCreate):
    customer_name: str = Field(min_length=1)
    ticket_id: Optional[str] = None
    total_amount: float = Field(0, ge=0)
    currency: str = "IDR"
    valid_until: Optional[date] = None


class TicketCreate(WorkflowCreate):
    department: str = ""
    priority: Priority = Priority.MEDIUM
    customer_name: str = ""


class LeadCreate(WorkflowCreate):
    contact_name: str = ""
    email: str = ""
    phone: str = ""
    source: str = ""
    industry: str = ""


# ==================== UPDATE (champs hors workflow) ====================

class DesignRequestUpdate(_StrictModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    design_type: Optional[str] = None
    design_subtype: Optional[str] = None
    priority: Optional[Priority] = None
    deadline: Optional[date] = None
    platform_target: Optional[List[str]] = None
    output_format: Optional[List[str]] = None
    quantity: Optional[int] = Field(None, ge=1)
    reference_urls: Optional[List[str]] = None
    campaign_id: Optional[str] = None


class ContentPlanUpdate(_StrictModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    channel: Optional[str] = None
    content_type: Optional[str] = None
    scheduled_date: Optional[date] = None
    campaign_id: Optional[str] = None


class QuotationUpdate(_StrictModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    customer_name: Optional[str] = None
    total_amount: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    valid_until: Optional[date] = None


class TicketUpdate(_StrictModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    department: Optional[str] = None
    priority: Optional[Priority] = None
    customer_name: Optional[str] = None


class LeadUpdate(_StrictModel):
    title: Optional[str] = Field(None, min_length=1, max_length=300)
    description: Optional[str] = None
    contact_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    industry: Optional[str] = None


# ==================== TRANSITION / COMMENTS ====================

class StatusTransitionIn(_StrictModel):
    """Body de PATCH /entities/{type}/{id}/status"""
    state: str = Field(min_length=1)
    comment: Optional[str] = None
    assigned_to: Optional[str] = None
    extra: Dict[str, Any] = {}


class CommentCreate(_StrictModel):
    body: str = Field(min_length=1, max_length=5000)

    @field_validator("body")
    @classmethod
    def body_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Comment body cannot be blank")
        return v


# ==================== DESIGN VERSIONS (livrables) ====================

class DesignVersionCreate(_StrictModel):
    """Body de POST /entities/design_request/{id}/versions"""
    design_url: str = Field(min_length=1)
    design_url_2: Optional[str] = None
    thumbnail_url: Optional[str] = None
    file_format: Optional[str] = None
    notes: Optional[str] = None


class DesignVersionReview(_StrictModel):
    review_status: Literal["approved", "revision_requested"]
    review_comment: Optional[str] = None


class DesignVersion(BaseModel):
    """Livrable d'une design request, numéroté à partir de 1"""
    id: str
    tenant: str
    request_id: str
    version_number: int
    design_url: str
    design_url_2: Optional[str] = None
    thumbnail_url: Optional[str] = None
    file_format: Optional[str] = None
    notes: Optional[str] = None
    delivered_by: str
    delivered_at: str
    review_status: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    review_comment: Optional[str] = None


# ==================== DOCUMENTS (append-only) ====================

class ActivityLog(BaseModel):
    """Entrée du journal d'activité (TransitionRecord)"""
    id: str
    tenant: str
    entity_type: str
    entity_id: str
    actor_id: str
    actor_email: str = ""
    action: str
    details: Dict[str, Any] = {}
    correlation_id: Optional[str] = None
    created_at: str


class Comment(BaseModel):
    id: str
    tenant: str
    entity_type: str
    entity_id: str
    author_id: str
    body: str
    comment_type: CommentType = CommentType.COMMENT
    version_ref: Optional[str] = None
    created_at: str
