"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  UGC Portal - Models Package                                                 ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import StatusTransitionIn, DesignRequestCreate, etc.            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import (
    UserLogin,
    UserCreate,
    UserUpdate,
    UserResponse,
)

# Workflow
from .workflow import (
    EntityType,
    CommentType,
    Priority,
    PROTECTED_FIELDS,
    WorkflowCreate,
    DesignRequestCreate,
    DesignRequestUpdate,
    ContentPlanCreate,
    ContentPlanUpdate,
    QuotationCreate,
    QuotationUpdate,
    TicketCreate,
    TicketUpdate,
    LeadCreate,
    LeadUpdate,
    StatusTransitionIn,
    CommentCreate,
    DesignVersionCreate,
    DesignVersionReview,
    DesignVersion,
    ActivityLog,
    Comment,
)

__all__ = [
    "UserLogin", "UserCreate", "UserUpdate", "UserResponse",
    "EntityType", "CommentType", "Priority", "PROTECTED_FIELDS",
    "WorkflowCreate",
    "DesignRequestCreate", "DesignRequestUpdate",
    "ContentPlanCreate", "ContentPlanUpdate",
    "QuotationCreate", "QuotationUpdate",
    "TicketCreate", "TicketUpdate",
    "LeadCreate", "LeadUpdate",
    "StatusTransitionIn", "CommentCreate",
    "DesignVersionCreate", "DesignVersionReview", "DesignVersion",
    "ActivityLog", "Comment",
]
