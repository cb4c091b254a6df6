"""
UGC Portal - Permission System
Capability keys + role presets + FastAPI dependency.
Capabilities are the source of truth. Role names appear only in this file.
"""

import logging
from typing import Dict, FrozenSet, List
from fastapi import Depends

from services.errors import AuthorizationError

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL CAPABILITY KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_CAPABILITY_KEYS = [
    "marketing.access",
    "marketing.supervise",
    "design.request",
    "design.produce",
    "content.approve",

    "leads.access",
    "leads.triage",

    "ticketing.access",
    "tickets.transition",
    "tickets.view_all",
    "quotations.manage",

    "activity.view",
    "users.manage",
]

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS
# ════════════════════════════════════════════════════════════════════════

_ADMIN = frozenset(ALL_CAPABILITY_KEYS)

_OPS = frozenset({
    "ticketing.access", "tickets.transition", "tickets.view_all",
})

_SALES = frozenset({
    "leads.access", "ticketing.access", "quotations.manage",
})

ROLE_PRESETS: Dict[str, FrozenSet[str]] = {
    "Director": _ADMIN,
    "super admin": _ADMIN,

    "Marketing Manager": frozenset({
        "marketing.access", "marketing.supervise", "design.request", "content.approve",
        "leads.access", "leads.triage",
    }),
    "MACX": frozenset({
        "marketing.access", "marketing.supervise", "design.request",
        "leads.access", "leads.triage",
    }),
    "Marcomm": frozenset({
        "marketing.access", "design.request", "leads.access", "leads.triage",
    }),
    "DGO": frozenset({
        "marketing.access", "design.request", "leads.access", "leads.triage",
    }),
    # Producer of design requests; cannot request designs
    "VSDO": frozenset({"marketing.access", "design.produce"}),

    "sales manager": _SALES,
    "salesperson": _SALES,
    "sales support": _SALES,

    "EXIM Ops": _OPS,
    "domestics Ops": _OPS,
    "Import DTD Ops": _OPS,
    "traffic & warehous": _OPS,

    "finance": frozenset({"ticketing.access"}),
}

VALID_ROLES: List[str] = list(ROLE_PRESETS.keys())


# ════════════════════════════════════════════════════════════════════════
# PERMISSION CHECK HELPERS
# ════════════════════════════════════════════════════════════════════════

def can_perform(role: str, capability: str) -> bool:
    """Pure role gate. Unknown role or capability -> False."""
    return capability in ROLE_PRESETS.get(role, frozenset())


def capabilities_for(role: str) -> List[str]:
    """Sorted capability list for a role (empty for unknown roles)."""
    return sorted(ROLE_PRESETS.get(role, frozenset()))


def user_has_capability(user: dict, capability: str) -> bool:
    return can_perform(user.get("role", ""), capability)


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_capability(capability: str):
    """
    FastAPI dependency factory.
    Usage: user: dict = Depends(require_capability("activity.view"))
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not user_has_capability(user, capability):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={capability} role={user.get('role')}"
            )
            raise AuthorizationError(f"Permission required: {capability}")
        return user

    return _check
