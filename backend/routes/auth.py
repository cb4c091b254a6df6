"""
UGC Portal - Routes Auth
Login / Logout / Session / User CRUD. Le rôle est relu à chaque requête.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta

from models.auth import UserLogin, UserCreate, UserUpdate, UserResponse
from config import DEFAULT_TENANT, SESSION_TTL_DAYS, get_db, hash_password, generate_token, new_id, now_iso
from services.activity_logger import log_activity
from services.errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from services.permissions import capabilities_for, require_capability

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise AuthenticationError("Not authenticated")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise AuthenticationError("Session expired")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise AuthenticationError("User not found")

    if not user.get("is_active", True):
        raise AuthorizationError("Account disabled")

    user.setdefault("tenant", DEFAULT_TENANT)
    return user


def _public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user.get("name", ""),
        "role": user.get("role", ""),
        "tenant": user.get("tenant", DEFAULT_TENANT),
        "capabilities": capabilities_for(user.get("role", "")),
        "is_active": user.get("is_active", True),
    }


# ==================== LOGIN / LOGOUT ====================

@router.post("/login")
async def login(data: UserLogin, request: Request, db=Depends(get_db)):
    """Connexion utilisateur."""
    user = await db.users.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not user or user.get("password") != hash_password(data.password):
        raise AuthenticationError("Invalid email or password")

    if not user.get("is_active", True):
        raise AuthorizationError("Account disabled")

    # Journal AVANT la session: pas de session valide si l'audit échoue
    await log_activity(
        db,
        user,
        "login",
        "user",
        user["id"],
        user.get("tenant", DEFAULT_TENANT),
        details={"ip": request.client.host if request.client else None},
        correlation_id=getattr(request.state, "correlation_id", None),
    )

    token = generate_token()
    expires_at = (datetime.now(timezone.utc) + timedelta(days=SESSION_TTL_DAYS)).isoformat()

    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "created_at": now_iso(),
        "expires_at": expires_at
    })

    return {"token": token, "expires_at": expires_at, "user": _public_user(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db=Depends(get_db),
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me", response_model=UserResponse)
async def get_me(user: dict = Depends(get_current_user)):
    """Retourne user + capacités."""
    return _public_user(user)


# ==================== USER CRUD (users.manage) ====================

@router.get("/users")
async def list_users(user: dict = Depends(require_capability("users.manage")), db=Depends(get_db)):
    users = await db.users.find({"tenant": user["tenant"]}, {"_id": 0, "password": 0}).to_list(500)
    return {"users": [_public_user(u) for u in users]}


@router.post("/users", status_code=201)
async def create_user(
    data: UserCreate,
    request: Request,
    user: dict = Depends(require_capability("users.manage")),
    db=Depends(get_db),
):
    if data.tenant and data.tenant != user["tenant"]:
        raise AuthorizationError(
            "Users can only be created in your own tenant",
            reason="cross_tenant",
        )

    email = data.email.lower().strip()
    if await db.users.find_one({"email": email}):
        raise ValidationError("Email already exists", field_errors={"email": "Already registered"})

    new_user = {
        "id": new_id(),
        "email": email,
        "password": hash_password(data.password),
        "name": data.name,
        "role": data.role,
        "tenant": user["tenant"],
        "is_active": True,
        "created_at": now_iso(),
        "created_by": user["id"],
    }
    await db.users.insert_one(dict(new_user))

    await log_activity(
        db, user, "create_user", "user", new_user["id"], user["tenant"],
        details={"role": data.role, "tenant": new_user["tenant"]},
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return {"success": True, "user": _public_user(new_user)}


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    data: UserUpdate,
    request: Request,
    user: dict = Depends(require_capability("users.manage")),
    db=Depends(get_db),
):
    target = await db.users.find_one({"id": user_id, "tenant": user["tenant"]})
    if not target:
        raise NotFoundError("User not found")

    update_data = data.model_dump(exclude_unset=True, exclude_none=True)
    if not update_data:
        raise ValidationError("No fields to update")
    update_data["updated_at"] = now_iso()

    await db.users.update_one({"id": user_id}, {"$set": update_data})

    await log_activity(
        db, user, "update_user", "user", user_id, user["tenant"],
        details={k: v for k, v in update_data.items() if k != "updated_at"},
        correlation_id=getattr(request.state, "correlation_id", None),
    )

    updated = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    return {"success": True, "user": _public_user(updated)}


@router.delete("/users/{user_id}")
async def deactivate_user(
    user_id: str,
    request: Request,
    user: dict = Depends(require_capability("users.manage")),
    db=Depends(get_db),
):
    """Désactiver un utilisateur (pas de suppression physique)."""
    target = await db.users.find_one({"id": user_id, "tenant": user["tenant"]})
    if not target:
        raise NotFoundError("User not found")

    if user_id == user["id"]:
        raise ValidationError("You cannot deactivate your own account")

    await db.users.update_one(
        {"id": user_id},
        {"$set": {"is_active": False, "deactivated_at": now_iso()}}
    )
    await db.sessions.delete_many({"user_id": user_id})

    await log_activity(
        db, user, "deactivate_user", "user", user_id, user["tenant"],
        correlation_id=getattr(request.state, "correlation_id", None),
    )
    return {"success": True}
