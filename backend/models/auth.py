"""
UGC Portal - Modeles Auth & Utilisateurs
Le rôle détermine les capacités (services/permissions.py).
"""

from pydantic import BaseModel, field_validator
from typing import Optional

from services.permissions import VALID_ROLES


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    name: str
    role: str
    tenant: Optional[str] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f"Invalid role: {v}. Valid: {VALID_ROLES}")
        return v

    @field_validator("tenant")
    @classmethod
    def normalize_tenant(cls, v):
        return v.strip().upper() if v else v


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v is not None and v not in VALID_ROLES:
            raise ValueError(f"Invalid role: {v}")
        return v


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    role: str
    tenant: str
    capabilities: list = []
    is_active: bool = True
