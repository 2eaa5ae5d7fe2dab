"""
Pydantic schemas for the authenticated actor.
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class ActorRole(str, Enum):
    """Roles allowed to manage agent permissions."""
    ADMIN = "admin"
    CLINIC = "clinic"
    DOCTOR = "doctor"


# Roles whose own permission set limits what they can grant
SCOPED_ROLES = frozenset({ActorRole.CLINIC})


class Actor(BaseModel):
    """Identity of the caller, read from the bearer token."""
    id: str = Field(..., min_length=1)
    role: ActorRole
    token: str = Field(..., repr=False, exclude=True)

    model_config = ConfigDict(frozen=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN

    @property
    def is_scoped(self) -> bool:
        return self.role in SCOPED_ROLES


class ActorResponse(BaseModel):
    """Schema for the current actor."""
    id: str
    role: ActorRole
    is_scoped: bool
