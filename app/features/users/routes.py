"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends

from app.features.users.dependencies import get_current_actor
from app.features.users.schemas import Actor, ActorResponse


router = APIRouter(tags=["users"])


@router.get("/me", response_model=ActorResponse)
async def get_current_actor_profile(
    actor: Annotated[Actor, Depends(get_current_actor)]
):
    """Get the authenticated actor's identity and scoping."""
    return ActorResponse(id=actor.id, role=actor.role, is_scoped=actor.is_scoped)
