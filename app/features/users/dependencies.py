"""
FastAPI dependencies for authentication and authorization.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.features.users.auth import verify_jwt_token
from app.features.users.schemas import Actor, ActorRole
from app.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Get the current authenticated actor from the JWT.
    
    Only admin, clinic and doctor accounts may manage agent permissions.
    
    Usage:
        @router.get("/me")
        async def get_me(actor: Actor = Depends(get_current_actor)):
            return actor
    """
    token = credentials.credentials
    payload = verify_jwt_token(token)
    
    user_id = payload.get("userId")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    
    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        log.info("Rejected actor %s with role %r", user_id, payload.get("role"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied",
        )
    
    return Actor(id=str(user_id), role=role, token=token)


async def get_current_admin_actor(
    actor: Annotated[Actor, Depends(get_current_actor)]
) -> Actor:
    """
    Require platform admin privileges.
    """
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return actor


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
