"""
Authentication utilities for platform JWT verification.
"""
import jwt
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a platform JWT and return its payload.
    
    The platform issues the token; when JWT_SECRET is configured the signature
    is checked, otherwise the payload is only decoded (expiry is still enforced)
    and the upstream API remains the authority on every call we forward.
    
    Args:
        token: JWT token from Authorization header
        
    Returns:
        Decoded JWT payload containing ``userId`` and ``role``
        
    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        if config.JWT_SECRET:
            return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True}
        )
        
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
