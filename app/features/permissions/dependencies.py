"""
Audit logging helpers for permission editing.
"""
from typing import Any, Dict, Optional
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal
from app.features.permissions.models import AuditLog
from app.features.users.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)

AGENT_PERMISSIONS_RESOURCE = "agent_permissions"


async def create_audit_log(
    db: AsyncSession,
    actor_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    actor_role: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.
    
    Args:
        db: Database session
        actor_id: Platform user performing the action
        action: Action performed (e.g., "open", "grant_rejected", "save", "save_failed")
        resource_type: Type of resource (e.g., "agent_permissions")
        resource_id: ID of the resource (agent id)
        actor_role: Role of the actor
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent
    
    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )
    
    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)
    
    log.info(
        f"Audit: actor={actor_id} action={action} resource={resource_type}:{resource_id}"
    )
    
    return audit_log


async def record_editor_event(
    actor: Actor,
    action: str,
    agent_id: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> None:
    """
    Write an editor audit entry in its own session.
    
    Used from background tasks and debounced saves, which outlive the request
    session. Failures are logged and never reach the editor.
    """
    try:
        async with AsyncSessionLocal() as db:
            await create_audit_log(
                db,
                actor_id=actor.id,
                actor_role=actor.role.value,
                action=action,
                resource_type=AGENT_PERMISSIONS_RESOURCE,
                resource_id=agent_id,
                details=details,
                ip_address=request.client.host if request and request.client else None,
                user_agent=request.headers.get("user-agent") if request else None,
            )
    except Exception:
        log.exception("Failed to write audit entry %s for agent %s", action, agent_id)
