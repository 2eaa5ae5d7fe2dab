"""
Stateless permission matrix routes and the editor audit trail.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.matrix import check_permission, reconcile, sanitize
from app.features.permissions.models import AuditLog
from app.features.permissions.schemas import (
    ACTIONS,
    AuditLogListResponse,
    AuditLogResponse,
    ModulePermission,
    PermissionCheckRequest,
    PermissionCheckResponse,
    ReconcileRequest,
)
from app.features.users.dependencies import get_current_actor, get_current_admin_actor
from app.features.users.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Matrix Routes
# ============================================================================

@router.post("/reconcile", response_model=List[ModulePermission])
async def reconcile_permissions(
    body: ReconcileRequest,
    current_actor: Actor = Depends(get_current_actor)
):
    """Sanitise a stored permission set and add what the navigation tree is missing."""
    return reconcile(body.navigation, sanitize(body.permissions))


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permissions(
    body: PermissionCheckRequest,
    current_actor: Actor = Depends(get_current_actor)
):
    """Check whether a permission set allows an action on a module or sub-module."""
    if body.action not in ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {body.action}"
        )
    allowed, reason = check_permission(sanitize(body.permissions), body.module, body.action, body.sub_module)
    return PermissionCheckResponse(has_permission=allowed, reason=reason)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    actor_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_actor: Actor = Depends(get_current_admin_actor)  # Admin only
):
    """List audit logs with optional filtering."""
    stmt = select(AuditLog)

    if actor_id:
        stmt = stmt.where(AuditLog.actor_id == actor_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_id:
        stmt = stmt.where(AuditLog.resource_id == resource_id)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
