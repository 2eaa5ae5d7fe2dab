"""
Pydantic schemas for the permission matrix.

Wire format follows the platform API (camelCase keys such as ``moduleKey`` and
``subModules``); Python attributes are snake_case and either spelling is accepted.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


ACTION_KEYS = ("create", "read", "update", "delete")
ALL_ACTION = "all"
ACTIONS = (ALL_ACTION,) + ACTION_KEYS

DEFAULT_SUB_MODULE_ICON = "📄"


class CamelModel(BaseModel):
    """Base schema serialising to the platform's camelCase field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Permission Matrix Schemas
# ============================================================================

class ActionSet(BaseModel):
    """
    Four primitive actions plus the derived ``all`` flag.

    ``all`` is a cached conjunction of the primitives and is never authoritative
    on its own.
    """
    all: bool = False
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False


class SubModulePermission(CamelModel):
    """Permission entry for one navigation sub-item, keyed by ``name``."""
    name: str = Field(..., min_length=1)
    path: str = ""
    icon: str = DEFAULT_SUB_MODULE_ICON
    order: int = 0
    actions: ActionSet = Field(default_factory=ActionSet)


class ModulePermission(CamelModel):
    """Permission entry for one module, keyed by ``module``."""
    module: str = Field(..., min_length=1)
    sub_modules: List[SubModulePermission] = Field(default_factory=list)
    actions: ActionSet = Field(default_factory=ActionSet)


PermissionSet = List[ModulePermission]


# ============================================================================
# Navigation Schemas
# ============================================================================

class NavigationSubItem(CamelModel):
    """Sub-item of a navigation module."""
    name: str = Field(..., min_length=1)
    path: Optional[str] = None
    icon: str = DEFAULT_SUB_MODULE_ICON
    order: int = 0


class NavigationNode(CamelModel):
    """
    Navigation module as served by the platform for a role.

    Defines which modules and sub-modules may exist; carries no permission state.
    """
    module_key: str = Field(..., min_length=1)
    label: str = ""
    icon: str = ""
    order: int = 0
    path: Optional[str] = None
    description: Optional[str] = None
    sub_modules: List[NavigationSubItem] = Field(default_factory=list)


# ============================================================================
# Request / Response Schemas
# ============================================================================

class ReconcileRequest(CamelModel):
    """Navigation tree plus a raw (unsanitised) permission set."""
    navigation: List[NavigationNode] = Field(default_factory=list)
    permissions: Any = None


class PermissionCheckRequest(CamelModel):
    """Check whether a permission set allows an action."""
    permissions: Any = None
    module: str = Field(..., min_length=1, description="Module key, role prefix optional")
    action: str = Field(..., description="Action (create, read, update, delete, all)")
    sub_module: Optional[str] = Field(None, description="Sub-module name")


class PermissionCheckResponse(CamelModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    actor_id: Optional[str]
    actor_role: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
