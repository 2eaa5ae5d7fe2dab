"""
Pydantic schemas for editor sessions.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import Field

from app.features.editor.editor import SaveStatus
from app.features.permissions.schemas import ActionSet, CamelModel, ModulePermission
from app.features.users.schemas import ActorRole


class ActionName(str, Enum):
    ALL = "all"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class OpenSessionRequest(CamelModel):
    """Open an editor for one agent."""
    agent_id: str = Field(..., min_length=1, description="Agent or doctor-staff account id")


class ActionUpdate(CamelModel):
    """Grant (true) or revoke (false) an action."""
    value: bool


class SubModuleView(CamelModel):
    """A sub-module row of the matrix."""
    name: str
    path: str
    icon: str
    order: int
    actions: ActionSet
    grantable: ActionSet = Field(..., description="Actions the actor may grant here")


class ModuleView(CamelModel):
    """A module row of the matrix with its sub-modules."""
    module: str
    label: str
    icon: str
    order: int
    expanded: bool
    actions: ActionSet
    grantable: ActionSet
    sub_modules: List[SubModuleView] = []


class EditorView(CamelModel):
    """Current state of an editor session."""
    session_id: str
    agent_id: str
    actor_role: ActorRole
    opened_at: datetime
    save_status: SaveStatus
    save_pending: bool
    modules: List[ModuleView] = []
    permissions: List[ModulePermission] = []


class ExpansionResponse(CamelModel):
    module: str
    expanded: bool


class CloseSessionResponse(CamelModel):
    session_id: str
    save_pending: bool
    message: Optional[str] = None
