"""
Permission editor API routes.

Open a session for one agent, toggle module and sub-module actions, and close
it. Edits are persisted to the platform through a debounced save.
"""
from typing import Annotated
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status

from app.core import config
from app.core.rate_limit import limiter
from app.features.editor.dependencies import get_editor_session, get_platform_client, get_session_store
from app.features.editor.editor import PermissionEditor, Saver, open_editor
from app.features.editor.schemas import (
    ActionName,
    ActionUpdate,
    CloseSessionResponse,
    EditorView,
    ExpansionResponse,
    ModuleView,
    OpenSessionRequest,
    SubModuleView,
)
from app.features.editor.sessions import EditorSession, EditorSessionStore
from app.features.permissions.dependencies import record_editor_event
from app.features.permissions.matrix import GrantRejected
from app.features.permissions.schemas import ACTION_KEYS, ActionSet, ModulePermission
from app.features.platform.client import PlatformClient
from app.features.users.dependencies import get_current_actor
from app.features.users.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _audited_saver(client: PlatformClient, actor: Actor) -> Saver:
    async def save(agent_id, permissions):
        ok = await client.save_agent_permissions(agent_id, permissions)
        await record_editor_event(
            actor,
            "save" if ok else "save_failed",
            agent_id,
            details={"modules": len(permissions)},
        )
        return ok
    return save


def _grantable(editor: PermissionEditor, module_key: str, sub_module_name: str | None = None) -> ActionSet:
    flags = {key: editor.can_grant(module_key, key, sub_module_name) for key in ACTION_KEYS + ("all",)}
    return ActionSet(**flags)


def _build_view(session: EditorSession) -> EditorView:
    editor = session.editor
    by_key: dict[str, ModulePermission] = {perm.module: perm for perm in editor.permissions}
    modules = []
    for node in editor.navigation:
        perm = by_key.get(node.module_key) or ModulePermission(module=node.module_key)
        subs = [
            SubModuleView(
                name=sub.name,
                path=sub.path,
                icon=sub.icon,
                order=sub.order,
                actions=sub.actions,
                grantable=_grantable(editor, node.module_key, sub.name),
            )
            for sub in sorted(perm.sub_modules, key=lambda sub: sub.order)
        ]
        modules.append(ModuleView(
            module=node.module_key,
            label=node.label,
            icon=node.icon,
            order=node.order,
            expanded=node.module_key in editor.expanded_modules,
            actions=perm.actions,
            grantable=_grantable(editor, node.module_key),
            sub_modules=subs,
        ))
    return EditorView(
        session_id=session.id,
        agent_id=editor.agent_id,
        actor_role=session.actor.role,
        opened_at=session.opened_at,
        save_status=editor.save_status,
        save_pending=editor.save_pending,
        modules=modules,
        permissions=editor.permissions,
    )


def _reject(
    exc: GrantRejected,
    session: EditorSession,
    background_tasks: BackgroundTasks,
    request: Request,
) -> HTTPException:
    log.info(
        "Actor %s denied granting %s on %s%s",
        session.actor.id, exc.action, exc.module, f"/{exc.sub_module}" if exc.sub_module else "",
    )
    background_tasks.add_task(
        record_editor_event,
        session.actor,
        "grant_rejected",
        session.editor.agent_id,
        details={"module": exc.module, "subModule": exc.sub_module, "action": exc.action},
        request=request,
    )
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


# ============================================================================
# Session Routes
# ============================================================================

@router.post("/sessions", response_model=EditorView, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.SESSION_OPEN_RATE_LIMIT)
async def open_session(
    request: Request,
    body: OpenSessionRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[Actor, Depends(get_current_actor)],
    client: Annotated[PlatformClient, Depends(get_platform_client)],
    store: Annotated[EditorSessionStore, Depends(get_session_store)],
):
    """Open an editor for an agent: fetch, sanitise and reconcile its permissions."""
    editor = await open_editor(client, actor, body.agent_id, saver=_audited_saver(client, actor))
    session = store.add(actor, editor)

    background_tasks.add_task(
        record_editor_event,
        actor,
        "open",
        body.agent_id,
        details={"sessionId": session.id, "modules": len(editor.navigation)},
        request=request,
    )
    return _build_view(session)


@router.get("/sessions/{session_id}", response_model=EditorView)
async def get_session(
    session: Annotated[EditorSession, Depends(get_editor_session)],
):
    """Get the current matrix of a session."""
    return _build_view(session)


@router.put("/sessions/{session_id}/modules/{module_key}/actions/{action}", response_model=EditorView)
async def update_module_action(
    module_key: str,
    action: ActionName,
    body: ActionUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    session: Annotated[EditorSession, Depends(get_editor_session)],
):
    """Grant or revoke a module-level action. ``all`` cascades to every sub-module."""
    if not session.editor.has_module(module_key):
        raise _not_found(f"Module {module_key} not found")
    try:
        session.editor.set_module_action(module_key, action.value, body.value)
    except GrantRejected as e:
        raise _reject(e, session, background_tasks, request)
    return _build_view(session)


@router.put(
    "/sessions/{session_id}/modules/{module_key}/sub-modules/{sub_module_name}/actions/{action}",
    response_model=EditorView,
)
async def update_sub_module_action(
    module_key: str,
    sub_module_name: str,
    action: ActionName,
    body: ActionUpdate,
    background_tasks: BackgroundTasks,
    request: Request,
    session: Annotated[EditorSession, Depends(get_editor_session)],
):
    """Grant or revoke an action on a single sub-module."""
    if not session.editor.has_sub_module(module_key, sub_module_name):
        raise _not_found(f"Submodule {sub_module_name} not found in module {module_key}")
    try:
        session.editor.set_sub_module_action(module_key, sub_module_name, action.value, body.value)
    except GrantRejected as e:
        raise _reject(e, session, background_tasks, request)
    return _build_view(session)


@router.post("/sessions/{session_id}/modules/{module_key}/expansion", response_model=ExpansionResponse)
async def toggle_expansion(
    module_key: str,
    session: Annotated[EditorSession, Depends(get_editor_session)],
):
    """Expand or collapse a module row."""
    expanded = session.editor.toggle_module_expansion(module_key)
    return ExpansionResponse(module=module_key, expanded=expanded)


@router.post("/sessions/{session_id}/flush", response_model=EditorView)
async def flush_session(
    session: Annotated[EditorSession, Depends(get_editor_session)],
):
    """Save pending edits now."""
    await session.editor.flush()
    return _build_view(session)


@router.delete("/sessions/{session_id}", response_model=CloseSessionResponse)
async def close_session(
    session_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    store: Annotated[EditorSessionStore, Depends(get_session_store)],
):
    """Close a session. Pending edits are still saved."""
    session = store.close(session_id, actor)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Editor session not found"
        )
    pending = session.editor.save_pending
    return CloseSessionResponse(
        session_id=session_id,
        save_pending=pending,
        message="Pending changes will still be saved" if pending else None,
    )
