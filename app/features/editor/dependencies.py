"""
Editor session dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status

from app.features.editor.sessions import EditorSession, EditorSessionStore
from app.features.platform.client import PlatformClient
from app.features.users.dependencies import get_current_actor
from app.features.users.schemas import Actor


session_store = EditorSessionStore()


def get_session_store() -> EditorSessionStore:
    """Process-wide session store."""
    return session_store


def get_platform_client(
    actor: Annotated[Actor, Depends(get_current_actor)]
) -> PlatformClient:
    """Platform client acting with the caller's token."""
    return PlatformClient(token=actor.token)


async def get_editor_session(
    session_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    store: Annotated[EditorSessionStore, Depends(get_session_store)],
) -> EditorSession:
    """
    Get an open session owned by the caller or raise 404.
    
    Sessions of other actors are reported as missing.
    """
    session = store.get(session_id, actor)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Editor session not found"
        )
    return session
