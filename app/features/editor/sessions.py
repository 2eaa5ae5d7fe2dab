"""
In-memory registry of open editor sessions.

Sessions live only as long as the process (or until closed or idle too long);
nothing is cached across sessions. A closed or evicted session with a pending
save keeps draining until the save has run.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from app.core import config
from app.core.database.base import generate_ulid
from app.features.editor.editor import PermissionEditor
from app.features.users.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class EditorSession:
    id: str
    actor: Actor
    editor: PermissionEditor
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen: float = field(default_factory=time.monotonic)


class EditorSessionStore:
    """
    Open sessions keyed by id; each is visible only to the actor who opened it.

    A session not accessed for ``idle_seconds`` is evicted. Its pending save
    is flushed rather than dropped.
    """

    def __init__(self, idle_seconds: Optional[float] = None):
        self.idle_seconds = config.EDITOR_SESSION_IDLE_SECONDS if idle_seconds is None else idle_seconds
        self._sessions: dict[str, EditorSession] = {}
        self._draining: set[PermissionEditor] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_idle(self, session: EditorSession, now: float) -> bool:
        return now - session.last_seen > self.idle_seconds

    def _detach(self, session: EditorSession) -> None:
        del self._sessions[session.id]
        if session.editor.save_pending:
            self._draining.add(session.editor)

    def _prune(self) -> list[EditorSession]:
        self._draining = {editor for editor in self._draining if editor.save_pending}
        now = time.monotonic()
        idle = [session for session in self._sessions.values() if self._is_idle(session, now)]
        for session in idle:
            self._detach(session)
            log.info("Evicted idle session %s of actor %s", session.id, session.actor.id)
        return idle

    def add(self, actor: Actor, editor: PermissionEditor) -> EditorSession:
        self._prune()
        session = EditorSession(id=generate_ulid(), actor=actor, editor=editor)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str, actor: Actor) -> Optional[EditorSession]:
        session = self._sessions.get(session_id)
        if session is None or session.actor.id != actor.id:
            return None
        now = time.monotonic()
        if self._is_idle(session, now):
            self._detach(session)
            log.info("Session %s expired after %ss idle", session_id, self.idle_seconds)
            return None
        session.last_seen = now
        return session

    def close(self, session_id: str, actor: Actor) -> Optional[EditorSession]:
        """Forget a session. A pending save is not cancelled."""
        session = self.get(session_id, actor)
        if session is None:
            return None
        self._detach(session)
        self._prune()
        if session.editor.save_pending:
            log.info("Session %s closed with a pending save; draining", session_id)
        return session

    async def evict_idle(self) -> int:
        """Evict idle sessions and flush their pending saves. Returns how many were evicted."""
        evicted = self._prune()
        if evicted:
            await asyncio.gather(*(session.editor.flush() for session in evicted))
        return len(evicted)

    async def drain(self) -> None:
        """Flush every live and closing editor (application shutdown)."""
        editors = [session.editor for session in self._sessions.values()] + list(self._draining)
        if editors:
            log.info("Flushing %d editor(s)", len(editors))
            await asyncio.gather(*(editor.flush() for editor in editors))
        self._draining.clear()
