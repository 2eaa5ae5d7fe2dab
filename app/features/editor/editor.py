"""
Stateful editor over one agent's permission matrix.

The editor owns the reconciled permission set, the navigation tree it was
reconciled against, the actor scope that limits grants, and the save status.
Every successful edit schedules a debounced save of the full, latest set.
"""
import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Optional

from app.core import config
from app.features.editor.debounce import Debouncer
from app.features.permissions import matrix
from app.features.permissions.schemas import NavigationNode, PermissionSet
from app.features.platform.client import PlatformClient
from app.features.users.schemas import Actor
from app.utils import get_logger


log = get_logger(__name__)

Saver = Callable[[str, PermissionSet], Awaitable[bool]]


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class PermissionEditor:
    """
    Editing session state for one agent.

    Args:
        agent_id: Agent whose permissions are edited
        navigation: Navigation tree (already filtered for scoped actors)
        permissions: Sanitised permission set; reconciled against ``navigation`` here
        actor_scope: None for unrestricted actors, else the actor's own permission set
        saver: Coroutine persisting ``(agent_id, permissions)``; returns success
    """

    def __init__(
        self,
        agent_id: str,
        navigation: list[NavigationNode],
        permissions: PermissionSet,
        actor_scope: Optional[PermissionSet] = None,
        saver: Optional[Saver] = None,
        debounce_seconds: Optional[float] = None,
        saved_status_seconds: Optional[float] = None,
        error_status_seconds: Optional[float] = None,
    ):
        self.agent_id = agent_id
        self.navigation = list(navigation)
        self.actor_scope = actor_scope
        self.permissions = matrix.reconcile(self.navigation, permissions)
        self.expanded_modules = {node.module_key for node in self.navigation if node.sub_modules}
        self.save_status = SaveStatus.IDLE
        self.save_count = 0

        self._saver = saver
        self._saved_status_seconds = (
            config.SAVED_STATUS_SECONDS if saved_status_seconds is None else saved_status_seconds
        )
        self._error_status_seconds = (
            config.ERROR_STATUS_SECONDS if error_status_seconds is None else error_status_seconds
        )
        self._status_reset: Optional[asyncio.TimerHandle] = None
        self._debouncer = Debouncer(
            config.SAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds,
            self._save,
        )

    @property
    def save_pending(self) -> bool:
        return self._debouncer.busy

    def has_module(self, module_key: str) -> bool:
        """Whether the navigation tree or the permission set knows this module key."""
        return (
            any(node.module_key == module_key for node in self.navigation)
            or any(perm.module == module_key for perm in self.permissions)
        )

    def has_sub_module(self, module_key: str, sub_module_name: str) -> bool:
        for node in self.navigation:
            if node.module_key == module_key and any(sub.name == sub_module_name for sub in node.sub_modules):
                return True
        for perm in self.permissions:
            if perm.module == module_key and any(sub.name == sub_module_name for sub in perm.sub_modules):
                return True
        return False

    def can_grant(self, module_key: str, action: str, sub_module_name: Optional[str] = None) -> bool:
        return matrix.can_grant(self.actor_scope, module_key, action, sub_module_name)

    def set_module_action(self, module_key: str, action: str, value: bool) -> PermissionSet:
        """
        Toggle a module-level action and schedule a save.

        Raises:
            GrantRejected: the actor does not hold the action; nothing changes
        """
        self.permissions = matrix.set_module_action(
            self.permissions, self.actor_scope, module_key, action, value, self.navigation
        )
        self._schedule_save()
        return self.permissions

    def set_sub_module_action(
        self, module_key: str, sub_module_name: str, action: str, value: bool
    ) -> PermissionSet:
        """
        Toggle a sub-module action and schedule a save.

        Raises:
            GrantRejected: the actor does not hold the action; nothing changes
        """
        self.permissions = matrix.set_sub_module_action(
            self.permissions, self.actor_scope, module_key, sub_module_name, action, value, self.navigation
        )
        self._schedule_save()
        return self.permissions

    def toggle_module_expansion(self, module_key: str) -> bool:
        """Flip whether a module is expanded; returns the new state."""
        if module_key in self.expanded_modules:
            self.expanded_modules.discard(module_key)
            return False
        self.expanded_modules.add(module_key)
        return True

    async def flush(self) -> None:
        """Persist pending edits now instead of waiting for the debounce window."""
        await self._debouncer.flush()

    def _schedule_save(self) -> None:
        if self._saver is None:
            return
        self._debouncer.schedule()

    async def _save(self) -> None:
        self._set_status(SaveStatus.SAVING)
        snapshot = [perm.model_copy(deep=True) for perm in self.permissions]
        try:
            ok = await self._saver(self.agent_id, snapshot)
        except Exception:
            log.exception("Saving permissions for agent %s raised", self.agent_id)
            ok = False
        self.save_count += 1
        if ok:
            self._set_status(SaveStatus.SAVED, reset_after=self._saved_status_seconds)
        else:
            self._set_status(SaveStatus.ERROR, reset_after=self._error_status_seconds)

    def _set_status(self, status: SaveStatus, reset_after: Optional[float] = None) -> None:
        if self._status_reset is not None:
            self._status_reset.cancel()
            self._status_reset = None
        self.save_status = status
        if reset_after is not None:
            loop = asyncio.get_running_loop()
            self._status_reset = loop.call_later(reset_after, self._reset_status)

    def _reset_status(self) -> None:
        self._status_reset = None
        self.save_status = SaveStatus.IDLE


async def open_editor(
    client: PlatformClient,
    actor: Actor,
    agent_id: str,
    saver: Optional[Saver] = None,
) -> PermissionEditor:
    """
    Load everything an editing session needs.

    Scoped actors (clinics) fetch their own permissions first; the navigation
    tree is then narrowed to what they can read and their set limits what they
    can grant. A missing actor set means nothing can be granted.
    """
    actor_scope: Optional[PermissionSet] = None
    if actor.is_scoped:
        actor_scope = await client.fetch_actor_permissions()
        if actor_scope is None:
            log.warning("No own permissions for scoped actor %s; all grants will be denied", actor.id)
            actor_scope = []

    navigation = await client.fetch_navigation(actor.role.value)
    navigation = matrix.filter_navigation(navigation, actor_scope)
    permissions = await client.fetch_agent_permissions(agent_id)

    log.info(
        "Opened editor for agent %s by %s %s (%d modules)",
        agent_id, actor.role.value, actor.id, len(navigation),
    )
    return PermissionEditor(
        agent_id=agent_id,
        navigation=navigation,
        permissions=permissions,
        actor_scope=actor_scope,
        saver=saver,
    )
