"""Tests for the editor session: debounced saves, save status, and the session store."""

import asyncio

import pytest

from app.features.editor.debounce import Debouncer
from app.features.editor.editor import PermissionEditor, SaveStatus, open_editor
from app.features.editor.sessions import EditorSessionStore
from app.features.permissions.matrix import GrantRejected, sanitize
from app.features.users.schemas import Actor, ActorRole

from conftest import FakePlatformClient


DEBOUNCE = 0.05


class RecordingSaver:
    def __init__(self, ok=True, raises=False):
        self.ok = ok
        self.raises = raises
        self.calls = []

    async def __call__(self, agent_id, permissions):
        self.calls.append((agent_id, permissions))
        if self.raises:
            raise RuntimeError("platform exploded")
        return self.ok


def _editor(navigation, saver=None, actor_scope=None, **kwargs):
    kwargs.setdefault("debounce_seconds", DEBOUNCE)
    kwargs.setdefault("saved_status_seconds", 0.05)
    kwargs.setdefault("error_status_seconds", 0.3)
    return PermissionEditor(
        agent_id="agent-1",
        navigation=navigation,
        permissions=[],
        actor_scope=actor_scope,
        saver=saver,
        **kwargs,
    )


def _actor(role="admin", user_id="actor-1"):
    return Actor(id=user_id, role=ActorRole(role), token="token")


class TestDebouncer:
    """Test cancel-and-reschedule debouncing."""

    @pytest.mark.asyncio
    async def test_burst_runs_once(self):
        runs = []

        async def callback():
            runs.append(1)

        debouncer = Debouncer(DEBOUNCE, callback)
        for _ in range(5):
            debouncer.schedule()
            await asyncio.sleep(DEBOUNCE / 5)
        assert debouncer.pending
        await asyncio.sleep(DEBOUNCE * 3)
        assert runs == [1]
        assert not debouncer.busy

    @pytest.mark.asyncio
    async def test_flush_runs_pending_now(self):
        runs = []

        async def callback():
            runs.append(1)

        debouncer = Debouncer(10, callback)
        debouncer.schedule()
        await debouncer.flush()
        assert runs == [1]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_flush_without_pending_is_noop(self):
        runs = []

        async def callback():
            runs.append(1)

        await Debouncer(DEBOUNCE, callback).flush()
        assert runs == []

    @pytest.mark.asyncio
    async def test_cancel(self):
        runs = []

        async def callback():
            runs.append(1)

        debouncer = Debouncer(DEBOUNCE, callback)
        debouncer.schedule()
        debouncer.cancel()
        await asyncio.sleep(DEBOUNCE * 3)
        assert runs == []

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(self):
        async def callback():
            raise RuntimeError("boom")

        debouncer = Debouncer(DEBOUNCE, callback)
        debouncer.schedule()
        await debouncer.flush()
        assert not debouncer.busy


class TestPermissionEditor:
    """Test edits, debounced saves and the save status cycle."""

    @pytest.mark.asyncio
    async def test_initial_state(self, navigation):
        editor = _editor(navigation)
        assert [perm.module for perm in editor.permissions] == ["appointments", "clinic_billing", "dashboard"]
        assert editor.expanded_modules == {"appointments", "clinic_billing"}
        assert editor.save_status == SaveStatus.IDLE
        assert not editor.save_pending

    @pytest.mark.asyncio
    async def test_burst_of_edits_saves_latest_state_once(self, navigation):
        saver = RecordingSaver()
        editor = _editor(navigation, saver)

        editor.set_module_action("appointments", "read", True)
        editor.set_module_action("appointments", "create", True)
        editor.set_sub_module_action("appointments", "slots", "delete", True)
        assert editor.save_pending
        assert saver.calls == []

        await asyncio.sleep(DEBOUNCE * 4)
        assert len(saver.calls) == 1
        agent_id, saved = saver.calls[0]
        assert agent_id == "agent-1"
        appointments = next(perm for perm in saved if perm.module == "appointments")
        assert appointments.actions.read and appointments.actions.create
        slots = next(sub for sub in appointments.sub_modules if sub.name == "slots")
        assert slots.actions.delete is True

    @pytest.mark.asyncio
    async def test_saved_snapshot_is_detached(self, navigation):
        saver = RecordingSaver()
        editor = _editor(navigation, saver)
        editor.set_module_action("dashboard", "read", True)
        await editor.flush()
        editor.set_module_action("dashboard", "read", False)
        saved = saver.calls[0][1]
        assert next(perm for perm in saved if perm.module == "dashboard").actions.read is True

    @pytest.mark.asyncio
    async def test_successful_save_status(self, navigation):
        editor = _editor(navigation, RecordingSaver())
        editor.set_module_action("dashboard", "all", True)
        await editor.flush()
        assert editor.save_status == SaveStatus.SAVED
        assert editor.save_count == 1
        await asyncio.sleep(0.15)
        assert editor.save_status == SaveStatus.IDLE

    @pytest.mark.asyncio
    async def test_failed_save_status(self, navigation):
        editor = _editor(navigation, RecordingSaver(ok=False))
        editor.set_module_action("dashboard", "all", True)
        await editor.flush()
        assert editor.save_status == SaveStatus.ERROR
        await asyncio.sleep(0.05)
        assert editor.save_status == SaveStatus.ERROR
        await asyncio.sleep(0.4)
        assert editor.save_status == SaveStatus.IDLE

    @pytest.mark.asyncio
    async def test_raising_saver_is_a_failed_save(self, navigation):
        saver = RecordingSaver(raises=True)
        editor = _editor(navigation, saver)
        editor.set_module_action("dashboard", "read", True)
        await editor.flush()
        assert len(saver.calls) == 1
        assert editor.save_status == SaveStatus.ERROR

    @pytest.mark.asyncio
    async def test_rejected_edit_does_not_schedule_save(self, navigation, clinic_scope):
        saver = RecordingSaver()
        editor = _editor(navigation, saver, actor_scope=clinic_scope)
        before = [perm.model_copy(deep=True) for perm in editor.permissions]

        with pytest.raises(GrantRejected):
            editor.set_module_action("clinic_billing", "create", True)

        assert editor.permissions == before
        assert not editor.save_pending
        await asyncio.sleep(DEBOUNCE * 3)
        assert saver.calls == []

    @pytest.mark.asyncio
    async def test_without_saver_edits_stay_local(self, navigation):
        editor = _editor(navigation)
        editor.set_module_action("dashboard", "read", True)
        assert not editor.save_pending
        await editor.flush()
        assert editor.save_count == 0

    @pytest.mark.asyncio
    async def test_toggle_module_expansion(self, navigation):
        editor = _editor(navigation)
        assert editor.toggle_module_expansion("appointments") is False
        assert editor.toggle_module_expansion("appointments") is True
        assert editor.toggle_module_expansion("dashboard") is True

    @pytest.mark.asyncio
    async def test_known_modules(self, navigation):
        editor = PermissionEditor(
            agent_id="agent-1",
            navigation=navigation,
            permissions=sanitize([{"module": "legacy", "subModules": [{"name": "old"}]}]),
        )
        assert editor.has_module("appointments")
        assert editor.has_module("legacy")
        assert not editor.has_module("typo")
        assert editor.has_sub_module("appointments", "reminders")
        assert editor.has_sub_module("legacy", "old")
        assert not editor.has_sub_module("appointments", "typo")
        assert not editor.has_sub_module("typo", "slots")

    @pytest.mark.asyncio
    async def test_can_grant_follows_scope(self, navigation, clinic_scope):
        editor = _editor(navigation, actor_scope=clinic_scope)
        assert editor.can_grant("clinic_billing", "read")
        assert not editor.can_grant("clinic_billing", "update")
        assert editor.can_grant("appointments", "all", "slots")


class TestOpenEditor:
    """Test loading an editor from the platform."""

    @pytest.mark.asyncio
    async def test_admin_is_unrestricted(self, navigation):
        client = FakePlatformClient(
            navigation=navigation,
            agent_permissions=sanitize([{"module": "dashboard", "actions": {"read": True}}]),
        )
        editor = await open_editor(client, _actor("admin"), "agent-9")
        assert client.navigation_roles == ["admin"]
        assert editor.actor_scope is None
        assert editor.agent_id == "agent-9"
        assert len(editor.navigation) == 3
        dashboard = next(perm for perm in editor.permissions if perm.module == "dashboard")
        assert dashboard.actions.read is True

    @pytest.mark.asyncio
    async def test_doctor_is_unrestricted(self, navigation):
        client = FakePlatformClient(navigation=navigation)
        editor = await open_editor(client, _actor("doctor"), "agent-9")
        assert editor.actor_scope is None
        assert client.navigation_roles == ["doctor"]

    @pytest.mark.asyncio
    async def test_clinic_is_scoped(self, navigation, clinic_scope):
        client = FakePlatformClient(navigation=navigation, actor_permissions=clinic_scope)
        editor = await open_editor(client, _actor("clinic"), "agent-9")
        assert editor.actor_scope == clinic_scope
        assert [node.module_key for node in editor.navigation] == ["appointments", "clinic_billing"]
        assert not editor.can_grant("dashboard", "read")

    @pytest.mark.asyncio
    async def test_clinic_without_own_permissions_grants_nothing(self, navigation):
        client = FakePlatformClient(navigation=navigation, actor_permissions=None)
        editor = await open_editor(client, _actor("clinic"), "agent-9")
        assert editor.actor_scope == []
        assert editor.navigation == []
        for action in ("all", "create", "read", "update", "delete"):
            assert not editor.can_grant("appointments", action)


class TestEditorSessionStore:
    """Test session ownership, closing and draining."""

    @pytest.mark.asyncio
    async def test_sessions_are_private(self, navigation):
        store = EditorSessionStore()
        owner = _actor(user_id="owner")
        session = store.add(owner, _editor(navigation))
        assert len(store) == 1
        assert store.get(session.id, owner) is session
        assert store.get(session.id, _actor(user_id="other")) is None
        assert store.close(session.id, _actor(user_id="other")) is None
        assert store.get("missing", owner) is None

    @pytest.mark.asyncio
    async def test_close_forgets_session(self, navigation):
        store = EditorSessionStore()
        actor = _actor()
        session = store.add(actor, _editor(navigation))
        assert store.close(session.id, actor) is session
        assert len(store) == 0
        assert store.get(session.id, actor) is None

    @pytest.mark.asyncio
    async def test_close_keeps_pending_save(self, navigation):
        store = EditorSessionStore()
        actor = _actor()
        saver = RecordingSaver()
        session = store.add(actor, _editor(navigation, saver, debounce_seconds=10))
        session.editor.set_module_action("dashboard", "read", True)

        store.close(session.id, actor)
        assert session.editor.save_pending
        assert saver.calls == []

        await store.drain()
        assert len(saver.calls) == 1

    @pytest.mark.asyncio
    async def test_drain_flushes_open_sessions(self, navigation):
        store = EditorSessionStore()
        saver = RecordingSaver()
        session = store.add(_actor(), _editor(navigation, saver, debounce_seconds=10))
        session.editor.set_module_action("dashboard", "read", True)
        await store.drain()
        assert len(saver.calls) == 1
        assert not session.editor.save_pending

    @pytest.mark.asyncio
    async def test_idle_session_is_evicted_and_flushed(self, navigation):
        store = EditorSessionStore(idle_seconds=0.05)
        saver = RecordingSaver()
        actor = _actor()
        session = store.add(actor, _editor(navigation, saver, debounce_seconds=10))
        session.editor.set_module_action("dashboard", "read", True)

        await asyncio.sleep(0.1)
        assert await store.evict_idle() == 1
        assert len(store) == 0
        assert store.get(session.id, actor) is None
        assert len(saver.calls) == 1
        assert not session.editor.save_pending

    @pytest.mark.asyncio
    async def test_access_keeps_session_alive(self, navigation):
        store = EditorSessionStore(idle_seconds=0.1)
        actor = _actor()
        session = store.add(actor, _editor(navigation))
        for _ in range(4):
            await asyncio.sleep(0.04)
            assert store.get(session.id, actor) is session
        assert await store.evict_idle() == 0
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_expired_session_is_not_returned(self, navigation):
        store = EditorSessionStore(idle_seconds=0.05)
        saver = RecordingSaver()
        actor = _actor()
        session = store.add(actor, _editor(navigation, saver, debounce_seconds=10))
        session.editor.set_module_action("dashboard", "read", True)

        await asyncio.sleep(0.1)
        assert store.get(session.id, actor) is None
        assert len(store) == 0
        await store.drain()
        assert len(saver.calls) == 1
