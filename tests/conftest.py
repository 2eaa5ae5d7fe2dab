"""Pytest configuration and shared fixtures."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Configure the app before anything imports it
_DB_DIR = tempfile.mkdtemp(prefix="permission-editor-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["SESSION_OPEN_RATE_LIMIT"] = "1000/minute"
os.environ["PLATFORM_API_URL"] = "http://platform.test"
os.environ.pop("JWT_SECRET", None)

import jwt  # noqa: E402
import pytest  # noqa: E402

from app.features.permissions.matrix import sanitize  # noqa: E402
from app.features.permissions.schemas import NavigationNode  # noqa: E402


TOKEN_SECRET = "platform-test-secret-0123456789abcdef"


def make_token(user_id: str = "admin-1", role: str = "admin", expires_in: int = 3600) -> str:
    """Issue a platform-style JWT."""
    payload = {
        "userId": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, TOKEN_SECRET, algorithm="HS256")


def auth_headers(user_id: str = "admin-1", role: str = "admin") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


class FakePlatformClient:
    """In-memory stand-in for the platform API."""

    def __init__(self, navigation=None, agent_permissions=None, actor_permissions=None, save_ok=True):
        self.navigation = navigation or []
        self.agent_permissions = agent_permissions or []
        self.actor_permissions = actor_permissions
        self.save_ok = save_ok
        self.saves = []
        self.navigation_roles = []

    async def fetch_navigation(self, role):
        self.navigation_roles.append(role)
        return [node.model_copy(deep=True) for node in self.navigation]

    async def fetch_agent_permissions(self, agent_id):
        return [perm.model_copy(deep=True) for perm in self.agent_permissions]

    async def fetch_actor_permissions(self):
        if self.actor_permissions is None:
            return None
        return [perm.model_copy(deep=True) for perm in self.actor_permissions]

    async def save_agent_permissions(self, agent_id, permissions):
        self.saves.append((agent_id, permissions))
        return self.save_ok


@pytest.fixture
def navigation():
    """Clinic navigation tree with one flat and two nested modules."""
    return [
        NavigationNode.model_validate({
            "moduleKey": "appointments",
            "label": "Appointments",
            "icon": "📅",
            "order": 1,
            "subModules": [
                {"name": "slots", "path": "/clinic/slots", "icon": "🕒", "order": 1},
                {"name": "reminders", "path": "/clinic/reminders", "icon": "🔔", "order": 2},
            ],
        }),
        NavigationNode.model_validate({
            "moduleKey": "clinic_billing",
            "label": "Billing",
            "icon": "💳",
            "order": 2,
            "subModules": [
                {"name": "invoices", "path": "/clinic/invoices", "icon": "🧾", "order": 1},
            ],
        }),
        NavigationNode.model_validate({
            "moduleKey": "dashboard",
            "label": "Dashboard",
            "path": "/clinic/dashboard",
            "icon": "🏠",
            "order": 0,
        }),
    ]


@pytest.fixture
def clinic_scope():
    """A clinic limited to reading billing and fully managing appointment slots."""
    return sanitize([
        {
            "module": "clinic_billing",
            "actions": {"read": True, "create": False, "all": False},
            "subModules": [
                {"name": "invoices", "actions": {"read": True}},
            ],
        },
        {
            "module": "clinic_appointments",
            "actions": {"create": True, "read": True, "update": True, "delete": True},
            "subModules": [
                {"name": "slots", "actions": {"create": True, "read": True, "update": True, "delete": True}},
            ],
        },
    ])
