"""
Report which modules and sub-modules an agent's stored permissions are missing.

Fetches the navigation tree for a role and the agent's permission set from the
platform API, reconciles them, and prints every entry reconciliation would add.
Nothing is written back.

Usage:
    uv run python -m scripts.reconcile_report --token "$TOKEN" --role clinic --agent 65f0c0ffee
"""
import argparse
import asyncio
import json

from app.features.permissions.matrix import reconcile
from app.features.permissions.schemas import PermissionSet
from app.features.platform.client import PlatformClient
from app.utils import get_logger


log = get_logger(__name__)


def missing_entries(before: PermissionSet, after: PermissionSet) -> list[dict]:
    """Modules and sub-modules present in ``after`` but not in ``before``."""
    existing = {perm.module: {sub.name for sub in perm.sub_modules} for perm in before}
    missing = []
    for perm in after:
        if perm.module not in existing:
            missing.append({"module": perm.module, "subModules": [sub.name for sub in perm.sub_modules]})
            continue
        new_subs = [sub.name for sub in perm.sub_modules if sub.name not in existing[perm.module]]
        if new_subs:
            missing.append({"module": perm.module, "subModules": new_subs})
    return missing


async def report(token: str, role: str, agent_id: str) -> list[dict]:
    client = PlatformClient(token=token)
    navigation = await client.fetch_navigation(role)
    stored = await client.fetch_agent_permissions(agent_id)
    log.info("Fetched %d navigation modules and %d stored modules", len(navigation), len(stored))
    return missing_entries(stored, reconcile(navigation, stored))


def main():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--token", required=True, help="Platform bearer token")
    parser.add_argument("--role", required=True, choices=["admin", "clinic", "doctor"])
    parser.add_argument("--agent", required=True, help="Agent id")
    args = parser.parse_args()

    missing = asyncio.run(report(args.token, args.role, args.agent))
    if not missing:
        log.info("Agent %s is in sync with the %s navigation tree", args.agent, args.role)
    print(json.dumps(missing, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
