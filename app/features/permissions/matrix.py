"""
Permission matrix reconciliation and grant scoping.

Pure, synchronous operations over a PermissionSet (``list[ModulePermission]``):

- sanitize: coerce raw server data into canonical ActionSets
- reconcile: add modules/sub-modules the navigation tree declares but the set lacks
- can_grant: decide whether a scoped actor may grant an action
- set_module_action / set_sub_module_action: apply one toggle
- filter_navigation / check_permission: read-side helpers for scoped actors and agents

Every operation returns a new PermissionSet; inputs are never mutated.
"""
import math
import re
from typing import Any, Iterable, Optional

from app.features.permissions.schemas import (
    ACTION_KEYS,
    ACTIONS,
    ALL_ACTION,
    DEFAULT_SUB_MODULE_ICON,
    ActionSet,
    ModulePermission,
    NavigationNode,
    NavigationSubItem,
    PermissionSet,
    SubModulePermission,
)
from app.utils import get_logger


log = get_logger(__name__)

ROLE_PREFIX_PATTERN = re.compile(r"^(admin|clinic|doctor)_")

# Legacy rows store flags as strings or 0/1
TRUTHY_STRINGS = frozenset({"true", "1"})


class GrantRejected(Exception):
    """
    Raised when an actor tries to grant an action it does not hold itself.

    This is a policy rejection: the permission set is left untouched.
    """

    def __init__(self, module: str, action: str, sub_module: Optional[str] = None):
        self.module = module
        self.action = action
        self.sub_module = sub_module
        target = "submodule" if sub_module else "module"
        super().__init__(
            f'You do not have permission to grant "{action}" action for this {target}. '
            "You can only grant permissions that you have been granted."
        )


# ============================================================================
# Module Key Matching
# ============================================================================

def canonical_module_key(key: str) -> str:
    """Strip one leading role prefix: ``clinic_billing`` -> ``billing``."""
    return ROLE_PREFIX_PATTERN.sub("", key, count=1)


def find_module(permission_set: PermissionSet, module_key: str) -> Optional[ModulePermission]:
    """
    Locate a module entry, tolerating role-prefix variants.

    Exact key wins; otherwise the first entry sharing the same canonical key
    (covers both the stripped key and the ``clinic_`` prefixed key).
    """
    for perm in permission_set:
        if perm.module == module_key:
            return perm
    canonical = canonical_module_key(module_key)
    for perm in permission_set:
        if canonical_module_key(perm.module) == canonical:
            return perm
    return None


def _find_exact(permission_set: PermissionSet, module_key: str) -> Optional[ModulePermission]:
    return next((perm for perm in permission_set if perm.module == module_key), None)


def _find_sub_module(module: ModulePermission, name: str) -> Optional[SubModulePermission]:
    return next((sub for sub in module.sub_modules if sub.name == name), None)


def _find_navigation(navigation: Optional[Iterable[NavigationNode]], module_key: str) -> Optional[NavigationNode]:
    if not navigation:
        return None
    return next((node for node in navigation if node.module_key == module_key), None)


# ============================================================================
# ActionSet Helpers
# ============================================================================

def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return False


def _recompute_all(actions: ActionSet) -> None:
    actions.all = all(getattr(actions, key) for key in ACTION_KEYS)


def _set_every_action(actions: ActionSet, value: bool) -> None:
    for key in ACTION_KEYS:
        setattr(actions, key, value)
    actions.all = value


def _apply_action(actions: ActionSet, action: str, value: bool) -> None:
    if action == ALL_ACTION:
        _set_every_action(actions, value)
    else:
        setattr(actions, action, value)
        _recompute_all(actions)


def _validate_action(action: str) -> None:
    if action not in ACTIONS:
        raise ValueError(f"Unknown action {action!r}; expected one of {', '.join(ACTIONS)}")


def _flag(actions: ActionSet, action: str) -> bool:
    return action in ACTIONS and bool(getattr(actions, action))


def _holds(actions: ActionSet, action: str) -> bool:
    return actions.all or _flag(actions, action)


# ============================================================================
# Sanitize
# ============================================================================

def _sanitize_actions(raw: Any) -> ActionSet:
    raw = raw if isinstance(raw, dict) else {}
    actions = ActionSet(**{key: _coerce_flag(raw.get(key)) for key in ACTION_KEYS})
    _recompute_all(actions)
    return actions


def _as_str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def _as_dict(value: Any) -> Optional[dict]:
    if isinstance(value, dict):
        return value
    if isinstance(value, (ModulePermission, SubModulePermission)):
        return value.model_dump(by_alias=True)
    return None


def sanitize(raw_permissions: Any) -> PermissionSet:
    """
    Coerce a permission set as returned by the server into canonical form.

    Only the four primitive actions survive (deprecated keys such as ``print``
    or ``export`` are dropped) and ``all`` is recomputed from them. Entries with
    no module key, sub-modules with no name, and duplicates are dropped. Never raises.
    """
    if not isinstance(raw_permissions, (list, tuple)):
        if raw_permissions is not None:
            log.warning("Discarding permission payload of type %s", type(raw_permissions).__name__)
        return []

    sanitized: PermissionSet = []
    seen_modules: set[str] = set()
    for raw_module in raw_permissions:
        entry = _as_dict(raw_module)
        module_key = _as_str(entry.get("module")) if entry else ""
        if not module_key:
            log.warning("Dropping permission entry without a module key")
            continue
        if module_key in seen_modules:
            log.warning("Dropping duplicate permission entry for module %s", module_key)
            continue
        seen_modules.add(module_key)

        raw_subs = entry.get("subModules", entry.get("sub_modules"))
        sub_modules = []
        seen_subs: set[str] = set()
        for raw_sub in raw_subs if isinstance(raw_subs, (list, tuple)) else []:
            sub_entry = _as_dict(raw_sub)
            name = _as_str(sub_entry.get("name")) if sub_entry else ""
            if not name or name in seen_subs:
                continue
            seen_subs.add(name)
            sub_modules.append(SubModulePermission(
                name=name,
                path=_as_str(sub_entry.get("path")),
                icon=_as_str(sub_entry.get("icon")) or DEFAULT_SUB_MODULE_ICON,
                order=_as_int(sub_entry.get("order")),
                actions=_sanitize_actions(sub_entry.get("actions")),
            ))

        sanitized.append(ModulePermission(
            module=module_key,
            sub_modules=sub_modules,
            actions=_sanitize_actions(entry.get("actions")),
        ))
    return sanitized


# ============================================================================
# Reconcile
# ============================================================================

def _new_sub_module(name: str, nav_sub: Optional[NavigationSubItem] = None) -> SubModulePermission:
    if nav_sub is None:
        return SubModulePermission(name=name)
    return SubModulePermission(
        name=name,
        path=nav_sub.path or "",
        icon=nav_sub.icon or DEFAULT_SUB_MODULE_ICON,
        order=nav_sub.order or 0,
    )


def _new_module(module_key: str, node: Optional[NavigationNode] = None) -> ModulePermission:
    subs = [_new_sub_module(sub.name, sub) for sub in node.sub_modules] if node else []
    return ModulePermission(module=module_key, sub_modules=subs)


def _add_missing_sub_modules(module: ModulePermission, node: NavigationNode) -> int:
    existing = {sub.name for sub in module.sub_modules}
    added = 0
    for nav_sub in node.sub_modules:
        if nav_sub.name not in existing:
            module.sub_modules.append(_new_sub_module(nav_sub.name, nav_sub))
            existing.add(nav_sub.name)
            added += 1
    return added


def reconcile(navigation: Iterable[NavigationNode], permission_set: PermissionSet) -> PermissionSet:
    """
    Bring a permission set in line with a navigation tree.

    Modules and sub-modules declared by the tree but absent from the set are
    synthesised with every action off. Existing entries keep their values.
    Idempotent.
    """
    result = [perm.model_copy(deep=True) for perm in permission_set]
    for node in navigation:
        module = _find_exact(result, node.module_key)
        if module is None:
            result.append(_new_module(node.module_key, node))
            log.debug("Reconcile added module %s", node.module_key)
        else:
            added = _add_missing_sub_modules(module, node)
            if added:
                log.debug("Reconcile added %d sub-modules to %s", added, node.module_key)
    return result


# ============================================================================
# Grant Scoping
# ============================================================================

def can_grant(
    actor_scope: Optional[PermissionSet],
    module_key: str,
    action: str,
    sub_module_name: Optional[str] = None,
) -> bool:
    """
    Whether the acting user may grant ``action`` on a module or sub-module.

    ``None`` scope is an unrestricted actor (platform admin). A scoped actor
    may only grant what it holds itself; unknown modules or sub-modules deny.
    """
    if actor_scope is None:
        return True

    module = find_module(actor_scope, module_key)
    if module is None:
        return False

    if sub_module_name:
        sub_module = _find_sub_module(module, sub_module_name)
        if sub_module is None:
            return False
        return _holds(sub_module.actions, action)

    return _holds(module.actions, action)


def set_module_action(
    permission_set: PermissionSet,
    actor_scope: Optional[PermissionSet],
    module_key: str,
    action: str,
    value: bool,
    navigation: Optional[Iterable[NavigationNode]] = None,
) -> PermissionSet:
    """
    Toggle a module-level action.

    ``all`` cascades down to every sub-module (after adding any sub-modules the
    navigation tree declares); single actions only touch the module itself.

    Raises:
        GrantRejected: granting an action the actor does not hold
        ValueError: unknown action
    """
    _validate_action(action)
    if value and not can_grant(actor_scope, module_key, action):
        raise GrantRejected(module_key, action)

    result = [perm.model_copy(deep=True) for perm in permission_set]
    node = _find_navigation(navigation, module_key)
    module = _find_exact(result, module_key)
    if module is None:
        module = _new_module(module_key, node)
        result.append(module)

    if action == ALL_ACTION:
        _set_every_action(module.actions, value)
        if node is not None:
            _add_missing_sub_modules(module, node)
        for sub_module in module.sub_modules:
            _set_every_action(sub_module.actions, value)
    else:
        _apply_action(module.actions, action, value)

    return result


def set_sub_module_action(
    permission_set: PermissionSet,
    actor_scope: Optional[PermissionSet],
    module_key: str,
    sub_module_name: str,
    action: str,
    value: bool,
    navigation: Optional[Iterable[NavigationNode]] = None,
) -> PermissionSet:
    """
    Toggle an action on one sub-module. Never cascades to the module or siblings.

    Raises:
        GrantRejected: granting an action the actor does not hold
        ValueError: unknown action
    """
    _validate_action(action)
    if value and not can_grant(actor_scope, module_key, action, sub_module_name):
        raise GrantRejected(module_key, action, sub_module_name)

    result = [perm.model_copy(deep=True) for perm in permission_set]
    node = _find_navigation(navigation, module_key)
    module = _find_exact(result, module_key)
    if module is None:
        module = _new_module(module_key, node)
        result.append(module)

    sub_module = _find_sub_module(module, sub_module_name)
    if sub_module is None:
        nav_sub = None
        if node is not None:
            nav_sub = next((sub for sub in node.sub_modules if sub.name == sub_module_name), None)
        sub_module = _new_sub_module(sub_module_name, nav_sub)
        module.sub_modules.append(sub_module)

    _apply_action(sub_module.actions, action, value)
    return result


# ============================================================================
# Read-side Helpers
# ============================================================================

def filter_navigation(
    navigation: Iterable[NavigationNode],
    actor_scope: Optional[PermissionSet],
) -> list[NavigationNode]:
    """
    Keep only the modules and sub-modules a scoped actor can read.

    Unrestricted actors (``None`` scope) get the tree unchanged.
    """
    if actor_scope is None:
        return list(navigation)

    visible = []
    for node in navigation:
        module = find_module(actor_scope, node.module_key)
        if module is None or not _holds(module.actions, "read"):
            continue
        subs = []
        for nav_sub in node.sub_modules:
            sub_module = _find_sub_module(module, nav_sub.name)
            if sub_module is not None and _holds(sub_module.actions, "read"):
                subs.append(nav_sub)
        visible.append(node.model_copy(update={"sub_modules": [sub.model_copy() for sub in subs]}))
    return visible


def check_permission(
    permission_set: PermissionSet,
    module_key: str,
    action: str,
    sub_module_name: Optional[str] = None,
) -> tuple[bool, Optional[str]]:
    """
    Decide whether a holder of ``permission_set`` may perform ``action``.

    Module-level ``all`` or the module-level action also cover every sub-module.

    Returns:
        (allowed, reason) where reason explains a denial
    """
    if not permission_set:
        return False, "No permissions found"

    module = find_module(permission_set, module_key)
    if module is None:
        return False, f"Module {module_key} not found in permissions"

    if module.actions.all:
        return True, None

    if sub_module_name:
        if _flag(module.actions, action):
            return True, None
        sub_module = _find_sub_module(module, sub_module_name)
        if sub_module is None:
            return False, f"Submodule {sub_module_name} not found in permissions"
        if _holds(sub_module.actions, action):
            return True, None
        return False, f"Permission denied: {action} action not allowed for submodule {sub_module_name}"

    if _flag(module.actions, action):
        return True, None
    return False, f"Permission denied: {action} action not allowed for module {module_key}"
