"""
auth/permissions.py -- Pure permission-model helpers.

A permission key is "{action}_{resource}", e.g. "view_reports" or
"delete_users". Checks are plain set membership against the keys granted to
a role. Nothing here touches the database.

Optional inheritance (Settings.permission_inheritance, off by default) is an
additive resolution step applied to a granted set before checking:

    delete_X  ->  edit_X  ->  view_X
    create_X  ->  view_X

It never removes a key, so enabling it can only widen access.
"""

from __future__ import annotations

from typing import Iterable

from auth.models import Permission

ACTIONS = ("view", "create", "edit", "delete")

_IMPLIES = {
    "delete": ("edit",),
    "edit": ("view",),
    "create": ("view",),
    "view": (),
}


def permission_key(resource: str, action: str) -> str:
    return f"{action}_{resource}"


def split_permission_key(key: str) -> tuple[str, str]:
    """Return (action, resource) for a key such as "view_reports".

    Resources may themselves contain underscores ("view_price_lists"), so
    only the first underscore separates the action.
    """
    action, sep, resource = key.partition("_")
    if not sep or not action or not resource:
        raise ValueError(f"Malformed permission key: {key!r}")
    return action, resource


def has_permission(granted: Iterable[str], required: str) -> bool:
    return required in set(granted)


def has_any_permission(granted: Iterable[str], required: Iterable[str]) -> bool:
    granted_set = set(granted)
    return any(key in granted_set for key in required)


def expand_permissions(granted: Iterable[str]) -> set[str]:
    """Close a granted set under the action implications above.

    Keys with an unknown action are passed through untouched.
    """
    result = set(granted)
    pending = list(result)
    while pending:
        key = pending.pop()
        try:
            action, resource = split_permission_key(key)
        except ValueError:
            continue
        for implied_action in _IMPLIES.get(action, ()):
            implied = permission_key(resource, implied_action)
            if implied not in result:
                result.add(implied)
                pending.append(implied)
    return result


def resolve_permissions(granted: Iterable[str], inheritance: bool) -> set[str]:
    return expand_permissions(granted) if inheritance else set(granted)


def group_by_resource(permissions: Iterable[Permission]) -> list[dict]:
    """Group permissions as [{"resource": r, "permissions": [...]}, ...].

    Groups are ordered by resource; within a group, by the canonical action
    order (view, create, edit, delete), unknown actions last.
    """
    groups: dict[str, list[Permission]] = {}
    for perm in permissions:
        groups.setdefault(perm.resource, []).append(perm)

    def _action_rank(perm: Permission) -> tuple[int, str]:
        rank = ACTIONS.index(perm.action) if perm.action in ACTIONS else len(ACTIONS)
        return rank, perm.action

    return [
        {"resource": resource, "permissions": sorted(perms, key=_action_rank)}
        for resource, perms in sorted(groups.items())
    ]
