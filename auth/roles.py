"""
auth/roles.py -- Role and permission-assignment management.

Built-in roles (is_builtin=True, created by auth/seed.py) reject every
mutation: rename, description edit, permission reassignment and deletion.
A role still referenced by users cannot be deleted; the conflict carries
the number of referencing users so the caller can say how many to move.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from auth.models import Permission, Role
from auth.permissions import group_by_resource
from auth.store import CredentialStore
from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("orbitauth.roles")

_WHITESPACE_RE = re.compile(r"\s+")
_ROLE_KEY_RE = re.compile(r"^[a-z0-9_]+$")


def derive_role_key(name: str) -> str:
    """Machine key for a role name: lowercase, whitespace runs become "_"."""
    return _WHITESPACE_RE.sub("_", name.strip().lower())


@dataclass
class RoleDetail:
    role: Role
    permissions: list[Permission] = field(default_factory=list)


class RoleService:
    """Role CRUD over an injected CredentialStore."""

    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_roles(self) -> list[Role]:
        return self.store.list_roles()

    def get_role(self, role_id: str) -> RoleDetail:
        role = self._require_role(role_id)
        return RoleDetail(role=role, permissions=self.store.get_role_permissions(role_id))

    def list_permissions_grouped(self) -> list[dict]:
        return group_by_resource(self.store.list_permissions())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        permission_ids: Iterable[str],
        description: str | None = None,
        key: str | None = None,
    ) -> RoleDetail:
        name = (name or "").strip()
        permission_ids = list(dict.fromkeys(permission_ids or ()))
        role_key = (key or "").strip().lower() or derive_role_key(name)

        errors: dict[str, str] = {}
        if not name:
            errors["name"] = "Role name is required."
        elif not _ROLE_KEY_RE.match(role_key):
            errors["key"] = "Role key may contain only lowercase letters, digits and underscores."
        if not permission_ids:
            errors["permission_ids"] = "At least one permission is required."
        if errors:
            raise ValidationError("Role data is invalid.", fields=errors)

        self._check_unique(name, role_key)
        self._require_permissions(permission_ids)

        try:
            role = self.store.create_role(Role(name=name, key=role_key, description=description), permission_ids)
        except IntegrityError:
            raise ConflictError("A role with this name or key already exists.", detail={"name": name, "key": role_key})
        logger.info("Created role %s (%s) with %d permission(s)", role.name, role.key, len(permission_ids))
        return self.get_role(role.id)

    def update_role(
        self,
        role_id: str,
        name: str | None = None,
        description: str | None = None,
        permission_ids: Iterable[str] | None = None,
    ) -> RoleDetail:
        """Rename, re-describe and/or replace the permissions of a custom role.

        Renaming re-derives the key from the new name.
        """
        role = self._require_mutable(role_id)
        if name is None and description is None and permission_ids is None:
            raise ValidationError("No fields to update.")

        updates: dict = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Role data is invalid.", fields={"name": "Role name is required."})
            if name != role.name:
                new_key = derive_role_key(name)
                if not _ROLE_KEY_RE.match(new_key):
                    raise ValidationError(
                        "Role data is invalid.",
                        fields={"key": "Role key may contain only lowercase letters, digits and underscores."},
                    )
                self._check_unique(name, new_key, exclude_id=role_id)
                updates["name"] = name
                updates["key"] = new_key
        if description is not None:
            updates["description"] = description

        if permission_ids is not None:
            permission_ids = list(dict.fromkeys(permission_ids))
            if not permission_ids:
                raise ValidationError(
                    "Role data is invalid.", fields={"permission_ids": "At least one permission is required."}
                )
            self._require_permissions(permission_ids)

        if updates:
            try:
                self.store.update_role(role_id, **updates)
            except IntegrityError:
                raise ConflictError("A role with this name or key already exists.", detail={"name": name})
        if permission_ids is not None:
            self.store.replace_role_permissions(role_id, permission_ids)
        logger.info("Updated role %s: %s", role.key, sorted(updates) + (["permissions"] if permission_ids else []))
        return self.get_role(role_id)

    def assign_permissions(self, role_id: str, permission_ids: Iterable[str]) -> RoleDetail:
        """Replace a custom role's permission set with exactly permission_ids.

        Every id is validated before the store is touched; the replacement
        itself is a single transaction.
        """
        role = self._require_mutable(role_id)
        permission_ids = list(dict.fromkeys(permission_ids or ()))
        self._require_permissions(permission_ids)
        self.store.replace_role_permissions(role_id, permission_ids)
        logger.info("Assigned %d permission(s) to role %s", len(permission_ids), role.key)
        return self.get_role(role_id)

    def delete_role(self, role_id: str) -> Role:
        role = self._require_mutable(role_id)
        user_count = self.store.count_users_with_role(role_id)
        if user_count > 0:
            raise ConflictError(
                f"Cannot delete role: {user_count} user(s) are assigned to it.",
                detail={"user_count": user_count},
            )
        try:
            self.store.delete_role(role_id)
        except IntegrityError:
            # A user was assigned between the count and the delete.
            user_count = self.store.count_users_with_role(role_id)
            raise ConflictError(
                f"Cannot delete role: {user_count} user(s) are assigned to it.",
                detail={"user_count": user_count},
            )
        logger.warning("AUDIT: role %s (%s) deleted", role.name, role.key)
        return role

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_role(self, role_id: str) -> Role:
        role = self.store.get_role_by_id(role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found.", detail={"role_id": role_id})
        return role

    def _require_mutable(self, role_id: str) -> Role:
        role = self._require_role(role_id)
        if role.is_builtin:
            raise AuthorizationError(f"Role '{role.name}' is a built-in role and cannot be modified.")
        return role

    def _require_permissions(self, permission_ids: list[str]) -> None:
        missing = self.store.find_missing_permission_ids(permission_ids)
        if missing:
            raise NotFoundError(f"Permission {missing[0]} not found.", detail={"permission_ids": missing})

    def _check_unique(self, name: str, key: str, exclude_id: str | None = None) -> None:
        by_name = self.store.get_role_by_name(name)
        if by_name is not None and by_name.id != exclude_id:
            raise ConflictError("A role with this name already exists.", detail={"name": name})
        by_key = self.store.get_role_by_key(key)
        if by_key is not None and by_key.id != exclude_id:
            raise ConflictError("A role with this key already exists.", detail={"key": key})
