"""
auth/users.py -- User management with safety rules.

Rules enforced here, all checked before any write:
  - email is unique case-insensitively and stored lowercase
  - passwords meet Settings.password_min_length
  - a user's role must exist
  - an actor may not change their own role or status
  - an actor may not delete themselves
  - the last active holder of the admin role can be neither deleted nor
    moved out of the role or out of "active" status

Deletion defaults to a soft delete: status becomes "inactive" and every
refresh token the user holds is revoked. A hard delete removes the row and
is logged as an audit event.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError

from auth.models import USER_STATUSES, User
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import Settings, get_settings
from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("orbitauth.users")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_UPDATABLE_FIELDS = ("full_name", "role_id", "status")

MAX_PAGE_SIZE = 100


@dataclass
class UserPage:
    users: list[User] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class UserService:
    """User CRUD over an injected CredentialStore."""

    def __init__(self, store: CredentialStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_users(
        self,
        search: str | None = None,
        status: str | None = None,
        role_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> UserPage:
        if status is not None and status not in USER_STATUSES:
            raise ValidationError("Invalid status filter.", fields={"status": f"Must be one of {', '.join(USER_STATUSES)}."})
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        users, total = self.store.list_users(
            search=search, status=status, role_id=role_id, limit=limit, offset=(page - 1) * limit
        )
        return UserPage(users=users, page=page, limit=limit, total=total)

    def get_user(self, user_id: str) -> User:
        user = self.store.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found.", detail={"user_id": user_id})
        return user

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password: str,
        full_name: str,
        role_id: str,
        status: str = "active",
    ) -> User:
        email = (email or "").strip().lower()
        full_name = (full_name or "").strip()

        errors: dict[str, str] = {}
        if not _EMAIL_RE.match(email):
            errors["email"] = "Must be a valid email address."
        password_error = self._password_error(password)
        if password_error:
            errors["password"] = password_error
        if not full_name:
            errors["full_name"] = "Full name is required."
        if not role_id:
            errors["role_id"] = "Role is required."
        if status not in USER_STATUSES:
            errors["status"] = f"Must be one of {', '.join(USER_STATUSES)}."
        if errors:
            raise ValidationError("User data is invalid.", fields=errors)

        if self.store.get_user_by_email(email) is not None:
            raise ConflictError("A user with this email already exists.", detail={"email": email})
        if self.store.get_role_by_id(role_id) is None:
            raise NotFoundError(f"Role {role_id} not found.", detail={"role_id": role_id})

        try:
            user = self.store.create_user(
                User(
                    email=email,
                    password_hash=hash_password(password, self.settings.bcrypt_rounds),
                    full_name=full_name,
                    role_id=role_id,
                    status=status,
                )
            )
        except IntegrityError:
            # Lost a race against a concurrent insert of the same email.
            raise ConflictError("A user with this email already exists.", detail={"email": email})
        logger.info("Created user %s (role=%s, status=%s)", user.email, user.role_key, user.status)
        return user

    def update_user(self, user_id: str, changes: dict, actor_id: str | None = None) -> User:
        """Apply full_name / role_id / status changes to a user."""
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown fields in update.", fields={name: "Field cannot be updated." for name in sorted(unknown)}
            )
        if not changes:
            raise ValidationError("No fields to update.")

        target = self.get_user(user_id)
        updates: dict = {}

        if "full_name" in changes:
            full_name = (changes["full_name"] or "").strip()
            if not full_name:
                raise ValidationError("User data is invalid.", fields={"full_name": "Full name is required."})
            updates["full_name"] = full_name

        new_role_key = target.role_key
        if "role_id" in changes and changes["role_id"] != target.role_id:
            new_role = self.store.get_role_by_id(changes["role_id"])
            if new_role is None:
                raise NotFoundError(f"Role {changes['role_id']} not found.", detail={"role_id": changes["role_id"]})
            if actor_id == user_id:
                raise AuthorizationError("You cannot change your own role.")
            updates["role_id"] = new_role.id
            new_role_key = new_role.key

        new_status = target.status
        if "status" in changes and changes["status"] != target.status:
            if changes["status"] not in USER_STATUSES:
                raise ValidationError(
                    "User data is invalid.", fields={"status": f"Must be one of {', '.join(USER_STATUSES)}."}
                )
            if actor_id == user_id:
                raise AuthorizationError("You cannot change your own status.")
            updates["status"] = changes["status"]
            new_status = changes["status"]

        if self._is_last_active_admin(target) and (
            new_role_key != self.settings.admin_role_key or new_status != "active"
        ):
            raise ConflictError("Cannot demote or deactivate the last active administrator.")

        if updates:
            self.store.update_user(user_id, **updates)
            if updates.get("status", "active") != "active":
                self.store.revoke_user_refresh_tokens(user_id)
            logger.info("Updated user %s: %s (actor=%s)", target.email, sorted(updates), actor_id)
        return self.get_user(user_id)

    def change_password(self, user_id: str, new_password: str) -> None:
        """Set a new password and revoke every refresh token the user holds."""
        password_error = self._password_error(new_password)
        if password_error:
            raise ValidationError("Password is invalid.", fields={"password": password_error})
        user = self.get_user(user_id)
        self.store.update_user(user_id, password_hash=hash_password(new_password, self.settings.bcrypt_rounds))
        revoked = self.store.revoke_user_refresh_tokens(user_id)
        logger.info("Password changed for %s; %d refresh token(s) revoked", user.email, revoked)

    def delete_user(self, user_id: str, actor_id: str | None = None, hard: bool = False) -> User:
        """Soft-delete (default) or hard-delete a user. Returns the user as it was."""
        if actor_id is not None and actor_id == user_id:
            raise ConflictError("You cannot delete your own account.")
        target = self.get_user(user_id)
        if self._is_last_active_admin(target):
            raise ConflictError("Cannot delete the last active administrator.")

        if hard:
            self.store.delete_user(user_id)
            logger.warning("AUDIT: user %s (%s) permanently deleted by %s", target.email, user_id, actor_id)
        else:
            self.store.update_user(user_id, status="inactive")
            self.store.revoke_user_refresh_tokens(user_id)
            logger.info("User %s deactivated by %s", target.email, actor_id)
        return target

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _password_error(self, password: str | None) -> str | None:
        minimum = self.settings.password_min_length
        if not password or len(password) < minimum:
            return f"Password must be at least {minimum} characters."
        if len(password.encode("utf-8")) > 72:
            return "Password must be at most 72 bytes."
        return None

    def _is_last_active_admin(self, user: User) -> bool:
        admin_key = self.settings.admin_role_key
        if user.role_key != admin_key or not user.is_active:
            return False
        return self.store.count_active_users_with_role_key(admin_key) <= 1
