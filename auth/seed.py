"""
auth/seed.py -- Idempotent bootstrap of built-in roles, permissions and the first admin.

Runs at startup when Settings.seed_on_startup is true, and from `main.py seed`.
Each step is skipped if its data already exists, so running it repeatedly
against a live database is harmless.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from auth.models import Permission, Role, User
from auth.permissions import permission_key
from auth.store import CredentialStore
from auth.tokens import hash_password
from core.config import Settings, get_settings

logger = logging.getLogger("orbitauth.seed")

# (resource, description) -- each gets a view_<resource> permission.
VIEW_RESOURCES = (
    ("dashboard", "Main dashboard overview"),
    ("crm", "Customer relationship management"),
    ("inquiries", "Product inquiries management"),
    ("orders", "Order processing and tracking"),
    ("inventory", "Product inventory management"),
    ("invoices", "Invoice generation and management"),
    ("reports", "Business reporting and analytics"),
    ("users", "User management"),
    ("roles", "Role and permission management"),
)

# (resource, action, description)
MANAGEMENT_PERMISSIONS = (
    ("users", "create", "Create new users"),
    ("users", "edit", "Edit user details"),
    ("users", "delete", "Delete users"),
    ("roles", "create", "Create custom roles"),
    ("roles", "edit", "Edit role permissions"),
    ("roles", "delete", "Delete custom roles"),
)

SALES_AGENT_KEY = "sales_agent"
SALES_AGENT_VIEWS = ("dashboard", "crm", "inquiries", "orders", "inventory")


@dataclass
class SeedResult:
    roles_created: int = 0
    permissions_created: int = 0
    admin_grants_added: int = 0
    admin_email: str | None = None
    # Set only when the password was generated here; shown once, never stored.
    generated_password: str | None = None


def _catalogue() -> list[Permission]:
    perms = [
        Permission(key=permission_key(resource, "view"), resource=resource, action="view", description=f"View {desc}")
        for resource, desc in VIEW_RESOURCES
    ]
    perms += [
        Permission(key=permission_key(resource, action), resource=resource, action=action, description=desc)
        for resource, action, desc in MANAGEMENT_PERMISSIONS
    ]
    return perms


def _grant_admin_everything(store: CredentialStore, admin_key: str) -> int:
    """Grant the admin role any catalogue permission it does not hold yet."""
    admin_role = store.get_role_by_key(admin_key)
    if admin_role is None:
        return 0
    granted = set(store.get_role_permission_keys(admin_role.id))
    all_perms = store.list_permissions()
    missing = [p.key for p in all_perms if p.key not in granted]
    if missing:
        store.replace_role_permissions(admin_role.id, [p.id for p in all_perms])
        logger.info("Granted %s to role %s", ", ".join(missing), admin_key)
    return len(missing)


def seed_auth_data(store: CredentialStore, settings: Settings | None = None) -> SeedResult:
    """Create the permission catalogue, built-in roles and bootstrap admin.

    Roles are only seeded into an empty roles table. Permissions missing from
    the catalogue are added on every run, and the admin role is granted any it
    lacks. The admin user is created only when no user exists at all.
    """
    settings = settings or get_settings()
    result = SeedResult()

    for perm in _catalogue():
        if store.get_permission_by_key(perm.key) is None:
            store.create_permission(perm)
            result.permissions_created += 1
    if result.permissions_created:
        logger.info("Seeded %d permission(s)", result.permissions_created)

    if store.count_roles() == 0:
        all_perms = store.list_permissions()
        sales_keys = {permission_key(resource, "view") for resource in SALES_AGENT_VIEWS}
        store.create_role(
            Role(
                name="Admin",
                key=settings.admin_role_key,
                description="Full system access with user and role management",
                is_builtin=True,
            ),
            [p.id for p in all_perms],
        )
        store.create_role(
            Role(
                name="Sales Agent",
                key=SALES_AGENT_KEY,
                description="Limited access to operational pages only",
                is_builtin=True,
            ),
            [p.id for p in all_perms if p.key in sales_keys],
        )
        result.roles_created = 2
        logger.info("Seeded built-in roles: %s, %s", settings.admin_role_key, SALES_AGENT_KEY)
    else:
        result.admin_grants_added = _grant_admin_everything(store, settings.admin_role_key)

    if not store.has_users():
        admin_role = store.get_role_by_key(settings.admin_role_key)
        if admin_role is None:
            logger.error("Cannot create bootstrap admin: role %r does not exist", settings.admin_role_key)
            return result
        password = settings.bootstrap_admin_password
        if not password:
            password = secrets.token_urlsafe(12)
            result.generated_password = password
        store.create_user(
            User(
                email=settings.bootstrap_admin_email,
                password_hash=hash_password(password, settings.bcrypt_rounds),
                full_name="System Administrator",
                role_id=admin_role.id,
            )
        )
        result.admin_email = settings.bootstrap_admin_email
        if result.generated_password:
            logger.warning(
                "Bootstrap admin %s created with generated password: %s -- change it after first login.",
                result.admin_email,
                result.generated_password,
            )
        else:
            logger.info("Bootstrap admin %s created", result.admin_email)

    return result
