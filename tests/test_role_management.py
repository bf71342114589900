"""
tests/test_role_management.py -- Unit tests for RoleService and seeding.

Covers:
  - create: key derivation, >= 1 permission, name/key conflicts, unknown permission ids
  - built-in roles reject rename, edit, permission reassignment and deletion
  - delete of a role in use reports how many users hold it
  - permission catalogue grouped by resource
  - seed_auth_data is idempotent
"""

from __future__ import annotations

import pytest

from auth.roles import RoleService, derive_role_key
from auth.seed import seed_auth_data
from core.config import get_settings
from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError


@pytest.fixture
def roles(store) -> RoleService:
    return RoleService(store)


def _perm_ids(store, *keys: str) -> list[str]:
    return [store.get_permission_by_key(k).id for k in keys]


def test_derive_role_key() -> None:
    assert derive_role_key("  Warehouse   Lead ") == "warehouse_lead"


class TestCreateRole:
    def test_create_role_derives_key(self, roles, store) -> None:
        detail = roles.create_role("Warehouse Lead", _perm_ids(store, "view_inventory", "view_orders"))
        assert detail.role.key == "warehouse_lead"
        assert detail.role.is_builtin is False
        assert {p.key for p in detail.permissions} == {"view_inventory", "view_orders"}

    def test_explicit_key(self, roles, store) -> None:
        detail = roles.create_role("Night Shift", _perm_ids(store, "view_orders"), key="nights")
        assert detail.role.key == "nights"

    def test_requires_a_permission(self, roles) -> None:
        with pytest.raises(ValidationError) as excinfo:
            roles.create_role("Empty", [])
        assert "permission_ids" in excinfo.value.fields

    def test_requires_a_name(self, roles, store) -> None:
        with pytest.raises(ValidationError):
            roles.create_role("   ", _perm_ids(store, "view_orders"))

    def test_duplicate_name_conflicts(self, roles, store) -> None:
        with pytest.raises(ConflictError):
            roles.create_role("sales agent", _perm_ids(store, "view_orders"))

    def test_duplicate_key_conflicts(self, roles, store) -> None:
        with pytest.raises(ConflictError):
            roles.create_role("Administrator", _perm_ids(store, "view_orders"), key="admin")

    def test_unknown_permission_id(self, roles, store) -> None:
        with pytest.raises(NotFoundError) as excinfo:
            roles.create_role("Ghost", _perm_ids(store, "view_orders") + ["no-such-permission"])
        assert excinfo.value.detail["permission_ids"] == ["no-such-permission"]
        assert store.get_role_by_key("ghost") is None


class TestBuiltinProtection:
    @pytest.mark.parametrize("role_key", ["admin", "sales_agent"])
    def test_builtin_roles_are_immutable(self, roles, store, role_key) -> None:
        role = store.get_role_by_key(role_key)
        with pytest.raises(AuthorizationError):
            roles.update_role(role.id, name="Renamed")
        with pytest.raises(AuthorizationError):
            roles.update_role(role.id, description="changed")
        with pytest.raises(AuthorizationError):
            roles.assign_permissions(role.id, _perm_ids(store, "view_reports"))
        with pytest.raises(AuthorizationError):
            roles.delete_role(role.id)
        assert store.get_role_by_id(role.id).name == role.name


class TestUpdateRole:
    def test_rename_rederives_key(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        updated = roles.update_role(created.role.id, name="Field Agent")
        assert (updated.role.name, updated.role.key) == ("Field Agent", "field_agent")

    def test_rename_to_existing_name_conflicts(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        with pytest.raises(ConflictError):
            roles.update_role(created.role.id, name="Admin")

    def test_update_replaces_permissions(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        updated = roles.update_role(created.role.id, permission_ids=_perm_ids(store, "view_crm", "view_reports"))
        assert [p.key for p in updated.permissions] == ["view_crm", "view_reports"]

    def test_rename_to_invalid_key_rejected(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        with pytest.raises(ValidationError) as excinfo:
            roles.update_role(created.role.id, name="Floor-Manager!")
        assert "key" in excinfo.value.fields
        assert store.get_role_by_id(created.role.id).key == "temp_role"

    def test_update_with_nothing(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        with pytest.raises(ValidationError):
            roles.update_role(created.role.id)

    def test_update_missing_role(self, roles) -> None:
        with pytest.raises(NotFoundError):
            roles.update_role("missing", name="X")


class TestAssignPermissions:
    def test_assign_is_full_replace(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders", "view_crm"))
        detail = roles.assign_permissions(created.role.id, _perm_ids(store, "view_invoices"))
        assert [p.key for p in detail.permissions] == ["view_invoices"]

    def test_assign_validates_every_id_first(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        with pytest.raises(NotFoundError):
            roles.assign_permissions(created.role.id, _perm_ids(store, "view_crm") + ["bogus"])
        assert store.get_role_permission_keys(created.role.id) == ["view_orders"]


class TestDeleteRole:
    def test_delete_unused_role(self, roles, store) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        roles.delete_role(created.role.id)
        assert store.get_role_by_id(created.role.id) is None

    def test_delete_role_in_use_reports_user_count(self, roles, store, make_user) -> None:
        created = roles.create_role("Temp Role", _perm_ids(store, "view_orders"))
        make_user(store, "one@example.com", role_key=created.role.key)
        make_user(store, "two@example.com", role_key=created.role.key)
        with pytest.raises(ConflictError) as excinfo:
            roles.delete_role(created.role.id)
        assert excinfo.value.detail == {"user_count": 2}

    def test_delete_missing_role(self, roles) -> None:
        with pytest.raises(NotFoundError):
            roles.delete_role("missing")


class TestListing:
    def test_list_permissions_grouped(self, roles) -> None:
        groups = roles.list_permissions_grouped()
        by_resource = {g["resource"]: [p.key for p in g["permissions"]] for g in groups}
        assert by_resource["users"] == ["view_users", "create_users", "edit_users", "delete_users"]
        assert by_resource["reports"] == ["view_reports"]
        assert len(groups) == 9

    def test_get_role_includes_permissions(self, roles, store) -> None:
        detail = roles.get_role(store.get_role_by_key("sales_agent").id)
        assert len(detail.permissions) == 5


class TestSeed:
    def test_seed_is_idempotent(self, store) -> None:
        result = seed_auth_data(store, get_settings())
        assert result.roles_created == 0
        assert result.permissions_created == 0
        assert result.admin_grants_added == 0
        assert result.admin_email is None
        assert len(store.list_roles()) == 2

    def test_seeded_roles_are_builtin(self, store) -> None:
        assert all(r.is_builtin for r in store.list_roles())

    def test_new_catalogue_permission_reaches_admin_only(self, store, monkeypatch) -> None:
        from auth import seed

        monkeypatch.setattr(seed, "VIEW_RESOURCES", seed.VIEW_RESOURCES + (("pricing", "Price lists"),))

        result = seed_auth_data(store, get_settings())

        assert result.permissions_created == 1
        assert result.admin_grants_added == 1
        admin = store.get_role_by_key("admin")
        assert "view_pricing" in store.get_role_permission_keys(admin.id)
        assert len(store.get_role_permission_keys(admin.id)) == len(store.list_permissions())
        sales = store.get_role_by_key("sales_agent")
        assert "view_pricing" not in store.get_role_permission_keys(sales.id)
