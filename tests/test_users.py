"""
Integration tests for the user management endpoints.

Covers:
- Listing, search, tenant scoping and pagination
- Self-or-admin reads
- Create / update / delete, including the protected super-admin account
- Status changes, password reset, organization membership
- Availability checks, statistics, roles and the activity log
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlmodel import select

from app.models.user import User
from app.models.user_session import UserSession

SUPER_ROLE_ID = 1
USER_ROLE_ID = 2
ADMIN_ROLE_ID = 3


async def _load_user(session_factory, user_id: int) -> User:
    async with session_factory() as session:
        return await session.get(User, user_id)


def _assert_protected(resp, target_id: int, operation: str) -> None:
    assert resp.status_code == 403
    detail = resp.json()["detail"]
    assert detail["code"] == "protected_account"
    assert detail["target_id"] == target_id
    assert detail["attempted_operation"] == operation


# ---------------------------------------------------------------------------
# Listing and reads
# ---------------------------------------------------------------------------

class TestListUsers:
    @pytest.mark.asyncio
    async def test_admin_sees_own_tenant_only(self, client: AsyncClient, directory):
        resp = await client.get("/api/v1/users", headers=directory.auth("admin"))
        assert resp.status_code == 200
        body = resp.json()
        usernames = {u["username"] for u in body["data"]}
        assert usernames == {"root", "admin", "alice", "bob"}
        assert body["pagination"]["total"] == 4

    @pytest.mark.asyncio
    async def test_super_admin_sees_every_tenant(self, client: AsyncClient, directory):
        resp = await client.get("/api/v1/users", headers=directory.auth("root"))
        assert resp.status_code == 200
        assert resp.json()["pagination"]["total"] == 5

    @pytest.mark.asyncio
    async def test_search_and_filters(self, client: AsyncClient, directory):
        resp = await client.get(
            "/api/v1/users", params={"search": "ali"}, headers=directory.auth("admin")
        )
        assert [u["username"] for u in resp.json()["data"]] == ["alice"]

        resp = await client.get(
            "/api/v1/users", params={"role_id": ADMIN_ROLE_ID}, headers=directory.auth("admin")
        )
        assert [u["username"] for u in resp.json()["data"]] == ["admin"]

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, directory):
        resp = await client.get(
            "/api/v1/users",
            params={"per_page": 3, "page": 2, "sort_by": "username", "sort_order": "asc"},
            headers=directory.auth("admin"),
        )
        body = resp.json()
        assert body["pagination"] == {"page": 2, "per_page": 3, "total": 4, "total_pages": 2}
        assert [u["username"] for u in body["data"]] == ["root"]

    @pytest.mark.asyncio
    async def test_non_admin_is_forbidden(self, client: AsyncClient, directory):
        resp = await client.get("/api/v1/users", headers=directory.auth("alice"))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_anonymous_is_unauthorized(self, client: AsyncClient, directory):
        resp = await client.get("/api/v1/users")
        assert resp.status_code == 401


class TestGetUser:
    @pytest.mark.asyncio
    async def test_user_can_read_self(self, client: AsyncClient, directory):
        resp = await client.get(
            f"/api/v1/users/{directory.alice_id}", headers=directory.auth("alice")
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert "password_hash" not in data

    @pytest.mark.asyncio
    async def test_user_cannot_read_others(self, client: AsyncClient, directory):
        resp = await client.get(
            f"/api/v1/users/{directory.bob_id}", headers=directory.auth("alice")
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_super_admin_flag_is_reported(self, client: AsyncClient, directory):
        resp = await client.get(
            f"/api/v1/users/{directory.root_id}", headers=directory.auth("admin")
        )
        assert resp.json()["is_super_admin"] is True

    @pytest.mark.asyncio
    async def test_other_tenant_is_not_found(self, client: AsyncClient, directory):
        resp = await client.get(
            f"/api/v1/users/{directory.carol_id}", headers=directory.auth("admin")
        )
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreateUser:
    @pytest.mark.asyncio
    async def test_create_with_organizations(self, client: AsyncClient, directory):
        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "dave",
                "email": "dave@example.com",
                "password": "longenough",
                "role_id": USER_ROLE_ID,
                "organization_ids": directory.org_ids,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["tenant_id"] == 1
        assert data["created_by"] == directory.admin_id
        orgs = data["organizations"]
        assert [o["organization_id"] for o in orgs] == directory.org_ids
        assert [o["is_main"] for o in orgs] == [True, False]

    @pytest.mark.asyncio
    async def test_duplicate_username_conflicts(self, client: AsyncClient, directory):
        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "alice",
                "email": "other@example.com",
                "password": "longenough",
                "role_id": USER_ROLE_ID,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_role_is_rejected(self, client: AsyncClient, directory):
        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "erin",
                "email": "erin@example.com",
                "password": "longenough",
                "role_id": 999,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_admin_cannot_grant_super_role(self, client: AsyncClient, directory):
        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "erin",
                "email": "erin@example.com",
                "password": "longenough",
                "role_id": SUPER_ROLE_ID,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_short_password_is_rejected(self, client: AsyncClient, directory):
        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "erin",
                "email": "erin@example.com",
                "password": "abc",
                "role_id": USER_ROLE_ID,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------

class TestUpdateUser:
    @pytest.mark.asyncio
    async def test_update_regular_user(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.alice_id}",
            json={"real_name": "Alice Liddell", "role_id": ADMIN_ROLE_ID},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["real_name"] == "Alice Liddell"
        assert data["role_id"] == ADMIN_ROLE_ID
        assert data["updated_by"] == directory.admin_id

    @pytest.mark.asyncio
    async def test_super_admin_profile_is_read_only(
        self, client: AsyncClient, directory, session_factory
    ):
        resp = await client.patch(
            f"/api/v1/users/{directory.root_id}",
            json={"real_name": "Renamed"},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "update")
        root = await _load_user(session_factory, directory.root_id)
        assert root.real_name is None

    @pytest.mark.asyncio
    async def test_super_admin_role_is_fixed(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.root_id}",
            json={"role_id": USER_ROLE_ID},
            headers=directory.auth("root"),
        )
        _assert_protected(resp, directory.root_id, "role_change")

    @pytest.mark.asyncio
    async def test_super_admin_organizations_are_fixed(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.root_id}",
            json={"organization_ids": directory.org_ids},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "organization_change")

    @pytest.mark.asyncio
    async def test_super_admin_status_only_update(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.root_id}",
            json={"status": "active"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200

        resp = await client.patch(
            f"/api/v1/users/{directory.root_id}",
            json={"status": "locked"},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "disable")

    @pytest.mark.asyncio
    async def test_disabling_ends_sessions(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.alice_id}",
            json={"status": "inactive"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200
        resp = await client.get("/auth/me", headers=directory.auth("alice"))
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_null_username_is_rejected(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.alice_id}",
            json={"username": None},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.alice_id}",
            json={"email": "bob@example.com"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_non_admin_cannot_update(self, client: AsyncClient, directory):
        resp = await client.patch(
            f"/api/v1/users/{directory.alice_id}",
            json={"real_name": "Me"},
            headers=directory.auth("alice"),
        )
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDeleteUser:
    @pytest.mark.asyncio
    async def test_soft_delete(self, client: AsyncClient, directory, session_factory):
        resp = await client.delete(
            f"/api/v1/users/{directory.bob_id}", headers=directory.auth("admin")
        )
        assert resp.status_code == 204

        resp = await client.get(
            f"/api/v1/users/{directory.bob_id}", headers=directory.auth("admin")
        )
        assert resp.status_code == 404
        resp = await client.get("/api/v1/users", headers=directory.auth("admin"))
        assert "bob" not in {u["username"] for u in resp.json()["data"]}

        bob = await _load_user(session_factory, directory.bob_id)
        assert bob.is_deleted is True
        assert bob.deleted_at is not None

    @pytest.mark.asyncio
    async def test_super_admin_cannot_be_deleted(
        self, client: AsyncClient, directory, session_factory
    ):
        resp = await client.delete(
            f"/api/v1/users/{directory.root_id}", headers=directory.auth("admin")
        )
        _assert_protected(resp, directory.root_id, "delete")
        root = await _load_user(session_factory, directory.root_id)
        assert root.is_deleted is False

    @pytest.mark.asyncio
    async def test_super_admin_cannot_delete_self(self, client: AsyncClient, directory):
        resp = await client.delete(
            f"/api/v1/users/{directory.root_id}", headers=directory.auth("root")
        )
        _assert_protected(resp, directory.root_id, "delete")

    @pytest.mark.asyncio
    async def test_admin_cannot_delete_self(self, client: AsyncClient, directory):
        resp = await client.delete(
            f"/api/v1/users/{directory.admin_id}", headers=directory.auth("admin")
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_user_is_not_found(self, client: AsyncClient, directory):
        resp = await client.delete("/api/v1/users/9999", headers=directory.auth("admin"))
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Status and password
# ---------------------------------------------------------------------------

class TestChangeStatus:
    @pytest.mark.asyncio
    async def test_lock_regular_user(self, client: AsyncClient, directory):
        resp = await client.put(
            f"/api/v1/users/{directory.bob_id}/status",
            json={"status": "locked", "reason": "too many attempts"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "user_id": directory.bob_id,
            "old_status": "active",
            "new_status": "locked",
        }

    @pytest.mark.asyncio
    async def test_super_admin_cannot_be_locked(
        self, client: AsyncClient, directory, session_factory
    ):
        resp = await client.put(
            f"/api/v1/users/{directory.root_id}/status",
            json={"status": "locked"},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "disable")
        root = await _load_user(session_factory, directory.root_id)
        assert root.status == "active"

    @pytest.mark.asyncio
    async def test_locked_super_admin_can_be_reactivated(
        self, client: AsyncClient, directory, session_factory
    ):
        async with session_factory() as session:
            root = await session.get(User, directory.root_id)
            root.status = "locked"
            session.add(root)
            await session.commit()

        resp = await client.put(
            f"/api/v1/users/{directory.root_id}/status",
            json={"status": "active"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200
        assert resp.json()["old_status"] == "locked"
        assert resp.json()["new_status"] == "active"
        root = await _load_user(session_factory, directory.root_id)
        assert root.status == "active"


class TestResetPassword:
    @pytest.mark.asyncio
    async def test_reset_ends_sessions(self, client: AsyncClient, directory):
        resp = await client.post(
            f"/api/v1/users/{directory.alice_id}/reset-password",
            json={"new_password": "brand-new-pass"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 204

        resp = await client.get("/auth/me", headers=directory.auth("alice"))
        assert resp.status_code == 401

        resp = await client.post(
            "/auth/login", json={"account": "alice", "password": "brand-new-pass"}
        )
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_super_admin_password_is_protected(self, client: AsyncClient, directory):
        resp = await client.post(
            f"/api/v1/users/{directory.root_id}/reset-password",
            json={"new_password": "brand-new-pass"},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "reset_password")

    @pytest.mark.asyncio
    async def test_short_password_is_rejected(self, client: AsyncClient, directory):
        resp = await client.post(
            f"/api/v1/users/{directory.alice_id}/reset-password",
            json={"new_password": "abc"},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

class TestUserOrganizations:
    @pytest.mark.asyncio
    async def test_replace_with_explicit_main(self, client: AsyncClient, directory):
        hq, sales = directory.org_ids
        resp = await client.put(
            f"/api/v1/users/{directory.alice_id}/organizations",
            json={"organization_ids": [hq, sales], "main_organization_id": sales},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [o["organization_id"] for o in data] == [sales, hq]
        assert sum(o["is_main"] for o in data) == 1
        assert data[0]["is_main"] is True

        resp = await client.get(
            f"/api/v1/users/{directory.alice_id}/organizations", headers=directory.auth("alice")
        )
        assert resp.status_code == 200
        assert len(resp.json()["data"]) == 2

    @pytest.mark.asyncio
    async def test_main_must_be_listed(self, client: AsyncClient, directory):
        hq, sales = directory.org_ids
        resp = await client.put(
            f"/api/v1/users/{directory.alice_id}/organizations",
            json={"organization_ids": [hq], "main_organization_id": sales},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_organization_is_rejected(self, client: AsyncClient, directory):
        resp = await client.put(
            f"/api/v1/users/{directory.alice_id}/organizations",
            json={"organization_ids": [9999]},
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_super_admin_memberships_are_protected(self, client: AsyncClient, directory):
        resp = await client.put(
            f"/api/v1/users/{directory.root_id}/organizations",
            json={"organization_ids": directory.org_ids},
            headers=directory.auth("admin"),
        )
        _assert_protected(resp, directory.root_id, "organization_change")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class TestLookups:
    @pytest.mark.asyncio
    async def test_check_username(self, client: AsyncClient, directory):
        resp = await client.get(
            "/api/v1/users/check-username",
            params={"username": "alice"},
            headers=directory.auth("admin"),
        )
        assert resp.json() == {"value": "alice", "is_available": False}

        resp = await client.get(
            "/api/v1/users/check-username",
            params={"username": "alice", "exclude_id": directory.alice_id},
            headers=directory.auth("admin"),
        )
        assert resp.json()["is_available"] is True

    @pytest.mark.asyncio
    async def test_check_email_is_tenant_scoped(self, client: AsyncClient, directory):
        resp = await client.get(
            "/api/v1/users/check-email",
            params={"email": "bob@example.com"},
            headers=directory.auth("admin"),
        )
        assert resp.json()["is_available"] is False

        # carol lives in tenant 2
        resp = await client.get(
            "/api/v1/users/check-email",
            params={"email": "carol@example.com"},
            headers=directory.auth("admin"),
        )
        assert resp.json()["is_available"] is True

    @pytest.mark.asyncio
    async def test_email_free_in_tenant_can_be_used(self, client: AsyncClient, directory):
        resp = await client.get(
            "/api/v1/users/check-email",
            params={"email": "carol@example.com"},
            headers=directory.auth("admin"),
        )
        assert resp.json()["is_available"] is True

        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "carol2",
                "email": "carol@example.com",
                "password": "longenough",
                "role_id": USER_ROLE_ID,
            },
            headers=directory.auth("admin"),
        )
        assert resp.status_code == 201
        assert resp.json()["tenant_id"] == 1

    @pytest.mark.asyncio
    async def test_super_admin_checks_email_in_given_tenant(
        self, client: AsyncClient, directory
    ):
        params = {"email": "carol@example.com", "tenant_id": 2}
        resp = await client.get(
            "/api/v1/users/check-email", params=params, headers=directory.auth("root")
        )
        assert resp.json()["is_available"] is False

        resp = await client.post(
            "/api/v1/users",
            json={
                "username": "carol2",
                "email": "carol@example.com",
                "password": "longenough",
                "role_id": USER_ROLE_ID,
                "tenant_id": 2,
            },
            headers=directory.auth("root"),
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_statistics(self, client: AsyncClient, directory):
        await client.put(
            f"/api/v1/users/{directory.bob_id}/status",
            json={"status": "locked"},
            headers=directory.auth("admin"),
        )
        resp = await client.get("/api/v1/users/statistics", headers=directory.auth("admin"))
        assert resp.status_code == 200
        assert resp.json() == {"total": 4, "active": 3, "inactive": 0, "locked": 1}

    @pytest.mark.asyncio
    async def test_roles_hide_super_role_from_admins(self, client: AsyncClient, directory):
        resp = await client.get("/api/v1/roles", headers=directory.auth("admin"))
        assert {r["code"] for r in resp.json()["data"]} == {"user", "admin"}

        resp = await client.get("/api/v1/roles", headers=directory.auth("root"))
        assert {r["code"] for r in resp.json()["data"]} == {"super_admin", "user", "admin"}


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

class TestActivityLogs:
    @pytest.mark.asyncio
    async def test_rejection_is_audited(self, client: AsyncClient, directory):
        resp = await client.delete(
            f"/api/v1/users/{directory.root_id}", headers=directory.auth("admin")
        )
        assert resp.status_code == 403

        resp = await client.get(
            f"/api/v1/users/{directory.root_id}/activity-logs", headers=directory.auth("admin")
        )
        assert resp.status_code == 200
        entries = resp.json()["data"]
        assert len(entries) == 1
        entry = entries[0]
        assert entry["module"] == "users"
        assert entry["action"] == "delete"
        assert entry["result"] == "rejected"
        assert entry["level"] == "warning"
        assert entry["operator_id"] == directory.admin_id
        assert entry["details"] == {"attempted_operation": "delete"}

    @pytest.mark.asyncio
    async def test_update_records_changed_fields(self, client: AsyncClient, directory):
        await client.patch(
            f"/api/v1/users/{directory.bob_id}",
            json={"real_name": "Robert"},
            headers=directory.auth("admin"),
        )
        resp = await client.get(
            f"/api/v1/users/{directory.bob_id}/activity-logs", headers=directory.auth("admin")
        )
        entry = resp.json()["data"][0]
        assert entry["action"] == "update"
        assert entry["result"] == "success"
        assert entry["details"]["changed_fields"] == {
            "real_name": {"from": None, "to": "Robert"}
        }

    @pytest.mark.asyncio
    async def test_delete_ends_sessions(self, client: AsyncClient, directory, session_factory):
        await client.delete(
            f"/api/v1/users/{directory.alice_id}", headers=directory.auth("admin")
        )
        async with session_factory() as session:
            result = await session.execute(
                select(UserSession).where(UserSession.user_id == directory.alice_id)
            )
            assert all(not s.is_active for s in result.scalars().all())
