"""
HTTP tests for the organisation and membership endpoints.

The app is driven through httpx's ASGITransport with the membership store
dependency pointed at the per-test SQLite database.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from engage_server.core.auth import create_jwt
from engage_server.main import app
from engage_server.services.membership_store import get_membership_store
from engage_shared.schemas.common import Role


@pytest.fixture
async def client(store):
    app.dependency_overrides[get_membership_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _auth(user) -> dict:
        return {"Authorization": f"Bearer {create_jwt(user.id)}"}

    return _auth


def _error(response) -> dict:
    return response.json()["error"]


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestAuthentication:
    async def test_missing_token(self, client):
        response = await client.get("/api/v1/organisations")
        assert response.status_code == 401

    async def test_garbage_token(self, client):
        response = await client.get(
            "/api/v1/organisations", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_expired_token(self, client, make_user):
        user = await make_user()
        token = create_jwt(user.id, expires_delta=timedelta(minutes=-5))
        response = await client.get(
            "/api/v1/organisations", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    async def test_unknown_user(self, client):
        token = create_jwt(uuid.uuid4())
        response = await client.get(
            "/api/v1/organisations", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    async def test_inactive_user(self, client, make_user, auth):
        user = await make_user(is_active=False)
        response = await client.get("/api/v1/organisations", headers=auth(user))
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Organisations
# ---------------------------------------------------------------------------

class TestOrganisationEndpoints:
    async def test_create_and_list(self, client, make_user, auth):
        user = await make_user()
        response = await client.post(
            "/api/v1/organisations",
            json={"name": "Acme", "slug": "acme"},
            headers=auth(user),
        )
        assert response.status_code == 201
        created = response.json()
        assert created["slug"] == "acme"
        assert created["is_deleted"] is False

        response = await client.get("/api/v1/organisations", headers=auth(user))
        assert response.status_code == 200
        data = response.json()["data"]
        assert [o["id"] for o in data] == [created["id"]]
        assert data[0]["role"] == "OWNER"

    async def test_duplicate_slug(self, client, make_user, make_org, auth):
        user = await make_user()
        await make_org(user, slug="taken")

        response = await client.post(
            "/api/v1/organisations",
            json={"name": "Taken", "slug": "taken"},
            headers=auth(user),
        )
        assert response.status_code == 409
        assert _error(response)["code"] == "ConflictError"

    async def test_invalid_slug_rejected(self, client, make_user, auth):
        user = await make_user()
        response = await client.post(
            "/api/v1/organisations",
            json={"name": "Bad", "slug": "Not A Slug"},
            headers=auth(user),
        )
        assert response.status_code == 422

    async def test_list_only_own_orgs(self, client, make_user, make_org, auth):
        alice = await make_user()
        bob = await make_user()
        await make_org(alice)
        bob_org, _ = await make_org(bob)

        response = await client.get("/api/v1/organisations", headers=auth(bob))
        assert [o["id"] for o in response.json()["data"]] == [str(bob_org.id)]

    async def test_super_admin_lists_all(self, client, make_user, make_org, auth):
        root = await make_user(is_super_admin=True)
        org_a, _ = await make_org(await make_user())
        org_b, _ = await make_org(await make_user())

        response = await client.get("/api/v1/organisations", headers=auth(root))
        data = response.json()["data"]
        assert {o["id"] for o in data} == {str(org_a.id), str(org_b.id)}
        assert all(o["role"] is None for o in data)

    async def test_get_requires_membership(self, client, make_user, make_org, auth):
        owner = await make_user()
        org, _ = await make_org(owner)

        response = await client.get(f"/api/v1/organisations/{org.id}", headers=auth(owner))
        assert response.status_code == 200
        assert response.json()["id"] == str(org.id)

        stranger = await make_user()
        response = await client.get(f"/api/v1/organisations/{org.id}", headers=auth(stranger))
        assert response.status_code == 403
        assert _error(response) == {
            "code": "NoAccess",
            "message": "You do not have access to this organisation",
            "status": 403,
        }

    async def test_unknown_org(self, client, make_user, auth):
        user = await make_user()
        response = await client.get(f"/api/v1/organisations/{uuid.uuid4()}", headers=auth(user))
        assert response.status_code == 404
        assert _error(response)["code"] == "NotFound"

    async def test_admin_can_update_member_cannot(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        admin = await make_user()
        member = await make_user()
        org, _ = await make_org(owner)
        await add(admin, org, Role.ADMIN)
        await add(member, org, Role.MEMBER)

        response = await client.patch(
            f"/api/v1/organisations/{org.id}", json={"name": "Renamed"}, headers=auth(admin)
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Renamed"

        response = await client.patch(
            f"/api/v1/organisations/{org.id}", json={"name": "Again"}, headers=auth(member)
        )
        assert response.status_code == 403
        assert _error(response)["code"] == "InsufficientRole"

    async def test_delete_owner_only(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        admin = await make_user()
        org, _ = await make_org(owner)
        await add(admin, org, Role.ADMIN)

        response = await client.delete(f"/api/v1/organisations/{org.id}", headers=auth(admin))
        assert response.status_code == 403

        response = await client.delete(f"/api/v1/organisations/{org.id}", headers=auth(owner))
        assert response.status_code == 200
        assert response.json()["is_deleted"] is True

        response = await client.get(f"/api/v1/organisations/{org.id}", headers=auth(owner))
        assert response.status_code == 404

        response = await client.get("/api/v1/organisations", headers=auth(owner))
        assert response.json()["data"] == []


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------

class TestMembershipEndpoints:
    async def test_add_list_update_remove(self, client, make_user, make_org, auth):
        owner = await make_user()
        user = await make_user()
        org, _ = await make_org(owner)
        base = f"/api/v1/organisations/{org.id}/users"

        response = await client.post(
            base, json={"user_id": str(user.id), "role": "ADMIN"}, headers=auth(owner)
        )
        assert response.status_code == 201
        membership = response.json()
        assert membership["role"] == "ADMIN"
        assert membership["organisation_id"] == str(org.id)

        response = await client.get(base, headers=auth(user))
        assert response.status_code == 200
        assert len(response.json()["data"]) == 2

        response = await client.patch(
            f"{base}/{membership['id']}", json={"role": "MEMBER"}, headers=auth(owner)
        )
        assert response.status_code == 200
        assert response.json()["role"] == "MEMBER"

        response = await client.delete(f"{base}/{membership['id']}", headers=auth(owner))
        assert response.status_code == 200
        assert response.json()["is_deleted"] is True

        response = await client.get(f"{base}/{membership['id']}", headers=auth(owner))
        assert response.status_code == 404

    async def test_add_defaults_to_member(self, client, make_user, make_org, auth):
        owner = await make_user()
        user = await make_user()
        org, _ = await make_org(owner)

        response = await client.post(
            f"/api/v1/organisations/{org.id}/users",
            json={"user_id": str(user.id)},
            headers=auth(owner),
        )
        assert response.status_code == 201
        assert response.json()["role"] == "MEMBER"

    async def test_unknown_role_rejected(self, client, make_user, make_org, auth):
        owner = await make_user()
        user = await make_user()
        org, _ = await make_org(owner)

        response = await client.post(
            f"/api/v1/organisations/{org.id}/users",
            json={"user_id": str(user.id), "role": "SUPERVISOR"},
            headers=auth(owner),
        )
        assert response.status_code == 422

    async def test_already_member(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        user = await make_user()
        org, _ = await make_org(owner)
        await add(user, org, Role.MEMBER)

        response = await client.post(
            f"/api/v1/organisations/{org.id}/users",
            json={"user_id": str(user.id)},
            headers=auth(owner),
        )
        assert response.status_code == 409
        assert _error(response)["code"] == "ConflictError"

    async def test_admin_adding_owner(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        admin = await make_user()
        user = await make_user()
        org, _ = await make_org(owner)
        await add(admin, org, Role.ADMIN)

        response = await client.post(
            f"/api/v1/organisations/{org.id}/users",
            json={"user_id": str(user.id), "role": "OWNER"},
            headers=auth(admin),
        )
        assert response.status_code == 403
        assert _error(response)["code"] == "ForbiddenCrossRole"

    async def test_self_role_change(self, client, make_user, make_org, auth):
        owner = await make_user()
        org, membership = await make_org(owner)

        response = await client.patch(
            f"/api/v1/organisations/{org.id}/users/{membership.id}",
            json={"role": "ADMIN"},
            headers=auth(owner),
        )
        assert response.status_code == 400
        assert _error(response)["code"] == "SelfActionDenied"

    async def test_last_owner_cannot_leave(self, client, make_user, make_org, auth):
        owner = await make_user()
        org, membership = await make_org(owner)

        response = await client.delete(
            f"/api/v1/organisations/{org.id}/users/{membership.id}", headers=auth(owner)
        )
        assert response.status_code == 400
        assert _error(response) == {
            "code": "LastOwnerError",
            "message": "Cannot remove the last owner of the organisation",
            "status": 400,
        }

    async def test_member_leaves(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        member = await make_user()
        org, _ = await make_org(owner)
        membership = await add(member, org, Role.MEMBER)

        response = await client.delete(
            f"/api/v1/organisations/{org.id}/users/{membership.id}", headers=auth(member)
        )
        assert response.status_code == 200

        response = await client.get(f"/api/v1/organisations/{org.id}/users", headers=auth(member))
        assert response.status_code == 403
        assert _error(response)["code"] == "NoAccess"

    async def test_membership_of_other_org_is_not_found(self, client, make_user, make_org, auth):
        owner = await make_user()
        org, _ = await make_org(owner)
        _, foreign = await make_org(await make_user())

        response = await client.delete(
            f"/api/v1/organisations/{org.id}/users/{foreign.id}", headers=auth(owner)
        )
        assert response.status_code == 404
        assert _error(response)["code"] == "NotFound"

    async def test_outsider_gets_same_error_for_any_membership_id(self, client, make_user, make_org, auth):
        owner = await make_user()
        org, membership = await make_org(owner)
        outsider = await make_user()
        base = f"/api/v1/organisations/{org.id}/users"

        real = await client.get(f"{base}/{membership.id}", headers=auth(outsider))
        fake = await client.get(f"{base}/{uuid.uuid4()}", headers=auth(outsider))

        assert real.status_code == fake.status_code == 403
        assert _error(real) == _error(fake)
        assert _error(real)["code"] == "NoAccess"

    async def test_admin_changing_own_role(self, client, make_user, make_org, add, auth):
        owner = await make_user()
        admin = await make_user()
        org, _ = await make_org(owner)
        membership = await add(admin, org, Role.ADMIN)

        response = await client.patch(
            f"/api/v1/organisations/{org.id}/users/{membership.id}",
            json={"role": "OWNER"},
            headers=auth(admin),
        )
        assert response.status_code == 400
        assert _error(response)["code"] == "SelfActionDenied"

    async def test_read_views_include_user_summary(self, client, make_user, make_org, auth):
        owner = await make_user("ada@example.com")
        org, membership = await make_org(owner)
        base = f"/api/v1/organisations/{org.id}/users"

        listed = (await client.get(base, headers=auth(owner))).json()["data"]
        assert listed[0]["user"]["email"] == "ada@example.com"
        assert listed[0]["user"]["id"] == str(owner.id)

        fetched = (await client.get(f"{base}/{membership.id}", headers=auth(owner))).json()
        assert fetched["user"] == {
            "id": str(owner.id),
            "email": "ada@example.com",
            "first_name": None,
            "last_name": None,
        }
