import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from ekklesia_api.models.enums import SystemRole
from factories import DEFAULT_PASSWORD, TENANT_A, TENANT_B, make_super_admin, make_user, system_role

API = "/api"


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _token(client: TestClient, email: str) -> str:
    resp = client.post(f"{API}/auth/login", json={"email": email, "password": DEFAULT_PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["access_token"]


@pytest.fixture
def tenants(client: TestClient, http_session_factory: sessionmaker) -> dict[str, str]:
    """两个租户各一名管理员与一名普通成员，外加超级管理员。"""
    with http_session_factory() as db:
        make_user(db, "admin-a@example.com", tenant_id=TENANT_A, role=SystemRole.EKKLESIA_ADMIN)
        make_user(db, "admin-b@example.com", tenant_id=TENANT_B, role=SystemRole.EKKLESIA_ADMIN)
        member_a = make_user(db, "member-a@example.com", tenant_id=TENANT_A)
        make_super_admin(db)
        ids = {
            "member_a": str(member_a.id),
            "admin_role": str(system_role(db, SystemRole.EKKLESIA_ADMIN).id),
            "manager_role": str(system_role(db, SystemRole.EKKLESIA_MANAGER).id),
            "super_role": str(system_role(db, SystemRole.SUPER_ADMIN).id),
        }
        db.commit()
    ids["a"] = _token(client, "admin-a@example.com")
    ids["b"] = _token(client, "admin-b@example.com")
    ids["member"] = _token(client, "member-a@example.com")
    ids["root"] = _token(client, "root@example.com")
    return ids


def _create_role(client: TestClient, token: str, **overrides):
    body = {"name": "Catechist", "level": 5, "permissions": ["families.create"]}
    body.update(overrides)
    return client.post(f"{API}/roles", json=body, headers=_auth(token))


def test_custom_role_lifecycle_within_tenant(client: TestClient, tenants):
    created = _create_role(client, tenants["a"], description="Teaches catechism")

    assert created.status_code == 201
    role = created.json()["data"]
    assert role["tenant_id"] == str(TENANT_A)
    assert role["is_custom"] is True
    assert role["permissions"] == ["families.create"]

    patched = client.patch(
        f"{API}/roles/{role['id']}",
        json={"level": 6, "permissions": ["families.create", "families.view"]},
        headers=_auth(tenants["a"]),
    )
    assert patched.status_code == 200
    assert patched.json()["data"]["level"] == 6
    assert patched.json()["data"]["permissions"] == ["families.create", "families.view"]

    deleted = client.delete(f"{API}/roles/{role['id']}", headers=_auth(tenants["a"]))
    assert deleted.status_code == 200
    assert deleted.json()["data"]["deleted_at"] is not None
    assert client.get(f"{API}/roles/{role['id']}", headers=_auth(tenants["a"])).status_code == 404

    restored = client.post(f"{API}/roles/{role['id']}/restore", headers=_auth(tenants["a"]))
    assert restored.status_code == 200
    assert restored.json()["data"]["deleted_at"] is None


def test_custom_role_validation_errors(client: TestClient, tenants):
    level = _create_role(client, tenants["a"], level=3)
    reserved = _create_role(client, tenants["a"], name="EkklesiaAdmin")
    unknown = _create_role(client, tenants["a"], permissions=["nope.view"])

    assert level.status_code == 422
    assert level.json()["error"]["code"] == "LEVEL_OUT_OF_RANGE"
    assert "level" in level.json()["errors"]
    assert reserved.json()["error"]["code"] == "DUPLICATE_NAME"
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "PERMISSION_NOT_FOUND"


def test_blank_role_name_is_a_validation_error(client: TestClient, tenants):
    blank = _create_role(client, tenants["a"], name="   ")
    padded = _create_role(client, tenants["a"], name="  Usher  ")

    assert blank.status_code == 422
    assert blank.json()["error"]["code"] == "VALIDATION_ERROR"
    assert "name" in blank.json()["errors"]
    assert padded.status_code == 201
    assert padded.json()["data"]["name"] == "Usher"


def test_roles_are_isolated_between_tenants(client: TestClient, tenants):
    role_id = _create_role(client, tenants["a"]).json()["data"]["id"]

    listing_b = client.get(f"{API}/roles", headers=_auth(tenants["b"])).json()["data"]
    detail_b = client.get(f"{API}/roles/{role_id}", headers=_auth(tenants["b"]))
    delete_b = client.delete(f"{API}/roles/{role_id}", headers=_auth(tenants["b"]))

    assert role_id not in {role["id"] for role in listing_b}
    assert {"EkklesiaAdmin", "EkklesiaUser"} <= {role["name"] for role in listing_b}
    assert detail_b.status_code == 404
    assert detail_b.json()["error"]["code"] == "ROLE_NOT_FOUND"
    assert delete_b.status_code == 404
    root_listing = client.get(f"{API}/roles", headers=_auth(tenants["root"])).json()["data"]
    assert role_id in {role["id"] for role in root_listing}


def test_system_roles_are_protected_over_http(client: TestClient, tenants):
    patched = client.patch(f"{API}/roles/{tenants['admin_role']}", json={"name": "Boss"}, headers=_auth(tenants["a"]))
    deleted = client.delete(f"{API}/roles/{tenants['admin_role']}", headers=_auth(tenants["root"]))
    toggled = client.post(f"{API}/roles/{tenants['manager_role']}/deactivate", headers=_auth(tenants["a"]))

    assert patched.status_code == 409
    assert patched.json()["error"]["code"] == "PROTECTED_ROLE"
    assert deleted.status_code == 409
    assert toggled.status_code == 403
    assert toggled.json()["error"]["code"] == "FORBIDDEN"


def test_role_in_use_cannot_be_deleted(client: TestClient, tenants):
    role_id = _create_role(client, tenants["a"]).json()["data"]["id"]

    assigned = client.patch(
        f"{API}/users/{tenants['member_a']}/role", json={"role_id": role_id}, headers=_auth(tenants["a"])
    )
    deleted = client.delete(f"{API}/roles/{role_id}", headers=_auth(tenants["a"]))

    assert assigned.status_code == 200
    assert assigned.json()["data"]["role_id"] == role_id
    assert deleted.status_code == 409
    assert deleted.json()["error"]["code"] == "ROLE_IN_USE"


def test_user_role_change_guards(client: TestClient, tenants):
    role_b = _create_role(client, tenants["b"], name="Usher").json()["data"]["id"]

    cross = client.patch(f"{API}/users/{tenants['member_a']}/role", json={"role_id": role_b}, headers=_auth(tenants["a"]))
    escalate = client.patch(
        f"{API}/users/{tenants['member_a']}/role", json={"role_id": tenants["super_role"]}, headers=_auth(tenants["a"])
    )
    foreign_user = client.patch(
        f"{API}/users/{tenants['member_a']}/role",
        json={"role_id": tenants["manager_role"]},
        headers=_auth(tenants["b"]),
    )

    assert cross.status_code == 404
    assert cross.json()["error"]["code"] == "ROLE_NOT_FOUND"
    assert escalate.status_code == 403
    assert escalate.json()["error"]["code"] == "FORBIDDEN"
    assert foreign_user.json()["error"]["code"] == "CROSS_TENANT_ACCESS"


def test_permission_assignment_endpoints(client: TestClient, tenants):
    role_id = _create_role(client, tenants["a"], permissions=[]).json()["data"]["id"]
    headers = _auth(tenants["a"])

    first = client.post(
        f"{API}/permissions/assign-to-role", json={"role_id": role_id, "permission": "reports.view"}, headers=headers
    )
    again = client.post(
        f"{API}/permissions/assign-to-role", json={"role_id": role_id, "permission": "reports.view"}, headers=headers
    )
    bulk = client.post(
        f"{API}/permissions/bulk-assign-to-role",
        json={"role_id": role_id, "permissions": ["files.view", "audit.view"]},
        headers=headers,
    )
    removed = client.post(
        f"{API}/permissions/remove-from-role", json={"role_id": role_id, "permission": "files.view"}, headers=headers
    )
    listing = client.get(f"{API}/permissions/role/{role_id}", headers=headers)

    assert first.json()["data"] == {"changed": True, "permissions": ["reports.view"]}
    assert again.json()["data"]["changed"] is False
    assert bulk.json()["data"] == {"changed": True, "permissions": ["audit.view", "files.view"]}
    assert removed.json()["data"] == {"changed": True, "permissions": ["audit.view"]}
    assert [item["name"] for item in listing.json()["data"]] == ["audit.view"]


def test_global_role_permissions_need_super_admin(client: TestClient, tenants):
    resp = client.post(
        f"{API}/permissions/assign-to-role",
        json={"role_id": tenants["manager_role"], "permission": "audit.view"},
        headers=_auth(tenants["a"]),
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


def test_direct_user_grants_and_custom_permissions(client: TestClient, tenants):
    created = client.post(
        f"{API}/permissions", json={"name": "choir.schedule", "display_name": "Schedule Choir"}, headers=_auth(tenants["a"])
    )
    grant = client.post(
        f"{API}/permissions/assign-to-user",
        json={"user_id": tenants["member_a"], "permission": "choir.schedule"},
        headers=_auth(tenants["a"]),
    )
    snapshot = client.get(f"{API}/auth/permissions", headers=_auth(tenants["member"])).json()["data"]
    visible_to_b = client.get(f"{API}/permissions", headers=_auth(tenants["b"])).json()["data"]

    assert created.status_code == 201
    assert created.json()["data"]["tenant_id"] == str(TENANT_A)
    assert grant.json()["data"]["changed"] is True
    assert "choir.schedule" in snapshot["permissions"]
    assert "choir.schedule" not in {item["name"] for item in visible_to_b}

    system_delete = client.get(f"{API}/permissions?module=families", headers=_auth(tenants["a"])).json()["data"][0]
    resp = client.delete(f"{API}/permissions/{system_delete['id']}", headers=_auth(tenants["a"]))
    assert resp.status_code == 409


def test_plain_member_cannot_manage_roles(client: TestClient, tenants):
    resp = _create_role(client, tenants["member"])

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


def test_tenant_scoped_listings(client: TestClient, tenants):
    own = client.get(f"{API}/tenants/{TENANT_A}/users", headers=_auth(tenants["a"]))
    other = client.get(f"{API}/tenants/{TENANT_B}/users", headers=_auth(tenants["a"]))
    as_root = client.get(f"{API}/tenants/{TENANT_B}/users", headers=_auth(tenants["root"]))

    assert own.status_code == 200
    assert {user["email"] for user in own.json()["data"]} == {"admin-a@example.com", "member-a@example.com"}
    assert other.status_code == 403
    assert other.json()["error"]["code"] == "CROSS_TENANT_ACCESS"
    assert [user["email"] for user in as_root.json()["data"]] == ["admin-b@example.com"]

    roles = client.get(f"{API}/tenants/{TENANT_A}/roles", headers=_auth(tenants["a"]))
    assert roles.status_code == 200
    assert all(role["tenant_id"] in (None, str(TENANT_A)) for role in roles.json()["data"])
