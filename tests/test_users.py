import pytest
from sqlalchemy.orm import Session

from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.enums import SystemRole
from ekklesia_api.services import (
    assign_to_user,
    create_custom_permission,
    create_custom_role,
    create_tenant_user,
    delete_user,
    effective_permissions,
    issue_token_pair,
    list_users,
    set_user_active,
    update_custom_permission,
    update_user,
    user_permission_view,
    user_statistics,
    verify_access_token,
    verify_credentials,
)
from factories import DEFAULT_PASSWORD, TENANT_A, TENANT_B, make_super_admin, make_user, permission_named, system_role


@pytest.fixture
def admin_a(db_session: Session):
    return make_user(db_session, "admin-a@example.com", tenant_id=TENANT_A, role=SystemRole.EKKLESIA_ADMIN)


def test_create_tenant_user_defaults_to_actor_tenant_and_default_role(db_session: Session, admin_a):
    user = create_tenant_user(db_session, actor=admin_a, name="Maria", email="Maria@Example.com", password=DEFAULT_PASSWORD)

    assert user.tenant_id == TENANT_A
    assert user.email == "maria@example.com"
    assert user.role_id == system_role(db_session, SystemRole.EKKLESIA_USER).id
    assert verify_credentials(db_session, email="maria@example.com", password=DEFAULT_PASSWORD).id == user.id


def test_create_tenant_user_with_custom_role(db_session: Session, admin_a):
    role = create_custom_role(db_session, tenant_id=TENANT_A, name="Catechist", level=5)

    user = create_tenant_user(
        db_session, actor=admin_a, name="Paul", email="paul@example.com", password=DEFAULT_PASSWORD, role_id=role.id
    )

    assert user.role_id == role.id


def test_create_tenant_user_guards(db_session: Session, admin_a):
    root = make_super_admin(db_session)
    role_b = create_custom_role(db_session, tenant_id=TENANT_B, name="Usher", level=5)
    super_role = system_role(db_session, SystemRole.SUPER_ADMIN)

    with pytest.raises(AuthError) as no_tenant:
        create_tenant_user(db_session, actor=root, name="Ann", email="ann@example.com", password=DEFAULT_PASSWORD)
    with pytest.raises(AuthError) as cross:
        create_tenant_user(
            db_session, actor=admin_a, name="Ben", email="ben@example.com", password=DEFAULT_PASSWORD, tenant_id=TENANT_B
        )
    with pytest.raises(AuthError) as foreign_role:
        create_tenant_user(
            db_session, actor=admin_a, name="Cid", email="cid@example.com", password=DEFAULT_PASSWORD, role_id=role_b.id
        )
    with pytest.raises(AuthError) as escalation:
        create_tenant_user(
            db_session, actor=admin_a, name="Dan", email="dan@example.com", password=DEFAULT_PASSWORD, role_id=super_role.id
        )

    assert no_tenant.value.code == AuthErrorCode.NO_TENANT_MEMBERSHIP
    assert cross.value.code == AuthErrorCode.CROSS_TENANT_ACCESS
    assert foreign_role.value.code == AuthErrorCode.ROLE_NOT_FOUND
    assert escalation.value.code == AuthErrorCode.FORBIDDEN
    created = create_tenant_user(
        db_session, actor=root, name="Eve", email="eve@example.com", password=DEFAULT_PASSWORD, tenant_id=TENANT_B
    )
    assert created.tenant_id == TENANT_B


def test_list_users_is_scoped_to_tenant(db_session: Session, admin_a):
    make_user(db_session, "member-a@example.com", tenant_id=TENANT_A)
    make_user(db_session, "member-b@example.com", tenant_id=TENANT_B)
    quiet = make_user(db_session, "quiet-a@example.com", tenant_id=TENANT_A)
    quiet.active = False
    db_session.flush()
    root = make_super_admin(db_session)

    own = list_users(db_session, actor=admin_a)
    inactive = list_users(db_session, actor=admin_a, active=False)
    searched = list_users(db_session, actor=admin_a, search="MEMBER")
    as_root = list_users(db_session, actor=root, tenant_id=TENANT_B)

    assert {user.email for user in own} == {"admin-a@example.com", "member-a@example.com", "quiet-a@example.com"}
    assert [user.email for user in inactive] == ["quiet-a@example.com"]
    assert [user.email for user in searched] == ["member-a@example.com"]
    assert [user.email for user in as_root] == ["member-b@example.com"]
    with pytest.raises(AuthError) as exc:
        list_users(db_session, actor=admin_a, tenant_id=TENANT_B)
    assert exc.value.code == AuthErrorCode.CROSS_TENANT_ACCESS


def test_update_user_email_and_password(db_session: Session):
    user = make_user(db_session, "frank@example.com", tenant_id=TENANT_A)
    make_user(db_session, "taken@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user)

    with pytest.raises(AuthError) as duplicate:
        update_user(db_session, user, email="TAKEN@example.com")
    with pytest.raises(AuthError) as weak:
        update_user(db_session, user, password="short")
    revoked = update_user(db_session, user, name=" Franklin ", email="Franklin@Example.com", password="N3w-passw0rd")

    assert duplicate.value.code == AuthErrorCode.DUPLICATE_EMAIL
    assert weak.value.code == AuthErrorCode.WEAK_PASSWORD
    assert revoked == 1
    assert user.name == "Franklin"
    assert verify_credentials(db_session, email="franklin@example.com", password="N3w-passw0rd").id == user.id
    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, pair.access_token_string)
    assert exc.value.code == AuthErrorCode.REVOKED


def test_delete_user_soft_deletes_and_revokes_tokens(db_session: Session, admin_a):
    member = make_user(db_session, "member@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, member)

    revoked = delete_user(db_session, member, actor=admin_a)

    assert revoked == 1
    assert member.is_deleted is True
    with pytest.raises(AuthError) as token_exc:
        verify_access_token(db_session, pair.access_token_string)
    with pytest.raises(AuthError) as login_exc:
        verify_credentials(db_session, email="member@example.com", password=DEFAULT_PASSWORD)
    assert token_exc.value.code == AuthErrorCode.REVOKED
    assert login_exc.value.code == AuthErrorCode.INVALID_CREDENTIALS
    assert "member@example.com" not in {user.email for user in list_users(db_session, actor=admin_a)}


def test_self_and_primary_admin_are_protected(db_session: Session, admin_a):
    owner = make_user(db_session, "owner@example.com", tenant_id=TENANT_A, is_primary_admin=True)

    with pytest.raises(AuthError) as self_delete:
        delete_user(db_session, admin_a, actor=admin_a)
    with pytest.raises(AuthError) as self_deactivate:
        set_user_active(db_session, admin_a, active=False, actor=admin_a)
    with pytest.raises(AuthError) as owner_delete:
        delete_user(db_session, owner, actor=admin_a)

    assert self_delete.value.code == AuthErrorCode.FORBIDDEN
    assert self_deactivate.value.code == AuthErrorCode.FORBIDDEN
    assert owner_delete.value.code == AuthErrorCode.FORBIDDEN
    assert owner.is_deleted is False
    assert set_user_active(db_session, admin_a, active=True, actor=admin_a) == 0


def test_user_statistics_counts_by_role(db_session: Session, admin_a):
    make_user(db_session, "member@example.com", tenant_id=TENANT_A)
    quiet = make_user(db_session, "quiet@example.com", tenant_id=TENANT_A)
    quiet.active = False
    make_user(db_session, "other@example.com", tenant_id=TENANT_B)
    db_session.flush()

    stats = user_statistics(db_session, actor=admin_a)

    assert (stats.total, stats.active, stats.inactive) == (3, 2, 1)
    assert [(item.role_name, item.count) for item in stats.by_role] == [("EkklesiaAdmin", 1), ("EkklesiaUser", 2)]


def test_user_permission_view_lists_direct_and_effective(db_session: Session):
    member = make_user(db_session, "member@example.com", tenant_id=TENANT_A)
    assign_to_user(db_session, user=member, permission=permission_named(db_session, "reports.view"))

    view = user_permission_view(db_session, member)

    assert view["role"] == "EkklesiaUser"
    assert view["is_super_admin"] is False
    assert view["direct_permissions"] == ["reports.view"]
    assert "reports.view" in view["permissions"]
    assert "families.view" in view["permissions"]
    assert view["permissions"] == sorted(view["permissions"])


def test_update_custom_permission(db_session: Session, admin_a):
    member = make_user(db_session, "member@example.com", tenant_id=TENANT_A)
    permission = create_custom_permission(db_session, tenant_id=TENANT_A, name="choir.schedule")
    assign_to_user(db_session, user=member, permission=permission)
    admin_b = make_user(db_session, "admin-b@example.com", tenant_id=TENANT_B, role=SystemRole.EKKLESIA_ADMIN)

    update_custom_permission(db_session, permission, actor=admin_a, display_name="Schedule Choir", active=False)

    assert permission.display_name == "Schedule Choir"
    assert permission.name == "choir.schedule"
    assert "choir.schedule" not in effective_permissions(db_session, member)
    with pytest.raises(AuthError) as system:
        update_custom_permission(db_session, permission_named(db_session, "users.view"), actor=admin_a, active=False)
    with pytest.raises(AuthError) as cross:
        update_custom_permission(db_session, permission, actor=admin_b, display_name="Hijack")
    assert system.value.code == AuthErrorCode.PROTECTED_ROLE
    assert cross.value.code == AuthErrorCode.CROSS_TENANT_ACCESS
