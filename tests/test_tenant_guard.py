import logging

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.user import User
from ekklesia_api.services import (
    authorize_tenant_access,
    ensure_tenant_access,
    get_tenant_user,
    resolve_tenant_context,
    scope_to_tenant,
)
from ekklesia_api.services.tenancy import is_super_admin
from ekklesia_api.utils.clock import utc_now
from factories import TENANT_A, TENANT_B, make_super_admin, make_user


def test_same_tenant_is_allowed(db_session: Session):
    user = make_user(db_session, "a@example.com", tenant_id=TENANT_A)

    assert authorize_tenant_access(user, TENANT_A).allowed is True
    assert authorize_tenant_access(user, None).allowed is True
    assert resolve_tenant_context(user) == TENANT_A


def test_other_tenant_is_denied(db_session: Session):
    user = make_user(db_session, "a@example.com", tenant_id=TENANT_A)

    decision = authorize_tenant_access(user, TENANT_B)

    assert decision.allowed is False
    assert decision.reason == AuthErrorCode.CROSS_TENANT_ACCESS


def test_user_without_tenant_is_denied(db_session: Session):
    user = make_user(db_session, "floating@example.com", tenant_id=None)

    decision = authorize_tenant_access(user, TENANT_A)

    assert decision.reason == AuthErrorCode.NO_TENANT_MEMBERSHIP
    assert is_super_admin(user) is False


def test_super_admin_bypass_can_be_disabled(db_session: Session):
    root = make_super_admin(db_session)

    assert authorize_tenant_access(root, TENANT_B).allowed is True
    assert resolve_tenant_context(root) is None
    denied = authorize_tenant_access(root, TENANT_B, super_admin_bypass=False)
    assert denied.reason == AuthErrorCode.NO_TENANT_MEMBERSHIP


def test_tenant_primary_admin_is_not_super_admin(db_session: Session):
    owner = make_user(db_session, "owner@example.com", tenant_id=TENANT_A, is_primary_admin=True)

    assert is_super_admin(owner) is False
    assert authorize_tenant_access(owner, TENANT_B).reason == AuthErrorCode.CROSS_TENANT_ACCESS


def test_ensure_tenant_access_logs_and_raises(db_session: Session, caplog):
    user = make_user(db_session, "a@example.com", tenant_id=TENANT_A)

    with caplog.at_level(logging.WARNING, logger="ekklesia_api.tenancy"):
        with pytest.raises(AuthError) as exc:
            ensure_tenant_access(user, TENANT_B)

    assert exc.value.code == AuthErrorCode.CROSS_TENANT_ACCESS
    assert "reason=CROSS_TENANT_ACCESS" in caplog.text


def test_scope_to_tenant_filters_rows(db_session: Session):
    make_user(db_session, "a1@example.com", tenant_id=TENANT_A)
    make_user(db_session, "a2@example.com", tenant_id=TENANT_A)
    make_user(db_session, "b1@example.com", tenant_id=TENANT_B)

    scoped = db_session.execute(scope_to_tenant(select(User.email), User.tenant_id, TENANT_A)).scalars().all()
    unscoped = db_session.execute(scope_to_tenant(select(User.email), User.tenant_id, None)).scalars().all()

    assert sorted(scoped) == ["a1@example.com", "a2@example.com"]
    assert len(unscoped) == 3


def test_get_tenant_user_enforces_boundary(db_session: Session):
    actor = make_user(db_session, "a@example.com", tenant_id=TENANT_A)
    colleague = make_user(db_session, "a2@example.com", tenant_id=TENANT_A)
    outsider = make_user(db_session, "b@example.com", tenant_id=TENANT_B)
    platform_user = make_user(db_session, "platform@example.com", tenant_id=None)
    root = make_super_admin(db_session)

    assert get_tenant_user(db_session, user_id=colleague.id, actor=actor) is colleague
    with pytest.raises(AuthError) as cross:
        get_tenant_user(db_session, user_id=outsider.id, actor=actor)
    with pytest.raises(AuthError) as platform:
        get_tenant_user(db_session, user_id=platform_user.id, actor=actor)

    assert cross.value.code == AuthErrorCode.CROSS_TENANT_ACCESS
    assert platform.value.code == AuthErrorCode.CROSS_TENANT_ACCESS
    assert get_tenant_user(db_session, user_id=platform_user.id, actor=root) is platform_user
    assert get_tenant_user(db_session, user_id=outsider.id, actor=root) is outsider


def test_get_tenant_user_missing(db_session: Session):
    actor = make_super_admin(db_session)
    deleted = make_user(db_session, "gone@example.com", tenant_id=TENANT_A)
    deleted.deleted_at = utc_now()
    db_session.flush()

    with pytest.raises(AuthError) as exc:
        get_tenant_user(db_session, user_id=deleted.id, actor=actor)

    assert exc.value.code == AuthErrorCode.USER_NOT_FOUND
