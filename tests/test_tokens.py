from datetime import timedelta
from uuid import uuid4

import jwt
import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.base import Base
from ekklesia_api.models.token import AccessToken, RefreshToken
from ekklesia_api.services import (
    bootstrap_system_catalog,
    issue_token_pair,
    refresh_token_pair,
    revoke_access_token,
    revoke_all_tokens,
    verify_access_token,
)
from ekklesia_api.utils.clock import as_utc, utc_now
from factories import TENANT_A, make_user


def _claims(token_string: str, public_key: str) -> dict:
    return jwt.decode(token_string, public_key, algorithms=["RS256"], options={"verify_aud": False})


def _signed(private_key: str, **overrides) -> str:
    now = utc_now()
    payload = {
        "aud": "ekklesia-password-client",
        "jti": "not-in-store",
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int((now + timedelta(hours=1)).timestamp()),
        "sub": str(uuid4()),
        "scopes": [],
    }
    payload.update(overrides)
    return jwt.encode(payload, private_key, algorithm="RS256")


def test_issue_token_pair_persists_records_and_signs_claims(db_session: Session, rsa_key_pair):
    user = make_user(db_session, "alice@example.com", tenant_id=TENANT_A)

    pair = issue_token_pair(db_session, user, client_id="mobile-app", scopes=["read", "write"])

    assert pair.access_token.revoked is False
    assert pair.refresh_token.revoked is False
    assert pair.refresh_token.access_token_id == pair.access_token.id
    claims = _claims(pair.access_token_string, rsa_key_pair[1])
    assert claims["aud"] == "mobile-app"
    assert claims["sub"] == str(user.id)
    assert claims["jti"] == pair.access_token.id
    assert claims["scopes"] == ["read", "write"]
    assert claims["nbf"] == claims["iat"]
    assert claims["exp"] - claims["iat"] == 6 * 3600
    refresh_ttl = as_utc(pair.refresh_token.expires_at) - as_utc(pair.access_token.expires_at)
    assert abs(refresh_ttl - timedelta(days=30) + timedelta(hours=6)) < timedelta(seconds=5)


def test_issue_token_pair_uses_default_client(db_session: Session, rsa_key_pair):
    user = make_user(db_session, "bob@example.com", tenant_id=TENANT_A)

    pair = issue_token_pair(db_session, user)

    assert pair.access_token.client_id == "ekklesia-password-client"
    assert _claims(pair.access_token_string, rsa_key_pair[1])["scopes"] == []


def test_verify_access_token_returns_store_backed_identity(db_session: Session):
    user = make_user(db_session, "carol@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user, scopes=["read"])

    verified = verify_access_token(db_session, pair.access_token_string)

    assert verified.user_id == user.id
    assert verified.token_id == pair.access_token.id
    assert verified.scopes == ("read",)


def test_revoked_token_fails_before_its_signed_expiry(db_session: Session):
    user = make_user(db_session, "dave@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user)
    revoke_access_token(db_session, pair.access_token.id)

    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, pair.access_token_string)

    assert exc.value.code == AuthErrorCode.REVOKED
    assert exc.value.public_code == AuthErrorCode.INVALID_TOKEN


@pytest.mark.parametrize(
    ("token_builder", "expected"),
    [
        (lambda keys, other: "definitely-not-a-jwt", AuthErrorCode.MALFORMED),
        (lambda keys, other: _signed(other), AuthErrorCode.SIGNATURE_INVALID),
        (
            lambda keys, other: jwt.encode({"sub": "x", "jti": "y"}, "a-shared-secret-of-sufficient-length", algorithm="HS256"),
            AuthErrorCode.SIGNATURE_INVALID,
        ),
        (
            lambda keys, other: _signed(keys[0], exp=int((utc_now() - timedelta(minutes=5)).timestamp())),
            AuthErrorCode.EXPIRED,
        ),
        (lambda keys, other: _signed(keys[0]), AuthErrorCode.UNKNOWN_TOKEN),
    ],
    ids=["malformed", "foreign-key", "symmetric-alg", "expired", "unknown-jti"],
)
def test_verify_access_token_classifies_failures(
    db_session: Session, rsa_key_pair, foreign_private_key, token_builder, expected
):
    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, token_builder(rsa_key_pair, foreign_private_key))

    assert exc.value.code == expected


def test_token_missing_required_claims_is_malformed(db_session: Session, rsa_key_pair):
    token = jwt.encode({"sub": str(uuid4())}, rsa_key_pair[0], algorithm="RS256")

    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, token)

    assert exc.value.code == AuthErrorCode.MALFORMED


def test_token_with_foreign_subject_is_unknown(db_session: Session, rsa_key_pair):
    user = make_user(db_session, "erin@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user)
    forged = _signed(rsa_key_pair[0], jti=pair.access_token.id, sub=str(uuid4()))

    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, forged)

    assert exc.value.code == AuthErrorCode.UNKNOWN_TOKEN


def test_refresh_rotates_pair_and_revokes_old_records(db_session: Session):
    user = make_user(db_session, "frank@example.com", tenant_id=TENANT_A)
    old = issue_token_pair(db_session, user, client_id="web", scopes=["read"])
    db_session.commit()

    new = refresh_token_pair(db_session, old.refresh_token.id)
    db_session.commit()

    assert new.access_token.id != old.access_token.id
    assert new.access_token.user_id == user.id
    assert new.access_token.client_id == "web"
    assert new.access_token.scopes == ["read"]
    assert db_session.get(AccessToken, old.access_token.id).revoked is True
    assert db_session.get(RefreshToken, old.refresh_token.id).revoked is True
    with pytest.raises(AuthError) as exc:
        verify_access_token(db_session, old.access_token_string)
    assert exc.value.code == AuthErrorCode.REVOKED
    assert verify_access_token(db_session, new.access_token_string).user_id == user.id


def test_refresh_token_is_single_use(db_session: Session):
    user = make_user(db_session, "gina@example.com", tenant_id=TENANT_A)
    old = issue_token_pair(db_session, user)
    refresh_token_pair(db_session, old.refresh_token.id)

    with pytest.raises(AuthError) as exc:
        refresh_token_pair(db_session, old.refresh_token.id)

    assert exc.value.code == AuthErrorCode.INVALID_OR_REVOKED_TOKEN


def test_refresh_failure_order(db_session: Session):
    user = make_user(db_session, "hank@example.com", tenant_id=TENANT_A)

    with pytest.raises(AuthError) as unknown:
        refresh_token_pair(db_session, "missing-refresh-token")
    assert unknown.value.code == AuthErrorCode.INVALID_OR_REVOKED_TOKEN

    expired = issue_token_pair(db_session, user)
    expired.refresh_token.expires_at = utc_now() - timedelta(seconds=1)
    db_session.flush()
    with pytest.raises(AuthError) as exc_expired:
        refresh_token_pair(db_session, expired.refresh_token.id)
    assert exc_expired.value.code == AuthErrorCode.EXPIRED_TOKEN

    orphaned = issue_token_pair(db_session, user)
    db_session.delete(orphaned.access_token)
    db_session.flush()
    with pytest.raises(AuthError) as exc_orphaned:
        refresh_token_pair(db_session, orphaned.refresh_token.id)
    assert exc_orphaned.value.code == AuthErrorCode.ORPHANED_TOKEN
    assert db_session.get(RefreshToken, orphaned.refresh_token.id).revoked is False


def test_refresh_is_refused_for_deactivated_account(db_session: Session):
    user = make_user(db_session, "ivy@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user)
    user.active = False
    db_session.flush()

    with pytest.raises(AuthError) as exc:
        refresh_token_pair(db_session, pair.refresh_token.id)

    assert exc.value.code == AuthErrorCode.ACCOUNT_INACTIVE
    assert db_session.get(RefreshToken, pair.refresh_token.id).revoked is False
    assert db_session.get(AccessToken, pair.access_token.id).revoked is False
    issued = db_session.execute(select(func.count(AccessToken.id)).where(AccessToken.user_id == user.id)).scalar_one()
    assert issued == 1


def test_concurrent_refresh_has_exactly_one_winner(tmp_path):
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'refresh.db'}", future=True)
    Base.metadata.create_all(engine)
    local_session = sessionmaker(bind=engine, autoflush=False, autocommit=False, class_=Session)

    with local_session() as setup:
        bootstrap_system_catalog(setup)
        user = make_user(setup, "race@example.com", tenant_id=TENANT_A)
        pair = issue_token_pair(setup, user)
        user_id = user.id
        refresh_id = pair.refresh_token.id
        setup.commit()

    first = local_session()
    second = local_session()
    try:
        # 第二个会话先读到未吊销的刷新令牌，模拟并发请求同时通过前置检查。
        assert second.get(RefreshToken, refresh_id).revoked is False

        winner = refresh_token_pair(first, refresh_id)
        first.commit()

        with pytest.raises(AuthError) as exc:
            refresh_token_pair(second, refresh_id)
        second.rollback()

        assert exc.value.code == AuthErrorCode.INVALID_OR_REVOKED_TOKEN
        live_tokens = first.execute(
            select(func.count(AccessToken.id))
            .where(AccessToken.user_id == user_id)
            .where(AccessToken.revoked.is_(False))
        ).scalar_one()
        assert live_tokens == 1
        assert verify_access_token(first, winner.access_token_string).user_id == user_id
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_revoke_all_tokens_only_touches_the_given_user(db_session: Session):
    alice = make_user(db_session, "ivy@example.com", tenant_id=TENANT_A)
    bob = make_user(db_session, "jack@example.com", tenant_id=TENANT_A)
    alice_pairs = [issue_token_pair(db_session, alice) for _ in range(3)]
    bob_pair = issue_token_pair(db_session, bob)

    revoked = revoke_all_tokens(db_session, alice.id)
    db_session.commit()

    assert revoked == 3
    for pair in alice_pairs:
        assert db_session.get(AccessToken, pair.access_token.id).revoked is True
        assert db_session.get(RefreshToken, pair.refresh_token.id).revoked is True
    assert db_session.get(AccessToken, bob_pair.access_token.id).revoked is False
    assert db_session.get(RefreshToken, bob_pair.refresh_token.id).revoked is False
    assert revoke_all_tokens(db_session, alice.id) == 0


def test_revoke_access_token_revokes_owned_refresh_token(db_session: Session):
    user = make_user(db_session, "kate@example.com", tenant_id=TENANT_A)
    pair = issue_token_pair(db_session, user)

    assert revoke_access_token(db_session, pair.access_token.id) is True
    assert revoke_access_token(db_session, "unknown") is False

    assert db_session.get(RefreshToken, pair.refresh_token.id).revoked is True
    with pytest.raises(AuthError) as exc:
        refresh_token_pair(db_session, pair.refresh_token.id)
    assert exc.value.code == AuthErrorCode.INVALID_OR_REVOKED_TOKEN
