"""令牌签发、轮换、吊销与校验。

访问令牌对外表现为签名断言（JWT），但仍以存储中的记录为准：
签名有效且记录未吊销才算通过，吊销因此可以早于令牌自身过期生效。
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import secrets
from typing import Any
from uuid import UUID

import jwt
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.core.security import (
    cache_revoked_jti,
    is_jti_cached_as_revoked,
    load_signing_key,
    load_verification_key,
)
from ekklesia_api.models.token import AccessToken, RefreshToken
from ekklesia_api.models.user import User
from ekklesia_api.services.credentials import ensure_account_active
from ekklesia_api.utils.clock import as_utc, utc_now

logger = logging.getLogger("ekklesia_api.tokens")

_REQUIRED_CLAIMS = ["aud", "jti", "iat", "nbf", "exp", "sub"]


def _new_token_id() -> str:
    """生成不透明令牌标识。"""
    return secrets.token_hex(40)


@dataclass(frozen=True)
class TokenClaims:
    """签名断言的声明集，签发时一次性构造。"""

    # 客户端标识。
    audience: str
    # 访问令牌 ID。
    token_id: str
    # 用户 ID。
    subject: UUID
    issued_at: datetime
    not_before: datetime
    expires_at: datetime
    scopes: tuple[str, ...] = ()

    @classmethod
    def for_access_token(cls, record: AccessToken, *, issued_at: datetime) -> "TokenClaims":
        return cls(
            audience=record.client_id,
            token_id=record.id,
            subject=record.user_id,
            issued_at=issued_at,
            not_before=issued_at,
            expires_at=as_utc(record.expires_at),
            scopes=tuple(record.scopes or ()),
        )

    def to_jwt_payload(self) -> dict[str, Any]:
        return {
            "aud": self.audience,
            "jti": self.token_id,
            "iat": int(self.issued_at.timestamp()),
            "nbf": int(self.not_before.timestamp()),
            "exp": int(self.expires_at.timestamp()),
            "sub": str(self.subject),
            "scopes": list(self.scopes),
        }


@dataclass
class IssuedTokenPair:
    """签发结果。"""

    access_token: AccessToken
    refresh_token: RefreshToken
    # 交给客户端的签名访问令牌。
    access_token_string: str

    @property
    def expires_in(self) -> int:
        return max(0, int((as_utc(self.access_token.expires_at) - utc_now()).total_seconds()))


@dataclass(frozen=True)
class VerifiedToken:
    """校验通过的令牌信息。"""

    user_id: UUID
    token_id: str
    client_id: str
    scopes: tuple[str, ...] = field(default_factory=tuple)


def _sign(claims: TokenClaims) -> str:
    settings = get_settings()
    return jwt.encode(claims.to_jwt_payload(), load_signing_key(), algorithm=settings.auth_jwt_algorithm)


def issue_token_pair(
    db: Session,
    user: User,
    *,
    client_id: str | None = None,
    scopes: list[str] | None = None,
) -> IssuedTokenPair:
    """签发一对新的访问/刷新令牌并写入存储（仅 flush，由调用方提交）。"""
    settings = get_settings()
    now = utc_now()
    access_token = AccessToken(
        id=_new_token_id(),
        user_id=user.id,
        client_id=client_id or settings.auth_default_client_id,
        scopes=list(scopes or []),
        revoked=False,
        expires_at=now + timedelta(seconds=settings.auth_access_token_ttl_seconds),
    )
    refresh_token = RefreshToken(
        id=_new_token_id(),
        access_token_id=access_token.id,
        revoked=False,
        expires_at=now + timedelta(seconds=settings.auth_refresh_token_ttl_seconds),
    )
    db.add(access_token)
    db.add(refresh_token)
    db.flush()

    token_string = _sign(TokenClaims.for_access_token(access_token, issued_at=now))
    logger.info("token pair issued user=%s client=%s jti=%s", user.id, access_token.client_id, access_token.id)
    return IssuedTokenPair(access_token=access_token, refresh_token=refresh_token, access_token_string=token_string)


def refresh_token_pair(db: Session, refresh_token_id: str) -> IssuedTokenPair:
    """使用刷新令牌轮换出一对新令牌。

    判定顺序：
    1. 刷新令牌不存在或已吊销 -> INVALID_OR_REVOKED_TOKEN。
    2. 刷新令牌过期 -> EXPIRED_TOKEN。
    3. 关联访问令牌或其用户缺失 -> ORPHANED_TOKEN。
    4. 用户或其角色已停用 -> ACCOUNT_INACTIVE，刷新令牌保持原状。
    5. 以条件更新抢占吊销刷新令牌，抢占失败说明已被并发请求使用。
    6. 吊销旧访问令牌并签发新令牌。
    全部步骤在调用方的同一事务中完成，任一步失败由调用方回滚。
    """
    refresh_token = db.get(RefreshToken, refresh_token_id)
    if refresh_token is None or refresh_token.revoked:
        raise AuthError(AuthErrorCode.INVALID_OR_REVOKED_TOKEN, detail="refresh token missing or revoked")
    if as_utc(refresh_token.expires_at) <= utc_now():
        raise AuthError(AuthErrorCode.EXPIRED_TOKEN, detail=f"refresh token expired id={refresh_token.id[:12]}")

    access_token = db.get(AccessToken, refresh_token.access_token_id)
    if access_token is None:
        raise AuthError(AuthErrorCode.ORPHANED_TOKEN, detail=f"access token missing for refresh id={refresh_token.id[:12]}")

    user = db.get(User, access_token.user_id)
    if user is None:
        raise AuthError(AuthErrorCode.ORPHANED_TOKEN, detail=f"user missing for jti={access_token.id[:12]}")
    ensure_account_active(db, user)

    claimed = db.execute(
        update(RefreshToken)
        .where(RefreshToken.id == refresh_token.id)
        .where(RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        raise AuthError(AuthErrorCode.INVALID_OR_REVOKED_TOKEN, detail="refresh token consumed concurrently")
    refresh_token.revoked = True

    db.execute(
        update(AccessToken)
        .where(AccessToken.id == access_token.id)
        .values(revoked=True)
        .execution_options(synchronize_session=False)
    )
    access_token.revoked = True

    pair = issue_token_pair(db, user, client_id=access_token.client_id, scopes=list(access_token.scopes or []))
    cache_revoked_jti(access_token.id, as_utc(access_token.expires_at))
    logger.info("token pair rotated user=%s old_jti=%s new_jti=%s", user.id, access_token.id, pair.access_token.id)
    return pair


def revoke_all_tokens(db: Session, user_id: UUID) -> int:
    """吊销用户全部访问令牌及其刷新令牌，返回本次吊销的访问令牌数。

    两条批量更新位于同一事务，调用方提交后整体生效。
    """
    live_tokens = db.execute(
        select(AccessToken.id, AccessToken.expires_at)
        .where(AccessToken.user_id == user_id)
        .where(AccessToken.revoked.is_(False))
    ).all()

    db.execute(
        update(AccessToken)
        .where(AccessToken.user_id == user_id)
        .where(AccessToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session="fetch")
    )
    owned_ids = select(AccessToken.id).where(AccessToken.user_id == user_id)
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.access_token_id.in_(owned_ids))
        .where(RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()

    for token_id, expires_at in live_tokens:
        cache_revoked_jti(token_id, as_utc(expires_at))
    logger.info("all tokens revoked user=%s count=%s", user_id, len(live_tokens))
    return len(live_tokens)


def revoke_access_token(db: Session, access_token_id: str) -> bool:
    """吊销单个访问令牌及其刷新令牌，返回令牌是否存在。"""
    access_token = db.get(AccessToken, access_token_id)
    if access_token is None:
        return False
    access_token.revoked = True
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.access_token_id == access_token_id)
        .values(revoked=True)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    cache_revoked_jti(access_token.id, as_utc(access_token.expires_at))
    logger.info("access token revoked user=%s jti=%s", access_token.user_id, access_token.id)
    return True


def _decode(token_string: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        return jwt.decode(
            token_string,
            key=load_verification_key(),
            algorithms=[settings.auth_jwt_algorithm],
            leeway=settings.auth_jwt_leeway_seconds,
            options={"require": _REQUIRED_CLAIMS, "verify_aud": False},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError(AuthErrorCode.EXPIRED, detail="exp claim in the past") from exc
    except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError) as exc:
        raise AuthError(AuthErrorCode.SIGNATURE_INVALID, detail=str(exc)) from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError(AuthErrorCode.MALFORMED, detail=str(exc)) from exc


def verify_access_token(db: Session, token_string: str) -> VerifiedToken:
    """校验访问令牌。

    判定顺序：结构 -> 签名 -> 过期 -> 存储状态（存在、未吊销、主体一致）。
    """
    claims = _decode(token_string)

    jti = claims.get("jti")
    subject = claims.get("sub")
    if not isinstance(jti, str) or not jti:
        raise AuthError(AuthErrorCode.MALFORMED, detail="jti claim is not a string")
    try:
        user_id = UUID(str(subject))
    except ValueError as exc:
        raise AuthError(AuthErrorCode.MALFORMED, detail="sub claim is not a user id") from exc

    if is_jti_cached_as_revoked(jti):
        raise AuthError(AuthErrorCode.REVOKED, detail="jti found in revocation cache")

    record = db.get(AccessToken, jti)
    if record is None:
        raise AuthError(AuthErrorCode.UNKNOWN_TOKEN, detail="jti not found in store")
    if record.revoked:
        raise AuthError(AuthErrorCode.REVOKED, detail="access token revoked in store")
    if record.user_id != user_id:
        raise AuthError(AuthErrorCode.UNKNOWN_TOKEN, detail="sub does not match stored owner")
    if as_utc(record.expires_at) <= utc_now():
        raise AuthError(AuthErrorCode.EXPIRED, detail="stored expiry in the past")

    return VerifiedToken(
        user_id=record.user_id,
        token_id=record.id,
        client_id=record.client_id,
        scopes=tuple(record.scopes or ()),
    )
