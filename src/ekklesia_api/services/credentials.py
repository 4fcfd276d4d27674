"""凭据存储：口令哈希、登录校验与用户创建。"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.enums import UserType
from ekklesia_api.models.rbac import Role
from ekklesia_api.models.user import User
from ekklesia_api.utils.clock import utc_now

logger = logging.getLogger("ekklesia_api.credentials")

# 邮箱不存在时用于对齐耗时的占位哈希，避免按响应时间枚举邮箱。
_DUMMY_PASSWORD_HASH: str | None = None


def normalize_email(email: str) -> str:
    """统一邮箱格式（去空白 + 小写）。"""
    return email.strip().lower()


def hash_password(password: str) -> str:
    """使用 PBKDF2-SHA256 生成口令哈希。"""
    settings = get_settings()
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        settings.auth_password_hash_iterations,
    )
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"pbkdf2_sha256${settings.auth_password_hash_iterations}${salt_b64}${digest_b64}"


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配，摘要比较为常量时间。"""
    try:
        algorithm, iterations_text, salt_b64, expected_digest_b64 = password_hash.split("$", 3)
        if algorithm != "pbkdf2_sha256":
            return False
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected_digest = base64.b64decode(expected_digest_b64.encode("ascii"))
    except (ValueError, TypeError, binascii.Error):
        return False

    actual_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations,
    )
    return hmac.compare_digest(actual_digest, expected_digest)


def _dummy_password_hash() -> str:
    global _DUMMY_PASSWORD_HASH
    if _DUMMY_PASSWORD_HASH is None:
        _DUMMY_PASSWORD_HASH = hash_password(secrets.token_urlsafe(16))
    return _DUMMY_PASSWORD_HASH


def validate_password_policy(password: str) -> None:
    settings = get_settings()
    if len(password) < settings.auth_password_min_length:
        raise AuthError(
            AuthErrorCode.WEAK_PASSWORD,
            f"The password must be at least {settings.auth_password_min_length} characters.",
            field="password",
        )


def ensure_account_active(db: Session, user: User, *, field: str | None = None) -> Role | None:
    """校验账号与其角色仍可用，返回当前角色。

    已软删除的角色视同未分配角色：账号仍可登录，但不再继承该角色的任何权限。
    仅停用（未删除）的角色才会拒绝访问。
    """
    if not user.is_usable:
        raise AuthError(AuthErrorCode.ACCOUNT_INACTIVE, field=field, detail=f"user={user.id} inactive or deleted")

    role = db.get(Role, user.role_id) if user.role_id else None
    if role is not None and role.is_deleted:
        logger.info("user=%s bound to deleted role=%s, treated as no role", user.id, role.id)
        return None
    if role is not None and get_settings().auth_check_role_active and not role.active:
        raise AuthError(
            AuthErrorCode.ACCOUNT_INACTIVE,
            "Your role has been deactivated. Please contact the administrator.",
            field=field,
            detail=f"user={user.id} role={role.id} inactive",
        )
    return role


def verify_credentials(db: Session, *, email: str, password: str) -> User:
    """校验登录凭据。

    判定规则：
    1. 邮箱不存在与口令错误返回同一错误，且都执行一次完整哈希计算。
    2. 软删除用户视同不存在。
    3. 口令正确后才检查账号/角色停用状态，避免向未持有口令者泄露账号状态。
    """
    user = (
        db.execute(select(User).where(User.email == normalize_email(email)).where(User.deleted_at.is_(None)))
        .scalar_one_or_none()
    )
    if user is None:
        verify_password(password, _dummy_password_hash())
        raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, field="email", detail="unknown email")
    if not verify_password(password, user.password_hash):
        raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, field="email", detail=f"password mismatch user={user.id}")

    ensure_account_active(db, user, field="email")
    user.last_login_at = utc_now()
    db.flush()
    return user


def _default_role(db: Session) -> Role | None:
    settings = get_settings()
    return (
        db.execute(
            select(Role)
            .where(Role.name == settings.rbac_default_role)
            .where(Role.tenant_id.is_(None))
            .where(Role.is_custom.is_(False))
            .where(Role.deleted_at.is_(None))
        )
        .scalars()
        .first()
    )


def create_user(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    tenant_id: UUID | None = None,
    role_id: UUID | None = None,
    user_type: int | None = None,
    is_primary_admin: bool = False,
) -> User:
    """创建用户，仅保存口令哈希。

    未指定角色时绑定默认系统角色；未指定类型的租户用户按普通用户处理。
    """
    validate_password_policy(password)
    normalized_email = normalize_email(email)
    existing = db.execute(select(User.id).where(User.email == normalized_email)).first()
    if existing is not None:
        raise AuthError(AuthErrorCode.DUPLICATE_EMAIL, field="email")

    if role_id is None:
        default_role = _default_role(db)
        role_id = default_role.id if default_role else None
    if user_type is None and tenant_id is not None:
        user_type = UserType.TENANT_USER

    user = User(
        id=uuid4(),
        name=name.strip(),
        email=normalized_email,
        password_hash=hash_password(password),
        tenant_id=tenant_id,
        role_id=role_id,
        user_type=user_type,
        is_primary_admin=is_primary_admin,
        active=True,
    )
    db.add(user)
    db.flush()
    logger.info("user created user=%s tenant=%s", user.id, tenant_id)
    return user
