"""租户内用户管理。

目标用户一律通过 `get_tenant_user` 读取，租户边界在读取时即已校验；
本模块只负责写操作的业务约束，事务由路由层提交。
"""

from dataclasses import dataclass
import logging
from uuid import UUID

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.rbac import Permission, Role, UserPermission
from ekklesia_api.models.user import User
from ekklesia_api.services.credentials import create_user, hash_password, normalize_email, validate_password_policy
from ekklesia_api.services.permissions import (
    assign_role_to_user,
    effective_permissions,
    get_role,
    get_user_role,
)
from ekklesia_api.services.tenancy import ensure_tenant_access, is_super_admin, scope_to_tenant
from ekklesia_api.services.tokens import revoke_all_tokens
from ekklesia_api.utils.clock import utc_now

logger = logging.getLogger("ekklesia_api.users")


@dataclass(frozen=True)
class RoleUserCount:
    """单个角色下的用户数量。"""

    role_id: UUID | None
    # 未分配角色时为空。
    role_name: str | None
    count: int


@dataclass(frozen=True)
class UserStatistics:
    total: int
    active: int
    inactive: int
    by_role: list[RoleUserCount]


def _scope_tenant_id(actor: User, tenant_id: UUID | None) -> UUID | None:
    """解析查询范围：超级管理员可指定任意租户或全局，其余用户固定为本租户。"""
    if is_super_admin(actor):
        return tenant_id
    ensure_tenant_access(actor, tenant_id if tenant_id is not None else actor.tenant_id)
    return actor.tenant_id


def _ensure_not_protected(actor: User, user: User, action: str) -> None:
    if user.id == actor.id:
        raise AuthError(AuthErrorCode.FORBIDDEN, f"You cannot {action} your own account.", detail=f"self {action}")
    if user.is_primary_admin:
        raise AuthError(
            AuthErrorCode.FORBIDDEN,
            f"The primary admin account cannot be {action}d.",
            detail=f"primary admin {action} user={user.id}",
        )


def list_users(
    db: Session,
    *,
    actor: User,
    tenant_id: UUID | None = None,
    active: bool | None = None,
    role_id: UUID | None = None,
    search: str | None = None,
) -> list[User]:
    """按租户范围列出未删除用户，支持状态、角色与名称/邮箱过滤。"""
    scope = _scope_tenant_id(actor, tenant_id)
    stmt = scope_to_tenant(select(User).where(User.deleted_at.is_(None)), User.tenant_id, scope)
    if active is not None:
        stmt = stmt.where(User.active.is_(active))
    if role_id is not None:
        stmt = stmt.where(User.role_id == role_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    return list(db.execute(stmt.order_by(User.name, User.email)).scalars().all())


def create_tenant_user(
    db: Session,
    *,
    actor: User,
    name: str,
    email: str,
    password: str,
    tenant_id: UUID | None = None,
    role_id: UUID | None = None,
    active: bool = True,
) -> User:
    """管理员在租户内创建用户。

    判定规则：
    1. 未指定租户时使用操作者租户；超级管理员必须显式指定。
    2. 目标租户需通过租户守卫。
    3. 指定角色时角色须对操作者可见，且为全局角色或目标租户角色。
    4. 未指定角色时绑定默认系统角色。
    """
    target_tenant_id = tenant_id if tenant_id is not None else actor.tenant_id
    if target_tenant_id is None:
        raise AuthError(AuthErrorCode.NO_TENANT_MEMBERSHIP, "A tenant is required to create users.", field="tenant_id")
    ensure_tenant_access(actor, target_tenant_id)
    role = get_role(db, role_id=role_id, actor=actor) if role_id is not None else None

    user = create_user(db, name=name, email=email, password=password, tenant_id=target_tenant_id)
    if role is not None:
        assign_role_to_user(db, user=user, role=role)
    user.active = active
    db.flush()
    logger.info("tenant user created user=%s tenant=%s by=%s", user.id, target_tenant_id, actor.id)
    return user


def update_user(
    db: Session,
    user: User,
    *,
    name: str | None = None,
    email: str | None = None,
    password: str | None = None,
) -> int:
    """更新用户资料，返回因改密吊销的令牌数。

    改密后该用户现有会话全部失效，需要重新登录。
    """
    if name is not None:
        user.name = name.strip()
    if email is not None:
        normalized_email = normalize_email(email)
        if normalized_email != user.email:
            taken = db.execute(
                select(User.id).where(User.email == normalized_email).where(User.id != user.id)
            ).first()
            if taken is not None:
                raise AuthError(AuthErrorCode.DUPLICATE_EMAIL, field="email")
            user.email = normalized_email

    revoked = 0
    if password is not None:
        validate_password_policy(password)
        user.password_hash = hash_password(password)
        revoked = revoke_all_tokens(db, user.id)
    db.flush()
    logger.info("user updated user=%s password_changed=%s revoked=%s", user.id, password is not None, revoked)
    return revoked


def set_user_active(db: Session, user: User, *, active: bool, actor: User) -> int:
    """启用/停用用户，返回本次吊销的令牌数。主管理员与操作者本人不可停用。"""
    if not active:
        _ensure_not_protected(actor, user, "deactivate")
    user.active = active
    revoked = 0
    if not active and get_settings().auth_revoke_on_deactivate:
        revoked = revoke_all_tokens(db, user.id)
    db.flush()
    logger.info("user active changed user=%s active=%s revoked=%s by=%s", user.id, active, revoked, actor.id)
    return revoked


def delete_user(db: Session, user: User, *, actor: User) -> int:
    """软删除用户并吊销其全部令牌，返回吊销数量。"""
    _ensure_not_protected(actor, user, "delete")
    user.deleted_at = utc_now()
    user.active = False
    revoked = revoke_all_tokens(db, user.id)
    db.flush()
    logger.warning("user deleted user=%s tenant=%s revoked=%s by=%s", user.id, user.tenant_id, revoked, actor.id)
    return revoked


def direct_permission_names(db: Session, user: User) -> list[str]:
    stmt = (
        select(Permission.name)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user.id)
        .where(Permission.deleted_at.is_(None))
        .order_by(Permission.name)
    )
    return list(db.execute(stmt).scalars().all())


def user_permission_view(db: Session, user: User) -> dict:
    """用户权限视图：角色、直授权限与有效权限。"""
    role = get_user_role(db, user)
    if role is not None and role.is_deleted:
        role = None
    return {
        "user_id": user.id,
        "role": role.name if role is not None else None,
        "is_super_admin": is_super_admin(user),
        "direct_permissions": direct_permission_names(db, user),
        "permissions": sorted(effective_permissions(db, user, role=role)),
    }


def user_statistics(db: Session, *, actor: User, tenant_id: UUID | None = None) -> UserStatistics:
    """按租户范围统计用户总数、启停数量与角色分布。"""
    scope = _scope_tenant_id(actor, tenant_id)
    base = scope_to_tenant(select(User).where(User.deleted_at.is_(None)), User.tenant_id, scope).subquery()

    total, active = db.execute(
        select(func.count(base.c.id), func.coalesce(func.sum(case((base.c.active.is_(True), 1), else_=0)), 0))
    ).one()
    rows = db.execute(
        select(base.c.role_id, Role.name, func.count(base.c.id))
        .select_from(base)
        .outerjoin(Role, Role.id == base.c.role_id)
        .group_by(base.c.role_id, Role.name)
        .order_by(Role.name)
    ).all()
    by_role = [RoleUserCount(role_id=role_id, role_name=role_name, count=count) for role_id, role_name, count in rows]
    return UserStatistics(total=int(total), active=int(active), inactive=int(total) - int(active), by_role=by_role)
