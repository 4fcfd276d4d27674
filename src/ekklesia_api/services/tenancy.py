"""租户隔离守卫。

租户上下文在每个请求内只解析一次，并作为显式参数向下传递，
不写入任何进程级共享状态。
"""

from dataclasses import dataclass
import logging
from typing import TypeVar
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.user import User

logger = logging.getLogger("ekklesia_api.tenancy")

_S = TypeVar("_S", bound=Select)


@dataclass(frozen=True)
class TenantAccessDecision:
    """租户访问判定结果。"""

    allowed: bool
    # 拒绝原因；允许时为空。
    reason: AuthErrorCode | None = None

    def raise_for_denial(self) -> None:
        if not self.allowed and self.reason is not None:
            raise AuthError(self.reason)


ALLOW = TenantAccessDecision(allowed=True)


def is_super_admin(user: User) -> bool:
    """超级管理员：无租户且为主管理员。"""
    return user.tenant_id is None and bool(user.is_primary_admin)


def resolve_tenant_context(user: User) -> UUID | None:
    """返回本次请求的租户范围。"""
    return user.tenant_id


def authorize_tenant_access(
    user: User,
    requested_tenant_id: UUID | None,
    *,
    super_admin_bypass: bool | None = None,
) -> TenantAccessDecision:
    """判定用户能否访问目标租户。

    判定规则：
    1. 超级管理员直接放行（可通过配置关闭）。
    2. 用户无租户归属 -> NO_TENANT_MEMBERSHIP。
    3. 请求了其他租户 -> CROSS_TENANT_ACCESS。
    4. 其余放行。
    """
    if super_admin_bypass is None:
        super_admin_bypass = get_settings().tenancy_super_admin_bypass

    if super_admin_bypass and is_super_admin(user):
        return ALLOW
    if user.tenant_id is None:
        return TenantAccessDecision(allowed=False, reason=AuthErrorCode.NO_TENANT_MEMBERSHIP)
    if requested_tenant_id is not None and requested_tenant_id != user.tenant_id:
        return TenantAccessDecision(allowed=False, reason=AuthErrorCode.CROSS_TENANT_ACCESS)
    return ALLOW


def ensure_tenant_access(user: User, requested_tenant_id: UUID | None) -> None:
    """判定失败时抛出对应错误。"""
    decision = authorize_tenant_access(user, requested_tenant_id)
    if not decision.allowed:
        logger.warning(
            "tenant access denied reason=%s user=%s user_tenant=%s requested_tenant=%s",
            decision.reason,
            user.id,
            user.tenant_id,
            requested_tenant_id,
        )
    decision.raise_for_denial()


def scope_to_tenant(stmt: _S, tenant_column, tenant_id: UUID | None) -> _S:
    """为租户数据查询追加存储层租户过滤。

    tenant_id 为空表示超级管理员的全局范围，不追加过滤。
    """
    if tenant_id is None:
        return stmt
    return stmt.where(tenant_column == tenant_id)


def get_tenant_user(db: Session, *, user_id: UUID, actor: User) -> User:
    """按租户边界读取目标用户（资源隐含租户的访问入口）。

    无租户归属的目标用户只允许超级管理员操作。
    """
    user = db.get(User, user_id)
    if user is None or user.is_deleted:
        raise AuthError(AuthErrorCode.USER_NOT_FOUND)
    if user.tenant_id is None and not (get_settings().tenancy_super_admin_bypass and is_super_admin(actor)):
        logger.warning("tenant access denied reason=%s user=%s target=%s", AuthErrorCode.CROSS_TENANT_ACCESS, actor.id, user.id)
        raise AuthError(AuthErrorCode.CROSS_TENANT_ACCESS)
    ensure_tenant_access(actor, user.tenant_id)
    return user
