"""请求鉴权管线依赖。

职责:
1. 提取 Bearer 令牌（缺失 -> UNAUTHENTICATED）。
2. 校验令牌签名与存储状态（失败 -> INVALID_TOKEN，具体原因只写日志）。
3. 加载用户并解析租户上下文（停用/删除 -> ACCOUNT_INACTIVE）。
4. 路由声明了权限时做角色门禁（FORBIDDEN）。
5. 租户范围路由做租户门禁（CROSS_TENANT_ACCESS / NO_TENANT_MEMBERSHIP）。
每一步失败立即终止，不再执行后续步骤。
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
import logging
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.core.security import extract_bearer_token
from ekklesia_api.db.session import get_db
from ekklesia_api.models.rbac import Role
from ekklesia_api.models.user import User
from ekklesia_api.services.credentials import ensure_account_active
from ekklesia_api.services.permissions import has_permission
from ekklesia_api.services.tenancy import authorize_tenant_access, is_super_admin, resolve_tenant_context
from ekklesia_api.services.tokens import VerifiedToken, verify_access_token

logger = logging.getLogger("ekklesia_api.pipeline")

bearer_scheme = HTTPBearer(auto_error=False)


class RequestStage(StrEnum):
    """鉴权管线阶段。"""

    UNAUTHENTICATED = "unauthenticated"  # 初始状态，提取令牌。
    TOKEN_VERIFYING = "token_verifying"  # 校验令牌。
    CONTEXT_RESOLVED = "context_resolved"  # 加载用户并解析租户。
    ROLE_GATED = "role_gated"  # 权限门禁。
    TENANT_GATED = "tenant_gated"  # 租户门禁。
    ALLOWED = "allowed"  # 终态：放行。


@dataclass
class RequestContext:
    """请求上下文。

    该对象在路由层作为统一输入，租户范围只在此解析一次并向下传递。
    """

    # 当前请求用户。
    user: User
    # 当前请求租户 ID；超级管理员为空。
    tenant_id: UUID | None
    # 当前用户角色。
    role: Role | None
    # 已校验的访问令牌。
    token: VerifiedToken

    @property
    def user_id(self) -> UUID:
        return self.user.id

    @property
    def is_super_admin(self) -> bool:
        return is_super_admin(self.user)


def _reject(stage: RequestStage, error: AuthError, *, request_id: str | None, user_id: UUID | None = None) -> AuthError:
    logger.warning(
        "request rejected stage=%s reason=%s user=%s request_id=%s detail=%s",
        stage,
        error.code,
        user_id,
        request_id,
        error.detail,
    )
    return error


def authorize_request(
    db: Session,
    authorization: str | None,
    *,
    required_permissions: Sequence[str] = (),
    tenant_scoped: bool = False,
    requested_tenant_id: UUID | None = None,
    request_id: str | None = None,
) -> RequestContext:
    """执行完整鉴权管线，返回放行后的请求上下文。"""
    stage = RequestStage.UNAUTHENTICATED
    try:
        token_string = extract_bearer_token(authorization)
    except AuthError as exc:
        raise _reject(stage, exc, request_id=request_id)

    stage = RequestStage.TOKEN_VERIFYING
    try:
        verified = verify_access_token(db, token_string)
    except AuthError as exc:
        _reject(stage, exc, request_id=request_id)
        raise AuthError(AuthErrorCode.INVALID_TOKEN, detail=f"verify failed reason={exc.code}") from exc

    stage = RequestStage.CONTEXT_RESOLVED
    user = db.get(User, verified.user_id)
    if user is None:
        raise _reject(
            stage,
            AuthError(AuthErrorCode.INVALID_TOKEN, detail="token owner no longer exists"),
            request_id=request_id,
            user_id=verified.user_id,
        )
    try:
        role = ensure_account_active(db, user)
    except AuthError as exc:
        raise _reject(stage, exc, request_id=request_id, user_id=user.id)
    tenant_id = resolve_tenant_context(user)

    if required_permissions:
        stage = RequestStage.ROLE_GATED
        missing = [name for name in required_permissions if not has_permission(db, user, name, role=role)]
        if missing:
            raise _reject(
                stage,
                AuthError(AuthErrorCode.FORBIDDEN, detail=f"missing permissions={','.join(missing)}"),
                request_id=request_id,
                user_id=user.id,
            )

    if tenant_scoped:
        stage = RequestStage.TENANT_GATED
        decision = authorize_tenant_access(user, requested_tenant_id)
        if not decision.allowed:
            raise _reject(
                stage,
                AuthError(decision.reason, detail=f"user_tenant={user.tenant_id} requested={requested_tenant_id}"),
                request_id=request_id,
                user_id=user.id,
            )

    return RequestContext(user=user, tenant_id=tenant_id, role=role, token=verified)


def _authorization_header(credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials is None or not credentials.credentials:
        return None
    return f"{credentials.scheme} {credentials.credentials}"


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def get_request_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> RequestContext:
    """仅做认证与上下文解析，不做权限与租户门禁。"""
    return authorize_request(db, _authorization_header(credentials), request_id=_request_id(request))


def get_current_user(ctx: RequestContext = Depends(get_request_context)) -> User:
    return ctx.user


def require_permission(*permission_names: str):
    """按权限做路由级限制。"""

    def _dep(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
    ) -> RequestContext:
        return authorize_request(
            db,
            _authorization_header(credentials),
            required_permissions=permission_names,
            request_id=_request_id(request),
        )

    return _dep


def require_tenant_permission(*permission_names: str):
    """租户范围路由：路径中的 tenant_id 需通过租户门禁，并可附加权限要求。"""

    def _dep(
        tenant_id: UUID,
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
        db: Session = Depends(get_db),
    ) -> RequestContext:
        return authorize_request(
            db,
            _authorization_header(credentials),
            required_permissions=permission_names,
            tenant_scoped=True,
            requested_tenant_id=tenant_id,
            request_id=_request_id(request),
        )

    return _dep
