"""租户用户管理接口。

目标用户的租户由资源本身推导，读取时即经过租户守卫；
列表与统计按操作者租户过滤，超级管理员可通过 tenant_id 收窄。
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ekklesia_api.db.session import get_db
from ekklesia_api.dependencies import RequestContext, require_permission
from ekklesia_api.schemas.common import ErrorResponse, SuccessResponse
from ekklesia_api.schemas.user import (
    UserCreateRequest,
    UserData,
    UserPermissionsData,
    UserRoleUpdateRequest,
    UserStatisticsData,
    UserStatusData,
    UserStatusUpdateRequest,
    UserUpdateData,
    UserUpdateRequest,
)
from ekklesia_api.services import (
    assign_role_to_user,
    create_tenant_user,
    delete_user,
    get_role,
    get_tenant_user,
    list_users,
    set_user_active,
    update_user,
    user_permission_view,
    user_statistics,
)
from ekklesia_api.utils.response import success

router = APIRouter(prefix="/users", tags=["users"])

_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.get(
    "",
    summary="用户列表",
    response_model=SuccessResponse[list[UserData]],
    responses=_ERRORS,
)
def index_users(
    request: Request,
    tenant_id: UUID | None = Query(default=None, description="目标租户，仅超级管理员生效。"),
    active: bool | None = Query(default=None, description="按启用状态过滤。"),
    role_id: UUID | None = Query(default=None, description="按角色过滤。"),
    search: str | None = Query(default=None, max_length=64, description="按名称或邮箱模糊搜索。"),
    ctx: RequestContext = Depends(require_permission("users.view")),
    db: Session = Depends(get_db),
):
    users = list_users(db, actor=ctx.user, tenant_id=tenant_id, active=active, role_id=role_id, search=search)
    return success(request, [UserData.model_validate(user) for user in users], meta={"total": len(users)})


@router.post(
    "",
    summary="创建租户用户",
    description="缺省创建在操作者所在租户；角色须为全局角色或目标租户角色。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[UserData],
    responses=_ERRORS,
)
def store_user(
    payload: UserCreateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.create")),
    db: Session = Depends(get_db),
):
    user = create_tenant_user(
        db,
        actor=ctx.user,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        tenant_id=payload.tenant_id,
        role_id=payload.role_id,
        active=payload.active,
    )
    db.commit()
    return success(request, UserData.model_validate(user))


@router.get(
    "/statistics",
    summary="用户统计",
    response_model=SuccessResponse[UserStatisticsData],
    responses=_ERRORS,
)
def show_statistics(
    request: Request,
    tenant_id: UUID | None = Query(default=None, description="目标租户，仅超级管理员生效。"),
    ctx: RequestContext = Depends(require_permission("users.view")),
    db: Session = Depends(get_db),
):
    stats = user_statistics(db, actor=ctx.user, tenant_id=tenant_id)
    return success(request, UserStatisticsData.model_validate(stats))


@router.get(
    "/{user_id}",
    summary="用户详情",
    response_model=SuccessResponse[UserData],
    responses=_ERRORS,
)
def show_user(
    user_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.view")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    return success(request, UserData.model_validate(user))


@router.patch(
    "/{user_id}",
    summary="更新用户资料",
    description="修改口令时在同一事务内吊销该用户全部令牌。",
    response_model=SuccessResponse[UserUpdateData],
    responses=_ERRORS,
)
def patch_user(
    user_id: UUID,
    payload: UserUpdateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.update")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    revoked = update_user(db, user, name=payload.name, email=payload.email, password=payload.password)
    db.commit()
    return success(request, {"user": UserData.model_validate(user), "revoked_tokens": revoked})


@router.delete(
    "/{user_id}",
    summary="删除用户",
    description="软删除并吊销该用户全部令牌；主管理员与本人不可删除。",
    response_model=SuccessResponse[UserStatusData],
    responses=_ERRORS,
)
def destroy_user(
    user_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.delete")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    revoked = delete_user(db, user, actor=ctx.user)
    db.commit()
    return success(request, {"user": UserData.model_validate(user), "revoked_tokens": revoked})


@router.get(
    "/{user_id}/permissions",
    summary="用户有效权限",
    response_model=SuccessResponse[UserPermissionsData],
    responses=_ERRORS,
)
def show_user_permissions(
    user_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.view")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    return success(request, user_permission_view(db, user))


@router.patch(
    "/{user_id}/status",
    summary="启用/停用用户",
    description="停用时在同一事务内吊销该用户全部令牌；主管理员与本人不可停用。",
    response_model=SuccessResponse[UserStatusData],
    responses=_ERRORS,
)
def update_user_status(
    user_id: UUID,
    payload: UserStatusUpdateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.activate")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    revoked = set_user_active(db, user, active=payload.active, actor=ctx.user)
    db.commit()
    return success(request, {"user": UserData.model_validate(user), "revoked_tokens": revoked})


@router.patch(
    "/{user_id}/role",
    summary="变更用户角色",
    description="只能使用全局角色或与目标用户同租户的角色。",
    response_model=SuccessResponse[UserData],
    responses=_ERRORS,
)
def update_user_role(
    user_id: UUID,
    payload: UserRoleUpdateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("users.update")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=user_id, actor=ctx.user)
    role = get_role(db, role_id=payload.role_id, actor=ctx.user)
    assign_role_to_user(db, user=user, role=role)
    db.commit()
    return success(request, UserData.model_validate(user))
