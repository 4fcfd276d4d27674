"""角色管理接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ekklesia_api.db.session import get_db
from ekklesia_api.dependencies import RequestContext, require_permission
from ekklesia_api.models.rbac import Role
from ekklesia_api.schemas.common import ErrorResponse, SuccessResponse
from ekklesia_api.schemas.role import RoleCreateRequest, RoleData, RoleDetailData, RoleUpdateRequest
from ekklesia_api.services import (
    create_custom_role,
    delete_role,
    ensure_tenant_access,
    get_role,
    list_role_permissions,
    list_visible_roles,
    restore_role,
    set_role_active,
    update_role,
)
from ekklesia_api.utils.response import success

router = APIRouter(prefix="/roles", tags=["roles"])

_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _role_detail(db: Session, role: Role) -> dict:
    data = RoleData.model_validate(role).model_dump()
    data["permissions"] = [permission.name for permission in list_role_permissions(db, role)]
    return data


@router.get(
    "",
    summary="角色列表",
    description="租户用户可见本租户角色与全局系统角色；超级管理员可见全部。",
    response_model=SuccessResponse[list[RoleData]],
    responses=_ERRORS,
)
def list_roles(
    request: Request,
    active: bool | None = Query(default=None, description="按启用状态过滤。"),
    is_custom: bool | None = Query(default=None, description="按是否自定义过滤。"),
    search: str | None = Query(default=None, max_length=64, description="按名称模糊搜索。"),
    ctx: RequestContext = Depends(require_permission("roles.view")),
    db: Session = Depends(get_db),
):
    roles = list_visible_roles(db, actor=ctx.user, active=active, is_custom=is_custom, search=search)
    return success(request, [RoleData.model_validate(role) for role in roles])


@router.post(
    "",
    summary="创建自定义角色",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[RoleDetailData],
    responses=_ERRORS,
)
def create_role(
    payload: RoleCreateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.create")),
    db: Session = Depends(get_db),
):
    """租户用户只能为本租户创建；超级管理员需在请求体中指定租户。"""
    tenant_id = ctx.tenant_id
    if payload.tenant_id is not None:
        ensure_tenant_access(ctx.user, payload.tenant_id)
        tenant_id = payload.tenant_id
    role = create_custom_role(
        db,
        tenant_id=tenant_id,
        name=payload.name,
        level=payload.level,
        permission_names=payload.permissions,
        description=payload.description,
    )
    db.commit()
    return success(request, _role_detail(db, role))


@router.get(
    "/{role_id}",
    summary="角色详情",
    response_model=SuccessResponse[RoleDetailData],
    responses=_ERRORS,
)
def get_role_detail(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.view")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    return success(request, _role_detail(db, role))


@router.patch(
    "/{role_id}",
    summary="更新自定义角色",
    description="系统角色不可修改；提供 permissions 时整体替换角色权限。",
    response_model=SuccessResponse[RoleDetailData],
    responses=_ERRORS,
)
def patch_role(
    role_id: UUID,
    payload: RoleUpdateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.update")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    update_role(
        db,
        role,
        actor=ctx.user,
        name=payload.name,
        description=payload.description,
        level=payload.level,
        permission_names=payload.permissions,
    )
    db.commit()
    return success(request, _role_detail(db, role))


@router.delete(
    "/{role_id}",
    summary="删除自定义角色",
    description="软删除；系统角色受保护，仍被使用的角色按配置拒绝删除。",
    response_model=SuccessResponse[RoleData],
    responses=_ERRORS,
)
def remove_role(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.delete")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    delete_role(db, role, actor=ctx.user)
    db.commit()
    return success(request, RoleData.model_validate(role))


@router.post(
    "/{role_id}/restore",
    summary="恢复已删除角色",
    response_model=SuccessResponse[RoleData],
    responses=_ERRORS,
)
def restore_deleted_role(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.delete")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user, include_deleted=True)
    restore_role(db, role, actor=ctx.user)
    db.commit()
    return success(request, RoleData.model_validate(role))


@router.post(
    "/{role_id}/activate",
    summary="启用角色",
    response_model=SuccessResponse[RoleData],
    responses=_ERRORS,
)
def activate_role(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.update")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    set_role_active(db, role, active=True, actor=ctx.user)
    db.commit()
    return success(request, RoleData.model_validate(role))


@router.post(
    "/{role_id}/deactivate",
    summary="停用角色",
    response_model=SuccessResponse[RoleData],
    responses=_ERRORS,
)
def deactivate_role(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("roles.update")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    set_role_active(db, role, active=False, actor=ctx.user)
    db.commit()
    return success(request, RoleData.model_validate(role))
