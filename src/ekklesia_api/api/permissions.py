"""权限配置接口。

所有授权关系维护接口都是幂等的：重复授予或移除返回成功且 changed=false。
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ekklesia_api.db.session import get_db
from ekklesia_api.dependencies import RequestContext, require_permission
from ekklesia_api.schemas.common import ErrorResponse, SuccessResponse
from ekklesia_api.schemas.permission import (
    AssignmentData,
    PermissionCreateRequest,
    PermissionData,
    PermissionUpdateRequest,
    RoleBulkPermissionRequest,
    RolePermissionRequest,
    UserPermissionRequest,
)
from ekklesia_api.services import (
    assign_to_role,
    assign_to_user,
    bulk_assign_to_role,
    create_custom_permission,
    delete_permission,
    ensure_tenant_access,
    get_permission,
    get_role,
    get_tenant_user,
    list_role_permissions,
    list_visible_permissions,
    remove_from_role,
    remove_from_user,
    resolve_permissions,
    update_custom_permission,
)
from ekklesia_api.services.permissions import ensure_role_manageable
from ekklesia_api.utils.response import success

router = APIRouter(prefix="/permissions", tags=["permissions"])

_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


def _role_permission_names(db: Session, role) -> list[str]:
    return [permission.name for permission in list_role_permissions(db, role)]


@router.get(
    "",
    summary="权限列表",
    description="全局权限与本租户自定义权限；超级管理员可见全部。",
    response_model=SuccessResponse[list[PermissionData]],
    responses=_ERRORS,
)
def list_permissions(
    request: Request,
    module: str | None = Query(default=None, max_length=64, description="按模块过滤。"),
    is_custom: bool | None = Query(default=None, description="按是否自定义过滤。"),
    active: bool | None = Query(default=None, description="按启用状态过滤。"),
    search: str | None = Query(default=None, max_length=64, description="按名称模糊搜索。"),
    ctx: RequestContext = Depends(require_permission("permissions.view")),
    db: Session = Depends(get_db),
):
    permissions = list_visible_permissions(
        db, actor=ctx.user, module=module, is_custom=is_custom, active=active, search=search
    )
    return success(request, [PermissionData.model_validate(permission) for permission in permissions])


@router.post(
    "",
    summary="创建自定义权限",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[PermissionData],
    responses=_ERRORS,
)
def create_permission(
    payload: PermissionCreateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.create")),
    db: Session = Depends(get_db),
):
    tenant_id = ctx.tenant_id
    if payload.tenant_id is not None:
        ensure_tenant_access(ctx.user, payload.tenant_id)
        tenant_id = payload.tenant_id
    permission = create_custom_permission(
        db,
        tenant_id=tenant_id,
        name=payload.name,
        display_name=payload.display_name,
        description=payload.description,
        module=payload.module,
        category=payload.category,
    )
    db.commit()
    return success(request, PermissionData.model_validate(permission))


@router.get(
    "/{permission_id}",
    summary="权限详情",
    response_model=SuccessResponse[PermissionData],
    responses=_ERRORS,
)
def show_permission(
    permission_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.view")),
    db: Session = Depends(get_db),
):
    permission = get_permission(db, permission_id=permission_id, actor=ctx.user)
    return success(request, PermissionData.model_validate(permission))


@router.patch(
    "/{permission_id}",
    summary="更新自定义权限",
    description="可修改展示名、描述、模块、分类与启用状态；权限名不可修改，系统权限受保护。",
    response_model=SuccessResponse[PermissionData],
    responses=_ERRORS,
)
def patch_permission(
    permission_id: UUID,
    payload: PermissionUpdateRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.update")),
    db: Session = Depends(get_db),
):
    permission = get_permission(db, permission_id=permission_id, actor=ctx.user)
    update_custom_permission(
        db,
        permission,
        actor=ctx.user,
        display_name=payload.display_name,
        description=payload.description,
        module=payload.module,
        category=payload.category,
        active=payload.active,
    )
    db.commit()
    return success(request, PermissionData.model_validate(permission))


@router.delete(
    "/{permission_id}",
    summary="删除自定义权限",
    description="软删除；系统权限受保护。",
    response_model=SuccessResponse[PermissionData],
    responses=_ERRORS,
)
def remove_permission(
    permission_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.delete")),
    db: Session = Depends(get_db),
):
    permission = get_permission(db, permission_id=permission_id, actor=ctx.user)
    delete_permission(db, permission, actor=ctx.user)
    db.commit()
    return success(request, PermissionData.model_validate(permission))


@router.get(
    "/role/{role_id}",
    summary="查询角色权限",
    response_model=SuccessResponse[list[PermissionData]],
    responses=_ERRORS,
)
def role_permissions(
    role_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.view")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=role_id, actor=ctx.user)
    return success(request, [PermissionData.model_validate(item) for item in list_role_permissions(db, role)])


@router.post(
    "/assign-to-role",
    summary="为角色授予权限",
    response_model=SuccessResponse[AssignmentData],
    responses=_ERRORS,
)
def assign_permission_to_role(
    payload: RolePermissionRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.assign")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=payload.role_id, actor=ctx.user)
    ensure_role_manageable(ctx.user, role)
    (permission,) = resolve_permissions(db, [payload.permission], tenant_id=role.tenant_id)
    changed = assign_to_role(db, role=role, permission=permission)
    db.commit()
    return success(request, {"changed": changed, "permissions": _role_permission_names(db, role)})


@router.post(
    "/remove-from-role",
    summary="移除角色权限",
    response_model=SuccessResponse[AssignmentData],
    responses=_ERRORS,
)
def remove_permission_from_role(
    payload: RolePermissionRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.assign")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=payload.role_id, actor=ctx.user)
    ensure_role_manageable(ctx.user, role)
    (permission,) = resolve_permissions(db, [payload.permission], tenant_id=role.tenant_id)
    changed = remove_from_role(db, role=role, permission=permission)
    db.commit()
    return success(request, {"changed": changed, "permissions": _role_permission_names(db, role)})


@router.post(
    "/bulk-assign-to-role",
    summary="整体替换角色权限",
    response_model=SuccessResponse[AssignmentData],
    responses=_ERRORS,
)
def bulk_assign_permissions_to_role(
    payload: RoleBulkPermissionRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.assign")),
    db: Session = Depends(get_db),
):
    role = get_role(db, role_id=payload.role_id, actor=ctx.user)
    ensure_role_manageable(ctx.user, role)
    before = set(_role_permission_names(db, role))
    names = bulk_assign_to_role(
        db, role=role, permissions=resolve_permissions(db, payload.permissions, tenant_id=role.tenant_id)
    )
    db.commit()
    return success(request, {"changed": before != set(names), "permissions": names})


@router.post(
    "/assign-to-user",
    summary="为用户直接授予权限",
    response_model=SuccessResponse[AssignmentData],
    responses=_ERRORS,
)
def assign_permission_to_user(
    payload: UserPermissionRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.assign")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=payload.user_id, actor=ctx.user)
    (permission,) = resolve_permissions(db, [payload.permission], tenant_id=user.tenant_id)
    changed = assign_to_user(db, user=user, permission=permission)
    db.commit()
    return success(request, {"changed": changed, "permissions": [permission.name]})


@router.post(
    "/remove-from-user",
    summary="移除用户直授权限",
    response_model=SuccessResponse[AssignmentData],
    responses=_ERRORS,
)
def remove_permission_from_user(
    payload: UserPermissionRequest,
    request: Request,
    ctx: RequestContext = Depends(require_permission("permissions.assign")),
    db: Session = Depends(get_db),
):
    user = get_tenant_user(db, user_id=payload.user_id, actor=ctx.user)
    (permission,) = resolve_permissions(db, [payload.permission], tenant_id=user.tenant_id)
    changed = remove_from_user(db, user=user, permission=permission)
    db.commit()
    return success(request, {"changed": changed, "permissions": [permission.name]})
