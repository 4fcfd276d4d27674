"""租户范围查询接口。

路径中的 tenant_id 先经过租户门禁，再作为存储层过滤条件。
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from ekklesia_api.db.session import get_db
from ekklesia_api.dependencies import RequestContext, require_tenant_permission
from ekklesia_api.models.user import User
from ekklesia_api.schemas.common import ErrorResponse, SuccessResponse
from ekklesia_api.schemas.role import RoleData
from ekklesia_api.schemas.user import UserData
from ekklesia_api.services import list_visible_roles, scope_to_tenant
from ekklesia_api.utils.response import success

router = APIRouter(prefix="/tenants", tags=["tenants"])

_ERRORS = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}


@router.get(
    "/{tenant_id}/users",
    summary="租户用户列表",
    response_model=SuccessResponse[list[UserData]],
    responses=_ERRORS,
)
def list_tenant_users(
    tenant_id: UUID,
    request: Request,
    active: bool | None = Query(default=None, description="按启用状态过滤。"),
    ctx: RequestContext = Depends(require_tenant_permission("users.view")),
    db: Session = Depends(get_db),
):
    stmt = scope_to_tenant(select(User).where(User.deleted_at.is_(None)), User.tenant_id, tenant_id)
    if active is not None:
        stmt = stmt.where(User.active.is_(active))
    users = db.execute(stmt.order_by(User.name)).scalars().all()
    return success(request, [UserData.model_validate(user) for user in users])


@router.get(
    "/{tenant_id}/roles",
    summary="租户可用角色列表",
    response_model=SuccessResponse[list[RoleData]],
    responses=_ERRORS,
)
def list_tenant_roles(
    tenant_id: UUID,
    request: Request,
    ctx: RequestContext = Depends(require_tenant_permission("roles.view")),
    db: Session = Depends(get_db),
):
    roles = list_visible_roles(db, actor=ctx.user, tenant_id=tenant_id)
    return success(request, [RoleData.model_validate(role) for role in roles])
