"""认证接口。"""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.db.session import get_db
from ekklesia_api.dependencies import RequestContext, get_request_context
from ekklesia_api.models.user import User
from ekklesia_api.schemas.auth import (
    AuthLoginRequest,
    AuthRefreshRequest,
    AuthRegisterRequest,
    AuthSessionData,
    PermissionSnapshotData,
    TokenPairData,
)
from ekklesia_api.schemas.common import ErrorResponse, MessageData, SuccessResponse
from ekklesia_api.schemas.user import UserData
from ekklesia_api.services import (
    create_user,
    effective_permissions,
    issue_token_pair,
    refresh_token_pair,
    revoke_all_tokens,
    verify_credentials,
)
from ekklesia_api.services.permissions import is_super_admin_role
from ekklesia_api.services.tokens import IssuedTokenPair
from ekklesia_api.utils.clock import as_utc
from ekklesia_api.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_payload(pair: IssuedTokenPair) -> dict:
    return {
        "access_token": pair.access_token_string,
        "refresh_token": pair.refresh_token.id,
        "token_type": "Bearer",
        "expires_at": as_utc(pair.access_token.expires_at),
        "expires_in": pair.expires_in,
    }


def _session_payload(user: User, pair: IssuedTokenPair) -> dict:
    return {"user": UserData.model_validate(user), **_token_payload(pair)}


@router.post(
    "/register",
    summary="注册账号",
    description="创建账号并签发令牌对。新账号绑定默认系统角色，不可自选角色。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[AuthSessionData],
    responses={422: {"model": ErrorResponse}},
)
def register(payload: AuthRegisterRequest, request: Request, db: Session = Depends(get_db)):
    """注册并直接登录。"""
    if payload.password != payload.password_confirmation:
        raise AuthError(AuthErrorCode.PASSWORD_MISMATCH, field="password")
    user = create_user(db, name=payload.name, email=payload.email, password=payload.password)
    pair = issue_token_pair(db, user)
    db.commit()
    return success(request, _session_payload(user, pair))


@router.post(
    "/login",
    summary="账号登录",
    description="邮箱密码登录，返回访问令牌与刷新令牌。邮箱不存在与密码错误返回相同结果。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthSessionData],
    responses={403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def login(payload: AuthLoginRequest, request: Request, db: Session = Depends(get_db)):
    """校验凭据并签发令牌对。"""
    user = verify_credentials(db, email=payload.email, password=payload.password)
    pair = issue_token_pair(db, user, client_id=payload.client_id, scopes=payload.scopes)
    db.commit()
    return success(request, _session_payload(user, pair))


@router.post(
    "/refresh",
    summary="刷新令牌",
    description="使用刷新令牌轮换出新的令牌对，旧令牌对同时吊销；每个刷新令牌只能使用一次。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[TokenPairData],
    responses={401: {"model": ErrorResponse}},
)
def refresh(payload: AuthRefreshRequest, request: Request, db: Session = Depends(get_db)):
    """轮换令牌对，失败时整体回滚。"""
    pair = refresh_token_pair(db, payload.refresh_token)
    db.commit()
    return success(request, _token_payload(pair))


@router.post(
    "/logout",
    summary="登出",
    description="吊销当前用户的全部访问令牌与刷新令牌。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MessageData],
    responses={401: {"model": ErrorResponse}},
)
def logout(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """全端登出。"""
    revoke_all_tokens(db, ctx.user_id)
    db.commit()
    return success(request, {"message": "Successfully logged out"})


@router.get(
    "/user",
    summary="获取当前用户",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[UserData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def current_user(request: Request, ctx: RequestContext = Depends(get_request_context)):
    return success(request, UserData.model_validate(ctx.user))


@router.get(
    "/permissions",
    summary="查询当前权限快照",
    description="返回当前用户的角色、级别与有效权限集合，供前端鉴权展示使用。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[PermissionSnapshotData],
    responses={401: {"model": ErrorResponse}},
)
def my_permissions(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """权限快照，无副作用。"""
    role = ctx.role
    return success(
        request,
        {
            "role": role.name if role else None,
            "level": role.level if role else None,
            "tenant_id": str(ctx.tenant_id) if ctx.tenant_id else None,
            "is_super_admin": ctx.is_super_admin or is_super_admin_role(role),
            "permissions": sorted(effective_permissions(db, ctx.user, role=role)),
        },
    )
