"""注册、登录、刷新与登出结构。"""

from datetime import datetime

from pydantic import BaseModel, Field

from ekklesia_api.schemas.common import BaseSchema
from ekklesia_api.schemas.user import EMAIL_PATTERN, UserData


class AuthRegisterRequest(BaseModel):
    """注册请求。密码策略由服务层按配置校验。"""

    name: str = Field(min_length=1, max_length=128, description="展示名。", examples=["Alice"])
    email: str = Field(
        min_length=5,
        max_length=256,
        pattern=EMAIL_PATTERN,
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str = Field(min_length=1, max_length=128, description="登录密码。", examples=["Passw0rd!"])
    password_confirmation: str = Field(max_length=128, description="确认密码。", examples=["Passw0rd!"])


class AuthLoginRequest(BaseModel):
    """登录请求。"""

    email: str = Field(min_length=1, max_length=256, description="登录邮箱。", examples=["alice@example.com"])
    password: str = Field(min_length=1, max_length=128, description="登录密码。", examples=["Passw0rd!"])
    client_id: str | None = Field(default=None, max_length=100, description="客户端标识，缺省为默认客户端。")
    scopes: list[str] = Field(default_factory=list, description="申请的授权范围。")


class AuthRefreshRequest(BaseModel):
    """刷新请求。"""

    refresh_token: str = Field(min_length=1, max_length=100, description="刷新令牌。")


class TokenPairData(BaseSchema):
    """令牌对。"""

    access_token: str = Field(description="访问令牌。")
    refresh_token: str = Field(description="刷新令牌。")
    token_type: str = Field(default="Bearer", description="令牌类型。")
    expires_at: datetime = Field(description="访问令牌过期时间（UTC）。")
    expires_in: int = Field(description="距过期剩余秒数。")


class AuthSessionData(TokenPairData):
    """登录/注册结果。"""

    user: UserData = Field(description="当前用户。")


class PermissionSnapshotData(BaseSchema):
    """当前用户权限快照。"""

    role: str | None = Field(default=None, description="角色名。")
    level: int | None = Field(default=None, description="角色级别。")
    tenant_id: str | None = Field(default=None, description="租户范围。")
    is_super_admin: bool = Field(description="是否超级管理员。")
    permissions: list[str] = Field(description="有效权限（已排序）。")
