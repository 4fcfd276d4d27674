"""用户结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from ekklesia_api.schemas.common import BaseSchema

# 宽松邮箱格式校验，规范化在服务层完成。
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserData(BaseSchema):
    """用户信息。"""

    id: UUID = Field(description="用户 ID。")
    name: str = Field(description="展示名。")
    email: str = Field(description="登录邮箱。")
    user_type: int | None = Field(default=None, description="用户类型。")
    is_primary_admin: bool = Field(description="是否主管理员。")
    tenant_id: UUID | None = Field(default=None, description="所属租户 ID。")
    role_id: UUID | None = Field(default=None, description="角色 ID。")
    active: bool = Field(description="是否启用。")
    last_login_at: datetime | None = Field(default=None, description="最近登录时间。")


class UserStatusUpdateRequest(BaseModel):
    """用户启停请求。"""

    active: bool = Field(description="目标启用状态。")


class UserRoleUpdateRequest(BaseModel):
    """用户角色变更请求。"""

    role_id: UUID = Field(description="目标角色 ID。")


class UserStatusData(BaseSchema):
    """用户启停结果。"""

    user: UserData = Field(description="更新后的用户。")
    revoked_tokens: int = Field(default=0, description="本次吊销的访问令牌数量。")


class UserCreateRequest(BaseModel):
    """租户用户创建请求。"""

    name: str = Field(min_length=2, max_length=128, description="展示名。", examples=["Maria"])
    email: str = Field(max_length=256, pattern=EMAIL_PATTERN, description="登录邮箱。", examples=["maria@example.com"])
    password: str = Field(min_length=1, max_length=128, description="初始口令。")
    role_id: UUID | None = Field(default=None, description="角色 ID，缺省绑定默认系统角色。")
    tenant_id: UUID | None = Field(default=None, description="目标租户，仅超级管理员需要指定。")
    active: bool = Field(default=True, description="是否启用。")


class UserUpdateRequest(BaseModel):
    """用户资料更新请求，未提供的字段保持不变。"""

    name: str | None = Field(default=None, min_length=2, max_length=128, description="展示名。")
    email: str | None = Field(default=None, max_length=256, pattern=EMAIL_PATTERN, description="登录邮箱。")
    password: str | None = Field(default=None, min_length=1, max_length=128, description="新口令，修改后吊销全部会话。")


class UserUpdateData(BaseSchema):
    """用户资料更新结果。"""

    user: UserData = Field(description="更新后的用户。")
    revoked_tokens: int = Field(default=0, description="因改密吊销的访问令牌数量。")


class UserPermissionsData(BaseSchema):
    """用户权限视图。"""

    user_id: UUID = Field(description="用户 ID。")
    role: str | None = Field(default=None, description="当前角色名；未分配或角色已删除时为空。")
    is_super_admin: bool = Field(description="是否超级管理员。")
    direct_permissions: list[str] = Field(default_factory=list, description="直授权限名。")
    permissions: list[str] = Field(default_factory=list, description="有效权限名（角色权限与直授权限并集）。")


class RoleUserCountData(BaseSchema):
    """角色用户数。"""

    role_id: UUID | None = Field(default=None, description="角色 ID；未分配角色为空。")
    role_name: str | None = Field(default=None, description="角色名。")
    count: int = Field(description="用户数。")


class UserStatisticsData(BaseSchema):
    """用户统计。"""

    total: int = Field(description="未删除用户总数。")
    active: int = Field(description="启用用户数。")
    inactive: int = Field(description="停用用户数。")
    by_role: list[RoleUserCountData] = Field(default_factory=list, description="按角色分布。")
