"""角色结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ekklesia_api.schemas.common import BaseSchema


class RoleCreateRequest(BaseModel):
    """自定义角色创建请求。"""

    # 名称首尾空白剥离后再做长度校验，纯空白名称视为缺失。
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=64, description="角色名，租户内唯一。", examples=["Catechist"])
    level: int = Field(description="角色级别，需位于自定义角色区间内。", examples=[5])
    description: str | None = Field(default=None, max_length=512, description="描述。")
    permissions: list[str] = Field(default_factory=list, description="初始权限名列表。", examples=[["families.create"]])
    tenant_id: UUID | None = Field(default=None, description="目标租户，仅超级管理员需要指定。")


class RoleUpdateRequest(BaseModel):
    """自定义角色更新请求，未提供的字段保持不变。"""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=64, description="角色名。")
    level: int | None = Field(default=None, description="角色级别。")
    description: str | None = Field(default=None, max_length=512, description="描述。")
    permissions: list[str] | None = Field(default=None, description="替换后的完整权限名列表。")


class RoleData(BaseSchema):
    """角色信息。"""

    id: UUID = Field(description="角色 ID。")
    name: str = Field(description="角色名。")
    description: str | None = Field(default=None, description="描述。")
    level: int = Field(description="级别。")
    tenant_id: UUID | None = Field(default=None, description="所属租户 ID。")
    is_custom: bool = Field(description="是否自定义角色。")
    active: bool = Field(description="是否启用。")
    deleted_at: datetime | None = Field(default=None, description="软删除时间。")


class RoleDetailData(RoleData):
    """角色详情（含权限）。"""

    permissions: list[str] = Field(default_factory=list, description="角色权限名。")
