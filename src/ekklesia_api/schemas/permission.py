"""权限结构。"""

from uuid import UUID

from pydantic import BaseModel, Field

from ekklesia_api.schemas.common import BaseSchema

_PERMISSION_NAME_PATTERN = r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)+$"


class PermissionCreateRequest(BaseModel):
    """自定义权限创建请求。"""

    name: str = Field(
        min_length=3,
        max_length=128,
        pattern=_PERMISSION_NAME_PATTERN,
        description="权限名，`<module>.<action>` 形式，全局唯一。",
        examples=["choir.schedule"],
    )
    display_name: str | None = Field(default=None, max_length=128, description="展示名。")
    description: str | None = Field(default=None, max_length=512, description="描述。")
    module: str | None = Field(default=None, max_length=64, description="所属模块，缺省取名称前缀。")
    category: str | None = Field(default=None, max_length=32, description="分类，缺省按动作推导。")
    tenant_id: UUID | None = Field(default=None, description="目标租户，仅超级管理员需要指定。")


class RolePermissionRequest(BaseModel):
    """角色单个权限授予/移除请求。"""

    role_id: UUID = Field(description="角色 ID。")
    permission: str = Field(min_length=1, max_length=128, description="权限名。")


class RoleBulkPermissionRequest(BaseModel):
    """角色权限整体替换请求。"""

    role_id: UUID = Field(description="角色 ID。")
    permissions: list[str] = Field(description="替换后的完整权限名列表。")


class UserPermissionRequest(BaseModel):
    """用户直授权限授予/移除请求。"""

    user_id: UUID = Field(description="用户 ID。")
    permission: str = Field(min_length=1, max_length=128, description="权限名。")


class PermissionData(BaseSchema):
    """权限信息。"""

    id: UUID = Field(description="权限 ID。")
    name: str = Field(description="权限名。")
    display_name: str = Field(description="展示名。")
    description: str | None = Field(default=None, description="描述。")
    module: str | None = Field(default=None, description="模块。")
    category: str | None = Field(default=None, description="分类。")
    tenant_id: UUID | None = Field(default=None, description="所属租户 ID。")
    is_custom: bool = Field(description="是否自定义权限。")
    active: bool = Field(description="是否启用。")


class AssignmentData(BaseSchema):
    """授权关系变更结果。"""

    changed: bool = Field(description="本次是否发生变更；幂等重复操作为 false。")
    permissions: list[str] = Field(default_factory=list, description="变更后的权限名。")


class PermissionUpdateRequest(BaseModel):
    """自定义权限更新请求；权限名不可修改，未提供的字段保持不变。"""

    display_name: str | None = Field(default=None, min_length=1, max_length=128, description="展示名。")
    description: str | None = Field(default=None, max_length=512, description="描述。")
    module: str | None = Field(default=None, min_length=1, max_length=64, description="所属模块。")
    category: str | None = Field(default=None, min_length=1, max_length=32, description="分类。")
    active: bool | None = Field(default=None, description="是否启用。")
