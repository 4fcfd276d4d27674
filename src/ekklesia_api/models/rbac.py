"""角色与权限模型。"""

from uuid import UUID

from sqlalchemy import Boolean, Integer, String, UniqueConstraint, false
from sqlalchemy.orm import Mapped, mapped_column

from ekklesia_api.models.base import ActivatableMixin, Base, TimestampMixin, UUIDPrimaryKeyMixin


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin, ActivatableMixin):
    """角色实体。tenant_id 为空为全局系统角色，否则为租户自定义角色。"""

    __tablename__ = "roles"

    # 角色名，租户内唯一（由服务层校验，软删除记录不参与）。
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # 角色描述。
    description: Mapped[str | None] = mapped_column(String(512))
    # 角色级别，越小越高；系统角色 1-4，自定义角色位于配置区间内。
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    # 所属租户 ID。
    tenant_id: Mapped[UUID | None] = mapped_column(index=True)
    # 是否为租户自定义角色。
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin, ActivatableMixin):
    """权限实体，名称采用 `<module>.<action>` 形式。"""

    __tablename__ = "permissions"

    # 权限名，全局唯一。
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    # 展示名。
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 描述。
    description: Mapped[str | None] = mapped_column(String(512))
    # 所属模块。
    module: Mapped[str | None] = mapped_column(String(64), index=True)
    # 分类（Read/Write/Delete/Manage）。
    category: Mapped[str | None] = mapped_column(String(32))
    # 所属租户 ID，空值为全局权限。
    tenant_id: Mapped[UUID | None] = mapped_column(index=True)
    # 是否为租户自定义权限。
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())


class RolePermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """角色与权限关联。"""

    __tablename__ = "role_permissions"
    __table_args__ = (UniqueConstraint("role_id", "permission_id", name="uk_role_permission"),)

    role_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)


class UserPermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户直授权限。"""

    __tablename__ = "user_permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission_id", name="uk_user_permission"),)

    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    permission_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
