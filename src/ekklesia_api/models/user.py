"""用户模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column

from ekklesia_api.models.base import ActivatableMixin, Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin, ActivatableMixin):
    """用户实体。

    tenant_id 为空且 is_primary_admin 为真时为超级管理员；其余用户必须归属唯一租户。
    """

    __tablename__ = "users"

    # 展示名。
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    # 登录邮箱，入库前统一小写，全局唯一。
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True)
    # 口令哈希，永不保存明文。
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    # 用户类型（空=平台级，1=租户用户，2=租户管理员）。
    user_type: Mapped[int | None] = mapped_column(Integer)
    # 是否为主管理员。
    is_primary_admin: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    # 所属租户 ID，空值表示全局范围。
    tenant_id: Mapped[UUID | None] = mapped_column(index=True)
    # 当前角色 ID（逻辑关联 roles.id）。
    role_id: Mapped[UUID | None] = mapped_column(index=True)
    # 最近一次登录时间。
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
