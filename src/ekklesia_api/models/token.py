"""访问令牌与刷新令牌模型。

令牌记录永不物理删除，只做吊销标记，由外部保留期任务清理。
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from ekklesia_api.models.base import Base


class AccessToken(Base):
    """访问令牌记录，id 即令牌中的 jti。"""

    __tablename__ = "access_tokens"

    # 不透明随机标识。
    id: Mapped[str] = mapped_column(String(100), primary_key=True, comment="令牌 ID（jti）。")
    # 令牌归属用户。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 客户端标识（aud）。
    client_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # 授权范围，保持签发顺序。
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # 是否已吊销。
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    # 过期时间。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RefreshToken(Base):
    """刷新令牌记录，与访问令牌一对一。"""

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(100), primary_key=True, comment="刷新令牌 ID。")
    # 所属访问令牌 ID。
    access_token_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
