"""初始化入口。

主流程:
1) 补齐系统权限目录与系统角色
2) 按配置创建超级管理员（已存在则跳过）
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.db.session import SessionLocal
from ekklesia_api.models.enums import SystemRole
from ekklesia_api.models.rbac import Role
from ekklesia_api.models.user import User
from ekklesia_api.services import bootstrap_system_catalog, create_user, normalize_email

logger = logging.getLogger("ekklesia_api.bootstrap")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def ensure_super_admin(db: Session, *, name: str, email: str, password: str) -> User:
    """创建无租户归属的主管理员。"""
    existing = db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()
    if existing is not None:
        logger.info("super admin already exists user=%s", existing.id)
        return existing
    role = (
        db.execute(
            select(Role)
            .where(Role.name == SystemRole.SUPER_ADMIN.value)
            .where(Role.tenant_id.is_(None))
            .where(Role.is_custom.is_(False))
        )
        .scalars()
        .first()
    )
    return create_user(
        db,
        name=name,
        email=email,
        password=password,
        tenant_id=None,
        role_id=role.id if role else None,
        is_primary_admin=True,
    )


def run(db: Session) -> None:
    settings = get_settings()
    bootstrap_system_catalog(db)
    if settings.bootstrap_admin_email and settings.bootstrap_admin_password:
        ensure_super_admin(
            db,
            name=settings.bootstrap_admin_name,
            email=settings.bootstrap_admin_email,
            password=settings.bootstrap_admin_password,
        )
    db.commit()


def main() -> None:
    _setup_logging()
    db = SessionLocal()
    try:
        run(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
