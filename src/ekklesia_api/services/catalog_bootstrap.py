"""系统角色与系统权限目录初始化。"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ekklesia_api.models.enums import SYSTEM_ROLE_LEVELS, SystemRole
from ekklesia_api.models.rbac import Permission, Role
from ekklesia_api.services.permissions import bulk_assign_to_role, category_for_action

logger = logging.getLogger("ekklesia_api.bootstrap")

# 模块 -> 动作集合；权限名为 `<module>.<action>`。
SYSTEM_PERMISSION_MODULES: dict[str, tuple[str, ...]] = {
    "dashboard": ("view",),
    "tenants": ("view", "create", "update", "delete"),
    "users": ("view", "create", "update", "delete", "activate"),
    "roles": ("view", "create", "update", "delete"),
    "permissions": ("view", "create", "update", "delete", "assign"),
    "settings": ("view", "update"),
    "reports": ("view", "export"),
    "audit": ("view",),
    "files": ("view", "create", "delete"),
    "notifications": ("view", "create"),
    "families": ("view", "create", "update", "delete"),
    "bccs": ("view", "create", "update", "delete"),
    "sacraments": ("view", "create", "update", "delete"),
    "dioceses": ("view", "create", "update", "delete"),
    "bishops": ("view", "create", "update", "delete"),
}

_ADMIN_MODULES = {
    "dashboard",
    "users",
    "roles",
    "permissions",
    "settings",
    "reports",
    "audit",
    "files",
    "notifications",
    "families",
    "bccs",
    "sacraments",
}
_MANAGER_MODULES = {"dashboard", "reports", "files", "notifications", "families", "bccs", "sacraments"}
# 只读引用数据模块，所有租户角色可见。
_REFERENCE_MODULES = {"dioceses", "bishops"}


def system_permission_names() -> list[str]:
    return [f"{module}.{action}" for module, actions in SYSTEM_PERMISSION_MODULES.items() for action in actions]


def default_role_permissions(role: SystemRole) -> set[str]:
    """系统角色默认权限集合。超级管理员由判定规则直接放行，这里仍授全量便于展示。"""
    names = system_permission_names()
    if role == SystemRole.SUPER_ADMIN:
        return set(names)
    if role == SystemRole.EKKLESIA_ADMIN:
        granted = {name for name in names if name.split(".", 1)[0] in _ADMIN_MODULES}
    elif role == SystemRole.EKKLESIA_MANAGER:
        granted = {
            name
            for name in names
            if name.split(".", 1)[0] in _MANAGER_MODULES and not name.endswith(".delete")
        }
    else:
        granted = {"dashboard.view", "families.view", "bccs.view", "sacraments.view", "notifications.view"}
    granted |= {f"{module}.view" for module in _REFERENCE_MODULES}
    return granted


def _display_name(module: str, action: str) -> str:
    return f"{action.capitalize()} {module.capitalize()}"


def bootstrap_system_catalog(db: Session) -> dict[str, int]:
    """幂等地补齐系统权限与系统角色。

    已存在的记录不做覆盖，只补齐缺失项；首次创建的系统角色写入默认权限。
    返回新增数量统计。
    """
    existing_permissions = {
        permission.name: permission
        for permission in db.execute(select(Permission).where(Permission.tenant_id.is_(None))).scalars()
    }
    created_permissions = 0
    for module, actions in SYSTEM_PERMISSION_MODULES.items():
        for action in actions:
            name = f"{module}.{action}"
            if name in existing_permissions:
                continue
            permission = Permission(
                name=name,
                display_name=_display_name(module, action),
                module=module,
                category=category_for_action(action).value,
                tenant_id=None,
                is_custom=False,
                active=True,
            )
            db.add(permission)
            existing_permissions[name] = permission
            created_permissions += 1
    db.flush()

    created_roles = 0
    for system_role, level in SYSTEM_ROLE_LEVELS.items():
        role = (
            db.execute(
                select(Role)
                .where(Role.name == system_role.value)
                .where(Role.tenant_id.is_(None))
                .where(Role.is_custom.is_(False))
            )
            .scalars()
            .first()
        )
        if role is not None:
            continue
        role = Role(name=system_role.value, level=level, tenant_id=None, is_custom=False, active=True)
        db.add(role)
        db.flush()
        bulk_assign_to_role(
            db,
            role=role,
            permissions=[existing_permissions[name] for name in sorted(default_role_permissions(system_role))],
        )
        created_roles += 1

    logger.info("system catalog ensured permissions_created=%s roles_created=%s", created_permissions, created_roles)
    return {"permissions_created": created_permissions, "roles_created": created_roles}
