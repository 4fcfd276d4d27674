"""角色/权限注册表（数据库驱动）。

权限判定统一走 `has_permission`，路由、依赖与服务不得自行拼装判定条件。
"""

import logging
from collections.abc import Iterable
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode
from ekklesia_api.models.enums import PermissionCategory, SystemRole
from ekklesia_api.models.rbac import Permission, Role, RolePermission, UserPermission
from ekklesia_api.models.user import User
from ekklesia_api.services.tenancy import authorize_tenant_access, ensure_tenant_access, is_super_admin
from ekklesia_api.utils.clock import utc_now

logger = logging.getLogger("ekklesia_api.permissions")

_CATEGORY_BY_ACTION = {
    "view": PermissionCategory.READ,
    "list": PermissionCategory.READ,
    "export": PermissionCategory.READ,
    "create": PermissionCategory.WRITE,
    "update": PermissionCategory.WRITE,
    "import": PermissionCategory.WRITE,
    "delete": PermissionCategory.DELETE,
    "restore": PermissionCategory.DELETE,
}


def category_for_action(action: str) -> PermissionCategory:
    """按动作推导权限分类。"""
    return _CATEGORY_BY_ACTION.get(action, PermissionCategory.MANAGE)


def _visible_permission_clause(tenant_id: UUID | None):
    if tenant_id is None:
        return Permission.tenant_id.is_(None)
    return or_(Permission.tenant_id.is_(None), Permission.tenant_id == tenant_id)


def _usable_permission_names(db: Session, stmt, tenant_id: UUID | None) -> set[str]:
    stmt = (
        stmt.where(Permission.active.is_(True))
        .where(Permission.deleted_at.is_(None))
        .where(_visible_permission_clause(tenant_id))
    )
    return set(db.execute(stmt).scalars().all())


def get_user_role(db: Session, user: User) -> Role | None:
    if user.role_id is None:
        return None
    return db.get(Role, user.role_id)


def _role_applies_to(role: Role | None, user: User) -> bool:
    """角色可用且与用户租户范围一致。"""
    if role is None or not role.is_usable:
        return False
    return role.tenant_id is None or role.tenant_id == user.tenant_id


def effective_permissions(db: Session, user: User, *, role: Role | None = None) -> set[str]:
    """用户有效权限：角色权限与直授权限的并集，两者都按启用状态与租户范围过滤。"""
    if role is None:
        role = get_user_role(db, user)

    names: set[str] = set()
    if _role_applies_to(role, user):
        names |= _usable_permission_names(
            db,
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role.id),
            user.tenant_id,
        )
    names |= _usable_permission_names(
        db,
        select(Permission.name)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user.id),
        user.tenant_id,
    )
    return names


def is_super_admin_role(role: Role | None) -> bool:
    if role is None or not role.is_usable:
        return False
    return role.tenant_id is None and not role.is_custom and role.name == get_settings().rbac_super_admin_role


def has_permission(db: Session, user: User, permission_name: str, *, role: Role | None = None) -> bool:
    """判定用户是否具备某权限。

    判定规则：
    1. 主管理员直接放行。
    2. 角色为配置的超级管理员系统角色直接放行。
    3. 权限名在有效权限集合内。
    """
    if user.is_primary_admin:
        return True
    if role is None:
        role = get_user_role(db, user)
    if is_super_admin_role(role):
        return True
    return permission_name in effective_permissions(db, user, role=role)


# ---------------------------------------------------------------------------
# 查询
# ---------------------------------------------------------------------------


def list_visible_roles(
    db: Session,
    *,
    actor: User,
    tenant_id: UUID | None = None,
    active: bool | None = None,
    is_custom: bool | None = None,
    search: str | None = None,
) -> list[Role]:
    """按可见范围列出角色。

    超级管理员可见全部（可按租户收窄）；租户用户只可见本租户角色，
    以及开启继承时的全局系统角色。
    """
    settings = get_settings()
    stmt = select(Role).where(Role.deleted_at.is_(None))

    scope_tenant_id = tenant_id if is_super_admin(actor) else actor.tenant_id
    if scope_tenant_id is not None:
        if settings.rbac_inherit_global_roles:
            stmt = stmt.where(or_(Role.tenant_id.is_(None), Role.tenant_id == scope_tenant_id))
        else:
            stmt = stmt.where(Role.tenant_id == scope_tenant_id)
    elif not is_super_admin(actor):
        stmt = stmt.where(Role.tenant_id.is_(None))

    if active is not None:
        stmt = stmt.where(Role.active.is_(active))
    if is_custom is not None:
        stmt = stmt.where(Role.is_custom.is_(is_custom))
    if search:
        stmt = stmt.where(Role.name.ilike(f"%{search.strip()}%"))
    return list(db.execute(stmt.order_by(Role.level, Role.name)).scalars().all())


def list_visible_permissions(
    db: Session,
    *,
    actor: User,
    module: str | None = None,
    is_custom: bool | None = None,
    active: bool | None = None,
    search: str | None = None,
) -> list[Permission]:
    """全局权限 + 本租户自定义权限；超级管理员可见全部。"""
    stmt = select(Permission).where(Permission.deleted_at.is_(None))
    if not is_super_admin(actor):
        stmt = stmt.where(_visible_permission_clause(actor.tenant_id))
    if module:
        stmt = stmt.where(Permission.module == module)
    if is_custom is not None:
        stmt = stmt.where(Permission.is_custom.is_(is_custom))
    if active is not None:
        stmt = stmt.where(Permission.active.is_(active))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Permission.name.ilike(pattern), Permission.display_name.ilike(pattern)))
    return list(db.execute(stmt.order_by(Permission.module, Permission.name)).scalars().all())


def list_role_permissions(db: Session, role: Role) -> list[Permission]:
    stmt = (
        select(Permission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id)
        .where(Permission.deleted_at.is_(None))
        .order_by(Permission.name)
    )
    return list(db.execute(stmt).scalars().all())


def _ensure_visible(actor: User, tenant_id: UUID, not_found: AuthErrorCode, resource_id: UUID) -> None:
    """其他租户的资源对非超级管理员表现为不存在，不暴露其存在性。"""
    decision = authorize_tenant_access(actor, tenant_id)
    if decision.allowed:
        return
    logger.warning(
        "foreign resource hidden reason=%s user=%s user_tenant=%s resource=%s resource_tenant=%s",
        decision.reason,
        actor.id,
        actor.tenant_id,
        resource_id,
        tenant_id,
    )
    raise AuthError(not_found, detail=f"resource={resource_id} tenant={tenant_id} denied={decision.reason}")


def get_role(db: Session, *, role_id: UUID, actor: User, include_deleted: bool = False) -> Role:
    """按可见范围读取角色。其他租户的角色返回 ROLE_NOT_FOUND。"""
    role = db.get(Role, role_id)
    if role is None or (role.is_deleted and not include_deleted):
        raise AuthError(AuthErrorCode.ROLE_NOT_FOUND)
    if role.tenant_id is None:
        if not is_super_admin(actor) and not get_settings().rbac_inherit_global_roles:
            raise AuthError(AuthErrorCode.ROLE_NOT_FOUND)
        return role
    _ensure_visible(actor, role.tenant_id, AuthErrorCode.ROLE_NOT_FOUND, role.id)
    return role


def get_permission(db: Session, *, permission_id: UUID, actor: User) -> Permission:
    """按可见范围读取权限。其他租户的自定义权限返回 PERMISSION_NOT_FOUND。"""
    permission = db.get(Permission, permission_id)
    if permission is None or permission.is_deleted:
        raise AuthError(AuthErrorCode.PERMISSION_NOT_FOUND)
    if permission.tenant_id is not None:
        _ensure_visible(actor, permission.tenant_id, AuthErrorCode.PERMISSION_NOT_FOUND, permission.id)
    return permission


def resolve_permissions(db: Session, names: Iterable[str], *, tenant_id: UUID | None) -> list[Permission]:
    """按名称解析权限，要求全部存在且属于全局或指定租户。"""
    wanted = sorted({name.strip() for name in names if name and name.strip()})
    if not wanted:
        return []
    found = {
        permission.name: permission
        for permission in db.execute(
            select(Permission).where(Permission.name.in_(wanted)).where(Permission.deleted_at.is_(None))
        ).scalars()
    }
    missing = [name for name in wanted if name not in found]
    if missing:
        raise AuthError(
            AuthErrorCode.PERMISSION_NOT_FOUND,
            f"Unknown permissions: {', '.join(missing)}",
            field="permissions",
        )
    for permission in found.values():
        _ensure_permission_fits_tenant(permission, tenant_id)
    return [found[name] for name in wanted]


def _ensure_permission_fits_tenant(permission: Permission, tenant_id: UUID | None) -> None:
    """租户自定义权限只能授给同租户的角色/用户。"""
    if permission.tenant_id is not None and permission.tenant_id != tenant_id:
        raise AuthError(
            AuthErrorCode.CROSS_TENANT_ACCESS,
            field="permissions",
            detail=f"permission={permission.name} tenant={permission.tenant_id} target_tenant={tenant_id}",
        )


# ---------------------------------------------------------------------------
# 角色生命周期
# ---------------------------------------------------------------------------


def _reserved_role_names() -> set[str]:
    settings = get_settings()
    names = {role.value for role in SystemRole}
    names.add(settings.rbac_super_admin_role)
    return {name.lower() for name in names}


def _ensure_level_in_band(level: int) -> None:
    settings = get_settings()
    if not settings.rbac_custom_role_min_level <= level <= settings.rbac_custom_role_max_level:
        raise AuthError(
            AuthErrorCode.LEVEL_OUT_OF_RANGE,
            f"The level must be between {settings.rbac_custom_role_min_level} "
            f"and {settings.rbac_custom_role_max_level}.",
            field="level",
        )


def _ensure_role_name_available(db: Session, *, tenant_id: UUID, name: str, exclude_role_id: UUID | None = None) -> None:
    if name.lower() in _reserved_role_names():
        raise AuthError(AuthErrorCode.DUPLICATE_NAME, field="name", detail=f"reserved role name {name}")
    stmt = (
        select(Role.id)
        .where(Role.tenant_id == tenant_id)
        .where(func.lower(Role.name) == name.lower())
        .where(Role.deleted_at.is_(None))
    )
    if exclude_role_id is not None:
        stmt = stmt.where(Role.id != exclude_role_id)
    if db.execute(stmt).first() is not None:
        raise AuthError(AuthErrorCode.DUPLICATE_NAME, field="name")


def _ensure_quota_available(db: Session, *, tenant_id: UUID) -> None:
    settings = get_settings()
    count = db.execute(
        select(func.count(Role.id))
        .where(Role.tenant_id == tenant_id)
        .where(Role.is_custom.is_(True))
        .where(Role.deleted_at.is_(None))
    ).scalar_one()
    if count >= settings.rbac_max_custom_roles_per_tenant:
        raise AuthError(
            AuthErrorCode.QUOTA_EXCEEDED,
            f"Maximum {settings.rbac_max_custom_roles_per_tenant} custom roles allowed per tenant.",
            field="name",
        )


def ensure_role_manageable(actor: User, role: Role) -> None:
    """全局角色仅超级管理员可维护；租户角色需通过租户守卫。"""
    if role.tenant_id is None:
        if not is_super_admin(actor):
            raise AuthError(AuthErrorCode.FORBIDDEN, "Cannot modify global roles.", detail=f"role={role.id}")
        return
    ensure_tenant_access(actor, role.tenant_id)


def _ensure_custom(role: Role) -> None:
    if not role.is_custom:
        raise AuthError(AuthErrorCode.PROTECTED_ROLE, detail=f"role={role.id} name={role.name}")


def create_custom_role(
    db: Session,
    *,
    tenant_id: UUID | None,
    name: str,
    level: int,
    permission_names: Iterable[str] = (),
    description: str | None = None,
) -> Role:
    """创建租户自定义角色。校验顺序：租户 -> 级别 -> 名称 -> 配额 -> 权限。"""
    if tenant_id is None:
        raise AuthError(AuthErrorCode.NO_TENANT_MEMBERSHIP, "A tenant is required for custom roles.", field="tenant_id")
    name = name.strip()
    _ensure_level_in_band(level)
    _ensure_role_name_available(db, tenant_id=tenant_id, name=name)
    _ensure_quota_available(db, tenant_id=tenant_id)
    permissions = resolve_permissions(db, permission_names, tenant_id=tenant_id)

    role = Role(
        id=uuid4(),
        name=name,
        description=description,
        level=level,
        tenant_id=tenant_id,
        is_custom=True,
        active=True,
    )
    db.add(role)
    db.flush()
    for permission in permissions:
        db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.flush()
    logger.info("custom role created role=%s tenant=%s level=%s name=%s", role.id, tenant_id, level, name)
    return role


def update_role(
    db: Session,
    role: Role,
    *,
    actor: User | None = None,
    name: str | None = None,
    description: str | None = None,
    level: int | None = None,
    permission_names: Iterable[str] | None = None,
) -> Role:
    """更新自定义角色；系统角色不可修改。"""
    _ensure_custom(role)
    if actor is not None:
        ensure_role_manageable(actor, role)
    if level is not None:
        _ensure_level_in_band(level)
    if name is not None and name.strip() != role.name:
        _ensure_role_name_available(db, tenant_id=role.tenant_id, name=name.strip(), exclude_role_id=role.id)
        role.name = name.strip()
    if description is not None:
        role.description = description
    if level is not None:
        role.level = level
    if permission_names is not None:
        bulk_assign_to_role(db, role=role, permissions=resolve_permissions(db, permission_names, tenant_id=role.tenant_id))
    db.flush()
    logger.info("role updated role=%s tenant=%s", role.id, role.tenant_id)
    return role


def count_role_users(db: Session, role: Role) -> int:
    return db.execute(
        select(func.count(User.id)).where(User.role_id == role.id).where(User.deleted_at.is_(None))
    ).scalar_one()


def delete_role(db: Session, role: Role, *, actor: User | None = None) -> None:
    """软删除自定义角色。

    判定规则：
    1. 系统角色 -> PROTECTED_ROLE。
    2. 仍有用户使用且策略为 reject -> ROLE_IN_USE。
    3. 其余写入删除墓碑，由外部清理任务按保留期物理删除。
    """
    _ensure_custom(role)
    if actor is not None:
        ensure_role_manageable(actor, role)
    in_use = count_role_users(db, role)
    if in_use and get_settings().rbac_delete_role_in_use == "reject":
        raise AuthError(AuthErrorCode.ROLE_IN_USE, detail=f"role={role.id} users={in_use}")
    role.deleted_at = utc_now()
    db.flush()
    logger.warning("role deleted role=%s tenant=%s users=%s", role.id, role.tenant_id, in_use)


def restore_role(db: Session, role: Role, *, actor: User | None = None) -> Role:
    """恢复软删除的自定义角色，需重新满足名称与配额约束。"""
    _ensure_custom(role)
    if actor is not None:
        ensure_role_manageable(actor, role)
    if not role.is_deleted:
        return role
    _ensure_role_name_available(db, tenant_id=role.tenant_id, name=role.name, exclude_role_id=role.id)
    _ensure_quota_available(db, tenant_id=role.tenant_id)
    role.deleted_at = None
    db.flush()
    logger.info("role restored role=%s tenant=%s", role.id, role.tenant_id)
    return role


def set_role_active(db: Session, role: Role, *, active: bool, actor: User) -> Role:
    """启用/停用角色；系统角色仅超级管理员可切换。"""
    if not role.is_custom and not is_super_admin(actor):
        raise AuthError(AuthErrorCode.FORBIDDEN, "Only super admins can toggle system roles.", detail=f"role={role.id}")
    ensure_role_manageable(actor, role)
    role.active = active
    db.flush()
    logger.info("role active changed role=%s active=%s", role.id, active)
    return role


# ---------------------------------------------------------------------------
# 自定义权限
# ---------------------------------------------------------------------------


def create_custom_permission(
    db: Session,
    *,
    tenant_id: UUID | None,
    name: str,
    display_name: str | None = None,
    description: str | None = None,
    module: str | None = None,
    category: str | None = None,
) -> Permission:
    """创建租户自定义权限，名称全局唯一。"""
    if tenant_id is None:
        raise AuthError(
            AuthErrorCode.NO_TENANT_MEMBERSHIP, "A tenant is required for custom permissions.", field="tenant_id"
        )
    name = name.strip()
    if db.execute(select(Permission.id).where(Permission.name == name)).first() is not None:
        raise AuthError(AuthErrorCode.DUPLICATE_NAME, field="name")

    module_name, _, action = name.partition(".")
    permission = Permission(
        id=uuid4(),
        name=name,
        display_name=display_name or name,
        description=description,
        module=module or module_name,
        category=category or category_for_action(action.rsplit(".", 1)[-1]).value,
        tenant_id=tenant_id,
        is_custom=True,
        active=True,
    )
    db.add(permission)
    db.flush()
    logger.info("custom permission created permission=%s tenant=%s", name, tenant_id)
    return permission


def _ensure_custom_permission(permission: Permission) -> None:
    if not permission.is_custom:
        raise AuthError(
            AuthErrorCode.PROTECTED_ROLE,
            "System permissions cannot be modified.",
            detail=f"permission={permission.name}",
        )


def update_custom_permission(
    db: Session,
    permission: Permission,
    *,
    actor: User | None = None,
    display_name: str | None = None,
    description: str | None = None,
    module: str | None = None,
    category: str | None = None,
    active: bool | None = None,
) -> Permission:
    """更新自定义权限的展示信息与启用状态；权限名不可修改，系统权限受保护。"""
    _ensure_custom_permission(permission)
    if actor is not None and permission.tenant_id is not None:
        ensure_tenant_access(actor, permission.tenant_id)
    if display_name is not None:
        permission.display_name = display_name
    if description is not None:
        permission.description = description
    if module is not None:
        permission.module = module
    if category is not None:
        permission.category = category
    if active is not None:
        permission.active = active
    db.flush()
    logger.info("custom permission updated permission=%s tenant=%s", permission.name, permission.tenant_id)
    return permission


def delete_permission(db: Session, permission: Permission, *, actor: User | None = None) -> None:
    """软删除自定义权限；系统权限受保护。"""
    _ensure_custom_permission(permission)
    if actor is not None and permission.tenant_id is not None:
        ensure_tenant_access(actor, permission.tenant_id)
    permission.deleted_at = utc_now()
    db.flush()
    logger.warning("custom permission deleted permission=%s tenant=%s", permission.name, permission.tenant_id)


# ---------------------------------------------------------------------------
# 授权关系维护（全部幂等）
# ---------------------------------------------------------------------------


def assign_to_role(db: Session, *, role: Role, permission: Permission) -> bool:
    """授予角色权限；已持有时为空操作，返回是否发生变更。"""
    _ensure_permission_fits_tenant(permission, role.tenant_id)
    existing = db.execute(
        select(RolePermission.id)
        .where(RolePermission.role_id == role.id)
        .where(RolePermission.permission_id == permission.id)
    ).first()
    if existing is not None:
        return False
    db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.flush()
    logger.info("permission assigned to role role=%s permission=%s", role.id, permission.name)
    return True


def remove_from_role(db: Session, *, role: Role, permission: Permission) -> bool:
    result = db.execute(
        delete(RolePermission)
        .where(RolePermission.role_id == role.id)
        .where(RolePermission.permission_id == permission.id)
    )
    changed = bool(result.rowcount)
    if changed:
        logger.info("permission removed from role role=%s permission=%s", role.id, permission.name)
    return changed


def bulk_assign_to_role(db: Session, *, role: Role, permissions: Iterable[Permission]) -> list[str]:
    """以给定集合整体替换角色权限，返回替换后的权限名。"""
    desired = {permission.id: permission for permission in permissions}
    for permission in desired.values():
        _ensure_permission_fits_tenant(permission, role.tenant_id)

    current_ids = set(
        db.execute(select(RolePermission.permission_id).where(RolePermission.role_id == role.id)).scalars().all()
    )
    stale_ids = current_ids - set(desired)
    if stale_ids:
        db.execute(
            delete(RolePermission)
            .where(RolePermission.role_id == role.id)
            .where(RolePermission.permission_id.in_(stale_ids))
        )
    for permission_id in set(desired) - current_ids:
        db.add(RolePermission(role_id=role.id, permission_id=permission_id))
    db.flush()
    names = sorted(permission.name for permission in desired.values())
    logger.info("role permissions replaced role=%s count=%s", role.id, len(names))
    return names


def assign_to_user(db: Session, *, user: User, permission: Permission) -> bool:
    """直接授予用户权限；已持有时为空操作。"""
    _ensure_permission_fits_tenant(permission, user.tenant_id)
    existing = db.execute(
        select(UserPermission.id)
        .where(UserPermission.user_id == user.id)
        .where(UserPermission.permission_id == permission.id)
    ).first()
    if existing is not None:
        return False
    db.add(UserPermission(user_id=user.id, permission_id=permission.id))
    db.flush()
    logger.info("permission assigned to user user=%s permission=%s", user.id, permission.name)
    return True


def remove_from_user(db: Session, *, user: User, permission: Permission) -> bool:
    result = db.execute(
        delete(UserPermission)
        .where(UserPermission.user_id == user.id)
        .where(UserPermission.permission_id == permission.id)
    )
    changed = bool(result.rowcount)
    if changed:
        logger.info("permission removed from user user=%s permission=%s", user.id, permission.name)
    return changed


def assign_role_to_user(db: Session, *, user: User, role: Role) -> User:
    """为用户设置角色；角色必须为全局角色或与用户同租户。"""
    if not role.is_usable:
        raise AuthError(AuthErrorCode.ROLE_NOT_FOUND, field="role_id")
    if role.tenant_id is not None and role.tenant_id != user.tenant_id:
        raise AuthError(
            AuthErrorCode.CROSS_TENANT_ACCESS,
            field="role_id",
            detail=f"role={role.id} tenant={role.tenant_id} user_tenant={user.tenant_id}",
        )
    if is_super_admin_role(role) and user.tenant_id is not None:
        raise AuthError(AuthErrorCode.FORBIDDEN, "Tenant users cannot hold the super admin role.", field="role_id")
    user.role_id = role.id
    db.flush()
    logger.info("role assigned user=%s role=%s", user.id, role.id)
    return user
