"""领域枚举定义。"""

from enum import IntEnum, StrEnum


class SystemRole(StrEnum):
    """平台内置系统角色（全局共享、不可删除）。"""

    SUPER_ADMIN = "SuperAdmin"  # 超级管理员，跨租户全局可达。
    EKKLESIA_ADMIN = "EkklesiaAdmin"  # 租户管理员。
    EKKLESIA_MANAGER = "EkklesiaManager"  # 租户业务管理者。
    EKKLESIA_USER = "EkklesiaUser"  # 普通租户用户。


# 系统角色级别，数值越小权限越高。
SYSTEM_ROLE_LEVELS: dict[SystemRole, int] = {
    SystemRole.SUPER_ADMIN: 1,
    SystemRole.EKKLESIA_ADMIN: 2,
    SystemRole.EKKLESIA_MANAGER: 3,
    SystemRole.EKKLESIA_USER: 4,
}


class UserType(IntEnum):
    """用户类型，空值表示平台级账号。"""

    TENANT_USER = 1  # 普通租户用户。
    TENANT_ADMIN = 2  # 租户管理员。


class PermissionCategory(StrEnum):
    """权限分类，按动作推导。"""

    READ = "Read"  # 查看类操作。
    WRITE = "Write"  # 新建与修改类操作。
    DELETE = "Delete"  # 删除类操作。
    MANAGE = "Manage"  # 授权、启停等管理类操作。
