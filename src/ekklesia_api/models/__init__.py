"""ORM 模型导出集合。"""

from ekklesia_api.models.rbac import Permission, Role, RolePermission, UserPermission
from ekklesia_api.models.token import AccessToken, RefreshToken
from ekklesia_api.models.user import User

__all__ = [
    "AccessToken",
    "Permission",
    "RefreshToken",
    "Role",
    "RolePermission",
    "User",
    "UserPermission",
]
