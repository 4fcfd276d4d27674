"""服务层能力导出集合。"""

from ekklesia_api.services.catalog_bootstrap import bootstrap_system_catalog, system_permission_names
from ekklesia_api.services.credentials import (
    create_user,
    ensure_account_active,
    hash_password,
    normalize_email,
    verify_credentials,
    verify_password,
)
from ekklesia_api.services.permissions import (
    assign_role_to_user,
    assign_to_role,
    assign_to_user,
    bulk_assign_to_role,
    create_custom_permission,
    create_custom_role,
    delete_permission,
    delete_role,
    effective_permissions,
    get_permission,
    get_role,
    has_permission,
    list_role_permissions,
    list_visible_permissions,
    list_visible_roles,
    remove_from_role,
    remove_from_user,
    resolve_permissions,
    restore_role,
    set_role_active,
    update_custom_permission,
    update_role,
)
from ekklesia_api.services.tenancy import (
    TenantAccessDecision,
    authorize_tenant_access,
    ensure_tenant_access,
    get_tenant_user,
    is_super_admin,
    resolve_tenant_context,
    scope_to_tenant,
)
from ekklesia_api.services.tokens import (
    IssuedTokenPair,
    TokenClaims,
    VerifiedToken,
    issue_token_pair,
    refresh_token_pair,
    revoke_access_token,
    revoke_all_tokens,
    verify_access_token,
)
from ekklesia_api.services.users import (
    RoleUserCount,
    UserStatistics,
    create_tenant_user,
    delete_user,
    direct_permission_names,
    list_users,
    set_user_active,
    update_user,
    user_permission_view,
    user_statistics,
)

__all__ = [
    "bootstrap_system_catalog",
    "system_permission_names",
    "create_user",
    "ensure_account_active",
    "hash_password",
    "normalize_email",
    "verify_credentials",
    "verify_password",
    "IssuedTokenPair",
    "TokenClaims",
    "VerifiedToken",
    "issue_token_pair",
    "refresh_token_pair",
    "revoke_access_token",
    "revoke_all_tokens",
    "verify_access_token",
    "effective_permissions",
    "has_permission",
    "list_visible_roles",
    "list_visible_permissions",
    "list_role_permissions",
    "get_role",
    "get_permission",
    "resolve_permissions",
    "create_custom_role",
    "update_role",
    "delete_role",
    "restore_role",
    "set_role_active",
    "create_custom_permission",
    "update_custom_permission",
    "delete_permission",
    "assign_to_role",
    "remove_from_role",
    "bulk_assign_to_role",
    "assign_to_user",
    "remove_from_user",
    "assign_role_to_user",
    "TenantAccessDecision",
    "authorize_tenant_access",
    "ensure_tenant_access",
    "get_tenant_user",
    "is_super_admin",
    "resolve_tenant_context",
    "scope_to_tenant",
    "RoleUserCount",
    "UserStatistics",
    "create_tenant_user",
    "delete_user",
    "direct_permission_names",
    "list_users",
    "set_user_active",
    "update_user",
    "user_permission_view",
    "user_statistics",
]
