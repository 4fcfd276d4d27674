"""认证与授权核心的错误分类。

每一次拒绝都必须能归因到唯一的错误码，便于审计日志消费。
对外暴露时凭据类与令牌类错误会被折叠为统一错误码，避免枚举/预言机攻击。
"""

from enum import StrEnum

from fastapi import status


class AuthErrorCode(StrEnum):
    """错误分类码。"""

    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"  # 邮箱不存在或密码错误（不区分）。
    DUPLICATE_EMAIL = "DUPLICATE_EMAIL"  # 邮箱已注册。
    WEAK_PASSWORD = "WEAK_PASSWORD"  # 密码不满足策略。
    PASSWORD_MISMATCH = "PASSWORD_MISMATCH"  # 确认密码不一致。
    INVALID_OR_REVOKED_TOKEN = "INVALID_OR_REVOKED_TOKEN"  # 刷新令牌不存在或已吊销。
    EXPIRED_TOKEN = "EXPIRED_TOKEN"  # 刷新令牌已过期。
    ORPHANED_TOKEN = "ORPHANED_TOKEN"  # 刷新令牌关联的访问令牌缺失。
    MALFORMED = "MALFORMED"  # 令牌结构非法。
    SIGNATURE_INVALID = "SIGNATURE_INVALID"  # 签名校验失败。
    EXPIRED = "EXPIRED"  # 访问令牌已过期。
    REVOKED = "REVOKED"  # 访问令牌已吊销。
    UNKNOWN_TOKEN = "UNKNOWN_TOKEN"  # 令牌在存储中不存在或主体不匹配。
    UNAUTHENTICATED = "UNAUTHENTICATED"  # 未携带访问令牌。
    INVALID_TOKEN = "INVALID_TOKEN"  # 令牌校验失败（对外统一码）。
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"  # 账号或角色已停用/删除。
    FORBIDDEN = "FORBIDDEN"  # 缺少所需权限。
    NO_TENANT_MEMBERSHIP = "NO_TENANT_MEMBERSHIP"  # 非超级管理员且未归属租户。
    CROSS_TENANT_ACCESS = "CROSS_TENANT_ACCESS"  # 访问其他租户资源。
    PROTECTED_ROLE = "PROTECTED_ROLE"  # 系统角色/权限不可变更。
    ROLE_IN_USE = "ROLE_IN_USE"  # 角色仍被用户使用。
    LEVEL_OUT_OF_RANGE = "LEVEL_OUT_OF_RANGE"  # 自定义角色级别越界。
    DUPLICATE_NAME = "DUPLICATE_NAME"  # 名称重复。
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"  # 租户自定义角色数量超限。
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    PERMISSION_NOT_FOUND = "PERMISSION_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"


# 访问令牌校验失败的具体原因，仅记录日志，不对外暴露。
TOKEN_VERIFY_FAILURES = frozenset(
    {
        AuthErrorCode.MALFORMED,
        AuthErrorCode.SIGNATURE_INVALID,
        AuthErrorCode.EXPIRED,
        AuthErrorCode.REVOKED,
        AuthErrorCode.UNKNOWN_TOKEN,
    }
)
# 刷新令牌失败原因。
TOKEN_REFRESH_FAILURES = frozenset(
    {
        AuthErrorCode.INVALID_OR_REVOKED_TOKEN,
        AuthErrorCode.EXPIRED_TOKEN,
        AuthErrorCode.ORPHANED_TOKEN,
    }
)

_STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.INVALID_CREDENTIALS: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.DUPLICATE_EMAIL: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.WEAK_PASSWORD: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.PASSWORD_MISMATCH: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.INVALID_TOKEN: status.HTTP_401_UNAUTHORIZED,
    AuthErrorCode.ACCOUNT_INACTIVE: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.NO_TENANT_MEMBERSHIP: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.CROSS_TENANT_ACCESS: status.HTTP_403_FORBIDDEN,
    AuthErrorCode.PROTECTED_ROLE: status.HTTP_409_CONFLICT,
    AuthErrorCode.ROLE_IN_USE: status.HTTP_409_CONFLICT,
    AuthErrorCode.LEVEL_OUT_OF_RANGE: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.DUPLICATE_NAME: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.QUOTA_EXCEEDED: status.HTTP_422_UNPROCESSABLE_CONTENT,
    AuthErrorCode.ROLE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.PERMISSION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AuthErrorCode.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}

_DEFAULT_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.INVALID_CREDENTIALS: "The provided credentials are incorrect.",
    AuthErrorCode.DUPLICATE_EMAIL: "The email has already been taken.",
    AuthErrorCode.WEAK_PASSWORD: "The password does not meet the password policy.",
    AuthErrorCode.PASSWORD_MISMATCH: "The password confirmation does not match.",
    AuthErrorCode.UNAUTHENTICATED: "Unauthenticated.",
    AuthErrorCode.INVALID_TOKEN: "The access token is invalid.",
    AuthErrorCode.ACCOUNT_INACTIVE: "Your account has been deactivated. Please contact the administrator.",
    AuthErrorCode.FORBIDDEN: "This action is unauthorized.",
    AuthErrorCode.NO_TENANT_MEMBERSHIP: "User is not assigned to any tenant.",
    AuthErrorCode.CROSS_TENANT_ACCESS: "You do not have access to this tenant.",
    AuthErrorCode.PROTECTED_ROLE: "System roles and permissions cannot be modified.",
    AuthErrorCode.ROLE_IN_USE: "Cannot delete a role that is assigned to users.",
    AuthErrorCode.LEVEL_OUT_OF_RANGE: "The role level is outside the allowed range.",
    AuthErrorCode.DUPLICATE_NAME: "The name has already been taken.",
    AuthErrorCode.QUOTA_EXCEEDED: "The tenant has reached its custom role limit.",
    AuthErrorCode.ROLE_NOT_FOUND: "Role not found.",
    AuthErrorCode.PERMISSION_NOT_FOUND: "Permission not found.",
    AuthErrorCode.USER_NOT_FOUND: "User not found.",
}


class AuthError(Exception):
    """认证授权核心统一异常。

    `detail` 仅用于日志，永远不会写入响应体。
    """

    def __init__(
        self,
        code: AuthErrorCode,
        message: str | None = None,
        *,
        field: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.code = code
        self.message = message or _DEFAULT_MESSAGES.get(code, "Request rejected.")
        self.field = field
        self.detail = detail
        super().__init__(f"{code}: {self.message}")

    @property
    def public_code(self) -> AuthErrorCode:
        """对外暴露的错误码。"""
        if self.code in TOKEN_VERIFY_FAILURES or self.code in TOKEN_REFRESH_FAILURES:
            return AuthErrorCode.INVALID_TOKEN
        return self.code

    @property
    def public_message(self) -> str:
        if self.public_code != self.code:
            return _DEFAULT_MESSAGES[self.public_code]
        return self.message

    @property
    def status_code(self) -> int:
        return _STATUS_BY_CODE.get(self.public_code, status.HTTP_400_BAD_REQUEST)

    def field_errors(self) -> dict[str, list[str]] | None:
        """返回字段级错误，供客户端定位输入问题。"""
        if not self.field:
            return None
        return {self.field: [self.public_message]}
