"""令牌密钥加载、Bearer 解析与吊销缓存。"""

from datetime import datetime, timezone
from functools import lru_cache
import logging
from pathlib import Path
import re

from redis import Redis
from redis.exceptions import RedisError

from ekklesia_api.core.config import get_settings
from ekklesia_api.core.errors import AuthError, AuthErrorCode

logger = logging.getLogger("ekklesia_api.security")

_redis_client: Redis | None = None
_redis_client_url: str | None = None


@lru_cache
def _read_key_file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def load_signing_key() -> str:
    """返回签名私钥，仅签发方调用。"""
    settings = get_settings()
    if settings.auth_private_key:
        return settings.auth_private_key
    if settings.auth_private_key_path:
        return _read_key_file(settings.auth_private_key_path)
    raise RuntimeError("token signing key is not configured (EKK_AUTH_PRIVATE_KEY[_PATH])")


def load_verification_key() -> str:
    """返回验签公钥。"""
    settings = get_settings()
    if settings.auth_public_key:
        return settings.auth_public_key
    if settings.auth_public_key_path:
        return _read_key_file(settings.auth_public_key_path)
    raise RuntimeError("token verification key is not configured (EKK_AUTH_PUBLIC_KEY[_PATH])")


def _is_placeholder_token(token: str) -> bool:
    return ("{{" in token and "}}" in token) or ("${" in token and "}" in token)


def extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise AuthError(AuthErrorCode.UNAUTHENTICATED, detail="missing authorization header")
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    for candidate in reversed(tokens):
        token = candidate.strip()
        # 调试工具未替换的变量占位符视同未携带令牌。
        if token and not _is_placeholder_token(token):
            return token
    raise AuthError(AuthErrorCode.UNAUTHENTICATED, detail="no usable bearer token")


def _get_redis() -> Redis | None:
    global _redis_client, _redis_client_url
    settings = get_settings()
    if not settings.redis_url:
        return None
    if _redis_client is None or _redis_client_url != settings.redis_url:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
        _redis_client_url = settings.redis_url
    return _redis_client


def _key_for_jti(jti: str) -> str:
    settings = get_settings()
    return f"{settings.auth_token_blacklist_prefix}{jti}"


def cache_revoked_jti(jti: str, expires_at: datetime) -> None:
    """将已吊销的 jti 写入缓存，保留到令牌自然过期。

    数据库仍是权威来源，缓存不可用时仅记录告警。
    """
    redis_client = _get_redis()
    if redis_client is None:
        return
    ttl = max(1, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
    try:
        redis_client.setex(_key_for_jti(jti), ttl, "1")
    except RedisError:
        logger.warning("revocation cache write failed jti=%s", jti, exc_info=True)


def is_jti_cached_as_revoked(jti: str) -> bool:
    """命中吊销缓存时可提前拒绝，未命中仍需查库。"""
    redis_client = _get_redis()
    if redis_client is None:
        return False
    try:
        return bool(redis_client.exists(_key_for_jti(jti)))
    except RedisError:
        logger.warning("revocation cache read failed jti=%s", jti, exc_info=True)
        return False


def ping_revocation_cache() -> str:
    """返回吊销缓存状态：disabled / ok / unavailable。"""
    redis_client = _get_redis()
    if redis_client is None:
        return "disabled"
    try:
        redis_client.ping()
    except RedisError:
        logger.warning("revocation cache ping failed", exc_info=True)
        return "unavailable"
    return "ok"
