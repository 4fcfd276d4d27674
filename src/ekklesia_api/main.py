"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from ekklesia_api.api.router import api_router
from ekklesia_api.core.config import get_settings
from ekklesia_api.exceptions import register_exception_handlers
from ekklesia_api.middlewares import register_middlewares

settings = get_settings()


def _setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    _setup_logging()
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "Ekklesia 多租户教会管理后端的认证与授权核心。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "通过 Bearer 访问令牌认证；租户范围由令牌所属用户确定。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪检查。"},
            {"name": "auth", "description": "注册、登录、令牌刷新与登出。"},
            {"name": "roles", "description": "系统角色与租户自定义角色管理。"},
            {"name": "permissions", "description": "权限目录与授权关系维护。"},
            {"name": "users", "description": "用户启停与角色变更。"},
            {"name": "tenants", "description": "租户范围内的用户与角色查询。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
