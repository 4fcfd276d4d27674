"""健康检查接口。

存活检查只说明进程在运行；就绪检查逐项检查外部依赖，
数据库不可用时返回 503，吊销缓存不可用只降级不拒绝。
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ekklesia_api.core.security import ping_revocation_cache
from ekklesia_api.db.session import get_db
from ekklesia_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from ekklesia_api.utils.response import success

logger = logging.getLogger("ekklesia_api.health")

router = APIRouter(prefix="/health", tags=["health"])


def _check_database(db: Session) -> str:
    try:
        db.execute(text("select 1"))
    except SQLAlchemyError:
        logger.error("readiness database check failed", exc_info=True)
        return "unavailable"
    return "ok"


@router.get(
    "/live",
    summary="存活检查",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
)
def live(request: Request):
    return success(request, {"status": "ok", "checks": None})


@router.get(
    "/ready",
    summary="就绪检查",
    description="检查数据库与令牌吊销缓存。数据库失败返回 503；缓存失败时状态为 degraded。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={503: {"model": SuccessResponse[HealthStatusData]}, 500: {"model": ErrorResponse}},
)
def ready(request: Request, response: Response, db: Session = Depends(get_db)):
    checks = {"database": _check_database(db), "revocation_cache": ping_revocation_cache()}
    if checks["database"] != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        overall = "unavailable"
    elif checks["revocation_cache"] == "unavailable":
        overall = "degraded"
    else:
        overall = "ready"
    return success(request, {"status": overall, "checks": checks})
