from datetime import datetime

import redis
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import get_reserved_paths
from api.links import CamelModel
from core.cache import get_redis
from core.database import get_db
from core.logger import get_logger
from services.reserved import ReservedPaths

router = APIRouter()
logger = get_logger(__name__)


class ReservedPathsOut(CamelModel):
    reserved: list[str]
    count: int
    updated_at: datetime


@router.get("/meta/reserved-paths", response_model=ReservedPathsOut)
def reserved_paths(reserved: ReservedPaths = Depends(get_reserved_paths)):
    """Список кодов, которые нельзя занять, для проверки на стороне клиента."""
    return ReservedPathsOut(reserved=reserved.as_list(), count=len(reserved), updated_at=reserved.updated_at)


@router.get("/health")
def health(db: Session = Depends(get_db), redis_client: redis.Redis = Depends(get_redis)):
    """Проверка доступности базы данных и Redis. Если что-то недоступно, отвечает 503."""
    checks = {"database": "ok", "redis": "ok"}
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unavailable: {e}")
        checks["database"] = "unavailable"
    try:
        redis_client.ping()
    except redis.RedisError as e:
        logger.error(f"Health check: redis unavailable: {e}")
        checks["redis"] = "unavailable"

    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ok" if healthy else "degraded", **checks},
    )
