import redis
from fastapi import Depends, Request
from pydantic import BaseModel, ConfigDict

from core.cache import get_redis
from core.config import Settings, get_settings
from core.errors import ServiceUnavailableError, UnauthorizedError
from core.logger import get_logger

logger = get_logger(__name__)


class CurrentUser(BaseModel):
    """
    Аккаунт, от имени которого выполняется запрос.

    Атрибуты:
        id (int): Идентификатор аккаунта, владельца ссылок.

    model_config:
        Используется ConfigDict с поддержкой создания экземпляров модели из ORM-объектов.
    """

    model_config = ConfigDict(from_attributes=True)
    id: int


def session_token(request: Request, settings: Settings) -> str | None:
    token = request.cookies.get(settings.session_cookie)
    if token:
        return token
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def get_current_user(
    request: Request,
    redis_client: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    """
    Возвращает текущий аккаунт по токену сессии.

    Сессии выдаёт внешний сервис авторизации и кладёт в Redis пару <token> -> <account id>;
    здесь токен только проверяется.
    """

    token = session_token(request, settings)
    if not token:
        raise UnauthorizedError("Not authenticated")

    try:
        user_id = redis_client.get(token)
    except redis.RedisError as e:
        logger.error(f"Session store unavailable: {e}")
        raise ServiceUnavailableError("Session store unavailable")

    if not user_id:
        raise UnauthorizedError("Session is invalid or expired")
    return CurrentUser(id=int(user_id))
