from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.logger import get_logger

logger = get_logger("errors")


class AppError(Exception):
    """
    Базовая ошибка сервиса.

    Атрибуты:
        status_code (int): HTTP-статус ответа.
        category (str): Категория ошибки, попадает в тело ответа.
        message (str): Сообщение для клиента.
    """

    status_code = 500
    category = "internal"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    status_code = 404
    category = "not_found"


class GoneError(AppError):
    status_code = 410
    category = "gone"


class ConflictError(AppError):
    status_code = 409
    category = "conflict"


class ValidationError(AppError):
    status_code = 400
    category = "validation"


class UnauthorizedError(AppError):
    status_code = 401
    category = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    category = "forbidden"


class RateLimitedError(AppError):
    status_code = 429
    category = "rate_limited"


class ServiceUnavailableError(AppError):
    status_code = 503
    category = "unavailable"


def error_body(message: str, category: str) -> dict:
    return {
        "error": message,
        "category": category,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.category))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        parts = []
        for err in exc.errors():
            location = ".".join(str(item) for item in err.get("loc", ()) if item != "body")
            parts.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
        return JSONResponse(status_code=400, content=error_body("; ".join(parts) or "Invalid request", "validation"))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=error_body("Internal server error", "internal"))
