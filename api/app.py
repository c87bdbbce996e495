import time
import uuid

from fastapi import FastAPI, Request

from api import analytics, links, meta, password, redirect
from core.database import Base, engine
from core.errors import register_exception_handlers
from core.logger import get_logger
from models import click, link  # noqa: F401
from services.background_tasks import lifespan

logger = get_logger("app")

app = FastAPI(title="Link Shortener API", version="1.0", lifespan=lifespan)
# Создаем таблицы, если они ещё не созданы
Base.metadata.create_all(bind=engine)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid.uuid4())
    start_time = time.time()

    logger.info(f"Request started: {request.method} {request.url.path} [{request_id}]")
    response = await call_next(request)
    duration = time.time() - start_time
    logger.info(
        f"Request completed: {request.method} {request.url.path} [{request_id}] "
        f"status={response.status_code} duration={duration:.3f}s"
    )

    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(links.router, prefix="/api/links", tags=["links"])
app.include_router(password.router, prefix="/api/password", tags=["password"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
app.include_router(meta.router, prefix="/api", tags=["meta"])
# Перенаправление ловит любой /{shortcode}, поэтому подключается последним
app.include_router(redirect.router, tags=["redirect"])
