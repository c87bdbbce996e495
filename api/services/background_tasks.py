import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

from core.config import get_settings
from core.database import SessionLocal, utcnow
from core.logger import get_logger
from services.recorder import ClickRecorder

logger = get_logger(__name__)


def prune_click_events(recorder: ClickRecorder, retention_days: int) -> int:
    """Удаляет сырые события старше retention_days дней. Агрегаты по часам и измерениям не трогаются."""
    cutoff = utcnow() - timedelta(days=retention_days)
    removed = recorder.prune(cutoff)
    if removed:
        logger.info(f"Pruned {removed} click events older than {cutoff.isoformat()}")
    return removed


async def prune_click_events_periodically():
    """Запускает очистку сырых событий раз в PRUNE_INTERVAL_SECONDS"""
    settings = get_settings()
    recorder = ClickRecorder(SessionLocal)
    logger.info("Starting click events cleanup task")
    while True:
        try:
            await asyncio.to_thread(prune_click_events, recorder, settings.raw_event_retention_days)
        except Exception as e:
            logger.error(f"Click events cleanup failed: {e}")
        await asyncio.sleep(settings.prune_interval_seconds)


@asynccontextmanager
async def lifespan(app):
    """Запускает фоновые задачи при старте приложения"""
    logger.info("Starting background tasks")
    cleanup_task = asyncio.create_task(prune_click_events_periodically())
    yield
    logger.info("Stopping background tasks")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        logger.info("Cleanup task cancelled successfully")
