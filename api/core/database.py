import os
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from core.config import get_settings
from core.logger import get_logger

logger = get_logger("database")

DATABASE_URL = get_settings().database_url

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    # Клики записываются фоновыми задачами из пула потоков
    connect_args = {"check_same_thread": False, "timeout": 30}
    db_path = DATABASE_URL.replace("sqlite:///", "", 1)
    db_dir = os.path.dirname(db_path)
    if db_dir and db_path != ":memory:":
        os.makedirs(db_dir, exist_ok=True)

logger.info(f"Connecting to database {DATABASE_URL.split('@')[-1]}")
engine = create_engine(DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite возвращает naive datetime даже для DateTime(timezone=True), считаем их UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
