import os
import sys
import os.path
from fnmatch import fnmatch

import pytest

# Добавляем папку "api" (которая находится в корневой директории проекта) в sys.path
api_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "api"))
if api_dir not in sys.path:
    sys.path.insert(0, api_dir)

# Устанавливаем переменные окружения для тестовой среды
os.environ["DATABASE_URL"] = "sqlite:///./test.db"  # тестовая база SQLite
os.environ["REDIS_URL"] = "redis://dummy:6379/0"       # dummy адрес для Redis
os.environ["LOG_DIR"] = ""                             # логи только в консоль

# Импортируем приложение (app.py находится в папке "api")
from app import app


class DummyRedis:
    """Хранит ключи в словаре; TTL не отслеживается."""

    def __init__(self, *args, **kwargs):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, *args, **kwargs):
        self.store[key] = str(value)
        return True

    def setex(self, key, ttl, value):
        self.store[key] = str(value)
        return True

    def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    def expire(self, key, ttl):
        return key in self.store

    def scan_iter(self, match="*"):
        return [key for key in list(self.store) if fnmatch(key, match)]

    def ping(self):
        return True

    def flushall(self):
        self.store.clear()


dummy_redis = DummyRedis()

# Подменяем Redis и аутентификацию для всех эндпоинтов
from core.cache import get_redis
from api.auth import CurrentUser, get_current_user

app.dependency_overrides[get_redis] = lambda: dummy_redis
app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=1)

# Явно создаём таблицы в тестовой базе
from core.database import Base, SessionLocal, engine
Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_state():
    # Каждый тест начинается с пустой базы и пустого Redis
    dummy_redis.flushall()
    db = SessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(table.delete())
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def redis_store():
    return dummy_redis


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
