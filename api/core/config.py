import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    """
    Настройки сервиса, читаются из окружения один раз при старте.

    Атрибуты:
        database_url (str): Строка подключения SQLAlchemy.
        redis_url (str): Адрес Redis для токенов паролей и лимитов запросов.
        password_session_ttl (int): Время жизни токена после ввода пароля (секунды).
        recent_window_days (int): Длина "недавнего" окна в обзоре аналитики.
        max_range_days (int): Максимальная длина диапазона дат для аналитики.
        bot_signatures (tuple[str, ...]): Переопределение списка сигнатур ботов.
        reserved_paths_extra (tuple[str, ...]): Дополнительные зарезервированные пути.
    """

    database_url: str = "sqlite:///./data/links.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    log_dir: str = "logs"
    session_cookie: str = "session_id"
    password_session_ttl: int = 3600
    recent_window_days: int = 7
    default_range_days: int = 30
    max_range_days: int = 366
    max_hourly_range_days: int = 31
    breakdown_default_limit: int = 10
    breakdown_max_limit: int = 100
    list_default_limit: int = 100
    list_max_limit: int = 1000
    bulk_max_items: int = 100
    rate_limit_create_per_hour: int = 50
    rate_limit_redirect_per_minute: int = 0
    raw_event_retention_days: int = 90
    prune_interval_seconds: int = 3600
    bot_signatures: tuple[str, ...] = field(default_factory=tuple)
    reserved_paths_extra: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            log_dir=os.getenv("LOG_DIR", cls.log_dir),
            session_cookie=os.getenv("SESSION_COOKIE", cls.session_cookie),
            password_session_ttl=int(os.getenv("PASSWORD_SESSION_TTL", cls.password_session_ttl)),
            recent_window_days=int(os.getenv("RECENT_WINDOW_DAYS", cls.recent_window_days)),
            default_range_days=int(os.getenv("DEFAULT_RANGE_DAYS", cls.default_range_days)),
            max_range_days=int(os.getenv("MAX_RANGE_DAYS", cls.max_range_days)),
            max_hourly_range_days=int(os.getenv("MAX_HOURLY_RANGE_DAYS", cls.max_hourly_range_days)),
            breakdown_default_limit=int(os.getenv("BREAKDOWN_DEFAULT_LIMIT", cls.breakdown_default_limit)),
            breakdown_max_limit=int(os.getenv("BREAKDOWN_MAX_LIMIT", cls.breakdown_max_limit)),
            list_default_limit=int(os.getenv("LIST_DEFAULT_LIMIT", cls.list_default_limit)),
            list_max_limit=int(os.getenv("LIST_MAX_LIMIT", cls.list_max_limit)),
            bulk_max_items=int(os.getenv("BULK_MAX_ITEMS", cls.bulk_max_items)),
            rate_limit_create_per_hour=int(os.getenv("RATE_LIMIT_CREATE_PER_HOUR", cls.rate_limit_create_per_hour)),
            rate_limit_redirect_per_minute=int(
                os.getenv("RATE_LIMIT_REDIRECT_PER_MINUTE", cls.rate_limit_redirect_per_minute)
            ),
            raw_event_retention_days=int(os.getenv("RAW_EVENT_RETENTION_DAYS", cls.raw_event_retention_days)),
            prune_interval_seconds=int(os.getenv("PRUNE_INTERVAL_SECONDS", cls.prune_interval_seconds)),
            bot_signatures=_csv(os.getenv("BOT_SIGNATURES")),
            reserved_paths_extra=_csv(os.getenv("RESERVED_PATHS_EXTRA")),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
