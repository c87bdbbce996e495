from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, String, Text, UniqueConstraint
from core.database import Base


class ClickEventRecord(Base):
    """
    Сырое событие перехода (журнал приёма), хранится ограниченное время.

    Атрибуты:
        shortcode (str): Код ссылки, по которой был переход.
        owner_id (int): Владелец ссылки на момент перехода.
        occurred_at (datetime): Время перехода (UTC).
        is_bot (bool): Переход сделан ботом или сервисом предпросмотра.
        referrer (str | None): Заголовок Referer как есть.
        referrer_host (str | None): Хост из Referer.
        country (str | None): Код страны ISO 3166-1 alpha-2.
        user_agent (str | None): Заголовок User-Agent.
        device, browser, os (str): Выведенные из User-Agent семейства.
        utm_* (str | None): UTM-метки, только если были в запросе.
    """

    __tablename__ = "click_events"
    id = Column(Integer, primary_key=True, index=True)
    shortcode = Column(String(50), nullable=False)
    owner_id = Column(Integer, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_bot = Column(Boolean, nullable=False, default=False)
    referrer = Column(Text, nullable=True)
    referrer_host = Column(String(255), nullable=True)
    country = Column(String(2), nullable=True)
    user_agent = Column(Text, nullable=True)
    device = Column(String(16), nullable=False)
    browser = Column(String(32), nullable=False)
    os = Column(String(32), nullable=False)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_click_events_shortcode_occurred_at", "shortcode", "occurred_at"),
    )


class ClickBucket(Base):
    """
    Количество переходов за час.

    Атрибуты:
        scope (str): Код ссылки или ключ всех ссылок владельца ("all:<owner_id>").
        day (date): Календарный день (UTC).
        hour (int): Час суток 0-23 (UTC).
        is_bot (bool): Счётчик ботов или людей.
        clicks (int): Количество переходов.
    """

    __tablename__ = "click_buckets"
    id = Column(Integer, primary_key=True)
    scope = Column(String(64), nullable=False)
    day = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)
    is_bot = Column(Boolean, nullable=False)
    clicks = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("scope", "day", "hour", "is_bot", name="uq_click_buckets"),
    )


class DimensionBucket(Base):
    """
    Количество переходов за день по значению одного измерения (referrer, страна, устройство, UTM...).
    """

    __tablename__ = "dimension_buckets"
    id = Column(Integer, primary_key=True)
    scope = Column(String(64), nullable=False)
    day = Column(Date, nullable=False)
    dimension = Column(String(32), nullable=False)
    key = Column(String(255), nullable=False)
    is_bot = Column(Boolean, nullable=False)
    clicks = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("scope", "day", "dimension", "key", "is_bot", name="uq_dimension_buckets"),
        Index("ix_dimension_buckets_lookup", "scope", "dimension", "day"),
    )
