from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from core.database import Base, utcnow


class Link(Base):
    """
    Класс короткой ссылки.

    Атрибуты:
        id (int): Уникальный идентификатор ссылки.
        shortcode (str): Короткий код, регистрозависимый, не меняется после создания.
        url (str): Адрес назначения.
        title (str | None): Заголовок ссылки.
        description (str | None): Описание ссылки.
        tags (list[str]): Теги без повторов.
        password_hash (str | None): Хэш пароля, если ссылка защищена.
        activates_at (datetime | None): Начало окна действия ссылки.
        expires_at (datetime | None): Окончание окна действия ссылки.
        redirect_type (int): HTTP-код редиректа (301, 302, 307 или 308).
        archived (bool): Ссылка скрыта и не перенаправляет.
        clicks (int): Количество переходов, только растёт.
        last_clicked (datetime | None): Время последнего перехода.
        owner_id (int): Идентификатор аккаунта, создавшего ссылку.
        created (datetime): Дата и время создания.
        updated (datetime): Дата и время последнего изменения.
    """

    __tablename__ = "links"
    id = Column(Integer, primary_key=True, index=True)
    shortcode = Column(String(50), unique=True, index=True, nullable=False)
    url = Column(Text, nullable=False)
    title = Column(String(200), nullable=True)
    description = Column(String(200), nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    password_hash = Column(String(255), nullable=True)
    activates_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    redirect_type = Column(Integer, nullable=False, default=301)
    archived = Column(Boolean, nullable=False, default=False)
    clicks = Column(Integer, nullable=False, default=0)
    last_clicked = Column(DateTime(timezone=True), nullable=True)
    owner_id = Column(Integer, index=True, nullable=False)
    created = Column(DateTime(timezone=True), default=utcnow)
    updated = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def password_enabled(self) -> bool:
        return bool(self.password_hash)
