from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import Settings
from core.database import as_utc, utcnow
from core.errors import ConflictError, NotFoundError, ValidationError
from core.logger import get_logger
from models.click import ClickBucket, ClickEventRecord, DimensionBucket
from models.link import Link
from services.passwords import hash_password
from services.reserved import ReservedPaths

logger = get_logger(__name__)

EDITABLE_FIELDS = ("url", "title", "description", "tags", "redirect_type", "archived", "activates_at", "expires_at")


def check_window(activates_at: datetime | None, expires_at: datetime | None) -> None:
    if activates_at and expires_at and as_utc(activates_at) >= as_utc(expires_at):
        raise ValidationError("activatesAt must be earlier than expiresAt")


def unique_tags(tags: list[str] | None) -> list[str]:
    return list(dict.fromkeys(tag.strip() for tag in tags or [] if tag and tag.strip()))


class LinkStore:
    """
    Хранилище ссылок поверх сессии SQLAlchemy.

    Все операции чтения и записи ссылок проходят через этот класс;
    набор зарезервированных путей и настройки передаются при создании.
    """

    def __init__(self, db: Session, reserved: ReservedPaths, settings: Settings):
        self.db = db
        self.reserved = reserved
        self.settings = settings

    def get(self, shortcode: str) -> Link | None:
        return self.db.execute(select(Link).where(Link.shortcode == shortcode)).scalar_one_or_none()

    def get_owned(self, shortcode: str, owner_id: int) -> Link:
        link = self.get(shortcode)
        if not link or link.owner_id != owner_id:
            raise NotFoundError("Link not found")
        return link

    def list_page(self, owner_id: int, limit: int | None = None, cursor: str | None = None) -> tuple[list[Link], str | None]:
        """
        Возвращает страницу ссылок владельца, отсортированных по коду.

        Returns:
            tuple: Список ссылок и курсор следующей страницы (None, если страница последняя).
        """

        limit = min(max(limit or self.settings.list_default_limit, 1), self.settings.list_max_limit)
        query = select(Link).where(Link.owner_id == owner_id).order_by(Link.shortcode).limit(limit + 1)
        if cursor:
            query = query.where(Link.shortcode > cursor)

        links = list(self.db.execute(query).scalars())
        next_cursor = None
        if len(links) > limit:
            links = links[:limit]
            next_cursor = links[-1].shortcode
        return links, next_cursor

    def count_for_owner(self, owner_id: int) -> int:
        return self.db.execute(select(func.count(Link.id)).where(Link.owner_id == owner_id)).scalar_one()

    def create(self, owner_id: int, data: dict) -> Link:
        """
        Создаёт ссылку.

        - Зарезервированный или уже занятый код приводит к ConflictError.
        - activatesAt не раньше expiresAt приводит к ValidationError, запись не создаётся.
        """

        shortcode = data["shortcode"]
        reserved_error = self.reserved.error_for(shortcode)
        if reserved_error:
            raise ConflictError(reserved_error)

        check_window(data.get("activates_at"), data.get("expires_at"))

        if self.get(shortcode):
            raise ConflictError("Shortcode already exists")

        password = data.get("password")
        link = Link(
            shortcode=shortcode,
            url=data["url"],
            title=data.get("title"),
            description=data.get("description") or "",
            tags=unique_tags(data.get("tags")),
            password_hash=hash_password(password) if password else None,
            activates_at=data.get("activates_at"),
            expires_at=data.get("expires_at"),
            redirect_type=data.get("redirect_type") or 301,
            archived=bool(data.get("archived", False)),
            clicks=0,
            owner_id=owner_id,
        )

        self.db.add(link)
        try:
            self.db.commit()
        except IntegrityError:
            # Параллельное создание с тем же кодом
            self.db.rollback()
            raise ConflictError("Shortcode already exists")
        self.db.refresh(link)

        logger.info(f"Link {shortcode} created by owner {owner_id}")
        return link

    def bulk_create(self, owner_id: int, items: list[dict]) -> dict:
        results = {"created": [], "conflicts": [], "errors": []}
        for data in items:
            try:
                results["created"].append(self.create(owner_id, data))
            except ConflictError:
                results["conflicts"].append(data["shortcode"])
            except ValidationError as e:
                results["errors"].append({"shortcode": data["shortcode"], "error": e.message})
        return results

    def update(self, shortcode: str, owner_id: int, changes: dict) -> Link:
        """
        Частично обновляет ссылку: меняются только переданные поля.

        - Отсутствующий password оставляет прежний пароль, пустой или null снимает защиту.
        - Окно действия проверяется по итоговым значениям.
        """

        link = self.get_owned(shortcode, owner_id)

        activates_at = changes.get("activates_at", link.activates_at)
        expires_at = changes.get("expires_at", link.expires_at)
        check_window(activates_at, expires_at)

        for name in EDITABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name == "tags":
                value = unique_tags(value)
            elif name == "redirect_type":
                value = value or 301
            elif name == "archived":
                value = bool(value)
            setattr(link, name, value)

        if "password" in changes:
            password = changes["password"]
            link.password_hash = hash_password(password) if password else None

        link.updated = utcnow()
        self.db.commit()
        self.db.refresh(link)

        logger.info(f"Link {shortcode} updated: {sorted(changes)}")
        return link

    def delete(self, shortcode: str, owner_id: int) -> None:
        """
        Удаляет ссылку вместе с сырыми событиями и счётчиками по этому коду.

        Счётчики владельца ("all:<owner_id>") сохраняют исторические итоги.
        """

        link = self.get_owned(shortcode, owner_id)

        self.db.execute(delete(ClickEventRecord).where(ClickEventRecord.shortcode == shortcode))
        self.db.execute(delete(ClickBucket).where(ClickBucket.scope == shortcode))
        self.db.execute(delete(DimensionBucket).where(DimensionBucket.scope == shortcode))
        self.db.delete(link)
        self.db.commit()

        logger.info(f"Link {shortcode} deleted by owner {owner_id}")

    def bulk_delete(self, shortcodes: list[str], owner_id: int) -> dict:
        results = {"deleted": [], "not_found": [], "errors": []}
        for shortcode in shortcodes:
            try:
                self.delete(shortcode, owner_id)
                results["deleted"].append(shortcode)
            except NotFoundError:
                results["not_found"].append(shortcode)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Bulk delete failed for {shortcode}: {e}")
                results["errors"].append({"shortcode": shortcode, "error": str(e)})
        return results
