from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from core.database import as_utc
from core.logger import get_logger
from models.click import ClickBucket, ClickEventRecord, DimensionBucket
from models.link import Link
from services.classifier import UTM_FIELDS, ClickEvent

logger = get_logger(__name__)

DIRECT = "Direct"
UNKNOWN = "Unknown"

DIMENSIONS = ("ref", "country", "device", "browser", "os", *(f"utm_{name}" for name in UTM_FIELDS), "shortcode")

UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def owner_scope(owner_id: int) -> str:
    return f"all:{owner_id}"


def dimension_values(event: ClickEvent) -> dict[str, str]:
    """Значения измерений перехода; отсутствующие заменяются на Direct/Unknown."""
    values = {
        "ref": event.referrer_host or DIRECT,
        "country": event.country or UNKNOWN,
        "device": event.device,
        "browser": event.browser,
        "os": event.os,
    }
    for name in UTM_FIELDS:
        values[f"utm_{name}"] = event.utm.get(name, DIRECT)
    return {dimension: value[:255] for dimension, value in values.items()}


def increment(db: Session, model, keys: dict, amount: int = 1) -> None:
    """Атомарно прибавляет amount к счётчику clicks строки с ключом keys, создавая её при необходимости."""
    insert = UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(model).values(**keys, clicks=amount)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(keys),
            set_={"clicks": model.clicks + stmt.excluded.clicks},
        )
        db.execute(stmt)
        return

    conditions = [getattr(model, name) == value for name, value in keys.items()]
    result = db.execute(update(model).where(*conditions).values(clicks=model.clicks + amount))
    if result.rowcount == 0:
        db.add(model(**keys, clicks=amount))
        db.flush()


def _event_from_record(record: ClickEventRecord) -> ClickEvent:
    utm = {}
    for name in UTM_FIELDS:
        value = getattr(record, f"utm_{name}")
        if value:
            utm[name] = value
    return ClickEvent(
        shortcode=record.shortcode,
        owner_id=record.owner_id,
        timestamp=as_utc(record.occurred_at),
        is_bot=record.is_bot,
        utm=utm,
        referrer=record.referrer,
        referrer_host=record.referrer_host,
        country=record.country,
        user_agent=record.user_agent or "",
        device=record.device,
        browser=record.browser,
        os=record.os,
    )


class ClickRecorder:
    """
    Записывает переходы: счётчик ссылки, журнал сырых событий и агрегаты по часам и измерениям.

    Запись выполняется фоновой задачей после отправки редиректа; любые ошибки
    логируются и не влияют на ответ пользователю.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(self, event: ClickEvent) -> None:
        try:
            if not self.increment_link(event):
                # Ссылку удалили до записи перехода
                logger.warning(f"Link {event.shortcode} no longer exists, click is not recorded")
                return
        except Exception as e:
            logger.error(f"Failed to increment clicks for {event.shortcode}: {e}")

        try:
            self.append(event)
        except Exception as e:
            logger.error(f"Failed to record click event for {event.shortcode}: {e}")

    def increment_link(self, event: ClickEvent) -> int:
        db = self.session_factory()
        try:
            # UPDATE ... SET clicks = clicks + 1 не теряет параллельные переходы
            result = db.execute(
                update(Link)
                .where(Link.shortcode == event.shortcode)
                .values(clicks=Link.clicks + 1, last_clicked=event.timestamp)
            )
            db.commit()
            return result.rowcount
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def append(self, event: ClickEvent) -> None:
        db = self.session_factory()
        try:
            db.add(ClickEventRecord(
                shortcode=event.shortcode,
                owner_id=event.owner_id,
                occurred_at=event.timestamp,
                is_bot=event.is_bot,
                referrer=event.referrer,
                referrer_host=event.referrer_host,
                country=event.country,
                user_agent=event.user_agent,
                device=event.device,
                browser=event.browser,
                os=event.os,
                **{f"utm_{name}": event.utm.get(name) for name in UTM_FIELDS},
            ))
            self._fold(db, event, (event.shortcode, owner_scope(event.owner_id)))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _fold(self, db: Session, event: ClickEvent, scopes: tuple[str, ...]) -> None:
        timestamp = as_utc(event.timestamp)
        day = timestamp.date()
        values = dimension_values(event)

        for scope in scopes:
            increment(db, ClickBucket, {"scope": scope, "day": day, "hour": timestamp.hour, "is_bot": event.is_bot})
            for dimension, key in values.items():
                increment(db, DimensionBucket, {
                    "scope": scope, "day": day, "dimension": dimension, "key": key, "is_bot": event.is_bot,
                })

        owner = owner_scope(event.owner_id)
        if owner in scopes:
            increment(db, DimensionBucket, {
                "scope": owner, "day": day, "dimension": "shortcode", "key": event.shortcode, "is_bot": event.is_bot,
            })

    def prune(self, before: datetime) -> int:
        """Удаляет сырые события старше before; агрегаты остаются."""
        db = self.session_factory()
        try:
            result = db.execute(delete(ClickEventRecord).where(ClickEventRecord.occurred_at < before))
            db.commit()
            return result.rowcount or 0
        finally:
            db.close()

    def rebuild(self, shortcode: str | None = None) -> int:
        """
        Пересчитывает агрегаты из сохранённых сырых событий.

        Args:
            shortcode (str | None): Если задан, пересчитываются только агрегаты этого кода,
                иначе все агрегаты, включая агрегаты владельцев.

        Returns:
            int: Количество переигранных событий.
        """

        db = self.session_factory()
        try:
            query = select(ClickEventRecord).order_by(ClickEventRecord.id)
            if shortcode:
                query = query.where(ClickEventRecord.shortcode == shortcode)
                db.execute(delete(ClickBucket).where(ClickBucket.scope == shortcode))
                db.execute(delete(DimensionBucket).where(DimensionBucket.scope == shortcode))
            else:
                db.execute(delete(ClickBucket))
                db.execute(delete(DimensionBucket))

            replayed = 0
            for record in db.execute(query).scalars().all():
                event = _event_from_record(record)
                scopes = (event.shortcode,) if shortcode else (event.shortcode, owner_scope(event.owner_id))
                self._fold(db, event, scopes)
                replayed += 1

            db.commit()
            logger.info(f"Rebuilt aggregates from {replayed} events (shortcode={shortcode or 'all'})")
            return replayed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
