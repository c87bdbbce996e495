from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from core.config import Settings
from core.database import utcnow
from core.errors import ValidationError
from models.click import ClickBucket, DimensionBucket
from services.recorder import DIMENSIONS

# Названия измерений, которые принимает API, и их ключи в dimension_buckets
DIMENSION_ALIASES = {name: name for name in DIMENSIONS}
DIMENSION_ALIASES.update({
    "referrer": "ref",
    "referer": "ref",
    "user-agent": "device",
    "user_agent": "device",
    "ua": "device",
})

INTERVALS = ("day", "hour")


@dataclass(frozen=True)
class DateRange:
    """Диапазон календарных дат, обе границы включительно."""

    start: date
    end: date

    @property
    def span(self) -> int:
        return (self.end - self.start).days + 1

    def days(self) -> list[date]:
        return [self.start + timedelta(days=offset) for offset in range(self.span)]


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValidationError(f"Invalid '{name}' date: {value!r}, expected YYYY-MM-DD")


def resolve_dimension(dimension: str | None) -> str:
    key = DIMENSION_ALIASES.get((dimension or "ref").strip().lower())
    if key is None:
        raise ValidationError(f"Unknown dimension: {dimension!r}")
    return key


class AnalyticsAggregator:
    """
    Чтение агрегатов переходов: обзор, временные ряды, разбивки по измерениям.

    Агрегатор только читает click_buckets и dimension_buckets. scope: либо код ссылки,
    либо ключ всех ссылок владельца ("all:<owner_id>"); права на scope проверяет вызывающий код.
    Переходы ботов не учитываются, если include_bots не включён явно.
    """

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    @staticmethod
    def today() -> date:
        return utcnow().date()

    def parse_range(self, date_from: str | None, date_to: str | None, interval: str = "day") -> DateRange:
        """
        Проверяет диапазон дат до любых вычислений.

        - Без to берётся сегодняшний день (UTC), без from берётся to минус DEFAULT_RANGE_DAYS-1 дней.
        - from позже to или слишком длинный диапазон приводят к ValidationError.
        """

        if interval not in INTERVALS:
            raise ValidationError(f"Unknown interval: {interval!r}, expected one of {', '.join(INTERVALS)}")

        end = _parse_date(date_to, "to") if date_to else self.today()
        start = (
            _parse_date(date_from, "from")
            if date_from
            else end - timedelta(days=self.settings.default_range_days - 1)
        )
        if start > end:
            raise ValidationError("'from' must not be later than 'to'")

        rng = DateRange(start, end)
        max_days = self.settings.max_hourly_range_days if interval == "hour" else self.settings.max_range_days
        if rng.span > max_days:
            raise ValidationError(f"Date range too large: {rng.span} days, maximum is {max_days}")
        return rng

    def resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.breakdown_default_limit
        if limit < 1:
            raise ValidationError("'limit' must be a positive integer")
        return min(limit, self.settings.breakdown_max_limit)

    def _clicks(self, scope: str, include_bots: bool):
        query = select(func.coalesce(func.sum(ClickBucket.clicks), 0)).where(ClickBucket.scope == scope)
        if not include_bots:
            query = query.where(ClickBucket.is_bot.is_(False))
        return query

    def _daily(self, scope: str, rng: DateRange, include_bots: bool) -> dict[date, int]:
        query = (
            select(ClickBucket.day, func.sum(ClickBucket.clicks))
            .where(ClickBucket.scope == scope, ClickBucket.day >= rng.start, ClickBucket.day <= rng.end)
            .group_by(ClickBucket.day)
        )
        if not include_bots:
            query = query.where(ClickBucket.is_bot.is_(False))
        return {day: int(clicks or 0) for day, clicks in self.db.execute(query)}

    def _hourly(self, scope: str, rng: DateRange, include_bots: bool) -> dict[tuple[date, int], int]:
        query = (
            select(ClickBucket.day, ClickBucket.hour, func.sum(ClickBucket.clicks))
            .where(ClickBucket.scope == scope, ClickBucket.day >= rng.start, ClickBucket.day <= rng.end)
            .group_by(ClickBucket.day, ClickBucket.hour)
        )
        if not include_bots:
            query = query.where(ClickBucket.is_bot.is_(False))
        return {(day, hour): int(clicks or 0) for day, hour, clicks in self.db.execute(query)}

    def overview(self, scope: str, total_links: int, include_bots: bool = False) -> dict:
        """
        Общие счётчики по scope.

        Returns:
            dict: total_clicks, total_links, clicks_today, weekly_total (за последние RECENT_WINDOW_DAYS дней),
                average_daily, bot_clicks и trend по дням недавнего окна.
        """

        today = self.today()
        window = DateRange(today - timedelta(days=self.settings.recent_window_days - 1), today)
        daily = self._daily(scope, window, include_bots)

        total = self.db.execute(self._clicks(scope, include_bots)).scalar_one()
        bots = self.db.execute(
            select(func.coalesce(func.sum(ClickBucket.clicks), 0))
            .where(ClickBucket.scope == scope, ClickBucket.is_bot.is_(True))
        ).scalar_one()
        weekly_total = sum(daily.values())

        return {
            "total_clicks": int(total),
            "total_links": total_links,
            "clicks_today": daily.get(today, 0),
            "weekly_total": weekly_total,
            "average_daily": round(weekly_total / window.span, 2),
            "bot_clicks": int(bots),
            "trend": [{"day": day.isoformat(), "clicks": daily.get(day, 0)} for day in window.days()],
        }

    def timeseries(self, scope: str, rng: DateRange, interval: str = "day", include_bots: bool = False) -> list[dict]:
        """Непрерывный ряд без пропусков: по точке на каждый день (или час) диапазона, пустые с нулём."""
        if interval == "hour":
            hourly = self._hourly(scope, rng, include_bots)
            return [
                {"date": f"{day.isoformat()}T{hour:02d}:00", "clicks": hourly.get((day, hour), 0)}
                for day in rng.days()
                for hour in range(24)
            ]

        daily = self._daily(scope, rng, include_bots)
        return [{"date": day.isoformat(), "clicks": daily.get(day, 0)} for day in rng.days()]

    def _dimension_query(self, scope: str, dimension: str, rng: DateRange, include_bots: bool):
        query = select(DimensionBucket.key, func.sum(DimensionBucket.clicks).label("total")).where(
            DimensionBucket.scope == scope,
            DimensionBucket.dimension == dimension,
            DimensionBucket.day >= rng.start,
            DimensionBucket.day <= rng.end,
        )
        if not include_bots:
            query = query.where(DimensionBucket.is_bot.is_(False))
        return query

    def breakdown(
        self,
        scope: str,
        rng: DateRange,
        dimension: str,
        limit: int | None = None,
        include_bots: bool = False,
    ) -> list[dict]:
        """
        Топ значений измерения по числу переходов.

        Сортировка по убыванию переходов, при равенстве по ключу по возрастанию;
        длина результата не больше BREAKDOWN_MAX_LIMIT.
        """

        dimension = resolve_dimension(dimension)
        limit = self.resolve_limit(limit)

        if dimension == "shortcode" and not scope.startswith("all:"):
            total = sum(self._daily(scope, rng, include_bots).values())
            return [{"key": scope, "clicks": total}] if total else []

        total = func.sum(DimensionBucket.clicks)
        query = (
            self._dimension_query(scope, dimension, rng, include_bots)
            .group_by(DimensionBucket.key)
            .order_by(total.desc(), DimensionBucket.key.asc())
            .limit(limit)
        )
        return [{"key": key, "clicks": int(clicks or 0)} for key, clicks in self.db.execute(query)]

    def timeseries_links(self, owner_scope: str, rng: DateRange, limit: int | None = None, include_bots: bool = False) -> dict:
        """Ряды по дням для самых популярных ссылок владельца за период."""
        top = self.breakdown(owner_scope, rng, "shortcode", limit or 5, include_bots)
        shortcodes = [item["key"] for item in top]
        labels = [day.isoformat() for day in rng.days()]
        if not shortcodes:
            return {"labels": labels, "series": []}

        query = (
            select(DimensionBucket.key, DimensionBucket.day, func.sum(DimensionBucket.clicks))
            .where(
                DimensionBucket.scope == owner_scope,
                DimensionBucket.dimension == "shortcode",
                DimensionBucket.key.in_(shortcodes),
                DimensionBucket.day >= rng.start,
                DimensionBucket.day <= rng.end,
            )
            .group_by(DimensionBucket.key, DimensionBucket.day)
        )
        if not include_bots:
            query = query.where(DimensionBucket.is_bot.is_(False))

        per_day = {(key, day): int(clicks or 0) for key, day, clicks in self.db.execute(query)}
        series = [
            {
                "shortcode": item["key"],
                "total": item["clicks"],
                "values": [per_day.get((item["key"], day), 0) for day in rng.days()],
            }
            for item in top
        ]
        return {"labels": labels, "series": series}

    def patterns(self, scope: str, rng: DateRange, include_bots: bool = False) -> dict:
        """Распределение переходов по часам суток и дням недели (понедельник = 0), время UTC."""
        hourly = [0] * 24
        weekly = [0] * 7
        heatmap = [[0] * 24 for _ in range(7)]

        for (day, hour), clicks in self._hourly(scope, rng, include_bots).items():
            weekday = day.weekday()
            hourly[hour] += clicks
            weekly[weekday] += clicks
            heatmap[weekday][hour] += clicks

        return {"hourly": hourly, "weekly": weekly, "heatmap": heatmap}

    def export_rows(
        self,
        owner_scope: str,
        rng: DateRange,
        shortcode: str | None = None,
        include_bots: bool = False,
    ) -> Iterator[tuple[str, str, int]]:
        query = (
            select(DimensionBucket.day, DimensionBucket.key, func.sum(DimensionBucket.clicks))
            .where(
                DimensionBucket.scope == owner_scope,
                DimensionBucket.dimension == "shortcode",
                DimensionBucket.day >= rng.start,
                DimensionBucket.day <= rng.end,
            )
            .group_by(DimensionBucket.day, DimensionBucket.key)
            .order_by(DimensionBucket.day, DimensionBucket.key)
        )
        if shortcode:
            query = query.where(DimensionBucket.key == shortcode)
        if not include_bots:
            query = query.where(DimensionBucket.is_bot.is_(False))

        for day, key, clicks in self.db.execute(query):
            yield day.isoformat(), key, int(clicks or 0)
