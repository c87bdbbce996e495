import csv
import io
from typing import Iterator

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from api.auth import CurrentUser, get_current_user
from api.deps import get_aggregator, get_link_store
from api.links import CamelModel
from core.errors import ValidationError
from services.aggregator import AnalyticsAggregator
from services.link_store import LinkStore
from services.recorder import owner_scope

router = APIRouter()

ALL_LINKS = "all"


class TrendPoint(CamelModel):
    day: str
    clicks: int


class OverviewOut(CamelModel):
    """
    Обзор переходов по ссылке или по всем ссылкам аккаунта.

    Атрибуты:
        total_clicks (int): Все переходы за всё время.
        total_links (int): Число ссылок в выборке.
        clicks_today (int): Переходы за сегодня (UTC).
        weekly_total (int): Переходы за недавнее окно.
        average_daily (float): Среднее в день за недавнее окно.
        bot_clicks (int): Переходы ботов, в остальные счётчики не входят без includeBots.
        trend (list[TrendPoint]): Переходы по дням недавнего окна.
    """

    total_clicks: int
    total_links: int
    clicks_today: int
    weekly_total: int
    average_daily: float
    bot_clicks: int
    trend: list[TrendPoint]


class TimeseriesPoint(CamelModel):
    date: str
    clicks: int


class TimeseriesOut(CamelModel):
    points: list[TimeseriesPoint]


class LinkSeries(CamelModel):
    shortcode: str
    total: int
    values: list[int]


class TimeseriesLinksOut(CamelModel):
    labels: list[str]
    series: list[LinkSeries]


class BreakdownItem(CamelModel):
    key: str
    clicks: int


class BreakdownOut(CamelModel):
    items: list[BreakdownItem]


class PatternsOut(CamelModel):
    hourly: list[int]
    weekly: list[int]
    heatmap: list[list[int]]


def resolve_scope(scope: str | None, shortcode: str | None, store: LinkStore, current_user: CurrentUser) -> str:
    """Код ссылки текущего пользователя или его общий scope; чужая ссылка выглядит как несуществующая."""
    if scope not in (None, ALL_LINKS, "shortcode"):
        raise ValidationError(f"Unknown scope: {scope!r}, expected 'all' or 'shortcode'")
    if scope == "shortcode" and not shortcode:
        raise ValidationError("'shortcode' is required when scope is 'shortcode'")
    if scope == ALL_LINKS or not shortcode or (scope is None and shortcode == ALL_LINKS):
        return owner_scope(current_user.id)
    return store.get_owned(shortcode, current_user.id).shortcode


@router.get("/overview", response_model=OverviewOut)
def overview(
    scope: str | None = Query(None),
    shortcode: str | None = Query(None),
    include_bots: bool = Query(False, alias="includeBots"),
    store: LinkStore = Depends(get_link_store),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    scope = resolve_scope(scope, shortcode, store, current_user)
    total_links = store.count_for_owner(current_user.id) if scope.startswith("all:") else 1
    return aggregator.overview(scope, total_links, include_bots)


@router.get("/timeseries", response_model=TimeseriesOut)
def timeseries(
    scope: str | None = Query(None),
    shortcode: str | None = Query(None),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    interval: str = Query("day"),
    include_bots: bool = Query(False, alias="includeBots"),
    store: LinkStore = Depends(get_link_store),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Переходы по дням (или часам) за период, без пропусков.

    Args:
        date_from (str | None): Начало периода YYYY-MM-DD (query-параметр from).
        date_to (str | None): Конец периода включительно (query-параметр to).
        interval (str): day или hour.
    """

    rng = aggregator.parse_range(date_from, date_to, interval)
    scope = resolve_scope(scope, shortcode, store, current_user)
    return TimeseriesOut(points=aggregator.timeseries(scope, rng, interval, include_bots))


@router.get("/timeseries-links", response_model=TimeseriesLinksOut)
def timeseries_links(
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    limit: int = Query(5, ge=1, le=20),
    include_bots: bool = Query(False, alias="includeBots"),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    rng = aggregator.parse_range(date_from, date_to)
    return aggregator.timeseries_links(owner_scope(current_user.id), rng, limit, include_bots)


@router.get("/breakdown", response_model=BreakdownOut)
def breakdown(
    scope: str | None = Query(None),
    shortcode: str | None = Query(None),
    dimension: str = Query("ref"),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    limit: int | None = Query(None),
    include_bots: bool = Query(False, alias="includeBots"),
    store: LinkStore = Depends(get_link_store),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Топ значений измерения (ref, country, device, browser, os, utm_*, shortcode) за период.

    Сортировка по убыванию переходов, при равенстве по ключу; limit не больше BREAKDOWN_MAX_LIMIT.
    """

    rng = aggregator.parse_range(date_from, date_to)
    scope = resolve_scope(scope, shortcode, store, current_user)
    return BreakdownOut(items=aggregator.breakdown(scope, rng, dimension, limit, include_bots))


@router.get("/patterns", response_model=PatternsOut)
def patterns(
    scope: str | None = Query(None),
    shortcode: str | None = Query(None),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    include_bots: bool = Query(False, alias="includeBots"),
    store: LinkStore = Depends(get_link_store),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    rng = aggregator.parse_range(date_from, date_to)
    scope = resolve_scope(scope, shortcode, store, current_user)
    return aggregator.patterns(scope, rng, include_bots)


def csv_lines(rows: Iterator[tuple[str, str, int]]) -> Iterator[str]:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["date", "shortcode", "clicks"])
    for row in rows:
        writer.writerow(row)
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
    yield buffer.getvalue()


@router.get("/export")
def export_csv(
    scope: str | None = Query(None),
    shortcode: str | None = Query(None),
    date_from: str | None = Query(None, alias="from"),
    date_to: str | None = Query(None, alias="to"),
    include_bots: bool = Query(False, alias="includeBots"),
    store: LinkStore = Depends(get_link_store),
    aggregator: AnalyticsAggregator = Depends(get_aggregator),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Выгрузка переходов по дням и ссылкам в CSV (date,shortcode,clicks).

    Returns:
        StreamingResponse: CSV-файл analytics_<from>_<to>.csv.
    """

    rng = aggregator.parse_range(date_from, date_to)
    target = resolve_scope(scope, shortcode, store, current_user)
    shortcode = None if target.startswith("all:") else target

    # Строки читаются до ответа: сессия БД закрывается вместе с зависимостью
    rows = list(aggregator.export_rows(owner_scope(current_user.id), rng, shortcode, include_bots))
    filename = f"analytics_{rng.start.isoformat()}_{rng.end.isoformat()}.csv"
    return StreamingResponse(
        csv_lines(iter(rows)),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
