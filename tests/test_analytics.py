import csv
import io
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
import httpx
from sqlalchemy import func
from app import app

from core.config import Settings
from core.database import SessionLocal
from models.click import ClickBucket, ClickEventRecord, DimensionBucket
from models.link import Link
from services.aggregator import AnalyticsAggregator
from services.classifier import ClickEvent
from services.recorder import ClickRecorder, owner_scope


@pytest_asyncio.fixture
async def async_client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def add_link(db, shortcode, owner_id=1):
    db.add(Link(shortcode=shortcode, url="https://example.com", owner_id=owner_id, tags=[]))
    db.commit()


def click(shortcode, when, owner_id=1, is_bot=False, **kwargs):
    return ClickEvent(shortcode=shortcode, owner_id=owner_id, timestamp=when, is_bot=is_bot, **kwargs)


def at(day, hour=12):
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


@pytest.fixture
def recorder():
    return ClickRecorder(SessionLocal)


@pytest.fixture
def aggregator(db_session):
    return AnalyticsAggregator(db_session, Settings())


def test_record_updates_link_log_and_buckets(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1), referrer_host="google.com", country="DE"))

    link = db_session.query(Link).filter_by(shortcode="abc").one()
    assert link.clicks == 1
    assert link.last_clicked is not None
    assert db_session.query(ClickEventRecord).count() == 1

    rng = aggregator.parse_range("2024-01-01", "2024-01-01")
    assert aggregator.breakdown("abc", rng, "ref") == [{"key": "google.com", "clicks": 1}]
    assert aggregator.breakdown("abc", rng, "country") == [{"key": "DE", "clicks": 1}]
    # Владелец видит переход в своём общем scope
    assert aggregator.breakdown(owner_scope(1), rng, "shortcode") == [{"key": "abc", "clicks": 1}]


def test_timeseries_fills_missing_days(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1)))
    recorder.record(click("abc", at(1, 18)))
    recorder.record(click("abc", at(3)))

    rng = aggregator.parse_range("2024-01-01", "2024-01-03")
    assert aggregator.timeseries("abc", rng) == [
        {"date": "2024-01-01", "clicks": 2},
        {"date": "2024-01-02", "clicks": 0},
        {"date": "2024-01-03", "clicks": 1},
    ]


def test_hourly_timeseries(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1, 5)))

    points = aggregator.timeseries("abc", aggregator.parse_range("2024-01-01", "2024-01-01", "hour"), "hour")
    assert len(points) == 24
    assert points[5] == {"date": "2024-01-01T05:00", "clicks": 1}
    assert sum(point["clicks"] for point in points) == 1


def test_bots_are_excluded_by_default(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1)))
    recorder.record(click("abc", at(1), is_bot=True))

    rng = aggregator.parse_range("2024-01-01", "2024-01-01")
    assert aggregator.timeseries("abc", rng)[0]["clicks"] == 1
    assert aggregator.timeseries("abc", rng, include_bots=True)[0]["clicks"] == 2

    # Счётчик ссылки учитывает все состоявшиеся переходы
    assert db_session.query(Link).filter_by(shortcode="abc").one().clicks == 2


def test_breakdown_order_and_limit(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    for host, count in (("b.com", 2), ("a.com", 2), ("c.com", 3), ("d.com", 1)):
        for _ in range(count):
            recorder.record(click("abc", at(1), referrer_host=host))

    rng = aggregator.parse_range("2024-01-01", "2024-01-01")
    items = aggregator.breakdown("abc", rng, "ref")
    assert [item["key"] for item in items] == ["c.com", "a.com", "b.com", "d.com"]
    assert len(aggregator.breakdown("abc", rng, "ref", limit=2)) == 2
    assert len(aggregator.breakdown("abc", rng, "ref", limit=1000)) == 4


def test_missing_dimensions_use_placeholders(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1)))

    rng = aggregator.parse_range("2024-01-01", "2024-01-01")
    assert aggregator.breakdown("abc", rng, "ref") == [{"key": "Direct", "clicks": 1}]
    assert aggregator.breakdown("abc", rng, "country") == [{"key": "Unknown", "clicks": 1}]
    assert aggregator.breakdown("abc", rng, "utm_source") == [{"key": "Direct", "clicks": 1}]


def test_patterns(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    # 1 января 2024 года - понедельник
    recorder.record(click("abc", at(1, 9)))
    recorder.record(click("abc", at(2, 9)))

    result = aggregator.patterns("abc", aggregator.parse_range("2024-01-01", "2024-01-07"))
    assert result["hourly"][9] == 2
    assert result["weekly"][0] == 1
    assert result["weekly"][1] == 1
    assert result["heatmap"][0][9] == 1


def test_rebuild_matches_incremental(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    add_link(db_session, "xyz")
    recorder.record(click("abc", at(1), referrer_host="a.com"))
    recorder.record(click("xyz", at(2)))

    rng = aggregator.parse_range("2024-01-01", "2024-01-02")
    before = aggregator.timeseries(owner_scope(1), rng)
    assert recorder.rebuild() == 2
    assert aggregator.timeseries(owner_scope(1), rng) == before
    assert aggregator.breakdown("abc", rng, "ref") == [{"key": "a.com", "clicks": 1}]


def test_prune_keeps_buckets(db_session, recorder, aggregator):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1)))

    assert recorder.prune(datetime(2024, 2, 1, tzinfo=timezone.utc)) == 1
    assert db_session.query(ClickEventRecord).count() == 0
    rng = aggregator.parse_range("2024-01-01", "2024-01-01")
    assert aggregator.timeseries("abc", rng)[0]["clicks"] == 1


def test_concurrent_clicks_are_not_lost(db_session, recorder):
    add_link(db_session, "abc")
    total = 20
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(recorder.record, [click("abc", at(1)) for _ in range(total)]))

    assert db_session.query(Link).filter_by(shortcode="abc").one().clicks == total
    bucket_clicks = db_session.query(func.sum(ClickBucket.clicks)).filter(ClickBucket.scope == "abc").scalar()
    assert bucket_clicks == total


def test_click_on_deleted_link_is_not_recorded(db_session, recorder):
    # Фоновая запись пришла после удаления ссылки
    recorder.record(click("gone", at(1)))

    assert db_session.query(ClickEventRecord).count() == 0
    assert db_session.query(ClickBucket).count() == 0
    assert db_session.query(DimensionBucket).count() == 0


def test_record_swallows_storage_errors(recorder, mocker):
    mocker.patch.object(recorder, "increment_link", side_effect=RuntimeError("db down"))
    mocker.patch.object(recorder, "append", side_effect=RuntimeError("db down"))
    # Ошибка записи не должна доходить до пользователя
    recorder.record(click("abc", at(1)))


@pytest.mark.asyncio
async def test_overview_endpoint(async_client, db_session, recorder, monkeypatch):
    monkeypatch.setattr(AnalyticsAggregator, "today", staticmethod(lambda: date(2024, 1, 3)))
    add_link(db_session, "abc")
    add_link(db_session, "xyz")
    recorder.record(click("abc", at(3)))
    recorder.record(click("xyz", at(2)))
    recorder.record(click("xyz", at(2), is_bot=True))

    response = await async_client.get("/api/analytics/overview")
    assert response.status_code == 200
    data = response.json()
    assert data["totalClicks"] == 2
    assert data["totalLinks"] == 2
    assert data["clicksToday"] == 1
    assert data["botClicks"] == 1
    assert len(data["trend"]) == 7

    response = await async_client.get("/api/analytics/overview", params={"shortcode": "abc"})
    assert response.json()["totalLinks"] == 1
    assert response.json()["totalClicks"] == 1

    response = await async_client.get("/api/analytics/overview", params={"includeBots": "true"})
    assert response.json()["totalClicks"] == 3


@pytest.mark.asyncio
async def test_timeseries_endpoint(async_client, db_session, recorder):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(2)))

    response = await async_client.get(
        "/api/analytics/timeseries", params={"shortcode": "abc", "from": "2024-01-01", "to": "2024-01-03"}
    )
    assert response.status_code == 200
    assert [point["clicks"] for point in response.json()["points"]] == [0, 1, 0]


@pytest.mark.asyncio
async def test_invalid_range_is_rejected(async_client):
    response = await async_client.get("/api/analytics/timeseries", params={"from": "2024-02-01", "to": "2024-01-01"})
    assert response.status_code == 400
    assert response.json()["category"] == "validation"

    response = await async_client.get("/api/analytics/breakdown", params={"dimension": "planet"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_foreign_link_analytics_not_found(async_client, db_session):
    add_link(db_session, "theirs", owner_id=2)
    response = await async_client.get("/api/analytics/overview", params={"shortcode": "theirs"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_breakdown_and_timeseries_links_endpoints(async_client, db_session, recorder):
    add_link(db_session, "abc")
    add_link(db_session, "xyz")
    recorder.record(click("abc", at(1), device="mobile"))
    recorder.record(click("abc", at(1), device="mobile"))
    recorder.record(click("xyz", at(2), device="desktop"))
    params = {"from": "2024-01-01", "to": "2024-01-02"}

    response = await async_client.get("/api/analytics/breakdown", params={**params, "dimension": "device"})
    assert response.json()["items"] == [{"key": "mobile", "clicks": 2}, {"key": "desktop", "clicks": 1}]

    response = await async_client.get("/api/analytics/timeseries-links", params=params)
    data = response.json()
    assert data["labels"] == ["2024-01-01", "2024-01-02"]
    assert data["series"][0] == {"shortcode": "abc", "total": 2, "values": [2, 0]}
    assert data["series"][1] == {"shortcode": "xyz", "total": 1, "values": [0, 1]}


@pytest.mark.asyncio
async def test_export_csv(async_client, db_session, recorder):
    add_link(db_session, "abc")
    recorder.record(click("abc", at(1)))
    recorder.record(click("abc", at(2)))

    response = await async_client.get("/api/analytics/export", params={"from": "2024-01-01", "to": "2024-01-02"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]

    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows == [["date", "shortcode", "clicks"], ["2024-01-01", "abc", "1"], ["2024-01-02", "abc", "1"]]


@pytest.mark.asyncio
async def test_scope_parameter(async_client, db_session, recorder):
    add_link(db_session, "abc")
    add_link(db_session, "xyz")
    recorder.record(click("abc", at(1)))
    recorder.record(click("xyz", at(1)))
    params = {"from": "2024-01-01", "to": "2024-01-01"}

    response = await async_client.get("/api/analytics/timeseries", params={**params, "scope": "shortcode"})
    assert response.status_code == 400

    response = await async_client.get(
        "/api/analytics/timeseries", params={**params, "scope": "shortcode", "shortcode": "abc"}
    )
    assert response.json()["points"] == [{"date": "2024-01-01", "clicks": 1}]

    response = await async_client.get("/api/analytics/timeseries", params={**params, "scope": "all"})
    assert response.json()["points"] == [{"date": "2024-01-01", "clicks": 2}]


def test_empty_range_is_zero_filled(aggregator):
    rng = aggregator.parse_range("2024-01-01", "2024-01-03")
    assert aggregator.timeseries("abc", rng) == [
        {"date": "2024-01-01", "clicks": 0},
        {"date": "2024-01-02", "clicks": 0},
        {"date": "2024-01-03", "clicks": 0},
    ]
    assert aggregator.breakdown("abc", rng, "country") == []


@pytest.mark.asyncio
async def test_link_named_all_is_queried_as_single_link(async_client, db_session, recorder):
    # Ссылка "all" могла появиться до того, как код стал зарезервированным
    add_link(db_session, "all")
    add_link(db_session, "other")
    for _ in range(5):
        recorder.record(click("other", at(1)))
    params = {"from": "2024-01-01", "to": "2024-01-01"}

    response = await async_client.get(
        "/api/analytics/timeseries", params={**params, "scope": "shortcode", "shortcode": "all"}
    )
    assert response.status_code == 200
    assert response.json()["points"] == [{"date": "2024-01-01", "clicks": 0}]

    response = await async_client.get("/api/analytics/timeseries", params={**params, "shortcode": "all"})
    assert response.json()["points"] == [{"date": "2024-01-01", "clicks": 5}]
