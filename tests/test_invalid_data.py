import pytest_asyncio
import httpx
from app import app

from core.database import SessionLocal
from models.link import Link


@pytest_asyncio.fixture
async def async_client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

import pytest


def link_exists(shortcode):
    db = SessionLocal()
    try:
        return db.query(Link).filter_by(shortcode=shortcode).first() is not None
    finally:
        db.close()


@pytest.mark.asyncio
async def test_create_link_invalid_url(async_client):
    data = {"shortcode": "abc", "url": "not-a-valid-url"}
    response = await async_client.post("/api/links", json=data)
    assert response.status_code == 400
    body = response.json()
    assert body["category"] == "validation"
    assert "url" in body["error"].lower()


@pytest.mark.asyncio
@pytest.mark.parametrize("shortcode", ["a", "has space", "slash/code", "x" * 51])
async def test_create_link_invalid_shortcode(async_client, shortcode):
    response = await async_client.post("/api/links", json={"shortcode": shortcode, "url": "https://example.com"})
    assert response.status_code == 400
    assert not link_exists(shortcode)


@pytest.mark.asyncio
async def test_create_link_reserved(async_client):
    response = await async_client.post("/api/links", json={"shortcode": "Admin", "url": "https://example.com"})
    assert response.status_code == 409
    assert "reserved" in response.json()["error"]
    assert not link_exists("Admin")


@pytest.mark.asyncio
async def test_create_link_named_all_is_reserved(async_client):
    # "all" обозначает в аналитике все ссылки владельца
    response = await async_client.post("/api/links", json={"shortcode": "all", "url": "https://example.com"})
    assert response.status_code == 409
    assert not link_exists("all")


@pytest.mark.asyncio
async def test_create_link_duplicate(async_client):
    data = {"shortcode": "dup123", "url": "https://example.com"}
    assert (await async_client.post("/api/links", json=data)).status_code == 201
    response = await async_client.post("/api/links", json={**data, "url": "https://other.example"})
    assert response.status_code == 409
    assert response.json()["error"] == "Shortcode already exists"


@pytest.mark.asyncio
async def test_create_link_window_must_be_ordered(async_client):
    data = {
        "shortcode": "window",
        "url": "https://example.com",
        "activatesAt": "2030-01-02T00:00:00Z",
        "expiresAt": "2030-01-01T00:00:00Z",
    }
    response = await async_client.post("/api/links", json=data)
    assert response.status_code == 400
    assert not link_exists("window")


@pytest.mark.asyncio
async def test_update_window_checked_against_stored_values(async_client):
    data = {"shortcode": "window", "url": "https://example.com", "expiresAt": "2030-01-01T00:00:00Z"}
    assert (await async_client.post("/api/links", json=data)).status_code == 201

    response = await async_client.put("/api/links/window", json={"activatesAt": "2031-01-01T00:00:00Z"})
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("field, value", [
    ("redirectType", 303),
    ("password", "short"),
    ("password", "password123"),
    ("title", "t" * 201),
    ("tags", ["t"] * 21),
])
async def test_create_link_invalid_fields(async_client, field, value):
    data = {"shortcode": "fields", "url": "https://example.com", field: value}
    response = await async_client.post("/api/links", json=data)
    assert response.status_code == 400
    assert not link_exists("fields")


@pytest.mark.asyncio
async def test_bulk_delete_invalid_shortcode(async_client):
    response = await async_client.request("DELETE", "/api/links/bulk", json={"shortcodes": ["ok-code", "bad code"]})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_invalid_breakdown_limit(async_client):
    response = await async_client.get("/api/analytics/breakdown", params={"limit": 0})
    assert response.status_code == 400
