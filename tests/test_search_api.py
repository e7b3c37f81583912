"""API tests for POST /api/search with a stubbed pipeline."""

from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import api.routers.search as search_router
from api.main import app
from database import get_db
from database.models import Base
from database.schemas import SearchRequest, SearchResponse
from processor.normalizer import normalize_ad
from processor.search_pipeline import MissingAccessTokenError, SearchOutcome
from processor.search_store import find_search


class FakePipeline:
    def __init__(self, outcome=None, error=None):
        self.outcome = outcome
        self.error = error
        self.screenshots = None
        self.requests = []

    async def run(self, request, now=None):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.outcome


def _response(**kwargs) -> SearchResponse:
    ads = [
        normalize_ad({"id": "hot", "page_name": "Shop", "collation_count": 10, "days_running": 40}),
        normalize_ad({"id": "cold", "page_name": "Shop", "collation_count": 1, "days_running": 1}),
    ]
    kwargs.setdefault("source", "facebook_api")
    return SearchResponse(data=ads, total_pages=1, total_ads=len(ads), **kwargs)


@pytest.fixture
def client_with(monkeypatch):
    saved = []

    async def fake_save(search_name, body, response, session_factory=None):
        saved.append((search_name, body, response))

    monkeypatch.setattr(search_router, "save_search_task", fake_save)

    def _make(pipeline):
        app.dependency_overrides[search_router.get_pipeline] = lambda: pipeline
        return TestClient(app), saved

    yield _make
    app.dependency_overrides.clear()


def test_search_returns_camel_case_response(client_with):
    pipeline = FakePipeline(SearchOutcome(
        response=_response(facebook_library_url="https://www.facebook.com/ads/library/?q=x"),
    ))
    client, saved = client_with(pipeline)

    resp = client.post("/api/search", json={"searchType": "keyword", "value": "x", "minDays": "7"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["totalAds"] == 2
    assert body["totalPages"] == 1
    assert body["source"] == "facebook_api"
    assert body["facebookLibraryUrl"].endswith("q=x")
    assert [ad["id"] for ad in body["data"]] == ["hot", "cold"]
    assert body["data"][0]["hotness_score"] == 5
    assert body["data"][0]["flame_emoji"] == "\U0001F525" * 5
    assert pipeline.requests[0].min_days == 7
    assert saved == []


def test_search_schedules_save(client_with):
    response = _response(source="apify_scraping")
    pipeline = FakePipeline(SearchOutcome(response=response, save_name="Apify-x-CO-2025-06-01"))
    client, saved = client_with(pipeline)

    resp = client.post("/api/search", json={"value": "x", "useApify": True})

    assert resp.status_code == 200
    assert len(saved) == 1
    assert saved[0][0] == "Apify-x-CO-2025-06-01"
    assert saved[0][1].use_apify is True


def test_missing_token_is_server_error(client_with):
    client, _ = client_with(FakePipeline(error=MissingAccessTokenError("Access token not configured on server.")))
    resp = client.post("/api/search", json={"value": "x"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == {"message": "Access token not configured on server."}


def test_producer_failure_is_server_error(client_with):
    client, _ = client_with(FakePipeline(error=RuntimeError("Graph API down")))
    resp = client.post("/api/search", json={"value": "x"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == {"message": "Error searching ads", "error": "Graph API down"}


def test_invalid_body_is_rejected(client_with):
    client, _ = client_with(FakePipeline())
    resp = client.post("/api/search", json={"value": ["not", "a", "string"]})
    assert resp.status_code == 422


def test_health_reports_database_and_tokens():
    class FakeSession:
        async def execute(self, statement):
            return None

    async def fake_db():
        yield FakeSession()

    app.dependency_overrides[get_db] = fake_db
    try:
        resp = TestClient(app).get("/api/health")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert isinstance(body["facebook_token"], bool)
    assert "X-Process-Time" in resp.headers


# ── Background tasks ──

@pytest.mark.asyncio
async def test_save_search_task_persists(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        body = SearchRequest(value="x", country="CO", use_apify=True)
        await search_router.save_search_task("Apify-x", body, _response(source="apify_scraping"), factory)

        async with factory() as session:
            row = await find_search(session, "Apify-x")
        assert row is not None
        assert row.total_results == 2
        assert row.search_params["value"] == "x"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_save_search_task_swallows_errors():
    def broken_factory():
        raise RuntimeError("db unavailable")

    # logged, not raised
    await search_router.save_search_task("x", SearchRequest(value="x"), _response(), broken_factory)


@pytest.mark.asyncio
async def test_capture_screenshots_task_swallows_errors():
    class BrokenService:
        async def capture_batch(self, ads):
            raise RuntimeError("browser crashed")

    await search_router.capture_screenshots_task(BrokenService(), _response().data)
