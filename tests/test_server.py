import pytest
import requests

from provider_directory.core.config import Settings
from provider_directory.core.store import MemoryStore, StoreError
from provider_directory.jobs import server
from provider_directory.models import SyncReport
from provider_directory.vendors.supabase import SupabaseStore
from provider_directory.vendors.yelp import YelpError


@pytest.fixture
def store():
    return MemoryStore(
        {
            "plumbers": [
                {"id": "a", "name": "Alpha", "neighborhood": "Mission", "specialties": ["Drains"], "rating": 4.8, "hourly_rate": 120, "emergency_service": True},
                {"id": "b", "name": "Bravo", "neighborhood": "SoMa", "specialties": ["Leaks"], "rating": 4.5, "hourly_rate": 85, "emergency_service": False},
                {"id": "c", "name": "Charlie", "neighborhood": "Mission", "specialties": [], "rating": 3.9, "hourly_rate": None, "emergency_service": False},
            ]
        },
        users={"good-token": {"id": "user-1"}},
    )


@pytest.fixture
def settings():
    return Settings(store_backend="memory", yelp_api_key="key")


@pytest.fixture
def client(store, settings):
    return server.create_app(store=store, settings=settings).test_client()


def test_health_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["store_backend"] == "memory"
    assert body["sync_enabled"] is True


def test_search_defaults_to_rating_desc(client):
    response = client.get("/providers")
    assert response.status_code == 200
    assert [row["id"] for row in response.get_json()["data"]] == ["a", "b", "c"]


def test_search_applies_filters_and_ignores_bad_numbers(client):
    response = client.get("/providers?neighborhood=Mission&maxRate=abc&sortBy=rating&sortOrder=asc")
    assert response.status_code == 200
    assert [row["id"] for row in response.get_json()["data"]] == ["c", "a"]

    response = client.get("/providers?max_rate=100")
    assert [row["id"] for row in response.get_json()["data"]] == ["b"]


def test_search_store_error_returns_empty_results(settings):
    class BrokenStore(MemoryStore):
        def query(self, query):
            raise StoreError("down", status_code=503)

    client = server.create_app(store=BrokenStore(), settings=settings).test_client()
    response = client.get("/providers")
    assert response.status_code == 502
    assert response.get_json()["data"] == []


def test_provider_detail_and_not_found(client):
    response = client.get("/providers/a")
    assert response.status_code == 200
    assert response.get_json()["data"]["plumber"]["name"] == "Alpha"

    assert client.get("/providers/zzz").status_code == 404


def test_facet_endpoints(client):
    assert client.get("/neighborhoods").get_json()["data"] == ["Mission", "SoMa"]
    assert client.get("/specialties").get_json()["data"] == ["Drains", "Leaks"]


def test_submit_review_requires_valid_token(client):
    assert client.post("/providers/a/reviews", json={"rating": 5}).status_code == 401
    response = client.post("/providers/a/reviews", json={"rating": 5}, headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_submit_review(client, store):
    headers = {"Authorization": "Bearer good-token"}
    assert client.post("/providers/a/reviews", json={"rating": 9}, headers=headers).status_code == 400
    assert client.post("/providers/zzz/reviews", json={"rating": 4}, headers=headers).status_code == 404

    response = client.post("/providers/a/reviews", json={"rating": 4, "comment": "Solid"}, headers=headers)
    assert response.status_code == 201
    review = response.get_json()["data"]
    assert review["user_id"] == "user-1"
    assert review["plumber_id"] == "a"

    detail = client.get("/providers/a").get_json()["data"]
    assert [r["comment"] for r in detail["reviews"]] == ["Solid"]


def test_sync_validates_payload(client):
    assert client.post("/sync", json={"min_rating": "bad"}).status_code == 400
    assert client.post("/sync", json={"limit": "bad"}).status_code == 400
    assert client.post("/sync", json={"limit": -5}).status_code == 400


def test_sync_passes_params_and_returns_report(client, monkeypatch):
    captured = {}

    def fake_run_sync_job(**kwargs):
        captured.update(kwargs)
        return SyncReport(fetched=3, normalized=2, upserted=2)

    monkeypatch.setattr(server, "run_sync_job", fake_run_sync_job)
    response = client.post("/sync", json={"term": "drain", "min_rating": 4.5, "limit": 10})

    assert response.status_code == 200
    assert response.get_json()["data"]["upserted"] == 2
    assert captured["term"] == "drain"
    assert captured["min_rating"] == 4.5
    assert captured["limit"] == 10


def test_sync_without_api_key_is_unavailable(store):
    client = server.create_app(store=store, settings=Settings(store_backend="memory")).test_client()
    response = client.post("/sync", json={})
    assert response.status_code == 503
    assert "YELP_API_KEY" in response.get_json()["error"]


def test_sync_upstream_error(client, monkeypatch):
    def failing(**kwargs):
        raise YelpError("Yelp API error: 429 Too Many Requests", status_code=429)

    monkeypatch.setattr(server, "run_sync_job", failing)
    response = client.post("/sync", json={})
    assert response.status_code == 502
    assert response.get_json()["upstream_status"] == 429


def test_search_with_unreachable_supabase_returns_json_error(settings):
    class DownSession:
        def request(self, *args, **kwargs):
            raise requests.ConnectionError("connection refused")

    store = SupabaseStore("https://demo.supabase.co", "anon", session=DownSession())
    client = server.create_app(store=store, settings=settings).test_client()

    response = client.get("/providers")
    assert response.status_code == 502
    assert response.get_json()["data"] == []
