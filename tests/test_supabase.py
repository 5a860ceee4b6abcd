import json

import pytest
import requests

from provider_directory.core.store import StoreError
from provider_directory.etl.query import build_query
from provider_directory.models import SearchFilters
from provider_directory.vendors.supabase import SupabaseStore


class DummyResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


class DummySession:
    def __init__(self, response=None):
        self.calls = []
        self.response = response or DummyResponse(payload=[])

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json, "headers": headers})
        return self.response

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"method": "GET", "url": url, "headers": headers})
        return self.response


@pytest.fixture
def session():
    return DummySession()


@pytest.fixture
def store(session):
    return SupabaseStore("https://demo.supabase.co/", "anon", session=session)


def test_query_renders_postgrest_params(store, session):
    session.response = DummyResponse(payload=[{"id": "a"}])
    rows = store.query(build_query(SearchFilters(neighborhood="SoMa")))

    assert rows == [{"id": "a"}]
    call = session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == "https://demo.supabase.co/rest/v1/plumbers"
    assert ("neighborhood", "eq.SoMa") in call["params"]
    assert call["headers"]["apikey"] == "anon"
    assert call["headers"]["Authorization"] == "Bearer anon"


def test_upsert_merges_duplicates_on_id(store, session):
    session.response = DummyResponse(payload=[{"id": "a"}, {"id": "b"}])
    written = store.upsert("plumbers", [{"id": "a"}, {"id": "b"}])

    assert len(written) == 2
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["params"] == [("on_conflict", "id")]
    assert call["headers"]["Prefer"].startswith("resolution=merge-duplicates")
    assert call["json"] == [{"id": "a"}, {"id": "b"}]


def test_upsert_rejects_ignore_duplicates(store, session):
    with pytest.raises(ValueError):
        store.upsert("plumbers", [{"id": "a"}], ignore_duplicates=True)
    assert session.calls == []


def test_error_response_raises_store_error(store, session):
    session.response = DummyResponse(status_code=400, payload={"message": "column does not exist"}, reason="Bad Request")
    with pytest.raises(StoreError) as excinfo:
        store.select("plumbers", columns="nope")
    assert excinfo.value.status_code == 400
    assert "column does not exist" in str(excinfo.value)


def test_get_returns_none_when_missing(store, session):
    session.response = DummyResponse(payload=[])
    assert store.get("plumbers", "missing") is None
    assert ("id", "eq.missing") in session.calls[0]["params"]


def test_select_with_order(store, session):
    store.select("reviews", filters={"plumber_id": "a"}, order_by="created_at", ascending=False)
    params = session.calls[0]["params"]
    assert ("plumber_id", "eq.a") in params
    assert ("order", "created_at.desc") in params


def test_get_user(store, session):
    session.response = DummyResponse(payload={"id": "user-1", "email": "u@example.com"})
    assert store.get_user("token")["id"] == "user-1"
    call = session.calls[0]
    assert call["url"] == "https://demo.supabase.co/auth/v1/user"
    assert call["headers"]["Authorization"] == "Bearer token"

    session.response = DummyResponse(status_code=401, payload={"msg": "invalid JWT"})
    assert store.get_user("expired") is None


class DownSession:
    def request(self, *args, **kwargs):
        raise requests.ConnectionError("connection refused")

    def get(self, *args, **kwargs):
        raise requests.Timeout("timed out")


def test_transport_errors_become_store_errors():
    store = SupabaseStore("https://demo.supabase.co", "anon", session=DownSession())

    with pytest.raises(StoreError) as excinfo:
        store.query(build_query())
    assert "connection refused" in str(excinfo.value)
    assert excinfo.value.status_code is None

    with pytest.raises(StoreError):
        store.upsert("plumbers", [{"id": "a"}])
    with pytest.raises(StoreError):
        store.get_user("token")
