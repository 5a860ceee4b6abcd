import pytest

from provider_directory.core.config import ConfigError, Settings
from provider_directory.core.store import MemoryStore, StoreError, create_store
from provider_directory.etl.query import build_query
from provider_directory.models import SearchFilters


def test_upsert_replaces_rows_with_the_same_id():
    store = MemoryStore()
    store.upsert("plumbers", [{"id": "a", "name": "Old", "license_number": "L-1"}])
    store.upsert("plumbers", [{"id": "a", "name": "New"}])

    rows = store.select("plumbers")
    assert rows == [{"id": "a", "name": "New"}]


def test_upsert_requires_conflict_column_and_overwrite_mode():
    store = MemoryStore()
    with pytest.raises(StoreError):
        store.upsert("plumbers", [{"name": "no id"}])
    with pytest.raises(ValueError):
        store.upsert("plumbers", [{"id": "a"}], ignore_duplicates=True)


def test_insert_assigns_ids_and_rejects_duplicates():
    store = MemoryStore()
    created = store.insert("reviews", {"plumber_id": "a", "rating": 5})
    assert created["id"]

    with pytest.raises(StoreError) as excinfo:
        store.insert("reviews", {"id": created["id"]})
    assert excinfo.value.status_code == 409


def test_select_projects_filters_and_orders():
    store = MemoryStore(
        {
            "reviews": [
                {"id": "1", "plumber_id": "a", "created_at": "2024-01-01T00:00:00+00:00"},
                {"id": "2", "plumber_id": "b", "created_at": "2024-02-01T00:00:00+00:00"},
                {"id": "3", "plumber_id": "a", "created_at": "2024-03-01T00:00:00+00:00"},
            ]
        }
    )
    rows = store.select("reviews", columns="id", filters={"plumber_id": "a"}, order_by="created_at", ascending=False)
    assert rows == [{"id": "3"}, {"id": "1"}]


def test_query_evaluates_in_memory():
    store = MemoryStore({"plumbers": [{"id": "a", "rating": 4.0}, {"id": "b", "rating": 4.9}]})
    rows = store.query(build_query(SearchFilters(min_rating=4.5)))
    assert [row["id"] for row in rows] == ["b"]


def test_returned_rows_are_copies():
    store = MemoryStore({"plumbers": [{"id": "a", "name": "A"}]})
    store.get("plumbers", "a")["name"] = "mutated"
    assert store.get("plumbers", "a")["name"] == "A"


def test_get_user_resolves_known_tokens():
    store = MemoryStore(users={"token": {"id": "user-1"}})
    assert store.get_user("token") == {"id": "user-1"}
    assert store.get_user("other") is None


def test_create_store_memory():
    assert isinstance(create_store(Settings(store_backend="memory")), MemoryStore)


def test_create_store_requires_credentials():
    with pytest.raises(ConfigError):
        create_store(Settings(store_backend="supabase"))
    with pytest.raises(ConfigError):
        create_store(Settings(store_backend="postgres"))


def test_create_store_supabase():
    store = create_store(Settings(supabase_url="https://demo.supabase.co", supabase_anon_key="anon"))
    assert type(store).__name__ == "SupabaseStore"


def test_create_store_postgres_does_not_connect_eagerly(monkeypatch):
    from provider_directory.core import db

    def fail_pool(*args, **kwargs):
        raise AssertionError("pool should be created lazily")

    monkeypatch.setattr(db.pool, "SimpleConnectionPool", fail_pool)
    store = create_store(Settings(store_backend="postgres", database_url="postgres://u:p@h/db"))
    assert isinstance(store, db.PostgresStore)
