"""Record store contract shared by the Supabase, Postgres and in-memory backends.

Every backend is an explicitly constructed object exposing ``query``,
``select``, ``get``, ``insert`` and ``upsert``; callers receive it as an
argument instead of reaching for a module-level client.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional

from provider_directory.core.config import ConfigError, Settings
from provider_directory.etl.query import ProviderQuery, apply_query, null_order_key

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the record store rejects a read or write."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def check_upsert_options(on_conflict: str, ignore_duplicates: bool) -> None:
    if ignore_duplicates:
        raise ValueError("upserts must overwrite on conflict; ignore_duplicates is not supported")
    if not on_conflict:
        raise ValueError("on_conflict column is required for upserts")


def _project(row: Mapping[str, Any], columns: str) -> Dict[str, Any]:
    if columns.strip() == "*":
        return dict(row)
    wanted = [name.strip() for name in columns.split(",") if name.strip()]
    return {name: row.get(name) for name in wanted}


class MemoryStore:
    """Process-local store for development runs and tests."""

    def __init__(
        self,
        collections: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None,
        users: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._users = {token: dict(user) for token, user in (users or {}).items()}
        for name, rows in (collections or {}).items():
            for row in rows:
                self.insert(name, row)

    def _table(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    def query(self, query: ProviderQuery) -> List[Dict[str, Any]]:
        return apply_query(query, self._table(query.collection).values())

    def select(
        self,
        collection: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        rows = [
            row
            for row in self._table(collection).values()
            if all(row.get(key) == value for key, value in (filters or {}).items())
        ]
        if order_by:
            rows = sorted(
                rows,
                key=lambda row: null_order_key(row.get(order_by)),
                reverse=not ascending,
            )
        return [_project(row, columns) for row in rows]

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._table(collection).get(record_id)
        return dict(row) if row is not None else None

    def insert(self, collection: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(collection)
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        if stored["id"] in table:
            raise StoreError(f"duplicate key {stored['id']} in {collection}", status_code=409)
        table[stored["id"]] = stored
        return dict(stored)

    def upsert(
        self,
        collection: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        on_conflict: str = "id",
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        check_upsert_options(on_conflict, ignore_duplicates)
        table = self._table(collection)
        written: List[Dict[str, Any]] = []
        for row in rows:
            key = row.get(on_conflict)
            if not key:
                raise StoreError(f"row is missing conflict column '{on_conflict}'", status_code=400)
            table[key] = dict(row)
            written.append(dict(row))
        logger.debug("Upserted %d rows into %s", len(written), collection)
        return written

    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        user = self._users.get(access_token)
        return dict(user) if user is not None else None


def create_store(settings: Settings) -> Any:
    """Construct the backend named by ``settings.store_backend``."""
    if settings.store_backend == "memory":
        logger.warning("Using the in-memory store; data will not survive a restart.")
        return MemoryStore()

    if settings.store_backend == "postgres":
        from provider_directory.core.db import PostgresStore

        if not settings.database_url:
            raise ConfigError("DATABASE_URL is required for the postgres store")
        return PostgresStore(settings.database_url)

    from provider_directory.vendors.supabase import SupabaseStore

    if not settings.supabase_url or not settings.supabase_anon_key:
        raise ConfigError("SUPABASE_URL and SUPABASE_ANON_KEY are required for the supabase store")
    return SupabaseStore(settings.supabase_url, settings.supabase_anon_key)
