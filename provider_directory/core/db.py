"""Direct Postgres record store built on psycopg2."""

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import psycopg2
from psycopg2 import extras, pool

from provider_directory.core.store import StoreError, check_upsert_options
from provider_directory.etl.query import ProviderQuery, to_sql

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"invalid identifier: {name!r}")
    return name


def _adapt(value: Any) -> Any:
    if isinstance(value, dict):
        return extras.Json(value)
    return value


def _prepare_params(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {_identifier(key): _adapt(value) for key, value in row.items()}


def _jsonable(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value.isoformat() if isinstance(value, datetime) else value for key, value in row.items()}


def _upsert_sql(collection: str, columns: Sequence[str], on_conflict: str) -> str:
    updates = ", ".join(f"{column} = EXCLUDED.{column}" for column in columns if column != on_conflict)
    return (
        f"INSERT INTO {_identifier(collection)} ({', '.join(columns)}) VALUES %s "
        f"ON CONFLICT ({_identifier(on_conflict)}) DO UPDATE SET {updates} RETURNING *"
    )


class PostgresStore:
    """Record store talking to Postgres through a pooled psycopg2 connection."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5) -> None:
        if not dsn:
            raise RuntimeError("DATABASE_URL is required for database connections")
        self._dsn = dsn
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def init_pool(self) -> pool.SimpleConnectionPool:
        """Initialise and return this store's connection pool."""
        if self._pool is None:
            self._pool = pool.SimpleConnectionPool(
                self._minconn,
                self._maxconn,
                dsn=self._dsn,
                connect_timeout=10,
            )
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
        finally:
            pg_pool.putconn(conn)

    def _fetch(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            with self.get_connection() as conn:
                with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                    cur.execute(sql, params)
                    rows = cur.fetchall()
        except psycopg2.Error as exc:
            logger.error("Query failed: %s", exc)
            raise StoreError(f"query failed: {exc}") from exc
        return [_jsonable(row) for row in rows]

    def _write(self, sql: str, rows: List[Dict[str, Any]], template: str) -> List[Dict[str, Any]]:
        try:
            with self.get_connection() as conn:
                try:
                    with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                        written = extras.execute_values(cur, sql, rows, template=template, fetch=True)
                    conn.commit()
                except psycopg2.Error:
                    conn.rollback()
                    raise
        except psycopg2.Error as exc:
            logger.error("Write failed: %s", exc)
            raise StoreError(f"write failed: {exc}") from exc
        return [_jsonable(row) for row in written or []]

    def query(self, query: ProviderQuery) -> List[Dict[str, Any]]:
        sql, params = to_sql(query)
        return self._fetch(sql, params)

    def select(
        self,
        collection: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        if columns.strip() == "*":
            column_sql = "*"
        else:
            column_sql = ", ".join(_identifier(name.strip()) for name in columns.split(",") if name.strip())
        sql = f"SELECT {column_sql} FROM {_identifier(collection)}"
        params = _prepare_params(filters or {})
        if params:
            sql += " WHERE " + " AND ".join(f"{key} = %({key})s" for key in params)
        if order_by:
            sql += f" ORDER BY {_identifier(order_by)} {'ASC' if ascending else 'DESC'}"
        return self._fetch(sql, params)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self.select(collection, filters={"id": record_id})
        return rows[0] if rows else None

    def insert(self, collection: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        params = _prepare_params(row)
        columns = list(params)
        sql = f"INSERT INTO {_identifier(collection)} ({', '.join(columns)}) VALUES %s RETURNING *"
        template = "(" + ", ".join(f"%({column})s" for column in columns) + ")"
        written = self._write(sql, [params], template)
        logger.debug("Inserted row into %s", collection)
        return written[0] if written else dict(row)

    def upsert(
        self,
        collection: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        on_conflict: str = "id",
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        """Insert-or-replace ``rows``; a conflicting row is overwritten column by column."""
        check_upsert_options(on_conflict, ignore_duplicates)
        prepared = [_prepare_params(row) for row in rows]
        if not prepared:
            return []
        columns = list(prepared[0])
        if on_conflict not in columns:
            raise ValueError(f"rows must include the conflict column '{on_conflict}'")
        template = "(" + ", ".join(f"%({column})s" for column in columns) + ")"
        written = self._write(_upsert_sql(collection, columns, on_conflict), prepared, template)
        logger.info("Upserted %d rows into %s", len(written), collection)
        return written
