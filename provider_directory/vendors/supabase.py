"""Supabase (PostgREST + GoTrue) client used as the record store."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import requests

from provider_directory.core.store import StoreError, check_upsert_options
from provider_directory.etl.query import ProviderQuery, to_postgrest_params

logger = logging.getLogger(__name__)

Params = Sequence[Tuple[str, str]]


class SupabaseStore:
    """Record store backed by a Supabase project's REST endpoint."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: int = 10,
    ) -> None:
        if not url or not anon_key:
            raise ValueError("url and anon_key are required")
        self._rest_url = f"{url.rstrip('/')}/rest/v1"
        self._auth_url = f"{url.rstrip('/')}/auth/v1"
        self._anon_key = anon_key
        self._session = session or requests.Session()
        self._timeout = timeout

    def _headers(self, access_token: Optional[str] = None, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        collection: str,
        *,
        params: Optional[Params] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self._rest_url}/{collection}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer=prefer),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error("Supabase %s %s failed: %s", method, collection, exc)
            raise StoreError(f"{method} {collection} failed: {exc}") from exc
        if not response.ok:
            logger.error(
                "Supabase %s %s failed: status=%s body=%s",
                method,
                collection,
                response.status_code,
                response.text[:500],
            )
            raise StoreError(
                f"{method} {collection} failed with {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return []
        return response.json()

    def query(self, query: ProviderQuery) -> List[Dict[str, Any]]:
        return self._request("GET", query.collection, params=to_postgrest_params(query)) or []

    def select(
        self,
        collection: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        params: List[Tuple[str, str]] = [("select", columns)]
        for key, value in (filters or {}).items():
            params.append((key, f"eq.{value}"))
        if order_by:
            params.append(("order", f"{order_by}.{'asc' if ascending else 'desc'}"))
        return self._request("GET", collection, params=params) or []

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self.select(collection, filters={"id": record_id})
        return rows[0] if rows else None

    def insert(self, collection: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        written = self._request("POST", collection, json=[dict(row)], prefer="return=representation")
        return written[0] if written else dict(row)

    def upsert(
        self,
        collection: str,
        rows: Iterable[Mapping[str, Any]],
        *,
        on_conflict: str = "id",
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        check_upsert_options(on_conflict, ignore_duplicates)
        payload = [dict(row) for row in rows]
        written = self._request(
            "POST",
            collection,
            params=[("on_conflict", on_conflict)],
            json=payload,
            prefer="resolution=merge-duplicates,return=representation",
        )
        logger.info("Upserted %d rows into %s", len(payload), collection)
        return written or []

    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Resolve an access token to its user; ``None`` when the token is rejected."""
        try:
            response = self._session.get(
                f"{self._auth_url}/user",
                headers=self._headers(access_token=access_token),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error("Supabase auth lookup failed: %s", exc)
            raise StoreError(f"auth lookup failed: {exc}") from exc
        if response.status_code in (401, 403):
            return None
        if not response.ok:
            raise StoreError(
                f"auth lookup failed with {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        return response.json()


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason or response.text[:200]
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("msg") or payload.get("error") or payload)
    return str(payload)
