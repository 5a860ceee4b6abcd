"""Client utilities for the Yelp Fusion business search API."""

import logging
from typing import Any, Dict, List, Optional

import requests

from provider_directory.core.config import ConfigError

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://api.yelp.com/v3"
_TIMEOUT = 10

DEFAULT_TERM = "plumber"
DEFAULT_CATEGORIES = "plumbing"
DEFAULT_SORT_BY = "rating"
DEFAULT_LIMIT = 20
LOCAL_LOCATION = "San Francisco, CA"
LOCAL_LIMIT = 50


class YelpError(RuntimeError):
    """Raised when the Yelp API is unreachable or returns a non-successful response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _headers(api_key: str) -> Dict[str, str]:
    if not api_key:
        raise ConfigError("Yelp API key not configured. Set YELP_API_KEY in your environment or .env file.")
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


def _get(path: str, api_key: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    headers = _headers(api_key)
    try:
        response = _SESSION.get(f"{_BASE_URL}{path}", params=params, headers=headers, timeout=_TIMEOUT)
    except requests.RequestException as exc:
        logger.error("Yelp request %s failed: %s", path, exc)
        raise YelpError(f"Yelp API unreachable: {exc}") from exc
    if not response.ok:
        logger.error("Yelp request %s failed: status=%s reason=%s", path, response.status_code, response.reason)
        raise YelpError(f"Yelp API error: {response.status_code} {response.reason}", status_code=response.status_code)
    return response.json()


def build_search_params(
    *,
    term: Optional[str] = None,
    location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: Optional[int] = None,
    categories: Optional[str] = None,
    price: Optional[str] = None,
    open_now: bool = False,
    sort_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> Dict[str, str]:
    params = {
        "term": term or DEFAULT_TERM,
        "categories": categories or DEFAULT_CATEGORIES,
        "sort_by": sort_by or DEFAULT_SORT_BY,
        "limit": str(limit or DEFAULT_LIMIT),
    }
    if location:
        params["location"] = location
    if latitude is not None:
        params["latitude"] = str(latitude)
    if longitude is not None:
        params["longitude"] = str(longitude)
    if radius:
        params["radius"] = str(radius)
    if price:
        params["price"] = price
    if open_now:
        params["open_now"] = "true"
    if offset:
        params["offset"] = str(offset)
    return params


def search_businesses(api_key: str, **search: Any) -> Dict[str, Any]:
    """Run one business search; returns the payload with ``businesses`` and ``total``."""
    params = build_search_params(**search)
    logger.info("Searching Yelp term=%s location=%s limit=%s", params["term"], params.get("location"), params["limit"])
    payload = _get("/businesses/search", api_key, params=params)
    payload.setdefault("businesses", [])
    payload.setdefault("total", len(payload["businesses"]))
    return payload


def business_details(api_key: str, business_id: str) -> Dict[str, Any]:
    if not business_id:
        raise ValueError("business_id is required")
    return _get(f"/businesses/{business_id}", api_key)


def search_local_plumbers(
    api_key: str,
    *,
    term: Optional[str] = None,
    neighborhood: Optional[str] = None,
    max_price: Optional[str] = None,
    min_rating: Optional[float] = None,
    location: str = LOCAL_LOCATION,
    limit: int = LOCAL_LIMIT,
) -> List[Dict[str, Any]]:
    """City-scoped plumber search with rating and neighborhood narrowing applied locally."""
    payload = search_businesses(
        api_key,
        term=f"{DEFAULT_TERM} {term}" if term else DEFAULT_TERM,
        location=location,
        categories=DEFAULT_CATEGORIES,
        sort_by=DEFAULT_SORT_BY,
        price=max_price,
        limit=limit,
    )
    businesses = payload["businesses"]

    if min_rating:
        businesses = [b for b in businesses if (b.get("rating") or 0) >= min_rating]
    if neighborhood:
        needle = neighborhood.lower()
        businesses = [
            b
            for b in businesses
            if any(needle in str(line).lower() for line in (b.get("location") or {}).get("display_address") or [])
        ]

    logger.info("Yelp returned %d plumbers after local filters", len(businesses))
    return businesses
