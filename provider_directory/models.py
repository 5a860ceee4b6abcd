"""Core data models shared by the search, review and sync code."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

PROVIDERS_TABLE = "plumbers"
REVIEWS_TABLE = "reviews"

SORT_FIELDS = ("rating", "hourly_rate", "total_reviews", "years_experience")
SORT_ORDERS = ("asc", "desc")
DEFAULT_SORT_BY = "rating"
DEFAULT_SORT_ORDER = "desc"


def _isoformat(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(slots=True)
class ServiceProvider:
    """Canonical listing entity stored in the ``plumbers`` collection.

    The trailing Yelp fields are only populated for records that came in
    through a sync run.
    """

    id: str
    name: str
    phone: str
    address: str = ""
    neighborhood: str = ""
    business_name: Optional[str] = None
    email: Optional[str] = None
    specialties: List[str] = field(default_factory=list)
    description: Optional[str] = None
    rating: float = 0.0
    total_reviews: int = 0
    years_experience: int = 0
    license_number: Optional[str] = None
    hourly_rate: Optional[float] = None
    emergency_service: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    yelp_url: Optional[str] = None
    image_url: Optional[str] = None
    price_level: Optional[str] = None
    distance: Optional[float] = None
    coordinates: Optional[Dict[str, float]] = None

    def to_row(self) -> Dict[str, Any]:
        """Serialise into a JSON-friendly row, every column included."""
        row = asdict(self)
        row["created_at"] = _isoformat(row["created_at"])
        row["updated_at"] = _isoformat(row["updated_at"])
        return row


@dataclass(slots=True)
class Review:
    plumber_id: str
    user_id: str
    rating: int
    comment: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        row = asdict(self)
        row["created_at"] = _isoformat(row["created_at"])
        if row["id"] is None:
            # The store assigns identities for new reviews.
            row.pop("id")
        return row


@dataclass(frozen=True)
class SearchFilters:
    """Transient filter state collected by the display layer."""

    search_term: Optional[str] = None
    neighborhood: Optional[str] = None
    specialty: Optional[str] = None
    emergency_only: bool = False
    max_rate: Optional[float] = None
    min_rating: Optional[float] = None
    sort_by: str = DEFAULT_SORT_BY
    sort_order: str = DEFAULT_SORT_ORDER


@dataclass(slots=True)
class SyncFailure:
    index: int
    business_id: Optional[str]
    reason: str


@dataclass(slots=True)
class SyncReport:
    """Counts reported back after a sync run."""

    fetched: int = 0
    normalized: int = 0
    upserted: int = 0
    failures: List[SyncFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
