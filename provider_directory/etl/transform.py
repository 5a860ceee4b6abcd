"""Utilities for transforming Yelp business payloads into provider records."""

import logging
import random
import zlib
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Mapping, Optional

from provider_directory.models import ServiceProvider

logger = logging.getLogger(__name__)

DEFAULT_LOCALITY = "San Francisco"
DEFAULT_HOURLY_RATE = 85
HOURLY_RATE_BY_PRICE = {
    "$": 60,
    "$$": 85,
    "$$$": 120,
    "$$$$": 150,
}
MIN_YEARS_EXPERIENCE = 5
MAX_YEARS_EXPERIENCE = 24

YearsEstimator = Callable[[Mapping[str, Any]], int]
Clock = Callable[[], datetime]


class NormalizationError(ValueError):
    """Raised when a business payload cannot become a valid provider."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def estimate_years_experience(business: Mapping[str, Any]) -> int:
    """Placeholder estimate, stable for a given business id.

    Yelp publishes no experience data, so this is a pseudo-random value
    in [5, 24] seeded from the id rather than a measurement.
    """
    seed = zlib.crc32(str(business.get("id") or "").encode("utf-8"))
    span = MAX_YEARS_EXPERIENCE - MIN_YEARS_EXPERIENCE + 1
    return MIN_YEARS_EXPERIENCE + seed % span


def random_years_experience(business: Mapping[str, Any]) -> int:
    return random.randint(MIN_YEARS_EXPERIENCE, MAX_YEARS_EXPERIENCE)


def _require_text(business: Mapping[str, Any], key: str) -> str:
    value = business.get(key)
    if value is None or not str(value).strip():
        raise NormalizationError(f"business is missing required field '{key}'")
    return str(value)


def join_address(location: Mapping[str, Any]) -> str:
    display = location.get("display_address") or []
    if display:
        return ", ".join("" if line is None else str(line) for line in display)

    parts = [location.get("address1"), location.get("address2"), location.get("address3")]
    locality = " ".join(filter(None, [location.get("city"), location.get("state"), location.get("zip_code")]))
    return ", ".join(part for part in [*parts, locality] if part)


def derive_neighborhood(location: Mapping[str, Any], default: str = DEFAULT_LOCALITY) -> str:
    """Second display line up to its first comma, then city, then ``default``."""
    display = location.get("display_address") or []
    if len(display) > 1 and display[1]:
        candidate = str(display[1]).split(",")[0].strip()
        if candidate:
            return candidate
    city = str(location.get("city") or "").strip()
    return city or default


def hourly_rate_for_price(price: Optional[str]) -> int:
    return HOURLY_RATE_BY_PRICE.get(price or "", DEFAULT_HOURLY_RATE)


def offers_emergency_service(hours: Optional[Iterable[Mapping[str, Any]]]) -> bool:
    for entry in hours or []:
        if not isinstance(entry, Mapping):
            raise NormalizationError(f"hours entry {entry!r} is not an object")
        for period in entry.get("open") or []:
            if isinstance(period, Mapping) and period.get("is_overnight"):
                return True
    return False


def category_titles(categories: Optional[Iterable[Mapping[str, Any]]]) -> List[str]:
    """Category titles in source order; categories without a title are skipped."""
    titles: List[str] = []
    for category in categories or []:
        if not isinstance(category, Mapping):
            raise NormalizationError(f"category {category!r} is not an object")
        if category.get("title"):
            titles.append(str(category["title"]))
    return titles


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def describe(neighborhood: str, review_count: Any, rating: Any) -> str:
    return (
        f"Plumbing services in {neighborhood}. "
        f"{_format_number(review_count)} reviews with {_format_number(rating)} star rating."
    )


def to_service_provider(
    business: Mapping[str, Any],
    *,
    estimate_years: YearsEstimator = estimate_years_experience,
    clock: Clock = utcnow,
) -> ServiceProvider:
    """Map one Yelp business onto the canonical provider shape.

    Raises ``NormalizationError`` instead of substituting values for a
    missing id, name or phone.
    """
    business_id = _require_text(business, "id")
    name = _require_text(business, "name")
    phone = _require_text(business, "phone")

    rating = business.get("rating")
    if rating is None:
        rating = 0.0
    if isinstance(rating, bool) or not isinstance(rating, (int, float)) or not 0 <= rating <= 5:
        raise NormalizationError(f"rating {rating!r} is outside [0, 5]")
    review_count = business.get("review_count")
    if review_count is None:
        review_count = 0
    if isinstance(review_count, bool) or not isinstance(review_count, int) or review_count < 0:
        raise NormalizationError(f"review_count {review_count!r} must be a non-negative integer")

    location = business.get("location") or {}
    if not isinstance(location, Mapping):
        raise NormalizationError(f"location {location!r} is not an object")
    if not isinstance(location.get("display_address") or [], (list, tuple)):
        raise NormalizationError("location.display_address must be a list of lines")
    neighborhood = derive_neighborhood(location)
    specialties = category_titles(business.get("categories"))
    price = business.get("price")
    now = clock()

    return ServiceProvider(
        id=business_id,
        name=name,
        business_name=name,
        phone=phone,
        email=None,
        address=join_address(location),
        neighborhood=neighborhood,
        specialties=specialties,
        description=describe(neighborhood, review_count, rating),
        rating=rating,
        total_reviews=review_count,
        years_experience=estimate_years(business),
        license_number=None,
        hourly_rate=hourly_rate_for_price(price),
        emergency_service=offers_emergency_service(business.get("hours")),
        created_at=now,
        updated_at=now,
        yelp_url=business.get("url"),
        image_url=business.get("image_url"),
        price_level=price,
        distance=business.get("distance"),
        coordinates=business.get("coordinates"),
    )
