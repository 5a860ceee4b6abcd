"""Read helpers for the directory pages and review submission."""

import logging
from typing import Any, Callable, Dict, List, Optional

from provider_directory.core.store import StoreError
from provider_directory.etl.transform import utcnow
from provider_directory.models import PROVIDERS_TABLE, REVIEWS_TABLE, Review

logger = logging.getLogger(__name__)


class ProviderNotFound(LookupError):
    """Raised when a provider id does not exist in the store."""


class ReviewValidationError(ValueError):
    """Raised when a submitted review is incomplete or out of range."""


def list_neighborhoods(store: Any) -> List[str]:
    """Distinct neighborhoods for the filter dropdown; empty on store errors."""
    try:
        rows = store.select(PROVIDERS_TABLE, columns="neighborhood", order_by="neighborhood")
    except StoreError as exc:
        logger.error("Error fetching neighborhoods: %s", exc)
        return []
    return sorted({row["neighborhood"] for row in rows if row.get("neighborhood")})


def list_specialties(store: Any) -> List[str]:
    try:
        rows = store.select(PROVIDERS_TABLE, columns="specialties")
    except StoreError as exc:
        logger.error("Error fetching specialties: %s", exc)
        return []
    return sorted({specialty for row in rows for specialty in row.get("specialties") or [] if specialty})


def list_reviews(store: Any, provider_id: str) -> List[Dict[str, Any]]:
    return store.select(REVIEWS_TABLE, filters={"plumber_id": provider_id}, order_by="created_at", ascending=False)


def get_provider_with_reviews(store: Any, provider_id: str) -> Dict[str, Any]:
    """Provider row plus its reviews, newest first.

    A failed provider lookup propagates; a failed review lookup only costs
    the reviews.
    """
    provider = store.get(PROVIDERS_TABLE, provider_id)
    if provider is None:
        raise ProviderNotFound(provider_id)

    try:
        reviews = list_reviews(store, provider_id)
    except StoreError as exc:
        logger.error("Error fetching reviews for %s: %s", provider_id, exc)
        reviews = []

    return {"plumber": provider, "reviews": reviews}


def submit_review(
    store: Any,
    provider_id: str,
    user_id: str,
    rating: Any,
    comment: Optional[str] = None,
    *,
    clock: Callable = utcnow,
) -> Dict[str, Any]:
    """Insert a review written by ``user_id``.

    The provider's aggregate rating and total_reviews are left untouched.
    """
    if not provider_id:
        raise ReviewValidationError("provider id is required")
    if not user_id:
        raise ReviewValidationError("an authenticated user is required")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ReviewValidationError("rating must be an integer between 1 and 5")
    if store.get(PROVIDERS_TABLE, provider_id) is None:
        raise ProviderNotFound(provider_id)

    comment = (comment or "").strip() or None
    review = Review(plumber_id=provider_id, user_id=user_id, rating=rating, comment=comment, created_at=clock())
    created = store.insert(REVIEWS_TABLE, review.to_row())
    logger.info("Stored review for provider %s by user %s", provider_id, user_id)
    return created
