"""CLI job to fetch Yelp plumber listings and upsert them into the store."""

import argparse
import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from provider_directory.core.config import ConfigError, Settings, get_settings, require_yelp_api_key
from provider_directory.core.store import StoreError, create_store
from provider_directory.etl.transform import (
    Clock,
    NormalizationError,
    YearsEstimator,
    estimate_years_experience,
    random_years_experience,
    to_service_provider,
    utcnow,
)
from provider_directory.models import PROVIDERS_TABLE, ServiceProvider, SyncFailure, SyncReport
from provider_directory.vendors import yelp

logger = logging.getLogger(__name__)


class SyncError(RuntimeError):
    """Raised when the upsert fails; ``report`` holds the counts reached."""

    def __init__(self, message: str, report: SyncReport) -> None:
        super().__init__(message)
        self.report = report


def normalize_batch(
    businesses: Iterable[Mapping[str, Any]],
    *,
    estimate_years: YearsEstimator = estimate_years_experience,
    clock: Clock = utcnow,
) -> Tuple[List[ServiceProvider], List[SyncFailure]]:
    """Normalize each business independently, collecting failures instead of raising."""
    providers: List[ServiceProvider] = []
    failures: List[SyncFailure] = []
    for index, business in enumerate(businesses):
        if not isinstance(business, Mapping):
            logger.warning("Skipping business #%d: expected an object, got %s", index, type(business).__name__)
            failures.append(SyncFailure(index=index, business_id=None, reason="business record is not an object"))
            continue
        try:
            providers.append(to_service_provider(business, estimate_years=estimate_years, clock=clock))
        except (NormalizationError, AttributeError, TypeError, ValueError) as exc:
            business_id = business.get("id")
            logger.warning("Skipping business #%d (%s): %s", index, business_id, exc)
            failures.append(SyncFailure(index=index, business_id=business_id, reason=str(exc)))
    return providers, failures


def sync_businesses(
    store: Any,
    businesses: List[Mapping[str, Any]],
    *,
    estimate_years: YearsEstimator = estimate_years_experience,
    clock: Clock = utcnow,
) -> SyncReport:
    """Normalize ``businesses`` and upsert the survivors in one request keyed on id."""
    providers, failures = normalize_batch(businesses, estimate_years=estimate_years, clock=clock)
    report = SyncReport(fetched=len(businesses), normalized=len(providers), failures=failures)

    if not providers:
        logger.warning("No businesses normalized out of %d fetched. Skipping upsert.", report.fetched)
        return report

    try:
        written = store.upsert(
            PROVIDERS_TABLE,
            [provider.to_row() for provider in providers],
            on_conflict="id",
            ignore_duplicates=False,
        )
    except StoreError as exc:
        logger.error("Failed to upsert %d providers: %s", len(providers), exc)
        raise SyncError(f"Failed to sync providers: {exc}", report) from exc

    # Some backends return nothing on success; every row was sent in one request.
    report.upserted = len(written) if written else len(providers)
    logger.info(
        "Sync complete: fetched=%d normalized=%d upserted=%d failed=%d",
        report.fetched,
        report.normalized,
        report.upserted,
        len(report.failures),
    )
    return report


def run_sync_job(
    *,
    store: Optional[Any] = None,
    settings: Optional[Settings] = None,
    term: Optional[str] = None,
    location: Optional[str] = None,
    neighborhood: Optional[str] = None,
    max_price: Optional[str] = None,
    min_rating: Optional[float] = None,
    limit: Optional[int] = None,
    randomize_experience: bool = False,
) -> SyncReport:
    settings = settings or get_settings()
    api_key = require_yelp_api_key(settings)
    store = store if store is not None else create_store(settings)

    businesses = yelp.search_local_plumbers(
        api_key,
        term=term,
        neighborhood=neighborhood,
        max_price=max_price,
        min_rating=min_rating,
        location=location or settings.yelp_default_location,
        limit=limit or settings.sync_limit,
    )
    logger.info("Fetched %d businesses from Yelp", len(businesses))

    estimator = random_years_experience if randomize_experience else estimate_years_experience
    return sync_businesses(store, businesses, estimate_years=estimator)


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync Yelp plumber listings into the directory")
    parser.add_argument("--term", dest="term", help="Extra search term appended to 'plumber'")
    parser.add_argument("--location", dest="location", default=settings.yelp_default_location, help="Yelp location")
    parser.add_argument("--neighborhood", dest="neighborhood", help="Only keep businesses whose address mentions this")
    parser.add_argument("--max-price", dest="max_price", help="Yelp price filter, e.g. '1,2'")
    parser.add_argument("--min-rating", dest="min_rating", type=float, help="Minimum rating to sync")
    parser.add_argument(
        "--limit",
        dest="limit",
        type=int,
        default=settings.sync_limit,
        help="Maximum number of businesses to request",
    )
    parser.add_argument(
        "--randomize-experience",
        dest="randomize_experience",
        action="store_true",
        help="Draw a fresh years_experience estimate on every sync",
    )
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    try:
        report = run_sync_job(
            term=args.term,
            location=args.location,
            neighborhood=args.neighborhood,
            max_price=args.max_price,
            min_rating=args.min_rating,
            limit=args.limit,
            randomize_experience=args.randomize_experience,
        )
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
    except SyncError as exc:
        logger.error("Sync failed after normalizing %d of %d businesses: %s", exc.report.normalized, exc.report.fetched, exc)
        raise SystemExit(1) from exc
    except Exception as exc:  # noqa: BLE001
        logger.error("Sync job failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc

    for failure in report.failures:
        logger.warning("Not synced: #%d %s (%s)", failure.index, failure.business_id, failure.reason)


if __name__ == "__main__":
    main()
