"""HTTP entrypoint serving directory search, reviews and Yelp sync."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request

from provider_directory.core.config import ConfigError, Settings, get_settings
from provider_directory.core.directory import (
    ProviderNotFound,
    ReviewValidationError,
    get_provider_with_reviews,
    list_neighborhoods,
    list_specialties,
    submit_review,
)
from provider_directory.core.store import StoreError, create_store
from provider_directory.etl.query import FilterValidationError, coerce_filters, search_providers
from provider_directory.jobs.sync_yelp import SyncError, run_sync_job
from provider_directory.vendors.yelp import YelpError

logger = logging.getLogger(__name__)


def create_app(store: Optional[Any] = None, settings: Optional[Settings] = None) -> Flask:
    """Build the Flask app around an explicitly constructed store."""
    settings = settings or get_settings()
    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.config["STORE"] = store if store is not None else create_store(settings)

    # ---------- Routes ----------

    @app.get("/")
    def root() -> Any:
        """Simple root to avoid 404 on GET /"""
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        """Lightweight health endpoint; does not touch the store."""
        return (
            jsonify(
                {
                    "status": "ok",
                    "store_backend": settings.store_backend,
                    "sync_enabled": settings.sync_enabled,
                }
            ),
            200,
        )

    @app.get("/providers")
    def providers() -> Any:
        """
        Search providers.
        Query params: search_term, neighborhood, specialty, emergency_only,
        max_rate, min_rating, sort_by, sort_order (camelCase also accepted).
        """
        filters = coerce_filters(request.args)
        try:
            rows = search_providers(_store(), filters)
        except FilterValidationError as exc:
            return jsonify({"error": str(exc), "data": []}), 400
        except StoreError as exc:
            logger.error("Error searching providers: %s", exc)
            return jsonify({"error": "search failed, please try again", "data": []}), 502
        return jsonify({"data": rows, "count": len(rows)}), 200

    @app.get("/providers/<provider_id>")
    def provider_detail(provider_id: str) -> Any:
        try:
            payload = get_provider_with_reviews(_store(), provider_id)
        except ProviderNotFound:
            return jsonify({"error": f"provider {provider_id} not found"}), 404
        except StoreError as exc:
            logger.error("Error fetching provider %s: %s", provider_id, exc)
            return jsonify({"error": "provider lookup failed"}), 502
        return jsonify({"data": payload}), 200

    @app.get("/neighborhoods")
    def neighborhoods() -> Any:
        return jsonify({"data": list_neighborhoods(_store())}), 200

    @app.get("/specialties")
    def specialties() -> Any:
        return jsonify({"data": list_specialties(_store())}), 200

    @app.post("/providers/<provider_id>/reviews")
    def create_review(provider_id: str) -> Any:
        """
        Submit a review as the bearer of the Authorization token.
        Required JSON fields: rating (int 1-5). Optional: comment.
        """
        store = _store()
        resolver = getattr(store, "get_user", None)
        if resolver is None:
            return jsonify({"error": "review submission is not available for this store"}), 501

        token = _bearer_token()
        if not token:
            return jsonify({"error": "missing bearer token"}), 401
        try:
            user = resolver(token)
        except StoreError as exc:
            logger.error("Auth lookup failed: %s", exc)
            return jsonify({"error": "authentication failed"}), 502
        if not user or not user.get("id"):
            return jsonify({"error": "invalid token"}), 401

        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        try:
            review = submit_review(store, provider_id, user["id"], payload.get("rating"), payload.get("comment"))
        except ReviewValidationError as exc:
            return jsonify({"error": str(exc)}), 400
        except ProviderNotFound:
            return jsonify({"error": f"provider {provider_id} not found"}), 404
        except StoreError as exc:
            logger.error("Error submitting review: %s", exc)
            return jsonify({"error": "review submission failed"}), 502
        return jsonify({"data": review}), 201

    @app.post("/sync")
    def sync() -> Any:
        """
        Fetch plumbers from Yelp and upsert them.
        Optional JSON fields: term, location, neighborhood, max_price,
        min_rating (float), limit (int).
        """
        payload: Dict[str, Any] = request.get_json(silent=True) or {}

        min_rating = None
        if payload.get("min_rating") is not None:
            try:
                min_rating = float(payload["min_rating"])
            except (TypeError, ValueError):
                return jsonify({"error": "min_rating must be numeric"}), 400

        limit = None
        if payload.get("limit") is not None:
            try:
                limit = int(payload["limit"])
            except (TypeError, ValueError):
                return jsonify({"error": "limit must be numeric"}), 400
            if limit <= 0:
                return jsonify({"error": "limit must be positive"}), 400

        try:
            report = run_sync_job(
                store=_store(),
                settings=settings,
                term=payload.get("term"),
                location=payload.get("location"),
                neighborhood=payload.get("neighborhood"),
                max_price=payload.get("max_price"),
                min_rating=min_rating,
                limit=limit,
            )
        except ConfigError as exc:
            return jsonify({"error": str(exc)}), 503
        except YelpError as exc:
            return jsonify({"error": str(exc), "upstream_status": exc.status_code}), 502
        except SyncError as exc:
            return jsonify({"error": str(exc), "data": exc.report.to_dict()}), 502
        return jsonify({"data": report.to_dict()}), 200

    return app


# ---------- Internals ----------


def _store() -> Any:
    return current_app.config["STORE"]


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith("bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    settings = get_settings()
    port = int(os.getenv("PORT") or settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d (store=%s)", port, settings.store_backend)
    create_app(settings=settings).run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
