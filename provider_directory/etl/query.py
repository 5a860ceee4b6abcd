"""Translate search filters into store query directives."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from provider_directory.models import (
    DEFAULT_SORT_BY,
    DEFAULT_SORT_ORDER,
    PROVIDERS_TABLE,
    SORT_FIELDS,
    SORT_ORDERS,
    SearchFilters,
)

logger = logging.getLogger(__name__)

TEXT_SEARCH_FIELDS = ("name", "business_name", "neighborhood", "description")
_TRUTHY = {"1", "true", "yes", "on"}


class FilterValidationError(ValueError):
    """Raised when a filter value that reached the builder is unusable."""


@dataclass(frozen=True)
class Predicate:
    op: str
    fields: Tuple[str, ...]
    value: Any

    @property
    def column(self) -> str:
        return self.fields[0]


@dataclass(frozen=True)
class ProviderQuery:
    collection: str
    predicates: Tuple[Predicate, ...]
    sort_by: str
    ascending: bool


def _require_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise FilterValidationError(f"{name} must be numeric, got {value!r}")
    return value


def build_query(filters: Optional[SearchFilters] = None) -> ProviderQuery:
    """Build conjunctive predicates plus one sort directive for ``filters``.

    Absent filters add no predicate. ``max_rate`` compares against
    ``hourly_rate`` the way the store does, so rows without a rate never
    satisfy it.
    """
    filters = filters or SearchFilters()
    predicates: List[Predicate] = []

    if filters.search_term:
        predicates.append(Predicate("ilike_any", TEXT_SEARCH_FIELDS, filters.search_term))
    if filters.neighborhood:
        predicates.append(Predicate("eq", ("neighborhood",), filters.neighborhood))
    if filters.specialty:
        predicates.append(Predicate("contains", ("specialties",), filters.specialty))
    if filters.emergency_only:
        predicates.append(Predicate("eq", ("emergency_service",), True))
    if filters.max_rate is not None:
        predicates.append(Predicate("lte", ("hourly_rate",), _require_number("max_rate", filters.max_rate)))
    if filters.min_rating is not None:
        predicates.append(Predicate("gte", ("rating",), _require_number("min_rating", filters.min_rating)))

    sort_by = filters.sort_by or DEFAULT_SORT_BY
    if sort_by not in SORT_FIELDS:
        raise FilterValidationError(f"sort_by must be one of {', '.join(SORT_FIELDS)}")
    sort_order = filters.sort_order or DEFAULT_SORT_ORDER
    if sort_order not in SORT_ORDERS:
        raise FilterValidationError("sort_order must be 'asc' or 'desc'")

    return ProviderQuery(
        collection=PROVIDERS_TABLE,
        predicates=tuple(predicates),
        sort_by=sort_by,
        ascending=sort_order == "asc",
    )


# ---------- In-memory evaluation ----------


def _matches(record: Mapping[str, Any], predicate: Predicate) -> bool:
    if predicate.op == "ilike_any":
        needle = str(predicate.value).lower()
        return any(needle in str(record.get(name) or "").lower() for name in predicate.fields)

    value = record.get(predicate.column)
    if predicate.op == "eq":
        return value is not None and value == predicate.value
    if predicate.op == "contains":
        return isinstance(value, (list, tuple, set)) and predicate.value in value
    if value is None:
        return False
    if predicate.op == "lte":
        return value <= predicate.value
    if predicate.op == "gte":
        return value >= predicate.value
    raise ValueError(f"Unsupported predicate operator: {predicate.op}")


def null_order_key(value: Any) -> Tuple[bool, Any]:
    # NULLs sort last ascending and first descending, as in Postgres.
    return value is None, 0 if value is None else value


def apply_query(query: ProviderQuery, records: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Evaluate ``query`` over ``records``; equal sort keys keep input order."""
    matched = [dict(record) for record in records if all(_matches(record, p) for p in query.predicates)]
    return sorted(matched, key=lambda record: null_order_key(record.get(query.sort_by)), reverse=not query.ascending)


# ---------- Store renderings ----------


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_postgrest_params(query: ProviderQuery) -> List[Tuple[str, str]]:
    """Render ``query`` as PostgREST query-string parameters."""
    params: List[Tuple[str, str]] = [("select", "*")]
    for predicate in query.predicates:
        if predicate.op == "ilike_any":
            pattern = _quote(f"*{predicate.value}*")
            clauses = ",".join(f"{name}.ilike.{pattern}" for name in predicate.fields)
            params.append(("or", f"({clauses})"))
        elif predicate.op == "contains":
            params.append((predicate.column, "cs.{" + _quote(str(predicate.value)) + "}"))
        elif predicate.op in {"eq", "lte", "gte"}:
            params.append((predicate.column, f"{predicate.op}.{_format_value(predicate.value)}"))
        else:
            raise ValueError(f"Unsupported predicate operator: {predicate.op}")
    direction = "asc" if query.ascending else "desc"
    params.append(("order", f"{query.sort_by}.{direction}"))
    return params


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


_SQL_OPERATORS = {"eq": "=", "lte": "<=", "gte": ">="}


def to_sql(query: ProviderQuery) -> Tuple[str, Dict[str, Any]]:
    """Render ``query`` as a psycopg2 statement with named parameters."""
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    for index, predicate in enumerate(query.predicates):
        name = f"p{index}"
        if predicate.op == "ilike_any":
            params[name] = f"%{_escape_like(str(predicate.value))}%"
            ors = " OR ".join(f"{field} ILIKE %({name})s" for field in predicate.fields)
            clauses.append(f"({ors})")
        elif predicate.op == "contains":
            params[name] = predicate.value
            clauses.append(f"%({name})s = ANY({predicate.column})")
        elif predicate.op in _SQL_OPERATORS:
            params[name] = predicate.value
            clauses.append(f"{predicate.column} {_SQL_OPERATORS[predicate.op]} %({name})s")
        else:
            raise ValueError(f"Unsupported predicate operator: {predicate.op}")

    sql = f"SELECT * FROM {query.collection}"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += f" ORDER BY {query.sort_by} {'ASC' if query.ascending else 'DESC'}"
    return sql, params


# ---------- Entry points ----------


def search_providers(store: Any, filters: Optional[SearchFilters] = None) -> List[Dict[str, Any]]:
    """Run one read against ``store`` for the providers matching ``filters``."""
    query = build_query(filters)
    logger.debug("Searching %s with %d predicates", query.collection, len(query.predicates))
    rows = store.query(query)
    logger.info("Search returned %d providers", len(rows))
    return rows


def _first(raw: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _optional_float(name: str, value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric %s filter: %r", name, value)
        return None
    if math.isnan(number):
        logger.debug("Ignoring NaN %s filter", name)
        return None
    return number


def coerce_filters(raw: Mapping[str, Any]) -> SearchFilters:
    """Neutralise raw request parameters into a ``SearchFilters``.

    Accepts snake_case or camelCase keys. Unusable numeric values drop the
    filter instead of failing the search.
    """
    emergency_raw = _first(raw, ("emergency_only", "emergencyOnly"))
    if isinstance(emergency_raw, bool):
        emergency_only = emergency_raw
    else:
        emergency_only = str(emergency_raw or "").strip().lower() in _TRUTHY

    sort_by = _optional_str(_first(raw, ("sort_by", "sortBy"))) or DEFAULT_SORT_BY
    if sort_by not in SORT_FIELDS:
        logger.debug("Ignoring unknown sort key %r", sort_by)
        sort_by = DEFAULT_SORT_BY
    sort_order = (_optional_str(_first(raw, ("sort_order", "sortOrder"))) or DEFAULT_SORT_ORDER).lower()
    if sort_order not in SORT_ORDERS:
        logger.debug("Ignoring unknown sort order %r", sort_order)
        sort_order = DEFAULT_SORT_ORDER

    return SearchFilters(
        search_term=_optional_str(_first(raw, ("search_term", "searchTerm", "q"))),
        neighborhood=_optional_str(raw.get("neighborhood")),
        specialty=_optional_str(raw.get("specialty")),
        emergency_only=emergency_only,
        max_rate=_optional_float("max_rate", _first(raw, ("max_rate", "maxRate"))),
        min_rating=_optional_float("min_rating", _first(raw, ("min_rating", "minRating"))),
        sort_by=sort_by,
        sort_order=sort_order,
    )
