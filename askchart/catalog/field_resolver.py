"""
Field resolver -- maps loosely worded prompt tokens onto store field ids.

Resolution chain for a token:
  1. strip non-letters, lowercase, look up the static alias table
  2. case-insensitive direct id match against the column catalog
  3. bidirectional substring match between a column label and the token

Dimensions may resolve to ``None`` and callers must handle that.  Metrics
never do: they fall back to the catalog's default metric because the
aggregation downstream needs a concrete field.
"""
from __future__ import annotations

import re
from typing import Iterable

from askchart.catalog.loader import Column, FieldCatalog, load_field_catalog
from askchart.core.logging import get_logger

logger = get_logger(__name__)

_NON_LETTERS_RE = re.compile(r"[^a-z]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")

# Shorter tokens match almost any label by substring.
_MIN_FUZZY_LEN = 3


def clean_token(token: str) -> str:
    """``"Carriers,"`` -> ``"carriers"``."""
    return _NON_LETTERS_RE.sub("", (token or "").lower())


def _match_catalog(token: str, columns: Iterable[Column]) -> str | None:
    """Direct id match first, then label substring in either direction."""
    columns = list(columns)
    lowered = token.lower().strip()
    if not lowered:
        return None

    for col in columns:
        if col.id.lower() == lowered:
            return col.id

    if len(lowered) < _MIN_FUZZY_LEN:
        return None
    for col in columns:
        label = col.label.lower()
        if label in lowered or lowered in label:
            return col.id
    return None


def resolve_dimension(
    token: str,
    columns: Iterable[Column] | None = None,
    catalog: FieldCatalog | None = None,
) -> str | None:
    """Resolve a dimension token to a field id, or ``None`` on a miss."""
    if catalog is None:
        catalog = load_field_catalog()

    cleaned = clean_token(token)
    if cleaned in catalog.dimension_aliases:
        return catalog.dimension_aliases[cleaned]

    if columns is None:
        columns = catalog.columns
    resolved = _match_catalog(token, columns)
    if resolved is None:
        logger.debug("Dimension token %r did not resolve", token)
    return resolved


def resolve_metric(
    token: str,
    columns: Iterable[Column] | None = None,
    catalog: FieldCatalog | None = None,
) -> str:
    """Resolve a metric token to a field id; falls back to the default metric."""
    if catalog is None:
        catalog = load_field_catalog()

    cleaned = clean_token(token)
    if cleaned in catalog.metric_aliases:
        return catalog.metric_aliases[cleaned]

    if columns is None:
        columns = catalog.columns
    resolved = _match_catalog(token, columns)
    if resolved is None:
        logger.debug("Metric token %r did not resolve -- using %s", token, catalog.default_metric)
        return catalog.default_metric
    return resolved


def is_dimension_alias(token: str, catalog: FieldCatalog | None = None) -> bool:
    if catalog is None:
        catalog = load_field_catalog()
    return clean_token(token) in catalog.dimension_aliases


def is_metric_keyword(token: str, catalog: FieldCatalog | None = None) -> bool:
    if catalog is None:
        catalog = load_field_catalog()
    return clean_token(token) in catalog.metric_keywords


def map_to_column(ai_field: str, columns: Iterable[Column], catalog: FieldCatalog | None = None) -> str | None:
    """Map a field name returned by the reasoning service onto an available column.

    Unlike the prompt resolvers this only ever returns ids present in
    *columns*, so a customer-scoped column list never yields an admin field.
    """
    if not ai_field:
        return None
    if catalog is None:
        catalog = load_field_catalog()

    columns = list(columns)
    available = {c.id for c in columns}
    lowered = ai_field.lower()

    for col in columns:
        if col.id.lower() == lowered:
            return col.id

    normalized = _NON_ALNUM_RE.sub("", lowered)
    if normalized:
        for column_id, aliases in catalog.field_mappings.items():
            if column_id not in available:
                continue
            if any(alias in normalized or normalized in alias for alias in aliases):
                return column_id

    for col in columns:
        label = col.label.lower()
        if label in lowered or lowered in label:
            return col.id
    return None


def scoped_metric(metric: str, is_admin: bool, catalog: FieldCatalog | None = None) -> str:
    """Customers never aggregate admin-only fields; swap in the default metric."""
    if is_admin:
        return metric
    if catalog is None:
        catalog = load_field_catalog()
    if metric in catalog.admin_only_ids():
        logger.info("Metric %s is admin-only -- using %s for customer scope", metric, catalog.default_metric)
        return catalog.default_metric
    return metric
