"""
Loads, parses, and caches the field catalog YAML into read-only objects.

The field catalog is the single source of truth for:
  - dimension / metric alias tables (prompt vocabulary -> store field id)
  - the product vocabulary used for literal term extraction
  - the column catalog (ids, display labels, admin-only flags)
  - scope security rules (restricted filter fields, admin-only labels)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from types import MappingProxyType
from typing import Any, Mapping

import yaml

_CATALOG_PATH = Path(__file__).resolve().parent / "field_catalog.yml"


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class Column:
    id: str
    label: str
    category: str = ""
    type: str = "string"
    admin_only: bool = False


@dataclass(frozen=True)
class ProductTerm:
    label: str
    patterns: tuple[re.Pattern, ...]
    shadowed_by: tuple[str, ...] = ()

    def find(self, text: str) -> int:
        """Position of the earliest match in *text*, or -1."""
        positions = []
        for pattern in self.patterns:
            m = pattern.search(text)
            if m:
                positions.append(m.start())
        return min(positions) if positions else -1


@dataclass(frozen=True)
class SecurityRules:
    restricted_filter_fields: frozenset[str] = frozenset()
    admin_terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldCatalog:
    """Fully parsed field catalog. Every mapping is read-only."""

    version: int
    default_metric: str
    default_dimension: str
    text_search_field: str
    date_field: str
    tables: Mapping[str, str]
    dimension_aliases: Mapping[str, str]
    metric_aliases: Mapping[str, str]
    metric_keywords: frozenset[str]
    prompt_metric_keywords: tuple[str, ...]
    breakdown_dimensions: tuple[str, ...]
    products: tuple[ProductTerm, ...]
    field_mappings: Mapping[str, tuple[str, ...]]
    security: SecurityRules
    columns: tuple[Column, ...] = field(default_factory=tuple)

    # ── Convenience look-ups ─────────────────────────

    def column_ids(self) -> list[str]:
        return [c.id for c in self.columns]

    def admin_only_ids(self) -> set[str]:
        return {c.id for c in self.columns if c.admin_only}

    def columns_for_scope(self, is_admin: bool) -> list[Column]:
        """Columns visible to an admin or a customer scope."""
        if is_admin:
            return list(self.columns)
        return [c for c in self.columns if not c.admin_only]

    def table_for(self, kind: str) -> str:
        return self.tables[kind]


# ── Parsing ──────────────────────────────────────────────

def _parse_column(raw: dict[str, Any]) -> Column:
    return Column(
        id=raw["id"],
        label=str(raw.get("label", raw["id"])),
        category=raw.get("category", ""),
        type=raw.get("type", "string"),
        admin_only=raw.get("admin_only", False),
    )


def _parse_product(raw: dict[str, Any]) -> ProductTerm:
    return ProductTerm(
        label=raw["label"],
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in raw.get("patterns", [])),
        shadowed_by=tuple(raw.get("shadowed_by") or ()),
    )


def _parse_security(raw: dict[str, Any] | None) -> SecurityRules:
    if not raw:
        return SecurityRules()
    return SecurityRules(
        restricted_filter_fields=frozenset(f.lower() for f in raw.get("restricted_filter_fields", [])),
        admin_terms=tuple(t.lower() for t in raw.get("admin_terms", [])),
    )


def _lower_keys(raw: dict[str, str] | None) -> Mapping[str, str]:
    return MappingProxyType({str(k).lower(): str(v) for k, v in (raw or {}).items()})


def _parse_catalog(raw_yaml: dict[str, Any]) -> FieldCatalog:
    mappings = {
        column_id: tuple(str(a).lower() for a in aliases)
        for column_id, aliases in (raw_yaml.get("field_mappings") or {}).items()
    }
    return FieldCatalog(
        version=raw_yaml.get("version", 1),
        default_metric=raw_yaml.get("default_metric", "retail"),
        default_dimension=raw_yaml.get("default_dimension", "description"),
        text_search_field=raw_yaml.get("text_search_field", "description"),
        date_field=raw_yaml.get("date_field", "pickup_date"),
        tables=MappingProxyType(dict(raw_yaml.get("tables") or {})),
        dimension_aliases=_lower_keys(raw_yaml.get("dimension_aliases")),
        metric_aliases=_lower_keys(raw_yaml.get("metric_aliases")),
        metric_keywords=frozenset(k.lower() for k in raw_yaml.get("metric_keywords", [])),
        prompt_metric_keywords=tuple(k.lower() for k in raw_yaml.get("prompt_metric_keywords", [])),
        breakdown_dimensions=tuple(d.lower() for d in raw_yaml.get("breakdown_dimensions", [])),
        products=tuple(_parse_product(p) for p in raw_yaml.get("product_vocabulary", [])),
        field_mappings=MappingProxyType(mappings),
        security=_parse_security(raw_yaml.get("security")),
        columns=tuple(_parse_column(c) for c in raw_yaml.get("columns", [])),
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_field_catalog() -> FieldCatalog:
    """Load and cache the field catalog from YAML."""
    with open(_CATALOG_PATH) as f:
        raw = yaml.safe_load(f)
    return _parse_catalog(raw)
