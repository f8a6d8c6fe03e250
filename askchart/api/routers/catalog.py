"""
GET /catalog, GET /fields/resolve -- field catalog endpoints.
"""
from __future__ import annotations

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from askchart.catalog.field_resolver import resolve_dimension, resolve_metric, scoped_metric
from askchart.catalog.loader import load_field_catalog

router = APIRouter()



class ColumnItem(BaseModel):
    id: str
    label: str
    category: str
    type: str


class CatalogResponse(BaseModel):
    columns: list[ColumnItem]
    tables: dict[str, str]
    products: list[str]
    default_metric: str


class ResolveResponse(BaseModel):
    token: str
    kind: str
    field: str | None



@router.get("/catalog", response_model=CatalogResponse)
def full_catalog(customer_id: int | None = None) -> CatalogResponse:
    """Columns visible to the scope, store tables and the product vocabulary."""
    catalog = load_field_catalog()
    is_admin = not customer_id
    return CatalogResponse(
        columns=[
            ColumnItem(id=c.id, label=c.label, category=c.category, type=c.type)
            for c in catalog.columns_for_scope(is_admin)
        ],
        tables=dict(catalog.tables),
        products=[p.label for p in catalog.products],
        default_metric=catalog.default_metric,
    )


@router.get("/fields/resolve", response_model=ResolveResponse)
def resolve_field(
    token: str,
    kind: Literal["dimension", "metric"] = "dimension",
    customer_id: int | None = None,
) -> ResolveResponse:
    """Map a loosely worded token to a store field id."""
    catalog = load_field_catalog()
    if kind == "metric":
        field = scoped_metric(resolve_metric(token, catalog=catalog), not customer_id, catalog)
    else:
        field = resolve_dimension(token, catalog=catalog)
    return ResolveResponse(token=token, kind=kind, field=field)
