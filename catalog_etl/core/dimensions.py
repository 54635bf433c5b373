# catalog_etl/core/dimensions.py
"""
Dimension kinds + Dimension Resolver

Intent
- The five catalog dimensions (tag, category, allergen, country, additive) share
  one shape: a lookup table of unique names and a junction table to product.
  They are dispatched through a static table instead of one class per kind.

Primary functions
- DIMENSION_SPECS[Dimension] -> DimensionSpec(table, link_table, link_column, record_field)
- resolve_dimension_ids(conn, names, dimension) -> list[int]

Resolver behavior
- empty input -> [] with no storage access
- otherwise:
  1) one batched INSERT ... ON CONFLICT (name) DO NOTHING for all names
  2) one SELECT id, name ... WHERE name IN (...)
  3) ids returned in the order of the deduplicated input
- names that still cannot be read back are dropped and logged (WARNING)
- both statements run on the caller's connection, inside its open transaction
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Iterable, List

from sqlalchemy import Table, select
from sqlalchemy.engine import Connection

from catalog_etl.core import db_schema
from catalog_etl.utils.logging import get_logger


class Dimension(str, enum.Enum):
    TAG = "tag"
    CATEGORY = "category"
    ALLERGEN = "allergen"
    COUNTRY = "country"
    ADDITIVE = "additive"


@dataclass(frozen=True)
class DimensionSpec:
    table: Table
    link_table: Table
    link_column: str
    record_field: str


DIMENSION_SPECS: Dict[Dimension, DimensionSpec] = {
    Dimension.TAG: DimensionSpec(
        table=db_schema.tag,
        link_table=db_schema.product_tags,
        link_column="tag_id",
        record_field="ingredients_analysis_tags",
    ),
    Dimension.CATEGORY: DimensionSpec(
        table=db_schema.category,
        link_table=db_schema.product_categories,
        link_column="category_id",
        record_field="categories_tags",
    ),
    Dimension.ALLERGEN: DimensionSpec(
        table=db_schema.allergen,
        link_table=db_schema.product_allergens,
        link_column="allergen_id",
        record_field="allergens_hierarchy",
    ),
    Dimension.COUNTRY: DimensionSpec(
        table=db_schema.country,
        link_table=db_schema.product_countries,
        link_column="country_id",
        record_field="countries_hierarchy",
    ),
    Dimension.ADDITIVE: DimensionSpec(
        table=db_schema.additive,
        link_table=db_schema.product_additives,
        link_column="additive_id",
        record_field="additives_tags",
    ),
}


def _dedupe(names: Iterable[str]) -> List[str]:
    out: List[str] = []
    seen: set[str] = set()
    for n in names:
        if n and n not in seen:
            seen.add(n)
            out.append(n)
    return out


def resolve_dimension_ids(conn: Connection, names: Iterable[str], dimension: Dimension) -> List[int]:
    uniq = _dedupe(names)
    if not uniq:
        return []

    spec = DIMENSION_SPECS[dimension]
    table = spec.table

    stmt = db_schema.dialect_insert(conn, table).on_conflict_do_nothing(index_elements=["name"])
    conn.execute(stmt, [{"name": n} for n in uniq])

    rows = conn.execute(select(table.c.id, table.c.name).where(table.c.name.in_(uniq))).all()
    ids_by_name = {row.name: int(row.id) for row in rows}

    missing = [n for n in uniq if n not in ids_by_name]
    if missing:
        get_logger(__name__).warning(
            "Unresolved %s name(s) dropped: %s", dimension.value, ", ".join(missing[:10])
        )

    return [ids_by_name[n] for n in uniq if n in ids_by_name]


__all__ = [
    "Dimension",
    "DimensionSpec",
    "DIMENSION_SPECS",
    "resolve_dimension_ids",
]
