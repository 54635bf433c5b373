# catalog_etl/core/db_schema.py
"""
Relational schema (SQLAlchemy Core)

Tables
- nutriments(id PK, 18 nullable floats)
- product(barcode BIGINT PK, nutriment_id -> nutriments.id NULL,
          nutriscore_id INT NULL (always NULL today), name, image_url)
- dimension tables: tag | category | allergen | country | additive
    (id PK, name UNIQUE NOT NULL)
- junction tables: product_tags | product_categories | product_allergens |
    product_countries | product_additives
    (product_barcode, <dim>_id) composite PK

Primary functions
- create_schema(engine) -> list[str]     create missing tables, return their names
- build_engine(url, echo=False) -> Engine
- engine_from_credentials(path) -> Engine
- dialect_insert(conn, table)            dialect-specific INSERT supporting ON CONFLICT

Notes
- Only PostgreSQL and SQLite are supported targets; both implement
  INSERT ... ON CONFLICT with the same SQLAlchemy construct.
- create_schema never alters existing tables.
"""

from __future__ import annotations

from typing import Any, List

from sqlalchemy import (
    BigInteger,
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    inspect,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from catalog_etl.core.record_codec import NUTRIENT_COLUMNS
from catalog_etl.utils.config import load_credentials, resolve_database_url
from catalog_etl.utils.logging import get_logger

metadata = MetaData()

nutriments = Table(
    "nutriments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *[Column(name, Float, nullable=True) for name in NUTRIENT_COLUMNS],
)

product = Table(
    "product",
    metadata,
    Column("barcode", BigInteger, primary_key=True, autoincrement=False),
    Column("nutriment_id", Integer, ForeignKey("nutriments.id"), nullable=True),
    Column("nutriscore_id", Integer, nullable=True),
    Column("name", String, nullable=False),
    Column("image_url", String, nullable=True),
)


def _dimension_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String, nullable=False, unique=True),
    )


def _link_table(name: str, dimension: Table, column: str) -> Table:
    return Table(
        name,
        metadata,
        Column("product_barcode", BigInteger, ForeignKey("product.barcode"), primary_key=True, autoincrement=False),
        Column(column, Integer, ForeignKey(f"{dimension.name}.id"), primary_key=True, autoincrement=False),
    )


tag = _dimension_table("tag")
category = _dimension_table("category")
allergen = _dimension_table("allergen")
country = _dimension_table("country")
additive = _dimension_table("additive")

product_tags = _link_table("product_tags", tag, "tag_id")
product_categories = _link_table("product_categories", category, "category_id")
product_allergens = _link_table("product_allergens", allergen, "allergen_id")
product_countries = _link_table("product_countries", country, "country_id")
product_additives = _link_table("product_additives", additive, "additive_id")


def build_engine(url: str, *, echo: bool = False) -> Engine:
    return create_engine(url, echo=echo, future=True)


def engine_from_credentials(credentials_path: str = "configs/credentials.yaml") -> Engine:
    """
    Build the engine from credentials.yaml; the URL itself comes from the environment.
    """
    creds = load_credentials(credentials_path)
    return build_engine(resolve_database_url(creds), echo=creds.database.echo)


def dialect_insert(conn: Any, table: Table) -> Any:
    """
    Return an INSERT construct for `table` exposing on_conflict_do_nothing /
    on_conflict_do_update for the connection's dialect.
    """
    name = conn.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"Unsupported database dialect: {name!r} (expected postgresql or sqlite)")


def create_schema(engine: Engine) -> List[str]:
    """
    Create tables that do not exist yet. Idempotent.
    """
    logger = get_logger(__name__)

    existing = set(inspect(engine).get_table_names())
    missing = [t.name for t in metadata.sorted_tables if t.name not in existing]

    metadata.create_all(engine, checkfirst=True)

    if missing:
        logger.info("Created %d table(s): %s", len(missing), ", ".join(missing))
    else:
        logger.info("Schema already present (%d tables)", len(metadata.sorted_tables))
    return missing


__all__ = [
    "metadata",
    "nutriments",
    "product",
    "tag",
    "category",
    "allergen",
    "country",
    "additive",
    "product_tags",
    "product_categories",
    "product_allergens",
    "product_countries",
    "product_additives",
    "build_engine",
    "engine_from_credentials",
    "dialect_insert",
    "create_schema",
]
