# tests/test_fact_loader.py
import json
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError

import catalog_etl.core.fact_loader as fl
from catalog_etl.core import db_schema
from catalog_etl.core.fact_loader import BatchSession, ChunkLoader, LoadState, PendingBatch, load_lines
from catalog_etl.core.dimensions import Dimension


def _line(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")


def _product(code, **extra) -> bytes:
    fields = {
        "code": code,
        "brands": f"Brand {code}",
        "categories_tags": ["en:snacks", "fr:goûters"],
        "allergens_hierarchy": ["en:milk"],
        "countries_hierarchy": ["en:france", "en:belgium"],
        "ingredients_analysis_tags": ["en:vegetarian"],
        "additives_tags": [],
        "nutriments": {"fat_100g": 1.5, "sugars_100g": 20},
    }
    fields.update(extra)
    return _line(**fields)


@pytest.fixture()
def engine(tmp_path: Path):
    eng = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    db_schema.create_schema(eng)
    yield eng
    eng.dispose()


def _count(engine, table) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def _load(engine, lines, **kwargs):
    with BatchSession(engine) as session:
        return load_lines(session, lines, **kwargs)


def _all_counts(engine):
    tables = [
        db_schema.product,
        db_schema.nutriments,
        db_schema.tag,
        db_schema.category,
        db_schema.allergen,
        db_schema.country,
        db_schema.additive,
        db_schema.product_tags,
        db_schema.product_categories,
        db_schema.product_allergens,
        db_schema.product_countries,
        db_schema.product_additives,
    ]
    return {t.name: _count(engine, t) for t in tables}


def test_end_to_end_three_valid_one_malformed_one_zero_barcode(engine):
    lines = [_product(1), _product(2), b"{broken", _product(0), _product(3)]

    acc = _load(engine, lines, batch_size=50)

    assert acc.lines_read == 5
    assert acc.processed == 3
    assert acc.succeeded == 3
    assert acc.failed == 0
    assert acc.skipped == 2
    assert _count(engine, db_schema.product) == 3


def test_accounting_invariant_with_blank_and_bad_lines(engine):
    lines = [
        _product(1),
        b"",
        b"   ",
        b"[1,2]",
        _line(code="abc"),
        _line(brands="no barcode"),
        _product(2),
        b"\xff\xfe{",
        _product(-3),
    ]
    acc = _load(engine, lines, batch_size=2)

    assert acc.processed + acc.skipped == acc.lines_read == len(lines)
    assert acc.processed == 2
    assert acc.succeeded == 2


def test_rows_and_links_written(engine):
    _load(engine, [_product(7)])

    with engine.connect() as conn:
        row = conn.execute(select(db_schema.product).where(db_schema.product.c.barcode == 7)).one()
        assert row.name == "Brand 7"
        assert row.nutriscore_id is None
        assert row.nutriment_id is not None

        categories = conn.execute(select(db_schema.category.c.name)).scalars().all()
        assert categories == ["snacks"]

        countries = conn.execute(
            select(db_schema.product_countries.c.country_id).where(db_schema.product_countries.c.product_barcode == 7)
        ).all()
        assert len(countries) == 2

    assert _count(engine, db_schema.product_additives) == 0


def test_rerun_is_idempotent(engine):
    lines = [_product(i) for i in range(1, 6)]

    _load(engine, lines, batch_size=2)
    first = _all_counts(engine)
    _load(engine, lines, batch_size=3)

    assert _all_counts(engine) == first
    assert first["product"] == 5
    assert first["nutriments"] == 5


def test_rerun_updates_fact_and_keeps_nutrient_reference(engine):
    _load(engine, [_product(1)])
    with engine.connect() as conn:
        nid = conn.execute(select(db_schema.product.c.nutriment_id)).scalar_one()

    _load(engine, [_line(code=1, brands="Renamed", image_url="https://img/1.jpg")])

    with engine.connect() as conn:
        row = conn.execute(select(db_schema.product)).one()
    assert row.name == "Renamed"
    assert row.image_url == "https://img/1.jpg"
    assert row.nutriment_id == nid


def test_rerun_with_new_nutrients_updates_the_same_row(engine):
    _load(engine, [_product(1)])
    _load(engine, [_product(1, nutriments={"fat_100g": 9.0})])

    with engine.connect() as conn:
        rows = conn.execute(select(db_schema.nutriments)).all()
    assert len(rows) == 1
    assert rows[0].fat_100g == 9.0
    assert rows[0].sugars_100g is None


def test_duplicate_barcode_within_batch_last_wins(engine):
    lines = [
        _product(5, brands="First"),
        _line(code=5, brands="Second", allergens_hierarchy=["en:eggs"]),
    ]
    acc = _load(engine, lines, batch_size=10)

    assert acc.processed == 2
    assert acc.succeeded == 2
    with engine.connect() as conn:
        row = conn.execute(select(db_schema.product)).one()
        assert row.name == "Second"
        assert row.nutriment_id is not None
        allergens = conn.execute(select(db_schema.product_allergens)).all()
    assert len(allergens) == 2
    assert _count(engine, db_schema.nutriments) == 1


def test_dimension_dedup_across_products(engine):
    _load(engine, [_product(1), _product(2), _product(3)])
    assert _count(engine, db_schema.allergen) == 1
    assert _count(engine, db_schema.country) == 2
    assert _count(engine, db_schema.product_allergens) == 3


def test_flush_cadence_and_states(engine):
    with BatchSession(engine) as session:
        loader = ChunkLoader(session, batch_size=2, verify_counts=False)
        assert loader.state is LoadState.OPEN

        loader.process_line(_product(1))
        assert len(loader.acc.pending) == 1
        loader.process_line(_product(2))
        assert len(loader.acc.pending) == 0
        assert loader.batches_committed == 1
        assert loader.state is LoadState.OPEN

        loader.process_line(_product(3))
        loader.finish()

    assert loader.batches_committed == 2
    assert _count(engine, db_schema.product) == 3


def test_storage_error_aborts_and_rolls_back_open_batch(engine, monkeypatch):
    calls = {"n": 0}
    real = ChunkLoader._write_links

    def flaky(conn, dim, pairs):
        if dim is Dimension.TAG:
            calls["n"] += 1
            if calls["n"] == 2:
                raise OperationalError("INSERT INTO product_tags", {}, Exception("disk I/O error"))
        return real(conn, dim, pairs)

    monkeypatch.setattr(ChunkLoader, "_write_links", staticmethod(flaky))

    with pytest.raises(SQLAlchemyError):
        with BatchSession(engine) as session:
            loader = ChunkLoader(session, batch_size=2, verify_counts=False)
            for code in (1, 2, 3, 4):
                loader.process_line(_product(code))

    assert calls["n"] == 2
    assert loader.state is LoadState.ABORTED
    assert loader.acc.succeeded == 2
    assert _count(engine, db_schema.product) == 2
    assert _count(engine, db_schema.nutriments) == 2

    with pytest.raises(RuntimeError):
        loader.process_line(_product(9))


def test_missing_schema_is_batch_level(tmp_path: Path):
    bare = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    try:
        with pytest.raises(SQLAlchemyError):
            _load(bare, [_product(1)])
    finally:
        bare.dispose()


def test_non_storage_exception_is_line_level(engine, monkeypatch):
    def boom(raw, lang):
        raise KeyError("unexpected")

    monkeypatch.setattr(fl, "normalize_tags", boom)
    acc = _load(engine, [_product(1), _product(2)])

    assert acc.skipped == 2
    assert acc.processed == 0
    assert _count(engine, db_schema.product) == 0


def test_pending_batch_merges_nutrient_reference():
    pending = PendingBatch()
    pending.enqueue({"barcode": 1, "name": "a", "image_url": None, "nutriment_id": 10, "nutriscore_id": None}, {})
    pending.enqueue(
        {"barcode": 1, "name": "b", "image_url": None, "nutriment_id": None, "nutriscore_id": None},
        {Dimension.TAG: [3, 3, 4]},
    )

    assert len(pending) == 2
    assert pending.facts[1]["name"] == "b"
    assert pending.nutriment_for(1) == 10
    assert pending.links[Dimension.TAG] == {(1, 3), (1, 4)}

    pending.clear()
    assert len(pending) == 0 and not pending.facts
