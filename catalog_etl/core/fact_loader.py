# catalog_etl/core/fact_loader.py
"""
Fact Loader + Batch/Transaction Controller (consumer side)

Intent
- Fold a lazy sequence of NDJSON lines into the relational schema with batched,
  idempotent, transactional writes. One BatchSession (one Connection) per
  consumer invocation.

Primary objects
- BatchSession(engine)            context manager owning one Connection
- LoadState                       OPEN -> FLUSHING -> COMMITTED -> OPEN, or ABORTED
- PendingBatch                    fact rows keyed by barcode + link pairs per dimension
- LoadAccumulator                 lines_read / processed / succeeded / skipped / pending
- ChunkLoader.process_line(line)  one line -> pending writes
- ChunkLoader.flush()             write pending facts + links, commit
- load_lines(session, lines, ...) fold helper

Per-line pipeline
  decode -> parse_record -> barcode check -> normalize 5 tag lists
  -> resolve dimension ids -> insert-or-reuse nutrient row
  -> enqueue fact -> enqueue links -> processed += 1

Error levels
- line level  : RecordRejected, ValidationError, UnicodeDecodeError, any other
                non-storage exception -> logged, skipped += 1
- batch level : SQLAlchemyError -> state ABORTED, logged, re-raised; batches
                committed earlier stay committed, the open one is rolled back
                when the session closes

Idempotence
- product upsert: ON CONFLICT (barcode) DO UPDATE name, image_url,
  nutriment_id = COALESCE(excluded.nutriment_id, product.nutriment_id)
- link inserts: ON CONFLICT DO NOTHING
- nutrient rows: a product that already references a nutriments row (stored, or
  earlier in the open batch) gets that row updated and reused

Accounting
- processed + skipped == lines_read after every line (blank lines are skipped)
- succeeded grows by the number of records in a batch when it commits
"""

from __future__ import annotations

import enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from sqlalchemy import func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from catalog_etl.core import db_schema
from catalog_etl.core.dimensions import DIMENSION_SPECS, Dimension, resolve_dimension_ids
from catalog_etl.core.record_codec import NutrientFacts, ProductRecord, RecordRejected, parse_record
from catalog_etl.core.tag_normalizer import normalize_tags
from catalog_etl.utils.logging import get_logger
from catalog_etl.utils.verbosity import VerbosityLogger

Line = Union[bytes, str]


class LoadState(str, enum.Enum):
    OPEN = "open"
    FLUSHING = "flushing"
    COMMITTED = "committed"
    ABORTED = "aborted"


class BatchSession:
    """
    One database Connection with commit-as-you-go semantics.

    Leaving the context without a commit rolls the open transaction back.
    Connection failures surface from __enter__.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Optional[Connection] = None

    @property
    def conn(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("BatchSession is not open")
        return self._conn

    def __enter__(self) -> "BatchSession":
        self._conn = self.engine.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self._conn
        self._conn = None
        if conn is None:
            return
        try:
            if conn.in_transaction():
                conn.rollback()
        finally:
            conn.close()

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()


class PendingBatch:
    """
    Writes queued since the last commit.

    Fact rows are keyed by barcode: a later record for the same barcode replaces
    the earlier one, but keeps its nutrient reference when it brings none.
    """

    def __init__(self) -> None:
        self.facts: Dict[int, Dict[str, Any]] = {}
        self.links: Dict[Dimension, Set[Tuple[int, int]]] = {d: set() for d in Dimension}
        self.records = 0

    def __len__(self) -> int:
        return self.records

    def nutriment_for(self, barcode: int) -> Optional[int]:
        row = self.facts.get(barcode)
        return None if row is None else row.get("nutriment_id")

    def enqueue(self, row: Dict[str, Any], links: Dict[Dimension, List[int]]) -> None:
        barcode = int(row["barcode"])
        previous = self.facts.get(barcode)
        if previous is not None and row.get("nutriment_id") is None:
            row = {**row, "nutriment_id": previous.get("nutriment_id")}
        self.facts[barcode] = row

        for dim, ids in links.items():
            self.links[dim].update((barcode, i) for i in ids)

        self.records += 1

    def clear(self) -> None:
        self.facts.clear()
        for pairs in self.links.values():
            pairs.clear()
        self.records = 0


class LoadAccumulator:
    def __init__(self) -> None:
        self.lines_read = 0
        self.processed = 0
        self.succeeded = 0
        self.skipped = 0
        self.pending = PendingBatch()

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    def as_dict(self) -> Dict[str, int]:
        return {
            "lines_read": self.lines_read,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "pending": len(self.pending),
        }


class ChunkLoader:
    def __init__(
        self,
        session: BatchSession,
        *,
        batch_size: int = 50,
        language: str = "en",
        verify_counts: bool = True,
        verbose: int = 3,
        run_id: Optional[str] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.session = session
        self.batch_size = int(batch_size)
        self.language = language
        self.verify_counts = bool(verify_counts)
        self.acc = LoadAccumulator()
        self.state = LoadState.OPEN
        self.batches_committed = 0

        self._logger = get_logger(__name__, run_id=run_id)
        self._vlog = VerbosityLogger(self._logger, verbose=verbose)

    # ----------------------------
    # per-line
    # ----------------------------

    def process_line(self, line: Line) -> None:
        if self.state is LoadState.ABORTED:
            raise RuntimeError("Batch aborted; no further lines are accepted")

        acc = self.acc
        acc.lines_read += 1
        n = acc.lines_read

        if not line.strip():
            acc.skipped += 1
            self._vlog.log(4, "debug", "Line %d: blank, skipped", n)
            return

        try:
            self._process_record(line)
        except SQLAlchemyError as e:
            self.state = LoadState.ABORTED
            self._logger.error("Storage error on line %d, batch aborted: %s", n, e)
            raise
        except Exception as e:
            acc.skipped += 1
            level = "info" if acc.skipped <= max(1, self._vlog.first_n) else "debug"
            self._vlog.log(1, level, "Line %d skipped: %s: %s", n, type(e).__name__, e)
            return

        acc.processed += 1

        if self._vlog.is_heartbeat(n):
            self._vlog.log(1, "info", "Progress: %s", acc.as_dict())

        if len(acc.pending) >= self.batch_size:
            self.flush()

    def _process_record(self, line: Line) -> None:
        text = line.decode("utf-8") if isinstance(line, (bytes, bytearray)) else line
        record = parse_record(text)
        if not record.is_importable():
            raise RecordRejected(f"Missing or non-positive barcode: {record.barcode!r}")

        conn = self.session.conn
        barcode = int(record.barcode)

        links: Dict[Dimension, List[int]] = {}
        for dim, spec in DIMENSION_SPECS.items():
            names = normalize_tags(getattr(record, spec.record_field), self.language)
            links[dim] = resolve_dimension_ids(conn, names, dim)

        nutriment_id = self._save_nutrients(conn, barcode, record.nutrient_facts)

        self.acc.pending.enqueue(self._fact_row(record, nutriment_id), links)

    @staticmethod
    def _fact_row(record: ProductRecord, nutriment_id: Optional[int]) -> Dict[str, Any]:
        return {
            "barcode": int(record.barcode),
            "name": record.name,
            "image_url": record.clean_image_url,
            "nutriment_id": nutriment_id,
            "nutriscore_id": None,
        }

    def _save_nutrients(self, conn: Connection, barcode: int, facts: Optional[NutrientFacts]) -> Optional[int]:
        if facts is None:
            return None

        values = facts.as_row()
        existing = self.acc.pending.nutriment_for(barcode)
        if existing is None:
            existing = conn.execute(
                select(db_schema.product.c.nutriment_id).where(db_schema.product.c.barcode == barcode)
            ).scalar_one_or_none()

        table = db_schema.nutriments
        if existing is not None:
            conn.execute(update(table).where(table.c.id == existing).values(**values))
            return int(existing)

        result = conn.execute(table.insert().values(**values))
        return int(result.inserted_primary_key[0])

    # ----------------------------
    # batch
    # ----------------------------

    def flush(self) -> int:
        pending = self.acc.pending
        n = len(pending)
        if n == 0:
            return 0

        conn = self.session.conn
        self.state = LoadState.FLUSHING
        try:
            self._write_facts(conn, list(pending.facts.values()))
            for dim, pairs in pending.links.items():
                self._write_links(conn, dim, pairs)
            self.session.commit()
        except SQLAlchemyError as e:
            self.state = LoadState.ABORTED
            self._logger.error("Batch of %d record(s) failed, rolling back: %s", n, e)
            raise

        self.state = LoadState.COMMITTED
        self.acc.succeeded += n
        self.batches_committed += 1
        pending.clear()

        self._vlog.log(
            2,
            "info",
            "Committed batch #%d: %d record(s) (succeeded=%d, processed=%d)",
            self.batches_committed,
            n,
            self.acc.succeeded,
            self.acc.processed,
        )
        if self.verify_counts:
            self._verify()

        self.state = LoadState.OPEN
        return n

    def finish(self) -> LoadAccumulator:
        """Flush the trailing partial batch and commit any remaining dimension rows."""
        if len(self.acc.pending) > 0:
            self.flush()
        if self.state is LoadState.OPEN and self.session.conn.in_transaction():
            self.session.commit()
        return self.acc

    @staticmethod
    def _write_facts(conn: Connection, rows: List[Dict[str, Any]]) -> None:
        if not rows:
            return
        table = db_schema.product
        stmt = db_schema.dialect_insert(conn, table)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.barcode],
            set_={
                "name": stmt.excluded.name,
                "image_url": stmt.excluded.image_url,
                "nutriment_id": func.coalesce(stmt.excluded.nutriment_id, table.c.nutriment_id),
            },
        )
        conn.execute(stmt, rows)

    @staticmethod
    def _write_links(conn: Connection, dim: Dimension, pairs: Set[Tuple[int, int]]) -> None:
        if not pairs:
            return
        spec = DIMENSION_SPECS[dim]
        stmt = db_schema.dialect_insert(conn, spec.link_table).on_conflict_do_nothing()
        conn.execute(
            stmt,
            [{"product_barcode": b, spec.link_column: i} for b, i in sorted(pairs)],
        )

    def _verify(self) -> None:
        conn = self.session.conn
        total = conn.execute(select(func.count()).select_from(db_schema.product)).scalar_one()
        # the count opens a new transaction; close it so the next batch starts clean
        conn.commit()
        self._logger.info("Verification: product table holds %d row(s)", int(total))


def load_lines(
    session: BatchSession,
    lines: Iterable[Line],
    *,
    batch_size: int = 50,
    language: str = "en",
    verify_counts: bool = True,
    verbose: int = 3,
    run_id: Optional[str] = None,
) -> LoadAccumulator:
    loader = ChunkLoader(
        session,
        batch_size=batch_size,
        language=language,
        verify_counts=verify_counts,
        verbose=verbose,
        run_id=run_id,
    )
    for line in lines:
        loader.process_line(line)
    return loader.finish()


__all__ = [
    "LoadState",
    "BatchSession",
    "PendingBatch",
    "LoadAccumulator",
    "ChunkLoader",
    "load_lines",
]
