"""SQLite chunk store."""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from strata.exceptions import StoreError
from strata.types import Chunk, ChunkSource, Layer, chunk_row
from strata.utils import blob_to_vector, iso_str, parse_iso, vector_to_blob

SCHEMA_VERSION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    source_id TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL,
    embedding BLOB,
    embedding_model TEXT,
    target_model TEXT,
    layer TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_chunks_layer ON chunks(layer, created_at);
CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source);
CREATE INDEX IF NOT EXISTS idx_chunks_pending ON chunks(embedding IS NULL, created_at);
"""

_COLUMNS = "id, source, source_id, content, embedding, embedding_model, target_model, layer, created_at"


class SQLiteStore:
    """Persistent chunk store.

    ``update_embedding`` is the only in-place mutation; everything else is
    insert or delete. Layer swaps run inside one transaction.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False,
                                     timeout=30.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=30000")
        self._init_schema()

    def _init_schema(self) -> None:
        for attempt in range(5):
            try:
                cur = self._conn.cursor()
                cur.executescript(_SCHEMA)
                cur.execute(
                    "INSERT OR IGNORE INTO meta(key, value) VALUES (?, ?)",
                    ("schema_version", str(SCHEMA_VERSION)),
                )
                self._conn.commit()
                return
            except sqlite3.OperationalError as e:
                if "locked" in str(e) and attempt < 4:
                    time.sleep(2 * (attempt + 1))
                    continue
                raise

    def close(self) -> None:
        self._conn.close()

    # --- Inserts ---

    def insert_chunk(self, chunk: Chunk) -> str:
        with self._conn:
            self._conn.execute(
                f"INSERT INTO chunks({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._chunk_params(chunk),
            )
        return chunk.id

    def insert_chunks(self, chunks: Iterable[Chunk]) -> list[str]:
        chunks = list(chunks)
        if not chunks:
            return []
        with self._conn:
            self._conn.executemany(
                f"INSERT INTO chunks({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._chunk_params(c) for c in chunks],
            )
        return [c.id for c in chunks]

    # --- Queries ---

    def get_chunk(self, chunk_id: str) -> Chunk | None:
        row = self._conn.execute(f"SELECT {_COLUMNS} FROM chunks WHERE id=?", (chunk_id,)).fetchone()
        return self._row_to_chunk(row) if row else None

    def list_layer(self, layer: Layer) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM chunks WHERE layer=? ORDER BY created_at, rowid",
            (layer.value,),
        ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def list_unembedded(self, limit: int = 50) -> list[Chunk]:
        rows = self._conn.execute(
            f"SELECT {_COLUMNS} FROM chunks WHERE embedding IS NULL "
            "ORDER BY created_at, rowid LIMIT ?",
            (max(0, int(limit)),),
        ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def list_embedded(self, layer: Layer, model: str | None = None) -> list[Chunk]:
        sql = f"SELECT {_COLUMNS} FROM chunks WHERE layer=? AND embedding IS NOT NULL"
        params: list[Any] = [layer.value]
        if model is not None:
            sql += " AND embedding_model=?"
            params.append(model)
        rows = self._conn.execute(sql + " ORDER BY created_at, rowid", params).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def embedding_models(self, layer: Layer | None = None) -> list[str]:
        sql = "SELECT DISTINCT embedding_model FROM chunks WHERE embedding IS NOT NULL AND embedding_model IS NOT NULL"
        params: list[Any] = []
        if layer is not None:
            sql += " AND layer=?"
            params.append(layer.value)
        return sorted(r[0] for r in self._conn.execute(sql, params).fetchall())

    def count(self, layer: Layer | None = None) -> int:
        if layer is None:
            row = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()
        else:
            row = self._conn.execute("SELECT COUNT(*) FROM chunks WHERE layer=?", (layer.value,)).fetchone()
        return int(row[0])

    # --- Mutations ---

    def update_embedding(self, chunk_id: str, embedding: Any, model: str) -> bool:
        """Set a chunk's vector once. Returns False if already embedded or missing."""
        blob = vector_to_blob(embedding)
        if not blob:
            raise StoreError(f"refusing empty embedding for chunk {chunk_id}")
        if not model:
            raise StoreError(f"embedding for chunk {chunk_id} has no model tag")
        with self._conn:
            cur = self._conn.execute(
                "UPDATE chunks SET embedding=?, embedding_model=? WHERE id=? AND embedding IS NULL",
                (blob, model, chunk_id),
            )
        return cur.rowcount > 0

    def delete_layer(self, layer: Layer) -> int:
        with self._conn:
            cur = self._conn.execute("DELETE FROM chunks WHERE layer=?", (layer.value,))
        return cur.rowcount

    def delete_all(self) -> int:
        with self._conn:
            cur = self._conn.execute("DELETE FROM chunks")
        return cur.rowcount

    def trim_layer(self, layer: Layer, keep: int) -> int:
        """Delete all but the ``keep`` most recent chunks of a layer."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM chunks WHERE layer=? AND id NOT IN ("
                "SELECT id FROM chunks WHERE layer=? ORDER BY created_at DESC, rowid DESC LIMIT ?)",
                (layer.value, layer.value, max(0, int(keep))),
            )
        return cur.rowcount

    def replace_layer(self, layer: Layer, chunks: Iterable[Chunk]) -> int:
        """Swap a layer's content for ``chunks`` in one transaction.

        New rows are written before the old ones are deleted, so a failure
        at any point rolls back to the previous set. Returns rows removed.
        """
        chunks = list(chunks)
        for c in chunks:
            if c.layer != layer:
                raise StoreError(f"chunk {c.id} belongs to {c.layer.value}, not {layer.value}")
        old_ids = [r[0] for r in self._conn.execute(
            "SELECT id FROM chunks WHERE layer=?", (layer.value,)
        ).fetchall()]
        with self._conn:
            self._conn.executemany(
                f"INSERT INTO chunks({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._chunk_params(c) for c in chunks],
            )
            self._conn.executemany("DELETE FROM chunks WHERE id=?", [(cid,) for cid in old_ids])
        logger.debug(f"Replaced {layer.value} layer: -{len(old_ids)} +{len(chunks)}")
        return len(old_ids)

    # --- Stats / backup ---

    def stats(self) -> dict[str, Any]:
        total = self.count()
        embedded = int(self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE embedding IS NOT NULL"
        ).fetchone()[0])
        by_layer = {layer.value: 0 for layer in Layer}
        for r in self._conn.execute("SELECT layer, COUNT(*) FROM chunks GROUP BY layer"):
            by_layer[r[0]] = int(r[1])
        by_source = {src.value: 0 for src in ChunkSource}
        for r in self._conn.execute("SELECT source, COUNT(*) FROM chunks GROUP BY source"):
            by_source[r[0]] = int(r[1])
        by_model = {
            r[0]: int(r[1])
            for r in self._conn.execute(
                "SELECT embedding_model, COUNT(*) FROM chunks "
                "WHERE embedding IS NOT NULL GROUP BY embedding_model"
            )
        }
        return {
            "total": total,
            "embedded": embedded,
            "pending": total - embedded,
            "by_layer": by_layer,
            "by_source": by_source,
            "by_model": by_model,
        }

    def export_chunks(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(f"SELECT {_COLUMNS} FROM chunks ORDER BY created_at, rowid").fetchall()
        return [chunk_row(self._row_to_chunk(r)) for r in rows]

    def import_chunks(self, rows: Iterable[dict[str, Any]]) -> int:
        """Restore exported rows; ids already present are left untouched."""
        params = []
        for row in rows:
            chunk = Chunk.model_validate(row)
            if chunk.is_embedded and not chunk.embedding_model:
                chunk.embedding = None
            params.append(self._chunk_params(chunk))
        if not params:
            return 0
        before = self.count()
        with self._conn:
            self._conn.executemany(
                f"INSERT OR IGNORE INTO chunks({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                params,
            )
        return self.count() - before

    # --- Row Converters ---

    @staticmethod
    def _chunk_params(chunk: Chunk) -> tuple[Any, ...]:
        embedding = vector_to_blob(chunk.embedding) if chunk.is_embedded else None
        return (
            chunk.id,
            chunk.source.value,
            chunk.source_id,
            chunk.content,
            embedding,
            chunk.embedding_model if embedding else None,
            chunk.target_model,
            chunk.layer.value,
            iso_str(chunk.created_at),
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            source=ChunkSource(row["source"]),
            source_id=row["source_id"],
            content=row["content"],
            embedding=blob_to_vector(row["embedding"]),
            embedding_model=row["embedding_model"],
            target_model=row["target_model"],
            layer=Layer(row["layer"]),
            created_at=parse_iso(row["created_at"]),
        )
