from __future__ import annotations

import sqlite3
from datetime import timedelta

import numpy as np
import pytest

from strata.exceptions import StoreError
from strata.storage.sqlite_store import SQLiteStore
from strata.types import Chunk, ChunkSource, Layer
from strata.utils import utcnow


def _chunk(content: str, layer: Layer = Layer.GENERAL, minutes_ago: int = 0, **kw) -> Chunk:
    return Chunk(content=content, layer=layer, created_at=utcnow() - timedelta(minutes=minutes_ago), **kw)


def test_update_embedding_is_write_once(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        c = _chunk("Some general knowledge.")
        store.insert_chunk(c)
        assert store.get_chunk(c.id).embedding is None

        assert store.update_embedding(c.id, np.array([1.0, 0.0], dtype=np.float32), "A") is True
        assert store.update_embedding(c.id, np.array([0.0, 1.0], dtype=np.float32), "B") is False

        stored = store.get_chunk(c.id)
        assert stored.embedding == [1.0, 0.0]
        assert stored.embedding_model == "A"
        assert store.update_embedding("missing", [1.0], "A") is False
    finally:
        store.close()


def test_update_embedding_rejects_empty_vector_and_model(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        c = _chunk("Some general knowledge.")
        store.insert_chunk(c)
        with pytest.raises(StoreError):
            store.update_embedding(c.id, np.zeros((0,), dtype=np.float32), "A")
        with pytest.raises(StoreError):
            store.update_embedding(c.id, [1.0, 2.0], "")
        assert store.get_chunk(c.id).embedding is None
    finally:
        store.close()


def test_list_unembedded_is_oldest_first_and_bounded(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        chunks = [_chunk(f"pending chunk {i}", minutes_ago=10 - i) for i in range(6)]
        store.insert_chunks(chunks)
        store.update_embedding(chunks[0].id, [1.0, 0.0], "A")

        pending = store.list_unembedded(3)
        assert [c.id for c in pending] == [c.id for c in chunks[1:4]]
        assert len(store.list_unembedded(100)) == 5
    finally:
        store.close()


def test_list_embedded_filters_by_layer_and_model(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        a = _chunk("general under model A")
        b = _chunk("general under model B")
        h = _chunk("historical under model A", layer=Layer.HISTORICAL)
        pending = _chunk("general still pending")
        store.insert_chunks([a, b, h, pending])
        store.update_embedding(a.id, [1.0, 0.0], "A")
        store.update_embedding(b.id, [0.0, 1.0, 0.0], "B")
        store.update_embedding(h.id, [1.0, 1.0], "A")

        assert [c.id for c in store.list_embedded(Layer.GENERAL)] == [a.id, b.id]
        assert [c.id for c in store.list_embedded(Layer.GENERAL, "B")] == [b.id]
        assert store.embedding_models(Layer.GENERAL) == ["A", "B"]
        assert store.embedding_models(Layer.HISTORICAL) == ["A"]
        assert store.embedding_models(Layer.EMOTIONAL) == []
    finally:
        store.close()


def test_trim_layer_keeps_most_recent(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        chunks = [_chunk(f"snapshot number {i}", layer=Layer.EMOTIONAL, minutes_ago=20 - i) for i in range(12)]
        store.insert_chunks(chunks)
        store.insert_chunk(_chunk("unrelated general chunk"))

        removed = store.trim_layer(Layer.EMOTIONAL, 10)

        assert removed == 2
        kept = {c.id for c in store.list_layer(Layer.EMOTIONAL)}
        assert kept == {c.id for c in chunks[2:]}
        assert store.count(Layer.GENERAL) == 1
    finally:
        store.close()


def test_replace_layer_swaps_whole_set(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        old = [_chunk(f"old profile part {i}", layer=Layer.RATIONAL) for i in range(3)]
        store.insert_chunks(old)
        new = [_chunk(f"new profile part {i}", layer=Layer.RATIONAL) for i in range(2)]

        removed = store.replace_layer(Layer.RATIONAL, new)

        assert removed == 3
        assert {c.id for c in store.list_layer(Layer.RATIONAL)} == {c.id for c in new}
    finally:
        store.close()


def test_replace_layer_failure_keeps_previous_set(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        old = [_chunk(f"old profile part {i}", layer=Layer.RATIONAL) for i in range(3)]
        store.insert_chunks(old)
        clash = _chunk("reuses an existing id", layer=Layer.RATIONAL, id=old[0].id)
        fresh = _chunk("a brand new profile part", layer=Layer.RATIONAL)

        with pytest.raises(sqlite3.IntegrityError):
            store.replace_layer(Layer.RATIONAL, [fresh, clash])

        assert {c.id for c in store.list_layer(Layer.RATIONAL)} == {c.id for c in old}
        assert store.get_chunk(fresh.id) is None
    finally:
        store.close()


def test_replace_layer_rejects_foreign_chunks(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        with pytest.raises(StoreError):
            store.replace_layer(Layer.RATIONAL, [_chunk("belongs to general")])
    finally:
        store.close()


def test_stats_and_deletes(tmp_path):
    store = SQLiteStore(tmp_path / "strata.db")
    try:
        a = _chunk("a general chunk here", source=ChunkSource.UPLOAD)
        b = _chunk("a historical chunk here", layer=Layer.HISTORICAL)
        c = _chunk("an emotional chunk here", layer=Layer.EMOTIONAL)
        store.insert_chunks([a, b, c])
        store.update_embedding(a.id, [0.5, 0.5], "A")

        st = store.stats()
        assert st["total"] == 3
        assert st["embedded"] == 1
        assert st["pending"] == 2
        assert st["by_layer"] == {"emotional": 1, "rational": 0, "historical": 1, "general": 1}
        assert st["by_source"]["upload"] == 1
        assert st["by_source"]["conversation"] == 2
        assert st["by_model"] == {"A": 1}

        assert store.delete_layer(Layer.HISTORICAL) == 1
        assert store.count() == 2
        assert store.delete_all() == 2
        assert store.count() == 0
    finally:
        store.close()


def test_export_then_import_into_fresh_store(tmp_path):
    src = SQLiteStore(tmp_path / "a.db")
    dst = SQLiteStore(tmp_path / "b.db")
    try:
        embedded = _chunk("embedded chunk content", target_model="A")
        pending = _chunk("pending chunk content", layer=Layer.HISTORICAL, target_model="A")
        src.insert_chunks([embedded, pending])
        src.update_embedding(embedded.id, [0.25, 0.75], "A")

        rows = src.export_chunks()
        assert len(rows) == 2

        assert dst.import_chunks(rows) == 2
        assert dst.import_chunks(rows) == 0

        restored = dst.get_chunk(embedded.id)
        assert restored.embedding == [0.25, 0.75]
        assert restored.embedding_model == "A"
        again = dst.get_chunk(pending.id)
        assert again.embedding is None
        assert again.layer == Layer.HISTORICAL
        assert again.target_model == "A"
        assert restored.is_embedded and not again.is_embedded
        assert dst.stats()["pending"] == 1

        source = next(r for r in rows if r["id"] == embedded.id)
        orphan = dict(source, id="orphan-vector", embedding_model=None)
        assert dst.import_chunks([orphan]) == 1
        assert not dst.get_chunk("orphan-vector").is_embedded
        assert dst.stats()["pending"] == 2
    finally:
        src.close()
        dst.close()
