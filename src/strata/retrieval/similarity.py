"""Cosine similarity over numpy vectors."""

from __future__ import annotations

import numpy as np


def cosine_similarity(a, b) -> float:
    """Cosine of the angle between ``a`` and ``b``, clipped to [-1, 1].

    Zero-norm or mismatched inputs score 0.0.
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / denom, -1.0, 1.0))


def find_top_k(query, matrix, k: int) -> list[tuple[int, float]]:
    """Return ``(row_index, score)`` for the ``k`` rows most similar to ``query``.

    Rows with zero norm have no defined similarity and are skipped.
    """
    if k <= 0:
        return []
    q = np.asarray(query, dtype=np.float64).reshape(-1)
    m = np.asarray(matrix, dtype=np.float64)
    if m.ndim != 2 or m.shape[0] == 0 or m.shape[1] != q.size:
        return []
    q_norm = float(np.linalg.norm(q))
    if q_norm == 0.0:
        return []
    norms = np.linalg.norm(m, axis=1)
    valid = np.flatnonzero(norms > 0.0)
    if valid.size == 0:
        return []
    scores = np.clip((m[valid] @ q) / (norms[valid] * q_norm), -1.0, 1.0)
    order = np.argsort(-scores, kind="stable")[:k]
    return [(int(valid[i]), float(scores[i])) for i in order]
