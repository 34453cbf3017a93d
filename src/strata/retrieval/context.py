"""Render retrieval results as a prompt context block."""

from __future__ import annotations

from strata.types import Layer, RetrievalResult

LAYER_TITLES = {
    Layer.RATIONAL: "User profile",
    Layer.EMOTIONAL: "Emotional memory",
    Layer.HISTORICAL: "Historical memory",
    Layer.GENERAL: "Knowledge base",
}


def build_memory_context(results: list[RetrievalResult]) -> str:
    if not results:
        return ""
    grouped: dict[Layer, list[RetrievalResult]] = {}
    for r in results:
        grouped.setdefault(r.layer, []).append(r)

    parts: list[str] = []
    for layer, title in LAYER_TITLES.items():
        items = grouped.get(layer)
        if not items:
            continue
        lines = "\n".join(f"  [{i}] {r.content}" for i, r in enumerate(items, 1))
        parts.append(f"## {title}\n{lines}")
    return "\n\n".join(parts)
