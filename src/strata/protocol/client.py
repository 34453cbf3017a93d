"""HTTP protocol client for a remote Strata memory service."""

from __future__ import annotations

from typing import Any, Iterable
from urllib.parse import urljoin

import httpx

from strata.types import ChunkSource, Layer, RetrievalResult, Turn, layer_of


class MemoryHttpClient:
    """Stable remote adapter bound to /api/v1 endpoints."""

    protocol_version = "v1"

    def __init__(self, base_url: str, token: str = "", timeout: float = 30.0,
                 transport: httpx.AsyncBaseTransport | None = None) -> None:
        base = base_url.strip().rstrip("/") + "/"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._base_url = base
        self._headers = headers
        self._timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers, transport=transport)

    def _url(self, path: str) -> str:
        return urljoin(self._base_url, path)

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        resp = await self._client.post(self._url(path), json=payload)
        resp.raise_for_status()
        return dict(resp.json())

    async def ingest(
        self,
        text: str,
        source: ChunkSource | str = ChunkSource.IMPORT,
        source_id: str = "",
        layer: Layer | str = Layer.GENERAL,
    ) -> list[str]:
        data = await self._post(
            "api/v1/memory/ingest",
            {
                "text": text,
                "source": ChunkSource(source).value,
                "source_id": source_id,
                "layer": layer_of(layer).value,
            },
        )
        return list(data.get("chunk_ids", []))

    async def search(self, query: str, top_k: int | None = None) -> list[RetrievalResult]:
        payload: dict[str, Any] = {"query": query}
        if top_k is not None:
            payload["top_k"] = top_k
        data = await self._post("api/v1/memory/search", payload)
        return [
            RetrievalResult.model_validate(r)
            for r in data.get("results", [])
            if isinstance(r, dict)
        ]

    async def recall_context(self, query: str, top_k: int | None = None) -> str:
        payload: dict[str, Any] = {"query": query}
        if top_k is not None:
            payload["top_k"] = top_k
        data = await self._post("api/v1/memory/context", payload)
        return str(data.get("context", ""))

    async def run_layer_update(self, layer: Layer | str, recent_turns: Iterable[Turn]) -> list[str]:
        data = await self._post(
            f"api/v1/layers/{layer_of(layer).value}/update",
            {"turns": [t.model_dump(mode="json") for t in recent_turns]},
        )
        return list(data.get("chunk_ids", []))

    async def post_conversation_update(self, turns: Iterable[Turn]) -> list[str]:
        data = await self._post(
            "api/v1/conversation/turns",
            {"turns": [t.model_dump(mode="json") for t in turns]},
        )
        return list(data.get("submitted", []))

    async def run_backfill(self, per_call_cap: int | None = None) -> int:
        payload = {} if per_call_cap is None else {"per_call_cap": per_call_cap}
        data = await self._post("api/v1/backfill", payload)
        return int(data.get("embedded", 0))

    async def clear_layer(self, layer: Layer | str) -> int:
        resp = await self._client.delete(self._url(f"api/v1/layers/{layer_of(layer).value}"))
        resp.raise_for_status()
        return int(resp.json().get("removed", 0))

    async def clear_all(self) -> int:
        resp = await self._client.delete(self._url("api/v1/memory"))
        resp.raise_for_status()
        return int(resp.json().get("removed", 0))

    def status(self) -> dict[str, Any]:
        with httpx.Client(timeout=self._timeout, headers=self._headers) as client:
            resp = client.get(self._url("api/v1/status"))
            resp.raise_for_status()
            data = dict(resp.json())
            data["protocol_version"] = self.protocol_version
            return data

    async def status_async(self) -> dict[str, Any]:
        resp = await self._client.get(self._url("api/v1/status"))
        resp.raise_for_status()
        data = dict(resp.json())
        data["protocol_version"] = self.protocol_version
        return data

    async def close(self) -> None:
        await self._client.aclose()
