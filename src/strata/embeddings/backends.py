"""Embedding backend abstraction."""

from __future__ import annotations

import hashlib
import os
import re
from typing import Any, Protocol, runtime_checkable

import httpx
import numpy as np

from strata.config import EmbeddingConfig
from strata.exceptions import ConfigurationError, EmbeddingError
from strata.types import EmbeddingItem

_VL_MODEL_RE = re.compile(r"qwen3-vl-embedding", re.IGNORECASE)


def is_multimodal_model(model: str) -> bool:
    return bool(_VL_MODEL_RE.search(model or ""))


@runtime_checkable
class EmbeddingBackend(Protocol):
    model: str
    supports_images: bool
    max_batch: int

    async def embed(self, texts: list[str]) -> np.ndarray: ...
    async def close(self) -> None: ...


class OpenAIEmbedder:
    """OpenAI-style ``/embeddings`` endpoint (batched text input)."""

    supports_images = False
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        max_batch: int = 64,
    ) -> None:
        self.api_key = api_key or os.environ.get(self.api_key_env, "")
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_batch = max_batch
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "items": 0}

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise ConfigurationError(f"{self.api_key_env} is required for embedding model {self.model}")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        return self._client

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        client = await self._get_client()
        resp = await client.post(
            "/embeddings",
            json={"model": self.model, "input": texts},
        )
        resp.raise_for_status()
        data = resp.json()
        rows = data.get("data") if isinstance(data, dict) else None
        if not isinstance(rows, list) or not all(isinstance(x, dict) for x in rows):
            raise EmbeddingError(f"malformed embedding response from {self.model}")
        rows = sorted(rows, key=lambda x: int(x.get("index") or 0))
        vecs = [x.get("embedding") or [] for x in rows]
        if len(vecs) != len(texts):
            raise EmbeddingError(f"expected {len(texts)} vectors from {self.model}, got {len(vecs)}")
        self._stats["calls"] += 1
        self._stats["items"] += len(texts)
        try:
            return np.array(vecs, dtype=np.float32)
        except (ValueError, TypeError) as exc:
            raise EmbeddingError(f"ragged or non-numeric vectors from {self.model}") from exc

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class DashScopeEmbedder(OpenAIEmbedder):
    """DashScope text embeddings through the OpenAI-compatible endpoint."""

    api_key_env = "DASHSCOPE_API_KEY"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-v3",
        base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1",
        timeout: float = 30.0,
        max_batch: int = 10,
    ) -> None:
        super().__init__(api_key=api_key, model=model, base_url=base_url,
                         timeout=timeout, max_batch=max_batch)


def _first_vector(data: Any) -> Any:
    """First vector of a multimodal response: ``output.embeddings`` or ``data``."""
    if not isinstance(data, dict):
        return None
    output = data.get("output")
    embeddings = output.get("embeddings") if isinstance(output, dict) else None
    if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], dict):
        return embeddings[0].get("embedding") or embeddings[0].get("vector")
    rows = data.get("data")
    if isinstance(rows, list) and rows and isinstance(rows[0], dict):
        return rows[0].get("embedding")
    return None


class DashScopeMultimodalEmbedder:
    """DashScope multimodal embeddings (text or image, one item per request)."""

    supports_images = True
    max_batch = 1

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "qwen3-vl-embedding",
        url: str = (
            "https://dashscope.aliyuncs.com/api/v1/services/embeddings/"
            "multimodal-embedding/multimodal-embedding"
        ),
        timeout: float = 60.0,
    ) -> None:
        self.api_key = api_key or os.environ.get("DASHSCOPE_API_KEY", "")
        self.model = model
        self.url = url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._stats = {"calls": 0, "items": 0}

    async def _get_client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise ConfigurationError(f"DASHSCOPE_API_KEY is required for embedding model {self.model}")
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-DashScope-Async": "false",
                },
                timeout=self.timeout,
            )
        return self._client

    async def embed_item(self, item: EmbeddingItem) -> np.ndarray:
        client = await self._get_client()
        if item.kind == "image":
            content = [{"image": item.payload}]
        else:
            content = [{"text": item.payload.strip()}]
        resp = await client.post(self.url, json={"model": self.model, "input": content})
        resp.raise_for_status()
        data = resp.json()
        vec = _first_vector(data)
        if not isinstance(vec, list) or not vec:
            raise EmbeddingError(f"malformed multimodal embedding response from {self.model}")
        self._stats["calls"] += 1
        self._stats["items"] += 1
        try:
            return np.array(vec, dtype=np.float32)
        except (ValueError, TypeError) as exc:
            raise EmbeddingError(f"non-numeric vector from {self.model}") from exc

    async def embed_items(self, items: list[EmbeddingItem]) -> np.ndarray:
        if not items:
            return np.zeros((0, 0), dtype=np.float32)
        return np.stack([await self.embed_item(item) for item in items])

    async def embed(self, texts: list[str]) -> np.ndarray:
        return await self.embed_items([EmbeddingItem.text(t) for t in texts])

    @property
    def stats(self) -> dict[str, Any]:
        return dict(self._stats)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class OllamaEmbedder:
    supports_images = False
    max_batch = 16

    def __init__(
        self,
        model: str = "nomic-embed-text",
        base_url: str = "http://127.0.0.1:11434",
        timeout: float = 30.0,
    ) -> None:
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, 0), dtype=np.float32)
        client = await self._get_client()
        out: list[list[float]] = []
        for text in texts:
            resp = await client.post("/api/embeddings", json={"model": self.model, "prompt": text})
            resp.raise_for_status()
            data = resp.json()
            vec = data.get("embedding") if isinstance(data, dict) else None
            if not isinstance(vec, list) or not vec:
                raise EmbeddingError(f"empty embedding from ollama model {self.model}")
            out.append(vec)
        try:
            return np.array(out, dtype=np.float32)
        except (ValueError, TypeError) as exc:
            raise EmbeddingError(f"ragged or non-numeric vectors from ollama model {self.model}") from exc

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class HashEmbedder:
    """Deterministic local embedder using token hashing (no network/API keys)."""

    supports_images = False
    max_batch = 64
    _TOKEN_RE = re.compile(r"\w+", re.UNICODE)

    def __init__(self, model: str = "hash", dims: int = 384) -> None:
        self.model = model
        self.dims = max(32, int(dims))

    def _encode(self, text: str) -> np.ndarray:
        tokens = self._TOKEN_RE.findall((text or "").lower())
        vec = np.zeros((self.dims,), dtype=np.float32)
        if not tokens:
            return vec

        features = list(tokens)
        features.extend(f"{tokens[i]}_{tokens[i+1]}" for i in range(len(tokens) - 1))
        for feat in features:
            digest = hashlib.blake2b(feat.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little", signed=False) % self.dims
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return np.stack([self._encode(t) for t in texts]).astype(np.float32, copy=False)

    async def close(self) -> None:
        return None


def create_embedder(config: EmbeddingConfig | None = None, model: str | None = None) -> EmbeddingBackend:
    """Build the backend that serves ``model`` under the configured provider."""
    cfg = config or EmbeddingConfig()
    model = model or cfg.text_model
    provider = (cfg.provider or "dashscope").strip().lower()
    if provider in {"dashscope", "default"}:
        if is_multimodal_model(model):
            return DashScopeMultimodalEmbedder(
                api_key=cfg.api_key, model=model, url=cfg.multimodal_url, timeout=cfg.timeout,
            )
        return DashScopeEmbedder(
            api_key=cfg.api_key, model=model, base_url=cfg.base_url,
            timeout=cfg.timeout, max_batch=cfg.max_batch,
        )
    if provider == "openai":
        return OpenAIEmbedder(api_key=cfg.api_key or None, model=model, timeout=cfg.timeout)
    if provider in {"ollama", "local"}:
        return OllamaEmbedder(model=model, timeout=cfg.timeout)
    if provider in {"hash", "localhash"}:
        return HashEmbedder(model=model, dims=cfg.dims)
    raise ConfigurationError(f"Unsupported embedding provider: {cfg.provider}")
