"""FastAPI HTTP API for Strata."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field

from strata.config import Config
from strata.exceptions import ConfigurationError, StoreError
from strata.memory.service import MemoryService
from strata.types import ChunkSource, Layer, RetrievalResult, Turn


# --- Request/Response Models ---

class IngestRequest(BaseModel):
    text: str
    source: ChunkSource = ChunkSource.IMPORT
    source_id: str = ""
    layer: Layer = Layer.GENERAL
    structured: bool | None = None


class IngestResponse(BaseModel):
    chunk_ids: list[str]
    count: int


class SearchRequest(BaseModel):
    query: str
    top_k: int | None = None


class SearchResponse(BaseModel):
    results: list[RetrievalResult]
    count: int


class ContextResponse(BaseModel):
    context: str
    query: str


class TurnsRequest(BaseModel):
    turns: list[Turn] = Field(default_factory=list)


class LayerUpdateResponse(BaseModel):
    layer: Layer
    chunk_ids: list[str]
    count: int


class ConversationResponse(BaseModel):
    submitted: list[Layer]


class BackfillRequest(BaseModel):
    per_call_cap: int | None = None


class BackfillResponse(BaseModel):
    embedded: int
    pending: int


class ClearResponse(BaseModel):
    removed: int


class ExportResponse(BaseModel):
    chunks: list[dict[str, Any]]
    count: int


class ImportRequest(BaseModel):
    chunks: list[dict[str, Any]]


class ImportResponse(BaseModel):
    imported: int


# --- App factory ---

_service: MemoryService | None = None


def get_service() -> MemoryService:
    if _service is None:
        raise HTTPException(status_code=500, detail="Memory service not initialized")
    return _service


def create_app(data_dir: str | None = None, service: MemoryService | None = None) -> FastAPI:
    global _service
    if service is None:
        config = Config()
        if data_dir:
            config.data_dir = Path(data_dir)
        service = MemoryService(config)
    _service = service
    config = service.config

    app = FastAPI(
        title="Strata Memory API",
        version="0.1.0",
        default_response_class=ORJSONResponse,
    )

    # Bearer token auth middleware
    token = config.api.bearer_token

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        if request.url.path in ("/api/v1/health", "/docs", "/openapi.json"):
            return await call_next(request)
        if token:
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer ") or auth[7:] != token:
                return ORJSONResponse({"detail": "Unauthorized"}, status_code=401)
        return await call_next(request)

    @app.exception_handler(ConfigurationError)
    async def configuration_error(request: Request, exc: ConfigurationError):
        return ORJSONResponse({"detail": str(exc)}, status_code=503)

    @app.exception_handler(StoreError)
    async def store_error(request: Request, exc: StoreError):
        return ORJSONResponse({"detail": str(exc)}, status_code=409)

    # --- Routes ---

    @app.get("/api/v1/health")
    async def health():
        return {"status": "ok", "service": "strata"}

    @app.get("/api/v1/status")
    async def get_status(svc: MemoryService = Depends(get_service)):
        return svc.status()

    @app.post("/api/v1/memory/ingest", response_model=IngestResponse)
    async def memory_ingest(req: IngestRequest, svc: MemoryService = Depends(get_service)):
        chunk_ids = await svc.ingest(
            req.text, req.source, req.source_id, req.layer, structured=req.structured,
        )
        return IngestResponse(chunk_ids=chunk_ids, count=len(chunk_ids))

    @app.post("/api/v1/memory/search", response_model=SearchResponse)
    async def memory_search(req: SearchRequest, svc: MemoryService = Depends(get_service)):
        results = await svc.search(req.query, top_k=req.top_k)
        return SearchResponse(results=results, count=len(results))

    @app.post("/api/v1/memory/context", response_model=ContextResponse)
    async def memory_context(req: SearchRequest, svc: MemoryService = Depends(get_service)):
        context = await svc.recall_context(req.query, top_k=req.top_k)
        return ContextResponse(context=context, query=req.query)

    @app.post("/api/v1/layers/{layer}/update", response_model=LayerUpdateResponse)
    async def layer_update(layer: Layer, req: TurnsRequest, svc: MemoryService = Depends(get_service)):
        chunk_ids = await svc.run_layer_update(layer, req.turns)
        return LayerUpdateResponse(layer=layer, chunk_ids=chunk_ids, count=len(chunk_ids))

    @app.post("/api/v1/conversation/turns", response_model=ConversationResponse)
    async def conversation_turns(req: TurnsRequest, svc: MemoryService = Depends(get_service)):
        return ConversationResponse(submitted=svc.post_conversation_update(req.turns))

    @app.post("/api/v1/backfill", response_model=BackfillResponse)
    async def backfill(req: BackfillRequest, svc: MemoryService = Depends(get_service)):
        embedded = await svc.run_backfill(req.per_call_cap)
        return BackfillResponse(embedded=embedded, pending=svc.store.stats()["pending"])

    @app.delete("/api/v1/layers/{layer}", response_model=ClearResponse)
    async def clear_layer(layer: Layer, svc: MemoryService = Depends(get_service)):
        return ClearResponse(removed=await svc.clear_layer(layer))

    @app.delete("/api/v1/memory", response_model=ClearResponse)
    async def clear_all(svc: MemoryService = Depends(get_service)):
        return ClearResponse(removed=await svc.clear_all())

    @app.get("/api/v1/memory/export", response_model=ExportResponse)
    async def export_chunks(svc: MemoryService = Depends(get_service)):
        rows = svc.export_chunks()
        return ExportResponse(chunks=rows, count=len(rows))

    @app.post("/api/v1/memory/import", response_model=ImportResponse)
    async def import_chunks(req: ImportRequest, svc: MemoryService = Depends(get_service)):
        return ImportResponse(imported=svc.import_chunks(req.chunks))

    return app
