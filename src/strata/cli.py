"""Strata CLI."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import click
from loguru import logger

from strata.config import Config
from strata.exceptions import ConfigurationError
from strata.memory.service import MemoryService
from strata.types import ChunkSource, Layer
from strata.utils import json_dumps, json_loads

_LAYERS = click.Choice([layer.value for layer in Layer])


def _get_service(data_dir: str | None = None) -> MemoryService:
    config = Config()
    if data_dir:
        config.data_dir = Path(data_dir)
    return MemoryService(config)


def _run(ctx: click.Context, work: Callable[[MemoryService], Awaitable[Any]]) -> Any:
    async def _go() -> Any:
        service = _get_service(ctx.obj.get("data_dir"))
        try:
            return await work(service)
        finally:
            await service.close()

    try:
        return asyncio.run(_go())
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


@click.group()
@click.option("--data-dir", envvar="STRATA_DATA_DIR", default=None, help="Data directory")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: str | None, verbose: bool) -> None:
    """Strata: layered memory for a personal assistant."""
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show memory status."""
    async def work(service: MemoryService) -> dict[str, Any]:
        return service.status()

    st = _run(ctx, work)
    click.echo("Strata Memory Status")
    click.echo(f"  Chunks:    {st['total']}")
    click.echo(f"  Embedded:  {st['embedded']}")
    click.echo(f"  Pending:   {st['pending']}")
    for layer, n in st["by_layer"].items():
        click.echo(f"  {layer + ':':<11}{n}")
    for model, n in st["by_model"].items():
        click.echo(f"  model {model}: {n}")


@main.command()
@click.argument("query")
@click.option("--top-k", "-k", default=5, help="Number of results")
@click.option("--context", "as_context", is_flag=True, help="Print the rendered prompt context")
@click.pass_context
def search(ctx: click.Context, query: str, top_k: int, as_context: bool) -> None:
    """Search memory."""
    if as_context:
        click.echo(_run(ctx, lambda s: s.recall_context(query, top_k=top_k)) or "No results found.")
        return
    results = _run(ctx, lambda s: s.search(query, top_k=top_k))
    if not results:
        click.echo("No results found.")
    else:
        for i, r in enumerate(results, 1):
            click.echo(f"\n--- Result {i} (score: {r.score:.4f}, layer: {r.layer.value}) ---")
            click.echo(f"ID: {r.id}")
            preview = r.content[:200].replace("\n", " ")
            click.echo(f"{preview}")


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--layer", "-l", type=_LAYERS, default=Layer.GENERAL.value, help="Target layer")
@click.pass_context
def ingest(ctx: click.Context, path: str, layer: str) -> None:
    """Ingest a knowledge file into memory."""
    file_path = Path(path)
    chunk_ids = _run(ctx, lambda s: s.ingest_file(file_path, layer=layer))
    click.echo(f"Ingested {file_path.name}: {len(chunk_ids)} chunks")


@main.command()
@click.argument("text")
@click.option("--layer", "-l", type=_LAYERS, default=Layer.GENERAL.value, help="Target layer")
@click.option("--source-id", "-s", default="", help="Source identifier")
@click.pass_context
def add(ctx: click.Context, text: str, layer: str, source_id: str) -> None:
    """Add a piece of text to memory."""
    chunk_ids = _run(ctx, lambda s: s.ingest(text, ChunkSource.IMPORT, source_id, layer))
    click.echo(f"Stored {len(chunk_ids)} chunks in {layer}")


@main.command()
@click.option("--cap", default=None, type=int, help="Chunks per round")
@click.option("--rounds", default=None, type=int, help="Maximum rounds")
@click.pass_context
def backfill(ctx: click.Context, cap: int | None, rounds: int | None) -> None:
    """Embed chunks that are still missing a vector."""
    async def work(service: MemoryService) -> tuple[int, int]:
        n = await service.backfill.run_until_idle(
            cap, max_rounds=rounds, timeout=service.config.backfill.timeout,
        )
        return n, service.store.stats()["pending"]

    embedded, pending = _run(ctx, work)
    click.echo(f"Embedded {embedded} chunks; {pending} still pending")


@main.command()
@click.option("--layer", "-l", type=_LAYERS, default=None, help="Clear only this layer")
@click.confirmation_option(prompt="Delete memory chunks?")
@click.pass_context
def clear(ctx: click.Context, layer: str | None) -> None:
    """Delete a layer, or all memory."""
    if layer:
        removed = _run(ctx, lambda s: s.clear_layer(layer))
    else:
        removed = _run(ctx, lambda s: s.clear_all())
    click.echo(f"Removed {removed} chunks")


@main.command(name="export")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_context
def export_cmd(ctx: click.Context, path: str) -> None:
    """Write every chunk to a JSON backup."""
    async def work(service: MemoryService) -> list[dict[str, Any]]:
        return service.export_chunks()

    rows = _run(ctx, work)
    Path(path).write_text(json_dumps({"chunks": rows}), encoding="utf-8")
    click.echo(f"Exported {len(rows)} chunks to {path}")


@main.command(name="import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_cmd(ctx: click.Context, path: str) -> None:
    """Restore chunks from a JSON backup."""
    data = json_loads(Path(path).read_bytes())
    rows = data.get("chunks", []) if isinstance(data, dict) else data

    async def work(service: MemoryService) -> int:
        return service.import_chunks(rows)

    click.echo(f"Imported {_run(ctx, work)} chunks")


@main.command()
@click.option("--host", "-h", default=None, help="Bind host")
@click.option("--port", "-p", default=None, type=int, help="Bind port")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the HTTP API server."""
    import uvicorn
    from strata.api.routes import create_app

    data_dir = ctx.obj.get("data_dir")
    app = create_app(data_dir=data_dir)
    api = Config().api
    host = host or api.host
    port = port or api.port
    click.echo(f"Starting Strata API on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")
