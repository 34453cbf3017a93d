"""Background update queue: one worker per layer."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable

from loguru import logger

from strata.types import Layer, Turn

Runner = Callable[[Layer, list[Turn]], Awaitable[Any]]

COALESCED_LAYERS = frozenset({Layer.EMOTIONAL, Layer.RATIONAL})


class LayerUpdateQueue:
    """Serializes layer updates and runs different layers in parallel.

    Snapshot layers (emotional, rational) keep only the newest waiting
    request; append-only layers run every request in order.
    """

    def __init__(self, runner: Runner, timeout: float = 120.0,
                 coalesce: frozenset[Layer] = COALESCED_LAYERS) -> None:
        self._runner = runner
        self.timeout = timeout
        self._coalesce = coalesce
        self._pending: dict[Layer, deque[list[Turn]]] = {layer: deque() for layer in Layer}
        self._workers: dict[Layer, asyncio.Task] = {}
        self._stats = {"submitted": 0, "coalesced": 0, "completed": 0, "failed": 0, "timed_out": 0}

    def submit(self, layer: Layer, turns: list[Turn]) -> asyncio.Task:
        queue = self._pending[layer]
        if layer in self._coalesce and queue:
            self._stats["coalesced"] += len(queue)
            queue.clear()
        queue.append(list(turns))
        self._stats["submitted"] += 1
        worker = self._workers.get(layer)
        if worker is None or worker.done():
            worker = asyncio.ensure_future(self._drain(layer))
            self._workers[layer] = worker
        return worker

    def pending(self, layer: Layer) -> int:
        return len(self._pending[layer])

    async def _drain(self, layer: Layer) -> None:
        queue = self._pending[layer]
        while queue:
            turns = queue.popleft()
            try:
                await asyncio.wait_for(self._runner(layer, turns), self.timeout)
                self._stats["completed"] += 1
            except asyncio.TimeoutError:
                self._stats["timed_out"] += 1
                logger.warning(f"{layer.value} layer update timed out after {self.timeout}s")
            except Exception:
                self._stats["failed"] += 1
                logger.exception(f"{layer.value} layer update failed")

    async def drain(self) -> None:
        """Wait until every submitted update has finished."""
        while True:
            active = [w for w in self._workers.values() if not w.done()]
            if not active:
                return
            await asyncio.gather(*active, return_exceptions=True)

    async def close(self) -> None:
        for queue in self._pending.values():
            queue.clear()
        workers = [w for w in self._workers.values() if not w.done()]
        for w in workers:
            w.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)
