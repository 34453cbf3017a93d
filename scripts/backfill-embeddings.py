#!/usr/bin/env python3
"""Backfill embeddings for chunks stored without a vector.

Runs bounded backfill rounds (oldest chunks first) until nothing is left,
a round embeds nothing, or --rounds is reached. Sleeps between rounds to
stay under provider rate limits.

Usage:
    python scripts/backfill-embeddings.py [--cap 50] [--delay 0.5] [--rounds 0]
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from strata.config import Config
from strata.memory.service import MemoryService


async def backfill(cap: int = 50, delay: float = 0.5, rounds: int = 0) -> None:
    config = Config()
    service = MemoryService(config)
    try:
        st = service.store.stats()
        print(f"Total chunks:      {st['total']}")
        print(f"Already embedded:  {st['embedded']}")
        print(f"Pending:           {st['pending']}")
        if not st["pending"]:
            print("Nothing to do!")
            return

        print(f"\nStarting backfill with cap={cap}, delay={delay}s")
        print(f"Text model:     {config.embedding.text_model}")
        print(f"Non-text model: {config.embedding.non_text_model}")
        print()

        embedded = 0
        n_round = 0
        start_time = time.time()
        while rounds <= 0 or n_round < rounds:
            n_round += 1
            n = await service.run_backfill(cap)
            embedded += n
            pending = service.store.stats()["pending"]
            elapsed = time.time() - start_time
            rate = embedded / elapsed if elapsed > 0 else 0
            print(f"  round {n_round}: +{n} ({embedded} total, {pending} pending, {rate:.1f} chunks/s)")
            if n == 0 or pending == 0:
                break
            if delay > 0:
                await asyncio.sleep(delay)

        elapsed = time.time() - start_time
        print(f"\nDone! Embedded {embedded} chunks in {elapsed:.1f}s")
        leftover = service.store.stats()["pending"]
        if leftover:
            print(f"Still pending (provider failures): {leftover}")
    finally:
        await service.close()


def main():
    parser = argparse.ArgumentParser(description="Backfill chunk embeddings")
    parser.add_argument("--cap", type=int, default=50, help="Chunks per round")
    parser.add_argument("--delay", type=float, default=0.5, help="Seconds between rounds")
    parser.add_argument("--rounds", type=int, default=0, help="Max rounds (0=until idle)")
    args = parser.parse_args()

    asyncio.run(backfill(args.cap, args.delay, args.rounds))


if __name__ == "__main__":
    main()
