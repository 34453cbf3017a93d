"""Shared utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import numpy as np
import orjson


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj, option=orjson.OPT_SERIALIZE_NUMPY).decode()


def json_loads(data: str | bytes) -> Any:
    return orjson.loads(data)


def iso_str(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def vector_to_blob(vec: Any) -> bytes:
    return np.asarray(vec, dtype=np.float32).reshape(-1).tobytes()


def blob_to_vector(blob: bytes | None) -> list[float] | None:
    if not blob:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


def clip(text: str, limit: int) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit] + "..."


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M")
