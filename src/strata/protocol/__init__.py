"""Stable versioned protocol surface for Strata integrations."""

from strata.protocol.client import MemoryHttpClient
from strata.protocol.types import MemoryProtocolV1

__all__ = [
    "MemoryHttpClient",
    "MemoryProtocolV1",
]
