"""Memory service facade."""

from strata.memory.service import MemoryService

__all__ = ["MemoryService"]
