"""Memory layers and their mutation policies."""

from strata.layers.manager import LayerManager
from strata.layers.queue import LayerUpdateQueue

__all__ = ["LayerManager", "LayerUpdateQueue"]
