"""Memory layer: cache, graph queries and the coordinator over all stores."""

from .cache import CacheStats, TTLCache
from .coordinator import Embedder, MemoryCoordinator
from .graph_queries import GraphStore

__all__ = ["CacheStats", "TTLCache", "Embedder", "MemoryCoordinator", "GraphStore"]
