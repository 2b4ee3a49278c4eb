"""
Storage adapters for the dispatch engine.

Public API:
- DispatchStore (interface)
- InMemoryStore
"""
from .base import DispatchStore
from .memory import InMemoryStore

__all__ = ["DispatchStore", "InMemoryStore"]
