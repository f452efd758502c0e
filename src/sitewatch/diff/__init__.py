"""Snapshot diffing."""

from .engine import DiffEngine
from .types import DiffResult

__all__ = ["DiffEngine", "DiffResult"]
