"""Memory Layer - Learned repair patterns."""

from remedy.layers.memory.pattern_store import (
    InMemoryPatternStore,
    JsonPatternStore,
    PatternStore,
)

__all__ = ["PatternStore", "InMemoryPatternStore", "JsonPatternStore"]
