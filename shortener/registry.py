"""Process-wide registry of snowflake generators keyed by node id.

A node id must map to exactly one live generator; two generators for the same
node would mint colliding ids. The registry creates generators lazily and
publishes each one exactly once, even when many callers race on first use.

Flow Diagram — get_generator()
==============================
::
    ┌─────────────┐
    │ dict lookup │
    │ (no lock)   │
    └──────┬──────┘
    FOUND?       │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Acquire │  │ Return  │
│ lock,   │  │ existing│
│ re-check│  └─────────┘
└────┬────┘
     ▼
┌─────────┐
│ Build & │
│ publish │
└─────────┘

Key Behaviours
===============
- Construction errors (InvalidNodeID) propagate and are never cached.
- A single mutex guards creation; reads of published generators take no lock.
"""

import threading
from functools import lru_cache
from typing import Optional

from shortener.config import get_settings
from shortener.idgen import SnowflakeGenerator

__all__ = ["NodeRegistry", "get_registry"]


class NodeRegistry:
    """Memoized factory of SnowflakeGenerator instances, one per node id."""

    def __init__(self, min_code_length: int = 6, **generator_options):
        self._min_code_length = min_code_length
        self._generator_options = generator_options
        self._generators: dict[int, SnowflakeGenerator] = {}
        self._lock = threading.Lock()

    def get_generator(self, node_id: int) -> SnowflakeGenerator:
        generator = self._generators.get(node_id)
        if generator is not None:
            return generator

        with self._lock:
            generator = self._generators.get(node_id)
            if generator is None:
                generator = SnowflakeGenerator(
                    node_id,
                    min_code_length=self._min_code_length,
                    **self._generator_options,
                )
                self._generators[node_id] = generator
            return generator

    def peek(self, node_id: int) -> Optional[SnowflakeGenerator]:
        """Return the generator for node_id without creating one."""
        return self._generators.get(node_id)

    def clear(self) -> None:
        with self._lock:
            self._generators.clear()

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._generators

    def __len__(self) -> int:
        return len(self._generators)


@lru_cache()
def get_registry() -> NodeRegistry:
    return NodeRegistry(min_code_length=get_settings().SHORT_CODE_MIN_LENGTH)
