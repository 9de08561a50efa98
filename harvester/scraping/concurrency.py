"""
Concurrency primitives for the extraction pool.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from typing import Generic, Protocol, TypeVar

import psutil

T = TypeVar("T")

BYTES_PER_MB = 1024 * 1024


class ResourceProbe(Protocol):
    def available_memory_bytes(self) -> int:
        ...

    def cpu_count(self) -> int:
        ...

    def memory_percent(self) -> float:
        ...


class PsutilResourceProbe:
    """
    Host resource readings backed by psutil.
    """

    def available_memory_bytes(self) -> int:
        return int(psutil.virtual_memory().available)

    def cpu_count(self) -> int:
        return os.cpu_count() or 1

    def memory_percent(self) -> float:
        return float(psutil.virtual_memory().percent)


def compute_pool_size(
    *,
    available_memory_bytes: int,
    per_session_memory_mb: int,
    cpu_count: int,
    cpu_multiplier: int,
    cap: int,
    floor: int = 3,
) -> int:
    """
    Worker count: `max(floor, min(memory_budget, cpu_budget, cap))`.
    """

    memory_budget = available_memory_bytes // max(1, per_session_memory_mb * BYTES_PER_MB)
    cpu_budget = max(1, cpu_count) * max(1, cpu_multiplier)
    return max(floor, min(int(memory_budget), cpu_budget, cap))


class ClaimCursor(Generic[T]):
    """
    Lock-protected cursor handing out each item of a batch exactly once.
    """

    def __init__(self, items: Sequence[T]) -> None:
        self._items = list(items)
        self._index = 0
        self._lock = threading.Lock()

    def claim(self) -> T | None:
        with self._lock:
            if self._index >= len(self._items):
                return None
            item = self._items[self._index]
            self._index += 1
            return item

    @property
    def claimed(self) -> int:
        with self._lock:
            return self._index

    def __len__(self) -> int:
        return len(self._items)
