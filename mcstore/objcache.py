"""A thread-safe pool of reusable objects."""

from __future__ import annotations

import threading
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

INITIAL_POOL_SIZE = 64


class ObjectCache(Generic[T]):
    """Hands out objects, reusing returned ones before creating new ones.

    ``factory`` creates a fresh object; ``constructor`` initialises each fresh
    object once and may raise to reject it; ``destructor`` is called on every
    pooled object when the cache is destroyed.
    """

    def __init__(
        self,
        name: str,
        factory: Callable[[], T],
        constructor: Callable[[T], Any] | None = None,
        destructor: Callable[[T], Any] | None = None,
    ) -> None:
        self.name = name
        self._factory = factory
        self._constructor = constructor
        self._destructor = destructor
        self._free: list[T] = []
        self._capacity = INITIAL_POOL_SIZE
        self._lock = threading.Lock()

    @property
    def available(self) -> int:
        """Number of objects waiting in the pool."""
        with self._lock:
            return len(self._free)

    @property
    def capacity(self) -> int:
        """Current size of the free list before it has to grow."""
        with self._lock:
            return self._capacity

    def alloc(self) -> T:
        """Return a pooled object, or create and initialise a new one."""
        with self._lock:
            if self._free:
                return self._free.pop()
            obj = self._factory()
            if self._constructor is not None:
                self._constructor(obj)
            return obj

    def free(self, obj: T) -> None:
        """Return ``obj`` to the pool for later reuse."""
        with self._lock:
            if len(self._free) >= self._capacity:
                self._capacity *= 2
            self._free.append(obj)

    def destroy(self) -> None:
        """Run the destructor on every pooled object and empty the pool."""
        with self._lock:
            while self._free:
                obj = self._free.pop()
                if self._destructor is not None:
                    self._destructor(obj)

    def __enter__(self) -> "ObjectCache[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()