"""Hash table of cached items that grows in steps, one bucket at a time."""

from __future__ import annotations

import os
import re
import sys
import threading
from typing import Any, Callable, Mapping

HASHPOWER_DEFAULT = 16
HASHPOWER_MAX = 32
DEFAULT_HASH_BULK_MOVE = 1
POINTER_SIZE = 8
"""Bytes counted per bucket slot when reporting table memory."""

BULK_MOVE_ENV = "MEMCACHED_HASH_BULK_MOVE"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def bulk_move_from_env(environ: Mapping[str, str] | None = None) -> int:
    """Number of buckets moved per maintenance step, taken from the environment.

    A missing, zero or unparsable value gives the default.
    """
    env = os.environ if environ is None else environ
    value = env.get(BULK_MOVE_ENV)
    if value is None:
        return DEFAULT_HASH_BULK_MOVE
    moves = _atoi(value)
    return moves if moves != 0 else DEFAULT_HASH_BULK_MOVE


def _new_table(power: int) -> list[list[list[Any]]]:
    return [[] for _ in range(1 << power)]


class HashTable:
    """Chained hash table keyed by bytes.

    While expanding, buckets of the old table that have not yet been moved
    are still consulted; ``move_next_bucket`` migrates them one at a time,
    either by hand or from the maintenance thread.
    """

    def __init__(
        self,
        hash_func: Callable[[bytes], int],
        hashpower: int = HASHPOWER_DEFAULT,
        bulk_move: int | None = None,
    ) -> None:
        if not 1 <= hashpower <= HASHPOWER_MAX:
            raise ValueError(f"hashpower must be between 1 and {HASHPOWER_MAX}")
        self._hash = hash_func
        self._power = hashpower or HASHPOWER_DEFAULT
        self.bulk_move = bulk_move_from_env() if bulk_move is None else bulk_move
        self._primary = _new_table(self._power)
        self._old: list[list[list[Any]]] | None = None
        self._expanding = False
        self._started_expanding = False
        self._expand_bucket = 0
        self._count = 0
        self._lock = threading.RLock()
        self._cond = threading.Condition()
        self._running = False
        self._thread: threading.Thread | None = None
        self.verbose = 0

    @property
    def hashpower(self) -> int:
        return self._power

    @property
    def is_expanding(self) -> bool:
        return self._expanding

    @property
    def hash_bytes(self) -> int:
        """Memory taken by bucket slots, including the old table while expanding."""
        with self._lock:
            total = len(self._primary)
            if self._old is not None:
                total += len(self._old)
            return total * POINTER_SIZE

    def __len__(self) -> int:
        return self._count

    def _hv(self, key: bytes, hv: int | None) -> int:
        return self._hash(key) if hv is None else hv

    def _bucket(self, hv: int) -> list[list[Any]]:
        if self._expanding and self._old is not None:
            old_bucket = hv & ((1 << (self._power - 1)) - 1)
            if old_bucket >= self._expand_bucket:
                return self._old[old_bucket]
        return self._primary[hv & ((1 << self._power) - 1)]

    def find(self, key: bytes, hv: int | None = None) -> Any:
        """Value stored under ``key``, or None when it is absent."""
        key = bytes(key)
        with self._lock:
            for entry_key, value in self._bucket(self._hv(key, hv)):
                if entry_key == key:
                    return value
        return None

    def insert(self, key: bytes, value: Any, hv: int | None = None) -> None:
        """Store ``value`` under ``key``; the key must not be present already."""
        key = bytes(key)
        with self._lock:
            self._bucket(self._hv(key, hv)).insert(0, [key, value])
            self._count += 1

    def delete(self, key: bytes, hv: int | None = None) -> None:
        """Remove ``key``; raises KeyError if it is not present."""
        key = bytes(key)
        with self._lock:
            chain = self._bucket(self._hv(key, hv))
            for index, (entry_key, _) in enumerate(chain):
                if entry_key == key:
                    del chain[index]
                    self._count -= 1
                    return
        raise KeyError(key)

    def start_expand(self, curr_items: int) -> bool:
        """Ask for growth when ``curr_items`` exceeds 1.5 items per bucket.

        Returns True if an expansion was requested by this call.
        """
        if self._started_expanding:
            return False
        with self._cond:
            if self._started_expanding:
                return False
            if curr_items > (1 << self._power) * 3 // 2 and self._power < HASHPOWER_MAX:
                self._started_expanding = True
                self._cond.notify()
                return True
        return False

    def expand(self) -> None:
        """Double the table; existing buckets migrate later."""
        with self._lock:
            if self._expanding:
                raise RuntimeError("hash table is already expanding")
            self._old = self._primary
            self._primary = _new_table(self._power + 1)
            self._power += 1
            self._expanding = True
            self._expand_bucket = 0
            if self.verbose > 1:
                print("Hash table expansion starting", file=sys.stderr)

    def move_next_bucket(self) -> bool:
        """Migrate one old bucket. Returns False if no expansion is running."""
        with self._lock:
            if not self._expanding or self._old is None:
                return False
            mask = (1 << self._power) - 1
            for entry in self._old[self._expand_bucket]:
                self._primary[self._hash(entry[0]) & mask].insert(0, entry)
            self._old[self._expand_bucket] = []
            self._expand_bucket += 1
            if self._expand_bucket == 1 << (self._power - 1):
                self._expanding = False
                self._old = None
                if self.verbose > 1:
                    print("Hash table expansion done", file=sys.stderr)
            return True

    def _maintenance_loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
            for _ in range(self.bulk_move):
                if not self._expanding:
                    break
                self.move_next_bucket()
            if not self._expanding:
                with self._cond:
                    self._started_expanding = False
                    self._cond.wait_for(
                        lambda: not self._running or self._started_expanding
                    )
                    if not self._running:
                        return
                self.expand()

    def start_maintenance(self) -> None:
        """Start the background thread that performs expansions."""
        with self._cond:
            if self._running:
                raise RuntimeError("maintenance thread already running")
            self._running = True
        self._thread = threading.Thread(
            target=self._maintenance_loop, name="assoc-maintenance", daemon=True
        )
        self._thread.start()

    def stop_maintenance(self) -> None:
        """Stop the background thread and wait for it to finish."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None