"""A bi-partite circular buffer that always hands out contiguous regions."""

from __future__ import annotations


class BipBuffer:
    """Fixed-size byte buffer with two regions, A and B.

    Data is read from region A. Once the free space after region A becomes
    smaller than the gap before it, writes go to region B at the start of the
    buffer. When region A drains, region B takes its place.
    """

    def __init__(self, size: int) -> None:
        if size < 0:
            raise ValueError("buffer size must not be negative")
        self.size = size
        self._data = bytearray(size)
        self._a_start = 0
        self._a_end = 0
        self._b_end = 0
        self._b_inuse = False

    def __len__(self) -> int:
        return self.used()

    def unused(self) -> int:
        """Bytes that can still be written in one contiguous piece."""
        if self._b_inuse:
            return self._a_start - self._b_end
        return self.size - self._a_end

    def used(self) -> int:
        """Bytes currently held in both regions."""
        return (self._a_end - self._a_start) + self._b_end

    def is_empty(self) -> bool:
        return self._a_start == self._a_end

    def _check_for_switch_to_b(self) -> None:
        if self.size - self._a_end < self._a_start - self._b_end:
            self._b_inuse = True

    def _write_pos(self) -> int:
        return self._b_end if self._b_inuse else self._a_end

    def request(self, size: int) -> memoryview | None:
        """Return a writable view of ``size`` bytes, or None if there is no room.

        Bytes written into the view become readable only after ``push``.
        """
        if self.unused() < size:
            return None
        pos = self._write_pos()
        return memoryview(self._data)[pos:pos + size]

    def push(self, size: int) -> int:
        """Commit ``size`` bytes written through ``request``.

        Returns the number of bytes committed, or 0 if there is no room.
        """
        if self.unused() < size:
            return 0
        if self._b_inuse:
            self._b_end += size
        else:
            self._a_end += size
        self._check_for_switch_to_b()
        return size

    def offer(self, data: bytes) -> int:
        """Copy ``data`` in. Returns its length, or 0 if it does not fit."""
        size = len(data)
        if self.unused() < size:
            return 0
        pos = self._write_pos()
        self._data[pos:pos + size] = data
        if self._b_inuse:
            self._b_end += size
        else:
            self._a_end += size
        self._check_for_switch_to_b()
        return size

    def peek(self, size: int) -> bytes | None:
        """Look at ``size`` bytes from the read position without consuming them."""
        if self.size < self._a_start + size:
            return None
        if self.is_empty():
            return None
        return bytes(self._data[self._a_start:self._a_start + size])

    def peek_all(self) -> bytes | None:
        """Return all readable bytes of region A, or None if empty."""
        if self.is_empty():
            return None
        return bytes(self._data[self._a_start:self._a_end])

    def poll(self, size: int) -> bytes | None:
        """Consume and return ``size`` bytes, or None if that is not possible."""
        if self.is_empty():
            return None
        if self.size < self._a_start + size:
            return None

        start = self._a_start
        chunk = bytes(self._data[start:start + size])
        self._a_start += size

        if self._a_start == self._a_end:
            if self._b_inuse:
                self._a_start = 0
                self._a_end = self._b_end
                self._b_end = 0
                self._b_inuse = False
            else:
                self._a_start = self._a_end = 0

        self._check_for_switch_to_b()
        return chunk