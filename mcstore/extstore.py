"""External storage engine that packs objects into pages of backing files."""

from __future__ import annotations

import dataclasses
import os
import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from mcstore.ioworker import IOWorker, MaintenanceWorker
from mcstore.storetypes import (
    ConfFile,
    ExtstoreConfig,
    ExtstoreError,
    ExtstoreRes,
    ExtstoreStats,
    IOMode,
    ObjIO,
    PageData,
)

_ALIGNMENT = 1024 * 1024 * 2


@dataclass(eq=False)
class _WriteBuffer:
    size: int
    buf: bytearray = field(init=False)
    free: int = field(init=False)
    offset: int = 0
    full: bool = False
    flushed: bool = False

    def __post_init__(self) -> None:
        self.buf = bytearray(self.size)
        self.free = self.size

    @property
    def pos(self) -> int:
        return self.size - self.free


@dataclass(eq=False)
class _Page:
    id: int
    fd: int
    offset: int
    free_bucket: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    obj_count: int = 0
    bytes_used: int = 0
    version: int = 0
    refcount: int = 0
    allocated: int = 0
    written: int = 0
    bucket: int = 0
    active: bool = False
    closed: bool = False
    free: bool = True
    wbuf: Optional[_WriteBuffer] = None


def _validate(config: ExtstoreConfig) -> None:
    if config.wbuf_size <= 0 or config.page_size % config.wbuf_size != 0:
        raise ExtstoreError(ExtstoreRes.INIT_BAD_WBUF_SIZE)
    if config.page_buckets > config.wbuf_count:
        raise ExtstoreError(ExtstoreRes.INIT_NEED_MORE_WBUF)
    if config.page_buckets < 1:
        raise ExtstoreError(ExtstoreRes.INIT_NEED_MORE_BUCKETS)
    if config.page_size % _ALIGNMENT != 0 or config.wbuf_size % _ALIGNMENT != 0:
        raise ExtstoreError(ExtstoreRes.INIT_PAGE_WBUF_ALIGNMENT)
    if config.io_threadcount < 1:
        raise ExtstoreError(ExtstoreRes.INIT_THREAD_FAIL)


class Extstore:
    """Page based object store over one or more files.

    Objects are appended to write buffers attached to the active page of a
    bucket; full buffers are written out by IO workers. A maintenance worker
    frees empty or closed pages and evicts the oldest page when none is free.
    """

    def __init__(self, files: Iterable[ConfFile], config: ExtstoreConfig) -> None:
        _validate(config)
        self.files = list(files)
        self.page_size = config.page_size

        opened: list[int] = []
        try:
            for conf in self.files:
                conf.fd = os.open(conf.file, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644)
                opened.append(conf.fd)
                conf.offset = 0
        except OSError as err:
            for fd in opened:
                os.close(fd)
            raise ExtstoreError(ExtstoreRes.INIT_OPEN_FAIL) from err

        # Interleave the pages between the files.
        remaining = [conf.page_count for conf in self.files]
        total = sum(remaining)
        self._pages: list[_Page] = []
        index = -1
        for page_id in range(total):
            while True:
                index = (index + 1) % len(self.files)
                if remaining[index]:
                    remaining[index] -= 1
                    break
            conf = self.files[index]
            self._pages.append(
                _Page(id=page_id, fd=conf.fd, offset=conf.offset, free_bucket=conf.free_bucket)
            )
            conf.offset += self.page_size

        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._page_freelist: list[_Page] = []
        self._free_page_buckets: dict[int, list[_Page]] = {}
        self._page_free = 0
        # Page 0 is never put on a free list.
        for page in reversed(self._pages[1:]):
            self._page_free += 1
            if page.free_bucket == 0:
                self._page_freelist.insert(0, page)
            else:
                self._free_page_buckets.setdefault(page.free_bucket, []).insert(0, page)

        # Version 0 means "page is free".
        self._version = 1
        self._stats = ExtstoreStats(
            page_count=total,
            page_size=self.page_size,
            page_data=[PageData() for _ in self._pages],
        )
        self._page_buckets: list[list[_Page]] = [[] for _ in range(config.page_buckets)]
        self._wbuf_stack = [_WriteBuffer(config.wbuf_size) for _ in range(config.wbuf_count)]
        self._io_stack = [ObjIO() for _ in range(config.wbuf_count)]

        self.io_depth = config.io_depth
        self._last_io_worker = 0
        self._io_workers = [
            IOWorker(self.process_io, config.io_depth) for _ in range(config.io_threadcount)
        ]
        self._maint = MaintenanceWorker(self.maintenance_pass)
        self._closed = False
        for worker in self._io_workers:
            worker.start()
        self._maint.start()
        self.run_maint()

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def _next_version(self) -> int:
        version = self._version
        self._version += 1
        return version

    def run_maint(self) -> None:
        """Ask the maintenance worker for a pass."""
        self._maint.signal()

    # Called with the engine lock held.
    def _allocate_page(self, bucket: int, free_bucket: int) -> Optional[_Page]:
        page: Optional[_Page] = None
        if free_bucket != 0 and self._free_page_buckets.get(free_bucket):
            page = self._free_page_buckets[free_bucket].pop(0)
        if page is None and self._page_freelist:
            page = self._page_freelist.pop(0)
        if self._page_free > 0 and page is not None:
            self._page_buckets[bucket].insert(0, page)
            page.active = True
            page.free = False
            page.closed = False
            page.version = self._next_version()
            page.bucket = bucket
            self._page_free -= 1
            with self._stats_lock:
                self._stats.page_allocs += 1
        else:
            self.run_maint()
        return page

    # Called with the page lock held.
    def _allocate_wbuf(self, page: _Page) -> None:
        with self._lock:
            wbuf = self._wbuf_stack.pop(0) if self._wbuf_stack else None
        if wbuf is None:
            return
        wbuf.offset = page.allocated
        page.allocated += wbuf.size
        wbuf.free = wbuf.size
        wbuf.full = False
        wbuf.flushed = False
        page.wbuf = wbuf

    def _wbuf_done(self, engine: object, io: ObjIO, ret: int) -> None:
        page = self._pages[io.page_id]
        wbuf: _WriteBuffer = io.data
        wbuf.flushed = True
        with page.lock:
            page.written += wbuf.size
            page.wbuf = None
            if page.written == self.page_size:
                page.active = False
            with self._lock:
                self._wbuf_stack.insert(0, wbuf)
                self._io_stack.insert(0, io)

    # Called with the page lock held.
    def _submit_wbuf(self, page: _Page) -> None:
        with self._lock:
            io = self._io_stack.pop(0) if self._io_stack else ObjIO()
        wbuf = page.wbuf
        assert wbuf is not None
        wbuf.buf[wbuf.pos:] = bytes(wbuf.free)
        io.mode = IOMode.WRITE
        io.page_id = page.id
        io.data = wbuf
        io.offset = wbuf.offset
        io.len = wbuf.size
        io.buf = wbuf.buf
        io.iov = None
        io.cb = self._wbuf_done
        self.submit(io)

    def write_request(self, bucket: int, free_bucket: int, io: ObjIO) -> bool:
        """Reserve ``io.len`` bytes in ``bucket``'s active page.

        On success the page stays locked until ``write`` is called, and
        ``io.buf`` is a writable view of the reserved space. Failure is
        normal when a page fills up; the caller retries later.
        """
        if bucket >= len(self._page_buckets):
            return False
        with self._lock:
            chain = self._page_buckets[bucket]
            page = chain[0] if chain else self._allocate_page(bucket, free_bucket)
        if page is None:
            return False

        page.lock.acquire()
        wbuf = page.wbuf
        if not page.active or (
            (wbuf is None or wbuf.full) and page.allocated >= self.page_size
        ):
            page.lock.release()
            with self._lock:
                self._allocate_page(bucket, free_bucket)
            return False

        if wbuf is not None and wbuf.free < io.len and not wbuf.full:
            self._submit_wbuf(page)
            wbuf.full = True

        if page.wbuf is None and page.allocated < self.page_size:
            self._allocate_wbuf(page)

        wbuf = page.wbuf
        if wbuf is not None and not wbuf.full and wbuf.free >= io.len:
            io.buf = memoryview(wbuf.buf)[wbuf.pos:wbuf.pos + io.len]
            io.page_id = page.id
            return True

        page.lock.release()
        return False

    def write(self, io: ObjIO, data: Optional[bytes] = None) -> None:
        """Complete a successful ``write_request``, optionally copying ``data``.

        Fills in ``io.offset`` and ``io.page_version`` and unlocks the page.
        """
        page = self._pages[io.page_id]
        try:
            wbuf = page.wbuf
            if wbuf is None:
                raise RuntimeError("write without a successful write_request")
            pos = wbuf.pos
            if data is not None:
                payload = bytes(data)
                if len(payload) != io.len:
                    raise ValueError(f"data is {len(payload)} bytes, io.len is {io.len}")
                wbuf.buf[pos:pos + io.len] = payload
            io.offset = wbuf.offset + pos
            io.page_version = page.version
            wbuf.free -= io.len
            page.bytes_used += io.len
            page.obj_count += 1
            with self._stats_lock:
                self._stats.bytes_written += io.len
                self._stats.bytes_used += io.len
                self._stats.objects_written += 1
                self._stats.objects_used += 1
        finally:
            page.lock.release()

    def submit(self, io: ObjIO | Iterable[ObjIO]) -> None:
        """Queue one or more IO requests on the next IO worker."""
        with self._lock:
            self._last_io_worker = (self._last_io_worker + 1) % len(self._io_workers)
            worker = self._io_workers[self._last_io_worker]
        worker.submit(io)

    def delete(self, page_id: int, page_version: int, count: int, nbytes: int) -> bool:
        """Note that ``count`` objects of ``nbytes`` total left a page.

        Returns False if the page was closed or reused since.
        """
        page = self._pages[page_id]
        with page.lock:
            if page.closed or page.version != page_version:
                return False
            page.bytes_used = max(0, page.bytes_used - nbytes)
            page.obj_count = max(0, page.obj_count - count)
            with self._stats_lock:
                self._stats.bytes_used -= nbytes
                self._stats.objects_used -= count
            if page.obj_count == 0:
                self.run_maint()
        return True

    def check(self, page_id: int, page_version: int) -> bool:
        """True while the page still holds the given version."""
        page = self._pages[page_id]
        with page.lock:
            return page.version == page_version

    def close_page(self, page_id: int, page_version: int) -> None:
        """Mark a page as no longer needed so maintenance can free it."""
        page = self._pages[page_id]
        with page.lock:
            if not page.closed and page.version == page_version:
                page.closed = True
                self.run_maint()

    def get_stats(self) -> ExtstoreStats:
        """A snapshot of the counters with derived values filled in."""
        with self._stats_lock:
            stats = dataclasses.replace(
                self._stats,
                page_data=[dataclasses.replace(pd) for pd in self._stats.page_data],
            )
        with self._lock:
            stats.pages_free = self._page_free
            stats.pages_used = len(self._pages) - self._page_free
        stats.bytes_fragmented = stats.pages_used * self.page_size - stats.bytes_used
        return stats

    def get_page_data(self) -> list[PageData]:
        """Per-page figures from the last maintenance pass."""
        with self._stats_lock:
            return [dataclasses.replace(pd) for pd in self._stats.page_data]

    def _read_from_wbuf(self, page: _Page, io: ObjIO) -> int:
        wbuf = page.wbuf
        assert wbuf is not None
        off = io.offset - wbuf.offset
        if io.iov is None:
            if io.buf is None:
                io.buf = bytearray(io.len)
            io.buf[:io.len] = wbuf.buf[off:off + io.len]
        else:
            for part in io.iov:
                size = len(part)
                part[:size] = wbuf.buf[off:off + size]
                off += size
        return io.len

    def _read_from_disk(self, page: _Page, io: ObjIO) -> int:
        position = page.offset + io.offset
        if io.iov is None:
            if io.buf is None:
                io.buf = bytearray(io.len)
            chunk = os.pread(page.fd, io.len, position)
            io.buf[:len(chunk)] = chunk
            return len(chunk)
        chunk = os.pread(page.fd, sum(len(part) for part in io.iov), position)
        start = 0
        for part in io.iov:
            piece = chunk[start:start + len(part)]
            part[:len(piece)] = piece
            start += len(part)
        return len(chunk)

    def process_io(self, io: ObjIO) -> int:
        """Perform one IO request, run its callback and return the result.

        Reads of a freed, closed or reused page give -2; OS errors give -1.
        """
        page = self._pages[io.page_id]
        ret = 0
        do_op = False
        if io.mode == IOMode.READ:
            with page.lock:
                if not page.free and not page.closed and page.version == io.page_version:
                    if page.active and io.offset >= page.written and page.wbuf is not None:
                        ret = self._read_from_wbuf(page, io)
                    else:
                        page.refcount += 1
                        do_op = True
                    with self._stats_lock:
                        self._stats.bytes_read += io.len
                        self._stats.objects_read += 1
                else:
                    ret = -2
            if do_op:
                try:
                    ret = self._read_from_disk(page, io)
                except OSError:
                    ret = -1
        else:
            try:
                ret = os.pwrite(page.fd, bytes(io.buf[:io.len]), page.offset + io.offset)
            except OSError:
                ret = -1
        try:
            if io.cb is not None:
                io.cb(self, io, ret)
        finally:
            if do_op:
                with page.lock:
                    page.refcount -= 1
        return ret

    # Called with the page lock held.
    def _free_page(self, page: _Page) -> None:
        with self._stats_lock:
            self._stats.objects_used -= page.obj_count
            self._stats.bytes_used -= page.bytes_used
            self._stats.page_reclaims += 1
        with self._lock:
            chain = self._page_buckets[page.bucket]
            if page in chain:
                chain.remove(page)
            page.version = 0
            page.obj_count = 0
            page.bytes_used = 0
            page.allocated = 0
            page.written = 0
            page.bucket = 0
            page.active = False
            page.closed = False
            page.free = True
            if page.free_bucket != 0:
                self._free_page_buckets.setdefault(page.free_bucket, []).insert(0, page)
            else:
                self._page_freelist.insert(0, page)
            self._page_free += 1

    def maintenance_pass(self) -> None:
        """Free drained or closed pages; evict the oldest page if none is free."""
        with self._lock:
            do_evict = self._page_free == 0 or not self._page_freelist
        data = [PageData() for _ in self._pages]
        low_version: Optional[int] = None
        low_page = 0

        for page in self._pages:
            with page.lock:
                data[page.id].free_bucket = page.free_bucket
                if page.active or page.free:
                    continue
                if page.obj_count > 0 and not page.closed:
                    data[page.id].version = page.version
                    data[page.id].bytes_used = page.bytes_used
                    data[page.id].bucket = page.bucket
                    if page.free_bucket == 0 and (
                        low_version is None or page.version < low_version
                    ):
                        low_version = page.version
                        low_page = page.id
                if (page.obj_count == 0 or page.closed) and page.refcount == 0:
                    self._free_page(page)
                    do_evict = False

        if do_evict and low_version is not None:
            page = self._pages[low_page]
            with page.lock:
                if not page.closed:
                    page.closed = True
                    with self._stats_lock:
                        self._stats.page_evictions += 1
                        self._stats.objects_evicted += page.obj_count
                        self._stats.bytes_evicted += page.bytes_used
                    if page.refcount == 0:
                        self._free_page(page)

        with self._stats_lock:
            self._stats.page_data = data

    def close(self) -> None:
        """Finish queued IO, stop the workers and close the files."""
        if self._closed:
            return
        self._closed = True
        for worker in self._io_workers:
            worker.stop()
        self._maint.stop()
        for conf in self.files:
            if conf.fd >= 0:
                os.close(conf.fd)
                conf.fd = -1

    def __enter__(self) -> "Extstore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()