"""Data types shared by the external storage engine and its workers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


class ExtstoreRes(enum.IntEnum):
    """Reasons the storage engine can refuse to start."""

    INIT_BAD_WBUF_SIZE = 1
    INIT_NEED_MORE_WBUF = 2
    INIT_NEED_MORE_BUCKETS = 3
    INIT_PAGE_WBUF_ALIGNMENT = 4
    INIT_OOM = 5
    INIT_OPEN_FAIL = 6
    INIT_THREAD_FAIL = 7


_MESSAGES = {
    ExtstoreRes.INIT_BAD_WBUF_SIZE: "page_size must be divisible by wbuf_size",
    ExtstoreRes.INIT_NEED_MORE_WBUF: "wbuf_count must be >= page_buckets",
    ExtstoreRes.INIT_NEED_MORE_BUCKETS: "page_buckets must be > 0",
    ExtstoreRes.INIT_PAGE_WBUF_ALIGNMENT: (
        "page_size and wbuf_size must be divisible by 1024*1024*2"
    ),
    ExtstoreRes.INIT_OOM: "failed calloc for engine",
    ExtstoreRes.INIT_OPEN_FAIL: "failed to open file",
}

UNKNOWN_ERROR = "unknown error"


def error_message(res: ExtstoreRes | int) -> str:
    """Human readable text for a start-up failure code."""
    try:
        code = ExtstoreRes(res)
    except ValueError:
        return UNKNOWN_ERROR
    return _MESSAGES.get(code, UNKNOWN_ERROR)


class ExtstoreError(Exception):
    """Raised when the storage engine cannot be set up."""

    def __init__(self, res: ExtstoreRes | int) -> None:
        try:
            self.res: ExtstoreRes | int = ExtstoreRes(res)
        except ValueError:
            self.res = res
        super().__init__(error_message(res))


class IOMode(enum.IntEnum):
    """Direction of an IO request."""

    READ = 0
    WRITE = 1


@dataclass
class PageData:
    """Per-page figures safe to read for compaction decisions."""

    version: int = 0
    bytes_used: int = 0
    bucket: int = 0
    free_bucket: int = 0


@dataclass
class ExtstoreStats:
    """Counters of the storage engine.

    ``bytes_fragmented`` is the size of all used pages minus the bytes still
    live in them.
    """

    page_allocs: int = 0
    page_count: int = 0
    page_evictions: int = 0
    page_reclaims: int = 0
    page_size: int = 0
    pages_free: int = 0
    pages_used: int = 0
    objects_evicted: int = 0
    objects_read: int = 0
    objects_written: int = 0
    objects_used: int = 0
    bytes_evicted: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    bytes_used: int = 0
    bytes_fragmented: int = 0
    page_data: list[PageData] = field(default_factory=list)


@dataclass
class ExtstoreConfig:
    """Settings for the storage engine."""

    page_size: int = 64 * 1024 * 1024
    page_count: int = 0
    page_buckets: int = 1
    free_page_buckets: int = 0
    wbuf_size: int = 8 * 1024 * 1024
    wbuf_count: int = 8
    io_threadcount: int = 1
    io_depth: int = 1


@dataclass
class ConfFile:
    """One backing file and how many pages it contributes."""

    page_count: int
    file: str
    fd: int = -1
    offset: int = 0
    bucket: int = 0
    free_bucket: int = 0


IOCallback = Callable[[Any, "ObjIO", int], None]


@dataclass(eq=False)
class ObjIO:
    """A read or write request against the storage engine.

    Reads fill ``buf`` or, if given, the buffers in ``iov`` one after another.
    ``cb`` is called as ``cb(engine, io, ret)`` once the request is done.
    """

    data: Any = None
    buf: Optional[bytearray] = None
    iov: Optional[list[bytearray]] = None
    page_version: int = 0
    len: int = 0
    offset: int = 0
    page_id: int = 0
    mode: IOMode = IOMode.READ
    cb: Optional[IOCallback] = None