import os
import threading
import time

import pytest

from mcstore.extstore import Extstore
from mcstore.storetypes import (
    ConfFile,
    ExtstoreConfig,
    ExtstoreError,
    ExtstoreRes,
    IOMode,
    ObjIO,
)

MIB2 = 1024 * 1024 * 2


def _config(**overrides):
    values = dict(
        page_size=MIB2,
        wbuf_size=MIB2,
        wbuf_count=2,
        page_buckets=1,
        io_threadcount=1,
        io_depth=1,
    )
    values.update(overrides)
    return ExtstoreConfig(**values)


def _wait_for(pred, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if pred():
            return True
        time.sleep(0.01)
    return pred()


@pytest.fixture
def path(tmp_path):
    return str(tmp_path / "extstore.dat")


@pytest.fixture
def store(path):
    with Extstore([ConfFile(page_count=3, file=path)], _config()) as engine:
        yield engine


def _put(store, data, bucket=0):
    io = ObjIO(len=len(data))
    assert store.write_request(bucket, 0, io)
    store.write(io, data)
    return io


def _read(store, page_id, version, offset, length, iov=None):
    done = threading.Event()
    result = {}

    def cb(engine, io, ret):
        result["ret"] = ret
        done.set()

    io = ObjIO(
        mode=IOMode.READ,
        page_id=page_id,
        page_version=version,
        offset=offset,
        len=length,
        buf=None if iov is not None else bytearray(length),
        iov=iov,
        cb=cb,
    )
    store.submit(io)
    assert done.wait(5)
    return result["ret"], io


@pytest.mark.parametrize(
    "overrides, res",
    [
        (dict(page_size=3 * 1024 * 1024, wbuf_size=MIB2), ExtstoreRes.INIT_BAD_WBUF_SIZE),
        (dict(page_buckets=3, wbuf_count=2), ExtstoreRes.INIT_NEED_MORE_WBUF),
        (dict(page_buckets=0), ExtstoreRes.INIT_NEED_MORE_BUCKETS),
        (dict(page_size=1024 * 1024, wbuf_size=1024 * 1024), ExtstoreRes.INIT_PAGE_WBUF_ALIGNMENT),
    ],
)
def test_bad_config_is_rejected(path, overrides, res):
    with pytest.raises(ExtstoreError) as info:
        Extstore([ConfFile(page_count=2, file=path)], _config(**overrides))
    assert info.value.res == res


def test_open_failure(tmp_path):
    missing = str(tmp_path / "no" / "such" / "dir" / "file")
    with pytest.raises(ExtstoreError) as info:
        Extstore([ConfFile(page_count=2, file=missing)], _config())
    assert info.value.res == ExtstoreRes.INIT_OPEN_FAIL
    assert str(info.value) == "failed to open file"


def test_write_then_read_from_buffer(store):
    io = _put(store, b"hello")
    assert store.check(io.page_id, io.page_version)
    ret, read = _read(store, io.page_id, io.page_version, io.offset, 5)
    assert ret == 5
    assert bytes(read.buf) == b"hello"


def test_read_into_iov(store):
    io = _put(store, b"hello")
    parts = [bytearray(2), bytearray(3)]
    ret, _ = _read(store, io.page_id, io.page_version, io.offset, 5, iov=parts)
    assert ret == 5
    assert parts == [bytearray(b"he"), bytearray(b"llo")]


def test_consecutive_writes_get_consecutive_offsets(store):
    first = _put(store, b"abc")
    second = _put(store, b"defg")
    assert second.page_id == first.page_id
    assert second.offset == first.offset + 3
    ret, read = _read(store, second.page_id, second.page_version, second.offset, 4)
    assert bytes(read.buf) == b"defg"


def test_read_with_stale_version(store):
    io = _put(store, b"hello")
    ret, _ = _read(store, io.page_id, io.page_version + 1, io.offset, 5)
    assert ret == -2
    assert not store.check(io.page_id, io.page_version + 1)


def test_stats_after_write(store):
    _put(store, b"hello")
    stats = store.get_stats()
    assert stats.bytes_written == 5
    assert stats.objects_written == 1
    assert stats.objects_used == 1
    assert stats.page_allocs == 1
    assert stats.page_size == MIB2
    assert stats.page_count == 3
    assert stats.pages_free + stats.pages_used == stats.page_count
    assert stats.bytes_fragmented == stats.pages_used * MIB2 - stats.bytes_used


def test_delete_updates_accounting(store):
    io = _put(store, b"hello")
    assert store.delete(io.page_id, io.page_version, 1, 5)
    stats = store.get_stats()
    assert stats.objects_used == 0
    assert stats.bytes_used == 0
    assert not store.delete(io.page_id, io.page_version + 1, 1, 5)


def test_bucket_out_of_range(store):
    assert not store.write_request(1, 0, ObjIO(len=5))


def test_write_length_mismatch(store):
    io = ObjIO(len=5)
    assert store.write_request(0, 0, io)
    with pytest.raises(ValueError):
        store.write(io, b"toolong")
    # The page was unlocked, so a new write still goes through.
    again = _put(store, b"12345")
    assert again.page_id == io.page_id


def test_write_through_request_view(store):
    io = ObjIO(len=4)
    assert store.write_request(0, 0, io)
    io.buf[:4] = b"view"
    store.write(io)
    ret, read = _read(store, io.page_id, io.page_version, io.offset, 4)
    assert bytes(read.buf) == b"view"


def test_full_buffer_is_flushed_to_disk(store, path):
    payload = b"a" * (MIB2 * 3 // 4)
    first = _put(store, payload)
    assert not store.write_request(0, 0, ObjIO(len=MIB2 // 2))

    page_start = first.page_id * MIB2

    def flushed():
        with open(path, "rb") as handle:
            handle.seek(page_start + first.offset)
            return handle.read(len(payload)) == payload

    assert _wait_for(flushed)
    ret, read = _read(store, first.page_id, first.page_version, first.offset, len(payload))
    assert ret == len(payload)
    assert bytes(read.buf) == payload

    assert _wait_for(lambda: store.write_request(0, 0, ObjIO(len=0)) is False or True)
    retry = None
    for _ in range(5):
        io = ObjIO(len=3)
        if store.write_request(0, 0, io):
            store.write(io, b"new")
            retry = io
            break
    assert retry is not None
    assert retry.page_id != first.page_id
    assert retry.page_version > first.page_version


def test_closed_page_is_freed_and_reads_fail(store):
    payload = b"q" * (MIB2 * 3 // 4)
    first = _put(store, payload)
    assert not store.write_request(0, 0, ObjIO(len=MIB2 // 2))
    assert _wait_for(
        lambda: os.path.getsize(store.files[0].file) >= (first.page_id + 1) * MIB2
    )
    store.close_page(first.page_id, first.page_version)
    assert _wait_for(lambda: not store.check(first.page_id, first.page_version))
    ret, _ = _read(store, first.page_id, first.page_version, first.offset, 4)
    assert ret == -2


def test_page_data_after_maintenance(store):
    store.maintenance_pass()
    data = store.get_page_data()
    assert len(data) == 3
    assert all(pd.version == 0 for pd in data)


def test_close_closes_files(path):
    engine = Extstore([ConfFile(page_count=2, file=path)], _config())
    engine.close()
    assert engine.files[0].fd == -1
    engine.close()
    assert engine.files[0].fd == -1