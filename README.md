# mcstore

Pure-Python building blocks for an in-memory object cache: a bipartite
circular buffer, an object pool, a hash table that grows incrementally,
CRC-32C checksums, fixed-width integer formatting, a helper to detach a
process from its terminal, and a page store on files.

There are no third-party runtime dependencies.

## Modules

- `mcstore.bipbuffer` – `BipBuffer(size)`, a fixed-size byte buffer that
  always hands out contiguous regions. Write with `offer(data)` or with
  `request(size)` (a writable `memoryview`) followed by `push(size)`; read
  with `peek(size)`, `peek_all()` and `poll(size)`. `used()`, `unused()`
  and `is_empty()` report its state. Calls that cannot be satisfied return
  `0` or `None`.
- `mcstore.objcache` – `ObjectCache(name, factory, constructor=None,
  destructor=None)`, a thread-safe pool. `alloc()` reuses a returned object
  or creates one with `factory` and runs `constructor` on it; `free(obj)`
  returns it; `destroy()` runs `destructor` on every pooled object. It is a
  context manager that calls `destroy()` on exit.
- `mcstore.itoa` – `itoa_u32`, `itoa_32`, `itoa_u64`, `itoa_64`: decimal
  text of an integer, raising `ValueError` when it does not fit the type.
- `mcstore.crc32c` – `crc32c(data, crc=0)` computes CRC-32C (Castagnoli),
  continuing from a previous result. `crc32c_tables()` gives the lookup
  tables; `zeros_operator(length)` and `shift_zeros(crc, length)` advance a
  raw CRC register over a run of zero bytes.
- `mcstore.daemon` – `daemonize(nochdir=False, noclose=False)` starts a new
  session with `os.setsid()`, changes to `/` unless `nochdir`, and points
  standard input, output and error at the null device unless `noclose`. It
  does not fork: the caller must not already lead a process group. POSIX only.
- `mcstore.assoc` – `HashTable(hash_func, hashpower=16, bulk_move=None)`, a
  chained table keyed by bytes with `find`, `insert`, `delete` (raises
  `KeyError`) and `len()`. `start_expand(curr_items)` requests doubling once
  there are more than 1.5 items per bucket; `expand()` doubles the table and
  `move_next_bucket()` migrates one old bucket at a time. `start_maintenance()`
  and `stop_maintenance()` run that work on a background thread. The number of
  buckets moved per step comes from `bulk_move`, or from the
  `MEMCACHED_HASH_BULK_MOVE` environment variable via `bulk_move_from_env()`.
- `mcstore.storetypes` – the shared types: `ExtstoreConfig`, `ConfFile`,
  `ObjIO`, `IOMode`, `PageData`, `ExtstoreStats`, `ExtstoreRes`,
  `ExtstoreError` and `error_message(res)`.
- `mcstore.ioworker` – `IOWorker`, which runs queued `ObjIO` requests in
  batches of `io_depth`, and `MaintenanceWorker`, which runs a task once per
  burst of `signal()` calls. Both have `start()`, `stop()` and `run()`.
- `mcstore.extstore` – `Extstore(files, config)`, a page store over one or
  more files. Objects are appended to write buffers on the active page of a
  bucket (`write_request`, then `write`); full buffers are written out by IO
  workers. `delete`, `check` and `close_page` track page versions and live
  objects; a maintenance pass frees empty or closed pages and evicts the
  oldest page when none is free. `get_stats()` and `get_page_data()` report
  counters. Bad settings raise `ExtstoreError`. It is a context manager that
  calls `close()` on exit.

## Installation

```
pip install .
```

## Examples

```python
from mcstore.bipbuffer import BipBuffer
from mcstore.crc32c import crc32c

buf = BipBuffer(16)
buf.offer(b"hello")
print(buf.poll(5))                   # b'hello'

print(hex(crc32c(b"123456789", 0)))  # 0xe3069283
```

Storing and reading back an object:

```python
from mcstore.extstore import Extstore
from mcstore.storetypes import ConfFile, ExtstoreConfig, IOMode, ObjIO

config = ExtstoreConfig(page_size=2 * 1024 * 1024,
                        wbuf_size=2 * 1024 * 1024, wbuf_count=2)
with Extstore([ConfFile(page_count=4, file="store.dat")], config) as store:
    io = ObjIO(len=5)
    if store.write_request(0, 0, io):
        store.write(io, b"hello")
        read = ObjIO(mode=IOMode.READ, page_id=io.page_id,
                     page_version=io.page_version, offset=io.offset, len=5)
        store.process_io(read)
        print(bytes(read.buf))       # b'hello'
```

Page sizes and write buffer sizes must be multiples of 2 MiB, and the page
size a multiple of the write buffer size. The backing files are truncated
when the store opens.

## What this package does not do

These are library pieces only. There is no cache server, no network
protocol, no item or LRU layer on top of the hash table, and no command to
run. Contents of the page store do not survive a restart.

## Running the tests

```
pip install .[test]
pytest
```