# ldbcore

Building blocks of a LevelDB-style key/value store, written in pure Python
with no third-party dependencies. Snappy block compression and the CRC-32C
block checksum are implemented in the package itself.

## Modules

- `ldbcore.storage`: the abstract `Storage` interface, the `FileDesc` and
  `FileType` file descriptors, `file_desc_ok()`, `is_corrupted()`, and the
  storage errors `StorageError`, `InvalidFileError`, `LockedError`,
  `ClosedError`, `FileOpenError`, `ReadOnlyError` and `CorruptedError`.
  A missing file or meta pointer raises `FileNotFoundError`.
- `ldbcore.memstorage`: `MemStorage`, a storage that keeps every file in
  memory. A file can be open by only one reader or writer at a time.
- `ldbcore.filestorage`: `FileStorage`, a storage backed by one directory.
  `open_file(path, read_only=False)` creates the directory when needed,
  takes a lock on its `LOCK` file (an advisory `flock` where the platform
  has one, exclusive for writing and shared for read-only), and keeps a
  `LOG` file that is rotated to `LOG.old` past 1 MiB. `set_meta()` and
  `get_meta()` manage the `CURRENT` file that points at the manifest,
  recovering from `CURRENT.<n>` and `CURRENT.bak` files. File names are
  produced and parsed by `gen_name()`, `gen_old_name()`, `has_old_name()`
  and `parse_name()` (`MANIFEST-000002`, `000100.log`, `000007.ldb`,
  legacy `.sst`, `000100.tmp`).
- `ldbcore.counting`: `CountingStorage`, which wraps any storage and counts
  the bytes read and written through its readers and writers
  (`reads()`, `writes()`).
- `ldbcore.tableformat`: `BlockHandle`, `encode_block_handle()`,
  `decode_block_handle()`, `masked_crc()`, `Compression` (`NONE`,
  `SNAPPY`), `BytewiseComparer`, the abstract `Filter` policy, `Range`,
  and `TableOptions` (block size, restart interval, compression, filter,
  filter base, checksum verification).
- `ldbcore.tablewriter`: `TableWriter`, which writes strictly increasing
  key/value pairs as a table, and `BlockWriter`, which builds one
  prefix-compressed block.
- `ldbcore.block`: `Block` and `BlockIterator`, a bidirectional cursor over
  one block, with `BlockCorruptedError` and `IteratorReleasedError`.
- `ldbcore.tablereader`: `TableReader` (`get`, `find`, `find_key`,
  `offset_of`, `new_iterator`) and `TableIterator`, with `NotFoundError`,
  `ReaderReleasedError` and `TableCorruptedError`.
- `ldbcore.tables`: internal keys (`make_internal_key()`, `user_key()`,
  `KeyType`), `InternalComparer`, and `TableFile` / `TableFiles`, which
  track each table's key range and answer sorting, search and overlap
  queries.
- `ldbcore.kv`: `KeyValue`, an ordered key/value collection, with ready-made
  sets (`empty_key()`, `empty_value()`, `one_key_value()`, `big_value()`,
  `special_key()`, `multiple_key_value()`) and `generate()` for random ones.
- `ldbcore.util`: size and delta formatting (`shorten`, `shortenb`,
  `sshortenb`, `sint`), `sort_fds`, key helpers (`bytes_separator`,
  `bytes_after`) and random index generators (`random_indices`,
  `shuffled_indices`, `random_ranges`).

## Writing and reading a table

```python
from ldbcore.memstorage import MemStorage
from ldbcore.storage import FileDesc, FileType
from ldbcore.tableformat import Range, TableOptions
from ldbcore.tablereader import NotFoundError, TableReader
from ldbcore.tablewriter import TableWriter

stor = MemStorage()
fd = FileDesc(FileType.TABLE, 1)

with stor.create(fd) as writer:
    table = TableWriter(writer, TableOptions())
    table.append(b"apple", b"red")
    table.append(b"banana", b"yellow")
    table.append(b"cherry", b"dark red")
    table.close()

reader = stor.open(fd)
size = len(reader.read_at(1 << 30, 0))
with TableReader(reader, size, fd, TableOptions()) as tr:
    assert tr.get(b"banana") == b"yellow"
    assert tr.find(b"b") == (b"banana", b"yellow")
    try:
        tr.get(b"durian")
    except NotFoundError:
        pass

    with tr.new_iterator(Range(start=b"b")) as it:
        assert [k for k, _ in it] == [b"banana", b"cherry"]
```

`TableReader` also accepts `bytes` or any seekable file object as its
source. Releasing the reader closes the source when it has a `close()`.

## A storage on disk

```python
from ldbcore.filestorage import open_file
from ldbcore.storage import FileDesc, FileType

with open_file("/tmp/ldbcore-demo") as fs:
    manifest = FileDesc(FileType.MANIFEST, 2)
    with fs.create(manifest) as f:
        f.write(b"records")
        f.sync()
    fs.set_meta(manifest)
    assert fs.get_meta() == manifest
    print([str(fd) for fd in fs.list(FileType.ALL)])
```

A second `open_file` on the same directory fails while the first is open.

## Overlapping tables

```python
from ldbcore.tables import InternalComparer, KeyType, TableFile, TableFiles, make_internal_key

icmp = InternalComparer()

def ik(k):
    return make_internal_key(k, 0, KeyType.VAL)

files = TableFiles([
    TableFile.table(1, 100, ik(b"a"), ik(b"c")),
    TableFile.table(2, 100, ik(b"e"), ik(b"g")),
])
assert [t.fd.num for t in files.get_overlaps(icmp, b"b", b"d", False)] == [1]
```

## What this package does not do

It is not a database. There is no database object with put, get or delete,
no write-ahead journal, no manifest or version records, no compaction, no
block cache or open-file cache, and no command-line tool. `Filter` is only
an interface: no bloom filter is included, so tables carry a filter block
only when you supply a `Filter` implementation in `TableOptions`.

## Running the tests

```
pip install -e .[test]
pytest
```