"""Reading sorted tables written by TableWriter."""

from __future__ import annotations

import os
import threading

from .block import Block, BlockCorruptedError, BlockIterator, IteratorReleasedError
from .storage import CorruptedError, FileDesc
from .tableformat import (
    BLOCK_TRAILER_LEN,
    BLOCK_TYPE_NO_COMPRESSION,
    BLOCK_TYPE_SNAPPY_COMPRESSION,
    FOOTER_LEN,
    MAGIC,
    BlockHandle,
    Range,
    TableOptions,
    _snappy_decode,
    decode_block_handle,
    masked_crc,
)

__all__ = [
    "NotFoundError",
    "ReaderReleasedError",
    "TableCorruptedError",
    "TableReader",
    "TableIterator",
]


class NotFoundError(LookupError):
    """The table holds no matching key."""

    def __init__(self, message: str = "leveldb: not found") -> None:
        super().__init__(message)


class ReaderReleasedError(Exception):
    """The table reader was used after being released."""

    def __init__(self, message: str = "table: reader released") -> None:
        super().__init__(message)


class TableCorruptedError(BlockCorruptedError):
    """A table file is corrupted."""


class _BytesReader:
    def __init__(self, data) -> None:
        self._data = bytes(data)

    def read_at(self, size: int, offset: int) -> bytes:
        return self._data[offset:offset + size]


class _SeekReader:
    def __init__(self, f) -> None:
        self._f = f

    def read_at(self, size: int, offset: int) -> bytes:
        self._f.seek(offset)
        return self._f.read(size)

    def close(self) -> None:
        close = getattr(self._f, "close", None)
        if close is not None:
            close()


class _FilterBlock:
    def __init__(self, data: bytes, offsets_offset: int, base_lg: int) -> None:
        self.data = data
        self.offsets_offset = offsets_offset
        self.base_lg = base_lg
        self.filters_num = (len(data) - 5 - offsets_offset) // 4

    def contains(self, flt, offset: int, key: bytes) -> bool:
        i = offset >> self.base_lg
        if i < self.filters_num:
            o = self.offsets_offset + i * 4
            n = int.from_bytes(self.data[o:o + 4], "little")
            m = int.from_bytes(self.data[o + 4:o + 8], "little")
            if n < m <= self.offsets_offset:
                return flt.contains(self.data[n:m], key)
            if n == m:
                return False
        return True


class TableReader:
    """Reads a table from a file-like source; safe for concurrent use.

    The source may be bytes, an object with read_at(size, offset), or a
    seekable file object. A corrupted table does not fail construction:
    the corruption is raised by later operations instead.
    """

    def __init__(
        self,
        file,
        size: int | None = None,
        fd: FileDesc | None = None,
        options: TableOptions | None = None,
    ) -> None:
        if file is None:
            raise ValueError("table: nil file")
        if isinstance(file, (bytes, bytearray, memoryview)):
            reader = _BytesReader(file)
            if size is None:
                size = len(reader._data)
        elif hasattr(file, "read_at"):
            reader = file
        else:
            reader = _SeekReader(file)
        if size is None:
            if not hasattr(file, "seek"):
                raise ValueError("table: size is required")
            size = file.seek(0, os.SEEK_END)

        o = options if options is not None else TableOptions()
        self._mu = threading.RLock()
        self._fd = fd if fd is not None else FileDesc()
        self._reader = reader
        self._options = o
        self._cmp = o.comparer
        self._filter = None
        self._verify_checksum = o.strict_block_checksum
        self._err: Exception | None = None
        self._data_end = 0
        self._meta_bh = BlockHandle()
        self._index_bh = BlockHandle()
        self._filter_bh = BlockHandle()
        self._index_block: Block | None = None
        self._filter_block: _FilterBlock | None = None
        try:
            self._load(size)
        except TableCorruptedError as e:
            self._err = e

    # Errors.

    def _block_kind(self, bh: BlockHandle) -> str:
        if bh.offset == self._meta_bh.offset:
            return "meta-block"
        if bh.offset == self._index_bh.offset:
            return "index-block"
        if bh.offset == self._filter_bh.offset and self._filter_bh.length > 0:
            return "filter-block"
        return "data-block"

    def _corrupted_at(self, pos: int, size: int, kind: str, reason: str) -> TableCorruptedError:
        return TableCorruptedError(reason, pos, size, kind, self._fd)

    def _corrupted(self, bh: BlockHandle, reason: str) -> TableCorruptedError:
        return self._corrupted_at(bh.offset, bh.length, self._block_kind(bh), reason)

    # Loading.

    def _load(self, size: int) -> None:
        if size < FOOTER_LEN:
            raise self._corrupted_at(0, size, "table", "too small")
        footer_pos = size - FOOTER_LEN
        footer = self._reader.read_at(FOOTER_LEN, footer_pos)
        if len(footer) < FOOTER_LEN or footer[FOOTER_LEN - len(MAGIC):] != MAGIC:
            raise self._corrupted_at(footer_pos, FOOTER_LEN, "table-footer", "bad magic number")
        self._meta_bh, n = decode_block_handle(footer)
        if n == 0:
            raise self._corrupted_at(footer_pos, FOOTER_LEN, "table-footer", "bad metaindex block handle")
        self._index_bh, m = decode_block_handle(footer[n:])
        if m == 0:
            raise self._corrupted_at(footer_pos, FOOTER_LEN, "table-footer", "bad index block handle")

        meta_block = self._read_block(self._meta_bh, True)
        self._data_end = self._meta_bh.offset
        o = self._options
        for key, value in BlockIterator(meta_block, self._cmp, None, True):
            if not key.startswith(b"filter."):
                continue
            name = key[7:].decode("utf-8", errors="replace")
            if o.filter is not None and o.filter.name() == name:
                self._filter = o.filter
            else:
                for alt in o.alt_filters:
                    if alt.name() == name:
                        self._filter = alt
                        break
            if self._filter is not None:
                bh, k = decode_block_handle(value)
                if k == 0:
                    continue
                self._filter_bh = bh
                self._data_end = bh.offset
                break

        self._index_block = self._read_block(self._index_bh, True)
        if self._filter is not None:
            try:
                self._filter_block = self._read_filter_block(self._filter_bh)
            except TableCorruptedError:
                self._filter = None

    def _read_raw_block(self, bh: BlockHandle, verify_checksum: bool) -> bytes:
        need = bh.length + BLOCK_TRAILER_LEN
        data = self._reader.read_at(need, bh.offset)
        if len(data) < need:
            raise self._corrupted(bh, "truncated block")
        if verify_checksum:
            n = bh.length + 1
            want = int.from_bytes(data[n:n + 4], "little")
            got = masked_crc(data[:n])
            if want != got:
                raise self._corrupted(bh, f"checksum mismatch, want={want:#x} got={got:#x}")
        block_type = data[bh.length]
        if block_type == BLOCK_TYPE_NO_COMPRESSION:
            return bytes(data[:bh.length])
        if block_type == BLOCK_TYPE_SNAPPY_COMPRESSION:
            try:
                return _snappy_decode(bytes(data[:bh.length]))
            except ValueError as e:
                raise self._corrupted(bh, str(e)) from None
        raise self._corrupted(bh, f"unknown compression type {block_type:#x}")

    def _read_block(self, bh: BlockHandle, verify_checksum: bool) -> Block:
        data = self._read_raw_block(bh, verify_checksum)
        try:
            return Block(data, bh, self._block_kind(bh))
        except BlockCorruptedError as e:
            raise self._corrupted(bh, e.reason) from None

    def _read_filter_block(self, bh: BlockHandle) -> _FilterBlock:
        data = self._read_raw_block(bh, True)
        n = len(data)
        if n < 5:
            raise self._corrupted(bh, "too short")
        m = n - 5
        offsets_offset = int.from_bytes(data[m:m + 4], "little")
        if offsets_offset > m:
            raise self._corrupted(bh, "invalid data-offsets offset")
        return _FilterBlock(data, offsets_offset, data[n - 1])

    def _data_iter(self, bh: BlockHandle, slice: Range | None) -> BlockIterator:
        with self._mu:
            if self._err is not None:
                raise self._err
            block = self._read_block(bh, self._verify_checksum)
            return BlockIterator(block, self._cmp, slice, False)

    # Public operations.

    def new_iterator(self, slice: Range | None = None, fill_cache: bool = True) -> TableIterator:
        """Return an iterator over the table, optionally limited to slice.

        fill_cache has no effect: index and filter blocks are held locally.
        """
        with self._mu:
            if self._err is not None:
                return TableIterator(self, None, slice, self._err)
            index = BlockIterator(self._index_block, self._cmp, slice, True)
            return TableIterator(self, index, slice)

    def _find(self, key: bytes, filtered: bool) -> tuple[bytes, bytes]:
        with self._mu:
            if self._err is not None:
                raise self._err
            index = BlockIterator(self._index_block, self._cmp, None, True)
            try:
                if not index.seek(key):
                    err = index.error()
                    if err is not None:
                        raise err
                    raise NotFoundError()
                bh, n = decode_block_handle(index.value())
                if n == 0:
                    self._err = self._corrupted(self._index_bh, "bad data block handle")
                    raise self._err

                if filtered and self._filter is not None and self._filter_block is not None:
                    if not self._filter_block.contains(self._filter, bh.offset, key):
                        raise NotFoundError()

                data = self._data_iter(bh, None)
                if not data.seek(key):
                    err = data.error()
                    data.release()
                    if err is not None:
                        raise err
                    # The nearest greater key is the first key of the next block.
                    if not index.next():
                        err = index.error()
                        if err is not None:
                            raise err
                        raise NotFoundError()
                    bh, n = decode_block_handle(index.value())
                    if n == 0:
                        self._err = self._corrupted(self._index_bh, "bad data block handle")
                        raise self._err
                    data = self._data_iter(bh, None)
                    if not data.next():
                        err = data.error()
                        data.release()
                        if err is not None:
                            raise err
                        raise NotFoundError()
                rkey, value = data.key(), data.value()
                data.release()
                return rkey, bytes(value)
            finally:
                index.release()

    def find(self, key: bytes, filtered: bool = False) -> tuple[bytes, bytes]:
        """Return the first (key, value) whose key is >= key.

        With filtered set, the filter (if any) may rule out the key at once.
        Raises NotFoundError when there is no such pair.
        """
        return self._find(key, filtered)

    def find_key(self, key: bytes, filtered: bool = False) -> bytes:
        """Return the first key that is >= key; raises NotFoundError if none."""
        return self._find(key, filtered)[0]

    def get(self, key: bytes) -> bytes:
        """Return the value stored under exactly key; raises NotFoundError if absent."""
        with self._mu:
            rkey, value = self._find(key, False)
            if self._cmp.compare(rkey, key) != 0:
                raise NotFoundError()
            return value

    def offset_of(self, key: bytes) -> int:
        """Return the approximate file offset of the data for key."""
        with self._mu:
            if self._err is not None:
                raise self._err
            index = BlockIterator(self._index_block, self._cmp, None, True)
            try:
                if index.seek(key):
                    bh, n = decode_block_handle(index.value())
                    if n == 0:
                        self._err = self._corrupted(self._index_bh, "bad data block handle")
                        raise self._err
                    return bh.offset
                err = index.error()
                if err is not None:
                    raise err
                return self._data_end
            finally:
                index.release()

    def release(self) -> None:
        """Release the reader, closing the source if it can be closed."""
        with self._mu:
            close = getattr(self._reader, "close", None)
            if close is not None:
                close()
            self._index_block = None
            self._filter_block = None
            self._reader = None
            self._err = ReaderReleasedError()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


class TableIterator:
    """Bidirectional cursor over a table, walking its index and data blocks.

    Movement methods return True when positioned on an entry; on failure the
    cause, if any, is available from error().
    """

    def __init__(
        self,
        reader: TableReader,
        index: BlockIterator | None,
        slice: Range | None = None,
        err: Exception | None = None,
    ) -> None:
        self._reader = reader
        self._index = index
        self._slice = slice
        self._data: BlockIterator | None = None
        self._err = err
        self._released = False

    def _unusable(self) -> bool:
        if self._err is not None:
            return True
        if self._released:
            self._err = IteratorReleasedError()
            return True
        return False

    def _clear_data(self) -> None:
        if self._data is not None:
            self._data.release()
            self._data = None

    def _data_failed(self) -> bool:
        if self._data is not None and self._data.error() is not None:
            self._err = self._data.error()
            return True
        return False

    def _check_index(self) -> None:
        err = self._index.error()
        if err is not None:
            self._err = err

    def _open_data(self) -> bool:
        self._clear_data()
        bh, n = decode_block_handle(self._index.value() or b"")
        if n == 0:
            reader = self._reader
            self._err = reader._corrupted(reader._index_bh, "bad data block handle")
            return False
        slice = None
        if self._slice is not None and (self._index.is_first() or self._index.is_last()):
            slice = self._slice
        try:
            self._data = self._reader._data_iter(bh, slice)
        except (CorruptedError, ReaderReleasedError, OSError) as e:
            self._err = e
            return False
        return True

    def _advance(self, forward: bool, ok: bool) -> bool:
        while not ok:
            if self._data_failed():
                return False
            self._clear_data()
            moved = self._index.next() if forward else self._index.prev()
            if not moved:
                self._check_index()
                return False
            if not self._open_data():
                return False
            ok = self._data.first() if forward else self._data.last()
        return True

    def first(self) -> bool:
        """Move to the first entry."""
        if self._unusable():
            return False
        self._clear_data()
        if not self._index.first():
            self._check_index()
            return False
        if not self._open_data():
            return False
        return self._advance(True, self._data.first())

    def last(self) -> bool:
        """Move to the last entry."""
        if self._unusable():
            return False
        self._clear_data()
        if not self._index.last():
            self._check_index()
            return False
        if not self._open_data():
            return False
        return self._advance(False, self._data.last())

    def seek(self, key: bytes) -> bool:
        """Move to the first entry whose key is >= key."""
        if self._unusable():
            return False
        self._clear_data()
        if not self._index.seek(key):
            self._check_index()
            return False
        if not self._open_data():
            return False
        return self._advance(True, self._data.seek(key))

    def next(self) -> bool:
        """Move to the next entry."""
        if self._unusable():
            return False
        ok = self._data.next() if self._data is not None else False
        return self._advance(True, ok)

    def prev(self) -> bool:
        """Move to the previous entry."""
        if self._unusable():
            return False
        ok = self._data.prev() if self._data is not None else False
        return self._advance(False, ok)

    def key(self) -> bytes | None:
        """Key of the current entry, or None when not positioned."""
        if self._err is not None or self._data is None:
            return None
        return self._data.key()

    def value(self) -> bytes | None:
        """Value of the current entry, or None when not positioned."""
        if self._err is not None or self._data is None:
            return None
        value = self._data.value()
        return bytes(value) if value is not None else None

    def valid(self) -> bool:
        """True if positioned on an entry."""
        return self._err is None and self._data is not None and self._data.valid()

    def error(self) -> Exception | None:
        """The error that stopped the iterator, if any."""
        return self._err

    def release(self) -> None:
        """Release the iterator; later movements fail with IteratorReleasedError."""
        if self._released:
            return
        self._clear_data()
        if self._index is not None:
            self._index.release()
        self._released = True

    def __iter__(self):
        ok = self.first()
        while ok:
            yield self.key(), self.value()
            ok = self.next()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()