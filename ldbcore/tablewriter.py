"""Writing sorted tables."""

from __future__ import annotations

from .tableformat import (
    BLOCK_TYPE_NO_COMPRESSION,
    BLOCK_TYPE_SNAPPY_COMPRESSION,
    FOOTER_LEN,
    MAGIC,
    BlockHandle,
    Compression,
    TableOptions,
    _put_uvarint,
    _snappy_encode,
    encode_block_handle,
    masked_crc,
)

__all__ = ["BlockWriter", "TableWriter", "shared_prefix_len"]


def shared_prefix_len(a: bytes, b: bytes) -> int:
    """Return the length of the common prefix of a and b."""
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    return i


class BlockWriter:
    """Builds one block of prefix-compressed entries with restart points."""

    def __init__(self, restart_interval: int) -> None:
        self.restart_interval = restart_interval
        self.buf = bytearray()
        self.n_entries = 0
        self.prev_key = b""
        self.restarts: list[int] = []

    def append(self, key: bytes, value: bytes) -> None:
        """Add an entry; keys must come in increasing order."""
        shared = 0
        if self.n_entries % self.restart_interval == 0:
            self.restarts.append(len(self.buf))
        else:
            shared = shared_prefix_len(self.prev_key, key)
        self.buf += _put_uvarint(shared)
        self.buf += _put_uvarint(len(key) - shared)
        self.buf += _put_uvarint(len(value))
        self.buf += key[shared:]
        self.buf += value
        self.prev_key = bytes(key)
        self.n_entries += 1

    def finish(self) -> None:
        """Append the restart point trailer."""
        if self.n_entries == 0:
            self.restarts.append(0)
        self.restarts.append(len(self.restarts))
        for x in self.restarts:
            self.buf += x.to_bytes(4, "little")

    def reset(self) -> None:
        """Clear the block for reuse."""
        self.buf.clear()
        self.n_entries = 0
        self.restarts.clear()

    def bytes_len(self) -> int:
        """Size the block will have once finished."""
        return len(self.buf) + 4 * max(len(self.restarts), 1) + 4


class _FilterWriter:
    def __init__(self, generator, base_lg: int) -> None:
        self.generator = generator
        self.base_lg = base_lg
        self.buf = bytearray()
        self.n_keys = 0
        self.offsets: list[int] = []

    def add(self, key: bytes) -> None:
        if self.generator is None:
            return
        self.generator.add(key)
        self.n_keys += 1

    def flush(self, offset: int) -> None:
        if self.generator is None:
            return
        target = offset // (1 << self.base_lg)
        while target > len(self.offsets):
            self._generate()

    def finish(self) -> None:
        if self.generator is None:
            return
        if self.n_keys > 0:
            self._generate()
        self.offsets.append(len(self.buf))
        for x in self.offsets:
            self.buf += x.to_bytes(4, "little")
        self.buf.append(self.base_lg & 0xFF)

    def _generate(self) -> None:
        self.offsets.append(len(self.buf))
        if self.n_keys > 0:
            self.generator.generate(self.buf)
            self.n_keys = 0


class TableWriter:
    """Writes key/value pairs, in increasing key order, as a table to a writer.

    The writer needs only a write(data) method. Errors are sticky: once an
    append or close fails, later calls raise the same error.
    """

    def __init__(self, writer, options: TableOptions | None = None) -> None:
        o = options if options is not None else TableOptions()
        self._writer = writer
        self._err: Exception | None = None
        self._cmp = o.comparer
        self._filter = o.filter
        self._compression = o.compression
        self._block_size = o.block_size
        self._data_block = BlockWriter(o.block_restart_interval)
        self._index_block = BlockWriter(1)
        generator = self._filter.new_generator() if self._filter is not None else None
        self._filter_block = _FilterWriter(generator, o.filter_base_lg)
        self._pending = BlockHandle()
        self._offset = 0
        self._n_entries = 0
        self._filter_block.flush(0)

    def _write_block(self, buf: bytes, compression: Compression) -> BlockHandle:
        if compression is Compression.SNAPPY:
            payload = _snappy_encode(bytes(buf))
            block_type = BLOCK_TYPE_SNAPPY_COMPRESSION
        else:
            payload = bytes(buf)
            block_type = BLOCK_TYPE_NO_COMPRESSION
        body = payload + bytes([block_type])
        data = body + masked_crc(body).to_bytes(4, "little")
        self._writer.write(data)
        handle = BlockHandle(self._offset, len(payload))
        self._offset += len(data)
        return handle

    def _flush_pending(self, key: bytes | None) -> None:
        if self._pending.length == 0:
            return
        prev = self._data_block.prev_key
        if not key:
            separator = self._cmp.successor(prev)
        else:
            separator = self._cmp.separator(prev, key)
        if separator is None:
            separator = prev
        self._index_block.append(separator, encode_block_handle(self._pending))
        self._data_block.prev_key = b""
        self._pending = BlockHandle()

    def _finish_block(self) -> None:
        self._data_block.finish()
        self._pending = self._write_block(self._data_block.buf, self._compression)
        self._data_block.reset()
        self._filter_block.flush(self._offset)

    def _fail(self, err: Exception) -> Exception:
        self._err = err
        return err

    def append(self, key: bytes, value: bytes) -> None:
        """Append a pair; keys must be strictly increasing."""
        if self._err is not None:
            raise self._err
        prev = self._data_block.prev_key
        if self._n_entries > 0 and self._cmp.compare(prev, key) >= 0:
            raise self._fail(
                ValueError(f"table: Writer: keys are not in increasing order: {prev!r}, {key!r}")
            )
        self._flush_pending(key)
        self._data_block.append(key, value)
        self._filter_block.add(key)
        if self._data_block.bytes_len() >= self._block_size:
            try:
                self._finish_block()
            except Exception as e:
                raise self._fail(e)
        self._n_entries += 1

    def blocks_len(self) -> int:
        """Number of data blocks written so far."""
        n = self._index_block.n_entries
        if self._pending.length > 0:
            n += 1
        return n

    def entries_len(self) -> int:
        """Number of entries appended so far."""
        return self._n_entries

    def bytes_len(self) -> int:
        """Number of bytes written so far."""
        return self._offset

    def close(self) -> None:
        """Finish the table: last data block, filter, metaindex, index and footer."""
        if self._err is not None:
            raise self._err
        try:
            if self._data_block.n_entries > 0 or self._n_entries == 0:
                self._finish_block()
            self._flush_pending(None)

            filter_bh = BlockHandle()
            self._filter_block.finish()
            if len(self._filter_block.buf) > 0:
                filter_bh = self._write_block(self._filter_block.buf, Compression.NONE)

            if filter_bh.length > 0:
                key = b"filter." + self._filter.name().encode()
                self._data_block.append(key, encode_block_handle(filter_bh))
            self._data_block.finish()
            meta_bh = self._write_block(self._data_block.buf, self._compression)

            self._index_block.finish()
            index_bh = self._write_block(self._index_block.buf, self._compression)

            footer = bytearray(FOOTER_LEN)
            handles = encode_block_handle(meta_bh) + encode_block_handle(index_bh)
            footer[:len(handles)] = handles
            footer[FOOTER_LEN - len(MAGIC):] = MAGIC
            self._writer.write(bytes(footer))
            self._offset += FOOTER_LEN
        except Exception as e:
            raise self._fail(e)
        self._err = ValueError("table: writer is closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None and self._err is None:
            self.close()