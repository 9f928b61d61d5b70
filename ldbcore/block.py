"""Reading table blocks: prefix-compressed entries with restart points."""

from __future__ import annotations

import enum

from .storage import CorruptedError, FileDesc
from .tableformat import BlockHandle, Range, _uvarint

__all__ = [
    "BlockCorruptedError",
    "IteratorReleasedError",
    "Block",
    "BlockIterator",
]


class BlockCorruptedError(CorruptedError):
    """A table block holds malformed data."""

    def __init__(
        self,
        reason: str,
        pos: int = 0,
        size: int = 0,
        kind: str = "data-block",
        fd: FileDesc | None = None,
    ) -> None:
        self.reason = reason
        self.pos = pos
        self.size = size
        self.kind = kind
        super().__init__(f"table: corruption on {kind} (pos={pos}): {reason}", fd)


class IteratorReleasedError(Exception):
    """The iterator was used after being released."""

    def __init__(self, message: str = "table: iterator released") -> None:
        super().__init__(message)


def _search(n: int, pred) -> int:
    """Smallest i in [0, n) for which pred(i) is true, or n."""
    lo, hi = 0, n
    while lo < hi:
        mid = (lo + hi) // 2
        if pred(mid):
            hi = mid
        else:
            lo = mid + 1
    return lo


class Block:
    """A decoded block: entries followed by restart points and their count."""

    def __init__(
        self,
        data: bytes,
        handle: BlockHandle | None = None,
        kind: str = "data-block",
    ) -> None:
        self.data = bytes(data)
        self.handle = handle if handle is not None else BlockHandle()
        self.kind = kind
        if len(self.data) < 4:
            raise self._corrupted("too short")
        self.restarts_len = int.from_bytes(self.data[-4:], "little")
        self.restarts_offset = len(self.data) - (self.restarts_len + 1) * 4
        if self.restarts_offset < 0:
            raise self._corrupted("bad restart points length")

    def _corrupted(self, reason: str) -> BlockCorruptedError:
        return BlockCorruptedError(reason, self.handle.offset, self.handle.length, self.kind)

    def restart_offset(self, index: int) -> int:
        """Entry offset of the restart point at index."""
        pos = self.restarts_offset + 4 * index
        return int.from_bytes(self.data[pos:pos + 4], "little")

    def seek(self, cmp, rstart: int, rlimit: int, key: bytes) -> tuple[int, int]:
        """Find the last restart point in [rstart, rlimit) whose key is <= key.

        Returns the restart index and its entry offset.
        """
        data = self.data

        def greater(i: int) -> bool:
            offset = self.restart_offset(rstart + i) + 1  # shared length is zero
            klen, n1 = _uvarint(data, offset)
            _, n2 = _uvarint(data, offset + n1)
            m = offset + n1 + n2
            return cmp.compare(data[m:m + klen], key) > 0

        index = _search(rlimit - rstart, greater) + rstart - 1
        if index < rstart:
            index = rstart
        return index, self.restart_offset(index)

    def restart_index(self, rstart: int, rlimit: int, offset: int) -> int:
        """Index of the last restart point in [rstart, rlimit) at or before offset."""
        return _search(
            rlimit - rstart,
            lambda i: self.restart_offset(rstart + i) > offset,
        ) + rstart - 1

    def entry(self, offset: int) -> tuple[bytes, bytes, int, int]:
        """Decode the entry at offset.

        Returns (unshared key part, value, shared prefix length, entry size);
        the size is 0 at the end of the entries.
        """
        ro = self.restarts_offset
        if offset >= ro:
            if offset != ro:
                raise self._corrupted("entries offset not aligned")
            return b"", b"", 0, 0
        data = self.data
        shared, n0 = _uvarint(data, offset)
        if n0 <= 0:
            raise self._corrupted("entries corrupted")
        klen, n1 = _uvarint(data, offset + n0)
        if n1 <= 0:
            raise self._corrupted("entries corrupted")
        vlen, n2 = _uvarint(data, offset + n0 + n1)
        if n2 <= 0:
            raise self._corrupted("entries corrupted")
        m = n0 + n1 + n2
        n = m + klen + vlen
        if offset + n > ro:
            raise self._corrupted("entries corrupted")
        start = offset + m
        return data[start:start + klen], data[start + klen:offset + n], shared, n

    def iterator(self, cmp, slice: Range | None = None, include_limit: bool = False) -> BlockIterator:
        """Return an iterator over the block, optionally limited to slice."""
        return BlockIterator(self, cmp, slice, include_limit)


class _Dir(enum.IntEnum):
    RELEASED = -1
    SOI = 0
    EOI = 1
    BACKWARD = 2
    FORWARD = 3


class BlockIterator:
    """Bidirectional cursor over a block's entries.

    Movement methods return True when positioned on an entry; on failure the
    cause, if any, is available from error().
    """

    def __init__(
        self,
        block: Block,
        cmp,
        slice: Range | None = None,
        include_limit: bool = False,
        releaser=None,
    ) -> None:
        self._block = block
        self._cmp = cmp
        self._releaser = releaser
        self._key = bytearray()
        self._value: bytes | None = None
        self._offset = 0
        self._prev_offset = 0
        self._prev_node: list[int] = []
        self._prev_keys = bytearray()
        self._restart_index = 0
        self._dir = _Dir.SOI
        self._ri_start = 0
        self._ri_limit = block.restarts_len
        self._offset_start = 0
        self._offset_real_start = 0
        self._offset_limit = block.restarts_offset
        self._err: Exception | None = None

        if slice is None:
            return
        if slice.start is not None:
            if self.seek(slice.start):
                self._ri_start = block.restart_index(
                    self._restart_index, block.restarts_len, self._prev_offset
                )
                self._offset_start = block.restart_offset(self._ri_start)
                self._offset_real_start = self._prev_offset
            else:
                self._ri_start = block.restarts_len
                self._offset_start = block.restarts_offset
                self._offset_real_start = block.restarts_offset
        if slice.limit is not None:
            if self.seek(slice.limit) and (not include_limit or self.next()):
                self._offset_limit = self._prev_offset
                self._ri_limit = self._restart_index + 1
        self._reset()
        if self._offset_start > self._offset_limit:
            self._set_error(ValueError("table: invalid slice range"))

    # Internal state helpers.

    def _set_error(self, err: Exception) -> None:
        self._err = err
        self._key = bytearray()
        self._value = None
        self._prev_node = []
        self._prev_keys = bytearray()

    def _clear_prev(self) -> None:
        self._prev_node.clear()
        self._prev_keys.clear()

    def _reset(self) -> None:
        if self._dir == _Dir.BACKWARD:
            self._clear_prev()
        self._restart_index = self._ri_start
        self._offset = self._offset_start
        self._dir = _Dir.SOI
        self._key.clear()
        self._value = None

    def _apply_key(self, shared: int, unshared: bytes) -> None:
        if shared > len(self._key):
            raise self._block._corrupted("entries corrupted")
        del self._key[shared:]
        self._key += unshared

    def _unusable(self) -> bool:
        if self._err is not None:
            return True
        if self._dir == _Dir.RELEASED:
            self._err = IteratorReleasedError()
            return True
        return False

    # Position queries.

    def is_first(self) -> bool:
        """True if positioned on the first entry of the range."""
        if self._dir == _Dir.FORWARD:
            return self._prev_offset == self._offset_real_start
        if self._dir == _Dir.BACKWARD:
            return len(self._prev_node) == 1 and self._restart_index == self._ri_start
        return False

    def is_last(self) -> bool:
        """True if positioned on the last entry of the range."""
        if self._dir in (_Dir.FORWARD, _Dir.BACKWARD):
            return self._offset == self._offset_limit
        return False

    # Movement.

    def first(self) -> bool:
        """Move to the first entry."""
        if self._unusable():
            return False
        if self._dir == _Dir.BACKWARD:
            self._clear_prev()
        self._dir = _Dir.SOI
        return self.next()

    def last(self) -> bool:
        """Move to the last entry."""
        if self._unusable():
            return False
        if self._dir == _Dir.BACKWARD:
            self._clear_prev()
        self._dir = _Dir.EOI
        return self.prev()

    def seek(self, key: bytes) -> bool:
        """Move to the first entry whose key is >= key."""
        if self._unusable():
            return False
        ri, offset = self._block.seek(self._cmp, self._ri_start, self._ri_limit, key)
        self._restart_index = ri
        self._offset = max(self._offset_start, offset)
        if self._dir in (_Dir.SOI, _Dir.EOI):
            self._dir = _Dir.FORWARD
        while self.next():
            if self._cmp.compare(self._key, key) >= 0:
                return True
        return False

    def next(self) -> bool:
        """Move to the next entry."""
        if self._dir == _Dir.EOI or self._err is not None:
            return False
        if self._dir == _Dir.RELEASED:
            self._err = IteratorReleasedError()
            return False

        if self._dir == _Dir.SOI:
            self._restart_index = self._ri_start
            self._offset = self._offset_start
        elif self._dir == _Dir.BACKWARD:
            self._clear_prev()

        block = self._block
        try:
            while self._offset < self._offset_real_start:
                unshared, value, shared, n = block.entry(self._offset)
                if n == 0:
                    self._dir = _Dir.EOI
                    return False
                self._apply_key(shared, unshared)
                self._value = value
                self._offset += n
            if self._offset >= self._offset_limit:
                self._dir = _Dir.EOI
                if self._offset != self._offset_limit:
                    self._set_error(block._corrupted("entries offset not aligned"))
                return False
            unshared, value, shared, n = block.entry(self._offset)
            if n == 0:
                self._dir = _Dir.EOI
                return False
            self._apply_key(shared, unshared)
        except BlockCorruptedError as e:
            self._set_error(e)
            return False
        self._value = value
        self._prev_offset = self._offset
        self._offset += n
        self._dir = _Dir.FORWARD
        return True

    def prev(self) -> bool:
        """Move to the previous entry."""
        if self._dir == _Dir.SOI or self._err is not None:
            return False
        if self._dir == _Dir.RELEASED:
            self._err = IteratorReleasedError()
            return False

        block = self._block
        if self._dir == _Dir.FORWARD:
            self._offset = self._prev_offset
            if self._offset == self._offset_real_start:
                self._dir = _Dir.SOI
                return False
            ri = block.restart_index(self._restart_index, self._ri_limit, self._offset)
            self._dir = _Dir.BACKWARD
        elif self._dir == _Dir.EOI:
            self._restart_index = self._ri_limit
            self._offset = self._offset_limit
            if self._offset == self._offset_real_start:
                self._dir = _Dir.SOI
                return False
            ri = self._ri_limit - 1
            self._dir = _Dir.BACKWARD
        elif len(self._prev_node) == 1:
            # End of a restart range.
            self._offset = self._prev_node[0]
            self._prev_node.clear()
            if self._restart_index == self._ri_start:
                self._dir = _Dir.SOI
                return False
            self._restart_index -= 1
            ri = self._restart_index
        else:
            # Middle of a restart range: take the entry from the cache.
            ko, vo, vlen = self._prev_node[-3:]
            del self._prev_node[-3:]
            self._key = bytearray(self._prev_keys[ko:])
            del self._prev_keys[ko:]
            vl = vo + vlen
            self._value = block.data[vo:vl]
            self._offset = vl
            return True

        # Build the cache of entries of this restart range.
        self._key.clear()
        self._value = None
        offset = block.restart_offset(ri)
        if offset == self._offset:
            ri -= 1
            if ri < 0:
                self._dir = _Dir.SOI
                return False
            offset = block.restart_offset(ri)
        self._prev_node.append(offset)
        try:
            while True:
                unshared, value, shared, n = block.entry(offset)
                if offset >= self._offset_real_start:
                    if self._value is not None:
                        # Cache key offset, value offset and value length.
                        self._prev_node.extend(
                            (len(self._prev_keys), offset - len(self._value), len(self._value))
                        )
                        self._prev_keys += self._key
                    self._value = value
                self._apply_key(shared, unshared)
                offset += n
                if offset >= self._offset:
                    if offset != self._offset:
                        self._set_error(block._corrupted("entries offset not aligned"))
                        return False
                    break
        except BlockCorruptedError as e:
            self._set_error(e)
            return False
        self._restart_index = ri
        self._offset = offset
        return True

    # Access.

    def key(self) -> bytes | None:
        """Key of the current entry, or None when not positioned."""
        if self._err is not None or self._dir <= _Dir.EOI:
            return None
        return bytes(self._key)

    def value(self) -> bytes | None:
        """Value of the current entry, or None when not positioned."""
        if self._err is not None or self._dir <= _Dir.EOI:
            return None
        return self._value

    def valid(self) -> bool:
        """True if positioned on an entry."""
        return self._err is None and self._dir in (_Dir.BACKWARD, _Dir.FORWARD)

    def error(self) -> Exception | None:
        """The error that stopped the iterator, if any."""
        return self._err

    def release(self) -> None:
        """Release the iterator; later movements fail with IteratorReleasedError."""
        if self._dir == _Dir.RELEASED:
            return
        self._prev_node = []
        self._prev_keys = bytearray()
        self._key = bytearray()
        self._value = None
        self._dir = _Dir.RELEASED
        if self._releaser is not None:
            releaser, self._releaser = self._releaser, None
            releaser.release()

    def __iter__(self):
        ok = self.first()
        while ok:
            yield self.key(), self.value()
            ok = self.next()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()