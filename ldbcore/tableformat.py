"""Sorted table format: block handles, checksums, comparer, filter and options."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass, field

__all__ = [
    "BlockHandle",
    "Compression",
    "BytewiseComparer",
    "Filter",
    "Range",
    "TableOptions",
    "decode_block_handle",
    "encode_block_handle",
    "masked_crc",
    "BLOCK_TRAILER_LEN",
    "FOOTER_LEN",
    "MAGIC",
    "BLOCK_TYPE_NO_COMPRESSION",
    "BLOCK_TYPE_SNAPPY_COMPRESSION",
]

BLOCK_TRAILER_LEN = 5
FOOTER_LEN = 48
MAGIC = b"\x57\xfb\x80\x8b\x24\x75\x47\xdb"

# Per-block compression markers; part of the file format.
BLOCK_TYPE_NO_COMPRESSION = 0
BLOCK_TYPE_SNAPPY_COMPRESSION = 1

_MAX_VARINT_LEN = 10


class Compression(enum.Enum):
    """Block compression used when writing a table."""

    NONE = "none"
    SNAPPY = "snappy"


@dataclass(frozen=True)
class BlockHandle:
    """Position and length of a block inside a table file."""

    offset: int = 0
    length: int = 0


def _uvarint(buf: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode an unsigned varint; n is 0 if buf is short, negative on overflow."""
    x = 0
    shift = 0
    for i in range(_MAX_VARINT_LEN):
        if pos + i >= len(buf):
            return 0, 0
        b = buf[pos + i]
        if b < 0x80:
            if i == _MAX_VARINT_LEN - 1 and b > 1:
                return 0, -(i + 1)
            return x | (b << shift), i + 1
        x |= (b & 0x7F) << shift
        shift += 7
    return 0, -(_MAX_VARINT_LEN + 1)


def _put_uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_block_handle(src: bytes) -> tuple[BlockHandle, int]:
    """Decode a block handle; return it with the bytes consumed, or (empty, 0)."""
    offset, n = _uvarint(src, 0)
    if n <= 0:
        return BlockHandle(), 0
    length, m = _uvarint(src, n)
    if m <= 0:
        return BlockHandle(), 0
    return BlockHandle(offset, length), n + m


def encode_block_handle(handle: BlockHandle) -> bytes:
    """Encode a block handle as two varints."""
    return _put_uvarint(handle.offset) + _put_uvarint(handle.length)


def _make_crc_table() -> tuple[int, ...]:
    poly = 0x82F63B78
    table = []
    for i in range(256):
        c = i
        for _ in range(8):
            c = (c >> 1) ^ poly if c & 1 else c >> 1
        table.append(c)
    return tuple(table)


_CRC_TABLE = _make_crc_table()
_MASK_DELTA = 0xA282EAD8


def _crc32c(data: bytes) -> int:
    c = 0xFFFFFFFF
    table = _CRC_TABLE
    for b in data:
        c = table[(c ^ b) & 0xFF] ^ (c >> 8)
    return c ^ 0xFFFFFFFF


def masked_crc(data: bytes) -> int:
    """Return the masked CRC-32C (Castagnoli) checksum of data."""
    c = _crc32c(data)
    return ((((c >> 15) | (c << 17)) & 0xFFFFFFFF) + _MASK_DELTA) & 0xFFFFFFFF


# Snappy block format.


def _emit_literal(out: bytearray, lit: bytes) -> None:
    if not lit:
        return
    n = len(lit) - 1
    if n < 60:
        out.append(n << 2)
    else:
        size = (n.bit_length() + 7) // 8
        out.append((59 + size) << 2)
        out += n.to_bytes(size, "little")
    out += lit


def _emit_copy(out: bytearray, offset: int, length: int) -> None:
    while length >= 68:
        out.append(((64 - 1) << 2) | 2)
        out += offset.to_bytes(2, "little")
        length -= 64
    if length > 64:
        out.append(((60 - 1) << 2) | 2)
        out += offset.to_bytes(2, "little")
        length -= 60
    if length >= 12 or offset >= 2048:
        out.append(((length - 1) << 2) | 2)
        out += offset.to_bytes(2, "little")
    else:
        out.append(((offset >> 8) << 5) | ((length - 4) << 2) | 1)
        out.append(offset & 0xFF)


def _snappy_encode(src: bytes) -> bytes:
    """Compress src into the snappy block format."""
    out = bytearray(_put_uvarint(len(src)))
    n = len(src)
    table: dict[bytes, int] = {}
    i = 0
    lit_start = 0
    while i + 4 <= n:
        key = src[i:i + 4]
        cand = table.get(key)
        table[key] = i
        if cand is not None and i - cand <= 0xFFFF:
            _emit_literal(out, src[lit_start:i])
            length = 4
            while i + length < n and src[cand + length] == src[i + length]:
                length += 1
            _emit_copy(out, i - cand, length)
            i += length
            lit_start = i
        else:
            i += 1
    _emit_literal(out, src[lit_start:])
    return bytes(out)


def _snappy_decode(src: bytes) -> bytes:
    """Decompress a snappy block; raises ValueError on corrupt input."""
    length, n = _uvarint(src, 0)
    if n <= 0:
        raise ValueError("snappy: corrupt input")
    out = bytearray()
    i = n
    end = len(src)
    while i < end:
        tag = src[i]
        kind = tag & 3
        if kind == 0:
            lit = tag >> 2
            if lit < 60:
                i += 1
            else:
                size = lit - 59
                if i + 1 + size > end:
                    raise ValueError("snappy: corrupt input")
                lit = int.from_bytes(src[i + 1:i + 1 + size], "little")
                i += 1 + size
            lit += 1
            if i + lit > end:
                raise ValueError("snappy: corrupt input")
            out += src[i:i + lit]
            i += lit
            continue
        if kind == 1:
            if i + 2 > end:
                raise ValueError("snappy: corrupt input")
            clen = 4 + ((tag >> 2) & 7)
            offset = ((tag >> 5) << 8) | src[i + 1]
            i += 2
        elif kind == 2:
            if i + 3 > end:
                raise ValueError("snappy: corrupt input")
            clen = 1 + (tag >> 2)
            offset = int.from_bytes(src[i + 1:i + 3], "little")
            i += 3
        else:
            if i + 5 > end:
                raise ValueError("snappy: corrupt input")
            clen = 1 + (tag >> 2)
            offset = int.from_bytes(src[i + 1:i + 5], "little")
            i += 5
        if offset == 0 or offset > len(out):
            raise ValueError("snappy: corrupt input")
        start = len(out) - offset
        if offset >= clen:
            out += out[start:start + clen]
        else:
            for k in range(clen):
                out.append(out[start + k])
    if len(out) != length:
        raise ValueError("snappy: corrupt input")
    return bytes(out)


class BytewiseComparer:
    """Orders keys lexicographically by their bytes."""

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def compare(self, a: bytes, b: bytes) -> int:
        """Return -1, 0 or 1 as a sorts before, equal to or after b."""
        return (a > b) - (a < b)

    def separator(self, a: bytes, b: bytes) -> bytes | None:
        """Return a short key in [a, b), or None if a is already shortest."""
        n = min(len(a), len(b))
        i = 0
        while i < n and a[i] == b[i]:
            i += 1
        if i >= n:
            return None
        c = a[i]
        if c < 0xFF and c + 1 < b[i]:
            return a[:i] + bytes([c + 1])
        return None

    def successor(self, b: bytes) -> bytes | None:
        """Return a short key >= b, or None if b cannot be shortened."""
        for i, c in enumerate(b):
            if c != 0xFF:
                return b[:i] + bytes([c + 1])
        return None


class Filter(abc.ABC):
    """A filter policy such as a bloom filter.

    A generator returned by new_generator() provides add(key) to record a key
    and generate(buf) to append filter data for the recorded keys to a
    bytearray and forget them.
    """

    @abc.abstractmethod
    def name(self) -> str:
        """Name stored in the table's metaindex."""

    @abc.abstractmethod
    def new_generator(self):
        """Return a fresh filter generator."""

    @abc.abstractmethod
    def contains(self, data: bytes, key: bytes) -> bool:
        """Return False only if key is certainly absent from filter data."""


@dataclass
class Range:
    """Key range [start, limit); None means unbounded."""

    start: bytes | None = None
    limit: bytes | None = None


_DEFAULT_BLOCK_SIZE = 4096
_DEFAULT_RESTART_INTERVAL = 16
_DEFAULT_FILTER_BASE_LG = 11


@dataclass
class TableOptions:
    """Options for reading and writing tables; non-positive sizes use defaults."""

    comparer: BytewiseComparer = field(default_factory=BytewiseComparer)
    filter: Filter | None = None
    alt_filters: tuple = ()
    compression: Compression = Compression.SNAPPY
    block_size: int = _DEFAULT_BLOCK_SIZE
    block_restart_interval: int = _DEFAULT_RESTART_INTERVAL
    filter_base_lg: int = _DEFAULT_FILTER_BASE_LG
    strict_block_checksum: bool = False

    def __post_init__(self) -> None:
        if self.block_size <= 0:
            self.block_size = _DEFAULT_BLOCK_SIZE
        if self.block_restart_interval <= 0:
            self.block_restart_interval = _DEFAULT_RESTART_INTERVAL
        if self.filter_base_lg <= 0:
            self.filter_base_lg = _DEFAULT_FILTER_BASE_LG