"""Table file metadata: internal keys, table descriptors and sorted table lists."""

from __future__ import annotations

import enum
import functools
import threading

from .storage import FileDesc, FileType
from .tableformat import BytewiseComparer

__all__ = [
    "KeyType",
    "KEY_MAX_SEQ",
    "InternalComparer",
    "TableFile",
    "TableFiles",
    "make_internal_key",
    "user_key",
]

KEY_MAX_SEQ = (1 << 56) - 1


class KeyType(enum.IntEnum):
    """Type stored in the trailer of an internal key."""

    DEL = 0
    VAL = 1
    # Seeking uses the highest type so that it sorts first among equal keys.
    SEEK = 1


def make_internal_key(ukey: bytes, seq: int, key_type: KeyType) -> bytes:
    """Build an internal key: user key followed by an 8-byte sequence/type trailer."""
    if seq > KEY_MAX_SEQ:
        raise ValueError("leveldb: invalid sequence number")
    if int(key_type) > KeyType.VAL:
        raise ValueError("leveldb: invalid type")
    return bytes(ukey) + ((seq << 8) | int(key_type)).to_bytes(8, "little")


def user_key(ikey: bytes) -> bytes:
    """Return the user key part of an internal key."""
    if len(ikey) < 8:
        raise ValueError("leveldb: invalid internal key")
    return bytes(ikey[:-8])


class InternalComparer:
    """Orders internal keys by user key ascending, then sequence number descending."""

    def __init__(self, ucmp=None) -> None:
        self.ucmp = ucmp if ucmp is not None else BytewiseComparer()

    def u_compare(self, a: bytes, b: bytes) -> int:
        """Compare two user keys."""
        return self.ucmp.compare(a, b)

    def compare(self, a: bytes, b: bytes) -> int:
        """Compare two internal keys."""
        x = self.ucmp.compare(user_key(a), user_key(b))
        if x != 0:
            return x
        m = int.from_bytes(a[-8:], "little")
        n = int.from_bytes(b[-8:], "little")
        if m > n:
            return -1
        if m < n:
            return 1
        return 0


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


class TableFile:
    """Basic information about one table file."""

    def __init__(self, fd: FileDesc, size: int, imin: bytes, imax: bytes) -> None:
        self.fd = fd
        self.size = size
        self.imin = imin
        self.imax = imax
        # Allow roughly one seek per 16KiB of data before asking for compaction.
        self.seek_left = max(size // 16384, 100)
        self._lock = threading.Lock()

    @classmethod
    def table(cls, num: int, size: int, imin: bytes, imax: bytes) -> TableFile:
        """Create a descriptor for the table file with the given number."""
        return cls(FileDesc(FileType.TABLE, num), size, imin, imax)

    def after(self, icmp: InternalComparer, ukey: bytes | None) -> bool:
        """True if ukey is after the largest key of this table."""
        return ukey is not None and icmp.u_compare(ukey, user_key(self.imax)) > 0

    def before(self, icmp: InternalComparer, ukey: bytes | None) -> bool:
        """True if ukey is before the smallest key of this table."""
        return ukey is not None and icmp.u_compare(ukey, user_key(self.imin)) < 0

    def overlaps(self, icmp: InternalComparer, umin: bytes | None, umax: bytes | None) -> bool:
        """True if [umin, umax] overlaps this table's key range."""
        return not self.after(icmp, umin) and not self.before(icmp, umax)

    def consume_seek(self) -> int:
        """Consume one seek and return the seeks left."""
        with self._lock:
            self.seek_left -= 1
            return self.seek_left

    def __repr__(self) -> str:
        return f"TableFile({self.fd}, size={self.size})"


class TableFiles(list):
    """A list of TableFile."""

    def nums(self) -> str:
        """File numbers formatted as '[ a, b ]'."""
        return "[ " + ", ".join(str(t.fd.num) for t in self) + " ]"

    def sort_by_key(self, icmp: InternalComparer) -> None:
        """Sort by smallest key ascending, then file number ascending."""

        def cmp(a: TableFile, b: TableFile) -> int:
            n = icmp.compare(a.imin, b.imin)
            if n == 0:
                return (a.fd.num > b.fd.num) - (a.fd.num < b.fd.num)
            return n

        self.sort(key=functools.cmp_to_key(cmp))

    def sort_by_num(self) -> None:
        """Sort by file number descending."""
        self.sort(key=lambda t: t.fd.num, reverse=True)

    def size(self) -> int:
        """Sum of all table sizes."""
        return sum(t.size for t in self)

    def search_min(self, icmp: InternalComparer, ikey: bytes) -> int:
        """Smallest index whose smallest key is >= ikey."""
        return _search(len(self), lambda i: icmp.compare(self[i].imin, ikey) >= 0)

    def search_max(self, icmp: InternalComparer, ikey: bytes) -> int:
        """Smallest index whose largest key is >= ikey."""
        return _search(len(self), lambda i: icmp.compare(self[i].imax, ikey) >= 0)

    def search_num_less(self, num: int) -> int:
        """Smallest index whose file number is < num."""
        return _search(len(self), lambda i: self[i].fd.num < num)

    def search_min_ukey(self, icmp: InternalComparer, umin: bytes) -> int:
        """Smallest index whose smallest user key is > umin."""
        return _search(len(self), lambda i: icmp.u_compare(user_key(self[i].imin), umin) > 0)

    def search_max_ukey(self, icmp: InternalComparer, umax: bytes) -> int:
        """Smallest index whose largest user key is > umax."""
        return _search(len(self), lambda i: icmp.u_compare(user_key(self[i].imax), umax) > 0)

    def overlaps(
        self,
        icmp: InternalComparer,
        umin: bytes | None,
        umax: bytes | None,
        unsorted: bool,
    ) -> bool:
        """True if [umin, umax] overlaps any table; binary search unless unsorted."""
        if unsorted:
            return any(t.overlaps(icmp, umin, umax) for t in self)
        i = 0
        if umin:
            i = self.search_max(icmp, make_internal_key(umin, KEY_MAX_SEQ, KeyType.SEEK))
        if i >= len(self):
            return False
        return not self[i].before(icmp, umax)

    def get_overlaps(
        self,
        icmp: InternalComparer,
        umin: bytes | None,
        umax: bytes | None,
        overlapped: bool,
    ) -> TableFiles:
        """Return the tables overlapping [umin, umax].

        With overlapped set, tables may overlap each other and the range grows
        to cover every table that touches it; otherwise tables must be sorted
        and disjoint.
        """
        if not self:
            return TableFiles()

        if not overlapped:
            begin, end = 0, len(self)
            if umin is not None:
                index = self.search_min_ukey(icmp, umin)
                if index == 0:
                    begin = 0
                elif icmp.u_compare(user_key(self[index - 1].imax), umin) >= 0:
                    begin = index - 1
                else:
                    begin = index
            if umax is not None:
                index = self.search_max_ukey(icmp, umax)
                if index == len(self):
                    end = len(self)
                elif icmp.u_compare(user_key(self[index].imin), umax) <= 0:
                    end = index + 1
                else:
                    end = index
            if begin >= end:
                return TableFiles()
            return TableFiles(self[begin:end])

        dst = TableFiles()
        i = 0
        while i < len(self):
            t = self[i]
            if t.overlaps(icmp, umin, umax):
                if umin is not None and icmp.u_compare(user_key(t.imin), umin) < 0:
                    umin = user_key(t.imin)
                    dst.clear()
                    i = 0
                    continue
                if umax is not None and icmp.u_compare(user_key(t.imax), umax) > 0:
                    umax = user_key(t.imax)
                    dst.clear()
                    i = 0
                    continue
                dst.append(t)
            i += 1
        return dst

    def get_range(self, icmp: InternalComparer) -> tuple[bytes | None, bytes | None]:
        """Return the smallest and largest internal keys of all tables."""
        imin: bytes | None = None
        imax: bytes | None = None
        for i, t in enumerate(self):
            if i == 0:
                imin, imax = t.imin, t.imax
                continue
            if icmp.compare(t.imin, imin) < 0:
                imin = t.imin
            if icmp.compare(t.imax, imax) > 0:
                imax = t.imax
        return imin, imax