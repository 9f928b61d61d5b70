"""An ordered key/value list for building and checking tables."""

from __future__ import annotations

import random
from bisect import bisect_left

from .tableformat import Range
from .util import bytes_after, bytes_separator

__all__ = [
    "KeyValue",
    "empty_key",
    "empty_value",
    "one_key_value",
    "big_value",
    "special_key",
    "multiple_key_value",
    "generate",
]


class KeyValue:
    """Key/value pairs kept in increasing bytewise key order."""

    def __init__(self, entries=()) -> None:
        self._keys: list[bytes] = []
        self._values: list[bytes] = []
        self._nbytes = 0
        for key, value in entries:
            self.put(key, value)

    def put(self, key: bytes, value: bytes) -> None:
        """Append a pair; the key must be greater than every present key."""
        if self._keys and self._keys[-1] >= key:
            raise ValueError(f"put: keys are not in increasing order: {self._keys[-1]!r}, {key!r}")
        self._keys.append(bytes(key))
        self._values.append(bytes(value))
        self._nbytes += len(key) + len(value)

    def put_u(self, key: bytes, value: bytes) -> bool:
        """Insert or overwrite; return True if the key was new."""
        i, exist = self.get(key)
        if exist:
            self._nbytes += len(value) - len(self._values[i])
            self._values[i] = bytes(value)
            return False
        self._keys.insert(i, bytes(key))
        self._values.insert(i, bytes(value))
        self._nbytes += len(key) + len(value)
        return True

    def delete(self, key: bytes) -> bytes | None:
        """Remove key and return its value, or None if it was absent."""
        i, exist = self.get(key)
        if not exist:
            return None
        value = self._values[i]
        self.delete_index(i)
        return value

    def delete_index(self, i: int) -> bool:
        """Remove the entry at i; return False if i is past the end."""
        if i < len(self._keys):
            self._nbytes -= len(self._keys[i]) + len(self._values[i])
            del self._keys[i]
            del self._values[i]
            return True
        return False

    def __len__(self) -> int:
        return len(self._keys)

    def size(self) -> int:
        """Total bytes of all keys and values."""
        return self._nbytes

    def key_at(self, i: int) -> bytes:
        return self._keys[i]

    def value_at(self, i: int) -> bytes:
        return self._values[i]

    def index(self, i: int) -> tuple[bytes, bytes]:
        """Return the pair at i; raises IndexError when out of range."""
        if i < 0 or i >= len(self._keys):
            raise IndexError(f"Index #{i}: out of range")
        return self._keys[i], self._values[i]

    def index_inexact(self, i: int) -> tuple[bytes, bytes, bytes]:
        """Return (k, key, value) where k lies after the previous key and at most key."""
        key, value = self.index(i)
        prev = self._keys[i - 1] if i > 0 else b""
        return bytes_separator(prev, key), key, value

    def index_or_none(self, i: int) -> tuple[bytes | None, bytes | None]:
        """Return the pair at i, or (None, None) when out of range."""
        if 0 <= i < len(self._keys):
            return self._keys[i], self._values[i]
        return None, None

    def search(self, key: bytes) -> int:
        """Smallest index whose key is >= key."""
        return bisect_left(self._keys, bytes(key))

    def get(self, key: bytes) -> tuple[int, bool]:
        """Return the search index of key and whether key is present."""
        i = self.search(key)
        return i, i < len(self._keys) and self._keys[i] == key

    def __iter__(self):
        return iter(zip(self._keys, self._values))

    def iter_shuffled(self, rnd: random.Random | None = None):
        """Yield (index, key, value) in random order."""
        rnd = rnd if rnd is not None else random.Random()
        order = list(range(len(self._keys)))
        rnd.shuffle(order)
        for i in order:
            yield i, self._keys[i], self._values[i]

    def iter_inexact(self):
        """Yield index_inexact(i) for every entry."""
        for i in range(len(self._keys)):
            yield self.index_inexact(i)

    def clone(self) -> KeyValue:
        return self.slice(0, len(self._keys))

    def slice(self, start: int, limit: int) -> KeyValue:
        """Copy of entries [start, limit)."""
        if start < 0 or limit > len(self._keys):
            raise IndexError(f"Slice {start} .. {limit}: out of range")
        if limit < start:
            raise ValueError(f"Slice {start} .. {limit}: invalid range")
        out = KeyValue()
        out._keys = self._keys[start:limit]
        out._values = self._values[start:limit]
        out._nbytes = sum(len(k) + len(v) for k, v in zip(out._keys, out._values))
        return out

    def slice_key(self, start: bytes | None, limit: bytes | None) -> KeyValue:
        """Copy of entries with start <= key < limit; None is unbounded."""
        s = self.search(start) if start is not None else 0
        e = self.search(limit) if limit is not None else len(self._keys)
        return self.slice(s, e)

    def slice_range(self, r: Range | None) -> KeyValue:
        if r is None:
            return self.clone()
        return self.slice_key(r.start, r.limit)

    def range(self, start: int, limit: int) -> Range:
        """Key range covering entries [start, limit)."""
        r = Range()
        n = len(self._keys)
        if n > 0:
            if start == n:
                r.start = bytes_after(self._keys[start - 1])
            else:
                r.start = self._keys[start]
        if limit < n:
            r.limit = self._keys[limit]
        return r

    def __repr__(self) -> str:
        return f"KeyValue({list(self)!r})"


def empty_key() -> KeyValue:
    return KeyValue([(b"", b"v")])


def empty_value() -> KeyValue:
    return KeyValue([(b"abc", b""), (b"abcd", b"")])


def one_key_value() -> KeyValue:
    return KeyValue([(b"abc", b"v")])


def big_value() -> KeyValue:
    return KeyValue([(b"big1", b"1" * 200000)])


def special_key() -> KeyValue:
    return KeyValue([(b"\xff\xff", b"v3")])


def multiple_key_value() -> KeyValue:
    return KeyValue([
        (b"a", b"v"),
        (b"aa", b"v1"),
        (b"aaa", b"v2"),
        (b"aaacccccccccc", b"v2"),
        (b"aaaccccccccccd", b"v3"),
        (b"aaaccccccccccf", b"v4"),
        (b"aaaccccccccccfg", b"v5"),
        (b"ab", b"v6"),
        (b"abc", b"v7"),
        (b"abcd", b"v8"),
        (b"accccccccccccccc", b"v9"),
        (b"b", b"v10"),
        (b"bb", b"v11"),
        (b"bc", b"v12"),
        (b"c", b"v13"),
        (b"c1", b"v13"),
        (b"czzzzzzzzzzzzzz", b"v14"),
        (b"fffffffffffffff", b"v15"),
        (b"g11", b"v15"),
        (b"g111", b"v15"),
        (b"g111\xff", b"v15"),
        (b"zz", b"v16"),
        (b"zzzzzzz", b"v16"),
        (b"zzzzzzzzzzzzzzzz", b"v16"),
    ])


_KEYMAP = b"012345678ABCDEFGHIJKLMNOPQRSTUVWXYabcdefghijklmnopqrstuvwxy"


def generate(
    rnd: random.Random | None,
    n: int,
    incr: int,
    minlen: int,
    maxlen: int,
    vminlen: int,
    vmaxlen: int,
) -> KeyValue:
    """Generate n pairs with increasing keys of length [minlen, maxlen)."""
    rnd = rnd if rnd is not None else random.Random()
    if maxlen < minlen:
        raise ValueError("max len should >= min len")

    def rrand(lo: int, hi: int) -> int:
        if lo == hi:
            return hi
        return rnd.randrange(lo, hi)

    kv = KeyValue()
    end_c = len(_KEYMAP) - incr
    gen: list[int] = []
    for i in range(n):
        m = rrand(minlen, maxlen)
        last = gen
        while True:
            if m > len(last):
                gen = last + [0] * (m - len(last))
                break
            for j in range(m - 1, -1, -1):
                c = last[j]
                if c >= end_c:
                    continue
                gen = last[:j] + [c + incr] + [0] * (m - j - 1)
                break
            else:
                if m < maxlen:
                    m += 1
                    continue
                raise ValueError(
                    f"only able to generate {len(kv)} keys out of {n} keys, try increasing max len"
                )
            break
        key = bytes(_KEYMAP[g] for g in gen)
        vlen = rrand(vminlen, vmaxlen)
        value = (f"v{i}".encode() + b"x" * vlen)[:vlen]
        kv.put(key, value)
    return kv