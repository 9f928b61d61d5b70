"""Small helpers: size formatting, descriptor sorting and key/index generators."""

from __future__ import annotations

import random
from collections.abc import Iterator

from .storage import FileDesc

__all__ = [
    "shorten",
    "shortenb",
    "sshortenb",
    "sint",
    "sort_fds",
    "bytes_separator",
    "bytes_after",
    "random_indices",
    "shuffled_indices",
    "random_ranges",
]

_UNITS = ("", "Ki", "Mi", "Gi", "Ti")


def shorten(text: str) -> str:
    """Abbreviate text longer than 8 characters to its ends."""
    if len(text) <= 8:
        return text
    return text[:3] + ".." + text[-3:]


def _scale(size: int) -> tuple[int, str]:
    i = 0
    while size > 1024 and i < 4:
        size //= 1024
        i += 1
    return size, _UNITS[i]


def shortenb(size: int) -> str:
    """Format a byte count with a binary unit."""
    value, unit = _scale(size)
    return f"{value}{unit}B"


def sshortenb(size: int) -> str:
    """Format a signed byte delta; zero is '~'."""
    if size == 0:
        return "~"
    sign = "-" if size < 0 else "+"
    value, unit = _scale(abs(size))
    return f"{sign}{value}{unit}B"


def sint(value: int) -> str:
    """Format a signed integer delta; zero is '~'."""
    if value == 0:
        return "~"
    sign = "-" if value < 0 else "+"
    return f"{sign}{abs(value)}"


def sort_fds(fds: list[FileDesc]) -> None:
    """Sort descriptors in place by number."""
    fds.sort(key=lambda fd: fd.num)


def bytes_separator(a: bytes | None, b: bytes | None) -> bytes:
    """Return a short key between a (exclusive) and b (inclusive)."""
    a = a or b""
    b = b or b""
    if a == b:
        return b
    n = min(len(a), len(b))
    i = 0
    while i < n and a[i] == b[i]:
        i += 1
    x = bytearray(a[:i])
    if i < n:
        c = (a[i] + 1) & 0xFF
        if c < b[i]:
            x.append(c)
            return bytes(x)
        x.append(a[i])
        i += 1
    for c in a[i:]:
        if c < 0xFF:
            x.append(c + 1)
            return bytes(x)
        x.append(c)
        i += 1
    if len(b) > i and b[i] > 0:
        x.append(b[i] - 1)
        return bytes(x)
    x += b"x"
    return bytes(x)


def bytes_after(b: bytes | None) -> bytes:
    """Return a short key ordered after b."""
    x = bytearray()
    for c in b or b"":
        if c < 0xFF:
            x.append(c + 1)
            return bytes(x)
        x.append(c)
    x += b"x"
    return bytes(x)


def random_indices(rnd: random.Random | None, n: int, rounds: int) -> Iterator[int]:
    """Yield rounds random indices in [0, n)."""
    rnd = rnd or random.Random()
    for _ in range(rounds):
        yield rnd.randrange(n)


def shuffled_indices(rnd: random.Random | None, n: int, rounds: int) -> Iterator[int]:
    """Yield a fresh permutation of range(n) for each round."""
    rnd = rnd or random.Random()
    for _ in range(rounds):
        perm = list(range(n))
        rnd.shuffle(perm)
        yield from perm


def random_ranges(rnd: random.Random | None, n: int, rounds: int) -> Iterator[tuple[int, int]]:
    """Yield rounds random (start, limit) pairs with 0 <= start <= limit < n."""
    rnd = rnd or random.Random()
    for _ in range(rounds):
        start = rnd.randrange(n)
        length = rnd.randrange(n - start)
        yield start, start + length