import random

import pytest

from ldbcore.storage import FileDesc, FileType
from ldbcore.util import (
    bytes_after,
    bytes_separator,
    random_indices,
    random_ranges,
    shorten,
    shortenb,
    shuffled_indices,
    sint,
    sort_fds,
    sshortenb,
)


@pytest.mark.parametrize("text", ["", "abc", "12345678"])
def test_shorten_keeps_short_text(text):
    assert shorten(text) == text


@pytest.mark.parametrize("text", ["123456789", "abcdefghijklmnop"])
def test_shorten_long_text(text):
    out = shorten(text)
    assert len(out) == 8
    assert out.startswith(text[:3])
    assert out.endswith(text[-3:])
    assert ".." in out


def test_shortenb_values():
    assert shortenb(1024) == "1024B"
    assert shortenb(2048) == "2KiB"


def test_shortenb_units():
    assert shortenb(0).endswith("B")
    assert shortenb(5 * 1024 * 1024).endswith("MiB")
    assert shortenb(1024 ** 6).endswith("TiB")


@pytest.mark.parametrize("size", [1, 100, 1025, 3 * 1024 * 1024])
def test_sshortenb_sign(size):
    assert sshortenb(size) == "+" + shortenb(size)
    assert sshortenb(-size) == "-" + shortenb(size)


def test_zero_deltas():
    assert sshortenb(0) == "~"
    assert sint(0) == "~"


def test_sint():
    assert sint(-7) == "-7"
    assert sint(12) == "+" + str(12)


def test_sort_fds():
    fds = [
        FileDesc(FileType.TABLE, 5),
        FileDesc(FileType.JOURNAL, 1),
        FileDesc(FileType.TABLE, 3),
    ]
    sort_fds(fds)
    assert [fd.num for fd in fds] == [1, 3, 5]


PAIRS = [
    (None, b"a1"),
    (b"", b"a"),
    (b"a1", b"a2"),
    (b"a1", b"a3qqwrkks"),
    (b"abc", b"abcd"),
    (b"aaa", b"aaacccccccccc"),
    (b"g111", b"g111\xff"),
    (b"k1", b"k2"),
    (b"\x01", b"\xff\xff"),
    (b"b", b"c9"),
]


@pytest.mark.parametrize("a, b", PAIRS)
def test_bytes_separator_between(a, b):
    sep = bytes_separator(a, b)
    assert (a or b"") < sep <= b


def test_bytes_separator_equal_keys():
    assert bytes_separator(b"same", b"same") == b"same"
    assert bytes_separator(None, b"") == b""


@pytest.mark.parametrize("key", [b"", b"a", b"zz", b"\xff\xff", b"\xff\xff\xff\xff"])
def test_bytes_after(key):
    after = bytes_after(key)
    assert after > key


def test_bytes_after_all_ff_extends_key():
    key = b"\xff\xff"
    assert bytes_after(key).startswith(key)
    assert len(bytes_after(key)) == len(key) + 1


def test_shuffled_indices_is_permutation_per_round():
    out = list(shuffled_indices(random.Random(1), 10, 2))
    assert sorted(out[:10]) == list(range(10))
    assert sorted(out[10:]) == list(range(10))


def test_shuffled_indices_default_rng():
    assert sorted(shuffled_indices(None, 5, 1)) == list(range(5))


def test_shuffled_indices_empty():
    assert list(shuffled_indices(random.Random(0), 0, 3)) == []


def test_random_indices():
    out = list(random_indices(random.Random(2), 7, 50))
    assert len(out) == 50
    assert all(0 <= i < 7 for i in out)


def test_random_ranges():
    out = list(random_ranges(random.Random(3), 9, 40))
    assert len(out) == 40
    for start, limit in out:
        assert 0 <= start < 9
        assert start <= limit < 9


def test_same_seed_same_sequence():
    a = list(random_ranges(random.Random(42), 20, 10))
    b = list(random_ranges(random.Random(42), 20, 10))
    assert a == b