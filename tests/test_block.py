import bisect
import random

import pytest

from ldbcore.block import Block, BlockCorruptedError, IteratorReleasedError
from ldbcore.storage import is_corrupted
from ldbcore.tableformat import BytewiseComparer, Range
from ldbcore.tablewriter import BlockWriter
from ldbcore.util import (
    bytes_after,
    bytes_separator,
    random_indices,
    random_ranges,
    shuffled_indices,
)

CMP = BytewiseComparer()

READ_ENTRIES = [
    (b"", b"empty"),
    (b"a1", b"foo"),
    (b"a2", b"v"),
    (b"a3qqwrkks", b"hello"),
    (b"a4", b"bar"),
    (b"a5111111", b"v5"),
    (b"a6", b""),
    (b"a7", b"v7"),
    (b"a8", b"vvvvvvvvvvvvvvvvvvvvvv8"),
    (b"b", b"v9"),
    (b"c9", b"v9"),
    (b"c91", b"v9"),
    (b"d0", b"v9"),
]
STAGES = [0, 1, 2, 3, 4, 5, 13]
INTERVALS = [1, 2, 3, 4, 5]

OOB_ENTRIES = [
    (b"k1", b"v1"),
    (b"k2", b"v2"),
    (b"k3abcdefgg", b"v3"),
    (b"k4", b"v4"),
    (b"k5", b"v5"),
]


def build(entries, interval):
    bw = BlockWriter(interval)
    for key, value in entries:
        bw.append(key, value)
    bw.finish()
    return Block(bytes(bw.buf))


def inexact(entries, i):
    key0 = entries[i - 1][0] if i > 0 else None
    return bytes_separator(key0, entries[i][0])


def kv_range(entries, start, limit):
    r = Range()
    if entries:
        if start == len(entries):
            r.start = bytes_after(entries[start - 1][0])
        else:
            r.start = entries[start][0]
    if limit < len(entries):
        r.limit = entries[limit][0]
    return r


class IterTester:
    def __init__(self, entries, it, rnd):
        self.entries = entries
        self.keys = [k for k, _ in entries]
        self.it = it
        self.rnd = rnd
        self.pos = -1

    def __len__(self):
        return len(self.entries)

    def check_kv(self):
        key, value = self.entries[self.pos]
        assert self.it.key() is not None
        assert self.it.key() == key
        assert self.it.value() == value

    def first(self):
        ok = self.it.first()
        assert self.it.error() is None
        if self.entries:
            self.pos = 0
            assert ok
            self.check_kv()
        else:
            self.pos = -1
            assert not ok

    def last(self):
        ok = self.it.last()
        assert self.it.error() is None
        if self.entries:
            self.pos = len(self) - 1
            assert ok
            self.check_kv()
        else:
            self.pos = 0
            assert not ok

    def next(self):
        ok = self.it.next()
        assert self.it.error() is None
        if self.pos < len(self) - 1:
            self.pos += 1
            assert ok
            self.check_kv()
        else:
            self.pos = len(self)
            assert not ok

    def prev(self):
        ok = self.it.prev()
        assert self.it.error() is None
        if self.pos > 0:
            self.pos -= 1
            assert ok
            self.check_kv()
        else:
            self.pos = -1
            assert not ok

    def seek(self, i):
        ok = self.it.seek(self.entries[i][0])
        assert self.it.error() is None
        assert ok
        self.pos = i
        self.check_kv()

    def seek_inexact(self, i):
        ok = self.it.seek(inexact(self.entries, i))
        assert self.it.error() is None
        assert ok
        self.pos = i
        self.check_kv()

    def seek_key(self, key):
        i = bisect.bisect_left(self.keys, key)
        ok = self.it.seek(key)
        assert self.it.error() is None
        if i < len(self):
            assert ok
            self.pos = i
            self.check_kv()
        else:
            assert not ok
        self.pos = i

    def soi(self):
        assert self.pos <= 0
        for _ in range(3):
            self.prev()

    def eoi(self):
        assert self.pos >= len(self) - 1
        for _ in range(3):
            self.next()

    def prev_all(self):
        while self.pos > 0:
            old = self.pos
            self.prev()
            assert self.pos < old

    def next_all(self):
        while self.pos < len(self) - 1:
            old = self.pos
            self.next()
            assert self.pos > old

    def run(self):
        self.soi()
        self.next_all()
        self.first()
        self.soi()
        self.next_all()
        self.eoi()
        self.prev_all()
        self.last()
        self.eoi()
        self.prev_all()
        self.soi()

        self.next_all()
        self.prev_all()
        self.next_all()
        self.last()
        self.prev_all()
        self.first()
        self.next_all()
        self.eoi()

        for i in shuffled_indices(self.rnd, len(self), 1):
            self.seek(i)
        for i in shuffled_indices(self.rnd, len(self), 1):
            self.seek_inexact(i)
        for i in shuffled_indices(self.rnd, len(self), 1):
            self.seek(i)
            if i % 2:
                self.prev_all()
                self.soi()
            else:
                self.next_all()
                self.eoi()

        for key in (b"", b"foo", b"bar", b"\xff" * 11):
            self.seek_key(key)


def check_iter(block, rng, expected, rnd):
    it = block.iterator(CMP, rng, False)
    assert it.error() is None
    IterTester(expected, it, rnd).run()
    it.release()


@pytest.mark.parametrize("n", STAGES)
@pytest.mark.parametrize("interval", INTERVALS)
def test_read_full_iteration(interval, n):
    entries = READ_ENTRIES[:n]
    block = build(entries, interval)
    assert list(block.iterator(CMP, None, False)) == entries
    check_iter(block, None, entries, random.Random(n * 10 + interval))


@pytest.mark.parametrize("n", STAGES)
@pytest.mark.parametrize("interval", INTERVALS)
def test_read_slice_by_index(interval, n):
    entries = READ_ENTRIES[:n]
    block = build(entries, interval)
    assert list(block.iterator(CMP, None, False)) == entries
    rnd = random.Random(n * 100 + interval)
    for i in random_indices(rnd, n, min(n, 50)):
        key_ = inexact(entries, i)
        check_iter(block, Range(key_, None), entries[i:], rnd)
        check_iter(block, Range(None, key_), entries[:i], rnd)


@pytest.mark.parametrize("n", STAGES)
@pytest.mark.parametrize("interval", INTERVALS)
def test_read_random_range(interval, n):
    entries = READ_ENTRIES[:n]
    block = build(entries, interval)
    assert list(block.iterator(CMP, None, False)) == entries
    rnd = random.Random(n * 1000 + interval)
    for start, limit in random_ranges(rnd, n, min(n, 50)):
        check_iter(block, kv_range(entries, start, limit), entries[start:limit], rnd)


@pytest.mark.parametrize(
    "rng",
    [Range(b"k0", b"k6"), Range(b"", b"zzzzzzz")],
)
@pytest.mark.parametrize("interval", INTERVALS)
def test_out_of_bound_slice(interval, rng):
    block = build(OOB_ENTRIES, interval)
    it = block.iterator(CMP, rng, False)
    assert it.error() is None
    IterTester(list(OOB_ENTRIES), it, random.Random(interval)).run()
    it.release()


def test_entry_encoding_matches_format():
    block = build([(b"deck", b"v1"), (b"dock", b"v2"), (b"duck", b"v3")], 2)
    assert block.restarts_len == 2
    assert block.restart_offset(0) == 0
    assert block.restart_offset(1) == 17
    assert block.entry(0) == (b"deck", b"v1", 0, 9)
    assert block.entry(9) == (b"ock", b"v2", 1, 8)
    assert block.entry(17) == (b"duck", b"v3", 0, 9)
    assert block.entry(block.restarts_offset) == (b"", b"", 0, 0)


def test_block_seek_finds_restart_point():
    block = build([(b"deck", b"v1"), (b"dock", b"v2"), (b"duck", b"v3")], 2)
    assert block.seek(CMP, 0, block.restarts_len, b"dog") == (0, 0)
    assert block.seek(CMP, 0, block.restarts_len, b"dz") == (1, 17)
    assert block.seek(CMP, 0, block.restarts_len, b"a") == (0, 0)
    assert block.restart_index(0, block.restarts_len, 20) == 1


def test_entry_misaligned_offset_raises():
    block = build([(b"a", b"1")], 1)
    with pytest.raises(BlockCorruptedError) as info:
        block.entry(block.restarts_offset + 1)
    assert info.value.reason == "entries offset not aligned"


def test_corrupted_entry_stops_iterator():
    data = bytes([0, 50, 1]) + b"ab" + (0).to_bytes(4, "little") + (1).to_bytes(4, "little")
    block = Block(data)
    it = block.iterator(CMP, None, False)
    assert it.first() is False
    err = it.error()
    assert isinstance(err, BlockCorruptedError)
    assert err.reason == "entries corrupted"
    assert err.kind == "data-block"
    assert is_corrupted(err)
    assert it.key() is None


def test_too_short_block_raises():
    with pytest.raises(BlockCorruptedError):
        Block(b"ab")


def test_empty_block():
    block = build([], 3)
    it = block.iterator(CMP, None, False)
    assert it.first() is False
    assert it.last() is False
    assert it.error() is None
    assert not it.valid()


def test_released_iterator_reports_error():
    block = build(OOB_ENTRIES, 2)
    it = block.iterator(CMP, None, False)
    assert it.first()
    it.release()
    assert it.next() is False
    assert isinstance(it.error(), IteratorReleasedError)
    assert it.key() is None


def test_inverted_slice_is_empty():
    block = build(OOB_ENTRIES, 1)
    it = block.iterator(CMP, Range(b"k4", b"k2"), False)
    assert it.first() is False
    assert it.error() is None


def test_include_limit_slice():
    block = build(OOB_ENTRIES, 2)
    it = block.iterator(CMP, Range(b"k2", b"k4"), True)
    assert [k for k, _ in it] == [b"k2", b"k3abcdefgg", b"k4"]


def test_is_first_and_is_last():
    block = build(OOB_ENTRIES, 2)
    it = block.iterator(CMP, None, False)
    assert it.first()
    assert it.is_first()
    assert not it.is_last()
    assert it.last()
    assert it.is_last()
    assert it.valid()
    assert it.prev()
    assert not it.is_last()
    assert it.key() == b"k4"
    it.release()


def test_context_manager_releases():
    block = build(OOB_ENTRIES, 3)
    with block.iterator(CMP, None, False) as it:
        assert it.seek(b"k3") is True
        assert it.key() == b"k3abcdefgg"
    assert it.first() is False
    assert isinstance(it.error(), IteratorReleasedError)