import io
import random

import pytest

from ldbcore.block import IteratorReleasedError
from ldbcore.tableformat import Compression, Filter, Range, TableOptions
from ldbcore.tablereader import (
    NotFoundError,
    ReaderReleasedError,
    TableCorruptedError,
    TableReader,
)
from ldbcore.tablewriter import TableWriter
from ldbcore.util import bytes_after, bytes_separator

KEYMAP = b"012345678ABCDEFGHIJKLMNOPQRSTUVWXYabcdefghijklmnopqrstuvwxy"


def _generated(n=120, seed=7):
    rnd = random.Random(seed)
    keys = set()
    while len(keys) < n:
        length = rnd.randint(1, 50)
        keys.add(bytes(rnd.choice(KEYMAP) for _ in range(length)))
    pairs = []
    for i, key in enumerate(sorted(keys)):
        value = f"v{i}".encode()
        value += b"x" * max(0, rnd.randint(10, 120) - len(value))
        pairs.append((key, value))
    return pairs


MULTIPLE = [
    (b"a", b"v"), (b"aa", b"v1"), (b"aaa", b"v2"), (b"aaacccccccccc", b"v2"),
    (b"aaaccccccccccd", b"v3"), (b"aaaccccccccccf", b"v4"), (b"aaaccccccccccfg", b"v5"),
    (b"ab", b"v6"), (b"abc", b"v7"), (b"abcd", b"v8"), (b"accccccccccccccc", b"v9"),
    (b"b", b"v10"), (b"bb", b"v11"), (b"bc", b"v12"), (b"c", b"v13"), (b"c1", b"v13"),
    (b"czzzzzzzzzzzzzz", b"v14"), (b"fffffffffffffff", b"v15"), (b"g11", b"v15"),
    (b"g111", b"v15"), (b"g111\xff", b"v15"), (b"zz", b"v16"), (b"zzzzzzz", b"v16"),
    (b"zzzzzzzzzzzzzzzz", b"v16"),
]

DATASETS = {
    "empty": [],
    "empty_key": [(b"", b"v")],
    "empty_value": [(b"abc", b""), (b"abcd", b"")],
    "one": [(b"abc", b"v")],
    "big_value": [(b"big1", b"1" * 200000)],
    "special_key": [(b"\xff\xff", b"v3")],
    "multiple": MULTIPLE,
    "generated": _generated(),
}


def _read_options(**kwargs):
    return TableOptions(block_size=512, block_restart_interval=3, **kwargs)


def build(pairs, options=None):
    options = options if options is not None else _read_options()
    buf = io.BytesIO()
    writer = TableWriter(buf, options)
    for key, value in pairs:
        writer.append(key, value)
    writer.close()
    data = buf.getvalue()
    return TableReader(data, len(data), None, options), data


def inexact(pairs, i):
    prev = pairs[i - 1][0] if i > 0 else b""
    return bytes_separator(prev, pairs[i][0])


def forward(it):
    out = []
    ok = it.first()
    while ok:
        out.append((it.key(), it.value()))
        ok = it.next()
    return out


def backward(it):
    out = []
    ok = it.last()
    while ok:
        out.append((it.key(), it.value()))
        ok = it.prev()
    return out


@pytest.mark.parametrize("name", sorted(DATASETS))
def test_find_exact_and_inexact(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    for i, (key, value) in enumerate(pairs):
        assert reader.find(key) == (key, value)
        assert reader.find(inexact(pairs, i)) == (key, value)
        assert reader.find_key(inexact(pairs, i)) == key


@pytest.mark.parametrize("name", sorted(DATASETS))
def test_find_after_last(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    key = bytes_after(pairs[-1][0]) if pairs else b""
    with pytest.raises(NotFoundError):
        reader.find(key)


@pytest.mark.parametrize("name", sorted(DATASETS))
def test_get_only_exact(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    for i, (key, value) in enumerate(pairs):
        assert reader.get(key) == value
        near = inexact(pairs, i)
        if near:
            with pytest.raises(NotFoundError):
                reader.get(near)


@pytest.mark.parametrize("name", sorted(DATASETS))
def test_iterate_both_directions(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    it = reader.new_iterator()
    assert forward(it) == pairs
    assert backward(it) == list(reversed(pairs))
    assert list(it) == pairs
    assert it.error() is None
    it.release()


@pytest.mark.parametrize("name", sorted(DATASETS))
def test_seek(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    it = reader.new_iterator()
    for i, (key, value) in enumerate(pairs):
        assert it.seek(key)
        assert (it.key(), it.value()) == (key, value)
        assert it.seek(inexact(pairs, i))
        assert it.key() == key
    last = bytes_after(pairs[-1][0]) if pairs else b"\xff" * 11
    assert not it.seek(last)
    assert it.error() is None


def test_direction_changes():
    pairs = DATASETS["generated"]
    reader, _ = build(pairs)
    it = reader.new_iterator()
    assert it.first()
    assert it.next() and it.next()
    assert it.key() == pairs[2][0]
    assert it.prev()
    assert it.key() == pairs[1][0]
    assert it.seek(pairs[60][0])
    assert it.prev()
    assert it.key() == pairs[59][0]
    assert it.next() and it.next()
    assert it.key() == pairs[61][0]
    assert it.first()
    assert not it.prev()
    assert it.next()
    assert it.key() == pairs[0][0]


@pytest.mark.parametrize("name", ["multiple", "generated"])
def test_slice_from_and_until_key(name):
    pairs = DATASETS[name]
    reader, _ = build(pairs)
    for i in range(0, len(pairs), 7):
        near = inexact(pairs, i)
        it = reader.new_iterator(Range(start=near, limit=None))
        assert forward(it) == pairs[i:]
        assert backward(it) == list(reversed(pairs[i:]))
        it = reader.new_iterator(Range(start=None, limit=near))
        assert forward(it) == pairs[:i]
        assert backward(it) == list(reversed(pairs[:i]))


@pytest.mark.parametrize("start,limit", [(0, 5), (3, 17), (10, 11), (20, 24), (5, 5)])
def test_slice_range(start, limit):
    pairs = MULTIPLE
    reader, _ = build(pairs)
    lim = pairs[limit][0] if limit < len(pairs) else None
    it = reader.new_iterator(Range(start=pairs[start][0], limit=lim))
    assert forward(it) == pairs[start:limit]
    assert backward(it) == list(reversed(pairs[start:limit]))


def test_approximate_offset():
    options = TableOptions(block_size=1024, compression=Compression.NONE)
    pairs = [
        (b"k01", b"hello"),
        (b"k02", b"hello2"),
        (b"k03", b"x" * 10000),
        (b"k04", b"x" * 200000),
        (b"k05", b"x" * 300000),
        (b"k06", b"hello3"),
        (b"k07", b"x" * 100000),
    ]
    reader, _ = build(pairs, options)
    cases = [
        ("k0", 0, 0), ("k01a", 0, 0), ("k02", 0, 0), ("k03", 0, 0),
        ("k04", 10000, 1000), ("k04a", 210000, 1000), ("k05", 210000, 1000),
        ("k06", 510000, 1000), ("k07", 510000, 1000), ("xyz", 610000, 2000),
    ]
    for key, expect, threshold in cases:
        offset = reader.offset_of(key.encode())
        assert abs(offset - expect) <= threshold, key


def test_one_key_per_block():
    pairs = [(bytes([KEYMAP[i]]), bytes([KEYMAP[i]]) * 512) for i in range(9)]
    reader, _ = build(pairs)
    offsets = [reader.offset_of(key) for key, _ in pairs]
    assert len(set(offsets)) == 9
    assert offsets == sorted(offsets)
    assert forward(reader.new_iterator()) == pairs


def test_reader_from_file_object():
    pairs = MULTIPLE
    _, data = build(pairs)
    reader = TableReader(io.BytesIO(data), options=_read_options())
    assert reader.get(b"abc") == b"v7"
    reader.release()
    with pytest.raises(ReaderReleasedError):
        reader.get(b"abc")


class _ExactFilter(Filter):
    class _Generator:
        def __init__(self):
            self.keys = []

        def add(self, key):
            self.keys.append(bytes(key))

        def generate(self, buf):
            for key in self.keys:
                buf += len(key).to_bytes(4, "little") + key
            self.keys = []

    def name(self):
        return "test.exact"

    def new_generator(self):
        return self._Generator()

    def contains(self, data, key):
        pos = 0
        while pos < len(data):
            n = int.from_bytes(data[pos:pos + 4], "little")
            if data[pos + 4:pos + 4 + n] == key:
                return True
            pos += 4 + n
        return False


@pytest.mark.parametrize("as_alt", [False, True])
def test_filtered_find(as_alt):
    pairs = DATASETS["generated"]
    _, data = build(pairs, _read_options(filter=_ExactFilter()))
    if as_alt:
        options = _read_options(alt_filters=(_ExactFilter(),))
    else:
        options = _read_options(filter=_ExactFilter())
    reader = TableReader(data, len(data), None, options)
    for i, (key, value) in enumerate(pairs):
        assert reader.find(key, True) == (key, value)
        near = inexact(pairs, i)
        if near != key:
            with pytest.raises(NotFoundError):
                reader.find(near, True)
            assert reader.find(near, False) == (key, value)


def test_bad_magic_number():
    _, data = build(MULTIPLE)
    bad = data[:-1] + b"\x00"
    reader = TableReader(bad, len(bad), None, _read_options())
    it = reader.new_iterator()
    assert not it.first()
    assert isinstance(it.error(), TableCorruptedError)
    with pytest.raises(TableCorruptedError) as info:
        reader.get(b"a")
    assert info.value.kind == "table-footer"
    assert info.value.reason == "bad magic number"


def test_too_small():
    reader = TableReader(b"abc", 3, None, _read_options())
    with pytest.raises(TableCorruptedError) as info:
        reader.find(b"a")
    assert info.value.kind == "table"
    assert info.value.size == 3


def test_checksum_mismatch_in_data_block():
    pairs = [(b"k1", b"value1"), (b"k2", b"value2")]
    options = _read_options(compression=Compression.NONE, strict_block_checksum=True)
    _, data = build(pairs, options)
    corrupted = bytes([data[0] ^ 0xFF]) + data[1:]
    reader = TableReader(corrupted, len(corrupted), None, options)
    with pytest.raises(TableCorruptedError) as info:
        reader.get(b"k1")
    assert info.value.kind == "data-block"
    assert "checksum mismatch" in info.value.reason
    it = reader.new_iterator()
    assert not it.first()
    assert isinstance(it.error(), TableCorruptedError)


def test_iterator_release():
    reader, _ = build(MULTIPLE)
    it = reader.new_iterator()
    assert it.first()
    it.release()
    assert not it.next()
    assert isinstance(it.error(), IteratorReleasedError)
    assert it.key() is None


def test_iterator_after_reader_release():
    reader, _ = build(MULTIPLE)
    reader.release()
    it = reader.new_iterator()
    assert not it.first()
    assert isinstance(it.error(), ReaderReleasedError)