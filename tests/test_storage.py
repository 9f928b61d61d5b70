import pytest

from ldbcore.storage import (
    ClosedError,
    CorruptedError,
    FileDesc,
    FileOpenError,
    FileType,
    InvalidFileError,
    LockedError,
    ReadOnlyError,
    Storage,
    StorageError,
    file_desc_ok,
    is_corrupted,
)


@pytest.mark.parametrize(
    "file_type, name",
    [
        (FileType.MANIFEST, "manifest"),
        (FileType.JOURNAL, "journal"),
        (FileType.TABLE, "table"),
        (FileType.TEMP, "temp"),
    ],
)
def test_file_type_str(file_type, name):
    assert str(file_type) == name


def test_file_type_unknown_str():
    assert str(FileType(3)).startswith("<unknown:")


@pytest.mark.parametrize(
    "file_type", [FileType.MANIFEST, FileType.JOURNAL, FileType.TABLE, FileType.TEMP]
)
def test_file_type_all_covers_every_type(file_type):
    assert file_type & FileType.ALL == file_type
    assert file_desc_ok(FileDesc(file_type, 1)) is True


@pytest.mark.parametrize(
    "fd, name",
    [
        (FileDesc(FileType.JOURNAL, 100), "000100.log"),
        (FileDesc(FileType.JOURNAL, 0), "000000.log"),
        (FileDesc(FileType.TABLE, 0), "000000.ldb"),
        (FileDesc(FileType.MANIFEST, 2), "MANIFEST-000002"),
        (FileDesc(FileType.MANIFEST, 7), "MANIFEST-000007"),
        (FileDesc(FileType.JOURNAL, 9223372036854775807), "9223372036854775807.log"),
        (FileDesc(FileType.TEMP, 100), "000100.tmp"),
    ],
)
def test_file_desc_str(fd, name):
    assert str(fd) == name


def test_file_desc_unknown_type_str():
    assert str(FileDesc(FileType(16), 5)) == "0x10-5"


def test_file_desc_zero():
    assert FileDesc().is_zero()
    assert not FileDesc(FileType.TABLE, 0).is_zero()
    assert not FileDesc(FileType(0), 1).is_zero()


def test_file_desc_equality_and_hash():
    a = FileDesc(FileType.TABLE, 3)
    b = FileDesc(FileType.TABLE, 3)
    assert a == b
    assert len({a, b}) == 1


@pytest.mark.parametrize(
    "fd, ok",
    [
        (FileDesc(FileType.MANIFEST, 1), True),
        (FileDesc(FileType.JOURNAL, 0), True),
        (FileDesc(FileType.TABLE, 5), True),
        (FileDesc(FileType.TEMP, 9), True),
        (FileDesc(FileType.TABLE, -1), False),
        (FileDesc(), False),
        (FileDesc(FileType.ALL, 1), False),
        (FileDesc(FileType.TABLE | FileType.JOURNAL, 1), False),
    ],
)
def test_file_desc_ok(fd, ok):
    assert file_desc_ok(fd) is ok


def test_corrupted_error_without_fd():
    err = CorruptedError("bad content")
    assert str(err) == "bad content"
    assert err.fd.is_zero()


def test_corrupted_error_with_fd():
    err = CorruptedError("bad content", FileDesc(FileType.TABLE, 1))
    assert str(err) == "bad content [file=000001.ldb]"


def test_is_corrupted():
    assert is_corrupted(CorruptedError("x"))
    assert not is_corrupted(ValueError("x"))
    assert not is_corrupted(None)


@pytest.mark.parametrize(
    "cls", [InvalidFileError, LockedError, ClosedError, FileOpenError, ReadOnlyError]
)
def test_errors_are_storage_errors(cls):
    assert issubclass(cls, StorageError)
    assert isinstance(cls(), StorageError)
    assert not is_corrupted(cls())


def test_storage_is_abstract():
    with pytest.raises(TypeError):
        Storage()