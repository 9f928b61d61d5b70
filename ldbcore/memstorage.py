"""A memory-backed storage."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field

from .storage import (
    ClosedError,
    FileDesc,
    FileOpenError,
    FileType,
    InvalidFileError,
    LockedError,
    Storage,
    file_desc_ok,
)

__all__ = ["MemStorage", "MemStorageLock", "MemReader", "MemWriter"]

_TYPE_SHIFT = 4


def _pack(fd: FileDesc) -> int:
    return (fd.num << _TYPE_SHIFT) | int(fd.type)


def _unpack(x: int) -> FileDesc:
    return FileDesc(FileType(x & FileType.ALL), x >> _TYPE_SHIFT)


@dataclass
class _MemFile:
    data: bytearray = field(default_factory=bytearray)
    open: bool = False


class MemStorageLock:
    """Lock held on a MemStorage."""

    def __init__(self, storage: MemStorage) -> None:
        self._storage = storage

    def unlock(self) -> None:
        """Release the lock if it is still the current one."""
        ms = self._storage
        with ms._mu:
            if ms._slock is self:
                ms._slock = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.unlock()


class MemStorage(Storage):
    """Storage that keeps every file in memory."""

    def __init__(self) -> None:
        self._mu = threading.Lock()
        self._slock: MemStorageLock | None = None
        self._files: dict[int, _MemFile] = {}
        self._meta = FileDesc()

    def lock(self) -> MemStorageLock:
        with self._mu:
            if self._slock is not None:
                raise LockedError()
            self._slock = MemStorageLock(self)
            return self._slock

    def log(self, message: str) -> None:
        pass

    def set_meta(self, fd: FileDesc) -> None:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        with self._mu:
            self._meta = fd

    def get_meta(self) -> FileDesc:
        with self._mu:
            if self._meta.is_zero():
                raise FileNotFoundError("storage: meta not set")
            return self._meta

    def list(self, file_type: FileType) -> list[FileDesc]:
        with self._mu:
            fds = (_unpack(x) for x in self._files)
            return [fd for fd in fds if fd.type & file_type]

    def open(self, fd: FileDesc) -> MemReader:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        with self._mu:
            m = self._files.get(_pack(fd))
            if m is None:
                raise FileNotFoundError(f"storage: {fd} does not exist")
            if m.open:
                raise FileOpenError()
            m.open = True
            return MemReader(self, m)

    def create(self, fd: FileDesc) -> MemWriter:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        x = _pack(fd)
        with self._mu:
            m = self._files.get(x)
            if m is not None:
                if m.open:
                    raise FileOpenError()
                m.data.clear()
            else:
                m = _MemFile()
                self._files[x] = m
            m.open = True
            return MemWriter(self, m)

    def remove(self, fd: FileDesc) -> None:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        with self._mu:
            try:
                del self._files[_pack(fd)]
            except KeyError:
                raise FileNotFoundError(f"storage: {fd} does not exist") from None

    def rename(self, old_fd: FileDesc, new_fd: FileDesc) -> None:
        if not file_desc_ok(old_fd) or not file_desc_ok(new_fd):
            raise InvalidFileError()
        if old_fd == new_fd:
            return
        old_x, new_x = _pack(old_fd), _pack(new_fd)
        with self._mu:
            old_m = self._files.get(old_x)
            if old_m is None:
                raise FileNotFoundError(f"storage: {old_fd} does not exist")
            new_m = self._files.get(new_x)
            if (new_m is not None and new_m.open) or old_m.open:
                raise FileOpenError()
            del self._files[old_x]
            self._files[new_x] = old_m

    def close(self) -> None:
        pass


class MemReader:
    """Read-only view of a memory file's contents taken when it was opened."""

    def __init__(self, storage: MemStorage, mem_file: _MemFile) -> None:
        self._storage = storage
        self._file = mem_file
        self._data = bytes(mem_file.data)
        self._pos = 0
        self._closed = False

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes from the current position."""
        end = len(self._data) if size is None or size < 0 else self._pos + size
        chunk = self._data[self._pos:end]
        self._pos += len(chunk)
        return chunk

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to size bytes at offset without moving the position."""
        if offset < 0:
            raise ValueError("negative offset")
        return self._data[offset:offset + size]

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the position and return it."""
        if whence == os.SEEK_SET:
            pos = offset
        elif whence == os.SEEK_CUR:
            pos = self._pos + offset
        elif whence == os.SEEK_END:
            pos = len(self._data) + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if pos < 0:
            raise ValueError("negative position")
        self._pos = pos
        return pos

    def close(self) -> None:
        with self._storage._mu:
            if self._closed:
                raise ClosedError()
            self._closed = True
            self._file.open = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()


class MemWriter:
    """Writer appending to a memory file."""

    def __init__(self, storage: MemStorage, mem_file: _MemFile) -> None:
        self._storage = storage
        self._file = mem_file
        self._closed = False

    def write(self, data: bytes) -> int:
        """Append data and return the number of bytes written."""
        if self._closed:
            raise ClosedError()
        self._file.data += data
        return len(data)

    def sync(self) -> None:
        pass

    def close(self) -> None:
        with self._storage._mu:
            if self._closed:
                raise ClosedError()
            self._closed = True
            self._file.open = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()