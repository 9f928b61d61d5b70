"""Storage wrapper that counts bytes read and written."""

from __future__ import annotations

import threading

from .storage import FileDesc, FileType, Storage

__all__ = ["CountingStorage"]


class CountingStorage(Storage):
    """Wraps a storage and counts bytes passing through its readers and writers."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self._mu = threading.Lock()
        self._read = 0
        self._write = 0

    def _add_read(self, n: int) -> None:
        with self._mu:
            self._read += n

    def _add_write(self, n: int) -> None:
        with self._mu:
            self._write += n

    def reads(self) -> int:
        """Total bytes read so far."""
        with self._mu:
            return self._read

    def writes(self) -> int:
        """Total bytes written so far."""
        with self._mu:
            return self._write

    def open(self, fd: FileDesc):
        return _CountingReader(self._storage.open(fd), self)

    def create(self, fd: FileDesc):
        return _CountingWriter(self._storage.create(fd), self)

    def lock(self):
        return self._storage.lock()

    def log(self, message: str) -> None:
        self._storage.log(message)

    def set_meta(self, fd: FileDesc) -> None:
        self._storage.set_meta(fd)

    def get_meta(self) -> FileDesc:
        return self._storage.get_meta()

    def list(self, file_type: FileType) -> list[FileDesc]:
        return self._storage.list(file_type)

    def remove(self, fd: FileDesc) -> None:
        self._storage.remove(fd)

    def rename(self, old_fd: FileDesc, new_fd: FileDesc) -> None:
        self._storage.rename(old_fd, new_fd)

    def close(self) -> None:
        self._storage.close()


class _CountingReader:
    def __init__(self, reader, owner: CountingStorage) -> None:
        self._reader = reader
        self._owner = owner

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        self._owner._add_read(len(data))
        return data

    def read_at(self, size: int, offset: int) -> bytes:
        data = self._reader.read_at(size, offset)
        self._owner._add_read(len(data))
        return data

    def seek(self, offset: int, whence: int = 0) -> int:
        return self._reader.seek(offset, whence)

    def close(self) -> None:
        self._reader.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class _CountingWriter:
    def __init__(self, writer, owner: CountingStorage) -> None:
        self._writer = writer
        self._owner = owner

    def write(self, data: bytes) -> int:
        n = self._writer.write(data)
        self._owner._add_write(n)
        return n

    def sync(self) -> None:
        self._writer.sync()

    def close(self) -> None:
        self._writer.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()