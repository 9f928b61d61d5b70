"""Storage abstraction: file types, file descriptors, errors and the storage interface."""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass

__all__ = [
    "FileType",
    "FileDesc",
    "StorageError",
    "InvalidFileError",
    "LockedError",
    "ClosedError",
    "FileOpenError",
    "ReadOnlyError",
    "CorruptedError",
    "Storage",
    "file_desc_ok",
    "is_corrupted",
]


class FileType(enum.IntFlag):
    """Kind of a file kept by a storage; values may be OR'ed together."""

    MANIFEST = 1
    JOURNAL = 2
    TABLE = 4
    TEMP = 8
    ALL = MANIFEST | JOURNAL | TABLE | TEMP

    def __str__(self) -> str:
        name = _TYPE_NAMES.get(int(self))
        if name is not None:
            return name
        return f"<unknown:{int(self)}>"


_TYPE_NAMES = {
    1: "manifest",
    2: "journal",
    4: "table",
    8: "temp",
}

_VALID_TYPES = frozenset(_TYPE_NAMES)


@dataclass(frozen=True)
class FileDesc:
    """Identifies a file by its type and number."""

    type: FileType = FileType(0)
    num: int = 0

    def __str__(self) -> str:
        kind = int(self.type)
        if kind == FileType.MANIFEST:
            return f"MANIFEST-{self.num:06d}"
        if kind == FileType.JOURNAL:
            return f"{self.num:06d}.log"
        if kind == FileType.TABLE:
            return f"{self.num:06d}.ldb"
        if kind == FileType.TEMP:
            return f"{self.num:06d}.tmp"
        return f"{kind:#x}-{self.num}"

    def is_zero(self) -> bool:
        """Return True if this is the empty descriptor."""
        return int(self.type) == 0 and self.num == 0


def file_desc_ok(fd: FileDesc) -> bool:
    """Return True if fd has a known single type and a non-negative number."""
    return int(fd.type) in _VALID_TYPES and fd.num >= 0


class StorageError(Exception):
    """Base class of storage errors."""


class InvalidFileError(StorageError):
    """The file descriptor given as argument is invalid."""

    def __init__(self, message: str = "storage: invalid file for argument") -> None:
        super().__init__(message)


class LockedError(StorageError):
    """The storage is already locked."""

    def __init__(self, message: str = "storage: already locked") -> None:
        super().__init__(message)


class ClosedError(StorageError):
    """The storage or file is closed."""

    def __init__(self, message: str = "storage: closed") -> None:
        super().__init__(message)


class FileOpenError(StorageError):
    """The file is still open."""

    def __init__(self, message: str = "storage: file still open") -> None:
        super().__init__(message)


class ReadOnlyError(StorageError):
    """The storage is read-only."""

    def __init__(self, message: str = "storage: storage is read-only") -> None:
        super().__init__(message)


class CorruptedError(StorageError):
    """A file is corrupted."""

    def __init__(self, err: object, fd: FileDesc | None = None) -> None:
        self.err = err
        self.fd = fd if fd is not None else FileDesc()
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.fd.is_zero():
            return f"{self.err} [file={self.fd}]"
        return str(self.err)


def is_corrupted(err: object) -> bool:
    """Return True if err is a storage corruption error."""
    return isinstance(err, CorruptedError)


class Storage(abc.ABC):
    """A storage; implementations must be safe for concurrent use.

    Readers returned by open() provide read, read_at, seek and close.
    Writers returned by create() provide write, sync and close.
    Lockers returned by lock() provide unlock.
    """

    @abc.abstractmethod
    def lock(self):
        """Lock the storage; raises LockedError while another lock is held."""

    @abc.abstractmethod
    def log(self, message: str) -> None:
        """Log a message."""

    @abc.abstractmethod
    def set_meta(self, fd: FileDesc) -> None:
        """Atomically store fd so that get_meta returns it."""

    @abc.abstractmethod
    def get_meta(self) -> FileDesc:
        """Return the stored descriptor; raises FileNotFoundError if there is none."""

    @abc.abstractmethod
    def list(self, file_type: FileType) -> list[FileDesc]:
        """Return descriptors whose type matches file_type."""

    @abc.abstractmethod
    def open(self, fd: FileDesc):
        """Open the file read-only; raises FileNotFoundError if missing."""

    @abc.abstractmethod
    def create(self, fd: FileDesc):
        """Create or truncate the file and open it write-only."""

    @abc.abstractmethod
    def remove(self, fd: FileDesc) -> None:
        """Remove the file."""

    @abc.abstractmethod
    def rename(self, old_fd: FileDesc, new_fd: FileDesc) -> None:
        """Rename old_fd to new_fd."""

    @abc.abstractmethod
    def close(self) -> None:
        """Close the storage."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()