"""A file-system backed storage."""

from __future__ import annotations

import errno
import os
import re
import threading
from dataclasses import dataclass
from datetime import datetime

try:
    import fcntl
except ImportError:  # pragma: no cover - platforms without flock
    fcntl = None

from .storage import (
    ClosedError,
    CorruptedError,
    FileDesc,
    FileType,
    InvalidFileError,
    LockedError,
    ReadOnlyError,
    Storage,
    file_desc_ok,
    is_corrupted,
)

__all__ = [
    "FileStorage",
    "FileStorageLock",
    "FileHandle",
    "open_file",
    "gen_name",
    "gen_old_name",
    "has_old_name",
    "parse_name",
]

_LOG_SIZE_THRESHOLD = 1024 * 1024
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_NUMBERED_RE = re.compile(r"([+-]?[0-9]+)\.(\S+)")
_MANIFEST_RE = re.compile(r"MANIFEST-([+-]?[0-9]+)\s*\Z")
_TAIL_TYPES = {
    "log": FileType.JOURNAL,
    "ldb": FileType.TABLE,
    "sst": FileType.TABLE,
    "tmp": FileType.TEMP,
}


def gen_name(fd: FileDesc) -> str:
    """Return the file name used for fd."""
    kind = int(fd.type)
    if kind == FileType.MANIFEST:
        return f"MANIFEST-{fd.num:06d}"
    if kind == FileType.JOURNAL:
        return f"{fd.num:06d}.log"
    if kind == FileType.TABLE:
        return f"{fd.num:06d}.ldb"
    if kind == FileType.TEMP:
        return f"{fd.num:06d}.tmp"
    raise ValueError("invalid file type")


def has_old_name(fd: FileDesc) -> bool:
    """Return True if fd may also exist under a legacy name."""
    return int(fd.type) == FileType.TABLE


def gen_old_name(fd: FileDesc) -> str:
    """Return the legacy file name for fd."""
    if int(fd.type) == FileType.TABLE:
        return f"{fd.num:06d}.sst"
    return gen_name(fd)


def _parse_int64(text: str) -> int | None:
    value = int(text)
    if _INT64_MIN <= value <= _INT64_MAX:
        return value
    return None


def parse_name(name: str) -> FileDesc | None:
    """Parse a storage file name; return None if it is not one."""
    m = _NUMBERED_RE.match(name)
    if m is not None:
        num = _parse_int64(m.group(1))
        if num is None:
            return None
        file_type = _TAIL_TYPES.get(m.group(2))
        if file_type is None:
            return None
        return FileDesc(file_type, num)
    m = _MANIFEST_RE.match(name)
    if m is not None:
        num = _parse_int64(m.group(1))
        if num is not None:
            return FileDesc(FileType.MANIFEST, num)
    return None


def _write_file_synced(path: str, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())


def _sync_dir(path: str) -> None:
    if os.name == "nt":
        return
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    except OSError as e:
        if e.errno != errno.EINVAL:
            raise
    finally:
        os.close(fd)


class _FileLock:
    """Advisory lock on the storage's LOCK file."""

    def __init__(self, path: str, read_only: bool) -> None:
        flags = os.O_RDONLY if read_only else os.O_RDWR
        try:
            fd = os.open(path, flags)
        except FileNotFoundError:
            fd = os.open(path, flags | os.O_CREAT, 0o644)
        if fcntl is not None:
            how = fcntl.LOCK_SH if read_only else fcntl.LOCK_EX
            try:
                fcntl.flock(fd, how | fcntl.LOCK_NB)
            except OSError:
                os.close(fd)
                raise
        self._fd = fd

    def release(self) -> None:
        try:
            if fcntl is not None:
                fcntl.flock(self._fd, fcntl.LOCK_UN | fcntl.LOCK_NB)
        finally:
            os.close(self._fd)


def open_file(path: str | os.PathLike, read_only: bool = False) -> FileStorage:
    """Open a file-system storage at path, taking an exclusive (or shared) lock."""
    path = os.fspath(path)
    try:
        st = os.stat(path)
    except FileNotFoundError:
        if read_only:
            raise
        os.makedirs(path, 0o755, exist_ok=True)
    else:
        import stat as _stat

        if not _stat.S_ISDIR(st.st_mode):
            raise NotADirectoryError(f"storage: open {path}: not a directory")

    flock = _FileLock(os.path.join(path, "LOCK"), read_only)
    log_file = None
    log_size = 0
    if not read_only:
        try:
            log_file = open(os.path.join(path, "LOG"), "ab")
            log_size = log_file.seek(0, os.SEEK_END)
        except OSError:
            if log_file is not None:
                log_file.close()
            flock.release()
            raise
    return FileStorage(path, read_only, flock, log_file, log_size)


class FileStorageLock:
    """Lock held on a FileStorage."""

    def __init__(self, storage: FileStorage | None = None) -> None:
        self._storage = storage

    def unlock(self) -> None:
        """Release the lock if it is still the current one."""
        fs = self._storage
        if fs is None:
            return
        with fs._mu:
            if fs._slock is self:
                fs._slock = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.unlock()


@dataclass
class _Current:
    name: str
    fd: FileDesc


class FileStorage(Storage):
    """Storage keeping each file as a file in one directory."""

    def __init__(self, path: str, read_only: bool, flock: _FileLock, log_file, log_size: int) -> None:
        self._path = path
        self._read_only = read_only
        self._mu = threading.Lock()
        self._flock = flock
        self._slock: FileStorageLock | None = None
        self._log_file = log_file
        self._log_size = log_size
        self._open = 0
        self._day = 0

    @property
    def path(self) -> str:
        return self._path

    def _join(self, name: str) -> str:
        return os.path.join(self._path, name)

    def _check_open(self) -> None:
        if self._open < 0:
            raise ClosedError()

    def lock(self) -> FileStorageLock:
        with self._mu:
            self._check_open()
            if self._read_only:
                return FileStorageLock()
            if self._slock is not None:
                raise LockedError()
            self._slock = FileStorageLock(self)
            return self._slock

    # Logging.

    def _print_day(self, t: datetime) -> None:
        if self._day == t.day:
            return
        self._day = t.day
        tzname = t.astimezone().tzname() or "UTC"
        header = f"=============== {t:%b} {t.day}, {t.year} ({tzname}) ===============\n"
        self._log_file.write(header.encode())

    def _do_log(self, t: datetime, message: str) -> None:
        if self._log_size > _LOG_SIZE_THRESHOLD:
            self._log_file.close()
            self._log_file = None
            self._log_size = 0
            try:
                os.replace(self._join("LOG"), self._join("LOG.old"))
            except OSError:
                pass
        if self._log_file is None:
            try:
                self._log_file = open(self._join("LOG"), "ab")
            except OSError:
                return
            self._day = 0
        try:
            self._print_day(t)
            line = f"{t.hour:02d}:{t.minute:02d}:{t.second:02d}.{t.microsecond:06d} {message}\n"
            data = line.encode()
            self._log_file.write(data)
            self._log_file.flush()
        except OSError:
            return
        self._log_size += len(data)

    def _log(self, message: str) -> None:
        if not self._read_only:
            self._do_log(datetime.now(), message)

    def log(self, message: str) -> None:
        if self._read_only:
            return
        t = datetime.now()
        with self._mu:
            if self._open < 0:
                return
            self._do_log(t, message)

    # Meta.

    def _set_meta(self, fd: FileDesc) -> None:
        content = (gen_name(fd) + "\n").encode()
        current_path = self._join("CURRENT")
        try:
            with open(current_path, "rb") as f:
                old = f.read()
        except FileNotFoundError:
            pass
        except OSError as e:
            self._log(f"backup CURRENT: {e}")
            raise
        else:
            if old == content:
                return
            try:
                _write_file_synced(current_path + ".bak", old)
            except OSError as e:
                self._log(f"backup CURRENT: {e}")
                raise
        pending = f"{current_path}.{fd.num}"
        try:
            _write_file_synced(pending, content)
        except OSError as e:
            self._log(f"create CURRENT.{fd.num}: {e}")
            raise
        try:
            os.replace(pending, current_path)
        except OSError as e:
            self._log(f"rename CURRENT.{fd.num}: {e}")
            raise
        try:
            _sync_dir(self._path)
        except OSError as e:
            self._log(f"syncDir: {e}")
            raise

    def set_meta(self, fd: FileDesc) -> None:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        if self._read_only:
            raise ReadOnlyError()
        with self._mu:
            self._check_open()
            self._set_meta(fd)

    def _try_current(self, name: str) -> _Current:
        with open(self._join(name), "rb") as f:
            content = f.read()
        fd = None
        if content.endswith(b"\n"):
            try:
                fd = parse_name(content[:-1].decode())
            except UnicodeDecodeError:
                fd = None
        if fd is None:
            self._log(f"{name}: corrupted content: {content!r}")
            raise CorruptedError("storage: corrupted or incomplete CURRENT file")
        target = self._join(gen_name(fd))
        if not os.path.exists(target):
            self._log(f"{name}: missing target file: {fd}")
            raise FileNotFoundError(errno.ENOENT, "target file does not exist", target)
        os.stat(target)
        return _Current(name, fd)

    def _try_currents(self, names: list[str]) -> _Current:
        last_corrupted: CorruptedError | None = None
        for name in names:
            try:
                return self._try_current(name)
            except FileNotFoundError:
                continue
            except CorruptedError as e:
                last_corrupted = e
        if last_corrupted is not None:
            raise last_corrupted
        raise FileNotFoundError(errno.ENOENT, "no CURRENT file", self._path)

    def get_meta(self) -> FileDesc:
        with self._mu:
            self._check_open()
            names = os.listdir(self._path)

            nums = []
            for name in names:
                if name.startswith("CURRENT.") and name != "CURRENT.bak":
                    suffix = name[8:]
                    if re.fullmatch(r"[+-]?[0-9]+", suffix):
                        num = _parse_int64(suffix)
                        if num is not None:
                            nums.append(num)

            pend_cur: _Current | None = None
            pend_err: Exception = FileNotFoundError(errno.ENOENT, "no CURRENT file", self._path)
            pend_names: list[str] = []
            if nums:
                nums.sort(reverse=True)
                pend_names = [f"CURRENT.{num}" for num in nums]
                try:
                    pend_cur = self._try_currents(pend_names)
                except (FileNotFoundError, CorruptedError) as e:
                    pend_err = e

            cur: _Current | None
            cur_err: Exception | None = None
            try:
                cur = self._try_currents(["CURRENT", "CURRENT.bak"])
            except (FileNotFoundError, CorruptedError) as e:
                cur = None
                cur_err = e

            if pend_cur is not None and (cur is None or pend_cur.fd.num > cur.fd.num):
                cur = pend_cur

            if cur is not None:
                if not self._read_only and (cur.name != "CURRENT" or pend_names):
                    try:
                        self._set_meta(cur.fd)
                    except OSError:
                        pass
                    else:
                        for name in pend_names:
                            try:
                                os.remove(self._join(name))
                            except OSError as e:
                                self._log(f"remove {name}: {e}")
                return cur.fd

            if is_corrupted(pend_err):
                raise pend_err
            raise cur_err

    # Files.

    def list(self, file_type: FileType) -> list[FileDesc]:
        with self._mu:
            self._check_open()
            names = os.listdir(self._path)
        fds = (parse_name(name) for name in names)
        return [fd for fd in fds if fd is not None and fd.type & file_type]

    def open(self, fd: FileDesc) -> FileHandle:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        with self._mu:
            self._check_open()
            try:
                f = open(self._join(gen_name(fd)), "rb")
            except FileNotFoundError:
                if not has_old_name(fd):
                    raise
                f = open(self._join(gen_old_name(fd)), "rb")
            self._open += 1
            return FileHandle(self, fd, f)

    def create(self, fd: FileDesc) -> FileHandle:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        if self._read_only:
            raise ReadOnlyError()
        with self._mu:
            self._check_open()
            raw = os.open(self._join(gen_name(fd)), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            f = os.fdopen(raw, "wb")
            self._open += 1
            return FileHandle(self, fd, f)

    def remove(self, fd: FileDesc) -> None:
        if not file_desc_ok(fd):
            raise InvalidFileError()
        if self._read_only:
            raise ReadOnlyError()
        with self._mu:
            self._check_open()
            try:
                os.remove(self._join(gen_name(fd)))
            except FileNotFoundError as err:
                if not has_old_name(fd):
                    self._log(f"remove {fd}: {err}")
                    raise
                try:
                    os.remove(self._join(gen_old_name(fd)))
                except FileNotFoundError:
                    raise err from None
                except OSError as e1:
                    self._log(f"remove {fd}: {err} (old name)")
                    raise e1 from None
            except OSError as err:
                self._log(f"remove {fd}: {err}")
                raise

    def rename(self, old_fd: FileDesc, new_fd: FileDesc) -> None:
        if not file_desc_ok(old_fd) or not file_desc_ok(new_fd):
            raise InvalidFileError()
        if old_fd == new_fd:
            return
        if self._read_only:
            raise ReadOnlyError()
        with self._mu:
            self._check_open()
            os.replace(self._join(gen_name(old_fd)), self._join(gen_name(new_fd)))

    def close(self) -> None:
        with self._mu:
            self._check_open()
            if self._open > 0:
                self._log(f"close: warning, {self._open} files still open")
            self._open = -1
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
            self._flock.release()


class FileHandle:
    """An open file of a FileStorage, for reading or for writing."""

    def __init__(self, storage: FileStorage, fd: FileDesc, file) -> None:
        self._storage = storage
        self._fd = fd
        self._file = file
        self._closed = False

    @property
    def fd(self) -> FileDesc:
        return self._fd

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes from the current position."""
        return self._file.read(size)

    def read_at(self, size: int, offset: int) -> bytes:
        """Read up to size bytes at offset without moving the position."""
        if offset < 0:
            raise ValueError("negative offset")
        if hasattr(os, "pread"):
            chunks = []
            remaining = size
            pos = offset
            while remaining > 0:
                chunk = os.pread(self._file.fileno(), remaining, pos)
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
                pos += len(chunk)
            return b"".join(chunks)
        saved = self._file.tell()
        try:
            self._file.seek(offset)
            return self._file.read(size)
        finally:
            self._file.seek(saved)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the position and return it."""
        return self._file.seek(offset, whence)

    def write(self, data: bytes) -> int:
        """Write data and return the number of bytes written."""
        return self._file.write(data)

    def sync(self) -> None:
        """Commit the file to stable storage; manifests also sync the directory."""
        self._file.flush()
        os.fsync(self._file.fileno())
        if int(self._fd.type) == FileType.MANIFEST:
            try:
                _sync_dir(self._storage._path)
            except OSError as e:
                self._storage._log(f"syncDir: {e}")
                raise

    def close(self) -> None:
        fs = self._storage
        with fs._mu:
            if self._closed:
                raise ClosedError()
            self._closed = True
            fs._open -= 1
            try:
                self._file.close()
            except OSError as e:
                fs._log(f"close {self._fd}: {e}")
                raise

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._closed:
            self.close()