"""
Durable state for certificates and configuration.

Both the PKI authority and the configuration service persist their state
through a Store, so their logic runs the same against the real filesystem
and against the in-memory fake used in tests.
"""
import fcntl
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Optional, Tuple


LOCK_FILE = ".lock"


class Store(ABC):
    """Repository of small files addressed by relative posix keys."""

    def __init__(self, root):
        self.root = Path(root)

    def path(self, key: str) -> Path:
        """Absolute location of a key, used when external programs need a file path."""
        return self.root / PurePosixPath(key)

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return the stored bytes or None if the key is absent."""

    @abstractmethod
    def save(self, key: str, data: bytes, mode: int = 0o644) -> None:
        """Atomically replace the content of a key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key; returns False if it did not exist."""

    @abstractmethod
    def move(self, source: str, destination: str) -> None:
        ...

    @abstractmethod
    def list(self, directory: str, suffix: str = "") -> List[str]:
        """Keys directly inside a directory whose names end with suffix, sorted."""

    @abstractmethod
    def modified_at(self, key: str) -> Optional[datetime]:
        ...

    @abstractmethod
    def mode(self, key: str) -> Optional[int]:
        """Permission bits of a key, or None if absent."""

    @abstractmethod
    def ensure_dir(self, directory: str, mode: int = 0o755) -> None:
        ...

    @abstractmethod
    def lock(self):
        """Exclusive advisory lock held for the duration of a mutating operation."""

    def load_text(self, key: str) -> Optional[str]:
        data = self.load(key)
        return data.decode("utf-8") if data is not None else None

    def save_text(self, key: str, text: str, mode: int = 0o644) -> None:
        self.save(key, text.encode("utf-8"), mode)


class FileStore(Store):
    """Store backed by a directory on the local filesystem."""

    def __init__(self, root):
        super().__init__(root)
        self.logger = logging.getLogger(__name__)
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._lock_fd: Optional[int] = None

    def exists(self, key: str) -> bool:
        return self.path(key).is_file()

    def load(self, key: str) -> Optional[bytes]:
        try:
            return self.path(key).read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None

    def save(self, key: str, data: bytes, mode: int = 0o644) -> None:
        target = self.path(key)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            # Permissions are set before any secret byte is written
            os.fchmod(fd, mode)
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self, key: str) -> bool:
        try:
            self.path(key).unlink()
            return True
        except FileNotFoundError:
            return False

    def move(self, source: str, destination: str) -> None:
        target = self.path(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        os.replace(self.path(source), target)

    def list(self, directory: str, suffix: str = "") -> List[str]:
        base = self.path(directory)
        if not base.is_dir():
            return []
        names = sorted(entry.name for entry in base.iterdir()
                       if entry.is_file() and entry.name.endswith(suffix))
        return [str(PurePosixPath(directory) / name) for name in names]

    def modified_at(self, key: str) -> Optional[datetime]:
        try:
            stat = self.path(key).stat()
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

    def mode(self, key: str) -> Optional[int]:
        try:
            return self.path(key).stat().st_mode & 0o777
        except FileNotFoundError:
            return None

    def ensure_dir(self, directory: str, mode: int = 0o755) -> None:
        path = self.path(directory)
        path.mkdir(parents=True, exist_ok=True)
        os.chmod(path, mode)

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._thread_lock:
            if self._depth == 0:
                self.root.mkdir(parents=True, exist_ok=True)
                fd = os.open(str(self.root / LOCK_FILE), os.O_RDWR | os.O_CREAT, 0o600)
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX)
                except OSError:
                    os.close(fd)
                    raise
                self._lock_fd = fd
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0 and self._lock_fd is not None:
                    fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
                    os.close(self._lock_fd)
                    self._lock_fd = None


class MemoryStore(Store):
    """In-memory store for tests and dry runs."""

    def __init__(self, root="/memory"):
        super().__init__(root)
        self._files: Dict[str, Tuple[bytes, int, datetime]] = {}
        self._dirs: Dict[str, int] = {}
        self._lock = threading.RLock()
        self.lock_count = 0

    @staticmethod
    def _normalize(key: str) -> str:
        return str(PurePosixPath(key))

    def exists(self, key: str) -> bool:
        return self._normalize(key) in self._files

    def load(self, key: str) -> Optional[bytes]:
        entry = self._files.get(self._normalize(key))
        return entry[0] if entry else None

    def save(self, key: str, data: bytes, mode: int = 0o644) -> None:
        self._files[self._normalize(key)] = (bytes(data), mode, datetime.now(timezone.utc))

    def delete(self, key: str) -> bool:
        return self._files.pop(self._normalize(key), None) is not None

    def move(self, source: str, destination: str) -> None:
        entry = self._files.pop(self._normalize(source), None)
        if entry is None:
            raise FileNotFoundError(source)
        self._files[self._normalize(destination)] = entry

    def list(self, directory: str, suffix: str = "") -> List[str]:
        directory = PurePosixPath(directory)
        return sorted(key for key in self._files
                      if PurePosixPath(key).parent == directory and key.endswith(suffix))

    def modified_at(self, key: str) -> Optional[datetime]:
        entry = self._files.get(self._normalize(key))
        return entry[2] if entry else None

    def mode(self, key: str) -> Optional[int]:
        entry = self._files.get(self._normalize(key))
        return entry[1] if entry else None

    def ensure_dir(self, directory: str, mode: int = 0o755) -> None:
        self._dirs[self._normalize(directory)] = mode

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            self.lock_count += 1
            yield
