"""Local filesystem collaborator.

All paths handed to ``LocalFileSystem`` are relative to its root. Writes go
through a temp file and ``os.replace`` so a reader never sees a partial
record.
"""
import os
import shutil
import logging
import tempfile
import threading
from pathlib import Path
from typing import Union

logger = logging.getLogger("navigator.securestore")

RelPath = Union[str, Path]

_ROOT_LOCKS: dict[str, threading.RLock] = {}
_ROOT_LOCKS_GUARD = threading.Lock()


def root_lock(root: Path) -> threading.RLock:
    """Return the coarse lock shared by every store on ``root``."""
    key = os.path.normcase(str(Path(root).resolve()))
    with _ROOT_LOCKS_GUARD:
        lock = _ROOT_LOCKS.get(key)
        if lock is None:
            lock = _ROOT_LOCKS[key] = threading.RLock()
        return lock


class LocalFileSystem:
    """Byte-level file access below a fixed root directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.lock = root_lock(self.root)

    def __repr__(self) -> str:
        return f"<LocalFileSystem root={str(self.root)!r}>"

    def path(self, rel: RelPath) -> Path:
        return self.root / rel

    def exists(self, rel: RelPath) -> bool:
        return self.path(rel).is_file()

    def dir_exists(self, rel: RelPath) -> bool:
        return self.path(rel).is_dir()

    def makedirs(self, rel: RelPath) -> None:
        self.path(rel).mkdir(parents=True, exist_ok=True)

    def read_bytes(self, rel: RelPath) -> bytes:
        return self.path(rel).read_bytes()

    def write_bytes(self, rel: RelPath, payload: bytes) -> None:
        """Atomically replace the file at ``rel`` with ``payload``."""
        target = self.path(rel)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
        )
        try:
            with os.fdopen(tmp_fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def delete(self, rel: RelPath) -> bool:
        """Delete a file; returns False when it did not exist."""
        try:
            self.path(rel).unlink()
        except FileNotFoundError:
            return False
        return True

    def list_files(self, rel: RelPath, suffix: str) -> list[str]:
        """Return sorted file stems in ``rel`` ending with ``suffix``."""
        folder = self.path(rel)
        if not folder.is_dir():
            return []
        names = [
            entry.name[:-len(suffix)] if suffix else entry.name
            for entry in folder.iterdir()
            if entry.is_file()
            and entry.name.endswith(suffix)
        ]
        return sorted(names)

    def remove_tree(self, rel: RelPath) -> bool:
        """Recursively delete a directory; returns False when it did not exist."""
        folder = self.path(rel)
        if not folder.is_dir():
            return False
        shutil.rmtree(folder)
        logger.debug("Removed tree %s", folder)
        return True
