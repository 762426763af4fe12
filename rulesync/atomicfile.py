"""
atomicfile.py - Single-Writer / Multiple-Reader Replaceable File

A mirror file is rewritten while other parts of the application may be
reading the previous version. Writes therefore never touch the target path
directly:

    1. begin_write() creates a private staging file next to the target
    2. the caller streams the new content into WriteHandle.path
    3. commit() fsyncs the staging file and os.replace()s it over the target
       (a single atomic rename), then fsyncs the directory
    4. abandon() removes the staging file and leaves the target untouched

Readers get a plain binary file object from open_read(). On POSIX an open
file keeps referring to the same inode after the path is replaced, so a
reader that started before a commit finishes reading the old content.

Only one write may be staged per target path at a time. AtomicReplaceFile
instances that share a WriteRegistry exclude each other by resolved path; a
second begin_write() raises ConcurrentWriteConflict instead of blocking.
Staging files older than STALE_STAGING_AGE that nobody holds are leftovers
of a crashed writer and are removed by the next begin_write().
"""
from __future__ import annotations

import glob
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import BinaryIO, Final, NamedTuple

from rulesync.errors import ConcurrentWriteConflict, IOFailure

logger = logging.getLogger(__name__)

STAGING_SUFFIX: Final[str] = ".new"
STALE_STAGING_AGE: Final[float] = 3600.0


class WriteHandle(NamedTuple):
    """A staged write. Content goes to `path` until commit or abandon."""
    path: Path
    target: Path


class WriteRegistry:
    """Target paths that currently have a staged write."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._targets: set[Path] = set()

    def claim(self, target: Path) -> bool:
        with self._lock:
            if target in self._targets:
                return False
            self._targets.add(target)
            return True

    def release(self, target: Path) -> None:
        with self._lock:
            self._targets.discard(target)


def _fsync_directory(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except OSError:
        pass


class AtomicReplaceFile:
    """
    Replaceable file wrapping one target path.

    Args:
        path: The target file
        registry: Shared write registry. Without one, exclusion only covers
                  this instance.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        registry: WriteRegistry | None = None,
    ) -> None:
        self.path = Path(path)
        self.registry = registry or WriteRegistry()
        self._key = Path(os.path.abspath(self.path))
        self._lock = threading.Lock()
        self._active: WriteHandle | None = None

    def __repr__(self) -> str:
        return f"AtomicReplaceFile({str(self.path)!r})"

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def open_read(self) -> BinaryIO:
        """Open the currently committed content. Raises OSError if absent."""
        return open(self.path, "rb")

    def last_modified(self) -> float:
        """Modification time of the committed content, 0.0 if there is none."""
        try:
            return self.path.stat().st_mtime
        except OSError:
            return 0.0

    def set_last_modified(self, timestamp: float) -> bool:
        """Set the modification time. Returns False if the filesystem refuses."""
        try:
            os.utime(self.path, (timestamp, timestamp))
        except OSError as e:
            logger.debug("Could not set mtime of %s: %s", self.path, e)
            return False
        return True

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def begin_write(self) -> WriteHandle:
        """
        Create a staging file for new content.

        Raises:
            ConcurrentWriteConflict: Another write to the same path is staged
            IOFailure: The target directory is not writable
        """
        with self._lock:
            if self._active is not None or not self.registry.claim(self._key):
                raise ConcurrentWriteConflict(
                    f"A write to {self.path} is already in progress"
                )
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._remove_stale_staging()
                fd, staging = tempfile.mkstemp(
                    prefix=f".{self.path.name}.",
                    suffix=STAGING_SUFFIX,
                    dir=self.path.parent,
                )
                os.close(fd)
            except OSError as e:
                self.registry.release(self._key)
                raise IOFailure(f"Cannot stage write for {self.path}: {e}") from e
            self._active = WriteHandle(Path(staging), self.path)
            return self._active

    def commit(self, handle: WriteHandle) -> None:
        """
        Make the staged content the new content of the target.

        If this raises IOFailure the write is still staged and the caller
        is expected to abandon() it.
        """
        self._check_active(handle)
        try:
            fd = os.open(str(handle.path), os.O_RDONLY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
            os.replace(handle.path, self.path)
        except OSError as e:
            raise IOFailure(f"Cannot commit {self.path}: {e}") from e
        self._release()
        _fsync_directory(self.path.parent)

    def abandon(self, handle: WriteHandle) -> None:
        """Discard the staged content. No-op for a handle that is not active."""
        with self._lock:
            if handle != self._active:
                return
        try:
            handle.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove staging file %s: %s", handle.path, e)
        self._release()

    def _release(self) -> None:
        with self._lock:
            self._active = None
            self.registry.release(self._key)

    def _check_active(self, handle: WriteHandle) -> None:
        with self._lock:
            if handle != self._active:
                raise ValueError(f"{handle.path} is not the active write for {self.path}")

    def _remove_stale_staging(self) -> None:
        # Called with the registry claim held, so no writer in this process
        # owns a staging file for this target.
        cutoff = time.time() - STALE_STAGING_AGE
        for leftover in self.path.parent.glob(f".{glob.escape(self.path.name)}.*{STAGING_SUFFIX}"):
            try:
                if leftover.stat().st_mtime < cutoff:
                    leftover.unlink()
                    logger.info("Removed stale staging file %s", leftover)
            except OSError as e:
                logger.debug("Could not inspect staging file %s: %s", leftover, e)
