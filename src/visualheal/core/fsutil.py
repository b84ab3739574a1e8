"""Atomic file writes and the single-retry policy for transient I/O errors."""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, TypeVar

from visualheal.core.errors import StorageIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# errno values worth a second attempt; anything else is surfaced immediately.
TRANSIENT_ERRNOS = frozenset({errno.EAGAIN, errno.EBUSY, errno.EINTR, errno.ETIMEDOUT})
RETRY_DELAY_SECONDS = 0.05


def is_transient(exc: OSError) -> bool:
    return exc.errno in TRANSIENT_ERRNOS


def with_io_retry(fn: Callable[[], T], path: Path | str, action: str = "write") -> T:
    """Run *fn*, retrying once on a transient OSError.

    A second failure, or any non-transient failure, is re-raised as a
    :class:`StorageIOError` naming *path*.
    """
    try:
        return fn()
    except StorageIOError:
        raise
    except OSError as exc:
        if not is_transient(exc):
            raise StorageIOError(f"Failed to {action} {path}: {exc.strerror or exc}", path=path) from exc
        logger.warning("Transient error during %s of %s (%s); retrying once", action, path, exc)

    time.sleep(RETRY_DELAY_SECONDS)
    try:
        return fn()
    except OSError as exc:
        raise StorageIOError(f"Failed to {action} {path} after retry: {exc.strerror or exc}", path=path) from exc


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write *data* to a temp file next to *path*, then rename over it.

    Readers observe either the old content or the new content, never a
    partially written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if path.exists():
            shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    atomic_write_bytes(path, text.encode(encoding))


def atomic_copy(src: Path, dst: Path) -> None:
    """Copy *src* over *dst* through a temp file and rename."""
    atomic_write_bytes(dst, src.read_bytes())
