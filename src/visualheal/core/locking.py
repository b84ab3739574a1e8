"""Scoped exclusive locks keyed by file identity.

Every read-modify-write against a shared file (confirmation store,
stylesheet, knowledge base) runs inside :func:`file_lock`. Writes are
serialised through a per-path ``threading.RLock`` *and* an ``fcntl``
advisory lock on a sidecar ``.lock`` file (kept in *lock_dir* when one is
given) so that processes sharing the same project directory will not
interleave.
"""

from __future__ import annotations

import fcntl
import hashlib
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class _PathLock:
    def __init__(self) -> None:
        self.rlock = threading.RLock()
        self.depth = 0
        self.fd: int | None = None


_registry: dict[str, _PathLock] = {}
_registry_lock = threading.Lock()


def _lock_for(key: str) -> _PathLock:
    with _registry_lock:
        lock = _registry.get(key)
        if lock is None:
            lock = _PathLock()
            _registry[key] = lock
        return lock


def lock_file_path(target: Path, lock_dir: Path | None = None) -> Path:
    """Return the sidecar lock file guarding *target*.

    With *lock_dir*, the sidecar is named by a hash of the resolved path and
    kept there, so nothing is written beside files the tool does not own.
    """
    if lock_dir is not None:
        digest = hashlib.sha256(str(Path(target).resolve()).encode("utf-8")).hexdigest()
        return Path(lock_dir) / f"{digest[:32]}.lock"
    if target.is_dir():
        return target / ".lock"
    return target.parent / f".{target.name}.lock"


@contextmanager
def file_lock(target: Path, lock_dir: Path | None = None) -> Iterator[None]:
    """Hold an exclusive lock on *target* for the duration of the block.

    Re-entrant within a thread; the OS-level lock is taken only by the
    outermost holder and released on every exit path, including errors.
    """
    resolved = Path(target).resolve()
    state = _lock_for(str(resolved))
    with state.rlock:
        if state.depth == 0:
            sidecar = lock_file_path(resolved, lock_dir)
            sidecar.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(sidecar, os.O_RDWR | os.O_CREAT, 0o644)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
            except OSError:
                os.close(fd)
                raise
            state.fd = fd
        state.depth += 1
        try:
            yield
        finally:
            state.depth -= 1
            if state.depth == 0 and state.fd is not None:
                fd, state.fd = state.fd, None
                try:
                    fcntl.flock(fd, fcntl.LOCK_UN)
                finally:
                    os.close(fd)
