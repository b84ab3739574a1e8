"""Tests for atomic writes, the I/O retry policy and the error taxonomy."""

from __future__ import annotations

import errno
from pathlib import Path

import pytest

from visualheal.core.errors import (
    ArtifactNotFoundError,
    NotFoundError,
    RunInProgressError,
    InvalidStateError,
    StorageIOError,
    VisualHealError,
)
from visualheal.core.fsutil import atomic_copy, atomic_write_text, with_io_retry


class TestErrors:
    def test_details_rendered_in_message(self):
        exc = NotFoundError("Selector not found", selector=".btn", path="a.css")
        assert str(exc) == "Selector not found (selector=.btn, path=a.css)"
        assert exc.details == {"selector": ".btn", "path": "a.css"}

    def test_none_details_dropped(self):
        exc = VisualHealError("boom", line=None)
        assert str(exc) == "boom"

    def test_hierarchy(self):
        assert issubclass(ArtifactNotFoundError, NotFoundError)
        assert issubclass(RunInProgressError, InvalidStateError)
        assert issubclass(StorageIOError, OSError)

    def test_storage_error_keeps_path(self, tmp_path: Path):
        exc = StorageIOError("Failed", path=tmp_path / "x.json")
        assert exc.path == tmp_path / "x.json"
        assert "x.json" in str(exc)


class TestAtomicWrite:
    def test_writes_content(self, tmp_path: Path):
        target = tmp_path / "sub" / "file.txt"
        atomic_write_text(target, "hello")
        assert target.read_text() == "hello"

    def test_leaves_no_temp_files(self, tmp_path: Path):
        target = tmp_path / "file.txt"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]
        assert target.read_text() == "two"

    def test_copy(self, tmp_path: Path):
        src = tmp_path / "a.bin"
        src.write_bytes(b"\x00\x01")
        dst = tmp_path / "b" / "c.bin"
        atomic_copy(src, dst)
        assert dst.read_bytes() == b"\x00\x01"


class TestIORetry:
    def test_retries_once_on_transient_error(self, tmp_path: Path):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise OSError(errno.EAGAIN, "try again")
            return "ok"

        assert with_io_retry(flaky, tmp_path / "f") == "ok"
        assert len(calls) == 2

    def test_gives_up_after_second_failure(self, tmp_path: Path):
        calls = []

        def always_busy():
            calls.append(1)
            raise OSError(errno.EBUSY, "busy")

        with pytest.raises(StorageIOError) as exc_info:
            with_io_retry(always_busy, tmp_path / "f")
        assert len(calls) == 2
        assert exc_info.value.path == tmp_path / "f"

    def test_permanent_error_not_retried(self, tmp_path: Path):
        calls = []

        def denied():
            calls.append(1)
            raise PermissionError(errno.EACCES, "denied")

        with pytest.raises(StorageIOError):
            with_io_retry(denied, tmp_path / "f", action="read")
        assert len(calls) == 1
