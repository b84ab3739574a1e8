"""Tests for stylesheet patching, backup and rollback."""

from __future__ import annotations

import errno
import os
from pathlib import Path

import pytest

from visualheal.core.errors import CorruptStateError, InvalidStateError, NotFoundError, StorageIOError
from visualheal.core.models import PatchOutcome
from visualheal.css.patcher import PatchApplier
from visualheal.fix.backup import BackupManager


STYLES = ".btn-primary {\n    background-color: #3498db;\n}\n"


@pytest.fixture
def stylesheet(tmp_path: Path) -> Path:
    path = tmp_path / "styles.css"
    path.write_text(STYLES)
    return path


@pytest.fixture
def backups(tmp_path: Path) -> BackupManager:
    return BackupManager(tmp_path / ".visualheal" / "backups")


@pytest.fixture
def patcher(backups: BackupManager) -> PatchApplier:
    return PatchApplier(backups)


class TestUpdateProperty:
    def test_exact_patch(self, patcher: PatchApplier, stylesheet: Path):
        op = patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")

        lines = stylesheet.read_text().split("\n")
        assert lines[1] == "    background-color: #2ecc71;"
        assert stylesheet.read_text() == STYLES.replace("#3498db", "#2ecc71")
        assert op.old_value == "#3498db"
        assert op.new_value == "#2ecc71"
        assert op.line == 2
        assert op.outcome is PatchOutcome.APPLIED

    def test_backup_holds_original_bytes(self, patcher: PatchApplier, stylesheet: Path):
        op = patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")
        assert op.backup_path.read_bytes() == STYLES.encode()

    def test_missing_selector_leaves_file_untouched(self, patcher: PatchApplier, stylesheet: Path, backups: BackupManager):
        before = stylesheet.read_bytes()
        with pytest.raises(NotFoundError):
            patcher.update_property(stylesheet, ".btn-secondary", "background-color", "#000")
        assert stylesheet.read_bytes() == before
        assert backups.list_entries() == []

    def test_missing_property_leaves_file_untouched(self, patcher: PatchApplier, stylesheet: Path):
        before = stylesheet.read_bytes()
        with pytest.raises(NotFoundError):
            patcher.update_property(stylesheet, ".btn-primary", "border", "0")
        assert stylesheet.read_bytes() == before

    def test_missing_file(self, patcher: PatchApplier, tmp_path: Path):
        with pytest.raises(NotFoundError):
            patcher.update_property(tmp_path / "gone.css", ".a", "color", "red")

    def test_crlf_line_endings_preserved(self, patcher: PatchApplier, tmp_path: Path):
        path = tmp_path / "win.css"
        path.write_bytes(b".a {\r\n  color: red;\r\n}\r\n")
        patcher.update_property(path, ".a", "color", "blue")
        assert path.read_bytes() == b".a {\r\n  color: blue;\r\n}\r\n"

    def test_only_value_segment_changes(self, patcher: PatchApplier, tmp_path: Path):
        path = tmp_path / "inline.css"
        path.write_text(".a { color: red; margin: 0 } /* note */\n")
        patcher.update_property(path, ".a", "margin", "4px")
        assert path.read_text() == ".a { color: red; margin: 4px } /* note */\n"

    def test_dry_run_does_not_write(self, backups: BackupManager, stylesheet: Path):
        op = PatchApplier(backups, dry_run=True).update_property(
            stylesheet, ".btn-primary", "background-color", "#2ecc71"
        )
        assert op.dry_run is True
        assert op.backup is None
        assert stylesheet.read_text() == STYLES

    def test_lock_sidecar_kept_in_state_dir(self, patcher: PatchApplier, stylesheet: Path, tmp_path: Path):
        patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")
        assert sorted(p.name for p in tmp_path.iterdir()) == [".visualheal", "styles.css"]
        assert len(list(patcher.backups.lock_dir.glob("*.lock"))) == 1


class TestRejectedPatches:
    @pytest.mark.parametrize("value", ["red; display: none", "red }", "{red", "red\n  color: blue"])
    def test_value_breaking_declaration_rejected(
        self, patcher: PatchApplier, stylesheet: Path, backups: BackupManager, value: str
    ):
        with pytest.raises(InvalidStateError):
            patcher.update_property(stylesheet, ".btn-primary", "background-color", value)
        assert stylesheet.read_text() == STYLES
        assert backups.list_entries() == []

    def test_non_utf8_stylesheet(self, patcher: PatchApplier, backups: BackupManager, tmp_path: Path):
        path = tmp_path / "legacy.css"
        original = ".a { content: \"caf\u00e9\"; color: red; }\n".encode("latin-1")
        path.write_bytes(original)

        with pytest.raises(CorruptStateError) as exc_info:
            patcher.update_property(path, ".a", "color", "blue")

        assert exc_info.value.details["path"] == path
        assert path.read_bytes() == original
        assert backups.list_entries() == []

    def test_failed_write_leaves_file_and_no_temp(
        self, patcher: PatchApplier, stylesheet: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ):
        real_replace = os.replace

        def failing_replace(src, dst):
            if Path(dst) == stylesheet:
                raise OSError(errno.EACCES, "Permission denied")
            return real_replace(src, dst)

        monkeypatch.setattr(os, "replace", failing_replace)
        with pytest.raises(StorageIOError):
            patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")

        assert stylesheet.read_bytes() == STYLES.encode()
        assert list(tmp_path.glob(".styles.css.*.tmp")) == []


class TestRollback:
    def test_restores_pre_patch_bytes(self, patcher: PatchApplier, stylesheet: Path):
        op = patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")
        patcher.rollback(op)
        assert stylesheet.read_bytes() == STYLES.encode()
        assert op.outcome is PatchOutcome.ROLLED_BACK

    def test_rollback_twice_is_noop(self, patcher: PatchApplier, stylesheet: Path):
        op = patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")
        patcher.rollback(op)
        stylesheet.write_text("edited later")
        patcher.rollback(op)
        assert stylesheet.read_text() == "edited later"

    def test_release_marks_backup(self, patcher: PatchApplier, stylesheet: Path, backups: BackupManager):
        op = patcher.update_property(stylesheet, ".btn-primary", "background-color", "#2ecc71")
        patcher.release(op)
        assert op.backup.released is True
        assert backups.list_entries()[0].released is True
