"""Backup snapshots and undo support for stylesheet patches.

Each patch gets its own timestamped snapshot directory holding full
pre-mutation copies of every file it touches, plus a ``manifest.json``::

    <state>/backups/2026-10-19T14-03-11-052113/
        styles.css.bak
        manifest.json

A snapshot stays until its patch reached a terminal outcome (verified, or
rolled back); it is then *released* and becomes eligible for
:meth:`BackupManager.prune`.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime
from pathlib import Path

from visualheal.core.errors import NotFoundError
from visualheal.core.fsutil import atomic_write_bytes, atomic_write_text, with_io_retry
from visualheal.core.locking import file_lock
from visualheal.core.models import BackupEntry

logger = logging.getLogger(__name__)

MANIFEST = "manifest.json"


class BackupManager:
    """Creates, restores and retires pre-mutation file snapshots."""

    def __init__(self, backup_dir: Path, lock_dir: Path | None = None):
        self.backup_dir = Path(backup_dir)
        # Sidecars for user stylesheets live in the state dir, not beside the CSS.
        self.lock_dir = Path(lock_dir) if lock_dir else self.backup_dir.parent / "locks"

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, patch_id: str, files: list[Path]) -> list[BackupEntry]:
        """Copy every file in *files* into a fresh snapshot directory."""
        session = self._new_session_dir()
        timestamp = session.name
        entries = []

        for file_path in files:
            backup_file = session / f"{file_path.name}.bak"
            counter = 1
            while backup_file.exists():
                backup_file = session / f"{file_path.name}.{counter}.bak"
                counter += 1
            content = with_io_retry(file_path.read_bytes, file_path, action="read")
            with_io_retry(lambda: atomic_write_bytes(backup_file, content), backup_file)
            entries.append(BackupEntry(
                patch_id=patch_id,
                file=file_path.resolve(),
                backup=backup_file,
                timestamp=timestamp,
            ))

        self._write_manifest(session, entries)
        logger.info("Backed up %d file(s) for patch %s in %s", len(entries), patch_id, session)
        return entries

    def restore(self, entry: BackupEntry) -> None:
        """Write the snapshot bytes back over the original file."""
        if not entry.backup.exists():
            raise NotFoundError(
                f"Backup file not found for {entry.patch_id}",
                patch_id=entry.patch_id,
                path=entry.backup,
            )
        content = entry.backup.read_bytes()
        with file_lock(entry.file, lock_dir=self.lock_dir):
            with_io_retry(lambda: atomic_write_bytes(entry.file, content), entry.file, action="restore")
        logger.info("Restored %s from %s", entry.file, entry.backup)

    def release(self, entry: BackupEntry) -> None:
        """Mark a snapshot as no longer needed for rollback."""
        session = entry.backup.parent
        manifest = self._read_manifest(session)
        for item in manifest:
            if item["patch_id"] == entry.patch_id and item["backup"] == str(entry.backup):
                item["released"] = True
        self._write_manifest_raw(session, manifest)
        entry.released = True

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def list_entries(self) -> list[BackupEntry]:
        """All recorded snapshots, newest first."""
        entries: list[BackupEntry] = []
        if not self.backup_dir.exists():
            return entries

        for session_dir in sorted(self.backup_dir.iterdir(), reverse=True):
            if not session_dir.is_dir():
                continue
            for item in self._read_manifest(session_dir):
                entries.append(BackupEntry(
                    patch_id=item["patch_id"],
                    file=Path(item["file"]),
                    backup=Path(item["backup"]),
                    timestamp=item["timestamp"],
                    released=item.get("released", False),
                ))
        return entries

    def undo(self, patch_id: str) -> BackupEntry:
        """Restore the most recent snapshot taken for *patch_id*."""
        for entry in self.list_entries():
            if entry.patch_id == patch_id:
                self.restore(entry)
                return entry
        raise NotFoundError(f"No undo history for {patch_id}", patch_id=patch_id)

    def undo_last_session(self) -> list[BackupEntry]:
        """Restore every file from the most recent snapshot directory."""
        entries = self.list_entries()
        if not entries:
            return []
        latest = entries[0].timestamp
        restored = []
        for entry in entries:
            if entry.timestamp != latest:
                break
            self.restore(entry)
            restored.append(entry)
        return restored

    def prune(self, keep: int) -> int:
        """Delete released snapshot directories beyond the newest *keep*.

        Returns the number of directories removed. Snapshots that are not
        released are never deleted.
        """
        if not self.backup_dir.exists():
            return 0
        sessions = sorted((d for d in self.backup_dir.iterdir() if d.is_dir()), reverse=True)
        removed = 0
        for session in sessions[keep:]:
            manifest = self._read_manifest(session)
            if manifest and all(item.get("released") for item in manifest):
                shutil.rmtree(session)
                removed += 1
        if removed:
            logger.info("Pruned %d released backup snapshot(s)", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_session_dir(self) -> Path:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S-%f")
        session = self.backup_dir / timestamp
        counter = 1
        while session.exists():
            session = self.backup_dir / f"{timestamp}-{counter}"
            counter += 1
        session.mkdir(parents=True)
        return session

    def _read_manifest(self, session: Path) -> list[dict]:
        manifest_file = session / MANIFEST
        if not manifest_file.exists():
            return []
        try:
            data = json.loads(manifest_file.read_text())
        except ValueError:
            logger.warning("Ignoring unreadable backup manifest %s", manifest_file)
            return []
        return data if isinstance(data, list) else []

    def _write_manifest(self, session: Path, entries: list[BackupEntry]) -> None:
        manifest = self._read_manifest(session)
        manifest.extend(
            {
                "patch_id": e.patch_id,
                "file": str(e.file),
                "backup": str(e.backup),
                "timestamp": e.timestamp,
                "released": e.released,
            }
            for e in entries
        )
        self._write_manifest_raw(session, manifest)

    def _write_manifest_raw(self, session: Path, manifest: list[dict]) -> None:
        manifest_file = session / MANIFEST
        with file_lock(manifest_file):
            with_io_retry(
                lambda: atomic_write_text(manifest_file, json.dumps(manifest, indent=2)),
                manifest_file,
            )
