"""Stylesheet property patching with backup and rollback."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from visualheal.core.errors import InvalidStateError, NotFoundError
from visualheal.core.fsutil import atomic_write_text, with_io_retry
from visualheal.core.locking import file_lock
from visualheal.core.models import PatchOperation, PatchOutcome, PropertyLocation
from visualheal.css.locator import decode_stylesheet, locate_property
from visualheal.fix.backup import BackupManager

logger = logging.getLogger(__name__)

# Characters that would end the declaration or the rule, or shift line numbers.
FORBIDDEN_VALUE_CHARS = frozenset(";{}\n\r")


def splice_value(location: PropertyLocation, new_value: str) -> str:
    """Return the located line with only its value segment replaced."""
    raw = location.raw_line
    return raw[:location.value_start] + new_value + raw[location.value_end:]


class PatchApplier:
    """Mutates one property value per call, backing up the file first.

    The file is either fully rewritten with the patched content or left
    byte-identical; the write goes through a temp file and a rename, and
    the whole read-locate-backup-write sequence holds the file's lock.
    """

    def __init__(self, backups: BackupManager, dry_run: bool = False):
        self.backups = backups
        self.dry_run = dry_run

    def update_property(
        self,
        file: Path,
        selector: str,
        prop: str,
        new_value: str,
        patch_id: str | None = None,
    ) -> PatchOperation:
        """Set ``prop`` in the rule for ``selector`` to ``new_value``.

        Raises ``NotFoundError`` (file untouched) when the selector or the
        property is absent, ``InvalidStateError`` when *new_value* would
        break out of the declaration, and ``CorruptStateError`` when the file
        is not UTF-8.
        """
        file = Path(file)
        patch_id = patch_id or uuid.uuid4().hex[:12]
        new_value = new_value.strip()
        if FORBIDDEN_VALUE_CHARS.intersection(new_value):
            raise InvalidStateError(
                f"Refusing value {new_value!r}: it may not contain \";\", braces or line breaks",
                selector=selector,
                property=prop,
                path=file,
            )
        if not file.is_file():
            raise NotFoundError(f"Stylesheet not found: {file}", selector=selector, property=prop, path=file)

        with file_lock(file, lock_dir=self.backups.lock_dir):
            data = with_io_retry(file.read_bytes, file, action="read")
            content = decode_stylesheet(file, data)
            location = locate_property(file, selector, prop, text=content)
            old_value = location.value

            lines = content.split("\n")
            lines[location.line - 1] = splice_value(location, new_value)
            new_content = "\n".join(lines)

            if self.dry_run:
                logger.info(
                    "DRY RUN: would set %s { %s } in %s:%d from %r to %r",
                    selector, prop, file, location.line, old_value, new_value,
                )
                return PatchOperation(
                    id=patch_id,
                    location=location,
                    old_value=old_value,
                    new_value=new_value,
                    backup=None,
                    dry_run=True,
                )

            backup = self.backups.snapshot(patch_id, [file])[0]
            with_io_retry(lambda: atomic_write_text(file, new_content), file)

        logger.info(
            "Patched %s { %s } in %s:%d: %r -> %r",
            selector, prop, file, location.line, old_value, new_value,
        )
        return PatchOperation(
            id=patch_id,
            location=location,
            old_value=old_value,
            new_value=new_value,
            backup=backup,
        )

    def rollback(self, operation: PatchOperation) -> PatchOperation:
        """Restore the patched file from its backup."""
        if operation.outcome is PatchOutcome.ROLLED_BACK:
            return operation
        if operation.dry_run:
            operation.outcome = PatchOutcome.ROLLED_BACK
            return operation
        if operation.backup is None:
            raise InvalidStateError(
                f"Patch {operation.id} has no backup to restore from",
                patch_id=operation.id,
                path=operation.file,
            )

        self.backups.restore(operation.backup)
        operation.outcome = PatchOutcome.ROLLED_BACK
        logger.info("Rolled back patch %s on %s:%d", operation.id, operation.file, operation.line)
        return operation

    def release(self, operation: PatchOperation) -> None:
        """Retire the backup once the patch reached a terminal outcome."""
        if operation.backup is not None and not operation.backup.released:
            self.backups.release(operation.backup)
