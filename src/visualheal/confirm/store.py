"""Persistent store of pending and processed confirmations.

The store is a single-writer component: every mutation reloads both
collections from disk under an exclusive lock on the store directory,
applies the change, and writes each file atomically before releasing the
lock. Two triggers deciding on the same record (a manual approval racing a
CI auto-approval, say) therefore serialise instead of losing an update.

Layout::

    <store_dir>/pending.json         id -> pending record
    <store_dir>/confirmations.json   id -> processed record
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from visualheal.core.artifacts import ArtifactStore
from visualheal.core.config import VisualHealConfig, get_state_dir, load_config
from visualheal.core.errors import (
    CorruptStateError,
    DuplicateIdError,
    InvalidStateError,
    NotFoundError,
)
from visualheal.core.fsutil import atomic_write_text, with_io_retry
from visualheal.core.locking import file_lock
from visualheal.core.models import (
    ConfirmationRecord,
    PendingConfirmation,
    ProcessedConfirmation,
    confirmation_from_dict,
)

logger = logging.getLogger(__name__)

PENDING_FILE = "pending.json"
PROCESSED_FILE = "confirmations.json"


class ConfirmationStore:
    """Records whether each detected visual diff was intended.

    Usage::

        store = ConfirmationStore.for_project(project_path)
        store.initialize()
        record = store.register_pending("form", "baseline/form.png", "current/form.png", 4.2)
        store.process_confirmation(record.id, True)
        store.update_baseline(record.id)
    """

    def __init__(self, store_dir: Path, artifacts: ArtifactStore):
        self.store_dir = Path(store_dir)
        self.artifacts = artifacts
        self.pending_path = self.store_dir / PENDING_FILE
        self.processed_path = self.store_dir / PROCESSED_FILE
        self._pending: dict[str, PendingConfirmation] = {}
        self._processed: dict[str, ProcessedConfirmation] = {}

    @classmethod
    def for_project(
        cls, project_path: Path, config: VisualHealConfig | None = None
    ) -> ConfirmationStore:
        config = config or load_config(project_path)
        state_dir = get_state_dir(project_path, config)
        artifacts = ArtifactStore(project_path / config.screenshots.directory)
        return cls(state_dir / "confirmations", artifacts)

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load persisted collections; corrupt files reset to empty with a warning."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        with file_lock(self.store_dir):
            self._load()
        logger.info(
            "Confirmation store initialized: %d pending, %d processed",
            len(self._pending),
            len(self._processed),
        )

    def _load(self) -> None:
        self._pending = self._load_collection(self.pending_path, PendingConfirmation)
        self._processed = self._load_collection(self.processed_path, ProcessedConfirmation)
        # A decision saved before its pending entry was dropped; processed wins.
        for record_id in set(self._pending) & set(self._processed):
            logger.warning("Record %s is both pending and processed; keeping the decision", record_id)
            del self._pending[record_id]

    def _load_collection(self, path: Path, expected: type) -> dict:
        try:
            return self._read_collection(path, expected)
        except CorruptStateError as exc:
            logger.warning("%s; starting with an empty collection", exc)
            return {}

    def _read_collection(self, path: Path, expected: type) -> dict:
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8") or "{}")
            if not isinstance(raw, dict):
                raise ValueError("top-level value is not an object")
            records = {}
            for key, value in raw.items():
                record = confirmation_from_dict(value)
                if not isinstance(record, expected):
                    raise ValueError(f"record {key} has status {record.status.value}")
                records[key] = record
            return records
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CorruptStateError(f"Unreadable confirmation file {path}: {exc}", path=path) from exc

    def _save(self) -> None:
        pending = {k: v.to_dict() for k, v in self._pending.items()}
        processed = {k: v.to_dict() for k, v in self._processed.items()}
        # Processed first: a failure between the writes leaves the record pending.
        with_io_retry(
            lambda: atomic_write_text(self.processed_path, json.dumps(processed, indent=2)),
            self.processed_path,
        )
        with_io_retry(
            lambda: atomic_write_text(self.pending_path, json.dumps(pending, indent=2)),
            self.pending_path,
        )

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Reload, mutate, save; all under the store lock."""
        self.store_dir.mkdir(parents=True, exist_ok=True)
        with file_lock(self.store_dir):
            self._load()
            yield
            self._save()

    def _refresh(self) -> None:
        self.store_dir.mkdir(parents=True, exist_ok=True)
        with file_lock(self.store_dir):
            self._load()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_pending(self, record: PendingConfirmation) -> PendingConfirmation:
        """Insert a new pending record. Fails on an id already in either map."""
        with self._transaction():
            if record.id in self._pending or record.id in self._processed:
                raise DuplicateIdError(f"Confirmation {record.id} already exists", record_id=record.id)
            self._pending[record.id] = record
        logger.info("Registered pending confirmation %s (%.2f%% diff)", record.id, record.diff_percentage)
        return record

    def register_pending(
        self,
        name: str,
        baseline_ref: str,
        current_ref: str,
        diff_percentage: float = 0.0,
        diff_pixel_count: int = 0,
        page_name: str = "",
        record_id: str | None = None,
    ) -> PendingConfirmation:
        """Build and insert a pending record, generating ``{name}-{epoch_ms}`` ids."""
        record = PendingConfirmation(
            id=record_id or f"{name}-{int(time.time() * 1000)}",
            name=name,
            baseline_ref=baseline_ref,
            current_ref=current_ref,
            diff_percentage=diff_percentage,
            diff_pixel_count=diff_pixel_count,
            page_name=page_name,
        )
        return self.add_pending(record)

    def process_confirmation(self, record_id: str, is_intended: bool) -> ProcessedConfirmation:
        """Move a record from pending to processed with its decision.

        Calling this again for an already processed id returns the stored
        decision unchanged.
        """
        with self._transaction():
            existing = self._processed.get(record_id)
            if existing is not None:
                if existing.is_intended != is_intended:
                    logger.warning(
                        "Confirmation %s already processed as is_intended=%s; ignoring %s",
                        record_id,
                        existing.is_intended,
                        is_intended,
                    )
                return existing

            pending = self._pending.pop(record_id, None)
            if pending is None:
                raise NotFoundError(f"No pending confirmation found with id {record_id}", record_id=record_id)

            processed = pending.confirm(is_intended).process()
            self._processed[record_id] = processed

        logger.info("Processed confirmation %s: %s", record_id, "intended" if is_intended else "regression")
        return processed

    def get_all_pending_confirmations(self) -> list[PendingConfirmation]:
        self._refresh()
        return list(self._pending.values())

    def get_all_processed_confirmations(self) -> list[ProcessedConfirmation]:
        self._refresh()
        return list(self._processed.values())

    def get_processed(self, record_id: str) -> ProcessedConfirmation | None:
        self._refresh()
        return self._processed.get(record_id)

    def get(self, record_id: str) -> ConfirmationRecord | None:
        """Return the record in whichever collection holds it."""
        self._refresh()
        return self._pending.get(record_id) or self._processed.get(record_id)

    def get_pending_by_name(self, name: str) -> PendingConfirmation | None:
        self._refresh()
        return next((r for r in self._pending.values() if r.name == name), None)

    def update_baseline(self, record_id: str) -> ProcessedConfirmation:
        """Promote the current screenshot of an intended change to baseline."""
        with self._transaction():
            record = self._processed.get(record_id)
            if record is None:
                if record_id in self._pending:
                    raise InvalidStateError(
                        f"Confirmation {record_id} is still pending", record_id=record_id
                    )
                raise NotFoundError(f"No confirmation found with id {record_id}", record_id=record_id)
            if not record.is_intended:
                raise InvalidStateError(
                    f"Confirmation {record_id} was rejected; baseline not updated",
                    record_id=record_id,
                )

            self.artifacts.promote(record.current_ref, record.baseline_ref)
            updated = record.mark_baseline_updated()
            self._processed[record_id] = updated

        logger.info("Updated baseline for %s", record.name)
        return updated

    def clear(self) -> None:
        """Drop all pending and processed confirmations."""
        with self._transaction():
            self._pending.clear()
            self._processed.clear()
        logger.info("Cleared confirmation history")
