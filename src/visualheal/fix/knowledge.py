"""Knowledge base of verified stylesheet fixes.

Entries are keyed by a *fingerprint* of the defect: a SHA-256 over the
selector, the property, and the erroneous value observed in the file. The
same erroneous state always hashes the same way, no matter which page or
run surfaced it, so a lookup hit can skip fix generation entirely.

Only verified fixes are stored; a failed attempt never creates an entry.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path

from visualheal.core.errors import CorruptStateError
from visualheal.core.fsutil import atomic_write_text, with_io_retry
from visualheal.core.locking import file_lock
from visualheal.core.models import FixCandidate, FixRecord
from visualheal.css.locator import normalize_selector

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_FILE = "knowledge_base.json"


def _normalize_value(value: str) -> str:
    return " ".join(value.strip().rstrip(";").split()).lower()


def fingerprint(selector: str, prop: str, erroneous_value: str) -> str:
    """Stable hash of a (selector, property, erroneous value) defect."""
    payload = "\x1f".join([
        normalize_selector(selector),
        prop.strip().lower(),
        _normalize_value(erroneous_value),
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class KnowledgeBase:
    """JSON-backed map from fingerprint to the fix that resolved it."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, FixRecord]:
        try:
            return self._read()
        except CorruptStateError as exc:
            logger.warning("%s; starting with an empty knowledge base", exc)
            return {}

    def _read(self) -> dict[str, FixRecord]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
            if not isinstance(raw, dict):
                raise ValueError("top-level value is not an object")
            return {fp: FixRecord.from_dict(fp, data) for fp, data in raw.items()}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CorruptStateError(f"Unreadable knowledge base {self.path}: {exc}", path=self.path) from exc

    def _save(self, records: dict[str, FixRecord]) -> None:
        data = {fp: record.to_dict() for fp, record in records.items()}
        with_io_retry(lambda: atomic_write_text(self.path, json.dumps(data, indent=2)), self.path)

    def lookup(self, fp: str) -> FixRecord | None:
        """Return the stored fix for *fp*, or None for an unseen fingerprint."""
        with file_lock(self.path):
            return self._load().get(fp)

    def record(self, fp: str, candidate: FixCandidate, success: bool) -> FixRecord | None:
        """Store a verified fix, or bump its success count on a repeat hit.

        Failed fixes are not cached; the call returns None without writing.
        """
        if not success:
            logger.info("Not caching failed fix for %s { %s }", candidate.selector, candidate.property)
            return None

        with file_lock(self.path):
            records = self._load()
            existing = records.get(fp)
            if existing is None:
                entry = FixRecord(
                    fingerprint=fp,
                    selector=candidate.selector,
                    property=candidate.property,
                    value=candidate.value,
                )
            else:
                entry = existing
                entry.value = candidate.value
                entry.success_count += 1
                entry.applied_at = datetime.now()
            records[fp] = entry
            self._save(records)

        logger.info(
            "Knowledge base: %s { %s: %s } (successes: %d)",
            entry.selector, entry.property, entry.value, entry.success_count,
        )
        return entry

    def entries(self) -> list[FixRecord]:
        with file_lock(self.path):
            return list(self._load().values())
