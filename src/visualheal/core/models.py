"""Shared data models used across visualheal modules."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Union


class ConfirmationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSED = "processed"


class PatchOutcome(enum.Enum):
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class VerificationOutcome(enum.Enum):
    PASS = "pass"
    FAIL = "fail"


class CandidateSource(enum.Enum):
    KNOWLEDGE_BASE = "knowledge_base"
    GENERATOR = "generator"


# ---------------------------------------------------------------------------
# Confirmation records
# ---------------------------------------------------------------------------


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        # Epoch milliseconds, as written by older tooling.
        return datetime.fromtimestamp(value / 1000)
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class ConfirmationRecord:
    """Common fields of every confirmation, regardless of lifecycle state."""

    id: str
    name: str
    baseline_ref: str
    current_ref: str
    diff_percentage: float = 0.0
    diff_pixel_count: int = 0
    page_name: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    status = ConfirmationStatus.PENDING

    @property
    def page(self) -> str:
        return self.page_name or self.name

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the persisted JSON shape."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "isIntended": getattr(self, "is_intended", None),
            "diffPercentage": self.diff_percentage,
            "diffPixelCount": self.diff_pixel_count,
            "baselineRef": self.baseline_ref,
            "currentRef": self.current_ref,
            "pageName": self.page_name,
            "createdAt": _ts(self.created_at),
            "processedAt": _ts(getattr(self, "processed_at", None)),
            "baselineUpdatedAt": _ts(getattr(self, "baseline_updated_at", None)),
        }


@dataclass(frozen=True)
class PendingConfirmation(ConfirmationRecord):
    """A detected diff awaiting a decision. Has no ``is_intended``."""

    status = ConfirmationStatus.PENDING

    def confirm(self, is_intended: bool) -> ConfirmedConfirmation:
        return ConfirmedConfirmation(**_common(self), is_intended=is_intended)


@dataclass(frozen=True)
class ConfirmedConfirmation(ConfirmationRecord):
    """A decision has been recorded but not yet persisted as processed."""

    is_intended: bool = False

    status = ConfirmationStatus.CONFIRMED

    def process(self, processed_at: datetime | None = None) -> ProcessedConfirmation:
        return ProcessedConfirmation(
            **_common(self),
            is_intended=self.is_intended,
            processed_at=processed_at or datetime.now(),
        )


@dataclass(frozen=True)
class ProcessedConfirmation(ConfirmationRecord):
    """Terminal decision record. The only state baselines are promoted from."""

    is_intended: bool = False
    processed_at: datetime = field(default_factory=datetime.now)
    baseline_updated_at: datetime | None = None

    status = ConfirmationStatus.PROCESSED

    def mark_baseline_updated(self, at: datetime | None = None) -> ProcessedConfirmation:
        return replace(self, baseline_updated_at=at or datetime.now())


AnyConfirmation = Union[PendingConfirmation, ConfirmedConfirmation, ProcessedConfirmation]


def _common(record: ConfirmationRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "baseline_ref": record.baseline_ref,
        "current_ref": record.current_ref,
        "diff_percentage": record.diff_percentage,
        "diff_pixel_count": record.diff_pixel_count,
        "page_name": record.page_name,
        "created_at": record.created_at,
    }


def confirmation_from_dict(data: dict[str, Any]) -> AnyConfirmation:
    """Rebuild the right record variant from its persisted JSON shape.

    Raises ``KeyError``/``ValueError`` on malformed input; the store turns
    those into a ``CorruptStateError``.
    """
    common = {
        "id": data["id"],
        "name": data.get("name") or data["id"],
        "baseline_ref": data.get("baselineRef", ""),
        "current_ref": data.get("currentRef", ""),
        "diff_percentage": float(data.get("diffPercentage") or 0.0),
        "diff_pixel_count": int(data.get("diffPixelCount") or 0),
        "page_name": data.get("pageName") or "",
        "created_at": _parse_ts(data.get("createdAt")) or datetime.now(),
    }
    status = ConfirmationStatus(data.get("status", "pending"))
    if status is ConfirmationStatus.PENDING:
        return PendingConfirmation(**common)

    is_intended = data.get("isIntended")
    if not isinstance(is_intended, bool):
        raise ValueError(f"record {data['id']} is {status.value} without a decision")
    if status is ConfirmationStatus.CONFIRMED:
        return ConfirmedConfirmation(**common, is_intended=is_intended)
    return ProcessedConfirmation(
        **common,
        is_intended=is_intended,
        processed_at=_parse_ts(data.get("processedAt")) or datetime.now(),
        baseline_updated_at=_parse_ts(data.get("baselineUpdatedAt")),
    )


# ---------------------------------------------------------------------------
# Stylesheet locations and patches
# ---------------------------------------------------------------------------


@dataclass
class StyleRule:
    """A rule as located in stylesheet text (not a parsed AST node)."""

    selector: str
    file: Path | None
    start_line: int
    end_line: int
    body_lines: list[str] = field(default_factory=list)
    depth: int = 0
    context: list[str] = field(default_factory=list)
    # body_lines with comments, strings, nested blocks and everything outside
    # the braces blanked out; columns line up with body_lines.
    masked_lines: list[str] = field(default_factory=list, repr=False)


@dataclass
class PropertyLocation:
    rule: StyleRule
    property: str
    line: int
    raw_line: str
    value: str
    value_start: int = 0
    value_end: int = 0


@dataclass
class BackupEntry:
    """A full pre-mutation copy of one file inside a snapshot directory."""

    patch_id: str
    file: Path
    backup: Path
    timestamp: str
    released: bool = False


@dataclass
class PatchOperation:
    """One attempted text-level mutation of a stylesheet property value."""

    id: str
    location: PropertyLocation
    old_value: str
    new_value: str
    backup: BackupEntry | None
    outcome: PatchOutcome = PatchOutcome.APPLIED
    dry_run: bool = False

    @property
    def file(self) -> Path | None:
        return self.location.rule.file

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def backup_path(self) -> Path | None:
        return self.backup.backup if self.backup else None


@dataclass
class VerificationResult:
    page_name: str
    diff_percentage: float
    threshold: float
    outcome: VerificationOutcome
    current_ref: str = ""
    error: str = ""

    @property
    def passed(self) -> bool:
        return self.outcome is VerificationOutcome.PASS


# ---------------------------------------------------------------------------
# Knowledge base and fix candidates
# ---------------------------------------------------------------------------


@dataclass
class FixRecord:
    """A previously verified fix, keyed by its defect fingerprint."""

    fingerprint: str
    selector: str
    property: str
    value: str
    success_count: int = 1
    applied_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "property": self.property,
            "value": self.value,
            "appliedAt": self.applied_at.isoformat(),
            "successCount": self.success_count,
        }

    @classmethod
    def from_dict(cls, fingerprint: str, data: dict[str, Any]) -> FixRecord:
        return cls(
            fingerprint=fingerprint,
            selector=data["selector"],
            property=data["property"],
            value=data["value"],
            success_count=int(data.get("successCount", 1)),
            applied_at=_parse_ts(data.get("appliedAt")) or datetime.now(),
        )


@dataclass
class FixCandidate:
    """A proposed value for one stylesheet property."""

    selector: str
    property: str
    value: str
    source: CandidateSource = CandidateSource.GENERATOR
    rationale: str = ""
    fingerprint: str = ""
    erroneous_value: str = ""


@dataclass
class BatchResult:
    """Outcome of a pass over all processed confirmations."""

    processed: int = 0
    updated: int = 0
    skipped: int = 0
    failed: list[str] = field(default_factory=list)
