"""Contracts for the external services the repair engine consumes.

Browser capture, pixel comparison and AI fix generation live outside this
package; anything matching these protocols can be plugged in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from visualheal.core.models import ConfirmationRecord


@dataclass
class ComparisonResult:
    diff_percentage: float
    diff_pixel_count: int = 0


@dataclass
class FixSuggestion:
    selector: str
    property: str
    suggested_value: str
    rationale: str = ""


@dataclass
class Suspect:
    """A (selector, property) pair localized upstream as a likely cause."""

    selector: str
    property: str


@dataclass
class RegressionContext:
    """Everything the regression path needs to know about one diff."""

    page_name: str
    stylesheet: Path
    suspects: list[Suspect] = field(default_factory=list)
    description: str = ""


@runtime_checkable
class CaptureService(Protocol):
    async def capture(self, page_name: str) -> str:
        """Screenshot *page_name* and return its artifact ref."""
        ...


@runtime_checkable
class CompareService(Protocol):
    async def compare(self, baseline_ref: str, current_ref: str) -> ComparisonResult:
        ...


@runtime_checkable
class FixGenerator(Protocol):
    async def generate_fix(self, context: RegressionContext) -> FixSuggestion | None:
        ...


@runtime_checkable
class DecisionSource(Protocol):
    async def decide(self, record: ConfirmationRecord) -> bool | None:
        """Return True for intended, False for regression, None to defer."""
        ...


class AutoApprove:
    """Decision source used by CI runs: every detected change is intended."""

    async def decide(self, record: ConfirmationRecord) -> bool | None:
        return True
