"""Tests for post-patch verification."""

from __future__ import annotations

import asyncio

import pytest

from visualheal.core.errors import ExternalServiceError
from visualheal.core.models import VerificationOutcome
from visualheal.fix.collaborators import ComparisonResult
from visualheal.fix.verifier import FixVerifier, call_with_timeout


class FakeCapture:
    def __init__(self, delay: float = 0.0, error: Exception | None = None):
        self.delay = delay
        self.error = error
        self.calls: list[str] = []

    async def capture(self, page_name: str) -> str:
        self.calls.append(page_name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return f"verification/{page_name}.png"


class FakeCompare:
    def __init__(self, diff: float):
        self.diff = diff
        self.calls: list[tuple[str, str]] = []

    async def compare(self, baseline_ref: str, current_ref: str) -> ComparisonResult:
        self.calls.append((baseline_ref, current_ref))
        return ComparisonResult(diff_percentage=self.diff)


class TestVerify:
    def test_pass_within_threshold(self):
        compare = FakeCompare(0.05)
        verifier = FixVerifier(FakeCapture(), compare, threshold=0.1)

        result = asyncio.run(verifier.verify("form", "baseline/form.png"))

        assert result.outcome is VerificationOutcome.PASS
        assert result.passed
        assert result.current_ref == "verification/form.png"
        assert compare.calls == [("baseline/form.png", "verification/form.png")]

    def test_threshold_is_inclusive(self):
        verifier = FixVerifier(FakeCapture(), FakeCompare(0.1), threshold=0.1)
        assert asyncio.run(verifier.verify("form", "baseline/form.png")).passed

    def test_fail_above_threshold(self):
        verifier = FixVerifier(FakeCapture(), FakeCompare(3.5), threshold=0.1)
        result = asyncio.run(verifier.verify("form", "baseline/form.png"))
        assert result.outcome is VerificationOutcome.FAIL
        assert result.diff_percentage == 3.5

    def test_threshold_override(self):
        verifier = FixVerifier(FakeCapture(), FakeCompare(3.5), threshold=0.1)
        result = asyncio.run(verifier.verify("form", "baseline/form.png", threshold=5.0))
        assert result.passed
        assert result.threshold == 5.0

    def test_capture_timeout(self):
        verifier = FixVerifier(FakeCapture(delay=1.0), FakeCompare(0.0), timeout=0.01)
        with pytest.raises(ExternalServiceError) as exc_info:
            asyncio.run(verifier.verify("form", "baseline/form.png"))
        assert exc_info.value.details["service"] == "capture"

    def test_capture_failure_wrapped(self):
        verifier = FixVerifier(FakeCapture(error=RuntimeError("browser crashed")), FakeCompare(0.0))
        with pytest.raises(ExternalServiceError, match="browser crashed"):
            asyncio.run(verifier.verify("form", "baseline/form.png"))


class TestCallWithTimeout:
    def test_returns_value(self):
        async def ok():
            return 42

        assert asyncio.run(call_with_timeout(ok(), 1.0, "svc")) == 42
