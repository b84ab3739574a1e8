"""Post-patch verification: re-capture the page and re-measure the diff."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from visualheal.core.errors import ExternalServiceError
from visualheal.core.models import VerificationOutcome, VerificationResult
from visualheal.fix.collaborators import CaptureService, CompareService

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_THRESHOLD = 0.1
DEFAULT_TIMEOUT_SECONDS = 60.0


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, service: str, **details) -> T:
    """Await a collaborator call, turning timeouts and failures into ExternalServiceError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ExternalServiceError(f"{service} timed out after {timeout:g}s", service=service, **details) from exc
    except ExternalServiceError:
        raise
    except Exception as exc:
        raise ExternalServiceError(f"{service} failed: {exc}", service=service, **details) from exc


class FixVerifier:
    """Measures whether a patch brought a page back within threshold.

    Verification never touches stylesheets; rolling back a failed patch is
    the orchestrator's job.
    """

    def __init__(
        self,
        capture: CaptureService,
        compare: CompareService,
        threshold: float = DEFAULT_THRESHOLD,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.capture = capture
        self.compare = compare
        self.threshold = threshold
        self.timeout = timeout

    async def verify(
        self, page_name: str, baseline_ref: str, threshold: float | None = None
    ) -> VerificationResult:
        """Capture *page_name* again and compare it to *baseline_ref*.

        Pass iff the new diff percentage is at most the threshold. Raises
        ``ExternalServiceError`` when capture or compare fails or times out.
        """
        limit = self.threshold if threshold is None else threshold

        current_ref = await call_with_timeout(
            self.capture.capture(page_name), self.timeout, "capture", page=page_name
        )
        comparison = await call_with_timeout(
            self.compare.compare(baseline_ref, current_ref), self.timeout, "compare", page=page_name
        )

        outcome = (
            VerificationOutcome.PASS
            if comparison.diff_percentage <= limit
            else VerificationOutcome.FAIL
        )
        logger.info(
            "Verification for %s: %s (%.2f%% diff, threshold %.2f%%)",
            page_name,
            outcome.value.upper(),
            comparison.diff_percentage,
            limit,
        )
        return VerificationResult(
            page_name=page_name,
            diff_percentage=comparison.diff_percentage,
            threshold=limit,
            outcome=outcome,
            current_ref=current_ref,
        )
