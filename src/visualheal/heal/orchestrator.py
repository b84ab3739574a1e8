"""Orchestrator -- drives a detected diff to a terminal state.

Stages run strictly in order::

    DETECTED -> CLASSIFYING -> INTENDED_PATH   -> DONE
                            -> REGRESSION_PATH -> DONE | ESCALATED

An undecided record stops at AWAITING_DECISION. Every stylesheet mutation
is backed up first and either verified or rolled back before the run
ends; the orchestrator is the only component that decides whether a
failure escalates.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from visualheal.confirm.store import ConfirmationStore
from visualheal.core.config import VisualHealConfig, get_state_dir, load_config
from visualheal.core.errors import (
    CorruptStateError,
    ExternalServiceError,
    NotFoundError,
    RunInProgressError,
    VerificationFailure,
    VisualHealError,
)
from visualheal.core.models import (
    CandidateSource,
    ConfirmationRecord,
    FixCandidate,
    PatchOperation,
    PendingConfirmation,
    ProcessedConfirmation,
    VerificationOutcome,
    VerificationResult,
)
from visualheal.css.locator import locate_property
from visualheal.css.patcher import PatchApplier
from visualheal.fix.backup import BackupManager
from visualheal.fix.collaborators import (
    CaptureService,
    CompareService,
    DecisionSource,
    FixGenerator,
    RegressionContext,
)
from visualheal.fix.knowledge import KNOWLEDGE_BASE_FILE, KnowledgeBase, fingerprint
from visualheal.fix.verifier import FixVerifier, call_with_timeout

logger = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    DETECTED = "detected"
    CLASSIFYING = "classifying"
    AWAITING_DECISION = "awaiting_decision"
    INTENDED_PATH = "intended_path"
    REGRESSION_PATH = "regression_path"
    DONE = "done"
    ESCALATED = "escalated"


@dataclass
class HealingResult:
    """What happened to one confirmation record during a run."""

    record_id: str
    page_name: str
    states: list[PipelineState] = field(default_factory=list)
    is_intended: bool | None = None
    candidate: FixCandidate | None = None
    patch: PatchOperation | None = None
    verification: VerificationResult | None = None
    error: str = ""

    @property
    def state(self) -> PipelineState | None:
        return self.states[-1] if self.states else None

    @property
    def from_cache(self) -> bool:
        return self.candidate is not None and self.candidate.source is CandidateSource.KNOWLEDGE_BASE

    @property
    def fingerprint(self) -> str:
        return self.candidate.fingerprint if self.candidate else ""

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.DONE

    def advance(self, state: PipelineState) -> None:
        self.states.append(state)
        logger.info("[%s] %s -> %s", self.record_id, self.page_name, state.value)

    def describe(self) -> str:
        """One-paragraph, user-facing summary of the run."""
        parts = [f"Record {self.record_id} (page {self.page_name}): {self.state.value if self.state else 'not started'}"]
        if self.candidate:
            parts.append(
                f"{self.candidate.selector} {{ {self.candidate.property}: {self.candidate.value} }}"
                f" from {self.candidate.source.value}"
            )
        if self.patch:
            parts.append(f"{self.patch.file}:{self.patch.line} [{self.patch.outcome.value}]")
        if self.verification:
            parts.append(
                f"diff {self.verification.diff_percentage:.2f}% vs threshold "
                f"{self.verification.threshold:.2f}% ({self.verification.outcome.value})"
            )
        if self.error:
            parts.append(self.error)
        return "; ".join(parts)


class Orchestrator:
    """Runs the confirmation and repair state machine for one record at a time."""

    def __init__(
        self,
        store: ConfirmationStore,
        patcher: PatchApplier,
        verifier: FixVerifier,
        knowledge: KnowledgeBase,
        generator: FixGenerator | None = None,
        decisions: DecisionSource | None = None,
        threshold: float = 0.1,
        generator_timeout: float = 120.0,
        backup_retention: int = 20,
    ):
        self.store = store
        self.patcher = patcher
        self.verifier = verifier
        self.knowledge = knowledge
        self.generator = generator
        self.decisions = decisions
        self.threshold = threshold
        self.generator_timeout = generator_timeout
        self.backup_retention = backup_retention

        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        self._stylesheet_locks: dict[Path, asyncio.Lock] = {}

    @classmethod
    def for_project(
        cls,
        project_path: Path,
        capture: CaptureService,
        compare: CompareService,
        generator: FixGenerator | None = None,
        decisions: DecisionSource | None = None,
        config: VisualHealConfig | None = None,
    ) -> Orchestrator:
        """Wire every component from ``visualheal.toml`` defaults."""
        config = config or load_config(project_path)
        state_dir = get_state_dir(project_path, config)

        store = ConfirmationStore.for_project(project_path, config)
        store.initialize()

        return cls(
            store=store,
            patcher=PatchApplier(BackupManager(state_dir / "backups"), dry_run=config.heal.dry_run),
            verifier=FixVerifier(
                capture,
                compare,
                threshold=config.verify.threshold,
                timeout=config.verify.timeout_seconds,
            ),
            knowledge=KnowledgeBase(state_dir / KNOWLEDGE_BASE_FILE),
            generator=generator,
            decisions=decisions,
            threshold=config.verify.threshold,
            generator_timeout=config.heal.generator_timeout_seconds,
            backup_retention=config.heal.backup_retention,
        )

    # ------------------------------------------------------------------
    # Detected
    # ------------------------------------------------------------------

    def detect(
        self,
        name: str,
        page_name: str,
        baseline_ref: str,
        current_ref: str,
        diff_percentage: float,
        diff_pixel_count: int = 0,
        record_id: str | None = None,
    ) -> PendingConfirmation | None:
        """Register a pending confirmation when a diff crosses the threshold."""
        if diff_percentage <= self.threshold:
            logger.info("%s within threshold (%.2f%% <= %.2f%%)", page_name, diff_percentage, self.threshold)
            return None
        return self.store.register_pending(
            name=name,
            baseline_ref=baseline_ref,
            current_ref=current_ref,
            diff_percentage=diff_percentage,
            diff_pixel_count=diff_pixel_count,
            page_name=page_name,
            record_id=record_id,
        )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        record_id: str,
        context: RegressionContext | None = None,
        decision: bool | None = None,
    ) -> HealingResult:
        """Drive *record_id* from its current state to a terminal one.

        Raises ``RunInProgressError`` if another run for the same record is
        in flight, and ``NotFoundError`` for an unknown record.
        """
        self._claim(record_id)
        try:
            return await self._run(record_id, context, decision)
        finally:
            self._release(record_id)

    def _claim(self, record_id: str) -> None:
        with self._active_lock:
            if record_id in self._active:
                raise RunInProgressError(
                    f"A pipeline run for {record_id} is already in progress", record_id=record_id
                )
            self._active.add(record_id)

    def _release(self, record_id: str) -> None:
        with self._active_lock:
            self._active.discard(record_id)

    async def _run(
        self, record_id: str, context: RegressionContext | None, decision: bool | None
    ) -> HealingResult:
        record = self.store.get(record_id)
        if record is None:
            raise NotFoundError(f"No confirmation found with id {record_id}", record_id=record_id)

        result = HealingResult(
            record_id=record_id,
            page_name=context.page_name if context else record.page,
        )
        result.advance(PipelineState.DETECTED)

        result.advance(PipelineState.CLASSIFYING)
        processed = await self._classify(record, decision)
        if processed is None:
            result.advance(PipelineState.AWAITING_DECISION)
            return result
        result.is_intended = processed.is_intended

        if processed.is_intended:
            result.advance(PipelineState.INTENDED_PATH)
            try:
                self.store.update_baseline(record_id)
            except VisualHealError as exc:
                result.error = f"Baseline update failed: {exc}"
                result.advance(PipelineState.ESCALATED)
                return result
            result.advance(PipelineState.DONE)
            return result

        result.advance(PipelineState.REGRESSION_PATH)
        if context is None:
            result.error = "No regression context supplied; nothing to repair"
            result.advance(PipelineState.ESCALATED)
            return result

        await self._repair(processed, context, result)
        return result

    # ------------------------------------------------------------------
    # Classifying
    # ------------------------------------------------------------------

    async def _classify(
        self, record: ConfirmationRecord, decision: bool | None
    ) -> ProcessedConfirmation | None:
        if isinstance(record, ProcessedConfirmation):
            return record

        if decision is None and self.decisions is not None:
            try:
                decision = await call_with_timeout(
                    self.decisions.decide(record),
                    self.generator_timeout,
                    "decision source",
                    record_id=record.id,
                )
            except ExternalServiceError as exc:
                logger.warning("No decision for %s: %s", record.id, exc)
                decision = None

        if decision is None:
            return None
        return self.store.process_confirmation(record.id, decision)

    # ------------------------------------------------------------------
    # Regression path
    # ------------------------------------------------------------------

    async def _repair(
        self, record: ProcessedConfirmation, context: RegressionContext, result: HealingResult
    ) -> None:
        candidate = self._cached_candidate(context)
        if candidate is None:
            candidate = await self._generate(context, result)
            if candidate is None:
                result.advance(PipelineState.ESCALATED)
                return
        result.candidate = candidate

        lock = self._stylesheet_locks.setdefault(Path(context.stylesheet).resolve(), asyncio.Lock())
        async with lock:
            try:
                patch = self.patcher.update_property(
                    context.stylesheet, candidate.selector, candidate.property, candidate.value
                )
            except VisualHealError as exc:
                result.error = f"Patch not applied: {exc}"
                result.advance(PipelineState.ESCALATED)
                return
            result.patch = patch
            if not candidate.fingerprint:
                candidate.erroneous_value = patch.old_value
                candidate.fingerprint = fingerprint(candidate.selector, candidate.property, patch.old_value)

            if patch.dry_run:
                result.error = "Dry run: patch not written"
                result.advance(PipelineState.ESCALATED)
                return

            try:
                verification = await self.verifier.verify(context.page_name, record.baseline_ref)
            except ExternalServiceError as exc:
                verification = VerificationResult(
                    page_name=context.page_name,
                    diff_percentage=record.diff_percentage,
                    threshold=self.verifier.threshold,
                    outcome=VerificationOutcome.FAIL,
                    error=str(exc),
                )
            except asyncio.CancelledError:
                logger.warning("Run for %s cancelled after patching; rolling back", record.id)
                self._rollback(patch, result)
                raise
            result.verification = verification

            if verification.passed:
                self.knowledge.record(candidate.fingerprint, candidate, success=True)
                self.patcher.release(patch)
                self.patcher.backups.prune(self.backup_retention)
                result.advance(PipelineState.DONE)
                return

            failure = VerificationFailure(
                "Fix did not resolve the visual diff",
                record_id=record.id,
                page=context.page_name,
                selector=candidate.selector,
                property=candidate.property,
                path=patch.file,
                line=patch.line,
            )
            result.error = verification.error or str(failure)
            logger.warning("%s", failure)
            if self._rollback(patch, result):
                self.knowledge.record(candidate.fingerprint, candidate, success=False)
            result.advance(PipelineState.ESCALATED)

    def _rollback(self, patch: PatchOperation, result: HealingResult) -> bool:
        try:
            self.patcher.rollback(patch)
        except VisualHealError as exc:
            # Backup stays unreleased so `visualheal undo` can restore it later.
            logger.error("Rollback of %s failed: %s", patch.id, exc)
            result.error = f"{result.error}; rollback failed: {exc}" if result.error else f"Rollback failed: {exc}"
            return False
        self.patcher.release(patch)
        return True

    def _cached_candidate(self, context: RegressionContext) -> FixCandidate | None:
        for suspect in context.suspects:
            try:
                location = locate_property(Path(context.stylesheet), suspect.selector, suspect.property)
            except (NotFoundError, CorruptStateError) as exc:
                logger.debug("Suspect not located: %s", exc)
                continue
            fp = fingerprint(suspect.selector, suspect.property, location.value)
            hit = self.knowledge.lookup(fp)
            if hit is None:
                continue
            logger.info("Knowledge base hit for %s { %s: %s }", hit.selector, hit.property, location.value)
            return FixCandidate(
                selector=suspect.selector,
                property=suspect.property,
                value=hit.value,
                source=CandidateSource.KNOWLEDGE_BASE,
                fingerprint=fp,
                erroneous_value=location.value,
            )
        return None

    async def _generate(self, context: RegressionContext, result: HealingResult) -> FixCandidate | None:
        if self.generator is None:
            result.error = "No fix generator configured and no known fix"
            return None
        try:
            suggestion = await call_with_timeout(
                self.generator.generate_fix(context),
                self.generator_timeout,
                "fix generation",
                page=context.page_name,
            )
        except ExternalServiceError as exc:
            result.error = str(exc)
            return None
        if suggestion is None:
            result.error = "Fix generator returned no suggestion"
            return None
        return FixCandidate(
            selector=suggestion.selector,
            property=suggestion.property,
            value=suggestion.suggested_value,
            source=CandidateSource.GENERATOR,
            rationale=suggestion.rationale,
        )
