"""Batch passes over the confirmation store (baseline updates, CI approval)."""

from __future__ import annotations

import logging

from visualheal.confirm.store import ConfirmationStore
from visualheal.core.errors import VisualHealError
from visualheal.core.models import BatchResult, ProcessedConfirmation

logger = logging.getLogger(__name__)


def process_confirmed_changes(store: ConfirmationStore) -> BatchResult:
    """Update baselines for every processed confirmation marked intended.

    Rejected confirmations are skipped. A failure on one record is logged
    and counted as skipped; it never aborts the pass.
    """
    processed = store.get_all_processed_confirmations()
    result = BatchResult(processed=len(processed))
    logger.info("Found %d processed confirmations", len(processed))

    for confirmation in processed:
        if not confirmation.is_intended:
            logger.info("Skipping confirmation %s (rejected)", confirmation.id)
            result.skipped += 1
            continue

        try:
            store.update_baseline(confirmation.id)
        except VisualHealError as exc:
            logger.warning("Failed to update baseline for %s: %s", confirmation.name, exc)
            result.skipped += 1
            result.failed.append(confirmation.id)
            continue

        result.updated += 1

    logger.info(
        "Processed %d confirmations: %d updated, %d skipped",
        result.processed,
        result.updated,
        result.skipped,
    )
    return result


def auto_approve_pending(store: ConfirmationStore) -> list[ProcessedConfirmation]:
    """Mark every pending confirmation as intended (CI auto-approval)."""
    approved = []
    for confirmation in store.get_all_pending_confirmations():
        logger.info("Auto-approving confirmation %s", confirmation.id)
        approved.append(store.process_confirmation(confirmation.id, True))
    return approved
