"""visualheal: decision-and-repair engine for visual regression testing."""

from visualheal._version import __version__
from visualheal.confirm import ConfirmationStore, auto_approve_pending, process_confirmed_changes
from visualheal.heal.orchestrator import HealingResult, Orchestrator, PipelineState

__all__ = [
    "__version__",
    "ConfirmationStore",
    "auto_approve_pending",
    "process_confirmed_changes",
    "Orchestrator",
    "HealingResult",
    "PipelineState",
]
