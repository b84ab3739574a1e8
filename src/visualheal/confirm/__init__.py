"""Confirmation workflow -- recording whether detected diffs were intended.

Store::

    from visualheal.confirm.store import ConfirmationStore

Batch passes::

    from visualheal.confirm.batch import auto_approve_pending, process_confirmed_changes
"""

from visualheal.confirm.batch import auto_approve_pending, process_confirmed_changes
from visualheal.confirm.store import ConfirmationStore

__all__ = [
    "ConfirmationStore",
    "auto_approve_pending",
    "process_confirmed_changes",
]
