"""Reconcile outcome policy.

Every exit path of a reconciliation pass goes through one of the
`ReconcileResultHandler` methods so the driver sees a uniform contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """What the driver should do after a pass."""

    requeue: bool = False
    requeue_after: float = 0.0
    error: Optional[BaseException] = None


class ReconcileResultHandler:
    def __init__(self, reconcile_requeue_seconds: int):
        self._delayed = ReconcileResult(requeue=True, requeue_after=float(reconcile_requeue_seconds))

    def stop(self) -> ReconcileResult:
        """Stop the loop for this resource."""
        logger.info("reconciler exit")
        return ReconcileResult()

    def requeue_delay(self) -> ReconcileResult:
        """Requeue after the fixed reconcile delay."""
        return self._delayed

    def requeue_delay_with_error(self, err: BaseException) -> ReconcileResult:
        """Log `err` and requeue after the fixed delay; the driver sees no error."""
        logger.error(f"reconciler error: {err}")
        return self._delayed

    def requeue_now_with_error(self, err: BaseException) -> ReconcileResult:
        """Requeue immediately; the driver logs `err` and applies backoff."""
        return ReconcileResult(requeue=True, requeue_after=0.0, error=err)
