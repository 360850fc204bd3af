# src/record_ingest/executor.py

"""
Running the external effect for claimed rows.

`RowProcessor` is the per-row workflow: claim, run the effect exactly once,
then complete. A failed effect leaves the claim IN_PROGRESS on purpose; the
record will answer every later claim with AlreadyHandled until an operator
repairs it, so the failure is logged at ERROR with full context.
"""

import logging
import time
from enum import Enum
from typing import Protocol

from .claims import AlreadyHandled, ClaimProtocol, Completed
from .exceptions import EffectError, RecordStoreError, get_error_context
from .schemas import Row

logger = logging.getLogger(__name__)


class WorkExecutor(Protocol):
    def execute(self, row: Row) -> None:
        """Performs the effect for one row. Raises EffectError on failure."""
        ...


class LoggingEffect:
    """Placeholder effect: logs the row and optionally waits to simulate work."""

    def __init__(self, delay_seconds: float = 0.0):
        self._delay_seconds = delay_seconds

    def execute(self, row: Row) -> None:
        logger.info("Performing work for row.", extra={"fields": len(row)})
        if self._delay_seconds:
            time.sleep(self._delay_seconds)


class RowOutcome(str, Enum):
    COMPLETED = "COMPLETED"
    ALREADY_HANDLED = "ALREADY_HANDLED"
    LOCK_LOST = "LOCK_LOST"
    EFFECT_FAILED = "EFFECT_FAILED"
    # The claim could not be attempted; the row is safe to redeliver.
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    # The effect ran but the completion write failed; the record stays IN_PROGRESS.
    COMPLETION_FAILED = "COMPLETION_FAILED"


class RowProcessor:
    def __init__(self, claims: ClaimProtocol, executor: WorkExecutor):
        self._claims = claims
        self._executor = executor

    def process(self, row: Row) -> RowOutcome:
        try:
            claim = self._claims.try_claim(row)
        except RecordStoreError as e:
            logger.warning(
                f"Could not attempt claim: {e}", extra=get_error_context(e)
            )
            return RowOutcome.STORE_UNAVAILABLE

        if isinstance(claim, AlreadyHandled):
            return RowOutcome.ALREADY_HANDLED

        try:
            self._executor.execute(row)
        except EffectError as e:
            if e.context.get("record_id") is None:
                e.context["record_id"] = claim.record_id
            logger.error(
                "Work effect failed. Record left IN_PROGRESS until repaired.",
                extra=get_error_context(e),
            )
            return RowOutcome.EFFECT_FAILED

        try:
            outcome = self._claims.complete(claim.record_id, claim.version)
        except RecordStoreError as e:
            logger.error(
                "Effect succeeded but the completion could not be recorded.",
                extra=get_error_context(e),
            )
            return RowOutcome.COMPLETION_FAILED

        if isinstance(outcome, Completed):
            return RowOutcome.COMPLETED
        return RowOutcome.LOCK_LOST
