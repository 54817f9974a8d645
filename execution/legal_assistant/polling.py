"""
Bounded status polling.

One reusable retry loop, parameterised by interval and attempt ceiling,
that returns a tagged result instead of raising on timeout:

    completed  -- the document reached ``processed``
    failed     -- a processing error was observed (polling stops at once)
    timed_out  -- the ceiling was reached; the document may still finish

Reference values: every 2 seconds, at most 30 attempts (~60 s).
"""

import time
import logging
from enum import Enum
from typing import Callable, Optional
from dataclasses import dataclass

from .document_store import DocumentStatus, StatusSnapshot
from .errors import InvalidArgument, ProcessingTimeout, DocumentProcessingFailed

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollResult:
    """Tagged result of a bounded poll."""
    outcome: PollOutcome
    attempts: int
    snapshot: Optional[StatusSnapshot] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == PollOutcome.COMPLETED

    @property
    def processing_error(self) -> Optional[str]:
        if self.snapshot is None:
            return None
        return self.snapshot.processing_error

    def raise_for_outcome(self) -> "PollResult":
        """
        Convert a non-completed outcome into an exception.

        Raises:
            DocumentProcessingFailed: outcome is ``failed``
            ProcessingTimeout: outcome is ``timed_out``
        """
        document_id = self.snapshot.document_id if self.snapshot else "unknown"
        if self.outcome == PollOutcome.FAILED:
            raise DocumentProcessingFailed(document_id, self.processing_error or "unknown error")
        if self.outcome == PollOutcome.TIMED_OUT:
            raise ProcessingTimeout(document_id, self.attempts)
        return self


def bounded_poll(
    check: Callable[[], tuple[Optional[PollOutcome], object]],
    interval_seconds: float,
    max_attempts: int,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[PollOutcome, int, object]:
    """
    Call ``check`` until it reports an outcome or attempts run out.

    Args:
        check: Returns (outcome or None to keep waiting, last observed value)
        interval_seconds: Pause between attempts
        max_attempts: Maximum number of ``check`` calls
        sleep: Injected for tests

    Returns:
        (outcome, attempts used, last observed value)
    """
    if max_attempts <= 0:
        raise InvalidArgument("max_attempts must be positive")
    if interval_seconds < 0:
        raise InvalidArgument("interval_seconds must not be negative")

    last = None
    for attempt in range(1, max_attempts + 1):
        outcome, last = check()
        if outcome is not None:
            return outcome, attempt, last
        if attempt < max_attempts:
            sleep(interval_seconds)

    return PollOutcome.TIMED_OUT, max_attempts, last


def poll_until_complete(
    get_status: Callable[[], StatusSnapshot],
    interval_seconds: float = 2.0,
    max_attempts: int = 30,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """
    Poll a document's status until it is processed, failed, or the ceiling is hit.

    Exceptions raised by ``get_status`` (e.g. DocumentNotFound after a
    delete) propagate unchanged.
    """
    def check():
        snapshot = get_status()
        if snapshot.status == DocumentStatus.PROCESSED:
            return PollOutcome.COMPLETED, snapshot
        if snapshot.status == DocumentStatus.FAILED or snapshot.processing_error:
            return PollOutcome.FAILED, snapshot
        return None, snapshot

    outcome, attempts, snapshot = bounded_poll(check, interval_seconds, max_attempts, sleep)

    if outcome == PollOutcome.TIMED_OUT:
        logger.info(f"Stopped polling after {attempts} attempts: still processing")
    elif outcome == PollOutcome.FAILED:
        logger.warning(f"Processing failed: {snapshot.processing_error}")

    return PollResult(outcome=outcome, attempts=attempts, snapshot=snapshot)


def poll_document(store, document_id: str, settings, sleep=time.sleep) -> PollResult:
    """Poll a document in ``store`` using POLL_INTERVAL_MS / POLL_MAX_ATTEMPTS."""
    return poll_until_complete(
        lambda: store.get_status(document_id),
        interval_seconds=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        sleep=sleep,
    )
