# src/record_ingest/dispatch.py

"""
Publishing assembled batches to the notification sink.

Each batch becomes one outbound message, ``{"rows": [...]}``, tagged with
the batch's routing key. A failed publish is reported for that batch only
and never stops the remaining batches.
"""

import json
import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Protocol

from .batching import Batch
from .exceptions import DispatchError, RecordIngestError, get_error_context

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def publish(self, message: str, routing_key: str) -> str:
        """Publishes one message and returns its message id."""
        ...


@dataclass(frozen=True)
class Dispatched:
    index: int
    message_id: str
    row_count: int


@dataclass(frozen=True)
class DispatchFailed:
    index: int
    error: RecordIngestError
    row_count: int


DispatchResult = Dispatched | DispatchFailed


def serialize_batch(batch: Batch) -> str:
    return json.dumps(batch.to_message(), separators=(",", ":"), ensure_ascii=False)


class Dispatcher:
    """
    Sends batches to a NotificationSink, optionally through a bounded pool of
    worker threads.

    At most ``max_in_flight`` batches are submitted but not yet published; the
    producer blocks beyond that, which backpressures batch assembly.
    """

    def __init__(
        self,
        sink: NotificationSink,
        max_workers: int = 1,
        max_in_flight: int | None = None,
        timeout_seconds: float = 900.0,
    ):
        if max_workers <= 0:
            raise ValueError("max_workers must be a positive integer.")
        self._sink = sink
        self._max_workers = max_workers
        self._max_in_flight = max(max_in_flight or 2 * max_workers, max_workers)
        self._timeout_seconds = timeout_seconds

    def dispatch(self, batch: Batch, index: int = 0) -> DispatchResult:
        """
        Publishes one batch. The routing key sent with the message is the
        batch's own ``routing_key``, set when the batch was assembled.
        """
        message = serialize_batch(batch)
        try:
            message_id = self._sink.publish(message, batch.routing_key)
        except RecordIngestError as e:
            logger.warning(
                f"Unable to publish batch: {e}",
                extra={"batch_index": index, **get_error_context(e)},
            )
            return DispatchFailed(index, e, len(batch))
        except Exception as e:
            logger.exception(
                "Unexpected error publishing batch.", extra={"batch_index": index}
            )
            error = DispatchError(str(e), routing_key=batch.routing_key)
            return DispatchFailed(index, error, len(batch))

        logger.debug(
            "Published batch",
            extra={
                "batch_index": index,
                "message_id": message_id,
                "rows": len(batch),
                "characters": len(message),
            },
        )
        return Dispatched(index, message_id, len(batch))

    def dispatch_all(self, batches: Iterable[Batch]) -> list[DispatchResult]:
        """
        Dispatches every batch and returns one result per batch, in batch order.

        The whole call is bounded by ``timeout_seconds``, counted from its
        start. Once the deadline passes, no further batches are pulled from
        *batches*, unfinished publishes are reported as failed and the call
        returns without waiting for them.
        """
        deadline = time.monotonic() + self._timeout_seconds
        if self._max_workers == 1:
            return self._dispatch_sequentially(batches, deadline)

        slots = threading.BoundedSemaphore(self._max_in_flight)
        # Only the bookkeeping is kept per batch so published rows can be freed.
        submitted: list[tuple[str, int, Future[DispatchResult]]] = []
        results: list[DispatchResult] = []
        stalled: DispatchFailed | None = None
        expired = False

        pool = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="dispatch"
        )
        try:
            for index, batch in enumerate(batches):
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not slots.acquire(timeout=remaining):
                    expired = True
                    stalled = self._expired(index, batch.routing_key, len(batch))
                    break
                future = pool.submit(self.dispatch, batch, index)
                future.add_done_callback(lambda _: slots.release())
                submitted.append((batch.routing_key, len(batch), future))

            logger.info(
                "Awaiting background dispatches to complete...",
                extra={"batches": len(submitted)},
            )
            for index, (routing_key, row_count, future) in enumerate(submitted):
                try:
                    remaining = max(deadline - time.monotonic(), 0)
                    results.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    expired = True
                    results.append(self._expired(index, routing_key, row_count))
            if stalled is not None:
                results.append(stalled)
        finally:
            # Publishes still running past the deadline are abandoned, not awaited.
            pool.shutdown(wait=not expired, cancel_futures=expired)

        return results

    def _dispatch_sequentially(
        self, batches: Iterable[Batch], deadline: float
    ) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        for index, batch in enumerate(batches):
            if time.monotonic() >= deadline:
                results.append(self._expired(index, batch.routing_key, len(batch)))
                break
            results.append(self.dispatch(batch, index))
        return results

    def _expired(self, index: int, routing_key: str, row_count: int) -> DispatchFailed:
        error = DispatchError(
            "timed out waiting for publish",
            routing_key=routing_key,
            error_code="DISPATCH_TIMEOUT",
        )
        logger.error(
            "Dispatch timed out.",
            extra={"batch_index": index, **get_error_context(error)},
        )
        return DispatchFailed(index, error, row_count)
