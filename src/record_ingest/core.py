# src/record_ingest/core.py

"""
Core business logic tying row sources, batch assembly, dispatch and the
claim protocol together.

The Lambda adapter (`app.py`) only parses events and builds collaborators;
everything here works on plain iterables and injected dependencies so it can
be exercised without AWS.
"""

import logging
from collections import Counter
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from .batching import Batch, assemble, singletons
from .dispatch import Dispatched, DispatchFailed, Dispatcher
from .exceptions import ParseError, get_error_context
from .executor import RowOutcome, RowProcessor
from .schemas import Row

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    """Summary of pushing one row source through assembly and dispatch."""

    routing_key: str
    rows: int = 0
    batches: int = 0
    failed_batches: int = 0
    failed_rows: int = 0
    message_ids: list[str] = field(default_factory=list)
    parse_error: ParseError | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_batches == 0 and self.parse_error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "routing_key": self.routing_key,
            "rows": self.rows,
            "batches": self.batches,
            "failed_batches": self.failed_batches,
            "failed_rows": self.failed_rows,
            "parse_error": self.parse_error.to_dict() if self.parse_error else None,
        }


def _counted(rows: Iterable[Row], report: IngestReport, log_interval: int) -> Iterator[Row]:
    """
    Passes rows through while counting them. A ParseError from the source ends
    the sequence; it is recorded on the report instead of aborting the batches
    already assembled.
    """
    try:
        for row in rows:
            report.rows += 1
            if report.rows % log_interval == 0:
                logger.info(
                    f"We have processed {report.rows} records",
                    extra={"routing_key": report.routing_key},
                )
            yield row
    except ParseError as e:
        report.parse_error = e
        logger.error(
            "Row source stopped at a malformed row.",
            extra={"rows_read": report.rows, **get_error_context(e)},
        )


def _collect(results: Iterable[Dispatched | DispatchFailed], report: IngestReport) -> None:
    for result in results:
        report.batches += 1
        if isinstance(result, DispatchFailed):
            report.failed_batches += 1
            report.failed_rows += result.row_count
        else:
            report.message_ids.append(result.message_id)


def _publish(batches: Iterable[Batch], dispatcher: Dispatcher, report: IngestReport) -> IngestReport:
    _collect(dispatcher.dispatch_all(batches), report)

    log = logger.info if report.succeeded else logger.warning
    log("Publishing completed.", extra=report.to_dict())
    return report


def publish_rows(
    rows: Iterable[Row],
    dispatcher: Dispatcher,
    max_payload_size: int,
    routing_key: str = "",
    progress_log_interval: int = 1000,
) -> IngestReport:
    """
    Packs *rows* into size-bounded batches and dispatches each one.

    Stuffing as many rows as fit into each message keeps million-row files
    inside the invocation time limit.
    """
    report = IngestReport(routing_key=routing_key)
    counted = _counted(rows, report, progress_log_interval)
    return _publish(assemble(counted, max_payload_size, routing_key), dispatcher, report)


def fan_out_rows(
    rows: Iterable[Row],
    dispatcher: Dispatcher,
    routing_key: str = "",
    progress_log_interval: int = 1000,
) -> IngestReport:
    """Dispatches every row as a message of its own."""
    report = IngestReport(routing_key=routing_key)
    counted = _counted(rows, report, progress_log_interval)
    return _publish(singletons(counted, routing_key), dispatcher, report)


def process_rows(rows: Iterable[Row], processor: RowProcessor) -> Counter[RowOutcome]:
    """Runs each row through the claim/execute/complete workflow, sequentially."""
    outcomes: Counter[RowOutcome] = Counter()
    for row in rows:
        outcomes[processor.process(row)] += 1
    return outcomes
