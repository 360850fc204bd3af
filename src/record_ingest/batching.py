# src/record_ingest/batching.py

"""
Greedy, size-bounded batch assembly.

Publishing one message per row does not finish in time at million-row scale,
so rows are packed into messages as large as the notification payload limit
allows. Packing is a single forward pass with no lookahead: a row joins the
current batch if it still fits, otherwise the current batch is emitted and
the row starts the next one. A row that is larger than the ceiling on its
own is emitted alone; rows are never split.

Sizes are measured on the outbound message itself, ``{"rows":[r1,r2,...]}``:
the envelope, every row's canonical form and the comma between rows.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .digest import canonical_size
from .schemas import Row, RowBatchDict

# Bytes of '{"rows":[]}' around the rows of every message.
ENVELOPE_SIZE = len('{"rows":[]}')
_SEPARATOR_SIZE = len(",")


@dataclass(frozen=True)
class Batch:
    rows: tuple[Row, ...]
    # UTF-8 length of the message this batch serializes to.
    serialized_size: int
    routing_key: str = ""

    def __len__(self) -> int:
        return len(self.rows)

    def to_message(self) -> RowBatchDict:
        return {"rows": list(self.rows)}


def assemble(
    rows: Iterable[Row], max_payload_size: int, routing_key: str = ""
) -> Iterator[Batch]:
    """
    Lazily groups *rows* into batches whose serialized message does not
    exceed *max_payload_size* bytes. Order is preserved and no batch is empty.
    """
    if max_payload_size <= 0:
        raise ValueError("max_payload_size must be a positive integer.")

    pending: list[Row] = []
    running_size = ENVELOPE_SIZE

    for row in rows:
        row_size = canonical_size(row)
        added = row_size + (_SEPARATOR_SIZE if pending else 0)
        if running_size + added <= max_payload_size:
            pending.append(row)
            running_size += added
            continue

        if pending:
            yield Batch(tuple(pending), running_size, routing_key)
        pending = [row]
        running_size = ENVELOPE_SIZE + row_size

    if pending:
        yield Batch(tuple(pending), running_size, routing_key)


def singletons(rows: Iterable[Row], routing_key: str = "") -> Iterator[Batch]:
    """Wraps every row in a batch of its own."""
    for row in rows:
        yield Batch((row,), ENVELOPE_SIZE + canonical_size(row), routing_key)
