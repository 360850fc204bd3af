# src/record_ingest/sources.py

"""
Row sources.

Rows come either from a CSV object (header-named columns) or from a message
body that already carries rows. CSV rows are produced lazily, one at a time,
so a multi-gigabyte object never has to fit in memory; the iterator is
forward-only and cannot be restarted without downloading the object again.

A malformed row raises ParseError and ends the sequence. Rows after a
corrupt one are never guessed at.
"""

import csv
import io
import json
import logging
from collections.abc import Iterator
from typing import BinaryIO

import pydantic

from .exceptions import ParseError
from .schemas import Row, RowBatchMessage, SkuProductRow

logger = logging.getLogger(__name__)


def _is_blank(fields: list[str]) -> bool:
    return not fields or (len(fields) == 1 and not fields[0].strip())


def iter_csv_rows(
    stream: BinaryIO,
    encoding: str = "utf-8",
    row_model: type[SkuProductRow] | None = None,
) -> Iterator[Row]:
    """
    Yields each CSV data line of *stream* as a row keyed by the header's
    column names, in header order. Blank lines are skipped and surrounding
    whitespace is trimmed from names and values.

    When *row_model* is given every row is validated against it and yielded
    in the model's canonical field order.
    """
    text = io.TextIOWrapper(stream, encoding=encoding, newline="")
    reader = csv.reader(text)
    header: list[str] | None = None

    try:
        for fields in reader:
            if _is_blank(fields):
                continue

            if header is None:
                header = [name.strip() for name in fields]
                logger.debug("Read CSV header", extra={"columns": header})
                continue

            if len(fields) != len(header):
                raise ParseError(
                    f"expected {len(header)} fields but found {len(fields)}",
                    line_number=reader.line_num,
                )

            row = {name: value.strip() for name, value in zip(header, fields)}
            if row_model is None:
                yield row
                continue

            try:
                yield row_model.model_validate(row).to_row()
            except pydantic.ValidationError as e:
                raise ParseError(
                    "row does not match the expected schema",
                    line_number=reader.line_num,
                    context={"validation_errors": e.errors(include_url=False)},
                ) from e

    except csv.Error as e:
        raise ParseError(str(e), line_number=reader.line_num) from e
    except UnicodeDecodeError as e:
        raise ParseError(
            f"undecodable bytes for encoding {encoding}", line_number=reader.line_num
        ) from e


def rows_from_message(
    body: str, row_model: type[SkuProductRow] | None = None
) -> list[Row]:
    """
    Extracts rows from a message body. Accepts a batch, ``{"rows": [...]}``,
    or a single row object.

    When *row_model* is given every row is validated against it and returned
    in the model's canonical field order, so the same values always produce
    the same record id whatever order the sender wrote the fields in.
    """
    try:
        document = json.loads(body)
    except json.JSONDecodeError as e:
        raise ParseError(f"message body is not valid JSON: {e.msg}") from e

    if not isinstance(document, dict):
        raise ParseError("message body must be a JSON object")

    if isinstance(document.get("rows"), list):
        try:
            rows = RowBatchMessage.model_validate(document).rows
        except pydantic.ValidationError as e:
            raise ParseError(
                "batch message contains rows that are not objects",
                context={"validation_errors": e.errors(include_url=False)},
            ) from e
    else:
        rows = [document]

    if row_model is None:
        return rows

    try:
        return [row_model.model_validate(row).to_row() for row in rows]
    except pydantic.ValidationError as e:
        raise ParseError(
            "row does not match the expected schema",
            context={"validation_errors": e.errors(include_url=False)},
        ) from e
