"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import json
import os
import threading
import types
import uuid

import pytest

from record_ingest.store import Progress, Rejected, StoredRecord


@pytest.fixture(scope="session", autouse=True)
def _env_vars():
    """
    Ensures a deterministic environment for every test run.
    Overwrite *only* the variables needed by the handlers.
    """
    original = os.environ.copy()
    os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "record-ingest-test")
    os.environ.setdefault("POWERTOOLS_LOG_LEVEL", "INFO")
    os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
    os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
    yield
    os.environ.clear()
    os.environ.update(original)


# ---------- In-memory record store with the same conditional semantics ---------- #
class InMemoryRecordStore:
    """
    Thread-safe stand-in for DynamoRecordStore. Every operation holds one lock,
    which makes each conditional write atomic per key exactly like the table.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[str, StoredRecord] = {}
        self.progress_history: dict[str, list[str | None]] = {}

    def _write(self, record: StoredRecord) -> StoredRecord:
        self._items[record.record_id] = record
        self.progress_history.setdefault(record.record_id, []).append(record.progress)
        return record

    def seed(self, record: StoredRecord) -> None:
        with self._lock:
            self._write(record)

    def conditional_upsert(self, record_id, new_version, payload, requester):
        with self._lock:
            existing = self._items.get(record_id)
            if existing is not None and existing.progress in (
                Progress.IN_PROGRESS.value,
                Progress.COMPLETED.value,
            ):
                return Rejected(record_id)
            modified_by = existing.modified_by if existing else frozenset()
            return self._write(
                StoredRecord(
                    record_id=record_id,
                    version=new_version,
                    payload=payload,
                    progress=Progress.IN_PROGRESS.value,
                    modified_by=modified_by | {requester},
                )
            )

    def conditional_advance(self, record_id, expected_version, new_progress, requester):
        with self._lock:
            existing = self._items.get(record_id)
            if existing is None or existing.version != expected_version:
                return Rejected(record_id)
            return self._write(
                StoredRecord(
                    record_id=record_id,
                    version=existing.version,
                    payload=existing.payload,
                    progress=Progress(new_progress).value,
                    modified_by=existing.modified_by | {requester},
                )
            )

    def get(self, record_id):
        with self._lock:
            return self._items.get(record_id)


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


# ---------- Minimal, realistic dummy events ---------- #
def make_sqs_record(body: str, routing_key: str | None = None) -> dict:
    attributes = {}
    if routing_key is not None:
        attributes["routing-key"] = {
            "stringValue": routing_key,
            "stringListValues": [],
            "binaryListValues": [],
            "dataType": "String",
        }
    return {
        "messageId": str(uuid.uuid4()),
        "receiptHandle": "ignore",
        "body": body,
        "attributes": {},
        "messageAttributes": attributes,
        "md5OfBody": "dummy",
        "eventSource": "aws:sqs",
        "eventSourceARN": "arn:aws:sqs:eu-west-1:000000000000:dummy",
        "awsRegion": "eu-west-1",
    }


@pytest.fixture
def sqs_record_factory():
    return make_sqs_record


@pytest.fixture
def sku_row() -> dict:
    return {
        "skuLong": "alpha",
        "skuShort": "bravo",
        "productID": "charlie",
        "optionID": "delta",
        "subCategoryID": "echo",
        "subCategory": "foxtrot",
        "departmentID": "gulf",
        "department": "hotel",
        "catalogID": "indigo",
        "storeID": "juliette",
        "store": "kilo",
        "category": "lima",
        "categoryID": "mike",
        "color": "november",
        "style": "oscar",
        "imageURL": "papa",
        "productURL": "quebec",
        "variantURL": "romeo",
    }


@pytest.fixture
def batch_sqs_event() -> dict:
    """One SQS record carrying a two-row batch message."""
    body = json.dumps({"rows": [{"id": "1", "name": "one"}, {"id": "2", "name": "two"}]})
    return {"Records": [make_sqs_record(body, routing_key="uploads/products.csv")]}


@pytest.fixture
def lambda_context():
    """A *very* small stand-in for the LambdaContext object."""
    return types.SimpleNamespace(
        function_name="record-ingest-test",
        function_version="$LATEST",
        memory_limit_in_mb=512,
        aws_request_id="req-" + uuid.uuid4().hex,
        invoked_function_arn="arn:aws:lambda:eu-west-1:000000000000:function:dummy",
        get_remaining_time_in_millis=lambda: 30000,
    )
