# src/record_ingest/store.py

"""
The keyed record store used by the claim protocol.

The store exposes two conditional writes and a consistent read. A failed
condition check is an expected outcome and is returned as `Rejected`;
only genuine store failures raise. Each write is atomic for a single key;
no cross-key transactions are needed or offered.

`DynamoRecordStore` is the production implementation on a DynamoDB table
whose partition key is the string attribute ``id``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from .exceptions import RecordStoreError, TransientStoreError

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.client import DynamoDBClient as DynamoDBClientType

logger = logging.getLogger(__name__)


class Progress(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class StoredRecord:
    """The attributes of a record as returned by the store after a write or read."""

    record_id: str
    version: str
    payload: str
    progress: str | None
    modified_by: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class Rejected:
    """A conditional write whose condition did not hold. Nothing was mutated."""

    record_id: str


class RecordStore(Protocol):
    def conditional_upsert(
        self, record_id: str, new_version: str, payload: str, requester: str
    ) -> StoredRecord | Rejected:
        """
        Writes ``version``/``payload`` and sets progress to IN_PROGRESS, but only
        if the record is absent or its progress is neither IN_PROGRESS nor
        COMPLETED. ``requester`` is added to ``modified_by``.
        """
        ...

    def conditional_advance(
        self,
        record_id: str,
        expected_version: str,
        new_progress: Progress,
        requester: str,
    ) -> StoredRecord | Rejected:
        """Sets progress only if the stored version equals ``expected_version``."""
        ...

    def get(self, record_id: str) -> StoredRecord | None: ...


_TRANSIENT_ERROR_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}


def _translate_client_error(e: ClientError, operation: str, record_id: str) -> RecordStoreError:
    error_code = e.response["Error"]["Code"]
    error_message = e.response["Error"].get("Message", "")
    context = {"aws_error_code": error_code, "aws_error_message": error_message}
    if error_code in _TRANSIENT_ERROR_CODES:
        return TransientStoreError(operation, record_id, context=context)
    return RecordStoreError(operation, record_id, context=context)


def item_to_stored_record(item: dict[str, Any]) -> StoredRecord:
    """Converts a DynamoDB attribute map into a StoredRecord."""
    return StoredRecord(
        record_id=item["id"]["S"],
        version=item.get("version", {}).get("S", ""),
        payload=item.get("json", {}).get("S", ""),
        progress=item.get("progress", {}).get("S"),
        modified_by=frozenset(item.get("modified_by", {}).get("SS", [])),
    )


class DynamoRecordStore:
    """RecordStore backed by a DynamoDB table, using conditional UpdateItem calls."""

    _ATTRIBUTE_NAMES = {
        "#version": "version",
        "#json": "json",
        "#progress": "progress",
        "#modified_by": "modified_by",
    }

    def __init__(self, dynamodb_client: "DynamoDBClientType", table_name: str):
        self._client = dynamodb_client
        self._table_name = table_name

    @property
    def table_name(self) -> str:
        return self._table_name

    def conditional_upsert(
        self, record_id: str, new_version: str, payload: str, requester: str
    ) -> StoredRecord | Rejected:
        request = {
            "TableName": self._table_name,
            "Key": {"id": {"S": record_id}},
            "UpdateExpression": (
                "SET #version = :version, #json = :json, #progress = :progress "
                "ADD #modified_by :modified_by"
            ),
            "ConditionExpression": (
                "attribute_not_exists(id) OR "
                "(NOT #progress IN (:in_progress, :completed))"
            ),
            "ExpressionAttributeNames": dict(self._ATTRIBUTE_NAMES),
            "ExpressionAttributeValues": {
                ":version": {"S": new_version},
                ":json": {"S": payload},
                ":progress": {"S": Progress.IN_PROGRESS.value},
                ":modified_by": {"SS": [requester]},
                ":in_progress": {"S": Progress.IN_PROGRESS.value},
                ":completed": {"S": Progress.COMPLETED.value},
            },
            "ReturnValues": "ALL_NEW",
        }
        return self._conditional_update("conditional_upsert", record_id, request)

    def conditional_advance(
        self,
        record_id: str,
        expected_version: str,
        new_progress: Progress,
        requester: str,
    ) -> StoredRecord | Rejected:
        request = {
            "TableName": self._table_name,
            "Key": {"id": {"S": record_id}},
            "UpdateExpression": "SET #progress = :progress ADD #modified_by :modified_by",
            "ConditionExpression": "#version = :version",
            "ExpressionAttributeNames": {
                "#version": "version",
                "#progress": "progress",
                "#modified_by": "modified_by",
            },
            "ExpressionAttributeValues": {
                ":version": {"S": expected_version},
                ":progress": {"S": Progress(new_progress).value},
                ":modified_by": {"SS": [requester]},
            },
            "ReturnValues": "ALL_NEW",
        }
        return self._conditional_update("conditional_advance", record_id, request)

    def get(self, record_id: str) -> StoredRecord | None:
        try:
            response = self._client.get_item(
                TableName=self._table_name,
                Key={"id": {"S": record_id}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise _translate_client_error(e, "get", record_id) from e
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise TransientStoreError(
                "get", record_id, context={"connection_error": str(e)}
            ) from e

        item = response.get("Item")
        return item_to_stored_record(item) if item else None

    def _conditional_update(
        self, operation: str, record_id: str, request: dict[str, Any]
    ) -> StoredRecord | Rejected:
        try:
            response = self._client.update_item(**request)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.debug(
                    "Conditional check failed.",
                    extra={"operation": operation, "record_id": record_id},
                )
                return Rejected(record_id)
            raise _translate_client_error(e, operation, record_id) from e
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise TransientStoreError(
                operation, record_id, context={"connection_error": str(e)}
            ) from e

        attributes = response.get("Attributes")
        if not attributes or "version" not in attributes:
            # ALL_NEW always carries the version we just wrote or checked.
            raise RecordStoreError(
                operation,
                record_id,
                context={"reason": "update response did not include the record version"},
            )
        return item_to_stored_record(attributes)
