"""
The Lambda Adapter & Orchestrator for the Record Ingest service.

This module holds the AWS Lambda entry points. Each one parses its event
with the Powertools data classes, builds the collaborators it needs from the
cached service factory, and hands plain rows to `core`:

1.  `route_upload`    - S3 upload notification -> change event on the topic,
                        tagged with the object key as routing key.
2.  `split_csv`       - change event -> download CSV, pack rows into
                        size-bounded batches, publish each batch.
3.  `fan_out_batch`   - batch message from SQS -> one message per row.
4.  `process_records` - row or batch messages from SQS -> claim, run the
                        effect, complete; reports SQS partial batch failures.
"""

import logging
from collections import Counter
from contextlib import closing
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, cast

import boto3
import pydantic
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.logging.utils import copy_config_to_registered_loggers
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.batch.types import (
    PartialItemFailures,
    PartialItemFailureResponse,
)
from aws_lambda_powertools.utilities.data_classes import S3Event, SNSEvent, SQSEvent
from aws_lambda_powertools.utilities.data_classes.sqs_event import SQSRecord
from aws_lambda_powertools.utilities.typing import LambdaContext

from .claims import ClaimProtocol
from .clients import ROUTING_KEY_ATTRIBUTE, S3Client, SnsPublisher
from .config import AppConfig, get_config
from .core import fan_out_rows, process_rows, publish_rows
from .dispatch import Dispatcher
from .exceptions import (
    ConfigurationError,
    ParseError,
    S3Error,
    get_error_context,
    is_retryable_error,
)
from .executor import LoggingEffect, RowOutcome, RowProcessor, WorkExecutor
from .schemas import ROW_MODELS, S3ChangeEvent, SkuProductRow
from .sources import iter_csv_rows, rows_from_message
from .store import DynamoRecordStore, RecordStore

# --- Global & Reusable Components ---
logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="RecordIngest")

_PACKAGE = __name__.rpartition(".")[0]
copy_config_to_registered_loggers(
    source_logger=logger,
    include={
        name
        for name in logging.root.manager.loggerDict
        if name.startswith(f"{_PACKAGE}.")
    },
)

_OUTCOME_METRICS = {
    RowOutcome.COMPLETED: "CompletedRows",
    RowOutcome.ALREADY_HANDLED: "DuplicateRows",
    RowOutcome.LOCK_LOST: "LockLost",
    RowOutcome.EFFECT_FAILED: "EffectFailures",
    RowOutcome.STORE_UNAVAILABLE: "StoreUnavailable",
    RowOutcome.COMPLETION_FAILED: "CompletionFailures",
}


@dataclass(frozen=True)
class Services:
    """The collaborators a handler works with, built once per execution environment."""

    config: AppConfig
    s3_client: S3Client
    publisher: SnsPublisher | None
    record_store: RecordStore | None
    effect: WorkExecutor

    def require_publisher(self) -> SnsPublisher:
        self.config.require("topic_arn")
        if self.publisher is None:
            raise ConfigurationError("No publisher was built for the configured topic.")
        return self.publisher

    def require_record_store(self) -> RecordStore:
        self.config.require("record_table")
        if self.record_store is None:
            raise ConfigurationError("No record store was built for the configured table.")
        return self.record_store


@lru_cache(maxsize=1)
def get_services() -> Services:
    """
    Builds the AWS clients from configuration. Cached like `get_config`, so
    clients are created on the first invocation rather than at import time.
    """
    config = get_config()
    logger.setLevel(config.log_level)

    publisher = None
    if config.topic_arn:
        publisher = SnsPublisher(boto3.client("sns"), config.topic_arn)

    record_store = None
    if config.record_table:
        record_store = DynamoRecordStore(boto3.client("dynamodb"), config.record_table)

    return Services(
        config=config,
        s3_client=S3Client(boto3.client("s3")),
        publisher=publisher,
        record_store=record_store,
        effect=LoggingEffect(config.work_delay_seconds),
    )


def build_partial_failure_response(
    failed_message_ids: set[str],
) -> PartialItemFailureResponse:
    """
    Given a set of SQS message IDs, return the structure that the
    Lambda partial batch response API expects.
    """
    failures = [
        cast(PartialItemFailures, {"itemIdentifier": mid})
        for mid in sorted(failed_message_ids)
    ]
    response = cast(PartialItemFailureResponse, {"batchItemFailures": failures})
    return response


def _build_dispatcher(services: Services) -> Dispatcher:
    config = services.config
    return Dispatcher(
        services.require_publisher(),
        max_workers=config.dispatch_workers,
        max_in_flight=config.max_in_flight_batches,
        timeout_seconds=config.dispatch_timeout_seconds,
    )


def _routing_key(record: SQSRecord) -> str:
    attribute = record.message_attributes[ROUTING_KEY_ATTRIBUTE]
    return (attribute.string_value or "") if attribute else ""


def _parse_rows(
    record: SQSRecord, row_model: type[SkuProductRow] | None
) -> list[dict[str, Any]] | None:
    try:
        return rows_from_message(record.body, row_model=row_model)
    except ParseError as e:
        metrics.add_metric(name="InvalidMessages", unit=MetricUnit.Count, value=1)
        logger.warning(
            "Failed to parse SQS message body.",
            extra={"messageId": record.message_id, **get_error_context(e)},
        )
        return None


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def route_upload(event: dict, context: LambdaContext) -> dict[str, int]:
    """Announces each uploaded object on the topic, routed by its key."""
    services = get_services()
    publisher = services.require_publisher()
    metrics.add_dimension("environment", services.config.environment)

    routed = 0
    for record in S3Event(event).records:
        change = S3ChangeEvent(
            region=record.aws_region,
            bucket=record.s3.bucket.name,
            key=record.s3.get_object.key,
        )
        message_id = publisher.publish(change.model_dump_json(), routing_key=change.key)
        routed += 1
        logger.info(
            "Change event sent to topic",
            extra={
                "routing_key": change.key,
                "bucket": change.bucket,
                "message_id": message_id,
            },
        )

    metrics.add_metric(name="RoutedUploads", unit=MetricUnit.Count, value=routed)
    return {"routed": routed}


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def split_csv(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Downloads each announced CSV and publishes its rows in size-bounded batches."""
    services = get_services()
    config = services.config
    dispatcher = _build_dispatcher(services)
    row_model = ROW_MODELS[config.row_schema]
    metrics.add_dimension("environment", config.environment)

    reports: list[dict[str, Any]] = []
    for record in SNSEvent(event).records:
        try:
            change = S3ChangeEvent.model_validate_json(record.sns.message)
        except pydantic.ValidationError as e:
            metrics.add_metric(name="InvalidChangeEvents", unit=MetricUnit.Count, value=1)
            logger.error(
                "Invalid change event received.",
                extra={"errors": e.errors(include_url=False)},
            )
            continue

        logger.info("Just heard change event", extra=change.model_dump())
        try:
            stream = services.s3_client.get_file_content_stream(change.bucket, change.key)
        except S3Error as e:
            if is_retryable_error(e):
                # Let the invocation fail so the notification is retried.
                raise
            metrics.add_metric(name="MissingSourceObjects", unit=MetricUnit.Count, value=1)
            logger.error(f"Unable to read source object: {e}", extra=get_error_context(e))
            continue

        with closing(stream):
            report = publish_rows(
                iter_csv_rows(stream, encoding=config.csv_encoding, row_model=row_model),
                dispatcher,
                max_payload_size=config.max_payload_size,
                routing_key=change.key,
                progress_log_interval=config.progress_log_interval,
            )

        metrics.add_metric(name="PublishedRows", unit=MetricUnit.Count, value=report.rows)
        metrics.add_metric(name="PublishedBatches", unit=MetricUnit.Count, value=report.batches)
        if report.failed_batches:
            metrics.add_metric(
                name="FailedBatches", unit=MetricUnit.Count, value=report.failed_batches
            )
        if report.parse_error is not None:
            metrics.add_metric(name="MalformedSources", unit=MetricUnit.Count, value=1)
        reports.append(report.to_dict())

    return {"reports": reports}


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def fan_out_batch(event: dict, context: LambdaContext) -> PartialItemFailureResponse:
    """Decomposes batch messages into one message per row, keeping the routing key."""
    services = get_services()
    dispatcher = _build_dispatcher(services)
    row_model = ROW_MODELS[services.config.row_schema]
    metrics.add_dimension("environment", services.config.environment)

    failed_message_ids: set[str] = set()
    for record in SQSEvent(event).records:
        rows = _parse_rows(record, row_model)
        if rows is None:
            failed_message_ids.add(record.message_id)
            continue

        report = fan_out_rows(
            rows,
            dispatcher,
            routing_key=_routing_key(record),
            progress_log_interval=services.config.progress_log_interval,
        )
        metrics.add_metric(name="PublishedRows", unit=MetricUnit.Count, value=report.rows)
        if report.failed_batches:
            # Redelivery republishes the whole batch; consumers are idempotent.
            metrics.add_metric(
                name="FailedBatches", unit=MetricUnit.Count, value=report.failed_batches
            )
            failed_message_ids.add(record.message_id)

    return build_partial_failure_response(failed_message_ids)


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def process_records(event: dict, context: LambdaContext) -> PartialItemFailureResponse:
    """Drives every row through claim -> effect -> complete, exactly once."""
    services = get_services()
    claims = ClaimProtocol(
        services.require_record_store(), requester_id=context.aws_request_id
    )
    processor = RowProcessor(claims, services.effect)
    row_model = ROW_MODELS[services.config.row_schema]
    metrics.add_dimension("environment", services.config.environment)

    sqs_records = list(SQSEvent(event).records)
    if not sqs_records:
        logger.warning("Event did not contain any SQS records. Exiting gracefully.")
        return {"batchItemFailures": []}

    failed_message_ids: set[str] = set()
    totals: Counter[RowOutcome] = Counter()
    for record in sqs_records:
        rows = _parse_rows(record, row_model)
        if rows is None:
            failed_message_ids.add(record.message_id)
            continue

        outcomes = process_rows(rows, processor)
        totals.update(outcomes)
        if outcomes[RowOutcome.STORE_UNAVAILABLE]:
            # No claim was taken for those rows, so redelivery is safe.
            failed_message_ids.add(record.message_id)

    for outcome, count in totals.items():
        metrics.add_metric(name=_OUTCOME_METRICS[outcome], unit=MetricUnit.Count, value=count)

    logger.info(
        "Processing complete.",
        extra={
            "sqs_messages": len(sqs_records),
            "outcomes": {outcome.value: count for outcome, count in totals.items()},
            "failed_messages": len(failed_message_ids),
        },
    )
    return build_partial_failure_response(failed_message_ids)
