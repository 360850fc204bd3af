# tests/unit/test_exceptions.py

import json
import logging

import pytest

from record_ingest.exceptions import (
    ConfigurationError,
    DispatchError,
    EffectError,
    NonRetryableError,
    ParseError,
    RecordIngestError,
    RecordStoreError,
    RetryableError,
    S3AccessDeniedError,
    S3Error,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
    TransientStoreError,
    get_error_context,
    is_retryable_error,
)


class TestRecordIngestError:
    """Test the base RecordIngestError class."""

    def test_basic_initialization(self):
        error = RecordIngestError("Test message")
        assert str(error) == "Test message"
        assert error.message == "Test message"
        assert error.error_code == "RecordIngestError"
        assert error.context == {}
        assert error.correlation_id is None

    def test_full_initialization(self):
        context = {"key": "value"}
        error = RecordIngestError(
            "Test message",
            error_code="CUSTOM_CODE",
            context=context,
            correlation_id="test-123",
        )
        assert error.error_code == "CUSTOM_CODE"
        assert error.context == context
        assert error.correlation_id == "test-123"

    def test_context_is_copied(self):
        context = {"key": "value"}
        error = RecordIngestError("Test message", context=context)
        context["key"] = "changed"
        assert error.context == {"key": "value"}

    def test_to_dict(self):
        error = RecordIngestError(
            "Test message",
            error_code="TEST_CODE",
            context={"key": "value"},
            correlation_id="test-123",
        )
        assert error.to_dict() == {
            "error_type": "RecordIngestError",
            "error_code": "TEST_CODE",
            "error_message": "Test message",
            "context": {"key": "value"},
            "correlation_id": "test-123",
            "retryable": False,
        }


class TestS3Errors:
    """Test S3-related error classes."""

    def test_object_not_found(self):
        error = S3ObjectNotFoundError("bucket", "path/file.csv")
        assert error.message == "S3 object not found: s3://bucket/path/file.csv"
        assert error.error_code == "S3_OBJECT_NOT_FOUND"
        assert error.context == {"bucket": "bucket", "key": "path/file.csv"}
        assert isinstance(error, S3Error)
        assert isinstance(error, NonRetryableError)

    def test_access_denied_merges_extra_context(self):
        error = S3AccessDeniedError("bucket", "k", context={"aws_error_code": "AccessDenied"})
        assert error.error_code == "S3_ACCESS_DENIED"
        assert error.context == {"bucket": "bucket", "key": "k", "aws_error_code": "AccessDenied"}

    @pytest.mark.parametrize(
        "error_type, code", [(S3ThrottlingError, "S3_THROTTLING"), (S3TimeoutError, "S3_TIMEOUT")]
    )
    def test_transient_s3_errors_are_retryable(self, error_type, code):
        error = error_type("get_object", context={"key": "k"})
        assert error.error_code == code
        assert error.context == {"operation": "get_object", "key": "k"}
        assert is_retryable_error(error)


class TestRecordStoreErrors:
    def test_record_store_error(self):
        error = RecordStoreError("conditional_upsert", "abc")
        assert error.error_code == "RECORD_STORE_ERROR"
        assert error.context == {"operation": "conditional_upsert", "record_id": "abc"}
        assert not is_retryable_error(error)

    def test_transient_store_error_is_a_retryable_store_error(self):
        error = TransientStoreError("get", "abc", context={"aws_error_code": "ThrottlingException"})
        assert error.error_code == "TRANSIENT_STORE_ERROR"
        assert isinstance(error, RecordStoreError)
        assert is_retryable_error(error)
        assert error.context["aws_error_code"] == "ThrottlingException"


class TestProcessingErrors:
    def test_effect_error(self):
        error = EffectError("downstream rejected", record_id="abc")
        assert error.message == "Work effect failed: downstream rejected"
        assert error.error_code == "EFFECT_FAILED"
        assert error.context == {"reason": "downstream rejected", "record_id": "abc"}
        assert not is_retryable_error(error)

    def test_dispatch_error_default_and_override_codes(self):
        assert DispatchError("boom").error_code == "DISPATCH_FAILED"
        error = DispatchError("slow down", routing_key="k", error_code="SNS_THROTTLING")
        assert error.error_code == "SNS_THROTTLING"
        assert error.context == {"reason": "slow down", "routing_key": "k"}
        assert is_retryable_error(error)

    def test_parse_error(self):
        error = ParseError("expected 3 fields but found 2", line_number=7)
        assert error.error_code == "PARSE_ERROR"
        assert error.context["line_number"] == 7
        assert isinstance(error, NonRetryableError)

    def test_configuration_error(self):
        error = ConfigurationError("Missing required environment variable: TOPIC_ARN")
        assert error.error_code == "CONFIGURATION_ERROR"
        assert not is_retryable_error(error)


class TestUtilityFunctions:
    def test_is_retryable_error_with_non_service_errors(self):
        assert not is_retryable_error(ValueError("x"))
        assert is_retryable_error(RetryableError("x"))

    def test_get_error_context_for_service_error(self):
        error = ParseError("bad row", line_number=2)
        assert get_error_context(error) == error.to_dict()

    def test_get_error_context_for_other_errors(self):
        assert get_error_context(KeyError("missing")) == {
            "error_type": "KeyError",
            "error_message": "'missing'",
            "retryable": False,
        }

    def test_error_context_is_json_serializable(self):
        error = DispatchError("boom", routing_key="k")
        assert json.loads(json.dumps(get_error_context(error)))["error_code"] == "DISPATCH_FAILED"

    def test_error_context_is_safe_as_logging_extra(self):
        """None of the keys may collide with LogRecord's own attributes."""
        record = logging.getLogger("test").makeRecord(
            "test",
            logging.ERROR,
            __file__,
            1,
            "msg",
            None,
            None,
            extra=get_error_context(EffectError("boom")),
        )
        assert record.error_code == "EFFECT_FAILED"


class TestErrorChaining:
    def test_cause_is_preserved(self):
        original = ValueError("Original error")
        try:
            try:
                raise original
            except ValueError as e:
                raise S3TimeoutError("get_object") from e
        except S3TimeoutError as chained:
            assert chained.__cause__ is original
