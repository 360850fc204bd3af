# src/record_ingest/clients.py

"""
Client wrappers for interacting with AWS services (S3 and SNS).

These classes provide a clean, abstracted interface over raw boto3 clients,
making the core application logic easier to read, test, and maintain. AWS
error codes are mapped onto the service's own exception hierarchy.
"""

import logging
from typing import BinaryIO, TYPE_CHECKING, cast

from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from .exceptions import (
    DispatchError,
    RecordIngestError,
    S3AccessDeniedError,
    S3ObjectNotFoundError,
    S3ThrottlingError,
    S3TimeoutError,
)

if TYPE_CHECKING:
    from mypy_boto3_s3.client import S3Client as S3ClientType
    from mypy_boto3_sns.client import SNSClient as SNSClientType

logger = logging.getLogger(__name__)

ROUTING_KEY_ATTRIBUTE = "routing-key"

_THROTTLING_CODES = ["Throttling", "ThrottlingException", "RequestLimitExceeded"]
_TIMEOUT_CODES = ["RequestTimeout", "RequestTimeoutException"]


class S3Client:
    """
    A wrapper for S3 client operations, focused on streaming uploaded files.
    """

    def __init__(self, s3_client: "S3ClientType"):
        self._client = s3_client

    def get_file_content_stream(self, bucket: str, key: str) -> BinaryIO:
        """
        Retrieves an S3 object's body as a file-like streaming object.
        Raises specific S3 exceptions based on the error type.
        """
        logger.info(
            "Initiating download from S3", extra={"bucket": bucket, "key": key}
        )
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]
            context = {
                "aws_error_code": error_code,
                "aws_error_message": error_message,
            }

            # Map boto3 error codes to our specific exception types
            if error_code == "NoSuchKey":
                raise S3ObjectNotFoundError(bucket=bucket, key=key, context=context) from e
            elif error_code == "AccessDenied":
                raise S3AccessDeniedError(bucket=bucket, key=key, context=context) from e
            elif error_code in _THROTTLING_CODES:
                raise S3ThrottlingError(
                    "get_object",
                    context={"bucket": bucket, "key": key, **context},
                ) from e
            elif error_code in _TIMEOUT_CODES:
                raise S3TimeoutError(
                    "get_object",
                    context={"bucket": bucket, "key": key, **context},
                ) from e
            else:
                # For other client errors, wrap in a generic service error
                raise RecordIngestError(
                    f"S3 client error: {error_message}",
                    error_code="S3_CLIENT_ERROR",
                    context={"bucket": bucket, "key": key, **context},
                ) from e
        except ReadTimeoutError as e:
            raise S3TimeoutError(
                "get_object",
                context={"bucket": bucket, "key": key, "timeout_error": str(e)},
            ) from e
        except EndpointConnectionError as e:
            raise S3TimeoutError(
                "get_object",
                context={"bucket": bucket, "key": key, "connection_error": str(e)},
            ) from e

        logger.info(
            "Download started",
            extra={
                "bucket": bucket,
                "key": key,
                "content_length": response.get("ContentLength"),
            },
        )
        return cast(BinaryIO, response["Body"])


class SnsPublisher:
    """
    A wrapper for publishing messages to a single SNS topic, tagging each one
    with a routing key so subscriptions can filter by origin.
    """

    def __init__(self, sns_client: "SNSClientType", topic_arn: str):
        self._client = sns_client
        self._topic_arn = topic_arn

    @property
    def topic_arn(self) -> str:
        return self._topic_arn

    def publish(self, message: str, routing_key: str) -> str:
        """Publishes *message* and returns the SNS message id."""
        request: dict = {"TopicArn": self._topic_arn, "Message": message}
        # SNS rejects empty attribute values, so an untagged message carries none.
        if routing_key:
            request["MessageAttributes"] = {
                ROUTING_KEY_ATTRIBUTE: {
                    "DataType": "String",
                    "StringValue": routing_key,
                }
            }
        logger.debug(
            "Submitting a message",
            extra={"characters": len(message), "routing_key": routing_key},
        )

        try:
            response = self._client.publish(**request)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"]["Message"]
            raise DispatchError(
                error_message,
                routing_key=routing_key,
                error_code=(
                    "SNS_THROTTLING" if error_code in _THROTTLING_CODES else "SNS_PUBLISH_ERROR"
                ),
                context={
                    "topic_arn": self._topic_arn,
                    "aws_error_code": error_code,
                },
            ) from e
        except (ReadTimeoutError, EndpointConnectionError) as e:
            raise DispatchError(
                str(e),
                routing_key=routing_key,
                error_code="SNS_CONNECTION_ERROR",
                context={"topic_arn": self._topic_arn},
            ) from e

        return response["MessageId"]
