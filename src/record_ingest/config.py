import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ROW_SCHEMAS = ("generic", "sku-product")


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    service_name: str
    environment: str

    # --- Handler-specific Variables (see `require`) ---
    record_table: str | None
    topic_arn: str | None

    # --- Optional Variables with Defaults ---
    max_payload_size: int
    dispatch_workers: int
    dispatch_queue_depth: int
    dispatch_timeout_seconds: int
    progress_log_interval: int
    row_schema: str
    csv_encoding: str
    work_delay_seconds: float
    log_level: str

    # --- Derived Properties ---
    @property
    def max_in_flight_batches(self) -> int:
        return self.dispatch_workers + self.dispatch_queue_depth

    def require(self, name: str) -> str:
        """
        Returns a handler-specific setting, failing with a ConfigurationError
        when the deployment did not provide it.
        """
        value = getattr(self, name)
        if not value:
            raise ConfigurationError(
                f"Setting '{name}' is required by this handler but was not provided."
            )
        return value

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            service_name = os.environ["SERVICE_NAME"]
            environment = os.environ["ENVIRONMENT"]

            record_table = os.getenv("RECORD_TABLE_NAME") or None
            topic_arn = os.getenv("TOPIC_ARN") or None

            # --- Handle optional and numeric variables with validation ---
            max_payload_size = int(os.getenv("MAX_PAYLOAD_SIZE", "256000"))
            if max_payload_size <= 0:
                raise ValueError("MAX_PAYLOAD_SIZE must be a positive integer.")

            dispatch_workers = int(os.getenv("DISPATCH_WORKERS", "16"))
            if dispatch_workers <= 0:
                raise ValueError("DISPATCH_WORKERS must be a positive integer.")

            dispatch_queue_depth = int(os.getenv("DISPATCH_QUEUE_DEPTH", "32"))
            if dispatch_queue_depth <= 0:
                raise ValueError("DISPATCH_QUEUE_DEPTH must be a positive integer.")

            dispatch_timeout_seconds = int(os.getenv("DISPATCH_TIMEOUT_SECONDS", "900"))
            if dispatch_timeout_seconds <= 0:
                raise ValueError("DISPATCH_TIMEOUT_SECONDS must be a positive integer.")

            progress_log_interval = int(os.getenv("PROGRESS_LOG_INTERVAL", "1000"))
            if progress_log_interval <= 0:
                raise ValueError("PROGRESS_LOG_INTERVAL must be a positive integer.")

            work_delay_seconds = float(os.getenv("WORK_DELAY_SECONDS", "0"))
            if work_delay_seconds < 0:
                raise ValueError("WORK_DELAY_SECONDS must not be negative.")

            row_schema = os.getenv("ROW_SCHEMA", "generic").lower()
            if row_schema not in ROW_SCHEMAS:
                raise ValueError(
                    f"ROW_SCHEMA must be one of {list(ROW_SCHEMAS)}, not '{row_schema}'"
                )

            csv_encoding = os.getenv("CSV_ENCODING", "utf-8")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        return cls(
            service_name=service_name,
            environment=environment,
            record_table=record_table,
            topic_arn=topic_arn,
            max_payload_size=max_payload_size,
            dispatch_workers=dispatch_workers,
            dispatch_queue_depth=dispatch_queue_depth,
            dispatch_timeout_seconds=dispatch_timeout_seconds,
            progress_log_interval=progress_log_interval,
            row_schema=row_schema,
            csv_encoding=csv_encoding,
            work_delay_seconds=work_delay_seconds,
            log_level=log_level,
        )


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
