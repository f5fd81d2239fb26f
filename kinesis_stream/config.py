"""
Configuration management for the Kinesis stream client.

Configuration is resolved once per session, either from explicit values or from
environment variables. This module provides typed configuration classes with
validation.

Invariants:
    - All settings have sensible defaults for local development
    - A stream configuration always names its stream
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in step
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .request.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "20131202"
DEFAULT_REGION = "us-east-1"


class ReadStart(Enum):
    """Where a shard without a read cursor starts reading."""

    LATEST = "LATEST"
    OLDEST = "TRIM_HORIZON"


@dataclass(frozen=True)
class Credentials:
    """AWS credentials used to sign requests.

    Attributes:
        access_key_id: Access key ID
        secret_access_key: Secret access key
        session_token: Session token for temporary credentials
    """

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = field(default=None, repr=False)
    session_token: Optional[str] = field(default=None, repr=False)

    @property
    def is_complete(self) -> bool:
        """Whether both key halves are present."""
        return bool(self.access_key_id and self.secret_access_key)

    def merged_with(self, other: Credentials) -> Credentials:
        """Fill fields missing here from another set of credentials."""
        return Credentials(
            access_key_id=self.access_key_id or other.access_key_id,
            secret_access_key=self.secret_access_key or other.secret_access_key,
            session_token=self.session_token or other.session_token,
        )

    @classmethod
    def from_env(cls) -> Optional[Credentials]:
        """Load explicit credentials from the environment, if any are set."""
        creds = cls(
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            session_token=os.getenv("AWS_SESSION_TOKEN"),
        )
        if not (creds.access_key_id or creds.secret_access_key):
            return None
        return creds


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'", setting=name)


@dataclass(frozen=True)
class ClientConfig:
    """Connection, signing and retry settings for service requests.

    Attributes:
        host: Service hostname (derived from region when omitted)
        port: Service port (scheme default when omitted)
        region: AWS region (discovered, then derived from host, when omitted)
        endpoint_url: Full endpoint URL; overrides host, port and https
        https: Use TLS
        credentials: Explicit credentials; missing pieces are discovered
        version: API version used in the target header
        timeout_ms: Per-attempt timeout in milliseconds
        initial_retry_ms: First backoff delay for retryable failures
        max_retries: Retries after the first attempt
        retry_policy: Strategy overriding the default exponential backoff
    """

    host: Optional[str] = None
    port: Optional[int] = None
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    https: bool = True
    credentials: Optional[Credentials] = None
    version: str = DEFAULT_API_VERSION
    timeout_ms: Optional[int] = None
    initial_retry_ms: int = 50
    max_retries: int = 10
    retry_policy: Optional["RetryPolicy"] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Validate numeric settings.

        Raises:
            ConfigurationError: If a setting is out of range.
        """
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", setting="max_retries")
        if self.initial_retry_ms < 0:
            raise ConfigurationError(
                "initial_retry_ms must be >= 0", setting="initial_retry_ms"
            )
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ConfigurationError("timeout_ms must be > 0", setting="timeout_ms")

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load configuration from environment variables."""
        max_retries = _env_int("KINESIS_MAX_RETRIES")
        initial_retry_ms = _env_int("KINESIS_INITIAL_RETRY_MS")
        return cls(
            host=os.getenv("KINESIS_HOST"),
            port=_env_int("KINESIS_PORT"),
            region=os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION")),
            endpoint_url=os.getenv("KINESIS_ENDPOINT_URL"),
            https=os.getenv("KINESIS_HTTPS", "true").lower() == "true",
            credentials=Credentials.from_env(),
            version=os.getenv("KINESIS_API_VERSION", DEFAULT_API_VERSION),
            timeout_ms=_env_int("KINESIS_TIMEOUT_MS"),
            initial_retry_ms=50 if initial_retry_ms is None else initial_retry_ms,
            max_retries=10 if max_retries is None else max_retries,
        )


@dataclass(frozen=True)
class StreamConfig:
    """Configuration for one stream session.

    Attributes:
        name: Stream name (required)
        client: Request settings
        write_concurrency: Maximum writes in flight
        limit: Maximum records per GetRecords call
        cache_size: Partition keys remembered by the sequence cache
        shards: Fixed shard ids; skips shard discovery when given
        backoff_ms: Delay between fetch cycles
        read_start: Where shards without a read cursor start
        high_water_mark: Records delivered ahead of the consumer
    """

    name: str = ""
    client: ClientConfig = field(default_factory=ClientConfig)
    write_concurrency: int = 1
    limit: int = 25
    cache_size: int = 1000
    shards: Optional[Tuple[str, ...]] = None
    backoff_ms: Optional[int] = None
    read_start: ReadStart = ReadStart.LATEST
    high_water_mark: int = 16

    def __post_init__(self) -> None:
        if self.shards is not None and not isinstance(self.shards, tuple):
            object.__setattr__(self, "shards", tuple(self.shards))
        self.validate()

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If the name is missing or a setting is invalid.
        """
        if not self.name:
            raise ConfigurationError("A stream name must be given", setting="name")
        if self.write_concurrency < 1:
            raise ConfigurationError(
                "write_concurrency must be >= 1", setting="write_concurrency"
            )
        if self.limit < 1:
            raise ConfigurationError("limit must be >= 1", setting="limit")
        if self.cache_size < 1:
            raise ConfigurationError("cache_size must be >= 1", setting="cache_size")
        if self.high_water_mark < 1:
            raise ConfigurationError(
                "high_water_mark must be >= 1", setting="high_water_mark"
            )
        if self.backoff_ms is not None and self.backoff_ms < 0:
            raise ConfigurationError("backoff_ms must be >= 0", setting="backoff_ms")

    @classmethod
    def from_env(cls, name: Optional[str] = None) -> StreamConfig:
        """Load configuration from environment variables.

        Args:
            name: Stream name overriding KINESIS_STREAM_NAME

        Raises:
            ConfigurationError: If no stream name is available.
        """
        iterator_type = os.getenv("KINESIS_ITERATOR_TYPE", ReadStart.LATEST.value).upper()
        try:
            read_start = ReadStart(iterator_type)
        except ValueError:
            raise ConfigurationError(
                f"Invalid KINESIS_ITERATOR_TYPE '{iterator_type}'. "
                "Must be one of: LATEST, TRIM_HORIZON",
                setting="KINESIS_ITERATOR_TYPE",
            )

        shards_env = os.getenv("KINESIS_SHARDS")
        shards = tuple(s.strip() for s in shards_env.split(",") if s.strip()) if shards_env else None

        return cls(
            name=name or os.getenv("KINESIS_STREAM_NAME", ""),
            client=ClientConfig.from_env(),
            write_concurrency=_env_int("KINESIS_WRITE_CONCURRENCY") or 1,
            limit=_env_int("KINESIS_MAX_RECORDS") or 25,
            cache_size=_env_int("KINESIS_CACHE_SIZE") or 1000,
            shards=shards,
            backoff_ms=_env_int("KINESIS_BACKOFF_MS"),
            read_start=read_start,
        )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Stream configuration loaded",
            extra={
                "stream": self.name,
                "region": self.client.region,
                "endpoint": self.client.endpoint_url or self.client.host or "AWS",
                "write_concurrency": self.write_concurrency,
                "limit": self.limit,
                "read_start": self.read_start.value,
                "fixed_shards": list(self.shards) if self.shards else None,
                "explicit_credentials": self.client.credentials is not None,
            },
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )
