"""
Retry policy for service requests.

A retry policy runs one request attempt after another until it succeeds, a
failure is classified as terminal, or no retries are left. The default
policy backs off exponentially and refreshes credentials once when the
service reports that they expired.

Attempt i (0-based) that fails with a retryable error is followed by a delay
of initial_retry_ms << i. With the defaults (50 ms, 10 retries) the worst case
waits about 51 seconds in total.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Protocol

from ..errors import KinesisError, ServiceError, TransportError

logger = logging.getLogger(__name__)

Attempt = Callable[[], Awaitable[Dict[str, Any]]]
Refresh = Callable[[], Awaitable[None]]

DEFAULT_ERROR_CODES: FrozenSet[str] = frozenset(
    {"EADDRINFO", "ETIMEDOUT", "ECONNRESET", "ESOCKETTIMEDOUT", "ENOTFOUND", "EMFILE"}
)
DEFAULT_ERROR_NAMES: FrozenSet[str] = frozenset(
    {"ProvisionedThroughputExceededException", "ThrottlingException"}
)
DEFAULT_EXPIRED_NAMES: FrozenSet[str] = frozenset(
    {"ExpiredTokenException", "ExpiredToken", "RequestExpired"}
)


class RetryPolicy(Protocol):
    """Strategy deciding whether and when a failed attempt is repeated."""

    async def run(self, attempt: Attempt, refresh_credentials: Refresh) -> Dict[str, Any]:
        """Run attempts until one succeeds or the policy gives up.

        Args:
            attempt: Builds, signs and sends the request once
            refresh_credentials: Re-discovers credentials for later attempts

        Raises:
            KinesisError: The failure the policy gave up on
        """
        ...


class ExponentialBackoffRetryPolicy:
    """Default retry policy.

    Attributes:
        initial_retry_ms: Delay after the first failed attempt
        max_retries: Retries after the first attempt
        error_codes: Transport error codes worth retrying
        error_names: Service exception names worth retrying (throttling)
        expired_names: Service exception names meaning expired credentials
    """

    def __init__(
        self,
        initial_retry_ms: int = 50,
        max_retries: int = 10,
        error_codes: Optional[Iterable[str]] = None,
        error_names: Optional[Iterable[str]] = None,
        expired_names: Optional[Iterable[str]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.initial_retry_ms = initial_retry_ms
        self.max_retries = max_retries
        self.error_codes = frozenset(error_codes) if error_codes is not None else DEFAULT_ERROR_CODES
        self.error_names = frozenset(error_names) if error_names is not None else DEFAULT_ERROR_NAMES
        self.expired_names = (
            frozenset(expired_names) if expired_names is not None else DEFAULT_EXPIRED_NAMES
        )
        self._sleep = sleep

    def is_expired_credentials(self, error: KinesisError) -> bool:
        return (
            isinstance(error, ServiceError)
            and error.status_code == 400
            and error.name in self.expired_names
        )

    def is_retryable(self, error: KinesisError) -> bool:
        if isinstance(error, TransportError):
            return error.code in self.error_codes
        if isinstance(error, ServiceError):
            return error.status_code >= 500 or error.name in self.error_names
        return False

    def delay_ms(self, retry: int) -> int:
        return self.initial_retry_ms << retry

    async def run(self, attempt: Attempt, refresh_credentials: Refresh) -> Dict[str, Any]:
        retry = 0
        while True:
            try:
                return await attempt()
            except KinesisError as error:
                if retry >= self.max_retries:
                    raise

                if self.is_expired_credentials(error):
                    logger.info(
                        "Credentials expired, refreshing",
                        extra={"error": error.name, "attempt": retry},
                    )
                    await refresh_credentials()
                    return await attempt()

                if not self.is_retryable(error):
                    raise

                delay = self.delay_ms(retry)
                logger.warning(
                    f"Request failed, retrying in {delay} ms: {error}",
                    extra={"error_code": error.code, "attempt": retry, "delay_ms": delay},
                )
                await self._sleep(delay / 1000)
                retry += 1
