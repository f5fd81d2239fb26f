"""
Error types for the Kinesis stream client.

This module defines all exception types raised by the client:
- KinesisError: Base exception
- ConfigurationError: Missing or invalid configuration
- TransportError: Connection, timeout and other network failures
- ServiceError: Non-200 response naming a service exception
- IteratorExpiredError: Shard iterator is no longer valid
- ProtocolError: Successful response with an unparsable body

Invariants:
    - All errors inherit from KinesisError
    - Errors include context for debugging
    - Secrets (credentials, signatures) never appear in messages
"""

from __future__ import annotations

from typing import Any, Dict, Optional

EXPIRED_ITERATOR_EXCEPTION = "ExpiredIteratorException"


class KinesisError(Exception):
    """Base exception for all Kinesis client errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "KINESIS_ERROR"
        self.details = details or {}


class ConfigurationError(KinesisError):
    """Configuration is missing or invalid.

    Raised when:
    - No stream name is given
    - A numeric setting is out of range
    - Credentials cannot be discovered anywhere
    """

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )
        self.setting = setting


class TransportError(KinesisError):
    """The request never produced an HTTP response.

    Raised when:
    - The connection is refused or reset
    - The host cannot be resolved
    - The request times out

    Attributes:
        code: Network error code (ETIMEDOUT, ECONNRESET, ENOTFOUND, ...)
        action: Service action being called
    """

    def __init__(
        self,
        message: str,
        code: str,
        action: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code, details={"action": action})
        self.action = action


class ServiceError(KinesisError):
    """The service answered with a non-200 status.

    Attributes:
        status_code: HTTP status code
        name: Exception name reported by the service, namespace stripped
        action: Service action being called
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        name: Optional[str] = None,
        action: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=name or f"HTTP_{status_code}",
            details={"status_code": status_code, "name": name, "action": action},
        )
        self.status_code = status_code
        self.name = name
        self.action = action

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str,
        parsed: Any,
        action: Optional[str] = None,
    ) -> ServiceError:
        """Build an error from a failed response.

        Args:
            status_code: HTTP status
            body: Raw response text
            parsed: Decoded JSON body, or None if the body was not JSON
            action: Service action being called

        Returns:
            ServiceError, or IteratorExpiredError for an expired iterator
        """
        if isinstance(parsed, dict):
            name = str(parsed.get("__type") or "").split("#")[-1] or None
            message = parsed.get("message") or parsed.get("Message") or body
        else:
            name = None
            if status_code == 413:
                body = "Request Entity Too Large"
            message = f"HTTP/1.1 {status_code} {body}"

        if name == EXPIRED_ITERATOR_EXCEPTION:
            return IteratorExpiredError(message, status_code=status_code, action=action)
        return cls(message, status_code=status_code, name=name, action=action)

    def __str__(self) -> str:
        if self.name:
            return f"{self.name}: {self.message}"
        return self.message


class IteratorExpiredError(ServiceError):
    """A shard iterator expired before it was used.

    Recovered inside the read path by acquiring a fresh iterator; only
    surfaces when the fresh iterator expires as well.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        action: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            name=EXPIRED_ITERATOR_EXCEPTION,
            action=action,
        )


class ProtocolError(KinesisError):
    """A 200 response carried a body that is not valid JSON."""

    def __init__(self, message: str, action: Optional[str] = None, body: str = "") -> None:
        super().__init__(
            message,
            code="PROTOCOL_ERROR",
            details={"action": action, "body": body[:200]},
        )
        self.action = action
        self.body = body
