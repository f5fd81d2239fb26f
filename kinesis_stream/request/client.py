"""
Signed, retried requests against the Kinesis JSON API.

The RequestClient turns (action, payload) into one logical service call:
it resolves the effective endpoint, region and credentials once, then for
every attempt builds the request with a fresh date, signs it, sends it over
the transport and decodes the JSON response. The retry policy decides what
happens when an attempt fails.

Invariants:
    - Configuration is resolved once; only credentials change afterwards
    - Every attempt is signed with a freshly stamped date
    - A timeout cancels the in-flight call and counts as ETIMEDOUT
    - Non-200 responses never return normally

How to change safely:
    - Keep error classification in the retry policy, not here
    - Test against InMemoryKinesis before a live stream
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from email.utils import formatdate
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from ..config import DEFAULT_REGION, ClientConfig, Credentials
from ..errors import ConfigurationError, ProtocolError, ServiceError, TransportError
from .credentials import BotocoreCredentialProvider, CredentialProvider
from .retry import ExponentialBackoffRetryPolicy, RetryPolicy
from .signing import Signer, SigV4Signer
from .transport import AiohttpTransport, HttpRequest, HttpResponse, Transport

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/x-amz-json-1.1"
TARGET_NAMESPACE = "Kinesis"
LOCAL_HOSTS = ("localhost", "127.0.0.1")


@dataclass(frozen=True)
class Endpoint:
    """Effective connection settings for every request."""

    scheme: str
    host: str
    port: int
    region: str

    @property
    def host_header(self) -> str:
        default_port = 443 if self.scheme == "https" else 80
        return self.host if self.port == default_port else f"{self.host}:{self.port}"

    @property
    def verify_ssl(self) -> bool:
        return self.host not in LOCAL_HOSTS


def region_from_host(host: Optional[str]) -> Optional[str]:
    """Extract the region from a service hostname like kinesis.eu-west-1.amazonaws.com."""
    if not host or not host.endswith(".amazonaws.com"):
        return None
    parts = host.split(".")
    return parts[1] if len(parts) > 3 else None


class RequestClient:
    """Client for the Kinesis JSON API.

    Example:
        >>> async with RequestClient(ClientConfig(region="us-east-1")) as client:
        ...     response = await client.send("ListStreams", {})
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        transport: Optional[Transport] = None,
        signer: Optional[Signer] = None,
        credential_provider: Optional[CredentialProvider] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.transport: Transport = transport or AiohttpTransport()
        self._owns_transport = transport is None
        self.signer: Signer = signer or SigV4Signer()
        self.credential_provider: CredentialProvider = (
            credential_provider or BotocoreCredentialProvider()
        )
        self.retry_policy: RetryPolicy = self.config.retry_policy or ExponentialBackoffRetryPolicy(
            initial_retry_ms=self.config.initial_retry_ms,
            max_retries=self.config.max_retries,
        )
        self._endpoint: Optional[Endpoint] = None
        self._credentials: Optional[Credentials] = None
        self._resolve_lock = asyncio.Lock()

    @property
    def endpoint(self) -> Optional[Endpoint]:
        """Effective endpoint, None until the first request resolves it."""
        return self._endpoint

    async def resolve(self) -> Endpoint:
        """Resolve endpoint, region and credentials on first use.

        Raises:
            ConfigurationError: If credentials cannot be found
        """
        if self._endpoint is not None:
            return self._endpoint

        async with self._resolve_lock:
            if self._endpoint is None:
                self._endpoint = await self._resolve_config()
        return self._endpoint

    async def _resolve_config(self) -> Endpoint:
        config = self.config
        scheme = "https" if config.https else "http"
        host = config.host
        port = config.port

        if config.endpoint_url:
            url = urlsplit(config.endpoint_url)
            scheme = url.scheme or scheme
            host = url.hostname or host
            port = url.port or port

        region = config.region
        credentials = config.credentials
        need_region = not region
        need_credentials = credentials is None or not credentials.is_complete
        found: Optional[Credentials] = None

        if need_region and need_credentials:
            discovered = await self.credential_provider.load()
            region, found = discovered.region, discovered.credentials
        elif need_region:
            region = await self.credential_provider.load_region()
        elif need_credentials:
            found = await self.credential_provider.load_credentials()

        if need_credentials:
            if found is not None:
                credentials = credentials.merged_with(found) if credentials else found
            if credentials is None or not credentials.is_complete:
                raise ConfigurationError(
                    "No AWS credentials found in configuration or environment",
                    setting="credentials",
                )
        self._credentials = credentials

        region = region or region_from_host(host) or DEFAULT_REGION
        host = host or f"kinesis.{region}.amazonaws.com"
        if port is None:
            port = 443 if scheme == "https" else 80

        endpoint = Endpoint(scheme=scheme, host=host, port=port, region=region)
        logger.debug(
            "Resolved request configuration",
            extra={"host": host, "port": port, "scheme": scheme, "region": region},
        )
        return endpoint

    async def refresh_credentials(self) -> None:
        """Re-discover credentials after the service reported them expired."""
        credentials = await self.credential_provider.load_credentials()
        if credentials is None or not credentials.is_complete:
            raise ConfigurationError("Failed to refresh AWS credentials", setting="credentials")
        self._credentials = credentials
        logger.info("Refreshed AWS credentials")

    async def send(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Call a service action.

        Args:
            action: Action name, e.g. "PutRecord"
            payload: Request parameters

        Returns:
            Decoded response body

        Raises:
            ConfigurationError: If credentials cannot be resolved
            TransportError: If the network failed after the last retry
            ServiceError: If the service rejected the request
            ProtocolError: If a successful response was not JSON
        """
        endpoint = await self.resolve()
        body = json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")

        async def attempt() -> Dict[str, Any]:
            return await self._attempt(endpoint, action, body)

        return await self.retry_policy.run(attempt, self.refresh_credentials)

    def build_request(self, endpoint: Endpoint, action: str, body: bytes) -> HttpRequest:
        request = HttpRequest(
            scheme=endpoint.scheme,
            host=endpoint.host,
            port=endpoint.port,
            body=body,
            verify_ssl=endpoint.verify_ssl,
            headers={
                "Host": endpoint.host_header,
                "Content-Length": str(len(body)),
                "Content-Type": CONTENT_TYPE,
                "X-Amz-Target": f"{TARGET_NAMESPACE}_{self.config.version}.{action}",
                "Date": formatdate(usegmt=True),
            },
        )
        if self._credentials is None:
            raise ConfigurationError("Request built before credentials were resolved")
        self.signer.sign(request, self._credentials, endpoint.region)
        return request

    async def _attempt(self, endpoint: Endpoint, action: str, body: bytes) -> Dict[str, Any]:
        request = self.build_request(endpoint, action, body)
        log_context = {"host": endpoint.host, "action": action}
        logger.debug("Kinesis request start", extra=log_context)

        timeout_ms = self.config.timeout_ms
        try:
            if timeout_ms is not None:
                response = await asyncio.wait_for(
                    self.transport.send(request), timeout=timeout_ms / 1000
                )
            else:
                response = await self.transport.send(request)
        except asyncio.TimeoutError:
            logger.warning("Kinesis request timed out", extra=log_context)
            raise TransportError(
                f"{action} timed out after {timeout_ms} ms", code="ETIMEDOUT", action=action
            )
        except TransportError as e:
            e.action = e.action or action
            logger.warning(
                f"Kinesis request error: {e}", extra={**log_context, "error_code": e.code}
            )
            raise

        return self._decode(action, response)

    def _decode(self, action: str, response: HttpResponse) -> Dict[str, Any]:
        parsed: Any = None
        parse_failed = False
        if response.body:
            try:
                parsed = json.loads(response.body)
            except ValueError:
                parse_failed = True

        if response.status == 200:
            if parse_failed:
                raise ProtocolError(
                    f"{action} returned a body that is not JSON", action=action, body=response.body
                )
            logger.debug(
                "Kinesis request finish",
                extra={"action": action, "status": response.status, "length": len(response.body)},
            )
            return parsed if isinstance(parsed, dict) else {}

        error = ServiceError.from_response(response.status, response.body, parsed, action=action)
        logger.debug(
            "Kinesis request error",
            extra={
                "action": action,
                "status": error.status_code,
                "name": error.name,
                "error_message": error.message,
            },
        )
        raise error

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self.transport.close()

    async def __aenter__(self) -> RequestClient:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()
