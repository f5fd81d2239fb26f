"""
Credential and region discovery.

Fills in whatever the configuration leaves out using the standard AWS
credential chain (environment, shared config files, container and instance
metadata). Discovery is lazy: only the missing pieces are looked up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from aiobotocore.session import AioSession, get_session
from botocore.exceptions import BotoCoreError

from ..config import Credentials
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Discovered:
    region: Optional[str] = None
    credentials: Optional[Credentials] = None


class CredentialProvider(Protocol):
    async def load(self) -> Discovered:
        ...

    async def load_region(self) -> Optional[str]:
        ...

    async def load_credentials(self) -> Optional[Credentials]:
        ...


class BotocoreCredentialProvider:
    """Discovers region and credentials through an aiobotocore session.

    Without an injected session every lookup builds a fresh one, so a
    credential refresh re-reads the chain instead of returning a cached,
    expired value.
    """

    def __init__(self, session: Optional[AioSession] = None) -> None:
        self._session = session

    def _get_session(self) -> AioSession:
        return self._session or get_session()

    async def load_region(self) -> Optional[str]:
        try:
            return self._get_session().get_config_variable("region")
        except BotoCoreError as e:
            raise ConfigurationError(f"Failed to discover AWS region: {e}", setting="region") from e

    async def load_credentials(self) -> Optional[Credentials]:
        try:
            found = await self._get_session().get_credentials()
            if found is None:
                return None
            frozen = await found.get_frozen_credentials()
        except BotoCoreError as e:
            raise ConfigurationError(
                f"Failed to discover AWS credentials: {e}", setting="credentials"
            ) from e

        logger.debug("Discovered AWS credentials", extra={"method": getattr(found, "method", None)})
        return Credentials(
            access_key_id=frozen.access_key,
            secret_access_key=frozen.secret_key,
            session_token=frozen.token,
        )

    async def load(self) -> Discovered:
        return Discovered(
            region=await self.load_region(),
            credentials=await self.load_credentials(),
        )
