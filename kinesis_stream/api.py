"""
One-shot service calls that do not need a stream session.

Example:
    >>> names = await list_streams(ClientConfig(region="eu-west-1"))
    >>> await request("CreateStream", {"StreamName": "events", "ShardCount": 2})
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .config import ClientConfig
from .request.client import RequestClient
from .request.credentials import CredentialProvider
from .request.signing import Signer
from .request.transport import Transport


async def request(
    action: str,
    payload: Optional[Dict[str, Any]] = None,
    config: Optional[ClientConfig] = None,
    *,
    transport: Optional[Transport] = None,
    signer: Optional[Signer] = None,
    credential_provider: Optional[CredentialProvider] = None,
) -> Dict[str, Any]:
    """Call any service action with signing and retries.

    Args:
        action: Action name, e.g. "CreateStream"
        payload: Request parameters
        config: Client configuration (defaults resolve from the environment)

    Returns:
        Decoded response body
    """
    async with RequestClient(
        config,
        transport=transport,
        signer=signer,
        credential_provider=credential_provider,
    ) as client:
        return await client.send(action, payload)


async def list_streams(
    config: Optional[ClientConfig] = None,
    *,
    transport: Optional[Transport] = None,
    signer: Optional[Signer] = None,
    credential_provider: Optional[CredentialProvider] = None,
) -> List[str]:
    """List every stream name in the account and region, following pagination."""
    names: List[str] = []
    params: Dict[str, Any] = {}

    async with RequestClient(
        config,
        transport=transport,
        signer=signer,
        credential_provider=credential_provider,
    ) as client:
        while True:
            response = await client.send("ListStreams", params)
            batch = response.get("StreamNames", [])
            names.extend(batch)
            if not response.get("HasMoreStreams") or not batch:
                break
            params = {"ExclusiveStartStreamName": batch[-1]}

    return names
