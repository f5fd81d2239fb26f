"""
Request layer: transport, signing, credential discovery and retries.
"""

from .client import RequestClient
from .credentials import BotocoreCredentialProvider, CredentialProvider, Discovered
from .retry import ExponentialBackoffRetryPolicy, RetryPolicy
from .signing import Signer, SigV4Signer
from .transport import AiohttpTransport, HttpRequest, HttpResponse, Transport

__all__ = [
    "RequestClient",
    "RetryPolicy",
    "ExponentialBackoffRetryPolicy",
    "CredentialProvider",
    "BotocoreCredentialProvider",
    "Discovered",
    "Signer",
    "SigV4Signer",
    "Transport",
    "AiohttpTransport",
    "HttpRequest",
    "HttpResponse",
]
