"""
Request signing.

Signs a built request in place with AWS Signature Version 4, using botocore's
signer so the canonical request rules match the service exactly.
"""

from __future__ import annotations

from typing import Protocol

from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import ReadOnlyCredentials

from ..config import Credentials
from .transport import HttpRequest


class Signer(Protocol):
    """Adds authentication headers to a request."""

    def sign(self, request: HttpRequest, credentials: Credentials, region: str) -> None:
        ...


class SigV4Signer:
    """AWS Signature Version 4 signer.

    Replaces request.headers with the signed header set (Authorization,
    X-Amz-Date and, for temporary credentials, X-Amz-Security-Token).
    """

    def __init__(self, service_name: str = "kinesis") -> None:
        self.service_name = service_name

    def sign(self, request: HttpRequest, credentials: Credentials, region: str) -> None:
        aws_request = AWSRequest(
            method="POST",
            url=request.url,
            data=request.body,
            headers=dict(request.headers),
        )
        SigV4Auth(
            ReadOnlyCredentials(
                credentials.access_key_id,
                credentials.secret_access_key,
                credentials.session_token,
            ),
            self.service_name,
            region,
        ).add_auth(aws_request)
        request.headers = dict(aws_request.headers.items())
