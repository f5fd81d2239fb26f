"""
Shared fixtures.

Requests in these tests go through the real RequestClient and SigV4Signer;
only the transport is replaced, by InMemoryKinesis.
"""

import pytest

from kinesis_stream.config import ClientConfig, Credentials
from kinesis_stream.memory import InMemoryKinesis

TEST_CREDENTIALS = Credentials(access_key_id="AKIDTEST", secret_access_key="test-secret")


@pytest.fixture
def kinesis():
    """Create a fresh in-memory service."""
    return InMemoryKinesis()


@pytest.fixture
def client_config():
    """Client settings pointing at a local endpoint with explicit credentials."""
    return ClientConfig(
        endpoint_url="http://localhost:4567",
        region="us-east-1",
        credentials=TEST_CREDENTIALS,
        initial_retry_ms=1,
        max_retries=3,
    )
