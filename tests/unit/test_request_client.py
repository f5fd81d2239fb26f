"""
Unit tests for RequestClient.

Tests cover:
- Request headers and signing
- Endpoint and region resolution
- Credential discovery and refresh
- Response decoding and error mapping
- Per-attempt timeout
"""

import asyncio
import json

import pytest

from kinesis_stream.config import ClientConfig, Credentials
from kinesis_stream.errors import (
    ConfigurationError,
    IteratorExpiredError,
    ProtocolError,
    ServiceError,
    TransportError,
)
from kinesis_stream.request.client import RequestClient, region_from_host
from kinesis_stream.request.credentials import Discovered
from kinesis_stream.request.transport import HttpResponse

CREDS = Credentials(access_key_id="AKIDTEST", secret_access_key="test-secret")


def ok(body=None):
    return HttpResponse(status=200, headers={}, body=json.dumps(body) if body is not None else "")


def error(status, name, message="failed"):
    body = json.dumps({"__type": f"com.amazonaws.kinesis.v20131202#{name}", "message": message})
    return HttpResponse(status=status, headers={}, body=body)


class StubTransport:
    """Returns (or raises) scripted responses in order and records requests."""

    def __init__(self, *responses, delay=0, delays=()):
        self.responses = list(responses)
        self.requests = []
        self.delay = delay
        self.delays = list(delays)
        self.closed = False

    async def send(self, request):
        self.requests.append(request)
        delay = self.delays.pop(0) if self.delays else self.delay
        if delay:
            await asyncio.sleep(delay)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class StubCredentialProvider:
    def __init__(self, region=None, credentials=()):
        self.region = region
        self.credentials = list(credentials)
        self.calls = []

    async def load(self):
        self.calls.append("load")
        return Discovered(region=self.region, credentials=self._next())

    async def load_region(self):
        self.calls.append("load_region")
        return self.region

    async def load_credentials(self):
        self.calls.append("load_credentials")
        return self._next()

    def _next(self):
        return self.credentials.pop(0) if self.credentials else None


class TestRequestBuilding:
    """Tests for the headers of outgoing requests."""

    @pytest.mark.asyncio
    async def test_headers(self):
        transport = StubTransport(ok({"StreamNames": []}))
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=CREDS), transport=transport
        )

        await client.send("ListStreams", {"Limit": 10})

        request = transport.requests[0]
        assert request.headers["X-Amz-Target"] == "Kinesis_20131202.ListStreams"
        assert request.headers["Content-Type"] == "application/x-amz-json-1.1"
        assert request.headers["Content-Length"] == str(len(request.body))
        assert request.headers["Host"] == "kinesis.us-east-1.amazonaws.com"
        assert json.loads(request.body) == {"Limit": 10}

    @pytest.mark.asyncio
    async def test_signed_with_sigv4(self):
        transport = StubTransport(ok({}))
        client = RequestClient(
            ClientConfig(region="eu-west-1", credentials=CREDS), transport=transport
        )

        await client.send("ListStreams")

        auth = transport.requests[0].headers["Authorization"]
        assert auth.startswith("AWS4-HMAC-SHA256 ")
        assert "Credential=AKIDTEST/" in auth
        assert "/eu-west-1/kinesis/aws4_request" in auth
        assert "test-secret" not in auth

    @pytest.mark.asyncio
    async def test_session_token_is_sent(self):
        transport = StubTransport(ok({}))
        creds = Credentials("AKIDTEST", "test-secret", "session-token")
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=creds), transport=transport
        )

        await client.send("ListStreams")

        assert transport.requests[0].headers["X-Amz-Security-Token"] == "session-token"

    @pytest.mark.asyncio
    async def test_custom_version(self):
        transport = StubTransport(ok({}))
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=CREDS, version="20991231"),
            transport=transport,
        )

        await client.send("DescribeStream", {"StreamName": "events"})

        assert transport.requests[0].headers["X-Amz-Target"] == "Kinesis_20991231.DescribeStream"


class TestEndpointResolution:
    """Tests for endpoint and region resolution."""

    @pytest.mark.asyncio
    async def test_default_host_from_region(self):
        client = RequestClient(
            ClientConfig(region="ap-southeast-2", credentials=CREDS), transport=StubTransport()
        )

        endpoint = await client.resolve()

        assert endpoint.host == "kinesis.ap-southeast-2.amazonaws.com"
        assert endpoint.port == 443
        assert endpoint.scheme == "https"
        assert endpoint.verify_ssl is True

    @pytest.mark.asyncio
    async def test_endpoint_url(self):
        client = RequestClient(
            ClientConfig(endpoint_url="http://localhost:4567", region="us-east-1", credentials=CREDS),
            transport=StubTransport(),
        )

        endpoint = await client.resolve()

        assert (endpoint.scheme, endpoint.host, endpoint.port) == ("http", "localhost", 4567)
        assert endpoint.host_header == "localhost:4567"
        assert endpoint.verify_ssl is False

    @pytest.mark.asyncio
    async def test_plain_http_default_port(self):
        client = RequestClient(
            ClientConfig(host="127.0.0.1", https=False, region="us-east-1", credentials=CREDS),
            transport=StubTransport(),
        )

        endpoint = await client.resolve()

        assert endpoint.port == 80
        assert endpoint.host_header == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_region_from_host(self):
        provider = StubCredentialProvider(region=None)
        client = RequestClient(
            ClientConfig(host="kinesis.eu-central-1.amazonaws.com", credentials=CREDS),
            transport=StubTransport(),
            credential_provider=provider,
        )

        endpoint = await client.resolve()

        assert endpoint.region == "eu-central-1"
        assert provider.calls == ["load_region"]

    @pytest.mark.asyncio
    async def test_default_region(self):
        client = RequestClient(
            ClientConfig(credentials=CREDS),
            transport=StubTransport(),
            credential_provider=StubCredentialProvider(region=None),
        )

        endpoint = await client.resolve()

        assert endpoint.region == "us-east-1"

    def test_region_from_host_helper(self):
        assert region_from_host("kinesis.us-west-2.amazonaws.com") == "us-west-2"
        assert region_from_host("localhost") is None
        assert region_from_host(None) is None

    @pytest.mark.asyncio
    async def test_resolved_once(self):
        provider = StubCredentialProvider(region="us-east-1", credentials=[CREDS])
        transport = StubTransport(ok({}), ok({}))
        client = RequestClient(ClientConfig(), transport=transport, credential_provider=provider)

        await client.send("ListStreams")
        await client.send("ListStreams")

        assert provider.calls == ["load"]


class TestCredentialDiscovery:
    """Tests for credential discovery and refresh."""

    @pytest.mark.asyncio
    async def test_explicit_config_skips_discovery(self):
        provider = StubCredentialProvider()
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=CREDS),
            transport=StubTransport(),
            credential_provider=provider,
        )

        await client.resolve()

        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_only_credentials_discovered(self):
        provider = StubCredentialProvider(credentials=[CREDS])
        client = RequestClient(
            ClientConfig(region="us-east-1"),
            transport=StubTransport(),
            credential_provider=provider,
        )

        endpoint = await client.resolve()

        assert provider.calls == ["load_credentials"]
        assert endpoint.region == "us-east-1"

    @pytest.mark.asyncio
    async def test_partial_credentials_are_merged(self):
        provider = StubCredentialProvider(
            credentials=[Credentials("DISCOVERED", "discovered-secret", "token")]
        )
        transport = StubTransport(ok({}))
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=Credentials(access_key_id="AKIDTEST")),
            transport=transport,
            credential_provider=provider,
        )

        await client.send("ListStreams")

        assert "Credential=AKIDTEST/" in transport.requests[0].headers["Authorization"]

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = RequestClient(
            ClientConfig(region="us-east-1"),
            transport=StubTransport(),
            credential_provider=StubCredentialProvider(),
        )

        with pytest.raises(ConfigurationError) as exc_info:
            await client.send("ListStreams")
        assert exc_info.value.setting == "credentials"

    @pytest.mark.asyncio
    async def test_expired_token_refreshes_credentials(self):
        provider = StubCredentialProvider(
            credentials=[CREDS, Credentials("AKIDFRESH", "fresh-secret")]
        )
        transport = StubTransport(error(400, "ExpiredTokenException"), ok({"StreamNames": []}))
        client = RequestClient(
            ClientConfig(region="us-east-1"), transport=transport, credential_provider=provider
        )

        result = await client.send("ListStreams")

        assert result == {"StreamNames": []}
        assert provider.calls == ["load_credentials", "load_credentials"]
        assert "Credential=AKIDTEST/" in transport.requests[0].headers["Authorization"]
        assert "Credential=AKIDFRESH/" in transport.requests[1].headers["Authorization"]


class TestResponseDecoding:
    """Tests for response decoding and error mapping."""

    def make_client(self, *responses, **config):
        config.setdefault("region", "us-east-1")
        config.setdefault("credentials", CREDS)
        config.setdefault("initial_retry_ms", 1)
        transport = StubTransport(*responses)
        return RequestClient(ClientConfig(**config), transport=transport), transport

    @pytest.mark.asyncio
    async def test_empty_body(self):
        client, _ = self.make_client(ok())
        assert await client.send("CreateStream", {"StreamName": "s", "ShardCount": 1}) == {}

    @pytest.mark.asyncio
    async def test_service_error(self):
        client, transport = self.make_client(error(400, "ResourceNotFoundException", "no stream"))

        with pytest.raises(ServiceError) as exc_info:
            await client.send("DescribeStream", {"StreamName": "s"})

        e = exc_info.value
        assert e.status_code == 400
        assert e.name == "ResourceNotFoundException"
        assert e.message == "no stream"
        assert e.action == "DescribeStream"
        assert str(e) == "ResourceNotFoundException: no stream"
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_capitalized_message(self):
        body = json.dumps({"__type": "ValidationException", "Message": "bad key"})
        client, _ = self.make_client(HttpResponse(status=400, headers={}, body=body))

        with pytest.raises(ServiceError) as exc_info:
            await client.send("PutRecord", {})
        assert exc_info.value.message == "bad key"

    @pytest.mark.asyncio
    async def test_expired_iterator(self):
        client, _ = self.make_client(error(400, "ExpiredIteratorException"))

        with pytest.raises(IteratorExpiredError):
            await client.send("GetRecords", {"ShardIterator": "x"})

    @pytest.mark.asyncio
    async def test_request_entity_too_large(self):
        client, _ = self.make_client(HttpResponse(status=413, headers={}, body="<html>"))

        with pytest.raises(ServiceError) as exc_info:
            await client.send("PutRecord", {})

        assert exc_info.value.name is None
        assert exc_info.value.message == "HTTP/1.1 413 Request Entity Too Large"

    @pytest.mark.asyncio
    async def test_unparsable_server_error_is_retried(self):
        client, transport = self.make_client(
            HttpResponse(status=503, headers={}, body="Service Unavailable"),
            ok({"StreamNames": ["a"]}),
        )

        assert await client.send("ListStreams") == {"StreamNames": ["a"]}
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_non_json_success_is_protocol_error(self):
        client, transport = self.make_client(HttpResponse(status=200, headers={}, body="<xml/>"))

        with pytest.raises(ProtocolError):
            await client.send("ListStreams")
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_tagged_with_action(self):
        client, _ = self.make_client(
            TransportError("refused", code="ECONNREFUSED"), max_retries=0
        )

        with pytest.raises(TransportError) as exc_info:
            await client.send("ListStreams")
        assert exc_info.value.action == "ListStreams"


class TestTimeout:
    """Tests for the per-attempt timeout."""

    @pytest.mark.asyncio
    async def test_timeout_is_etimedout(self):
        transport = StubTransport(ok({}), delay=1)
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=CREDS, timeout_ms=10, max_retries=0),
            transport=transport,
        )

        with pytest.raises(TransportError) as exc_info:
            await client.send("ListStreams")
        assert exc_info.value.code == "ETIMEDOUT"

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        transport = StubTransport(ok({"StreamNames": ["a"]}), delays=[1])
        client = RequestClient(
            ClientConfig(region="us-east-1", credentials=CREDS, timeout_ms=50, initial_retry_ms=1),
            transport=transport,
        )

        assert await client.send("ListStreams") == {"StreamNames": ["a"]}
        assert len(transport.requests) == 2


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_injected_transport_is_not_closed(self):
        transport = StubTransport()
        async with RequestClient(ClientConfig(region="us-east-1"), transport=transport):
            pass
        assert transport.closed is False
