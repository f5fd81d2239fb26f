"""
Unit tests for configuration loading and validation.
"""

import pytest

from kinesis_stream.config import (
    ClientConfig,
    Credentials,
    ObservabilityConfig,
    ReadStart,
    StreamConfig,
)
from kinesis_stream.errors import ConfigurationError


class TestStreamConfig:
    """Tests for StreamConfig."""

    def test_defaults(self):
        config = StreamConfig(name="events")

        assert config.write_concurrency == 1
        assert config.limit == 25
        assert config.cache_size == 1000
        assert config.shards is None
        assert config.backoff_ms is None
        assert config.read_start is ReadStart.LATEST

    def test_name_required(self):
        with pytest.raises(ConfigurationError) as exc_info:
            StreamConfig()
        assert exc_info.value.setting == "name"

    def test_shards_become_tuple(self):
        config = StreamConfig(name="events", shards=["shardId-0", "shardId-1"])
        assert config.shards == ("shardId-0", "shardId-1")

    @pytest.mark.parametrize(
        "field,value",
        [
            ("write_concurrency", 0),
            ("limit", 0),
            ("cache_size", 0),
            ("high_water_mark", 0),
            ("backoff_ms", -1),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigurationError):
            StreamConfig(name="events", **{field: value})

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("KINESIS_STREAM_NAME", "orders")
        monkeypatch.setenv("KINESIS_WRITE_CONCURRENCY", "4")
        monkeypatch.setenv("KINESIS_MAX_RECORDS", "100")
        monkeypatch.setenv("KINESIS_SHARDS", "shardId-0, shardId-1,")
        monkeypatch.setenv("KINESIS_BACKOFF_MS", "250")
        monkeypatch.setenv("KINESIS_ITERATOR_TYPE", "trim_horizon")

        config = StreamConfig.from_env()

        assert config.name == "orders"
        assert config.write_concurrency == 4
        assert config.limit == 100
        assert config.shards == ("shardId-0", "shardId-1")
        assert config.backoff_ms == 250
        assert config.read_start is ReadStart.OLDEST

    def test_from_env_name_argument_wins(self, monkeypatch):
        monkeypatch.setenv("KINESIS_STREAM_NAME", "orders")
        assert StreamConfig.from_env("events").name == "events"

    def test_from_env_invalid_iterator_type(self, monkeypatch):
        monkeypatch.setenv("KINESIS_ITERATOR_TYPE", "AT_TIMESTAMP")
        with pytest.raises(ConfigurationError):
            StreamConfig.from_env("events")

    def test_from_env_invalid_integer(self, monkeypatch):
        monkeypatch.setenv("KINESIS_MAX_RECORDS", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            StreamConfig.from_env("events")
        assert exc_info.value.setting == "KINESIS_MAX_RECORDS"


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_defaults(self):
        config = ClientConfig()

        assert config.https is True
        assert config.version == "20131202"
        assert config.initial_retry_ms == 50
        assert config.max_retries == 10
        assert config.timeout_ms is None

    def test_invalid_values(self):
        with pytest.raises(ConfigurationError):
            ClientConfig(max_retries=-1)
        with pytest.raises(ConfigurationError):
            ClientConfig(timeout_ms=0)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("KINESIS_ENDPOINT_URL", "http://localhost:4567")
        monkeypatch.setenv("KINESIS_MAX_RETRIES", "0")
        monkeypatch.setenv("KINESIS_TIMEOUT_MS", "5000")
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKID")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")

        config = ClientConfig.from_env()

        assert config.region == "eu-west-1"
        assert config.endpoint_url == "http://localhost:4567"
        assert config.max_retries == 0
        assert config.timeout_ms == 5000
        assert config.credentials.access_key_id == "AKID"

    def test_from_env_without_credentials(self, monkeypatch):
        monkeypatch.delenv("AWS_ACCESS_KEY_ID", raising=False)
        monkeypatch.delenv("AWS_SECRET_ACCESS_KEY", raising=False)
        assert ClientConfig.from_env().credentials is None


class TestCredentials:
    """Tests for Credentials."""

    def test_secret_not_in_repr(self):
        creds = Credentials(access_key_id="AKID", secret_access_key="shh", session_token="tok")
        assert "shh" not in repr(creds)
        assert "tok" not in repr(creds)

    def test_is_complete(self):
        assert Credentials("AKID", "secret").is_complete
        assert not Credentials("AKID").is_complete

    def test_merged_with(self):
        partial = Credentials(access_key_id="AKID")
        merged = partial.merged_with(Credentials("OTHER", "secret", "token"))

        assert merged.access_key_id == "AKID"
        assert merged.secret_access_key == "secret"
        assert merged.session_token == "token"


class TestObservabilityConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ObservabilityConfig.from_env()

        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
