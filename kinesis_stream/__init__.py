"""
kinesis_stream: a Kinesis stream as one asynchronous, bidirectional stream.

A StreamSession reads from every open shard of a stream, with backpressure,
and writes records with a bounded number of writes in flight, keeping
per-partition-key ordering through SequenceNumberForOrdering. Requests are
signed with SigV4, retried with exponential backoff and sent over a pooled
aiohttp transport.

Example:
    >>> from kinesis_stream import StreamSession, StreamConfig
    >>> async with StreamSession(StreamConfig(name="events")) as stream:
    ...     await stream.put_record({"PartitionKey": "user-1", "Data": b"hi"})
    ...     async for record in stream:
    ...         print(record.data)
"""

from ._version import __version__
from .api import list_streams, request
from .config import ClientConfig, Credentials, ObservabilityConfig, ReadStart, StreamConfig
from .errors import (
    ConfigurationError,
    IteratorExpiredError,
    KinesisError,
    ProtocolError,
    ServiceError,
    TransportError,
)
from .request import ExponentialBackoffRetryPolicy, RequestClient, RetryPolicy
from .stream import Record, SequenceCache, StreamSession, WriteResult, compare_sequence_numbers

__all__ = [
    "__version__",
    # Session
    "StreamSession",
    "Record",
    "WriteResult",
    "SequenceCache",
    "compare_sequence_numbers",
    # One-shot calls
    "list_streams",
    "request",
    "RequestClient",
    "RetryPolicy",
    "ExponentialBackoffRetryPolicy",
    # Configuration
    "StreamConfig",
    "ClientConfig",
    "Credentials",
    "ReadStart",
    "ObservabilityConfig",
    # Errors
    "KinesisError",
    "ConfigurationError",
    "TransportError",
    "ServiceError",
    "IteratorExpiredError",
    "ProtocolError",
]
