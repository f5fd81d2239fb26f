"""
Core types for the stream session.

This module defines the canonical Record, the normalization step that turns
any accepted write input into one, the per-write acknowledgement, and the
ordering rule for sequence numbers.

Invariants:
    - Sequence numbers are decimal strings of arbitrary length
    - A longer sequence number is always the greater one
    - An absent sequence number sorts below every present one
    - Every record handed to the write path has a partition key
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import KinesisError

SequenceNumber = str


def compare_sequence_numbers(a: Optional[SequenceNumber], b: Optional[SequenceNumber]) -> int:
    """Compare two sequence numbers.

    Equal-length decimal strings compare correctly character by character, so
    length decides first and lexical order second.

    Returns:
        Negative if a < b, zero if equal, positive if a > b
    """
    if not a and not b:
        return 0
    if not a:
        return -1
    if not b:
        return 1
    length_diff = len(a) - len(b)
    if length_diff:
        return length_diff
    return (a > b) - (a < b)


@dataclass
class Record:
    """A record read from or written to the stream.

    Attributes:
        partition_key: Key routing the record to a shard
        data: Record payload
        sequence_number: Assigned by the service (read records)
        shard_id: Shard the record was read from, or a write hint
        explicit_hash_key: Hash key overriding partition key routing
        sequence_number_for_ordering: Caller-supplied ordering lower bound
        approximate_arrival_timestamp: Service arrival time (epoch seconds)
    """

    partition_key: str = ""
    data: bytes = b""
    sequence_number: Optional[SequenceNumber] = None
    shard_id: Optional[str] = None
    explicit_hash_key: Optional[str] = None
    sequence_number_for_ordering: Optional[SequenceNumber] = None
    approximate_arrival_timestamp: Optional[float] = None

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any], shard_id: str) -> Record:
        """Decode a record from a GetRecords response."""
        return cls(
            partition_key=raw.get("PartitionKey", ""),
            data=base64.b64decode(raw.get("Data") or ""),
            sequence_number=raw.get("SequenceNumber"),
            shard_id=shard_id,
            approximate_arrival_timestamp=raw.get("ApproximateArrivalTimestamp"),
        )

    def to_put_record(self, stream_name: str) -> Dict[str, Any]:
        """Build PutRecord parameters.

        The shard id is a client-side hint only and is never sent.
        """
        params: Dict[str, Any] = {
            "StreamName": stream_name,
            "PartitionKey": self.partition_key,
            "Data": base64.b64encode(self.data).decode("ascii"),
        }
        if self.explicit_hash_key:
            params["ExplicitHashKey"] = self.explicit_hash_key
        if self.sequence_number_for_ordering:
            params["SequenceNumberForOrdering"] = self.sequence_number_for_ordering
        return params

    def __str__(self) -> str:
        return (
            f"Record(key={self.partition_key}, shard={self.shard_id}, "
            f"seq={self.sequence_number}, size={len(self.data)})"
        )


WriteInput = Union[bytes, bytearray, memoryview, str, Record, Mapping[str, Any]]


def _as_bytes(data: Any) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise KinesisError(f"Record data must be bytes or str, got {type(data).__name__}")


def normalize_record(item: WriteInput) -> Record:
    """Turn any accepted write input into a canonical Record.

    Accepts raw bytes, text (encoded as UTF-8), a Record, or a mapping in the
    service's wire shape (PartitionKey, Data, ExplicitHashKey,
    SequenceNumberForOrdering, ShardId). The input is never mutated. A missing
    partition key is replaced by 16 random bytes, hex encoded.

    Text Data in a mapping is encoded as UTF-8 like any other text; it is
    never taken to be base64 already. Decode base64 text to bytes before
    writing it.

    Raises:
        KinesisError: If the input has an unsupported type
    """
    if isinstance(item, Record):
        record = replace(item, data=_as_bytes(item.data))
    elif isinstance(item, (bytes, bytearray, memoryview, str)):
        record = Record(data=_as_bytes(item))
    elif isinstance(item, Mapping):
        record = Record(
            partition_key=item.get("PartitionKey") or "",
            data=_as_bytes(item.get("Data")),
            shard_id=item.get("ShardId"),
            explicit_hash_key=item.get("ExplicitHashKey"),
            sequence_number_for_ordering=item.get("SequenceNumberForOrdering"),
        )
    else:
        raise KinesisError(f"Cannot write object of type {type(item).__name__}")

    if not record.partition_key:
        record.partition_key = secrets.token_hex(16)
    return record


@dataclass
class WriteResult:
    """Acknowledgement of one write, successful or not.

    Attributes:
        record: The normalized record as dispatched
        item: The input the caller passed to write()
        sequence_number: Sequence number assigned by the service
        shard_id: Shard the record landed on
        error: Failure, if the write did not succeed
    """

    record: Record
    sequence_number: Optional[SequenceNumber] = None
    shard_id: Optional[str] = None
    error: Optional[Exception] = None
    item: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None
