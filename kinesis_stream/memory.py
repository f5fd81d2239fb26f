"""
In-memory Kinesis service for testing.

This module provides a transport that answers the Kinesis JSON protocol from
memory instead of the network, for:
- Unit tests
- Integration tests of the stream session
- Local development without AWS or a local emulator

It speaks the same wire format as the real service (target header, JSON
bodies, namespaced __type errors), so requests still go through the real
RequestClient, retry policy and signer.

Invariants:
    - All data is lost on process exit
    - Sequence numbers increase across the whole service
    - A record with SequenceNumberForOrdering X gets a sequence number > X
    - GetRecords on a closed, fully read shard omits NextShardIterator

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep error names identical to the real service
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Tuple

from .errors import TransportError
from .request.transport import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

ERROR_NAMESPACE = "com.amazonaws.kinesis.v20131202"
MAX_HASH_KEY = 2**128 - 1
FIRST_SEQUENCE_NUMBER = 49590338271490256608559692538361571095921575989136588898


@dataclass
class MemoryRecord:
    sequence_number: str
    partition_key: str
    data: str
    arrival: float


@dataclass
class MemoryShard:
    shard_id: str
    starting_hash_key: int
    ending_hash_key: int
    starting_sequence_number: str
    records: List[MemoryRecord] = field(default_factory=list)
    ending_sequence_number: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self.ending_sequence_number is not None


@dataclass
class MemoryStream:
    name: str
    shards: List[MemoryShard] = field(default_factory=list)


@dataclass
class _Fault:
    status: int = 500
    name: Optional[str] = "InternalFailure"
    message: str = ""
    body: Optional[str] = None
    transport_code: Optional[str] = None


class _ServiceException(Exception):
    def __init__(self, name: str, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.name = name
        self.message = message
        self.status = status


class InMemoryKinesis:
    """In-memory implementation of the Transport protocol.

    Attributes:
        streams: Stored streams by name
        requests: (action, payload) of every request received, in order
        expired_iterator_errors: GetRecords calls rejected for expired iterators

    Example:
        >>> kinesis = InMemoryKinesis()
        >>> kinesis.create_stream("events", shard_count=2)
        >>> session = StreamSession(config, transport=kinesis)
    """

    def __init__(self, shard_page_size: int = 100, stream_page_size: int = 100) -> None:
        self.shard_page_size = shard_page_size
        self.stream_page_size = stream_page_size
        self.streams: Dict[str, MemoryStream] = {}
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.expired_iterator_errors = 0
        self.closed = False
        self._next_sequence = FIRST_SEQUENCE_NUMBER
        self._iterators: Dict[str, Tuple[str, str, int]] = {}
        self._faults: Dict[str, Deque[_Fault]] = defaultdict(deque)
        self._held: Dict[str, Deque[asyncio.Future]] = defaultdict(deque)
        self._holding: set = set()

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    async def send(self, request: HttpRequest) -> HttpResponse:
        target = request.headers.get("X-Amz-Target", "")
        action = target.split(".")[-1]
        payload = json.loads(request.body or b"{}")
        self.requests.append((action, payload))

        if action in self._holding:
            waiter = asyncio.get_running_loop().create_future()
            self._held[action].append(waiter)
            await waiter

        if self._faults[action]:
            fault = self._faults[action].popleft()
            if fault.transport_code:
                raise TransportError(
                    f"Simulated network failure ({fault.transport_code})",
                    code=fault.transport_code,
                )
            if fault.body is not None:
                return HttpResponse(status=fault.status, headers={}, body=fault.body)
            return self._error(fault.status, fault.name or "", fault.message)

        if "Authorization" not in request.headers:
            return self._error(400, "MissingAuthenticationTokenException", "Missing signature")

        handler = getattr(self, f"_handle_{action}", None)
        if handler is None:
            return self._error(400, "UnknownOperationException", f"Unknown action {action}")

        try:
            result = handler(payload)
        except _ServiceException as e:
            return self._error(e.status, e.name, e.message)

        body = json.dumps(result) if result is not None else ""
        return HttpResponse(status=200, headers={"Content-Type": "application/x-amz-json-1.1"}, body=body)

    async def close(self) -> None:
        self.closed = True

    def _error(self, status: int, name: str, message: str) -> HttpResponse:
        body = json.dumps({"__type": f"{ERROR_NAMESPACE}#{name}", "message": message})
        return HttpResponse(status=status, headers={}, body=body)

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def create_stream(self, name: str, shard_count: int = 1) -> MemoryStream:
        """Create a stream with evenly split hash key ranges."""
        if name in self.streams:
            raise _ServiceException("ResourceInUseException", f"Stream {name} already exists")
        if shard_count < 1:
            raise _ServiceException("InvalidArgumentException", "ShardCount must be >= 1")

        width = (MAX_HASH_KEY + 1) // shard_count
        stream = MemoryStream(name=name)
        for i in range(shard_count):
            stream.shards.append(
                MemoryShard(
                    shard_id=f"shardId-{i:012d}",
                    starting_hash_key=i * width,
                    ending_hash_key=MAX_HASH_KEY if i == shard_count - 1 else (i + 1) * width - 1,
                    starting_sequence_number=str(self._next_sequence),
                )
            )
        self.streams[name] = stream
        return stream

    def put(self, stream_name: str, partition_key: str, data: bytes) -> Tuple[str, str]:
        """Store a record directly; returns (shard_id, sequence_number)."""
        result = self._handle_PutRecord(
            {
                "StreamName": stream_name,
                "PartitionKey": partition_key,
                "Data": base64.b64encode(data).decode("ascii"),
            }
        )
        return result["ShardId"], result["SequenceNumber"]

    def close_shard(self, stream_name: str, shard_id: str) -> None:
        """Close a shard: it keeps its records but accepts no new ones."""
        shard = self._shard(self._stream(stream_name), shard_id)
        last = shard.records[-1].sequence_number if shard.records else shard.starting_sequence_number
        shard.ending_sequence_number = last

    def records(self, stream_name: str) -> List[MemoryRecord]:
        """All records of a stream, in sequence number order."""
        stream = self._stream(stream_name)
        out = [record for shard in stream.shards for record in shard.records]
        return sorted(out, key=lambda r: int(r.sequence_number))

    def fail_next(
        self,
        action: str,
        status: int = 500,
        name: Optional[str] = "InternalFailure",
        message: str = "Simulated failure",
        times: int = 1,
        body: Optional[str] = None,
    ) -> None:
        """Answer the next calls of an action with an error response."""
        for _ in range(times):
            self._faults[action].append(_Fault(status=status, name=name, message=message, body=body))

    def fail_transport(self, action: str, code: str = "ECONNRESET", times: int = 1) -> None:
        """Fail the next calls of an action without any response."""
        for _ in range(times):
            self._faults[action].append(_Fault(transport_code=code))

    def expire_iterators(self) -> None:
        """Invalidate every shard iterator handed out so far."""
        self._iterators.clear()

    def hold(self, action: str) -> None:
        """Hold calls of an action until release() is called."""
        self._holding.add(action)

    def release(self, action: str, count: int = 1) -> int:
        """Let up to count held calls of an action proceed, oldest first."""
        released = 0
        while self._held[action] and released < count:
            waiter = self._held[action].popleft()
            if not waiter.done():
                waiter.set_result(None)
                released += 1
        return released

    def stop_holding(self, action: str) -> None:
        self._holding.discard(action)
        self.release(action, count=len(self._held[action]))

    def held(self, action: str) -> int:
        return len(self._held[action])

    def calls(self, action: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.requests if name == action]

    # ------------------------------------------------------------------
    # Action handlers
    # ------------------------------------------------------------------

    def _stream(self, name: Optional[str]) -> MemoryStream:
        stream = self.streams.get(name or "")
        if stream is None:
            raise _ServiceException("ResourceNotFoundException", f"Stream {name} not found")
        return stream

    def _shard(self, stream: MemoryStream, shard_id: Optional[str]) -> MemoryShard:
        for shard in stream.shards:
            if shard.shard_id == shard_id:
                return shard
        raise _ServiceException("ResourceNotFoundException", f"Shard {shard_id} not found")

    def _issue_iterator(self, stream: MemoryStream, shard: MemoryShard, position: int) -> str:
        token = base64.b64encode(uuid.uuid4().bytes).decode("ascii")
        self._iterators[token] = (stream.name, shard.shard_id, position)
        return token

    def _handle_CreateStream(self, payload: Dict[str, Any]) -> None:
        self.create_stream(payload.get("StreamName", ""), int(payload.get("ShardCount", 1)))
        return None

    def _handle_ListStreams(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        names = sorted(self.streams)
        start = payload.get("ExclusiveStartStreamName")
        if start:
            names = [n for n in names if n > start]
        limit = min(int(payload.get("Limit", self.stream_page_size)), self.stream_page_size)
        return {"StreamNames": names[:limit], "HasMoreStreams": len(names) > limit}

    def _handle_DescribeStream(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        stream = self._stream(payload.get("StreamName"))
        shards = stream.shards
        start = payload.get("ExclusiveStartShardId")
        if start:
            shards = [s for s in shards if s.shard_id > start]
        limit = min(int(payload.get("Limit", self.shard_page_size)), self.shard_page_size)

        described = []
        for shard in shards[:limit]:
            sequence_range = {"StartingSequenceNumber": shard.starting_sequence_number}
            if shard.closed:
                sequence_range["EndingSequenceNumber"] = shard.ending_sequence_number
            described.append(
                {
                    "ShardId": shard.shard_id,
                    "HashKeyRange": {
                        "StartingHashKey": str(shard.starting_hash_key),
                        "EndingHashKey": str(shard.ending_hash_key),
                    },
                    "SequenceNumberRange": sequence_range,
                }
            )

        return {
            "StreamDescription": {
                "StreamName": stream.name,
                "StreamARN": f"arn:aws:kinesis:us-east-1:000000000000:stream/{stream.name}",
                "StreamStatus": "ACTIVE",
                "Shards": described,
                "HasMoreShards": len(shards) > limit,
            }
        }

    def _handle_GetShardIterator(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        stream = self._stream(payload.get("StreamName"))
        shard = self._shard(stream, payload.get("ShardId"))
        iterator_type = payload.get("ShardIteratorType")
        sequence_numbers = [int(r.sequence_number) for r in shard.records]

        if iterator_type == "TRIM_HORIZON":
            position = 0
        elif iterator_type == "LATEST":
            position = len(shard.records)
        elif iterator_type in ("AFTER_SEQUENCE_NUMBER", "AT_SEQUENCE_NUMBER"):
            starting = payload.get("StartingSequenceNumber")
            if not starting:
                raise _ServiceException("InvalidArgumentException", "StartingSequenceNumber required")
            target = int(starting)
            if iterator_type == "AFTER_SEQUENCE_NUMBER":
                position = next((i for i, s in enumerate(sequence_numbers) if s > target), len(sequence_numbers))
            else:
                position = next((i for i, s in enumerate(sequence_numbers) if s >= target), len(sequence_numbers))
        else:
            raise _ServiceException(
                "InvalidArgumentException", f"Unsupported ShardIteratorType {iterator_type}"
            )

        return {"ShardIterator": self._issue_iterator(stream, shard, position)}

    def _handle_GetRecords(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        token = payload.get("ShardIterator", "")
        if token not in self._iterators:
            self.expired_iterator_errors += 1
            raise _ServiceException("ExpiredIteratorException", "Iterator expired")

        stream_name, shard_id, position = self._iterators[token]
        stream = self._stream(stream_name)
        shard = self._shard(stream, shard_id)
        limit = int(payload.get("Limit", 10000))

        batch = shard.records[position : position + limit]
        next_position = position + len(batch)
        response: Dict[str, Any] = {
            "Records": [
                {
                    "SequenceNumber": r.sequence_number,
                    "PartitionKey": r.partition_key,
                    "Data": r.data,
                    "ApproximateArrivalTimestamp": r.arrival,
                }
                for r in batch
            ],
            "MillisBehindLatest": 0,
        }
        if not (shard.closed and not batch and next_position >= len(shard.records)):
            response["NextShardIterator"] = self._issue_iterator(stream, shard, next_position)
        return response

    def _handle_PutRecord(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        stream = self._stream(payload.get("StreamName"))
        partition_key = payload.get("PartitionKey")
        if not partition_key:
            raise _ServiceException("ValidationException", "PartitionKey is required")

        open_shards = [s for s in stream.shards if not s.closed]
        if not open_shards:
            raise _ServiceException("ResourceInUseException", f"Stream {stream.name} has no open shards")

        explicit = payload.get("ExplicitHashKey")
        hash_key = int(explicit) if explicit else int(hashlib.md5(partition_key.encode("utf-8")).hexdigest(), 16)
        shard = next(
            (s for s in open_shards if s.starting_hash_key <= hash_key <= s.ending_hash_key),
            open_shards[hash_key % len(open_shards)],
        )

        sequence = self._next_sequence
        ordering = payload.get("SequenceNumberForOrdering")
        if ordering:
            sequence = max(sequence, int(ordering) + 1)
        self._next_sequence = sequence + 1

        record = MemoryRecord(
            sequence_number=str(sequence),
            partition_key=partition_key,
            data=payload.get("Data", ""),
            arrival=time.time(),
        )
        shard.records.append(record)
        logger.debug(
            "InMemoryKinesis stored record",
            extra={"stream": stream.name, "shard": shard.shard_id, "sequence": record.sequence_number},
        )
        return {"ShardId": shard.shard_id, "SequenceNumber": record.sequence_number}
