"""
Shard resolution and per-shard cursor tracking.

The ShardTable owns every Shard of a session. It resolves the open shards once
(from a fixed list or by describing the stream) and hands out shard
iterators, reusing a cached one until it is invalidated.

Invariants:
    - Shards are resolved at most once per session
    - Closed shards (with an ending sequence number) are never tracked
    - Shard.ended never goes back to False
    - Read and write cursors only move forward
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from ..config import ReadStart
from .base import SequenceNumber, compare_sequence_numbers

if TYPE_CHECKING:
    from ..request.client import RequestClient

logger = logging.getLogger(__name__)


@dataclass
class Shard:
    """Client-side state of one shard.

    Attributes:
        id: Shard ID
        read_sequence_number: Last sequence number read from the shard
        write_sequence_number: Highest sequence number written to the shard
        iterator: Cached iterator for the next GetRecords call
        ended: The shard is closed and fully read
    """

    id: str
    read_sequence_number: Optional[SequenceNumber] = None
    write_sequence_number: Optional[SequenceNumber] = None
    iterator: Optional[str] = None
    ended: bool = False

    def advance_read_cursor(self, sequence_number: SequenceNumber) -> None:
        if compare_sequence_numbers(sequence_number, self.read_sequence_number) > 0:
            self.read_sequence_number = sequence_number

    def advance_write_cursor(self, sequence_number: SequenceNumber) -> bool:
        if compare_sequence_numbers(sequence_number, self.write_sequence_number) > 0:
            self.write_sequence_number = sequence_number
            return True
        return False

    def mark_ended(self) -> None:
        self.ended = True
        self.iterator = None


class ShardTable:
    """Resolves and tracks the shards of one stream.

    Example:
        >>> table = ShardTable(client, "events")
        >>> for shard in await table.resolve():
        ...     iterator = await table.iterator_for(shard)
    """

    def __init__(
        self,
        client: RequestClient,
        stream_name: str,
        fixed_shards: Optional[Sequence[str]] = None,
        read_start: ReadStart = ReadStart.LATEST,
    ) -> None:
        self.client = client
        self.stream_name = stream_name
        self.fixed_shards = fixed_shards
        self.read_start = read_start
        self._shards: Optional[List[Shard]] = None
        self._lock = asyncio.Lock()

    @property
    def shards(self) -> List[Shard]:
        """Resolved shards, empty until resolve() succeeds."""
        return list(self._shards or [])

    def get(self, shard_id: Optional[str]) -> Optional[Shard]:
        for shard in self._shards or []:
            if shard.id == shard_id:
                return shard
        return None

    def all_ended(self) -> bool:
        """Whether shards are resolved and every one of them has ended."""
        return self._shards is not None and all(shard.ended for shard in self._shards)

    async def resolve(self) -> List[Shard]:
        """Return the open shards, resolving them on first use.

        Raises:
            KinesisError: If describing the stream fails
        """
        if self._shards is not None:
            return self._shards

        async with self._lock:
            if self._shards is None:
                if self.fixed_shards is not None:
                    shard_ids = list(self.fixed_shards)
                else:
                    shard_ids = await self._describe_open_shard_ids()
                self._shards = [Shard(id=shard_id) for shard_id in shard_ids]
                logger.info(
                    "Resolved shards",
                    extra={
                        "stream": self.stream_name,
                        "shards": shard_ids,
                        "fixed": self.fixed_shards is not None,
                    },
                )
        return self._shards

    async def _describe_open_shard_ids(self) -> List[str]:
        shard_ids: List[str] = []
        params: Dict[str, Any] = {"StreamName": self.stream_name}

        while True:
            response = await self.client.send("DescribeStream", params)
            description = response.get("StreamDescription", {})
            shards = description.get("Shards", [])

            for shard in shards:
                ending = (shard.get("SequenceNumberRange") or {}).get("EndingSequenceNumber")
                if not ending:
                    shard_ids.append(shard["ShardId"])

            if not description.get("HasMoreShards") or not shards:
                break
            params = {
                "StreamName": self.stream_name,
                "ExclusiveStartShardId": shards[-1]["ShardId"],
            }

        return shard_ids

    async def iterator_for(self, shard: Shard) -> str:
        """Return the shard's cached iterator, or request a fresh one.

        A fresh iterator continues after the read cursor when there is one,
        otherwise starts at the configured read position.
        """
        if shard.iterator is not None:
            return shard.iterator

        params: Dict[str, Any] = {"StreamName": self.stream_name, "ShardId": shard.id}
        if shard.read_sequence_number is not None:
            params["ShardIteratorType"] = "AFTER_SEQUENCE_NUMBER"
            params["StartingSequenceNumber"] = shard.read_sequence_number
        else:
            params["ShardIteratorType"] = self.read_start.value

        response = await self.client.send("GetShardIterator", params)
        shard.iterator = response["ShardIterator"]
        logger.debug(
            "Acquired shard iterator",
            extra={
                "stream": self.stream_name,
                "shard": shard.id,
                "iterator_type": params["ShardIteratorType"],
            },
        )
        return shard.iterator

    def invalidate_iterator(self, shard: Shard) -> None:
        shard.iterator = None
