"""
Bidirectional stream session over a Kinesis stream.

A StreamSession reads records from every open shard and writes records with
a bounded number of writes in flight, presenting both as one stream.

Read path:
    Records fetched from shards land in an internal buffer and are pushed to
    the consumer's delivery queue until it holds high_water_mark records;
    pushing then pauses until the consumer pulls again. When the buffer runs
    dry a fetch cycle fans out one GetRecords per open shard. Only one cycle
    runs at a time. Once every shard has ended and the buffer has drained,
    the consumer sees end-of-stream.

Write path:
    Each write is dispatched at once, with ordering metadata taken from the
    single known shard, the shard the caller pinned, or the sequence cache.
    The caller gets control back as soon as there is room for another write
    in flight; the write that fills the last slot waits for a slot to free.

Invariants:
    - At most one fetch cycle is in flight (the fetching flag)
    - End-of-stream is signalled exactly once, after the buffer drains
    - Cursors and the sequence cache only move forward
    - Writes in flight never exceed write_concurrency
    - Errors are reported to the caller without ending the session

How to change safely:
    - All state changes go through the transition methods below
    - Test backpressure and termination against InMemoryKinesis
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Coroutine, Deque, List, Optional, Set, Union

from ..config import StreamConfig
from ..errors import ConfigurationError, IteratorExpiredError, KinesisError
from ..request.client import RequestClient
from ..request.credentials import CredentialProvider
from ..request.signing import Signer
from ..request.transport import Transport
from .base import Record, WriteInput, WriteResult, normalize_record
from .sequence_cache import SequenceCache
from .shards import Shard, ShardTable

logger = logging.getLogger(__name__)

PutRecordListener = Callable[[WriteResult], Any]


class StreamSession:
    """A Kinesis stream exposed as one readable and writable stream.

    Attributes:
        config: Session configuration
        name: Stream name
        client: Request client shared by reads and writes
        table: Shard table
        sequence_cache: Highest acknowledged sequence number per partition key

    Example:
        >>> async with StreamSession(StreamConfig(name="events")) as stream:
        ...     await stream.write({"PartitionKey": "user-1", "Data": b"hello"})
        ...     async for record in stream:
        ...         print(record.partition_key, record.data)
    """

    def __init__(
        self,
        config: Union[StreamConfig, str, None],
        *,
        client: Optional[RequestClient] = None,
        transport: Optional[Transport] = None,
        signer: Optional[Signer] = None,
        credential_provider: Optional[CredentialProvider] = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Stream configuration, or just the stream name
            client: Request client to share; built from config.client if omitted
            transport: Transport for a client built here
            signer: Signer for a client built here
            credential_provider: Credential discovery for a client built here

        Raises:
            ConfigurationError: If no stream name is given
        """
        if isinstance(config, str):
            config = StreamConfig(name=config)
        if config is None:
            raise ConfigurationError("A stream name must be given", setting="name")

        self.config = config
        self.name = config.name
        self.client = client or RequestClient(
            config.client,
            transport=transport,
            signer=signer,
            credential_provider=credential_provider,
        )
        self._owns_client = client is None
        self.table = ShardTable(
            self.client,
            config.name,
            fixed_shards=config.shards,
            read_start=config.read_start,
        )
        self.sequence_cache = SequenceCache(config.cache_size)

        # Read state
        self._buffer: Deque[Record] = deque()
        self._delivered: Deque[Record] = deque()
        self._read_errors: Deque[Exception] = deque()
        self._data_ready = asyncio.Event()
        self._paused = True
        self._fetching = False
        self._ended = False
        self._fetch_cycles = 0
        self._backoff_handle: Optional[asyncio.TimerHandle] = None

        # Write state
        self._current_writes = 0
        self._write_slots = asyncio.Condition()
        self._write_errors: Deque[Exception] = deque()
        self._listeners: List[PutRecordListener] = []

        self._tasks: Set[asyncio.Future] = set()
        self._closed = False

    @property
    def shards(self) -> List[Shard]:
        return self.table.shards

    @property
    def fetching(self) -> bool:
        return self._fetching

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def fetch_cycles(self) -> int:
        """Number of fetch cycles started so far."""
        return self._fetch_cycles

    @property
    def buffered(self) -> int:
        """Records fetched but not yet pushed to the consumer."""
        return len(self._buffer)

    @property
    def current_writes(self) -> int:
        return self._current_writes

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def read(self) -> Optional[Record]:
        """Pull the next record.

        Returns:
            The next record, or None once the stream has ended

        Raises:
            KinesisError: A failure from the last fetch cycle. The session
                stays usable; the next read starts a new cycle.
        """
        while True:
            if self._read_errors:
                raise self._read_errors.popleft()
            if self._delivered:
                return self._delivered.popleft()
            if self._ended or self._closed:
                return None

            self._data_ready.clear()
            self._paused = False
            self._drain_buffer()
            if self._delivered or self._read_errors or self._ended:
                continue
            await self._data_ready.wait()

    def __aiter__(self) -> StreamSession:
        return self

    async def __anext__(self) -> Record:
        record = await self.read()
        if record is None:
            raise StopAsyncIteration
        return record

    def _push(self, record: Record) -> bool:
        """Hand a record to the consumer; False once the delivery queue is full."""
        self._delivered.append(record)
        self._data_ready.set()
        return len(self._delivered) < self.config.high_water_mark

    def _drain_buffer(self) -> None:
        if self._paused or self._ended:
            return

        while self._buffer:
            if not self._push(self._buffer.popleft()):
                self._paused = True
                return

        if self.table.all_ended():
            self._signal_end()
            return

        if self._fetching or self._closed:
            return
        self._fetching = True
        self._fetch_cycles += 1
        self._spawn(self._fetch_cycle())

    def _signal_end(self) -> None:
        self._ended = True
        self._data_ready.set()
        logger.info("All shards ended", extra={"stream": self.name})

    def _fail_read(self, error: Exception) -> None:
        logger.warning(f"Read failed: {error}", extra={"stream": self.name})
        self._read_errors.append(error)
        self._data_ready.set()

    def _schedule_drain(self) -> None:
        if self._closed:
            return
        if self.config.backoff_ms:
            loop = asyncio.get_running_loop()
            self._backoff_handle = loop.call_later(
                self.config.backoff_ms / 1000, self._drain_buffer
            )
        else:
            self._drain_buffer()

    async def _fetch_cycle(self) -> None:
        errors: List[Exception] = []
        try:
            shards = await self.table.resolve()
            open_shards = [shard for shard in shards if not shard.ended]
            results = await asyncio.gather(
                *(self._fetch_shard(shard) for shard in open_shards),
                return_exceptions=True,
            )
            errors.extend(r for r in results if isinstance(r, Exception))
        except Exception as e:
            errors.append(e)
        finally:
            self._fetching = False

        if errors:
            # Halt until the consumer pulls again
            for error in errors:
                self._fail_read(error)
            return

        if self.table.all_ended():
            self._drain_buffer()
            return

        self._schedule_drain()

    async def _fetch_shard(self, shard: Shard) -> None:
        try:
            records = await self._get_records(shard)
        except IteratorExpiredError:
            logger.info(
                "Shard iterator expired, acquiring a fresh one",
                extra={"stream": self.name, "shard": shard.id},
            )
            self.table.invalidate_iterator(shard)
            records = await self._get_records(shard)

        if records:
            last = records[-1].sequence_number
            if last:
                shard.advance_read_cursor(last)
            self._buffer.extend(records)
            self._drain_buffer()

    async def _get_records(self, shard: Shard) -> List[Record]:
        iterator = await self.table.iterator_for(shard)

        logger.debug("get_records start", extra={"stream": self.name, "shard": shard.id})
        response = await self.client.send(
            "GetRecords", {"ShardIterator": iterator, "Limit": self.config.limit}
        )

        next_iterator = response.get("NextShardIterator")
        if next_iterator is None:
            logger.info("Shard ended", extra={"stream": self.name, "shard": shard.id})
            shard.mark_ended()
            return []

        shard.iterator = next_iterator
        records = [Record.from_wire(raw, shard.id) for raw in response.get("Records", [])]
        logger.debug(
            "get_records finish",
            extra={"stream": self.name, "shard": shard.id, "record_count": len(records)},
        )
        return records

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def on_put_record(self, listener: PutRecordListener) -> PutRecordListener:
        """Register a listener called with every WriteResult, success or not."""
        self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: PutRecordListener) -> None:
        self._listeners.remove(listener)

    async def write(self, item: WriteInput) -> "asyncio.Future[WriteResult]":
        """Dispatch a write.

        Returns as soon as there is room for another write in flight. The
        write that takes the last free slot waits until an earlier one is
        acknowledged.

        Args:
            item: Bytes, text, a Record, or a PutRecord-shaped mapping

        Returns:
            Future resolved with the WriteResult when the write is acknowledged

        Raises:
            KinesisError: A failure of an earlier write, or the session is
                closed. The given item was not dispatched.
        """
        if self._closed:
            raise KinesisError("Stream session is closed")
        if self._write_errors:
            raise self._write_errors.popleft()

        record = normalize_record(item)
        limit = self.config.write_concurrency
        ack: asyncio.Future[WriteResult] = asyncio.get_running_loop().create_future()

        async with self._write_slots:
            await self._write_slots.wait_for(lambda: self._current_writes < limit)
            params = self._put_record_params(record)
            self._current_writes += 1
            self._spawn(self._put_record(item, record, params, ack))
            await self._write_slots.wait_for(lambda: self._current_writes < limit)

        return ack

    async def put_record(self, item: WriteInput) -> WriteResult:
        """Write one record and wait for its acknowledgement.

        Raises:
            KinesisError: If this write failed
        """
        ack = await self.write(item)
        result = await ack
        if result.error is not None:
            if result.error in self._write_errors:
                self._write_errors.remove(result.error)
            raise result.error
        return result

    async def flush(self) -> None:
        """Wait for every write in flight, then report any unreported failure."""
        async with self._write_slots:
            await self._write_slots.wait_for(lambda: self._current_writes == 0)
        if self._write_errors:
            raise self._write_errors.popleft()

    def _put_record_params(self, record: Record) -> dict:
        if not record.sequence_number_for_ordering:
            shards = self.table.shards
            pinned = self.table.get(record.shard_id) if record.shard_id else None
            if len(shards) == 1 and shards[0].write_sequence_number:
                record.sequence_number_for_ordering = shards[0].write_sequence_number
            elif pinned is not None and pinned.write_sequence_number:
                record.sequence_number_for_ordering = pinned.write_sequence_number
            else:
                record.sequence_number_for_ordering = self.sequence_cache.get(
                    record.partition_key
                )
        return record.to_put_record(self.name)

    async def _put_record(
        self,
        item: WriteInput,
        record: Record,
        params: dict,
        ack: "asyncio.Future[WriteResult]",
    ) -> None:
        result = WriteResult(record=record, item=item)
        try:
            try:
                response = await self.client.send("PutRecord", params)
                result.sequence_number = response.get("SequenceNumber")
                result.shard_id = response.get("ShardId")
                logger.debug(
                    "Record written",
                    extra={
                        "stream": self.name,
                        "key": record.partition_key,
                        "shard": result.shard_id,
                        "sequence": result.sequence_number,
                    },
                )
            except Exception as e:
                result.error = e
                self._write_errors.append(e)
                logger.warning(
                    f"Write failed: {e}", extra={"stream": self.name, "key": record.partition_key}
                )

            if result.ok and result.sequence_number:
                try:
                    await self._advance_write_cursors(
                        record.partition_key, result.shard_id, result.sequence_number
                    )
                except Exception as e:
                    self._write_errors.append(e)
                    logger.warning(
                        f"Failed to update shard cursors: {e}", extra={"stream": self.name}
                    )
        except asyncio.CancelledError:
            ack.cancel()
            raise
        finally:
            async with self._write_slots:
                self._current_writes -= 1
                self._write_slots.notify_all()

        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception:
                logger.exception("put_record listener failed")
        # The caller may have stopped waiting on the ack.
        if not ack.done():
            ack.set_result(result)

    async def _advance_write_cursors(
        self, partition_key: str, shard_id: Optional[str], sequence_number: str
    ) -> None:
        self.sequence_cache.update(partition_key, sequence_number)
        await self.table.resolve()
        shard = self.table.get(shard_id)
        if shard is not None:
            shard.advance_write_cursor(sequence_number)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def aclose(self) -> None:
        """Stop fetching, let work in flight finish, and release the client."""
        if self._closed:
            return
        self._closed = True
        self._data_ready.set()
        if self._backoff_handle is not None:
            self._backoff_handle.cancel()

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        if self._owns_client:
            await self.client.close()
        logger.debug("Stream session closed", extra={"stream": self.name})

    async def __aenter__(self) -> StreamSession:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()
