"""
kinesis-stream command-line tool.

Usage:
    kinesis-stream list
    kinesis-stream create <stream> [--shards N]
    kinesis-stream tail <stream> [--from-oldest] [--max-records N]
    kinesis-stream put <stream> [--partition-key KEY] < lines.txt

Connection settings (region, endpoint, credentials) come from the
environment, see ClientConfig.from_env().

Invariants:
    - Exit code 0 on success, 1 on any client error
    - Records are printed one per line as JSON
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import dataclasses
import json
import logging
import sys
from typing import List, Optional

from ..api import list_streams, request
from ..config import ClientConfig, ObservabilityConfig, ReadStart, StreamConfig
from ..errors import KinesisError
from ..log import setup_logging
from ..stream.base import Record
from ..stream.session import StreamSession

logger = logging.getLogger(__name__)


def format_record(record: Record) -> str:
    """Render a read record as one JSON line."""
    try:
        data = record.data.decode("utf-8")
        encoding = "utf-8"
    except UnicodeDecodeError:
        data = base64.b64encode(record.data).decode("ascii")
        encoding = "base64"
    return json.dumps(
        {
            "shard_id": record.shard_id,
            "sequence_number": record.sequence_number,
            "partition_key": record.partition_key,
            "approximate_arrival_timestamp": record.approximate_arrival_timestamp,
            "data": data,
            "encoding": encoding,
        }
    )


async def cmd_list(client_config: ClientConfig) -> int:
    for name in await list_streams(client_config):
        print(name)
    return 0


async def cmd_create(client_config: ClientConfig, stream: str, shard_count: int) -> int:
    await request("CreateStream", {"StreamName": stream, "ShardCount": shard_count}, client_config)
    print(f"Created stream {stream} with {shard_count} shard(s)")
    return 0


async def cmd_tail(config: StreamConfig, max_records: Optional[int]) -> int:
    count = 0
    async with StreamSession(config) as session:
        async for record in session:
            print(format_record(record), flush=True)
            count += 1
            if max_records is not None and count >= max_records:
                break
    logger.info("Tail finished", extra={"stream": config.name, "records": count})
    return 0


async def cmd_put(config: StreamConfig, partition_key: Optional[str], lines: List[str]) -> int:
    written = 0
    async with StreamSession(config) as session:
        for line in lines:
            line = line.rstrip("\n")
            if not line:
                continue
            await session.write({"PartitionKey": partition_key, "Data": line})
            written += 1
        await session.flush()
    print(f"Wrote {written} record(s) to {config.name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kinesis-stream",
        description="Read, write and list Kinesis streams",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List stream names")

    create = sub.add_parser("create", help="Create a stream")
    create.add_argument("stream", help="Stream name")
    create.add_argument("--shards", type=int, default=1, help="Number of shards")

    tail = sub.add_parser("tail", help="Print records as they arrive")
    tail.add_argument("stream", help="Stream name")
    tail.add_argument(
        "--from-oldest", action="store_true", help="Start at the oldest available record"
    )
    tail.add_argument("--max-records", type=int, help="Stop after this many records")
    tail.add_argument("--backoff-ms", type=int, default=1000, help="Delay between polls")

    put = sub.add_parser("put", help="Write stdin lines as records")
    put.add_argument("stream", help="Stream name")
    put.add_argument("--partition-key", help="Partition key (random per record if omitted)")
    put.add_argument("--concurrency", type=int, default=1, help="Writes in flight")

    return parser


def run(args: argparse.Namespace) -> int:
    client_config = ClientConfig.from_env()

    if args.command == "list":
        return asyncio.run(cmd_list(client_config))
    if args.command == "create":
        return asyncio.run(cmd_create(client_config, args.stream, args.shards))

    config = StreamConfig.from_env(args.stream)
    if args.command == "tail":
        config = dataclasses.replace(
            config,
            backoff_ms=args.backoff_ms,
            read_start=ReadStart.OLDEST if args.from_oldest else config.read_start,
        )
        config.log_config()
        return asyncio.run(cmd_tail(config, args.max_records))

    config = dataclasses.replace(config, write_concurrency=args.concurrency)
    config.log_config()
    return asyncio.run(cmd_put(config, args.partition_key, sys.stdin.readlines()))


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    observability = ObservabilityConfig.from_env()
    if args.verbose:
        observability = dataclasses.replace(observability, log_level="DEBUG")
    setup_logging(observability)

    try:
        code = run(args)
    except KinesisError as e:
        logger.error(f"Command failed: {e}", extra={"command": args.command, "code": e.code})
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
