"""
Stream session: the read and write state machines over a Kinesis stream.

Invariants:
    - One fetch cycle at a time per session
    - Per-key ordering is carried by SequenceNumberForOrdering, never by
      serializing writes
"""

from .base import Record, WriteResult, compare_sequence_numbers, normalize_record
from .sequence_cache import SequenceCache
from .session import StreamSession
from .shards import Shard, ShardTable

__all__ = [
    "Record",
    "WriteResult",
    "compare_sequence_numbers",
    "normalize_record",
    "SequenceCache",
    "Shard",
    "ShardTable",
    "StreamSession",
]
