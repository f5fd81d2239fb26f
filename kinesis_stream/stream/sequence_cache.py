"""
Bounded least-recently-used map from partition key to sequence number.

Remembers, per partition key, the highest sequence number acknowledged for a
write so the next write to that key can ask the service to order after it.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Optional

from .base import SequenceNumber, compare_sequence_numbers


class SequenceCache:
    """LRU cache of the highest acknowledged sequence number per key.

    Both get() and set() count as a use. When full, the least recently used
    key is evicted.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: OrderedDict[str, SequenceNumber] = OrderedDict()

    def get(self, partition_key: str) -> Optional[SequenceNumber]:
        sequence_number = self._entries.get(partition_key)
        if sequence_number is not None:
            self._entries.move_to_end(partition_key)
        return sequence_number

    def set(self, partition_key: str, sequence_number: SequenceNumber) -> None:
        self._entries[partition_key] = sequence_number
        self._entries.move_to_end(partition_key)
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def update(self, partition_key: str, sequence_number: SequenceNumber) -> bool:
        """Store sequence_number only if it is past the cached value.

        Returns:
            True if the cache moved forward
        """
        if compare_sequence_numbers(sequence_number, self.get(partition_key)) > 0:
            self.set(partition_key, sequence_number)
            return True
        return False

    def __contains__(self, partition_key: object) -> bool:
        return partition_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
