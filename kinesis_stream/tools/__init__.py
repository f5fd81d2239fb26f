"""
Command-line tools for working with Kinesis streams.

This module provides:
- kinesis-stream list: List stream names
- kinesis-stream tail: Print records as they arrive
- kinesis-stream put: Write stdin lines as records
- kinesis-stream create: Create a stream

Invariants:
    - Tools take their connection settings from the environment
    - All operations are logged
"""

from .cli import main

__all__ = ["main"]
