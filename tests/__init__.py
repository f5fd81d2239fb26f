"""
kinesis_stream test suite.

This package contains:
- unit/: Unit tests (no network, collaborators replaced by doubles)
- integration/: Stream session tests against the in-memory Kinesis service
"""
