"""
cv-lifecycle Test Suite.

This package contains:
- unit/: Unit tests (in-memory server, mocked HTTP transport)
- integration/: Full lifecycle runs against the in-memory server
"""
