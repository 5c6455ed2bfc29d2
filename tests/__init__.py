"""
LogTrail Test Suite.

This package contains:
- unit/: Unit tests (SQLite in a temp dir, in-memory log backend)
- integration/: HTTP and WebSocket tests through the FastAPI app
"""
