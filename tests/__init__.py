"""
portcullis test suite.

Tests are organized by layer:
    tests/unit/         Unit tests (no daemon, fast)
    tests/integration/  Orchestrator runs and CLI invocations

Run all tests:
    pytest

Run unit tests only:
    pytest tests/unit/
"""
