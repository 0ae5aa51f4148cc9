#!/usr/bin/env python3
"""
Test suite configuration and utilities.

All tests can be run with standard Python tools:

    # Run all tests
    python -m pytest tests/ -v

    # Run only tests that need no database engine
    python -m pytest tests/ -v -m "not db"

    # Using unittest (pytest-only fixtures are skipped)
    python -m unittest discover tests -v

Repository tests marked ``db`` run against in-memory SQLite, so no
external database is needed.
"""

SQLITE_URL = "sqlite://"
