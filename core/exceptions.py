#!/usr/bin/env python3
"""
Exception taxonomy for the circle matching engine.

ConfigurationError is fatal at startup, RepositoryReadError is fatal to a
single run, RepositoryWriteError and GeocodingError are recovered locally.
"""


class CircleMatchingError(Exception):
    """Base exception for matching engine errors."""
    pass


class ConfigurationError(CircleMatchingError):
    """Raised when required configuration or credentials are missing."""
    pass


class RepositoryError(CircleMatchingError):
    """Base class for persistence failures."""
    pass


class RepositoryReadError(RepositoryError):
    """Raised when users, circles or memberships cannot be read."""
    pass


class RepositoryWriteError(RepositoryError):
    """Raised when a single record cannot be written."""
    pass


class GeocodingError(CircleMatchingError):
    """Raised by geocoding providers on timeouts, bad payloads or country mismatch."""
    pass


class PipelineLockedError(CircleMatchingError):
    """Raised when another matching run already holds the run lock."""
    pass
