"""
Error kinds surfaced by the record lifecycle.

Each kind is stable so the HTTP boundary can pick a status code for it.
"""

from __future__ import annotations


class RecordError(Exception):
    """Base class for failures raised by the core."""


class ValidationError(RecordError):
    """Malformed id, missing mandatory attachment or a document the schema rejects."""


class DuplicateError(RecordError):
    """Another record already uses the distinguishing name."""


class NotFoundError(RecordError):
    """The id is absent, or the record vanished mid-operation."""


class AuthenticationError(RecordError):
    """Bad credentials, or a missing, revoked or expired session token."""


class InfrastructureError(RecordError):
    """A store or the asset service is unavailable. Never retried by the core."""
