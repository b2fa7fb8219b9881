"""Exceptions raised by the envelope transport."""

from __future__ import annotations


class TransportError(Exception):
    """Base class for transport-level errors."""


class EnvelopeSerializationError(TransportError):
    """Raised when an envelope cannot be turned into a request body."""

    def __init__(self, message: str, envelope_id: str = ""):
        super().__init__(message)
        self.envelope_id = envelope_id


class InvalidDsn(TransportError, ValueError):
    """Raised when a DSN string cannot be parsed."""
