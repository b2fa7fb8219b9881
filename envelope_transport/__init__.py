"""Non-blocking HTTP delivery of telemetry envelopes with server-driven rate limiting."""

from envelope_transport.transport.transport import HttpTransport, Transport
from envelope_transport.transport.types import Dsn, Envelope, EnvelopeItem, RateLimitCategory

__version__ = "0.1.0"

__all__ = [
    "Dsn",
    "Envelope",
    "EnvelopeItem",
    "HttpTransport",
    "RateLimitCategory",
    "Transport",
]
