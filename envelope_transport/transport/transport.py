"""Transport Facade — the send/flush/shutdown contract used by the SDK client.

Usage:
    transport = HttpTransport()  # reads SENTRY_* settings

    transport.send_envelope(envelope)  # fire-and-forget
    transport.flush(timeout=2.0)
    transport.shutdown()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from envelope_transport.core.config import Settings, settings
from envelope_transport.transport.adapter import HttpSubmitter
from envelope_transport.transport.rate_limiter import RateLimiter
from envelope_transport.transport.resolver import DestinationConfig
from envelope_transport.transport.types import Dsn, Envelope
from envelope_transport.transport.worker import DeliveryWorker

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Base class for envelope transports."""

    @abstractmethod
    def send_envelope(self, envelope: Envelope) -> None:
        """Hand an envelope over for delivery. Never blocks, never raises."""
        ...

    @abstractmethod
    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued envelopes to be attempted."""
        ...

    @abstractmethod
    def shutdown(self, timeout: float | None = None) -> bool:
        """Flush and stop accepting envelopes."""
        ...


class HttpTransport(Transport):
    """Delivers envelopes over HTTP from a background thread."""

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.Client | None = None,
        dsn: Dsn | None = None,
    ):
        """
        Args:
            config: Transport settings; defaults to the process-wide settings
            client: Pre-configured httpx.Client (proxy/TLS settings are then
                the caller's responsibility)
            dsn: Destination override; defaults to ``config.dsn``
        """
        self.config = config or settings
        self.destination = DestinationConfig.from_settings(self.config, dsn=dsn)
        self.rate_limiter = RateLimiter()
        self.submitter = HttpSubmitter(self.destination, self.rate_limiter, client=client)
        self.worker = DeliveryWorker(
            self.submitter.deliver,
            rate_limiter=self.rate_limiter,
            capacity=self.config.queue_capacity,
            on_stop=self.submitter.close,
        )
        logger.debug(
            "HTTP transport ready for %s (proxy=%s, verify=%s)",
            self.destination.url,
            self.destination.proxy or "none",
            self.destination.verify,
        )

    @classmethod
    def with_client(cls, config: Settings, client: httpx.Client) -> HttpTransport:
        """Create a transport that submits through ``client``."""
        return cls(config, client=client)

    def send_envelope(self, envelope: Envelope) -> None:
        self.worker.enqueue(envelope)

    send = send_envelope

    def flush(self, timeout: float | None = None) -> bool:
        return self.worker.flush(self._timeout(timeout))

    def shutdown(self, timeout: float | None = None) -> bool:
        """Flush and stop the worker.

        The HTTP client is closed by the worker thread once it exits, so a
        delivery still in flight at the deadline runs to completion.
        """
        return self.worker.shutdown(self._timeout(timeout))

    def _timeout(self, timeout: float | None) -> float:
        return self.config.shutdown_timeout if timeout is None else timeout
