"""Submission Adapter — one POST per envelope, responses feed the rate limiter.

Delivery is best-effort: network failures are logged and the envelope is
dropped. There are no retries at this layer; backing off according to the
server's rate-limit signals is what keeps data flowing.
"""

from __future__ import annotations

import logging
import time

import httpx

from envelope_transport.core.metrics import DELIVERY_DURATION, ENVELOPES_DROPPED, RESPONSES_RECEIVED
from envelope_transport.transport.errors import EnvelopeSerializationError
from envelope_transport.transport.rate_limiter import RateLimiter, interpret_response
from envelope_transport.transport.resolver import DestinationConfig
from envelope_transport.transport.types import Envelope

logger = logging.getLogger(__name__)

ENVELOPE_CONTENT_TYPE = "application/x-sentry-envelope"

# How much of a response body ends up in debug logs
_MAX_LOGGED_BODY = 512


def build_client(destination: DestinationConfig) -> httpx.Client:
    """Create the HTTP client for a destination.

    ``trust_env`` is off so that only the resolved proxy is ever used.
    """
    return httpx.Client(
        proxy=destination.proxy,
        verify=destination.verify,
        timeout=destination.timeout,
        trust_env=False,
    )


class HttpSubmitter:
    """Posts envelopes to the ingestion endpoint.

    Usage:
        submitter = HttpSubmitter(destination, rate_limiter)
        submitter.deliver(envelope)  # never raises for network errors
        submitter.close()

    Not thread-safe on its own: the delivery worker calls ``deliver`` from
    a single thread, which is what keeps rate-limit updates ordered.
    """

    def __init__(
        self,
        destination: DestinationConfig,
        rate_limiter: RateLimiter,
        client: httpx.Client | None = None,
        logger: logging.Logger | None = None,
    ):
        self.destination = destination
        self.rate_limiter = rate_limiter
        self.logger = logger or logging.getLogger(__name__)
        self._owns_client = client is None
        self._client = client or build_client(destination)
        self._headers = {
            "X-Sentry-Auth": destination.auth,
            "Content-Type": ENVELOPE_CONTENT_TYPE,
        }

    def deliver(self, envelope: Envelope) -> None:
        """Submit one envelope. Side effects only: logs, metrics, rate limits."""
        try:
            body = envelope.to_bytes()
        except EnvelopeSerializationError as e:
            self.logger.error(
                "Dropping envelope %s: %s",
                e.envelope_id,
                e,
                extra={"envelope_id": e.envelope_id},
            )
            ENVELOPES_DROPPED.labels(reason="serialization").inc()
            return

        start = time.monotonic()
        try:
            with self._client.stream(
                "POST",
                self.destination.url,
                content=body,
                headers=self._headers,
            ) as response:
                self._handle_response(envelope, response)
        except httpx.TransportError as e:
            self.logger.warning(
                "Failed to send envelope %s: %s",
                envelope.envelope_id,
                e,
                extra={"envelope_id": envelope.envelope_id},
            )
            ENVELOPES_DROPPED.labels(reason="transport_error").inc()
        finally:
            DELIVERY_DURATION.observe(time.monotonic() - start)

    def _handle_response(self, envelope: Envelope, response: httpx.Response) -> None:
        RESPONSES_RECEIVED.labels(status=str(response.status_code)).inc()
        self.rate_limiter.apply(interpret_response(response.status_code, response.headers))

        if response.is_error:
            self.logger.warning(
                "Envelope %s rejected with status %d",
                envelope.envelope_id,
                response.status_code,
                extra={"envelope_id": envelope.envelope_id},
            )

        # Drain the body so the connection can go back to the pool
        try:
            response.read()
        except httpx.HTTPError as e:
            self.logger.debug("Failed to read response for %s: %s", envelope.envelope_id, e)
            return

        self.logger.debug(
            "Got response %d for %s: %s",
            response.status_code,
            envelope.envelope_id,
            response.text[:_MAX_LOGGED_BODY],
        )

    def close(self) -> None:
        """Close the HTTP client if this submitter created it."""
        if self._owns_client:
            self._client.close()
