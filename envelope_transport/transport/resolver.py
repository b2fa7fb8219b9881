"""Destination Resolver — proxy and TLS selection, resolved once per transport."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from envelope_transport.core.config import Settings
from envelope_transport.transport.errors import InvalidDsn
from envelope_transport.transport.types import Dsn, Scheme

logger = logging.getLogger(__name__)


def _valid_proxy(value: str | None, setting: str) -> str | None:
    """Return ``value`` if httpx can route through it, else None.

    Building a throwaway transport also catches proxies whose optional
    dependency is missing, such as SOCKS without ``socksio``.
    """
    if not value:
        return None
    try:
        httpx.HTTPTransport(proxy=value).close()
    except (ValueError, ImportError, httpx.InvalidURL) as e:
        logger.warning("Ignoring invalid %s %r: %s", setting, value, e)
        return None
    return value


def resolve_proxy(scheme: Scheme, http_proxy: str | None, https_proxy: str | None) -> str | None:
    """Pick at most one proxy for the destination.

    Precedence:
      1. https destination with a valid https_proxy
      2. a valid http_proxy
      3. no proxy

    An invalid value is logged and skipped, never fatal.
    """
    if scheme is Scheme.HTTPS:
        proxy = _valid_proxy(https_proxy, "https_proxy")
        if proxy:
            return proxy
    return _valid_proxy(http_proxy, "http_proxy")


@dataclass(frozen=True)
class DestinationConfig:
    """Everything the adapter needs to reach the ingestion endpoint."""

    url: str
    auth: str
    scheme: Scheme
    proxy: str | None = None
    verify: bool = True
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, config: Settings, dsn: Dsn | None = None) -> DestinationConfig:
        """Resolve the destination from settings.

        Args:
            config: Transport settings (proxies, TLS, timeouts)
            dsn: Explicit DSN; defaults to the one in ``config``

        Raises:
            InvalidDsn: if no usable DSN is available.
        """
        dsn = dsn or config.parsed_dsn
        if dsn is None:
            raise InvalidDsn("No DSN configured")

        if config.accept_invalid_certs:
            logger.warning("TLS certificate verification is disabled for %s", dsn.host)

        return cls(
            url=dsn.envelope_api_url(),
            auth=dsn.to_auth(config.user_agent),
            scheme=dsn.scheme,
            proxy=resolve_proxy(dsn.scheme, config.http_proxy, config.https_proxy),
            verify=not config.accept_invalid_certs,
            timeout=config.request_timeout,
        )
