"""Core types consumed by the envelope transport.

Envelopes, their items, rate-limit categories and the DSN descriptor are
produced by the surrounding SDK. The transport only needs a small surface
of each: serialize to bytes, know which rate-limit bucket an item belongs
to, and know where (and as whom) to submit.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from envelope_transport.transport.errors import EnvelopeSerializationError, InvalidDsn

# Version of the auth protocol advertised in X-Sentry-Auth
PROTOCOL_VERSION = 7


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Scheme(str, Enum):
    """Submission endpoint scheme."""

    HTTP = "http"
    HTTPS = "https"


class RateLimitCategory(str, Enum):
    """Server-defined buckets that can be throttled independently."""

    ANY = "any"  # Wildcard: all categories
    ERROR = "error"
    SESSION = "session"
    TRANSACTION = "transaction"
    ATTACHMENT = "attachment"
    MONITOR = "monitor"
    LOG_ITEM = "log_item"
    UNKNOWN = "unknown"

    @classmethod
    def from_header(cls, name: str) -> RateLimitCategory:
        """Map a category name from ``x-sentry-rate-limits`` to a member."""
        name = name.strip().lower()
        if not name:
            return cls.ANY
        if name == cls.ANY.value or name == cls.UNKNOWN.value:
            # Not valid on the wire
            return cls.UNKNOWN
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


_ITEM_CATEGORIES: dict[str, RateLimitCategory] = {
    "event": RateLimitCategory.ERROR,
    "transaction": RateLimitCategory.TRANSACTION,
    "session": RateLimitCategory.SESSION,
    "sessions": RateLimitCategory.SESSION,
    "attachment": RateLimitCategory.ATTACHMENT,
    "check_in": RateLimitCategory.MONITOR,
    "log": RateLimitCategory.LOG_ITEM,
}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnvelopeItem:
    """A single typed payload inside an envelope."""

    item_type: str
    payload: bytes = b""
    headers: dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> RateLimitCategory:
        return _ITEM_CATEGORIES.get(self.item_type, RateLimitCategory.UNKNOWN)


@dataclass(frozen=True)
class Envelope:
    """An already-built unit of telemetry sent in one request.

    Immutable once handed to the transport; filtering produces a new
    envelope instead of mutating this one.
    """

    headers: dict[str, Any] = field(default_factory=dict)
    items: tuple[EnvelopeItem, ...] = ()

    @classmethod
    def from_items(cls, *items: EnvelopeItem, **headers: Any) -> Envelope:
        headers.setdefault("event_id", uuid.uuid4().hex)
        return cls(headers=headers, items=tuple(items))

    @property
    def envelope_id(self) -> str:
        return str(self.headers.get("event_id", ""))

    def categories(self) -> set[RateLimitCategory]:
        return {item.category for item in self.items}

    def filter(self, keep: Callable[[EnvelopeItem], bool]) -> Envelope | None:
        """Return a copy holding only the items ``keep`` accepts.

        Returns None if no items remain.
        """
        kept = tuple(item for item in self.items if keep(item))
        if not kept:
            return None
        if len(kept) == len(self.items):
            return self
        return Envelope(headers=dict(self.headers), items=kept)

    def to_bytes(self) -> bytes:
        """Serialize to the line-delimited envelope format.

        Raises:
            EnvelopeSerializationError: if any header is not JSON-serializable.
        """
        try:
            lines = [_dump_json(self.headers)]
            for item in self.items:
                item_headers = {"type": item.item_type, "length": len(item.payload), **item.headers}
                lines.append(_dump_json(item_headers))
                lines.append(item.payload)
        except (TypeError, ValueError) as e:
            raise EnvelopeSerializationError(
                f"Envelope headers are not serializable: {e}",
                envelope_id=self.envelope_id,
            ) from e
        return b"\n".join(lines) + b"\n"


def _dump_json(data: dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


# ---------------------------------------------------------------------------
# DSN
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dsn:
    """Endpoint descriptor: where envelopes go and which key signs them."""

    scheme: Scheme
    public_key: str
    host: str
    project_id: str
    port: int | None = None
    path: str = ""  # Prefix before /api/, without trailing slash
    secret_key: str = ""

    @classmethod
    def parse(cls, value: str) -> Dsn:
        """Parse ``<scheme>://<public_key>[:secret]@<host>[:port]/<path/><project_id>``."""
        try:
            url = httpx.URL(value.strip())
        except httpx.InvalidURL as e:
            raise InvalidDsn(f"Invalid DSN {value!r}: {e}") from e

        try:
            scheme = Scheme(url.scheme)
        except ValueError as e:
            raise InvalidDsn(f"Unsupported DSN scheme: {url.scheme!r}") from e

        if not url.username:
            raise InvalidDsn("DSN is missing the public key")
        if not url.host:
            raise InvalidDsn("DSN is missing the host")

        prefix, _, project_id = url.path.rstrip("/").rpartition("/")
        if not project_id.isdigit():
            raise InvalidDsn(f"DSN has an invalid project id: {project_id!r}")

        return cls(
            scheme=scheme,
            public_key=url.username,
            secret_key=url.password or "",
            host=url.host,
            port=url.port,
            path=prefix,
            project_id=project_id,
        )

    @property
    def netloc(self) -> str:
        return f"{self.host}:{self.port}" if self.port else self.host

    def envelope_api_url(self) -> str:
        return f"{self.scheme.value}://{self.netloc}{self.path}/api/{self.project_id}/envelope/"

    def to_auth(self, user_agent: str | None = None) -> str:
        """Build the X-Sentry-Auth header value."""
        parts = [f"sentry_key={self.public_key}", f"sentry_version={PROTOCOL_VERSION}"]
        if self.secret_key:
            parts.append(f"sentry_secret={self.secret_key}")
        if user_agent:
            parts.append(f"sentry_client={user_agent}")
        return "Sentry " + ", ".join(parts)

    def __str__(self) -> str:
        return f"{self.scheme.value}://{self.public_key}@{self.netloc}{self.path}/{self.project_id}"
