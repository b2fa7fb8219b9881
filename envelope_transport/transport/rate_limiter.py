"""Rate Limiter — per-category throttle windows driven by server responses.

The server tells us to back off in one of three ways, checked in order
(first match wins):

  1. ``x-sentry-rate-limits``: structured per-category limits
  2. ``retry-after``: seconds or HTTP-date, applies to all categories
  3. bare ``429 Too Many Requests``: fixed default backoff for all categories

``interpret_response`` turns a response into a ``RateLimitDirective`` and
``RateLimiter.apply`` records it. Keeping the two apart makes the
precedence rule testable without a limiter.

Thread-safe via threading.Lock: the worker thread writes, producers read.
"""

from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum

from envelope_transport.core.metrics import RATE_LIMIT_UPDATES
from envelope_transport.transport.types import Envelope, RateLimitCategory

logger = logging.getLogger(__name__)

_DECIMAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")

# Backoff applied when the server says "slow down" without saying how long
DEFAULT_RETRY_AFTER = 60.0

SENTRY_RATE_LIMITS_HEADER = "x-sentry-rate-limits"
RETRY_AFTER_HEADER = "retry-after"
TOO_MANY_REQUESTS = 429


class DirectiveKind(str, Enum):
    """Which rate-limit signal a response carried."""

    SENTRY_HEADER = "sentry_header"
    RETRY_AFTER = "retry_after"
    TOO_MANY_REQUESTS = "too_many_requests"
    NONE = "none"


@dataclass(frozen=True)
class RateLimitDirective:
    """Rate-limit instruction extracted from a single response."""

    kind: DirectiveKind
    value: str | None = None


def interpret_response(status_code: int, headers: Mapping[str, str]) -> RateLimitDirective:
    """Classify a response by the strongest rate-limit signal it carries."""
    lowered = {key.lower(): value for key, value in headers.items()}

    sentry_header = lowered.get(SENTRY_RATE_LIMITS_HEADER)
    if sentry_header is not None:
        return RateLimitDirective(DirectiveKind.SENTRY_HEADER, sentry_header)

    retry_after = lowered.get(RETRY_AFTER_HEADER)
    if retry_after is not None:
        return RateLimitDirective(DirectiveKind.RETRY_AFTER, retry_after)

    if status_code == TOO_MANY_REQUESTS:
        return RateLimitDirective(DirectiveKind.TOO_MANY_REQUESTS)

    return RateLimitDirective(DirectiveKind.NONE)


def _parse_seconds(value: str) -> float:
    """Parse a plain decimal number of seconds.

    Raises:
        ValueError: for anything else, including ``inf``, ``nan`` and ``1_0``.
    """
    value = value.strip()
    if not _DECIMAL.fullmatch(value):
        raise ValueError(f"not a number of seconds: {value!r}")
    seconds = float(value)
    if not math.isfinite(seconds):
        raise ValueError(f"out of range: {value!r}")
    return seconds


def parse_retry_after(value: str, default: float = DEFAULT_RETRY_AFTER) -> float:
    """Parse a Retry-After value (seconds or HTTP-date) into a delay in seconds."""
    value = value.strip()
    try:
        return max(_parse_seconds(value), 0.0)
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Unparseable retry-after %r, using %.0fs", value, default)
        return default

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    delay = (retry_at - datetime.now(timezone.utc)).total_seconds()
    return max(delay, 0.0)


class RateLimiter:
    """Tracks when each rate-limit category may be sent again.

    A category is limited iff ``now`` is before its recorded reset instant,
    or before the wildcard's. Expired entries are simply ignored.

    Usage:
        limiter = RateLimiter()

        # After each response (worker thread):
        limiter.apply(interpret_response(resp.status_code, resp.headers))

        # Before enqueuing (any thread):
        if limiter.is_limited(RateLimitCategory.ERROR):
            ...
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._resets: dict[RateLimitCategory, float] = {}
        self._lock = threading.Lock()

    def _set(self, category: RateLimitCategory, seconds: float) -> None:
        # Caller holds the lock
        self._resets[category] = self._clock() + seconds

    def update_from_sentry_header(self, header: str) -> None:
        """Merge ``x-sentry-rate-limits`` entries.

        Format: ``<seconds>:<cat>;<cat>:<scope>:<reason>, ...``. An empty
        category list means all categories.
        """
        with self._lock:
            for entry in header.split(","):
                parts = entry.strip().split(":")
                try:
                    seconds = _parse_seconds(parts[0])
                except ValueError:
                    logger.debug("Skipping malformed rate limit entry %r", entry)
                    continue

                categories = parts[1].strip() if len(parts) > 1 else ""
                if not categories:
                    self._set(RateLimitCategory.ANY, seconds)
                    continue

                for name in categories.split(";"):
                    if not name.strip():
                        continue
                    category = RateLimitCategory.from_header(name)
                    if category is RateLimitCategory.UNKNOWN:
                        continue
                    self._set(category, seconds)

    def update_from_retry_after(self, value: str) -> None:
        delay = parse_retry_after(value)
        with self._lock:
            self._set(RateLimitCategory.ANY, delay)

    def update_from_429(self) -> None:
        with self._lock:
            self._set(RateLimitCategory.ANY, DEFAULT_RETRY_AFTER)

    def apply(self, directive: RateLimitDirective) -> None:
        """Record a directive produced by ``interpret_response``."""
        if directive.kind is DirectiveKind.SENTRY_HEADER:
            self.update_from_sentry_header(directive.value or "")
        elif directive.kind is DirectiveKind.RETRY_AFTER:
            self.update_from_retry_after(directive.value or "")
        elif directive.kind is DirectiveKind.TOO_MANY_REQUESTS:
            self.update_from_429()
        else:
            return

        RATE_LIMIT_UPDATES.labels(source=directive.kind.value).inc()
        logger.info("Rate limits updated from %s: %s", directive.kind.value, self.snapshot())

    def is_disabled(self, category: RateLimitCategory) -> float | None:
        """Seconds until ``category`` may be sent again, or None if not limited."""
        with self._lock:
            now = self._clock()
            resets = [self._resets.get(category, 0.0), self._resets.get(RateLimitCategory.ANY, 0.0)]
        remaining = max(resets) - now
        return remaining if remaining > 0 else None

    def is_limited(self, category: RateLimitCategory) -> bool:
        return self.is_disabled(category) is not None

    def filter_envelope(self, envelope: Envelope) -> Envelope | None:
        """Drop items whose category is currently limited.

        Returns None if nothing is left to send.
        """
        return envelope.filter(lambda item: not self.is_limited(item.category))

    def snapshot(self) -> dict[str, float]:
        """Remaining seconds for every active limit."""
        with self._lock:
            now = self._clock()
            return {
                category.value: round(reset - now, 3)
                for category, reset in self._resets.items()
                if reset > now
            }
