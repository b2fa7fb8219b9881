"""Tests for the rate limiter and response interpretation."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from conftest import make_envelope
from envelope_transport.transport.rate_limiter import (
    DEFAULT_RETRY_AFTER,
    DirectiveKind,
    RateLimitDirective,
    interpret_response,
    parse_retry_after,
)
from envelope_transport.transport.types import RateLimitCategory


# ==========================================================================
# Test: Response interpretation
# ==========================================================================


class TestInterpretResponse:
    def test_sentry_header_wins(self):
        directive = interpret_response(
            429,
            {"X-Sentry-Rate-Limits": "60:error", "Retry-After": "30"},
        )
        assert directive == RateLimitDirective(DirectiveKind.SENTRY_HEADER, "60:error")

    def test_retry_after_beats_429(self):
        directive = interpret_response(429, {"retry-after": "30"})
        assert directive == RateLimitDirective(DirectiveKind.RETRY_AFTER, "30")

    def test_bare_429(self):
        assert interpret_response(429, {}).kind == DirectiveKind.TOO_MANY_REQUESTS

    def test_retry_after_on_success_still_counts(self):
        assert interpret_response(200, {"Retry-After": "5"}).kind == DirectiveKind.RETRY_AFTER

    @pytest.mark.parametrize("status", [200, 400, 413, 500, 503])
    def test_no_signal(self, status):
        assert interpret_response(status, {"content-type": "application/json"}).kind == DirectiveKind.NONE


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("30") == 30.0

    def test_fractional_seconds(self):
        assert parse_retry_after(" 1.5 ") == 1.5

    def test_negative_clamped(self):
        assert parse_retry_after("-10") == 0.0

    def test_http_date(self):
        retry_at = datetime.now(timezone.utc) + timedelta(seconds=120)
        delay = parse_retry_after(format_datetime(retry_at, usegmt=True))
        assert 100 < delay <= 120

    def test_http_date_in_past(self):
        retry_at = datetime.now(timezone.utc) - timedelta(hours=1)
        assert parse_retry_after(format_datetime(retry_at, usegmt=True)) == 0.0

    def test_garbage_uses_default(self):
        assert parse_retry_after("soon") == DEFAULT_RETRY_AFTER

    @pytest.mark.parametrize("value", ["inf", "-inf", "nan", "Infinity", "1_0", "1e3", "9" * 400])
    def test_non_plain_numbers_use_default(self, value):
        assert parse_retry_after(value) == DEFAULT_RETRY_AFTER


# ==========================================================================
# Test: Rate limiter state
# ==========================================================================


class TestRateLimiter:
    def test_initially_unlimited(self, limiter):
        for category in RateLimitCategory:
            assert limiter.is_disabled(category) is None
        assert limiter.snapshot() == {}

    def test_sentry_header_per_category(self, limiter):
        limiter.update_from_sentry_header("60:error, 120:transaction")

        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(60)
        assert limiter.is_disabled(RateLimitCategory.TRANSACTION) == pytest.approx(120)
        assert limiter.is_disabled(RateLimitCategory.SESSION) is None
        assert limiter.is_disabled(RateLimitCategory.ANY) is None

    def test_sentry_header_multiple_categories_and_scope(self, limiter):
        limiter.update_from_sentry_header("30:error;attachment:organization:quota_exceeded")
        assert limiter.is_limited(RateLimitCategory.ERROR)
        assert limiter.is_limited(RateLimitCategory.ATTACHMENT)
        assert not limiter.is_limited(RateLimitCategory.TRANSACTION)

    def test_sentry_header_empty_categories_is_wildcard(self, limiter):
        limiter.update_from_sentry_header("45::organization")
        assert limiter.is_disabled(RateLimitCategory.ANY) == pytest.approx(45)
        assert limiter.is_disabled(RateLimitCategory.SESSION) == pytest.approx(45)

    def test_sentry_header_skips_malformed_and_unknown(self, limiter):
        limiter.update_from_sentry_header("abc:error, 10:foobar, 20:session")
        assert not limiter.is_limited(RateLimitCategory.ERROR)
        assert not limiter.is_limited(RateLimitCategory.ANY)
        assert limiter.is_disabled(RateLimitCategory.SESSION) == pytest.approx(20)

    def test_sentry_header_skips_non_finite(self, limiter):
        limiter.update_from_sentry_header("inf:error, nan:, 1_0:session, 15:transaction")
        assert not limiter.is_limited(RateLimitCategory.ERROR)
        assert not limiter.is_limited(RateLimitCategory.ANY)
        assert not limiter.is_limited(RateLimitCategory.SESSION)
        assert limiter.is_disabled(RateLimitCategory.TRANSACTION) == pytest.approx(15)

    def test_sentry_header_overwrites(self, limiter):
        limiter.update_from_sentry_header("120:error")
        limiter.update_from_sentry_header("10:error")
        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(10)

    def test_retry_after_sets_wildcard(self, limiter):
        limiter.update_from_retry_after("30")
        assert limiter.is_disabled(RateLimitCategory.ANY) == pytest.approx(30)
        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(30)

    def test_429_default_backoff(self, limiter):
        limiter.update_from_429()
        assert limiter.is_disabled(RateLimitCategory.ANY) == pytest.approx(DEFAULT_RETRY_AFTER)

    def test_category_uses_longer_of_own_and_wildcard(self, limiter):
        limiter.update_from_sentry_header("100:error")
        limiter.update_from_retry_after("10")
        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(100)
        assert limiter.is_disabled(RateLimitCategory.SESSION) == pytest.approx(10)

    def test_limits_expire(self, limiter, clock):
        limiter.update_from_sentry_header("60:error")
        clock.advance(59)
        assert limiter.is_limited(RateLimitCategory.ERROR)
        clock.advance(1)
        assert not limiter.is_limited(RateLimitCategory.ERROR)
        assert limiter.snapshot() == {}

    def test_snapshot(self, limiter, clock):
        limiter.update_from_sentry_header("60:error")
        clock.advance(15)
        assert limiter.snapshot() == {"error": 45.0}


class TestApplyDirective:
    def test_apply_sentry_header_only(self, limiter):
        limiter.apply(interpret_response(429, {"x-sentry-rate-limits": "60:error, 120:transaction", "retry-after": "5"}))

        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(60)
        assert limiter.is_disabled(RateLimitCategory.TRANSACTION) == pytest.approx(120)
        # Neither retry-after nor the 429 fallback touched the wildcard
        assert limiter.is_disabled(RateLimitCategory.ANY) is None

    def test_apply_retry_after(self, limiter):
        limiter.apply(interpret_response(503, {"retry-after": "30"}))
        assert limiter.is_disabled(RateLimitCategory.ANY) == pytest.approx(30)

    def test_apply_429(self, limiter):
        limiter.apply(interpret_response(429, {}))
        assert limiter.is_disabled(RateLimitCategory.ANY) == pytest.approx(DEFAULT_RETRY_AFTER)

    def test_apply_none(self, limiter):
        limiter.apply(RateLimitDirective(DirectiveKind.NONE))
        assert limiter.snapshot() == {}


class TestFilterEnvelope:
    def test_drops_limited_items(self, limiter):
        limiter.update_from_sentry_header("60:transaction")
        env = make_envelope("event", "transaction")

        filtered = limiter.filter_envelope(env)
        assert filtered is not None
        assert [i.item_type for i in filtered.items] == ["event"]

    def test_all_limited_returns_none(self, limiter):
        limiter.update_from_429()
        assert limiter.filter_envelope(make_envelope("event", "session")) is None

    def test_unlimited_passthrough(self, limiter):
        env = make_envelope("event")
        assert limiter.filter_envelope(env) is env


class TestConcurrentAccess:
    def test_readers_and_writer(self, limiter):
        errors: list[Exception] = []
        stop = threading.Event()

        def reader():
            try:
                while not stop.is_set():
                    limiter.is_disabled(RateLimitCategory.ERROR)
                    limiter.snapshot()
            except Exception as e:  # pragma: no cover
                errors.append(e)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for t in readers:
            t.start()
        for i in range(500):
            limiter.update_from_sentry_header(f"{i}:error;session, {i}:transaction")
        stop.set()
        for t in readers:
            t.join(timeout=5)

        assert errors == []
        assert limiter.is_disabled(RateLimitCategory.ERROR) == pytest.approx(499)
