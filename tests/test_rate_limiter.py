import time
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

import redis

from app.services.rate_limiter import (
    RATE_LIMITS,
    RateLimitConfig,
    RateLimitResult,
    check_rate_limit,
    get_client_identifier,
    rate_limit_headers,
    seconds_until,
)


class TestCheckRateLimit:
    def test_allows_up_to_max_then_rejects(self, fake_redis):
        results = [check_rate_limit("1.2.3.4", "chat", 3, 1, redis_client=fake_redis) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.current_count for r in results] == [1, 2, 3, 4]

    def test_sets_window_expiry_on_first_request(self, fake_redis):
        check_rate_limit("1.2.3.4", "chat", 3, 1, redis_client=fake_redis)

        ttl = fake_redis.ttl("servio:ratelimit:chat:1.2.3.4")
        assert 0 < ttl <= 60

    def test_allows_again_after_window_expires(self, fake_redis):
        for _ in range(3):
            check_rate_limit("1.2.3.4", "oauth", 2, 1, redis_client=fake_redis)
        assert not check_rate_limit("1.2.3.4", "oauth", 2, 1, redis_client=fake_redis).allowed

        fake_redis.pexpire("servio:ratelimit:oauth:1.2.3.4", 1)
        time.sleep(0.01)

        result = check_rate_limit("1.2.3.4", "oauth", 2, 1, redis_client=fake_redis)
        assert result.allowed
        assert result.current_count == 1

    def test_counters_are_per_endpoint_and_identifier(self, fake_redis):
        check_rate_limit("a", "chat", 1, 1, redis_client=fake_redis)

        assert check_rate_limit("b", "chat", 1, 1, redis_client=fake_redis).allowed
        assert check_rate_limit("a", "webhook", 1, 1, redis_client=fake_redis).allowed
        assert not check_rate_limit("a", "chat", 1, 1, redis_client=fake_redis).allowed

    def test_repairs_key_without_expiry(self, fake_redis):
        fake_redis.set("servio:ratelimit:chat:x", 5)

        check_rate_limit("x", "chat", 10, 1, redis_client=fake_redis)

        assert fake_redis.ttl("servio:ratelimit:chat:x") > 0

    def test_reset_at_is_in_the_future(self, fake_redis):
        before = datetime.now(timezone.utc)
        result = check_rate_limit("x", "chat", 10, 1, redis_client=fake_redis)

        assert before < result.reset_at <= before + timedelta(seconds=61)


class TestFailOpen:
    def test_redis_error_allows_request(self):
        broken = Mock()
        broken.incr.side_effect = redis.ConnectionError("down")

        result = check_rate_limit("x", "chat", 1, 1, redis_client=broken)

        assert result.allowed is True
        assert result.current_count == 0

    def test_missing_client_allows_request(self):
        with patch("app.services.rate_limiter.get_redis", return_value=None):
            result = check_rate_limit("x", "chat", 1, 1)

        assert result.allowed is True
        assert result.current_count == 0

    def test_client_construction_error_allows_request(self):
        with patch("app.services.rate_limiter.get_redis", side_effect=ValueError("Redis URL must specify a scheme")):
            result = check_rate_limit("x", "chat", 1, 1)

        assert result.allowed is True
        assert result.current_count == 0


class TestClientIdentifier:
    def _request(self, headers):
        return SimpleNamespace(headers=headers)

    def test_uses_first_forwarded_hop(self):
        request = self._request({"x-forwarded-for": "203.0.113.7, 10.0.0.1"})
        assert get_client_identifier(request) == "203.0.113.7"

    def test_falls_back_to_real_ip_then_cloudflare(self):
        assert get_client_identifier(self._request({"x-real-ip": "198.51.100.2"})) == "198.51.100.2"
        assert get_client_identifier(self._request({"cf-connecting-ip": "192.0.2.9"})) == "192.0.2.9"

    def test_fallback_and_anonymous(self):
        assert get_client_identifier(self._request({}), fallback="visitor-1") == "visitor-1"
        assert get_client_identifier(self._request({})) == "anonymous"


class TestHeaders:
    def test_presets(self):
        assert RATE_LIMITS["chat"] == RateLimitConfig(max_requests=30, window_minutes=1)
        assert RATE_LIMITS["webhook"].max_requests == 100
        assert RATE_LIMITS["oauth"].max_requests == 10
        assert RATE_LIMITS["default"].max_requests == 60

    def test_rate_limit_headers(self):
        reset_at = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        result = RateLimitResult(allowed=True, current_count=4, reset_at=reset_at)

        headers = rate_limit_headers(result, RateLimitConfig(max_requests=10, window_minutes=1))

        assert headers == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "6",
            "X-RateLimit-Reset": reset_at.isoformat(),
        }

    def test_remaining_never_negative(self):
        result = RateLimitResult(allowed=False, current_count=12, reset_at=datetime.now(timezone.utc))
        headers = rate_limit_headers(result, RateLimitConfig(max_requests=10, window_minutes=1))
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_seconds_until_is_at_least_one(self):
        now = datetime.now(timezone.utc)
        assert seconds_until(now, now=now) == 1
        assert seconds_until(now + timedelta(seconds=30.2), now=now) == 31
