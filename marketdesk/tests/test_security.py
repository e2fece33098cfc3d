import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from marketdesk.security import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    content_security_policy,
    security_headers,
)


class ContentSecurityPolicyTests(unittest.TestCase):
    def test_connect_src_includes_backend_origin(self):
        policy = content_security_policy("https://abc.supabase.co")
        self.assertIn("connect-src 'self' https://abc.supabase.co", policy)
        self.assertIn("default-src 'self'", policy)
        self.assertIn("frame-ancestors 'none'", policy)
        self.assertIn("img-src 'self' data: https://via.placeholder.com", policy)
        self.assertTrue(policy.endswith("upgrade-insecure-requests"))

    def test_without_backend_origin(self):
        self.assertIn("connect-src 'self';", content_security_policy(None))

    def test_header_set(self):
        headers = security_headers()
        self.assertEqual(headers["X-Frame-Options"], "DENY")
        self.assertEqual(headers["X-Content-Type-Options"], "nosniff")
        self.assertEqual(headers["Cross-Origin-Opener-Policy"], "same-origin")
        self.assertIn("max-age=15552000", headers["Strict-Transport-Security"])


class InMemoryRateLimiterTests(unittest.TestCase):
    def test_blocks_after_limit_until_window_resets(self):
        now = [1000.0]
        limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])

        self.assertTrue(limiter.hit("1.2.3.4").allowed)
        second = limiter.hit("1.2.3.4")
        self.assertTrue(second.allowed)
        self.assertEqual(second.remaining, 0)

        blocked = limiter.hit("1.2.3.4")
        self.assertFalse(blocked.allowed)
        self.assertEqual(blocked.reset_after, 60)
        self.assertTrue(limiter.hit("5.6.7.8").allowed)

        now[0] += 60
        self.assertTrue(limiter.hit("1.2.3.4").allowed)

    def test_expired_windows_are_dropped(self):
        now = [0.0]
        limiter = InMemoryRateLimiter(max_requests=5, window_seconds=60, clock=lambda: now[0])
        for n in range(100):
            limiter.hit(f"10.0.0.{n}")
        self.assertEqual(len(limiter.windows), 100)

        now[0] += 61
        limiter.hit("192.168.0.1")
        self.assertEqual(list(limiter.windows), ["192.168.0.1"])


class RedisRateLimiterTests(unittest.TestCase):
    @patch("marketdesk.security.redis.Redis.from_url")
    def test_counts_and_sets_expiry_on_first_hit(self, from_url):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [1, -1]
        from_url.return_value = client
        limiter = RedisRateLimiter(url="redis://localhost:6379/0", max_requests=5, window_seconds=900)

        result = limiter.hit("1.2.3.4")

        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 4)
        client.expire.assert_called_once_with("marketdesk:ratelimit:1.2.3.4", 900)

    @patch("marketdesk.security.redis.Redis.from_url")
    def test_over_limit(self, from_url):
        client = MagicMock()
        client.pipeline.return_value.execute.return_value = [6, 120]
        from_url.return_value = client
        limiter = RedisRateLimiter(url="redis://localhost:6379/0", max_requests=5)

        result = limiter.hit("1.2.3.4")

        self.assertFalse(result.allowed)
        self.assertEqual(result.reset_after, 120.0)
        client.expire.assert_not_called()

    @patch("marketdesk.security.redis.Redis.from_url")
    def test_connection_error_lets_request_through(self, from_url):
        client = MagicMock()
        client.pipeline.return_value.execute.side_effect = redis_exceptions.ConnectionError("reset")
        from_url.return_value = client
        limiter = RedisRateLimiter(url="redis://localhost:6379/0")

        self.assertTrue(limiter.hit("1.2.3.4").allowed)
        self.assertEqual(from_url.call_count, 2)


if __name__ == "__main__":
    unittest.main()
