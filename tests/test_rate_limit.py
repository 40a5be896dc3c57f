import threading
import unittest

from starlette.requests import Request

from aerofresh.config import RateLimitConfig
from aerofresh.rate_limit import FixedWindowRateLimiter, get_client_id, presented_api_key


class FakeClock:
    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_request(headers=None, client=("10.0.0.1", 5555)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/v1/search",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestFixedWindowRateLimiter(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = FixedWindowRateLimiter(RateLimitConfig(requests_per_minute=3, window_ms=60000), clock=self.clock)

    def test_quota_requests_succeed_then_next_is_rejected(self):
        for i in range(3):
            result = self.limiter.hit("ip:1.2.3.4")
            self.assertTrue(result.allowed)
            self.assertEqual(result.remaining, 2 - i)
        self.clock.advance(15000)
        rejected = self.limiter.hit("ip:1.2.3.4")
        self.assertFalse(rejected.allowed)
        self.assertEqual(rejected.remaining, 0)
        self.assertEqual(rejected.retry_after, 45)
        self.assertLessEqual(rejected.retry_after, 60)
        self.assertGreaterEqual(rejected.retry_after, 1)

    def test_retry_after_is_at_least_one_second(self):
        for _ in range(3):
            self.limiter.hit("c")
        self.clock.advance(59999.5)
        self.assertEqual(self.limiter.hit("c").retry_after, 1)

    def test_quota_resets_after_window(self):
        for _ in range(4):
            self.limiter.hit("c")
        self.assertFalse(self.limiter.hit("c").allowed)
        self.clock.advance(60000)
        result = self.limiter.hit("c")
        self.assertTrue(result.allowed)
        self.assertEqual(result.remaining, 2)
        self.assertEqual(result.reset_at, self.clock.now + 60000)

    def test_clients_are_counted_independently(self):
        for _ in range(3):
            self.limiter.hit("a")
        self.assertFalse(self.limiter.hit("a").allowed)
        self.assertTrue(self.limiter.hit("b").allowed)

    def test_stale_entries_are_dropped_on_hit(self):
        self.limiter.hit("a")
        self.limiter.hit("b")
        self.assertEqual(len(self.limiter), 2)
        self.clock.advance(120000)
        self.limiter.hit("c")
        self.assertEqual(len(self.limiter), 1)

    def test_remaining_and_reset_time(self):
        self.assertEqual(self.limiter.remaining("new"), 3)
        self.limiter.hit("new")
        self.assertEqual(self.limiter.remaining("new"), 2)
        self.assertEqual(self.limiter.reset_time("new"), int((self.clock.now + 60000) / 1000))

    def test_clear(self):
        for _ in range(3):
            self.limiter.hit("a")
        self.limiter.clear()
        self.assertEqual(len(self.limiter), 0)
        self.assertTrue(self.limiter.hit("a").allowed)

    def test_concurrent_hits_never_exceed_quota(self):
        limiter = FixedWindowRateLimiter(RateLimitConfig(requests_per_minute=100), clock=self.clock)
        allowed = []
        lock = threading.Lock()
        start = threading.Barrier(8)

        def worker():
            start.wait()
            for _ in range(50):
                ok = limiter.hit("c").allowed
                with lock:
                    allowed.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(allowed), 400)
        self.assertEqual(sum(allowed), 100)
        self.assertEqual(limiter.remaining("c"), 0)


class TestClientId(unittest.TestCase):
    def test_api_key_header_wins(self):
        req = make_request({"x-api-key": "demo-api-key", "X-Forwarded-For": "9.9.9.9"})
        self.assertEqual(get_client_id(req), "api:demo-api-key")

    def test_bearer_token(self):
        req = make_request({"Authorization": "Bearer tok123"})
        self.assertEqual(presented_api_key(req), "tok123")
        self.assertEqual(get_client_id(req), "api:tok123")

    def test_forwarded_for_first_hop(self):
        req = make_request({"X-Forwarded-For": "1.2.3.4, 5.6.7.8"})
        self.assertEqual(get_client_id(req), "ip:1.2.3.4")

    def test_cloudflare_header_preferred_over_forwarded(self):
        req = make_request({"cf-connecting-ip": "8.8.8.8", "X-Forwarded-For": "1.2.3.4"})
        self.assertEqual(get_client_id(req), "ip:8.8.8.8")

    def test_real_ip_then_peer_address(self):
        self.assertEqual(get_client_id(make_request({"X-Real-IP": "4.4.4.4"})), "ip:4.4.4.4")
        self.assertEqual(get_client_id(make_request()), "ip:10.0.0.1")

    def test_unknown_bucket(self):
        self.assertEqual(get_client_id(make_request(client=None)), "ip:unknown")


if __name__ == "__main__":
    unittest.main()
