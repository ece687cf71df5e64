"""
Tests for the fixed-window rate limiter.
"""

import threading
import time

from limits.storage import MemoryStorage

from portfolio_analytics.rate_limit import RateLimiter, client_identity


class TestRateLimiter:

    def test_allows_up_to_limit_then_rejects(self):
        limiter = RateLimiter(10, 60)
        results = [limiter.check("1.2.3.4") for _ in range(11)]
        assert results == [True] * 10 + [False]

    def test_click_threshold(self):
        limiter = RateLimiter(50, 60, name="click")
        results = [limiter.check("1.2.3.4") for _ in range(51)]
        assert results[:50] == [True] * 50
        assert results[50] is False

    def test_window_expiry_allows_again(self):
        limiter = RateLimiter(2, 1)
        assert limiter.check("a") and limiter.check("a")
        assert not limiter.check("a")

        time.sleep(1.1)
        assert limiter.check("a")
        assert limiter.remaining("a") == 1

    def test_remaining_counts_down(self):
        limiter = RateLimiter(3, 60)
        assert limiter.remaining("a") == 3
        limiter.check("a")
        assert limiter.remaining("a") == 2

    def test_identities_are_independent(self):
        limiter = RateLimiter(1, 60)
        assert limiter.check("a")
        assert limiter.check("b")
        assert not limiter.check("a")

    def test_limiters_sharing_storage_keep_separate_counters(self):
        storage = MemoryStorage()
        page_views = RateLimiter(1, 60, name="page-view", storage=storage)
        clicks = RateLimiter(1, 60, name="click", storage=storage)
        assert page_views.check("a")
        assert clicks.check("a")
        assert not page_views.check("a")

    def test_reset_clears_counters(self):
        limiter = RateLimiter(1, 60)
        limiter.check("a")
        assert not limiter.check("a")
        limiter.reset()
        assert limiter.check("a")

    def test_sub_second_window_rounds_up_to_one_second(self):
        assert RateLimiter(5, 0.5).window_seconds == 1

    def test_concurrent_checks_never_exceed_limit(self):
        limiter = RateLimiter(50, 60)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                ok = limiter.check("shared")
                with lock:
                    allowed.append(ok)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 200
        assert 0 < allowed.count(True) <= 50


class TestClientIdentity:

    def test_first_forwarded_hop_wins(self):
        headers = {"X-Forwarded-For": "203.0.113.5, 10.0.0.1", "X-Real-IP": "198.51.100.1"}
        assert client_identity(headers) == "203.0.113.5"

    def test_falls_back_to_real_ip(self):
        assert client_identity({"X-Real-IP": "198.51.100.1"}) == "198.51.100.1"

    def test_unknown_without_headers(self):
        assert client_identity({}) == "unknown"
