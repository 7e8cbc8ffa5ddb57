import threading
import unittest

from dbproxy.services.rate_limit import FixedWindowRateLimiter


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FixedWindowRateLimiterTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.limiter = FixedWindowRateLimiter(max_requests=20, window_seconds=60, clock=self.clock)

    def test_allows_up_to_max_then_denies(self):
        for i in range(20):
            decision = self.limiter.hit("key")
            self.assertTrue(decision.allowed, i)
            self.assertEqual(decision.remaining, 19 - i)
        denied = self.limiter.hit("key")
        self.assertFalse(denied.allowed)
        self.assertGreater(denied.retry_after, 0)

    def test_retry_after_is_seconds_until_window_reset_rounded_up(self):
        for _ in range(20):
            self.limiter.hit("key")
        self.clock.now += 12.2
        denied = self.limiter.hit("key")
        self.assertEqual(denied.retry_after, 48)

    def test_window_reset_resumes_allowing(self):
        for _ in range(21):
            self.limiter.hit("key")
        self.clock.now += 60
        # Still inside the window at exactly the reset instant.
        self.assertFalse(self.limiter.hit("key").allowed)
        self.clock.now += 0.001
        decision = self.limiter.hit("key")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 19)

    def test_keys_are_independent(self):
        for _ in range(20):
            self.limiter.hit("a")
        self.assertFalse(self.limiter.hit("a").allowed)
        self.assertTrue(self.limiter.hit("b").allowed)

    def test_reset_clears_all_counters(self):
        for _ in range(21):
            self.limiter.hit("a")
        self.limiter.reset()
        self.assertTrue(self.limiter.hit("a").allowed)

    def test_expired_keys_are_pruned_when_full(self):
        limiter = FixedWindowRateLimiter(
            max_requests=1, window_seconds=10, clock=self.clock, max_keys=2
        )
        limiter.hit("a")
        limiter.hit("b")
        self.clock.now += 11
        limiter.hit("c")
        self.assertEqual(set(limiter._state), {"c"})

    def test_concurrent_hits_never_exceed_max(self):
        limiter = FixedWindowRateLimiter(max_requests=50, window_seconds=60, clock=self.clock)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(25):
                if limiter.hit("shared").allowed:
                    with lock:
                        allowed.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(len(allowed), 50)

    def test_rejects_invalid_configuration(self):
        with self.assertRaises(ValueError):
            FixedWindowRateLimiter(max_requests=0, window_seconds=60)
        with self.assertRaises(ValueError):
            FixedWindowRateLimiter(max_requests=1, window_seconds=0)


if __name__ == "__main__":
    unittest.main()
