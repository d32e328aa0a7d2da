import unittest

from relaybot.chat.rate_limiter import RateLimiter


class TestRateLimiter(unittest.TestCase):
    def setUp(self):
        self.limiter = RateLimiter()

    def test_first_request_is_admitted(self):
        self.assertTrue(self.limiter.try_admit("u1", 5, 10_000).admitted)

    def test_boundary(self):
        self.assertTrue(self.limiter.try_admit("u1", 0, 10_000).admitted)
        denied = self.limiter.try_admit("u1", 9_999, 10_000)
        self.assertFalse(denied.admitted)
        self.assertEqual(denied.retry_after_s, 1)
        self.assertTrue(self.limiter.try_admit("u1", 10_000, 10_000).admitted)

    def test_retry_after_rounds_up(self):
        self.limiter.try_admit("u1", 100_000, 10_000)
        self.assertEqual(self.limiter.try_admit("u1", 100_001, 10_000).retry_after_s, 10)
        self.assertEqual(self.limiter.try_admit("u1", 104_500, 10_000).retry_after_s, 6)

    def test_denial_does_not_reset_window(self):
        self.limiter.try_admit("u1", 100_000, 10_000)
        self.limiter.try_admit("u1", 105_000, 10_000)
        self.assertTrue(self.limiter.try_admit("u1", 110_000, 10_000).admitted)

    def test_users_are_independent(self):
        self.limiter.try_admit("u1", 100_000, 10_000)
        self.assertTrue(self.limiter.try_admit("u2", 100_001, 10_000).admitted)

    def test_zero_interval_always_admits(self):
        self.assertTrue(self.limiter.try_admit("u1", 100_000, 0).admitted)
        self.assertTrue(self.limiter.try_admit("u1", 100_000, 0).admitted)

    def test_release_rolls_back_admission(self):
        self.limiter.try_admit("u1", 100_000, 10_000)
        self.limiter.release("u1")
        self.assertTrue(self.limiter.try_admit("u1", 100_001, 10_000).admitted)
        self.limiter.release("never-seen")

    def test_clear_is_idempotent(self):
        self.limiter.try_admit("u1", 100_000, 10_000)
        self.limiter.try_admit("u2", 100_000, 10_000)
        self.limiter.clear()
        self.limiter.clear()
        self.assertEqual(len(self.limiter), 0)
        self.assertTrue(self.limiter.try_admit("u1", 100_001, 10_000).admitted)


if __name__ == "__main__":
    unittest.main()
