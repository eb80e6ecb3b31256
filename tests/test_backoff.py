"""Tests for retry backoff."""
import random
from datetime import timedelta

from hookrelay.services.delivery import retry_delay


class TestRetryDelay:
    def test_doubles_without_jitter(self):
        delays = [retry_delay(n, base_ms=1000, max_ms=3_600_000, jitter=0) for n in (1, 2, 3, 4)]
        assert delays == [
            timedelta(seconds=2),
            timedelta(seconds=4),
            timedelta(seconds=8),
            timedelta(seconds=16),
        ]

    def test_capped_at_max(self):
        assert retry_delay(20, base_ms=1000, max_ms=3_600_000, jitter=0) == timedelta(hours=1)

    def test_huge_attempt_number_is_capped(self):
        assert retry_delay(10_000, base_ms=1000, max_ms=3_600_000, jitter=0.2) <= timedelta(hours=1)

    def test_jitter_stays_in_bounds(self):
        rng = random.Random(42)
        for _ in range(200):
            delay = retry_delay(3, base_ms=1000, max_ms=3_600_000, jitter=0.2, rng=rng)
            assert timedelta(seconds=6.4) <= delay <= timedelta(seconds=9.6)

    def test_jitter_spreads_values(self):
        rng = random.Random(7)
        delays = {retry_delay(2, base_ms=1000, max_ms=3_600_000, jitter=0.2, rng=rng) for _ in range(20)}
        assert len(delays) > 1
