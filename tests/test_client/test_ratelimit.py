"""Tests for the token bucket rate limiter."""

from __future__ import annotations

import logging
import threading
import time

import pytest

from coursectl.client import RateLimiter
from coursectl.context import Context
from coursectl.exceptions import CancelledError


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestAcquire:
    def test_disabled_never_blocks(self):
        limiter = RateLimiter(None)
        assert limiter.enabled is False
        start = time.monotonic()
        for _ in range(100):
            limiter.acquire()
        assert time.monotonic() - start < 0.5

    def test_rejects_zero_burst(self):
        with pytest.raises(ValueError):
            RateLimiter(5, burst=0)

    def test_sustained_rate(self):
        limiter = RateLimiter(5)
        stamps = []
        start = time.monotonic()
        for _ in range(20):
            limiter.acquire()
            stamps.append(time.monotonic())
        assert stamps[-1] - start >= 3.7
        for i in range(len(stamps) - 5):
            assert stamps[i + 5] - stamps[i] >= 0.95

    def test_burst_allows_immediate_tokens(self):
        limiter = RateLimiter(1, burst=3)
        start = time.monotonic()
        for _ in range(3):
            limiter.acquire()
        assert time.monotonic() - start < 0.5

    def test_concurrent_acquires_share_the_rate(self):
        limiter = RateLimiter(10)
        stamps: list[float] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(3):
                limiter.acquire()
                with lock:
                    stamps.append(time.monotonic())

        start = time.monotonic()
        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(stamps) == 12
        assert max(stamps) - start >= 1.0

    def test_cancelled_context_raises_immediately(self):
        limiter = RateLimiter(1)
        ctx = Context()
        ctx.cancel()
        with pytest.raises(CancelledError):
            limiter.acquire(ctx)

    def test_wait_beyond_deadline_returns_reservation(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)
        limiter.acquire()
        with pytest.raises(CancelledError, match="deadline"):
            limiter.acquire(Context(timeout=0.05))
        assert limiter._tokens == 0.0

    def test_cancel_during_wait_returns_reservation(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock)
        limiter.acquire()
        ctx = Context()
        timer = threading.Timer(0.05, ctx.cancel)
        timer.start()
        try:
            with pytest.raises(CancelledError):
                limiter.acquire(ctx)
        finally:
            timer.cancel()
        assert limiter._tokens == 0.0


class TestAdjustForQuota:
    def test_warning_threshold(self):
        limiter = RateLimiter(5)
        limiter.adjust_for_quota(350, 700)
        assert limiter.rate == 2.0

    def test_critical_threshold(self):
        limiter = RateLimiter(5)
        limiter.adjust_for_quota(140, 700)
        assert limiter.rate == 1.0

    def test_recovery_restores_base_rate(self):
        limiter = RateLimiter(5)
        limiter.adjust_for_quota(100, 700)
        limiter.adjust_for_quota(600, 700)
        assert limiter.rate == 5.0

    def test_never_raises_a_lower_configured_rate(self):
        limiter = RateLimiter(0.5)
        limiter.adjust_for_quota(100, 700)
        assert limiter.rate == 0.5

    def test_disabled_limiter_unaffected(self):
        limiter = RateLimiter(None)
        limiter.adjust_for_quota(1, 700)
        assert limiter.rate == 0.0
        assert limiter.enabled is False

    def test_each_downgrade_warns_once(self, caplog):
        limiter = RateLimiter(5)
        with caplog.at_level(logging.WARNING, logger="coursectl"):
            limiter.adjust_for_quota(300, 700)
            limiter.adjust_for_quota(290, 700)
            limiter.adjust_for_quota(100, 700)
            limiter.adjust_for_quota(90, 700)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2

    def test_concurrent_downgrades_warn_once(self, caplog):
        limiter = RateLimiter(5)
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            for _ in range(50):
                limiter.adjust_for_quota(100, 700)

        with caplog.at_level(logging.WARNING, logger="coursectl"):
            threads = [threading.Thread(target=worker) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert limiter.rate == 1.0

    def test_recovery_rearms_the_warning(self, caplog):
        limiter = RateLimiter(5)
        with caplog.at_level(logging.WARNING, logger="coursectl"):
            limiter.adjust_for_quota(100, 700)
            limiter.adjust_for_quota(600, 700)
            limiter.adjust_for_quota(100, 700)
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
        assert limiter.rate == 1.0
