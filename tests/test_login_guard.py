"""
tests/test_login_guard.py -- Unit tests for LoginAttemptGuard (auth/guard.py).

Covers:
  - Threshold: 5 failures inside the window lock, 4 do not
  - Expiry: lockout ends LOCKOUT_DURATION after the most recent failure,
    even though the failure rows remain
  - Window: failures older than LOCKOUT_WINDOW are not counted
  - A successful attempt clears prior failures
  - Failures are tracked per email
  - recent_failures() and clear()
"""

from __future__ import annotations

from auth.guard import LOCKOUT_DURATION, MAX_FAILED_ATTEMPTS, LoginAttemptGuard


def _fail(guard: LoginAttemptGuard, email: str, times: int, clock=None, every_minutes: float = 0) -> None:
    for _ in range(times):
        guard.record_attempt(email, False, "10.0.0.1", "pytest")
        if clock is not None and every_minutes:
            clock.advance(minutes=every_minutes)


class TestLockThreshold:
    def test_five_failures_lock(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS)
        status = guard.is_locked("u@x.com")
        assert status.locked, "5 failures inside the window must lock"
        assert status.remaining_ms == int(LOCKOUT_DURATION.total_seconds() * 1000)

    def test_four_failures_do_not_lock(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS - 1)
        assert not guard.is_locked("u@x.com").locked

    def test_unknown_email_is_open(self, store, clock) -> None:
        assert not LoginAttemptGuard(store, clock=clock).is_locked("nobody@x.com").locked

    def test_failures_are_per_email(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS)
        assert not guard.is_locked("other@x.com").locked


class TestLockExpiry:
    def test_lock_lapses_31_minutes_after_last_failure(self, store, clock) -> None:
        """Five rows still exist but the lockout has run out."""
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=31)
        assert not guard.is_locked("u@x.com").locked
        assert store.latest_failed_attempt("u@x.com") is not None, "rows are not pruned by the check"

    def test_remaining_counts_from_most_recent_failure(self, store, clock) -> None:
        """Failures at t0+0,1,2,3,5 min; at t0+6 the lock has 29 minutes left."""
        guard = LoginAttemptGuard(store, clock=clock)
        for minute in (1, 1, 1, 2):
            guard.record_attempt("u@x.com", False)
            clock.advance(minutes=minute)
        guard.record_attempt("u@x.com", False)  # t0+5
        clock.advance(minutes=1)  # t0+6
        status = guard.is_locked("u@x.com")
        assert status.locked
        assert status.remaining_ms == 29 * 60 * 1000, f"got {status.remaining_ms}"

    def test_burst_then_wait_six_minutes(self, store, clock) -> None:
        """Five failures at t0, checked at t0+6: 24 minutes remain."""
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=6)
        assert guard.is_locked("u@x.com").remaining_ms == 24 * 60 * 1000

    def test_old_failures_fall_out_of_window(self, store, clock) -> None:
        """Failures spread beyond 15 minutes never reach the threshold."""
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS, clock=clock, every_minutes=5)
        # Only the failures from the last 15 minutes count.
        assert guard.recent_failures("u@x.com") < MAX_FAILED_ATTEMPTS
        assert not guard.is_locked("u@x.com").locked


class TestSuccessResetsCounter:
    def test_success_clears_failures(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS - 1)
        guard.record_attempt("u@x.com", True)
        _fail(guard, "u@x.com", 1)
        assert guard.recent_failures("u@x.com") == 1
        assert not guard.is_locked("u@x.com").locked

    def test_success_row_is_recorded(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        attempt = guard.record_attempt("u@x.com", True, "10.0.0.9", "pytest")
        assert attempt.id is not None
        assert attempt.successful
        assert attempt.created_at == clock.now


class TestClear:
    def test_clear_unlocks(self, store, clock) -> None:
        guard = LoginAttemptGuard(store, clock=clock)
        _fail(guard, "u@x.com", MAX_FAILED_ATTEMPTS)
        assert guard.clear("u@x.com") == MAX_FAILED_ATTEMPTS
        assert not guard.is_locked("u@x.com").locked
