"""Tests for the per-channel circuit breaker."""

from app.services.distribution.breaker import BreakerConfig, BreakerState, CircuitBreaker


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _breaker(clock, **overrides):
    config = BreakerConfig(
        **{
            "failure_threshold": 3,
            "failure_window_s": 60.0,
            "cooldown_s": 10.0,
            "cooldown_max_s": 40.0,
            "backoff_multiplier": 2.0,
            **overrides,
        }
    )
    return CircuitBreaker("ch-1", config, clock=clock)


def _trip(breaker):
    for _ in range(breaker.config.failure_threshold):
        assert breaker.allow_request()
        breaker.record_failure()


class TestClosed:
    def test_starts_closed(self):
        breaker = _breaker(Clock())
        assert breaker.state == BreakerState.CLOSED
        assert breaker.allow_request()
        assert breaker.retry_after() == 0.0
        assert breaker.next_retry_at() is None

    def test_opens_after_threshold(self):
        breaker = _breaker(Clock())
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == BreakerState.CLOSED

        breaker.record_failure()

        assert breaker.state == BreakerState.OPEN
        assert not breaker.allow_request()

    def test_success_resets_failures(self):
        breaker = _breaker(Clock())
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.state == BreakerState.CLOSED
        assert breaker.consecutive_failures == 1

    def test_failures_outside_window_do_not_trip(self):
        clock = Clock()
        breaker = _breaker(clock, failure_window_s=5.0)
        breaker.record_failure()
        breaker.record_failure()
        clock.now += 10.0

        breaker.record_failure()

        assert breaker.state == BreakerState.CLOSED


class TestOpenAndHalfOpen:
    def test_cooldown_then_half_open(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)
        assert breaker.retry_after() == 10.0
        assert breaker.next_retry_at() is not None

        clock.now = 9.9
        assert not breaker.allow_request()

        clock.now = 10.0
        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.allow_request()

    def test_half_open_admits_single_trial(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)
        clock.now += 10.0

        assert breaker.allow_request()
        assert not breaker.allow_request()
        assert not breaker.allow_request()

    def test_trial_success_closes(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)
        clock.now += 10.0
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == BreakerState.CLOSED
        assert breaker.consecutive_failures == 0
        assert breaker.cooldown_s == 10.0

    def test_trial_failure_reopens_with_backoff(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)

        clock.now += 10.0
        breaker.allow_request()
        breaker.record_failure()
        assert breaker.state == BreakerState.OPEN
        assert breaker.cooldown_s == 20.0
        assert breaker.retry_after() == 20.0

        clock.now += 20.0
        breaker.allow_request()
        breaker.record_failure()
        assert breaker.cooldown_s == 40.0

        clock.now += 40.0
        breaker.allow_request()
        breaker.record_failure()
        assert breaker.cooldown_s == 40.0  # capped

    def test_release_trial_admits_next(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)
        clock.now += 10.0
        assert breaker.allow_request()

        breaker.release_trial()

        assert breaker.allow_request()

    def test_success_after_backoff_restores_base_cooldown(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)
        clock.now += 10.0
        breaker.allow_request()
        breaker.record_failure()
        clock.now += 20.0
        breaker.allow_request()
        breaker.record_success()

        _trip(breaker)

        assert breaker.retry_after() == 10.0



class TestGenerations:
    def test_state_changes_start_new_generation(self):
        clock = Clock()
        breaker = _breaker(clock)
        closed_era = breaker.admit()

        _trip(breaker)
        assert breaker.generation > closed_era
        open_era = breaker.generation

        clock.now += 10.0
        trial = breaker.admit()
        assert trial is not None and trial > open_era

    def test_stale_success_does_not_close(self):
        clock = Clock()
        breaker = _breaker(clock)
        closed_era = breaker.admit()
        _trip(breaker)

        breaker.record_success(closed_era)

        assert breaker.state == BreakerState.OPEN

    def test_stale_failure_does_not_reopen_during_trial(self):
        clock = Clock()
        breaker = _breaker(clock)
        closed_era = breaker.admit()
        _trip(breaker)
        clock.now += 10.0
        trial = breaker.admit()

        breaker.record_failure(closed_era)

        assert breaker.state == BreakerState.HALF_OPEN
        assert breaker.cooldown_s == 10.0
        assert breaker.trial_in_flight is True

        breaker.record_success(trial)
        assert breaker.state == BreakerState.CLOSED

    def test_stale_release_keeps_current_trial(self):
        clock = Clock()
        breaker = _breaker(clock)
        closed_era = breaker.admit()
        _trip(breaker)
        clock.now += 10.0
        breaker.admit()

        breaker.release_trial(closed_era)

        assert breaker.trial_in_flight is True
        assert breaker.admit() is None

    def test_would_admit_has_no_side_effects(self):
        clock = Clock()
        breaker = _breaker(clock)
        assert breaker.would_admit()

        _trip(breaker)
        assert not breaker.would_admit()

        clock.now += 10.0
        assert breaker.would_admit()
        assert breaker.trial_in_flight is False
        breaker.allow_request()
        assert not breaker.would_admit()

class TestSnapshot:
    def test_snapshot_fields(self):
        clock = Clock()
        breaker = _breaker(clock)
        _trip(breaker)

        snap = breaker.snapshot()

        assert snap == {
            "state": "open",
            "consecutive_failures": 3,
            "cooldown_s": 10.0,
            "retry_after_s": 10.0,
        }
