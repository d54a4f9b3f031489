"""Unit tests for pacer.py: pacing, backoff, retry bounds and cancellation."""

import threading

import pytest

from opendrive_fs.errors import (
    ApiError,
    AuthError,
    CallCancelledError,
    ObjectNotFound,
    ProtocolError,
    TransientNetworkError,
)
from opendrive_fs.pacer import Pacer, should_retry

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """A monotonic clock that only moves when something sleeps on it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(round(seconds, 6))
        self.now += seconds


def _pacer(clock, **kwargs):
    kwargs.setdefault("min_sleep", 0.01)
    kwargs.setdefault("max_sleep", 1.0)
    return Pacer(clock=clock, sleeper=clock.sleep, **kwargs)


def _scripted(*outcomes):
    """fn that raises or returns the given outcomes in order; counts calls."""
    outcomes = list(outcomes)
    calls = []

    def fn():
        calls.append(1)
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return fn, calls


# ---------------------------------------------------------------------------
# should_retry()
# ---------------------------------------------------------------------------


class TestShouldRetry:
    @pytest.mark.parametrize("code", [400, 401, 408, 429, 500, 502, 503, 504])
    def test_retry_codes(self, code):
        assert should_retry(ApiError(code, "x"))

    @pytest.mark.parametrize("code", [403, 404, 409])
    def test_other_codes_are_final(self, code):
        assert not should_retry(ApiError(code, "x"))

    def test_auth_error_is_an_api_error(self):
        assert should_retry(AuthError(401, "expired"))

    def test_transient_network_error(self):
        assert should_retry(TransientNetworkError("reset"))

    def test_non_api_errors_are_final(self):
        assert not should_retry(ProtocolError("bad json"))
        assert not should_retry(ObjectNotFound("gone"))
        assert not should_retry(ValueError("boom"))

    def test_custom_code_set(self):
        assert not should_retry(ApiError(429, "x"), retry_codes={503})


# ---------------------------------------------------------------------------
# Pacer.call() retries
# ---------------------------------------------------------------------------


class TestPacerRetry:
    def test_rate_limited_twice_then_success(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        fn, calls = _scripted(ApiError(429, "slow down"), ApiError(429, "slow down"), "ok")

        assert pacer.call(fn) == "ok"
        assert len(calls) == 3
        assert clock.sleeps == [0.01, 0.02]
        assert clock.sleeps[0] < clock.sleeps[1]

    def test_non_retryable_error_raised_immediately(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        fn, calls = _scripted(ApiError(404, "nope"), "unused")

        with pytest.raises(ApiError, match="404"):
            pacer.call(fn)
        assert len(calls) == 1
        assert pacer.sleep_time == 0.01

    def test_network_error_is_retried(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        fn, calls = _scripted(TransientNetworkError("reset"), {"FolderID": "1"})

        assert pacer.call(fn) == {"FolderID": "1"}
        assert len(calls) == 2

    def test_gives_up_after_max_retries(self):
        clock = FakeClock()
        pacer = _pacer(clock, max_retries=3)
        errors = [ApiError(503, f"down {i}") for i in range(10)]
        fn, calls = _scripted(*errors)

        with pytest.raises(ApiError, match="down 3"):
            pacer.call(fn)
        assert len(calls) == 4

    def test_unbounded_retries(self):
        clock = FakeClock()
        pacer = _pacer(clock, max_retries=None)
        fn, calls = _scripted(*([ApiError(500, "x")] * 25), "finally")

        assert pacer.call(fn) == "finally"
        assert len(calls) == 26

    def test_arguments_are_passed_through(self):
        pacer = _pacer(FakeClock())
        assert pacer.call(lambda a, b=0: a + b, 2, b=3) == 5


# ---------------------------------------------------------------------------
# Sleep interval
# ---------------------------------------------------------------------------


class TestPacerInterval:
    def test_sleep_doubles_and_is_capped(self):
        clock = FakeClock()
        pacer = _pacer(clock, max_sleep=0.05)
        fn, _ = _scripted(*([ApiError(429, "x")] * 5), "ok")

        pacer.call(fn)
        assert clock.sleeps == [0.01, 0.02, 0.04, 0.05, 0.05]

    def test_success_decays_towards_min_sleep(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        fn, _ = _scripted(ApiError(429, "x"), ApiError(429, "x"), ApiError(429, "x"), "ok")
        pacer.call(fn)
        assert pacer.sleep_time == pytest.approx(0.04)

        pacer.call(lambda: None)
        assert pacer.sleep_time == pytest.approx(0.02)
        pacer.call(lambda: None)
        pacer.call(lambda: None)
        pacer.call(lambda: None)
        assert pacer.sleep_time == pytest.approx(0.01)

    def test_calls_are_spaced_by_the_interval(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        for _ in range(3):
            pacer.call(lambda: None)
        assert clock.sleeps == [0.01, 0.01]

    def test_idle_time_counts_towards_the_interval(self):
        clock = FakeClock()
        pacer = _pacer(clock)
        pacer.call(lambda: None)
        clock.now += 5
        pacer.call(lambda: None)
        assert clock.sleeps == []

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            Pacer(min_sleep=0)
        with pytest.raises(ValueError):
            Pacer(min_sleep=2, max_sleep=1)


# ---------------------------------------------------------------------------
# Cancellation and deadlines
# ---------------------------------------------------------------------------


class TestPacerCancel:
    def test_cancelled_before_first_attempt(self):
        pacer = _pacer(FakeClock())
        cancel = threading.Event()
        cancel.set()
        fn, calls = _scripted("ok")

        with pytest.raises(CallCancelledError):
            pacer.call(fn, cancel=cancel)
        assert calls == []

    def test_pacer_wide_cancel_event(self):
        cancel = threading.Event()
        pacer = _pacer(FakeClock(), cancel_event=cancel)
        fn, calls = _scripted(ApiError(429, "x"), "ok")

        def fail_then_cancel():
            try:
                return fn()
            finally:
                cancel.set()

        with pytest.raises(CallCancelledError):
            pacer.call(fail_then_cancel)
        assert len(calls) == 1

    def test_deadline_stops_the_retry_loop(self):
        clock = FakeClock()
        pacer = _pacer(clock, max_sleep=10.0, max_retries=None)
        fn, calls = _scripted(*([ApiError(503, "x")] * 50))

        with pytest.raises(CallCancelledError):
            pacer.call(fn, timeout=0.5)
        assert 1 < len(calls) < 50
        assert clock.now <= 0.5

    def test_call_timeout_default(self):
        clock = FakeClock()
        pacer = _pacer(clock, max_sleep=10.0, max_retries=None, call_timeout=0.1)
        fn, _ = _scripted(*([ApiError(503, "x")] * 50))

        with pytest.raises(CallCancelledError):
            pacer.call(fn)

    def test_real_sleep_is_interrupted_by_cancel(self):
        cancel = threading.Event()
        pacer = Pacer(min_sleep=30, max_sleep=60, cancel_event=cancel)
        pacer.call(lambda: None)

        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with pytest.raises(CallCancelledError):
                pacer.call(lambda: None)
        finally:
            timer.cancel()
