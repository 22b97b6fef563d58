import pytest

from unified_inbox.core.circuit import CircuitBreaker, CircuitState
from unified_inbox.messaging.errors import CircuitOpenError


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _fail():
    raise RuntimeError("down")


def test_opens_after_threshold_and_rejects_calls():
    clock = _Clock()
    breaker = CircuitBreaker("svc", failure_threshold=2, recovery_timeout=10, clock=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "never")


def test_half_open_trial_closes_on_success():
    clock = _Clock()
    breaker = CircuitBreaker("svc", failure_threshold=1, recovery_timeout=10, clock=clock)
    with pytest.raises(RuntimeError):
        breaker.call(_fail)

    clock.now = 11
    assert breaker.call(lambda: "ok") == "ok"
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_half_open_failure_reopens():
    clock = _Clock()
    breaker = CircuitBreaker("svc", failure_threshold=3, recovery_timeout=5, clock=clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    clock.now = 6
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    assert breaker.state is CircuitState.OPEN


def test_success_resets_failure_count():
    breaker = CircuitBreaker("svc", failure_threshold=2)
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    breaker.call(lambda: None)
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    assert breaker.state is CircuitState.CLOSED


def test_half_open_admits_a_single_trial_at_a_time():
    clock = _Clock()
    breaker = CircuitBreaker("svc", failure_threshold=1, recovery_timeout=10, clock=clock)
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    clock.now = 11
    rejected = []

    def trial():
        # A second caller arriving while the trial runs is turned away.
        try:
            breaker.call(lambda: "concurrent")
        except CircuitOpenError as exc:
            rejected.append(exc)
        return "ok"

    assert breaker.call(trial) == "ok"
    assert len(rejected) == 1
    assert breaker.state is CircuitState.CLOSED
    assert breaker.call(lambda: "after") == "after"


def test_failed_trial_reopens_and_allows_next_trial_later():
    clock = _Clock()
    breaker = CircuitBreaker("svc", failure_threshold=1, recovery_timeout=10, clock=clock)
    with pytest.raises(RuntimeError):
        breaker.call(_fail)

    clock.now = 11
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    assert breaker.state is CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "too soon")

    clock.now = 22
    assert breaker.call(lambda: "ok") == "ok"
