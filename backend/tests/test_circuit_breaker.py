"""
Unit tests for the circuit breaker.
"""
import pytest

from toolfinder.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def ok():
    return "success"


async def fail():
    raise ConnectionError("upstream down")


async def drive(cb, outcomes):
    for succeed in outcomes:
        if succeed:
            await cb.call_async(ok)
        else:
            with pytest.raises(ConnectionError):
                await cb.call_async(fail)


@pytest.fixture
def clock():
    return FakeClock()


def breaker(clock, **kwargs):
    params = dict(
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=30,
        half_open_test_percentage=1.0,
        min_requests_for_threshold=4,
        clock=clock,
    )
    params.update(kwargs)
    return CircuitBreaker("test", **params)


@pytest.mark.asyncio
async def test_closed_passes_calls_through(clock):
    cb = breaker(clock)
    assert await cb.call_async(ok) == "success"
    assert cb.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_kwargs_are_forwarded(clock):
    async def echo(*, collection_name):
        return collection_name

    assert await breaker(clock).call_async(echo, collection_name="tools") == "tools"


@pytest.mark.asyncio
async def test_stays_closed_below_min_requests(clock):
    cb = breaker(clock)
    await drive(cb, [False, False, False])
    assert cb.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_opens_at_error_rate_threshold(clock):
    cb = breaker(clock)
    await drive(cb, [True, False, True, False])
    assert cb.state is CircuitState.OPEN

    called = []

    async def trial():
        called.append(True)

    with pytest.raises(CircuitBreakerOpenError):
        await cb.call_async(trial)
    assert called == []


@pytest.mark.asyncio
async def test_old_failures_leave_the_window(clock):
    cb = breaker(clock)
    await drive(cb, [False, False, False])
    clock.advance(61)
    await drive(cb, [True, True, True, False])
    assert cb.state is CircuitState.CLOSED
    assert cb.get_metrics()["recent_failures"] == 1


@pytest.mark.asyncio
async def test_half_open_closes_after_three_of_five_trials(clock):
    cb = breaker(clock)
    await drive(cb, [False] * 4)
    assert cb.state is CircuitState.OPEN

    clock.advance(30)
    assert cb.state is CircuitState.HALF_OPEN

    await drive(cb, [True, False, True, False])
    assert cb.state is CircuitState.HALF_OPEN
    await drive(cb, [True])
    assert cb.state is CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_reopens_on_failed_trials(clock):
    cb = breaker(clock)
    await drive(cb, [False] * 4)
    clock.advance(30)

    await drive(cb, [False, False, True, False, True])
    assert cb.state is CircuitState.OPEN


@pytest.mark.asyncio
async def test_half_open_admits_a_fraction_of_calls(clock):
    cb = breaker(clock, half_open_test_percentage=0.5)
    await drive(cb, [False] * 4)
    clock.advance(30)

    admitted = rejected = 0
    for _ in range(6):
        try:
            await cb.call_async(ok)
            admitted += 1
        except CircuitBreakerOpenError:
            rejected += 1
    assert (admitted, rejected) == (3, 3)


@pytest.mark.asyncio
async def test_reset_and_metrics(clock):
    cb = breaker(clock)
    await drive(cb, [True, False, False, False])
    metrics = cb.get_metrics()
    assert metrics["state"] == "open"
    assert metrics["opened_at"] == clock.now

    cb.reset()
    metrics = cb.get_metrics()
    assert metrics == {
        "name": "test",
        "state": "closed",
        "recent_requests": 0,
        "recent_failures": 0,
        "error_rate": 0.0,
        "opened_at": None,
    }
