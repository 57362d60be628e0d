import pytest

from coinwise.core.clock import ClockError, RealtimeClock, SimClock, parse_duration


@pytest.mark.parametrize(
    "text, expected",
    [
        ("250ms", 250),
        ("10s", 10_000),
        ("1m", 60_000),
        (" 2H ", 7_200_000),
        ("1d", 86_400_000),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "m", "0s", "-1m", "1.5h", "10w", "abc"])
def test_parse_duration_rejects_invalid(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_sim_clock_only_moves_forward():
    clock = SimClock(start_ms=1_000)
    assert clock.now() == 1_000
    assert clock.advance_by(500) == 1_500
    assert clock.advance_to(2_000) == 2_000

    with pytest.raises(ClockError):
        clock.advance_to(1_999)
    with pytest.raises(ClockError):
        clock.advance_by(-1)
    with pytest.raises(ClockError):
        SimClock(start_ms=-5)


@pytest.mark.asyncio
async def test_sim_clock_sleep_advances_instantly():
    clock = SimClock(start_ms=0)
    await clock.sleep_for(30_000)
    assert clock.now() == 30_000
    assert clock.is_realtime is False


@pytest.mark.asyncio
async def test_realtime_clock_is_monotonic():
    clock = RealtimeClock()
    first = clock.now()
    await clock.sleep_for(5)
    assert clock.now() >= first
    assert clock.is_realtime

    with pytest.raises(ClockError):
        await clock.sleep_for(-1)
