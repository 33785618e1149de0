"""Unit tests for poll_until."""

from conftest import FakeClock
from tmauto.core.polling import poll_until


class TestPollUntil:
    """Tests for poll_until."""

    def test_condition_true_immediately(self, clock: FakeClock) -> None:
        """No sleep happens when the condition already holds."""
        assert poll_until(lambda: True, interval=5, ceiling=60, sleep=clock.sleep) is True
        assert clock.sleeps == []

    def test_condition_becomes_true(self, clock: FakeClock) -> None:
        """Polling stops as soon as the condition holds."""
        results = iter([False, False, True])
        assert poll_until(lambda: next(results), interval=5, ceiling=60, sleep=clock.sleep)
        assert clock.sleeps == [5, 5]

    def test_ceiling_reached(self, clock: FakeClock) -> None:
        """Returns False once the ceiling has been slept, checking one last time."""
        calls: list[int] = []

        def never() -> bool:
            calls.append(1)
            return False

        assert poll_until(never, interval=5, ceiling=15, sleep=clock.sleep) is False
        assert clock.sleeps == [5, 5, 5]
        assert len(calls) == 4

    def test_zero_ceiling_checks_once(self, clock: FakeClock) -> None:
        """A zero ceiling means a single check."""
        assert poll_until(lambda: False, interval=1, ceiling=0, sleep=clock.sleep) is False
        assert clock.sleeps == []
