import pytest

from cooldowns import COMMAND_COOLDOWNS, DEFAULT_COOLDOWN, CooldownTracker


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return CooldownTracker(clock=clock)


class TestCooldownTracker:
    def test_first_use_is_allowed(self, tracker):
        assert tracker.check(1, 'restart').on_cooldown is False

    def test_second_use_reports_time_left(self, tracker, clock):
        tracker.check(1, 'restart')
        clock.now = 15

        status = tracker.check(1, 'restart')

        assert status.on_cooldown is True
        assert status.time_left == pytest.approx(COMMAND_COOLDOWNS['restart'] - 15)
        assert status.time_left > 0

    def test_refused_use_does_not_extend_the_window(self, tracker, clock):
        tracker.check(1, 'announce')
        clock.now = 9
        assert tracker.check(1, 'announce').on_cooldown

        clock.now = 10
        assert tracker.check(1, 'announce').on_cooldown is False

    def test_users_and_commands_are_independent(self, tracker):
        tracker.check(1, 'restart')

        assert tracker.check(2, 'restart').on_cooldown is False
        assert tracker.check(1, 'announce').on_cooldown is False

    def test_unknown_commands_use_the_default(self, tracker, clock):
        assert tracker.cooldown_for('testrcon') == DEFAULT_COOLDOWN

        tracker.check(1, 'testrcon')
        clock.now = DEFAULT_COOLDOWN - 0.5
        assert tracker.check(1, 'testrcon').on_cooldown

    def test_expired_entries_are_dropped(self, tracker, clock):
        tracker.check(1, 'players')
        tracker.check(2, 'restart')
        clock.now = COMMAND_COOLDOWNS['players']

        tracker.check(3, 'announce')

        assert len(tracker) == 2
