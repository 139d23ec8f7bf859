"""Tests for player list parsing and the join/leave tracker."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from presence import (
    HISTORY_MAX_AGE_SECONDS,
    PlayerMessageHistory,
    PresenceTracker,
    diff_players,
    parse_players,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_tracker(responses, channel=None, clock=None):
    rcon = MagicMock()
    rcon.send_command = AsyncMock(side_effect=list(responses))
    return PresenceTracker(rcon, lambda: channel, server_name="CREED PZ",
                           clock=clock or FakeClock(), delete_delay=0)


async def drain(tracker):
    await asyncio.gather(*tracker._pending_deletes)


class TestParsePlayers:
    def test_single_line_format(self):
        assert parse_players("Players connected (2): Alice, Bob") == {"Alice", "Bob"}

    def test_bulleted_format(self):
        response = "Players connected (2):\n-Alice\n- Bob \n"
        assert parse_players(response) == {"Alice", "Bob"}

    def test_both_rules_deduplicate(self):
        response = "Players connected (2): Alice, Bob\n-Alice\n-Carol"
        assert parse_players(response) == {"Alice", "Bob", "Carol"}

    def test_names_keep_inner_spaces(self):
        assert parse_players("Players connected (1): Big Steve") == {"Big Steve"}

    def test_empty_server(self):
        assert parse_players("Players connected (0):") == set()
        assert parse_players("Players connected (0): ") == set()

    def test_blank_entries_are_skipped(self):
        assert parse_players("Players connected (2): Alice, , Bob,\n-\n") == {"Alice", "Bob"}

    @pytest.mark.parametrize("response", [None, "", "Unknown command", 42])
    def test_unusable_responses_give_no_players(self, response):
        assert parse_players(response) == set()


class TestDiffPlayers:
    @pytest.mark.parametrize(
        "previous, current",
        [
            (set(), {"Alice"}),
            ({"Alice"}, set()),
            ({"Alice", "Bob"}, {"Bob", "Carol"}),
            ({"Alice"}, {"Alice"}),
            (set(), set()),
        ],
    )
    def test_joined_and_left_partition_the_change(self, previous, current):
        joined, left = diff_players(previous, current)

        assert joined.isdisjoint(left)
        assert joined | left == previous ^ current
        assert (previous | joined) - left == current


class TestPlayerMessageHistory:
    def test_records_messages_per_player(self):
        history = PlayerMessageHistory(FakeClock())

        history.record("Alice", 1)
        history.record("Alice", 2)
        history.record("Bob", 3)

        assert history.messages_for("Alice") == [1, 2]
        assert history.messages_for("Bob") == [3]
        assert history.messages_for("Carol") == []

    def test_purge_drops_only_old_entries(self):
        clock = FakeClock(0)
        history = PlayerMessageHistory(clock)
        history.record("Alice", 1)
        clock.now = HISTORY_MAX_AGE_SECONDS
        history.record("Bob", 2)

        clock.now = HISTORY_MAX_AGE_SECONDS + 1
        purged = history.purge()

        assert purged == ["Alice"]
        assert "Alice" not in history
        assert "Bob" in history

    def test_timestamp_is_from_first_message(self):
        clock = FakeClock(0)
        history = PlayerMessageHistory(clock)
        history.record("Alice", 1)
        clock.now = HISTORY_MAX_AGE_SECONDS
        history.record("Alice", 2)

        clock.now = HISTORY_MAX_AGE_SECONDS + 1
        assert history.purge() == ["Alice"]


class TestPresenceTracker:
    @pytest.mark.asyncio
    async def test_join_then_leave_scenario(self, channel):
        tracker = make_tracker(["Players connected (2): Alice, Bob", "Players connected (1): Alice"], channel)

        assert await tracker.poll() is True
        assert tracker.online_players == {"Alice", "Bob"}

        assert await tracker.poll() is True
        assert tracker.online_players == {"Alice"}
        await drain(tracker)

        sent = [c.args[0] for c in channel.send.await_args_list]
        assert sent == [
            "🎮 **Alice** joined the CREED PZ server! 🟢",
            "🎮 **Bob** joined the CREED PZ server! 🟢",
            "🎮 **Bob** left the CREED PZ server. 🔴",
        ]

    @pytest.mark.asyncio
    async def test_failed_poll_keeps_previous_players(self, channel):
        tracker = make_tracker([None], channel)
        tracker.online_players = {"Alice"}

        assert await tracker.poll() is False
        assert tracker.online_players == {"Alice"}
        channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_announces_before_updating_the_set(self, channel):
        tracker = make_tracker(["Players connected (1): Alice", "Players connected (0):"], channel)
        seen = []

        async def send(text):
            seen.append(set(tracker.online_players))
            return MagicMock(id=len(seen))

        channel.send = AsyncMock(side_effect=send)

        await tracker.poll()
        await tracker.poll()
        await drain(tracker)

        assert seen == [set(), {"Alice"}]
        assert tracker.online_players == set()

    @pytest.mark.asyncio
    async def test_leave_deletes_the_players_messages(self, channel):
        tracker = make_tracker(["Players connected (1): Alice", "Players connected (0):"], channel)

        await tracker.poll()
        await tracker.poll()
        await drain(tracker)

        assert sorted(channel.fetched) == [1000, 1001]
        for message in channel.fetched.values():
            message.delete.assert_awaited_once()
        assert "Alice" not in tracker.history

    @pytest.mark.asyncio
    async def test_delete_failures_are_tolerated(self, channel):
        tracker = make_tracker(["Players connected (1): Alice", "Players connected (0):"], channel)
        channel.fetch_message = AsyncMock(side_effect=discord.NotFound(MagicMock(status=404, reason="Not Found"), "gone"))

        await tracker.poll()
        await tracker.poll()
        await drain(tracker)

        assert channel.fetch_message.await_count == 2
        assert "Alice" not in tracker.history

    @pytest.mark.asyncio
    async def test_send_failure_does_not_stop_tracking(self, channel):
        tracker = make_tracker(["Players connected (1): Alice"], channel)
        channel.send = AsyncMock(side_effect=discord.HTTPException(MagicMock(status=500, reason="Server Error"), "boom"))

        assert await tracker.poll() is True
        assert tracker.online_players == {"Alice"}
        assert len(tracker.history) == 0

    @pytest.mark.asyncio
    async def test_no_channel_still_tracks_players(self):
        tracker = make_tracker(["Players connected (1): Alice"], channel=None)

        await tracker.poll()

        assert tracker.online_players == {"Alice"}
        assert len(tracker.history) == 0

    @pytest.mark.asyncio
    async def test_cleanup_history_purges_stale_entries(self, channel):
        clock = FakeClock(0)
        tracker = make_tracker(["Players connected (1): Alice"], channel, clock=clock)
        await tracker.poll()

        clock.now = HISTORY_MAX_AGE_SECONDS + 1
        assert tracker.cleanup_history() == ["Alice"]
        assert tracker.online_players == {"Alice"}

    def test_clear_empties_the_set(self):
        tracker = make_tracker([])
        tracker.online_players = {"Alice", "Bob"}

        tracker.clear()

        assert tracker.online_players == set()
