# -*- coding: utf-8 -*-
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Set

import discord

from rcon_session import RconSession

logger = logging.getLogger('presence')

POLL_INTERVAL_SECONDS = 30
LEAVE_MESSAGE_DELETE_DELAY = 3.0
HISTORY_MAX_AGE_SECONDS = 60 * 60
HISTORY_CLEANUP_MINUTES = 30

_PLAYERS_CONNECTED = re.compile(r"Players connected \((\d+)\):(.*)")


def parse_players(response: Optional[str]) -> Set[str]:
    """
    Parses the output of the `players` RCON command.

    Project Zomboid answers either with a bulleted list:
        Players connected (2):
        -Alice
        -Bob
    or with everything on one line ("Players connected (2): Alice, Bob").
    Both forms are accepted, duplicates collapse in the set.
    """
    players = set()
    if not response or not isinstance(response, str):
        return players

    for line in response.split('\n'):
        line = line.strip()

        if line.startswith('-'):
            name = line[1:].strip()
            if name:
                players.add(name)

        if 'Players connected' in line:
            match = _PLAYERS_CONNECTED.search(line)
            if match and match.group(2):
                players.update(name.strip() for name in match.group(2).split(',') if name.strip())

    return players


class PresenceDelta(NamedTuple):
    joined: Set[str]
    left: Set[str]


def diff_players(previous: Set[str], current: Set[str]) -> PresenceDelta:
    return PresenceDelta(joined=current - previous, left=previous - current)


@dataclass
class HistoryEntry:
    timestamp: float
    messages: List[int] = field(default_factory=list)


class PlayerMessageHistory:
    """Remembers which Discord messages were posted about which player."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, HistoryEntry] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, player_name):
        return player_name in self._entries

    def record(self, player_name: str, message_id: int):
        entry = self._entries.get(player_name)
        if entry is None:
            entry = self._entries[player_name] = HistoryEntry(timestamp=self._clock())
        entry.messages.append(message_id)

    def messages_for(self, player_name: str) -> List[int]:
        entry = self._entries.get(player_name)
        return list(entry.messages) if entry else []

    def forget(self, player_name: str):
        self._entries.pop(player_name, None)

    def purge(self, max_age: float = HISTORY_MAX_AGE_SECONDS) -> List[str]:
        """Drops entries older than max_age seconds and returns the purged player names."""
        now = self._clock()
        stale = [name for name, entry in self._entries.items() if now - entry.timestamp > max_age]
        for name in stale:
            del self._entries[name]
            logger.debug(f"Cleaned up old message history for {name}")
        return stale


class PresenceTracker:
    """Polls the game server's player list and announces joins and leaves in Discord."""

    def __init__(self, rcon: RconSession, get_channel: Callable[[], Optional[discord.abc.Messageable]],
                 server_name: str = 'PZ', players_command: str = 'players',
                 clock: Callable[[], float] = time.monotonic,
                 delete_delay: float = LEAVE_MESSAGE_DELETE_DELAY):
        self.rcon = rcon
        self.get_channel = get_channel
        self.server_name = server_name
        self.players_command = players_command
        self.delete_delay = delete_delay
        self.online_players: Set[str] = set()
        self.history = PlayerMessageHistory(clock)
        self._pending_deletes: Set[asyncio.Task] = set()

    async def poll(self) -> bool:
        """
        Checks who is online and reports the difference to the last poll.
        Returns False (leaving online_players untouched) when the server could not be queried.
        """
        response = await self.rcon.send_command(self.players_command)
        if response is None:
            logger.warning("Player check skipped: RCON unavailable")
            return False

        delta = diff_players(self.online_players, parse_players(response))

        # Announce first, then update, so the set never claims more than was announced.
        for player in sorted(delta.joined):
            logger.info(f"Player joined: {player}")
            await self.notify_joined(player)
            self.online_players.add(player)

        for player in sorted(delta.left):
            logger.info(f"Player left: {player}")
            await self.notify_left(player)
            self.online_players.discard(player)

        return True

    def clear(self):
        self.online_players.clear()

    async def notify_joined(self, player_name: str):
        channel = self.get_channel()
        if channel is None:
            return
        try:
            message = await channel.send(f"🎮 **{player_name}** joined the {self.server_name} server! 🟢")
        except discord.HTTPException as e:
            logger.error(f"Failed to send player joined notification: {e}")
            return
        self.history.record(player_name, message.id)

    async def notify_left(self, player_name: str):
        channel = self.get_channel()
        if channel is None:
            return
        try:
            message = await channel.send(f"🎮 **{player_name}** left the {self.server_name} server. 🔴")
        except discord.HTTPException as e:
            logger.error(f"Failed to send player left notification: {e}")
            return
        self.history.record(player_name, message.id)

        task = asyncio.create_task(self._delete_later(player_name, channel))
        self._pending_deletes.add(task)
        task.add_done_callback(self._pending_deletes.discard)

    async def _delete_later(self, player_name: str, channel):
        await asyncio.sleep(self.delete_delay)
        await self.delete_player_messages(player_name, channel)

    async def delete_player_messages(self, player_name: str, channel):
        """Deletes every recorded join/leave message of a player, then forgets them."""
        for message_id in self.history.messages_for(player_name):
            try:
                message = await channel.fetch_message(message_id)
                await message.delete()
            except discord.HTTPException as e:
                logger.warning(f"Failed to delete message {message_id}: {e}")
        self.history.forget(player_name)

    def cleanup_history(self) -> List[str]:
        return self.history.purge(HISTORY_MAX_AGE_SECONDS)

    def cancel_pending(self):
        for task in list(self._pending_deletes):
            task.cancel()
