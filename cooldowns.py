# -*- coding: utf-8 -*-
import time
from typing import Callable, Dict, Mapping, NamedTuple, Tuple

# Seconds between uses of a command by the same user.
COMMAND_COOLDOWNS = {
    'restart': 60,
    'announce': 10,
    'players': 5,
    'dcmessage': 10,
}
DEFAULT_COOLDOWN = 5


class CooldownStatus(NamedTuple):
    on_cooldown: bool
    time_left: float = 0.0


class CooldownTracker:
    """Per-user, per-command rate limiting."""

    def __init__(self, cooldowns: Mapping[str, float] = COMMAND_COOLDOWNS,
                 default: float = DEFAULT_COOLDOWN, clock: Callable[[], float] = time.monotonic):
        self.cooldowns = dict(cooldowns)
        self.default = default
        self._clock = clock
        self._last_used: Dict[Tuple[str, int], float] = {}

    def cooldown_for(self, command_name: str) -> float:
        return self.cooldowns.get(command_name, self.default)

    def check(self, user_id: int, command_name: str) -> CooldownStatus:
        """
        Records a use of the command unless the user is still on cooldown.
        On cooldown, nothing is recorded and the remaining seconds are reported.
        """
        now = self._clock()
        self._expire(now)

        key = (command_name, user_id)
        last_used = self._last_used.get(key)
        if last_used is not None:
            time_left = last_used + self.cooldown_for(command_name) - now
            if time_left > 0:
                return CooldownStatus(True, time_left)

        self._last_used[key] = now
        return CooldownStatus(False)

    def _expire(self, now: float):
        expired = [key for key, used in self._last_used.items() if now - used >= self.cooldown_for(key[0])]
        for key in expired:
            del self._last_used[key]

    def __len__(self):
        return len(self._last_used)
