# -*- coding: utf-8 -*-
"""
The server restart countdown.

A restart walks through the stage table below, warning players in game (and in
Discord for the longer countdowns), then saves the world and quits the server.
An external process manager is expected to bring the server back up.
"""
import asyncio
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence, Tuple

from presence import PresenceTracker
from rcon_session import RconSession

logger = logging.getLogger('restart')

SAVE_GRACE_SECONDS = 5


class RestartStage(NamedTuple):
    seconds_remaining: int
    message: str                    # in-game warning
    discord_message: Optional[str]  # optional notification for the Discord channel
    wait: float                     # seconds to wait before the next stage


def validate_stages(stages: Sequence[RestartStage]) -> Tuple[RestartStage, ...]:
    """Checks the countdown only ever goes down."""
    stages = tuple(stages)
    if not stages:
        raise ValueError("A restart needs at least one stage")
    for previous, stage in zip(stages, stages[1:]):
        if stage.seconds_remaining >= previous.seconds_remaining:
            raise ValueError(
                f"Restart stages must count down: {stage.seconds_remaining}s follows {previous.seconds_remaining}s"
            )
    for stage in stages:
        if stage.wait < 0:
            raise ValueError(f"Stage at {stage.seconds_remaining}s has a negative wait")
    return stages


RESTART_STAGES = validate_stages([
    RestartStage(300, '⚠️ SERVER RESTART IN 5 MINUTES! Please find a safe spot!', '**Server will restart in 5 minutes!** ⏰', 120),
    RestartStage(180, '⚠️ SERVER RESTART IN 3 MINUTES!', '**Server will restart in 3 minutes!** ⏰', 60),
    RestartStage(120, '⚠️ SERVER RESTART IN 2 MINUTES!', '**Server will restart in 2 minutes!** ⏰', 60),
    RestartStage(60, '⚠️ SERVER RESTART IN 1 MINUTE! SAVE NOW!', '**Server will restart in 1 minute!** 🚨', 30),
    RestartStage(30, '⚠️ SERVER RESTART IN 30 SECONDS!', None, 20),
    RestartStage(10, '⚠️ SERVER RESTART IN 10 SECONDS!', None, 10),
])


class RestartState(Enum):
    IDLE = 'idle'
    WARNING = 'warning'
    SAVING = 'saving'
    QUITTING = 'quitting'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


class RestartOutcome(Enum):
    COMPLETED = 'completed'
    ALREADY_IN_PROGRESS = 'already_in_progress'
    SAVE_FAILED = 'save_failed'
    QUIT_FAILED = 'quit_failed'
    ERROR = 'error'

    @property
    def completed(self) -> bool:
        return self is RestartOutcome.COMPLETED


Notifier = Callable[..., Awaitable[None]]


class RestartSequencer:
    """Runs at most one restart countdown at a time."""

    def __init__(self, rcon: RconSession, presence: PresenceTracker, notify: Notifier,
                 stages: Sequence[RestartStage] = RESTART_STAGES,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 save_command: str = 'save', quit_command: str = 'quit'):
        self.rcon = rcon
        self.presence = presence
        self.notify = notify
        self.stages = validate_stages(stages)
        self.save_command = save_command
        self.quit_command = quit_command
        self.state = RestartState.IDLE
        self.stage_index: Optional[int] = None
        self._sleep = sleep
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @contextmanager
    def _claim(self):
        self._in_progress = True
        try:
            yield
        finally:
            self._in_progress = False

    async def _notify(self, message: str, is_error: bool = False):
        try:
            await self.notify(message, is_error=is_error)
        except Exception as e:
            logger.error(f"Failed to post restart notification: {e}")

    async def run(self, trigger: str = 'manual', announcement: Optional[str] = None) -> RestartOutcome:
        """
        Starts a restart countdown unless one is already running.
        `announcement` is posted to Discord once the restart is claimed.
        """
        if self._in_progress:
            logger.warning(f"Restart refused ({trigger}): a restart is already in progress")
            return RestartOutcome.ALREADY_IN_PROGRESS

        with self._claim():
            self.state = RestartState.IDLE
            self.stage_index = None
            logger.info(f"🔄 Restart triggered ({trigger})")
            if announcement:
                await self._notify(announcement)
            try:
                outcome = await self._countdown()
            except Exception:
                logger.exception("Error during restart sequence")
                self.state = RestartState.ABORTED
                await self._notify('**Error during restart sequence!** Check logs.', is_error=True)
                return RestartOutcome.ERROR

        logger.info(f"Restart sequence finished: {outcome.value}")
        return outcome

    async def _countdown(self) -> RestartOutcome:
        logger.info("🔄 Starting restart countdown sequence...")

        for index, stage in enumerate(self.stages):
            self.state = RestartState.WARNING
            self.stage_index = index
            if not await self.rcon.send_message(stage.message):
                logger.warning(f"Failed to send RCON warning: {stage.message}")
            if stage.discord_message:
                await self._notify(stage.discord_message)
            if stage.wait:
                await self._sleep(stage.wait)

        self.state = RestartState.SAVING
        await self.rcon.send_message('🔄 Server restarting now...')
        await self._notify('**Server is restarting now...** 🔄')

        logger.info("Sending save command...")
        if await self.rcon.send_command(self.save_command) is None:
            logger.error("Save command failed! Aborting restart.")
            self.state = RestartState.ABORTED
            await self._notify('**⚠️ Save command failed! Restart aborted.**', is_error=True)
            return RestartOutcome.SAVE_FAILED

        logger.info("Waiting for save to complete...")
        await self._sleep(SAVE_GRACE_SECONDS)

        self.state = RestartState.QUITTING
        logger.info("Sending quit command...")
        if await self.rcon.send_command(self.quit_command) is None:
            logger.error("Quit command failed!")
            self.state = RestartState.ABORTED
            await self._notify('**⚠️ Quit command failed! Manual intervention required.**', is_error=True)
            return RestartOutcome.QUIT_FAILED

        self.state = RestartState.COMPLETED
        await self._notify('**Server shutdown initiated. Will be back online shortly!** ✅')
        logger.info("✅ Restart sequence completed successfully")

        # Everyone is about to be disconnected.
        self.presence.clear()
        return RestartOutcome.COMPLETED
