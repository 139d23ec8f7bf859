# -*- coding: utf-8 -*-
import datetime
import logging
import re
from typing import Awaitable, Callable, Dict, FrozenSet, List, NamedTuple, Optional
from zoneinfo import ZoneInfo

import discord
from discord.ext import commands, tasks

from restart import RestartOutcome, RestartSequencer

logger = logging.getLogger('scheduler')

MAX_DAILY_FIRINGS = 24 * 60
# Long enough for every day/month/weekday combination to come round again.
MAX_SEARCH_DAYS = 28 * 366
_CLOCK_TIME = re.compile(r'^(\d{1,2}):(\d{2})(?::(\d{2}))?$')

_WEEKDAY_NAMES = ['sunday', 'monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday']
_MONTH_NAMES = ['january', 'february', 'march', 'april', 'may', 'june', 'july',
                'august', 'september', 'october', 'november', 'december']

WEEKDAYS = {name: number for number, full in enumerate(_WEEKDAY_NAMES) for name in (full, full[:3])}
MONTHS = {name: number for number, full in enumerate(_MONTH_NAMES, start=1) for name in (full, full[:3])}


class RestartSchedule(NamedTuple):
    """Clock times plus the calendar days they apply to. Weekdays use cron numbering, 0 is Sunday."""
    times: List[datetime.time]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    tz: datetime.tzinfo = datetime.timezone.utc

    def runs_on(self, day: datetime.date) -> bool:
        return day.day in self.days and day.month in self.months and day.isoweekday() % 7 in self.weekdays

    def next_fire(self, after: datetime.datetime) -> datetime.datetime:
        """The first firing strictly later than `after`, in the schedule's timezone."""
        local = after.astimezone(self.tz)
        day = local.date()
        for _ in range(MAX_SEARCH_DAYS):
            if self.runs_on(day):
                for clock in self.times:
                    candidate = datetime.datetime.combine(day, clock, tzinfo=self.tz)
                    if candidate.timestamp() > after.timestamp():
                        return candidate
            day += datetime.timedelta(days=1)
        raise ValueError("Restart schedule never fires")

    def describe(self) -> str:
        return ', '.join(t.strftime('%H:%M:%S') for t in self.times)


def _value(token: str, names: Optional[Dict[str, int]]) -> int:
    token = token.strip().lower()
    if names and token in names:
        return names[token]
    return int(token)


def _expand_field(field: str, low: int, high: int, name: str,
                  names: Optional[Dict[str, int]] = None) -> FrozenSet[int]:
    values = set()
    for part in field.split(','):
        base, _, step_str = part.partition('/')
        try:
            step = int(step_str) if step_str else 1
            if base in ('*', '?', ''):
                start, end = low, high
            elif '-' in base:
                start, end = (_value(v, names) for v in base.split('-', 1))
            else:
                start = _value(base, names)
                end = high if step_str else start
        except ValueError:
            raise ValueError(f"Invalid {name} field in restart schedule: {field!r}") from None
        if step <= 0 or not (low <= start <= end <= high):
            raise ValueError(f"Out of range {name} field in restart schedule: {field!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


def parse_schedule(expression: str, tz: datetime.tzinfo = datetime.timezone.utc) -> RestartSchedule:
    """
    Turns a restart schedule into the clock times and calendar days it fires on.

    Accepts cron expressions with or without a seconds field ("0 0 */8 * * *",
    "30 4 * * MON-FRI", "0 0 4 1 * *"), or a list of daily clock times ("04:00, 16:00").
    Day of month, month and weekday must all match for a day to fire.
    """
    expression = (expression or '').strip()
    if not expression:
        raise ValueError("Restart schedule is empty")

    every_day = dict(days=frozenset(range(1, 32)), months=frozenset(range(1, 13)), weekdays=frozenset(range(7)))

    if ':' in expression:
        times = set()
        for item in expression.split(','):
            match = _CLOCK_TIME.match(item.strip())
            if not match:
                raise ValueError(f"Invalid time in restart schedule: {item.strip()!r}")
            hour, minute, second = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)
            try:
                times.add(datetime.time(hour, minute, second))
            except ValueError:
                raise ValueError(f"Invalid time in restart schedule: {item.strip()!r}") from None
        return RestartSchedule(times=sorted(times), tz=tz, **every_day)

    fields = expression.split()
    if len(fields) == 5:
        fields = ['0'] + fields
    if len(fields) != 6:
        raise ValueError(f"Restart schedule must have 5 or 6 fields: {expression!r}")

    seconds = _expand_field(fields[0], 0, 59, 'second')
    minutes = _expand_field(fields[1], 0, 59, 'minute')
    hours = _expand_field(fields[2], 0, 23, 'hour')
    if len(seconds) * len(minutes) * len(hours) > MAX_DAILY_FIRINGS:
        raise ValueError(f"Restart schedule fires too often: {expression!r}")

    weekdays = _expand_field(fields[5], 0, 7, 'weekday', WEEKDAYS)
    schedule = RestartSchedule(
        times=[datetime.time(h, m, s) for h in sorted(hours) for m in sorted(minutes) for s in sorted(seconds)],
        days=_expand_field(fields[3], 1, 31, 'day of month'),
        months=_expand_field(fields[4], 1, 12, 'month', MONTHS),
        weekdays=frozenset(d % 7 for d in weekdays),  # 7 is Sunday too
        tz=tz,
    )
    # Rejects dates that never exist, like "0 0 30 2 *".
    schedule.next_fire(datetime.datetime.now(datetime.timezone.utc))
    return schedule


class RestartScheduler(commands.Cog):
    """Fires the restart countdown on the configured schedule."""

    def __init__(self, bot: commands.Bot, sequencer: RestartSequencer, schedule: RestartSchedule,
                 clock: Callable[[], datetime.datetime] = discord.utils.utcnow,
                 sleep_until: Callable[[datetime.datetime], Awaitable] = discord.utils.sleep_until):
        self.bot = bot
        self.sequencer = sequencer
        self.schedule = schedule
        self.next_restart: Optional[datetime.datetime] = None
        self._clock = clock
        self._sleep_until = sleep_until
        self._last_fired: Optional[datetime.datetime] = None

    @classmethod
    def from_expression(cls, bot, sequencer, expression: str, timezone: str = 'UTC'):
        return cls(bot, sequencer, parse_schedule(expression, ZoneInfo(timezone)))

    async def cog_load(self):
        self.scheduled_restart.start()
        logger.info(f"✅ Restart schedule set: {self.schedule.describe()} ({self.schedule.tz})")

    async def cog_unload(self):
        self.scheduled_restart.cancel()

    async def fire(self) -> Optional[RestartOutcome]:
        if self.sequencer.in_progress:
            logger.warning("Scheduled restart skipped - restart already in progress")
            return None
        try:
            return await self.sequencer.run(trigger='scheduled',
                                            announcement='**Scheduled server restart starting...** 🕐')
        except Exception:
            logger.exception("Scheduled restart failed")
            return RestartOutcome.ERROR

    async def wait_and_fire(self) -> Optional[RestartOutcome]:
        """Sleeps until the next scheduled moment, then fires once."""
        after = self._clock()
        if self._last_fired and self._last_fired > after:
            after = self._last_fired
        self.next_restart = self.schedule.next_fire(after)
        logger.info(f"Next scheduled restart: {self.next_restart:%Y-%m-%d %H:%M:%S %Z}")

        await self._sleep_until(self.next_restart)
        self._last_fired = self.next_restart
        return await self.fire()

    @tasks.loop()
    async def scheduled_restart(self):
        await self.wait_and_fire()

    @scheduled_restart.before_loop
    async def before_scheduled_restart(self):
        await self.bot.wait_until_ready()
