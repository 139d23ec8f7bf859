# -*- coding: utf-8 -*-
import asyncio
import logging
import os
import re
import signal
import sys
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import discord
from discord.ext import commands, tasks
from dotenv import load_dotenv

from config import BotConfig, ConfigError, load_config
from cooldowns import CooldownTracker
from health import create_health_app, start_health_server
from presence import HISTORY_CLEANUP_MINUTES, POLL_INTERVAL_SECONDS, PresenceTracker
from rcon_session import RconSession, sanitize_message
from restart import RestartOutcome, RestartSequencer
from scheduler import RestartSchedule, RestartScheduler, parse_schedule

# ---------------------------------
# Logging Setup
# ---------------------------------
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

logger = logging.getLogger('pz_bot')


def setup_logging(level: str = 'INFO'):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    logging.getLogger('discord').setLevel(logging.INFO)


# ---------------------------------
# Constants
# ---------------------------------
PREFIX = '!'
HI_WORDS = {'hi', 'hello', 'hey'}
BYE_WORDS = {'bye', 'goodbye', 'see you'}
CHANNEL_ID_PATTERN = re.compile(r'^\d{17,20}$')

ADMIN_ACTIONS = {
    'restart': 'restart the server',
    'announce': 'send announcements',
    'dcmessage': 'send Discord announcements',
}

HELP_TEXT = """
**PZ Bot Commands:**

**General Commands:**
- `!players` or `!online` - Check who's online
- `!testrcon` - Test RCON connection
- `!help` or `!commands` - Show this message

**Admin Commands:**
- `!restart` - Manually trigger server restart with countdown
- `!announce <message>` - Send announcement to in-game chat
- `!dcmessage [channel_id] <message>` - Send announcement to a Discord channel (images are forwarded)

**Automatic Features:**
- Server restarts scheduled (check schedule with admin)
- Join/leave notifications
- Member welcome/goodbye messages

**Note:** Commands have cooldowns to prevent spam.
"""


# ---------------------------------
# Checks
# ---------------------------------
class NotServerAdmin(commands.CheckFailure):
    pass


def is_server_admin():
    """Admin means having ADMIN_ROLE_ID when it is configured, the Administrator permission otherwise."""
    async def predicate(ctx: commands.Context) -> bool:
        role_id = ctx.bot.config.admin_role_id
        if role_id:
            allowed = any(role.id == role_id for role in getattr(ctx.author, 'roles', []))
        else:
            allowed = ctx.author.guild_permissions.administrator
        if not allowed:
            raise NotServerAdmin(f"{ctx.author} is not a server admin")
        return True
    return commands.check(predicate)


def parse_dcmessage(text: str, default_channel_id: Optional[int]) -> Tuple[Optional[int], str]:
    """Splits an optional leading channel ID off a !dcmessage body."""
    text = (text or '').strip()
    first, _, rest = text.partition(' ')
    if CHANNEL_ID_PATTERN.match(first):
        return int(first), rest.strip()
    return default_channel_id, text


# ---------------------------------
# Bot Setup
# ---------------------------------
class PZBot(commands.Bot):
    def __init__(self, config: BotConfig, restart_schedule: RestartSchedule, **kwargs):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix=PREFIX, intents=intents, case_insensitive=True,
                         help_command=None, **kwargs)
        self.config = config
        self.restart_schedule = restart_schedule
        self.rcon = RconSession(config.rcon_host, config.rcon_port, config.rcon_password, config.rcon_timeout)
        self.presence = PresenceTracker(
            self.rcon,
            lambda: self.channel_for(config.notifications_channel_id),
            server_name=config.server_name,
        )
        self.restarts = RestartSequencer(self.rcon, self.presence, self.post_notification)
        self.cooldowns = CooldownTracker()
        self.health_runner = None

    async def setup_hook(self):
        """Called when the bot is setting up, before login."""
        await self.add_cog(TasksCog(self))
        await self.add_cog(RestartScheduler(self, self.restarts, self.restart_schedule))
        await self.add_cog(ServerCommands(self))
        logger.info("All cogs loaded.")

        app = create_health_app(self.health_status)
        try:
            self.health_runner = await start_health_server(app, self.config.http_port)
        except OSError as e:
            logger.error(f"Failed to start web server on port {self.config.http_port}: {e}")

    def channel_for(self, channel_id: Optional[int]):
        if not channel_id:
            return None
        return self.get_channel(channel_id)

    def health_status(self) -> dict:
        return {
            'online_players': len(self.presence.online_players),
            'restart_in_progress': self.restarts.in_progress,
        }

    async def post_notification(self, message: str, is_error: bool = False):
        channel = self.channel_for(self.config.notifications_channel_id)
        if channel is None:
            logger.debug(f"No notifications channel, dropping: {message}")
            return
        emoji = '⚠️' if is_error else '🔄'
        try:
            await channel.send(f"{emoji} {message}")
        except discord.HTTPException as e:
            logger.error(f"Failed to post Discord notification: {e}")

    async def on_ready(self):
        logger.info(f'✅ Logged in as {self.user} (ID: {self.user.id})')
        await self.change_presence(activity=discord.Game(name=f"{self.config.server_name} Server"))

    async def on_message(self, message: discord.Message):
        if message.author.bot:
            return

        content = message.content.strip().lower()
        if content in HI_WORDS or content in BYE_WORDS:
            await self.greet(message, content in HI_WORDS)
            return

        await self.process_commands(message)

    async def greet(self, message: discord.Message, hello: bool):
        target_channel = self.channel_for(self.config.target_channel_id)
        where = getattr(message.channel, 'mention', 'DMs')
        try:
            if hello:
                if target_channel:
                    await target_channel.send(f"{message.author.mention} said hi in {where}! 👋")
                await message.reply('Hi there! 👋')
            else:
                if target_channel:
                    await target_channel.send(f"{message.author.mention} said bye in {where}! 👋")
                await message.reply('Bye! See you later! 👋')
        except discord.HTTPException as e:
            logger.error(f"Failed to answer greeting: {e}")

    async def on_member_join(self, member: discord.Member):
        channel = self.channel_for(self.config.target_channel_id)
        if not channel:
            return
        try:
            await channel.send(f"Welcome to the server, {member.mention}! 🎉")
        except discord.HTTPException as e:
            logger.error(f"Error in member join event: {e}")

    async def on_member_remove(self, member: discord.Member):
        channel = self.channel_for(self.config.target_channel_id)
        if not channel:
            return
        try:
            await channel.send(f"Goodbye, {member}! We'll miss you! 👋")
        except discord.HTTPException as e:
            logger.error(f"Error in member remove event: {e}")

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, NotServerAdmin):
            action = ADMIN_ACTIONS.get(ctx.command.name if ctx.command else '', 'use this command')
            await ctx.reply(f"❌ You need administrator permissions to {action}.")
            return
        if isinstance(error, commands.NoPrivateMessage):
            await ctx.reply("❌ This command can only be used in a server.")
            return

        logger.error(f"Error handling command {ctx.command}: {error}", exc_info=error)
        try:
            await ctx.reply('❌ An error occurred while processing your command.')
        except discord.HTTPException as e:
            logger.error(f"Failed to send error message: {e}")

    async def on_error(self, event_method: str, *args, **kwargs):
        logger.exception(f"Unhandled error in {event_method}")

    async def close(self):
        logger.info("Bot is shutting down...")
        self.presence.cancel_pending()
        self.rcon.close()
        if self.health_runner:
            runner, self.health_runner = self.health_runner, None
            await runner.cleanup()
        await super().close()


# ---------------------------------
# Cog: TasksCog
# ---------------------------------
class TasksCog(commands.Cog):
    def __init__(self, bot: PZBot):
        self.bot = bot

    async def cog_load(self):
        self.presence_monitor.start()
        self.history_cleanup.start()

    async def cog_unload(self):
        """Called when cog is unloaded to stop tasks."""
        self.presence_monitor.cancel()
        self.history_cleanup.cancel()

    @tasks.loop(seconds=POLL_INTERVAL_SECONDS)
    async def presence_monitor(self):
        try:
            await self.bot.presence.poll()
        except Exception:
            logger.exception("Error during player check")

    @presence_monitor.before_loop
    async def before_presence_monitor(self):
        await self.bot.wait_until_ready()
        logger.info("🎮 Starting PZ server monitoring...")

    @tasks.loop(minutes=HISTORY_CLEANUP_MINUTES)
    async def history_cleanup(self):
        purged = self.bot.presence.cleanup_history()
        if purged:
            logger.info(f"Cleaned up message history for {len(purged)} player(s)")


# ---------------------------------
# Cog: ServerCommands
# ---------------------------------
class ServerCommands(commands.Cog):
    def __init__(self, bot: PZBot):
        self.bot = bot

    async def _off_cooldown(self, ctx: commands.Context, command_name: str) -> bool:
        status = self.bot.cooldowns.check(ctx.author.id, command_name)
        if status.on_cooldown:
            await ctx.reply(f"⏳ Please wait {status.time_left:.1f}s before using this command again.")
            return False
        return True

    @commands.command(name='players', aliases=['online'])
    async def players(self, ctx: commands.Context):
        if not await self._off_cooldown(ctx, 'players'):
            return
        online = self.bot.presence.online_players
        if not online:
            await ctx.reply(f"No players are currently online on the {self.bot.config.server_name} server.")
        else:
            await ctx.reply(f"🎮 Players online ({len(online)}): {', '.join(sorted(online))}")

    @commands.command(name='testrcon')
    async def testrcon(self, ctx: commands.Context):
        await ctx.reply('Testing RCON connection... Check logs for details.')
        if await self.bot.presence.poll():
            await ctx.reply('✅ RCON connection is working.')
        else:
            await ctx.reply(f"❌ RCON connection failed: `{self.bot.rcon.last_error}`")

    @commands.command(name='restart', aliases=['restartserver'])
    @commands.guild_only()
    @is_server_admin()
    async def restart(self, ctx: commands.Context):
        if not await self._off_cooldown(ctx, 'restart'):
            return
        if self.bot.restarts.in_progress:
            await ctx.reply('⚠️ A restart is already in progress!')
            return

        await ctx.reply('✅ Server restart initiated! Countdown starting...')
        outcome = await self.bot.restarts.run(trigger=f'manual, by {ctx.author}')
        if outcome is RestartOutcome.ALREADY_IN_PROGRESS:
            await ctx.reply('⚠️ A restart is already in progress!')
        elif not outcome.completed:
            await ctx.reply('❌ Restart failed! Check notifications channel for details.')

    @commands.command(name='announce')
    @commands.guild_only()
    @is_server_admin()
    async def announce(self, ctx: commands.Context, *, message: str = ''):
        if not await self._off_cooldown(ctx, 'announce'):
            return
        if not message.strip():
            await ctx.reply('❌ Please provide a message to announce.')
            return

        if await self.bot.rcon.send_message(message):
            await ctx.reply(f'✅ Announcement sent to server: "{sanitize_message(message)}"')
        else:
            await ctx.reply('❌ Failed to send announcement. Check bot logs.')

    @commands.command(name='dcmessage')
    @commands.guild_only()
    @is_server_admin()
    async def dcmessage(self, ctx: commands.Context, *, text: str = ''):
        if not await self._off_cooldown(ctx, 'dcmessage'):
            return

        channel_id, announcement = parse_dcmessage(text, self.bot.config.announcement_channel_id)
        attachments = ctx.message.attachments
        if not announcement and not attachments:
            await ctx.reply('❌ Please provide a message and/or image to send.\n'
                            '**Usage:** `!dcmessage [channel_id] <message>` or attach images')
            return

        channel = self.bot.channel_for(channel_id)
        if channel is None:
            await ctx.reply('❌ Channel not found! Make sure the channel ID is correct.\n'
                            '**Tip:** Right-click a channel and select "Copy Channel ID"')
            return
        if not channel.permissions_for(channel.guild.me).send_messages:
            await ctx.reply('❌ Bot does not have permission to send messages in that channel.')
            return

        try:
            files = [await attachment.to_file() for attachment in attachments]
            await channel.send(content=announcement or None, files=files)
        except discord.HTTPException as e:
            logger.error(f"Failed to send Discord announcement: {e}")
            await ctx.reply('❌ Failed to send announcement. Check bot logs.')
            return

        confirmation = f"✅ Announcement sent to <#{channel_id}>!"
        if attachments:
            confirmation += f" (with {len(attachments)} image{'s' if len(attachments) > 1 else ''})"
        await ctx.reply(confirmation)
        logger.info(f"📣 Discord announcement sent by {ctx.author} to channel {channel_id}: "
                    f"{announcement or '[Image only]'} ({len(attachments)} attachment(s))")

    @commands.command(name='help', aliases=['commands'])
    async def help(self, ctx: commands.Context):
        await ctx.reply(HELP_TEXT)


# ---------------------------------
# Main Bot Execution
# ---------------------------------
def _log_loop_exception(loop, context):
    logger.error(f"Unhandled exception in event loop: {context.get('message')}", exc_info=context.get('exception'))


async def _shutdown(bot: PZBot, sig: signal.Signals):
    logger.info(f"Received {sig.name}, shutting down gracefully...")
    await bot.close()


async def run_bot(config: BotConfig, restart_schedule: RestartSchedule):
    bot = PZBot(config, restart_schedule)
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_loop_exception)
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(_shutdown(bot, s)))
        except NotImplementedError:
            pass  # Windows: Ctrl+C still arrives as KeyboardInterrupt

    async with bot:
        await bot.start(config.discord_token)


def main():
    load_dotenv()
    setup_logging(os.getenv('LOG_LEVEL', 'INFO'))

    try:
        config = load_config()
    except ConfigError as e:
        for problem in e.problems:
            logger.critical(f"❌ {problem}")
        logger.critical("Please set these in your .env file or hosting environment.")
        sys.exit(1)
    logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))

    try:
        restart_schedule = parse_schedule(config.restart_schedule, ZoneInfo(config.restart_timezone))
    except (ValueError, ZoneInfoNotFoundError) as e:
        logger.critical(f"Invalid RESTART_SCHEDULE/RESTART_TIMEZONE: {e}")
        sys.exit(1)

    try:
        asyncio.run(run_bot(config, restart_schedule))
    except discord.LoginFailure:
        logger.critical("Invalid Discord token. Please check DISCORD_TOKEN.")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Bot shutdown requested by user.")
    except Exception:
        logger.critical("Unhandled error, shutting down", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
