# -*- coding: utf-8 -*-
"""
RCON session management for the Project Zomboid server.

One RconSession owns the single RCON connection of the bot. It connects lazily,
reconnects after failures and retries every command a few times, so callers only
ever see a response string, None, or a boolean.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from rcon.exceptions import WrongPassword
from rcon.source import Client

logger = logging.getLogger('rcon')

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2.0
MAX_MESSAGE_LENGTH = 200

_STRIPPED_CHARS = re.compile(r"['\"\\]")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7E]")


class RconConnectionError(ConnectionError):
    """The RCON server could not be reached or refused our password."""


@dataclass
class RconConnection:
    """An RCON client. authenticated is only set once the server accepted our password."""
    client: Any
    authenticated: bool = False


def sanitize_message(message) -> str:
    """Removes quotes, backslashes and non-printable characters and caps the length."""
    if not isinstance(message, str):
        return ''
    cleaned = _STRIPPED_CHARS.sub('', message)
    cleaned = _NON_PRINTABLE.sub('', cleaned)
    return cleaned[:MAX_MESSAGE_LENGTH]


class RconSession:
    """Manages the RCON connection and command retries for one game server."""

    def __init__(self, host: str, port: int, password: str, timeout: float = 5.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.connection: Optional[RconConnection] = None
        self.last_error: Optional[str] = None
        self._sleep = sleep
        self._lock = asyncio.Lock()

    def _open(self) -> RconConnection:
        client = Client(self.host, self.port, passwd=self.password, timeout=self.timeout)
        client.connect()
        connection = RconConnection(client=client)
        try:
            connection.authenticated = bool(client.login(self.password))
        except Exception:
            client.close()
            raise
        if not connection.authenticated:
            client.close()
            raise WrongPassword()
        return connection

    def _discard(self):
        """Drops the stored connection, ignoring errors from closing it."""
        connection, self.connection = self.connection, None
        if connection is None:
            return
        try:
            connection.client.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing stale RCON connection: {e}")

    async def ensure_connection(self) -> RconConnection:
        """Returns the live connection, opening a new one if needed."""
        if self.connection and self.connection.authenticated:
            return self.connection

        self._discard()
        try:
            self.connection = await asyncio.to_thread(self._open)
        except Exception as e:
            self.connection = None
            self.last_error = str(e) or e.__class__.__name__
            logger.error(f"Failed to connect to RCON at {self.host}:{self.port}: {self.last_error}")
            raise RconConnectionError(f"RCON connect failed: {self.last_error}") from e

        self.last_error = None
        logger.info(f"RCON connection established to {self.host}:{self.port}")
        return self.connection

    async def _attempt(self, command: str) -> str:
        async with self._lock:
            try:
                connection = await self.ensure_connection()
                return await asyncio.to_thread(connection.client.run, command)
            except Exception:
                # Force a reconnect on the next attempt.
                self._discard()
                raise

    async def send_command(self, command: str) -> Optional[str]:
        """
        Runs a command on the server, retrying with a fresh connection on failure.
        Returns the server response, or None once every attempt has failed.
        """
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                response = await self._attempt(command)
            except Exception as e:
                self.last_error = str(e) or e.__class__.__name__
                logger.error(f"RCON command '{command}' failed (attempt {attempt}/{MAX_ATTEMPTS}): {self.last_error}")
                if attempt < MAX_ATTEMPTS:
                    await self._sleep(RETRY_DELAY_SECONDS)
                continue

            logger.info(f"🎮 Sent RCON command: {command}")
            return response

        logger.error(f"RCON command '{command}' failed after {MAX_ATTEMPTS} attempts")
        return None

    async def send_message(self, message: str) -> bool:
        """Broadcasts a message to everyone in game. Returns False if it never got through."""
        sanitized = sanitize_message(message)
        if not sanitized:
            logger.warning("Attempted to send empty message via RCON")
            return False

        response = await self.send_command(f'servermsg "{sanitized}"')
        if response is None:
            return False
        logger.info(f"📢 Sent RCON message: {sanitized}")
        return True

    def close(self):
        """Closes the connection on shutdown."""
        if self.connection:
            logger.info("Closing RCON connection")
        self._discard()
