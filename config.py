# -*- coding: utf-8 -*-
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

# ==============================================================================
# ⚠️ CONFIGURATION ⚠️
# All settings come from the environment (or a .env file, see setup_bot.py).
# ==============================================================================

REQUIRED_ENV_VARS = ['DISCORD_TOKEN', 'PZ_SERVER_IP', 'PZ_RCON_PORT', 'PZ_RCON_PASSWORD']

DEFAULT_RESTART_SCHEDULE = '0 0 */8 * * *'  # every 8 hours
DEFAULT_HTTP_PORT = 3000
DEFAULT_RCON_TIMEOUT = 5.0


class ConfigError(Exception):
    """Raised when the environment does not describe a usable bot."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid configuration: " + "; ".join(problems))


@dataclass(frozen=True)
class BotConfig:
    discord_token: str
    rcon_host: str
    rcon_port: int
    rcon_password: str
    rcon_timeout: float = DEFAULT_RCON_TIMEOUT
    target_channel_id: Optional[int] = None         # greetings, welcome/goodbye
    notifications_channel_id: Optional[int] = None  # joins/leaves, restart status
    announcement_channel_id: Optional[int] = None   # default !dcmessage target
    admin_role_id: Optional[int] = None             # None means "Administrator permission"
    restart_schedule: str = DEFAULT_RESTART_SCHEDULE
    restart_timezone: str = 'UTC'
    http_port: int = DEFAULT_HTTP_PORT
    server_name: str = 'PZ'
    log_level: str = 'INFO'


def _get(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _as_int(env, key, problems, default=None):
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        problems.append(f"{key} must be an integer (got {raw!r})")
        return default


def _as_float(env, key, problems, default):
    raw = _get(env, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        problems.append(f"{key} must be a number (got {raw!r})")
        return default


def load_config(environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Builds a BotConfig from environment variables.
    Every missing or malformed value is collected so the operator sees the full list at once.
    """
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_ENV_VARS if _get(env, name) is None]
    problems = []
    if missing:
        problems.append(f"Missing required environment variables: {', '.join(missing)}")

    rcon_port = _as_int(env, 'PZ_RCON_PORT', problems)
    rcon_timeout = _as_float(env, 'RCON_TIMEOUT', problems, DEFAULT_RCON_TIMEOUT)
    target_channel_id = _as_int(env, 'TARGET_CHANNEL_ID', problems)
    notifications_channel_id = _as_int(env, 'PZ_NOTIFICATIONS_CHANNEL_ID', problems)
    announcement_channel_id = _as_int(env, 'ANNOUNCEMENT_CHANNEL_ID', problems)
    admin_role_id = _as_int(env, 'ADMIN_ROLE_ID', problems)
    http_port = _as_int(env, 'PORT', problems, DEFAULT_HTTP_PORT)

    if problems:
        raise ConfigError(problems)

    return BotConfig(
        discord_token=_get(env, 'DISCORD_TOKEN'),
        rcon_host=_get(env, 'PZ_SERVER_IP'),
        rcon_port=rcon_port,
        rcon_password=_get(env, 'PZ_RCON_PASSWORD'),
        rcon_timeout=rcon_timeout,
        target_channel_id=target_channel_id,
        notifications_channel_id=notifications_channel_id,
        announcement_channel_id=announcement_channel_id,
        admin_role_id=admin_role_id,
        restart_schedule=_get(env, 'RESTART_SCHEDULE') or DEFAULT_RESTART_SCHEDULE,
        restart_timezone=_get(env, 'RESTART_TIMEZONE') or 'UTC',
        http_port=http_port,
        server_name=_get(env, 'SERVER_NAME') or 'PZ',
        log_level=(_get(env, 'LOG_LEVEL') or 'INFO').upper(),
    )
