"""Shared fixtures: a scripted stand-in for the RCON server and Discord channel doubles."""

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

import rcon_session


class FakeRconServer:
    """Scripts what successive connects, logins and commands do. Exceptions in the scripts get raised."""

    def __init__(self):
        self.connect_results = []
        self.login_results = []
        self.run_results = []
        self.clients = []
        self.commands = []

    def client(self, host, port, passwd=None, timeout=None):
        client = FakeRconClient(self, host, port, passwd, timeout)
        self.clients.append(client)
        return client


class FakeRconClient:
    def __init__(self, server, host, port, passwd, timeout):
        self.server = server
        self.host = host
        self.port = port
        self.passwd = passwd
        self.timeout = timeout
        self.logged_in = False
        self.closed = False
        self.close_error = None

    def connect(self, login=False):
        if self.server.connect_results:
            result = self.server.connect_results.pop(0)
            if isinstance(result, BaseException):
                raise result
        if login:
            self.login(self.passwd)
        return self

    def login(self, passwd):
        result = self.server.login_results.pop(0) if self.server.login_results else True
        if isinstance(result, BaseException):
            raise result
        self.logged_in = result
        return result

    def run(self, command):
        self.server.commands.append(command)
        result = self.server.run_results.pop(0) if self.server.run_results else ''
        if isinstance(result, BaseException):
            raise result
        return result

    def close(self):
        self.closed = True
        if self.close_error:
            raise self.close_error


@pytest.fixture
def rcon_server(monkeypatch):
    server = FakeRconServer()
    monkeypatch.setattr(rcon_session, 'Client', server.client)
    return server


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def session(rcon_server, no_sleep):
    return rcon_session.RconSession('127.0.0.1', 27015, 'secret', timeout=1.0, sleep=no_sleep)


def make_channel():
    """A Discord text channel double whose sent messages get increasing ids."""
    ids = itertools.count(1000)
    channel = MagicMock()
    channel.send = AsyncMock(side_effect=lambda *args, **kwargs: MagicMock(id=next(ids)))
    fetched = {}

    async def fetch_message(message_id):
        message = fetched.setdefault(message_id, MagicMock(id=message_id))
        message.delete = AsyncMock()
        return message

    channel.fetch_message = AsyncMock(side_effect=fetch_message)
    channel.fetched = fetched
    return channel


@pytest.fixture
def channel():
    return make_channel()
