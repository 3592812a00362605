import asyncio
import logging

import pytest
import pytest_asyncio
from websockets.exceptions import ConnectionClosedOK
from websockets.protocol import State

from config import Config
from relay_manager import RelayManager
from server_data import ServerData
from turn_relay import TurnRelay


class FakeConnection:
    """Stands in for a websockets ServerConnection."""

    def __init__(self, name: str = "conn"):
        self.name = name
        self.state = State.OPEN
        self.sent: list[str] = []
        self.closed_with = None

    async def send(self, message):
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        self.sent.append(message)

    async def close(self, code=1000, reason=""):
        self.closed_with = (code, reason)
        self.state = State.CLOSED

    def __repr__(self):
        return f"FakeConnection({self.name})"


def make_config(**sections) -> dict:
    """Schema defaults, with per-section overrides."""
    return Config("unused.toml").config_schema(sections)


def queued(data: ServerData, connection) -> list:
    outbox = data.outboxes[connection]
    messages = []
    while not outbox.empty():
        messages.append(outbox.get_nowait())
    return messages


async def wait_until(predicate, timeout: float = 2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout)


async def wait_for_log(caplog, text: str, timeout: float = 2.0):
    await wait_until(lambda: text in caplog.text, timeout)


@pytest.fixture
def config() -> dict:
    return make_config()


@pytest.fixture
def data() -> ServerData:
    return ServerData()


@pytest.fixture
def manager(config, data) -> RelayManager:
    return RelayManager(config, data)


@pytest_asyncio.fixture
async def relay(caplog):
    """A running relay on an ephemeral loopback port."""
    caplog.set_level(logging.INFO)
    turn_relay = TurnRelay(make_config(server={"host": "127.0.0.1", "port": 0}))
    ready = asyncio.Event()
    task = asyncio.create_task(turn_relay.begin(ready))
    await asyncio.wait_for(ready.wait(), 5)

    yield turn_relay

    turn_relay.request_stop()
    await asyncio.wait_for(task, 5)


@pytest.fixture
def uri(relay) -> str:
    return f"ws://127.0.0.1:{relay.websocket_server.port}/"
