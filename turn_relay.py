"""
TurnRelay
Copyright (C) 2024 thiccaxe

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""
import asyncio
import logging
import os
import signal
from typing import Optional

from config import Config, ConfigurationLoadError
from logger import setup_logging
from relay_manager import RelayManager
from server_data import ServerData
from websocket_server import WebsocketServer


class TurnRelay:

    def __init__(self, config):
        self._config = config
        self._data = ServerData()
        self._manager = RelayManager(self._config, self._data)
        self._websocket_server = WebsocketServer(self._config, self._data, self._manager)

    @property
    def data(self) -> ServerData:
        return self._data

    @property
    def manager(self) -> RelayManager:
        return self._manager

    @property
    def websocket_server(self) -> WebsocketServer:
        return self._websocket_server

    def request_stop(self):
        logging.debug("Stop requested")
        self._data.shutdown_event.set()

    def _install_signal_handlers(self) -> list:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError) as e:
                logging.debug(f"Could not install handler for {sig.name}: {e!r}")
        return installed

    async def begin(self, ready: Optional[asyncio.Event] = None):
        logging.info("Starting Turn Relay Server")
        installed = self._install_signal_handlers()
        async with self._websocket_server:
            logging.info(f"Server started on ws://{self._config['server']['host']}:{self._websocket_server.port}/")
            if ready is not None:
                ready.set()
            try:
                logging.info("Ctrl^C to quit")
                await self._data.shutdown_event.wait()
            except asyncio.CancelledError:
                logging.info("Cancelled ...")
            finally:
                logging.info("Stopping Server ...")
        for sig in installed:
            asyncio.get_running_loop().remove_signal_handler(sig)
        logging.info("Server stopped.")


async def main():
    logging.info("Starting turn relay ...")

    config = Config(os.environ.get("TURN_RELAY_CONFIG", "./config.toml"))

    try:
        await config.initialize()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return

    turn_relay = TurnRelay(config.config)
    await turn_relay.begin()


def run():
    setup_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
