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
from http import HTTPStatus
from typing import Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.frames import CloseCode
from websockets.http11 import Request, Response

from relay_manager import RelayManager
from server_data import ServerData


class WebsocketServer:

    def __init__(self, config, data: ServerData, manager: RelayManager):
        self._config = config
        self._data = data
        self._manager = manager
        self._websocket_server: Optional[serve] = None
        self.server: Optional[Server] = None

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    def process_request(self, websocket: ServerConnection, request: Request) -> Optional[Response]:
        # seats are taken here, before the upgrade, so a rejected client never gets a channel
        if self._data.shutdown_event.is_set():
            return websocket.respond(HTTPStatus.SERVICE_UNAVAILABLE, "Server shutting down\n")
        if self._manager.admit(websocket) is None:
            return websocket.respond(HTTPStatus.FORBIDDEN, "Server full\n")
        return None

    def process_response(self, websocket: ServerConnection, request: Request, response: Response) -> None:
        if response.status_code != HTTPStatus.SWITCHING_PROTOCOLS and self._manager.identity_of(websocket) is not None:
            logging.debug(f"Upgrade failed with {response.status_code}, giving the seat back")
            self._manager.release(websocket)
        return None

    async def handler(self, websocket: ServerConnection):
        if self._manager.identity_of(websocket) is None:
            await websocket.close(CloseCode.TRY_AGAIN_LATER, "Server full")
            return

        delivery_task = asyncio.create_task(self._manager.deliver(websocket))
        code = None
        try:
            while True:
                message = await websocket.recv()
                self._manager.on_frame(websocket, message)
        except websockets.exceptions.ConnectionClosed as e:
            # the close frame has already been answered with the same code
            code = e.rcvd.code if e.rcvd is not None else None
            logging.debug(f"Websocket connection closed ({e})")
            await websocket.wait_closed()
        finally:
            delivery_task.cancel()
            await asyncio.wait([delivery_task])
            self._manager.release(websocket, code)

    async def __aenter__(self):
        self._websocket_server = serve(
            self.handler,
            self._config["server"]["host"],
            int(self._config["server"]["port"]),
            process_request=self.process_request,
            process_response=self.process_response,
            max_size=int(self._config["server"]["max_message_size"]),
        )
        logging.debug(f"Starting websocket server")
        self.server = await self._websocket_server.__aenter__()
        return self.server

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._websocket_server is not None:
            await self._manager.stop()
            logging.debug(f"Stopping websocket server")
            return await self._websocket_server.__aexit__(exc_type, exc_val, exc_tb)
