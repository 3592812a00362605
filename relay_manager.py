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
import json
import logging
import threading
from typing import Optional, Union

import websockets
from websockets.frames import CloseCode
from websockets.protocol import State as WebsocketState

from server_data import ServerData

"""
Turn arbitration. Everything that reads or writes the turn marker lives here.
"""

OUT_OF_TURN_EVENT = "turn_relay:event/error/out_of_turn"


def next_turn(identity: int) -> int:
    return 2 if identity == 1 else 1


def _is_closed(websocket) -> bool:
    return websocket.state is WebsocketState.CLOSED


class RelayManager:

    def __init__(self, config, data: ServerData):
        self._config = config
        self._data = data
        self._turn_lock = threading.Lock()
        self._notify_out_of_turn = bool(self._config["relay"]["notify_out_of_turn"])
        self._outbox_size = int(self._config["relay"]["outbox_size"])

    @property
    def current_turn(self) -> int:
        return self._data.current_turn

    def identity_of(self, websocket) -> Optional[int]:
        return self._data.players.identity_of(websocket)

    def admit(self, websocket) -> Optional[int]:
        """
        Registers a new connection and returns its player identity, or None when both seats are taken.
        """
        for stale in self._data.players.discard_where(_is_closed):
            self._data.outboxes.pop(stale, None)
            logging.debug(f"Dropped registration of an already closed connection")

        identity, admitted = self._data.players.try_admit(websocket)
        if not admitted:
            logging.info("Server full. New connection denied.")
            return None

        self._data.outboxes.setdefault(websocket, asyncio.Queue(maxsize=self._outbox_size))
        logging.info(f"Player {identity} connected.")
        return identity

    def release(self, websocket, code: Optional[int] = None) -> Optional[int]:
        identity = self._data.players.remove(websocket)
        self._data.outboxes.pop(websocket, None)
        if identity is not None:
            logging.info(f"Player {identity} disconnected ({code=}).")
        return identity

    def on_frame(self, websocket, message: Union[str, bytes]) -> bool:
        if isinstance(message, bytes):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                logging.warning(f"Player {self.identity_of(websocket)} sent a frame that is not UTF-8; dropped ({e})")
                return False
        return self.handle_move(websocket, message)

    def handle_move(self, websocket, move: str) -> bool:
        """
        Forwards the move to the other player if it is the sender's turn, then hands the turn over.

        Never awaits, so the turn check, forward and advance happen as one step.
        Returns whether the move was accepted.
        """
        identity = self.identity_of(websocket)
        if identity is None:
            logging.warning(f"Move from a connection that is not registered. Ignoring move.")
            return False

        logging.info(f"Player {identity} made a move: {move}")

        with self._turn_lock:
            if self._data.current_turn != identity:
                logging.info(f"Invalid turn for Player {identity}. Ignoring move.")
                if self._notify_out_of_turn:
                    self._enqueue(websocket, json.dumps({
                        "event": OUT_OF_TURN_EVENT,
                        "turn": self._data.current_turn,
                    }))
                return False

            self._forward(identity, move)
            self._data.current_turn = next_turn(identity)

        return True

    def _forward(self, identity: int, move: str) -> bool:
        peer = self._data.players.other_than(identity)
        if peer is None or peer.state is not WebsocketState.OPEN:
            logging.debug(f"No open peer for Player {identity}, move not forwarded")
            return False

        if not self._enqueue(peer, move):
            return False
        logging.info(f"Move forwarded to Player {self.identity_of(peer)}")
        return True

    def _enqueue(self, websocket, message: str) -> bool:
        outbox = self._data.outboxes.get(websocket)
        if outbox is None:
            logging.debug("Wanted to send data to a connection without an outbox")
            return False
        try:
            outbox.put_nowait(message)
        except asyncio.QueueFull:
            logging.warning(f"Outbox of Player {self.identity_of(websocket)} is full, frame dropped")
            return False
        return True

    async def deliver(self, websocket):
        """
        Sends everything queued for this connection until it closes or the task is cancelled.
        """
        outbox = self._data.outboxes.get(websocket)
        if outbox is None:
            return
        try:
            while True:
                message = await outbox.get()
                await websocket.send(message)
        except websockets.exceptions.ConnectionClosed:
            logging.debug(f"Connection of Player {self.identity_of(websocket)} closed while delivering")

    async def stop(self):
        self._data.shutdown_event.set()
        await asyncio.gather(*(self._close(websocket) for websocket in self._data.players.all_handles()))

    async def _close(self, websocket):
        if _is_closed(websocket):
            return
        await websocket.close(CloseCode.NORMAL_CLOSURE, "Server shutting down")
