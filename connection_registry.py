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

import threading
from typing import Callable, Hashable, Optional, Tuple

PLAYER_IDENTITIES = (1, 2)
MAX_PLAYERS = len(PLAYER_IDENTITIES)


class ConnectionRegistry:
    """
    Maps connection handles to player identities (1 or 2).

    Every operation holds the same lock, so the size check in try_admit is atomic with its insert.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._players: dict[Hashable, int] = dict()

    def try_admit(self, handle: Hashable) -> Tuple[Optional[int], bool]:
        with self._lock:
            if handle in self._players:
                return self._players[handle], True
            if len(self._players) >= MAX_PLAYERS:
                return None, False

            identity = len(self._players) + 1
            taken = set(self._players.values())
            if identity in taken:
                # survivor of a disconnect still holds 2
                identity, = (i for i in PLAYER_IDENTITIES if i not in taken)
            self._players[handle] = identity
            return identity, True

    def remove(self, handle: Hashable) -> Optional[int]:
        with self._lock:
            return self._players.pop(handle, None)

    def other_than(self, identity: int) -> Optional[Hashable]:
        with self._lock:
            for handle, player in self._players.items():
                if player != identity:
                    return handle
        return None

    def identity_of(self, handle: Hashable) -> Optional[int]:
        with self._lock:
            return self._players.get(handle)

    def all_handles(self) -> list:
        with self._lock:
            return list(self._players)

    def discard_where(self, predicate: Callable[[Hashable], bool]) -> list:
        with self._lock:
            stale = [handle for handle in self._players if predicate(handle)]
            for handle in stale:
                del self._players[handle]
            return stale

    def __len__(self):
        with self._lock:
            return len(self._players)

    def __contains__(self, handle):
        with self._lock:
            return handle in self._players
