"""Registry owning every room, backed by a :class:`RoomStore` snapshot."""

from __future__ import annotations

import logging
import secrets
import time
from typing import Dict, Iterator, Optional

from .room import Clock, Room, RoomStatus
from .store import RoomStore

logger = logging.getLogger(__name__)

ROOM_ID_PREFIX = "room-"
ROOM_ID_BYTES = 6  # 12 hex chars
FINISHED_ROOM_TTL_SECONDS = 60 * 5
ROOM_TTL_SECONDS = 60 * 60


class RoomRegistry:
    """All rooms of the process, loaded in full and flushed in full.

    Each request builds a registry, calls :meth:`load`, and every mutating
    operation writes the whole map back before returning. The read-modify-write
    cycle is not atomic: two racing writers resolve as last-writer-wins.
    """

    def __init__(
        self,
        store: RoomStore,
        clock: Clock = time.time,
        finished_ttl: int = FINISHED_ROOM_TTL_SECONDS,
        room_ttl: int = ROOM_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.clock = clock
        self.finished_ttl = finished_ttl
        self.room_ttl = room_ttl
        self._rooms: Dict[str, Room] = {}

    # ---- lifecycle ----

    def load(self, presence_timeout: Optional[int] = None) -> int:
        """Populate from the store, drop corrupt records and expired rooms.

        Returns the number of rooms expired during the load.
        """
        self._rooms = {}
        for room_id, data in self.store.load().items():
            try:
                if not isinstance(data, dict):
                    raise TypeError("room record is not an object")
                room = Room.from_snapshot(data, clock=self.clock)
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping corrupt room record %r: %s", room_id, exc)
                continue
            self._rooms[room.room_id] = room

        expired = self.expire_inactive()
        stale = False
        if presence_timeout is not None:
            for room in self._rooms.values():
                stale = room.refresh_presence(presence_timeout) or stale
        if stale:
            self.flush()
        return expired

    def flush(self) -> None:
        self.store.save({room_id: room.to_snapshot() for room_id, room in self._rooms.items()})

    # ---- operations ----

    def create(self) -> Room:
        room = Room(room_id=self._generate_room_id(), clock=self.clock)
        self._rooms[room.room_id] = room
        self.flush()
        logger.info("Created room %s", room.room_id)
        return room

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def save(self, room: Room) -> None:
        self._rooms[room.room_id] = room
        self.flush()

    def delete(self, room_id: str) -> bool:
        if self._rooms.pop(room_id, None) is None:
            return False
        self.flush()
        logger.info("Deleted room %s", room_id)
        return True

    def exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    def expire_inactive(self) -> int:
        """Evict idle rooms; finished rooms go after the short TTL, the rest after the long one."""
        expired = [
            room_id
            for room_id, room in list(self._rooms.items())
            if room.idle_seconds() > self._ttl_for(room)
        ]
        for room_id in expired:
            self._rooms.pop(room_id, None)
            logger.info("Expired inactive room %s", room_id)
        if expired:
            self.flush()
        return len(expired)

    # ---- counters ----

    def __len__(self) -> int:
        return len(self._rooms)

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def count_by_status(self, status: RoomStatus) -> int:
        return sum(1 for room in self._rooms.values() if room.status is status)

    def stats(self) -> Dict[str, int]:
        return {
            "total": len(self._rooms),
            "active": self.count_by_status(RoomStatus.PLAYING),
            "waiting": self.count_by_status(RoomStatus.WAITING),
            "finished": self.count_by_status(RoomStatus.FINISHED),
        }

    # ---- helpers ----

    def _ttl_for(self, room: Room) -> int:
        return self.finished_ttl if room.status is RoomStatus.FINISHED else self.room_ttl

    def _generate_room_id(self) -> str:
        while True:
            room_id = ROOM_ID_PREFIX + secrets.token_hex(ROOM_ID_BYTES)
            if room_id not in self._rooms:
                return room_id
