"""Two-seat game rooms wrapping a :class:`GameEngine`."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .errors import CellOccupied, GameOver, NotInRoom, NotYourTurn, RoomFull, WaitingForOpponent
from .game import AsPlayer, GameEngine, GameStatus, Marker, MoveRejection, MoveResult

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RoomStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


@dataclass
class PlayerSlot:
    """A seated player. Identity is an opaque per-browser id."""

    player_id: str
    name: str
    marker: Marker
    connected: bool = True
    joined_at: int = 0
    last_seen: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "playerId": self.player_id,
            "name": self.name,
            "marker": self.marker.value,
            "isConnected": self.connected,
            "joinedAt": self.joined_at,
            "lastSeen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "PlayerSlot":
        return cls(
            player_id=str(data["playerId"]),
            name=str(data["name"]),
            marker=Marker(data["marker"]),
            connected=bool(data["isConnected"]),
            joined_at=int(data["joinedAt"]),
            last_seen=int(data["lastSeen"]),
        )


@dataclass
class Room:
    room_id: str
    game: GameEngine = field(default_factory=GameEngine)
    slot_x: Optional[PlayerSlot] = None
    slot_o: Optional[PlayerSlot] = None
    status: RoomStatus = RoomStatus.WAITING
    created_at: Optional[int] = None
    last_activity_at: Optional[int] = None
    # Starter of the *next* game; the first game always opens with X.
    next_starter: Marker = Marker.O
    rematch_votes: List[str] = field(default_factory=list)
    clock: Clock = field(default=time.time, repr=False, compare=False)

    def __post_init__(self) -> None:
        now = self._now()
        if self.created_at is None:
            self.created_at = now
        if self.last_activity_at is None:
            self.last_activity_at = now

    # ---- seats ----

    @property
    def slots(self) -> List[PlayerSlot]:
        return [s for s in (self.slot_x, self.slot_o) if s is not None]

    def is_full(self) -> bool:
        return self.slot_x is not None and self.slot_o is not None

    def slot_of(self, player_id: str) -> Optional[PlayerSlot]:
        for slot in self.slots:
            if slot.player_id == player_id:
                return slot
        return None

    def has_player(self, player_id: str) -> bool:
        return self.slot_of(player_id) is not None

    def marker_of(self, player_id: str) -> Optional[Marker]:
        slot = self.slot_of(player_id)
        return slot.marker if slot else None

    def add_player(self, player_id: str, name: Optional[str] = None) -> PlayerSlot:
        """Seat a player: X goes to the first comer, O to the second.

        Re-joining an already held seat returns that seat unchanged.
        """
        existing = self.slot_of(player_id)
        if existing is not None:
            existing.connected = True
            existing.last_seen = self._now()
            return existing

        now = self._now()
        if self.slot_x is None:
            slot = PlayerSlot(player_id, name or "Player X", Marker.X, joined_at=now, last_seen=now)
            self.slot_x = slot
        elif self.slot_o is None:
            slot = PlayerSlot(player_id, name or "Player O", Marker.O, joined_at=now, last_seen=now)
            self.slot_o = slot
        else:
            raise RoomFull()

        if self.is_full() and self.status is RoomStatus.WAITING:
            self.status = RoomStatus.PLAYING
        self.touch()
        logger.info("Player %s joined room %s as %s", player_id, self.room_id, slot.marker.value)
        return slot

    # ---- play ----

    def can_player_move(self, player_id: str, position: Optional[int] = None) -> bool:
        """Cheap turn gate. ``position`` is not checked: occupancy is decided by the move itself."""
        marker = self.marker_of(player_id)
        if marker is None:
            return False
        return self.game.can_player_move(marker)

    def apply_move(self, player_id: str, position: int) -> MoveResult:
        marker = self.marker_of(player_id)
        if marker is None:
            raise NotInRoom()
        try:
            if self.status is RoomStatus.WAITING:
                raise WaitingForOpponent()
            if self.status is RoomStatus.FINISHED or self.game.status is not GameStatus.PLAYING:
                raise GameOver()
            if not self.can_player_move(player_id, position):
                raise NotYourTurn()

            result = self.game.apply_move(position, AsPlayer(player_id, marker))
            if result.reason is MoveRejection.CELL_OCCUPIED:
                raise CellOccupied()
            if result.reason is MoveRejection.NOT_YOUR_TURN:
                raise NotYourTurn()
            if result.reason is MoveRejection.GAME_OVER:
                raise GameOver()

            if self.game.status is not GameStatus.PLAYING:
                self.status = RoomStatus.FINISHED
            return result
        finally:
            self.touch()

    def vote_rematch(self, player_id: str) -> bool:
        """Record a rematch vote; returns True once both players voted and the board was reset."""
        if not self.has_player(player_id):
            raise NotInRoom()
        if player_id not in self.rematch_votes:
            self.rematch_votes.append(player_id)
        self.touch()

        seated = {s.player_id for s in self.slots}
        if not self.is_full() or not seated.issubset(self.rematch_votes):
            return False

        starter = self.next_starter
        self.game.reset(starter)
        self.next_starter = starter.opposite()
        self.status = RoomStatus.PLAYING
        self.rematch_votes = []
        logger.info("Rematch started in room %s, %s opens", self.room_id, starter.value)
        return True

    def leave(self, player_id: str) -> bool:
        """Finish the room on behalf of a seated player. Seats are not freed."""
        slot = self.slot_of(player_id)
        if slot is None:
            return False
        slot.connected = False
        self.status = RoomStatus.FINISHED
        self.touch()
        logger.info("Player %s left room %s", player_id, self.room_id)
        return True

    # ---- presence ----

    def mark_seen(self, player_id: str) -> bool:
        slot = self.slot_of(player_id)
        if slot is None:
            return False
        slot.connected = True
        slot.last_seen = self._now()
        return True

    def refresh_presence(self, timeout: int) -> bool:
        """Flag seats silent for longer than ``timeout`` seconds as disconnected."""
        now = self._now()
        changed = False
        for slot in self.slots:
            if slot.connected and now - slot.last_seen > timeout:
                slot.connected = False
                changed = True
        return changed

    def touch(self) -> None:
        self.last_activity_at = self._now()

    def idle_seconds(self) -> int:
        return self._now() - self.last_activity_at

    # ---- serialization ----

    def to_dict(self) -> Dict[str, object]:
        """Public room summary sent to clients."""
        return {
            "roomId": self.room_id,
            "status": self.status.value,
            "playerX": self.slot_x.to_dict() if self.slot_x else None,
            "playerO": self.slot_o.to_dict() if self.slot_o else None,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity_at,
            "rematchVotes": [
                m.value for m in (self.marker_of(pid) for pid in self.rematch_votes) if m
            ],
        }

    def to_snapshot(self) -> Dict[str, object]:
        return {
            "roomId": self.room_id,
            "gameState": self.game.snapshot(),
            "playerX": self.slot_x.to_dict() if self.slot_x else None,
            "playerO": self.slot_o.to_dict() if self.slot_o else None,
            "createdAt": self.created_at,
            "lastActivity": self.last_activity_at,
            "status": self.status.value,
            "nextStarter": self.next_starter.value,
            "rematchVotes": list(self.rematch_votes),
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, object], clock: Clock = time.time) -> "Room":
        """Rebuild a room; raises ``KeyError``/``ValueError``/``TypeError`` on malformed data."""
        game = GameEngine()
        game.restore(data["gameState"])
        raw_x = data.get("playerX")
        raw_o = data.get("playerO")
        slot_x = PlayerSlot.from_dict(raw_x) if raw_x is not None else None
        slot_o = PlayerSlot.from_dict(raw_o) if raw_o is not None else None
        if slot_x is not None and slot_x.marker is not Marker.X:
            raise ValueError("playerX must carry marker X")
        if slot_o is not None and slot_o.marker is not Marker.O:
            raise ValueError("playerO must carry marker O")
        room_id = data["roomId"]
        if not isinstance(room_id, str) or not room_id:
            raise ValueError("roomId must be a non-empty string")
        return cls(
            room_id=room_id,
            game=game,
            slot_x=slot_x,
            slot_o=slot_o,
            status=RoomStatus(data["status"]),
            created_at=int(data["createdAt"]),
            last_activity_at=int(data["lastActivity"]),
            next_starter=Marker(data.get("nextStarter", Marker.O.value)),
            rematch_votes=[str(v) for v in data.get("rematchVotes", [])],
            clock=clock,
        )

    # ---- helpers ----

    def _now(self) -> int:
        return int(self.clock())
