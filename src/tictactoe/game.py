"""Core rules for a single game of Tic-Tac-Toe."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

GRID_SIZE = 9

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    # Rows
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    # Columns
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    # Diagonals
    (0, 4, 8),
    (2, 4, 6),
)


class Marker(str, Enum):
    X = "X"
    O = "O"

    def opposite(self) -> "Marker":
        return Marker.O if self is Marker.X else Marker.X


class GameStatus(str, Enum):
    PLAYING = "playing"
    WON = "won"
    DRAW = "draw"


class MoveRejection(str, Enum):
    GAME_OVER = "game over"
    NOT_YOUR_TURN = "not your turn"
    CELL_OCCUPIED = "cell occupied"


class OutOfRange(IndexError):
    """Raised for a board position outside ``[0, 9)``."""


# ---------- Acting context ----------


@dataclass(frozen=True)
class Anonymous:
    """Trusted caller: the move is played for whoever's turn it is."""


@dataclass(frozen=True)
class AsPlayer:
    player_id: str
    marker: Marker


Actor = Union[Anonymous, AsPlayer]

ANONYMOUS = Anonymous()


# ---------- Board ----------


@dataclass
class Board:
    cells: List[Optional[Marker]] = field(default_factory=lambda: [None] * GRID_SIZE)

    def reset(self) -> None:
        self.cells = [None] * GRID_SIZE

    def get(self, position: int) -> Optional[Marker]:
        self._validate(position)
        return self.cells[position]

    def set(self, position: int, marker: Marker) -> bool:
        """Place ``marker``; returns False when the cell is already taken."""
        self._validate(position)
        if self.cells[position] is not None:
            return False
        self.cells[position] = marker
        return True

    def is_full(self) -> bool:
        return all(c is not None for c in self.cells)

    def is_empty(self, position: int) -> bool:
        self._validate(position)
        return self.cells[position] is None

    def _validate(self, position: int) -> None:
        if not 0 <= position < GRID_SIZE:
            raise OutOfRange(f"Position must be between 0 and {GRID_SIZE - 1}")


# ---------- Game ----------


@dataclass
class MoveResult:
    success: bool
    message: str
    state: Dict[str, object]
    reason: Optional[MoveRejection] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "success": self.success,
            "message": self.message,
            "state": self.state,
        }
        if self.reason is not None:
            payload["reason"] = self.reason.value
        return payload


@dataclass
class GameEngine:
    board: Board = field(default_factory=Board)
    current_player: Marker = Marker.X
    status: GameStatus = GameStatus.PLAYING
    winner: Optional[Marker] = None

    # ---- API used by rooms & local play ----

    def apply_move(self, position: int, actor: Actor = ANONYMOUS) -> MoveResult:
        if self.status is not GameStatus.PLAYING:
            return self._reject(MoveRejection.GAME_OVER, "Game is already over")

        if isinstance(actor, AsPlayer) and not self.can_player_move(actor.marker):
            return self._reject(MoveRejection.NOT_YOUR_TURN, "Not your turn")

        if not self.board.set(position, self.current_player):
            return self._reject(MoveRejection.CELL_OCCUPIED, "Cell is already occupied")

        winner = self.check_winner()
        if winner is not None:
            self.status = GameStatus.WON
            self.winner = winner
            return MoveResult(True, f"Player {winner.value} wins!", self.snapshot())

        if self.board.is_full():
            self.status = GameStatus.DRAW
            return MoveResult(True, "Game is a draw", self.snapshot())

        self.current_player = self.current_player.opposite()
        return MoveResult(
            True, f"Player {self.current_player.value}'s turn", self.snapshot()
        )

    def check_winner(self) -> Optional[Marker]:
        cells = self.board.cells
        for a, b, c in WINNING_LINES:
            v = cells[a]
            if v is not None and v == cells[b] == cells[c]:
                return v
        return None

    def can_player_move(self, marker: Marker) -> bool:
        return self.status is GameStatus.PLAYING and self.current_player is marker

    def reset(self, starting_marker: Marker = Marker.X) -> None:
        self.board.reset()
        self.current_player = starting_marker
        self.status = GameStatus.PLAYING
        self.winner = None

    def snapshot(self) -> Dict[str, object]:
        return {
            "board": [c.value if c is not None else None for c in self.board.cells],
            "currentPlayer": self.current_player.value,
            "state": self.status.value,
            "winner": self.winner.value if self.winner is not None else None,
        }

    def restore(self, snapshot: Dict[str, object]) -> None:
        """Load a persisted snapshot verbatim; legality is not re-checked.

        Raises ``ValueError``/``KeyError``/``TypeError`` for malformed input
        and leaves the engine untouched in that case.
        """
        raw_cells = snapshot["board"]
        if not isinstance(raw_cells, list) or len(raw_cells) != GRID_SIZE:
            raise ValueError("Snapshot board must hold 9 cells")
        cells = [Marker(c) if c is not None else None for c in raw_cells]
        current = Marker(snapshot["currentPlayer"])
        status = GameStatus(snapshot["state"])
        raw_winner = snapshot.get("winner")
        winner = Marker(raw_winner) if raw_winner is not None else None

        self.board.cells = cells
        self.current_player = current
        self.status = status
        self.winner = winner

    # ---- helpers ----

    def _reject(self, reason: MoveRejection, message: str) -> MoveResult:
        return MoveResult(False, message, self.snapshot(), reason)
