"""Business errors surfaced to API callers with a stable machine-readable code."""

from __future__ import annotations

from typing import Dict, Optional


class TicTacToeError(Exception):
    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, object]:
        return {"success": False, "error": self.code, "message": self.message}


class InvalidInput(TicTacToeError):
    code = "INVALID_INPUT"
    status_code = 400
    default_message = "Invalid input"


class RoomNotFound(TicTacToeError):
    code = "ROOM_NOT_FOUND"
    status_code = 404
    default_message = "Room not found"


class RoomFull(TicTacToeError):
    code = "ROOM_FULL"
    status_code = 403
    default_message = "Room is full"


class NotInRoom(TicTacToeError):
    code = "NOT_IN_ROOM"
    status_code = 403
    default_message = "You are not a player in this room"


class NotYourTurn(TicTacToeError):
    code = "NOT_YOUR_TURN"
    status_code = 403
    default_message = "Not your turn"


class CellOccupied(TicTacToeError):
    code = "CELL_OCCUPIED"
    status_code = 409
    default_message = "Cell is already occupied"


class GameOver(TicTacToeError):
    code = "GAME_OVER"
    status_code = 409
    default_message = "Game is already over"


class WaitingForOpponent(TicTacToeError):
    code = "WAITING_FOR_OPPONENT"
    status_code = 409
    default_message = "Waiting for an opponent to join"
