"""Room-based Tic-Tac-Toe: game rules, rooms, the JSON API, and a polling client."""

from .api import app, create_app
from .client import ClientSyncController, RoomApiClient, SyncStatus
from .game import GameEngine, Marker
from .registry import RoomRegistry
from .room import Room

__all__ = [
    "ClientSyncController",
    "GameEngine",
    "Marker",
    "Room",
    "RoomApiClient",
    "RoomRegistry",
    "SyncStatus",
    "app",
    "create_app",
]
