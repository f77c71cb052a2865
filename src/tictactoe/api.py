"""FastAPI JSON API for room-based Tic-Tac-Toe."""

from __future__ import annotations

import re
import secrets
import time
from typing import Callable, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt, field_validator

from .config import Settings
from .errors import InvalidInput, RoomNotFound, TicTacToeError
from .game import GRID_SIZE
from .registry import RoomRegistry
from .room import Room
from .store import RoomStore

PLAYER_HEADER = "x-player-id"
PLAYER_COOKIE = "player_id"
MAX_NAME_LENGTH = 30
ROOM_ID_PATTERN = re.compile(r"^room-[a-zA-Z0-9]+$")

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, X-Player-Id",
}

router = APIRouter()


class NameRequest(BaseModel):
    """Optional display name sent when creating or joining a room."""

    name: Optional[str] = Field(default=None, max_length=MAX_NAME_LENGTH)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class MoveRequest(BaseModel):
    """Request payload for placing a marker in a room."""

    position: StrictInt = Field(ge=0, le=GRID_SIZE - 1)


# ---------- dependencies ----------


def get_registry(request: Request) -> RoomRegistry:
    """Fresh registry per request, reloaded from the store."""
    state = request.app.state
    settings: Settings = state.settings
    registry = RoomRegistry(
        state.store,
        clock=state.clock,
        finished_ttl=settings.finished_ttl,
        room_ttl=settings.room_ttl,
    )
    registry.load(presence_timeout=settings.presence_timeout)
    return registry


def get_player_id(request: Request, response: Response) -> str:
    for candidate in (request.headers.get(PLAYER_HEADER), request.cookies.get(PLAYER_COOKIE)):
        if candidate and candidate.strip():
            return candidate.strip()
    player_id = secrets.token_hex(16)
    response.set_cookie(PLAYER_COOKIE, player_id, httponly=True, samesite="lax")
    return player_id


def _now_ms(request: Request) -> int:
    return int(request.app.state.clock() * 1000)


def _require_room(registry: RoomRegistry, room_id: str) -> Room:
    if not ROOM_ID_PATTERN.match(room_id):
        raise InvalidInput("Invalid room id format")
    room = registry.get(room_id)
    if room is None:
        raise RoomNotFound()
    return room


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable room links."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")
    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")
    host = request.headers.get("host")
    if host:
        return f"{request.url.scheme}://{host}".rstrip("/")
    return str(request.base_url).rstrip("/")


# ---------- routes ----------


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/rooms", status_code=201)
def create_room(
    request: Request,
    body: Optional[NameRequest] = None,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = registry.create()
    slot = room.add_player(player_id, body.name if body else None)
    registry.save(room)
    base_url = _resolve_join_base_url(request)
    return {
        "success": True,
        "roomId": room.room_id,
        "joinUrl": f"{base_url}/room/{room.room_id}",
        "marker": slot.marker.value,
        "message": "Room created successfully",
    }


# Registered before /rooms/{room_id} so "stats" is not taken for a room id.
@router.get("/rooms/stats")
def room_stats(registry: RoomRegistry = Depends(get_registry)) -> Dict[str, object]:
    return {"success": True, "stats": registry.stats()}


@router.get("/rooms/{room_id}")
def get_room(room_id: str, registry: RoomRegistry = Depends(get_registry)) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    return {"success": True, "room": room.to_dict(), "gameState": room.game.snapshot()}


@router.get("/rooms/{room_id}/state")
def get_room_state(
    room_id: str,
    request: Request,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    if room.mark_seen(player_id):
        registry.save(room)
    return {
        "success": True,
        "state": room.game.snapshot(),
        "room": room.to_dict(),
        "timestamp": _now_ms(request),
    }


@router.post("/rooms/{room_id}/join")
def join_room(
    room_id: str,
    body: Optional[NameRequest] = None,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    slot = room.add_player(player_id, body.name if body else None)
    registry.save(room)
    return {
        "success": True,
        "message": "Joined room successfully",
        "marker": slot.marker.value,
        "room": room.to_dict(),
        "gameState": room.game.snapshot(),
    }


@router.post("/rooms/{room_id}/move")
def make_move(
    room_id: str,
    move: MoveRequest,
    request: Request,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    result = room.apply_move(player_id, move.position)
    registry.save(room)
    return {
        "success": True,
        "message": result.message,
        "state": result.state,
        "room": room.to_dict(),
        "timestamp": _now_ms(request),
    }


@router.post("/rooms/{room_id}/reset")
def vote_rematch(
    room_id: str,
    request: Request,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    both_voted = room.vote_rematch(player_id)
    registry.save(room)
    message = (
        "Game reset successfully"
        if both_voted
        else "Waiting for other player to vote for rematch"
    )
    return {
        "success": True,
        "message": message,
        "bothVoted": both_voted,
        "state": room.game.snapshot(),
        "room": room.to_dict(),
        "timestamp": _now_ms(request),
    }


@router.post("/rooms/{room_id}/leave")
def leave_room(
    room_id: str,
    registry: RoomRegistry = Depends(get_registry),
    player_id: str = Depends(get_player_id),
) -> Dict[str, object]:
    room = _require_room(registry, room_id)
    if room.leave(player_id):
        registry.save(room)
        return {"success": True, "message": "Left room successfully"}
    return {"success": True, "message": "You were not seated in this room"}


# ---------- application ----------


async def _handle_game_error(request: Request, exc: TicTacToeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body') or 'body'}: {err.get('msg')}"
        for err in exc.errors()
    )
    error = InvalidInput(details or None)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[RoomStore] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or Settings.from_env()
    app = FastAPI(title="Tic-Tac-Toe Rooms", description="Room-based Tic-Tac-Toe over JSON")
    app.state.settings = settings
    app.state.store = store if store is not None else settings.make_store()
    app.state.clock = clock

    app.add_exception_handler(TicTacToeError, _handle_game_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    @app.middleware("http")
    async def open_cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    app.include_router(router)
    return app


app = create_app()
