"""HTTP client and polling synchronizer for a room hosted by the API server."""

from __future__ import annotations

import logging
import re
import secrets
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx

from .game import GRID_SIZE, GameStatus, Marker

logger = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL = 1.5  # seconds
DEFAULT_MAX_RETRIES = 5
PLAYER_HEADER = "X-Player-Id"

_ROOM_ID_RE = re.compile(r"^room-[a-zA-Z0-9]+$")
_ROOM_PATH_RE = re.compile(r"/room/(room-[a-zA-Z0-9]+)")


def is_valid_room_id(room_id: Optional[str]) -> bool:
    if not room_id or not isinstance(room_id, str):
        return False
    return bool(_ROOM_ID_RE.match(room_id.strip()))


def extract_room_id(text: Optional[str]) -> Optional[str]:
    """Pull a room id out of a bare code, a ``/room/<id>`` path, or a full join URL."""
    if not text or not isinstance(text, str):
        return None
    trimmed = text.strip()
    if _ROOM_ID_RE.match(trimmed):
        return trimmed
    match = _ROOM_PATH_RE.search(trimmed)
    return match.group(1) if match else None


class ApiError(Exception):
    """Non-2xx answer from the server, carrying its machine-readable code."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(f"{status_code} {code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message

    @property
    def transient(self) -> bool:
        return self.status_code >= 500


class RoomApiClient:
    """Thin wrapper over the JSON API. Every call identifies the caller by ``player_id``."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        player_id: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        timeout: float = 5.0,
    ) -> None:
        self.player_id = player_id or secrets.token_hex(16)
        self._owns_http = http is None
        self._http = http if http is not None else httpx.Client(base_url=base_url, timeout=timeout)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._http.request(
            method, path, json=json, headers={PLAYER_HEADER: self.player_id}
        )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.is_error:
            raise ApiError(
                response.status_code,
                str(payload.get("error", "HTTP_ERROR")),
                str(payload.get("message") or response.reason_phrase),
            )
        return payload

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health")

    def create_room(self, name: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/rooms", json={"name": name} if name else None)

    def get_room(self, room_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/rooms/{room_id}")

    def get_room_state(self, room_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/rooms/{room_id}/state")

    def join_room(self, room_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", f"/rooms/{room_id}/join", json={"name": name} if name else None)

    def make_move(self, room_id: str, position: int) -> Dict[str, Any]:
        return self._request("POST", f"/rooms/{room_id}/move", json={"position": position})

    def vote_rematch(self, room_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/rooms/{room_id}/reset")

    def leave_room(self, room_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/rooms/{room_id}/leave")

    def stats(self) -> Dict[str, Any]:
        return self._request("GET", "/rooms/stats")


class SyncStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SYNCING = "syncing"
    ERROR = "error"
    DISCONNECTED = "disconnected"


def initial_game_state() -> Dict[str, Any]:
    return {
        "board": [None] * GRID_SIZE,
        "currentPlayer": Marker.X.value,
        "state": GameStatus.PLAYING.value,
        "winner": None,
    }


class ClientSyncController:
    """Keeps a local view of one room in step with the server by polling.

    The server is authoritative. Responses are accepted only when their
    ``timestamp`` is strictly newer than the last accepted one, so a slow
    request overtaken by a fresher one cannot roll the view back. Polling
    stops on its own once the game is over and halts after ``max_retries``
    consecutive failed polls until :meth:`refresh` is called.
    """

    def __init__(
        self,
        api: RoomApiClient,
        room_id: Optional[str],
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        on_game_end: Optional[Callable[[Dict[str, Any]], None]] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.room_id = room_id
        self.player_id = api.player_id
        self.polling_interval = polling_interval
        self.max_retries = max_retries
        self.on_game_end = on_game_end
        self._timer_factory = timer_factory
        self._clock = clock

        self.game_state: Dict[str, Any] = initial_game_state()
        self.room_info: Optional[Dict[str, Any]] = None
        self.sync_status = SyncStatus.CONNECTING if room_id else SyncStatus.DISCONNECTED
        self.error: Optional[str] = None
        self.last_sync_time: Optional[float] = None
        self.last_timestamp = 0
        self.retry_count = 0

        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._closed = False

    # ---- derived state ----

    @property
    def my_marker(self) -> Optional[Marker]:
        info = self.room_info
        if not info:
            return None
        for key, marker in (("playerX", Marker.X), ("playerO", Marker.O)):
            seat = info.get(key)
            if seat and seat.get("playerId") == self.player_id:
                return marker
        return None

    @property
    def is_my_turn(self) -> bool:
        marker = self.my_marker
        return (
            marker is not None
            and self.game_state.get("currentPlayer") == marker.value
            and self.game_state.get("state") == GameStatus.PLAYING.value
        )

    @property
    def opponent_connected(self) -> bool:
        info = self.room_info
        if not info:
            return False
        opponent_key = "playerO" if self.my_marker is Marker.X else "playerX"
        seat = info.get(opponent_key)
        return bool(seat and seat.get("isConnected"))

    @property
    def is_polling(self) -> bool:
        return self._timer is not None

    # ---- lifecycle ----

    def start(self) -> None:
        """Issue the first fetch and begin polling."""
        if not self.room_id:
            self.sync_status = SyncStatus.DISCONNECTED
            return
        self.sync_status = SyncStatus.CONNECTING
        self.fetch()
        self._schedule()

    def close(self) -> None:
        """Stop polling; results of requests still in flight are dropped."""
        with self._lock:
            self._closed = True
            self._cancel_timer()

    def refresh(self) -> bool:
        """Manual retry, the only way out of ``error``."""
        if not self.room_id or self._closed:
            return False
        with self._lock:
            if self.sync_status is SyncStatus.ERROR:
                self.sync_status = SyncStatus.CONNECTING
                self.retry_count = 0
            else:
                self.sync_status = SyncStatus.SYNCING
        ok = self.fetch()
        self._schedule()
        return ok

    # ---- network ----

    def fetch(self) -> bool:
        if not self.room_id or self._closed:
            return False
        with self._lock:
            if self.sync_status is SyncStatus.CONNECTED:
                self.sync_status = SyncStatus.SYNCING

        try:
            response = self.api.get_room_state(self.room_id)
        except ApiError as exc:
            if exc.transient:
                self._record_failure(exc)
            else:
                self._fail(exc.message)
            return False
        except httpx.HTTPError as exc:
            self._record_failure(exc)
            return False

        with self._lock:
            if self._closed:
                return False
            self._accept(response, allow_equal=False)
            self.sync_status = SyncStatus.CONNECTED
            self.error = None
            self.retry_count = 0
        return True

    def make_move(self, position: int) -> bool:
        """Submit a move. Returns False without any request when it is not our turn."""
        if not self.room_id or self._closed or not self.is_my_turn:
            return False
        with self._lock:
            self.sync_status = SyncStatus.SYNCING

        try:
            response = self.api.make_move(self.room_id, position)
        except ApiError as exc:
            with self._lock:
                self.error = exc.message
                self.sync_status = SyncStatus.CONNECTED
            self._schedule()
            return False
        except httpx.HTTPError as exc:
            logger.warning("Move in room %s failed: %s", self.room_id, exc)
            self._fail("Failed to make move. Please try again.")
            return False

        with self._lock:
            if self._closed:
                return False
            self._accept(response, allow_equal=True)
            self.sync_status = SyncStatus.CONNECTED
            self.error = None
            self.retry_count = 0
        self._schedule()
        return True

    def vote_rematch(self) -> bool:
        """Vote for a rematch; returns True once both players voted."""
        if not self.room_id or self._closed:
            return False
        try:
            response = self.api.vote_rematch(self.room_id)
        except ApiError as exc:
            self.error = exc.message
            return False
        except httpx.HTTPError as exc:
            logger.warning("Rematch vote in room %s failed: %s", self.room_id, exc)
            self.error = "Failed to vote for a rematch."
            return False
        with self._lock:
            if self._closed:
                return False
            self._accept(response, allow_equal=True)
        self._schedule()
        return bool(response.get("bothVoted"))

    def leave(self) -> None:
        if self.room_id and not self._closed:
            try:
                self.api.leave_room(self.room_id)
            finally:
                self.close()

    # ---- helpers ----

    def _accept(self, response: Dict[str, Any], allow_equal: bool) -> bool:
        timestamp = int(response.get("timestamp") or 0)
        fresher = timestamp > self.last_timestamp or (allow_equal and timestamp >= self.last_timestamp)
        if not fresher:
            return False
        was_playing = self.game_state.get("state") == GameStatus.PLAYING.value
        self.last_timestamp = timestamp
        if response.get("state") is not None:
            self.game_state = response["state"]
        if response.get("room") is not None:
            self.room_info = response["room"]
        self.last_sync_time = self._clock()

        if was_playing and self.game_state.get("state") != GameStatus.PLAYING.value:
            self._cancel_timer()
            if self.on_game_end is not None:
                self.on_game_end(self.game_state)
        return True

    def _record_failure(self, exc: Exception) -> None:
        with self._lock:
            if self._closed:
                return
            self.retry_count += 1
            logger.warning(
                "Poll of room %s failed (%d/%d): %s",
                self.room_id,
                self.retry_count,
                self.max_retries,
                exc,
            )
            if self.retry_count >= self.max_retries:
                self._fail("Connection lost. Please check your network.")
            else:
                self.sync_status = SyncStatus.SYNCING

    def _fail(self, message: str) -> None:
        with self._lock:
            if self._closed:
                return
            logger.error("Sync of room %s halted: %s", self.room_id, message)
            self.sync_status = SyncStatus.ERROR
            self.error = message
            self._cancel_timer()

    def _schedule(self) -> None:
        with self._lock:
            self._cancel_timer()
            if (
                self._closed
                or not self.room_id
                or self.sync_status is SyncStatus.ERROR
                or self.game_state.get("state") != GameStatus.PLAYING.value
            ):
                return
            timer = self._timer_factory(self.polling_interval, self._tick)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _tick(self) -> None:
        with self._lock:
            self._timer = None
        self.fetch()
        self._schedule()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
