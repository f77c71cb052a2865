"""Tests for the FastAPI room interface."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tictactoe import registry as registry_module
from tictactoe.api import create_app
from tictactoe.config import Settings
from tictactoe.registry import FINISHED_ROOM_TTL_SECONDS
from tictactoe.store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(store, clock):
    app = create_app(settings=Settings(data_file=None), store=store, clock=clock)
    return TestClient(app)


def as_player(player_id: str) -> dict:
    return {"X-Player-Id": player_id}


def create_room(client, player_id="alice", name="Alice") -> str:
    response = client.post("/rooms", json={"name": name}, headers=as_player(player_id))
    assert response.status_code == 201
    return response.json()["roomId"]


def playing_room(client) -> str:
    room_id = create_room(client)
    joined = client.post(f"/rooms/{room_id}/join", json={"name": "Bob"}, headers=as_player("bob"))
    assert joined.status_code == 200
    return room_id


def move(client, room_id, player_id, position):
    return client.post(
        f"/rooms/{room_id}/move", json={"position": position}, headers=as_player(player_id)
    )


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_room_seats_creator_as_x(client):
    origin = "https://play.tictactoe.test"
    response = client.post("/rooms", headers={**as_player("alice"), "origin": origin})
    assert response.status_code == 201
    payload = response.json()
    assert payload["success"] is True
    assert payload["roomId"].startswith("room-")
    assert payload["joinUrl"] == f"{origin}/room/{payload['roomId']}"
    assert payload["message"] == "Room created successfully"
    assert payload["marker"] == "X"

    info = client.get(f"/rooms/{payload['roomId']}").json()
    assert info["room"]["status"] == "waiting"
    assert info["room"]["playerX"]["playerId"] == "alice"
    assert info["room"]["playerO"] is None
    assert info["gameState"]["board"] == [None] * 9


def test_join_url_respects_forwarded_headers(client):
    response = client.post(
        "/rooms",
        headers={
            **as_player("alice"),
            "x-forwarded-host": "tictactoe.example:8443",
            "x-forwarded-proto": "https",
        },
    )
    assert response.json()["joinUrl"].startswith("https://tictactoe.example:8443/room/room-")


def test_unknown_room_is_404(client):
    for response in (
        client.get("/rooms/room-nothere"),
        client.get("/rooms/room-nothere/state"),
        client.post("/rooms/room-nothere/join", headers=as_player("bob")),
        client.post("/rooms/room-nothere/reset", headers=as_player("bob")),
        client.post("/rooms/room-nothere/leave", headers=as_player("bob")),
        move(client, "room-nothere", "bob", 0),
    ):
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "ROOM_NOT_FOUND",
            "message": "Room not found",
        }


def test_malformed_room_id_is_invalid_input(client):
    response = client.get("/rooms/INVALID!")
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"


def test_end_to_end_scenario(client, monkeypatch):
    monkeypatch.setattr(registry_module.secrets, "token_hex", lambda nbytes: "abc123")
    room_id = create_room(client)
    assert room_id == "room-abc123"

    joined = client.post("/rooms/room-abc123/join", json={"name": "Bob"}, headers=as_player("bob"))
    payload = joined.json()
    assert payload["success"] is True
    assert payload["message"] == "Joined room successfully"
    assert payload["marker"] == "O"
    assert payload["room"]["status"] == "playing"

    first = move(client, "room-abc123", "alice", 0)
    assert first.status_code == 200
    state = first.json()["state"]
    assert state["board"][0] == "X"
    assert state["currentPlayer"] == "O"

    again = move(client, "room-abc123", "alice", 0)
    assert again.json()["success"] is False


def test_room_full(client):
    room_id = playing_room(client)
    response = client.post(f"/rooms/{room_id}/join", headers=as_player("carol"))
    assert response.status_code == 403
    assert response.json()["error"] == "ROOM_FULL"
    assert response.json()["message"] == "Room is full"


def test_join_without_body_uses_default_name(client):
    room_id = create_room(client)
    response = client.post(f"/rooms/{room_id}/join", headers=as_player("bob"))
    assert response.status_code == 200
    assert response.json()["room"]["playerO"]["name"] == "Player O"


def test_not_your_turn_leaves_board_unchanged(client):
    room_id = playing_room(client)
    response = move(client, room_id, "bob", 0)
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_YOUR_TURN"
    assert client.get(f"/rooms/{room_id}").json()["gameState"]["board"] == [None] * 9


def test_not_in_room(client):
    room_id = playing_room(client)
    response = move(client, room_id, "mallory", 0)
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_IN_ROOM"


def test_occupied_cell(client):
    room_id = playing_room(client)
    move(client, room_id, "alice", 4)
    response = move(client, room_id, "bob", 4)
    assert response.status_code == 409
    assert response.json()["error"] == "CELL_OCCUPIED"


def test_move_while_waiting(client):
    room_id = create_room(client)
    response = move(client, room_id, "alice", 0)
    assert response.status_code == 409
    assert response.json()["error"] == "WAITING_FOR_OPPONENT"


@pytest.mark.parametrize(
    "body",
    [{}, {"position": "1"}, {"position": 1.5}, {"position": True}, {"position": 9}, {"position": -1}],
)
def test_invalid_position(client, body):
    room_id = playing_room(client)
    response = client.post(f"/rooms/{room_id}/move", json=body, headers=as_player("alice"))
    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["error"] == "INVALID_INPUT"


def test_move_without_body(client):
    room_id = playing_room(client)
    response = client.post(f"/rooms/{room_id}/move", headers=as_player("alice"))
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_INPUT"


def test_state_endpoint(client, clock):
    room_id = playing_room(client)
    response = client.get(f"/rooms/{room_id}/state", headers=as_player("alice"))
    payload = response.json()
    assert payload["success"] is True
    assert payload["timestamp"] == int(clock.now * 1000)
    assert payload["state"]["currentPlayer"] == "X"
    assert payload["room"]["playerO"]["playerId"] == "bob"

    clock.advance(1.5)
    later = client.get(f"/rooms/{room_id}/state", headers=as_player("bob")).json()
    assert later["timestamp"] > payload["timestamp"]


def test_winning_game_finishes_room(client):
    room_id = playing_room(client)
    for player, position in [("alice", 0), ("bob", 3), ("alice", 1), ("bob", 4)]:
        assert move(client, room_id, player, position).status_code == 200
    final = move(client, room_id, "alice", 2).json()
    assert final["state"]["state"] == "won"
    assert final["state"]["winner"] == "X"
    assert final["room"]["status"] == "finished"

    late = move(client, room_id, "bob", 8)
    assert late.status_code == 409
    assert late.json()["error"] == "GAME_OVER"


def test_rematch_requires_both_votes(client):
    room_id = playing_room(client)
    for player, position in [("alice", 0), ("bob", 3), ("alice", 1), ("bob", 4), ("alice", 2)]:
        move(client, room_id, player, position)

    first = client.post(f"/rooms/{room_id}/reset", headers=as_player("alice")).json()
    assert first["success"] is True
    assert first["bothVoted"] is False
    assert first["message"] == "Waiting for other player to vote for rematch"
    assert first["state"]["board"][:3] == ["X", "X", "X"]

    second = client.post(f"/rooms/{room_id}/reset", headers=as_player("bob")).json()
    assert second["bothVoted"] is True
    assert second["message"] == "Game reset successfully"
    assert second["state"]["board"] == [None] * 9
    assert second["state"]["currentPlayer"] == "O"
    assert second["room"]["status"] == "playing"


def test_rematch_by_outsider(client):
    room_id = playing_room(client)
    response = client.post(f"/rooms/{room_id}/reset", headers=as_player("mallory"))
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_IN_ROOM"


def test_leave_finishes_room(client):
    room_id = playing_room(client)
    response = client.post(f"/rooms/{room_id}/leave", headers=as_player("bob"))
    assert response.json() == {"success": True, "message": "Left room successfully"}
    room = client.get(f"/rooms/{room_id}").json()["room"]
    assert room["status"] == "finished"
    assert room["playerO"]["isConnected"] is False


def test_stats(client):
    create_room(client)
    playing_room(client)
    response = client.get("/rooms/stats")
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "stats": {"total": 2, "active": 1, "waiting": 1, "finished": 0},
    }


def test_finished_rooms_expire_on_next_request(client, clock):
    room_id = playing_room(client)
    client.post(f"/rooms/{room_id}/leave", headers=as_player("alice"))
    clock.advance(FINISHED_ROOM_TTL_SECONDS + 1)
    assert client.get(f"/rooms/{room_id}").status_code == 404


def test_state_is_shared_through_the_store(store, clock):
    """Two app instances over one store behave like two server processes."""
    first = TestClient(create_app(settings=Settings(data_file=None), store=store, clock=clock))
    second = TestClient(create_app(settings=Settings(data_file=None), store=store, clock=clock))
    room_id = playing_room(first)
    assert move(second, room_id, "alice", 8).status_code == 200
    assert first.get(f"/rooms/{room_id}").json()["gameState"]["board"][8] == "X"


def test_cookie_identity_fallback(client):
    response = client.post("/rooms")
    assert response.status_code == 201
    cookie = response.cookies.get("player_id")
    assert cookie
    room_id = response.json()["roomId"]
    info = client.get(f"/rooms/{room_id}").json()
    assert info["room"]["playerX"]["playerId"] == cookie


def test_blank_player_header_falls_back_to_generated_id(client):
    response = client.post("/rooms", headers={"X-Player-Id": "   "})
    assert response.status_code == 201
    cookie = response.cookies.get("player_id")
    assert cookie and cookie.strip()
    room_id = response.json()["roomId"]
    seat = client.get(f"/rooms/{room_id}").json()["room"]["playerX"]
    assert seat["playerId"] == cookie


def test_options_preflight(client):
    response = client.options("/rooms")
    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"


def test_cors_header_on_regular_responses(client):
    assert client.get("/health").headers["access-control-allow-origin"] == "*"
