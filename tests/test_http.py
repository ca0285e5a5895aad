import random

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import agents.game_master as game_master_module
from config import Settings
from errors import GameError, InvalidSettings
from main import app
from agents.game_master import GameMaster
from services.room_store import RoomStore

from conftest import RecordingNotifier


@pytest.fixture
def gm(monkeypatch):
    # Long countdowns: nothing fires while a test drives the API
    master = GameMaster(RoomStore(random.Random(3)), notifier=RecordingNotifier(), settings=Settings())
    monkeypatch.setattr(game_master_module, "_game_master", master)
    return master


@pytest.fixture
def client(gm):
    # The context manager keeps one event loop alive across requests
    with TestClient(app) as c:
        yield c


def _create(client, **settings):
    resp = client.post("/api/rooms", json={"host_name": "Alice", "settings": settings})
    assert resp.status_code == 201
    body = resp.json()
    return body["room_code"], body["host_player_id"]


def _fill(client, code, names=("Bob", "Carol", "Dave")):
    ids = []
    for name in names:
        resp = client.post(f"/api/rooms/{code}/join", json={"player_name": name})
        assert resp.status_code == 200
        ids.append(resp.json()["player_id"])
    return ids


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_create_and_read_room(client):
    code, host = _create(client)
    assert len(code) == 6

    state = client.get(f"/api/rooms/{code}").json()
    assert state["phase"] == "lobby"
    assert state["hostId"] == host
    assert [p["name"] for p in state["players"]] == ["Alice"]
    assert "role" not in state["players"][0]


def test_room_codes_are_case_insensitive(client):
    code, _ = _create(client)
    assert client.get(f"/api/rooms/{code.lower()}").status_code == 200


def test_unknown_room_is_404_with_error_code(client):
    resp = client.get("/api/rooms/NOPE42")
    assert resp.status_code == 404
    assert resp.json() == {"error": {"code": "ROOM_NOT_FOUND", "message": "Room NOPE42 not found"}}


def test_error_codes_default_per_class_and_can_be_overridden():
    assert InvalidSettings("bad").code == "INVALID_SETTINGS"
    assert GameError("plain").code == "GAME_ERROR"
    assert GameError("odd", code="CUSTOM").code == "CUSTOM"


def test_bots_can_be_added_and_removed_by_host(client):
    code, host = _create(client)
    resp = client.post(f"/api/rooms/{code}/bots", params={"host_player_id": host})
    assert resp.status_code == 201
    bot = resp.json()
    assert bot["name"].startswith("AI ")

    players = client.get(f"/api/rooms/{code}").json()["players"]
    assert any(p["id"] == bot["bot_id"] and p["isBot"] for p in players)

    resp = client.delete(f"/api/rooms/{code}/bots/{bot['bot_id']}", params={"host_player_id": host})
    assert resp.status_code == 204
    assert len(client.get(f"/api/rooms/{code}").json()["players"]) == 1

    resp = client.delete(f"/api/rooms/{code}/bots/{host}", params={"host_player_id": host})
    assert resp.status_code == 404


def test_start_requires_host_and_enough_players(client):
    code, host = _create(client)
    bob, _, _ = _fill(client, code)

    resp = client.post(f"/api/rooms/{code}/start", params={"host_player_id": bob})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "NOT_HOST"

    resp = client.post(f"/api/rooms/{code}/start", params={"host_player_id": host})
    assert resp.status_code == 200
    assert resp.json()["phase"] == "day"
    assert resp.json()["current_day"] == 1

    resp = client.post(f"/api/rooms/{code}/join", json={"player_name": "Late"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "WRONG_PHASE"


def test_vote_outside_voting_is_rejected(client):
    code, host = _create(client)
    bob, _, _ = _fill(client, code)
    client.post(f"/api/rooms/{code}/start", params={"host_player_id": host})

    resp = client.post(f"/api/rooms/{code}/vote", json={"voter_id": host, "target_id": bob})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "WRONG_PHASE"


def test_votes_over_http_during_voting(client, gm):
    code, host = _create(client)
    bob, carol, dave = _fill(client, code)
    client.post(f"/api/rooms/{code}/start", params={"host_player_id": host})
    # countdowns live on the client's event loop
    client.portal.call(gm._enter_voting, gm.get_room(code), "test")

    resp = client.post(f"/api/rooms/{code}/vote", json={"voter_id": host, "target_id": bob})
    assert resp.json() == {"tally_size": 1}

    resp = client.post(f"/api/rooms/{code}/vote", json={"voter_id": bob, "target_id": bob})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "SELF_VOTE"

    resp = client.post(f"/api/rooms/{code}/vote", json={"voter_id": bob, "target_id": "ghost"})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "UNKNOWN_TARGET"

    assert client.get(f"/api/rooms/{code}").json()["votesCast"] == 1


def test_leave_and_close(client):
    code, host = _create(client)
    bob, _, _ = _fill(client, code)

    assert client.post(f"/api/rooms/{code}/leave", json={"player_id": bob}).status_code == 204
    assert client.post(f"/api/rooms/{code}/leave", json={"player_id": bob}).status_code == 404

    assert client.delete(f"/api/rooms/{code}", params={"host_player_id": host}).status_code == 204
    assert client.get(f"/api/rooms/{code}").status_code == 404


def test_websocket_connect_ping_and_errors(client):
    code, host = _create(client)

    with client.websocket_connect(f"/ws/{code}?playerId={host}") as ws:
        hello = ws.receive_json()
        assert hello["type"] == "connected"
        assert hello["gameState"]["roomCode"] == code

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"type": "vote", "data": {"targetId": host}})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "WRONG_PHASE"

        ws.send_text("not json")
        assert ws.receive_json()["code"] == "PARSE_ERROR"

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["code"] == "UNKNOWN_TYPE"


def test_websocket_rejects_unknown_room(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/NOPE42?playerId=x") as ws:
            ws.receive_json()
    assert exc.value.code == 4404


def test_host_patches_lobby_settings(client, gm):
    code, host = _create(client)
    bob, _, _ = _fill(client, code)

    resp = client.patch(f"/api/rooms/{code}/settings", params={"host_player_id": bob}, json={"bot_count": 2})
    assert resp.status_code == 403

    resp = client.patch(
        f"/api/rooms/{code}/settings", params={"host_player_id": host},
        json={"max_players": 6, "mafia_count": 3},
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "INVALID_SETTINGS"

    resp = client.patch(
        f"/api/rooms/{code}/settings", params={"host_player_id": host},
        json={"max_players": 6, "enable_bots": True, "bot_count": 2},
    )
    assert resp.status_code == 200
    assert resp.json() == {"max_players": 6, "mafia_count": 1, "enable_bots": True, "bot_count": 2}
    assert len(client.get(f"/api/rooms/{code}").json()["players"]) == 6
    assert gm.notifier.named("settings_updated")

    client.post(f"/api/rooms/{code}/start", params={"host_player_id": host})
    resp = client.patch(f"/api/rooms/{code}/settings", params={"host_player_id": host}, json={"bot_count": 0})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "WRONG_PHASE"


def test_websocket_chat_and_mafia_chat(client, gm):
    code, host = _create(client)
    bob, _, _ = _fill(client, code)

    with client.websocket_connect(f"/ws/{code}?playerId={bob}") as ws:
        assert ws.receive_json()["type"] == "connected"

        ws.send_json({"type": "chat", "data": {"message": " evening all "}})
        ws.send_json({"type": "chat", "data": {"message": "x" * 201}})
        assert ws.receive_json()["code"] == "INVALID_MESSAGE"

        ws.send_json({"type": "mafia_chat", "data": {"message": "psst"}})
        assert ws.receive_json()["code"] == "NOT_MAFIA"

    assert gm.notifier.named("chat_message") == [(bob, "evening all", False)]
