"""
WebSocket Hub — real-time multiplayer connection management.

URL: /ws/{room_code}?playerId={player_id}

Connection flow:
  1. Validate room + participant exist (close 4404 / 4403 otherwise)
  2. Accept, mark participant connected
  3. Send private "connected" message with the public room snapshot
  4. Broadcast "player_joined" to everyone else
  5. Message loop (_handle_message dispatcher)
  6. On disconnect: mark disconnected, broadcast "player_left"

Client → server message types:
  ping          — keep-alive heartbeat → responds with "pong"
  ready         — participant ready in lobby
  vote          — {targetId}, voting phase only
  night_action  — {targetId}, night phase only; detectives get "investigation" back
  chat          — {message}, up to 200 characters, fanned out to the room
  mafia_chat    — {message}, mafia members only, delivered to the mafia only

Server → client pushes come from RoomBroadcaster, the RoomNotifier the
GameMaster is wired to. Every push is scheduled with asyncio.create_task so
the game core never waits on a socket.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from config import Settings, settings as default_settings
from errors import GameError
from models.game import (
    ROLE_DESCRIPTIONS, Alignment, Investigation, NightResult, Participant, Phase, Room,
    VoteResult, WinResult,
)
from services.notifier import RoomNotifier
from agents.game_master import get_game_master

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks active WebSocket connections per room.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_code: {player_id: WebSocket}}
        self._rooms: Dict[str, Dict[str, WebSocket]] = {}

    async def connect(self, room_code: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._rooms.setdefault(room_code, {})[player_id] = ws
        logger.debug(f"[{room_code}] {player_id} connected ({self.count(room_code)} total)")

    def disconnect(self, room_code: str, player_id: str) -> None:
        conns = self._rooms.get(room_code, {})
        conns.pop(player_id, None)
        if not conns:
            self._rooms.pop(room_code, None)

    def count(self, room_code: str) -> int:
        return len(self._rooms.get(room_code, {}))

    async def send_to(self, room_code: str, player_id: str, message: Dict) -> None:
        """Send a private message to a single participant."""
        ws = self._rooms.get(room_code, {}).get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{room_code}] send_to {player_id} failed: {exc}")
                self.disconnect(room_code, player_id)

    async def broadcast(
        self, room_code: str, message: Dict, exclude: Optional[str] = None
    ) -> None:
        """Broadcast a message to all connected participants in a room."""
        for pid, ws in list(self._rooms.get(room_code, {}).items()):
            if pid == exclude:
                continue
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{room_code}] broadcast to {pid} failed: {exc}")
                self.disconnect(room_code, pid)


manager = ConnectionManager()


# ── Outbound notifications ─────────────────────────────────────────────────────

class RoomBroadcaster(RoomNotifier):
    """Turns game-core notifications into WebSocket pushes."""

    def __init__(self, connections: ConnectionManager, settings: Optional[Settings] = None):
        self.connections = connections
        # Replaced by the GameMaster's settings when the two are wired together
        self.settings = settings or default_settings
        self._pending: Set[asyncio.Task] = set()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _broadcast(self, room: Room, message: Dict[str, Any]) -> None:
        self._spawn(self.connections.broadcast(room.code, message))

    def _send(self, room: Room, player_id: str, message: Dict[str, Any]) -> None:
        self._spawn(self.connections.send_to(room.code, player_id, message))

    def phase_changed(self, room: Room, phase: Phase, reason: str) -> None:
        durations = {
            Phase.DAY: self.settings.day_duration,
            Phase.VOTING: self.settings.voting_duration,
            Phase.NIGHT: self.settings.night_duration,
        }
        self._broadcast(room, {
            "type": "phase_change",
            "phase": phase.value,
            "day": room.current_day,
            "reason": reason,
            "duration": durations.get(phase),
        })

    def phase_ending_early(self, room: Room, reason: str) -> None:
        self._broadcast(room, {
            "type": "phase_ended",
            "phase": room.phase.value,
            "reason": reason,
            "graceSeconds": self.settings.early_completion_grace,
        })

    def vote_recorded(self, room: Room, voter_id: str, target_id: str, is_bot: bool) -> None:
        self._broadcast(room, {
            "type": "vote_update",
            "voterId": voter_id,
            "targetId": target_id,
            "isBot": is_bot,
            "votesCast": len(room.votes),
            "aliveCount": len(room.alive_ids()),
        })

    def elimination(self, room: Room, result: VoteResult) -> None:
        victim = room.participants.get(result.eliminated) if result.eliminated else None
        self._broadcast(room, {
            "type": "elimination",
            "eliminatedId": result.eliminated,
            "name": victim.name if victim else None,
            "role": victim.role.value if victim and victim.role else None,
            "tie": result.tie,
            "tally": result.tally,
        })

    def night_resolved(self, room: Room, result: NightResult) -> None:
        victim = room.participants.get(result.killed) if result.killed else None
        self._broadcast(room, {
            "type": "night_result",
            "killedId": result.killed,
            "name": victim.name if victim else None,
            "saved": result.saved,
        })

    def game_over(self, room: Room, win: WinResult) -> None:
        self._broadcast(room, {
            "type": "game_over",
            "winner": win.winner.value,
            "reason": win.reason,
            "survivors": win.survivors,
            "totalDays": win.total_days,
            "roles": {p.id: p.role.value for p in room.participants.values() if p.role},
            "winStats": room.win_stats.model_dump(),
        })

    def roles_assigned(self, room: Room) -> None:
        # Role cards are private
        for p in room.humans():
            if p.role:
                self._send(room, p.id, {
                    "type": "role",
                    "role": p.role.value,
                    "description": ROLE_DESCRIPTIONS.get(p.role.value, ""),
                })

    def room_closed(self, room: Room, reason: Optional[str] = None) -> None:
        self._broadcast(room, {"type": "room_closed", "reason": reason})

    def settings_updated(self, room: Room) -> None:
        self._broadcast(room, {"type": "settings_updated", "settings": room.settings.model_dump()})

    def chat_message(self, room: Room, sender: Participant, text: str, mafia_only: bool) -> None:
        message = {
            "type": "mafia_chat" if mafia_only else "chat",
            "playerId": sender.id,
            "playerName": sender.name,
            "message": text,
        }
        if not mafia_only:
            self._broadcast(room, message)
            return
        for p in room.humans():
            if p.role and p.role.alignment == Alignment.MAFIA:
                self._send(room, p.id, message)


broadcaster = RoomBroadcaster(manager)


def _investigation_message(result: Investigation) -> Dict[str, Any]:
    return {
        "type": "investigation",
        "targetId": result.target_id,
        "isMafia": result.is_mafia,
    }


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_code}")
async def websocket_endpoint(
    ws: WebSocket,
    room_code: str,
    playerId: str = Query(..., description="Participant id from the join response"),
):
    gm = get_game_master()
    room_code = room_code.upper()

    room = gm.store.find_room(room_code)
    if room is None:
        await ws.close(code=4404, reason="Room not found")
        return
    player = room.participants.get(playerId)
    if player is None or player.is_bot:
        await ws.close(code=4403, reason="Player not found in this room")
        return

    await manager.connect(room_code, playerId, ws)
    player.connected = True

    await manager.send_to(room_code, playerId, {
        "type": "connected",
        "playerId": playerId,
        "role": player.role.value if player.role else None,
        "gameState": gm.snapshot(room_code),
    })
    await manager.broadcast(room_code, {
        "type": "player_joined",
        "playerId": playerId,
        "name": player.name,
        "count": manager.count(room_code),
    }, exclude=playerId)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await manager.send_to(room_code, playerId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue

            msg_type = data.get("type", "")
            # Clients send { type, data: { ... } }
            inner_data = data.get("data") if isinstance(data.get("data"), dict) else {}
            await _handle_message(room_code, playerId, msg_type, inner_data)

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(room_code, playerId)
        room = gm.store.find_room(room_code)
        if room is not None and playerId in room.participants:
            room.participants[playerId].connected = False
        await manager.broadcast(room_code, {
            "type": "player_left",
            "playerId": playerId,
            "count": manager.count(room_code),
        })


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(room_code: str, player_id: str, msg_type: str, data: Dict) -> None:
    try:
        await _dispatch_message(room_code, player_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        await manager.send_to(room_code, player_id, {
            "type": "error", "message": exc.message, "code": exc.code,
        })
    except Exception:
        logger.exception(f"[{room_code}] Unhandled error in _handle_message (type={msg_type})")
        await manager.send_to(room_code, player_id, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR",
        })


async def _dispatch_message(room_code: str, player_id: str, msg_type: str, data: Dict) -> None:
    if msg_type == "ping":
        await manager.send_to(room_code, player_id, {"type": "pong"})

    elif msg_type == "ready":
        await _on_ready(room_code, player_id)

    elif msg_type == "vote":
        get_game_master().submit_vote(room_code, player_id, _target_of(data))

    elif msg_type == "night_action":
        result = get_game_master().submit_night_action(room_code, player_id, _target_of(data))
        if result is not None:
            await manager.send_to(room_code, player_id, _investigation_message(result))

    elif msg_type in ("chat", "mafia_chat"):
        get_game_master().send_chat(
            room_code, player_id, str(data.get("message") or ""), mafia_only=msg_type == "mafia_chat",
        )

    else:
        await manager.send_to(room_code, player_id, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })


def _target_of(data: Dict) -> str:
    return str(data.get("targetId") or data.get("target_id") or "")


async def _on_ready(room_code: str, player_id: str) -> None:
    room = get_game_master().get_room(room_code)
    if room.phase == Phase.LOBBY and player_id in room.participants:
        room.participants[player_id].ready = True
        await manager.broadcast(room_code, {
            "type": "player_ready",
            "playerId": player_id,
            "readyCount": sum(1 for p in room.participants.values() if p.ready),
        })
