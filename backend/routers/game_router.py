"""
Room HTTP endpoints.

Routes:
  POST   /api/rooms                          — Create room + register host as first participant
  POST   /api/rooms/{code}/join              — Participant joins the lobby
  POST   /api/rooms/{code}/leave             — Participant leaves (any phase)
  POST   /api/rooms/{code}/bots              — Add one bot (lobby only)
  DELETE /api/rooms/{code}/bots/{bot_id}     — Remove a bot
  PATCH  /api/rooms/{code}/settings          — Host changes room settings (lobby only)
  POST   /api/rooms/{code}/start             — Host starts the game (role assignment, Day 1)
  POST   /api/rooms/{code}/vote              — Cast or change a vote (voting phase)
  POST   /api/rooms/{code}/night-action      — Kill / protect / investigate (night phase)
  POST   /api/rooms/{code}/reset             — Host returns a finished game to the lobby
  GET    /api/rooms/{code}                   — Public room state (roles hidden)
  DELETE /api/rooms/{code}                   — Host closes the room

Game errors propagate as GameError and are rendered by errors.register_error_handlers.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, Query

from models.game import (
    AddBotResponse, CreateRoomRequest, CreateRoomResponse,
    JoinRoomRequest, JoinRoomResponse, NightActionRequest,
    PlayerRequest, RoomSettings, UpdateSettingsRequest, VoteRequest, VoteResponse,
)
from agents.game_master import GameMaster, get_game_master

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


@router.post("/rooms", response_model=CreateRoomResponse, status_code=201)
async def create_room(body: CreateRoomRequest, gm: GameMaster = Depends(get_game_master)):
    """Create a new room and register the host as the first participant."""
    host_player_id = str(uuid.uuid4())
    room = gm.create_room(host_player_id, body.host_name, body.settings)
    logger.info(f"Room {room.code} created by host {host_player_id} ({body.host_name})")
    return CreateRoomResponse(room_code=room.code, host_player_id=host_player_id)


@router.post("/rooms/{code}/join", response_model=JoinRoomResponse)
async def join_room(code: str, body: JoinRoomRequest, gm: GameMaster = Depends(get_game_master)):
    """Add a participant to the lobby. Rejected once the game has started or the room is full."""
    player_id = str(uuid.uuid4())
    gm.join_room(code, player_id, body.player_name)
    room = gm.get_room(code)
    return JoinRoomResponse(player_id=player_id, room_code=room.code)


@router.post("/rooms/{code}/leave", status_code=204)
async def leave_room(code: str, body: PlayerRequest, gm: GameMaster = Depends(get_game_master)):
    gm.leave_room(code, body.player_id)


@router.post("/rooms/{code}/bots", response_model=AddBotResponse, status_code=201)
async def add_bot(
    code: str,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    gm.require_host(gm.get_room(code), host_player_id)
    bot = gm.add_bot(code)
    return AddBotResponse(bot_id=bot.id, name=bot.name)


@router.delete("/rooms/{code}/bots/{bot_id}", status_code=204)
async def remove_bot(
    code: str,
    bot_id: str,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    gm.require_host(gm.get_room(code), host_player_id)
    gm.remove_bot(code, bot_id)


@router.patch("/rooms/{code}/settings", response_model=RoomSettings)
async def update_settings(
    code: str,
    body: UpdateSettingsRequest,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    """Change lobby settings. Bots are added or trimmed to match."""
    return gm.update_settings(code, host_player_id, body.model_dump(exclude_none=True))


@router.post("/rooms/{code}/start")
async def start_game(
    code: str,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    """
    Host starts the game.
    - Assigns roles; private role cards go out over the WebSocket.
    - Moves the room to Day 1 and arms the countdown.
    """
    room = gm.start_game(code, host_player_id)
    return {
        "status": "started",
        "room_code": room.code,
        "phase": room.phase.value,
        "current_day": room.current_day,
    }


@router.post("/rooms/{code}/vote", response_model=VoteResponse)
async def submit_vote(code: str, body: VoteRequest, gm: GameMaster = Depends(get_game_master)):
    return VoteResponse(tally_size=gm.submit_vote(code, body.voter_id, body.target_id))


@router.post("/rooms/{code}/night-action")
async def submit_night_action(
    code: str, body: NightActionRequest, gm: GameMaster = Depends(get_game_master)
):
    """Record a night action. Detectives get their investigation result back directly."""
    investigation = gm.submit_night_action(code, body.actor_id, body.target_id)
    return {
        "accepted": True,
        "investigation": investigation.model_dump() if investigation else None,
    }


@router.post("/rooms/{code}/reset")
async def reset_game(
    code: str,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    gm.reset_game(code, host_player_id)
    return gm.snapshot(code)


@router.get("/rooms/{code}")
async def get_room(code: str, gm: GameMaster = Depends(get_game_master)):
    """
    Public room state.
    Roles are NOT included until the game has ended.
    """
    return gm.snapshot(code)


@router.delete("/rooms/{code}", status_code=204)
async def close_room(
    code: str,
    host_player_id: str = Query(..., description="Must match the room's host"),
    gm: GameMaster = Depends(get_game_master),
):
    gm.require_host(gm.get_room(code), host_player_id)
    gm.close_room(code, reason="closed by host")
