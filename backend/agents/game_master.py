"""
Game Master — pure deterministic Python, no I/O.

Responsibilities:
- Room lifecycle (create, join, leave, bots, settings, start, reset, close)
- Chat validation; mafia chat only reaches the mafia
- The single vote entry point shared by humans and bots
- Phase transitions (Lobby → Day → Voting → Night → Day …, or → Ended)
- Vote and night resolution, eliminations, win condition checks

Every public method is synchronous and runs to completion before the event
loop can interleave another handler, so room state is never observed half
updated. The only suspension points are the timers held by PhaseScheduler and
BotDecisionEngine, and both follow cancel-then-rearm.
"""
import functools
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from config import Settings, settings as default_settings
from errors import (
    CannotStart, InvalidMessage, InvalidPhase, InvalidSettings, NotHost, NotMafia,
    ParticipantNotFound, RoomFull, RoomNotFound,
)
from models.game import (
    Alignment, GameSnapshot, Investigation, NightActionLog, Participant, Phase, Room,
    RoomSettings, WinResult,
)
from agents.bot_engine import BotDecisionEngine
from agents.event_bus import GameEventBus, GameEventType
from agents.night_actions import night_actions
from agents.phase_scheduler import (
    PhaseScheduler, REASON_ALL_VOTED, REASON_NIGHT_COMPLETE,
)
from agents.role_assigner import RoleAssigner, max_mafia_for
from agents.vote_tally import vote_tally
from services.notifier import RoomNotifier
from services.room_store import RoomStore, get_room_store

logger = logging.getLogger(__name__)

REASON_GAME_STARTED = "game started"
REASON_RESET = "reset"
MAX_CHAT_LENGTH = 200


@dataclass
class RoomRuntime:
    """Per-room collaborators that are not part of the room's data."""
    bus: GameEventBus
    engine: BotDecisionEngine


class GameMaster:

    def __init__(
        self,
        store: Optional[RoomStore] = None,
        notifier: Optional[RoomNotifier] = None,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
        bot_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.store = store or get_room_store()
        self.notifier = notifier or RoomNotifier()
        self.settings = settings or default_settings
        self.scheduler = PhaseScheduler(self.settings)
        self.tally = vote_tally
        self.night = night_actions
        self.roles = RoleAssigner(rng)
        self._rng = rng
        self._bot_sleep = bot_sleep
        self._runtimes: Dict[str, RoomRuntime] = {}

    # ── Lookups ───────────────────────────────────────────────────────────────

    def get_room(self, code: str) -> Room:
        return self.store.get_room(code)

    def _runtime(self, code: str) -> RoomRuntime:
        runtime = self._runtimes.get(code.upper())
        if runtime is None:
            raise RoomNotFound(f"Room {code} not found")
        return runtime

    def require_host(self, room: Room, requester_id: str) -> None:
        if requester_id not in room.participants:
            raise ParticipantNotFound(f"{requester_id} is not in room {room.code}")
        if requester_id != room.host_id:
            raise NotHost("Only the room host can do that")

    def engine_for(self, code: str) -> BotDecisionEngine:
        return self._runtime(code).engine

    def bus_for(self, code: str) -> GameEventBus:
        return self._runtime(code).bus

    # ── Room lifecycle ────────────────────────────────────────────────────────

    def create_room(
        self, host_id: str, host_name: str, room_settings: Optional[RoomSettings] = None
    ) -> Room:
        room = self.store.create_room(host_id, room_settings)
        room.participants[host_id] = Participant(id=host_id, name=host_name)

        engine = BotDecisionEngine(room.code, rng=self._rng, sleep=self._bot_sleep)
        bus = GameEventBus(room.code)
        bus.subscribe(engine.on_game_event)
        self._runtimes[room.code] = RoomRuntime(bus=bus, engine=engine)

        self.sync_bots(room.code)
        return room

    def join_room(self, code: str, player_id: str, name: str) -> Participant:
        room = self.get_room(code)
        existing = room.participants.get(player_id)
        if existing is not None:
            return existing
        if room.phase != Phase.LOBBY:
            raise InvalidPhase("Game already in progress")
        if len(room.humans()) >= room.settings.max_players:
            raise RoomFull(f"Room {code} is full")

        player = Participant(id=player_id, name=name)
        room.participants[player_id] = player
        logger.info(f"[{code}] {name} joined ({len(room.participants)} participants)")
        # Bots give way to humans
        self.sync_bots(code)
        return player

    def leave_room(self, code: str, player_id: str) -> None:
        room = self.get_room(code)
        player = room.participants.pop(player_id, None)
        if player is None:
            raise ParticipantNotFound(f"{player_id} is not in room {code}")

        # Pending bot votes hold this object in their candidate lists
        player.alive = False
        room.votes.pop(player_id, None)
        room.dead.discard(player_id)
        room.night_actions.acted.discard(player_id)
        if player.is_bot:
            self.engine_for(code).remove_bot(player_id)
        logger.info(f"[{code}] {player.name} left")

        humans = room.humans()
        if not humans:
            self.close_room(code, reason="no human players left")
            return
        if room.host_id == player_id:
            room.host_id = humans[0].id
            logger.info(f"[{code}] Host passed to {humans[0].name}")

        if room.phase == Phase.LOBBY and not player.is_bot:
            self.sync_bots(code)
        elif room.phase == Phase.VOTING and self.tally.is_complete(room):
            self.scheduler.complete_early(room, REASON_ALL_VOTED, self._resolve_voting, self.notifier)
        elif room.phase == Phase.NIGHT and self.night.is_complete(room):
            self.scheduler.complete_early(
                room, REASON_NIGHT_COMPLETE, self._resolve_night, self.notifier,
            )

    def close_room(self, code: str, reason: Optional[str] = None) -> bool:
        """Tear down a room: cancel every timer it owns, then forget it."""
        room = self.store.delete_room(code)
        runtime = self._runtimes.pop(code.upper(), None)
        if room is None:
            return False
        self.scheduler.cancel(room)
        room.resolving = False
        if runtime is not None:
            runtime.engine.cleanup()
        logger.info(f"[{code}] Room closed" + (f" ({reason})" if reason else ""))
        self.notifier.room_closed(room, reason)
        return True

    def shutdown(self) -> None:
        for room in self.store.list_rooms():
            self.close_room(room.code, reason="server shutdown")

    # ── Bots ──────────────────────────────────────────────────────────────────

    def add_bot(self, code: str) -> Participant:
        room = self.get_room(code)
        if room.phase != Phase.LOBBY:
            raise InvalidPhase("Bots can only be added in the lobby")
        if len(room.participants) >= room.settings.max_players:
            raise RoomFull(f"Room {code} is full")
        bot = self.engine_for(code).create_bot()
        participant = Participant(id=bot.id, name=bot.name, is_bot=True, connected=True, ready=True)
        room.participants[bot.id] = participant
        return participant

    def remove_bot(self, code: str, bot_id: str) -> None:
        room = self.get_room(code)
        participant = room.participants.get(bot_id)
        if participant is None or not participant.is_bot:
            raise ParticipantNotFound(f"No bot {bot_id} in room {code}")
        self.leave_room(code, bot_id)

    def sync_bots(self, code: str) -> int:
        """
        Bring the lobby's bot count to the room setting, leaving space for
        humans. Returns the change in bot count.
        """
        room = self.get_room(code)
        if room.phase != Phase.LOBBY:
            return 0
        humans = len(room.humans())
        desired = 0
        if room.settings.enable_bots:
            desired = min(room.settings.bot_count, max(0, room.settings.max_players - humans))

        current = room.bots()
        if len(current) < desired:
            for _ in range(desired - len(current)):
                self.add_bot(code)
            logger.info(f"[{code}] Added {desired - len(current)} bots")
        elif len(current) > desired:
            for bot in current[:len(current) - desired]:
                room.participants.pop(bot.id, None)
                self.engine_for(code).remove_bot(bot.id)
            logger.info(f"[{code}] Trimmed bots to {desired}")
        return desired - len(current)

    # ── Settings / chat ───────────────────────────────────────────────────────

    def update_settings(
        self, code: str, requester_id: str, changes: Dict[str, Any]
    ) -> RoomSettings:
        """
        Host-only, lobby-only settings change. Fields left out of `changes`
        keep their current value. Bots are re-synced to the new settings.
        """
        room = self.get_room(code)
        self.require_host(room, requester_id)
        if room.phase != Phase.LOBBY:
            raise InvalidPhase("Cannot change settings after the game has started")

        merged = room.settings.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        try:
            updated = RoomSettings.model_validate(merged)
        except PydanticValidationError as exc:
            raise InvalidSettings(f"Invalid room settings: {exc.errors()[0]['msg']}")

        max_mafia = max_mafia_for(updated.max_players)
        if updated.mafia_count > max_mafia:
            raise InvalidSettings(
                f"Mafia count must be between 1 and {max_mafia} "
                f"for {updated.max_players} players"
            )
        if len(room.humans()) > updated.max_players:
            raise InvalidSettings("Cannot set limit below current player count")

        room.settings = updated
        self.sync_bots(code)
        self.notifier.settings_updated(room)
        logger.info(f"[{code}] Settings updated: {updated.model_dump()}")
        return updated

    def send_chat(
        self, code: str, sender_id: str, message: str, mafia_only: bool = False
    ) -> str:
        """
        Validate a chat line and hand it to the notifier for fan-out.
        Mafia chat is only open to mafia members and only reaches them.
        Returns the trimmed text.
        """
        room = self.get_room(code)
        sender = room.participants.get(sender_id)
        if sender is None:
            raise ParticipantNotFound(f"{sender_id} is not in room {code}")
        if mafia_only and (sender.role is None or sender.role.alignment != Alignment.MAFIA):
            raise NotMafia("Only Mafia members can use this chat")

        text = (message or "").strip()
        if not text or len(message) > MAX_CHAT_LENGTH:
            raise InvalidMessage(f"Messages must be 1 to {MAX_CHAT_LENGTH} characters")

        self.notifier.chat_message(room, sender, text, mafia_only)
        logger.info(f"[{code}] {'Mafia chat' if mafia_only else 'Chat'} - {sender.name}: {text}")
        return text

    # ── Game start / reset ────────────────────────────────────────────────────

    def start_game(self, code: str, requester_id: str) -> Room:
        room = self.get_room(code)
        self.require_host(room, requester_id)
        if room.phase != Phase.LOBBY:
            raise InvalidPhase("Game already started")

        count = len(room.participants)
        if count < self.settings.min_players:
            raise CannotStart(f"Need at least {self.settings.min_players} players to start")
        if count > self.settings.max_players:
            raise CannotStart(f"At most {self.settings.max_players} players can play")
        if not room.humans():
            raise CannotStart("Cannot start game with only bots")
        max_mafia = max_mafia_for(count)
        if room.settings.mafia_count > max_mafia:
            raise CannotStart(
                f"{room.settings.mafia_count} Mafia is too many for {count} players. "
                f"Maximum allowed: {max_mafia}"
            )

        for p in room.participants.values():
            p.alive = True
        room.dead.clear()
        room.votes.clear()
        room.night_actions = NightActionLog()
        self.roles.assign(room)
        self.notifier.roles_assigned(room)

        room.current_day = 1
        self.bus_for(code).publish(
            GameEventType.GAME_STARTED, {"all_players": list(room.participants.values())},
        )
        logger.info(f"[{code}] Game started with {count} participants")
        self._enter_day(room, REASON_GAME_STARTED)
        return room

    def reset_game(self, code: str, requester_id: str) -> Room:
        """Return a finished game to the lobby, keeping participants and settings."""
        room = self.get_room(code)
        self.require_host(room, requester_id)
        if room.phase != Phase.ENDED:
            raise InvalidPhase("The game can only be reset once it has ended")
        self.scheduler.cancel(room)
        self.engine_for(code).cancel_all()
        room.phase = Phase.LOBBY
        room.resolving = False
        room.current_day = 0
        room.dead.clear()
        room.votes.clear()
        room.night_actions = NightActionLog()
        for p in room.participants.values():
            p.role = None
            p.alive = True
        self.sync_bots(code)
        self.notifier.phase_changed(room, Phase.LOBBY, REASON_RESET)
        logger.info(f"[{code}] Game reset to lobby")
        return room

    # ── Phase entry ───────────────────────────────────────────────────────────

    def _enter_day(self, room: Room, reason: str) -> None:
        room.phase = Phase.DAY
        room.resolving = False
        room.votes.clear()
        self.bus_for(room.code).publish(GameEventType.DAY_PHASE_STARTED, {"day": room.current_day})
        self.notifier.phase_changed(room, Phase.DAY, reason)
        self.scheduler.arm(room, self._on_day_expired)
        logger.info(f"[{room.code}] Day {room.current_day} started ({len(room.alive_participants())} alive)")

    def _on_day_expired(self, room: Room, phase: Phase, reason: str) -> None:
        self._enter_voting(room, reason)

    def _enter_voting(self, room: Room, reason: str) -> None:
        room.phase = Phase.VOTING
        room.resolving = False
        room.votes.clear()
        self.notifier.phase_changed(room, Phase.VOTING, reason)
        self.scheduler.arm(room, self._resolve_voting)
        self._schedule_bot_votes(room)

    def _schedule_bot_votes(self, room: Room) -> None:
        engine = self.engine_for(room.code)
        candidates = room.alive_participants()
        # room.votes is passed by reference: bots read the votes standing when they fire
        snapshot = GameSnapshot(
            phase=room.phase, current_day=room.current_day, current_votes=room.votes,
        )
        submit = functools.partial(self.submit_vote, room.code)
        scheduled = 0
        for p in candidates:
            if p.is_bot and engine.schedule_bot_vote(p.id, candidates, snapshot, submit):
                scheduled += 1
        if scheduled:
            logger.info(f"[{room.code}] Scheduled votes for {scheduled} bots")

    def _enter_night(self, room: Room, reason: str) -> None:
        room.phase = Phase.NIGHT
        room.resolving = False
        room.votes.clear()
        room.night_actions = NightActionLog()
        self.engine_for(room.code).cancel_all()
        self.notifier.phase_changed(room, Phase.NIGHT, reason)
        self.scheduler.arm(room, self._resolve_night)
        logger.info(f"[{room.code}] Night {room.current_day - 1} falls")

    # ── Votes ─────────────────────────────────────────────────────────────────

    def submit_vote(self, code: str, voter_id: str, target_id: str) -> int:
        """
        The one vote entry point, for humans and bots alike.

        Returns the tally size. Raises ValidationError subclasses for rejected
        votes and GameLookupError subclasses for unknown rooms/participants.
        """
        room = self.get_room(code)
        size = self.tally.record(room, voter_id, target_id)
        voter = room.participants[voter_id]
        logger.info(
            f"[{code}] {voter.name} voted for {room.participants[target_id].name} "
            f"({len(self.tally.standing_voters(room))}/{len(room.alive_ids())})"
        )

        self.notifier.vote_recorded(room, voter_id, target_id, voter.is_bot)
        self.bus_for(code).publish(GameEventType.VOTE_RECEIVED, {
            "voter_player_id": voter_id,
            "target_player_id": target_id,
            "phase": room.phase,
        })

        if self.tally.is_complete(room):
            self.scheduler.complete_early(room, REASON_ALL_VOTED, self._resolve_voting, self.notifier)
        return size

    def _resolve_voting(self, room: Room, phase: Phase, reason: str) -> None:
        result = self.tally.resolve(room)
        if result.eliminated:
            self._eliminate(room, result.eliminated)
        self.notifier.elimination(room, result)

        room.votes.clear()
        room.current_day += 1

        win = self.check_win_condition(room)
        if win:
            self._end_game(room, win)
        elif self.settings.night_enabled:
            self._enter_night(room, reason)
        else:
            self._enter_day(room, reason)

    # ── Night ─────────────────────────────────────────────────────────────────

    def submit_night_action(
        self, code: str, actor_id: str, target_id: str
    ) -> Optional[Investigation]:
        room = self.get_room(code)
        investigation = self.night.record(room, actor_id, target_id)
        if self.night.is_complete(room):
            self.scheduler.complete_early(
                room, REASON_NIGHT_COMPLETE, self._resolve_night, self.notifier,
            )
        return investigation

    def _resolve_night(self, room: Room, phase: Phase, reason: str) -> None:
        result = self.night.resolve(room)
        if result.killed:
            self._eliminate(room, result.killed)
        self.notifier.night_resolved(room, result)
        self._enter_day(room, reason)

    # ── Elimination / win ─────────────────────────────────────────────────────

    def _eliminate(self, room: Room, participant_id: str) -> None:
        victim = room.participants.get(participant_id)
        room.mark_dead(participant_id)
        self.bus_for(room.code).publish(GameEventType.PLAYER_ELIMINATED, {
            "eliminated_player_id": participant_id,
            "player_role": victim.role.value if victim and victim.role else None,
        })
        logger.info(f"[{room.code}] Eliminated {victim.name if victim else participant_id}")

    def check_win_condition(self, room: Room) -> Optional[WinResult]:
        """
        Innocents win once no mafia member is alive.
        Mafia win once they equal or outnumber the innocents.
        Returns None while the game continues.
        """
        alive = [p for p in room.alive_participants() if p.role is not None]
        if not alive:
            return None
        mafia = [p for p in alive if p.role.alignment == Alignment.MAFIA]
        innocents = [p for p in alive if p.role.alignment == Alignment.INNOCENTS]

        if not mafia:
            return WinResult(
                winner=Alignment.INNOCENTS,
                reason="All Mafia members have been eliminated!",
                survivors=[{"name": p.name, "role": p.role.value} for p in innocents],
                total_days=room.current_day,
            )
        if len(mafia) >= len(innocents):
            return WinResult(
                winner=Alignment.MAFIA,
                reason=f"Mafia ({len(mafia)}) equal or outnumber innocents ({len(innocents)})!",
                survivors=[{"name": p.name, "role": p.role.value} for p in mafia],
                total_days=room.current_day,
            )
        return None

    def _end_game(self, room: Room, win: WinResult) -> None:
        self.scheduler.cancel(room)
        self.engine_for(room.code).cancel_all()
        room.phase = Phase.ENDED
        room.resolving = False

        room.win_stats.total_games += 1
        if win.winner == Alignment.MAFIA:
            room.win_stats.mafia_wins += 1
        else:
            room.win_stats.innocent_wins += 1

        self.notifier.phase_changed(room, Phase.ENDED, win.reason)
        self.notifier.game_over(room, win)
        logger.info(
            f"[{room.code}] Game over: {win.winner.value} win after {win.total_days} days "
            f"(mafia {room.win_stats.mafia_wins} – {room.win_stats.innocent_wins} innocents)"
        )

    # ── Public state ──────────────────────────────────────────────────────────

    def snapshot(self, code: str) -> Dict[str, Any]:
        """Public game state — roles hidden until the game has ended."""
        room = self.get_room(code)
        reveal = room.phase == Phase.ENDED
        players: List[Dict[str, Any]] = []
        for p in room.participants.values():
            entry = p.to_public()
            if reveal and p.role:
                entry["role"] = p.role.value
            players.append(entry)
        return {
            "roomCode": room.code,
            "hostId": room.host_id,
            "phase": room.phase.value,
            "currentDay": room.current_day,
            "timeRemaining": round(self.scheduler.time_remaining(room), 1),
            "players": players,
            "alivePlayers": [p.id for p in room.alive_participants()],
            "deadPlayers": sorted(room.dead),
            "votesCast": len(self.tally.standing_voters(room)),
            "settings": room.settings.model_dump(),
            "winStats": room.win_stats.model_dump(),
        }


_game_master: Optional["GameMaster"] = None


def get_game_master() -> "GameMaster":
    """Lazy singleton wired to the WebSocket hub for outbound notifications.
    Use as a FastAPI dependency: Depends(get_game_master)
    """
    global _game_master
    if _game_master is None:
        from routers.ws_router import broadcaster
        _game_master = GameMaster(get_room_store(), notifier=broadcaster)
        # Pushed countdowns must match the durations the scheduler arms
        broadcaster.settings = _game_master.settings
    return _game_master
