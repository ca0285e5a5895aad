"""
Bot Decision Engine — synthetic participants for one room.

Responsibilities:
  1. Identity — unique names from a fixed pool, unique ids, a random personality
  2. Opponent model — per-bot suspicion (0–100) and observed voting history
  3. Target scoring — personality-weighted ranking of living candidates
  4. Timing — one delayed, cancellable vote action per bot, submitted through
     the same entry point human votes use

One engine per room, owned by the GameMaster and subscribed to that room's
GameEventBus. Randomness and sleeping are injectable so tests can pin both.
Failed lookups never raise: a bot that cannot act simply does not vote.
"""
import asyncio
import logging
import random
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from errors import GameError
from models.game import BotState, GameSnapshot, ObservedVote, Participant, Personality, Phase
from agents.event_bus import GameEventType

logger = logging.getLogger(__name__)


BASE_DELAY_MS = 2000
MAX_DELAY_MS = 8000
SCATTER_SUSPICION_INCREMENT = 15
NEUTRAL_SUSPICION = 50
RANDOMNESS_CAP = 0.3
SUSPICION_FLOOR = 0
SUSPICION_CEILING = 100

BOT_NAMES: List[str] = [
    "AI Citizen Alpha", "AI Citizen Beta", "AI Citizen Gamma",
    "AI Citizen Delta", "AI Citizen Epsilon", "AI Citizen Zeta",
    "AI Citizen Eta", "AI Citizen Theta", "AI Citizen Iota",
    "AI Citizen Kappa", "AI Citizen Lambda", "AI Citizen Mu",
]

SubmitVote = Callable[[str, str], Any]


class BotDecisionEngine:

    def __init__(
        self,
        room_code: str = "",
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.room_code = room_code
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep
        self._bots: Dict[str, BotState] = {}
        self._used_names: Set[str] = set()
        self._fallback_seq = 0

    # ── Identity ──────────────────────────────────────────────────────────────

    def generate_personality(self) -> Personality:
        return Personality(
            aggressiveness=self._rng.random(),
            cautiousness=self._rng.random(),
            follow_crowd=self._rng.random(),
            trust_level=self._rng.random(),
            randomness=self._rng.random() * RANDOMNESS_CAP,
        )

    def _allocate_name(self) -> str:
        available = [name for name in BOT_NAMES if name not in self._used_names]
        if available:
            name = available[int(self._rng.random() * len(available))]
        else:
            # Pool exhausted: numbered names, skipping any still in use
            while True:
                self._fallback_seq += 1
                name = f"AI Player {self._fallback_seq}"
                if name not in self._used_names:
                    break
        self._used_names.add(name)
        return name

    def create_bot(self, personality: Optional[Personality] = None) -> BotState:
        bot = BotState(
            id=f"bot_{uuid.uuid4().hex[:12]}",
            name=self._allocate_name(),
            personality=personality or self.generate_personality(),
        )
        self._bots[bot.id] = bot
        logger.info(f"[{self.room_code}] Created bot {bot.name} ({bot.id})")
        return bot

    def remove_bot(self, bot_id: str) -> bool:
        bot = self._bots.get(bot_id)
        if bot is None:
            return False
        self.cancel_action(bot_id)
        self._used_names.discard(bot.name)
        del self._bots[bot_id]
        logger.info(f"[{self.room_code}] Removed bot {bot.name}")
        return True

    def get_bot(self, bot_id: str) -> Optional[BotState]:
        return self._bots.get(bot_id)

    def bots(self) -> List[BotState]:
        return list(self._bots.values())

    # ── Opponent model ────────────────────────────────────────────────────────

    def update_suspicion(self, bot_id: str, target_id: str, delta: float) -> None:
        bot = self._bots.get(bot_id)
        if bot is None:
            return
        current = bot.suspicion.get(target_id, NEUTRAL_SUSPICION)
        bot.suspicion[target_id] = max(SUSPICION_FLOOR, min(SUSPICION_CEILING, current + delta))

    def analyze_voting_pattern(
        self, bot_id: str, voter_id: str, target_id: str, phase: Phase
    ) -> None:
        """Record what `voter_id` did and flag scatter voting (three distinct recent targets)."""
        bot = self._bots.get(bot_id)
        if bot is None or voter_id == bot_id:
            return

        history = bot.voting_history.setdefault(voter_id, [])
        history.append(ObservedVote(target=target_id, phase=phase))

        recent = history[-3:]
        if len(recent) == 3 and len({v.target for v in recent}) == 3:
            self.update_suspicion(bot_id, voter_id, SCATTER_SUSPICION_INCREMENT)

    # ── Target scoring ────────────────────────────────────────────────────────

    def _weigh(
        self, bot: BotState, candidate: Participant, game_state: Optional[GameSnapshot]
    ) -> float:
        weight = bot.suspicion.get(candidate.id, NEUTRAL_SUSPICION) * 2
        weight += len(bot.voting_history.get(candidate.id, [])) * 10
        if game_state is not None:
            votes_against = sum(1 for t in game_state.current_votes.values() if t == candidate.id)
            weight += votes_against * bot.personality.follow_crowd * 30
        weight += (self._rng.random() - 0.5) * 20
        return weight

    def get_bot_vote(
        self,
        bot_id: str,
        candidates: Sequence[Participant],
        game_state: Optional[GameSnapshot] = None,
    ) -> Optional[Participant]:
        """
        Pick a vote target, or None when the bot has no valid choice.

        Bots are valid targets for other bots; only the bot itself and the dead
        are excluded.
        """
        bot = self._bots.get(bot_id)
        if bot is None:
            logger.warning(f"[{self.room_code}] Bot {bot_id} not found — no vote")
            return None

        valid_targets = [c for c in candidates if c.alive and c.id != bot_id]
        if not valid_targets:
            logger.info(f"[{self.room_code}] No valid targets for bot {bot.name}")
            return None

        personality = bot.personality
        if self._rng.random() < personality.randomness:
            return valid_targets[int(self._rng.random() * len(valid_targets))]

        ranked = sorted(
            ((c, self._weigh(bot, c, game_state)) for c in valid_targets),
            key=lambda pair: pair[1],
            reverse=True,
        )
        # Cautious bots don't always go for the top-weighted target
        index = int(personality.cautiousness * min(3, len(ranked)))
        if index >= len(ranked):
            index = 0
        return ranked[index][0]

    # ── Timing ────────────────────────────────────────────────────────────────

    @staticmethod
    def action_delay_ms(personality: Personality) -> float:
        blend = personality.aggressiveness * 0.3 + personality.cautiousness * 0.7
        return BASE_DELAY_MS + (MAX_DELAY_MS - BASE_DELAY_MS) * blend

    def schedule_bot_vote(
        self,
        bot_id: str,
        candidates: Sequence[Participant],
        game_state: Optional[GameSnapshot],
        submit: SubmitVote,
    ) -> bool:
        """
        Arm one delayed vote for `bot_id`, replacing any pending one.
        Returns False (and schedules nothing) if the bot is unknown or dead.
        """
        bot = self._bots.get(bot_id)
        if bot is None:
            logger.warning(f"[{self.room_code}] Bot {bot_id} not found in engine — not scheduling")
            return False

        listed = next((c for c in candidates if c.id == bot_id), None)
        if listed is None or not listed.alive:
            logger.info(f"[{self.room_code}] Bot {bot.name} not alive in room — not scheduling")
            return False

        self.cancel_action(bot_id)
        delay_ms = self.action_delay_ms(bot.personality)
        bot.action = asyncio.create_task(
            self._run_action(bot_id, delay_ms, list(candidates), game_state, submit)
        )
        logger.debug(f"[{self.room_code}] Bot {bot.name} votes in {delay_ms / 1000:.1f}s")
        return True

    async def _run_action(
        self,
        bot_id: str,
        delay_ms: float,
        candidates: List[Participant],
        game_state: Optional[GameSnapshot],
        submit: SubmitVote,
    ) -> None:
        await self._sleep(delay_ms / 1000)

        bot = self._bots.get(bot_id)
        if bot is None:
            return
        # Fired: the handle is spent, nothing left to cancel
        bot.action = None

        target = self.get_bot_vote(bot_id, candidates, game_state)
        if target is None:
            logger.info(f"[{self.room_code}] Bot {bot.name} found no target to vote for")
            return

        logger.info(f"[{self.room_code}] Bot {bot.name} voting for {target.name}")
        try:
            submit(bot_id, target.id)
        except GameError as exc:
            logger.warning(f"[{self.room_code}] Bot {bot.name} vote rejected: {exc.code} {exc.message}")

    def cancel_action(self, bot_id: str) -> None:
        bot = self._bots.get(bot_id)
        if bot is None:
            return
        if bot.action is not None and not bot.action.done():
            bot.action.cancel()
        bot.action = None

    def cancel_all(self) -> None:
        for bot_id in list(self._bots):
            self.cancel_action(bot_id)

    # ── Game events ───────────────────────────────────────────────────────────

    def on_game_event(self, event_type, payload: Dict[str, Any]) -> None:
        try:
            event_type = GameEventType(event_type)
        except ValueError:
            logger.debug(f"[{self.room_code}] Ignoring unknown game event {event_type!r}")
            return

        if event_type == GameEventType.GAME_STARTED:
            self._handle_game_started(payload)
        elif event_type == GameEventType.DAY_PHASE_STARTED:
            self._handle_day_phase_started(payload)
        elif event_type == GameEventType.VOTE_RECEIVED:
            self._handle_vote_received(payload)
        elif event_type == GameEventType.PLAYER_ELIMINATED:
            self._handle_player_eliminated(payload)

    def _handle_game_started(self, payload: Dict[str, Any]) -> None:
        all_players = payload.get("all_players", [])
        for bot in self._bots.values():
            bot.suspicion.clear()
            bot.voting_history.clear()
            for player in all_players:
                if player.id != bot.id and player.alive:
                    bot.suspicion[player.id] = NEUTRAL_SUSPICION

    def _handle_day_phase_started(self, payload: Dict[str, Any]) -> None:
        # Callers re-schedule for the new phase
        self.cancel_all()

    def _handle_vote_received(self, payload: Dict[str, Any]) -> None:
        voter_id = payload["voter_player_id"]
        for bot_id in list(self._bots):
            if bot_id != voter_id:
                self.analyze_voting_pattern(
                    bot_id, voter_id, payload["target_player_id"], payload["phase"],
                )

    def _handle_player_eliminated(self, payload: Dict[str, Any]) -> None:
        # Dead bots never act again. Elimination-driven suspicion updates
        # (e.g. trusting those who voted out a mafia member) would hook in here.
        self.cancel_action(payload.get("eliminated_player_id", ""))

    # ── Teardown ──────────────────────────────────────────────────────────────

    def cleanup(self) -> None:
        """Cancel every pending action and forget all bots. Call on room teardown."""
        self.cancel_all()
        self._bots.clear()
        self._used_names.clear()
        logger.info(f"[{self.room_code}] Bot engine cleaned up")
