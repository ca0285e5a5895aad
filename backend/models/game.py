import asyncio
from dataclasses import dataclass, field
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Set
from enum import Enum
from datetime import datetime, timezone


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Phase(str, Enum):
    LOBBY = "lobby"
    DAY = "day"
    VOTING = "voting"
    NIGHT = "night"
    ENDED = "ended"


class Alignment(str, Enum):
    MAFIA = "mafia"
    INNOCENTS = "innocents"


class NightActionKind(str, Enum):
    KILL = "kill"
    PROTECT = "protect"
    INVESTIGATE = "investigate"


class Role(str, Enum):
    MAFIA = "mafia"
    DETECTIVE = "detective"
    DOCTOR = "doctor"
    CIVILIAN = "civilian"

    @property
    def alignment(self) -> Alignment:
        return Alignment.MAFIA if self == Role.MAFIA else Alignment.INNOCENTS

    @property
    def night_action(self) -> Optional[NightActionKind]:
        return _NIGHT_ACTIONS.get(self)


_NIGHT_ACTIONS: Dict[Role, NightActionKind] = {
    Role.MAFIA: NightActionKind.KILL,
    Role.DOCTOR: NightActionKind.PROTECT,
    Role.DETECTIVE: NightActionKind.INVESTIGATE,
}


ROLE_DESCRIPTIONS: Dict[str, str] = {
    "mafia": "Eliminate civilians and blend in during the day. Work with other mafia members to win.",
    "detective": "Investigate players at night to find the mafia. Help civilians identify threats.",
    "civilian": "Vote out the mafia during day phases. Use discussion and deduction to win.",
    "doctor": "Protect one player each night from elimination. You can protect yourself or others.",
}


# ── Participants ──────────────────────────────────────────────────────────────

class Participant(BaseModel):
    id: str
    name: str
    role: Optional[Role] = None
    alive: bool = True
    is_bot: bool = False
    connected: bool = False
    ready: bool = False
    joined_at: datetime = Field(default_factory=_utcnow)

    def to_public(self) -> Dict[str, Any]:
        """Safe representation — omits role (hidden during game)."""
        return {
            "id": self.id,
            "name": self.name,
            "alive": self.alive,
            "isBot": self.is_bot,
            "connected": self.connected,
            "ready": self.ready,
        }


class Personality(BaseModel):
    aggressiveness: float = Field(ge=0.0, lt=1.0)   # how quickly they vote
    cautiousness: float = Field(ge=0.0, lt=1.0)     # how far down the ranking they pick
    follow_crowd: float = Field(ge=0.0, lt=1.0)     # weight on votes already cast
    trust_level: float = Field(ge=0.0, lt=1.0)
    randomness: float = Field(ge=0.0, lt=0.3)       # chance of a purely random vote


class ObservedVote(BaseModel):
    target: str
    phase: Phase


class BotState(BaseModel):
    """Decision state for one synthetic participant. Owned by BotDecisionEngine."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    name: str
    personality: Personality
    suspicion: Dict[str, float] = Field(default_factory=dict)
    voting_history: Dict[str, List[ObservedVote]] = Field(default_factory=dict)
    action: Optional[asyncio.Task] = Field(default=None, exclude=True)


# ── Room ──────────────────────────────────────────────────────────────────────

class RoomSettings(BaseModel):
    max_players: int = Field(default=10, ge=4, le=20)
    mafia_count: int = Field(default=1, ge=1, le=4)
    enable_bots: bool = False
    bot_count: int = Field(default=1, ge=0, le=12)


class WinStats(BaseModel):
    mafia_wins: int = 0
    innocent_wins: int = 0
    total_games: int = 0


class NightActionLog(BaseModel):
    kill_target: Optional[str] = None
    kill_by: Optional[str] = None
    protected: Optional[str] = None
    investigations: Dict[str, str] = Field(default_factory=dict)  # detective id → target id
    acted: Set[str] = Field(default_factory=set)


class Room(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    code: str
    host_id: str
    phase: Phase = Phase.LOBBY
    participants: Dict[str, Participant] = Field(default_factory=dict)  # join-ordered
    votes: Dict[str, str] = Field(default_factory=dict)                 # voter id → target id
    dead: Set[str] = Field(default_factory=set)
    current_day: int = 0
    resolving: bool = False
    night_actions: NightActionLog = Field(default_factory=NightActionLog)
    settings: RoomSettings = Field(default_factory=RoomSettings)
    win_stats: WinStats = Field(default_factory=WinStats)
    phase_deadline: Optional[float] = None   # event-loop clock; None when no countdown
    timer: Optional[asyncio.Task] = Field(default=None, exclude=True)
    created_at: datetime = Field(default_factory=_utcnow)

    def is_alive(self, participant_id: str) -> bool:
        p = self.participants.get(participant_id)
        return bool(p and p.alive and participant_id not in self.dead)

    def alive_participants(self) -> List[Participant]:
        return [p for pid, p in self.participants.items() if self.is_alive(pid)]

    def alive_ids(self) -> Set[str]:
        return {p.id for p in self.alive_participants()}

    def humans(self) -> List[Participant]:
        return [p for p in self.participants.values() if not p.is_bot]

    def bots(self) -> List[Participant]:
        return [p for p in self.participants.values() if p.is_bot]

    def mark_dead(self, participant_id: str) -> None:
        self.dead.add(participant_id)
        p = self.participants.get(participant_id)
        if p:
            p.alive = False
        self.votes.pop(participant_id, None)


@dataclass
class GameSnapshot:
    """What a bot sees when it decides.

    A plain dataclass so `current_votes` stays a reference to the room's live
    vote mapping rather than a validated copy.
    """
    phase: Phase
    current_day: int = 0
    current_votes: Dict[str, str] = field(default_factory=dict)


# ── Outcomes ──────────────────────────────────────────────────────────────────

class VoteResult(BaseModel):
    eliminated: Optional[str] = None
    tie: bool = False
    max_votes: int = 0
    tally: Dict[str, int] = {}


class Investigation(BaseModel):
    detective_id: str
    target_id: str
    is_mafia: bool


class NightResult(BaseModel):
    killed: Optional[str] = None
    protected: Optional[str] = None
    saved: bool = False
    investigations: List[Investigation] = []


class WinResult(BaseModel):
    winner: Alignment
    reason: str
    survivors: List[Dict[str, Any]] = []
    total_days: int = 0


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    host_name: str = "Host"
    settings: RoomSettings = Field(default_factory=RoomSettings)


class CreateRoomResponse(BaseModel):
    room_code: str
    host_player_id: str


class JoinRoomRequest(BaseModel):
    player_name: str


class JoinRoomResponse(BaseModel):
    player_id: str
    room_code: str


class PlayerRequest(BaseModel):
    player_id: str


class VoteRequest(BaseModel):
    voter_id: str
    target_id: str


class VoteResponse(BaseModel):
    tally_size: int


class NightActionRequest(BaseModel):
    actor_id: str
    target_id: str


class AddBotResponse(BaseModel):
    bot_id: str
    name: str


class UpdateSettingsRequest(BaseModel):
    """Partial settings update; omitted fields keep their current value."""
    max_players: Optional[int] = Field(default=None, ge=4, le=20)
    mafia_count: Optional[int] = Field(default=None, ge=1, le=4)
    enable_bots: Optional[bool] = None
    bot_count: Optional[int] = Field(default=None, ge=0, le=12)
