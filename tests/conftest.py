import asyncio
import random
from typing import Any, Callable, Iterable, List, Optional, Tuple

import pytest

from config import Settings
from models.game import Participant, Personality, Phase, Role, Room
from services.notifier import RoomNotifier
from services.room_store import RoomStore
from agents.game_master import GameMaster


class ScriptedRandom:
    """random.Random stand-in: replays a fixed list of draws, then a default.

    shuffle() is a no-op so role deals follow join order.
    """

    def __init__(self, values: Iterable[float] = (), default: float = 0.5):
        self._values = list(values)
        self.default = default

    def random(self) -> float:
        if self._values:
            return self._values.pop(0)
        return self.default

    def shuffle(self, seq: List[Any]) -> None:
        pass


class RecordingNotifier(RoomNotifier):
    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, args))

    def named(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]

    def phase_changed(self, room, phase, reason):
        self._record("phase_changed", phase, reason)

    def phase_ending_early(self, room, reason):
        self._record("phase_ending_early", reason)

    def vote_recorded(self, room, voter_id, target_id, is_bot):
        self._record("vote_recorded", voter_id, target_id, is_bot)

    def elimination(self, room, result):
        self._record("elimination", result)

    def night_resolved(self, room, result):
        self._record("night_resolved", result)

    def game_over(self, room, win):
        self._record("game_over", win)

    def roles_assigned(self, room):
        self._record("roles_assigned")

    def room_closed(self, room, reason=None):
        self._record("room_closed", reason)

    def settings_updated(self, room):
        self._record("settings_updated", room.settings)

    def chat_message(self, room, sender, text, mafia_only):
        self._record("chat_message", sender.id, text, mafia_only)


async def fast_sleep(seconds: float) -> None:
    """Bot delays compressed a thousandfold: 2–8 s become 2–8 ms."""
    await asyncio.sleep(seconds / 1000)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


def steady_personality(**overrides) -> Personality:
    values = dict(
        aggressiveness=0.0, cautiousness=0.0, follow_crowd=0.0,
        trust_level=0.5, randomness=0.0,
    )
    values.update(overrides)
    return Personality(**values)


def make_room(
    ids: Iterable[str] = ("alice", "bob", "carol", "dave"),
    phase: Phase = Phase.VOTING,
    roles: Optional[dict] = None,
    bots: Iterable[str] = (),
) -> Room:
    room = Room(code="TEST01", host_id="alice", phase=phase)
    bot_ids = set(bots)
    for pid in ids:
        room.participants[pid] = Participant(
            id=pid, name=pid.title(), is_bot=pid in bot_ids,
            role=(roles or {}).get(pid, Role.CIVILIAN),
        )
    return room


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        day_duration=0.05,
        voting_duration=5.0,
        night_duration=5.0,
        early_completion_grace=0.01,
        min_players=4,
        max_players=20,
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def make_gm(fast_settings, notifier):
    created: List[GameMaster] = []

    def factory(rng=None, settings=None, bot_sleep=fast_sleep) -> GameMaster:
        gm = GameMaster(
            RoomStore(random.Random(7)),
            notifier=notifier,
            settings=settings or fast_settings,
            rng=rng or ScriptedRandom(),
            bot_sleep=bot_sleep,
        )
        created.append(gm)
        return gm

    yield factory
    for gm in created:
        gm.shutdown()
