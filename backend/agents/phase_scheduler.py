"""
Phase Scheduler — owns every room's countdown.

Discipline:
  - A room holds at most one timer (room.timer). Only this class touches it.
  - Arming always cancels first; there is no other way to replace a timer.
  - A timer that fires nulls room.timer *before* calling back, and the callback
    only runs if the room is still in the phase the timer was armed for. A
    late or duplicate signal is therefore a no-op.
  - Early completion cancels the countdown, announces it, and holds the short
    grace delay as the room's timer so teardown cancels it like any other.
"""
import asyncio
import logging
from typing import Callable, Optional

from config import Settings, settings as default_settings
from models.game import Phase, Room
from services.notifier import RoomNotifier

logger = logging.getLogger(__name__)

REASON_TIMER_EXPIRED = "timer expired"
REASON_ALL_VOTED = "all voted"
REASON_NIGHT_COMPLETE = "all night actions complete"

PhaseCallback = Callable[[Room, Phase, str], None]


class PhaseScheduler:

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def duration_for(self, phase: Phase) -> Optional[float]:
        return {
            Phase.DAY: self.settings.day_duration,
            Phase.VOTING: self.settings.voting_duration,
            Phase.NIGHT: self.settings.night_duration,
        }.get(phase)

    # ── Countdown ─────────────────────────────────────────────────────────────

    def arm(self, room: Room, on_expire: PhaseCallback, duration: Optional[float] = None) -> None:
        """(Re)arm the countdown for the room's current phase."""
        self.cancel(room)
        phase = room.phase
        if duration is None:
            duration = self.duration_for(phase)
        if duration is None:
            return
        room.phase_deadline = asyncio.get_running_loop().time() + duration
        room.timer = asyncio.create_task(self._countdown(room, phase, duration, on_expire))
        logger.debug(f"[{room.code}] {phase.value} countdown armed: {duration}s")

    async def _countdown(
        self, room: Room, phase: Phase, duration: float, on_expire: PhaseCallback
    ) -> None:
        await asyncio.sleep(duration)
        room.timer = None
        room.phase_deadline = None
        if room.phase != phase:
            logger.info(f"[{room.code}] Stale {phase.value} countdown ignored (now {room.phase.value})")
            return
        logger.info(f"[{room.code}] {phase.value} timer expired")
        self._run(room, phase, REASON_TIMER_EXPIRED, on_expire)

    def cancel(self, room: Room) -> None:
        if room.timer is not None and not room.timer.done():
            room.timer.cancel()
        room.timer = None
        room.phase_deadline = None

    def time_remaining(self, room: Room) -> float:
        if room.phase_deadline is None:
            return 0.0
        return max(0.0, room.phase_deadline - asyncio.get_running_loop().time())

    # ── Early completion ──────────────────────────────────────────────────────

    def complete_early(
        self,
        room: Room,
        reason: str,
        on_resolve: PhaseCallback,
        notifier: Optional[RoomNotifier] = None,
    ) -> bool:
        """
        End the current phase ahead of its countdown.
        Returns False if the room is already resolving this phase.
        """
        if room.resolving:
            return False
        phase = room.phase
        self.cancel(room)
        room.resolving = True
        logger.info(f"[{room.code}] {phase.value} ending early: {reason}")
        if notifier is not None:
            notifier.phase_ending_early(room, reason)
        room.timer = asyncio.create_task(self._grace(room, phase, reason, on_resolve))
        return True

    async def _grace(
        self, room: Room, phase: Phase, reason: str, on_resolve: PhaseCallback
    ) -> None:
        await asyncio.sleep(self.settings.early_completion_grace)
        room.timer = None
        room.resolving = False
        if room.phase != phase:
            return
        self._run(room, phase, reason, on_resolve)

    def _run(self, room: Room, phase: Phase, reason: str, callback: PhaseCallback) -> None:
        try:
            callback(room, phase, reason)
        except Exception:
            logger.exception(f"[{room.code}] Phase transition from {phase.value} failed")
