"""
Night actions — record and resolve the night in priority order:
  1. Mafia selects a kill target (the latest mafia submission stands)
  2. Doctor protects a target (cancels the kill if it matches)
  3. Detective investigates a target (result returned privately, at once)
"""
import logging
from typing import List, Optional

from errors import (
    InvalidPhase, NoNightAction, ParticipantNotFound, SelfTarget, TargetDead,
    UnknownTarget, VoterDead,
)
from models.game import (
    Alignment, Investigation, NightActionKind, NightActionLog, NightResult, Phase,
    Participant, Room,
)

logger = logging.getLogger(__name__)


class NightActions:

    def required_actors(self, room: Room) -> List[Participant]:
        """Living participants whose role carries a night action."""
        return [p for p in room.alive_participants() if p.role and p.role.night_action]

    def record(self, room: Room, actor_id: str, target_id: str) -> Optional[Investigation]:
        """
        Validate and store one night action.
        Returns the investigation outcome for detectives, None otherwise.
        """
        actor = room.participants.get(actor_id)
        if actor is None:
            raise ParticipantNotFound(f"{actor_id} is not in room {room.code}")
        if room.phase != Phase.NIGHT or room.resolving:
            raise InvalidPhase("Night actions can only be used during the night")
        if not room.is_alive(actor_id):
            raise VoterDead("Eliminated players cannot act")
        kind = actor.role.night_action if actor.role else None
        if kind is None:
            raise NoNightAction("Your role has no night action")
        target = room.participants.get(target_id)
        if target is None:
            raise UnknownTarget(f"'{target_id}' is not in this room")
        if not room.is_alive(target_id):
            raise TargetDead("Cannot target an eliminated player")

        log = room.night_actions
        result: Optional[Investigation] = None

        if kind == NightActionKind.KILL:
            if target_id == actor_id:
                raise SelfTarget("Cannot target yourself")
            log.kill_target = target_id
            log.kill_by = actor_id
            # One kill per night for the whole mafia side
            for p in room.alive_participants():
                if p.role and p.role.alignment == Alignment.MAFIA:
                    log.acted.add(p.id)
        elif kind == NightActionKind.PROTECT:
            log.protected = target_id
            log.acted.add(actor_id)
        else:
            if target_id == actor_id:
                raise SelfTarget("Cannot investigate yourself")
            log.investigations[actor_id] = target_id
            log.acted.add(actor_id)
            result = Investigation(
                detective_id=actor_id,
                target_id=target_id,
                is_mafia=bool(target.role and target.role.alignment == Alignment.MAFIA),
            )

        logger.info(f"[{room.code}] Night action: {actor.name} → {kind.value} {target.name}")
        return result

    def is_complete(self, room: Room) -> bool:
        required = {p.id for p in self.required_actors(room)}
        return bool(required) and required <= room.night_actions.acted

    def resolve(self, room: Room) -> NightResult:
        log = room.night_actions
        result = NightResult(protected=log.protected)

        if log.kill_target and room.is_alive(log.kill_target):
            if log.kill_target == log.protected:
                result.saved = True
                logger.info(f"[{room.code}] Kill on {log.kill_target} blocked by doctor")
            else:
                result.killed = log.kill_target

        for detective_id, target_id in log.investigations.items():
            target = room.participants.get(target_id)
            if target is None:
                continue
            result.investigations.append(Investigation(
                detective_id=detective_id,
                target_id=target_id,
                is_mafia=bool(target.role and target.role.alignment == Alignment.MAFIA),
            ))

        room.night_actions = NightActionLog()
        return result


night_actions = NightActions()
