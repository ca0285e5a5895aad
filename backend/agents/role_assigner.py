"""
Role Assignment — deterministic role distribution with a shuffled deal.

Responsibilities:
- Size the mafia side for the room (validated against max_mafia_for)
- Add a detective and a doctor once the room has 5+ participants
- Deal roles: bots always play civilians, humans draw from the remaining roles

Called once by the GameMaster when the host starts the game.
"""
import logging
import random
from typing import Dict, List, Optional

from models.game import Role, Room

logger = logging.getLogger(__name__)


# Upper bound on mafia members by total participant count
_MAX_MAFIA: List[tuple] = [
    (15, 4),
    (7, 3),
    (5, 2),
]


def max_mafia_for(player_count: int) -> int:
    for floor, cap in _MAX_MAFIA:
        if player_count >= floor:
            return cap
    return 1


class RoleAssigner:

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def generate_roles(self, player_count: int, mafia_count: int) -> List[Role]:
        """Full role list for the table, special roles first (mafia, detective, doctor)."""
        roles: List[Role] = [Role.MAFIA] * mafia_count
        if player_count >= 5:
            roles.append(Role.DETECTIVE)
            roles.append(Role.DOCTOR)
        roles.extend([Role.CIVILIAN] * max(0, player_count - len(roles)))
        return roles[:player_count]

    def assign(self, room: Room) -> Dict[str, Role]:
        """
        Assign a role to every participant in the room.

        Bots take civilian slots. If bots outnumber the civilian slots, the
        lowest-priority special roles are dropped first, so the mafia side is
        always dealt to humans.
        """
        humans = room.humans()
        bots = room.bots()
        roles = self.generate_roles(len(room.participants), room.settings.mafia_count)

        human_roles = roles[:len(humans)]
        self._rng.shuffle(human_roles)

        assignments: Dict[str, Role] = {}
        for player, role in zip(humans, human_roles):
            player.role = role
            assignments[player.id] = role
        for bot in bots:
            bot.role = Role.CIVILIAN
            assignments[bot.id] = Role.CIVILIAN

        counts: Dict[str, int] = {}
        for role in assignments.values():
            counts[role.value] = counts.get(role.value, 0) + 1
        logger.info(
            f"[{room.code}] Assigned roles for {len(assignments)} participants "
            f"({len(humans)} humans, {len(bots)} bots): {counts}"
        )
        return assignments


