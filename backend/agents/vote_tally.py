"""
Vote Tally — pure deterministic Python.

Responsibilities:
- Validate a vote against the room (phase, voter, target)
- Record it, overwriting the voter's previous vote for the round
- Detect early completion (every living participant has a standing vote)
- Resolve the round: strict plurality eliminates, any tie for the top spot eliminates nobody

Nothing here touches timers; PhaseScheduler decides what completion means for the clock.
"""
import logging
from collections import Counter

from errors import (
    InvalidPhase, ParticipantNotFound, SelfVote, TargetDead, UnknownTarget, VoterDead,
)
from models.game import Phase, Room, VoteResult

logger = logging.getLogger(__name__)


class VoteTally:

    def record(self, room: Room, voter_id: str, target_id: str) -> int:
        """
        Validate and store one vote. Re-voting replaces the previous vote.

        Returns the tally size (number of distinct voters this round).
        Raises a ValidationError subclass naming the exact reason for rejection.
        """
        if voter_id not in room.participants:
            raise ParticipantNotFound(f"{voter_id} is not in room {room.code}")
        if room.phase != Phase.VOTING:
            raise InvalidPhase("Votes can only be cast during the voting phase")
        if room.resolving:
            raise InvalidPhase("Voting has closed for this round")
        if not room.is_alive(voter_id):
            raise VoterDead("Eliminated players cannot vote")
        if target_id not in room.participants:
            raise UnknownTarget(f"'{target_id}' is not in this room")
        if not room.is_alive(target_id):
            raise TargetDead("Cannot vote for an eliminated player")
        if target_id == voter_id:
            raise SelfVote("Cannot vote for yourself")

        room.votes[voter_id] = target_id
        return len(room.votes)

    def standing_voters(self, room: Room) -> set:
        return {voter for voter in room.votes if room.is_alive(voter)}

    def is_complete(self, room: Room) -> bool:
        """True once the set of voters equals the set of living participants."""
        alive = room.alive_ids()
        return bool(alive) and self.standing_voters(room) == alive

    def counts(self, room: Room) -> Counter:
        """Votes per target, counting only living voters and present targets."""
        return Counter(
            target for voter, target in room.votes.items()
            if room.is_alive(voter) and target in room.participants
        )

    def resolve(self, room: Room) -> VoteResult:
        tally = self.counts(room)
        if not tally:
            logger.info(f"[{room.code}] No votes cast — no elimination")
            return VoteResult()

        max_votes = max(tally.values())
        leaders = [target for target, count in tally.items() if count == max_votes]

        if len(leaders) == 1:
            logger.info(f"[{room.code}] Vote result: {leaders[0]} eliminated with {max_votes} votes")
            return VoteResult(
                eliminated=leaders[0], tie=False, max_votes=max_votes, tally=dict(tally),
            )

        logger.info(f"[{room.code}] Vote tie between {sorted(leaders)} — no elimination")
        return VoteResult(eliminated=None, tie=True, max_votes=max_votes, tally=dict(tally))


vote_tally = VoteTally()
