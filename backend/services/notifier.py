"""
Outbound notifications from the game core to UI / audio / stats collaborators.

All methods are synchronous and fire-and-forget: the state machine never
awaits a collaborator. Implementations that need I/O schedule it themselves
(see routers.ws_router.RoomBroadcaster).
"""
from typing import Optional

from models.game import NightResult, Participant, Phase, Room, VoteResult, WinResult


class RoomNotifier:
    """No-op base. Override what you care about."""

    def phase_changed(self, room: Room, phase: Phase, reason: str) -> None:
        pass

    def phase_ending_early(self, room: Room, reason: str) -> None:
        pass

    def vote_recorded(self, room: Room, voter_id: str, target_id: str, is_bot: bool) -> None:
        pass

    def elimination(self, room: Room, result: VoteResult) -> None:
        pass

    def night_resolved(self, room: Room, result: NightResult) -> None:
        pass

    def game_over(self, room: Room, win: WinResult) -> None:
        pass

    def roles_assigned(self, room: Room) -> None:
        pass

    def room_closed(self, room: Room, reason: Optional[str] = None) -> None:
        pass

    def settings_updated(self, room: Room) -> None:
        pass

    def chat_message(self, room: Room, sender: Participant, text: str, mafia_only: bool) -> None:
        pass
