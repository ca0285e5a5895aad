"""
Game error taxonomy.

ValidationError  — a rejected action (wrong phase, dead voter, bad target).
                   Reported to the caller only; the room carries on.
GameLookupError  — an unknown room / participant. Expected under churn
                   (players leave mid-round), so bot paths log and drop it.

Every error carries a stable `code` so clients can render the right message.
"""
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class GameError(Exception):
    code = "GAME_ERROR"
    status = 400

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(GameError):
    code = "VALIDATION_ERROR"
    status = 409


class InvalidPhase(ValidationError):
    code = "WRONG_PHASE"


class VoterDead(ValidationError):
    code = "PLAYER_ELIMINATED"


class UnknownTarget(ValidationError):
    code = "UNKNOWN_TARGET"
    status = 422


class TargetDead(ValidationError):
    code = "TARGET_ELIMINATED"


class SelfVote(ValidationError):
    code = "SELF_VOTE"
    status = 422


class SelfTarget(ValidationError):
    code = "SELF_TARGET"
    status = 422


class NoNightAction(ValidationError):
    code = "NO_NIGHT_ACTION"


class RoomFull(ValidationError):
    code = "ROOM_FULL"


class NotHost(ValidationError):
    code = "NOT_HOST"
    status = 403


class CannotStart(ValidationError):
    code = "CANNOT_START"


class InvalidSettings(ValidationError):
    code = "INVALID_SETTINGS"
    status = 422


class InvalidMessage(ValidationError):
    code = "INVALID_MESSAGE"
    status = 422


class NotMafia(ValidationError):
    code = "NOT_MAFIA"
    status = 403


class GameLookupError(GameError, LookupError):
    code = "NOT_FOUND"
    status = 404


class RoomNotFound(GameLookupError):
    code = "ROOM_NOT_FOUND"


class ParticipantNotFound(GameLookupError):
    code = "PLAYER_NOT_FOUND"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        return JSONResponse(
            status_code=exc.status,
            content={"error": {"code": exc.code, "message": exc.message}},
        )
