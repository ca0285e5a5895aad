from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # CORS origins — set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    # Phase countdowns, in seconds
    day_duration: float = 120.0
    voting_duration: float = 60.0
    night_duration: float = 60.0
    # Pause between "phase ending early" and resolution so clients can show final votes
    early_completion_grace: float = 2.0
    # When disabled, a resolved vote goes straight to the next day
    night_enabled: bool = True

    min_players: int = 4
    max_players: int = 20

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
