from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STATIC_DIR = Path(__file__).parent / "static"


class Settings(BaseSettings):
    app_name: str = Field("syncroom", validation_alias="APP_NAME")
    host: str = Field("0.0.0.0", validation_alias="HOST")
    port: int = Field(3002, validation_alias="PORT")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    # Comma-separated list, "*" for any origin
    allowed_origins_raw: str = Field("*", validation_alias="ALLOWED_ORIGINS")

    spotify_client_id: Optional[str] = Field(None, validation_alias="SPOTIFY_CLIENT_ID")
    spotify_client_secret: Optional[str] = Field(None, validation_alias="SPOTIFY_CLIENT_SECRET")
    # Tokens last an hour; refresh well before that
    token_refresh_interval: float = Field(50 * 60, gt=0, validation_alias="TOKEN_REFRESH_INTERVAL")
    token_retry_interval: float = Field(60, gt=0, validation_alias="TOKEN_RETRY_INTERVAL")

    # Give the host's player a moment before sending a late joiner the snapshot
    join_snapshot_delay: float = Field(1.0, ge=0, validation_alias="JOIN_SNAPSHOT_DELAY")

    model_config = SettingsConfigDict(env_file=str(Path(__file__).parent / ".env"), extra="ignore")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("spotify_client_id", "spotify_client_secret")
    @classmethod
    def _blank_is_unset(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @property
    def allowed_origins(self) -> List[str]:
        origins = [o.strip() for o in self.allowed_origins_raw.split(",") if o.strip()]
        return origins or ["*"]


# Lazy settings accessor to avoid import-time instantiation
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
