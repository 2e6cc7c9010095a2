"""Settings loaded from the environment (``GSP_`` prefix) or a ``.env`` file."""

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATE_DIR = Path.home() / ".gsp"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GSP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    panel_url: str = Field(default="http://localhost", description="Panel base address")
    panel_api_key: str = Field(default="", description="Application (admin) API key")
    panel_client_api_key: str = Field(default="", description="Client (scoped) API key")
    token_api_key: str = Field(default="", description="Login-token account service key")
    token_api_url: str = Field(default="https://api.steampowered.com")

    app_env: str = Field(default="production")
    owner_username: str = Field(default="", description="Panel user that owns managed servers")

    nest_id: int = 5
    egg_id: int = 15
    game_app_id: int = 730

    state_dir: Path = DEFAULT_STATE_DIR

    http_timeout: float = 30.0
    connect_timeout: float = 10.0

    log_format: Literal["json", "console"] = "console"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _default_owner(self) -> "Settings":
        if not self.owner_username:
            self.owner_username = f"csgopanel-{self.app_env}"
        return self


def get_settings() -> Settings:
    return Settings()
