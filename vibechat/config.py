"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """VibeChat configuration. All values come from environment variables."""

    # Storage root (memory database + captures/)
    base_dir: Path = Field(default_factory=lambda: Path.home() / ".vibechat")

    # Model endpoint (Ollama-compatible)
    llm_api_url: str = Field(default="http://localhost:11434/api")
    llm_model: str = Field(default="mistral")
    llm_temperature: float = Field(default=0.7)
    llm_top_p: float = Field(default=0.9)
    llm_top_k: int = Field(default=40)
    llm_num_predict: int = Field(default=500)
    llm_timeout_seconds: float = Field(default=60.0)

    # Conversation
    default_personality: str = Field(default="sage")

    # Screen capture
    auto_capture_enabled: bool = Field(default=False)
    capture_interval_seconds: int = Field(default=15)
    capture_max_age_hours: float = Field(default=168.0)
    capture_sweep_interval_minutes: int = Field(default=60)

    # Memory
    max_memory_entries: int = Field(default=1000)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def database_path(self) -> Path:
        """Path of the single memory database file."""
        return self.base_dir / "memory.db"

    @property
    def capture_dir(self) -> Path:
        """Directory that holds content-addressed screen captures."""
        return self.base_dir / "captures"


settings = Settings()
