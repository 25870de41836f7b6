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
    """Nova configuration. All values come from environment variables."""

    # Anthropic (generation)
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    max_tokens: int = Field(default=2048)
    temperature: float = Field(default=0.7)

    # OpenAI (embeddings)
    openai_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")

    # Database
    database_path: Path = Field(default=Path("data/nova.db"))

    # Retrieval
    retrieval_enabled: bool = Field(default=True)
    retrieval_limit: int = Field(default=5)
    retrieval_min_similarity: float = Field(default=0.7)

    # Tool calling
    max_tool_rounds: int = Field(default=5)
    max_consecutive_tool_failures: int = Field(default=2)
    tool_timeout_seconds: float = Field(default=30.0)

    # Conversation
    max_context_messages: int = Field(default=20)

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


settings = Settings()
