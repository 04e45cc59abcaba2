"""
Configuration management for homecommand.

This module provides a Settings class that loads configuration from environment
variables (or a ``.env`` file), allowing provider selection and credentials to
change without code changes.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when a required setting is missing or malformed.

    The message always names the offending setting so operators can fix the
    environment without reading code.
    """


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    # Provider selection
    ai_provider: str = "copilot"
    ai_model: str | None = None

    # Provider credentials
    anthropic_api_key: str | None = None
    github_token: str | None = None
    zai_api_key: str | None = None
    zai_base_url: str = "https://api.z.ai/api/v1"
    openai_api_key: str | None = None
    azure_openai_api_key: str | None = None
    azure_openai_endpoint: str | None = None
    azure_openai_deployment: str = "gpt-4o"
    azure_openai_api_version: str = "2024-12-01-preview"

    # Command loop
    command_timeout: float = 120.0  # overall wall-clock budget per command
    tool_timeout: float = 30.0
    resync_delay: float = 5.0
    max_rounds: int = 10

    # Conversation memory
    conversation_encryption_key: str | None = None  # 64 hex chars
    database_path: str = "homecommand.db"
    max_history_turns: int = 20

    # Collaborator wiring, "package.module:factory"
    capabilities_factory: str | None = None  # returns HomeCapabilities
    speech_factory: str | None = None  # returns SpeechServices

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()
