"""
Phoenix Arena Configuration

Loads configuration from environment variables with sensible defaults.
Values here are only ever used as defaults; every component accepts its
settings explicitly.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Provider Configuration
    DEFAULT_PROVIDER: str = os.getenv("ARENA_PROVIDER", "anthropic")
    DEFAULT_MODEL: str = os.getenv("ARENA_MODEL", "claude-sonnet-4-20250514")
    DEFAULT_MAX_TOKENS: int = int(os.getenv("ARENA_MAX_TOKENS", "1000"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("ARENA_LLM_TIMEOUT", "120"))

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Self-hosted models (Ollama)
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")
    DEFAULT_LOCAL_MODEL: str = os.getenv("ARENA_LOCAL_MODEL", "llama3")

    # Storage
    # Postgres is used when DATABASE_URL is set, otherwise JSON files under ARCHIVE_DIR
    DATABASE_URL: str | None = os.getenv("DATABASE_URL")
    ARCHIVE_DIR: Path = Path(os.getenv("ARENA_ARCHIVE_DIR", "data/battles"))
    BRAINS_DIR: Path = Path(os.getenv("ARENA_BRAINS_DIR", "brains"))

    # Battle defaults
    DEFAULT_MAX_TURNS: int = int(os.getenv("ARENA_MAX_TURNS", "20"))
    DEFAULT_TURN_DELAY_SECONDS: float = float(os.getenv("ARENA_TURN_DELAY", "2.0"))

    # Server
    HOST: str = os.getenv("ARENA_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "3000"))

    @classmethod
    def validate(cls, provider: str | None = None) -> None:
        """Validate configuration and raise errors if required values are missing.

        Args:
            provider: Provider to check (defaults to DEFAULT_PROVIDER)
        """
        provider = provider or cls.DEFAULT_PROVIDER
        if provider == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider. "
                "For self-hosted models set ARENA_PROVIDER=ollama instead."
            )

        if provider == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider"
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Phoenix Arena Configuration:",
            f"  Provider: {cls.DEFAULT_PROVIDER}",
            f"  Model: {cls.DEFAULT_MODEL}",
            f"  Database: {cls.DATABASE_URL or f'json ({cls.ARCHIVE_DIR})'}",
            f"  Brains: {cls.BRAINS_DIR}",
            f"  Max Turns: {cls.DEFAULT_MAX_TURNS}",
            f"  Turn Delay: {cls.DEFAULT_TURN_DELAY_SECONDS}s",
        ]
        return "\n".join(lines)
