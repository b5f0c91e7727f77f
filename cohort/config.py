"""
Cohort Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


# Context window sizes (tokens) for the models agents are usually pointed at.
CONTEXT_WINDOW_SIZES: dict[str, int] = {
    "gpt-3.5-turbo": 4096,
    "gpt-3.5-turbo-16k": 16384,
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "claude-3-5-sonnet-latest": 200000,
    "claude-3-5-haiku-latest": 200000,
}
DEFAULT_CONTEXT_WINDOW_SIZE = 4096


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    return int(raw) if raw else None


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-3.5-turbo")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Completion limits
    CONTEXT_WINDOW_SIZE: int | None = _optional_int("CONTEXT_WINDOW_SIZE")
    MAX_COMPLETION_TOKENS: int = int(os.getenv("MAX_COMPLETION_TOKENS", "1024"))
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
    LLM_MAX_ATTEMPTS: int = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))

    # Agent loop cadence
    TICK_INTERVAL_SECONDS: float = float(os.getenv("TICK_INTERVAL_SECONDS", "1.0"))
    HEARTBEAT_INTERVAL_SECONDS: float = float(
        os.getenv("HEARTBEAT_INTERVAL_SECONDS", "60.0")
    )

    # Storage
    STORE_PATH: Path = Path(os.getenv("STORE_PATH", ".store"))
    STORE_TIMEOUT_SECONDS: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "30"))

    @classmethod
    def context_window_size(cls, model: str | None = None) -> int:
        """Resolve the context window for ``model``; the env override wins."""
        if cls.CONTEXT_WINDOW_SIZE:
            return cls.CONTEXT_WINDOW_SIZE
        return CONTEXT_WINDOW_SIZES.get(model or cls.LLM_MODEL, DEFAULT_CONTEXT_WINDOW_SIZE)

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are missing."""
        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For local models, set LLM_PROVIDER=ollama instead."
            )

        if cls.TICK_INTERVAL_SECONDS <= 0 or cls.HEARTBEAT_INTERVAL_SECONDS <= 0:
            raise ValueError("Tick and heartbeat intervals must be positive")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Cohort Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Context Window: {cls.context_window_size()} tokens",
            f"  Tick Interval: {cls.TICK_INTERVAL_SECONDS}s",
            f"  Heartbeat Interval: {cls.HEARTBEAT_INTERVAL_SECONDS}s",
            f"  Store: {cls.STORE_PATH}",
        ]
        return "\n".join(lines)
