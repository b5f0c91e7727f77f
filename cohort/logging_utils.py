"""Logging utilities for Cohort agents.

Provides color-coded console output so model calls, memory maintenance and
faults are easy to tell apart when several agents share one terminal.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Memory maintenance (pruning, summarization)
    YELLOW = "\033[93m"    # LLM calls (decisions, summaries)
    RED = "\033[91m"       # Errors and retries
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata
    MAGENTA = "\033[95m"   # Events entering an agent's memory

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_MEMORY = "[mem]"
LOG_TAG_LLM = "[LLM]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[ok]"
LOG_TAG_INFO = "[i]"
LOG_TAG_STORE_FAULT = "[STORE FAULT]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if COHORT_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("COHORT_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def log_memory(message: str) -> None:
    """Log a memory maintenance operation (blue)."""
    print(colored(f"{LOG_TAG_MEMORY} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or retry (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_store_fault(message: str) -> None:
    """Log a fatal storage failure (bold red)."""
    print(colored(f"{LOG_TAG_STORE_FAULT} {message}", Color.RED, bold=True))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


def log_event(agent: str, kind: str, content: str, *, limit: int = 400) -> None:
    """Echo an event as it enters an agent's memory (magenta header)."""
    header = colored(f"=== {agent}: {kind} ===", Color.MAGENTA, bold=True)
    body = content if len(content) <= limit else content[: limit - 3] + "..."
    print(f"{header}\n{body}\n")
