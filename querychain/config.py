"""
Centralized Configuration
=========================
Centralized configuration values and constants for querychain.

This module provides:
- Timeout configuration for network, clone and command operations
- GitHub API settings
- Default locations for results and checkpoint files
- Lenient .env loading for credentials such as GITHUB_TOKEN
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path


def load_env_file_lenient(env_path: Path | None = None) -> None:
    """Load .env from repo root without raising or printing parse warnings.

    Existing environment variables always win over values from the file.
    """
    env_path = env_path or Path(__file__).resolve().parents[1] / ".env"
    if not env_path.exists():
        return

    try:
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError):
        return

    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if not key:
            continue
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", key):
            continue
        os.environ.setdefault(key, value)


load_env_file_lenient()


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration in seconds."""

    # GitHub REST API
    GITHUB_API: float = float(os.getenv("QUERYCHAIN_GITHUB_TIMEOUT", "30"))
    GITHUB_CONNECT: float = 10.0

    # Longest we sleep waiting for a search rate-limit window to reset
    RATE_LIMIT_MAX_WAIT: int = int(os.getenv("QUERYCHAIN_RATE_LIMIT_MAX_WAIT", "120"))

    # Shell commands run by command steps; 0 disables the timeout
    COMMAND_EXECUTION: int = int(os.getenv("QUERYCHAIN_COMMAND_TIMEOUT", "600"))

    # git clone
    CLONE: int = int(os.getenv("QUERYCHAIN_CLONE_TIMEOUT", "900"))

    # File operations
    FILE_LOCK: int = 30


@dataclass(frozen=True)
class GitHubConfig:
    """GitHub API configuration."""

    API_BASE: str = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
    API_VERSION: str = "2022-11-28"
    TOKEN: str = os.getenv("GITHUB_TOKEN", "")

    # Search endpoints return at most 100 items per page and 1000 per query
    PER_PAGE: int = int(os.getenv("QUERYCHAIN_GITHUB_PER_PAGE", "100"))
    MAX_SEARCH_RESULTS: int = 1000


@dataclass(frozen=True)
class ChainConfig:
    """Where chains write their artifacts."""

    OUTPUT_DIR: str = os.getenv("QUERYCHAIN_OUTPUT_DIR", ".")
    CHECKPOINT_DIR: str = os.getenv("QUERYCHAIN_CHECKPOINT_DIR", ".querychain")
    CLONE_DIR: str = os.getenv("QUERYCHAIN_CLONE_DIR", "./tmp")

    # Only an allowlisted environment reaches user commands when true
    SANITIZE_COMMAND_ENV: bool = os.getenv("QUERYCHAIN_SANITIZE_ENV", "true").lower() == "true"


@dataclass(frozen=True)
class TracingConfig:
    """Tracing configuration."""

    SERVICE_NAME: str = "querychain"
    OTLP_ENDPOINT: str = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
    ENABLED: bool = os.getenv("ENABLE_TRACING", "false").lower() == "true"


# Global singleton instances
TIMEOUTS = TimeoutConfig()
GITHUB = GitHubConfig()
CHAIN = ChainConfig()
TRACING = TracingConfig()
