from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_prefix": "USAGEMON_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # Claude Code local data
    projects_dir: Path = Path.home() / ".claude" / "projects"
    claude_config_path: Path = Path.home() / ".claude.json"
    backups_dir: Path = Path.home() / ".claude" / "backups"
    credentials_path: Path = Path.home() / ".claude" / ".credentials.json"

    # Remote utilization
    usage_api_url: str = "https://api.anthropic.com/api/oauth/usage"
    remote_timeout_seconds: float = 10.0

    # Scanning
    refresh_interval_seconds: float = 60.0
    chunk_size: int = 65_536

    # "api" | "pro" | "max5" | "max20"; empty = detect from ~/.claude.json
    plan: str = ""

    db_path: Path = Path(__file__).parent / "usage.db"

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    log_level: str = "INFO"


settings = Settings()
