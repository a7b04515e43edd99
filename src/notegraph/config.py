"""Configuration module for notegraph."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notegraph import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: survives reinstalls, lives alongside the database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NotegraphConfig(BaseModel):
    """Configuration for the notegraph library and server."""

    # Base directory for the project
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTEGRAPH_SERVER_NAME", "notegraph"))
    server_version: str = Field(default=__version__)

    # Characters of surrounding text captured on each side of a mention
    context_length: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_CONTEXT_LENGTH", "50"))
    )
    # Titles shorter than this never produce unlinked mentions
    min_mention_title_length: int = Field(
        default_factory=lambda: int(
            os.getenv("NOTEGRAPH_MIN_MENTION_TITLE_LENGTH", "3")
        )
    )
    # How many ranked candidates the link suggester looks at before filtering
    suggestion_pool_size: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_SUGGESTION_POOL_SIZE", "8"))
    )

    # AI augmentation (optional). Without a key the deterministic reasons are used.
    ai_enabled: bool = Field(
        default_factory=lambda: _env_flag("NOTEGRAPH_AI_ENABLED", "true")
    )
    ai_api_key: Optional[str] = Field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY") or None
    )
    ai_model: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_AI_MODEL", "gpt-4o-mini")
    )
    ai_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("NOTEGRAPH_AI_TIMEOUT", "10"))
    )

    # Presence heartbeats older than this are considered gone
    presence_window_seconds: int = Field(
        default_factory=lambda: int(os.getenv("NOTEGRAPH_PRESENCE_WINDOW", "30"))
    )

    # Persistent log directory (None = ~/.notegraph/logs)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTEGRAPH_LOG_DIR"))
            if os.getenv("NOTEGRAPH_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "NotegraphConfig":
        """Reject settings that would make the core misbehave."""
        if self.context_length < 0:
            raise ValueError("context_length must be >= 0")
        if self.min_mention_title_length < 1:
            raise ValueError("min_mention_title_length must be >= 1")
        if self.suggestion_pool_size < 1:
            raise ValueError("suggestion_pool_size must be >= 1")
        if self.ai_timeout_seconds <= 0:
            raise ValueError("ai_timeout_seconds must be > 0")
        if self.presence_window_seconds < 1:
            raise ValueError("presence_window_seconds must be >= 1")
        return self

    @property
    def ai_available(self) -> bool:
        """True when AI augmentation is switched on and a key is configured."""
        return self.ai_enabled and bool(self.ai_api_key)

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NotegraphConfig()
