"""Application settings via pydantic-settings. Loads from environment and .env file."""

from __future__ import annotations

import json
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

DEFAULT_INCLUDED_LABELS: list[str] = [
    "pending release",
    "bug",
    "feature request",
    "enhancement",
]


def _split_label_list(value: object) -> object:
    """Accept a JSON array or a comma-separated string for list settings."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return []
    if text.startswith("["):
        return json.loads(text)
    return [part.strip() for part in text.split(",") if part.strip()]


class Settings(BaseSettings):
    """issuebot configuration.

    All values can be overridden via environment variables or .env file.
    Loaded once at startup; ``!refresh-labels`` re-pulls GitHub labels but
    never re-reads these values.
    """

    # Discord
    discord_token: str = ""
    discord_enabled: bool = True
    issues_channel: str = "github-issues"

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 15.0
    repo_owner: str = "gwdevhub"
    repo_name: str = "GWToolboxpp"

    # Label tracking — INCLUDED_LABELS order is the bucket priority order
    included_labels: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_INCLUDED_LABELS)
    )
    excluded_labels: Annotated[list[str], NoDecode] = Field(default_factory=list)
    track_unlabeled: bool = True

    # Refresh cadence
    update_interval: int = Field(default=5, ge=1)  # minutes
    max_issues_per_label: int = Field(default=100, ge=1)

    # HTTP liveness endpoint
    port: int = 10000

    # Logging
    issuebot_log_level: str = "INFO"

    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    @field_validator("included_labels", "excluded_labels", mode="before")
    @classmethod
    def _parse_label_list(cls, value: object) -> object:
        return _split_label_list(value)

    @property
    def repository(self) -> str:
        """``owner/name`` slug of the tracked repository."""
        return f"{self.repo_owner}/{self.repo_name}"
