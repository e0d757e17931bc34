"""Per-guild in-memory state.

Nothing here is persisted: on restart the registry rebuilds each guild's
message ids by rescanning channel history.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from issuebot.core.labels import LabelSet

if TYPE_CHECKING:
    import discord


class GuildPhase(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass
class GuildState:
    """Everything the bot tracks for one guild.

    ``message_ids`` maps a tracked label's display name to the id of the
    message that summarizes it. At most one id per label.
    """

    guild_id: int
    guild_name: str
    channel: discord.TextChannel | None = None
    labels: LabelSet = field(default_factory=LabelSet)
    message_ids: dict[str, int] = field(default_factory=dict)
    phase: GuildPhase = GuildPhase.UNINITIALIZED
    last_refresh: datetime | None = None

    @property
    def is_ready(self) -> bool:
        return self.phase is GuildPhase.READY


@dataclass
class RefreshResult:
    """Outcome of one refresh pass for one guild."""

    issues: int = 0
    pull_requests_ignored: int = 0
    published: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed
