"""Guild registry — per-guild state and the refresh pipeline.

Owns the mapping from guild id to ``GuildState`` and drives each guild
through ``UNINITIALIZED → INITIALIZING → READY``:

1. Find the text channel named ``settings.issues_channel``.
2. Resolve tracked labels from GitHub (falls back to the include list).
3. Rescan the channel for the bot's existing label messages.
4. Mark READY and run the first refresh.

A refresh fetches open issues, drops pull requests, buckets them by label
priority and publishes one embed per bucket.

Every public operation goes through the ``RefreshQueue`` so GitHub and
Discord only ever see one guild's work at a time. Failures are isolated per
guild: the sweep and periodic tick log and move on, leaving that guild's
state as it was for the next cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

from issuebot.core.buckets import bucketize
from issuebot.core.labels import LabelSet, fallback_labels, resolve_labels
from issuebot.core.refresh_queue import RefreshQueue
from issuebot.discord.embeds import build_label_embed
from issuebot.discord.locator import scan_channel
from issuebot.discord.publisher import publish_label_embed
from issuebot.github.client import GitHubError, filter_pull_requests
from issuebot.models.guild import GuildPhase, GuildState, RefreshResult

if TYPE_CHECKING:
    from issuebot.config import Settings
    from issuebot.github.client import GitHubClient

logger = logging.getLogger(__name__)


class GuildNotReadyError(LookupError):
    """The guild is unknown to the registry or has not finished initializing."""


class GuildRegistry:
    """Owned mapping of guild id → ``GuildState`` plus the operations on it."""

    def __init__(
        self,
        settings: Settings,
        github: GitHubClient,
        queue: RefreshQueue | None = None,
    ) -> None:
        self.settings = settings
        self.github = github
        self.queue = queue or RefreshQueue()
        self.last_update: datetime | None = None
        self._guilds: dict[int, GuildState] = {}
        # Guilds left while an initialize job for them may still be queued.
        self._departed: set[int] = set()

    # -- lookup ----------------------------------------------------------------

    def get(self, guild_id: int) -> GuildState | None:
        return self._guilds.get(guild_id)

    def ready(self, guild_id: int) -> GuildState:
        state = self._guilds.get(guild_id)
        if state is None or not state.is_ready:
            raise GuildNotReadyError(f"guild {guild_id} is not ready")
        return state

    def ready_guilds(self) -> list[GuildState]:
        return [state for state in self._guilds.values() if state.is_ready]

    def status(self, guild_id: int) -> tuple[int, datetime | None]:
        """Labels tracked by a READY guild and the time of the last global refresh."""
        return len(self.ready(guild_id).labels), self.last_update

    def __contains__(self, guild_id: object) -> bool:
        return guild_id in self._guilds

    def __len__(self) -> int:
        return len(self._guilds)

    # -- lifecycle ---------------------------------------------------------------

    async def initialize(self, guild: discord.Guild, bot_user_id: int) -> GuildState | None:
        """Queue initialization of one guild and wait for it."""
        self._departed.discard(guild.id)
        return await self.queue.submit(
            f"initialize guild={guild.id}",
            lambda: self._initialize(guild, bot_user_id),
        )

    async def initialize_all(self, guilds: Iterable[discord.Guild], bot_user_id: int) -> int:
        """Initialize every already-joined guild, one after another.

        Returns how many guilds reached READY.
        """
        jobs: list[tuple[discord.Guild, asyncio.Future[GuildState | None]]] = []
        for guild in guilds:
            self._departed.discard(guild.id)
            future = self.queue.submit(
                f"initialize guild={guild.id}",
                lambda guild=guild: self._initialize(guild, bot_user_id),
            )
            jobs.append((guild, future))

        ready = 0
        for guild, future in jobs:
            try:
                state = await future
            except Exception:  # per-guild isolation
                logger.exception("guild_setup_failed guild=%s id=%d", guild.name, guild.id)
                continue
            if state is not None and state.is_ready:
                ready += 1
        self.last_update = datetime.now(UTC)
        logger.info("guild_setup_sweep_complete ready=%d total=%d", ready, len(jobs))
        return ready

    def remove(self, guild_id: int) -> None:
        """Forget a guild. Its messages stay on Discord; nothing to tear down."""
        self._departed.add(guild_id)
        state = self._guilds.pop(guild_id, None)
        if state is not None:
            logger.info("guild_removed guild=%s id=%d", state.guild_name, guild_id)

    async def _initialize(self, guild: discord.Guild, bot_user_id: int) -> GuildState | None:
        if guild.id in self._departed:
            logger.info("guild_setup_skipped_departed guild=%s id=%d", guild.name, guild.id)
            return None
        logger.info("guild_setup_start guild=%s id=%d", guild.name, guild.id)
        channel = discord.utils.get(guild.text_channels, name=self.settings.issues_channel)
        if channel is None:
            logger.warning(
                "guild_setup_no_channel guild=%s channel=#%s",
                guild.name,
                self.settings.issues_channel,
            )
            self._guilds.pop(guild.id, None)
            return None

        state = GuildState(
            guild_id=guild.id,
            guild_name=guild.name,
            channel=channel,
            phase=GuildPhase.INITIALIZING,
        )
        self._guilds[guild.id] = state

        await self._resolve_labels(state)
        if not self._is_registered(state):
            return self._abandon_setup(state)
        await self._scan_messages(state, bot_user_id)
        if not self._is_registered(state):
            return self._abandon_setup(state)
        state.phase = GuildPhase.READY

        try:
            await self._refresh(state)
        except Exception:  # Last-resort handler — GitHub and Discord errors
            logger.exception("guild_setup_refresh_failed guild=%s", guild.name)
        else:
            logger.info("guild_setup_complete guild=%s labels=%d", guild.name, len(state.labels))
        return state if self._is_registered(state) else None

    def _is_registered(self, state: GuildState) -> bool:
        return self._guilds.get(state.guild_id) is state

    def _abandon_setup(self, state: GuildState) -> None:
        logger.info(
            "guild_setup_abandoned guild=%s id=%d phase=%s",
            state.guild_name,
            state.guild_id,
            state.phase.value,
        )
        return None

    # -- labels & messages -----------------------------------------------------------

    async def _resolve_labels(self, state: GuildState) -> LabelSet:
        """Refresh the guild's tracked labels. Never raises."""
        settings = self.settings
        try:
            repo_labels = await self.github.list_labels()
        except GitHubError:
            logger.exception("guild_labels_fetch_failed guild=%s", state.guild_name)
            state.labels = fallback_labels(
                included=settings.included_labels,
                track_unlabeled=settings.track_unlabeled,
            )
        else:
            state.labels = resolve_labels(
                [label.name for label in repo_labels],
                included=settings.included_labels,
                excluded=settings.excluded_labels,
                track_unlabeled=settings.track_unlabeled,
            )
            logger.info(
                "guild_labels_resolved guild=%s order=%s labels=%s",
                state.guild_name,
                "included" if settings.included_labels else "github",
                ", ".join(state.labels.priority),
            )
        return state.labels

    async def _scan_messages(self, state: GuildState, bot_user_id: int) -> None:
        """Rebuild label → message ids from channel history. Failures keep the old map."""
        if state.channel is None:
            return
        try:
            found = await scan_channel(
                state.channel,
                bot_user_id=bot_user_id,
                labels=state.labels,
            )
        except Exception:  # Last-resort handler — the scan never blocks READY
            logger.exception("guild_scan_failed guild=%s", state.guild_name)
            return
        state.message_ids.update(found)
        logger.info("guild_scan_complete guild=%s messages=%d", state.guild_name, len(found))

    # -- refresh ---------------------------------------------------------------------

    async def refresh(self, guild_id: int) -> RefreshResult:
        """Queue a refresh of one READY guild and wait for it.

        Raises ``GuildNotReadyError`` for unknown guilds and ``GitHubError``
        when the issue fetch fails.
        """
        state = self.ready(guild_id)
        return await self.queue.submit(
            f"refresh guild={guild_id}",
            lambda: self._refresh(state),
        )

    async def reload_labels(self, guild_id: int, bot_user_id: int) -> RefreshResult:
        """Re-pull labels, rescan the channel, then refresh."""
        state = self.ready(guild_id)

        async def _reload() -> RefreshResult:
            await self._resolve_labels(state)
            await self._scan_messages(state, bot_user_id)
            return await self._refresh(state)

        return await self.queue.submit(f"reload_labels guild={guild_id}", _reload)

    async def refresh_all(self) -> int:
        """Refresh every READY guild in turn and stamp ``last_update``.

        Returns how many guilds refreshed without error.
        """
        jobs: list[tuple[GuildState, asyncio.Future[RefreshResult]]] = []
        for state in self.ready_guilds():
            future = self.queue.submit(
                f"refresh guild={state.guild_id}",
                lambda state=state: self._refresh(state),
            )
            jobs.append((state, future))
        logger.info("refresh_cycle_start guilds=%d", len(jobs))

        succeeded = 0
        for state, future in jobs:
            try:
                await future
            except Exception:  # per-guild isolation
                logger.exception("refresh_cycle_guild_failed guild=%s", state.guild_name)
            else:
                succeeded += 1
        self.last_update = datetime.now(UTC)
        logger.info(
            "refresh_cycle_complete ok=%d total=%d at=%s",
            succeeded,
            len(jobs),
            self.last_update.isoformat(timespec="seconds"),
        )
        return succeeded

    async def _refresh(self, state: GuildState) -> RefreshResult:
        if not self._is_registered(state):
            # Guild left (or was re-initialized) while this job waited in the queue.
            raise GuildNotReadyError(f"guild {state.guild_id} is no longer registered")

        fetched = await self.github.list_open_issues()
        issues = filter_pull_requests(fetched)
        result = RefreshResult(
            issues=len(issues),
            pull_requests_ignored=len(fetched) - len(issues),
        )
        buckets = bucketize(
            issues,
            state.labels,
            max_per_label=self.settings.max_issues_per_label,
        )
        for label, bucket in buckets.items():
            embed = build_label_embed(label, bucket, self.github.label_url(label))
            try:
                await publish_label_embed(state, label, embed)
            except Exception:  # Last-resort handler — per-label isolation
                logger.exception(
                    "guild_publish_failed guild=%s label=%s",
                    state.guild_name,
                    label,
                )
                result.failed.append(label)
            else:
                result.published.append(label)

        state.last_refresh = datetime.now(UTC)
        logger.info(
            "guild_refresh_complete guild=%s issues=%d prs_ignored=%d failed=%d",
            state.guild_name,
            result.issues,
            result.pull_requests_ignored,
            len(result.failed),
        )
        return result

    async def close(self) -> None:
        await self.queue.close()
