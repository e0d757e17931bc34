"""Discord bot for issuebot.

Runs alongside FastAPI using the same event loop. On startup it initializes
every guild it is already in, one at a time, then starts the periodic
refresh. Guild joins and leaves keep the registry in step, and three text
commands are honoured in each guild's issues channel:

- ``!refresh-issues`` — refresh every label embed now.
- ``!refresh-labels`` — re-pull labels, rescan the channel, then refresh.
- ``!status`` — reply with repository, label count and last update time.

The bot is optional: if DISCORD_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

import discord
from discord import Intents
from discord.ext import commands

from issuebot.core.scheduler_runner import start_refresh_scheduler
from issuebot.discord.embeds import build_status_embed

if TYPE_CHECKING:
    from apscheduler.schedulers.asyncio import AsyncIOScheduler

    from issuebot.config import Settings
    from issuebot.core.registry import GuildRegistry

logger = logging.getLogger(__name__)

REACTION_REFRESHED = "\N{WHITE HEAVY CHECK MARK}"
REACTION_LABELS = "\N{LABEL}\N{VARIATION SELECTOR-16}"
REACTION_FAILED = "\N{CROSS MARK}"


class IssueBot(commands.Bot):
    """The issuebot Discord bot.

    Owns no issue state itself: everything per guild lives in the
    ``GuildRegistry`` handed in by the app.
    """

    def __init__(self, settings: Settings, registry: GuildRegistry) -> None:
        intents = Intents.default()
        intents.message_content = True

        super().__init__(
            command_prefix="!",
            intents=intents,
            help_command=None,
            description="Mirrors open GitHub issues into per-label embeds.",
        )
        self.settings = settings
        self.registry = registry
        self.scheduler: AsyncIOScheduler | None = None
        self._setup_done: bool = False
        self._runner_task: asyncio.Task[None] | None = None
        self.add_check(self._in_issues_channel)
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register the text commands. Extra arguments make a command not match."""

        @self.command(name="refresh-issues", ignore_extra=False)
        async def refresh_issues_command(ctx: commands.Context[IssueBot]) -> None:
            await self._handle_refresh_issues(ctx.message)

        @self.command(name="refresh-labels", ignore_extra=False)
        async def refresh_labels_command(ctx: commands.Context[IssueBot]) -> None:
            await self._handle_refresh_labels(ctx.message)

        @self.command(name="status", ignore_extra=False)
        async def status_command(ctx: commands.Context[IssueBot]) -> None:
            await self._handle_status(ctx.message)

    async def _in_issues_channel(self, ctx: commands.Context[IssueBot]) -> bool:
        """Only honour commands in a READY guild's issues channel."""
        return self.accepts_commands_from(ctx.message)

    def accepts_commands_from(self, message: discord.Message) -> bool:
        if message.guild is None or message.author.bot:
            return False
        if getattr(message.channel, "name", None) != self.settings.issues_channel:
            return False
        state = self.registry.get(message.guild.id)
        return state is not None and state.is_ready

    async def on_command_error(
        self,
        ctx: commands.Context[IssueBot],
        error: commands.CommandError,
    ) -> None:
        """Silently ignore anything that is not one of our commands in the right place."""
        if isinstance(
            error,
            commands.CommandNotFound | commands.CheckFailure | commands.UserInputError,
        ):
            return
        logger.error("discord_command_error command=%s", ctx.command, exc_info=error)

    # -- lifecycle -----------------------------------------------------------------

    async def on_ready(self) -> None:
        """Called when the bot has connected to Discord.

        on_ready fires on every reconnect, not just the first connection.
        Guard setup to run only once so guilds are not re-initialized and the
        scheduler is not started twice.
        """
        user = self.user
        logger.info(
            "discord_bot_ready user=%s guilds=%d",
            user.name if user else "unknown",
            len(self.guilds),
        )
        if self._setup_done or user is None:
            return
        self._setup_done = True
        await self.registry.initialize_all(list(self.guilds), user.id)
        self.scheduler = start_refresh_scheduler(self.registry, self.settings.update_interval)

    async def on_guild_join(self, guild: discord.Guild) -> None:
        logger.info("discord_guild_joined guild=%s id=%d", guild.name, guild.id)
        if self.user is None:
            return
        try:
            await self.registry.initialize(guild, self.user.id)
        except Exception:  # Last-resort handler — GitHub and Discord errors
            logger.exception("discord_guild_setup_failed guild=%s", guild.name)

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        logger.info("discord_guild_left guild=%s id=%d", guild.name, guild.id)
        self.registry.remove(guild.id)

    # -- command handlers --------------------------------------------------------------

    async def _handle_refresh_issues(self, message: discord.Message) -> None:
        """Handle ``!refresh-issues`` — refresh every label embed for this guild."""
        guild = message.guild
        assert guild is not None
        try:
            result = await self.registry.refresh(guild.id)
            await message.add_reaction(REACTION_REFRESHED if result.ok else REACTION_FAILED)
        except Exception:  # Last-resort handler — GitHub and Discord errors
            logger.exception("discord_refresh_issues_failed guild=%s", guild.name)
            await self._react_failed(message)

    async def _handle_refresh_labels(self, message: discord.Message) -> None:
        """Handle ``!refresh-labels`` — reload labels, rescan messages, refresh."""
        guild = message.guild
        assert guild is not None
        user = self.user
        try:
            result = await self.registry.reload_labels(guild.id, user.id if user else 0)
            await message.add_reaction(REACTION_LABELS if result.ok else REACTION_FAILED)
        except Exception:  # Last-resort handler — GitHub and Discord errors
            logger.exception("discord_refresh_labels_failed guild=%s", guild.name)
            await self._react_failed(message)

    async def _handle_status(self, message: discord.Message) -> None:
        """Handle ``!status`` — report repository, tracked labels and last update."""
        guild = message.guild
        assert guild is not None
        try:
            labels_tracked, last_update = self.registry.status(guild.id)
            embed = build_status_embed(self.settings.repository, labels_tracked, last_update)
            await message.reply(embed=embed)
        except Exception:  # Last-resort handler — registry and Discord errors
            logger.exception("discord_status_failed guild=%s", guild.name)
            await self._react_failed(message)

    async def _react_failed(self, message: discord.Message) -> None:
        try:
            await message.add_reaction(REACTION_FAILED)
        except discord.HTTPException:
            logger.warning("discord_reaction_failed message_id=%d", message.id)

    async def close(self) -> None:
        """Clean shutdown: stop the scheduler and queue, close the bot, reap its runner task."""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
        await self.registry.close()
        await super().close()

        runner = self._runner_task
        if runner is not None and runner is not asyncio.current_task() and not runner.done():
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner


def is_discord_enabled(settings: Settings) -> bool:
    """Check whether Discord integration should be started."""
    return bool(settings.discord_enabled and settings.discord_token)


async def start_discord_bot(settings: Settings, registry: GuildRegistry) -> IssueBot:
    """Create and start the Discord bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately
    after starting it.
    """
    bot = IssueBot(settings=settings, registry=registry)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler — bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    bot._runner_task = asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
