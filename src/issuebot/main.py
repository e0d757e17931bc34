"""FastAPI application factory.

The HTTP side only exists so hosting platforms have something to health-check;
the real work happens in the Discord bot, which the lifespan starts in the same
event loop.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response

from issuebot.config import Settings
from issuebot.core.registry import GuildRegistry
from issuebot.github.client import GitHubClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: build the GitHub client and guild registry, optionally start the bot."""
    settings: Settings = app.state.settings
    logger.info(
        "issuebot_config repo=%s has_github_token=%s update_interval=%d channel=#%s",
        settings.repository,
        bool(settings.github_token),
        settings.update_interval,
        settings.issues_channel,
    )

    github = GitHubClient(
        settings.repo_owner,
        settings.repo_name,
        token=settings.github_token,
        base_url=settings.github_api_url,
        timeout=settings.github_timeout_seconds,
    )
    registry = GuildRegistry(settings, github)
    app.state.github = github
    app.state.registry = registry

    # Start Discord bot if configured
    discord_bot = None
    from issuebot.discord.bot import is_discord_enabled

    if is_discord_enabled(settings):
        from issuebot.discord.bot import start_discord_bot

        discord_bot = await start_discord_bot(settings, registry)
        app.state.discord_bot = discord_bot
        logger.info("discord_bot_integration_started")
    else:
        app.state.discord_bot = None
        logger.info("discord_bot_integration_disabled")

    yield

    # Shutdown Discord bot if running
    if discord_bot is not None:
        await discord_bot.close()
        logger.info("discord_bot_integration_stopped")

    await registry.close()
    await github.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the issuebot FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.issuebot_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="issuebot",
        version="0.1.0",
        description="Mirrors a GitHub repository's open issues into Discord",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    @app.get("/")
    async def liveness() -> Response:
        return Response(status_code=200)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app (and with it the bot) with uvicorn."""
    settings: Settings = app.state.settings
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
