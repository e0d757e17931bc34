"""Shared test fixtures.

Discord objects are mocked — no real Discord connection required. GitHub is
served by ``httpx.MockTransport``.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import discord
import httpx
import pytest

from issuebot.config import Settings
from issuebot.github.client import GitHubClient
from issuebot.models.issue import Issue

BOT_USER_ID = 4242

_message_ids = itertools.count(900_000)


def make_issue(
    number: int,
    labels: Iterable[str] = (),
    *,
    title: str | None = None,
    pull_request: bool = False,
) -> Issue:
    return Issue(
        number=number,
        title=title or f"Issue {number}",
        html_url=f"https://github.com/acme/widgets/issues/{number}",
        labels=[{"name": name} for name in labels],
        pull_request={"url": f"https://api.github.com/pulls/{number}"} if pull_request else None,
    )


def issue_payload(
    number: int,
    labels: Iterable[str] = (),
    *,
    pull_request: bool = False,
) -> dict[str, Any]:
    """Raw GitHub JSON for one entry of the issues endpoint."""
    payload: dict[str, Any] = {
        "number": number,
        "title": f"Issue {number}",
        "html_url": f"https://github.com/acme/widgets/issues/{number}",
        "state": "open",
        "labels": [{"id": i, "name": name, "color": "ededed"} for i, name in enumerate(labels)],
        "updated_at": "2026-10-01T12:00:00Z",
        "user": {"login": "octocat"},
    }
    if pull_request:
        pulls = "https://api.github.com/repos/acme/widgets/pulls"
        payload["pull_request"] = {"url": f"{pulls}/{number}"}
    return payload


def not_found() -> discord.NotFound:
    response = MagicMock()
    response.status = 404
    response.reason = "Not Found"
    return discord.NotFound(response, "Unknown Message")


def http_error(status: int = 500) -> discord.HTTPException:
    response = MagicMock()
    response.status = status
    response.reason = "Server Error"
    return discord.HTTPException(response, "boom")


class AsyncIter:
    """Async iterator over a fixed list, standing in for ``channel.history()``."""

    def __init__(self, items: Iterable[Any]) -> None:
        self._items = iter(list(items))

    def __aiter__(self) -> AsyncIter:
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._items)
        except StopIteration:
            raise StopAsyncIteration from None


def make_message(
    *,
    author_id: int = BOT_USER_ID,
    title: str | None = None,
    message_id: int | None = None,
) -> MagicMock:
    message = MagicMock(spec=discord.Message)
    message.id = message_id if message_id is not None else next(_message_ids)
    message.author = MagicMock()
    message.author.id = author_id
    message.embeds = [discord.Embed(title=title)] if title is not None else []
    return message


def make_channel(name: str = "github-issues", history: Iterable[Any] = ()) -> MagicMock:
    """A text channel whose ``send`` returns messages with fresh ids."""
    channel = MagicMock(spec=discord.TextChannel)
    channel.name = name
    channel.send = AsyncMock(side_effect=lambda **_: make_message())
    partial = MagicMock()
    partial.edit = AsyncMock()
    channel.get_partial_message = MagicMock(return_value=partial)
    items = list(history)
    channel.history = MagicMock(side_effect=lambda **_: AsyncIter(items))
    return channel


def make_guild(
    guild_id: int = 1,
    name: str = "Test Guild",
    channels: Iterable[Any] = (),
) -> MagicMock:
    guild = MagicMock(spec=discord.Guild)
    guild.id = guild_id
    guild.name = name
    guild.text_channels = list(channels)
    return guild


def github_transport(
    *,
    labels: list[str] | None = None,
    issues: list[dict[str, Any]] | None = None,
    labels_status: int = 200,
    issues_status: int = 200,
    seen: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    """Serve the labels and issues endpoints of acme/widgets."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/repos/acme/widgets/labels":
            body = [{"name": name, "color": "ededed"} for name in labels or []]
            return httpx.Response(labels_status, json=body)
        if request.url.path == "/repos/acme/widgets/issues":
            return httpx.Response(issues_status, json=issues or [])
        return httpx.Response(404, json={"message": "Not Found"})

    return httpx.MockTransport(handler)


@pytest.fixture
def settings() -> Settings:
    """Test settings with explicit label configuration."""
    return Settings(
        discord_token="",
        github_token="",
        repo_owner="acme",
        repo_name="widgets",
        issues_channel="github-issues",
        included_labels=["bug", "enhancement"],
        excluded_labels=[],
        track_unlabeled=True,
        update_interval=5,
        max_issues_per_label=100,
    )


@pytest.fixture
def make_github() -> Callable[..., GitHubClient]:
    """Factory for a GitHubClient bound to a mock transport."""

    def _make(**transport_kwargs: Any) -> GitHubClient:
        return GitHubClient("acme", "widgets", transport=github_transport(**transport_kwargs))

    return _make
