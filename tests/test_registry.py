"""Tests for the guild registry — initialization, refresh and per-guild isolation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest
from conftest import (
    BOT_USER_ID,
    http_error,
    issue_payload,
    make_channel,
    make_guild,
    make_message,
    not_found,
)

from issuebot.config import Settings
from issuebot.core.labels import UNLABELED
from issuebot.core.registry import GuildNotReadyError, GuildRegistry
from issuebot.discord.embeds import format_label_title
from issuebot.github.client import GitHubClient, GitHubError
from issuebot.models.guild import GuildPhase

REPO_LABELS = ["bug", "enhancement", "confirmed"]


def _issues() -> list[dict[str, Any]]:
    return [
        issue_payload(1, ["bug"]),
        issue_payload(2, ["enhancement", "confirmed"]),
        issue_payload(3),
        issue_payload(4, ["bug"], pull_request=True),
        issue_payload(5, ["confirmed"]),
    ]


@pytest.fixture
async def registry(
    settings: Settings, make_github: Callable[..., GitHubClient]
) -> GuildRegistry:
    reg = GuildRegistry(settings, make_github(labels=list(REPO_LABELS), issues=_issues()))
    yield reg
    await reg.close()
    await reg.github.aclose()


def _sent_titles(channel: Any) -> list[str]:
    return [call.kwargs["embed"].title for call in channel.send.await_args_list]


class TestInitialize:
    async def test_guild_without_channel_is_dropped(self, registry: GuildRegistry) -> None:
        guild = make_guild(channels=[make_channel(name="general")])
        assert await registry.initialize(guild, BOT_USER_ID) is None
        assert guild.id not in registry

    async def test_full_setup(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        guild = make_guild(channels=[make_channel(name="general"), channel])

        state = await registry.initialize(guild, BOT_USER_ID)

        assert state is not None
        assert state.phase is GuildPhase.READY
        assert state.channel is channel
        assert state.labels.priority == ["bug", "enhancement", UNLABELED]
        assert _sent_titles(channel) == [
            format_label_title("bug"),
            format_label_title("enhancement"),
            format_label_title(UNLABELED),
        ]
        assert set(state.message_ids) == {"bug", "enhancement", UNLABELED}
        assert state.last_refresh is not None

    async def test_reuses_messages_found_in_history(self, registry: GuildRegistry) -> None:
        history = [
            make_message(title=format_label_title("bug"), message_id=101),
            make_message(title=format_label_title("enhancement"), message_id=102),
            make_message(title=format_label_title("unlabeled"), message_id=103),
        ]
        channel = make_channel(history=history)
        state = await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)

        assert state is not None
        assert state.message_ids == {"bug": 101, "enhancement": 102, UNLABELED: 103}
        channel.send.assert_not_awaited()
        assert channel.get_partial_message.call_count == 3

    async def test_label_fetch_failure_falls_back(
        self, settings: Settings, make_github: Callable[..., GitHubClient]
    ) -> None:
        registry = GuildRegistry(settings, make_github(labels_status=502, issues=_issues()))
        state = await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        await registry.close()

        assert state is not None
        assert state.is_ready
        assert state.labels.priority == ["bug", "enhancement", UNLABELED]

    async def test_history_failure_keeps_going(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        channel.history.side_effect = http_error(403)
        state = await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)

        assert state is not None
        assert state.is_ready
        assert channel.send.await_count == 3

    async def test_refresh_failure_leaves_guild_ready(
        self, settings: Settings, make_github: Callable[..., GitHubClient]
    ) -> None:
        registry = GuildRegistry(
            settings, make_github(labels=list(REPO_LABELS), issues_status=500)
        )
        channel = make_channel()
        state = await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)
        await registry.close()

        assert state is not None
        assert state.is_ready
        channel.send.assert_not_awaited()

    async def test_unexpected_scan_error_still_reaches_ready(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        channel.history.side_effect = RuntimeError("history iterator broke")
        state = await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)

        assert state is not None
        assert state.is_ready
        assert registry.ready_guilds() == [state]

    async def test_initialize_all_stamps_last_update(self, registry: GuildRegistry) -> None:
        assert registry.last_update is None
        await registry.initialize_all([make_guild(channels=[make_channel()])], BOT_USER_ID)
        assert registry.last_update is not None
        assert registry.status(1)[1] == registry.last_update

    async def test_initialize_all_is_sequential_and_isolated(
        self, registry: GuildRegistry
    ) -> None:
        good = make_guild(guild_id=1, channels=[make_channel()])
        missing = make_guild(guild_id=2, channels=[])
        other = make_guild(guild_id=3, channels=[make_channel()])

        ready = await registry.initialize_all([good, missing, other], BOT_USER_ID)

        assert ready == 2
        assert 1 in registry and 3 in registry
        assert 2 not in registry


class TestRefresh:
    async def test_unknown_guild(self, registry: GuildRegistry) -> None:
        with pytest.raises(GuildNotReadyError):
            await registry.refresh(999)

    async def test_counts_and_filters_pull_requests(self, registry: GuildRegistry) -> None:
        await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        result = await registry.refresh(1)

        assert result.issues == 4
        assert result.pull_requests_ignored == 1
        assert result.published == ["bug", "enhancement", UNLABELED]
        assert result.ok

    async def test_bucket_contents(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)

        sent = [call.kwargs["embed"] for call in channel.send.await_args_list]
        embeds = {embed.title: embed for embed in sent}
        bug = embeds[format_label_title("bug")]
        enhancement = embeds[format_label_title("enhancement")]
        unlabeled = embeds[format_label_title(UNLABELED)]
        assert "#1]" in bug.description and "#4]" not in bug.description
        assert "#2]" in enhancement.description
        assert "#3]" in unlabeled.description
        # issue 5 carries only an untracked label
        assert all("#5]" not in e.description for e in embeds.values())

    async def test_second_refresh_edits_instead_of_sending(
        self, registry: GuildRegistry
    ) -> None:
        channel = make_channel()
        await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)
        assert channel.send.await_count == 3

        await registry.refresh(1)
        assert channel.send.await_count == 3
        assert channel.get_partial_message.return_value.edit.await_count == 3

    async def test_deleted_message_is_recreated(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        state = await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)
        assert state is not None
        old_ids = dict(state.message_ids)
        channel.get_partial_message.return_value.edit.side_effect = not_found()

        result = await registry.refresh(1)

        assert result.ok
        assert channel.send.await_count == 6
        assert all(state.message_ids[label] != old_ids[label] for label in old_ids)

    async def test_publish_failure_is_per_label(self, registry: GuildRegistry) -> None:
        channel = make_channel()
        await registry.initialize(make_guild(channels=[channel]), BOT_USER_ID)
        edit = channel.get_partial_message.return_value.edit
        edit.side_effect = [None, http_error(500), None]

        result = await registry.refresh(1)

        assert result.published == ["bug", UNLABELED]
        assert result.failed == ["enhancement"]
        assert not result.ok

    async def test_github_failure_raises(self, registry: GuildRegistry) -> None:
        await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        registry.github.list_open_issues = AsyncMock(side_effect=GitHubError("rate limited", 403))
        with pytest.raises(GitHubError):
            await registry.refresh(1)


class TestReloadLabels:
    async def test_picks_up_new_labels(
        self, settings: Settings, make_github: Callable[..., GitHubClient]
    ) -> None:
        labels = ["bug"]
        registry = GuildRegistry(settings, make_github(labels=labels, issues=_issues()))
        state = await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        assert state is not None
        assert state.labels.priority == ["bug", UNLABELED]

        labels.append("Enhancement")
        result = await registry.reload_labels(1, BOT_USER_ID)
        await registry.close()

        assert state.labels.priority == ["bug", "Enhancement", UNLABELED]
        assert "Enhancement" in result.published


class TestRefreshAll:
    async def test_isolates_failures_and_stamps_last_update(
        self, registry: GuildRegistry
    ) -> None:
        guilds = [
            make_guild(guild_id=1, channels=[make_channel()]),
            make_guild(guild_id=2, channels=[make_channel()]),
        ]
        await registry.initialize_all(guilds, BOT_USER_ID)
        real = registry.github.list_open_issues
        registry.github.list_open_issues = AsyncMock(
            side_effect=[GitHubError("boom"), await real()]
        )

        succeeded = await registry.refresh_all()

        assert succeeded == 1
        assert registry.last_update is not None
        assert registry.github.list_open_issues.await_count == 2

    async def test_skips_guilds_that_are_not_ready(self, registry: GuildRegistry) -> None:
        state = await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        assert state is not None
        state.phase = GuildPhase.INITIALIZING
        registry.github.list_open_issues = AsyncMock(return_value=[])

        assert await registry.refresh_all() == 0
        registry.github.list_open_issues.assert_not_awaited()


class TestStatus:
    async def test_reports_labels_and_last_update(self, registry: GuildRegistry) -> None:
        await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        assert registry.status(1) == (3, None)

        await registry.refresh_all()
        labels_tracked, last_update = registry.status(1)
        assert labels_tracked == 3
        assert last_update is not None
        assert last_update == registry.last_update

    async def test_unknown_guild(self, registry: GuildRegistry) -> None:
        with pytest.raises(GuildNotReadyError):
            registry.status(42)


class TestRemove:
    async def test_remove_forgets_guild(self, registry: GuildRegistry) -> None:
        await registry.initialize(make_guild(channels=[make_channel()]), BOT_USER_ID)
        registry.remove(1)
        assert 1 not in registry
        with pytest.raises(GuildNotReadyError):
            await registry.refresh(1)

    async def test_leave_while_setup_is_queued(self, registry: GuildRegistry) -> None:
        release = asyncio.Event()
        blocker = registry.queue.submit("blocker", release.wait)
        channel = make_channel()
        guild = make_guild(guild_id=9, channels=[channel])

        pending = asyncio.create_task(registry.initialize(guild, BOT_USER_ID))
        await asyncio.sleep(0)
        registry.remove(9)
        release.set()
        await blocker

        assert await pending is None
        assert 9 not in registry
        assert registry.ready_guilds() == []
        channel.send.assert_not_awaited()

    async def test_leave_during_setup(self, registry: GuildRegistry) -> None:
        real_list_labels = registry.github.list_labels

        async def list_labels_then_leave() -> Any:
            labels = await real_list_labels()
            registry.remove(9)
            return labels

        registry.github.list_labels = list_labels_then_leave
        channel = make_channel()

        state = await registry.initialize(make_guild(guild_id=9, channels=[channel]), BOT_USER_ID)

        assert state is None
        assert 9 not in registry
        channel.send.assert_not_awaited()

    async def test_rejoin_after_leave(self, registry: GuildRegistry) -> None:
        registry.remove(9)
        guild = make_guild(guild_id=9, channels=[make_channel()])
        state = await registry.initialize(guild, BOT_USER_ID)
        assert state is not None
        assert state.is_ready
        assert 9 in registry

    async def test_remove_unknown_is_noop(self, registry: GuildRegistry) -> None:
        registry.remove(12345)
        assert len(registry) == 0
