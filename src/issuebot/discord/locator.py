"""Find the bot's existing label messages in a channel.

State is not persisted, so after a restart (or a label reload) the bot
rebuilds its label → message id map from the channel's recent history. A
message counts when the bot wrote it, it carries an embed, and the embed
title parses as ``🏷️ {LABEL} Issues`` for a label that is still tracked.

If one label has several candidate messages, the last one iterated wins.
History comes back newest first, so that is the oldest in the window.
Duplicates should not normally exist. A managed message whose title was
edited by hand no longer parses and will be replaced by a new one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from issuebot.discord.embeds import LABEL_TITLE_RE

if TYPE_CHECKING:
    import discord

    from issuebot.core.labels import LabelSet

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


def parse_title_label(title: str | None) -> str | None:
    """Extract the label from an embed title, or None if it is not ours."""
    if not title:
        return None
    match = LABEL_TITLE_RE.search(title)
    return match.group(1) if match else None


def match_label_messages(
    messages: Iterable[discord.Message],
    *,
    bot_user_id: int,
    labels: LabelSet,
) -> dict[str, int]:
    """Map tracked label display names to the ids of the bot's messages."""
    found: dict[str, int] = {}
    for message in messages:
        if message.author.id != bot_user_id or not message.embeds:
            continue
        parsed = parse_title_label(message.embeds[0].title)
        if parsed is None:
            continue
        label = labels.canonical(parsed)
        if label is None:
            continue  # stale label from an earlier configuration
        found[label] = message.id
    return found


async def scan_channel(
    channel: discord.TextChannel,
    *,
    bot_user_id: int,
    labels: LabelSet,
    limit: int = HISTORY_LIMIT,
) -> dict[str, int]:
    """Scan the ``limit`` most recent messages in ``channel`` for label messages."""
    messages = [message async for message in channel.history(limit=limit)]
    found = match_label_messages(messages, bot_user_id=bot_user_id, labels=labels)
    for label, message_id in found.items():
        logger.debug("locator_found label=%s message_id=%d", label, message_id)
    return found
