"""Publish a label embed: edit the recorded message, or create one.

Two-step protocol: if the guild has a message id for the label, edit that
message in place. Only ``discord.NotFound`` (the message was deleted) falls
back to sending a replacement, whose id then overwrites the recorded one.
Every other error propagates to the caller. With no recorded id the embed is
sent directly. Either way the guild ends up with one live message per label.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from issuebot.models.guild import GuildState

logger = logging.getLogger(__name__)


class PublishOutcome(enum.Enum):
    EDITED = "edited"
    CREATED = "created"


class ChannelUnavailableError(RuntimeError):
    """The guild has no resolved issues channel to publish into."""


async def publish_label_embed(
    state: GuildState,
    label: str,
    embed: discord.Embed,
) -> PublishOutcome:
    """Edit or create the message for ``label`` in the guild's issues channel."""
    channel = state.channel
    if channel is None:
        raise ChannelUnavailableError(f"guild {state.guild_id} has no issues channel")

    message_id = state.message_ids.get(label)
    if message_id is not None:
        try:
            await channel.get_partial_message(message_id).edit(embed=embed)
            return PublishOutcome.EDITED
        except discord.NotFound:
            logger.info(
                "publish_message_missing guild=%s label=%s message_id=%d",
                state.guild_name,
                label,
                message_id,
            )

    message = await channel.send(embed=embed)
    state.message_ids[label] = message.id
    return PublishOutcome.CREATED
