"""Discord embed builders for issuebot.

Builds the per-label issue summary embed and the ``!status`` embed. The label
embed title doubles as the marker the message locator uses to find the bot's
own messages after a restart, so ``format_label_title`` and
``LABEL_TITLE_RE`` must stay in sync.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

if TYPE_CHECKING:
    from issuebot.models.issue import Issue

LABEL_EMOJI = "\N{LABEL}\N{VARIATION SELECTOR-16}"
LABEL_TITLE_RE = re.compile(rf"^{LABEL_EMOJI}\s+(.+)\s+Issues$", re.IGNORECASE)

# Discord's hard limit on embed descriptions.
EMBED_DESCRIPTION_LIMIT = 4096
TRUNCATION_MARKER = "..."

COLOR_DEFAULT = 0x7289DA  # Blurple — labels without a palette entry
COLOR_STATUS = 0x00FF00  # Green — status report

LABEL_COLORS: dict[str, int] = {
    "bug": 0xFF0000,
    "pending release": 0x00FF00,
    "unlabeled": 0x666666,
    "confirmed": 0xFF6600,
    "investigating": 0xFFFF00,
    "in-progress": 0x0099FF,
    "needs-info": 0x9900FF,
    "help-wanted": 0x00FF00,
    "wontfix": 0x666666,
    "duplicate": 0x333333,
    "enhancement": 0x84B6EB,
    "priority-high": 0xFF3333,
    "priority-low": 0x99CCFF,
}


def format_label_title(label: str) -> str:
    return f"{LABEL_EMOJI} {label.upper()} Issues"


def label_color(label: str) -> int:
    return LABEL_COLORS.get(label.lower(), COLOR_DEFAULT)


def pluralize_issues(count: int) -> str:
    return f"{count} issue" if count == 1 else f"{count} issues"


def render_label_description(
    label: str,
    issues: Sequence[Issue],
    url: str,
    *,
    limit: int = EMBED_DESCRIPTION_LIMIT,
) -> str:
    """Render the embed body for one label bucket.

    Issues are listed one per line, followed by a link to the label's issue
    search on GitHub. If the text would exceed ``limit``, trailing issue
    lines are dropped whole and a ``...`` line is inserted before the link,
    so neither an issue link nor the GitHub link is ever cut in half.
    """
    link = f"\N{LINK SYMBOL} [View all {label} issues on GitHub]({url})"
    if not issues:
        return f"\N{WHITE HEAVY CHECK MARK} No open issues with this label\n\n{link}"

    lines = [f"**[#{issue.number}]({issue.html_url})** {issue.title}" for issue in issues]
    full = "\n".join(lines) + f"\n\n{link}"
    if len(full) <= limit:
        return full

    tail = f"\n{TRUNCATION_MARKER}\n\n{link}"
    budget = limit - len(tail)
    kept: list[str] = []
    used = 0
    for line in lines:
        cost = len(line) + (1 if kept else 0)
        if used + cost > budget:
            break
        kept.append(line)
        used += cost
    if not kept:
        return f"{TRUNCATION_MARKER}\n\n{link}"[:limit]
    return "\n".join(kept) + tail


def build_label_embed(label: str, issues: Sequence[Issue], url: str) -> discord.Embed:
    """Build the summary embed for one tracked label.

    Args:
        label: Display name of the label (GitHub casing).
        issues: The bucket's issues, already capped and ordered.
        url: The label's GitHub issue-search URL.
    """
    embed = discord.Embed(
        title=format_label_title(label),
        url=url,
        color=label_color(label),
        description=render_label_description(label, issues, url),
        timestamp=datetime.now(UTC),
    )
    embed.set_footer(text=f"Last updated \N{BULLET} {pluralize_issues(len(issues))}")
    return embed


def build_status_embed(
    repository: str,
    labels_tracked: int,
    last_update: datetime | None,
) -> discord.Embed:
    """Build the ``!status`` reply."""
    embed = discord.Embed(
        title="\N{BAR CHART} Bot Status",
        color=COLOR_STATUS,
        timestamp=datetime.now(UTC),
    )
    embed.add_field(name="Repository", value=repository, inline=True)
    embed.add_field(name="Labels Tracked", value=str(labels_tracked), inline=True)
    embed.add_field(
        name="Last Update",
        value=discord.utils.format_dt(last_update) if last_update else "Never",
        inline=True,
    )
    return embed
