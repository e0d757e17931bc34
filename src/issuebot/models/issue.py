"""GitHub issue and label models, parsed from the REST API payloads.

Only the fields the bot reads are declared; everything else GitHub sends is
ignored. Instances are read-only snapshots.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class IssueLabel(BaseModel):
    """A label attached to an issue."""

    model_config = ConfigDict(frozen=True)

    name: str


class RepoLabel(BaseModel):
    """A label defined on the repository (labels endpoint)."""

    model_config = ConfigDict(frozen=True)

    name: str
    color: str = ""
    description: str | None = None


class Issue(BaseModel):
    """An open issue — or a pull request, which the issues endpoint also returns."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    html_url: str
    state: str = "open"
    labels: list[IssueLabel] = []
    pull_request: dict[str, Any] | None = None
    updated_at: datetime | None = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]
