"""GitHub REST client — read-only access to one repository's labels and issues.

Uses a single ``httpx.AsyncClient`` so it shares the bot's event loop. A token
is optional: without one GitHub allows 60 requests/hour, with one 5000. The
token only changes the request credentials, never the behavior.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from issuebot.core.labels import UNLABELED, label_key
from issuebot.models.issue import Issue, RepoLabel

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_WEB_URL = "https://github.com"
GITHUB_API_VERSION = "2022-11-28"
PAGE_SIZE = 100  # GitHub's maximum; a single page is all the bot reads

_ISSUES = TypeAdapter(list[Issue])
_LABELS = TypeAdapter(list[RepoLabel])


class GitHubError(Exception):
    """A GitHub request failed or returned something unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def label_url(owner: str, repo: str, label: str) -> str:
    """Issue-search URL for one bucket, derived from the label name alone."""
    base = f"{GITHUB_WEB_URL}/{owner}/{repo}/issues"
    if label_key(label) == UNLABELED:
        return f"{base}?q=is%3Aopen+is%3Aissue+no%3Alabel"
    return f'{base}?q=is%3Aopen+is%3Aissue+label%3A"{quote(label, safe="")}"'


def filter_pull_requests(issues: Sequence[Issue]) -> list[Issue]:
    """Drop pull requests, which the issues endpoint lists alongside issues."""
    return [issue for issue in issues if not issue.is_pull_request]


class GitHubClient:
    """Client for the labels and issues of a single repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        *,
        token: str = "",
        base_url: str = GITHUB_API_URL,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "issuebot",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
            logger.info("github_client_authenticated limit=5000/h")
        else:
            logger.warning("github_client_anonymous limit=60/h")
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def label_url(self, label: str) -> str:
        return label_url(self.owner, self.repo, label)

    async def list_labels(self) -> list[RepoLabel]:
        """Fetch the repository's labels in GitHub's order (first page only)."""
        payload = await self._get(
            f"/repos/{self.owner}/{self.repo}/labels",
            params={"per_page": PAGE_SIZE},
        )
        try:
            return _LABELS.validate_python(payload)
        except ValidationError as exc:
            raise GitHubError(f"unexpected labels payload for {self.repository}") from exc

    async def list_open_issues(self) -> list[Issue]:
        """Fetch up to 100 open issues, most recently updated first.

        Pull requests are included; pass the result through
        ``filter_pull_requests`` before bucketing. Anything past the first
        page is not fetched.
        """
        payload = await self._get(
            f"/repos/{self.owner}/{self.repo}/issues",
            params={
                "state": "open",
                "per_page": PAGE_SIZE,
                "sort": "updated",
                "direction": "desc",
            },
        )
        try:
            return _ISSUES.validate_python(payload)
        except ValidationError as exc:
            raise GitHubError(f"unexpected issues payload for {self.repository}") from exc

    async def _get(self, path: str, params: dict[str, object]) -> object:
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise GitHubError(
                f"GET {path} returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise GitHubError(f"GET {path} failed: {exc}") from exc
        except ValueError as exc:
            raise GitHubError(f"GET {path} returned invalid JSON") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
