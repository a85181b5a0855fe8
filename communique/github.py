"""GitHub REST client for releases, pull requests, and issues.

Every request goes through retry_request(); a non-success status after
retries becomes a GitHubError naming the call and the response body.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from communique.errors import GitHubError
from communique.providers.base import USER_AGENT
from communique.retry import RetryConfig, retry_request

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"

_JSON_ACCEPT = "application/vnd.github+json"
_DIFF_ACCEPT = "application/vnd.github.v3.diff"
_MAX_DIFF_CHARS = 50_000


class User(BaseModel):
    login: str


class Label(BaseModel):
    name: str


class Release(BaseModel):
    id: int
    tag_name: str
    name: str | None = None
    body: str | None = None


class PullRequest(BaseModel):
    number: int
    title: str
    body: str | None = None
    user: User
    labels: list[Label] = Field(default_factory=list)


class Issue(BaseModel):
    number: int
    title: str
    body: str | None = None
    state: str
    user: User
    labels: list[Label] = Field(default_factory=list)


class GitHubClient:
    """Thin async wrapper over the endpoints communique needs."""

    def __init__(
        self,
        token: str,
        owner_repo: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        owner, sep, repo = owner_repo.partition("/")
        if not sep or not owner or not repo or "/" in repo:
            raise GitHubError(f"invalid owner/repo: {owner_repo}")
        self.owner = owner
        self.repo = repo
        self._retry = retry or RetryConfig()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "authorization": f"Bearer {token}",
                "user-agent": USER_AGENT,
                "x-github-api-version": "2022-11-28",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
        )

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.repo}{suffix}"

    async def _request(
        self,
        method: str,
        suffix: str,
        *,
        accept: str = _JSON_ACCEPT,
        **kwargs: Any,
    ) -> httpx.Response:
        path = self._path(suffix)
        try:
            return await retry_request(
                "GitHub API",
                lambda: self._http.request(method, path, headers={"accept": accept}, **kwargs),
                self._retry,
            )
        except httpx.HTTPError as e:
            raise GitHubError(f"{method} {suffix}: {e}") from e

    @staticmethod
    def _fail(what: str, response: httpx.Response) -> GitHubError:
        return GitHubError(f"{what}: {response.status_code} {response.text[:500]}")

    @staticmethod
    def _parse(model: type[BaseModel], data: Any, what: str) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise GitHubError(f"{what}: unexpected response shape: {e}") from e

    async def get_release_by_tag(self, tag: str) -> Release | None:
        """Release for tag, including drafts; None when there is none.

        The /releases/tags endpoint only sees published releases, so a 404
        falls back to scanning the recent-releases list.
        """
        response = await self._request("GET", f"/releases/tags/{tag}")
        if response.is_success:
            return self._parse(Release, response.json(), f"GET release {tag}")
        if response.status_code != 404:
            raise self._fail(f"GET release {tag}", response)

        for release in await self.list_recent_releases(10):
            if release.tag_name == tag:
                return release
        return None

    async def list_recent_releases(self, count: int) -> list[Release]:
        response = await self._request("GET", "/releases", params={"per_page": count})
        if not response.is_success:
            raise self._fail("GET releases", response)
        return [self._parse(Release, item, "GET releases") for item in response.json()]

    async def update_release(
        self,
        release_id: int,
        title: str | None = None,
        body: str | None = None,
    ) -> None:
        payload = {k: v for k, v in (("name", title), ("body", body)) if v is not None}
        response = await self._request("PATCH", f"/releases/{release_id}", json=payload)
        if not response.is_success:
            raise self._fail(f"PATCH release {release_id}", response)
        logger.info("Updated GitHub release %d", release_id)

    async def get_pr(self, number: int) -> PullRequest:
        response = await self._request("GET", f"/pulls/{number}")
        if not response.is_success:
            raise self._fail(f"GET PR #{number}", response)
        return self._parse(PullRequest, response.json(), f"GET PR #{number}")

    async def get_pr_diff(self, number: int) -> str:
        response = await self._request("GET", f"/pulls/{number}", accept=_DIFF_ACCEPT)
        if not response.is_success:
            raise self._fail(f"GET PR #{number} diff", response)
        diff = response.text
        if len(diff) > _MAX_DIFF_CHARS:
            return diff[:_MAX_DIFF_CHARS] + "...\n\n[diff truncated at 50KB]"
        return diff

    async def get_issue(self, number: int) -> Issue:
        response = await self._request("GET", f"/issues/{number}")
        if not response.is_success:
            raise self._fail(f"GET issue #{number}", response)
        return self._parse(Issue, response.json(), f"GET issue #{number}")
