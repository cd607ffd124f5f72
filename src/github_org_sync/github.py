"""GitHub REST API access: list every repository of an organization."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from ._version import __version__
from .exceptions import GitHubError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
PAGE_SIZE = 100
REQUEST_TIMEOUT = 30

USER_AGENT = f"github-org-sync/{__version__} {requests.utils.default_user_agent()}"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """Metadata of one remote repository, as returned by the API."""

    name: str
    clone_url: str
    ssh_url: str = ""
    default_branch: str | None = None
    archived: bool = False
    permissions: Mapping[str, bool] = field(default_factory=dict)

    @property
    def can_pull(self) -> bool:
        return bool(self.permissions.get("pull", False))

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> RepositoryDescriptor:
        return cls(
            name=data["name"],
            clone_url=data["clone_url"],
            ssh_url=data.get("ssh_url") or "",
            default_branch=data.get("default_branch") or None,
            archived=bool(data.get("archived", False)),
            permissions=dict(data.get("permissions") or {}),
        )


def _error_message(response: requests.Response) -> str:
    """Extract GitHub's error message from a failed response."""
    try:
        return response.json()["message"]
    except (ValueError, KeyError, TypeError):
        return response.text.strip() or f"{response.status_code} {response.reason}"


class GitHubClient:
    """Minimal client for the organization repository listing endpoint."""

    def __init__(
        self,
        token: str,
        api_url: str = DEFAULT_API_URL,
        session: requests.Session | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )

    def _get(self, url: str, params: dict | None = None) -> tuple[Any, Mapping]:
        """GET a URL, return deserialized JSON and the parsed Link header."""
        logger.debug("GET %s", url)
        try:
            response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise GitHubError(f"Failed to fetch {url}: {e}") from e

        # 4xx carries a JSON message worth showing (bad credentials, rate
        # limit, unknown organization); 5xx bodies are not reliably JSON.
        if 400 <= response.status_code < 500:
            raise GitHubError(f"Failed to fetch {url}: {_error_message(response)}")
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise GitHubError(f"Failed to fetch {url}: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise GitHubError(f"Invalid JSON from {url}: {e}") from e
        return data, response.links

    def list_org_repositories(self, org: str) -> list[RepositoryDescriptor]:
        """Fetch all repositories of an organization.

        Follows the ``Link: <...>; rel="next"`` header until the last page,
        so the returned list is complete and in API order.
        """
        url = f"{self.api_url}/orgs/{org}/repos"
        data, links = self._get(url, params={"per_page": PAGE_SIZE})
        raw = list(data)
        while "next" in links:
            data, links = self._get(links["next"]["url"])
            raw.extend(data)

        logger.debug("Listed %d repositories for %s", len(raw), org)
        return [RepositoryDescriptor.from_api(item) for item in raw]


def list_org_repositories(
    org: str, token: str, api_url: str = DEFAULT_API_URL
) -> list[RepositoryDescriptor]:
    """List an organization's repositories with a fresh client."""
    return GitHubClient(token, api_url).list_org_repositories(org)
