"""Tests for the organization repository lister (requests.Session mocked)."""

from unittest import mock

import pytest
import requests

from github_org_sync.exceptions import GitHubError
from github_org_sync.github import (
    PAGE_SIZE,
    GitHubClient,
    RepositoryDescriptor,
    list_org_repositories,
)


def _repo_json(name: str, **extra) -> dict:
    data = {
        "name": name,
        "clone_url": f"https://github.com/acme/{name}.git",
        "ssh_url": f"git@github.com:acme/{name}.git",
        "default_branch": "main",
        "archived": False,
        "permissions": {"admin": False, "push": False, "pull": True},
    }
    data.update(extra)
    return data


def _response(status: int = 200, data=None, links=None, text: str = ""):
    response = mock.Mock()
    response.status_code = status
    response.reason = "Reason"
    response.text = text
    response.links = links or {}
    response.json.return_value = data
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} Server Error")
    return response


def _client(*responses) -> tuple[GitHubClient, mock.Mock]:
    session = mock.Mock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return GitHubClient("t0k3n", session=session), session


class TestRepositoryDescriptor:
    def test_from_api(self):
        descriptor = RepositoryDescriptor.from_api(_repo_json("svc", archived=True))

        assert descriptor.name == "svc"
        assert descriptor.clone_url == "https://github.com/acme/svc.git"
        assert descriptor.ssh_url == "git@github.com:acme/svc.git"
        assert descriptor.default_branch == "main"
        assert descriptor.archived
        assert descriptor.can_pull

    def test_missing_optional_fields(self):
        descriptor = RepositoryDescriptor.from_api(
            {"name": "svc", "clone_url": "https://github.com/acme/svc.git",
             "default_branch": None, "permissions": None}
        )

        assert descriptor.default_branch is None
        assert not descriptor.archived
        assert not descriptor.can_pull


class TestListOrgRepositories:
    def test_sends_auth_headers(self):
        client, session = _client(_response(data=[]))

        client.list_org_repositories("acme")

        assert session.headers["Authorization"] == "Bearer t0k3n"
        assert session.headers["Accept"] == "application/vnd.github+json"
        assert session.headers["User-Agent"].startswith("github-org-sync/")

    def test_single_page(self):
        client, session = _client(_response(data=[_repo_json("a"), _repo_json("b")]))

        repos = client.list_org_repositories("acme")

        assert [r.name for r in repos] == ["a", "b"]
        session.get.assert_called_once_with(
            "https://api.github.com/orgs/acme/repos",
            params={"per_page": PAGE_SIZE},
            timeout=mock.ANY,
        )

    def test_follows_next_links_in_order(self):
        page2 = "https://api.github.com/organizations/1/repos?per_page=100&page=2"
        page3 = "https://api.github.com/organizations/1/repos?per_page=100&page=3"
        client, session = _client(
            _response(data=[_repo_json("a")], links={"next": {"url": page2}}),
            _response(data=[_repo_json("b")], links={"next": {"url": page3}}),
            _response(data=[_repo_json("c")], links={"prev": {"url": page2}}),
        )

        repos = client.list_org_repositories("acme")

        assert [r.name for r in repos] == ["a", "b", "c"]
        assert [c.args[0] for c in session.get.call_args_list[1:]] == [page2, page3]

    def test_custom_api_url(self):
        session = mock.Mock()
        session.headers = {}
        session.get.return_value = _response(data=[])
        client = GitHubClient("t0k3n", "https://ghe.example.com/api/v3/", session=session)

        client.list_org_repositories("acme")

        assert session.get.call_args.args[0] == "https://ghe.example.com/api/v3/orgs/acme/repos"

    def test_client_error_shows_api_message(self):
        client, _ = _client(_response(401, data={"message": "Bad credentials"}))

        with pytest.raises(GitHubError, match="Bad credentials"):
            client.list_org_repositories("acme")

    def test_client_error_without_json(self):
        response = _response(404, text="Not Found")
        response.json.side_effect = ValueError("no json")
        client, _ = _client(response)

        with pytest.raises(GitHubError, match="Not Found"):
            client.list_org_repositories("acme")

    def test_server_error(self):
        client, _ = _client(_response(502))

        with pytest.raises(GitHubError, match="502"):
            client.list_org_repositories("acme")

    def test_transport_error(self):
        session = mock.Mock()
        session.headers = {}
        session.get.side_effect = requests.ConnectionError("connection refused")
        client = GitHubClient("t0k3n", session=session)

        with pytest.raises(GitHubError, match="connection refused"):
            client.list_org_repositories("acme")

    def test_failure_on_later_page_fails_whole_listing(self):
        client, _ = _client(
            _response(data=[_repo_json("a")], links={"next": {"url": "https://x/page2"}}),
            _response(403, data={"message": "API rate limit exceeded"}),
        )

        with pytest.raises(GitHubError, match="rate limit"):
            client.list_org_repositories("acme")

    @mock.patch("github_org_sync.github.requests.Session")
    def test_module_level_helper(self, session_cls):
        session = session_cls.return_value
        session.headers = {}
        session.get.return_value = _response(data=[_repo_json("a")])

        repos = list_org_repositories("acme", "t0k3n", "https://ghe.example.com/api/v3")

        assert [r.name for r in repos] == ["a"]
        assert session.headers["Authorization"] == "Bearer t0k3n"
        assert session.get.call_args.args[0] == "https://ghe.example.com/api/v3/orgs/acme/repos"
