"""
Shared fixtures: repository descriptors and a recording stand-in for git.

No test touches the network or runs a real git binary.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from github_org_sync.github import RepositoryDescriptor


def make_descriptor(
    name: str,
    *,
    archived: bool = False,
    pull: bool = True,
    default_branch: str | None = "main",
) -> RepositoryDescriptor:
    return RepositoryDescriptor(
        name=name,
        clone_url=f"https://github.com/acme/{name}.git",
        ssh_url=f"git@github.com:acme/{name}.git",
        default_branch=default_branch,
        archived=archived,
        permissions={"pull": pull, "push": False, "admin": False},
    )


class FakeGitFleet:
    """Factory for FakeGit objects sharing one call log and concurrency counter.

    ``repos`` maps a repository name to its simulated local state:
    ``head`` (has a commit), ``staged``/``unstaged`` (dirty flags) and
    ``fail`` (set of operation names that should fail).
    """

    def __init__(self, repos: dict | None = None, delay: float = 0.0):
        self.repos = repos or {}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.timeouts: list[float | None] = []
        self.paths: list[Path] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, repo_path: Path, timeout: float | None = None) -> FakeGit:
        self.timeouts.append(timeout)
        self.paths.append(repo_path)
        return FakeGit(self, repo_path)

    def ops_for(self, name: str) -> list[str]:
        return [op for repo, op in self.calls if repo == name]

    def record(self, name: str, op: str) -> bool:
        with self._lock:
            self.calls.append((name, op))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1
        return op not in self.repos.get(name, {}).get("fail", set())


class FakeGit:
    def __init__(self, fleet: FakeGitFleet, repo_path: Path):
        self.fleet = fleet
        self.repo_path = repo_path
        self.name = repo_path.name

    def _state(self, key: str, default: bool) -> bool:
        return self.fleet.repos.get(self.name, {}).get(key, default)

    def _result(self, op: str) -> tuple[bool, str]:
        if self.fleet.record(self.name, op):
            return True, ""
        return False, f"{op} exploded"

    def clone(self, url: str) -> tuple[bool, str]:
        success, message = self._result("clone")
        if not success:
            # Leave a partial checkout behind, as a killed clone would
            (self.repo_path / ".git").mkdir(parents=True)
        return success, message

    def stash_push(self):
        return self._result("stash")

    def fetch_origin(self):
        return self._result("fetch")

    def checkout(self, branch: str):
        return self._result(f"checkout {branch}")

    def pull_rebase(self):
        return self._result("pull")

    def has_head_commit(self) -> bool:
        return self._state("head", True)

    def has_staged_changes(self) -> bool:
        return self._state("staged", False)

    def has_unstaged_changes(self) -> bool:
        return self._state("unstaged", False)


def make_local_repo(root: Path, name: str) -> Path:
    """Create an (apparently) existing working copy under root."""
    repo = root / name
    (repo / ".git").mkdir(parents=True)
    return repo


@pytest.fixture
def dest(tmp_path: Path) -> Path:
    path = tmp_path / "mirror"
    path.mkdir()
    return path
