"""
github-org-sync: Mirror every repository of a GitHub organization locally.

Repositories missing locally are cloned, existing ones are stashed (when
dirty) and fast-forwarded on their default branch, with a fixed number of
git operations running in parallel.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .exceptions import ConfigError, GitHubError
from .formatters import OutputFormatter
from .github import DEFAULT_API_URL, GitHubClient, RepositoryDescriptor

logger = logging.getLogger(__name__)

TOKEN_ENV = "GITHUB_TOKEN"
DEFAULT_GIT_TIMEOUT = 900.0

SKIP_ARCHIVED = "archived"
SKIP_NO_PULL = "no pull permission"
SKIP_INCLUDE = "filtered-out by include"
SKIP_EXCLUDE = "filtered-out by exclude"
SKIP_EMPTY = "empty, nothing to update"
SKIP_NO_BRANCH = "no default branch"

# =============================================================================
# Domain Models
# =============================================================================


class LocalState(StrEnum):
    """State of a repository's local working copy."""

    ABSENT = "absent"
    EMPTY = "empty"
    CLEAN = "clean"
    DIRTY = "dirty"


class ActionKind(StrEnum):
    """What to do with one repository."""

    SKIP = "skip"
    CLONE = "clone"
    UPDATE = "update"


@dataclass(frozen=True)
class Action:
    """Resolved action for a repository."""

    kind: ActionKind
    reason: str = ""
    needs_stash: bool = False

    @classmethod
    def skip(cls, reason: str) -> Action:
        return cls(ActionKind.SKIP, reason=reason)

    @classmethod
    def clone(cls) -> Action:
        return cls(ActionKind.CLONE)

    @classmethod
    def update(cls, needs_stash: bool = False) -> Action:
        return cls(ActionKind.UPDATE, needs_stash=needs_stash)

    @property
    def is_skip(self) -> bool:
        return self.kind == ActionKind.SKIP


@dataclass(frozen=True)
class ReconciliationTask:
    """A repository paired with the action chosen for it."""

    descriptor: RepositoryDescriptor
    action: Action

    @property
    def name(self) -> str:
        return self.descriptor.name


@dataclass
class SyncSummary:
    """Counts of dispatched decisions for one run."""

    total: int = 0
    clone: int = 0
    update: int = 0
    stash: int = 0
    skipped: int = 0

    @classmethod
    def from_tasks(cls, tasks: Iterable[ReconciliationTask]) -> SyncSummary:
        summary = cls()
        for task in tasks:
            summary.total += 1
            match task.action.kind:
                case ActionKind.CLONE:
                    summary.clone += 1
                case ActionKind.UPDATE:
                    summary.update += 1
                    if task.action.needs_stash:
                        summary.stash += 1
                case _:
                    summary.skipped += 1
        return summary


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class FilterConfig:
    """Repository name and archive filters."""

    include: str | None = None
    exclude: str | None = None
    skip_archived: bool = False

    def validate(self) -> None:
        if self.include and self.exclude:
            raise ConfigError("you can't use both --exclude-repos and --include-repos")


@dataclass(frozen=True)
class SyncConfig:
    """Everything a run needs, built once at startup."""

    org: str
    token: str
    destination: Path = Path(".")
    parallelism: int = 1
    filters: FilterConfig = field(default_factory=FilterConfig)
    api_url: str = DEFAULT_API_URL
    use_ssh: bool = False
    dry_run: bool = False
    git_timeout: float | None = DEFAULT_GIT_TIMEOUT


def check_requirements(
    token: str | None,
    git_executable: str | None,
    filters: FilterConfig,
    parallelism: int = 1,
) -> None:
    """Pre-flight checks; raise ConfigError before any repository work."""
    if not token:
        raise ConfigError(f"Environment variable {TOKEN_ENV} is required")
    if git_executable is None:
        raise ConfigError("Could not find command git. Please install it")
    filters.validate()
    if parallelism < 1:
        raise ConfigError(f"parallelism must be at least 1, got {parallelism}")


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level Git operations for a single repository path."""

    def __init__(self, repo_path: Path, timeout: float | None = None):
        self.repo_path = repo_path
        self.timeout = timeout

    def _run(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess:
        """Run a git command, in the repository unless cwd is given."""
        cwd = cwd or self.repo_path
        logger.debug("git %s (in %s)", " ".join(args), cwd)
        return subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
            timeout=self.timeout,
        )

    def _call(self, *args: str, cwd: Path | None = None) -> tuple[bool, str]:
        """Run a git command and map its exit status to (success, message)."""
        try:
            result = self._run(*args, cwd=cwd)
        except subprocess.TimeoutExpired:
            return False, f"git {args[0]} timed out after {self.timeout:g}s"
        except OSError as e:
            return False, str(e)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip()
            return False, message or f"exit status {result.returncode}"
        return True, result.stdout.strip() or result.stderr.strip()

    def clone(self, url: str) -> tuple[bool, str]:
        """Clone url into the repository path, running from its parent."""
        return self._call("clone", url, self.repo_path.name, cwd=self.repo_path.parent)

    def stash_push(self) -> tuple[bool, str]:
        """Stash working tree and index changes."""
        return self._call("stash", "push")

    def fetch_origin(self) -> tuple[bool, str]:
        return self._call("fetch", "origin")

    def checkout(self, branch: str) -> tuple[bool, str]:
        return self._call("checkout", branch)

    def pull_rebase(self) -> tuple[bool, str]:
        return self._call("pull", "--rebase")

    def has_head_commit(self) -> bool:
        """Check if HEAD resolves to a commit (false for a fresh empty repo)."""
        return self._call("rev-parse", "--verify", "--quiet", "HEAD")[0]

    def has_staged_changes(self) -> bool:
        return not self._call("diff-index", "--quiet", "--cached", "HEAD", "--")[0]

    def has_unstaged_changes(self) -> bool:
        return not self._call("diff-files", "--quiet")[0]


def probe_local_state(
    destination: Path, name: str, git: GitOperations | None = None
) -> LocalState:
    """Inspect destination/name without modifying it."""
    repo_path = destination / name
    if not (repo_path / ".git").exists():
        return LocalState.ABSENT

    git = git if git is not None else GitOperations(repo_path)
    if not git.has_head_commit():
        return LocalState.EMPTY
    if git.has_staged_changes() or git.has_unstaged_changes():
        return LocalState.DIRTY
    return LocalState.CLEAN


# =============================================================================
# Action Selection
# =============================================================================


def filter_skip_reason(descriptor: RepositoryDescriptor, filters: FilterConfig) -> str | None:
    """Return why the descriptor alone excludes this repository, if it does."""
    if descriptor.archived and filters.skip_archived:
        return SKIP_ARCHIVED
    if not descriptor.can_pull:
        return SKIP_NO_PULL
    if filters.include and filters.include not in descriptor.name:
        return SKIP_INCLUDE
    if filters.exclude and filters.exclude in descriptor.name:
        return SKIP_EXCLUDE
    return None


def select_action(
    descriptor: RepositoryDescriptor, state: LocalState, filters: FilterConfig
) -> Action:
    """Decide what to do with a repository; the first matching rule wins."""
    reason = filter_skip_reason(descriptor, filters)
    if reason is not None:
        return Action.skip(reason)
    if state == LocalState.ABSENT:
        return Action.clone()
    if state == LocalState.EMPTY:
        return Action.skip(SKIP_EMPTY)
    if not descriptor.default_branch:
        return Action.skip(SKIP_NO_BRANCH)
    return Action.update(needs_stash=state == LocalState.DIRTY)


# =============================================================================
# Sync Manager
# =============================================================================


class OrgSyncManager:
    """Reconcile a destination directory with an organization's repositories."""

    def __init__(
        self,
        config: SyncConfig,
        git_factory: Callable[..., GitOperations] | None = None,
    ):
        self.config = config
        self.destination = config.destination.resolve()
        self.git_factory = git_factory or GitOperations

    def _git(self, name: str) -> GitOperations:
        return self.git_factory(self.destination / name, timeout=self.config.git_timeout)

    def plan_repository(self, descriptor: RepositoryDescriptor) -> ReconciliationTask:
        """Resolve the action for one repository.

        Descriptor-only filters run first, so skipped repositories are never
        probed on disk.
        """
        reason = filter_skip_reason(descriptor, self.config.filters)
        if reason is not None:
            return ReconciliationTask(descriptor, Action.skip(reason))
        state = probe_local_state(self.destination, descriptor.name, self._git(descriptor.name))
        return ReconciliationTask(
            descriptor, select_action(descriptor, state, self.config.filters)
        )

    def plan(self, descriptors: Iterable[RepositoryDescriptor]) -> list[ReconciliationTask]:
        tasks = [self.plan_repository(d) for d in descriptors]
        for task in tasks:
            if task.action.is_skip:
                self._log_skip(task)
        return tasks

    @staticmethod
    def _log_skip(task: ReconciliationTask) -> None:
        reason = task.action.reason
        if reason == SKIP_ARCHIVED:
            logger.info("Not including %s since you asked to skip any archived repos", task.name)
        elif reason == SKIP_NO_PULL:
            logger.warning("Not including %s since you don't have pull permission", task.name)
        elif reason == SKIP_EMPTY:
            logger.info("%s is empty, skipping update", task.name)
        elif reason == SKIP_NO_BRANCH:
            logger.info("Repo %s has no default branch, skipping update", task.name)
        else:
            logger.debug("Not including %s: %s", task.name, reason)

    def run(self, descriptors: Iterable[RepositoryDescriptor]) -> list[ReconciliationTask]:
        """Plan every repository, then clone/update the non-skipped ones.

        Returns once every dispatched repository has finished. The returned
        tasks describe what was dispatched, not how each one ended.
        """
        tasks = self.plan(descriptors)
        pending = [task for task in tasks if not task.action.is_skip]
        if self.config.dry_run or not pending:
            return tasks

        self.destination.mkdir(parents=True, exist_ok=True)
        self._execute_parallel(self.reconcile, pending)
        return tasks

    def _execute_parallel(
        self,
        operation: Callable[[ReconciliationTask], None],
        tasks: list[ReconciliationTask],
    ) -> None:
        """Run operation for each task with at most `parallelism` at once."""
        if self.config.parallelism <= 1 or len(tasks) <= 1:
            for task in tasks:
                operation(task)
            return

        with ThreadPoolExecutor(max_workers=self.config.parallelism) as executor:
            futures = [executor.submit(operation, task) for task in tasks]
            wait(futures)

    def reconcile(self, task: ReconciliationTask) -> None:
        """Apply one task; failures are logged and stay with this repository."""
        try:
            if task.action.kind == ActionKind.CLONE:
                self.clone(task.descriptor)
            elif task.action.kind == ActionKind.UPDATE:
                self.update(task.descriptor, needs_stash=task.action.needs_stash)
        except Exception:
            logger.exception("%s: unexpected error during %s", task.name, task.action.kind)

    def clone(self, descriptor: RepositoryDescriptor) -> bool:
        name = descriptor.name
        repo_path = self.destination / name
        url = descriptor.clone_url
        if self.config.use_ssh and descriptor.ssh_url:
            url = descriptor.ssh_url

        existed = repo_path.exists()
        logger.info("Cloning repo %s to %s", name, repo_path)
        success, message = self._git(name).clone(url)
        if success:
            return True

        logger.error("Repo %s failed to clone: %s", name, message)
        # A killed or interrupted clone can leave a partial checkout that the
        # next run would mistake for an existing repository.
        if not existed and repo_path.exists():
            try:
                shutil.rmtree(repo_path)
            except OSError as e:
                logger.warning("Could not remove partial clone %s: %s", repo_path, e)
        return False

    def update(self, descriptor: RepositoryDescriptor, needs_stash: bool = False) -> bool:
        name = descriptor.name
        branch = descriptor.default_branch
        if not branch:
            logger.info("Repo %s has no default branch, skipping update", name)
            return False

        git = self._git(name)
        steps: list[tuple[str, Callable[[], tuple[bool, str]]]] = []
        if needs_stash:
            logger.info("%s is dirty, so stashing first", name)
            steps.append(("stash", git.stash_push))
        steps += [
            ("fetch origin", git.fetch_origin),
            (f"checkout {branch}", partial(git.checkout, branch)),
            ("pull --rebase", git.pull_rebase),
        ]

        logger.info("Updating repo %s", self.destination / name)
        for operation, step in steps:
            success, message = step()
            if not success:
                logger.error("Repo %s: %s failed: %s", name, operation, message)
                return False
        return True


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="github-org-sync",
    help="Clone or update every repository of a GitHub organization.",
)


def configure_logging(verbose: bool = False) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"github-org-sync {__version__}")
        raise typer.Exit()


@app.command()
def sync(
    org: str = typer.Argument(
        ...,
        help="GitHub organization name",
    ),
    destination_path: Path = typer.Option(
        Path("."),
        "--destination-path",
        "-d",
        help="Destination path for repos",
    ),
    parallelism: int = typer.Option(
        1,
        "--parallelism",
        "-p",
        min=1,
        help="Number of parallel git operations",
    ),
    include_repos: str = typer.Option(
        None,
        "--include-repos",
        help="Include only repos that contain string",
    ),
    exclude_repos: str = typer.Option(
        None,
        "--exclude-repos",
        help="Exclude repos that contain string",
    ),
    skip_archived: bool = typer.Option(
        False,
        "--skip-archived",
        help="Skip archived repos",
    ),
    ssh: bool = typer.Option(
        False,
        "--ssh",
        help="Clone over SSH instead of HTTPS",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Show what would happen without actually doing it",
    ),
    git_timeout: float = typer.Option(
        DEFAULT_GIT_TIMEOUT,
        "--git-timeout",
        min=0,
        help="Seconds before a single git command is killed (0 disables)",
    ),
    api_url: str = typer.Option(
        DEFAULT_API_URL,
        "--api-url",
        envvar="GITHUB_API_URL",
        help="GitHub API base URL (for GitHub Enterprise)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Log every git command",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Sync github org repos into a local directory."""
    console = Console()
    configure_logging(verbose)

    filters = FilterConfig(
        include=include_repos or None,
        exclude=exclude_repos or None,
        skip_archived=skip_archived,
    )
    token = os.environ.get(TOKEN_ENV)
    try:
        check_requirements(token, shutil.which("git"), filters, parallelism)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    config = SyncConfig(
        org=org,
        token=token,
        destination=destination_path,
        parallelism=parallelism,
        filters=filters,
        api_url=api_url,
        use_ssh=ssh,
        dry_run=dry_run,
        git_timeout=git_timeout or None,
    )

    client = GitHubClient(config.token, config.api_url)
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Listing repositories for {org}...", total=None)
            descriptors = client.list_org_repositories(org)
    except GitHubError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1)

    console.print(f"Found [bold]{len(descriptors)}[/] repositories in {org}\n")

    manager = OrgSyncManager(config)
    tasks = manager.run(descriptors)

    formatter = OutputFormatter(console)
    if config.dry_run:
        formatter.print_plan(tasks, config.destination)
    formatter.print_summary(SyncSummary.from_tasks(tasks), dry_run=config.dry_run)
