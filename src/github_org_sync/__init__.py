"""github-org-sync: Mirror every repository of a GitHub organization locally."""

# Guard against deleted CWD (e.g. destination removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    Action,
    ActionKind,
    FilterConfig,
    GitOperations,
    LocalState,
    OrgSyncManager,
    ReconciliationTask,
    SyncConfig,
    SyncSummary,
    app,
    check_requirements,
    probe_local_state,
    select_action,
)
from .exceptions import ConfigError, GitHubError, GitHubOrgSyncError
from .formatters import OutputFormatter
from .github import GitHubClient, RepositoryDescriptor, list_org_repositories

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Models
    "Action",
    "ActionKind",
    "LocalState",
    "ReconciliationTask",
    "RepositoryDescriptor",
    "SyncSummary",
    # Configuration
    "FilterConfig",
    "SyncConfig",
    "check_requirements",
    # Operations
    "GitHubClient",
    "GitOperations",
    "OrgSyncManager",
    # Functions
    "list_org_repositories",
    "probe_local_state",
    "select_action",
    # Errors
    "ConfigError",
    "GitHubError",
    "GitHubOrgSyncError",
    # Formatters
    "OutputFormatter",
]
