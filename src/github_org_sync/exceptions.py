"""Exceptions raised before any repository work starts."""

from __future__ import annotations


class GitHubOrgSyncError(Exception):
    """An error that aborts the whole run."""


class ConfigError(GitHubOrgSyncError):
    """Pre-flight validation failed (credentials, git binary, filters)."""


class GitHubError(GitHubOrgSyncError):
    """Listing the organization's repositories failed."""
