"""Repository sources."""

from .github import GitHubRepositorySource

__all__ = ["GitHubRepositorySource"]
