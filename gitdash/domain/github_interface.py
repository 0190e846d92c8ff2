"""GitHub API interface (port) for fetching repository statistics.

This is the anti-corruption layer that shields the domain from GitHub API specifics.
Implementations are stateless with respect to callers: the credential is passed
on every call and failures are raised as `gitdash.domain.errors` classes.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional
from gitdash.domain.models import (
    ActivityHeatmap,
    Collaborator,
    CommitSummary,
    IssueSearchFilters,
    IssueStats,
    PullRequestStats,
    RepositoryIdentifier,
    RepositorySummary,
    ReviewStats,
)


class IGitHubAccessor(ABC):
    """Abstract interface for GitHub API operations."""

    @abstractmethod
    async def list_user_repositories(self, token: str) -> List[RepositorySummary]:
        """List repositories visible to the credential's owner."""
        pass

    @abstractmethod
    async def get_repository(
        self, token: str, repo: RepositoryIdentifier
    ) -> RepositorySummary:
        """Fetch metadata for a single repository.

        Raises:
            NotFoundError: If the repository does not exist or is inaccessible
        """
        pass

    @abstractmethod
    async def list_commits(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        author: Optional[str] = None,
    ) -> List[CommitSummary]:
        """List default-branch commits, newest first.

        Args:
            token: Caller credential
            repo: Repository to read
            since: Inclusive lower bound on commit date
            until: Exclusive upper bound on commit date
            author: Restrict to commits authored by this login
        """
        pass

    @abstractmethod
    async def count_commits(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        author: Optional[str] = None,
    ) -> int:
        """Count default-branch commits without listing them."""
        pass

    @abstractmethod
    async def list_collaborators(
        self, token: str, repo: RepositoryIdentifier
    ) -> List[Collaborator]:
        pass

    @abstractmethod
    async def count_issues(
        self, token: str, repo: RepositoryIdentifier, filters: IssueSearchFilters
    ) -> int:
        """Count issues or pull requests matching `filters`."""
        pass

    @abstractmethod
    async def get_activity_heatmap(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
    ) -> ActivityHeatmap:
        pass

    @abstractmethod
    async def get_weekly_commit_counts(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        now: Optional[datetime] = None,
    ) -> List[int]:
        """Commits by `login` in each of the last 12 weeks, oldest first.

        A failure in any week fails the whole call.
        """
        pass

    @abstractmethod
    async def get_pull_request_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> PullRequestStats:
        pass

    @abstractmethod
    async def get_issue_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> IssueStats:
        pass

    @abstractmethod
    async def get_review_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> ReviewStats:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        pass
