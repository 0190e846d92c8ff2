"""Shared fakes for statistics service tests."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from gitdash.application.stats_service import RepositoryStatsService
from gitdash.domain.cache_interface import ICacheStore
from gitdash.domain.github_interface import IGitHubAccessor
from gitdash.domain.models import (
    ActivityHeatmap,
    Collaborator,
    CommitSummary,
    IssueStats,
    PullRequestStats,
    RepositorySummary,
    ReviewStats,
)
from gitdash.infrastructure.memory_cache import InMemoryCacheStore


NOW = datetime(2024, 6, 3, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Monotonic clock the tests advance explicitly."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta.total_seconds()


class FakeAccessor(IGitHubAccessor):
    """Records calls; `responses` and `failures` override per method.

    A callable response is invoked with the call arguments, so a test can
    fail only selected sub-queries.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.responses: Dict[str, Any] = {}
        self.failures: Dict[str, Exception] = {}
        self.delay = 0.0
        self.closed = False

    def count(self, method: Optional[str] = None) -> int:
        if method is None:
            return len(self.calls)
        return sum(1 for name, _, _ in self.calls if name == method)

    async def _call(self, method: str, default: Any, *args, **kwargs) -> Any:
        self.calls.append((method, args, kwargs))
        if self.delay:
            await asyncio.sleep(self.delay)
        if method in self.failures:
            raise self.failures[method]
        response = self.responses.get(method, default)
        if callable(response):
            return response(*args, **kwargs)
        return response

    async def list_user_repositories(self, token):
        return await self._call("list_user_repositories", [
            RepositorySummary(
                id=1,
                name="demo",
                full_name="octo/demo",
                html_url="https://github.com/octo/demo",
                stargazers_count=42,
                language="Python",
                created_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            ),
        ], token)

    async def get_repository(self, token, repo):
        return await self._call("get_repository", RepositorySummary(
            id=1, name=repo.name, full_name=repo.full_name,
            html_url=f"https://github.com/{repo.full_name}",
        ), token, repo)

    async def list_commits(self, token, repo, since=None, until=None, author=None):
        return await self._call("list_commits", [
            CommitSummary(sha="a1", message="fix", author_name="Alice",
                          author_email="alice@example.com", date=NOW,
                          author_login="alice", additions=10, deletions=2),
            CommitSummary(sha="b2", message="feat", author_name="Alice",
                          author_email="alice@example.com", date=NOW,
                          author_login="alice", additions=5, deletions=7),
        ], token, repo, since=since, until=until, author=author)

    async def count_commits(self, token, repo, since=None, until=None, author=None):
        return await self._call(
            "count_commits", 12, token, repo, since=since, until=until, author=author)

    async def list_collaborators(self, token, repo):
        return await self._call("list_collaborators", [
            Collaborator(login="alice", avatar_url="https://avatars/alice", role="admin"),
            Collaborator(login="bob", avatar_url="https://avatars/bob", role="write"),
        ], token, repo)

    async def count_issues(self, token, repo, filters):
        return await self._call("count_issues", 3, token, repo, filters)

    async def get_activity_heatmap(self, token, repo, since=None):
        return await self._call("get_activity_heatmap", ActivityHeatmap.from_timestamps([
            datetime(2024, 6, 4, 15, 5, tzinfo=timezone.utc),
            datetime(2024, 6, 4, 15, 45, tzinfo=timezone.utc),
            datetime(2024, 6, 5, 9, 0, tzinfo=timezone.utc),
        ]), token, repo, since=since)

    async def get_weekly_commit_counts(self, token, repo, login, now=None):
        return await self._call(
            "get_weekly_commit_counts", list(range(12)), token, repo, login, now=now)

    async def get_pull_request_stats(self, token, repo, login, since, until):
        return await self._call(
            "get_pull_request_stats", PullRequestStats(total_count=4, merged_count=2),
            token, repo, login, since, until)

    async def get_issue_stats(self, token, repo, login, since, until):
        return await self._call(
            "get_issue_stats", IssueStats(total_count=5, closed_count=1),
            token, repo, login, since, until)

    async def get_review_stats(self, token, repo, login, since, until):
        return await self._call(
            "get_review_stats", ReviewStats(given_count=7),
            token, repo, login, since, until)

    async def close(self):
        self.closed = True


class RaisingCache(ICacheStore):
    """Cache store whose every call fails."""

    def __init__(self):
        self.calls = 0

    async def get(self, key, decode):
        self.calls += 1
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl=None):
        self.calls += 1
        raise ConnectionError("cache down")

    async def remove(self, key):
        self.calls += 1
        raise ConnectionError("cache down")

    async def close(self):
        pass


@pytest.fixture
def accessor():
    return FakeAccessor()


@pytest.fixture
def cache_clock():
    return ManualClock()


@pytest.fixture
def cache(cache_clock):
    return InMemoryCacheStore(clock=cache_clock)


@pytest.fixture
def service(accessor, cache):
    return RepositoryStatsService(accessor=accessor, cache=cache, clock=lambda: NOW)
