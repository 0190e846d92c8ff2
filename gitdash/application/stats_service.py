"""Statistics service orchestrating cached access to the GitHub API."""
import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional
from gitdash.application.single_flight import SingleFlight
from gitdash.domain.cache_interface import ICacheStore
from gitdash.domain.derivation import (
    WEEKLY_BUCKET_COUNT,
    closed_issues_label,
    commits_label,
    derive_peak_activity,
    merged_prs_label,
    normalize_weekly_counts,
)
from gitdash.domain.errors import (
    AuthenticationError,
    GitDashError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from gitdash.domain.github_interface import IGitHubAccessor
from gitdash.domain.models import (
    ActivityHeatmap,
    CodeChangeTotals,
    CollaboratorActivity,
    CollaboratorSummary,
    CommitStats,
    CommitSummary,
    IssueSearchFilters,
    IssueStats,
    Kpis,
    OpenWork,
    PullRequestStats,
    RepositoryIdentifier,
    RepositoryOverviewStats,
    RepositorySummary,
    ReviewStats,
    TimeRange,
)


logger = logging.getLogger(__name__)

# GitHub login grammar: alphanumerics and hyphens, at most 39 characters.
GITHUB_LOGIN_PATTERN = re.compile(r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})")

DEFAULT_TTLS: Dict[str, timedelta] = {
    "user_repositories": timedelta(minutes=10),
    "repository": timedelta(minutes=30),
    "repository_commits": timedelta(minutes=10),
    "repository_collaborators": timedelta(minutes=15),
    "repository_overview": timedelta(minutes=15),
    "collaborator_weekly_activity": timedelta(minutes=30),
    "collaborator_activity": timedelta(minutes=15),
    "collaborator_code_changes": timedelta(minutes=15),
}


def credential_fingerprint(token: str) -> str:
    """Stable SHA-256 fingerprint of a credential, safe to embed in keys."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def build_cache_key(
    prefix: str,
    operation: str,
    token: str,
    repo: Optional[RepositoryIdentifier] = None,
    time_range: Optional[TimeRange] = None,
    login: Optional[str] = None,
) -> str:
    """Deterministic cache key; only the credential fingerprint is embedded."""
    parts = [prefix, operation]
    if repo is not None:
        parts += ["repo", repo.full_name.lower()]
    if time_range is not None:
        parts += ["range", time_range.slug]
    if login is not None:
        parts += ["login", login.lower()]
    parts += ["cred", credential_fingerprint(token)]
    return ":".join(parts)


def filter_recent_repositories(
    repositories: List[RepositorySummary],
    visits: Mapping[str, datetime],
) -> List[RepositorySummary]:
    """Keep visited repositories, most recently visited first.

    Args:
        repositories: Repositories visible to the user
        visits: Last visit time keyed by full name, matched case-insensitively
    """
    last_visit = {name.lower(): visited for name, visited in visits.items()}
    visited = [r for r in repositories if r.full_name.lower() in last_visit]
    return sorted(visited, key=lambda r: last_visit[r.full_name.lower()], reverse=True)


@dataclass(frozen=True)
class Outcome:
    """Result of one sub-metric fetch: either a value or a classified error."""
    name: str
    value: Any = None
    error: Optional[GitDashError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def value_or(self, default: Any) -> Any:
        return self.value if self.error is None else default


def _decode_list(decode_item: Callable[[Dict[str, Any]], Any]) -> Callable[[Any], List[Any]]:
    def decode(data: Any) -> List[Any]:
        if not isinstance(data, list):
            raise TypeError(f"Expected a list, got {type(data).__name__}")
        return [decode_item(item) for item in data]
    return decode


def _decode_weekly(data: Any) -> List[int]:
    if (
        not isinstance(data, list)
        or len(data) != WEEKLY_BUCKET_COUNT
        or not all(isinstance(c, int) and c >= 0 for c in data)
    ):
        raise TypeError("Weekly activity must be 12 non-negative integers")
    return data


class RepositoryStatsService:
    """Application service for repository statistics.

    Coordinates the GitHub accessor and the cache: every operation validates
    its input, looks up a deterministic cache key and only on a miss fetches
    from GitHub, derives the result and stores it under the operation's TTL.

    Composite aggregates (overview, collaborator activity, collaborator list)
    degrade failed sub-metrics to zero; only an authentication failure aborts
    them. Single lookups propagate every failure.
    """

    def __init__(
        self,
        accessor: IGitHubAccessor,
        cache: ICacheStore,
        ttls: Optional[Mapping[str, timedelta]] = None,
        max_concurrency: int = 6,
        key_prefix: str = "gitdash",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize statistics service.

        Args:
            accessor: GitHub API accessor implementation
            cache: Cache store implementation
            ttls: Per-operation TTL overrides
            max_concurrency: Upper bound on parallel sub-metric fetches
            key_prefix: Namespace for cache keys
            clock: Returns the current UTC time
        """
        self._accessor = accessor
        self._cache = cache
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._key_prefix = key_prefix
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._single_flight = SingleFlight()

    # Cache-aside plumbing

    async def _cache_get(self, key: str, decode: Callable[[Any], Any]) -> Any:
        try:
            return await self._cache.get(key, decode)
        except Exception as e:
            logger.warning(f"Cache read failed, continuing without cache: {e}")
            return None

    async def _cache_set(self, key: str, value: Any, ttl: timedelta) -> None:
        try:
            await self._cache.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Cache write failed, result not cached: {e}")

    async def _cached(
        self,
        operation: str,
        key: str,
        decode: Callable[[Any], Any],
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        cached = await self._cache_get(key, decode)
        if cached is not None:
            logger.info(f"Returning {operation} from cache")
            return cached
        return await self._single_flight.do(key, lambda: self._populate(operation, key, fetch))

    async def _populate(
        self, operation: str, key: str, fetch: Callable[[], Awaitable[Any]]
    ) -> Any:
        logger.info(f"Cache miss - fetching {operation} from GitHub API")
        result = await fetch()
        if result is not None:
            await self._cache_set(key, result, self._ttls[operation])
        return result

    def _key(self, operation: str, token: str, **params) -> str:
        return build_cache_key(self._key_prefix, operation, token, **params)

    # Partial-failure plumbing

    async def _attempt(self, name: str, fetch: Callable[[], Awaitable[Any]]) -> Outcome:
        async with self._semaphore:
            try:
                return Outcome(name, value=await fetch())
            except GitDashError as e:
                return Outcome(name, error=e)

    async def _fan_out(
        self, operation: str, fetches: Dict[str, Callable[[], Awaitable[Any]]]
    ) -> Dict[str, Outcome]:
        """Run independent sub-metric fetches and apply the partial-failure policy.

        Raises:
            AuthenticationError: If any sub-metric was rejected for credentials
        """
        outcomes = await asyncio.gather(*(
            self._attempt(name, fetch) for name, fetch in fetches.items()
        ))
        for outcome in outcomes:
            if isinstance(outcome.error, AuthenticationError):
                raise outcome.error
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(
                    f"{operation}: {outcome.name} unavailable ({outcome.error.code}), "
                    f"defaulting to zero"
                )
        return {outcome.name: outcome for outcome in outcomes}

    # Public operations

    async def get_user_repositories(self, token: str) -> List[RepositorySummary]:
        """Repositories visible to the credential's owner."""
        return await self._cached(
            "user_repositories",
            self._key("user_repositories", token),
            _decode_list(RepositorySummary.from_dict),
            lambda: self._accessor.list_user_repositories(token),
        )

    async def get_repository_by_owner_repo(
        self, token: str, owner_repo: str
    ) -> RepositorySummary:
        """Repository metadata from an `owner/repo` shorthand or a GitHub URL."""
        repo = RepositoryIdentifier.from_url(owner_repo)
        return await self._cached(
            "repository",
            self._key("repository", token, repo=repo),
            RepositorySummary.from_dict,
            lambda: self._accessor.get_repository(token, repo),
        )

    async def get_repository_commits(
        self, token: str, repo_id: str
    ) -> List[CommitSummary]:
        repo = RepositoryIdentifier.parse(repo_id)
        return await self._cached(
            "repository_commits",
            self._key("repository_commits", token, repo=repo),
            _decode_list(CommitSummary.from_dict),
            lambda: self._accessor.list_commits(token, repo),
        )

    async def get_repository_collaborators(
        self, token: str, repo_id: str, time_range: str
    ) -> List[CollaboratorSummary]:
        """Collaborators with their commit, pull request and issue counts.

        The collaborator listing itself must succeed; individual counts
        degrade to zero.
        """
        repo = RepositoryIdentifier.parse(repo_id)
        window = TimeRange.parse(time_range)

        async def fetch() -> List[CollaboratorSummary]:
            collaborators = await self._accessor.list_collaborators(token, repo)
            now = self._clock()
            since = window.since(now)

            fetches = {}
            for c in collaborators:
                fetches[f"{c.login}.commits"] = (
                    lambda login=c.login: self._accessor.count_commits(
                        token, repo, since=since, until=now, author=login)
                )
                fetches[f"{c.login}.pull_requests"] = (
                    lambda login=c.login: self._accessor.count_issues(
                        token, repo, IssueSearchFilters(
                            kind="pr", author=login, created_since=since, created_until=now))
                )
                fetches[f"{c.login}.issues"] = (
                    lambda login=c.login: self._accessor.count_issues(
                        token, repo, IssueSearchFilters(
                            kind="issue", author=login, created_since=since, created_until=now))
                )
            outcomes = await self._fan_out("repository_collaborators", fetches)

            return [
                CollaboratorSummary(
                    login=c.login,
                    avatar_url=c.avatar_url,
                    role=c.role,
                    commits=outcomes[f"{c.login}.commits"].value_or(0),
                    pull_requests=outcomes[f"{c.login}.pull_requests"].value_or(0),
                    issues=outcomes[f"{c.login}.issues"].value_or(0),
                )
                for c in collaborators
            ]

        return await self._cached(
            "repository_collaborators",
            self._key("repository_collaborators", token, repo=repo, time_range=window),
            _decode_list(CollaboratorSummary.from_dict),
            fetch,
        )

    async def get_repository_overview_stats(
        self, token: str, repo_id: str, time_range: str
    ) -> RepositoryOverviewStats:
        """KPIs, open work and peak activity for a repository."""
        repo = RepositoryIdentifier.parse(repo_id)
        window = TimeRange.parse(time_range)

        async def fetch() -> RepositoryOverviewStats:
            since = window.since(self._clock())
            count = self._accessor.count_issues
            outcomes = await self._fan_out("repository_overview", {
                "commits": lambda: self._accessor.count_commits(token, repo, since=since),
                "prs_merged": lambda: count(token, repo, IssueSearchFilters(
                    kind="pr", merged=True, merged_since=since)),
                "issues_closed": lambda: count(token, repo, IssueSearchFilters(
                    kind="issue", state="closed", closed_since=since)),
                "open_prs": lambda: count(token, repo, IssueSearchFilters(
                    kind="pr", state="open")),
                "open_issues": lambda: count(token, repo, IssueSearchFilters(
                    kind="issue", state="open")),
                "needs_review": lambda: count(token, repo, IssueSearchFilters(
                    kind="pr", state="open", review_required=True)),
                "heatmap": lambda: self._accessor.get_activity_heatmap(token, repo, since=since),
                "collaborators": lambda: self._accessor.list_collaborators(token, repo),
            })

            commits = outcomes["commits"].value_or(0)
            prs_merged = outcomes["prs_merged"].value_or(0)
            issues_closed = outcomes["issues_closed"].value_or(0)
            return RepositoryOverviewStats(
                kpis=Kpis(
                    commits=commits,
                    prs_merged=prs_merged,
                    issues_closed=issues_closed,
                    commits_label=commits_label(commits),
                    prs_merged_label=merged_prs_label(prs_merged),
                    issues_closed_label=closed_issues_label(issues_closed),
                ),
                open_work=OpenWork(
                    open_prs=outcomes["open_prs"].value_or(0),
                    open_issues=outcomes["open_issues"].value_or(0),
                    needs_review=outcomes["needs_review"].value_or(0),
                ),
                peak_activity=derive_peak_activity(
                    outcomes["heatmap"].value_or(ActivityHeatmap.empty()),
                    team_size=len(outcomes["collaborators"].value_or([])),
                ),
            )

        return await self._cached(
            "repository_overview",
            self._key("repository_overview", token, repo=repo, time_range=window),
            RepositoryOverviewStats.from_dict,
            fetch,
        )

    async def get_collaborator_weekly_activity(
        self, token: str, repo_id: str, login: str
    ) -> Optional[List[int]]:
        """Commits per week for the last 12 weeks, oldest first.

        Returns None when any week could not be fetched; a partial series is
        never returned or cached.
        """
        repo = RepositoryIdentifier.parse(repo_id)
        login = _validate_login(login)

        async def fetch() -> Optional[List[int]]:
            try:
                counts = await self._accessor.get_weekly_commit_counts(
                    token, repo, login, now=self._clock()
                )
            except (NotFoundError, TransientError) as e:
                logger.warning(
                    f"Weekly activity for {login} in {repo} unavailable ({e.code})"
                )
                return None
            return normalize_weekly_counts(counts)

        return await self._cached(
            "collaborator_weekly_activity",
            self._key("collaborator_weekly_activity", token, repo=repo, login=login),
            _decode_weekly,
            fetch,
        )

    async def get_collaborator_activity(
        self, token: str, repo_id: str, login: str, time_range: str
    ) -> CollaboratorActivity:
        repo = RepositoryIdentifier.parse(repo_id)
        login = _validate_login(login)
        window = TimeRange.parse(time_range)

        async def fetch() -> CollaboratorActivity:
            now = self._clock()
            since = window.since(now)
            outcomes = await self._fan_out("collaborator_activity", {
                "commits": lambda: self._accessor.count_commits(
                    token, repo, since=since, until=now, author=login),
                "pull_requests": lambda: self._accessor.get_pull_request_stats(
                    token, repo, login, since, now),
                "issues": lambda: self._accessor.get_issue_stats(
                    token, repo, login, since, now),
                "reviews": lambda: self._accessor.get_review_stats(
                    token, repo, login, since, now),
            })
            return CollaboratorActivity(
                commits=CommitStats(total_count=outcomes["commits"].value_or(0)),
                pull_requests=outcomes["pull_requests"].value_or(PullRequestStats()),
                issues=outcomes["issues"].value_or(IssueStats()),
                reviews=outcomes["reviews"].value_or(ReviewStats()),
            )

        return await self._cached(
            "collaborator_activity",
            self._key("collaborator_activity", token, repo=repo, time_range=window, login=login),
            CollaboratorActivity.from_dict,
            fetch,
        )

    async def get_collaborator_code_changes(
        self, token: str, repo_id: str, login: str, time_range: str
    ) -> CodeChangeTotals:
        """Lines added and deleted by `login` within the time range."""
        repo = RepositoryIdentifier.parse(repo_id)
        login = _validate_login(login)
        window = TimeRange.parse(time_range)

        async def fetch() -> CodeChangeTotals:
            now = self._clock()
            commits = await self._accessor.list_commits(
                token, repo, since=window.since(now), until=now, author=login
            )
            return CodeChangeTotals(
                additions=sum(c.additions for c in commits),
                deletions=sum(c.deletions for c in commits),
            )

        return await self._cached(
            "collaborator_code_changes",
            self._key("collaborator_code_changes", token, repo=repo, time_range=window, login=login),
            CodeChangeTotals.from_dict,
            fetch,
        )

    async def close(self) -> None:
        """Close connections."""
        await self._accessor.close()
        await self._cache.close()


def _validate_login(login: str) -> str:
    """Return the stripped login; anything outside GitHub's login grammar is rejected."""
    if not isinstance(login, str) or not GITHUB_LOGIN_PATTERN.fullmatch(login.strip()):
        raise ValidationError(f"Invalid collaborator login {login!r}")
    return login.strip()
