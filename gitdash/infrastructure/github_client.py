"""GitHub GraphQL API accessor with failure classification."""
import asyncio
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import aiohttp
from gql import gql, Client
from gql.client import AsyncClientSession
from gql.transport.aiohttp import AIOHTTPTransport
from gql.transport.exceptions import (
    TransportProtocolError,
    TransportQueryError,
    TransportServerError,
)
from gitdash.domain.derivation import weekly_bucket_windows
from gitdash.domain.errors import (
    AuthenticationError,
    GitDashError,
    NotFoundError,
    TransientError,
    UnexpectedError,
)
from gitdash.domain.github_interface import IGitHubAccessor
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


logger = logging.getLogger(__name__)

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

ROLE_BY_PERMISSION = {
    "ADMIN": "admin",
    "MAINTAIN": "write",
    "WRITE": "write",
    "TRIAGE": "read",
    "READ": "read",
}

RATE_LIMIT_WARNING_THRESHOLD = 100


def _classified(method):
    """Classify every failure of an accessor method, response parsing included."""
    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except GitDashError:
            raise
        except Exception as e:
            error = classify_error(e)
            logger.warning(f"{method.__name__} failed ({error.code}): {e!r}")
            raise error from e
    return wrapper


class GitHubGraphQLAccessor(IGitHubAccessor):
    """GitHub GraphQL API accessor.

    Implements the IGitHubAccessor port. One instance is shared by every
    request: the transport connects lazily once, and each call carries its
    caller's credential in a per-request Authorization header.
    """

    REPOSITORY_FIELDS = """
        fragment RepositoryFields on Repository {
            databaseId
            name
            nameWithOwner
            description
            url
            stargazerCount
            forkCount
            primaryLanguage {
                name
            }
            createdAt
            updatedAt
        }
    """

    VIEWER_REPOSITORIES_QUERY = gql("""
        query ViewerRepositories($cursor: String) {
            viewer {
                repositories(
                    first: 100
                    after: $cursor
                    affiliations: [OWNER, COLLABORATOR, ORGANIZATION_MEMBER]
                    orderBy: {field: UPDATED_AT, direction: DESC}
                ) {
                    pageInfo {
                        hasNextPage
                        endCursor
                    }
                    nodes {
                        ...RepositoryFields
                    }
                }
            }
        }
    """ + REPOSITORY_FIELDS)

    REPOSITORY_QUERY = gql("""
        query Repository($owner: String!, $name: String!) {
            repository(owner: $owner, name: $name) {
                ...RepositoryFields
            }
        }
    """ + REPOSITORY_FIELDS)

    USER_ID_QUERY = gql("""
        query UserId($login: String!) {
            user(login: $login) {
                id
            }
        }
    """)

    COMMIT_HISTORY_QUERY = gql("""
        query CommitHistory(
            $owner: String!
            $name: String!
            $cursor: String
            $since: GitTimestamp
            $until: GitTimestamp
            $author: CommitAuthor
        ) {
            repository(owner: $owner, name: $name) {
                defaultBranchRef {
                    target {
                        ... on Commit {
                            history(
                                first: 100
                                after: $cursor
                                since: $since
                                until: $until
                                author: $author
                            ) {
                                pageInfo {
                                    hasNextPage
                                    endCursor
                                }
                                nodes {
                                    oid
                                    message
                                    committedDate
                                    additions
                                    deletions
                                    author {
                                        name
                                        email
                                        user {
                                            login
                                        }
                                    }
                                }
                            }
                        }
                    }
                }
            }
            rateLimit {
                remaining
                resetAt
            }
        }
    """)

    COMMIT_COUNT_QUERY = gql("""
        query CommitCount(
            $owner: String!
            $name: String!
            $since: GitTimestamp
            $until: GitTimestamp
            $author: CommitAuthor
        ) {
            repository(owner: $owner, name: $name) {
                defaultBranchRef {
                    target {
                        ... on Commit {
                            history(first: 1, since: $since, until: $until, author: $author) {
                                totalCount
                            }
                        }
                    }
                }
            }
        }
    """)

    COMMIT_DATES_QUERY = gql("""
        query CommitDates($owner: String!, $name: String!, $cursor: String, $since: GitTimestamp) {
            repository(owner: $owner, name: $name) {
                defaultBranchRef {
                    target {
                        ... on Commit {
                            history(first: 100, after: $cursor, since: $since) {
                                pageInfo {
                                    hasNextPage
                                    endCursor
                                }
                                nodes {
                                    committedDate
                                }
                            }
                        }
                    }
                }
            }
        }
    """)

    COLLABORATORS_QUERY = gql("""
        query Collaborators($owner: String!, $name: String!, $cursor: String) {
            repository(owner: $owner, name: $name) {
                collaborators(first: 100, after: $cursor) {
                    pageInfo {
                        hasNextPage
                        endCursor
                    }
                    edges {
                        permission
                        node {
                            login
                            avatarUrl
                        }
                    }
                }
            }
        }
    """)

    ISSUE_COUNT_QUERY = gql("""
        query IssueCount($query: String!) {
            search(query: $query, type: ISSUE, first: 1) {
                issueCount
            }
            rateLimit {
                remaining
                resetAt
            }
        }
    """)

    def __init__(
        self,
        url: str = GITHUB_GRAPHQL_URL,
        timeout: float = 20.0,
        max_pages: int = 10,
        weekly_concurrency: int = 4,
        session: Optional[AsyncClientSession] = None,
    ):
        """Initialize GitHub accessor.

        Args:
            url: GraphQL endpoint
            timeout: Per-request deadline in seconds
            max_pages: Upper bound on pages (of 100 items) read per listing
            weekly_concurrency: Parallel week queries for weekly activity
            session: Already connected gql session, mainly for tests
        """
        self._url = url
        self._timeout = timeout
        self._max_pages = max_pages
        self._weekly_concurrency = max(1, weekly_concurrency)
        self._client: Optional[Client] = None
        self._session = session
        self._connect_lock = asyncio.Lock()
        self._rate_limit_reset_at: Optional[datetime] = None

    async def _get_session(self) -> AsyncClientSession:
        """Connect the shared transport (lazy initialization)."""
        if self._session is None:
            async with self._connect_lock:
                if self._session is None:
                    transport = AIOHTTPTransport(
                        url=self._url,
                        headers={"User-Agent": "gitdash-stats"},
                        ssl=True,
                    )
                    self._client = Client(
                        transport=transport,
                        fetch_schema_from_transport=False,
                        execute_timeout=self._timeout,
                    )
                    self._session = await self._client.connect_async(reconnecting=False)
        return self._session

    async def _execute(self, token: str, query, variables: Dict[str, Any]) -> dict:
        """Execute a GraphQL query on behalf of `token`.

        Raises:
            GitDashError: Classified upstream failure
        """
        session = await self._get_session()
        try:
            result = await session.execute(
                query,
                variable_values=variables,
                extra_args={"headers": {"Authorization": f"Bearer {token}"}},
            )
        except Exception as e:
            error = classify_error(e, reset_at=self._rate_limit_reset_at)
            logger.warning(f"GitHub query failed ({error.code}): {e}")
            raise error from e

        self._log_rate_limit(result)
        return result

    def _log_rate_limit(self, result: dict) -> None:
        rate_limit = result.get("rateLimit") or {}
        if rate_limit.get("resetAt"):
            self._rate_limit_reset_at = _parse_timestamp(rate_limit["resetAt"])
        remaining = rate_limit.get("remaining")
        if remaining is None:
            return
        if remaining <= RATE_LIMIT_WARNING_THRESHOLD:
            logger.warning(
                f"Rate limit nearly exhausted: {remaining} remaining, "
                f"resets at {rate_limit.get('resetAt')}"
            )
        else:
            logger.debug(f"Rate limit remaining: {remaining}")

    async def _paginate(
        self,
        token: str,
        query,
        variables: Dict[str, Any],
        connection: Callable[[dict], Optional[dict]],
        items_key: str = "nodes",
    ) -> List[dict]:
        """Collect items across pages until exhausted or `max_pages` is hit."""
        items: List[dict] = []
        cursor = None

        for _ in range(self._max_pages):
            result = await self._execute(token, query, {**variables, "cursor": cursor})
            page = connection(result)
            if not page:
                return items

            items.extend(page.get(items_key) or [])
            page_info = page.get("pageInfo", {})
            if not page_info.get("hasNextPage"):
                return items
            cursor = page_info.get("endCursor")

        logger.warning(f"Stopped paginating after {self._max_pages} pages; results truncated")
        return items

    @_classified
    async def list_user_repositories(self, token: str) -> List[RepositorySummary]:
        logger.info("Fetching repositories from GitHub API")
        nodes = await self._paginate(
            token,
            self.VIEWER_REPOSITORIES_QUERY,
            {},
            lambda result: (result.get("viewer") or {}).get("repositories"),
        )
        return [_to_repository(node) for node in nodes if node]

    @_classified
    async def get_repository(
        self, token: str, repo: RepositoryIdentifier
    ) -> RepositorySummary:
        logger.info(f"Fetching repository metadata for {repo}")
        result = await self._execute(
            token, self.REPOSITORY_QUERY, {"owner": repo.owner, "name": repo.name}
        )
        node = result.get("repository")
        if not node:
            raise NotFoundError(f"Repository '{repo}' not found")
        return _to_repository(node)

    async def _author_filter(self, token: str, login: Optional[str]) -> Optional[dict]:
        """Resolve a login to the CommitAuthor filter GitHub expects."""
        if not login:
            return None
        result = await self._execute(token, self.USER_ID_QUERY, {"login": login})
        user = result.get("user")
        if not user:
            raise NotFoundError(f"User '{login}' not found")
        return {"id": user["id"]}

    async def _history_variables(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime],
        until: Optional[datetime],
        author: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "owner": repo.owner,
            "name": repo.name,
            "since": _timestamp(since),
            "until": _timestamp(until),
            "author": await self._author_filter(token, author),
        }

    @_classified
    async def list_commits(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        author: Optional[str] = None,
    ) -> List[CommitSummary]:
        logger.info(f"Fetching commits for {repo}")
        variables = await self._history_variables(token, repo, since, until, author)
        nodes = await self._paginate(
            token,
            self.COMMIT_HISTORY_QUERY,
            variables,
            lambda result: _history(result, repo),
        )
        return [_to_commit(node) for node in nodes if node]

    @_classified
    async def count_commits(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        author: Optional[str] = None,
    ) -> int:
        variables = await self._history_variables(token, repo, since, until, author)
        return await self._count_history(token, variables, repo)

    async def _count_history(
        self, token: str, variables: Dict[str, Any], repo: RepositoryIdentifier
    ) -> int:
        result = await self._execute(token, self.COMMIT_COUNT_QUERY, variables)
        history = _history(result, repo)
        return int(history.get("totalCount", 0)) if history else 0

    @_classified
    async def list_collaborators(
        self, token: str, repo: RepositoryIdentifier
    ) -> List[Collaborator]:
        logger.info(f"Fetching collaborators for {repo}")
        edges = await self._paginate(
            token,
            self.COLLABORATORS_QUERY,
            {"owner": repo.owner, "name": repo.name},
            lambda result: _repository(result, repo).get("collaborators"),
            items_key="edges",
        )
        collaborators = []
        for edge in edges:
            node = (edge or {}).get("node")
            if not node:
                continue
            collaborators.append(Collaborator(
                login=node["login"],
                avatar_url=node.get("avatarUrl") or "",
                role=ROLE_BY_PERMISSION.get(edge.get("permission"), "read"),
            ))
        return collaborators

    @_classified
    async def count_issues(
        self, token: str, repo: RepositoryIdentifier, filters: IssueSearchFilters
    ) -> int:
        query = " ".join([f"repo:{repo.full_name}"] + filters.qualifiers())
        logger.debug(f"Counting issues matching: {query}")
        result = await self._execute(token, self.ISSUE_COUNT_QUERY, {"query": query})
        return int((result.get("search") or {}).get("issueCount", 0))

    @_classified
    async def get_activity_heatmap(
        self,
        token: str,
        repo: RepositoryIdentifier,
        since: Optional[datetime] = None,
    ) -> ActivityHeatmap:
        nodes = await self._paginate(
            token,
            self.COMMIT_DATES_QUERY,
            {"owner": repo.owner, "name": repo.name, "since": _timestamp(since)},
            lambda result: _history(result, repo),
        )
        timestamps = [
            _parse_timestamp(node["committedDate"])
            for node in nodes
            if node and node.get("committedDate")
        ]
        return ActivityHeatmap.from_timestamps(timestamps)

    @_classified
    async def get_weekly_commit_counts(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        now: Optional[datetime] = None,
    ) -> List[int]:
        now = now or datetime.now(timezone.utc)
        author = await self._author_filter(token, login)
        semaphore = asyncio.Semaphore(self._weekly_concurrency)

        async def count_week(start: datetime, end: datetime) -> int:
            async with semaphore:
                return await self._count_history(token, {
                    "owner": repo.owner,
                    "name": repo.name,
                    "since": _timestamp(start),
                    "until": _timestamp(end),
                    "author": author,
                }, repo)

        return list(await asyncio.gather(*(
            count_week(start, end) for start, end in weekly_bucket_windows(now)
        )))

    @_classified
    async def get_pull_request_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> PullRequestStats:
        total, merged = await asyncio.gather(
            self.count_issues(token, repo, IssueSearchFilters(
                kind="pr", author=login, created_since=since, created_until=until,
            )),
            self.count_issues(token, repo, IssueSearchFilters(
                kind="pr", author=login, merged=True, merged_since=since, merged_until=until,
            )),
        )
        return PullRequestStats(total_count=total, merged_count=merged)

    @_classified
    async def get_issue_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> IssueStats:
        total, closed = await asyncio.gather(
            self.count_issues(token, repo, IssueSearchFilters(
                kind="issue", author=login, created_since=since, created_until=until,
            )),
            self.count_issues(token, repo, IssueSearchFilters(
                kind="issue", author=login, state="closed",
                closed_since=since, closed_until=until,
            )),
        )
        return IssueStats(total_count=total, closed_count=closed)

    @_classified
    async def get_review_stats(
        self,
        token: str,
        repo: RepositoryIdentifier,
        login: str,
        since: datetime,
        until: datetime,
    ) -> ReviewStats:
        given = await self.count_issues(token, repo, IssueSearchFilters(
            kind="pr", reviewed_by=login, updated_since=since, updated_until=until,
        ))
        return ReviewStats(given_count=given)

    async def close(self) -> None:
        """Close the GraphQL client and transport."""
        if self._client is not None:
            await self._client.close_async()
            self._client = None
            self._session = None


def classify_error(
    error: Exception,
    reset_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> GitDashError:
    """Map a gql/aiohttp failure onto the domain error taxonomy.

    Args:
        error: Raised exception
        reset_at: Last known rate limit reset, used for `retry_after`
        now: Current UTC time, defaults to the wall clock
    """
    if isinstance(error, GitDashError):
        return error

    message = str(error)
    rate_limited = "rate limit" in message.lower()

    def rate_limit_error() -> TransientError:
        reset = reset_at
        data = getattr(error, "data", None)
        if isinstance(data, dict) and (data.get("rateLimit") or {}).get("resetAt"):
            try:
                reset = _parse_timestamp(data["rateLimit"]["resetAt"])
            except ValueError:
                logger.debug(f"Ignoring unparseable resetAt: {data['rateLimit']['resetAt']!r}")
        retry_after = None
        if reset is not None:
            current = now or datetime.now(timezone.utc)
            retry_after = max(0.0, (reset - current).total_seconds())
        return TransientError(f"GitHub rate limit exceeded: {message}", retry_after=retry_after)

    if isinstance(error, TransportServerError):
        code = error.code
        if code == 401:
            return AuthenticationError("GitHub rejected the credential")
        if code == 429 or (code == 403 and rate_limited):
            return rate_limit_error()
        if code in (403, 404):
            return NotFoundError(f"Resource not found or inaccessible: {message}")
        if code is not None and code >= 500:
            return TransientError(f"GitHub server error {code}: {message}")
        return UnexpectedError(f"GitHub returned HTTP {code}: {message}")

    if isinstance(error, TransportQueryError):
        errors = [e for e in (error.errors or []) if isinstance(e, dict)]
        types = {e.get("type") for e in errors}
        if "RATE_LIMITED" in types or rate_limited:
            return rate_limit_error()
        if "bad credentials" in message.lower():
            return AuthenticationError("GitHub rejected the credential")
        if types & {"NOT_FOUND", "FORBIDDEN"}:
            return NotFoundError(f"Resource not found or inaccessible: {message}")
        return UnexpectedError(f"GitHub query failed: {message}")

    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError, TransportProtocolError)):
        return TransientError(f"GitHub request failed: {error!r}")

    return UnexpectedError(f"Unexpected GitHub failure: {error!r}")


def _repository(result: dict, repo: RepositoryIdentifier) -> dict:
    node = result.get("repository")
    if not node:
        raise NotFoundError(f"Repository '{repo}' not found")
    return node


def _history(result: dict, repo: RepositoryIdentifier) -> Optional[dict]:
    """Commit history connection of the default branch, None for empty repositories."""
    branch = _repository(result, repo).get("defaultBranchRef")
    if not branch:
        return None
    return (branch.get("target") or {}).get("history")


def _timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def _to_repository(node: dict) -> RepositorySummary:
    """Transform a GitHub repository node to a domain entity."""
    language = node.get("primaryLanguage") or {}
    return RepositorySummary(
        id=node.get("databaseId") or 0,
        name=node["name"],
        full_name=node["nameWithOwner"],
        html_url=node.get("url") or "",
        description=node.get("description"),
        stargazers_count=node.get("stargazerCount") or 0,
        forks_count=node.get("forkCount") or 0,
        language=language.get("name") or "",
        created_at=_parse_timestamp(node["createdAt"]) if node.get("createdAt") else None,
        updated_at=_parse_timestamp(node["updatedAt"]) if node.get("updatedAt") else None,
    )


def _to_commit(node: dict) -> CommitSummary:
    """Transform a GitHub commit node to a domain entity."""
    author = node.get("author") or {}
    user = author.get("user") or {}
    return CommitSummary(
        sha=node["oid"],
        message=node.get("message") or "",
        author_name=author.get("name") or "",
        author_email=author.get("email") or "",
        author_login=user.get("login"),
        date=_parse_timestamp(node["committedDate"]),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
    )
