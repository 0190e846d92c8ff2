"""Main entry point for GitDash repository statistics.

Wires the GitHub accessor, the cache store and the statistics service together
and prints the requested aggregate as JSON.
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, List, Optional
from dotenv import load_dotenv
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from gitdash.application.stats_service import RepositoryStatsService
from gitdash.config import Settings
from gitdash.domain.cache_interface import ICacheStore
from gitdash.domain.errors import CacheError, GitDashError, TransientError
from gitdash.infrastructure.github_client import GitHubGraphQLAccessor
from gitdash.infrastructure.memory_cache import InMemoryCacheStore
from gitdash.infrastructure.redis_cache import RedisCacheStore
from gitdash.infrastructure.serialization import to_jsonable

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


logger = logging.getLogger(__name__)

DEFAULT_RANGE = "1 week"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GitHub repository statistics")
    sub = parser.add_subparsers(dest="operation", required=True)

    sub.add_parser("repos", help="Repositories of the authenticated user")

    repo = sub.add_parser("repo", help="Repository metadata by URL or owner/repo")
    repo.add_argument("url")

    commits = sub.add_parser("commits", help="Default-branch commits")
    commits.add_argument("repository")

    for name, help_text in (
        ("collaborators", "Collaborators with activity counts"),
        ("overview", "KPIs, open work and peak activity"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("repository")
        p.add_argument("--range", dest="time_range", default=DEFAULT_RANGE)

    weekly = sub.add_parser("weekly", help="Commits per week for the last 12 weeks")
    weekly.add_argument("repository")
    weekly.add_argument("login")

    for name, help_text in (
        ("activity", "Commits, pull requests, issues and reviews of a collaborator"),
        ("code-changes", "Lines added and deleted by a collaborator"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("repository")
        p.add_argument("login")
        p.add_argument("--range", dest="time_range", default=DEFAULT_RANGE)

    return parser


def select_operation(
    service: RepositoryStatsService, token: str, args: argparse.Namespace
) -> Callable[[], Awaitable[object]]:
    """Bind the parsed command to a service call."""
    op = args.operation
    if op == "repos":
        return lambda: service.get_user_repositories(token)
    if op == "repo":
        return lambda: service.get_repository_by_owner_repo(token, args.url)
    if op == "commits":
        return lambda: service.get_repository_commits(token, args.repository)
    if op == "collaborators":
        return lambda: service.get_repository_collaborators(
            token, args.repository, args.time_range)
    if op == "overview":
        return lambda: service.get_repository_overview_stats(
            token, args.repository, args.time_range)
    if op == "weekly":
        return lambda: service.get_collaborator_weekly_activity(
            token, args.repository, args.login)
    if op == "activity":
        return lambda: service.get_collaborator_activity(
            token, args.repository, args.login, args.time_range)
    if op == "code-changes":
        return lambda: service.get_collaborator_code_changes(
            token, args.repository, args.login, args.time_range)
    raise ValueError(f"Unknown operation {op!r}")


async def build_cache(settings: Settings) -> ICacheStore:
    """Redis when configured, otherwise an in-process cache."""
    if not settings.redis_url:
        logger.info("REDIS_URL not set, using in-memory cache")
        return InMemoryCacheStore(default_ttl=settings.cache_default_ttl)

    cache = RedisCacheStore(settings.redis_url, default_ttl=settings.cache_default_ttl)
    try:
        await cache.start()
    except CacheError as e:
        logger.warning(f"{e}; continuing without a working cache")
    return cache


async def call_with_retry(
    operation: Callable[[], Awaitable[object]], attempts: int
) -> object:
    """Retry transient GitHub failures with exponential backoff."""
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(TransientError),
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    ):
        with attempt:
            return await operation()


async def main(argv: Optional[List[str]] = None) -> int:
    """Execute one statistics operation."""
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()

    logging.basicConfig(
        level=settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not settings.github_token:
        logger.error("GITHUB_TOKEN environment variable is required")
        return 1

    accessor = GitHubGraphQLAccessor(
        url=settings.github_graphql_url,
        timeout=settings.github_timeout_seconds,
        max_pages=settings.github_max_pages,
    )
    service = RepositoryStatsService(
        accessor=accessor,
        cache=await build_cache(settings),
        max_concurrency=settings.max_concurrency,
        key_prefix=settings.cache_key_prefix,
    )

    try:
        operation = select_operation(service, settings.github_token, args)
        result = await call_with_retry(operation, settings.retry_attempts)
        if result is None:
            logger.warning("Result unavailable")
        print(json.dumps(to_jsonable(result), indent=2))
        return 0
    except GitDashError as e:
        logger.error(f"{args.operation} failed with HTTP {e.status_code}: {e}")
        return 1
    finally:
        await service.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
