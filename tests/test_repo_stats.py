"""Tests for the command-line entry point."""
import pytest
from conftest import FakeAccessor
from gitdash.application.stats_service import RepositoryStatsService
from gitdash.config import Settings
from gitdash.domain.errors import NotFoundError
from gitdash.domain.models import CodeChangeTotals
from gitdash.infrastructure.memory_cache import InMemoryCacheStore
from repo_stats import build_cache, build_parser, call_with_retry, select_operation


@pytest.mark.parametrize("argv,operation", [
    (["repos"], "repos"),
    (["repo", "https://github.com/octo/demo"], "repo"),
    (["overview", "octo/demo", "--range", "1 month"], "overview"),
    (["weekly", "octo/demo", "alice"], "weekly"),
    (["code-changes", "octo/demo", "alice"], "code-changes"),
])
def test_parser_accepts_operations(argv, operation):
    args = build_parser().parse_args(argv)

    assert args.operation == operation


def test_parser_defaults_range():
    args = build_parser().parse_args(["activity", "octo/demo", "alice"])

    assert args.time_range == "1 week"


@pytest.mark.asyncio
async def test_selected_operation_calls_service():
    accessor = FakeAccessor()
    service = RepositoryStatsService(accessor=accessor, cache=InMemoryCacheStore())
    args = build_parser().parse_args(["code-changes", "octo/demo", "alice", "--range", "3 months"])

    result = await call_with_retry(select_operation(service, "ghp_x", args), attempts=3)

    assert result == CodeChangeTotals(additions=15, deletions=9)
    assert accessor.count("list_commits") == 1


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried():
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        raise NotFoundError("missing")

    with pytest.raises(NotFoundError):
        await call_with_retry(operation, attempts=3)
    assert calls == 1


@pytest.mark.asyncio
async def test_build_cache_without_redis():
    cache = await build_cache(Settings())

    assert isinstance(cache, InMemoryCacheStore)
