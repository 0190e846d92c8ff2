"""Environment-driven settings."""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from gitdash.domain.errors import ValidationError
from gitdash.infrastructure.github_client import GITHUB_GRAPHQL_URL


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once at startup."""
    github_token: Optional[str] = None
    github_graphql_url: str = GITHUB_GRAPHQL_URL
    github_timeout_seconds: int = 20
    github_max_pages: int = 10
    redis_url: Optional[str] = None
    cache_key_prefix: str = "gitdash"
    cache_default_ttl: timedelta = timedelta(minutes=30)
    max_concurrency: int = 6
    retry_attempts: int = 3
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        """Build settings from environment variables."""
        env = os.environ if env is None else env
        return cls(
            github_token=env.get("GITHUB_TOKEN") or None,
            github_graphql_url=env.get("GITHUB_GRAPHQL_URL") or GITHUB_GRAPHQL_URL,
            github_timeout_seconds=_int(env, "GITHUB_TIMEOUT_SECONDS", 20),
            github_max_pages=_int(env, "GITHUB_MAX_PAGES", 10),
            redis_url=env.get("REDIS_URL") or None,
            cache_key_prefix=env.get("CACHE_KEY_PREFIX") or "gitdash",
            cache_default_ttl=timedelta(minutes=_int(env, "CACHE_DEFAULT_TTL_MINUTES", 30)),
            max_concurrency=_int(env, "STATS_MAX_CONCURRENCY", 6),
            retry_attempts=_int(env, "RETRY_ATTEMPTS", 3),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
