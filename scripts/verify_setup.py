"""Verify that the setup is correct before collecting statistics."""
import os
import sys
import redis
from dotenv import load_dotenv

# Load environment variables from .env or env file
load_dotenv('.env') or load_dotenv('env')


def check_environment_variables():
    """Check required environment variables."""
    print("Checking environment variables...")

    required_vars = ["GITHUB_TOKEN"]
    optional_vars = [
        "REDIS_URL",
        "GITHUB_GRAPHQL_URL",
        "CACHE_KEY_PREFIX",
        "STATS_MAX_CONCURRENCY",
        "LOG_LEVEL",
    ]

    missing = [var for var in required_vars if not os.getenv(var)]
    if missing:
        print(f"❌ Missing required environment variables: {', '.join(missing)}")
        return False

    print("✅ Required environment variables set")

    for var in optional_vars:
        if os.getenv(var):
            print(f"   {var}: {os.getenv(var)}")

    return True


def check_redis_connection():
    """Check Redis connection; an absent REDIS_URL means the in-memory cache."""
    print("\nChecking Redis connection...")

    url = os.getenv("REDIS_URL")
    if not url:
        print("⚠️  REDIS_URL not set, statistics will use the in-memory cache")
        return True

    try:
        client = redis.Redis.from_url(url, socket_connect_timeout=5, socket_timeout=5)
        client.ping()
        client.close()
        print("✅ Successfully connected to Redis")
        return True
    except redis.RedisError as e:
        print(f"❌ Failed to connect to Redis: {e}")
        return False


def check_github_token():
    """Verify GitHub token looks plausible."""
    print("\nChecking GitHub token...")

    token = os.getenv("GITHUB_TOKEN")
    if not token:
        print("❌ GITHUB_TOKEN not set")
        return False

    # Simple check - token format
    if token.startswith(("ghp_", "gho_", "github_pat_")):
        print("✅ GitHub token format looks valid")
        return True
    else:
        print("⚠️  Token format may be invalid (expected ghp_*, gho_* or github_pat_*)")
        return True  # Don't fail, might be old format


def main():
    """Run all verification checks."""
    print("=" * 60)
    print("GitDash Statistics - Setup Verification")
    print("=" * 60)

    checks = [
        ("Environment Variables", check_environment_variables),
        ("Redis Connection", check_redis_connection),
        ("GitHub Token", check_github_token),
    ]

    results = {}
    for name, check_func in checks:
        results[name] = check_func()

    print("\n" + "=" * 60)
    print("Verification Summary")
    print("=" * 60)

    for name, passed in results.items():
        status = "✅ PASS" if passed else "❌ FAIL"
        print(f"{status}: {name}")

    if all(results.values()):
        print("\n✅ All checks passed! Ready to collect statistics.")
        print("\nNext steps:")
        print("  python repo_stats.py overview owner/repo --range '1 week'")
        sys.exit(0)
    else:
        print("\n❌ Some checks failed. Please fix the issues above.")
        print("\nCommon solutions:")
        print("  - Set GITHUB_TOKEN: export GITHUB_TOKEN=your_token")
        print("  - Start Redis: docker run -d -p 6379:6379 redis:7")
        print("  - Or unset REDIS_URL to use the in-memory cache")
        sys.exit(1)


if __name__ == "__main__":
    main()
