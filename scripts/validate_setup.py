"""Validate that the dispatch engine is properly set up and configured."""

import asyncio
import sys
from pathlib import Path

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from fleetdispatch.config import Settings


def check_python_version() -> bool:
    """Check if Python version is 3.10+."""
    print("Checking Python version...")

    version = sys.version_info
    if version < (3, 10):
        print(f"  ❌ Python {version.major}.{version.minor} detected")
        print("  → Python 3.10+ required")
        return False

    print(f"  ✓ Python {version.major}.{version.minor} detected")
    return True


def check_project_structure() -> bool:
    """Check if the core modules are present."""
    print("\nChecking project structure...")

    required_paths = [
        "fleetdispatch/state/store.py",
        "fleetdispatch/state/lifecycle.py",
        "fleetdispatch/scheduling/availability.py",
        "fleetdispatch/scheduling/validator.py",
        "fleetdispatch/services/dispatch.py",
        "fleetdispatch/services/relay.py",
        "fleetdispatch/api/routes.py",
        "fleetdispatch/main.py",
        "pyproject.toml",
    ]

    missing = [path for path in required_paths if not Path(path).exists()]
    if missing:
        print("  ❌ Missing files:")
        for path in missing:
            print(f"     - {path}")
        return False

    print("  ✓ All required files present")
    return True


def load_settings() -> Settings | None:
    """Load settings from the environment and .env."""
    print("\nChecking configuration...")

    try:
        settings = Settings()
    except ValidationError as e:
        print("  ❌ Invalid configuration:")
        for error in e.errors():
            print(f"     - {'.'.join(str(p) for p in error['loc'])}: {error['msg']}")
        return None

    print(f"  ✓ Environment: {settings.environment}")
    print(
        f"  ✓ Buffers: driver {settings.driver_buffer_minutes} min, "
        f"vehicle {settings.vehicle_buffer_minutes} min"
    )
    print(f"  ✓ Unscheduled deliveries anchored by: {settings.anchor_fallback}")
    if settings.workday_start_hour >= settings.workday_end_hour:
        print("  ❌ Working day must start before it ends")
        return None
    return settings


async def check_transport(settings: Settings) -> bool:
    """Check the pub/sub backend is reachable."""
    print("\nChecking transport...")

    if settings.transport_backend == "memory":
        print("  ✓ In-memory transport (no external service needed)")
        return True

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except RedisError as e:
        print(f"  ❌ Redis not reachable at {settings.redis_url}: {e}")
        return False
    finally:
        await client.aclose()

    print(f"  ✓ Redis reachable at {settings.redis_url}")
    return True


async def main() -> int:
    """Run all checks."""
    print("\n" + "=" * 50)
    print("  Validating Fleet Dispatch Setup")
    print("=" * 50 + "\n")

    results = [check_python_version(), check_project_structure()]
    settings = load_settings()
    results.append(settings is not None)
    if settings is not None:
        results.append(await check_transport(settings))

    print("\n" + "=" * 50)
    if all(results):
        print("  ✓ Setup looks good!")
        print("=" * 50 + "\n")
        return 0

    print("  ❌ Some checks failed")
    print("=" * 50 + "\n")
    return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
