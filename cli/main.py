"""bloomload CLI - runs the expiring Bloom filter throughput test."""

import argparse
import asyncio
import logging
import sys
import time

from pydantic import ValidationError

from common.errors import ConfigurationError, HarnessError
from common.models.scenario import default_scenarios, load_scenario_file
from common.store.redis_client import RedisClient
from common.utils import format_duration
from harness.config import HarnessSettings
from harness.core.runner import RunController, redis_filter_builder

logger = logging.getLogger("bloomload")


def configure_logging(settings: HarnessSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=settings.log_format,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def settings_from_args(args) -> HarnessSettings:
    """Apply command line overrides on top of the environment settings."""
    overrides = {
        "redis_url": args.redis_url,
        "servers": getattr(args, "servers", None),
        "users_per_server": getattr(args, "users", None),
        "run_duration_s": getattr(args, "duration", None),
        "write_period_ms": getattr(args, "write_period", None),
        "read_period_ms": getattr(args, "read_period", None),
        "seed": getattr(args, "seed", None),
        "results_path": getattr(args, "results", None),
        "convergence_timeout_s": getattr(args, "convergence_timeout", None),
    }
    try:
        return HarnessSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


async def run_scenarios(args, settings: HarnessSettings) -> int:
    if args.scenarios:
        scenarios, topology = load_scenario_file(args.scenarios)
    else:
        scenarios, topology = default_scenarios(), None

    client = RedisClient(settings.redis_url, max_connections=settings.redis_max_connections)
    try:
        await client.connect()
        controller = RunController(client, settings, redis_filter_builder(client, settings))
        await controller.run_all(scenarios, topology)
    finally:
        await client.disconnect()
    return 0


async def ping_backend(settings: HarnessSettings) -> int:
    client = RedisClient(settings.redis_url, max_connections=1)
    try:
        await client.connect()
        await client.ping()
    finally:
        await client.disconnect()
    print(f"Redis at {settings.redis_url} is reachable")
    return 0


def cmd_run(args):
    """Run the scenario sequence."""
    settings = settings_from_args(args)
    configure_logging(settings)
    print(f"Please make sure to have Redis running at {settings.redis_url}.", file=sys.stderr)

    started = time.monotonic()
    code = asyncio.run(run_scenarios(args, settings))
    logger.info(f"All runs finished in {format_duration(time.monotonic() - started)}")
    return code


def cmd_ping(args):
    """Check backend reachability."""
    settings = settings_from_args(args)
    configure_logging(settings)
    return asyncio.run(ping_backend(settings))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Throughput test for Redis-backed expiring Bloom filters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-r", "--redis-url",
        default=None,
        help="Redis URL (default: BLOOMLOAD_REDIS_URL or redis://127.0.0.1:6379)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run
    run_parser = subparsers.add_parser("run", help="Run the test scenarios")
    run_parser.add_argument("-f", "--scenarios", help="YAML scenario file")
    run_parser.add_argument("-s", "--servers", type=int, help="Filters per run")
    run_parser.add_argument("-u", "--users", type=int, help="Users per filter")
    run_parser.add_argument("-d", "--duration", type=float, help="Load phase in seconds")
    run_parser.add_argument("--write-period", type=int, help="Write period in ms")
    run_parser.add_argument("--read-period", type=int, help="Read period in ms")
    run_parser.add_argument("--seed", type=int, help="Pseudo-random seed")
    run_parser.add_argument("--results", help="Append JSON Lines results to this file")
    run_parser.add_argument(
        "--convergence-timeout", type=float,
        help="Fail if filters are not empty after this many seconds"
    )
    run_parser.set_defaults(func=cmd_run)

    # ping
    ping_parser = subparsers.add_parser("ping", help="Check the Redis connection")
    ping_parser.set_defaults(func=cmd_ping)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        code = args.func(args)
    except HarnessError as e:
        phase = e.phase or "setup"
        print(f"Error during {phase}: {e.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
