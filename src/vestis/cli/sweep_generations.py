"""CLI command for advancing processing generations.

Usage:
    python -m vestis.cli.sweep_generations [OPTIONS]

Examples:
    # Advance up to 10 processing generations
    python -m vestis.cli.sweep_generations

    # Advance up to 100 generations
    python -m vestis.cli.sweep_generations --limit 100

    # Dry run (count stale generations, no provider calls or writes)
    python -m vestis.cli.sweep_generations --dry-run

    # Verbose logging
    python -m vestis.cli.sweep_generations -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from datetime import timedelta

import structlog

from vestis.core import timezone  # noqa: F401
from vestis.core.config import Settings, configure_logging
from vestis.core.database import setup_db_session
from vestis.core.timezone import utcnow
from vestis.services.generation.factory import build_orchestrator
from vestis.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv=None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Advance processing generations by polling their providers",
        epilog="Uses the same transitions as the status endpoints; safe to run alongside the API",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Maximum number of generations to advance (default: 10)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many processing generations are past the staleness window",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv=None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info("cli.started", limit=args.limit, dry_run=args.dry_run)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        if args.dry_run:
            hours = settings.stale_generation_hours
            cutoff = utcnow() - timedelta(hours=hours)
            async with await uow_factory() as uow:
                stale = await uow.generations.count_processing_older_than(cutoff)

            print("\n" + "=" * 60)
            print("Generation Sweep (dry run)")
            print("=" * 60)
            print(f"Processing generations older than {hours:g}h: {stale}")
            print("\n[DRY RUN] No providers were polled and nothing was written")
            print("=" * 60 + "\n")
            return 0

        orchestrator = build_orchestrator(settings, uow_factory)
        result = await orchestrator.sweep(limit=args.limit)

        print("\n" + "=" * 60)
        print("Generation Sweep Summary")
        print("=" * 60)
        print(f"Generations checked: {result.checked}")
        print(f"Completed: {result.completed}")
        print(f"Failed: {result.failed}")
        print(f"Still processing: {result.still_processing}")

        if result.errors:
            print(f"\nPoll errors: {len(result.errors)}")
            for error in result.errors[:5]:
                print(f"  - {error}")
            if len(result.errors) > 5:
                print(f"  ... and {len(result.errors) - 5} more errors")

        print("=" * 60 + "\n")

        if not result.errors:
            logger.info("cli.success", checked=result.checked)
            return 0
        elif len(result.errors) < result.checked:
            logger.warning("cli.partial_success", errors=len(result.errors))
            return 2
        else:
            logger.error("cli.failure", errors=len(result.errors))
            return 1

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSweep interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
