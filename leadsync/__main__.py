"""CLI entry point for the CRM -> campaign sync service."""

import argparse
import asyncio
import logging
import sys

from leadsync.config import load_routing, settings
from leadsync.connectors import mock_routing
from leadsync.errors import ConfigurationError
from leadsync.models import BatchResult
from leadsync.pipeline import PipelineOrchestrator, build_pipeline, preflight
from leadsync.store import StateStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def make_orchestrator(use_mock: bool) -> PipelineOrchestrator:
    if use_mock:
        routing = load_routing() if settings.routing_config_path.exists() else mock_routing()
        # Dry runs never touch the real ledger
        return build_pipeline(settings, routing, use_mock=True, store=StateStore.from_url("sqlite://"))
    return build_pipeline(settings, load_routing())


async def run_once(use_mock: bool = False) -> BatchResult:
    """Validate connections, then run a single batch."""
    orchestrator = make_orchestrator(use_mock)
    try:
        if not await preflight(orchestrator):
            raise ConfigurationError("API connection check failed")
        result = await orchestrator.run()
        print_summary(result)
        return result
    finally:
        await orchestrator.aclose()


async def serve(interval: int, use_mock: bool = False):
    """Run a batch every ``interval`` seconds until interrupted."""
    orchestrator = make_orchestrator(use_mock)
    try:
        if not await preflight(orchestrator):
            raise ConfigurationError("API connection check failed")

        logger.info(f"Polling for triggered contacts every {interval}s")
        while True:
            result = await orchestrator.run()
            if result.skipped_run:
                logger.info("Previous run still active, waiting for the next tick")
            await asyncio.sleep(interval)
    finally:
        await orchestrator.aclose()


async def show_stats():
    store = StateStore.from_url(settings.database_url)
    try:
        stats = await store.stats()
    finally:
        store.close()

    print(f"\nProcessed records: {stats.total}")
    print(f"Processed today:   {stats.today}")
    if stats.by_owner:
        print("\nBy owner:")
        for owner, count in sorted(stats.by_owner.items(), key=lambda kv: -kv[1]):
            print(f"   {owner}: {count}")


async def forget(record_id: str) -> bool:
    store = StateStore.from_url(settings.database_url)
    try:
        return await store.remove_processed(record_id)
    finally:
        store.close()


def print_summary(result: BatchResult):
    """Print a summary of a run to console."""
    print("\n" + "=" * 60)
    print("LEADSYNC - RUN SUMMARY")
    print("=" * 60)

    if result.skipped_run:
        print(f"\nRun skipped: {result.reason}")
        print("=" * 60)
        return

    print(f"\nRun id: {result.run_id}")
    for name, count in result.outcome_counts.items():
        print(f"   {name.capitalize():<10} {count}")
    print(f"   Duration   {result.duration_ms}ms")

    if result.cancelled:
        print("\nRun was cancelled before all contacts were processed")
    if result.error:
        print(f"\nRun error: {result.error}")

    if result.errors:
        print("\n" + "-" * 60)
        print("FAILURES")
        print("-" * 60)
        for err in result.errors[:10]:
            print(f"   {err.record_id}: {err.error}")
        remaining = max(0, len(result.errors) - 10) + result.errors_truncated
        if remaining:
            print(f"   ... and {remaining} more")

    print("\n" + "=" * 60)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="leadsync - Sync triggered CRM contacts into outreach campaigns"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run a single sync batch")
    run_parser.add_argument(
        "--mock",
        action="store_true",
        help="Use in-memory mock collaborators and a throwaway ledger",
    )

    serve_parser = subparsers.add_parser("serve", help="Run sync batches on an interval")
    serve_parser.add_argument(
        "--interval", "-i",
        type=int,
        default=settings.polling_interval_seconds,
        help=f"Seconds between runs (default: {settings.polling_interval_seconds})",
    )
    serve_parser.add_argument("--mock", action="store_true", help="Use mock collaborators")

    subparsers.add_parser("stats", help="Show ledger statistics")

    forget_parser = subparsers.add_parser("forget", help="Remove a record from the ledger")
    forget_parser.add_argument("record_id", help="Source record id to forget")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.command == "run":
            result = asyncio.run(run_once(use_mock=args.mock))
            if result.error or result.failed:
                sys.exit(2)
        elif args.command == "serve":
            asyncio.run(serve(args.interval, use_mock=args.mock))
        elif args.command == "stats":
            asyncio.run(show_stats())
        elif args.command == "forget":
            if asyncio.run(forget(args.record_id)):
                logger.info(f"Removed {args.record_id} from the ledger")
            else:
                logger.warning(f"{args.record_id} was not in the ledger")
                sys.exit(1)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"leadsync failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
