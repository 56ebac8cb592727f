"""Sync runner entry point.

Reconciles the vector index with the source store for one or more
organizations and exits. The organizations are synced concurrently.

Usage:
    python -m services.embedding_sync.embedding_sync ORG_ID [ORG_ID ...]
"""

import argparse
import asyncio
import sys

from services.embedding_sync.SyncEngine import SyncEngine
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync embeddings of organizations into the vector index.")
    parser.add_argument("organization_ids", nargs="+", metavar="ORG_ID", help="organization(s) to sync")
    parser.add_argument("--no-log-file", action="store_true", help="log to the console only")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    """Run a full sync for every organization given on the command line.

    Returns:
        int: Process exit code, 1 if any organization failed.
    """
    args = parse_args(argv)
    logger = setup_logging(log_to_file=not args.no_log_file)
    config = HelperConfig(logger=logger)

    try:
        engine = SyncEngine.from_config(config)
    except Exception as e:
        logger.error("Could not configure the sync engine: %s. Aborting.", e)
        return 1

    try:
        # all clients are required, without them there is nothing to sync
        try:
            await engine.start()
        except Exception as e:
            logger.error("Error booting clients: %s. Aborting.", e)
            return 1

        results = await asyncio.gather(
            *[engine.coordinator.sync_organization(org_id) for org_id in args.organization_ids],
            return_exceptions=True,
        )
        failed = 0
        for org_id, result in zip(args.organization_ids, results):
            if isinstance(result, Exception):
                failed += 1
                logger.error("Sync for organization %s failed: %s", org_id, result, color="red")
            elif result is not None:
                totals = result.totals
                logger.info(
                    "Organization %s: %d created, %d updated, %d skipped, %d failed, %d orphans deleted",
                    org_id, totals.created, totals.updated, totals.skipped, totals.failed, result.orphans_deleted,
                    color="green" if not totals.failed else "yellow",
                )
        return 1 if failed else 0
    finally:
        await engine.close()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
