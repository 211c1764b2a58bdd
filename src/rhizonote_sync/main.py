#!/usr/bin/env python
"""Command-line entry point for Rhizonote Sync."""
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import FrozenSet, List, Optional

import anyio

from rhizonote_sync import __version__
from rhizonote_sync.config import config
from rhizonote_sync.exceptions import RhizonoteError
from rhizonote_sync.models.db_models import get_session_factory, init_db
from rhizonote_sync.models.schema import Credentials, SyncResult
from rhizonote_sync.observability import configure_logging
from rhizonote_sync.storage.sync_state_repository import SyncStateRepository
from rhizonote_sync.sync.executor import SyncExecutor
from rhizonote_sync.sync.planner import MergePolicy
from rhizonote_sync.sync.scheduler import SyncScheduler
from rhizonote_sync.sync.trash import expire_trash

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Rhizonote Dropbox sync")
    parser.add_argument(
        "--database-path",
        help="SQLite file holding the sync state",
        type=str,
        default=os.environ.get("RHIZONOTE_DATABASE_PATH"),
    )
    parser.add_argument(
        "--remote-root",
        help="Remote folder the notes live under",
        type=str,
        default=None,
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level,
    )
    parser.add_argument(
        "--expire-trash",
        help="Purge trash entries past the retention window before syncing",
        action="store_true",
    )
    parser.add_argument(
        "--watch",
        help="Keep running, syncing on the periodic schedule",
        action="store_true",
    )
    parser.add_argument("--version", action="version", version=__version__)
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.remote_root is not None:
        config.remote_root = args.remote_root


def build_executor() -> SyncExecutor:
    """Open a Dropbox-backed executor from the configuration.

    Raises:
        CredentialsMissingError: No access or refresh token is configured.
    """
    credentials = Credentials(
        access_token=config.dropbox_access_token,
        refresh_token=config.dropbox_refresh_token,
    )
    return SyncExecutor.open(
        credentials,
        app_key=config.dropbox_app_key,
        root=config.remote_root,
        policy=MergePolicy(
            tolerance_ms=config.conflict_tolerance_ms,
            structural_winner=config.structural_winner,
        ),
        batch_size=config.download_batch_size,
        upload_batch_size=config.upload_batch_size,
    )


async def run_once(repository: SyncStateRepository, executor: SyncExecutor) -> SyncResult:
    """Load the persisted state, sync it, and write the result back."""
    request = repository.load_request()
    result = await executor.run(request)
    repository.apply_result(result, request)
    return result


def _expire(repository: SyncStateRepository) -> None:
    expiry = expire_trash(
        repository.get_notes(),
        repository.get_folders(),
        retention_ms=config.trash_retention_ms,
    )
    repository.apply_trash_expiry(expiry)


async def _watch(repository: SyncStateRepository, executor: SyncExecutor) -> None:
    """Startup sync, then periodic soft triggers until interrupted.

    Notes left dirty in the repository seed the scheduler, so a forced
    trigger has something to push.
    """

    async def sync(_captured: FrozenSet[str]) -> SyncResult:
        return await run_once(repository, executor)

    scheduler = SyncScheduler(
        sync,
        debounce_ms=config.debounce_ms,
        min_interval_ms=config.min_sync_interval_ms,
        interval_ms=config.sync_interval_ms,
        cooldown_ms=config.cooldown_ms,
        startup_delay_ms=config.startup_delay_ms,
    )
    # No edit time is recorded, so the startup sync is not debounced
    scheduler.dirty_ids.update(repository.dirty_ids())
    await scheduler.run_forever()


def main(argv: Optional[List[str]] = None) -> int:
    """Run one sync (or keep syncing with ``--watch``)."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        configure_logging(level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        repository = SyncStateRepository(get_session_factory(init_db()))
        if args.expire_trash:
            _expire(repository)
        executor = build_executor()
        if args.watch:
            anyio.run(_watch, repository, executor)
            return 0
        result = anyio.run(run_once, repository, executor)
    except RhizonoteError as e:
        logger.error(f"Sync failed: {e}")
        return 1
    except KeyboardInterrupt:
        return 130

    for line in result.log:
        print(line)
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
