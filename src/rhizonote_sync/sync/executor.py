"""Sync executor: runs one full reconciliation against a remote store.

A run is a fixed sequence of phases. Queued deletions and renames are
replayed first so the scan sees the tree the user expects; then the remote
tree is scanned, folders reconciled, remote notes downloaded and
de-duplicated, and a merge plan computed and applied. Per-item remote
failures are logged and recorded without stopping their siblings; a failed
listing aborts the run.
"""

import logging
from typing import Dict, List, Optional

from rhizonote_sync.exceptions import (
    RemoteConflictError,
    RemoteError,
    RemoteNotFoundError,
)
from rhizonote_sync.models.schema import (
    Credentials,
    Note,
    PlannedTransfer,
    RenameOperation,
    SyncFailure,
    SyncRequest,
    SyncResult,
)
from rhizonote_sync.observability import timed_operation
from rhizonote_sync.remote.base import RemoteStore
from rhizonote_sync.remote.dropbox_store import DropboxRemoteStore
from rhizonote_sync.storage.markdown_parser import MarkdownParser
from rhizonote_sync.sync.batching import run_in_batches
from rhizonote_sync.sync.duplicates import (
    DEFAULT_DOWNLOAD_BATCH_SIZE,
    download_remote_notes,
    resolve_duplicates,
)
from rhizonote_sync.sync.folders import reconcile_folders
from rhizonote_sync.sync.paths import folder_path, index_folders
from rhizonote_sync.sync.planner import MergePolicy, plan_merge
from rhizonote_sync.sync.queues import DeletionQueue, RenameQueue
from rhizonote_sync.sync.scanner import scan_remote_tree

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_BATCH_SIZE = 5


class SyncExecutor:
    """Executes sync runs against one remote store."""

    def __init__(
        self,
        store: RemoteStore,
        parser: Optional[MarkdownParser] = None,
        policy: Optional[MergePolicy] = None,
        batch_size: int = DEFAULT_DOWNLOAD_BATCH_SIZE,
        upload_batch_size: int = DEFAULT_UPLOAD_BATCH_SIZE,
    ) -> None:
        if batch_size < 1 or upload_batch_size < 1:
            raise ValueError("batch sizes must be >= 1")
        self.store = store
        self.parser = parser or MarkdownParser()
        self.policy = policy or MergePolicy()
        self.batch_size = batch_size
        self.upload_batch_size = upload_batch_size

    @classmethod
    def open(
        cls,
        credentials: Credentials,
        app_key: Optional[str] = None,
        root: str = "",
        **kwargs,
    ) -> "SyncExecutor":
        """Create an executor backed by a Dropbox session.

        Raises:
            CredentialsMissingError: Neither token is present. Raised before
                any remote call is made.
        """
        store = DropboxRemoteStore.connect(credentials, app_key=app_key, root=root)
        return cls(store, **kwargs)

    async def run(self, request: SyncRequest) -> SyncResult:
        """Run every phase once and return the merged state.

        Raises:
            SyncError: The remote tree could not be listed, or the store
                rejected the credentials. No local state is modified.
        """
        log: List[str] = []
        failures: List[SyncFailure] = []

        def fail(operation: str, path: str, error: RemoteError) -> None:
            logger.warning(f"{operation} failed for {path}: {error}")
            log.append(f"Failed to {operation} {path}: {error.message}")
            failures.append(SyncFailure(operation, path, str(error)))

        with timed_operation(
            "sync.run", notes=len(request.notes), folders=len(request.folders)
        ) as run_info:
            await self._delete_queued(request.deletion_paths, log, fail)
            await self._apply_renames(request.renames, log, fail)

            with timed_operation("sync.scan") as op:
                tree = await scan_remote_tree(self.store)
                op["files"] = len(tree.files)

            with timed_operation("sync.folders") as op:
                reconciliation = reconcile_folders(request.folders, tree.directories)
                index = index_folders(reconciliation.folders)
                for folder in reconciliation.created:
                    path = folder_path(folder.id, index)
                    log.append(f"Adopted remote folder {path}")
                op["created"] = len(reconciliation.created)

            with timed_operation("sync.download", files=len(tree.files)) as op:
                downloaded = await download_remote_notes(
                    self.store,
                    tree.files,
                    parser=self.parser,
                    path_map=reconciliation.path_map,
                    batch_size=self.batch_size,
                )
                for error in downloaded.failures:
                    fail("download", error.path or "", error)
                resolution = resolve_duplicates(downloaded.candidates)
                op["downloaded"] = len(downloaded.candidates)

            plan = plan_merge(
                request.notes,
                resolution.canonical,
                reconciliation.folders,
                remote_directories=tree.directories,
                policy=self.policy,
                dirty_ids=request.dirty_ids,
                unreadable_paths=[e.path for e in downloaded.failures if e.path],
            )
            for transfer in plan.downloads:
                log.append(f"Downloaded {transfer.path} ({transfer.reason})")

            await self._create_folders(plan.folder_creates, log, fail)
            notes, failed_uploads = await self._upload(plan.uploads, plan.notes, log, fail)

            stale = DeletionQueue(resolution.stale_paths)
            for transfer in plan.uploads:
                if transfer.replaces and transfer.note.id not in failed_uploads:
                    stale.add(transfer.replaces)
            # An upload may land on a path that lost duplicate resolution
            stale.discard(
                t.path for t in plan.uploads if t.note.id not in failed_uploads
            )
            await self._delete_stale(stale.paths(), log, fail)

            run_info.update(plan.summary())
            run_info["failures"] = len(failures)

        log.append(
            f"Sync complete: {len(plan.uploads) - len(failed_uploads)} uploaded, "
            f"{len(plan.downloads)} downloaded, {len(failures)} failed"
        )
        logger.info(log[-1])
        return SyncResult(
            notes=notes,
            folders=reconciliation.folders,
            log=log,
            plan=plan,
            failures=failures,
        )

    async def _delete_queued(self, paths: List[str], log: List[str], fail) -> None:
        queue = DeletionQueue(paths)
        if not queue:
            return
        with timed_operation("sync.delete_queued", count=len(queue)):
            outcome = await run_in_batches(
                queue.paths(), self.store.delete, self.upload_batch_size
            )
        for path, _ in outcome.succeeded:
            log.append(f"Deleted {path}")
        for path, error in outcome.failed:
            fail("delete", path, error)

    async def _apply_renames(
        self, renames: List[RenameOperation], log: List[str], fail
    ) -> None:
        # Sequential: a folder move must land before moves inside it
        operations = RenameQueue(renames).operations()
        if not operations:
            return
        with timed_operation("sync.rename", count=len(operations)):
            for op in operations:
                try:
                    await self.store.move(op.from_path, op.to_path)
                    log.append(f"Moved {op.from_path} to {op.to_path}")
                except (RemoteNotFoundError, RemoteConflictError) as e:
                    logger.info(f"Skipping move {op.from_path} -> {op.to_path}: {e}")
                    log.append(
                        f"Skipped move {op.from_path} to {op.to_path}: {e.message}"
                    )
                except RemoteError as e:
                    fail("move", op.from_path, e)

    async def _create_folders(self, paths: List[str], log: List[str], fail) -> None:
        if not paths:
            return
        with timed_operation("sync.create_folders", count=len(paths)):
            # Parents first; a failed parent makes its children fail too
            for path in paths:
                try:
                    await self.store.create_folder(path)
                    log.append(f"Created folder {path}")
                except RemoteError as e:
                    fail("create folder", path, e)

    async def _upload(
        self,
        uploads: List[PlannedTransfer],
        notes: List[Note],
        log: List[str],
        fail,
    ):
        """Upload planned notes; returns the final note set and failed ids."""
        if not uploads:
            return list(notes), set()

        async def put(transfer: PlannedTransfer) -> int:
            data = self.parser.render_bytes(transfer.note)
            return await self.store.upload(transfer.path, data, overwrite=True)

        with timed_operation("sync.upload", count=len(uploads)) as op:
            outcome = await run_in_batches(uploads, put, self.upload_batch_size)
            op["failed"] = len(outcome.failed)

        server_times: Dict[str, int] = {}
        for transfer, modified in outcome.succeeded:
            # Never behind the uploaded front-matter, or the next run re-downloads
            server_times[transfer.note.id] = max(modified, transfer.note.updated_at)
            log.append(f"Uploaded {transfer.path} ({transfer.reason})")
        failed_ids = set()
        for transfer, error in outcome.failed:
            failed_ids.add(transfer.note.id)
            fail("upload", transfer.path, error)

        final = [
            note.model_copy(update={"updated_at": server_times[note.id]})
            if note.id in server_times
            else note
            for note in notes
        ]
        return final, failed_ids

    async def _delete_stale(self, paths: List[str], log: List[str], fail) -> None:
        if not paths:
            return
        with timed_operation("sync.delete_stale", count=len(paths)):
            outcome = await run_in_batches(paths, self.store.delete, self.upload_batch_size)
        for path, _ in outcome.succeeded:
            log.append(f"Removed stale copy {path}")
        for path, error in outcome.failed:
            fail("delete", path, error)

