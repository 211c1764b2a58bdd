"""Repository for the sync state persisted between runs.

Holds the last merged note and folder snapshots, the queues of remote
deletions and renames recorded by the application, and the set of dirty
note ids. A run is built from it with ``load_request`` and written back with
``apply_result``.
"""
import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rhizonote_sync.exceptions import ErrorCode, StorageError
from rhizonote_sync.models.db_models import (
    DBDirtyNote,
    DBFolderSnapshot,
    DBNoteSnapshot,
    DBPendingDeletion,
    DBPendingRename,
)
from rhizonote_sync.models.schema import (
    Folder,
    Note,
    RenameOperation,
    SyncRequest,
    SyncResult,
)
from rhizonote_sync.sync.queues import DeletionQueue, RenameQueue
from rhizonote_sync.sync.trash import TrashExpiry

logger = logging.getLogger(__name__)


class SyncStateRepository:
    """Persists sync state through a SQLAlchemy session factory."""

    def __init__(self, session_factory):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    # Snapshots

    def get_notes(self) -> List[Note]:
        with self._reading("get_notes") as session:
            rows = session.scalars(select(DBNoteSnapshot)).all()
            return [Note.model_validate(json.loads(row.payload)) for row in rows]

    def get_folders(self) -> List[Folder]:
        with self._reading("get_folders") as session:
            rows = session.scalars(select(DBFolderSnapshot)).all()
            return [Folder.model_validate(json.loads(row.payload)) for row in rows]

    def save_note(self, note: Note, dirty: bool = True) -> None:
        """Store a locally edited note, marking it dirty by default."""
        with self._writing("save_note") as session:
            session.merge(_note_row(note))
            if dirty:
                session.merge(DBDirtyNote(note_id=note.id))

    def save_folder(self, folder: Folder) -> None:
        with self._writing("save_folder") as session:
            session.merge(_folder_row(folder))

    # Queues and dirty set

    def dirty_ids(self) -> Set[str]:
        with self._reading("dirty_ids") as session:
            return set(session.scalars(select(DBDirtyNote.note_id)).all())

    def mark_dirty(self, note_ids: Iterable[str]) -> None:
        with self._writing("mark_dirty") as session:
            for note_id in note_ids:
                session.merge(DBDirtyNote(note_id=note_id))

    def pending_deletions(self) -> List[str]:
        with self._reading("pending_deletions") as session:
            return _load_deletions(session).paths()

    def pending_renames(self) -> List[RenameOperation]:
        with self._reading("pending_renames") as session:
            return _load_renames(session).operations()

    def queue_deletion(self, path: str) -> None:
        with self._writing("queue_deletion") as session:
            queue = _load_deletions(session)
            queue.add(path)
            _replace_deletions(session, queue)

    def queue_rename(self, from_path: str, to_path: str) -> None:
        with self._writing("queue_rename") as session:
            queue = _load_renames(session)
            queue.queue(from_path, to_path)
            _replace_renames(session, queue)

    def queue_folder_rename(self, from_path: str, to_path: str) -> None:
        with self._writing("queue_folder_rename") as session:
            queue = _load_renames(session)
            queue.queue_folder_rename(from_path, to_path)
            _replace_renames(session, queue)

    # Run boundaries

    def load_request(self) -> SyncRequest:
        """Snapshot everything a sync run needs."""
        return SyncRequest(
            notes=self.get_notes(),
            folders=self.get_folders(),
            deletion_paths=self.pending_deletions(),
            renames=self.pending_renames(),
            dirty_ids=sorted(self.dirty_ids()),
        )

    def apply_result(self, result: SyncResult, request: SyncRequest) -> None:
        """Persist a completed run.

        Merged notes and folders replace the snapshots, except notes edited
        locally while the run was in flight. Queue entries and dirty ids the
        run consumed are removed; entries whose remote operation failed stay
        queued for the next run.
        """
        sent = {note.id: note.updated_at for note in request.notes}
        failed_deletes = {
            f.path.lower() for f in result.failures if f.operation == "delete"
        }
        failed_moves = {f.path.lower() for f in result.failures if f.operation == "move"}

        with self._writing("apply_result") as session:
            existing: Dict[str, int] = dict(
                session.execute(
                    select(DBNoteSnapshot.id, DBNoteSnapshot.updated_at)
                ).all()
            )
            kept: Set[str] = set()
            for note in result.notes:
                stored = existing.get(note.id)
                if stored is not None and stored > sent.get(note.id, stored):
                    kept.add(note.id)
                    continue
                session.merge(_note_row(note))
            session.execute(delete(DBFolderSnapshot))
            for folder in result.folders:
                session.add(_folder_row(folder))

            deletions = _load_deletions(session)
            deletions.discard(
                p for p in request.deletion_paths if p.lower() not in failed_deletes
            )
            _replace_deletions(session, deletions)
            renames = _load_renames(session)
            renames.discard(
                op for op in request.renames if op.from_path.lower() not in failed_moves
            )
            _replace_renames(session, renames)

            # A note edited again during the run stays dirty
            synced_ids = [i for i in request.dirty_ids if i not in kept]
            if synced_ids:
                session.execute(
                    delete(DBDirtyNote).where(DBDirtyNote.note_id.in_(synced_ids))
                )

        if kept:
            logger.info(f"Kept {len(kept)} note(s) edited locally during the sync")
        logger.debug(
            "Persisted sync result: %d note(s), %d folder(s)",
            len(result.notes),
            len(result.folders),
        )

    def apply_trash_expiry(self, expiry: TrashExpiry) -> None:
        """Drop purged items and queue their remote paths for deletion."""
        with self._writing("apply_trash_expiry") as session:
            if expiry.expired_note_ids:
                session.execute(
                    delete(DBNoteSnapshot).where(
                        DBNoteSnapshot.id.in_(expiry.expired_note_ids)
                    )
                )
                session.execute(
                    delete(DBDirtyNote).where(
                        DBDirtyNote.note_id.in_(expiry.expired_note_ids)
                    )
                )
            if expiry.expired_folder_ids:
                session.execute(
                    delete(DBFolderSnapshot).where(
                        DBFolderSnapshot.id.in_(expiry.expired_folder_ids)
                    )
                )
            queue = _load_deletions(session)
            queue.extend(expiry.deletion_paths)
            _replace_deletions(session, queue)

    # Internal helpers

    @contextmanager
    def _reading(self, operation: str) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read sync state ({operation})",
                operation=operation,
                original_error=e,
            ) from e

    @contextmanager
    def _writing(self, operation: str) -> Iterator[Session]:
        """Session that commits on success and maps database errors."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Failed to persist sync state ({operation})",
                operation=operation,
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
        finally:
            session.close()


def _load_deletions(session: Session) -> DeletionQueue:
    rows = session.scalars(
        select(DBPendingDeletion).order_by(DBPendingDeletion.position)
    ).all()
    return DeletionQueue(row.path for row in rows)


def _load_renames(session: Session) -> RenameQueue:
    rows = session.scalars(select(DBPendingRename).order_by(DBPendingRename.position)).all()
    return RenameQueue(RenameOperation(row.from_path, row.to_path) for row in rows)


def _replace_deletions(session: Session, queue: DeletionQueue) -> None:
    session.execute(delete(DBPendingDeletion))
    for path in queue.paths():
        session.add(DBPendingDeletion(path=path, path_lower=path.lower()))


def _replace_renames(session: Session, queue: RenameQueue) -> None:
    session.execute(delete(DBPendingRename))
    for op in queue.operations():
        session.add(DBPendingRename(from_path=op.from_path, to_path=op.to_path))


def _note_row(note: Note) -> DBNoteSnapshot:
    return DBNoteSnapshot(
        id=note.id,
        payload=json.dumps(note.model_dump(by_alias=True)),
        updated_at=note.updated_at,
    )


def _folder_row(folder: Folder) -> DBFolderSnapshot:
    return DBFolderSnapshot(id=folder.id, payload=json.dumps(folder.model_dump(by_alias=True)))
