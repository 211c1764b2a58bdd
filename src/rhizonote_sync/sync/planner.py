"""Merge planning: decides what to upload, download, delete and create.

``plan_merge`` is a pure function of the local notes, the canonical remote
notes and the merged folder set. It performs no I/O, so every conflict rule
is unit-testable without a remote store.

The policy is last-writer-wins on ``updated_at`` within a tolerance window,
with path divergence treated as a structural move. By default the local
path wins a structural move; both knobs are configurable through
``MergePolicy``.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set, Union

from rhizonote_sync.models.schema import (
    Folder,
    Note,
    PlannedTransfer,
    RemoteDirectory,
    SyncPlan,
)
from rhizonote_sync.sync.duplicates import RemoteNoteCandidate
from rhizonote_sync.sync.paths import folder_path, index_folders, note_path, paths_equal

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MS = 2000


@dataclass(frozen=True)
class MergePolicy:
    """Tunable conflict-resolution rules.

    Attributes:
        tolerance_ms: ``updated_at`` differences up to this size count as
            equal, absorbing clock skew and timestamp rounding.
        structural_winner: ``"local"`` re-uploads a moved note to its local
            path and deletes the old remote file; ``"remote"`` adopts the
            remote copy and its location instead.
    """

    tolerance_ms: int = DEFAULT_TOLERANCE_MS
    structural_winner: str = "local"

    def __post_init__(self) -> None:
        if self.tolerance_ms < 0:
            raise ValueError("tolerance_ms must be >= 0")
        if self.structural_winner not in ("local", "remote"):
            raise ValueError("structural_winner must be 'local' or 'remote'")


def _directory_keys(
    remote_directories: Iterable[Union[RemoteDirectory, str]],
) -> Set[str]:
    keys = set()
    for directory in remote_directories:
        path = directory.path if isinstance(directory, RemoteDirectory) else directory
        keys.add(path.lower())
    return keys


def plan_folder_creates(
    folders: Iterable[Folder],
    remote_directories: Iterable[Union[RemoteDirectory, str]],
) -> List[str]:
    """Paths of active folders missing remotely, parents before children."""
    index = index_folders(list(folders))
    existing = _directory_keys(remote_directories)
    missing: Dict[str, str] = {}
    for folder in index.values():
        if folder.is_deleted:
            continue
        path = folder_path(folder.id, index)
        if path and path.lower() not in existing:
            missing.setdefault(path.lower(), path)
    return sorted(missing.values(), key=lambda p: (len(p), p.lower()))


def plan_merge(
    local_notes: Iterable[Note],
    canonical: Mapping[str, RemoteNoteCandidate],
    folders: Iterable[Folder],
    remote_directories: Iterable[Union[RemoteDirectory, str]] = (),
    policy: MergePolicy = MergePolicy(),
    dirty_ids: Iterable[str] = (),
    unreadable_paths: Iterable[str] = (),
) -> SyncPlan:
    """Reconcile local notes with their canonical remote counterparts.

    Args:
        local_notes: Every local note, soft-deleted ones included.
        canonical: Canonical remote note per id (after duplicate resolution).
        folders: Merged folder set (local plus adopted remote folders).
        remote_directories: Directories that exist remotely.
        policy: Conflict-resolution rules.
        dirty_ids: Notes edited locally since the last successful run. A
            dirty note within the tolerance window is pushed rather than
            left alone.
        unreadable_paths: Remote files that exist but could not be
            downloaded this run. A local note mapping to one of them is
            kept but not uploaded, so the unseen remote copy survives.

    Returns:
        The plan. ``plan.notes`` is the merged note set: local copies,
        replaced by remote copies where the remote side won, plus notes
        that only exist remotely.
    """
    index = index_folders(list(folders))
    remaining: Dict[str, RemoteNoteCandidate] = dict(canonical)
    dirty = set(dirty_ids)
    unreadable = {path.lower() for path in unreadable_paths}
    plan = SyncPlan()
    claimed_paths: Dict[str, str] = {}

    def queue_upload(
        note: Note, path: str, reason: str, replaces: Optional[str] = None
    ) -> None:
        owner = claimed_paths.setdefault(path.lower(), note.id)
        if owner != note.id:
            logger.warning(
                f"Notes {owner} and {note.id} both map to {path}; "
                "the later upload overwrites the earlier one"
            )
        plan.uploads.append(
            PlannedTransfer(note=note, path=path, reason=reason, replaces=replaces)
        )

    for local in local_notes:
        expected = note_path(local.title, local.folder_id, index)
        remote = remaining.pop(local.id, None)

        if remote is None:
            if expected.lower() in unreadable:
                logger.info(f"Not uploading {expected}: remote copy was unreadable")
            elif not local.is_deleted:
                queue_upload(local, expected, "new-local")
            plan.notes.append(local)
            continue

        remote_path = remote.entry.path
        if not paths_equal(expected, remote_path):
            if policy.structural_winner == "local":
                queue_upload(local, expected, "moved", replaces=remote_path)
                plan.stale_deletes.append(remote_path)
                plan.notes.append(local)
            else:
                adopted = remote.adopted_note()
                plan.downloads.append(
                    PlannedTransfer(note=adopted, path=remote_path, reason="moved")
                )
                plan.notes.append(adopted)
            continue

        delta = local.updated_at - remote.updated_at
        if abs(delta) <= policy.tolerance_ms:
            if local.id in dirty:
                queue_upload(local, expected, "local-edit")
            plan.notes.append(local)
        elif delta > 0:
            queue_upload(local, expected, "local-newer")
            plan.notes.append(local)
        else:
            adopted = remote.adopted_note()
            plan.downloads.append(
                PlannedTransfer(note=adopted, path=remote_path, reason="remote-newer")
            )
            plan.notes.append(adopted)

    for candidate in remaining.values():
        adopted = candidate.adopted_note()
        plan.downloads.append(
            PlannedTransfer(note=adopted, path=candidate.entry.path, reason="new-remote")
        )
        plan.notes.append(adopted)

    plan.folder_creates = plan_folder_creates(index.values(), remote_directories)

    logger.debug("Merge plan: %s", plan.summary())
    return plan
