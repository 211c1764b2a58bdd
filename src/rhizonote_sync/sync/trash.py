"""Expiry of soft-deleted notes and folders.

Items in the trash longer than the retention window are removed from the
local set and their remote paths queued for permanent deletion. The paths
are computed against the folder snapshot from before the purge, while the
expired folders can still be resolved.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from rhizonote_sync.models.schema import Folder, Note, now_ms
from rhizonote_sync.sync.paths import folder_path, index_folders, note_path

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_MS = 30 * 24 * 60 * 60 * 1000


@dataclass
class TrashExpiry:
    notes: List[Note] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)
    deletion_paths: List[str] = field(default_factory=list)
    expired_note_ids: List[str] = field(default_factory=list)
    expired_folder_ids: List[str] = field(default_factory=list)


def _expired(deleted_at: Optional[int], now: int, retention_ms: int) -> bool:
    return deleted_at is not None and now - deleted_at > retention_ms


def expire_trash(
    notes: Iterable[Note],
    folders: Iterable[Folder],
    now: Optional[int] = None,
    retention_ms: int = DEFAULT_RETENTION_MS,
) -> TrashExpiry:
    """Purge trash entries older than ``retention_ms``.

    Returns:
        The surviving notes and folders, the remote paths to delete, and
        the ids that were purged.
    """
    now = now_ms() if now is None else now
    folder_list = list(folders)
    index = index_folders(folder_list)
    result = TrashExpiry()

    for note in notes:
        if _expired(note.deleted_at, now, retention_ms):
            result.deletion_paths.append(note_path(note.title, note.folder_id, index))
            result.expired_note_ids.append(note.id)
        else:
            result.notes.append(note)

    for folder in folder_list:
        if _expired(folder.deleted_at, now, retention_ms):
            path = folder_path(folder.id, index)
            if path:
                result.deletion_paths.append(path)
            result.expired_folder_ids.append(folder.id)
        else:
            result.folders.append(folder)

    if result.expired_note_ids or result.expired_folder_ids:
        logger.info(
            "Expired %d note(s) and %d folder(s) from the trash",
            len(result.expired_note_ids),
            len(result.expired_folder_ids),
        )
    return result
