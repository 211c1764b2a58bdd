"""Downloads remote notes and collapses files that share one note id.

Two devices renaming the same note concurrently can leave two remote files
carrying one id. Identity must be unique on the remote side before merge
planning, so the newest file (by server modification time) wins and the
rest are queued for deletion.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from rhizonote_sync.exceptions import RemoteError, TransientRequestError
from rhizonote_sync.models.schema import Note, RemoteFile
from rhizonote_sync.remote.base import RemoteStore
from rhizonote_sync.storage.markdown_parser import MarkdownParser
from rhizonote_sync.sync.batching import run_in_batches
from rhizonote_sync.sync.paths import parent_path

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_BATCH_SIZE = 10


@dataclass
class RemoteNoteCandidate:
    """A decoded remote note together with the file it came from."""

    note: Note
    entry: RemoteFile

    @property
    def updated_at(self) -> int:
        """Effective remote timestamp used for conflict resolution.

        A file is at least as new as its server modification time. After an
        upload the local note takes that time, so both sides then compare
        against one clock.
        """
        return max(self.note.updated_at, self.entry.modified_time)

    def adopted_note(self) -> Note:
        """The remote note as it enters the local set."""
        if self.note.updated_at == self.updated_at:
            return self.note
        return self.note.model_copy(update={"updated_at": self.updated_at})


@dataclass
class DownloadOutcome:
    candidates: List[RemoteNoteCandidate] = field(default_factory=list)
    failures: List[RemoteError] = field(default_factory=list)


@dataclass
class DuplicateResolution:
    """Canonical remote note per id, plus the paths that lost."""

    canonical: Dict[str, RemoteNoteCandidate] = field(default_factory=dict)
    stale_paths: List[str] = field(default_factory=list)


async def download_remote_notes(
    store: RemoteStore,
    files: Iterable[RemoteFile],
    parser: Optional[MarkdownParser] = None,
    path_map: Optional[Mapping[str, str]] = None,
    batch_size: int = DEFAULT_DOWNLOAD_BATCH_SIZE,
) -> DownloadOutcome:
    """Download and decode every note file in bounded batches.

    Args:
        store: Remote store to read from.
        files: Note files found by the scanner.
        parser: Codec used to decode file contents.
        path_map: Lower-cased folder path to folder id; sets each
            candidate's ``folder_id`` from its parent directory.
        batch_size: Maximum concurrent downloads.

    Returns:
        Decoded candidates and the per-file failures. A failed file does
        not abort its batch.
    """
    parser = parser or MarkdownParser()
    path_map = path_map or {}

    async def fetch(entry: RemoteFile) -> RemoteNoteCandidate:
        data = await store.download(entry.path)
        folder_id = path_map.get(parent_path(entry.path_lower))
        try:
            note = parser.parse_note(
                data.decode("utf-8"),
                entry.path,
                folder_id=folder_id,
                modified_time=entry.modified_time,
            )
        except (ValueError, ArithmeticError) as e:
            # UnicodeDecodeError and pydantic's ValidationError are ValueErrors
            raise TransientRequestError(
                "Remote note could not be decoded",
                operation="download",
                path=entry.path,
                original_error=e,
            ) from e
        return RemoteNoteCandidate(note=note, entry=entry)

    outcome = await run_in_batches(list(files), fetch, batch_size)
    for entry, error in outcome.failed:
        logger.warning(f"Skipping remote note {entry.path}: {error}")
    return DownloadOutcome(
        candidates=[candidate for _, candidate in outcome.succeeded],
        failures=[error for _, error in outcome.failed],
    )


def resolve_duplicates(
    candidates: Iterable[RemoteNoteCandidate],
) -> DuplicateResolution:
    """Pick one canonical file per note id.

    In a group sharing an id, the entry with the latest modification time
    is canonical and every other path is returned as stale. Ties keep the
    scanner's order.
    """
    groups: Dict[str, List[RemoteNoteCandidate]] = defaultdict(list)
    for candidate in candidates:
        groups[candidate.note.id].append(candidate)

    resolution = DuplicateResolution()
    for note_id, group in groups.items():
        if len(group) > 1:
            group = sorted(group, key=lambda c: c.entry.modified_time, reverse=True)
            stale = [c.entry.path for c in group[1:]]
            logger.info(
                f"Note {note_id} has {len(group)} remote copies; keeping "
                f"{group[0].entry.path}, removing {', '.join(stale)}"
            )
            resolution.stale_paths.extend(stale)
        resolution.canonical[note_id] = group[0]
    return resolution
