"""Paginated enumeration of the whole remote tree."""
import logging
from dataclasses import dataclass, field
from typing import List

from rhizonote_sync.exceptions import ErrorCode, RemoteError, SyncError
from rhizonote_sync.models.schema import RemoteDirectory, RemoteEntry, RemoteFile
from rhizonote_sync.remote.base import RemoteStore
from rhizonote_sync.sync.paths import NOTE_SUFFIX

logger = logging.getLogger(__name__)


@dataclass
class RemoteTree:
    """Note files and directories found on the remote store."""

    files: List[RemoteFile] = field(default_factory=list)
    directories: List[RemoteDirectory] = field(default_factory=list)


def partition_entries(entries: List[RemoteEntry]) -> RemoteTree:
    """Split listing entries into ``.md`` files and directories.

    Files of any other type are ignored.
    """
    tree = RemoteTree()
    for entry in entries:
        if isinstance(entry, RemoteDirectory):
            tree.directories.append(entry)
        elif isinstance(entry, RemoteFile) and entry.path_lower.endswith(NOTE_SUFFIX):
            tree.files.append(entry)
    return tree


async def scan_remote_tree(store: RemoteStore, root: str = "") -> RemoteTree:
    """List the remote tree recursively, following cursors until exhausted.

    Raises:
        SyncError: The listing could not be completed. Planning against a
            partial tree would re-upload or delete the wrong things, so
            this aborts the run.
    """
    entries: List[RemoteEntry] = []
    pages = 0
    try:
        page = await store.list_folder(root, recursive=True)
        entries.extend(page.entries)
        pages += 1
        while page.has_more and page.cursor:
            page = await store.list_folder_continue(page.cursor)
            entries.extend(page.entries)
            pages += 1
    except RemoteError as e:
        raise SyncError(
            f"Listing the remote tree failed after {pages} page(s)",
            operation="list_folder",
            code=ErrorCode.REMOTE_LISTING_FAILED,
            original_error=e,
        ) from e

    tree = partition_entries(entries)
    logger.info(
        "Scanned remote tree: %d note file(s), %d folder(s) in %d page(s)",
        len(tree.files),
        len(tree.directories),
        pages,
    )
    return tree
