"""Merges remote directories that are unknown locally into the folder set."""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from rhizonote_sync.models.schema import Folder, RemoteDirectory, generate_id
from rhizonote_sync.sync.paths import leaf_name, parent_path, sanitize_segment

logger = logging.getLogger(__name__)


@dataclass
class FolderReconciliation:
    """Result of folder reconciliation.

    Attributes:
        folders: Local folders followed by the synthesized ones.
        created: Folders synthesized from remote directories.
        path_map: Lower-cased remote path to folder id, for every active
            folder after reconciliation.
    """

    folders: List[Folder] = field(default_factory=list)
    created: List[Folder] = field(default_factory=list)
    path_map: Dict[str, str] = field(default_factory=dict)


def build_local_path_map(folders: Iterable[Folder]) -> Dict[str, str]:
    """Map each active folder's lower-cased path to its id.

    Walks the forest from its roots downward, so folders below a deleted
    folder, and folders stuck in a parent cycle, are not mapped.
    """
    folders = list(folders)
    active = [f for f in folders if not f.is_deleted]
    children: Dict[Optional[str], List[Folder]] = {}
    ids = {f.id for f in folders}
    for folder in active:
        # An unknown parent makes the folder a root, as the path resolver does
        parent = folder.parent_id if folder.parent_id in ids else None
        children.setdefault(parent, []).append(folder)

    path_map: Dict[str, str] = {}
    stack = [(folder, "") for folder in children.get(None, [])]
    while stack:
        folder, prefix = stack.pop()
        path = f"{prefix}/{sanitize_segment(folder.name)}"
        path_map.setdefault(path.lower(), folder.id)
        for child in children.get(folder.id, []):
            stack.append((child, path))
    return path_map


def reconcile_folders(
    local_folders: Iterable[Folder], remote_directories: Iterable[RemoteDirectory]
) -> FolderReconciliation:
    """Synthesize local folders for remote directories not known locally.

    Directories are processed shortest path first so a parent is always
    resolved before its children.
    """
    folders = list(local_folders)
    path_map = build_local_path_map(folders)
    created: List[Folder] = []

    for directory in sorted(remote_directories, key=lambda d: len(d.path)):
        key = directory.path_lower
        if key in path_map:
            continue
        parent_key = parent_path(key)
        folder = Folder(
            id=generate_id(),
            name=leaf_name(directory.path),
            parent_id=path_map.get(parent_key) if parent_key else None,
        )
        path_map[key] = folder.id
        created.append(folder)
        logger.debug(f"Adopted remote folder {directory.path} as {folder.id}")

    return FolderReconciliation(
        folders=folders + created, created=created, path_map=path_map
    )
