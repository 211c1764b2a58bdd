"""Derives remote paths from a note's title and folder ancestry.

A note's remote path is a projection of mutable attributes, never its
identity. For a fixed folder snapshot the functions here are pure.
"""
from typing import Dict, Iterable, Optional, Set, Union

from rhizonote_sync.models.schema import Folder

_UNSAFE_CHARS = '/\\?%*:|"<>'
_SANITIZE_TABLE = str.maketrans({c: "-" for c in _UNSAFE_CHARS})

NOTE_SUFFIX = ".md"
UNTITLED = "Untitled"

FolderIndex = Dict[str, Folder]


def sanitize_segment(name: str) -> str:
    """Replace characters the remote store rejects in a path segment.

    Example:
        >>> sanitize_segment('a/b: "c"')
        'a-b- -c-'
    """
    return name.translate(_SANITIZE_TABLE)


def index_folders(folders: Union[FolderIndex, Iterable[Folder]]) -> FolderIndex:
    """Return folders keyed by id (accepts an existing index unchanged)."""
    if isinstance(folders, dict):
        return folders
    return {f.id: f for f in folders}


def folder_path(
    folder_id: Optional[str], folders: Union[FolderIndex, Iterable[Folder]]
) -> str:
    """Build the remote path of a folder, e.g. ``/Projects/Archive``.

    The root (``None``) maps to the empty string. A parent id that does not
    resolve ends the walk, so an orphaned folder is placed at the root.
    A parent cycle also ends the walk at the first repeated folder.
    """
    index = index_folders(folders)
    segments = []
    seen: Set[str] = set()
    current = folder_id
    while current is not None and current not in seen:
        folder = index.get(current)
        if folder is None:
            break
        seen.add(current)
        segments.append(sanitize_segment(folder.name))
        current = folder.parent_id
    if not segments:
        return ""
    return "/" + "/".join(reversed(segments))


def note_path(
    title: Optional[str],
    folder_id: Optional[str],
    folders: Union[FolderIndex, Iterable[Folder]],
) -> str:
    """Build the remote path of a note, e.g. ``/Projects/Foo.md``."""
    name = sanitize_segment(title or UNTITLED)
    return f"{folder_path(folder_id, folders)}/{name}{NOTE_SUFFIX}"


def paths_equal(a: str, b: str) -> bool:
    """Remote paths compare case-insensitively."""
    return a.lower() == b.lower()


def parent_path(path: str) -> str:
    """Return the parent of a remote path (``""`` for top-level entries)."""
    head, _, _ = path.rstrip("/").rpartition("/")
    return head


def leaf_name(path: str) -> str:
    """Return the last segment of a remote path."""
    return path.rstrip("/").rpartition("/")[2]
