"""Pending remote operations recorded between sync runs.

Local renames and moves are replayed on the remote store as atomic moves
before the tree is scanned, so the remote copy keeps its history instead of
being re-uploaded and deleted. Permanent deletions are replayed first of
all, otherwise the scan would re-adopt the deleted files.
"""
import logging
from typing import Dict, Iterable, List, Optional

from rhizonote_sync.models.schema import RenameOperation

logger = logging.getLogger(__name__)


class RenameQueue:
    """Coalescing queue of remote moves.

    Entries are keyed by their current destination, so there is at most one
    entry per destination. Queuing ``B -> C`` while ``A -> B`` is pending
    rewrites the entry to ``A -> C``; a chain that returns to its origin
    (``A -> B``, then ``B -> A``) cancels out.

    Example:
        >>> q = RenameQueue()
        >>> q.queue("/A.md", "/B.md")
        >>> q.queue("/B.md", "/C.md")
        >>> q.operations()
        [RenameOperation(from_path='/A.md', to_path='/C.md')]
    """

    def __init__(self, operations: Optional[Iterable[RenameOperation]] = None) -> None:
        # destination (lower-cased) -> operation; insertion order is replay order
        self._by_destination: Dict[str, RenameOperation] = {}
        for op in operations or ():
            self.queue(op.from_path, op.to_path)

    def __len__(self) -> int:
        return len(self._by_destination)

    def __bool__(self) -> bool:
        return bool(self._by_destination)

    def queue(self, from_path: str, to_path: str) -> None:
        """Record a move of ``from_path`` to ``to_path``."""
        if from_path == to_path:
            return
        existing = self._by_destination.pop(from_path.lower(), None)
        origin = existing.from_path if existing else from_path
        if origin == to_path:
            logger.debug(f"Rename of {origin} reverted; dropping queued move")
            return
        self._by_destination[to_path.lower()] = RenameOperation(origin, to_path)

    def queue_folder_rename(self, from_path: str, to_path: str) -> None:
        """Record a folder move and re-point queued moves inside it.

        A note queued as ``/X.md -> /Old/X.md`` becomes
        ``/X.md -> /New/X.md`` after ``/Old`` is renamed to ``/New``, since
        the folder move already carries the file.
        """
        old_root = from_path.rstrip("/")
        new_root = to_path.rstrip("/")
        prefix = old_root.lower() + "/"

        def repoint(path: str) -> str:
            if path.lower().startswith(prefix):
                return new_root + path[len(old_root):]
            return path

        rewritten: List[RenameOperation] = []
        for key in list(self._by_destination):
            if key.startswith(prefix):
                op = self._by_destination.pop(key)
                # Replayed after the folder move, so the source moved too
                rewritten.append(
                    RenameOperation(repoint(op.from_path), repoint(op.to_path))
                )
        self.queue(from_path, to_path)
        for op in rewritten:
            self._by_destination[op.to_path.lower()] = op

    def operations(self) -> List[RenameOperation]:
        return list(self._by_destination.values())

    def discard(self, operations: Iterable[RenameOperation]) -> None:
        """Drop operations that have been replayed."""
        for op in operations:
            current = self._by_destination.get(op.to_path.lower())
            if current == op:
                del self._by_destination[op.to_path.lower()]

    def clear(self) -> None:
        self._by_destination.clear()


class DeletionQueue:
    """Ordered, de-duplicated set of remote paths awaiting deletion."""

    def __init__(self, paths: Optional[Iterable[str]] = None) -> None:
        self._paths: Dict[str, str] = {}
        self.extend(paths or ())

    def __len__(self) -> int:
        return len(self._paths)

    def __bool__(self) -> bool:
        return bool(self._paths)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and path.lower() in self._paths

    def add(self, path: str) -> None:
        if path:
            self._paths.setdefault(path.lower(), path)

    def extend(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.add(path)

    def paths(self) -> List[str]:
        return list(self._paths.values())

    def discard(self, paths: Iterable[str]) -> None:
        for path in paths:
            self._paths.pop(path.lower(), None)

    def clear(self) -> None:
        self._paths.clear()
