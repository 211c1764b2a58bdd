"""The remote store contract consumed by the sync engine.

Paths are display paths relative to the store's root, starting with ``/``
(``""`` names the root itself). Implementations report failures with the
remote error taxonomy in :mod:`rhizonote_sync.exceptions`:

- ``RemoteNotFoundError`` when a path does not exist,
- ``RemoteConflictError`` when a destination already exists,
- ``TransientRequestError`` for any other failed request,
- ``SyncError`` when the session itself is unusable (revoked token).
"""
from typing import Protocol, runtime_checkable

from rhizonote_sync.models.schema import ListPage


@runtime_checkable
class RemoteStore(Protocol):
    """Asynchronous hierarchical file store."""

    async def list_folder(self, path: str, recursive: bool = True) -> ListPage:
        """Start a listing of ``path``; continue it with the returned cursor."""
        ...

    async def list_folder_continue(self, cursor: str) -> ListPage:
        """Fetch the next page of a listing."""
        ...

    async def download(self, path: str) -> bytes:
        ...

    async def upload(self, path: str, data: bytes, overwrite: bool = True) -> int:
        """Write ``data`` to ``path``.

        Returns:
            The server modification time in epoch milliseconds.
        """
        ...

    async def delete(self, path: str) -> None:
        """Delete a file or folder. A missing path counts as success."""
        ...

    async def move(self, from_path: str, to_path: str) -> None:
        """Atomically move a file or folder without auto-renaming.

        Raises:
            RemoteNotFoundError: ``from_path`` does not exist.
            RemoteConflictError: ``to_path`` already exists.
        """
        ...

    async def create_folder(self, path: str) -> None:
        """Create a folder. An existing folder counts as success."""
        ...
