"""Dropbox backend for the remote store protocol.

The Dropbox SDK is synchronous, so every call runs in a worker thread via
``anyio.to_thread``; the engine's batches still overlap requests. SDK
errors are translated into the remote error taxonomy so the engine never
sees Dropbox types.
"""
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import anyio
import dropbox
import requests
from dropbox import files as dbx_files
from dropbox.exceptions import ApiError, AuthError, HttpError

from rhizonote_sync.exceptions import (
    CredentialsMissingError,
    ErrorCode,
    RemoteConflictError,
    RemoteNotFoundError,
    SyncError,
    TransientRequestError,
)
from rhizonote_sync.models.schema import (
    Credentials,
    ListPage,
    RemoteDirectory,
    RemoteEntry,
    RemoteFile,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def open_dropbox_session(
    credentials: Credentials,
    app_key: Optional[str] = None,
    timeout: float = 100.0,
) -> dropbox.Dropbox:
    """Build an authenticated Dropbox client without making any request.

    A refresh token (which needs the app key, PKCE flow) is preferred since
    the SDK renews short-lived access tokens on its own.

    Raises:
        CredentialsMissingError: Neither a usable refresh token nor an
            access token is available.
    """
    if not credentials.has_any:
        raise CredentialsMissingError(
            "Dropbox is not connected: no access token or refresh token"
        )
    if credentials.refresh_token and app_key:
        return dropbox.Dropbox(
            oauth2_refresh_token=credentials.refresh_token,
            app_key=app_key,
            timeout=timeout,
        )
    if credentials.access_token:
        return dropbox.Dropbox(
            oauth2_access_token=credentials.access_token, timeout=timeout
        )
    raise CredentialsMissingError(
        "Dropbox refresh token needs an app key and no access token is set"
    )


def _to_ms(value: datetime) -> int:
    # The SDK reports naive UTC datetimes
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _lookup_not_found(lookup: Any) -> bool:
    return lookup is not None and lookup.is_not_found()


class DropboxRemoteStore:
    """Remote store backed by a Dropbox account or app folder.

    Args:
        client: An authenticated ``dropbox.Dropbox`` instance.
        root: Folder that holds the vault, e.g. ``/Rhizonote``. Engine
            paths are relative to it; ``""`` is the account or app root.
    """

    def __init__(self, client: dropbox.Dropbox, root: str = "") -> None:
        self._client = client
        self._root = "/" + root.strip("/") if root.strip("/") else ""

    @classmethod
    def connect(
        cls,
        credentials: Credentials,
        app_key: Optional[str] = None,
        root: str = "",
    ) -> "DropboxRemoteStore":
        return cls(open_dropbox_session(credentials, app_key), root=root)

    # ------------------------------------------------------------------
    # Path mapping
    # ------------------------------------------------------------------

    def _full(self, path: str) -> str:
        full = self._root + path
        # The API names the root "" rather than "/"
        return "" if full == "/" else full

    def _relative(self, path_display: str) -> str:
        if self._root and path_display.lower().startswith(self._root.lower()):
            return path_display[len(self._root):]
        return path_display

    def _convert_entry(self, metadata: Any) -> Optional[RemoteEntry]:
        rel = self._relative(metadata.path_display)
        if not rel:
            # A non-root recursive listing includes the folder itself
            return None
        if isinstance(metadata, dbx_files.FileMetadata):
            return RemoteFile(
                path=rel,
                modified_time=_to_ms(metadata.server_modified),
                size=metadata.size,
            )
        if isinstance(metadata, dbx_files.FolderMetadata):
            return RemoteDirectory(path=rel)
        return None

    def _convert_page(self, result: Any) -> ListPage:
        entries = []
        for metadata in result.entries:
            entry = self._convert_entry(metadata)
            if entry is not None:
                entries.append(entry)
        return ListPage(entries=entries, cursor=result.cursor, has_more=result.has_more)

    # ------------------------------------------------------------------
    # Call wrapper
    # ------------------------------------------------------------------

    async def _call(
        self,
        operation: str,
        path: str,
        func: Callable[..., T],
        *args: Any,
        on_api_error: Optional[Callable[[ApiError], None]] = None,
        **kwargs: Any,
    ) -> T:
        """Run a blocking SDK call in a thread and translate its errors."""
        try:
            return await anyio.to_thread.run_sync(
                functools.partial(func, *args, **kwargs)
            )
        except AuthError as e:
            raise SyncError(
                "Dropbox rejected the session credentials",
                operation=operation,
                code=ErrorCode.CREDENTIALS_REJECTED,
                original_error=e,
            ) from e
        except ApiError as e:
            if on_api_error is not None:
                on_api_error(e)
            raise TransientRequestError(
                f"Dropbox {operation} failed",
                operation=operation,
                path=path,
                original_error=e,
            ) from e
        except (HttpError, requests.exceptions.RequestException) as e:
            raise TransientRequestError(
                f"Dropbox {operation} request failed",
                operation=operation,
                path=path,
                original_error=e,
            ) from e

    # ------------------------------------------------------------------
    # RemoteStore protocol
    # ------------------------------------------------------------------

    async def list_folder(self, path: str, recursive: bool = True) -> ListPage:
        def not_found(e: ApiError) -> None:
            if e.error.is_path() and _lookup_not_found(e.error.get_path()):
                raise RemoteNotFoundError(path, operation="list_folder") from e

        result = await self._call(
            "list_folder",
            path,
            self._client.files_list_folder,
            self._full(path),
            recursive=recursive,
            on_api_error=not_found,
        )
        return self._convert_page(result)

    async def list_folder_continue(self, cursor: str) -> ListPage:
        result = await self._call(
            "list_folder_continue",
            "",
            self._client.files_list_folder_continue,
            cursor,
        )
        return self._convert_page(result)

    async def download(self, path: str) -> bytes:
        def not_found(e: ApiError) -> None:
            if e.error.is_path() and _lookup_not_found(e.error.get_path()):
                raise RemoteNotFoundError(path, operation="download") from e

        _, response = await self._call(
            "download",
            path,
            self._client.files_download,
            self._full(path),
            on_api_error=not_found,
        )
        return response.content

    async def upload(self, path: str, data: bytes, overwrite: bool = True) -> int:
        mode = dbx_files.WriteMode.overwrite if overwrite else dbx_files.WriteMode.add

        def conflict(e: ApiError) -> None:
            if (
                e.error.is_path()
                and e.error.get_path().reason.is_conflict()
            ):
                raise RemoteConflictError(path, operation="upload") from e

        metadata = await self._call(
            "upload",
            path,
            self._client.files_upload,
            data,
            self._full(path),
            mode=mode,
            autorename=False,
            mute=True,
            on_api_error=conflict,
        )
        return _to_ms(metadata.server_modified)

    async def delete(self, path: str) -> None:
        def not_found(e: ApiError) -> None:
            if e.error.is_path_lookup() and _lookup_not_found(
                e.error.get_path_lookup()
            ):
                raise RemoteNotFoundError(path, operation="delete") from e

        try:
            await self._call(
                "delete",
                path,
                self._client.files_delete_v2,
                self._full(path),
                on_api_error=not_found,
            )
        except RemoteNotFoundError:
            logger.debug("Delete of missing path %s treated as success", path)

    async def move(self, from_path: str, to_path: str) -> None:
        def relocation(e: ApiError) -> None:
            if e.error.is_from_lookup() and _lookup_not_found(
                e.error.get_from_lookup()
            ):
                raise RemoteNotFoundError(from_path, operation="move") from e
            if e.error.is_to() and e.error.get_to().is_conflict():
                raise RemoteConflictError(to_path, operation="move") from e

        await self._call(
            "move",
            from_path,
            self._client.files_move_v2,
            self._full(from_path),
            self._full(to_path),
            autorename=False,
            on_api_error=relocation,
        )

    async def create_folder(self, path: str) -> None:
        def conflict(e: ApiError) -> None:
            if e.error.is_path() and e.error.get_path().is_conflict():
                raise RemoteConflictError(path, operation="create_folder") from e

        try:
            await self._call(
                "create_folder",
                path,
                self._client.files_create_folder_v2,
                self._full(path),
                autorename=False,
                on_api_error=conflict,
            )
        except RemoteConflictError:
            logger.debug("Folder %s already exists", path)
