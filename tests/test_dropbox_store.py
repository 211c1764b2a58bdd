"""Tests for the Dropbox backend with a mocked SDK client."""

from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import requests
from dropbox import files as dbx_files
from dropbox.exceptions import ApiError, AuthError

from rhizonote_sync.exceptions import (
    CredentialsMissingError,
    ErrorCode,
    RemoteConflictError,
    RemoteNotFoundError,
    SyncError,
    TransientRequestError,
)
from rhizonote_sync.models.schema import Credentials, RemoteDirectory, RemoteFile
from rhizonote_sync.remote.base import RemoteStore
from rhizonote_sync.remote.dropbox_store import DropboxRemoteStore, open_dropbox_session

SERVER_TIME = datetime(2024, 3, 15, 12, 0, 0)
SERVER_MS = 1710504000000


def api_error(**flags):
    """ApiError whose union payload answers ``is_<tag>()`` from ``flags``.

    Every tag not named answers False; ``get_<tag>()`` returns a mock whose
    ``is_not_found``/``is_conflict`` (and ``reason.is_conflict``) answer
    from ``not_found``/``conflict`` in ``flags``.
    """
    not_found = flags.pop("not_found", False)
    conflict = flags.pop("conflict", False)
    detail = MagicMock()
    detail.is_not_found.return_value = not_found
    detail.is_conflict.return_value = conflict
    detail.reason.is_conflict.return_value = conflict

    error = MagicMock()
    for tag in ("path", "path_lookup", "from_lookup", "to"):
        getattr(error, f"is_{tag}").return_value = flags.get(tag, False)
        getattr(error, f"get_{tag}").return_value = detail
    return ApiError("req-1", error, None, None)


def file_meta(path, size=3):
    return dbx_files.FileMetadata(
        name=path.rsplit("/", 1)[-1],
        path_display=path,
        server_modified=SERVER_TIME,
        size=size,
    )


def folder_meta(path):
    return dbx_files.FolderMetadata(name=path.rsplit("/", 1)[-1], path_display=path)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return DropboxRemoteStore(client, root="/Rhizonote")


class TestSession:
    def test_refresh_token_preferred(self):
        with patch("rhizonote_sync.remote.dropbox_store.dropbox.Dropbox") as sdk:
            open_dropbox_session(
                Credentials(access_token="a", refresh_token="r"), app_key="key"
            )
        sdk.assert_called_once_with(oauth2_refresh_token="r", app_key="key", timeout=100.0)

    def test_access_token_without_app_key(self):
        with patch("rhizonote_sync.remote.dropbox_store.dropbox.Dropbox") as sdk:
            open_dropbox_session(Credentials(access_token="a", refresh_token="r"))
        sdk.assert_called_once_with(oauth2_access_token="a", timeout=100.0)

    def test_missing_credentials(self):
        with patch("rhizonote_sync.remote.dropbox_store.dropbox.Dropbox") as sdk:
            with pytest.raises(CredentialsMissingError) as exc_info:
                open_dropbox_session(Credentials(), app_key="key")
        sdk.assert_not_called()
        assert exc_info.value.code == ErrorCode.CREDENTIALS_MISSING

    def test_refresh_token_needs_app_key(self):
        with patch("rhizonote_sync.remote.dropbox_store.dropbox.Dropbox") as sdk:
            with pytest.raises(CredentialsMissingError) as exc_info:
                open_dropbox_session(Credentials(refresh_token="r"))
        sdk.assert_not_called()
        assert "app key" in exc_info.value.message

    def test_store_satisfies_protocol(self, store):
        assert isinstance(store, RemoteStore)


class TestListing:
    @pytest.mark.anyio
    async def test_entries_are_relative_to_root(self, store, client):
        client.files_list_folder.return_value = MagicMock(
            entries=[
                folder_meta("/Rhizonote"),
                folder_meta("/Rhizonote/Work"),
                file_meta("/Rhizonote/Work/Plan.md", size=10),
            ],
            cursor="c1",
            has_more=True,
        )
        page = await store.list_folder("")
        client.files_list_folder.assert_called_once_with("/Rhizonote", recursive=True)
        assert page.entries == [
            RemoteDirectory("/Work"),
            RemoteFile("/Work/Plan.md", SERVER_MS, 10),
        ]
        assert page.cursor == "c1"
        assert page.has_more is True

    @pytest.mark.anyio
    async def test_account_root_is_empty_string(self, client):
        client.files_list_folder.return_value = MagicMock(
            entries=[], cursor=None, has_more=False
        )
        await DropboxRemoteStore(client).list_folder("")
        client.files_list_folder.assert_called_once_with("", recursive=True)

    @pytest.mark.anyio
    async def test_continue(self, store, client):
        client.files_list_folder_continue.return_value = MagicMock(
            entries=[file_meta("/Rhizonote/a.md")], cursor="c2", has_more=False
        )
        page = await store.list_folder_continue("c1")
        client.files_list_folder_continue.assert_called_once_with("c1")
        assert page.entries == [RemoteFile("/a.md", SERVER_MS, 3)]

    @pytest.mark.anyio
    async def test_missing_root(self, store, client):
        client.files_list_folder.side_effect = api_error(path=True, not_found=True)
        with pytest.raises(RemoteNotFoundError):
            await store.list_folder("")


class TestTransfers:
    @pytest.mark.anyio
    async def test_download(self, store, client):
        client.files_download.return_value = (file_meta("/Rhizonote/a.md"), MagicMock(content=b"hi"))
        assert await store.download("/a.md") == b"hi"
        client.files_download.assert_called_once_with("/Rhizonote/a.md")

    @pytest.mark.anyio
    async def test_upload_overwrites_and_returns_server_time(self, store, client):
        client.files_upload.return_value = file_meta("/Rhizonote/a.md")
        assert await store.upload("/a.md", b"data") == SERVER_MS
        args, kwargs = client.files_upload.call_args
        assert args == (b"data", "/Rhizonote/a.md")
        assert kwargs["mode"] == dbx_files.WriteMode.overwrite
        assert kwargs["autorename"] is False

    @pytest.mark.anyio
    async def test_upload_conflict(self, store, client):
        client.files_upload.side_effect = api_error(path=True, conflict=True)
        with pytest.raises(RemoteConflictError):
            await store.upload("/a.md", b"data", overwrite=False)

    @pytest.mark.anyio
    async def test_other_api_errors_are_transient(self, store, client):
        client.files_upload.side_effect = api_error()
        with pytest.raises(TransientRequestError) as exc_info:
            await store.upload("/a.md", b"data")
        assert exc_info.value.path == "/a.md"


class TestStructuralOperations:
    @pytest.mark.anyio
    async def test_delete_missing_is_success(self, store, client):
        client.files_delete_v2.side_effect = api_error(path_lookup=True, not_found=True)
        await store.delete("/gone.md")
        client.files_delete_v2.assert_called_once_with("/Rhizonote/gone.md")

    @pytest.mark.anyio
    async def test_move(self, store, client):
        await store.move("/a.md", "/b.md")
        client.files_move_v2.assert_called_once_with(
            "/Rhizonote/a.md", "/Rhizonote/b.md", autorename=False
        )

    @pytest.mark.anyio
    async def test_move_missing_source(self, store, client):
        client.files_move_v2.side_effect = api_error(from_lookup=True, not_found=True)
        with pytest.raises(RemoteNotFoundError):
            await store.move("/a.md", "/b.md")

    @pytest.mark.anyio
    async def test_move_destination_exists(self, store, client):
        client.files_move_v2.side_effect = api_error(to=True, conflict=True)
        with pytest.raises(RemoteConflictError):
            await store.move("/a.md", "/b.md")

    @pytest.mark.anyio
    async def test_create_existing_folder_is_success(self, store, client):
        client.files_create_folder_v2.side_effect = api_error(path=True, conflict=True)
        await store.create_folder("/Work")
        client.files_create_folder_v2.assert_called_once_with(
            "/Rhizonote/Work", autorename=False
        )


class TestErrorMapping:
    @pytest.mark.anyio
    async def test_auth_error_is_total_failure(self, store, client):
        client.files_list_folder.side_effect = AuthError("req-1", MagicMock())
        with pytest.raises(SyncError) as exc_info:
            await store.list_folder("")
        assert exc_info.value.code == ErrorCode.CREDENTIALS_REJECTED

    @pytest.mark.anyio
    async def test_network_error_is_transient(self, store, client):
        client.files_download.side_effect = requests.exceptions.ConnectionError("down")
        with pytest.raises(TransientRequestError):
            await store.download("/a.md")
