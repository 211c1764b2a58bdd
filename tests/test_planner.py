"""Tests for merge planning.

plan_merge is pure, so every conflict rule is checked without a store.
"""

import pytest

from rhizonote_sync.models.schema import Folder, Note, RemoteDirectory, RemoteFile
from rhizonote_sync.sync.duplicates import RemoteNoteCandidate
from rhizonote_sync.sync.planner import MergePolicy, plan_folder_creates, plan_merge

T0 = 1_700_000_000_000


def note(id="n1", title="Note", updated_at=T0, **kw):
    return Note(id=id, title=title, content="body", created_at=T0, updated_at=updated_at, **kw)


def remote(n: Note, path: str, modified_time=None):
    return RemoteNoteCandidate(
        note=n, entry=RemoteFile(path, n.updated_at if modified_time is None else modified_time)
    )


class TestNewNotes:
    def test_new_local_note_is_uploaded(self):
        local = note()
        plan = plan_merge([local], {}, [])
        assert [(u.path, u.reason) for u in plan.uploads] == [("/Note.md", "new-local")]
        assert plan.notes == [local]
        assert plan.downloads == []

    def test_deleted_local_note_without_remote_is_not_uploaded(self):
        local = note(deleted_at=T0)
        plan = plan_merge([local], {}, [])
        assert plan.uploads == []
        assert plan.notes == [local]

    def test_remote_only_note_is_downloaded(self):
        incoming = note(id="r1", title="Remote")
        plan = plan_merge([], {"r1": remote(incoming, "/Remote.md")}, [])
        assert [(d.path, d.reason) for d in plan.downloads] == [("/Remote.md", "new-remote")]
        assert [n.id for n in plan.notes] == ["r1"]

    def test_unreadable_remote_path_blocks_upload(self):
        local = note()
        plan = plan_merge([local], {}, [], unreadable_paths=["/note.md"])
        assert plan.uploads == []
        assert plan.notes == [local]


class TestTimestampResolution:
    def test_local_newer_uploads(self):
        local = note(updated_at=T0 + 10_000)
        plan = plan_merge([local], {"n1": remote(note(), "/Note.md")}, [])
        assert [(u.path, u.reason) for u in plan.uploads] == [("/Note.md", "local-newer")]
        assert plan.notes == [local]

    def test_remote_newer_downloads(self):
        """Scenario B: the remote edit wins and replaces the local copy."""
        local = note(updated_at=T0)
        newer = note(updated_at=T0 + 10_000).model_copy(update={"content": "remote"})
        plan = plan_merge([local], {"n1": remote(newer, "/Note.md")}, [])
        assert plan.uploads == []
        assert [d.reason for d in plan.downloads] == ["remote-newer"]
        assert plan.notes[0].content == "remote"

    @pytest.mark.parametrize("delta", [-2000, -1, 0, 1, 2000])
    def test_within_tolerance_does_nothing(self, delta):
        local = note(updated_at=T0 + delta)
        plan = plan_merge([local], {"n1": remote(note(), "/Note.md")}, [])
        assert plan.is_empty
        assert plan.notes == [local]

    def test_just_outside_tolerance(self):
        local = note(updated_at=T0 + 2001)
        plan = plan_merge([local], {"n1": remote(note(), "/Note.md")}, [])
        assert [u.reason for u in plan.uploads] == ["local-newer"]

    def test_custom_tolerance(self):
        local = note(updated_at=T0 + 5000)
        policy = MergePolicy(tolerance_ms=10_000)
        plan = plan_merge([local], {"n1": remote(note(), "/Note.md")}, [], policy=policy)
        assert plan.is_empty

    def test_dirty_note_within_tolerance_is_pushed(self):
        local = note(updated_at=T0 + 500)
        plan = plan_merge(
            [local], {"n1": remote(note(), "/Note.md")}, [], dirty_ids=["n1"]
        )
        assert [u.reason for u in plan.uploads] == ["local-edit"]

    def test_server_time_counts_as_remote_timestamp(self):
        """A file rewritten by another client without a new ``updated`` value."""
        local = note(updated_at=T0)
        stale_meta = remote(note(updated_at=T0), "/Note.md", modified_time=T0 + 60_000)
        plan = plan_merge([local], {"n1": stale_meta}, [])
        assert [d.reason for d in plan.downloads] == ["remote-newer"]
        assert plan.notes[0].updated_at == T0 + 60_000

    def test_path_match_is_case_insensitive(self):
        local = note(title="Note")
        plan = plan_merge([local], {"n1": remote(note(), "/NOTE.md")}, [])
        assert plan.is_empty


class TestStructuralMoves:
    def test_local_move_wins_by_default(self):
        """Scenario A: renamed locally, the old remote file becomes stale."""
        local = note(title="Renamed")
        plan = plan_merge([local], {"n1": remote(note(title="Note"), "/Note.md")}, [])
        assert [(u.path, u.reason, u.replaces) for u in plan.uploads] == [
            ("/Renamed.md", "moved", "/Note.md")
        ]
        assert plan.stale_deletes == ["/Note.md"]
        assert plan.notes == [local]

    def test_folder_move_uses_folder_path(self):
        folders = [Folder(id="f1", name="Work")]
        local = note(folder_id="f1")
        plan = plan_merge([local], {"n1": remote(note(), "/Note.md")}, folders)
        assert plan.uploads[0].path == "/Work/Note.md"
        assert plan.stale_deletes == ["/Note.md"]

    def test_remote_winner_adopts_remote_location(self):
        folders = [Folder(id="f1", name="Work")]
        local = note()
        moved = note(folder_id="f1")
        policy = MergePolicy(structural_winner="remote")
        plan = plan_merge(
            [local], {"n1": remote(moved, "/Work/Note.md")}, folders, policy=policy
        )
        assert plan.uploads == []
        assert plan.stale_deletes == []
        assert [(d.path, d.reason) for d in plan.downloads] == [("/Work/Note.md", "moved")]
        assert plan.notes[0].folder_id == "f1"


class TestPolicyValidation:
    def test_negative_tolerance(self):
        with pytest.raises(ValueError):
            MergePolicy(tolerance_ms=-1)

    def test_unknown_winner(self):
        with pytest.raises(ValueError):
            MergePolicy(structural_winner="newest")


class TestFolderCreates:
    def test_missing_folders_parents_first(self):
        folders = [
            Folder(id="c", name="Child", parent_id="p"),
            Folder(id="p", name="Parent"),
            Folder(id="x", name="Existing"),
        ]
        creates = plan_folder_creates(folders, [RemoteDirectory("/existing")])
        assert creates == ["/Parent", "/Parent/Child"]

    def test_deleted_folders_are_skipped(self):
        folders = [Folder(id="d", name="Trashed", deleted_at=T0)]
        assert plan_folder_creates(folders, []) == []

    def test_plan_includes_folder_creates(self):
        folders = [Folder(id="f1", name="Work")]
        plan = plan_merge([], {}, folders, remote_directories=["/Other"])
        assert plan.folder_creates == ["/Work"]


class TestDeterminism:
    def test_same_inputs_same_plan(self):
        folders = [Folder(id="f1", name="Work")]
        locals_ = [note(id="a", title="A"), note(id="b", title="B", folder_id="f1")]
        canonical = {"c": remote(note(id="c", title="C"), "/C.md")}
        first = plan_merge(locals_, canonical, folders)
        second = plan_merge(locals_, canonical, folders)
        assert first.summary() == second.summary()
        assert [u.path for u in first.uploads] == [u.path for u in second.uploads]
        assert [n.id for n in first.notes] == [n.id for n in second.notes]
