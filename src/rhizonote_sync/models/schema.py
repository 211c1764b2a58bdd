"""Data models for Rhizonote Sync.

Notes and folders are pydantic models whose attributes are snake_case
but which also accept (and dump, with ``by_alias=True``) the camelCase keys
used by the application's local store. All timestamps are integer
milliseconds since the Unix epoch.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    """Generate a random opaque id.

    Ids are assigned once and never reused; they carry no ordering or
    timestamp meaning.
    """
    return uuid.uuid4().hex


_MODEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
    # The application stores UI-only flags (isGhost, isPublished) on notes;
    # keep them so a sync round-trip does not drop them.
    "extra": "allow",
}


class Note(BaseModel):
    """A note as seen by the sync engine."""

    id: str = Field(default_factory=generate_id, description="Stable opaque id")
    title: str = Field(default="", description="Title of the note")
    content: str = Field(default="", description="Markdown body")
    folder_id: Optional[str] = Field(
        default=None, description="Containing folder, None at the root"
    )
    is_bookmarked: bool = Field(default=False)
    bookmark_order: Optional[int] = Field(default=None)
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(
        default_factory=now_ms,
        description="Logical last-write timestamp, drives conflict resolution",
    )
    deleted_at: Optional[int] = Field(
        default=None, description="Soft-delete marker (moved to trash)"
    )

    model_config = _MODEL_CONFIG

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Reject empty ids."""
        if not v or not v.strip():
            raise ValueError("Note id cannot be empty")
        return v

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Folder(BaseModel):
    """A folder; parent_id chains form a forest."""

    id: str = Field(default_factory=generate_id)
    name: str = Field(..., description="Display name, one path segment")
    parent_id: Optional[str] = Field(default=None)
    created_at: int = Field(default_factory=now_ms)
    deleted_at: Optional[int] = Field(default=None)

    model_config = _MODEL_CONFIG

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class RemoteFile:
    """A file entry reported by the remote store.

    Attributes:
        path: Display path, starting with ``/``.
        modified_time: Server modification time in epoch milliseconds.
        size: Size in bytes.
    """

    path: str
    modified_time: int
    size: int = 0

    @property
    def path_lower(self) -> str:
        return self.path.lower()


@dataclass(frozen=True)
class RemoteDirectory:
    """A directory entry reported by the remote store."""

    path: str

    @property
    def path_lower(self) -> str:
        return self.path.lower()


RemoteEntry = Union[RemoteFile, RemoteDirectory]


@dataclass
class ListPage:
    """One page of a (possibly recursive) remote listing."""

    entries: List[RemoteEntry]
    cursor: Optional[str] = None
    has_more: bool = False


@dataclass(frozen=True)
class RenameOperation:
    """A pending remote move from one path to another."""

    from_path: str
    to_path: str

    def to_dict(self) -> Dict[str, str]:
        return {"from": self.from_path, "to": self.to_path}


@dataclass(frozen=True)
class Credentials:
    """Remote-store credentials; either token is enough to open a session."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None

    @property
    def has_any(self) -> bool:
        return bool(self.access_token or self.refresh_token)


@dataclass
class PlannedTransfer:
    """A note to upload to, or adopt from, a remote path.

    Attributes:
        note: The note to write (upload) or the remote copy (download).
        path: Target remote path (upload) or source path (download).
        reason: Short tag for the log: ``new-local``, ``moved``,
            ``local-newer``, ``remote-newer``, ``new-remote``.
        replaces: For a moved upload, the old remote path that becomes
            stale once the upload succeeds.
    """

    note: Note
    path: str
    reason: str
    replaces: Optional[str] = None


@dataclass
class SyncPlan:
    """Output of the merge planner.

    ``notes`` is the merged note set the caller persists once the plan has
    been applied.
    """

    uploads: List[PlannedTransfer] = field(default_factory=list)
    downloads: List[PlannedTransfer] = field(default_factory=list)
    stale_deletes: List[str] = field(default_factory=list)
    folder_creates: List[str] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.uploads or self.downloads or self.stale_deletes or self.folder_creates
        )

    def summary(self) -> Dict[str, int]:
        return {
            "uploads": len(self.uploads),
            "downloads": len(self.downloads),
            "stale_deletes": len(self.stale_deletes),
            "folder_creates": len(self.folder_creates),
        }


@dataclass
class SyncFailure:
    """A per-item failure recorded during a run."""

    operation: str
    path: str
    error: str


@dataclass
class SyncRequest:
    """Everything the executor needs for one run."""

    notes: List[Note] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)
    deletion_paths: List[str] = field(default_factory=list)
    renames: List[RenameOperation] = field(default_factory=list)
    dirty_ids: List[str] = field(default_factory=list)


@dataclass
class SyncResult:
    """Merged state and the ordered operation log of a completed run."""

    notes: List[Note]
    folders: List[Folder]
    log: List[str] = field(default_factory=list)
    plan: Optional[SyncPlan] = None
    failures: List[SyncFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True when no item failed during the run."""
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notes": [n.model_dump(by_alias=True) for n in self.notes],
            "folders": [f.model_dump(by_alias=True) for f in self.folders],
            "log": list(self.log),
            "failures": [
                {"operation": f.operation, "path": f.path, "error": f.error}
                for f in self.failures
            ],
        }
