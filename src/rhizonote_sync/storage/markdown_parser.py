"""Markdown parsing and serialization for synced notes.

Each remote note file is UTF-8 text with a flat ``key: value`` front-matter
block followed by the raw markdown body::

    ---
    id: 3f2a...
    title: Project Orbit
    created: 1710460800000
    updated: 1710464400000
    isBookmarked: true
    bookmarkOrder: 2
    ---
    # Project Orbit

The block is not YAML: values are coerced by a fixed rule (booleans, then
numbers, then strings), and ``id``/``title`` always stay strings. Splitting
is done with a python-frontmatter handler; rendering bypasses
``frontmatter.dumps`` because it strips the body.
"""
import logging
import math
import re
from typing import Any, Dict, Optional, Tuple

from frontmatter.default_handlers import BaseHandler

from rhizonote_sync.models.schema import Note, generate_id, now_ms
from rhizonote_sync.sync.paths import NOTE_SUFFIX, leaf_name

logger = logging.getLogger(__name__)

# Keys never coerced, so a note titled "2024" or "true" stays a string
STRING_KEYS = frozenset({"id", "title"})

_NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$")


def coerce_value(key: str, raw: str) -> Any:
    """Coerce a front-matter value: bool, then number, then string.

    ``id`` and ``title`` are always kept as strings and lose only the single
    space written after the separator, so surrounding whitespace survives.
    """
    if key in STRING_KEYS:
        value = raw[1:] if raw.startswith(" ") else raw
        return value.rstrip("\r")
    value = raw.strip()
    if value == "true":
        return True
    if value == "false":
        return False
    if _NUMBER_PATTERN.match(value):
        if "." in value or "e" in value.lower():
            return float(value)
        return int(value)
    return value


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    # A line break would end the key/value pair early
    return str(value).replace("\r", " ").replace("\n", " ")


class KeyValueHandler(BaseHandler):
    """Front-matter handler for the flat ``key: value`` format.

    Unlike the YAML handler, the boundary never consumes the newline that
    follows the closing ``---``, so blank lines at the top of the body
    survive a round trip.
    """

    FM_BOUNDARY = re.compile(r"^-{3,}[ \t\r]*$", re.MULTILINE)
    START_DELIMITER = END_DELIMITER = "---"

    def load(self, fm: str, **kwargs: object) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        for line in fm.splitlines():
            key, sep, raw = line.partition(":")
            key = key.strip()
            if not sep or not key:
                continue
            metadata[key] = coerce_value(key, raw)
        return metadata

    def export(self, metadata: Dict[str, object], **kwargs: object) -> str:
        return "\n".join(f"{k}: {_format_value(v)}" for k, v in metadata.items())


class MarkdownParser:
    """Parses and serializes notes as markdown with key/value front-matter."""

    def __init__(self, handler: Optional[BaseHandler] = None) -> None:
        self.handler = handler or KeyValueHandler()

    def parse_metadata(self, text: str) -> Tuple[Dict[str, Any], str]:
        """Split a note file into its metadata and body.

        Returns:
            ``(metadata, body)``. Without a front-matter block the metadata
            is empty and the body is the whole text.
        """
        if not self.handler.detect(text):
            return {}, text
        try:
            fm, content = self.handler.split(text)
        except ValueError:
            # Opening delimiter without a closing one
            return {}, text
        if content.startswith("\r\n"):
            content = content[2:]
        elif content.startswith("\n"):
            content = content[1:]
        return self.handler.load(fm), content

    def parse_note(
        self,
        text: str,
        path: str,
        folder_id: Optional[str] = None,
        modified_time: Optional[int] = None,
    ) -> Note:
        """Parse a remote note file into a Note.

        Args:
            text: Decoded file contents.
            path: Remote path, used to derive a title when none is stored.
            folder_id: Local folder that holds ``path``.
            modified_time: Server modification time, the fallback for
                missing ``created``/``updated`` values.

        Returns:
            The decoded note. A file without an ``id`` (created outside
            the app) is adopted under a fresh id.
        """
        metadata, body = self.parse_metadata(text)
        fallback_time = modified_time if modified_time is not None else now_ms()

        note_id = metadata.get("id")
        if note_id in (None, ""):
            note_id = generate_id()
            logger.debug(f"Adopting {path} as new note {note_id}")

        title = metadata.get("title")
        if title in (None, ""):
            name = leaf_name(path)
            if name.lower().endswith(NOTE_SUFFIX):
                name = name[: -len(NOTE_SUFFIX)]
            title = name

        updated_at = _as_int(metadata.get("updated"), fallback_time)
        return Note(
            id=str(note_id),
            title=str(title),
            content=body,
            folder_id=folder_id,
            is_bookmarked=metadata.get("isBookmarked") is True,
            bookmark_order=_as_int(metadata.get("bookmarkOrder"), None),
            created_at=_as_int(metadata.get("created"), updated_at),
            updated_at=updated_at,
            deleted_at=_as_int(metadata.get("deletedAt"), None),
        )

    def render_to_markdown(self, note: Note) -> str:
        """Convert a Note to file text: front-matter, then the body verbatim."""
        metadata: Dict[str, object] = {
            "id": note.id,
            "title": note.title,
            "created": note.created_at,
            "updated": note.updated_at,
            "isBookmarked": note.is_bookmarked,
        }
        if note.bookmark_order is not None:
            metadata["bookmarkOrder"] = note.bookmark_order
        if note.deleted_at is not None:
            metadata["deletedAt"] = note.deleted_at

        start = self.handler.START_DELIMITER
        end = self.handler.END_DELIMITER
        return f"{start}\n{self.handler.export(metadata)}\n{end}\n{note.content}"

    def render_bytes(self, note: Note) -> bytes:
        return self.render_to_markdown(note).encode("utf-8")


def _as_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, float) and not math.isfinite(value):
        # 1e400 coerces to inf
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default
