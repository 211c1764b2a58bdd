"""Storage layer for Rhizonote Sync."""

from rhizonote_sync.storage.markdown_parser import MarkdownParser
from rhizonote_sync.storage.sync_state_repository import SyncStateRepository

__all__ = [
    "MarkdownParser",
    "SyncStateRepository",
]
