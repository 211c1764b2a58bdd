"""
Rhizonote Sync - the synchronization engine of the Rhizonote note-taking app.
This package reconciles a local note/folder store, where identity is a stable
opaque id, against a remote hierarchical file store, where identity is only a
mutable path.

The engine performs asynchronous remote I/O in bounded batches.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("rhizonote-sync")
except PackageNotFoundError:
    __version__ = "0.3.0"
