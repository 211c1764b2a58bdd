"""SQLAlchemy database models for the persisted sync state."""
from typing import Optional

from sqlalchemy import Column, Integer, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from rhizonote_sync.config import config

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNoteSnapshot(Base):
    """Last merged copy of a note, stored as its camelCase JSON."""
    __tablename__ = "note_snapshots"
    id = Column(String(255), primary_key=True, index=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(Integer, nullable=False)

    def __repr__(self) -> str:
        return f"<NoteSnapshot(id='{self.id}', updated_at={self.updated_at})>"


class DBFolderSnapshot(Base):
    """Last merged copy of a folder."""
    __tablename__ = "folder_snapshots"
    id = Column(String(255), primary_key=True, index=True)
    payload = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<FolderSnapshot(id='{self.id}')>"


class DBPendingDeletion(Base):
    """Remote path queued for permanent deletion; ``position`` keeps order."""
    __tablename__ = "pending_deletions"
    position = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(Text, nullable=False)
    path_lower = Column(Text, nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<PendingDeletion(path='{self.path}')>"


class DBPendingRename(Base):
    """Queued remote move; one row per destination."""
    __tablename__ = "pending_renames"
    position = Column(Integer, primary_key=True, autoincrement=True)
    from_path = Column(Text, nullable=False)
    to_path = Column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<PendingRename(from='{self.from_path}', to='{self.to_path}')>"


class DBDirtyNote(Base):
    """Id of a note edited since the last successful sync."""
    __tablename__ = "dirty_notes"
    note_id = Column(String(255), primary_key=True)


def init_db(url: Optional[str] = None) -> Engine:
    """Create the engine and every table.

    For SQLite, WAL journaling is enabled on each connection so a crash
    mid-write cannot corrupt the state file.

    Args:
        url: Database URL; defaults to the configured database path.
    """
    url = url or config.get_db_url()
    engine = create_engine(url, pool_pre_ping=True)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
