from __future__ import annotations
from sqlalchemy import create_engine, Integer, String, Text, LargeBinary, DateTime, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column
import datetime
import json
import os
from typing import Optional, List, Dict, Any, Iterable

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"


class Base(DeclarativeBase):
    pass
DB_PATH: str = os.environ.get("ENGLISH_NOTEBOOK_DB", "english_notebook.db")
engine = create_engine(f"sqlite:///{DB_PATH}")
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

# storage key flagging a cache generation whose whole shell was stored
INSTALLED_MARKER_PREFIX = "cache_installed:"


class StorageItem(Base):
    """Key/value row, the client's equivalent of browser local storage."""
    __tablename__ = "storage"
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class CacheEntry(Base):
    __tablename__ = "cache_entries"
    __table_args__ = (UniqueConstraint("cache_name", "method", "url"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cache_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    method: Mapped[str] = mapped_column(String, nullable=False, default="GET")
    url: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String)
    headers: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON object
    body: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
    stored_at: Mapped[datetime.datetime] = mapped_column(DateTime, default=lambda: datetime.datetime.now(datetime.UTC))

    def header_dict(self) -> Dict[str, str]:
        return json.loads(self.headers or "{}")


def is_db_initialized() -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    table_names = inspector.get_table_names()
    return {"storage", "cache_entries"}.issubset(set(table_names))


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


# --- key/value storage ---

def get_item(key: str) -> Optional[str]:
    session = get_session()
    try:
        row = session.get(StorageItem, key)
        return row.value if row else None
    finally:
        session.close()


def set_item(key: str, value: str) -> None:
    session = get_session()
    try:
        row = session.get(StorageItem, key)
        if row is None:
            session.add(StorageItem(key=key, value=value))
        else:
            row.value = value
        session.commit()
    finally:
        session.close()


# --- asset cache ---

def list_cache_names() -> List[str]:
    session = get_session()
    try:
        rows = session.query(CacheEntry.cache_name).distinct().all()
        return sorted(name for (name,) in rows)
    finally:
        session.close()


def match_cache_entry(cache_name: str, method: str, url: str) -> Optional[CacheEntry]:
    session = get_session()
    try:
        return (
            session.query(CacheEntry)
            .filter_by(cache_name=cache_name, method=method.upper(), url=url)
            .first()
        )
    finally:
        session.close()


def installed_marker_key(cache_name: str) -> str:
    return f"{INSTALLED_MARKER_PREFIX}{cache_name}"


def is_cache_installed(cache_name: str) -> bool:
    return get_item(installed_marker_key(cache_name)) is not None


def put_cache_entries(cache_name: str, entries: Iterable[Dict[str, Any]], mark_installed: bool = False) -> int:
    """Store entries in one transaction, replacing any entry with the same key.

    Each entry is a dict with method, url, status, reason, headers and body.
    Either every entry is written or none is. With mark_installed the cache
    is also flagged as fully installed in that same transaction.
    """
    session = get_session()
    count = 0
    try:
        for entry in entries:
            method = entry.get("method", "GET").upper()
            session.query(CacheEntry).filter_by(
                cache_name=cache_name, method=method, url=entry["url"]
            ).delete()
            session.add(CacheEntry(
                cache_name=cache_name,
                method=method,
                url=entry["url"],
                status=entry["status"],
                reason=entry.get("reason"),
                headers=json.dumps(dict(entry.get("headers") or {})),
                body=entry.get("body") or b"",
            ))
            count += 1
        if mark_installed:
            key = installed_marker_key(cache_name)
            stamp = datetime.datetime.now(datetime.UTC).isoformat()
            row = session.get(StorageItem, key)
            if row is None:
                session.add(StorageItem(key=key, value=stamp))
            else:
                row.value = stamp
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    if DEBUG_MODE:
        print(f"💾 Stored {count} entries in cache {cache_name}")
    return count


def delete_cache(cache_name: str) -> bool:
    session = get_session()
    try:
        deleted = session.query(CacheEntry).filter_by(cache_name=cache_name).delete()
        session.query(StorageItem).filter_by(key=installed_marker_key(cache_name)).delete()
        session.commit()
        return deleted > 0
    finally:
        session.close()
