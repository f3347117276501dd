"""
auth/storage.py -- The three credential storage locations of the client runtime.

  CookieJar        -- cookie storage. Values carry max-age, path, secure,
                      samesite and domain attributes; expired cookies are
                      dropped on read. Serializes to and from a Cookie header
                      so the frontend server and the client share one format.
  KeyValueStorage  -- string key/value storage on SQLAlchemy Core.
                      A file-backed SQLite URL gives durable storage that
                      survives restarts; "sqlite://" gives per-process session
                      storage that dies with the runtime.

Either location can be switched to blocked=True, after which every access
raises StorageUnavailable. That is how a browser with cookies or site data
disabled behaves, and the credential store must cope with it.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/, web/ or social/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from core.config import get_settings
from core.errors import StorageUnavailable

logger = logging.getLogger("inbook.storage")

SESSION_DB_URL = "sqlite://"

# ---------------------------------------------------------------------------
# Cookie storage
# ---------------------------------------------------------------------------


@dataclass
class CookieRecord:
    name: str
    value: str
    path: str = "/"
    secure: bool = False
    same_site: str = "lax"
    domain: str | None = None
    http_only: bool = False
    expires_at: float | None = None  # epoch seconds; None = session cookie


class CookieJar:
    """In-process cookie storage with expiry.

    Usage:
        jar = CookieJar()
        jar.set("token", "abc", max_age=3600, secure=True)
        jar.get("token")      # "abc"
        jar.header()          # "token=abc"
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._cookies: dict[str, CookieRecord] = {}
        self._clock = clock
        self.blocked = False

    def _check(self) -> None:
        if self.blocked:
            raise StorageUnavailable("Cookie storage is disabled", context={"location": "cookie"})

    def set(
        self,
        name: str,
        value: str,
        *,
        max_age: int | None = None,
        path: str = "/",
        secure: bool = False,
        same_site: str = "lax",
        domain: str | None = None,
        http_only: bool = False,
    ) -> None:
        """Store a cookie. max_age <= 0 deletes it, the same as a browser."""
        self._check()
        if max_age is not None and max_age <= 0:
            self._cookies.pop(name, None)
            return
        self._cookies[name] = CookieRecord(
            name=name,
            value=value,
            path=path,
            secure=secure,
            same_site=same_site,
            domain=domain,
            http_only=http_only,
            expires_at=self._clock() + max_age if max_age is not None else None,
        )

    def get(self, name: str) -> str | None:
        self._check()
        record = self._cookies.get(name)
        if record is None:
            return None
        if record.expires_at is not None and record.expires_at <= self._clock():
            del self._cookies[name]
            return None
        return record.value

    def record(self, name: str) -> CookieRecord | None:
        """Return the full cookie record, attributes included."""
        if self.get(name) is None:
            return None
        return self._cookies[name]

    def delete(self, name: str) -> None:
        self._check()
        self._cookies.pop(name, None)

    def names(self) -> list[str]:
        self._check()
        return [name for name in list(self._cookies) if self.get(name) is not None]

    def header(self) -> str:
        """Render live cookies as a Cookie request header value."""
        return "; ".join(f"{name}={self._cookies[name].value}" for name in self.names())

    def load_header(self, header: str) -> None:
        """Import cookies from a Cookie request header (as session cookies)."""
        for part in (header or "").split(";"):
            name, sep, value = part.strip().partition("=")
            if sep and name:
                self.set(name, value)


# ---------------------------------------------------------------------------
# Key/value storage
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "storage_entries",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so a second process can read during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyValueStorage:
    """Repository for string key/value pairs.

    Usage:
        durable = KeyValueStorage()                  # file-backed, settings URL
        session = KeyValueStorage.session_storage()  # in-memory
        durable.set("auth_token", "abc")
        durable.get("auth_token")
        durable.close()
    """

    def __init__(self, db_url: str | None = None, name: str = "durable") -> None:
        db_url = db_url or get_settings().durable_storage_url
        self.name = name
        self.blocked = False
        self.engine: Engine = _make_engine(db_url)
        _metadata.create_all(self.engine)

    @classmethod
    def session_storage(cls) -> "KeyValueStorage":
        return cls(SESSION_DB_URL, name="session")

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        if self.blocked:
            raise StorageUnavailable(f"{self.name} storage is disabled", context={"location": self.name})
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"{self.name} storage failed: {exc}", context={"location": self.name}) from exc

    def get(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute(_entries.select().where(_entries.c.key == key)).fetchone()
        return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(_entries.delete().where(_entries.c.key == key))
            conn.execute(_entries.insert().values(key=key, value=value, updated_at=_now_iso()))
            conn.commit()

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute(_entries.delete().where(_entries.c.key == key))
            conn.commit()

    def keys(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(_entries.select().order_by(_entries.c.key)).fetchall()
        return [r.key for r in rows]

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute(_entries.delete())
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


def _make_engine(db_url: str) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url)
    if db_url in (SESSION_DB_URL, "sqlite:///:memory:"):
        # One shared connection; a plain in-memory DB is per-connection.
        return create_engine(db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    engine = create_engine(db_url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _set_wal_mode)
    return engine
