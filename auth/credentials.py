"""
auth/credentials.py -- One logical session value over three storage locations.

Locations, in read priority order:
  memory   -- AuthState (fastest; empty after a full reload)
  durable  -- KeyValueStorage keys auth_token / auth_user (JSON)
  cookie   -- CookieJar cookie "token", plus the auth_status=logged_in marker
              the route guard looks for

get() returns the first non-empty token and back-fills it into the other two
locations, so any one location being stale or missing repairs itself on the
next read. A location that raises StorageUnavailable is skipped, never fatal.

Security:
  Tokens are never logged in full; diagnostics show a short prefix only.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from auth.models import Session
from auth.state import AuthState
from auth.storage import CookieJar, KeyValueStorage
from core.config import Settings, get_settings
from core.errors import StorageUnavailable
from core.models import UserSnapshot

logger = logging.getLogger("inbook.auth.credentials")

TOKEN_COOKIE = "token"
STATUS_COOKIE = "auth_status"
STATUS_VALUE = "logged_in"
DEV_TOKEN_COOKIE = "dev_token"

DURABLE_TOKEN_KEY = "auth_token"
DURABLE_USER_KEY = "auth_user"

PERSISTENT_LOCATIONS = ("cookie", "durable")


def _mask(token: str | None) -> str:
    if not token:
        return "<none>"
    return f"{token[:6]}..." if len(token) > 6 else "***"


class CredentialStore:
    """get / set / clear over cookie, durable storage and memory.

    Usage:
        store = CredentialStore(CookieJar(), KeyValueStorage(), AuthState())
        store.set(Session(token="abc", user=UserSnapshot(id="u1")))
        store.get().token   # "abc"
        store.clear()
    """

    def __init__(
        self,
        cookies: CookieJar,
        durable: KeyValueStorage,
        state: AuthState,
        settings: Settings | None = None,
    ) -> None:
        self.cookies = cookies
        self.durable = durable
        self.state = state
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    def get(self) -> Session | None:
        """Return the current session, or None when no location holds a token."""
        readers = (
            ("memory", self._read_memory),
            ("durable", self._read_durable),
            ("cookie", self._read_cookie),
        )
        for location, reader in readers:
            try:
                session = reader()
            except StorageUnavailable as exc:
                self._diag("get.skip", location=location, error=exc.message)
                continue
            if session is None:
                continue
            if session.user is None:
                session.user = self._durable_user()
            self._backfill(session, source=location)
            return session
        self._diag("get.miss")
        return None

    def set(self, session: Session) -> tuple[str, ...]:
        """Write the session to every location and return the ones that took it.

        Memory is always written. Raises StorageUnavailable when neither
        persistent location accepted the write; the session then lasts only
        as long as this runtime.
        """
        written = []
        if self._write_cookie(session.token):
            written.append("cookie")
        if self._write_durable(session):
            written.append("durable")
        self._write_memory(session)
        written.append("memory")
        self._diag("set", token=_mask(session.token), written=written)
        if not any(loc in written for loc in PERSISTENT_LOCATIONS):
            raise StorageUnavailable(
                "Session could not be persisted; it will be lost on reload",
                context={"written": written},
            )
        return tuple(written)

    def clear(self) -> None:
        """Remove the session from every location; a blocked one is skipped."""
        failed = []
        try:
            for name in (TOKEN_COOKIE, STATUS_COOKIE, DEV_TOKEN_COOKIE):
                self.cookies.delete(name)
        except StorageUnavailable as exc:
            failed.append("cookie")
            logger.warning("Could not clear cookies: %s", exc.message)
        try:
            self.durable.remove(DURABLE_TOKEN_KEY)
            self.durable.remove(DURABLE_USER_KEY)
        except StorageUnavailable as exc:
            failed.append("durable")
            logger.warning("Could not clear durable storage: %s", exc.message)
        self.state.reset()
        self._diag("clear", failed=failed)

    def update_user(self, user: UserSnapshot) -> None:
        """Refresh the stored snapshot after the backend returns a newer one."""
        self.state.update(user=user)
        try:
            self.durable.set(DURABLE_USER_KEY, json.dumps(user.to_dict()))
        except StorageUnavailable as exc:
            logger.warning("Could not store user snapshot: %s", exc.message)
        self._diag("update_user", user_id=user.id)

    def diagnose(self) -> dict[str, dict[str, Any]]:
        """Report availability and contents per location, for support output."""
        report: dict[str, dict[str, Any]] = {}
        try:
            report["cookie"] = {
                "available": True,
                "has_token": bool(self.cookies.get(TOKEN_COOKIE)),
                "auth_status": self.cookies.get(STATUS_COOKIE),
                "names": self.cookies.names(),
            }
        except StorageUnavailable as exc:
            report["cookie"] = {"available": False, "error": exc.message}
        try:
            report["durable"] = {
                "available": True,
                "has_token": bool(self.durable.get(DURABLE_TOKEN_KEY)),
                "has_user": bool(self.durable.get(DURABLE_USER_KEY)),
            }
        except StorageUnavailable as exc:
            report["durable"] = {"available": False, "error": exc.message}
        report["memory"] = {
            "available": True,
            "has_token": bool(self.state.token),
            "has_user": self.state.user is not None,
            "is_authenticated": self.state.is_authenticated,
        }
        return report

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def _read_memory(self) -> Session | None:
        if not self.state.token:
            return None
        return Session(token=self.state.token, user=self.state.user)

    def _read_durable(self) -> Session | None:
        token = self.durable.get(DURABLE_TOKEN_KEY)
        if not token:
            return None
        return Session(token=token, user=self._durable_user())

    def _read_cookie(self) -> Session | None:
        token = self.cookies.get(TOKEN_COOKIE)
        if not token:
            return None
        return Session(token=token)

    def _durable_user(self) -> UserSnapshot | None:
        try:
            raw = self.durable.get(DURABLE_USER_KEY)
        except StorageUnavailable:
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable %s entry", DURABLE_USER_KEY)
            return None
        return UserSnapshot.from_api(data) if isinstance(data, dict) else None

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _write_cookie(self, token: str) -> bool:
        cfg = self._settings
        attrs = {
            "max_age": cfg.cookie_max_age,
            "path": "/",
            "secure": cfg.secure_cookies,
            "same_site": cfg.cookie_same_site,
        }
        try:
            self.cookies.set(TOKEN_COOKIE, token, **attrs)
            self.cookies.set(STATUS_COOKIE, STATUS_VALUE, **attrs)
        except StorageUnavailable as exc:
            logger.warning("Cookie write skipped: %s", exc.message)
            return False
        return True

    def _write_durable(self, session: Session) -> bool:
        try:
            self.durable.set(DURABLE_TOKEN_KEY, session.token)
            if session.user is not None:
                self.durable.set(DURABLE_USER_KEY, json.dumps(session.user.to_dict()))
            else:
                self.durable.remove(DURABLE_USER_KEY)
        except StorageUnavailable as exc:
            logger.warning("Durable storage write skipped: %s", exc.message)
            return False
        return True

    def _write_memory(self, session: Session) -> None:
        self.state.update(token=session.token, user=session.user, is_authenticated=True, error=None)

    def _backfill(self, session: Session, source: str) -> None:
        repaired = []
        if source != "memory" or (self.state.user is None and session.user is not None):
            self._write_memory(session)
            repaired.append("memory")
        try:
            stale = self.durable.get(DURABLE_TOKEN_KEY) != session.token
            missing_user = session.user is not None and not self.durable.get(DURABLE_USER_KEY)
        except StorageUnavailable as exc:
            self._diag("backfill.skip", location="durable", error=exc.message)
        else:
            if (stale or missing_user) and self._write_durable(session):
                repaired.append("durable")
        try:
            stale = self.cookies.get(TOKEN_COOKIE) != session.token
        except StorageUnavailable as exc:
            self._diag("backfill.skip", location="cookie", error=exc.message)
        else:
            if stale and self._write_cookie(session.token):
                repaired.append("cookie")
        if repaired:
            self._diag("backfill", source=source, repaired=repaired)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def _diag(self, event: str, **fields: Any) -> None:
        """Emit a diagnostic record. Never raises."""
        try:
            logger.info("credentials.%s %s", event, fields)
        except Exception:  # noqa: BLE001 - diagnostics must not break the caller
            pass
