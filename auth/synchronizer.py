"""
auth/synchronizer.py -- Auth lifecycle state machine.

Triggers and the transitions they drive:

  on_page_load()        IDLE/any -> VALIDATING -> AUTHENTICATED | UNAUTHENTICATED
                        A stored token is trusted optimistically; a background
                        task confirms it with GET /api/users/me. Only an
                        authorization failure clears the session -- a network
                        error keeps the optimistic one.
  on_oauth_callback()   -> VALIDATING -> AUTHENTICATED | FAILED
                        Bounded by callback_timeout: always resolves to a
                        success redirect or an error redirect.
  login() / register()  -> VALIDATING -> AUTHENTICATED | FAILED
  logout()              -> UNAUTHENTICATED
  reset()               -> RESET (terminal; wipes every credential location)

Every trigger returns an AuthOutcome instead of raising. Failures are logged,
recorded under "authError" in session storage for the login page, mirrored
into AuthState.error, and answered with a redirect to the login view.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Optional
from urllib.parse import urlencode

from auth.credentials import CredentialStore
from auth.guard import LOGIN_PATH, is_public_route, safe_callback_url
from auth.models import AuthErrorRecord, AuthOutcome, AuthPhase, Session
from auth.storage import KeyValueStorage
from core.backend import BackendClient
from core.config import Settings, get_settings
from core.errors import MalformedCallback, StorageUnavailable, Unauthenticated, UpstreamError
from core.models import UserSnapshot

logger = logging.getLogger("inbook.auth")

REDIRECT_KEY = "loginRedirectUrl"
AUTH_ERROR_KEY = "authError"
SUCCESS_MARKER = "loginSuccess=true"
OAUTH_START_PATH = "/api/auth/google"


def _with_success_marker(url: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{SUCCESS_MARKER}"


def _user_from_params(params: Mapping[str, str]) -> Optional[UserSnapshot]:
    if not params.get("userId"):
        return None
    return UserSnapshot(
        id=params["userId"],
        username=params.get("username") or "",
        email=params.get("email") or "",
        profile_picture=params.get("profilePicture") or None,
    )


class AuthSynchronizer:
    """Keeps the credential store, the reactive auth state and the backend in agreement.

    Usage:
        sync = AuthSynchronizer(credentials, backend, session_storage)
        outcome = await sync.on_page_load()
        outcome = await sync.login("a@b.c", "secret")
        navigate(outcome.redirect_to)
    """

    def __init__(
        self,
        credentials: CredentialStore,
        backend: BackendClient,
        session_storage: KeyValueStorage,
        settings: Settings | None = None,
    ) -> None:
        self.credentials = credentials
        self.backend = backend
        self.session_storage = session_storage
        self._settings = settings or get_settings()
        self.phase = AuthPhase.IDLE
        self._validation: asyncio.Task | None = None

    @property
    def state(self):
        return self.credentials.state

    def _transition(self, phase: AuthPhase) -> None:
        if phase is not self.phase:
            logger.debug("Auth phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    # ------------------------------------------------------------------
    # Page load
    # ------------------------------------------------------------------

    async def on_page_load(self) -> AuthOutcome:
        session = self.credentials.get()
        if session is None:
            self.state.update(is_authenticated=False, loading=False)
            self._transition(AuthPhase.UNAUTHENTICATED)
            return AuthOutcome(ok=False)

        self.state.update(is_authenticated=True, loading=False)
        self._transition(AuthPhase.VALIDATING)
        self._validation = asyncio.create_task(self._validate(session.token))
        return AuthOutcome(ok=True)

    async def wait_until_validated(self) -> None:
        """Await the background validation started by on_page_load, if any."""
        if self._validation is not None:
            await asyncio.gather(self._validation, return_exceptions=True)

    async def _validate(self, token: str) -> None:
        try:
            user = await self.backend.current_user(token=token)
        except Unauthenticated as exc:
            if self.state.token == token:
                logger.info("Stored session rejected by backend: %s", exc.message)
                self.credentials.clear()
                self._transition(AuthPhase.UNAUTHENTICATED)
            return
        except UpstreamError as exc:
            logger.warning("Session validation failed, keeping optimistic session: %s", exc.message)
            if self.phase is AuthPhase.VALIDATING:
                self._transition(AuthPhase.AUTHENTICATED)
            return

        # A logout, reset or new login may have happened while the fetch ran.
        if self.phase is AuthPhase.RESET or self.state.token != token:
            return
        self.credentials.update_user(user)
        self._transition(AuthPhase.AUTHENTICATED)

    # ------------------------------------------------------------------
    # OAuth callback
    # ------------------------------------------------------------------

    async def on_oauth_callback(self, params: Mapping[str, str]) -> AuthOutcome:
        """Complete an OAuth login from the callback page's query parameters."""
        try:
            return await asyncio.wait_for(self._complete_callback(params), timeout=self._settings.callback_timeout)
        except asyncio.TimeoutError:
            return self._fail("Authentication timed out. Please try again.", {"stage": "callback"}, clear=True)
        except MalformedCallback as exc:
            return self._fail(exc.message, {"stage": "callback", **exc.context}, clear=True)
        except (Unauthenticated, UpstreamError) as exc:
            return self._fail(f"Authentication failed: {exc.message}", {"stage": "callback_verify"}, clear=True)

    async def _complete_callback(self, params: Mapping[str, str]) -> AuthOutcome:
        self._transition(AuthPhase.VALIDATING)
        self.state.update(loading=True, error=None)

        token = params.get("token")
        if params.get("success") != "true" or not token:
            raise MalformedCallback(
                params.get("error") or "Authentication failed: no token received",
                context={"params": sorted(params)},
            )

        self._store(Session(token=token, user=_user_from_params(params)))
        confirmed = await self.backend.current_user(token=token)
        self.credentials.update_user(confirmed)

        self.state.update(loading=False)
        self._transition(AuthPhase.AUTHENTICATED)
        destination = self._destination(None)
        logger.info("OAuth login completed for user %s", confirmed.id)
        return AuthOutcome(ok=True, redirect_to=_with_success_marker(destination))

    # ------------------------------------------------------------------
    # Explicit login / registration
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str, callback_url: Optional[str] = None) -> AuthOutcome:
        self._transition(AuthPhase.VALIDATING)
        self.state.update(loading=True, error=None)
        try:
            token, user = await self.backend.login(email, password)
        except (Unauthenticated, UpstreamError) as exc:
            return self._fail(exc.message, {"stage": "login"})
        self._store(Session(token=token, user=user))
        return await self._settle_and_navigate(callback_url)

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        gender: str,
        date_of_birth: str,
        callback_url: Optional[str] = None,
    ) -> AuthOutcome:
        self._transition(AuthPhase.VALIDATING)
        self.state.update(loading=True, error=None)
        try:
            token, user = await self.backend.register(username, email, password, gender, date_of_birth)
        except (Unauthenticated, UpstreamError) as exc:
            return self._fail(exc.message, {"stage": "register"})
        self._store(Session(token=token, user=user))
        return await self._settle_and_navigate(callback_url)

    async def _settle_and_navigate(self, callback_url: Optional[str]) -> AuthOutcome:
        # Give the backend's Set-Cookie time to land before re-checking.
        await asyncio.sleep(self._settings.login_settle_delay)
        destination = self._destination(callback_url)
        if not self.state.is_authenticated or self.credentials.get() is None:
            logger.warning("Session not visible after settle delay; navigating to %s anyway", destination)
        self.state.update(loading=False)
        self._transition(AuthPhase.AUTHENTICATED)
        return AuthOutcome(ok=True, redirect_to=destination)

    # ------------------------------------------------------------------
    # Logout / OAuth start / reset
    # ------------------------------------------------------------------

    async def logout(self) -> AuthOutcome:
        try:
            await self.backend.logout()
        except (Unauthenticated, UpstreamError) as exc:
            logger.warning("Backend logout failed, clearing local session anyway: %s", exc.message)
        self.credentials.clear()
        self._remove_session_keys(REDIRECT_KEY)
        self._transition(AuthPhase.UNAUTHENTICATED)
        return AuthOutcome(ok=True, redirect_to=LOGIN_PATH)

    def begin_oauth(self, return_to: Optional[str] = None) -> str:
        """Remember where to land after the OAuth hop; return the relay start path."""
        target = safe_callback_url(return_to)
        if return_to and not is_public_route(target.split("?", 1)[0]):
            try:
                self.session_storage.set(REDIRECT_KEY, target)
            except StorageUnavailable as exc:
                logger.warning("Could not remember post-login destination: %s", exc.message)
        return OAUTH_START_PATH

    def reset(self, reason: Optional[str] = None) -> AuthOutcome:
        """Error-boundary recovery: wipe every credential location and force re-login."""
        if self._validation is not None and not self._validation.done():
            self._validation.cancel()
        self.credentials.clear()
        self._remove_session_keys(REDIRECT_KEY, AUTH_ERROR_KEY)
        self._transition(AuthPhase.RESET)
        logger.warning("Auth state reset%s", f": {reason}" if reason else "")
        return AuthOutcome(ok=False, redirect_to=LOGIN_PATH, error=reason)

    def pop_auth_error(self) -> Optional[AuthErrorRecord]:
        """Return and forget the last recorded auth failure."""
        try:
            raw = self.session_storage.get(AUTH_ERROR_KEY)
            self.session_storage.remove(AUTH_ERROR_KEY)
        except StorageUnavailable as exc:
            logger.warning("Could not read auth error record: %s", exc.message)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        return AuthErrorRecord(
            message=data.get("message") or "",
            timestamp=data.get("timestamp") or "",
            context=data.get("context") or {},
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _store(self, session: Session) -> None:
        try:
            self.credentials.set(session)
        except StorageUnavailable as exc:
            logger.warning("Continuing with an in-memory session only: %s", exc.message)

    def _destination(self, callback_url: Optional[str]) -> str:
        """Pick the post-login target: explicit callback, stored target, or root."""
        stored = None
        try:
            stored = self.session_storage.get(REDIRECT_KEY)
            self.session_storage.remove(REDIRECT_KEY)
        except StorageUnavailable as exc:
            logger.warning("Could not read post-login destination: %s", exc.message)
        target = safe_callback_url(callback_url or stored)
        # Never bounce back to the login or register view.
        if is_public_route(target.split("?", 1)[0]):
            return "/"
        return target

    def _fail(self, message: str, context: dict[str, Any], clear: bool = False) -> AuthOutcome:
        logger.error("Authentication failed: %s (%s)", message, context)
        if clear:
            self.credentials.clear()
        record = AuthErrorRecord(message=message, context=context)
        try:
            self.session_storage.set(AUTH_ERROR_KEY, json.dumps(record.to_dict()))
        except StorageUnavailable as exc:
            logger.warning("Could not record auth error: %s", exc.message)
        self.state.update(error=message, loading=False)
        self._transition(AuthPhase.FAILED)
        return AuthOutcome(ok=False, redirect_to=f"{LOGIN_PATH}?{urlencode({'error': message})}", error=message)

    def _remove_session_keys(self, *keys: str) -> None:
        for key in keys:
            try:
                self.session_storage.remove(key)
            except StorageUnavailable as exc:
                logger.warning("Could not remove %s: %s", key, exc.message)
