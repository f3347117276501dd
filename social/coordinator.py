"""
social/coordinator.py -- Optimistic mutation coordinator.

apply() runs one user action in four steps:

  1. Session check. No session -> fail fast, local state untouched.
  2. Local mutation, synchronously, through a Changeset. The view sees the
     optimistic value before the request is sent.
  3. The backend request (the only suspension point).
  4a. Success -> reconcile() writes the server's authoritative values over
      the optimistic guess; optionally schedule a delayed re-fetch of the
      parent post to converge with concurrent edits by other users.
  4b. Failure -> Changeset.rollback() and a user-facing error notification.
      A backend rejection still schedules the re-fetch, so a stale local
      copy is corrected instead of rolled back to the same stale value.

Unauthenticated and UpstreamError never escape apply(); they come back as a
MutationResult. Mutations on the same entity are not serialized: the last
response to arrive wins for shared counters, and the delayed re-fetch is what
pulls the display back to server truth.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from auth.credentials import CredentialStore
from core.backend import BackendClient
from core.config import Settings, get_settings
from core.errors import Unauthenticated, UpstreamError
from core.models import Post
from core.notify import Notifier
from social.store import Changeset, SocialStore

logger = logging.getLogger("inbook.social")

SESSION_EXPIRED_MESSAGE = "Please log in to continue"


@dataclass
class MutationResult:
    ok: bool
    data: Any = None
    error: Optional[str] = None
    unauthenticated: bool = False


class ViewScope:
    """Mounted flag for the view that started a mutation.

    Unmounting never cancels a request in flight; it only stops the
    completion callback from reaching a view that is gone. Store writes
    still happen.
    """

    def __init__(self) -> None:
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False

    def deliver(self, callback: Optional[Callable[[MutationResult], None]], result: MutationResult) -> None:
        if callback is not None and self.mounted:
            callback(result)


class OptimisticCoordinator:
    def __init__(
        self,
        store: SocialStore,
        credentials: CredentialStore,
        backend: BackendClient,
        notifier: Notifier,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.backend = backend
        self.notifier = notifier
        self._settings = settings or get_settings()
        self._refetches: set[asyncio.Task] = set()

    def has_session(self) -> bool:
        return self.credentials.get() is not None

    @property
    def viewer_id(self) -> Optional[str]:
        user = self.credentials.state.user
        return user.id if user is not None else None

    async def apply(
        self,
        entity_id: str,
        local_mutator: Callable[[Changeset], None],
        request: Callable[[], Awaitable[Any]],
        reconcile: Optional[Callable[[Any], None]] = None,
        *,
        failure_message: str = "Something went wrong. Please try again.",
        success_message: Optional[str] = None,
        refetch_post: Optional[str] = None,
        scope: Optional[ViewScope] = None,
        on_settled: Optional[Callable[[MutationResult], None]] = None,
    ) -> MutationResult:
        if not self.has_session():
            self.notifier.error(SESSION_EXPIRED_MESSAGE)
            result = MutationResult(ok=False, error="Authentication required", unauthenticated=True)
            return self._settle(result, scope, on_settled)

        changes = Changeset(self.store)
        local_mutator(changes)

        try:
            data = await request()
        except Unauthenticated as exc:
            changes.rollback()
            logger.warning("Mutation on %s rejected: %s", entity_id, exc.message)
            self.notifier.error(SESSION_EXPIRED_MESSAGE)
            result = MutationResult(ok=False, error=exc.message, unauthenticated=True)
            return self._settle(result, scope, on_settled)
        except UpstreamError as exc:
            changes.rollback()
            logger.warning("Mutation on %s failed (HTTP %s): %s", entity_id, exc.status_code, exc.message)
            self.store.set_error(exc.message)
            self.notifier.error(failure_message)
            if refetch_post:
                self.schedule_refetch(refetch_post)
            return self._settle(MutationResult(ok=False, error=exc.message), scope, on_settled)

        if reconcile is not None:
            reconcile(data)
        if success_message:
            self.notifier.success(success_message)
        if refetch_post:
            self.schedule_refetch(refetch_post)
        return self._settle(MutationResult(ok=True, data=data), scope, on_settled)

    def _settle(
        self,
        result: MutationResult,
        scope: Optional[ViewScope],
        on_settled: Optional[Callable[[MutationResult], None]],
    ) -> MutationResult:
        if scope is not None:
            scope.deliver(on_settled, result)
        elif on_settled is not None:
            on_settled(result)
        return result

    # ------------------------------------------------------------------
    # Convergence re-fetch
    # ------------------------------------------------------------------

    def schedule_refetch(self, post_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._refetch(post_id))
        self._refetches.add(task)
        task.add_done_callback(self._refetches.discard)
        return task

    async def _refetch(self, post_id: str) -> None:
        await asyncio.sleep(self._settings.refetch_delay)
        try:
            data = await self.backend.get_post(post_id)
        except (Unauthenticated, UpstreamError) as exc:
            logger.info("Re-fetch of post %s failed: %s", post_id, exc.message)
            return
        if not isinstance(data, dict) or not data:
            return
        self.store.refresh_post(Post.from_api(data, self.viewer_id))

    async def drain(self) -> None:
        """Wait for every scheduled re-fetch to finish."""
        while self._refetches:
            await asyncio.gather(*list(self._refetches), return_exceptions=True)
