"""
auth/state.py -- In-memory reactive auth store.

The single source the view layer renders from. Writes go through update(),
which notifies every subscriber with the set of changed field names.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from core.models import UserSnapshot

logger = logging.getLogger("inbook.auth.state")

Listener = Callable[["AuthState", set[str]], None]

_FIELDS = ("user", "token", "is_authenticated", "loading", "error")


class AuthState:
    def __init__(self) -> None:
        self.user: UserSnapshot | None = None
        self.token: str | None = None
        self.is_authenticated: bool = False
        self.loading: bool = False
        self.error: str | None = None
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> None:
        unknown = set(changes) - set(_FIELDS)
        if unknown:
            raise AttributeError(f"Unknown auth state fields: {sorted(unknown)!r}")
        changed = {name for name, value in changes.items() if getattr(self, name) != value}
        for name, value in changes.items():
            setattr(self, name, value)
        if changed:
            self._emit(changed)

    def reset(self) -> None:
        self.update(user=None, token=None, is_authenticated=False, loading=False, error=None)

    def _emit(self, changed: set[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, changed)
            except Exception:
                logger.exception("Auth state listener failed")
