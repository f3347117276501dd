"""
context.py -- Composition root of the client runtime.

ClientContext is the one explicitly owned application-state object: it
builds the storage locations, the reactive stores, the backend client and
every service on top of them, and hands them out by attribute. Nothing in
auth/ or social/ reaches for a global; whoever owns the context passes it
down.

Usage:
    ctx = ClientContext.create()
    outcome = await ctx.synchronizer.on_page_load()
    await ctx.loader.load_posts()
    await ctx.actions.toggle_post_like("p1")
    await ctx.aclose()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from auth.credentials import CredentialStore
from auth.state import AuthState
from auth.storage import CookieJar, KeyValueStorage
from auth.synchronizer import AuthSynchronizer
from core.backend import BackendClient
from core.config import Settings, get_settings
from core.notify import Notifier
from social.coordinator import OptimisticCoordinator
from social.interactions import SocialActions
from social.loaders import SocialLoader
from social.store import SocialStore


@dataclass
class ClientContext:
    settings: Settings
    cookies: CookieJar
    durable: KeyValueStorage
    session_storage: KeyValueStorage
    auth_state: AuthState
    credentials: CredentialStore
    backend: BackendClient
    notifier: Notifier
    synchronizer: AuthSynchronizer
    social: SocialStore
    coordinator: OptimisticCoordinator
    actions: SocialActions
    loader: SocialLoader

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        *,
        cookies: Optional[CookieJar] = None,
        durable: Optional[KeyValueStorage] = None,
        session_storage: Optional[KeyValueStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ClientContext":
        """Wire a complete client runtime.

        Args:
            cookies, durable, session_storage: Pre-built storage locations.
                Defaults are an empty cookie jar, the durable database from
                settings and a fresh in-memory session store.
            transport: httpx transport for the backend client. Tests pass an
                httpx.MockTransport here.
        """
        settings = settings or get_settings()
        cookies = cookies if cookies is not None else CookieJar()
        durable = durable if durable is not None else KeyValueStorage(settings.durable_storage_url)
        session_storage = session_storage if session_storage is not None else KeyValueStorage.session_storage()

        auth_state = AuthState()
        credentials = CredentialStore(cookies, durable, auth_state, settings=settings)
        backend = BackendClient(
            base_url=settings.backend_url,
            token_provider=lambda: auth_state.token,
            timeout=settings.api_timeout,
            transport=transport,
        )
        notifier = Notifier()
        synchronizer = AuthSynchronizer(credentials, backend, session_storage, settings=settings)
        social = SocialStore()
        coordinator = OptimisticCoordinator(social, credentials, backend, notifier, settings=settings)
        actions = SocialActions(coordinator, settings=settings)
        loader = SocialLoader(coordinator)
        return cls(
            settings=settings,
            cookies=cookies,
            durable=durable,
            session_storage=session_storage,
            auth_state=auth_state,
            credentials=credentials,
            backend=backend,
            notifier=notifier,
            synchronizer=synchronizer,
            social=social,
            coordinator=coordinator,
            actions=actions,
            loader=loader,
        )

    async def aclose(self) -> None:
        await self.coordinator.drain()
        await self.backend.aclose()
        self.durable.close()
        self.session_storage.close()
