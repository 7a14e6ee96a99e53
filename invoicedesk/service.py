"""FastAPI application factory for the invoice dashboard."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from .config import AppConfig, config_from_env
from .database import DataStore, SupabaseStore
from .identity import IdentityProvider, SupabaseIdentity
from .sessions import SessionManager
from .web import AppServices, register_ui_routes

logger = logging.getLogger("invoicedesk.service")

SESSION_COOKIE_NAME = "invoicedesk_session"


def create_app(
    config: Optional[AppConfig] = None,
    *,
    store: Optional[DataStore] = None,
    identity: Optional[IdentityProvider] = None,
    session_manager: Optional[SessionManager] = None,
) -> FastAPI:
    """Instantiate the dashboard application.

    When ``store`` is omitted the Supabase handle is opened once during
    application startup and shared by every request.
    """

    config = config or config_from_env()
    if not config.session_secret:
        raise RuntimeError("INVOICEDESK_SESSION_SECRET must be configured to serve the dashboard")
    if store is None or identity is None:
        config.require_backend()

    sessions = session_manager or SessionManager(ttl=timedelta(hours=config.session_ttl_hours))
    identity_provider: IdentityProvider = identity or SupabaseIdentity(config.supabase_url, config.supabase_key)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            remote = await SupabaseStore.connect(config.supabase_url, config.supabase_key)
            app.state.services = AppServices.build(config, remote, identity_provider, sessions)
        yield

    app = FastAPI(
        title="InvoiceDesk",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    if not config.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        https_only=config.secure_cookies,
        same_site="lax",
        max_age=sessions.cookie_max_age,
    )

    app.state.config = config
    app.state.session_manager = sessions
    app.state.services = (
        AppServices.build(config, store, identity_provider, sessions) if store is not None else None
    )

    register_ui_routes(app)
    return app


__all__ = ["SESSION_COOKIE_NAME", "create_app"]
