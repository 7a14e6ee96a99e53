"""Web interface for the invoice dashboard."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from . import data
from .auth import (
    DASHBOARD_PATH,
    ERROR_PATH,
    LOGIN_PATH,
    RESET_EXPIRED_MESSAGE,
    AccountActions,
    AuthOutcome,
    EmailVerificationFlow,
    OAuthCoordinator,
    SessionAuthenticator,
)
from .config import AppConfig
from .credentials import CredentialStore
from .database import DataStore
from .errors import GENERIC_ERROR_MESSAGE, DatabaseError, RedirectFailure
from .identity import IdentityProvider
from .models import EditableInvoice, InvoiceStatus, Revenue, Session
from .seed import seed_database
from .sessions import OAUTH_FLOW_KEY, SessionManager

logger = logging.getLogger("invoicedesk.web")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
STATIC_DIR = Path(__file__).resolve().parent / "static"

LOGIN_ERROR_MESSAGES = {"auth-code-error": "Error signing in with Google."}
INVOICE_NOT_FOUND_MESSAGE = "Could not find the requested invoice."


@dataclass(frozen=True)
class AppServices:
    """Everything a request handler needs, built once per application."""

    config: AppConfig
    store: DataStore
    sessions: SessionManager
    authenticator: SessionAuthenticator
    oauth: OAuthCoordinator
    email_flow: EmailVerificationFlow
    accounts: AccountActions

    @classmethod
    def build(
        cls,
        config: AppConfig,
        store: DataStore,
        identity: IdentityProvider,
        sessions: SessionManager,
    ) -> "AppServices":
        credentials = CredentialStore(store)
        return cls(
            config=config,
            store=store,
            sessions=sessions,
            authenticator=SessionAuthenticator(
                credentials, identity, sessions, strategy=config.password_strategy
            ),
            oauth=OAuthCoordinator(identity, sessions, providers=config.oauth_providers),
            email_flow=EmailVerificationFlow(identity, sessions),
            accounts=AccountActions(credentials, identity),
        )


@dataclass(frozen=True)
class RevenueBar:
    month: str
    revenue: int
    height: float


def generate_pagination(current_page: int, total_pages: int) -> List[Union[int, str]]:
    """Page links to show, with ``"..."`` standing in for collapsed ranges."""

    if total_pages <= 7:
        return list(range(1, total_pages + 1))
    if current_page <= 3:
        return [1, 2, 3, "...", total_pages - 1, total_pages]
    if current_page >= total_pages - 2:
        return [1, 2, "...", total_pages - 2, total_pages - 1, total_pages]
    return [1, "...", current_page - 1, current_page, current_page + 1, "...", total_pages]


def build_revenue_chart(revenue: Sequence[Revenue]) -> Tuple[List[str], List[RevenueBar]]:
    """Y-axis labels in thousands and bar heights as a percentage of the top label."""

    if not revenue:
        return [], []
    top = math.ceil(max(item.revenue for item in revenue) / 1000) * 1000
    labels = [f"${value // 1000}K" for value in range(top, -1, -1000)]
    bars = [
        RevenueBar(
            month=item.month,
            revenue=item.revenue,
            height=round(item.revenue / top * 100, 1) if top else 0.0,
        )
        for item in revenue
    ]
    return labels, bars


def _page_number(raw: Optional[str]) -> int:
    try:
        return max(int(raw or 1), 1)
    except ValueError:
        return 1


def _form_values(form: Mapping[str, Any], *names: str) -> Dict[str, str]:
    return {name: str(form.get(name) or "") for name in names}


def _invoice_values(invoice: EditableInvoice) -> Dict[str, str]:
    return {
        "customerId": invoice.customer_id,
        "amount": str(invoice.amount),
        "status": invoice.status.value,
    }


def register_ui_routes(app: FastAPI) -> None:
    """Expose the HTML dashboard on the provided FastAPI app.

    Handlers look up :class:`AppServices` on ``app.state.services`` at request
    time, so the store handle may be attached after the routes are registered.
    """

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    router = APIRouter(include_in_schema=False)

    def _services(request: Request) -> AppServices:
        services = getattr(request.app.state, "services", None)
        if services is None:
            raise RuntimeError("Application services have not been initialised")
        return services

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _current_session(request: Request) -> Optional[Session]:
        return _services(request).sessions.resolve(request.session)

    def _require_session(request: Request) -> Session:
        session = _current_session(request)
        if session is None:
            raise RedirectFailure("Please sign in to continue.", location=LOGIN_PATH)
        return session

    def _redirect(location: str) -> RedirectResponse:
        return RedirectResponse(location, status_code=status.HTTP_303_SEE_OTHER)

    def _origin(request: Request) -> str:
        configured = _services(request).config.site_url
        if configured:
            return configured
        return str(request.base_url).rstrip("/")

    def _render(
        request: Request,
        template: str,
        *,
        status_code: int = status.HTTP_200_OK,
        **context: Any,
    ) -> HTMLResponse:
        payload: Dict[str, Any] = {
            "session": _current_session(request),
            "flash_messages": _consume_flash(request),
        }
        payload.update(context)
        return templates.TemplateResponse(request, template, payload, status_code=status_code)

    def _apply(request: Request, outcome: AuthOutcome) -> None:
        sessions = _services(request).sessions
        if outcome.clear_session:
            sessions.destroy(request.session)
        if outcome.session is not None:
            request.session.clear()
            sessions.create(request.session, outcome.session)

    def _render_error(request: Request, status_code: int) -> HTMLResponse:
        return templates.TemplateResponse(
            request,
            "error.html",
            {"session": None, "flash_messages": [], "message": GENERIC_ERROR_MESSAGE},
            status_code=status_code,
        )

    @app.exception_handler(RedirectFailure)
    async def handle_redirect_failure(request: Request, exc: RedirectFailure):
        return _redirect(exc.location or LOGIN_PATH)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("Request to %s failed: %s", request.url.path, exc.message)
        return _render_error(request, status.HTTP_500_INTERNAL_SERVER_ERROR)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("Unhandled error while serving %s", request.url.path, exc_info=exc)
        return _render_error(request, status.HTTP_500_INTERNAL_SERVER_ERROR)

    @router.get("/", name="home")
    async def homepage(request: Request):
        if _current_session(request) is None:
            return _redirect(LOGIN_PATH)
        return _redirect(DASHBOARD_PATH)

    # Authentication

    def _render_login(
        request: Request,
        *,
        email: str = "",
        errors: Optional[Dict[str, List[str]]] = None,
        error: Optional[str] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "login.html",
            status_code=status_code,
            email=email,
            errors=errors or {},
            error=error,
            providers=_services(request).oauth.providers,
        )

    @router.get("/login", response_class=HTMLResponse, name="login")
    async def login_form(request: Request):
        if _current_session(request) is not None:
            return _redirect(DASHBOARD_PATH)
        error_code = request.query_params.get("error")
        return _render_login(request, error=LOGIN_ERROR_MESSAGES.get(error_code or ""))

    @router.post("/login", name="login_submit")
    async def login_submit(request: Request):
        form = await request.form()
        outcome = await _services(request).authenticator.authenticate(form)
        if not outcome.ok:
            return _render_login(
                request,
                email=str(form.get("email") or ""),
                errors=outcome.validation_errors,
                error=outcome.error,
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        _apply(request, outcome)
        return _redirect(outcome.redirect_to or DASHBOARD_PATH)

    @router.get("/logout", name="logout")
    async def logout(request: Request):
        outcome = await _services(request).accounts.logout(_current_session(request))
        _apply(request, outcome)
        return _redirect(outcome.redirect_to or LOGIN_PATH)

    @router.get("/register", response_class=HTMLResponse, name="register")
    async def register_form(request: Request):
        if _current_session(request) is not None:
            return _redirect(DASHBOARD_PATH)
        return _render(request, "register.html", values={}, errors={}, error=None)

    @router.post("/register", name="register_submit")
    async def register_submit(request: Request):
        form = await request.form()
        outcome = await _services(request).accounts.register(form, origin=_origin(request))
        if not outcome.ok:
            return _render(
                request,
                "register.html",
                status_code=status.HTTP_400_BAD_REQUEST,
                values=_form_values(form, "name", "email"),
                errors=outcome.validation_errors,
                error=outcome.error,
            )
        return _redirect(outcome.redirect_to or LOGIN_PATH)

    @router.get("/register/confirmation", response_class=HTMLResponse, name="register_confirmation")
    async def register_confirmation(request: Request):
        return _render(request, "register_confirmation.html")

    @router.get("/forgot-password", response_class=HTMLResponse, name="forgot_password")
    async def forgot_password_form(request: Request):
        return _render(request, "forgot_password.html", values={}, errors={}, error=None)

    @router.post("/forgot-password", name="forgot_password_submit")
    async def forgot_password_submit(request: Request):
        form = await request.form()
        outcome = await _services(request).accounts.forgot_password(form, origin=_origin(request))
        if not outcome.ok:
            return _render(
                request,
                "forgot_password.html",
                status_code=status.HTTP_400_BAD_REQUEST,
                values=_form_values(form, "email"),
                errors=outcome.validation_errors,
                error=outcome.error,
            )
        return _redirect(outcome.redirect_to or LOGIN_PATH)

    @router.get(
        "/forgot-password/confirmation",
        response_class=HTMLResponse,
        name="forgot_password_confirmation",
    )
    async def forgot_password_confirmation(request: Request):
        return _render(request, "forgot_password_confirmation.html")

    @router.get("/forgot-password/reset-password", response_class=HTMLResponse, name="reset_password")
    async def reset_password_form(request: Request):
        session = _current_session(request)
        return _render(
            request,
            "reset_password.html",
            token=request.query_params.get("token", ""),
            errors={},
            error=None if session is not None and session.access_token else RESET_EXPIRED_MESSAGE,
        )

    @router.post("/forgot-password/reset-password", name="reset_password_submit")
    async def reset_password_submit(request: Request):
        form = await request.form()
        outcome = await _services(request).accounts.reset_password(form, _current_session(request))
        if not outcome.ok:
            return _render(
                request,
                "reset_password.html",
                status_code=status.HTTP_400_BAD_REQUEST,
                token=str(form.get("token") or ""),
                errors=outcome.validation_errors,
                error=outcome.error,
            )
        _flash(request, "Your password has been updated.", category="success")
        return _redirect(outcome.redirect_to or DASHBOARD_PATH)

    @router.get("/auth/confirm", name="auth_confirm")
    async def auth_confirm(request: Request):
        params = request.query_params
        outcome = await _services(request).email_flow.confirm(
            params.get("token_hash"), params.get("type"), params.get("next")
        )
        _apply(request, outcome)
        return _redirect(outcome.redirect_to or ERROR_PATH)

    @router.get("/auth/oauth/{provider}", name="auth_oauth")
    async def auth_oauth(provider: str, request: Request):
        outcome = await _services(request).oauth.begin(
            provider, _origin(request), next_path=request.query_params.get("next")
        )
        if outcome.flow_state is not None:
            request.session[OAUTH_FLOW_KEY] = outcome.flow_state
        return _redirect(outcome.redirect_to or LOGIN_PATH)

    @router.get("/auth/callback", name="auth_callback")
    async def auth_callback(request: Request):
        flow_state = request.session.pop(OAUTH_FLOW_KEY, None)
        outcome = await _services(request).oauth.complete(
            request.query_params.get("code"),
            flow_state if isinstance(flow_state, dict) else None,
            request.query_params.get("next"),
        )
        _apply(request, outcome)
        return _redirect(outcome.redirect_to or LOGIN_PATH)

    @router.get("/error", response_class=HTMLResponse, name="error")
    async def error_page(request: Request):
        if not request.query_params.get("error"):
            return _redirect("/")
        return _render(request, "error.html", message=GENERIC_ERROR_MESSAGE)

    # Dashboard

    @router.get("/dashboard", response_class=HTMLResponse, name="dashboard")
    async def dashboard(request: Request):
        _require_session(request)
        store = _services(request).store
        cards, revenue, latest = await asyncio.gather(
            data.fetch_card_data(store),
            data.fetch_revenue(store),
            data.fetch_latest_invoices(store),
        )
        labels, bars = build_revenue_chart(revenue)
        return _render(
            request,
            "dashboard.html",
            cards=cards,
            revenue_labels=labels,
            revenue_bars=bars,
            latest_invoices=latest,
        )

    @router.get("/dashboard/invoices", response_class=HTMLResponse, name="invoices")
    async def invoices(request: Request):
        _require_session(request)
        store = _services(request).store
        query = request.query_params.get("query", "")
        current_page = _page_number(request.query_params.get("page"))
        rows, total_pages = await asyncio.gather(
            data.fetch_filtered_invoices(store, query, current_page),
            data.fetch_invoice_pages(store, query),
        )
        return _render(
            request,
            "invoices.html",
            invoices=rows,
            query=query,
            current_page=current_page,
            total_pages=total_pages,
            pagination=generate_pagination(current_page, total_pages),
        )

    def _render_invoice_form(
        request: Request,
        *,
        action: str,
        title: str,
        customers: Sequence[Any],
        values: Mapping[str, str],
        outcome: Optional[data.ActionOutcome] = None,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        return _render(
            request,
            "invoice_form.html",
            status_code=status_code,
            action=action,
            title=title,
            customers=customers,
            statuses=list(InvoiceStatus),
            values=values,
            errors=outcome.errors if outcome else {},
            message=outcome.message if outcome else None,
        )

    @router.get("/dashboard/invoices/create", response_class=HTMLResponse, name="create_invoice")
    async def create_invoice_form(request: Request):
        _require_session(request)
        customers = await data.fetch_customers(_services(request).store)
        return _render_invoice_form(
            request,
            action=request.app.url_path_for("create_invoice_submit"),
            title="Create Invoice",
            customers=customers,
            values={},
        )

    @router.post("/dashboard/invoices/create", name="create_invoice_submit")
    async def create_invoice_submit(request: Request):
        _require_session(request)
        store = _services(request).store
        form = await request.form()
        outcome = await data.create_invoice(store, form)
        if outcome.redirect_to is None:
            return _render_invoice_form(
                request,
                action=request.app.url_path_for("create_invoice_submit"),
                title="Create Invoice",
                customers=await data.fetch_customers(store),
                values=_form_values(form, "customerId", "amount", "status"),
                outcome=outcome,
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return _redirect(outcome.redirect_to)

    @router.get(
        "/dashboard/invoices/{invoice_id}/edit",
        response_class=HTMLResponse,
        name="edit_invoice",
    )
    async def edit_invoice_form(invoice_id: str, request: Request):
        _require_session(request)
        store = _services(request).store
        invoice, customers = await asyncio.gather(
            data.fetch_invoice_by_id(store, invoice_id),
            data.fetch_customers(store),
        )
        if invoice is None:
            return _render(
                request,
                "not_found.html",
                status_code=status.HTTP_404_NOT_FOUND,
                message=INVOICE_NOT_FOUND_MESSAGE,
            )
        return _render_invoice_form(
            request,
            action=request.app.url_path_for("edit_invoice_submit", invoice_id=invoice_id),
            title="Edit Invoice",
            customers=customers,
            values=_invoice_values(invoice),
        )

    @router.post("/dashboard/invoices/{invoice_id}/edit", name="edit_invoice_submit")
    async def edit_invoice_submit(invoice_id: str, request: Request):
        _require_session(request)
        store = _services(request).store
        form = await request.form()
        outcome = await data.update_invoice(store, invoice_id, form)
        if outcome.redirect_to is None:
            return _render_invoice_form(
                request,
                action=request.app.url_path_for("edit_invoice_submit", invoice_id=invoice_id),
                title="Edit Invoice",
                customers=await data.fetch_customers(store),
                values=_form_values(form, "customerId", "amount", "status"),
                outcome=outcome,
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return _redirect(outcome.redirect_to)

    @router.post("/dashboard/invoices/{invoice_id}/delete", name="delete_invoice")
    async def delete_invoice(invoice_id: str, request: Request):
        _require_session(request)
        outcome = await data.delete_invoice(_services(request).store, invoice_id)
        if outcome.message:
            _flash(request, outcome.message, category="success")
        return _redirect(outcome.redirect_to or data.INVOICES_PATH)

    @router.get("/dashboard/customers", response_class=HTMLResponse, name="customers")
    async def customers(request: Request):
        _require_session(request)
        query = request.query_params.get("query", "")
        rows = await data.fetch_filtered_customers(_services(request).store, query)
        return _render(request, "customers.html", customers=rows, query=query)

    # Fixtures

    @router.get("/seed", name="seed")
    async def seed(request: Request):
        try:
            await seed_database(_services(request).store)
        except DatabaseError as exc:
            return JSONResponse({"error": exc.message}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return JSONResponse({"message": "Database seeded"})

    app.include_router(router)


__all__ = [
    "AppServices",
    "RevenueBar",
    "build_revenue_chart",
    "generate_pagination",
    "register_ui_routes",
]
