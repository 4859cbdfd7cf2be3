"""
Coaching Portal - trainers manage clients, clients follow their plans
FastAPI front end over Supabase auth with per-browser session stores
"""

import logging
import os
import uuid
from contextlib import asynccontextmanager
from html import escape
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from app.logging_setup import configure_logging
from app.settings import Settings, load_settings
from app.supabase_client import SupabaseAuthBackend, SupabaseProfileStore, create_supabase
from models.responses import AuthResult, ErrorResponse, SessionSnapshot
from services.access_gate import AccessGate, GateDecision, GateOutcome, RedirectPolicy
from services.notifications import NotificationQueue
from services.rate_limiter import RateLimiter
from services.session_registry import SessionRegistry, StoreFactory
from services.session_store import SessionStore

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
templates = Jinja2Templates(directory=os.path.join(BASE_DIR, "templates"))

SESSION_KEY = "sid"


class GateBlocked(Exception):
    """Raised by view dependencies when the access gate does not admit the request."""

    def __init__(self, decision: GateDecision):
        super().__init__(decision.reason or decision.outcome.value)
        self.decision = decision


def default_store_factory(settings: Settings, limiter: RateLimiter) -> StoreFactory:
    async def build() -> SessionStore:
        client = await create_supabase(settings)
        return SessionStore(
            SupabaseAuthBackend(client),
            SupabaseProfileStore(client),
            NotificationQueue(),
            rate_limiter=limiter,
            timeout=settings.request_timeout,
        )

    return build


def _redirect(request: Request, url: str) -> RedirectResponse:
    resp = RedirectResponse(url, status_code=303)
    if request.headers.get("HX-Request"):
        resp.headers["HX-Redirect"] = url
    return resp


def _alert(message: str, kind: str = "error", status_code: int = 400) -> HTMLResponse:
    return HTMLResponse(
        f'<div class="alert alert-{kind}"><span>{escape(message)}</span></div>',
        status_code=status_code,
    )


def _inline_alert(
    store: SessionStore,
    result: AuthResult,
    message: Optional[str] = None,
    kind: str = "error",
    status_code: int = 400,
) -> HTMLResponse:
    """Render a result as an alert fragment instead of its toast."""
    if result.toast_id:
        store.notifications.dismiss(result.toast_id)
    return _alert(message or result.error or "", kind=kind, status_code=status_code)


# ---------- dependencies ----------
async def get_session_store(request: Request) -> SessionStore:
    """Return the browser's SessionStore, bootstrapped."""
    session_id = request.session.get(SESSION_KEY)
    if not session_id:
        session_id = str(uuid.uuid4())
        request.session[SESSION_KEY] = session_id

    registry: SessionRegistry = request.app.state.registry
    store = await registry.get(session_id)
    await store.initialize()
    await store.ready()
    return store


def require_view(required_role: Optional[str] = None, require_active: bool = True):
    async def dependency(
        request: Request, store: SessionStore = Depends(get_session_store)
    ) -> SessionStore:
        gate = AccessGate(required_role, require_active, request.app.state.policy)
        decision = gate.evaluate(store.state)
        if decision.outcome is not GateOutcome.ALLOW:
            raise GateBlocked(decision)
        return store

    return dependency


# ---------- app ----------
def create_app(
    settings: Optional[Settings] = None,
    store_factory: Optional[StoreFactory] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings)

    limiter = RateLimiter(settings.sign_in_max_attempts, settings.sign_in_window_seconds)
    registry = SessionRegistry(
        store_factory or default_store_factory(settings, limiter),
        max_stores=settings.session_max_stores,
        idle_timeout=settings.session_idle_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.close_all()

    app = FastAPI(
        title="Coaching Portal",
        description="Trainer and client portal backed by Supabase",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        https_only=settings.is_production,
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.policy = RedirectPolicy(
        home_paths={"trainer": settings.trainer_home, "client": settings.client_home},
        anonymous_path=settings.anonymous_path,
    )

    @app.exception_handler(GateBlocked)
    async def gate_blocked(request: Request, exc: GateBlocked):
        decision = exc.decision
        if decision.outcome is GateOutcome.PENDING:
            return templates.TemplateResponse(
                request,
                "verifying.html",
                {"title": "Verifying - Coaching Portal", "message": decision.message},
                status_code=202,
            )
        logger.info(
            "Gate redirect %s -> %s (%s)",
            request.url.path,
            decision.location,
            decision.reason,
            extra={"component": "AccessGate"},
        )
        return _redirect(request, decision.location)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path, extra={"component": "web"})
        if request.url.path.startswith("/api/"):
            return JSONResponse(
                ErrorResponse(message="Unexpected error").model_dump(), status_code=500
            )
        return templates.TemplateResponse(
            request,
            "error.html",
            {"title": "Something went wrong - Coaching Portal", "retry_url": str(request.url)},
            status_code=500,
        )

    # ---------- pages ----------
    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request, store: SessionStore = Depends(get_session_store)):
        """Sign-in page, or the suspended notice for an inactive account"""
        policy: RedirectPolicy = request.app.state.policy
        profile = store.profile
        if store.user is not None and profile is not None:
            if profile.active:
                return _redirect(request, policy.home_for(profile.role))
            return templates.TemplateResponse(
                request,
                "suspended.html",
                {"title": "Account suspended - Coaching Portal", "profile": profile},
            )
        return templates.TemplateResponse(
            request,
            "login.html",
            {
                "title": "Coaching Portal",
                "error": store.error,
                "toasts": store.notifications.active(),
            },
        )

    @app.get("/trainer/dashboard", response_class=HTMLResponse)
    async def trainer_dashboard(request: Request, store: SessionStore = Depends(require_view("trainer"))):
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {"title": "Trainer dashboard - Coaching Portal", "profile": store.profile},
        )

    @app.get("/client/dashboard", response_class=HTMLResponse)
    async def client_dashboard(request: Request, store: SessionStore = Depends(require_view("client"))):
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {"title": "My plan - Coaching Portal", "profile": store.profile},
        )

    # ---------- auth ----------
    @app.post("/auth/sign-in", response_class=HTMLResponse)
    async def sign_in(
        request: Request,
        email: str = Form(""),
        password: str = Form(""),
        store: SessionStore = Depends(get_session_store),
    ):
        result = await store.sign_in(email, password)
        if not result.success:
            return _inline_alert(store, result)

        await store.drain()
        profile = store.profile
        if profile is None or not profile.active:
            return _redirect(request, request.app.state.policy.anonymous_path)
        return _redirect(request, request.app.state.policy.home_for(profile.role))

    @app.post("/auth/sign-up", response_class=HTMLResponse)
    async def sign_up(
        email: str = Form(""),
        password: str = Form(""),
        full_name: str = Form(""),
        role: str = Form("client"),
        store: SessionStore = Depends(get_session_store),
    ):
        result = await store.sign_up(email, password, full_name, role)
        if not result.success:
            return _inline_alert(store, result)
        return _inline_alert(
            store,
            result,
            "Account created. Check your email to confirm it before signing in.",
            kind="success",
            status_code=200,
        )

    @app.post("/auth/sign-out")
    async def sign_out(request: Request, store: SessionStore = Depends(get_session_store)):
        result = await store.sign_out()
        await store.drain()
        if not result.success:
            return _inline_alert(store, result, status_code=502)

        session_id = request.session.pop(SESSION_KEY, None)
        if session_id:
            await request.app.state.registry.discard(session_id)
        return _redirect(request, request.app.state.policy.anonymous_path)

    # ---------- profile ----------
    @app.post("/profile", response_class=HTMLResponse)
    async def update_profile(request: Request, store: SessionStore = Depends(require_view())):
        # read the raw form: Form() turns a blank field into "not sent"
        form = await request.form()
        changes = {key: form[key] for key in ("full_name", "email") if key in form}
        if not changes:
            return _alert("Nothing to update", kind="info", status_code=200)
        result = await store.update_profile(**changes)
        if not result.success:
            return _inline_alert(store, result)
        return _inline_alert(store, result, "Profile updated", kind="success", status_code=200)

    @app.post("/profile/refresh")
    async def refresh_profile(store: SessionStore = Depends(require_view())):
        await store.refresh_profile()
        return JSONResponse(SessionSnapshot.from_state(store.state, store.status).model_dump(mode="json"))

    @app.post("/trainer/clients/{client_id}/active", response_class=HTMLResponse)
    async def set_client_active(
        client_id: str,
        active: bool = Form(...),
        store: SessionStore = Depends(require_view("trainer")),
    ):
        result: AuthResult = await store.set_client_active(client_id, active)
        if not result.success:
            return _inline_alert(store, result)
        label = "Active" if active else "Suspended"
        return HTMLResponse(f'<span class="badge">{label}</span>')

    # ---------- API + HTMX components ----------
    @app.get("/api/session")
    async def session_snapshot(store: SessionStore = Depends(get_session_store)):
        return SessionSnapshot.from_state(store.state, store.status)

    @app.get("/components/notifications", response_class=HTMLResponse)
    async def notifications_component(request: Request, store: SessionStore = Depends(get_session_store)):
        """HTMX component: shows pending toasts once"""
        return templates.TemplateResponse(
            request,
            "components/toasts.html",
            {"toasts": store.notifications.pop_all()},
        )

    return app


# Development server
if __name__ == "__main__":
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
