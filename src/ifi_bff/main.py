# src/ifi_bff/main.py

import logging
import typing
import uuid
from pathlib import PurePosixPath

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .config import settings
from .exceptions import AuthError
from .page_bootstrap import PageContext, PageDataStatus
from .session_data import GuardAction, UserSummary
from .storage import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY, Storage

logger = logging.getLogger(__name__)

# --- In-Memory Browser Storage ---
# session_id cookie (with max-age) -> persistent storage, like localStorage
# tab_id cookie (no max-age)       -> tab-scoped storage, like sessionStorage
_persistent_storage: typing.Dict[str, Storage] = {}
_tab_storage: typing.Dict[str, Storage] = {}
_page_contexts: typing.Dict[typing.Tuple[str, str], PageContext] = {}


class SessionMiddlewareCustom(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
        if not session_id or session_id not in _persistent_storage:
            session_id = str(uuid.uuid4())
            _persistent_storage[session_id] = Storage()
        tab_id = request.cookies.get(settings.TAB_COOKIE_NAME)
        if not tab_id or tab_id not in _tab_storage:
            tab_id = str(uuid.uuid4())
            _tab_storage[tab_id] = Storage()
        request.state.session_id = session_id
        request.state.tab_id = tab_id
        request.state.storage = _persistent_storage[session_id]
        request.state.tab_storage = _tab_storage[tab_id]
        response: StarletteResponse = await call_next(request)
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            session_id,
            max_age=settings.SESSION_COOKIE_MAX_AGE,
            httponly=True,
            secure=settings.SESSION_COOKIE_SECURE,
            samesite="lax",
        )
        response.set_cookie(
            settings.TAB_COOKIE_NAME,
            tab_id,
            httponly=True,
            secure=settings.SESSION_COOKIE_SECURE,
            samesite="lax",
        )
        return response


# --- FastAPI App Setup ---
app = FastAPI(
    title="iFi Dashboard BFF",
    description="Session guard and onboarding-data cache in front of the iFi dashboard pages.",
    version="0.1.0"
)
app.state.http_client = None

app.add_middleware(
    SessionMiddlewareCustom,
)


async def get_page_context(request: Request) -> PageContext:
    key = (request.state.session_id, request.state.tab_id)
    context = _page_contexts.get(key)
    if context is None:
        context = PageContext(
            request.state.storage,
            request.state.tab_storage,
            config=settings,
            client=request.app.state.http_client,
        )
        _page_contexts[key] = context
    return context


def drop_session_contexts(session_id: str) -> None:
    """Closes and forgets every tab's context for a session whose storage was cleared."""
    for key in [key for key in _page_contexts if key[0] == session_id]:
        _page_contexts.pop(key).close()
    logger.debug("Dropped page contexts for session %s", session_id)


class LoginSession(BaseModel):
    access_token: str
    refresh_token: typing.Optional[str] = None
    user: UserSummary


class LogoutRequest(BaseModel):
    confirm: bool = False


# --- Pages exempt from the guard ---
@app.get(settings.LOGIN_PATH)
async def login_page(request: Request):
    return {"page": "login", "redirect": request.query_params.get("redirect")}


@app.post("/login/session")
async def store_login_session(request: Request, login: LoginSession):
    # Hand-off from the login page: the backend issued the tokens.
    storage: Storage = request.state.storage
    storage.set_item(ACCESS_TOKEN_KEY, login.access_token)
    if login.refresh_token:
        storage.set_item(REFRESH_TOKEN_KEY, login.refresh_token)
    storage.set_item(USER_KEY, login.user.model_dump_json())
    logger.info("Stored login session for %s", login.user.email)
    return {"status": "ok"}


@app.get(settings.ONBOARDING_PATH)
async def onboarding_page():
    return {"page": "onboarding"}


# --- Guarded dashboard pages ---
@app.get("/html/{page_file}")
async def dashboard_page(
        request: Request,
        page_file: str,
        context: PageContext = Depends(get_page_context),
):
    decision = context.guard.check_page(request.url.path)
    if decision.action is GuardAction.SKIP:
        # A case variant of an exempt page; send it to the real route.
        location = decision.location
        if request.url.query:
            location = f"{location}?{request.url.query}"
        return RedirectResponse(url=location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    if decision.is_redirect:
        if decision.storage_cleared:
            drop_session_contexts(request.state.session_id)
        return RedirectResponse(url=decision.location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    context.guard.start_user_refresh()
    page_name = PurePosixPath(page_file).stem.lower()
    result = await context.bootstrap.load_page_state(page_name)

    payload = {
        "page": page_name,
        "status": result.status.value,
        "message": result.message,
        "user": {
            "display_name": context.guard.get_user_display_name(),
            "initials": context.guard.get_user_initials(),
        },
    }
    if result.status is PageDataStatus.READY:
        cache = context.cache
        payload["summary"] = {
            "monthly_income": await cache.get_monthly_income(),
            "total_expenses": await cache.get_total_expenses(),
            "cash_flow": await cache.get_cash_flow(),
            "total_assets": await cache.get_total_assets(),
            "total_debts": await cache.get_total_debts(),
            "net_worth": await cache.get_net_worth(),
        }
        payload["has_page_data"] = await context.bootstrap.has_page_data(page_name)
    return payload


# --- BFF API Endpoints (called by the frontend) ---
@app.get("/api/bff/userinfo")
async def get_user_info(context: PageContext = Depends(get_page_context)):
    try:
        user = context.guard.get_current_user()
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return {"user": user.model_dump()}


@app.get("/api/bff/features/{tier}")
async def get_feature_access(tier: str, context: PageContext = Depends(get_page_context)):
    return {"tier": tier, "allowed": context.guard.has_subscription(tier)}


@app.post("/logout")
async def logout(
        request: Request,
        logout_request: typing.Optional[LogoutRequest] = None,
        context: PageContext = Depends(get_page_context),
):
    confirmed = logout_request is not None and logout_request.confirm
    login_url = await context.guard.logout(confirm=lambda: confirmed)
    if login_url is None:
        return {"status": "cancelled"}
    drop_session_contexts(request.state.session_id)
    return RedirectResponse(url=login_url, status_code=status.HTTP_303_SEE_OTHER)


@app.on_event("startup")
async def startup_event():
    logger.info("--- iFi Dashboard BFF (FastAPI) Starting Up ---")
    logger.info("API base URL: %s", settings.API_BASE_URL)
    logger.info("Login page: %s, onboarding page: %s", settings.LOGIN_PATH, settings.ONBOARDING_PATH)
    logger.info("Onboarding cache TTL: %ss", settings.ONBOARDING_CACHE_TTL_SECONDS)


@app.on_event("shutdown")
async def shutdown_event():
    for context in _page_contexts.values():
        context.close()
    _page_contexts.clear()
