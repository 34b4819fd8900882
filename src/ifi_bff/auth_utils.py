# src/ifi_bff/auth_utils.py

import asyncio
import logging
import typing
from pathlib import PurePosixPath
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .api_client import request_json
from .config import Settings, settings as default_settings
from .exceptions import AuthError, FetchError
from .onboarding_cache import OnboardingCache
from .session_data import GuardAction, GuardDecision, UserSummary
from .storage import (
    LEGACY_USER_KEY,
    LOGIN_REDIRECT_CHECK_KEY,
    REDIRECT_COUNT_KEY,
    USER_KEY,
    Storage,
    TokenStore,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_TIERS: typing.Dict[str, int] = {
    "free": 0,
    "premium": 1,
    "enterprise": 2,
}

# Characters encodeURIComponent leaves alone besides letters, digits and "-_."
ENCODE_URI_COMPONENT_SAFE = "!'()*~"


def build_login_url(login_path: str, return_path: typing.Optional[str] = None) -> str:
    """
    Builds the login page URL, carrying the original path in the 'redirect'
    query parameter (percent-encoded like encodeURIComponent).
    """
    if not return_path:
        return login_path
    return f"{login_path}?redirect={quote(return_path, safe=ENCODE_URI_COMPONENT_SAFE)}"


def _same_page(path: str, page_path: str) -> bool:
    return PurePosixPath(path).name.lower() == PurePosixPath(page_path).name.lower()


class SessionGuard:
    """
    Gates dashboard pages to authenticated users and answers questions about the current user.

    Persistent storage holds the token and user summary; tab-scoped storage holds
    the redirect counter that breaks login redirect loops.
    """

    def __init__(
            self,
            storage: Storage,
            tab_storage: Storage,
            token_store: typing.Optional[TokenStore] = None,
            cache: typing.Optional[OnboardingCache] = None,
            config: Settings = default_settings,
            client: typing.Optional[httpx.AsyncClient] = None,
    ):
        self._storage = storage
        self._tab_storage = tab_storage
        self._token_store = token_store or TokenStore(storage)
        self._cache = cache
        self._config = config
        self._client = client
        self._refresh_task: typing.Optional[asyncio.Task] = None

    # --- Session state ---

    def _load_user(self) -> typing.Optional[UserSummary]:
        for key in (USER_KEY, LEGACY_USER_KEY):
            raw = self._storage.get_item(key)
            if not raw:
                continue
            try:
                return UserSummary.model_validate_json(raw)
            except ValidationError as e:
                logger.error("Invalid user data under '%s', removing it: %s", key, e)
                self._storage.remove_item(key)
        return None

    def is_authenticated(self) -> bool:
        return bool(self._token_store.get_token()) and self._load_user() is not None

    def get_current_user(self) -> UserSummary:
        if not self._token_store.get_token():
            raise AuthError("Not authenticated (no access token)")
        user = self._load_user()
        if user is None:
            raise AuthError("Not authenticated (no user in session)")
        return user

    async def refresh_current_user(self) -> UserSummary:
        """Re-reads the user profile from the backend and stores it as the cached summary."""
        token = self._token_store.get_token()
        if not token:
            raise AuthError("Not authenticated (no access token)")

        data = await request_json("GET", self._config.USER_PROFILE_URL, token, self._config, client=self._client)
        user_data = data.get("user") if isinstance(data, dict) else None
        if not isinstance(user_data, dict):
            raise FetchError("User profile response has no 'user' object")
        try:
            user = UserSummary.model_validate(user_data)
        except ValidationError as e:
            raise FetchError(f"User profile response is invalid: {e}") from e

        self._storage.set_item(USER_KEY, user.model_dump_json())
        logger.debug("Refreshed user profile for %s", user.email)
        return user

    def start_user_refresh(self) -> asyncio.Task:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh_user_periodically())
        return self._refresh_task

    def stop_user_refresh(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._refresh_task = None

    async def _refresh_user_periodically(self) -> None:
        interval = self._config.USER_REFRESH_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            if not self.is_authenticated():
                continue
            try:
                await self.refresh_current_user()
            except (AuthError, FetchError) as e:
                logger.error("Failed to refresh user data: %s", e)
            except Exception:
                logger.exception("Unexpected error refreshing user data")

    # --- Page entry ---

    def _read_redirect_count(self) -> int:
        raw = self._tab_storage.get_item(REDIRECT_COUNT_KEY)
        if not raw:
            return 0
        try:
            return max(int(raw), 0)
        except ValueError:
            logger.warning("Ignoring malformed redirect count %r", raw)
            return 0

    def check_page(self, path: str) -> GuardDecision:
        """
        Runs the page-entry check for one page load. Never awaits, so the
        decision is made before any page data is requested.
        """
        if _same_page(path, self._config.LOGIN_PATH):
            return GuardDecision(action=GuardAction.SKIP, location=self._config.LOGIN_PATH)
        # The onboarding page runs its own checks.
        if _same_page(path, self._config.ONBOARDING_PATH):
            return GuardDecision(action=GuardAction.SKIP, location=self._config.ONBOARDING_PATH)

        if self.is_authenticated():
            self._tab_storage.set_item(REDIRECT_COUNT_KEY, 0)
            self._tab_storage.remove_item(LOGIN_REDIRECT_CHECK_KEY)
            return GuardDecision(action=GuardAction.ALLOW)

        count = self._read_redirect_count()
        if count < self._config.MAX_LOGIN_REDIRECTS:
            count += 1
            self._tab_storage.set_item(REDIRECT_COUNT_KEY, count)
            logger.info("Unauthenticated access to %s, redirecting to login (attempt %d)", path, count)
            return GuardDecision(
                action=GuardAction.REDIRECT,
                location=build_login_url(self._config.LOGIN_PATH, path),
                redirect_count=count,
            )

        logger.warning("Redirect loop detected on %s, clearing stored session", path)
        self._storage.clear()
        self.stop_user_refresh()
        if self._cache is not None:
            self._cache.clear_cache()
        self._tab_storage.set_item(REDIRECT_COUNT_KEY, 0)
        return GuardDecision(
            action=GuardAction.REDIRECT,
            location=build_login_url(self._config.LOGIN_PATH),
            redirect_count=0,
            storage_cleared=True,
        )

    # --- Logout ---

    async def logout(self, confirm: typing.Optional[typing.Callable[[], bool]] = None) -> typing.Optional[str]:
        """
        Clears the session if ``confirm`` (when given) agrees.
        Returns the login URL to navigate to, or None when the user backed out.
        """
        if confirm is not None and not confirm():
            logger.debug("Logout cancelled by user")
            return None

        token = self._token_store.get_token()
        if token:
            try:
                await request_json("POST", self._config.LOGOUT_URL, token, self._config, client=self._client)
            except FetchError as e:
                logger.warning("Logout request failed, clearing local session anyway: %s", e)

        self._token_store.clear()
        self.stop_user_refresh()
        if self._cache is not None:
            self._cache.clear_cache()
        logger.info("Session cleared on logout")
        return build_login_url(self._config.LOGIN_PATH)

    # --- User display & feature gating ---

    def has_subscription(self, tier: str) -> bool:
        user = self._load_user()
        if user is None:
            return False
        user_level = SUBSCRIPTION_TIERS.get(user.role or "", 0)
        required_level = SUBSCRIPTION_TIERS.get(tier, 0)
        return user_level >= required_level

    def require_subscription(self, tier: str) -> bool:
        return self.is_authenticated() and self.has_subscription(tier)

    def get_user_display_name(self) -> str:
        user = self._load_user()
        if user is None:
            return "User"
        return f"{user.firstName or ''} {user.lastName or ''}".strip() or "User"

    def get_user_initials(self) -> str:
        user = self._load_user()
        if user is None:
            return "U"
        initials = f"{(user.firstName or '')[:1]}{(user.lastName or '')[:1]}".upper()
        return initials or "U"
