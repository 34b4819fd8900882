# src/ifi_bff/page_bootstrap.py

import asyncio
import logging
import time
import typing
from dataclasses import dataclass
from enum import Enum

import httpx

from .auth_utils import SessionGuard
from .config import Settings, settings as default_settings
from .onboarding_cache import OnboardingCache
from .session_data import OnboardingRecord
from .storage import Storage, TokenStore

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "Please complete your onboarding to see this page."


class PageDataStatus(str, Enum):
    READY = "ready"
    ONBOARDING_INCOMPLETE = "onboarding_incomplete"
    FETCH_FAILED = "fetch_failed"
    SERVICE_UNAVAILABLE = "service_unavailable"


@dataclass
class PageDataResult:
    page_name: str
    status: PageDataStatus
    record: typing.Optional[OnboardingRecord] = None

    @property
    def message(self) -> typing.Optional[str]:
        if self.status is PageDataStatus.READY:
            return None
        if self.status is PageDataStatus.ONBOARDING_INCOMPLETE:
            return NO_DATA_MESSAGE
        return "Your financial data could not be loaded right now."


def _has_items(value: typing.Any) -> bool:
    if isinstance(value, str):
        return value.strip() not in ("", "[]", "{}")
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return bool(value)


class PageBootstrap:
    """
    Loads the data a dashboard page needs once the onboarding cache is available.
    """

    def __init__(self, cache: typing.Optional[OnboardingCache] = None, config: Settings = default_settings):
        self._cache = cache
        self._config = config

    @property
    def cache(self) -> typing.Optional[OnboardingCache]:
        return self._cache

    def register(self, cache: OnboardingCache) -> None:
        self._cache = cache

    async def wait_for_data_service(self, max_wait_ms: typing.Optional[int] = None) -> bool:
        """Polls until a cache is registered or ``max_wait_ms`` runs out."""
        if max_wait_ms is None:
            max_wait_ms = self._config.DATA_SERVICE_MAX_WAIT_MS
        interval = self._config.DATA_SERVICE_POLL_INTERVAL_MS / 1000
        deadline = time.monotonic() + max_wait_ms / 1000
        while self._cache is None and time.monotonic() < deadline:
            await asyncio.sleep(interval)
        return self._cache is not None

    async def load_page_state(self, page_name: str) -> PageDataResult:
        logger.debug("Loading %s data", page_name)
        if not await self.wait_for_data_service():
            logger.error("Data service not available for %s", page_name)
            return PageDataResult(page_name, PageDataStatus.SERVICE_UNAVAILABLE)

        try:
            data = await self._cache.get_data()
        except Exception:
            logger.exception("Error loading %s data", page_name)
            return PageDataResult(page_name, PageDataStatus.FETCH_FAILED)

        if data is None:
            if self._cache.last_error is not None:
                return PageDataResult(page_name, PageDataStatus.FETCH_FAILED)
            logger.warning("No onboarding data found for %s", page_name)
            return PageDataResult(page_name, PageDataStatus.ONBOARDING_INCOMPLETE)
        if not data.monthly_takehome:
            logger.warning("Onboarding incomplete for %s: monthly_takehome missing", page_name)
            return PageDataResult(page_name, PageDataStatus.ONBOARDING_INCOMPLETE)

        logger.debug("%s data loaded", page_name)
        return PageDataResult(page_name, PageDataStatus.READY, data)

    async def load_page_data(self, page_name: str) -> typing.Optional[OnboardingRecord]:
        result = await self.load_page_state(page_name)
        return result.record

    async def has_page_data(self, page_name: str) -> bool:
        """Whether the onboarding record carries what a specialised page needs."""
        if self._cache is None:
            return False
        data = await self._cache.get_data()
        if data is None:
            return False
        extra = data.model_extra or {}

        if page_name == "networth":
            return _has_items(data.assets) or _has_items(data.debts) or bool(data.monthly_takehome)
        if page_name == "debt":
            return _has_items(data.debts)
        if page_name == "goals":
            return any(extra.get(k) for k in ("goals_primary", "goals_timeline", "monthly_savings_goal"))
        if page_name == "investments":
            return _has_items(data.investments) or bool(extra.get("monthly_contributions"))
        if page_name == "budget":
            return _has_items(extra.get("budget"))
        return False


class PageContext:
    """
    Everything the pages of one browser session share, built in dependency order:
    token store, then cache, then guard and bootstrap.
    """

    def __init__(
            self,
            storage: Storage,
            tab_storage: Storage,
            config: Settings = default_settings,
            client: typing.Optional[httpx.AsyncClient] = None,
            clock: typing.Callable[[], float] = time.monotonic,
    ):
        self.storage = storage
        self.tab_storage = tab_storage
        self.config = config
        self.token_store = TokenStore(storage)
        self.cache = OnboardingCache(self.token_store, config=config, client=client, clock=clock)
        self.guard = SessionGuard(
            storage,
            tab_storage,
            token_store=self.token_store,
            cache=self.cache,
            config=config,
            client=client,
        )
        self.bootstrap = PageBootstrap(self.cache, config=config)

    def close(self) -> None:
        self.guard.stop_user_refresh()
