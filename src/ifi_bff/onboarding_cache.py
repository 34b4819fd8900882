# src/ifi_bff/onboarding_cache.py

import asyncio
import logging
import time
import typing

import httpx
from pydantic import ValidationError

from .api_client import request_json
from .config import Settings, settings as default_settings
from .exceptions import AuthError, FetchError, IfiBffError, NormalizationError
from .session_data import CacheEntry, OnboardingRecord, to_number
from .storage import TokenStore

logger = logging.getLogger(__name__)


class OnboardingCache:
    """
    Holds the current user's onboarding snapshot for one session context.

    A fresh entry is served without touching the network. A miss issues one
    authenticated GET; concurrent misses share that request. Every failure is
    logged and comes back as ``None``, so callers only ever see "record" or
    "no record".
    """

    def __init__(
            self,
            token_store: TokenStore,
            config: Settings = default_settings,
            client: typing.Optional[httpx.AsyncClient] = None,
            clock: typing.Callable[[], float] = time.monotonic,
    ):
        self._token_store = token_store
        self._config = config
        self._client = client
        self._clock = clock
        self._entry = CacheEntry()
        self._inflight: typing.Optional[asyncio.Task] = None
        # Bumped on every clear and forced fetch; a fetch only writes the
        # entry if nothing newer happened while it was in flight.
        self._generation = 0
        # Failure of the most recent fetch; None after a success or an
        # empty "not onboarded yet" answer.
        self.last_error: typing.Optional[IfiBffError] = None

    @property
    def ttl_seconds(self) -> float:
        return self._config.ONBOARDING_CACHE_TTL_SECONDS

    def is_cache_valid(self) -> bool:
        return self._entry.is_fresh(self._clock(), self.ttl_seconds)

    async def get_data(self, force_refresh: bool = False) -> typing.Optional[OnboardingRecord]:
        if not force_refresh and self.is_cache_valid():
            logger.debug("Returning cached onboarding data")
            return self._entry.record

        if force_refresh:
            self._generation += 1
            task = asyncio.ensure_future(self._fetch_and_store(self._generation))
            self._inflight = task
        elif self._inflight is not None and not self._inflight.done():
            logger.debug("Joining in-flight onboarding data request")
            task = self._inflight
        else:
            task = asyncio.ensure_future(self._fetch_and_store(self._generation))
            self._inflight = task

        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task and task.done():
                self._inflight = None

    def clear_cache(self) -> None:
        self._generation += 1
        self._entry.clear()
        self._inflight = None
        logger.debug("Onboarding cache cleared")

    async def _fetch_and_store(self, generation: int) -> typing.Optional[OnboardingRecord]:
        self.last_error = None
        try:
            record = await self._fetch_record()
        except AuthError as e:
            logger.error("Cannot fetch onboarding data: %s", e)
            self.last_error = e
            return None
        except (FetchError, NormalizationError) as e:
            logger.error("Error fetching onboarding data: %s", e)
            self.last_error = e
            return None
        except Exception as e:
            logger.exception("Unexpected error while fetching onboarding data")
            self.last_error = FetchError(str(e))
            return None

        if record is None:
            return None
        if generation == self._generation:
            self._entry.store(record, self._clock())
            logger.info("Onboarding data loaded and cached")
        else:
            logger.debug("Discarding onboarding data from a superseded request")
        return record

    async def _fetch_record(self) -> typing.Optional[OnboardingRecord]:
        token = self._token_store.get_token()
        if not token:
            raise AuthError("No access token found")

        url = self._config.ONBOARDING_DATA_URL
        logger.debug("Fetching onboarding data from %s", url)
        payload = await request_json("GET", url, token, self._config, client=self._client)
        return self._parse_payload(payload)

    def _parse_payload(self, payload: typing.Any) -> typing.Optional[OnboardingRecord]:
        # The endpoint answers {"success": true, "data": null, ...} when the
        # user has not onboarded yet, and the bare row otherwise.
        if isinstance(payload, dict) and "data" in payload and "success" in payload:
            if payload["data"] is None:
                logger.warning("No onboarding data found: %s", payload.get("message", ""))
                return None
            payload = payload["data"]
        if payload is None:
            logger.warning("No onboarding data found")
            return None
        if not isinstance(payload, dict):
            raise FetchError(f"Unexpected onboarding data payload: {type(payload).__name__}")
        try:
            return OnboardingRecord.model_validate(payload)
        except ValidationError as e:
            raise NormalizationError("record", str(e)) from e

    # --- Data sections ---

    async def get_expenses(self) -> typing.Dict[str, typing.Any]:
        data = await self.get_data()
        return data.expenses if data else {}

    async def get_debts(self) -> typing.List[typing.Any]:
        data = await self.get_data()
        return data.debts if data else []

    async def get_assets(self) -> typing.List[typing.Any]:
        data = await self.get_data()
        return data.assets if data else []

    async def get_investments(self) -> typing.List[typing.Any]:
        data = await self.get_data()
        return data.investments if data else []

    async def get_subscriptions(self) -> typing.List[typing.Any]:
        data = await self.get_data()
        return data.subscriptions if data else []

    async def get_income(self) -> typing.Dict[str, typing.Any]:
        data = await self.get_data()
        return {
            "source": data.income_source if data else None,
            "monthly": data.monthly_takehome if data else None,
            "additional": data.additional_income if data else [],
        }

    async def get_linked_accounts(self) -> typing.List[typing.Any]:
        data = await self.get_data()
        return data.linked_accounts if data else []

    # --- Totals ---

    async def get_total_expenses(self) -> float:
        expenses = await self.get_expenses()
        return sum(to_number(value) for value in expenses.values())

    async def get_total_assets(self) -> float:
        data = await self.get_data()
        return to_number(data.total_assets_value) if data else 0.0

    async def get_total_debts(self) -> float:
        data = await self.get_data()
        return to_number(data.total_debt_amount) if data else 0.0

    async def get_net_worth(self) -> float:
        assets = await self.get_total_assets()
        debts = await self.get_total_debts()
        return assets - debts

    async def get_monthly_income(self) -> float:
        data = await self.get_data()
        return to_number(data.monthly_takehome) if data else 0.0

    async def get_cash_flow(self) -> float:
        income = await self.get_monthly_income()
        expenses = await self.get_total_expenses()
        return income - expenses
