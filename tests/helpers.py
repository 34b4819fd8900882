"""Fakes and builders shared by the iFi BFF tests."""
import asyncio
import json
from typing import Any, Dict, List, Optional

import httpx

from ifi_bff.config import Settings
from ifi_bff.storage import ACCESS_TOKEN_KEY, USER_KEY, Storage

API_BASE_URL = "http://api.test/api"

SAMPLE_ONBOARDING_ROW: Dict[str, Any] = {
    "purpose": "budgeting",
    "income_source": "salary",
    "monthly_takehome": "4200",
    "additional_income": json.dumps([{"source": "freelance", "amount": 300}]),
    "expenses": json.dumps({"rent": "1200", "food": "300", "misc": "abc"}),
    "subscriptions": json.dumps([{"name": "Streaming", "cost": 15}]),
    "assets": json.dumps([{"type": "savings", "value": 1000}]),
    "total_assets_value": "1000",
    "investments": "[]",
    "debts": json.dumps([{"type": "credit_card", "balance": 400}]),
    "total_debt_amount": "400",
    "selected_plan": "premium",
}

SAMPLE_USER: Dict[str, Any] = {
    "id": 7,
    "email": "jordan@example.com",
    "firstName": "Jordan",
    "lastName": "Rivera",
    "role": "premium",
}


class FakeBackend:
    """Stands in for the iFi backend API behind an httpx.MockTransport."""

    def __init__(self):
        self.onboarding_status = 200
        self.onboarding_payload: Any = dict(SAMPLE_ONBOARDING_ROW)
        self.user_status = 200
        self.user_payload: Any = {"success": True, "user": dict(SAMPLE_USER)}
        self.logout_status = 200
        self.delay = 0.0
        self.requests: List[httpx.Request] = []

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def onboarding_calls(self) -> List[httpx.Request]:
        return self.calls("/api/user/onboarding-data")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        path = request.url.path
        if path == "/api/user/onboarding-data":
            return httpx.Response(self.onboarding_status, json=self.onboarding_payload)
        if path == "/api/auth/me":
            return httpx.Response(self.user_status, json=self.user_payload)
        if path == "/api/auth/logout":
            return httpx.Response(self.logout_status, json={"success": True})
        return httpx.Response(404, json={"message": "not found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "API_BASE_URL": API_BASE_URL,
        "DATA_SERVICE_POLL_INTERVAL_MS": 10,
    }
    values.update(overrides)
    return Settings(**values)


def signed_in_storage(user: Optional[Dict[str, Any]] = None, token: str = "token-abc") -> Storage:
    return Storage({
        ACCESS_TOKEN_KEY: token,
        USER_KEY: json.dumps(user if user is not None else SAMPLE_USER),
    })


