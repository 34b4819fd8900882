# src/ifi_bff/session_data.py

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator

from .exceptions import NormalizationError

logger = logging.getLogger(__name__)

Number = Union[int, float, str]

# Collection fields that the backend may hand back as JSON text, with the
# container each must end up as.
COLLECTION_FIELDS: Dict[str, type] = {
    "expenses": dict,
    "subscriptions": list,
    "assets": list,
    "investments": list,
    "debts": list,
    "additional_income": list,
    "linked_accounts": list,
}


def normalize_field(field_name: str, value: Any) -> Any:
    """
    Turns one collection field into its structured form.
    Already-structured values pass through unchanged, so this is idempotent.
    Raises NormalizationError for malformed text or a wrong container type.
    """
    container = COLLECTION_FIELDS[field_name]
    if value is None:
        return container()
    if isinstance(value, (str, bytes)):
        if not value.strip():
            return container()
        try:
            value = json.loads(value)
        except ValueError as e:
            raise NormalizationError(field_name, f"invalid JSON ({e})") from e
        if value is None:
            return container()
    if not isinstance(value, container):
        raise NormalizationError(
            field_name, f"expected {container.__name__}, got {type(value).__name__}"
        )
    return value


def to_number(value: Any) -> float:
    """Lenient numeric coercion: anything that is not a finite number counts as 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


class UserSummary(BaseModel):
    """
    The cached user profile, as stored under ``ifi_user`` in persistent storage.
    ``role`` doubles as the subscription tier.
    """
    model_config = ConfigDict(extra="allow")

    id: Optional[Union[int, str]] = None
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    role: Optional[str] = "free"


class OnboardingRecord(BaseModel):
    """
    A user's financial-onboarding snapshot.
    Scalars keep whatever the backend sent (often numeric strings); collection
    fields are always structured once validated, one field at a time.
    """
    model_config = ConfigDict(extra="allow")

    monthly_takehome: Optional[Number] = None
    total_assets_value: Optional[Number] = None
    total_debt_amount: Optional[Number] = None
    income_source: Optional[str] = None

    expenses: Dict[str, Any] = {}
    subscriptions: List[Any] = []
    assets: List[Any] = []
    investments: List[Any] = []
    debts: List[Any] = []
    additional_income: List[Any] = []
    linked_accounts: List[Any] = []

    @field_validator(*COLLECTION_FIELDS, mode="before")
    @classmethod
    def parse_json_text(cls, v: Any, info) -> Any:
        try:
            return normalize_field(info.field_name, v)
        except NormalizationError as e:
            logger.warning("Onboarding field normalization failed, using empty value: %s", e)
            return COLLECTION_FIELDS[info.field_name]()


class CacheEntry(BaseModel):
    """The single cache slot: record and fetch time are set and cleared together."""
    record: Optional[OnboardingRecord] = None
    fetched_at: Optional[float] = None

    def store(self, record: OnboardingRecord, fetched_at: float) -> None:
        self.record = record
        self.fetched_at = fetched_at

    def clear(self) -> None:
        self.record = None
        self.fetched_at = None

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        if self.record is None or self.fetched_at is None:
            return False
        return (now - self.fetched_at) < ttl_seconds


class GuardAction(str, Enum):
    SKIP = "skip"
    ALLOW = "allow"
    REDIRECT = "redirect"


class GuardDecision(BaseModel):
    """Outcome of the page-entry check for one page load."""
    action: GuardAction
    # Redirect target, or the canonical path of the exempt page on SKIP.
    location: Optional[str] = None
    redirect_count: int = 0
    storage_cleared: bool = False

    @property
    def is_redirect(self) -> bool:
        return self.action is GuardAction.REDIRECT
