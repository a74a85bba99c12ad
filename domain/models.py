from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .errors import InvalidBalanceError

# Starting balances in whole rupees: 10 lakh and 5 lakh.
SEED_BALANCE_PRIMARY = 1_000_000
SEED_BALANCE_ALT = 500_000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    PRO = "pro"


@dataclass(frozen=True)
class Identity:
    """
    Minimal description of who is using the platform.

    Real identities are issued by the authentication service; demo
    identities are synthesized locally and never leave this process's
    local storage.
    """

    id: str
    email: str
    display_name: str


def validate_balance(value: Any) -> int:
    """Return `value` if it is a usable balance, raise `InvalidBalanceError` otherwise."""

    # bool is an int subclass, but True is not a balance.
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidBalanceError(f"Balance must be a whole number, got {value!r}.")
    if value < 0:
        raise InvalidBalanceError(f"Balance cannot be negative, got {value}.")
    return value


@dataclass(frozen=True)
class Profile:
    """
    Persisted record of a user's virtual balance and preferences.

    There is exactly one profile per identity. The model is independent of
    the storage that holds it (local storage in demo mode, the remote
    document store otherwise).
    """

    identity_id: str
    display_name: str
    email: str
    balance: int
    created_at: datetime
    last_login: datetime
    onboarding_completed: bool = False
    completed_at: Optional[datetime] = None
    experience: Optional[str] = None
    risk_tolerance: Optional[str] = None
    investment_goals: Optional[str] = None
    monthly_income: Optional[str] = None
    preferred_sectors: Optional[FrozenSet[str]] = None
    subscription_tier: Optional[SubscriptionTier] = None
    subscription_expiry: Optional[datetime] = None

    @classmethod
    def field_names(cls) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def coerce_partial(cls, partial: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Validate a partial update and normalise its values.

        Unknown keys and attempts to re-key the profile raise `ValueError`;
        a bad balance raises `InvalidBalanceError`.
        """

        known = cls.field_names()
        coerced: Dict[str, Any] = {}
        for key, value in partial.items():
            if key not in known:
                raise ValueError(f"Unknown profile field: {key}")
            if key == "identity_id":
                raise ValueError("A profile cannot be moved to another identity.")
            coerced[key] = _coerce_value(key, value)
        return coerced

    def merged(self, partial: Mapping[str, Any]) -> "Profile":
        """
        Shallow merge: keys present in `partial` overwrite, the rest stay.

        Merging the same partial twice gives the same profile as merging it
        once.
        """

        return replace(self, **self.coerce_partial(partial))


_REQUIRED_FIELDS = frozenset(
    {"display_name", "email", "created_at", "last_login", "onboarding_completed"}
)
TIMESTAMP_FIELDS = frozenset({"created_at", "last_login", "completed_at", "subscription_expiry"})


def parse_timestamp(value: Any) -> datetime:
    """
    Accept a `datetime` or an ISO-8601 string, including the `Z` suffix
    JavaScript clients write. Anything else raises `ValueError`.
    """

    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a timestamp, got {value!r}.")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _coerce_value(key: str, value: Any) -> Any:
    if key == "balance":
        return validate_balance(value)
    if value is None:
        if key in _REQUIRED_FIELDS:
            raise ValueError(f"{key} cannot be cleared.")
        return None
    if key in TIMESTAMP_FIELDS:
        return parse_timestamp(value)
    if key in ("display_name", "email") and not isinstance(value, str):
        raise ValueError(f"{key} must be a string, got {value!r}.")
    if key == "preferred_sectors":
        if isinstance(value, str):
            raise ValueError("preferred_sectors must be a collection of sector names.")
        return frozenset(str(sector) for sector in value)
    if key == "subscription_tier":
        return SubscriptionTier(value)
    if key == "onboarding_completed":
        return bool(value)
    return value
