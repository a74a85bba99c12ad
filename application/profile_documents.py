from __future__ import annotations

from typing import Any, Dict, Mapping

from domain.models import TIMESTAMP_FIELDS, Profile, SubscriptionTier, parse_timestamp

# Profile attribute -> document key. The document keys are shared with the
# web client, so they keep its camelCase spelling.
_DOCUMENT_KEYS = {
    "identity_id": "uid",
    "display_name": "name",
    "email": "email",
    "balance": "balance",
    "created_at": "createdAt",
    "last_login": "lastLogin",
    "onboarding_completed": "onboardingCompleted",
    "completed_at": "completedAt",
    "experience": "experience",
    "risk_tolerance": "riskTolerance",
    "investment_goals": "investmentGoals",
    "monthly_income": "monthlyIncome",
    "preferred_sectors": "preferredSectors",
    "subscription_tier": "subscriptionTier",
    "subscription_expiry": "subscriptionExpiry",
}


def _encode_value(attribute: str, value: Any) -> Any:
    if value is None:
        return None
    if attribute in TIMESTAMP_FIELDS:
        return value.isoformat()
    if attribute == "preferred_sectors":
        return sorted(value)
    if attribute == "subscription_tier":
        return SubscriptionTier(value).value
    return value


def encode_partial(partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a (coerced) partial profile update into document keys/values."""

    return {
        _DOCUMENT_KEYS[attribute]: _encode_value(attribute, value)
        for attribute, value in partial.items()
    }


def profile_to_document(profile: Profile) -> Dict[str, Any]:
    document = {}
    for attribute, key in _DOCUMENT_KEYS.items():
        value = getattr(profile, attribute)
        # Optional attributes that were never set are left out entirely.
        if value is None and attribute not in ("identity_id", "display_name", "email"):
            continue
        document[key] = _encode_value(attribute, value)
    return document


def profile_from_document(identity_id: str, document: Mapping[str, Any]) -> Profile:
    """
    Rebuild a `Profile` from its stored document.

    Raises `ValueError`/`KeyError` for documents that are missing required
    keys or hold unparseable timestamps.
    """

    def optional_timestamp(key: str):
        raw = document.get(key)
        return parse_timestamp(raw) if raw is not None else None

    sectors = document.get("preferredSectors")
    tier = document.get("subscriptionTier")

    return Profile(
        identity_id=identity_id,
        display_name=document.get("name") or "",
        email=document.get("email") or "",
        balance=int(document["balance"]),
        created_at=parse_timestamp(document["createdAt"]),
        last_login=parse_timestamp(document.get("lastLogin") or document["createdAt"]),
        onboarding_completed=bool(document.get("onboardingCompleted", False)),
        completed_at=optional_timestamp("completedAt"),
        experience=document.get("experience"),
        risk_tolerance=document.get("riskTolerance"),
        investment_goals=document.get("investmentGoals"),
        monthly_income=document.get("monthlyIncome"),
        preferred_sectors=frozenset(sectors) if sectors is not None else None,
        subscription_tier=SubscriptionTier(tier) if tier else None,
        subscription_expiry=optional_timestamp("subscriptionExpiry"),
    )
