import unittest
from datetime import datetime, timezone

from domain.errors import InvalidBalanceError
from domain.models import Profile, SubscriptionTier, parse_timestamp, validate_balance


def make_profile(**overrides):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    values = dict(
        identity_id="user-1",
        display_name="Asha",
        email="asha@example.in",
        balance=1_000_000,
        created_at=created,
        last_login=created,
    )
    values.update(overrides)
    return Profile(**values)


class ValidateBalanceTests(unittest.TestCase):
    def test_accepts_non_negative_integers(self):
        self.assertEqual(validate_balance(0), 0)
        self.assertEqual(validate_balance(250_000), 250_000)

    def test_rejects_negative_and_non_integer_values(self):
        for value in (-1, 10.5, 100.0, "100", None, True):
            with self.subTest(value=value):
                with self.assertRaises(InvalidBalanceError):
                    validate_balance(value)


class ProfileMergeTests(unittest.TestCase):
    def test_merge_overwrites_only_supplied_keys(self):
        profile = make_profile(risk_tolerance="moderate")
        merged = profile.merged({"onboarding_completed": True})

        self.assertEqual(merged.risk_tolerance, "moderate")
        self.assertTrue(merged.onboarding_completed)
        self.assertEqual(merged.balance, profile.balance)

    def test_merge_is_idempotent(self):
        partial = {"investment_goals": "retirement", "monthly_income": "1-2 lakh"}
        once = make_profile().merged(partial)
        twice = once.merged(partial)
        self.assertEqual(once, twice)

    def test_merge_coerces_sectors_and_tier(self):
        merged = make_profile().merged(
            {"preferred_sectors": ["IT", "Banking", "IT"], "subscription_tier": "pro"}
        )
        self.assertEqual(merged.preferred_sectors, frozenset({"IT", "Banking"}))
        self.assertIs(merged.subscription_tier, SubscriptionTier.PRO)

    def test_merge_rejects_unknown_fields_and_rekeying(self):
        profile = make_profile()
        with self.assertRaises(ValueError):
            profile.merged({"favourite_colour": "green"})
        with self.assertRaises(ValueError):
            profile.merged({"identity_id": "user-2"})
        with self.assertRaises(ValueError):
            profile.merged({"preferred_sectors": "IT"})

    def test_merge_rejects_invalid_balance(self):
        with self.assertRaises(InvalidBalanceError):
            make_profile().merged({"balance": -5})

    def test_unknown_tier_is_rejected(self):
        with self.assertRaises(ValueError):
            make_profile().merged({"subscription_tier": "platinum"})

    def test_required_fields_cannot_be_cleared(self):
        profile = make_profile()
        for key in ("display_name", "email", "created_at", "last_login", "onboarding_completed"):
            with self.subTest(key=key):
                with self.assertRaises(ValueError):
                    profile.merged({key: None})

    def test_optional_fields_can_be_cleared(self):
        profile = make_profile(risk_tolerance="moderate")
        self.assertIsNone(profile.merged({"risk_tolerance": None}).risk_tolerance)

    def test_timestamps_are_parsed_or_rejected(self):
        merged = make_profile().merged({"completed_at": "2024-01-02T10:30:00Z"})
        self.assertEqual(merged.completed_at, datetime(2024, 1, 2, 10, 30, tzinfo=timezone.utc))

        for value in (1704191400, "soon", ["2024-01-02"]):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    make_profile().merged({"subscription_expiry": value})


class ParseTimestampTests(unittest.TestCase):
    def test_z_suffix_means_utc(self):
        self.assertEqual(
            parse_timestamp("2024-03-05T08:00:00.123Z"),
            datetime(2024, 3, 5, 8, 0, 0, 123000, tzinfo=timezone.utc),
        )

    def test_datetime_passes_through(self):
        moment = datetime(2024, 3, 5, tzinfo=timezone.utc)
        self.assertIs(parse_timestamp(moment), moment)


if __name__ == "__main__":
    unittest.main()
