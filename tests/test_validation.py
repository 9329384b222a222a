"""
Unit tests for the building blocks below the HTTP layer.

These tests verify:
  - Password strength rules, each switchable through settings
  - Registration and payment format rules
  - Input sanitization (HTML stripping, operator keys)
  - The key-value store primitives: TTL, compare-and-swap, sliding windows
  - The role predicate (Admin satisfies every role check)
  - Argon2 hashing (salted, malformed hashes don't raise)
"""

from decimal import Decimal

import pytest

from portal.config import settings
from portal.kvstore import MemoryKeyValueStore
from portal.models.user import STAFF_ROLES, Role, role_permits
from portal.sanitize import sanitize
from portal.security import hash_password, verify_password
from portal.services.transaction_service import to_cents
from portal.validation import (
    validate_password_strength,
    validate_payment,
    validate_registration,
)


class TestPasswordStrength:

    def test_strong_password(self):
        assert validate_password_strength("Str0ng!Pass") == []

    def test_lists_every_failed_rule(self):
        assert validate_password_strength("") == [
            "Password must be at least 8 characters long",
            "Password must contain at least one uppercase letter",
            "Password must contain at least one lowercase letter",
            "Password must contain at least one number",
            "Password must contain at least one special character",
        ]

    def test_none_is_treated_as_empty(self):
        assert len(validate_password_strength(None)) == 5

    @pytest.mark.parametrize(
        "setting, password",
        [
            ("PASSWORD_REQUIRE_UPPERCASE", "str0ng!pass"),
            ("PASSWORD_REQUIRE_LOWERCASE", "STR0NG!PASS"),
            ("PASSWORD_REQUIRE_NUMBERS", "Strong!Pass"),
            ("PASSWORD_REQUIRE_SYMBOLS", "Str0ngPass"),
        ],
    )
    def test_rules_can_be_disabled(self, monkeypatch, setting, password):
        assert len(validate_password_strength(password)) == 1
        monkeypatch.setattr(settings, setting, False)
        assert validate_password_strength(password) == []

    def test_minimum_length_configurable(self, monkeypatch):
        monkeypatch.setattr(settings, "PASSWORD_MIN_LENGTH", 12)
        assert validate_password_strength("Str0ng!Pass") == [
            "Password must be at least 12 characters long"
        ]


class TestRegistrationRules:

    def test_valid(self):
        assert validate_registration("Jane Doe", "1234567890123", "12345678", "Str0ng!Pass") == []

    @pytest.mark.parametrize("name", ["J", "Jane-Doe", "Jane D0e", "x" * 51])
    def test_bad_full_name(self, name):
        errors = validate_registration(name, "1234567890123", "12345678", "Str0ng!Pass")
        assert errors == ["Full name may only contain letters and spaces (2-50 characters)."]

    def test_blank_full_name(self):
        errors = validate_registration("   ", "1234567890123", "12345678", "Str0ng!Pass")
        assert errors == ["Full name is required."]

    @pytest.mark.parametrize("id_number", ["123456789012", "12345678901234", "123456789012a"])
    def test_bad_id_number(self, id_number):
        errors = validate_registration("Jane Doe", id_number, "12345678", "Str0ng!Pass")
        assert errors == ["ID number must be exactly 13 digits."]

    @pytest.mark.parametrize("account", ["1234567", "1234567890123", "1234567a"])
    def test_bad_account_number(self, account):
        errors = validate_registration("Jane Doe", "1234567890123", account, "Str0ng!Pass")
        assert errors == ["Account number must be 8-12 digits."]

    def test_twelve_digit_account_number(self):
        assert validate_registration(
            "Jane Doe", "1234567890123", "123456789012", "Str0ng!Pass"
        ) == []


class TestPaymentRules:

    def _valid(self, **overrides):
        fields = dict(
            amount=Decimal("150.75"),
            currency="USD",
            recipient_name="Acme Trading",
            recipient_account="9876543210",
            swift_code="ABSAZAJJ",
            provider="SWIFT",
        )
        fields.update(overrides)
        return validate_payment(**fields)

    def test_valid(self):
        assert self._valid() == []
        assert self._valid(swift_code="ABSAZAJJXXX") == []

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("NaN"), None])
    def test_bad_amount(self, amount):
        assert self._valid(amount=amount) == ["Amount must be a valid number greater than 0"]

    @pytest.mark.parametrize("swift", ["ABSAZAJ", "ABSAZAJJX", "1BSAZAJJ", "absazajj"])
    def test_bad_swift(self, swift):
        assert self._valid(swift_code=swift) == [
            "Invalid SWIFT code format. Example: ABSAZAJJ or ABSAZAJJXXX"
        ]

    def test_description_length(self):
        assert self._valid(description="x" * 256) == [
            "Description must not exceed 255 characters"
        ]

    def test_to_cents(self):
        assert to_cents(Decimal("150.75")) == 15075
        assert to_cents(Decimal("0.10")) == 10
        assert to_cents(10.5) == 1050
        assert to_cents(Decimal("1000000")) == 100_000_000


class TestSanitize:

    def test_strips_tags_and_script_content(self):
        assert sanitize("<script>alert(1)</script>Hello <b>world</b>  ") == "Hello world"

    def test_unclosed_script_dropped(self):
        assert sanitize("Hi<script>alert(1)") == "Hi"

    def test_operator_keys_dropped_recursively(self):
        cleaned = sanitize(
            {
                "accountNumber": {"$gt": ""},
                "$where": "1 == 1",
                "profile.role": "Admin",
                "items": [{"$ne": 1, "name": "<i>x</i>"}],
            }
        )
        assert cleaned == {"accountNumber": {}, "items": [{"name": "x"}]}

    def test_non_strings_untouched(self):
        assert sanitize({"amount": Decimal("1.50"), "flag": True, "none": None}) == {
            "amount": Decimal("1.50"),
            "flag": True,
            "none": None,
        }

    def test_input_not_mutated(self):
        original = {"name": "<b>x</b>", "$gt": 1}
        sanitize(original)
        assert original == {"name": "<b>x</b>", "$gt": 1}


class TestKeyValueStore:

    async def test_get_set_delete(self):
        store = MemoryKeyValueStore()
        await store.set("k", {"a": 1})
        assert await store.get("k") == {"a": 1}
        assert await store.delete("k") is True
        assert await store.get("k") is None
        assert await store.delete("k") is False

    async def test_ttl_expiry(self):
        store = MemoryKeyValueStore()
        await store.set("k", "v", ttl=0)
        assert await store.get("k") is None

    async def test_compare_and_swap(self):
        store = MemoryKeyValueStore()
        await store.set("k", {"used": False})

        assert await store.compare_and_swap("k", {"used": False}, {"used": True}) is True
        assert await store.compare_and_swap("k", {"used": False}, {"used": True}) is False
        assert await store.get("k") == {"used": True}
        assert await store.compare_and_swap("missing", None, 1) is False

    async def test_sliding_window(self):
        store = MemoryKeyValueStore()
        results = [await store.hit_window("w", 3, 60, now=100 + i) for i in range(3)]
        assert all(allowed for allowed, _ in results)

        allowed, retry_after = await store.hit_window("w", 3, 60, now=110)
        assert allowed is False
        # The oldest hit (t=100) leaves the window at t=160
        assert retry_after == pytest.approx(50)

        # Once the oldest hit has aged out a new one is admitted
        allowed, _ = await store.hit_window("w", 3, 60, now=160.5)
        assert allowed is True

    async def test_rejected_hits_not_recorded(self):
        store = MemoryKeyValueStore()
        await store.hit_window("w", 1, 60, now=0)
        for t in range(1, 50):
            await store.hit_window("w", 1, 60, now=t)
        allowed, _ = await store.hit_window("w", 1, 60, now=60.5)
        assert allowed is True

    async def test_expired_keys_swept_on_write(self):
        """Keys nobody reads again are dropped by the next write after they expire."""
        store = MemoryKeyValueStore(sweep_interval=0)
        for i in range(1000):
            await store.set(f"csrf:{i}", "token", ttl=0)
        await store.set("keep", "value")
        assert len(store) == 1
        assert await store.get("keep") == "value"

    async def test_sweep_runs_at_most_once_per_interval(self):
        store = MemoryKeyValueStore(sweep_interval=3600)
        await store.set("first", "v", ttl=0)
        await store.set("second", "v", ttl=0)
        # The first write swept an empty map; the second is inside the interval
        await store.set("third", "v")
        assert len(store) == 3

    async def test_sweep_covers_rate_limit_windows(self):
        store = MemoryKeyValueStore(sweep_interval=0)
        await store.hit_window("ratelimit:login:10.0.0.1", 5, 60, now=0)
        await store.hit_window("ratelimit:login:10.0.0.2", 5, 60, now=61)
        assert len(store) == 1


class TestRoles:

    def test_admin_satisfies_everything(self):
        assert role_permits(Role.ADMIN, [Role.CUSTOMER])
        assert role_permits(Role.ADMIN, [])

    def test_staff(self):
        assert role_permits(Role.EMPLOYEE, STAFF_ROLES)
        assert not role_permits(Role.CUSTOMER, STAFF_ROLES)
        assert not role_permits(Role.EMPLOYEE, [Role.ADMIN])


class TestHashing:

    def test_salted(self):
        first = hash_password("Str0ng!Pass")
        second = hash_password("Str0ng!Pass")
        assert first != second
        assert first.startswith("$argon2id$")
        assert verify_password("Str0ng!Pass", first)
        assert verify_password("Str0ng!Pass", second)
        assert not verify_password("Wr0ng!Pass", first)

    def test_malformed_hash_is_a_mismatch(self):
        assert verify_password("Str0ng!Pass", "not-a-hash") is False
