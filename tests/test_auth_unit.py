"""Unit tests for the session manager.

Tests for:
- Registration and duplicate detection
- Login and credential checks
- Refresh token rotation
- Logout and access-token revocation
- Bearer authentication
- Profile updates and account deletion
"""

from datetime import date

import pytest

from amora.config import Settings
from amora.service.auth import SessionManager, apply_profile_changes
from amora.service.errors import (
    DuplicateIdentity,
    InvalidCredentials,
    InvalidToken,
    Unauthorized,
    ValidationError,
)
from amora.service.revocation import RevocationRegistry
from amora.service.tokens import TokenCodec
from amora.storage.errors import ConstraintViolation
from amora.storage.memory import MemoryStore
from amora.storage.models import Gender, GeoPoint, SearchPreferences


@pytest.fixture
def settings():
    return Settings(
        jwt_access_secret="Access-Secret_for-Automation-Only-123456789!",
        jwt_refresh_secret="Refresh-Secret_for-Automation-Only-987654321!",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=7 * 24 * 60,
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def auth_service(memory_store, settings, clock):
    tokens = TokenCodec.from_settings(settings, clock=clock)
    return SessionManager(
        memory_store, tokens, RevocationRegistry(clock=clock), settings
    )


async def _register(auth_service, email="ana@example.com", password="Sup3rSecret!"):
    return await auth_service.register(
        email=email,
        password=password,
        first_name="Ana",
        last_name="Lopez",
        birth_date=date(1994, 5, 1),
        gender=Gender.FEMALE,
        location=GeoPoint(longitude=2.35, latitude=48.85),
    )


class TestRegister:
    async def test_register_stores_hash_and_refresh_token(self, auth_service, memory_store):
        identity, pair = await _register(auth_service)

        stored = memory_store.find_by_id(identity.id)
        assert stored.password_hash != "Sup3rSecret!"
        assert stored.password_hash.startswith("$argon2id$")
        assert stored.refresh_token == pair.refresh_token
        assert stored.preferences == SearchPreferences()

    async def test_duplicate_email_rejected_case_insensitively(self, auth_service):
        await _register(auth_service, email="ana@example.com")

        with pytest.raises(DuplicateIdentity):
            await _register(auth_service, email="  ANA@Example.com ")

    async def test_store_constraint_race_maps_to_duplicate(self, auth_service, memory_store):
        """A unique violation from the store surfaces as DuplicateIdentity."""

        def _racing_create(identity):
            raise ConstraintViolation("email already exists", {"field": "email"})

        memory_store.create = _racing_create
        with pytest.raises(DuplicateIdentity):
            await _register(auth_service)


class TestLogin:
    async def test_login_returns_new_distinct_pair(self, auth_service, memory_store):
        identity, registered = await _register(auth_service)

        _, pair = await auth_service.login("ana@example.com", "Sup3rSecret!")

        assert pair.access_token != registered.access_token
        assert pair.refresh_token != registered.refresh_token
        assert memory_store.find_by_id(identity.id).refresh_token == pair.refresh_token

    async def test_login_updates_last_active(self, auth_service, memory_store):
        identity, _ = await _register(auth_service)
        before = memory_store.find_by_id(identity.id).last_active

        await auth_service.login("ana@example.com", "Sup3rSecret!")

        assert memory_store.find_by_id(identity.id).last_active >= before

    async def test_wrong_password_and_unknown_email_look_the_same(self, auth_service):
        await _register(auth_service)

        with pytest.raises(InvalidCredentials) as wrong_password:
            await auth_service.login("ana@example.com", "not-the-password")
        with pytest.raises(InvalidCredentials) as unknown_email:
            await auth_service.login("nobody@example.com", "Sup3rSecret!")

        assert wrong_password.value.message == unknown_email.value.message

    async def test_corrupt_hash_is_a_failed_login(self, auth_service, memory_store):
        from dataclasses import replace

        identity, _ = await _register(auth_service)
        memory_store.update(replace(identity, password_hash="not-a-hash"))

        with pytest.raises(InvalidCredentials):
            await auth_service.login("ana@example.com", "Sup3rSecret!")


class TestRefresh:
    async def test_rotation_invalidates_previous_refresh_token(self, auth_service):
        _, registered = await _register(auth_service)
        _, first = await auth_service.login("ana@example.com", "Sup3rSecret!")

        second = await auth_service.refresh(first.refresh_token)

        with pytest.raises(InvalidToken):
            await auth_service.refresh(first.refresh_token)
        with pytest.raises(InvalidToken):
            await auth_service.refresh(registered.refresh_token)
        third = await auth_service.refresh(second.refresh_token)
        assert third.refresh_token != second.refresh_token

    async def test_refresh_for_deleted_identity_rejected(self, auth_service, memory_store):
        identity, pair = await _register(auth_service)
        memory_store.delete(identity.id)

        with pytest.raises(InvalidToken):
            await auth_service.refresh(pair.refresh_token)

    async def test_access_token_is_not_a_refresh_token(self, auth_service):
        _, pair = await _register(auth_service)

        with pytest.raises(InvalidToken):
            await auth_service.refresh(pair.access_token)


class TestAuthenticate:
    async def test_valid_bearer_yields_context(self, auth_service):
        identity, pair = await _register(auth_service)

        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")

        assert ctx.identity_id == identity.id
        assert ctx.email == "ana@example.com"
        assert ctx.access_token == pair.access_token
        assert ctx.identity.first_name == "Ana"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer ", "Basic dXNlcjpwYXNz"])
    async def test_missing_or_malformed_header(self, auth_service, header):
        with pytest.raises(Unauthorized) as exc:
            await auth_service.authenticate(header)
        assert exc.value.message == "Unauthorized - No token provided"

    async def test_expired_access_token_rejected(self, auth_service, clock):
        _, pair = await _register(auth_service)
        clock.advance(15 * 60)

        with pytest.raises(Unauthorized) as exc:
            await auth_service.authenticate(f"Bearer {pair.access_token}")
        assert exc.value.message == "Unauthorized - Invalid token"

    async def test_deleted_identity_rejected(self, auth_service, memory_store):
        identity, pair = await _register(auth_service)
        memory_store.delete(identity.id)

        with pytest.raises(Unauthorized) as exc:
            await auth_service.authenticate(f"Bearer {pair.access_token}")
        assert exc.value.message == "Unauthorized - User not found"


class TestLogout:
    async def test_logout_revokes_access_and_clears_refresh(self, auth_service, memory_store):
        identity, pair = await _register(auth_service)
        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")

        await auth_service.logout(ctx)

        assert memory_store.find_by_id(identity.id).refresh_token is None
        with pytest.raises(Unauthorized) as exc:
            await auth_service.authenticate(f"Bearer {pair.access_token}")
        assert exc.value.message == "Unauthorized - Token is invalid"
        with pytest.raises(InvalidToken):
            await auth_service.refresh(pair.refresh_token)

    async def test_revocation_lapses_with_access_ttl(self, auth_service, clock):
        """The registry entry lives exactly as long as an access token."""
        _, pair = await _register(auth_service)
        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")
        await auth_service.logout(ctx)

        clock.advance(15 * 60)

        assert await auth_service.revocations.is_revoked(pair.access_token) is False


class TestProfile:
    async def test_update_merges_preferences_and_replaces_location(self, auth_service):
        _, pair = await _register(auth_service)
        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")

        updated = await auth_service.update_profile(
            ctx,
            {
                "bio": "New bio",
                "location": GeoPoint(longitude=-3.7, latitude=40.4),
                "preferences": {"max_age": 40, "gender_preference": ["male"]},
            },
        )

        assert updated.bio == "New bio"
        assert updated.location == GeoPoint(longitude=-3.7, latitude=40.4)
        assert updated.preferences.min_age == 18
        assert updated.preferences.max_age == 40
        assert updated.preferences.gender_preference == [Gender.MALE]

    def test_apply_changes_does_not_mutate_input(self, memory_store):
        from amora.storage.models import Identity

        identity = Identity.new(
            email="a@example.com",
            password_hash="x",
            first_name="Ana",
            last_name="Lopez",
            birth_date=date(1990, 1, 1),
            gender=Gender.FEMALE,
            location=GeoPoint(0.0, 0.0),
        )

        updated = apply_profile_changes(identity, {"first_name": "Bea"})

        assert identity.first_name == "Ana"
        assert updated.first_name == "Bea"

    async def test_merged_age_range_must_stay_ordered(self, auth_service):
        _, pair = await _register(auth_service)
        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")

        with pytest.raises(ValidationError):
            await auth_service.update_profile(ctx, {"preferences": {"min_age": 150}})


class TestDeleteAccount:
    async def test_delete_removes_identity_and_revokes_token(self, auth_service, memory_store):
        identity, pair = await _register(auth_service)
        ctx = await auth_service.authenticate(f"Bearer {pair.access_token}")

        await auth_service.delete_account(ctx)

        assert memory_store.find_by_id(identity.id) is None
        assert await auth_service.revocations.is_revoked(pair.access_token) is True
