from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, List, Optional, Protocol

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from amora.config import Settings
from amora.logging import get_logger
from amora.service.errors import (
    DuplicateIdentity,
    InvalidCredentials,
    InvalidToken,
    NotFoundError,
    Unauthorized,
    ValidationError,
)
from amora.service.revocation import RevocationRegistry
from amora.service.tokens import TokenCodec
from amora.storage.errors import ConstraintViolation
from amora.storage.models import (
    Gender,
    GeoPoint,
    Identity,
    SearchPreferences,
    utcnow,
)

logger = get_logger(__name__)

PROFILE_FIELDS = ("first_name", "last_name", "gender", "bio", "interests", "photos")


class IdentityStore(Protocol):
    def find_by_email(self, email: str) -> Optional[Identity]: ...

    def find_by_id(self, identity_id: str) -> Optional[Identity]: ...

    def create(self, identity: Identity) -> Identity: ...

    def update(self, identity: Identity) -> Optional[Identity]: ...

    def delete(self, identity_id: str) -> bool: ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class AuthContext:
    """Who is calling: resolved once per request from the bearer token."""

    identity_id: str
    email: str
    access_token: str
    identity: Identity


class SessionManager:
    """Registration, login, token rotation and logout.

    The only session state is ``Identity.refresh_token``: a non-null value is
    the one refresh token that may still be exchanged, and every issuance
    overwrites it. Access tokens are stateless until revoked.
    """

    def __init__(
        self,
        store: IdentityStore,
        tokens: TokenCodec,
        revocations: RevocationRegistry,
        settings: Settings,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.revocations = revocations
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger

    async def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        birth_date: date,
        gender: Gender,
        location: GeoPoint,
        bio: Optional[str] = None,
        interests: Optional[List[str]] = None,
        photos: Optional[List[str]] = None,
        preferences: Optional[SearchPreferences] = None,
    ) -> tuple[Identity, TokenPair]:
        if self.store.find_by_email(email):
            raise DuplicateIdentity("User already exists", detail={"field": "email"})
        identity = Identity.new(
            email=email,
            password_hash=self._hash_password(password),
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            gender=gender,
            location=location,
            bio=bio,
            interests=interests,
            photos=photos,
            preferences=preferences,
        )
        try:
            identity = self.store.create(identity)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration for the same email
            raise DuplicateIdentity("User already exists", detail=exc.detail) from exc
        identity, pair = self._rotate(identity)
        self.logger.info("identity_registered", identity_id=identity.id)
        return identity, pair

    async def login(self, email: str, password: str) -> tuple[Identity, TokenPair]:
        identity = self.store.find_by_email(email)
        if not identity or not self.verify_password(identity, password):
            self.logger.info("login_failed")
            raise InvalidCredentials("Invalid credentials")
        identity, pair = self._rotate(identity, last_active=utcnow())
        self.logger.info("login_succeeded", identity_id=identity.id)
        return identity, pair

    async def refresh(self, refresh_token: str) -> TokenPair:
        claims = self.tokens.verify_refresh_token(refresh_token)
        identity = self.store.find_by_id(claims.identity_id)
        if identity is None or identity.refresh_token != refresh_token:
            self.logger.info(
                "refresh_token_rejected",
                identity_id=claims.identity_id,
                reason="missing_identity" if identity is None else "stale_token",
            )
            raise InvalidToken("Invalid refresh token")
        _, pair = self._rotate(identity)
        return pair

    async def logout(self, ctx: AuthContext) -> None:
        await self.revocations.revoke(
            ctx.access_token, self.settings.access_token_ttl_seconds
        )
        current = self.store.find_by_id(ctx.identity_id)
        if current is not None:
            self.store.update(replace(current, refresh_token=None, updated_at=utcnow()))
        self.logger.info("logout", identity_id=ctx.identity_id)

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise Unauthorized("Unauthorized - No token provided")
        if await self.revocations.is_revoked(token):
            raise Unauthorized("Unauthorized - Token is invalid")
        try:
            claims = self.tokens.verify_access_token(token)
        except InvalidToken:
            raise Unauthorized("Unauthorized - Invalid token") from None
        identity = self.store.find_by_id(claims.identity_id)
        if identity is None:
            raise Unauthorized("Unauthorized - User not found")
        return AuthContext(
            identity_id=identity.id,
            email=claims.email,
            access_token=token,
            identity=identity,
        )

    async def update_profile(self, ctx: AuthContext, changes: dict[str, Any]) -> Identity:
        """Apply a partial profile update.

        ``changes`` holds only the fields the caller sent. ``preferences`` is a
        partial mapping merged over the stored preferences; ``location`` is a
        :class:`GeoPoint` that replaces the stored one.
        """
        current = self.store.find_by_id(ctx.identity_id)
        if current is None:
            raise NotFoundError("User not found")
        updated = apply_profile_changes(current, changes)
        stored = self.store.update(updated)
        if stored is None:
            raise NotFoundError("User not found")
        self.logger.info(
            "profile_updated", identity_id=stored.id, fields=sorted(changes)
        )
        return stored

    async def delete_account(self, ctx: AuthContext) -> None:
        await self.revocations.revoke(
            ctx.access_token, self.settings.access_token_ttl_seconds
        )
        if not self.store.delete(ctx.identity_id):
            raise NotFoundError("User not found")
        self.logger.info("account_deleted", identity_id=ctx.identity_id)

    def verify_password(self, identity: Identity, password: str) -> bool:
        try:
            return self._pwd_hasher.verify(identity.password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            self.logger.warning("password_verification_failed", identity_id=identity.id)
            return False

    def _hash_password(self, password: str) -> str:
        return self._pwd_hasher.hash(password)

    def _rotate(
        self, identity: Identity, **changes: Any
    ) -> tuple[Identity, TokenPair]:
        pair = TokenPair(
            access_token=self.tokens.issue_access_token(identity.id, identity.email),
            refresh_token=self.tokens.issue_refresh_token(identity.id),
        )
        updated = replace(
            identity, refresh_token=pair.refresh_token, updated_at=utcnow(), **changes
        )
        stored = self.store.update(updated)
        if stored is None:
            raise InvalidToken("Invalid refresh token")
        return stored, pair

    def _extract_bearer(self, header: Optional[str]) -> Optional[str]:
        if not header:
            return None
        if not header.lower().startswith("bearer "):
            return None
        return header.split(" ", 1)[1].strip() or None


def apply_profile_changes(identity: Identity, changes: dict[str, Any]) -> Identity:
    """Return ``identity`` with ``changes`` applied; the input is not mutated."""
    fields: dict[str, Any] = {
        name: changes[name] for name in PROFILE_FIELDS if name in changes
    }
    if "gender" in fields:
        fields["gender"] = Gender(fields["gender"])
    if "location" in changes:
        fields["location"] = changes["location"]
    if changes.get("preferences"):
        prefs = dict(changes["preferences"])
        if "gender_preference" in prefs:
            prefs["gender_preference"] = [Gender(g) for g in prefs["gender_preference"]]
        merged = replace(identity.preferences, **prefs)
        if merged.min_age > merged.max_age:
            raise ValidationError(
                "min_age cannot exceed max_age",
                detail={"errors": [{"field": "preferences", "message": "min_age cannot exceed max_age"}]},
            )
        fields["preferences"] = merged
    return replace(identity, updated_at=utcnow(), **fields)