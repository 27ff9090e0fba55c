from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from typing import Any, List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from amora.storage.models import Gender, GeoPoint, Identity, NearbyMatch, SearchPreferences

MAX_INTERESTS = 50
MAX_PHOTOS = 20
MAX_PHOTO_URL_LENGTH = 2048


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize after stripping zero-width and bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    bidi_overrides = set(chr(c) for c in range(0x202A, 0x202F))
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in cleaned if c not in bidi_overrides)
    return unicodedata.normalize("NFKC", cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_PHOTO_URL = re.compile(r"^https?://\S+$", re.IGNORECASE)


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    if len(normalized) < 3:
        raise ValueError("email address too short")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64:
        raise ValueError("email local part too long")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = _normalize_unicode(value).strip()
    if len(value) < 2:
        raise ValueError("must be at least 2 characters")
    if len(value) > 50:
        raise ValueError("must be at most 50 characters")
    return value


def _validate_interests(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    if len(value) > MAX_INTERESTS:
        raise ValueError(f"at most {MAX_INTERESTS} interests allowed")
    return [item.strip() for item in value if item.strip()]


def _validate_photos(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    if len(value) > MAX_PHOTOS:
        raise ValueError(f"at most {MAX_PHOTOS} photos allowed")
    for url in value:
        if len(url) > MAX_PHOTO_URL_LENGTH or not _PHOTO_URL.match(url):
            raise ValueError("Invalid URL format")
    return value


class LocationIn(BaseModel):
    """GeoJSON-style point: ``coordinates`` is ``[longitude, latitude]``."""

    type: Literal["Point"] = "Point"
    coordinates: Tuple[float, float]

    @field_validator("coordinates")
    @classmethod
    def _validate_bounds(cls, value: Tuple[float, float]) -> Tuple[float, float]:
        longitude, latitude = value
        if not -180.0 <= longitude <= 180.0:
            raise ValueError("longitude must be between -180 and 180")
        if not -90.0 <= latitude <= 90.0:
            raise ValueError("latitude must be between -90 and 90")
        return value

    def to_point(self) -> GeoPoint:
        return GeoPoint(longitude=self.coordinates[0], latitude=self.coordinates[1])


class PreferencesIn(BaseModel):
    min_age: Optional[int] = Field(default=None, ge=18, le=100)
    max_age: Optional[int] = Field(default=None, ge=18, le=100)
    distance: Optional[float] = Field(default=None, ge=1, le=1000)
    gender_preference: Optional[List[Gender]] = None

    @model_validator(mode="after")
    def _check_age_range(self):
        if (
            self.min_age is not None
            and self.max_age is not None
            and self.min_age > self.max_age
        ):
            raise ValueError("min_age cannot exceed max_age")
        return self

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller sent, keyed by ``SearchPreferences`` names."""
        sent = self.model_dump(exclude_unset=True)
        if "distance" in sent:
            sent["distance_km"] = sent.pop("distance")
        return {k: v for k, v in sent.items() if v is not None}

    def to_preferences(self) -> SearchPreferences:
        return SearchPreferences(**self.changes())


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    bio: Optional[str] = Field(default=None, max_length=500)
    interests: Optional[List[str]] = None
    photos: Optional[List[str]] = None
    location: LocationIn
    preferences: Optional[PreferencesIn] = None

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("first_name", "last_name")
    @classmethod
    def _validate_names(cls, value: str) -> str:
        return _validate_name(value)

    @field_validator("interests")
    @classmethod
    def _check_interests(cls, value):
        return _validate_interests(value)

    @field_validator("photos")
    @classmethod
    def _check_photos(cls, value):
        return _validate_photos(value)

    @field_validator("date_of_birth")
    @classmethod
    def _not_in_future(cls, value: date) -> date:
        if value > date.today():
            raise ValueError("date_of_birth cannot be in the future")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=4096)


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[Gender] = None
    bio: Optional[str] = Field(default=None, max_length=500)
    interests: Optional[List[str]] = None
    photos: Optional[List[str]] = None
    location: Optional[LocationIn] = None
    preferences: Optional[PreferencesIn] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _validate_names(cls, value: Optional[str]) -> Optional[str]:
        return _validate_name(value)

    @field_validator("interests")
    @classmethod
    def _check_interests(cls, value):
        return _validate_interests(value)

    @field_validator("photos")
    @classmethod
    def _check_photos(cls, value):
        return _validate_photos(value)

    def changes(self) -> dict[str, Any]:
        """Sent fields as session-manager changes; explicit nulls are ignored."""
        changes: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "location":
                changes["location"] = value.to_point()
            elif name == "preferences":
                changes["preferences"] = value.changes()
            else:
                changes[name] = value
        return changes


class SearchQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    max_distance: Optional[float] = Field(default=None, gt=0)
    min_age: Optional[int] = Field(default=None, ge=0, le=150)
    max_age: Optional[int] = Field(default=None, ge=0, le=150)
    gender: Optional[Gender] = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def _check_age_range(self):
        if (
            self.min_age is not None
            and self.max_age is not None
            and self.min_age > self.max_age
        ):
            raise ValueError("min_age cannot exceed max_age")
        return self


# responses


class MessageResponse(BaseModel):
    message: str


class UserSummary(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "UserSummary":
        return cls(
            id=identity.id,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
        )


class AuthResponse(BaseModel):
    message: str
    user: UserSummary
    access_token: str
    refresh_token: str


class TokenResponse(BaseModel):
    message: str
    access_token: str
    refresh_token: str


class LocationOut(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]


class PreferencesOut(BaseModel):
    min_age: int
    max_age: int
    distance: float
    gender_preference: List[Gender]


class ProfileOut(BaseModel):
    """Public view of an identity; credentials and session state are never included."""

    id: str
    email: str
    first_name: str
    last_name: str
    date_of_birth: date
    gender: Gender
    bio: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    photos: List[str] = Field(default_factory=list)
    location: LocationOut
    preferences: PreferencesOut
    last_active: datetime
    is_verified: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_identity(cls, identity: Identity) -> "ProfileOut":
        prefs = identity.preferences
        return cls(
            id=identity.id,
            email=identity.email,
            first_name=identity.first_name,
            last_name=identity.last_name,
            date_of_birth=identity.birth_date,
            gender=identity.gender,
            bio=identity.bio,
            interests=list(identity.interests),
            photos=list(identity.photos),
            location=LocationOut(
                coordinates=[identity.location.longitude, identity.location.latitude]
            ),
            preferences=PreferencesOut(
                min_age=prefs.min_age,
                max_age=prefs.max_age,
                distance=prefs.distance_km,
                gender_preference=list(prefs.gender_preference),
            ),
            last_active=identity.last_active,
            is_verified=identity.is_verified,
            created_at=identity.created_at,
            updated_at=identity.updated_at,
        )


class ProfileResponse(BaseModel):
    message: str
    user: ProfileOut


class SearchResult(ProfileOut):
    distance_km: float

    @classmethod
    def from_match(cls, match: NearbyMatch) -> "SearchResult":
        profile = ProfileOut.from_identity(match.identity)
        return cls(**profile.model_dump(), distance_km=match.distance_km)


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class SearchResponse(BaseModel):
    message: str
    users: List[SearchResult]
    pagination: Pagination


class ErrorResponse(BaseModel):
    message: str
    code: str
    details: Optional[Any] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, Any]
    version: str
    timestamp: datetime
