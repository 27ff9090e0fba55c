from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


@dataclass(frozen=True)
class GeoPoint:
    longitude: float
    latitude: float


@dataclass(frozen=True)
class SearchPreferences:
    min_age: int = 18
    max_age: int = 100
    distance_km: float = 50.0
    gender_preference: List[Gender] = field(default_factory=list)


@dataclass
class Identity:
    """A registered user: credentials, profile, position and session slot.

    ``refresh_token`` holds the only refresh token that is currently valid for
    this identity; issuing a new one overwrites it.
    """

    id: str
    email: str
    password_hash: str
    first_name: str
    last_name: str
    birth_date: date
    gender: Gender
    location: GeoPoint
    bio: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    photos: List[str] = field(default_factory=list)
    preferences: SearchPreferences = field(default_factory=SearchPreferences)
    last_active: datetime = field(default_factory=utcnow)
    is_verified: bool = False
    refresh_token: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        *,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        birth_date: date,
        gender: Gender,
        location: GeoPoint,
        bio: Optional[str] = None,
        interests: Optional[List[str]] = None,
        photos: Optional[List[str]] = None,
        preferences: Optional[SearchPreferences] = None,
    ) -> "Identity":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            birth_date=birth_date,
            gender=Gender(gender),
            location=location,
            bio=bio,
            interests=list(interests or []),
            photos=list(photos or []),
            preferences=preferences or SearchPreferences(),
            last_active=now,
            created_at=now,
            updated_at=now,
        )


@dataclass(frozen=True)
class NearbyMatch:
    identity: Identity
    distance_km: float


def normalize_email(email: str) -> str:
    return email.strip().lower()
