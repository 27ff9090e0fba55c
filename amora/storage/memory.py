from __future__ import annotations

import json
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from amora.logging import get_logger
from amora.service.geo import bounding_box, haversine_km, within_birth_bounds
from amora.storage.errors import ConstraintViolation
from amora.storage.models import (
    Gender,
    GeoPoint,
    Identity,
    NearbyMatch,
    SearchPreferences,
    normalize_email,
)


class MemoryStore:
    """In-process identity store with an optional JSON snapshot on disk."""

    def __init__(self, fs_root: str | None = None) -> None:
        self.logger = get_logger(__name__)
        self.identities: Dict[str, Identity] = {}
        # RLock so helpers can be called while a public method holds the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root) if fs_root else None
        if self.fs_root is not None:
            self.fs_root.mkdir(parents=True, exist_ok=True)
            self._load_state()

    def _state_path(self) -> Path:
        assert self.fs_root is not None
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    # identities
    def find_by_email(self, email: str) -> Optional[Identity]:
        normalized = normalize_email(email)
        with self._data_lock:
            return next(
                (i for i in self.identities.values() if i.email == normalized), None
            )

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        with self._data_lock:
            return self.identities.get(identity_id)

    def create(self, identity: Identity) -> Identity:
        with self._data_lock:
            if any(existing.email == identity.email for existing in self.identities.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            self.identities[identity.id] = identity
            self._persist_state()
            return identity

    def update(self, identity: Identity) -> Optional[Identity]:
        with self._data_lock:
            if identity.id not in self.identities:
                return None
            self.identities[identity.id] = identity
            self._persist_state()
            return identity

    def delete(self, identity_id: str) -> bool:
        with self._data_lock:
            if self.identities.pop(identity_id, None) is None:
                return False
            self._persist_state()
            return True

    def find_nearby(
        self,
        origin: GeoPoint,
        max_distance_km: float,
        *,
        exclude_id: Optional[str] = None,
        gender: Optional[Gender] = None,
        born_on_or_before: Optional[datetime] = None,
        born_after: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> Tuple[List[NearbyMatch], int]:
        """Identities within ``max_distance_km`` of ``origin``, nearest first.

        Returns the requested page and the total number of matches.
        """
        min_lat, max_lat, min_lon, max_lon = bounding_box(origin, max_distance_km)
        with self._data_lock:
            candidates = list(self.identities.values())
        matches: List[NearbyMatch] = []
        for identity in candidates:
            if identity.id == exclude_id:
                continue
            if gender is not None and identity.gender != gender:
                continue
            if not within_birth_bounds(identity.birth_date, born_on_or_before, born_after):
                continue
            point = identity.location
            if not (min_lat <= point.latitude <= max_lat and min_lon <= point.longitude <= max_lon):
                continue
            distance = haversine_km(origin, point)
            if distance <= max_distance_km:
                matches.append(NearbyMatch(identity=identity, distance_km=distance))
        matches.sort(key=lambda m: (m.distance_km, m.identity.id))
        return matches[offset : offset + limit], len(matches)

    # persistence
    def _serialize_identity(self, identity: Identity) -> Dict[str, Any]:
        prefs = identity.preferences
        return {
            "id": identity.id,
            "email": identity.email,
            "password_hash": identity.password_hash,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "birth_date": identity.birth_date.isoformat(),
            "gender": identity.gender.value,
            "location": [identity.location.longitude, identity.location.latitude],
            "bio": identity.bio,
            "interests": list(identity.interests),
            "photos": list(identity.photos),
            "preferences": {
                "min_age": prefs.min_age,
                "max_age": prefs.max_age,
                "distance_km": prefs.distance_km,
                "gender_preference": [g.value for g in prefs.gender_preference],
            },
            "last_active": self._serialize_datetime(identity.last_active),
            "is_verified": identity.is_verified,
            "refresh_token": identity.refresh_token,
            "created_at": self._serialize_datetime(identity.created_at),
            "updated_at": self._serialize_datetime(identity.updated_at),
        }

    def _deserialize_identity(self, data: Dict[str, Any]) -> Identity:
        prefs = data.get("preferences") or {}
        longitude, latitude = data["location"]
        return Identity(
            id=data["id"],
            email=data["email"],
            password_hash=data["password_hash"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            birth_date=date.fromisoformat(data["birth_date"]),
            gender=Gender(data["gender"]),
            location=GeoPoint(longitude=longitude, latitude=latitude),
            bio=data.get("bio"),
            interests=list(data.get("interests") or []),
            photos=list(data.get("photos") or []),
            preferences=SearchPreferences(
                min_age=prefs.get("min_age", 18),
                max_age=prefs.get("max_age", 100),
                distance_km=prefs.get("distance_km", 50.0),
                gender_preference=[Gender(g) for g in prefs.get("gender_preference", [])],
            ),
            last_active=self._deserialize_datetime(data["last_active"]),
            is_verified=bool(data.get("is_verified", False)),
            refresh_token=data.get("refresh_token"),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _persist_state(self) -> None:
        if self.fs_root is None:
            return
        state = {
            "identities": [self._serialize_identity(i) for i in self.identities.values()],
        }
        path = self._state_path()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(state))
        tmp_path.replace(path)

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.identities = {
            i["id"]: self._deserialize_identity(i) for i in data.get("identities", [])
        }
        self.logger.info("memory_store_loaded", identities=len(self.identities))
        return True
