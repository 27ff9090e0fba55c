from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from amora.logging import get_logger
from amora.service.geo import EARTH_RADIUS_KM, bounding_box
from amora.storage.errors import ConstraintViolation
from amora.storage.models import (
    Gender,
    GeoPoint,
    Identity,
    NearbyMatch,
    SearchPreferences,
    normalize_email,
)

_IDENTITY_COLUMNS = (
    "id",
    "email",
    "password_hash",
    "first_name",
    "last_name",
    "birth_date",
    "gender",
    "bio",
    "interests",
    "photos",
    "longitude",
    "latitude",
    "pref_min_age",
    "pref_max_age",
    "pref_distance_km",
    "pref_gender",
    "last_active",
    "is_verified",
    "refresh_token",
    "created_at",
    "updated_at",
)

_DISTANCE_SQL = f"""
    2 * {EARTH_RADIUS_KM} * asin(least(1.0, sqrt(
        power(sin(radians(latitude - %(lat)s) / 2), 2)
        + cos(radians(%(lat)s)) * cos(radians(latitude))
          * power(sin(radians(longitude - %(lon)s) / 2), 2)
    )))
"""


class PostgresStore:
    """Postgres-backed identity store."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_identity`` table and its indexes if missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_identity (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    birth_date DATE NOT NULL,
                    gender TEXT NOT NULL,
                    bio TEXT,
                    interests JSONB NOT NULL DEFAULT '[]'::jsonb,
                    photos JSONB NOT NULL DEFAULT '[]'::jsonb,
                    longitude DOUBLE PRECISION NOT NULL,
                    latitude DOUBLE PRECISION NOT NULL,
                    pref_min_age INTEGER NOT NULL DEFAULT 18,
                    pref_max_age INTEGER NOT NULL DEFAULT 100,
                    pref_distance_km DOUBLE PRECISION NOT NULL DEFAULT 50,
                    pref_gender JSONB NOT NULL DEFAULT '[]'::jsonb,
                    last_active TIMESTAMPTZ NOT NULL DEFAULT now(),
                    is_verified BOOLEAN NOT NULL DEFAULT false,
                    refresh_token TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS app_identity_position_idx ON app_identity (latitude, longitude)"
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    # identities
    def find_by_email(self, email: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_identity WHERE email = %s",
                (normalize_email(email),),
            ).fetchone()
        return self._identity_from_row(row) if row else None

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_identity WHERE id = %s", (identity_id,)
            ).fetchone()
        return self._identity_from_row(row) if row else None

    def create(self, identity: Identity) -> Identity:
        params = self._identity_params(identity)
        columns = ", ".join(_IDENTITY_COLUMNS)
        placeholders = ", ".join(f"%({name})s" for name in _IDENTITY_COLUMNS)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO app_identity ({columns}) VALUES ({placeholders})",
                    params,
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return identity

    def update(self, identity: Identity) -> Optional[Identity]:
        params = self._identity_params(identity)
        assignments = ", ".join(
            f"{name} = %({name})s" for name in _IDENTITY_COLUMNS if name != "id"
        )
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    f"UPDATE app_identity SET {assignments} WHERE id = %(id)s",
                    params,
                )
                updated = cur.rowcount
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return identity if updated else None

    def delete(self, identity_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM app_identity WHERE id = %s", (identity_id,))
            return cur.rowcount > 0

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
        min_lat, max_lat, min_lon, max_lon = bounding_box(origin, max_distance_km)
        clauses = [
            "latitude BETWEEN %(min_lat)s AND %(max_lat)s",
            "longitude BETWEEN %(min_lon)s AND %(max_lon)s",
        ]
        params: Dict[str, Any] = {
            "lat": origin.latitude,
            "lon": origin.longitude,
            "min_lat": min_lat,
            "max_lat": max_lat,
            "min_lon": min_lon,
            "max_lon": max_lon,
            "max_distance": max_distance_km,
            "offset": offset,
            "limit": limit,
        }
        if exclude_id is not None:
            clauses.append("id <> %(exclude_id)s")
            params["exclude_id"] = exclude_id
        if gender is not None:
            clauses.append("gender = %(gender)s")
            params["gender"] = Gender(gender).value
        if born_on_or_before is not None:
            clauses.append("(birth_date::timestamp AT TIME ZONE 'UTC') <= %(born_on_or_before)s")
            params["born_on_or_before"] = born_on_or_before
        if born_after is not None:
            clauses.append("(birth_date::timestamp AT TIME ZONE 'UTC') > %(born_after)s")
            params["born_after"] = born_after
        candidates = f"""
            WITH candidates AS (
                SELECT *, {_DISTANCE_SQL} AS distance_km
                FROM app_identity
                WHERE {" AND ".join(clauses)}
            )
        """
        with self._connect() as conn:
            rows = conn.execute(
                candidates
                + """
                SELECT *, count(*) OVER () AS total_count
                FROM candidates
                WHERE distance_km <= %(max_distance)s
                ORDER BY distance_km, id
                OFFSET %(offset)s LIMIT %(limit)s
                """,
                params,
            ).fetchall()
            if rows:
                total = int(rows[0]["total_count"])
            elif offset:
                # Page past the end: the window count has no row to ride on
                row = conn.execute(
                    candidates
                    + "SELECT count(*) AS total_count FROM candidates WHERE distance_km <= %(max_distance)s",
                    params,
                ).fetchone()
                total = int(row["total_count"]) if row else 0
            else:
                total = 0
        matches = [
            NearbyMatch(identity=self._identity_from_row(row), distance_km=float(row["distance_km"]))
            for row in rows
        ]
        return matches, total

    @staticmethod
    def _identity_params(identity: Identity) -> Dict[str, Any]:
        prefs = identity.preferences
        return {
            "id": identity.id,
            "email": identity.email,
            "password_hash": identity.password_hash,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "birth_date": identity.birth_date,
            "gender": Gender(identity.gender).value,
            "bio": identity.bio,
            "interests": json.dumps(list(identity.interests)),
            "photos": json.dumps(list(identity.photos)),
            "longitude": identity.location.longitude,
            "latitude": identity.location.latitude,
            "pref_min_age": prefs.min_age,
            "pref_max_age": prefs.max_age,
            "pref_distance_km": prefs.distance_km,
            "pref_gender": json.dumps([Gender(g).value for g in prefs.gender_preference]),
            "last_active": identity.last_active,
            "is_verified": identity.is_verified,
            "refresh_token": identity.refresh_token,
            "created_at": identity.created_at,
            "updated_at": identity.updated_at,
        }

    @staticmethod
    def _identity_from_row(row: Dict[str, Any]) -> Identity:
        return Identity(
            id=str(row["id"]),
            email=row["email"],
            password_hash=row["password_hash"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            birth_date=row["birth_date"],
            gender=Gender(row["gender"]),
            location=GeoPoint(longitude=float(row["longitude"]), latitude=float(row["latitude"])),
            bio=row.get("bio"),
            interests=list(row.get("interests") or []),
            photos=list(row.get("photos") or []),
            preferences=SearchPreferences(
                min_age=int(row["pref_min_age"]),
                max_age=int(row["pref_max_age"]),
                distance_km=float(row["pref_distance_km"]),
                gender_preference=[Gender(g) for g in row.get("pref_gender") or []],
            ),
            last_active=row["last_active"],
            is_verified=bool(row.get("is_verified", False)),
            refresh_token=row.get("refresh_token"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
