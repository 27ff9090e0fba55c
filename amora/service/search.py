from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol, Tuple

from amora.config import Settings
from amora.logging import get_logger
from amora.service.geo import birth_bounds
from amora.storage.models import Gender, GeoPoint, Identity, NearbyMatch, utcnow

logger = get_logger(__name__)


class NearbyStore(Protocol):
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
    ) -> Tuple[List[NearbyMatch], int]: ...


@dataclass(frozen=True)
class SearchCriteria:
    page: int = 1
    limit: int = 10
    max_distance_km: Optional[float] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    gender: Optional[Gender] = None


@dataclass(frozen=True)
class SearchPage:
    matches: List[NearbyMatch]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class ProximitySearch:
    """Nearest-first search for other identities around the requester."""

    def __init__(
        self,
        store: NearbyStore,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock

    def resolve_distance(self, requester: Identity, criteria: SearchCriteria) -> float:
        if criteria.max_distance_km is not None:
            return criteria.max_distance_km
        if requester.preferences and requester.preferences.distance_km:
            return requester.preferences.distance_km
        return self.settings.default_search_distance_km

    def search(self, requester: Identity, criteria: SearchCriteria) -> SearchPage:
        max_distance = self.resolve_distance(requester, criteria)
        born_on_or_before, born_after = birth_bounds(
            criteria.min_age, criteria.max_age, self._clock()
        )
        matches, total = self.store.find_nearby(
            requester.location,
            max_distance,
            exclude_id=requester.id,
            gender=criteria.gender,
            born_on_or_before=born_on_or_before,
            born_after=born_after,
            offset=(criteria.page - 1) * criteria.limit,
            limit=criteria.limit,
        )
        logger.debug(
            "proximity_search",
            identity_id=requester.id,
            max_distance_km=max_distance,
            total=total,
            page=criteria.page,
        )
        return SearchPage(
            matches=matches, total=total, page=criteria.page, limit=criteria.limit
        )


__all__ = ["ProximitySearch", "SearchCriteria", "SearchPage"]
