# usecases/proximity_search.py - Business logic for "find nearby" (Uncle Bob's use cases layer)
import asyncio
import logging
import math
from typing import List, Optional

from domain.errors import (
    CatalogUnavailable, GeocodeError, InvalidRequest, OriginGeocodeFailed, SearchTimeout
)
from domain.models import (
    CatalogRepository, Coordinate, Geocoder, Location, RankedResult, SearchCriteria
)
from usecases.criteria import compile_criteria
from usecases.distance import distance_km
from usecases.geocode_cache import GeocodeCache

logger = logging.getLogger(__name__)


class ProximitySearchService:
    def __init__(
        self,
        catalog: CatalogRepository,
        geocoder: Geocoder,
        cache: Optional[GeocodeCache] = None,
        concurrency: int = 8,
        search_timeout: float = 10.0,
        candidate_timeout: float = 3.0,
        reject_unscoped: bool = False,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.catalog = catalog
        self.geocoder = geocoder
        self.cache = cache if cache is not None else GeocodeCache()
        self.concurrency = concurrency
        self.search_timeout = search_timeout
        self.candidate_timeout = candidate_timeout
        self.reject_unscoped = reject_unscoped

    async def search(self, criteria: SearchCriteria) -> List[RankedResult]:
        """Core business logic for proximity search"""

        # 0. Validate before any outbound call
        origin_address = (criteria.origin_address or "").strip()
        if not origin_address:
            raise InvalidRequest("Origin address is required")
        radius = criteria.max_distance_km
        if radius is None or not math.isfinite(radius) or radius <= 0:
            raise InvalidRequest(f"Max distance must be a positive number, got {radius}")
        if self.reject_unscoped and criteria.is_unscoped():
            raise InvalidRequest("At least one attribute filter is required for a nearby search")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.search_timeout

        # 1. Resolve the origin; without it there is no reference point
        origin = await self._resolve_origin(origin_address)

        # 2. Fetch candidates matching the attribute filters
        predicate = compile_criteria(criteria.filter_criteria())
        try:
            candidates = await asyncio.wait_for(
                self.catalog.find(predicate), timeout=max(0.0, deadline - loop.time())
            )
        except asyncio.TimeoutError as e:
            raise SearchTimeout(f"Candidates could not be fetched within {self.search_timeout}s") from e
        except CatalogUnavailable:
            raise
        except Exception as e:
            logger.error(f"Catalog lookup failed: {e}")
            raise CatalogUnavailable("Location catalog is unavailable") from e

        if not candidates:
            return []

        # 3. Geocode candidates concurrently until the search deadline
        coordinates = await self._resolve_candidates(candidates, max(0.0, deadline - loop.time()))

        # 4. Score and keep candidates within range
        results = []
        for location, coordinate in zip(candidates, coordinates):
            if coordinate is None:
                continue
            distance = distance_km(origin, coordinate)
            if distance <= radius:
                results.append(RankedResult(
                    location=location,
                    distance_km=distance,
                    latitude=coordinate.latitude,
                    longitude=coordinate.longitude,
                ))

        # 5. Stable sort, ties keep catalog order
        results.sort(key=lambda r: r.distance_km)

        logger.info(
            f"Nearby search around {origin_address!r}: {len(candidates)} candidates, "
            f"{len(results)} within {radius} km"
        )
        return results

    async def _resolve_origin(self, address: str) -> Coordinate:
        try:
            return await asyncio.wait_for(
                self.cache.get_or_resolve(address, self.geocoder.resolve),
                timeout=self.search_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SearchTimeout(
                f"Origin address could not be resolved within {self.search_timeout}s"
            ) from e
        except GeocodeError as e:
            raise OriginGeocodeFailed(str(e)) from e

    async def _resolve_candidates(self, candidates: List[Location], remaining: float) -> List[Optional[Coordinate]]:
        """
        Coordinates aligned with candidates, None where a candidate was dropped.

        Candidates still unresolved when the remaining search time runs out are
        cancelled and dropped; the ones already resolved are kept.
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [
            asyncio.ensure_future(self._resolve_candidate(location, semaphore))
            for location in candidates
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=remaining)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                f"Search deadline reached, dropping {len(pending)} of {len(tasks)} unresolved candidates"
            )
        return [task.result() if task in done else None for task in tasks]

    async def _resolve_candidate(self, location: Location, semaphore: asyncio.Semaphore) -> Optional[Coordinate]:
        """Resolve one candidate; any failure excludes it instead of failing the search"""
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    self.cache.get_or_resolve(location.address, self.geocoder.resolve),
                    timeout=self.candidate_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Geocoding timed out for location {location.id} ({location.address!r}), skipping"
                )
            except GeocodeError as e:
                logger.warning(f"Geocoding failed for location {location.id}: {e}, skipping")
            except ValueError as e:
                logger.warning(f"Invalid coordinates for location {location.id}: {e}, skipping")
        return None
