# adapters/memory_catalog.py - In-process catalog for development and tests
import asyncio
import copy
import uuid
from typing import Dict, Iterable, List, Optional

from domain.models import CatalogRepository, Location, Predicate


class InMemoryCatalogRepository(CatalogRepository):
    """Dict-backed catalog; iteration order is insertion order"""

    def __init__(self, locations: Optional[Iterable[Location]] = None):
        self._locations: Dict[str, Location] = {}
        self._lock = asyncio.Lock()
        for location in locations or []:
            location_id = location.id or uuid.uuid4().hex
            self._locations[location_id] = copy.deepcopy(location)
            self._locations[location_id].id = location_id

    async def find(self, predicate: Predicate) -> List[Location]:
        return [copy.deepcopy(loc) for loc in self._locations.values() if predicate.matches(loc)]

    async def find_by_id(self, location_id: str) -> Optional[Location]:
        location = self._locations.get(location_id)
        return copy.deepcopy(location) if location else None

    async def save(self, location: Location) -> Location:
        async with self._lock:
            stored = copy.deepcopy(location)
            if stored.id is None:
                stored.id = uuid.uuid4().hex
            self._locations[stored.id] = stored
            return copy.deepcopy(stored)

    async def delete(self, location_id: str) -> bool:
        async with self._lock:
            return self._locations.pop(location_id, None) is not None
