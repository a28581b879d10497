# usecases/geocode_cache.py - Memoizes geocoding results by normalized address
import asyncio
import logging
import time
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional, Tuple

from domain.errors import GeocodeError, GeocodeFailureReason
from domain.models import Coordinate

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[Coordinate]]


def normalize_address(address: str) -> str:
    return " ".join(address.split()).casefold()


class GeocodeCache:
    """
    Process-wide address -> coordinate cache shared by concurrent searches.

    Only successful resolutions are stored, so a failed address is retried on
    its next lookup. Concurrent misses for the same key are coalesced onto a
    single in-flight resolution; the check and the registration of the
    in-flight future happen without an intervening await, which makes them
    atomic on the event loop.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Coordinate, Optional[float]]]" = OrderedDict()
        self._in_flight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, address: str) -> Optional[Coordinate]:
        key = normalize_address(address)
        entry = self._entries.get(key)
        if entry is None:
            return None
        coordinate, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return coordinate

    def put(self, address: str, coordinate: Coordinate) -> None:
        if self.max_entries <= 0:
            return
        key = normalize_address(address)
        expires_at = self._clock() + self.ttl if self.ttl is not None else None
        self._entries[key] = (coordinate, expires_at)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_resolve(self, address: str, resolver: Resolver) -> Coordinate:
        key = normalize_address(address)
        cached = self.get(address)
        if cached is not None:
            self.hits += 1
            return cached

        pending = self._in_flight.get(key)
        if pending is not None:
            self.hits += 1
            logger.debug(f"Joining in-flight geocode for {key!r}")
            # shield: a waiter giving up must not cancel the shared resolution
            return await asyncio.shield(pending)

        self.misses += 1
        future = asyncio.get_running_loop().create_future()
        self._in_flight[key] = future
        try:
            coordinate = await resolver(address)
        except asyncio.CancelledError:
            future.set_exception(GeocodeError(
                GeocodeFailureReason.PROVIDER_UNAVAILABLE, address, "Resolution was cancelled"
            ))
            future.exception()  # mark retrieved when nobody else is waiting
            raise
        except Exception as exc:
            future.set_exception(exc)
            future.exception()
            raise
        else:
            self.put(address, coordinate)
            future.set_result(coordinate)
            return coordinate
        finally:
            self._in_flight.pop(key, None)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "in_flight": len(self._in_flight),
            "hits": self.hits,
            "misses": self.misses,
            "ttl_seconds": self.ttl,
        }
