# adapters/geocoder.py - Google Geocoding API client
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp

from domain.errors import GeocodeError, GeocodeFailureReason
from domain.models import Coordinate, Geocoder

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


@dataclass(frozen=True)
class GeocoderConfig:
    api_key: Optional[str]
    base_timeout: float = 5.0  # per-call deadline in seconds
    cache_ttl: Optional[float] = None
    base_url: str = DEFAULT_BASE_URL


class GoogleGeocoder(Geocoder):
    """One outbound request per resolve() call; no retries at this layer"""

    def __init__(self, config: GeocoderConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.base_timeout)
            )
            self._owns_session = True
        return self._session

    async def resolve(self, address: str) -> Coordinate:
        address = (address or "").strip()
        if not address:
            raise GeocodeError(GeocodeFailureReason.INVALID_INPUT, address, "Address is empty")
        if not self.config.api_key:
            raise GeocodeError(
                GeocodeFailureReason.PROVIDER_UNAVAILABLE, address, "Geocoder API key is not configured"
            )

        params = {"address": address, "key": self.config.api_key}
        try:
            async with self._get_session().get(self.config.base_url, params=params) as resp:
                if resp.status != 200:
                    error_text = await resp.text()
                    logger.error(f"Geocoding provider error: {resp.status} - {error_text[:200]}")
                    raise GeocodeError(
                        GeocodeFailureReason.PROVIDER_UNAVAILABLE, address,
                        f"Provider answered HTTP {resp.status}",
                    )
                data = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise GeocodeError(
                GeocodeFailureReason.PROVIDER_UNAVAILABLE, address,
                f"Provider did not answer within {self.config.base_timeout}s",
            ) from e
        except aiohttp.ClientError as e:
            raise GeocodeError(
                GeocodeFailureReason.PROVIDER_UNAVAILABLE, address, f"Failed to reach provider: {e}"
            ) from e

        return parse_geocode_response(address, data)

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def get_info(self) -> dict:
        return {
            "provider": "google",
            "base_url": self.config.base_url,
            "api_key_configured": bool(self.config.api_key),
            "timeout_seconds": self.config.base_timeout,
        }


def parse_geocode_response(address: str, data: dict) -> Coordinate:
    """Map a Geocoding API JSON payload to the first result's coordinate"""
    status = data.get("status", "OK")
    results = data.get("results") or []

    if status == "ZERO_RESULTS" or (status == "OK" and not results):
        raise GeocodeError(GeocodeFailureReason.NOT_FOUND, address, "Address not found")
    if status == "INVALID_REQUEST":
        raise GeocodeError(GeocodeFailureReason.INVALID_INPUT, address, "Provider rejected the address")
    if status != "OK":
        message = data.get("error_message") or status
        raise GeocodeError(GeocodeFailureReason.PROVIDER_UNAVAILABLE, address, f"Provider error: {message}")

    try:
        location = results[0]["geometry"]["location"]
        return Coordinate(latitude=float(location["lat"]), longitude=float(location["lng"]))
    except (KeyError, TypeError, ValueError) as e:
        raise GeocodeError(
            GeocodeFailureReason.PROVIDER_UNAVAILABLE, address, f"Malformed provider response: {e}"
        ) from e
