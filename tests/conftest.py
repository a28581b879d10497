import asyncio
from types import SimpleNamespace

import pytest

from adapters.memory_catalog import InMemoryCatalogRepository
from domain.errors import GeocodeError, GeocodeFailureReason
from domain.models import Coordinate, Geocoder, Location, ObjectStorage

PARIS = Coordinate(48.8566, 2.3522)
LOUVRE = Coordinate(48.8606, 2.3376)
EIFFEL = Coordinate(48.8584, 2.2945)
VERSAILLES = Coordinate(48.8049, 2.1204)
LONDON = Coordinate(51.5074, -0.1278)

ADDRESSES = {
    "Hôtel de Ville, Paris": PARIS,
    "Rue de Rivoli, Paris": LOUVRE,
    "Champ de Mars, Paris": EIFFEL,
    "Place d'Armes, Versailles": VERSAILLES,
    "Trafalgar Square, London": LONDON,
}


class FakeGeocoder(Geocoder):
    """Resolves from a fixed table and records every call"""

    def __init__(self, coordinates=None, failures=None, delays=None):
        self.coordinates = dict(ADDRESSES if coordinates is None else coordinates)
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def resolve(self, address):
        self.calls.append(address)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(address)
            if delay:
                await asyncio.sleep(delay)
            if address in self.failures:
                raise GeocodeError(self.failures[address], address)
            if address not in self.coordinates:
                raise GeocodeError(GeocodeFailureReason.NOT_FOUND, address)
            return self.coordinates[address]
        finally:
            self.in_flight -= 1


class FakeStorage(ObjectStorage):
    def __init__(self):
        self.objects = {}
        self.deleted = []

    async def upload(self, data, content_type):
        url = f"https://cdn.test/photos/{len(self.objects) + 1}.jpg"
        self.objects[url] = (data, content_type)
        return url

    async def delete(self, url):
        self.deleted.append(url)
        self.objects.pop(url, None)


def make_location(name, address, category="prendre_un_verre", **kwargs):
    return Location(name=name, address=address, category=category, **kwargs)


@pytest.fixture
def locations():
    return [
        make_location("Le Versailles", "Place d'Armes, Versailles", id="versailles",
                      keywords=["terrasse"], filters=["decor:cozy"]),
        make_location("Bar Eiffel", "Champ de Mars, Paris", id="eiffel",
                      postal_code="75007", keywords=["vin"], filters=["decor:cozy", "ambiance:loud"]),
        make_location("Pub London", "Trafalgar Square, London", id="london",
                      keywords=["bière"], filters=["ambiance:loud"]),
        make_location("Café Louvre", "Rue de Rivoli, Paris", id="louvre",
                      postal_code="75001", keywords=["café", "terrasse"], price_range="€€",
                      filters=["decor:cozy"]),
        make_location("Crêperie", "Rue de Rivoli, Paris", id="creperie", category="manger_ensemble",
                      postal_code="75001", price_range="€"),
    ]


@pytest.fixture
def catalog(locations):
    return InMemoryCatalogRepository(locations)


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def test_settings():
    return SimpleNamespace(
        GEOCODE_CONCURRENCY=4,
        SEARCH_TIMEOUT=2.0,
        CANDIDATE_GEOCODE_TIMEOUT=1.0,
        REJECT_UNSCOPED_SEARCH=False,
        MAX_PHOTO_BYTES=1024,
    )
