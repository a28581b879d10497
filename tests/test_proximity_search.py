import asyncio
import math

import pytest
from unittest.mock import AsyncMock

from adapters.memory_catalog import InMemoryCatalogRepository
from domain.errors import (
    CatalogUnavailable, GeocodeFailureReason, InvalidRequest, OriginGeocodeFailed, SearchTimeout
)
from domain.models import Coordinate, SearchCriteria
from usecases.geocode_cache import GeocodeCache
from usecases.proximity_search import ProximitySearchService

from conftest import ADDRESSES, FakeGeocoder, make_location

ORIGIN = "Hôtel de Ville, Paris"


def make_service(catalog, geocoder, **kwargs):
    return ProximitySearchService(catalog, geocoder, GeocodeCache(), **kwargs)


@pytest.mark.asyncio
async def test_results_are_within_radius_and_sorted(catalog, geocoder):
    service = make_service(catalog, geocoder)

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == ["louvre", "creperie", "eiffel"]
    assert all(r.distance_km <= 10 for r in results)
    distances = [r.distance_km for r in results]
    assert distances == sorted(distances)
    assert results[0].latitude == pytest.approx(48.8606)
    assert results[0].longitude == pytest.approx(2.3376)


@pytest.mark.asyncio
async def test_paris_london_example():
    catalog = InMemoryCatalogRepository([
        make_location("A", "Hôtel de Ville, Paris", id="a"),
        make_location("B", "Trafalgar Square, London", id="b"),
    ])
    service = make_service(catalog, FakeGeocoder())

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == ["a"]
    assert results[0].distance_km == 0.0

    wide = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=500))
    assert [r.location.id for r in wide] == ["a", "b"]
    assert wide[1].distance_km == pytest.approx(344, abs=1.5)


@pytest.mark.asyncio
async def test_failed_candidate_is_excluded_not_fatal():
    catalog = InMemoryCatalogRepository([
        make_location("Eiffel", "Champ de Mars, Paris", id="eiffel"),
        make_location("Broken", "Unknown street", id="broken"),
        make_location("Louvre", "Rue de Rivoli, Paris", id="louvre"),
    ])
    service = make_service(catalog, FakeGeocoder())

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == ["louvre", "eiffel"]


@pytest.mark.asyncio
async def test_all_candidates_failing_is_an_empty_success():
    catalog = InMemoryCatalogRepository([
        make_location("X", "Nowhere 1", id="x"),
        make_location("Y", "Nowhere 2", id="y"),
    ])
    geocoder = FakeGeocoder(failures={"Nowhere 1": GeocodeFailureReason.PROVIDER_UNAVAILABLE})
    service = make_service(catalog, geocoder)

    assert await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10)) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("origin", ["", "   "])
async def test_empty_origin_is_rejected_before_any_call(origin):
    catalog = AsyncMock()
    geocoder = FakeGeocoder()
    service = make_service(catalog, geocoder)

    with pytest.raises(InvalidRequest):
        await service.search(SearchCriteria(origin_address=origin, max_distance_km=10))

    assert geocoder.calls == []
    catalog.find.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("radius", [0, -5, None])
async def test_non_positive_radius_is_rejected(catalog, radius):
    geocoder = FakeGeocoder()
    service = make_service(catalog, geocoder)

    with pytest.raises(InvalidRequest):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=radius))

    assert geocoder.calls == []


@pytest.mark.asyncio
async def test_origin_failure_aborts_search(catalog):
    service = make_service(catalog, FakeGeocoder())

    with pytest.raises(OriginGeocodeFailed):
        await service.search(SearchCriteria(origin_address="Atlantis", max_distance_km=10))


@pytest.mark.asyncio
async def test_slow_origin_times_out(catalog):
    geocoder = FakeGeocoder(delays={ORIGIN: 1.0})
    service = make_service(catalog, geocoder, search_timeout=0.05)

    with pytest.raises(SearchTimeout):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))


@pytest.mark.asyncio
async def test_slow_candidate_is_dropped(catalog):
    geocoder = FakeGeocoder(delays={"Champ de Mars, Paris": 1.0})
    service = make_service(catalog, geocoder, candidate_timeout=0.05)

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == ["louvre", "creperie"]


@pytest.mark.asyncio
async def test_catalog_failure_is_fatal():
    catalog = AsyncMock()
    catalog.find.side_effect = ConnectionError("database is down")
    service = make_service(catalog, FakeGeocoder())

    with pytest.raises(CatalogUnavailable):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))


@pytest.mark.asyncio
async def test_attribute_filters_narrow_candidates(catalog, geocoder):
    service = make_service(catalog, geocoder)

    results = await service.search(SearchCriteria(
        origin_address=ORIGIN, max_distance_km=50,
        category="prendre_un_verre", required_tags={"decor:cozy"},
    ))

    assert [r.location.id for r in results] == ["louvre", "eiffel", "versailles"]
    assert "Trafalgar Square, London" not in geocoder.calls


@pytest.mark.asyncio
async def test_order_ignores_geocode_completion_order():
    catalog = InMemoryCatalogRepository([
        make_location("Far", "Champ de Mars, Paris", id="far"),
        make_location("Near", "Rue de Rivoli, Paris", id="near"),
    ])
    # the nearer candidate resolves last
    geocoder = FakeGeocoder(delays={"Rue de Rivoli, Paris": 0.05})
    service = make_service(catalog, geocoder)

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == ["near", "far"]


@pytest.mark.asyncio
async def test_ties_keep_catalog_order():
    catalog = InMemoryCatalogRepository([
        make_location(f"Bar {i}", "Rue de Rivoli, Paris", id=f"bar-{i}") for i in range(5)
    ])
    service = make_service(catalog, FakeGeocoder())

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert [r.location.id for r in results] == [f"bar-{i}" for i in range(5)]


@pytest.mark.asyncio
async def test_repeated_addresses_resolve_once_per_search():
    catalog = InMemoryCatalogRepository([
        make_location("A", "Rue de Rivoli, Paris", id="a"),
        make_location("B", "rue de rivoli,  PARIS", id="b"),
        make_location("C", "Rue de Rivoli, Paris", id="c"),
    ])
    geocoder = FakeGeocoder(delays={"Rue de Rivoli, Paris": 0.01})
    service = make_service(catalog, geocoder)

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert len(results) == 3
    assert geocoder.calls.count("Rue de Rivoli, Paris") == 1
    assert len(geocoder.calls) == 2  # origin + one shared resolution


@pytest.mark.asyncio
async def test_fan_out_is_bounded():
    addresses = [f"Street {i}" for i in range(8)]
    coordinates = {address: ADDRESSES["Rue de Rivoli, Paris"] for address in addresses}
    coordinates[ORIGIN] = ADDRESSES[ORIGIN]
    geocoder = FakeGeocoder(coordinates=coordinates, delays={a: 0.01 for a in addresses})
    catalog = InMemoryCatalogRepository([make_location(a, a, id=a) for a in addresses])
    service = make_service(catalog, geocoder, concurrency=3)

    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    assert len(results) == 8
    assert 1 < geocoder.max_in_flight <= 3


@pytest.mark.asyncio
async def test_unscoped_search_can_be_rejected(catalog, geocoder):
    service = make_service(catalog, geocoder, reject_unscoped=True)

    with pytest.raises(InvalidRequest):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))

    scoped = await service.search(SearchCriteria(
        origin_address=ORIGIN, max_distance_km=10, category="manger_ensemble",
    ))
    assert [r.location.id for r in scoped] == ["creperie"]


@pytest.mark.asyncio
async def test_antipodal_candidate_does_not_break_search():
    coordinates = {
        "Gulf of Guinea": Coordinate(0.08, 0.0),
        "Near buoy": Coordinate(0.1, 0.05),
        "Pacific atoll": Coordinate(-0.08, 180.0),
    }
    catalog = InMemoryCatalogRepository([
        make_location("Atoll", "Pacific atoll", id="atoll"),
        make_location("Buoy", "Near buoy", id="buoy"),
    ])
    service = make_service(catalog, FakeGeocoder(coordinates=coordinates))

    near = await service.search(SearchCriteria(origin_address="Gulf of Guinea", max_distance_km=10))
    assert [r.location.id for r in near] == ["buoy"]

    everywhere = await service.search(SearchCriteria(origin_address="Gulf of Guinea", max_distance_km=30000))
    assert [r.location.id for r in everywhere] == ["buoy", "atoll"]
    assert everywhere[1].distance_km == pytest.approx(20015.09, abs=0.1)


@pytest.mark.asyncio
@pytest.mark.parametrize("radius", [math.nan, math.inf])
async def test_non_finite_radius_is_rejected(catalog, radius):
    geocoder = FakeGeocoder()
    service = make_service(catalog, geocoder)

    with pytest.raises(InvalidRequest):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=radius))

    assert geocoder.calls == []


@pytest.mark.asyncio
async def test_search_deadline_keeps_resolved_candidates():
    fast = [f"Fast {i}" for i in range(2)]
    slow = [f"Slow {i}" for i in range(18)]
    coordinates = {address: ADDRESSES["Rue de Rivoli, Paris"] for address in fast + slow}
    coordinates[ORIGIN] = ADDRESSES[ORIGIN]
    geocoder = FakeGeocoder(coordinates=coordinates, delays={a: 0.3 for a in slow})
    catalog = InMemoryCatalogRepository([make_location(a, a, id=a) for a in fast + slow])
    service = make_service(
        catalog, geocoder, concurrency=2, search_timeout=0.5, candidate_timeout=1.0,
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    results = await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))
    elapsed = loop.time() - started

    # without the deadline this would take 9 rounds of 0.3s
    assert elapsed < 1.5
    assert [r.location.id for r in results][:2] == fast
    assert 2 <= len(results) < len(fast + slow)
    assert geocoder.in_flight == 0


@pytest.mark.asyncio
async def test_slow_catalog_times_out():
    async def slow_find(predicate):
        await asyncio.sleep(1.0)
        return []

    catalog = AsyncMock()
    catalog.find.side_effect = slow_find
    service = make_service(catalog, FakeGeocoder(), search_timeout=0.1)

    with pytest.raises(SearchTimeout):
        await service.search(SearchCriteria(origin_address=ORIGIN, max_distance_km=10))
