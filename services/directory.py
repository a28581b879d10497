# services/directory.py - Wires catalog, geocoder, cache and use cases together
import logging
from typing import Optional

from adapters.database import SqlCatalogRepository, close_db, init_db
from adapters.geocoder import GeocoderConfig, GoogleGeocoder
from adapters.memory_catalog import InMemoryCatalogRepository
from adapters.storage import CloudinaryConfig, CloudinaryObjectStorage, LocalObjectStorage
from domain.models import CatalogRepository, Geocoder, ObjectStorage
from usecases.geocode_cache import GeocodeCache
from usecases.location_service import LocationService
from usecases.proximity_search import ProximitySearchService

logger = logging.getLogger(__name__)


class DirectoryServices:
    """Application services sharing one catalog and one geocode cache"""

    def __init__(
        self,
        catalog: CatalogRepository,
        geocoder: Geocoder,
        storage: ObjectStorage,
        cache: GeocodeCache,
        settings,
    ):
        self.catalog = catalog
        self.geocoder = geocoder
        self.storage = storage
        self.cache = cache
        self.search = ProximitySearchService(
            catalog,
            geocoder,
            cache,
            concurrency=settings.GEOCODE_CONCURRENCY,
            search_timeout=settings.SEARCH_TIMEOUT,
            candidate_timeout=settings.CANDIDATE_GEOCODE_TIMEOUT,
            reject_unscoped=settings.REJECT_UNSCOPED_SEARCH,
        )
        self.locations = LocationService(catalog, storage, max_photo_bytes=settings.MAX_PHOTO_BYTES)

    async def health_check(self) -> bool:
        return await self.catalog.health_check()

    def get_info(self) -> dict:
        info = {
            "catalog": type(self.catalog).__name__,
            "storage": type(self.storage).__name__,
            "geocode_cache": self.cache.stats(),
        }
        if hasattr(self.geocoder, "get_info"):
            info["geocoder"] = self.geocoder.get_info()
        return info

    async def close(self):
        if hasattr(self.geocoder, "close"):
            await self.geocoder.close()


# Global service instance
directory_services: Optional[DirectoryServices] = None

def get_directory_services() -> DirectoryServices:
    """Dependency injection for directory services"""
    global directory_services
    if directory_services is None:
        raise RuntimeError("Directory services not initialized")
    return directory_services

def set_directory_services(services: Optional[DirectoryServices]):
    global directory_services
    directory_services = services

def build_photo_storage(settings) -> ObjectStorage:
    backend = settings.PHOTO_BACKEND.lower()
    if backend == "local":
        return LocalObjectStorage(settings.PHOTO_STORAGE_DIR, settings.PHOTO_BASE_URL)
    if backend != "cloudinary":
        raise ValueError(f"Unknown photo backend: {settings.PHOTO_BACKEND}")

    config = CloudinaryConfig(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        folder=settings.CLOUDINARY_FOLDER,
    )
    if not config.configured:
        logger.warning("Cloudinary credentials are not set; photo uploads will fail")
    return CloudinaryObjectStorage(config)

async def init_directory_services(settings) -> DirectoryServices:
    """Initialize global directory services from settings"""
    backend = settings.CATALOG_BACKEND.lower()
    if backend == "postgres":
        session_factory = await init_db()
        catalog = SqlCatalogRepository(session_factory)
    elif backend == "memory":
        catalog = InMemoryCatalogRepository()
    else:
        raise ValueError(f"Unknown catalog backend: {settings.CATALOG_BACKEND}")

    config = GeocoderConfig(
        api_key=settings.GEOCODER_API_KEY,
        base_timeout=settings.GEOCODER_TIMEOUT,
        cache_ttl=settings.GEOCODE_CACHE_TTL,
        base_url=settings.GEOCODER_BASE_URL,
    )
    if not config.api_key:
        logger.warning("GEOCODER_API_KEY is not set; nearby searches will fail")

    services = DirectoryServices(
        catalog=catalog,
        geocoder=GoogleGeocoder(config),
        storage=build_photo_storage(settings),
        cache=GeocodeCache(ttl=config.cache_ttl, max_entries=settings.GEOCODE_CACHE_MAX_ENTRIES),
        settings=settings,
    )
    set_directory_services(services)
    logger.info(f"Directory services ready ({backend} catalog)")
    return services

async def shutdown_directory_services():
    global directory_services
    if directory_services is not None:
        await directory_services.close()
        directory_services = None
    await close_db()
